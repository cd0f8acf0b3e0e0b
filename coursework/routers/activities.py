"""Activity authoring, listing and access routes."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import commit_or_raise, get_db
from coursework.dependencies import get_current_user, require_teacher
from coursework.errors import AccessDenied, NotFound, ValidationFailed
from coursework.models.activity import ACTIVITY_TYPES, Activity
from coursework.models.assignment import Assignment, AssignmentItem
from coursework.models.lesson import Lesson
from coursework.models.submission import ActivitySubmission
from coursework.models.user import User
from coursework.services.access import (
    AccessDecision,
    AssignmentTarget,
    activity_access_report,
    enrolled_student_ids,
    evaluate_activity_access,
    get_course_or_404,
    require_course_member,
    require_course_owner,
    validate_target,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["activities"])


class ActivityCreate(BaseModel):
    activity_type: str
    title: str = Field(min_length=1)
    description: str | None = None
    lesson_id: int | None = None
    content: dict = {}
    points: int = Field(default=0, ge=0)
    estimated_minutes: int | None = Field(default=None, ge=0)
    assign_to_all: bool = True
    assigned_student_ids: list[int] = []


class TargetUpdate(BaseModel):
    assign_to_all: bool
    assigned_student_ids: list[int] = []


# ─── Helpers ──────────────────────────────────────────────────────────


def _public_content(activity: Activity) -> dict:
    """Activity content as a student may see it: quiz answers stripped."""
    content = activity.content
    if activity.activity_type == "quiz":
        content["questions"] = [
            {k: v for k, v in q.items() if k not in ("correct_answer", "explanation")}
            for q in content.get("questions") or []
        ]
    elif activity.activity_type == "interactive":
        content["steps"] = [
            {k: v for k, v in s.items() if k not in ("action", "hint")}
            for s in content.get("steps") or []
        ]
    return content


def activity_out(activity: Activity, *, owner: bool = False) -> dict:
    out = {
        "id": activity.id,
        "course_id": activity.course_id,
        "lesson_id": activity.lesson_id,
        "activity_type": activity.activity_type,
        "title": activity.title,
        "description": activity.description,
        "points": activity.points,
        "estimated_minutes": activity.estimated_minutes,
        "content": activity.content if owner else _public_content(activity),
    }
    if owner:
        out["assign_to_all"] = activity.assign_to_all
        out["assigned_student_ids"] = activity.assigned_student_ids
    return out


def _check_content(activity_type: str, content: dict) -> None:
    if activity_type == "quiz":
        questions = content.get("questions")
        if not isinstance(questions, list) or not questions:
            raise ValidationFailed("content", "A quiz needs at least one question")
        for i, q in enumerate(questions):
            if not isinstance(q, dict) or not q.get("question") or "correct_answer" not in q:
                raise ValidationFailed(
                    "content", f"Question {i + 1} needs question text and a correct_answer"
                )
    elif activity_type == "interactive":
        steps = content.get("steps")
        if not isinstance(steps, list) or not steps:
            raise ValidationFailed("content", "A simulation needs at least one step")
        for i, s in enumerate(steps):
            if not isinstance(s, dict) or not str(s.get("action", "")).strip():
                raise ValidationFailed("content", f"Step {i + 1} needs an expected action")


async def _check_target(
    db: AsyncSession, course_id: int, assign_to_all: bool, student_ids: list[int]
) -> AssignmentTarget:
    target = (
        AssignmentTarget.everyone() if assign_to_all else AssignmentTarget.only(student_ids)
    )
    missing = validate_target(target, await enrolled_student_ids(db, course_id))
    if missing:
        raise ValidationFailed(
            "assigned_student_ids",
            f"Students not enrolled in this course: {', '.join(map(str, missing))}",
        )
    return target


async def load_assignment_context(
    db: AsyncSession, activity_id: int, assignment_id: int | None
) -> Assignment | None:
    """The assignment an activity is being opened through, if any."""
    if assignment_id is None:
        return None
    item = await db.execute(
        select(AssignmentItem).where(
            AssignmentItem.assignment_id == assignment_id,
            AssignmentItem.activity_id == activity_id,
        )
    )
    if item.scalar_one_or_none() is None:
        raise NotFound("Assignment not found")
    return await db.get(Assignment, assignment_id)


async def load_owned_activity(db: AsyncSession, user: User, activity_id: int) -> Activity:
    activity = await db.get(Activity, activity_id)
    if activity is None:
        raise NotFound("Activity not found")
    await require_course_owner(db, user, activity.course_id)
    return activity


# ─── Authoring ────────────────────────────────────────────────────────


@router.post("/api/courses/{course_id}/activities", status_code=201)
async def create_activity(
    course_id: int,
    body: ActivityCreate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)

    if body.activity_type not in ACTIVITY_TYPES:
        raise ValidationFailed("activity_type", f"Unknown activity type {body.activity_type!r}")
    if body.lesson_id is not None:
        lesson = await db.get(Lesson, body.lesson_id)
        if lesson is None or lesson.course_id != course.id:
            raise ValidationFailed("lesson_id", "Lesson does not belong to this course")
    _check_content(body.activity_type, body.content)
    target = await _check_target(db, course.id, body.assign_to_all, body.assigned_student_ids)

    activity = Activity(
        course_id=course.id,
        lesson_id=body.lesson_id,
        activity_type=body.activity_type,
        title=body.title.strip(),
        description=body.description,
        points=body.points,
        estimated_minutes=body.estimated_minutes,
        assign_to_all=target.assign_to_all,
    )
    activity.content = body.content
    activity.assigned_student_ids = target.student_ids
    db.add(activity)
    await commit_or_raise(db)
    await db.refresh(activity)
    logger.info("Activity %d (%s) created in course %d", activity.id, activity.activity_type, course.id)
    return activity_out(activity, owner=True)


@router.put("/api/activities/{activity_id}/target")
async def update_target(
    activity_id: int,
    body: TargetUpdate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    """Re-target an activity. Existing attempts are kept even if the student is dropped."""
    activity = await load_owned_activity(db, user, activity_id)
    target = await _check_target(
        db, activity.course_id, body.assign_to_all, body.assigned_student_ids
    )
    activity.assign_to_all = target.assign_to_all
    activity.assigned_student_ids = target.student_ids
    await commit_or_raise(db)
    return activity_out(activity, owner=True)


# ─── Listing and viewing ─────────────────────────────────────────────


@router.get("/api/courses/{course_id}/activities")
async def list_activities(
    course_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Owner sees everything; a student sees only what is assigned to them, with status."""
    course = await require_course_member(db, user, course_id)
    activities = (
        await db.execute(
            select(Activity).where(Activity.course_id == course.id).order_by(Activity.id)
        )
    ).scalars().all()

    if course.teacher_id == user.id:
        return [activity_out(a, owner=True) for a in activities]

    visible = [
        a for a in activities
        if evaluate_activity_access(
            user.id, user.role, course.teacher_id, AssignmentTarget.of(a), True
        ).allowed
    ]
    submissions = (
        await db.execute(
            select(ActivitySubmission).where(
                ActivitySubmission.student_id == user.id,
                ActivitySubmission.course_id == course.id,
            )
        )
    ).scalars().all()
    by_activity = {s.activity_id: s for s in submissions}

    rows = []
    for a in visible:
        sub = by_activity.get(a.id)
        rows.append({
            **activity_out(a),
            "status": sub.status if sub else "not_started",
            "points_earned": sub.points_earned if sub else 0,
        })
    return rows


@router.get("/api/activities/{activity_id}")
async def get_activity(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    activity = await db.get(Activity, activity_id)
    if activity is None:
        raise NotFound("Activity not found")
    assignment = await load_assignment_context(db, activity_id, assignment_id)
    report = await activity_access_report(db, user, activity, assignment)
    if not report.decision.allowed:
        raise AccessDenied(report.decision)
    course = await get_course_or_404(db, activity.course_id)
    return activity_out(activity, owner=course.teacher_id == user.id)


@router.get("/api/activities/{activity_id}/access")
async def get_access(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Both access inputs and the combined decision, for the signed-in user."""
    activity = await db.get(Activity, activity_id)
    if activity is None:
        raise NotFound("Activity not found")
    assignment = await load_assignment_context(db, activity_id, assignment_id)
    report = await activity_access_report(db, user, activity, assignment)
    if AccessDecision.DENIED_NOT_ENROLLED in (report.activity, report.decision):
        raise AccessDenied(AccessDecision.DENIED_NOT_ENROLLED)
    return {
        "activity_id": activity.id,
        "mode": report.mode.value,
        "activity_decision": report.activity.value,
        "assignment_decision": report.assignment.value if report.assignment else None,
        "decision": report.decision.value,
        "allowed": report.decision.allowed,
    }
