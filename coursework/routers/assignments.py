"""Assignment routes - bundles of activities with a due date and one submission per student."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.config import settings
from coursework.database import commit_or_raise, get_db
from coursework.dependencies import get_current_user, require_student, require_teacher
from coursework.errors import InvalidTransition, NotFound, PersistenceError, ValidationFailed
from coursework.models.activity import Activity
from coursework.models.assignment import Assignment, AssignmentItem, AssignmentSubmission
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.lesson import Lesson
from coursework.models.user import User
from coursework.services.access import require_assignment_access, require_course_owner

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assignments"])


class AssignmentCreate(BaseModel):
    title: str = Field(min_length=1)
    instructions: str | None = None
    lesson_id: int | None = None
    due_at: datetime | None = None
    points: int = Field(default=0, ge=0)
    activity_ids: list[int] = []
    optional_activity_ids: list[int] = []
    publish: bool = False


class SubmitRequest(BaseModel):
    submission_data: dict = {}
    final: bool = True


class GradeRequest(BaseModel):
    grade: float = Field(ge=0, le=100)
    feedback: str | None = None


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; they were stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    value = _utc(value)
    return value.isoformat() if value else None


def assignment_out(assignment: Assignment, items: list[AssignmentItem]) -> dict:
    return {
        "id": assignment.id,
        "course_id": assignment.course_id,
        "lesson_id": assignment.lesson_id,
        "title": assignment.title,
        "instructions": assignment.instructions,
        "due_at": _iso(assignment.due_at),
        "points": assignment.points,
        "is_published": assignment.is_published,
        "activities": [
            {"activity_id": i.activity_id, "is_required": i.is_required}
            for i in sorted(items, key=lambda i: i.id)
        ],
    }


def submission_out(sub: AssignmentSubmission) -> dict:
    return {
        "id": sub.id,
        "assignment_id": sub.assignment_id,
        "student_id": sub.student_id,
        "status": sub.status,
        "submission_data": sub.submission_data,
        "grade": sub.grade,
        "feedback": sub.feedback,
        "submitted_at": _iso(sub.submitted_at),
        "graded_at": _iso(sub.graded_at),
    }


async def _items(db: AsyncSession, assignment_id: int) -> list[AssignmentItem]:
    result = await db.execute(
        select(AssignmentItem).where(AssignmentItem.assignment_id == assignment_id)
    )
    return list(result.scalars().all())


async def _find_submission(
    db: AsyncSession, assignment_id: int, student_id: int
) -> AssignmentSubmission | None:
    result = await db.execute(
        select(AssignmentSubmission).where(
            AssignmentSubmission.assignment_id == assignment_id,
            AssignmentSubmission.student_id == student_id,
        )
    )
    return result.scalar_one_or_none()


async def _owned_assignment(db: AsyncSession, user: User, assignment_id: int) -> Assignment:
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    await require_course_owner(db, user, assignment.course_id)
    return assignment


# ─── Teacher ──────────────────────────────────────────────────────────


@router.post("/api/courses/{course_id}/assignments", status_code=201)
async def create_assignment(
    course_id: int,
    body: AssignmentCreate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)

    if body.lesson_id is not None:
        lesson = await db.get(Lesson, body.lesson_id)
        if lesson is None or lesson.course_id != course.id:
            raise ValidationFailed("lesson_id", "Lesson does not belong to this course")

    wanted = list(dict.fromkeys(body.activity_ids + body.optional_activity_ids))
    if wanted:
        found = (
            await db.execute(
                select(Activity.id).where(
                    Activity.id.in_(wanted), Activity.course_id == course.id
                )
            )
        ).scalars().all()
        missing = sorted(set(wanted) - set(found))
        if missing:
            raise ValidationFailed(
                "activity_ids",
                f"Activities not in this course: {', '.join(map(str, missing))}",
            )

    assignment = Assignment(
        course_id=course.id,
        lesson_id=body.lesson_id,
        title=body.title.strip(),
        instructions=body.instructions,
        due_at=body.due_at,
        points=body.points,
        is_published=body.publish,
    )
    required = set(body.activity_ids)
    assignment.items = [
        AssignmentItem(activity_id=activity_id, is_required=activity_id in required)
        for activity_id in wanted
    ]
    db.add(assignment)
    await commit_or_raise(db)
    logger.info("Assignment %d created in course %d", assignment.id, course.id)
    return assignment_out(assignment, await _items(db, assignment.id))


@router.post("/api/assignments/{assignment_id}/publish")
async def publish_assignment(
    assignment_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    assignment = await _owned_assignment(db, user, assignment_id)
    if not assignment.is_published:
        assignment.is_published = True
        await commit_or_raise(db)
        logger.info("Assignment %d published", assignment.id)
    return assignment_out(assignment, await _items(db, assignment.id))


@router.get("/api/assignments/{assignment_id}/submissions")
async def list_submissions(
    assignment_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    assignment = await _owned_assignment(db, user, assignment_id)
    result = await db.execute(
        select(AssignmentSubmission, User)
        .join(User, User.id == AssignmentSubmission.student_id)
        .where(AssignmentSubmission.assignment_id == assignment.id)
        .order_by(User.name)
    )
    return [
        {**submission_out(sub), "student_name": student.name}
        for sub, student in result.all()
    ]


@router.post("/api/assignments/{assignment_id}/submissions/{student_id}/grade")
async def grade_submission(
    assignment_id: int,
    student_id: int,
    body: GradeRequest,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    assignment = await _owned_assignment(db, user, assignment_id)
    sub = await _find_submission(db, assignment.id, student_id)
    if sub is None or sub.status == "draft":
        raise InvalidTransition(sub.status if sub else "not_started", "graded",
                                "Nothing has been submitted yet")

    sub.status = "graded"
    sub.grade = body.grade
    sub.feedback = body.feedback
    sub.graded_at = datetime.now(timezone.utc)
    await commit_or_raise(db)
    logger.info("Assignment %d graded for student %d: %s", assignment.id, student_id, body.grade)
    return submission_out(sub)


# ─── Listing ──────────────────────────────────────────────────────────


@router.get("/api/assignments")
async def list_assignments(
    course_id: int | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Teachers see every assignment of their courses; students the published ones of theirs."""
    if user.is_teacher:
        query = (
            select(Assignment)
            .join(Course, Course.id == Assignment.course_id)
            .where(Course.teacher_id == user.id)
        )
    else:
        query = (
            select(Assignment)
            .join(Enrollment, Enrollment.course_id == Assignment.course_id)
            .where(Enrollment.student_id == user.id, Assignment.is_published.is_(True))
        )
    if course_id is not None:
        query = query.where(Assignment.course_id == course_id)
    assignments = (await db.execute(query.order_by(Assignment.id))).scalars().all()

    rows = []
    for assignment in assignments:
        row = assignment_out(assignment, await _items(db, assignment.id))
        if not user.is_teacher:
            sub = await _find_submission(db, assignment.id, user.id)
            row["submission"] = submission_out(sub) if sub else None
        rows.append(row)
    return rows


# ─── Student ──────────────────────────────────────────────────────────


@router.post("/api/assignments/{assignment_id}/submit")
async def submit_assignment(
    assignment_id: int,
    body: SubmitRequest,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Save a draft or hand in; one submission row per student, updated in place."""
    assignment = await require_assignment_access(db, user, assignment_id)

    due_at = _utc(assignment.due_at)
    if settings.ENFORCE_DUE_DATES and due_at is not None and datetime.now(timezone.utc) > due_at:
        raise InvalidTransition("draft", "submitted", "The due date for this assignment has passed")

    assignment_id, student_id = assignment.id, user.id
    sub = await _find_submission(db, assignment_id, student_id)
    if sub is None:
        sub = AssignmentSubmission(
            assignment_id=assignment_id,
            student_id=student_id,
            course_id=assignment.course_id,
            status="draft",
        )
        db.add(sub)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            sub = await _find_submission(db, assignment_id, student_id)
            if sub is None:
                raise PersistenceError("Could not save your submission, please retry")
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Failed to create submission for assignment %d: %s", assignment_id, e)
            raise PersistenceError("Could not save your submission, please retry") from e
    if sub.status == "graded":
        raise InvalidTransition("graded", "submitted", "This submission has already been graded")

    sub.submission_data = body.submission_data
    if body.final:
        sub.status = "submitted"
        sub.submitted_at = datetime.now(timezone.utc)
    await commit_or_raise(db)
    logger.info(
        "Student %d %s assignment %d",
        student_id, "submitted" if body.final else "saved a draft of", assignment_id,
    )
    return submission_out(sub)
