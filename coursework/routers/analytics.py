"""Teacher analytics routes - read-only views over progress and mastery records."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import get_db
from coursework.dependencies import require_teacher
from coursework.models.activity import Activity
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.lesson import Lesson
from coursework.models.objective_mastery import ObjectiveMastery
from coursework.models.point_award import PointAward
from coursework.models.submission import ActivitySubmission
from coursework.models.user import User
from coursework.services import analytics
from coursework.services.access import require_course_owner
from coursework.services.scoring import mean, round_half_up

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


async def _mastery_records(db: AsyncSession, course_id: int) -> list[ObjectiveMastery]:
    result = await db.execute(
        select(ObjectiveMastery).where(ObjectiveMastery.course_id == course_id)
    )
    return list(result.scalars().all())


async def _students(db: AsyncSession, course_id: int) -> list[tuple[int, str]]:
    result = await db.execute(
        select(User.id, User.name)
        .join(Enrollment, Enrollment.student_id == User.id)
        .where(Enrollment.course_id == course_id)
    )
    return [(row.id, row.name) for row in result.all()]


async def _rows(db: AsyncSession, model, course_id: int) -> list:
    result = await db.execute(select(model).where(model.course_id == course_id))
    return list(result.scalars().all())


@router.get("/courses/{course_id}/objectives")
async def objectives(
    course_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)
    summary = analytics.objective_mastery_summary(
        course.learning_objectives, await _mastery_records(db, course.id)
    )
    return {
        "course_id": course.id,
        "objectives": summary,
        "distribution": analytics.bucket_distribution(summary),
    }


@router.get("/courses/{course_id}/lessons")
async def lessons(
    course_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)
    return analytics.lesson_mastery(
        await _rows(db, Lesson, course.id), await _mastery_records(db, course.id)
    )


@router.get("/courses/{course_id}/students")
async def students(
    course_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)
    return analytics.student_progress(
        await _students(db, course.id),
        await _rows(db, Activity, course.id),
        await _rows(db, ActivitySubmission, course.id),
        await _rows(db, PointAward, course.id),
    )


@router.get("/courses/{course_id}/engagement")
async def engagement(
    course_id: int,
    limit: int = Query(default=20, ge=1, le=200),
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)
    return analytics.engagement(
        await _rows(db, Activity, course.id),
        await _rows(db, ActivitySubmission, course.id),
        await _rows(db, PointAward, course.id),
        limit=limit,
    )


@router.get("/courses/{course_id}/leaderboard")
async def leaderboard(
    course_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)
    return analytics.leaderboard(
        await _students(db, course.id),
        await _rows(db, PointAward, course.id),
        limit=limit,
    )


@router.get("/overview")
async def overview(
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    """One row per course the teacher owns."""
    courses = (
        await db.execute(
            select(Course).where(Course.teacher_id == user.id).order_by(Course.id)
        )
    ).scalars().all()

    rows = []
    for course in courses:
        records = await _mastery_records(db, course.id)
        summary = analytics.objective_mastery_summary(course.learning_objectives, records)
        submissions = await _rows(db, ActivitySubmission, course.id)
        rows.append({
            "course_id": course.id,
            "title": course.title,
            "students": len(await _students(db, course.id)),
            "activities": len(await _rows(db, Activity, course.id)),
            "completions": sum(
                1 for s in submissions if s.status in analytics.COMPLETE_STATUSES
            ),
            "average_mastery": round_half_up(mean(r.mastery_score for r in records)),
            "distribution": analytics.bucket_distribution(summary),
        })
    return {"courses": rows}
