"""Enrollment service - join codes and the idempotent join flow."""

from __future__ import annotations

import logging
import secrets
import string

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.config import settings
from coursework.errors import NotFound, PersistenceError
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.lesson import Lesson

logger = logging.getLogger(__name__)

# No 0/O or 1/I, codes are read aloud and typed from slides
JOIN_CODE_ALPHABET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "01IO")


def normalize_code(code: str) -> str:
    return code.strip().upper()


async def generate_join_code(db: AsyncSession, model: type[Course] | type[Lesson]) -> str:
    """Return a code not yet used by any row of ``model``."""
    while True:
        code = "".join(
            secrets.choice(JOIN_CODE_ALPHABET) for _ in range(settings.JOIN_CODE_LENGTH)
        )
        taken = await db.execute(select(model.id).where(model.join_code == code))
        if taken.scalar_one_or_none() is None:
            return code


async def find_enrollment(
    db: AsyncSession, student_id: int, course_id: int
) -> Enrollment | None:
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
        )
    )
    return result.scalar_one_or_none()


async def enroll(db: AsyncSession, student_id: int, course_id: int) -> tuple[Enrollment, bool]:
    """Insert the (student, course) enrollment unless it exists.

    Returns ``(enrollment, created)``. A concurrent duplicate insert is
    rejected by the unique constraint and resolved to the existing row.
    """
    existing = await find_enrollment(db, student_id, course_id)
    if existing is not None:
        return existing, False

    enrollment = Enrollment(student_id=student_id, course_id=course_id, progress_percent=0.0)
    db.add(enrollment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await find_enrollment(db, student_id, course_id)
        if existing is None:
            raise PersistenceError("Could not join the course, please retry")
        logger.info("Concurrent join of course %d by student %d resolved", course_id, student_id)
        return existing, False
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to enroll student %d in course %d: %s", student_id, course_id, e)
        raise PersistenceError("Could not join the course, please retry") from e

    logger.info("Student %d enrolled in course %d", student_id, course_id)
    return enrollment, True


async def join_course(db: AsyncSession, student_id: int, join_code: str) -> tuple[Course, bool]:
    result = await db.execute(
        select(Course).where(func.upper(Course.join_code) == normalize_code(join_code))
    )
    course = result.scalar_one_or_none()
    if course is None:
        raise NotFound("Invalid join code")
    _, created = await enroll(db, student_id, course.id)
    if not created:
        # May have been expired by a rollback in enroll
        await db.refresh(course)
    return course, created


async def join_lesson(db: AsyncSession, student_id: int, join_code: str) -> tuple[Lesson, bool]:
    """Joining a lesson enrolls the student in the lesson's course."""
    result = await db.execute(
        select(Lesson).where(func.upper(Lesson.join_code) == normalize_code(join_code))
    )
    lesson = result.scalar_one_or_none()
    if lesson is None:
        raise NotFound("Invalid join code")
    _, created = await enroll(db, student_id, lesson.course_id)
    if not created:
        await db.refresh(lesson)
    return lesson, created
