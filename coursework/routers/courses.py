"""Course, lesson and enrollment routes."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import commit_or_raise, get_db
from coursework.dependencies import get_current_user, require_teacher
from coursework.errors import ValidationFailed
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.lesson import Lesson
from coursework.models.user import User
from coursework.services.access import require_course_member, require_course_owner
from coursework.services.enrollment import generate_join_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses", tags=["courses"])


class CourseCreate(BaseModel):
    title: str = Field(min_length=1)
    subject: str | None = None
    grade_level: str | None = None
    description: str | None = None
    learning_objectives: list[str] = []


class LessonCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    position: int | None = None
    learning_objectives: list[str] = []


def course_out(course: Course, *, include_code: bool = False) -> dict:
    out = {
        "id": course.id,
        "title": course.title,
        "subject": course.subject,
        "grade_level": course.grade_level,
        "description": course.description,
        "learning_objectives": course.learning_objectives,
        "teacher_id": course.teacher_id,
    }
    if include_code:
        out["join_code"] = course.join_code
    return out


def lesson_out(lesson: Lesson, *, include_code: bool = False) -> dict:
    out = {
        "id": lesson.id,
        "course_id": lesson.course_id,
        "title": lesson.title,
        "description": lesson.description,
        "position": lesson.position,
        "learning_objectives": lesson.learning_objectives,
    }
    if include_code:
        out["join_code"] = lesson.join_code
    return out


def _clean_objectives(objectives: list[str]) -> list[str]:
    return list(dict.fromkeys(o.strip() for o in objectives if o and o.strip()))


@router.post("", status_code=201)
async def create_course(
    body: CourseCreate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = Course(
        teacher_id=user.id,
        title=body.title.strip(),
        subject=body.subject,
        grade_level=body.grade_level,
        description=body.description,
        join_code=await generate_join_code(db, Course),
    )
    course.learning_objectives = _clean_objectives(body.learning_objectives)
    db.add(course)
    await commit_or_raise(db)
    await db.refresh(course)
    logger.info("Teacher %d created course %d", user.id, course.id)
    return course_out(course, include_code=True)


@router.get("")
async def list_courses(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Teachers see the courses they own; students the ones they are enrolled in."""
    if user.is_teacher:
        result = await db.execute(
            select(Course).where(Course.teacher_id == user.id).order_by(Course.created_at.desc())
        )
        return [course_out(c, include_code=True) for c in result.scalars().all()]

    result = await db.execute(
        select(Course, Enrollment)
        .join(Enrollment, Enrollment.course_id == Course.id)
        .where(Enrollment.student_id == user.id)
        .order_by(Enrollment.enrolled_at.desc())
    )
    return [
        {
            **course_out(course),
            "progress_percent": enrollment.progress_percent,
            "last_activity_at": (
                enrollment.last_activity_at.isoformat() if enrollment.last_activity_at else None
            ),
        }
        for course, enrollment in result.all()
    ]


@router.get("/{course_id}")
async def get_course(
    course_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_member(db, user, course_id)
    return course_out(course, include_code=course.teacher_id == user.id)


@router.post("/{course_id}/join-code")
async def regenerate_join_code(
    course_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    """Issue a new join code; the old one stops working, existing enrollments stay."""
    course = await require_course_owner(db, user, course_id)
    course.join_code = await generate_join_code(db, Course)
    await commit_or_raise(db)
    logger.info("Course %d join code regenerated", course.id)
    return {"course_id": course.id, "join_code": course.join_code}


@router.get("/{course_id}/students")
async def list_students(
    course_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    await require_course_owner(db, user, course_id)
    result = await db.execute(
        select(User, Enrollment)
        .join(Enrollment, Enrollment.student_id == User.id)
        .where(Enrollment.course_id == course_id)
        .order_by(User.name)
    )
    return [
        {
            "student_id": student.id,
            "name": student.name,
            "email": student.email,
            "progress_percent": enrollment.progress_percent,
            "enrolled_at": enrollment.enrolled_at.isoformat() if enrollment.enrolled_at else None,
        }
        for student, enrollment in result.all()
    ]


@router.post("/{course_id}/lessons", status_code=201)
async def create_lesson(
    course_id: int,
    body: LessonCreate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_owner(db, user, course_id)

    objectives = _clean_objectives(body.learning_objectives)
    unknown = [o for o in objectives if o not in course.learning_objectives]
    if unknown:
        raise ValidationFailed(
            "learning_objectives",
            f"Not objectives of this course: {', '.join(unknown)}",
        )

    position = body.position
    if position is None:
        existing = await db.execute(select(Lesson.position).where(Lesson.course_id == course.id))
        position = max(existing.scalars().all(), default=-1) + 1

    lesson = Lesson(
        course_id=course.id,
        title=body.title.strip(),
        description=body.description,
        position=position,
        join_code=await generate_join_code(db, Lesson),
    )
    lesson.learning_objectives = objectives
    db.add(lesson)
    await commit_or_raise(db)
    await db.refresh(lesson)
    return lesson_out(lesson, include_code=True)


@router.get("/{course_id}/lessons")
async def list_lessons(
    course_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    course = await require_course_member(db, user, course_id)
    result = await db.execute(
        select(Lesson).where(Lesson.course_id == course.id).order_by(Lesson.position, Lesson.id)
    )
    owner = course.teacher_id == user.id
    return [lesson_out(l, include_code=owner) for l in result.scalars().all()]
