"""Invite/join routes - resolve a join code and enroll idempotently."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import get_db
from coursework.dependencies import require_student
from coursework.models.user import User
from coursework.services.enrollment import join_course, join_lesson

router = APIRouter(prefix="/api/join", tags=["join"])


class JoinRequest(BaseModel):
    join_code: str = Field(min_length=1, max_length=32)


@router.post("/course")
async def join_course_by_code(
    body: JoinRequest,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Join a course; joining again is a successful no-op."""
    course, created = await join_course(db, user.id, body.join_code)
    return {
        "success": True,
        "already_enrolled": not created,
        "course": {
            "id": course.id,
            "title": course.title,
            "description": course.description,
        },
    }


@router.post("/lesson")
async def join_lesson_by_code(
    body: JoinRequest,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    lesson, created = await join_lesson(db, user.id, body.join_code)
    return {
        "success": True,
        "already_enrolled": not created,
        "lesson": {
            "id": lesson.id,
            "title": lesson.title,
            "description": lesson.description,
            "course_id": lesson.course_id,
        },
    }
