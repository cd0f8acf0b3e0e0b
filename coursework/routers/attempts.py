"""Attempt routes - drive one student's completion state machine for an activity.

Every route re-evaluates access, so a student dropped from an activity's
target can no longer act on it even with an attempt already in progress.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.database import get_db
from coursework.dependencies import get_generator, require_student, require_teacher
from coursework.models.activity import Activity
from coursework.models.submission import ActivitySubmission
from coursework.models.user import User
from coursework.routers.activities import load_assignment_context, load_owned_activity
from coursework.services import completion
from coursework.services.access import require_activity_access
from coursework.services.generation import ContentGenerator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activities", tags=["attempts"])


class ProgressRequest(BaseModel):
    progress_ratio: float = Field(ge=0)
    ended: bool = False


class QuizRequest(BaseModel):
    answers: list[int | str | None]


class StepRequest(BaseModel):
    action: str


class TutorRequest(BaseModel):
    message: str


class GradeRequest(BaseModel):
    score: float
    points: int | None = None
    feedback: str | None = None


async def _accessible(
    db: AsyncSession, user: User, activity_id: int, assignment_id: int | None
) -> Activity:
    assignment = await load_assignment_context(db, activity_id, assignment_id)
    return await require_activity_access(db, user, activity_id, assignment)


# ─── Student attempt ─────────────────────────────────────────────────


@router.get("/{activity_id}/attempt")
async def get_attempt(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    submission = await completion.get_submission(db, user.id, activity)
    return completion.attempt_view(activity, submission)


@router.post("/{activity_id}/attempt/start")
async def start(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.start_attempt(db, user.id, activity)


@router.post("/{activity_id}/attempt/progress")
async def progress(
    activity_id: int,
    body: ProgressRequest,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Report watch/read progress; ``ended`` marks the end of the media."""
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.record_progress(
        db, user.id, activity, body.progress_ratio, ended=body.ended
    )


@router.post("/{activity_id}/attempt/quiz")
async def submit_quiz(
    activity_id: int,
    body: QuizRequest,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.submit_quiz(db, user.id, activity, body.answers)


@router.post("/{activity_id}/attempt/simulation/step")
async def simulation_step(
    activity_id: int,
    body: StepRequest,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    outcome = await completion.simulation_step(db, user.id, activity, body.action)
    return {
        "is_correct": outcome.is_correct,
        "message": outcome.message,
        "attempt": outcome.attempt,
    }


@router.post("/{activity_id}/attempt/simulation/hint")
async def simulation_hint(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.simulation_hint(db, user.id, activity)


@router.post("/{activity_id}/attempt/tutor")
async def tutor(
    activity_id: int,
    body: TutorRequest,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    generator: ContentGenerator = Depends(get_generator),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.tutor_turn(db, user.id, activity, body.message, generator)


@router.post("/{activity_id}/attempt/complete")
async def complete(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.complete_attempt(db, user.id, activity)


@router.post("/{activity_id}/attempt/abandon")
async def abandon(
    activity_id: int,
    assignment_id: int | None = None,
    user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    activity = await _accessible(db, user, activity_id, assignment_id)
    return await completion.abandon_attempt(db, user.id, activity)


# ─── Teacher review ──────────────────────────────────────────────────


@router.get("/{activity_id}/submissions")
async def list_submissions(
    activity_id: int,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    activity = await load_owned_activity(db, user, activity_id)
    result = await db.execute(
        select(ActivitySubmission, User)
        .join(User, User.id == ActivitySubmission.student_id)
        .where(ActivitySubmission.activity_id == activity.id)
        .order_by(User.name)
    )
    return [
        {**completion.attempt_view(activity, sub), "student_name": student.name}
        for sub, student in result.all()
    ]


@router.post("/{activity_id}/submissions/{student_id}/grade")
async def grade(
    activity_id: int,
    student_id: int,
    body: GradeRequest,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_db),
):
    activity = await load_owned_activity(db, user, activity_id)
    return await completion.grade_submission(
        db, activity, student_id, body.score, points=body.points, feedback=body.feedback
    )
