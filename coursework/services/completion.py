"""Completion state machine - one student's attempt at one activity.

    not_started -> in_progress -> submitted -> graded
                              \\-> abandoned -> in_progress

Only quiz and assignment attempts can be graded; every other type stops at
``submitted``. Points are always computed here from the raw interaction
data, never taken from the client. Every write is an upsert keyed on
(student, activity), so retries and double-clicks are harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.config import settings
from coursework.database import commit_or_raise
from coursework.errors import InvalidTransition, PersistenceError, ValidationFailed
from coursework.models.activity import Activity
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.lesson import Lesson
from coursework.models.point_award import PointAward
from coursework.models.submission import ActivitySubmission
from coursework.services import scoring
from coursework.services.access import AssignmentTarget
from coursework.services.collaboration import collaboration_counts
from coursework.services.generation import ContentGenerator, GenerationPrompt
from coursework.services.mastery import assessed_objectives, objective_updates, record_mastery
from coursework.services.outbox import get_outbox

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, set[str]] = {
    "not_started": {"in_progress"},
    "in_progress": {"submitted", "abandoned"},
    "abandoned": {"in_progress"},
    "submitted": {"graded"},
    "graded": {"graded"},
}

COMPLETION_WRITE = "activity_completion"


def can_transition(current: str, target: str, activity_type: str) -> bool:
    if target not in TRANSITIONS.get(current, set()):
        return False
    if target == "graded" and activity_type not in scoring.GRADABLE_TYPES:
        return False
    return True


def check_transition(current: str, target: str, activity_type: str) -> None:
    if not can_transition(current, target, activity_type):
        reason = None
        if target == "graded" and activity_type not in scoring.GRADABLE_TYPES:
            reason = f"{activity_type} activities are not graded"
        raise InvalidTransition(current, target, reason)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ===================================================================
# Read model
# ===================================================================


def can_complete(activity: Activity, submission: ActivitySubmission) -> bool:
    """Whether the explicit Complete action is currently enabled."""
    if submission.is_complete or submission.status == "abandoned":
        return False
    if activity.activity_type in scoring.PROGRESS_GATED_TYPES:
        return scoring.progress_gate_open(submission.progress_ratio or 0.0)
    return True


def attempt_view(activity: Activity, submission: ActivitySubmission) -> dict:
    """What the student's client shows for an attempt; answers stay hidden until submitted."""
    state = submission.attempt_state
    view = {
        "activity_id": activity.id,
        "activity_type": activity.activity_type,
        "student_id": submission.student_id,
        "status": submission.status,
        "progress_ratio": submission.progress_ratio or 0.0,
        "can_complete": can_complete(activity, submission),
        "score": submission.score,
        "points_earned": submission.points_earned or 0,
        "max_points": activity.points,
        "feedback": submission.feedback,
        "started_at": _iso(submission.started_at),
        "submitted_at": _iso(submission.submitted_at),
        "graded_at": _iso(submission.graded_at),
    }

    if activity.activity_type == "quiz" and "results" in state:
        view["quiz"] = state["results"]
    elif activity.activity_type == "interactive":
        steps = activity.content.get("steps") or []
        view["simulation"] = {
            "current_step": state.get("current_step", 0),
            "total_steps": len(steps),
            "completed_steps": state.get("completed_steps", []),
            "hints_used": state.get("hints_used", 0),
        }
    elif activity.activity_type == "ai_chat":
        mastery = state.get("mastery", {})
        view["tutor"] = {
            "mastery": mastery,
            "overall_mastery": round(scoring.overall_mastery(mastery), 1),
            "turns": state.get("turns", 0),
        }
    return view


# ===================================================================
# Persistence helpers
# ===================================================================


async def _find_submission(
    db: AsyncSession, student_id: int, activity_id: int
) -> ActivitySubmission | None:
    result = await db.execute(
        select(ActivitySubmission).where(
            ActivitySubmission.student_id == student_id,
            ActivitySubmission.activity_id == activity_id,
        )
    )
    return result.scalar_one_or_none()


async def get_submission(
    db: AsyncSession, student_id: int, activity: Activity
) -> ActivitySubmission:
    """Existing record, or an unsaved ``not_started`` one."""
    submission = await _find_submission(db, student_id, activity.id)
    if submission is None:
        submission = ActivitySubmission(
            student_id=student_id,
            activity_id=activity.id,
            course_id=activity.course_id,
            status="not_started",
            progress_ratio=0.0,
            points_earned=0,
            attempt_state_json="{}",
        )
    return submission


async def _upsert_submission(
    db: AsyncSession, student_id: int, activity: Activity
) -> ActivitySubmission:
    """Load or insert the (student, activity) record, surviving a concurrent insert."""
    submission = await _find_submission(db, student_id, activity.id)
    if submission is not None:
        return submission

    activity_id = activity.id
    submission = await get_submission(db, student_id, activity)
    db.add(submission)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info(
            "Concurrent insert of submission student=%d activity=%d; reusing it",
            student_id, activity_id,
        )
        # Rollback expired the activity; reload it for the caller
        await db.refresh(activity)
        submission = await _find_submission(db, student_id, activity_id)
        if submission is None:
            raise PersistenceError("Could not create attempt record")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            "Failed to create submission student=%d activity=%d: %s", student_id, activity_id, e
        )
        raise PersistenceError("Could not create attempt record, please retry") from e
    return submission


async def upsert_award(
    db: AsyncSession,
    student_id: int,
    activity: Activity,
    points: int,
    reason: str,
) -> PointAward:
    """One award per (student, activity); later calls overwrite the amount."""
    result = await db.execute(
        select(PointAward).where(
            PointAward.student_id == student_id,
            PointAward.activity_id == activity.id,
        )
    )
    award = result.scalar_one_or_none()
    if award is None:
        award = PointAward(
            student_id=student_id,
            course_id=activity.course_id,
            activity_id=activity.id,
            lesson_id=activity.lesson_id,
            points=points,
            reason=reason,
        )
        db.add(award)
    else:
        award.points = points
        award.reason = reason
    return award


async def refresh_enrollment_progress(
    db: AsyncSession, student_id: int, course_id: int
) -> Enrollment | None:
    """Recompute completed / assigned activities for the student's enrollment."""
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
        )
    )
    enrollment = result.scalar_one_or_none()
    if enrollment is None:
        return None

    activities = (
        await db.execute(select(Activity).where(Activity.course_id == course_id))
    ).scalars().all()
    assigned_ids = {
        a.id for a in activities
        if AssignmentTarget.of(a).includes(
            student_id, empty_means_all=settings.EMPTY_TARGET_MEANS_ALL
        )
    }
    completed = (
        await db.execute(
            select(ActivitySubmission.activity_id).where(
                ActivitySubmission.student_id == student_id,
                ActivitySubmission.course_id == course_id,
                ActivitySubmission.status.in_(("submitted", "graded")),
            )
        )
    ).scalars().all()
    done = len(assigned_ids.intersection(completed))

    enrollment.progress_percent = (
        round(done / len(assigned_ids) * 100, 2) if assigned_ids else 0.0
    )
    enrollment.last_activity_at = _now()
    return enrollment


# ===================================================================
# Transitions
# ===================================================================


def _begin(submission: ActivitySubmission, activity: Activity) -> None:
    """Move a fresh or abandoned attempt to in_progress (no-op otherwise)."""
    if submission.status in ("not_started", "abandoned"):
        check_transition(submission.status, "in_progress", activity.activity_type)
        if submission.status == "abandoned":
            submission.attempt_state = {}
            submission.progress_ratio = 0.0
        submission.status = "in_progress"
        submission.started_at = _now()


async def start_attempt(db: AsyncSession, student_id: int, activity: Activity) -> dict:
    submission = await _upsert_submission(db, student_id, activity)
    if submission.status in ("not_started", "abandoned"):
        _begin(submission, activity)
        await commit_or_raise(db)
        logger.info("Student %d started activity %d", student_id, activity.id)
    return attempt_view(activity, submission)


async def abandon_attempt(db: AsyncSession, student_id: int, activity: Activity) -> dict:
    submission = await _upsert_submission(db, student_id, activity)
    if submission.status == "abandoned":
        return attempt_view(activity, submission)
    check_transition(submission.status, "abandoned", activity.activity_type)
    submission.status = "abandoned"
    await commit_or_raise(db)
    logger.info("Student %d abandoned activity %d", student_id, activity.id)
    return attempt_view(activity, submission)


async def record_progress(
    db: AsyncSession,
    student_id: int,
    activity: Activity,
    ratio: float,
    *,
    ended: bool = False,
) -> dict:
    """Store watch/read progress; an end-of-content event completes once the gate is open."""
    if activity.activity_type not in scoring.PROGRESS_GATED_TYPES:
        raise ValidationFailed(
            "progress_ratio", f"{activity.activity_type} activities do not track progress"
        )

    submission = await _upsert_submission(db, student_id, activity)
    if submission.is_complete:
        return attempt_view(activity, submission)

    before = attempt_view(activity, submission)
    _begin(submission, activity)
    # Progress never moves backwards
    submission.progress_ratio = max(submission.progress_ratio or 0.0, scoring.clamp_ratio(ratio))

    if ended and scoring.progress_gate_open(submission.progress_ratio):
        return await _finish(
            db, submission, activity, points=activity.points, score=None, before=before
        )

    await commit_or_raise(db)
    return attempt_view(activity, submission)


async def submit_quiz(
    db: AsyncSession, student_id: int, activity: Activity, answers: list
) -> dict:
    """Grade and submit quiz answers; resubmitting a finished quiz changes nothing."""
    if activity.activity_type != "quiz":
        raise ValidationFailed("answers", "Only quiz activities accept answers")

    submission = await _upsert_submission(db, student_id, activity)
    if submission.is_complete:
        return attempt_view(activity, submission)

    questions = activity.content.get("questions") or []
    if not questions:
        raise ValidationFailed("answers", "This quiz has no questions")

    before = attempt_view(activity, submission)
    _begin(submission, activity)
    result = scoring.score_quiz(questions, answers, activity.points)

    state = submission.attempt_state
    state["answers"] = answers
    state["results"] = {
        "correct": result.correct,
        "total": result.total,
        "score": result.score,
        "questions": [
            {
                "index": q.index,
                "is_correct": q.is_correct,
                "answer": q.answer,
                "correct_answer": q.correct_answer,
                "explanation": q.explanation,
            }
            for q in result.questions
        ],
    }
    state["objective_scores"] = scoring.objective_scores(result)
    submission.attempt_state = state

    return await _finish(
        db, submission, activity, points=result.points, score=result.score, before=before
    )


@dataclass
class StepOutcome:
    is_correct: bool
    message: str
    attempt: dict


async def simulation_step(
    db: AsyncSession,
    student_id: int,
    activity: Activity,
    action: str,
    matcher: scoring.ActionMatcher | None = None,
) -> StepOutcome:
    """Check a free-text action against the current simulation step."""
    if activity.activity_type != "interactive":
        raise ValidationFailed("action", "Only interactive activities have steps")
    if not action or not action.strip():
        raise ValidationFailed("action", "Action is required")

    matcher = matcher or scoring.get_action_matcher()
    steps = activity.content.get("steps") or []

    submission = await _upsert_submission(db, student_id, activity)
    if submission.is_complete:
        raise InvalidTransition(submission.status, "in_progress", "Simulation already completed")
    before = attempt_view(activity, submission)
    _begin(submission, activity)

    state = submission.attempt_state
    current = state.get("current_step", 0)
    if current >= len(steps):
        raise InvalidTransition(submission.status, "in_progress", "No steps remaining")

    step = steps[current]
    is_correct = matcher.matches(action, str(step.get("action", "")))
    if is_correct:
        state["completed_steps"] = state.get("completed_steps", []) + [current]
        state["current_step"] = current + 1
        message = f"Correct! {step.get('description', '')}".strip()
    else:
        message = f"Not quite right. {step.get('hint', '')}".strip()
    state.setdefault("hints_used", 0)
    submission.attempt_state = state

    if is_correct and state["current_step"] >= len(steps):
        points = scoring.simulation_points(steps, state["completed_steps"], state["hints_used"])
        view = await _finish(
            db, submission, activity, points=points, score=None, before=before
        )
        return StepOutcome(is_correct=True, message=message, attempt=view)

    await commit_or_raise(db)
    return StepOutcome(is_correct=is_correct, message=message, attempt=attempt_view(activity, submission))


async def simulation_hint(db: AsyncSession, student_id: int, activity: Activity) -> dict:
    if activity.activity_type != "interactive":
        raise ValidationFailed("hint", "Only interactive activities have hints")
    steps = activity.content.get("steps") or []

    submission = await _upsert_submission(db, student_id, activity)
    if submission.is_complete:
        raise InvalidTransition(submission.status, "in_progress", "Simulation already completed")
    _begin(submission, activity)

    state = submission.attempt_state
    current = state.get("current_step", 0)
    if current >= len(steps):
        raise InvalidTransition(submission.status, "in_progress", "No steps remaining")
    state["hints_used"] = state.get("hints_used", 0) + 1
    submission.attempt_state = state
    await commit_or_raise(db)
    return {"hint": steps[current].get("hint", ""), "attempt": attempt_view(activity, submission)}


async def tutor_turn(
    db: AsyncSession,
    student_id: int,
    activity: Activity,
    message: str,
    generator: ContentGenerator,
) -> dict:
    """One tutor exchange; the gateway re-estimates per-objective mastery.

    A gateway failure leaves the attempt exactly as it was so the student can retry.
    """
    if activity.activity_type != "ai_chat":
        raise ValidationFailed("message", "Only AI tutor activities accept messages")
    if not message or not message.strip():
        raise ValidationFailed("message", "Message is required")

    course = await db.get(Course, activity.course_id)
    lesson = await db.get(Lesson, activity.lesson_id) if activity.lesson_id else None
    objectives = assessed_objectives(activity, lesson, course)

    submission = await _upsert_submission(db, student_id, activity)
    if submission.is_complete:
        raise InvalidTransition(submission.status, "in_progress", "Tutor session already completed")

    state = submission.attempt_state
    mastery: dict[str, float] = state.get("mastery") or {obj: 0.0 for obj in objectives}

    prompt = GenerationPrompt(
        topic=activity.title,
        subject=course.subject,
        grade_level=course.grade_level,
        learning_objectives=objectives,
        student_message=message.strip(),
        current_mastery=mastery,
    )
    turn = await generator.generate(prompt, "tutor_turn")

    _begin(submission, activity)
    for update in turn["objective_updates"]:
        objective = update["objective"]
        if objective not in mastery:
            logger.debug("Ignoring mastery update for unknown objective %r", objective)
            continue
        level = scoring.clamp_mastery(update["mastery_level"])
        mastery[objective] = level
        await record_mastery(db, student_id, activity.course_id, objective, level, replace=True)

    state["mastery"] = mastery
    state["turns"] = state.get("turns", 0) + 1
    submission.attempt_state = state
    await commit_or_raise(db)

    return {"reply": turn["reply"], "attempt": attempt_view(activity, submission)}


async def complete_attempt(
    db: AsyncSession, student_id: int, activity: Activity
) -> dict:
    """The explicit Complete action. Completing twice is a no-op."""
    submission = await _upsert_submission(db, student_id, activity)
    if submission.is_complete:
        return attempt_view(activity, submission)
    if submission.status == "abandoned":
        raise InvalidTransition("abandoned", "submitted", "Restart the activity before completing it")

    kind = activity.activity_type
    state = submission.attempt_state
    score = None

    if kind == "quiz":
        raise InvalidTransition(submission.status, "submitted", "Submit quiz answers to complete a quiz")
    elif kind in scoring.PROGRESS_GATED_TYPES:
        if not scoring.progress_gate_open(submission.progress_ratio or 0.0):
            raise InvalidTransition(
                submission.status, "submitted",
                f"Progress {submission.progress_ratio or 0.0:.0%} is below the "
                f"{settings.COMPLETION_PROGRESS_THRESHOLD:.0%} required to complete",
            )
        points = activity.points
    elif kind == "interactive":
        points = scoring.simulation_points(
            activity.content.get("steps") or [],
            state.get("completed_steps", []),
            state.get("hints_used", 0),
        )
    elif kind == "collaborative":
        participants, contributions = await collaboration_counts(db, activity.id)
        points = scoring.collaboration_points(participants, contributions)
        state["participants"] = participants
        state["contributions"] = contributions
        submission.attempt_state = state
    elif kind == "ai_chat":
        mastery = state.get("mastery", {})
        points = scoring.tutor_points(mastery)
        score = round(scoring.overall_mastery(mastery), 1)
    elif kind == "assignment":
        points = 0
    else:
        points = activity.points

    before = attempt_view(activity, submission)
    _begin(submission, activity)
    return await _finish(db, submission, activity, points=points, score=score, before=before)


async def _finish(
    db: AsyncSession,
    submission: ActivitySubmission,
    activity: Activity,
    *,
    points: int,
    score: float | None,
    before: dict,
) -> dict:
    """Submit the attempt, award points and update mastery and enrollment in one commit.

    If the commit fails the attempt is reported in its pre-completion state and
    the write is queued in the outbox for replay.
    """
    check_transition(submission.status, "submitted", activity.activity_type)
    submission.status = "submitted"
    submission.submitted_at = _now()
    submission.points_earned = points
    submission.score = score

    # Rollback expires every loaded row, so capture the write up front.
    # mastery_updates stays None until staged; replay recomputes it then.
    student_id, activity_id = submission.student_id, activity.id
    payload = {
        "student_id": student_id,
        "activity_id": activity_id,
        "points": points,
        "score": score,
        "progress_ratio": submission.progress_ratio or 0.0,
        "attempt_state": submission.attempt_state,
        "mastery_updates": None,
    }

    try:
        payload["mastery_updates"] = await _apply_completion_effects(db, submission, activity)
        await db.commit()
    except IntegrityError:
        # A concurrent completion won the race; report what it stored
        await db.rollback()
        existing = await _find_submission(db, student_id, activity_id)
        if existing is not None and existing.is_complete:
            logger.info(
                "Duplicate completion of activity %d by student %d ignored",
                activity_id, student_id,
            )
            await db.refresh(activity)
            return attempt_view(activity, existing)
        raise PersistenceError("Could not save your progress, please retry", state=before)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            "Failed to persist completion of activity %d by student %d: %s",
            activity_id, student_id, e,
        )
        get_outbox().enqueue(COMPLETION_WRITE, (student_id, activity_id), payload, error=str(e))
        raise PersistenceError(
            "Could not save your completion; it has been queued for retry", state=before
        ) from e

    logger.info(
        "Student %d completed activity %d (%s) for %d points",
        submission.student_id, activity.id, activity.activity_type, points,
    )
    return attempt_view(activity, submission)


async def _apply_completion_effects(
    db: AsyncSession, submission: ActivitySubmission, activity: Activity
) -> dict[str, float]:
    """Stage the award, mastery and enrollment writes that accompany a completion."""
    await upsert_award(
        db, submission.student_id, activity, submission.points_earned,
        reason=f"Completed {activity.activity_type}: {activity.title}",
    )

    updates = await _mastery_updates(db, submission, activity)
    for objective, value in updates.items():
        await record_mastery(db, submission.student_id, activity.course_id, objective, value)

    await refresh_enrollment_progress(db, submission.student_id, activity.course_id)
    return updates


async def _mastery_updates(
    db: AsyncSession, submission: ActivitySubmission, activity: Activity
) -> dict[str, float]:
    if activity.activity_type != "quiz" or submission.score is None:
        return {}
    course = await db.get(Course, activity.course_id)
    lesson = await db.get(Lesson, activity.lesson_id) if activity.lesson_id else None
    return objective_updates(
        assessed_objectives(activity, lesson, course),
        submission.attempt_state.get("objective_scores", {}),
        submission.score,
    )


async def _replay_completion(db: AsyncSession, payload: dict) -> None:
    """Outbox handler: re-apply a completion that failed to commit."""
    activity = await db.get(Activity, payload["activity_id"])
    if activity is None:
        logger.warning("Dropping queued completion for missing activity %s", payload["activity_id"])
        return

    submission = await _upsert_submission(db, payload["student_id"], activity)
    if submission.is_complete:
        return
    _begin(submission, activity)
    submission.progress_ratio = max(submission.progress_ratio or 0.0, payload["progress_ratio"])
    submission.attempt_state = payload["attempt_state"]
    submission.status = "submitted"
    submission.submitted_at = _now()
    submission.points_earned = payload["points"]
    submission.score = payload["score"]

    await upsert_award(
        db, submission.student_id, activity, submission.points_earned,
        reason=f"Completed {activity.activity_type}: {activity.title}",
    )
    updates = payload.get("mastery_updates")
    if updates is None:
        updates = await _mastery_updates(db, submission, activity)
    for objective, value in updates.items():
        await record_mastery(db, submission.student_id, activity.course_id, objective, value)
    await refresh_enrollment_progress(db, submission.student_id, activity.course_id)


get_outbox().register(COMPLETION_WRITE, _replay_completion)


# ===================================================================
# Teacher grading
# ===================================================================


async def grade_submission(
    db: AsyncSession,
    activity: Activity,
    student_id: int,
    score: float,
    *,
    points: int | None = None,
    feedback: str | None = None,
) -> dict:
    """Grade (or regrade) a submitted quiz or assignment attempt."""
    if not 0 <= score <= 100:
        raise ValidationFailed("score", "Score must be between 0 and 100")
    if points is not None and not 0 <= points <= activity.points:
        raise ValidationFailed("points", f"Points must be between 0 and {activity.points}")

    submission = await _find_submission(db, student_id, activity.id)
    if submission is None:
        raise InvalidTransition("not_started", "graded", "Nothing has been submitted yet")
    check_transition(submission.status, "graded", activity.activity_type)

    awarded = points if points is not None else scoring.round_half_up(score / 100 * activity.points)
    submission.status = "graded"
    submission.score = score
    submission.points_earned = awarded
    submission.feedback = feedback
    submission.graded_at = _now()
    await upsert_award(db, student_id, activity, awarded, reason=f"Graded: {activity.title}")

    await commit_or_raise(db)
    logger.info("Activity %d graded for student %d: %s%% (%d pts)", activity.id, student_id, score, awarded)
    return attempt_view(activity, submission)
