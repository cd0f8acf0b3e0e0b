"""Learning-objective mastery updates driven by completion events and tutor turns."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.models.activity import Activity
from coursework.models.course import Course
from coursework.models.lesson import Lesson
from coursework.models.objective_mastery import ObjectiveMastery
from coursework.services.scoring import clamp_mastery

logger = logging.getLogger(__name__)


def assessed_objectives(
    activity: Activity, lesson: Lesson | None, course: Course
) -> list[str]:
    """Objectives an activity assesses, most specific source first.

    The activity's own ``learning_objectives`` content key wins, then the
    lesson's objectives, then the course's.
    """
    objectives = activity.content.get("learning_objectives") or []
    if not objectives and lesson is not None:
        objectives = lesson.learning_objectives
    if not objectives:
        objectives = course.learning_objectives
    return list(dict.fromkeys(objectives))


def objective_updates(
    objectives: list[str], tagged_scores: dict[str, int], overall_score: float
) -> dict[str, float]:
    """Scores to record per objective.

    Tagged questions score their own objective; when nothing is tagged every
    assessed objective receives the overall score.
    """
    if tagged_scores:
        return {obj: float(score) for obj, score in tagged_scores.items()}
    return {obj: float(overall_score) for obj in objectives}


async def record_mastery(
    db: AsyncSession,
    student_id: int,
    course_id: int,
    objective: str,
    score: float,
    *,
    replace: bool = False,
) -> ObjectiveMastery:
    """Fold a new score into the (student, course, objective) mastery record.

    By default the record keeps a running average across attempts; with
    ``replace`` the new score overwrites it (tutor sessions report a current
    mastery estimate rather than an attempt score). The caller commits.
    """
    result = await db.execute(
        select(ObjectiveMastery).where(
            ObjectiveMastery.student_id == student_id,
            ObjectiveMastery.course_id == course_id,
            ObjectiveMastery.learning_objective == objective,
        )
    )
    record = result.scalar_one_or_none()
    score = clamp_mastery(score)

    if record is None:
        record = ObjectiveMastery(
            student_id=student_id,
            course_id=course_id,
            learning_objective=objective,
            mastery_score=score,
            attempts=1,
        )
        db.add(record)
    else:
        attempts = record.attempts or 0
        if replace:
            record.mastery_score = score
        else:
            record.mastery_score = (record.mastery_score * attempts + score) / (attempts + 1)
        record.attempts = attempts + 1

    record.last_assessed_at = datetime.now(timezone.utc)
    logger.debug(
        "Mastery student=%d course=%d objective=%r -> %.1f",
        student_id, course_id, objective, record.mastery_score,
    )
    return record
