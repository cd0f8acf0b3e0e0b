"""Access policy evaluator - who may view and attempt an activity or assignment.

The decision functions are pure; the async helpers at the bottom load the
rows they need from the database and then defer to them.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.config import settings
from coursework.errors import AccessDenied, NotFound
from coursework.models.activity import Activity
from coursework.models.assignment import Assignment
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.user import User

logger = logging.getLogger(__name__)


class AccessDecision(str, enum.Enum):
    ALLOWED = "allowed"
    DENIED_NOT_ENROLLED = "not_enrolled"
    DENIED_NOT_ASSIGNED = "not_assigned"

    @property
    def allowed(self) -> bool:
        return self is AccessDecision.ALLOWED


class AssignmentAccessMode(str, enum.Enum):
    """How the two assignment concepts combine for an activity inside an assignment."""

    ACTIVITY = "activity"
    ASSIGNMENT = "assignment"
    EITHER = "either"
    BOTH = "both"


@dataclass(frozen=True)
class AssignmentTarget:
    """Who an activity is assigned to: everyone enrolled, or an explicit id set."""

    assign_to_all: bool
    student_ids: frozenset[int] = frozenset()

    @classmethod
    def everyone(cls) -> "AssignmentTarget":
        return cls(assign_to_all=True)

    @classmethod
    def only(cls, student_ids) -> "AssignmentTarget":
        return cls(assign_to_all=False, student_ids=frozenset(student_ids))

    @classmethod
    def of(cls, activity: Activity) -> "AssignmentTarget":
        return cls(
            assign_to_all=activity.assign_to_all,
            student_ids=frozenset(activity.assigned_student_ids),
        )

    def includes(self, student_id: int, *, empty_means_all: bool) -> bool:
        if self.assign_to_all:
            return True
        if not self.student_ids:
            return empty_means_all
        return student_id in self.student_ids


@dataclass(frozen=True)
class AccessReport:
    """Both access inputs for an activity, and the combined result."""

    activity: AccessDecision
    assignment: AccessDecision | None
    mode: AssignmentAccessMode
    decision: AccessDecision


def evaluate_activity_access(
    user_id: int,
    role: str,
    course_teacher_id: int,
    target: AssignmentTarget,
    is_enrolled: bool,
    *,
    empty_target_means_all: bool | None = None,
) -> AccessDecision:
    """Decide whether a user may view and attempt an activity.

    The owning teacher is always allowed. Everyone else must be enrolled in
    the course and covered by the activity's assignment target.
    """
    if empty_target_means_all is None:
        empty_target_means_all = settings.EMPTY_TARGET_MEANS_ALL

    if role == "teacher" and user_id == course_teacher_id:
        return AccessDecision.ALLOWED
    if not is_enrolled:
        return AccessDecision.DENIED_NOT_ENROLLED
    if not target.includes(user_id, empty_means_all=empty_target_means_all):
        return AccessDecision.DENIED_NOT_ASSIGNED
    return AccessDecision.ALLOWED


def evaluate_assignment_access(
    user_id: int,
    role: str,
    course_teacher_id: int,
    is_published: bool,
    is_enrolled: bool,
) -> AccessDecision:
    """Owner teacher always; others need enrollment and a published assignment."""
    if role == "teacher" and user_id == course_teacher_id:
        return AccessDecision.ALLOWED
    if not is_enrolled:
        return AccessDecision.DENIED_NOT_ENROLLED
    if not is_published:
        return AccessDecision.DENIED_NOT_ASSIGNED
    return AccessDecision.ALLOWED


def combine_access(
    activity_decision: AccessDecision,
    assignment_decision: AccessDecision | None,
    mode: AssignmentAccessMode | str | None = None,
) -> AccessReport:
    """Combine the activity target and assignment decisions per the configured mode.

    Without an assignment the activity decision stands alone whatever the mode.
    """
    mode = AssignmentAccessMode(mode or settings.ASSIGNMENT_ACCESS_MODE)

    if assignment_decision is None or mode is AssignmentAccessMode.ACTIVITY:
        decision = activity_decision
    elif mode is AssignmentAccessMode.ASSIGNMENT:
        decision = assignment_decision
    elif mode is AssignmentAccessMode.EITHER:
        if activity_decision.allowed or assignment_decision.allowed:
            decision = AccessDecision.ALLOWED
        else:
            decision = _most_restrictive(activity_decision, assignment_decision)
    else:
        if activity_decision.allowed and assignment_decision.allowed:
            decision = AccessDecision.ALLOWED
        else:
            decision = _most_restrictive(activity_decision, assignment_decision)

    return AccessReport(
        activity=activity_decision,
        assignment=assignment_decision,
        mode=mode,
        decision=decision,
    )


def _most_restrictive(a: AccessDecision, b: AccessDecision) -> AccessDecision:
    # Not being enrolled outranks not being assigned
    if AccessDecision.DENIED_NOT_ENROLLED in (a, b):
        return AccessDecision.DENIED_NOT_ENROLLED
    return AccessDecision.DENIED_NOT_ASSIGNED


def validate_target(target: AssignmentTarget, enrolled_ids: set[int]) -> list[int]:
    """Return the explicit target ids that are not enrolled in the course."""
    if target.assign_to_all:
        return []
    return sorted(target.student_ids - enrolled_ids)


# ===================================================================
# Database-backed helpers
# ===================================================================


async def is_enrolled(db: AsyncSession, student_id: int, course_id: int) -> bool:
    result = await db.execute(
        select(Enrollment.id).where(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def enrolled_student_ids(db: AsyncSession, course_id: int) -> set[int]:
    result = await db.execute(
        select(Enrollment.student_id).where(Enrollment.course_id == course_id)
    )
    return set(result.scalars().all())


async def get_course_or_404(db: AsyncSession, course_id: int) -> Course:
    course = await db.get(Course, course_id)
    if course is None:
        raise NotFound("Course not found")
    return course


async def require_course_owner(db: AsyncSession, user: User, course_id: int) -> Course:
    """Load a course the user teaches; anyone else sees it as missing."""
    course = await get_course_or_404(db, course_id)
    if not (user.is_teacher and course.teacher_id == user.id):
        logger.warning("User %d denied ownership of course %d", user.id, course_id)
        raise NotFound("Course not found")
    return course


async def require_course_member(db: AsyncSession, user: User, course_id: int) -> Course:
    """Load a course the user owns or is enrolled in."""
    course = await get_course_or_404(db, course_id)
    if user.is_teacher and course.teacher_id == user.id:
        return course
    if not await is_enrolled(db, user.id, course_id):
        raise AccessDenied(AccessDecision.DENIED_NOT_ENROLLED)
    return course


async def activity_access_report(
    db: AsyncSession,
    user: User,
    activity: Activity,
    assignment: Assignment | None = None,
) -> AccessReport:
    course = await get_course_or_404(db, activity.course_id)
    enrolled = await is_enrolled(db, user.id, activity.course_id)

    activity_decision = evaluate_activity_access(
        user.id, user.role, course.teacher_id, AssignmentTarget.of(activity), enrolled
    )
    assignment_decision = None
    if assignment is not None:
        assignment_decision = evaluate_assignment_access(
            user.id, user.role, course.teacher_id, assignment.is_published, enrolled
        )
    return combine_access(activity_decision, assignment_decision)


async def require_activity_access(
    db: AsyncSession,
    user: User,
    activity_id: int,
    assignment: Assignment | None = None,
) -> Activity:
    """Load an activity and raise unless the user may view and attempt it."""
    activity = await db.get(Activity, activity_id)
    if activity is None:
        raise NotFound("Activity not found")

    report = await activity_access_report(db, user, activity, assignment)
    if not report.decision.allowed:
        logger.warning(
            "User %d denied activity %d: %s", user.id, activity_id, report.decision.value
        )
        raise AccessDenied(report.decision)
    return activity


async def require_assignment_access(
    db: AsyncSession, user: User, assignment_id: int
) -> Assignment:
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")

    course = await get_course_or_404(db, assignment.course_id)
    enrolled = await is_enrolled(db, user.id, assignment.course_id)
    decision = evaluate_assignment_access(
        user.id, user.role, course.teacher_id, assignment.is_published, enrolled
    )
    if not decision.allowed:
        logger.warning(
            "User %d denied assignment %d: %s", user.id, assignment_id, decision.value
        )
        # Unpublished work is hidden rather than reported as unassigned
        raise AccessDenied(AccessDecision.DENIED_NOT_ENROLLED)
    return assignment
