"""ORM models package - exports all models and Base."""

from coursework.database import Base
from coursework.models.user import User
from coursework.models.course import Course
from coursework.models.enrollment import Enrollment
from coursework.models.lesson import Lesson
from coursework.models.activity import Activity
from coursework.models.assignment import Assignment, AssignmentItem, AssignmentSubmission
from coursework.models.submission import ActivitySubmission
from coursework.models.objective_mastery import ObjectiveMastery
from coursework.models.point_award import PointAward
from coursework.models.collaboration_event import CollaborationEvent

__all__ = [
    "Base",
    "User",
    "Course",
    "Enrollment",
    "Lesson",
    "Activity",
    "Assignment",
    "AssignmentItem",
    "AssignmentSubmission",
    "ActivitySubmission",
    "ObjectiveMastery",
    "PointAward",
    "CollaborationEvent",
]
