"""Progress aggregator - folds over plain records."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from coursework.models import ObjectiveMastery
from coursework.services.analytics import (
    bucket_distribution,
    engagement,
    leaderboard,
    lesson_mastery,
    mastery_bucket,
    objective_mastery_summary,
    student_progress,
)
from tests.factories import headers_for, make_activity

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@dataclass
class Mastery:
    student_id: int
    learning_objective: str
    mastery_score: float
    attempts: int = 1
    last_assessed_at: datetime | None = None


@dataclass
class Award:
    id: int
    student_id: int
    points: int
    activity_id: int = 1
    reason: str | None = None
    earned_at: datetime | None = None


@dataclass
class Submission:
    student_id: int
    activity_id: int
    status: str


@dataclass
class Act:
    id: int
    activity_type: str = "custom"
    assign_to_all: bool = True
    assigned_student_ids: list = None

    def __post_init__(self):
        self.assigned_student_ids = self.assigned_student_ids or []


@dataclass
class LessonRow:
    id: int
    title: str
    position: int
    learning_objectives: list


@pytest.mark.parametrize("level, bucket", [
    (100, "mastered"),
    (80, "mastered"),
    (79, "in_progress"),
    (60, "in_progress"),
    (59, "struggling"),
    (0, "struggling"),
])
def test_bucket_edges(level, bucket):
    assert mastery_bucket(level) == bucket


def test_objective_without_records_is_zero():
    summary = objective_mastery_summary(["Fractions"], [])
    assert summary == [{
        "objective": "Fractions",
        "mastery_level": 0,
        "students_count": 0,
        "average_attempts": 0.0,
        "bucket": None,
        "buckets": {"mastered": 0, "in_progress": 0, "struggling": 0},
        "last_assessed_at": None,
    }]


def test_objective_summary_averages_and_buckets():
    records = [
        Mastery(1, "Fractions", 90, attempts=2, last_assessed_at=NOW),
        Mastery(2, "Fractions", 50, attempts=1, last_assessed_at=NOW - timedelta(days=1)),
        Mastery(1, "Decimals", 65),
    ]
    summary = {row["objective"]: row for row in objective_mastery_summary(["Fractions"], records)}

    assert summary["Fractions"]["mastery_level"] == 70
    assert summary["Fractions"]["students_count"] == 2
    assert summary["Fractions"]["average_attempts"] == 1.5
    assert summary["Fractions"]["bucket"] == "in_progress"
    assert summary["Fractions"]["buckets"] == {"mastered": 1, "in_progress": 0, "struggling": 1}
    assert summary["Fractions"]["last_assessed_at"] == NOW.isoformat()
    # Objectives only seen in records still get a row
    assert summary["Decimals"]["mastery_level"] == 65


def test_summary_is_order_independent():
    records = [Mastery(1, "A", 10), Mastery(2, "A", 95), Mastery(3, "B", 61)]
    forward = objective_mastery_summary(["A", "B"], records)
    backward = objective_mastery_summary(["A", "B"], list(reversed(records)))
    assert forward == backward
    assert bucket_distribution(forward) == {"mastered": 0, "in_progress": 1, "struggling": 1}


def test_lesson_mastery_uses_lesson_objectives():
    lessons = [
        LessonRow(2, "Decimals", 1, ["Decimals"]),
        LessonRow(1, "Fractions", 0, ["Fractions"]),
    ]
    records = [Mastery(1, "Fractions", 40), Mastery(2, "Fractions", 61), Mastery(1, "Decimals", 90)]
    rows = lesson_mastery(lessons, records)
    assert [r["lesson_id"] for r in rows] == [1, 2]
    assert rows[0]["average_mastery"] == 51
    assert rows[1]["students_count"] == 1


def test_student_progress_counts_only_assigned_activities():
    activities = [Act(1), Act(2, assign_to_all=False, assigned_student_ids=[20]), Act(3)]
    submissions = [
        Submission(10, 1, "submitted"),
        Submission(10, 2, "submitted"),
        Submission(20, 2, "graded"),
        Submission(20, 3, "in_progress"),
    ]
    awards = [Award(1, 10, 5), Award(2, 10, 7), Award(3, 20, 4)]
    rows = {r["student_id"]: r for r in student_progress([(10, "Sam"), (20, "Alex")], activities, submissions, awards)}

    assert rows[10]["assigned"] == 2
    assert rows[10]["completed"] == 1
    assert rows[10]["progress_percent"] == 50.0
    assert rows[10]["points"] == 12
    assert rows[20]["assigned"] == 3
    assert rows[20]["completed"] == 1


def test_engagement_feed_is_newest_first():
    awards = [
        Award(1, 10, 5, earned_at=NOW - timedelta(hours=2)),
        Award(2, 20, 7, earned_at=NOW),
        Award(3, 10, 3, earned_at=NOW),
    ]
    activities = [Act(1, "ai_chat"), Act(2, "quiz")]
    submissions = [
        Submission(10, 1, "in_progress"),
        Submission(20, 1, "not_started"),
        Submission(20, 2, "submitted"),
    ]
    stats = engagement(activities, submissions, awards, limit=2)

    assert stats["ai_chat_sessions"] == 1
    assert stats["completions"] == 1
    assert stats["active_students"] == 2
    assert stats["points_awarded"] == 15
    assert [a["id"] for a in stats["points_feed"]] == [3, 2]


def test_leaderboard_dense_ranks_and_stats():
    students = [(1, "Ana"), (2, "Ben"), (3, "Cy"), (4, "Di")]
    awards = [Award(1, 1, 30), Award(2, 2, 30), Award(3, 3, 10), Award(4, 1, 0)]
    board = leaderboard(students, awards)

    assert [(e["student_id"], e["rank"]) for e in board["entries"]] == [(1, 1), (2, 1), (3, 2), (4, 3)]
    assert board["stats"] == {"total_students": 4, "total_points": 70, "average_points": 18}


def test_empty_course_stats():
    assert leaderboard([], [])["stats"]["average_points"] == 0
    assert engagement([], [], [])["points_feed"] == []


# ---------------------------------------------------------------------------
# Through the API
# ---------------------------------------------------------------------------


async def test_objectives_endpoint(
    client: httpx.AsyncClient, db_session, course, teacher, student, enrolled
):
    db_session.add(ObjectiveMastery(
        student_id=student.id, course_id=course.id, learning_objective="Fractions",
        mastery_score=80.0, attempts=1, last_assessed_at=NOW,
    ))
    await db_session.commit()

    response = await client.get(
        f"/api/analytics/courses/{course.id}/objectives", headers=headers_for(teacher)
    )
    assert response.status_code == 200
    rows = {r["objective"]: r for r in response.json()["objectives"]}
    assert rows["Fractions"]["bucket"] == "mastered"
    assert rows["Decimals"]["mastery_level"] == 0
    assert rows["Decimals"]["students_count"] == 0


async def test_analytics_are_owner_only(
    client: httpx.AsyncClient, db_session, course, student, enrolled
):
    response = await client.get(
        f"/api/analytics/courses/{course.id}/leaderboard", headers=headers_for(student)
    )
    assert response.status_code == 403


async def test_overview_lists_teacher_courses(
    client: httpx.AsyncClient, db_session, course, teacher, student, enrolled
):
    await make_activity(db_session, course, "custom")
    response = await client.get("/api/analytics/overview", headers=headers_for(teacher))
    assert response.status_code == 200
    [row] = response.json()["courses"]
    assert row["course_id"] == course.id
    assert row["students"] == 1
    assert row["activities"] == 1
