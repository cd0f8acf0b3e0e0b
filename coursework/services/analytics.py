"""Progress aggregator - read-only statistics folded from progress and mastery records.

Every function is a pure fold over the records it is given: the same
records produce the same numbers regardless of order, and an empty input
averages to 0 rather than failing.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone

from coursework.config import settings
from coursework.services.access import AssignmentTarget
from coursework.services.scoring import mean, round_half_up

MASTERED = "mastered"
IN_PROGRESS = "in_progress"
STRUGGLING = "struggling"
BUCKETS = (MASTERED, IN_PROGRESS, STRUGGLING)

COMPLETE_STATUSES = ("submitted", "graded")


def mastery_bucket(level: float) -> str:
    """Mastered >= 80, in progress 60-79, struggling < 60 (lower edges inclusive)."""
    if level >= 80:
        return MASTERED
    if level >= 60:
        return IN_PROGRESS
    return STRUGGLING


def _ts(value: datetime | None) -> datetime:
    """Comparable UTC timestamp; naive values from the store are taken as UTC."""
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ===================================================================
# Objectives and lessons
# ===================================================================


def objective_mastery_summary(objectives: list[str], records) -> list[dict]:
    """One row per objective, including objectives nobody has been assessed on yet.

    Objectives found only in the records are appended after the listed ones,
    alphabetically.
    """
    by_objective: dict[str, list] = defaultdict(list)
    for r in records:
        by_objective[r.learning_objective].append(r)

    ordered = list(dict.fromkeys(objectives))
    ordered += sorted(set(by_objective) - set(ordered))

    summary = []
    for objective in ordered:
        rows = by_objective.get(objective, [])
        level = round_half_up(mean(r.mastery_score for r in rows))
        buckets = {b: 0 for b in BUCKETS}
        for r in rows:
            buckets[mastery_bucket(r.mastery_score)] += 1
        last = max(
            (_ts(r.last_assessed_at) for r in rows if r.last_assessed_at), default=None
        )
        summary.append({
            "objective": objective,
            "mastery_level": level,
            "students_count": len({r.student_id for r in rows}),
            "average_attempts": round(mean(r.attempts for r in rows), 1),
            "bucket": mastery_bucket(level) if rows else None,
            "buckets": buckets,
            "last_assessed_at": last.isoformat() if last else None,
        })
    return summary


def bucket_distribution(summary: list[dict]) -> dict[str, int]:
    """How many assessed objectives fall in each bucket."""
    counts = {b: 0 for b in BUCKETS}
    for row in summary:
        if row["bucket"] is not None:
            counts[row["bucket"]] += 1
    return counts


def lesson_mastery(lessons, records) -> list[dict]:
    """Average mastery per lesson over the records for that lesson's objectives."""
    rows = []
    for lesson in sorted(lessons, key=lambda l: (l.position, l.id)):
        objectives = set(lesson.learning_objectives)
        matching = [r for r in records if r.learning_objective in objectives]
        rows.append({
            "lesson_id": lesson.id,
            "title": lesson.title,
            "objectives": lesson.learning_objectives,
            "average_mastery": round_half_up(mean(r.mastery_score for r in matching)),
            "students_count": len({r.student_id for r in matching}),
        })
    return rows


# ===================================================================
# Students
# ===================================================================


def student_progress(students, activities, submissions, awards) -> list[dict]:
    """Completed / assigned activities and points per student.

    ``students`` are (id, name) pairs. Activities count toward a student only
    when their assignment target includes that student.
    """
    completed: dict[int, set[int]] = defaultdict(set)
    for s in submissions:
        if s.status in COMPLETE_STATUSES:
            completed[s.student_id].add(s.activity_id)

    points: dict[int, int] = defaultdict(int)
    for a in awards:
        points[a.student_id] += a.points

    rows = []
    for student_id, name in sorted(students):
        assigned = {
            a.id for a in activities
            if AssignmentTarget.of(a).includes(
                student_id, empty_means_all=settings.EMPTY_TARGET_MEANS_ALL
            )
        }
        done = len(assigned & completed[student_id])
        rows.append({
            "student_id": student_id,
            "name": name,
            "assigned": len(assigned),
            "completed": done,
            "progress_percent": round(done / len(assigned) * 100, 1) if assigned else 0.0,
            "points": points[student_id],
        })
    return rows


# ===================================================================
# Engagement and leaderboard
# ===================================================================


def points_feed(awards, limit: int = 20) -> list[dict]:
    """Most recent awards first; ties broken by id so the order is stable."""
    ordered = sorted(awards, key=lambda a: (_ts(a.earned_at), a.id), reverse=True)
    return [
        {
            "id": a.id,
            "student_id": a.student_id,
            "activity_id": a.activity_id,
            "points": a.points,
            "reason": a.reason,
            "earned_at": _ts(a.earned_at).isoformat(),
        }
        for a in ordered[:limit]
    ]


def engagement(activities, submissions, awards, limit: int = 20) -> dict:
    activity_types = {a.id: a.activity_type for a in activities}
    ai_sessions = [
        s for s in submissions
        if activity_types.get(s.activity_id) == "ai_chat" and s.status != "not_started"
    ]
    started = [s for s in submissions if s.status != "not_started"]
    return {
        "ai_chat_sessions": len(ai_sessions),
        "attempts_started": len(started),
        "completions": sum(1 for s in submissions if s.status in COMPLETE_STATUSES),
        "active_students": len({s.student_id for s in started}),
        "points_awarded": sum(a.points for a in awards),
        "points_feed": points_feed(awards, limit),
    }


def leaderboard(students, awards, limit: int = 50) -> dict:
    """Point totals with dense ranks plus course-wide stats."""
    totals: dict[int, int] = {student_id: 0 for student_id, _ in students}
    names = dict(students)
    for a in awards:
        totals[a.student_id] = totals.get(a.student_id, 0) + a.points

    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    entries = []
    rank = 0
    previous = None
    for student_id, total in ordered:
        if total != previous:
            rank += 1
            previous = total
        entries.append({
            "rank": rank,
            "student_id": student_id,
            "name": names.get(student_id),
            "total_points": total,
        })

    total_points = sum(totals.values())
    return {
        "entries": entries[:limit],
        "stats": {
            "total_students": len(totals),
            "total_points": total_points,
            "average_points": round_half_up(total_points / len(totals)) if totals else 0,
        },
    }
