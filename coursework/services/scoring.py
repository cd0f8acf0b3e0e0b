"""Scoring rules engine - converts raw attempt data into scores and points.

Every function here is pure. Point values are computed on the server from
what the student actually did; the client only displays the result.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol

from coursework.config import settings

# ---------------------------------------------------------------------------
# Activity type families
# ---------------------------------------------------------------------------
PROGRESS_GATED_TYPES = ("video", "reading", "pdf")
GRADABLE_TYPES = ("quiz", "assignment")
FLAT_POINT_TYPES = ("video", "reading", "pdf", "custom")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def mean(values) -> float:
    """Arithmetic mean; 0.0 for an empty collection."""
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


# ===================================================================
# Quiz
# ===================================================================


@dataclass
class QuestionResult:
    index: int
    is_correct: bool
    answer: str | None
    correct_answer: str
    explanation: str | None
    learning_objective: str | None = None


@dataclass
class QuizResult:
    correct: int
    total: int
    score: int
    points: int
    questions: list[QuestionResult] = field(default_factory=list)


def _option_text(options: list, value) -> str | None:
    """Resolve an answer given as option text or option index to its text."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        if 0 <= value < len(options):
            return str(options[value])
        return None
    return str(value)


def _normalize(text: str | None) -> str | None:
    if text is None:
        return None
    return text.strip().lower()


def score_quiz(questions: list[dict], answers: list, activity_points: int) -> QuizResult:
    """Grade quiz answers.

    points = round(correct / total x activity_points); the explanation for
    every question is returned whether or not it was answered correctly.
    Missing answers count as wrong.
    """
    results: list[QuestionResult] = []
    correct = 0

    for i, question in enumerate(questions):
        options = question.get("options") or []
        expected = _option_text(options, question.get("correct_answer"))
        given = _option_text(options, answers[i]) if i < len(answers) else None

        is_correct = (
            expected is not None
            and given is not None
            and _normalize(given) == _normalize(expected)
        )
        if is_correct:
            correct += 1

        results.append(QuestionResult(
            index=i,
            is_correct=is_correct,
            answer=given,
            correct_answer=expected or "",
            explanation=question.get("explanation"),
            learning_objective=question.get("learning_objective"),
        ))

    total = len(questions)
    if total == 0:
        return QuizResult(correct=0, total=0, score=0, points=0, questions=results)

    return QuizResult(
        correct=correct,
        total=total,
        score=round_half_up(correct / total * 100),
        points=round_half_up(correct / total * activity_points),
        questions=results,
    )


def objective_scores(result: QuizResult) -> dict[str, int]:
    """Percent correct per tagged learning objective ({} when nothing is tagged)."""
    tally: dict[str, list[bool]] = {}
    for q in result.questions:
        if q.learning_objective:
            tally.setdefault(q.learning_objective, []).append(q.is_correct)
    return {
        objective: round_half_up(sum(flags) / len(flags) * 100)
        for objective, flags in tally.items()
    }


# ===================================================================
# Video / reading / PDF
# ===================================================================


def progress_gate_open(progress_ratio: float, threshold: float | None = None) -> bool:
    """True when enough of the content has been watched or read to complete it."""
    if threshold is None:
        threshold = settings.COMPLETION_PROGRESS_THRESHOLD
    return progress_ratio >= threshold


def clamp_ratio(ratio: float) -> float:
    return max(0.0, min(1.0, ratio))


# ===================================================================
# Interactive simulation
# ===================================================================


class ActionMatcher(Protocol):
    """Decides whether a free-text action satisfies a simulation step."""

    def matches(self, action: str, expected: str) -> bool: ...


class TokenOverlapMatcher:
    """Lenient matcher: the action only has to mention a leading token of the expected action.

    "Add the catalyst" is accepted for an expected action of "add catalyst
    slowly", as is "catalyst please". Runs of whitespace in the expected
    action count as one separator, and an empty expected action matches
    nothing; activity creation rejects steps without one.
    """

    def __init__(self, leading_tokens: int = 2) -> None:
        self.leading_tokens = leading_tokens

    def matches(self, action: str, expected: str) -> bool:
        action_lower = action.strip().lower()
        if not action_lower:
            return False
        tokens = expected.lower().split()[: self.leading_tokens]
        return any(token in action_lower for token in tokens)


class ExactActionMatcher:
    """Strict matcher: case- and whitespace-insensitive equality."""

    def matches(self, action: str, expected: str) -> bool:
        return " ".join(action.lower().split()) == " ".join(expected.lower().split())


_default_matcher: ActionMatcher = TokenOverlapMatcher()


def get_action_matcher() -> ActionMatcher:
    return _default_matcher


def set_action_matcher(matcher: ActionMatcher) -> None:
    """Swap the simulation step matcher for the whole process."""
    global _default_matcher
    _default_matcher = matcher


def simulation_points(
    steps: list[dict],
    completed_steps: list[int],
    hints_used: int,
    bonus: int | None = None,
) -> int:
    """Sum of points for correctly completed steps, plus a bonus for finishing without hints."""
    if bonus is None:
        bonus = settings.SIMULATION_NO_HINT_BONUS

    done = set(completed_steps)
    total = sum(int(step.get("points", 0)) for i, step in enumerate(steps) if i in done)
    if hints_used == 0 and steps and len(done) == len(steps):
        total += bonus
    return total


# ===================================================================
# Collaborative
# ===================================================================


def collaboration_points(participant_count: int, contribution_count: int) -> int:
    """Engagement proxy, not correctness."""
    return (
        participant_count * settings.COLLAB_PARTICIPANT_POINTS
        + contribution_count * settings.COLLAB_CONTRIBUTION_POINTS
    )


# ===================================================================
# AI tutor
# ===================================================================


def clamp_mastery(level: float) -> float:
    return max(0.0, min(100.0, float(level)))


def overall_mastery(mastery_levels: dict[str, float]) -> float:
    return mean(mastery_levels.values())


def tutor_points(mastery_levels: dict[str, float]) -> int:
    return round_half_up(overall_mastery(mastery_levels) * settings.TUTOR_POINTS_PER_MASTERY)
