"""Scoring rules - pure functions over raw attempt data."""

import pytest

from coursework.services.scoring import (
    ExactActionMatcher,
    TokenOverlapMatcher,
    collaboration_points,
    mean,
    objective_scores,
    progress_gate_open,
    round_half_up,
    score_quiz,
    simulation_points,
    tutor_points,
)

QUESTIONS = [
    {"question": "1/2 + 1/4", "options": ["3/4", "2/6"], "correct_answer": 0,
     "explanation": "Common denominator 4", "learning_objective": "Fractions"},
    {"question": "0.5 as a fraction", "options": ["1/2", "1/5"], "correct_answer": "1/2",
     "learning_objective": "Fractions"},
    {"question": "0.1 + 0.2", "options": ["0.3", "0.12"], "correct_answer": 0,
     "learning_objective": "Decimals"},
    {"question": "0.25 * 4", "options": ["1", "0.1"], "correct_answer": 0,
     "learning_objective": "Decimals"},
]


STEPS = [
    {"action": "add catalyst slowly", "points": 10},
    {"action": "heat mixture", "points": 15},
]


def test_quiz_three_of_four_with_40_points():
    result = score_quiz(QUESTIONS, [0, "1/2", 0, 1], activity_points=40)
    assert result.correct == 3
    assert result.total == 4
    assert result.score == 75
    assert result.points == 30


def test_quiz_answers_match_by_text_case_insensitively():
    result = score_quiz(QUESTIONS[:1], [" 3/4 "], activity_points=10)
    assert result.correct == 1


def test_quiz_missing_answers_are_wrong():
    result = score_quiz(QUESTIONS, [0], activity_points=40)
    assert result.correct == 1
    assert result.points == 10
    assert result.questions[3].answer is None


def test_quiz_explanations_returned_for_every_question():
    result = score_quiz(QUESTIONS, [1, 1, 1, 1], activity_points=40)
    assert result.questions[0].explanation == "Common denominator 4"
    assert result.questions[0].correct_answer == "3/4"


def test_quiz_without_questions_scores_zero():
    result = score_quiz([], [], activity_points=40)
    assert (result.score, result.points) == (0, 0)


def test_quiz_half_points_round_up():
    # 1/2 of 25 is 12.5
    result = score_quiz(QUESTIONS[:2], [0, "1/5"], activity_points=25)
    assert result.points == 13


def test_quiz_objective_scores():
    result = score_quiz(QUESTIONS, [0, "1/5", 0, 0], activity_points=40)
    assert objective_scores(result) == {"Fractions": 50, "Decimals": 100}


@pytest.mark.parametrize("ratio, is_open", [
    (0.0, False),
    (0.89, False),
    (0.9, True),
    (1.0, True),
])
def test_progress_gate_opens_at_ninety_percent(ratio, is_open):
    assert progress_gate_open(ratio) is is_open


def test_progress_gate_custom_threshold():
    assert progress_gate_open(0.5, threshold=0.5)


def test_lenient_matcher_accepts_leading_token():
    matcher = TokenOverlapMatcher()
    assert matcher.matches("Add the catalyst", "add catalyst slowly")
    assert matcher.matches("catalyst please", "add catalyst slowly")
    assert not matcher.matches("stir", "add catalyst slowly")
    assert not matcher.matches("   ", "add catalyst slowly")


def test_lenient_matcher_ignores_extra_whitespace_and_empty_expected():
    matcher = TokenOverlapMatcher()
    assert matcher.matches("heat it", "  heat   mixture")
    assert not matcher.matches("anything", "")


def test_exact_matcher():
    matcher = ExactActionMatcher()
    assert matcher.matches("Heat   Mixture", "heat mixture")
    assert not matcher.matches("heat", "heat mixture")


def test_simulation_bonus_for_finishing_without_hints():
    assert simulation_points(STEPS, [0, 1], hints_used=0) == 75


def test_simulation_no_bonus_with_hints():
    assert simulation_points(STEPS, [0, 1], hints_used=1) == 25


def test_simulation_no_bonus_for_unfinished_run():
    assert simulation_points(STEPS, [0], hints_used=0) == 10


def test_collaboration_points():
    assert collaboration_points(3, 4) == 50


def test_tutor_points_double_mastery():
    assert tutor_points({"Fractions": 80, "Decimals": 45}) == 125
    assert tutor_points({}) == 0


def test_round_half_up_and_mean():
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -3
    assert round_half_up(2.49) == 2
    assert mean([]) == 0.0
    assert mean([1, 2]) == 1.5
