import pytest

import grading


def _q(qid, correct, options=("a", "b", "c", "d"), marks=1):
    return {"id": qid, "correct_answer": correct, "options": list(options) if options is not None else None,
            "marks": marks}


def test_single_choice_partial_score_rounds_half_up():
    questions = [_q(1, 0), _q(2, 1), _q(3, 2)]
    result = grading.grade(questions, [(1, 0), (2, 1), (3, 3)])
    assert result["score"] == 67
    assert result["earned"] == 2
    assert result["total"] == 3
    assert result["correct"] == 2
    assert [a["is_correct"] for a in result["answers"]] == [True, True, False]


def test_multiple_select_ignores_order():
    questions = [_q("q1", "[0, 2]", marks=4)]
    result = grading.grade(questions, [("q1", [2, 0])])
    assert result["score"] == 100
    assert result["answers"][0]["marks_earned"] == 4


def test_multiple_select_subset_is_wrong():
    questions = [_q("q1", [0, 2])]
    result = grading.grade(questions, [("q1", [0])])
    assert result["score"] == 0
    assert result["answers"][0]["is_correct"] is False


def test_multiple_select_requires_list_submission():
    assert grading.is_answer_correct([0, 2], ["a", "b", "c"], 0) is False


def test_written_answer_non_empty_gets_credit():
    questions = [_q("w", "Mitochondria produce ATP", options=None, marks=5)]
    assert grading.grade(questions, [("w", "  it makes energy ")])["score"] == 100
    assert grading.grade(questions, [("w", "   ")])["score"] == 0
    assert grading.grade(questions, [("w", None)])["score"] == 0


def test_numeric_strings_match_integer_answers():
    assert grading.is_answer_correct("1", ["True", "False"], 1)
    assert grading.is_answer_correct(1, ["True", "False"], "1")
    assert not grading.is_answer_correct(1, ["True", "False"], "0")


def test_empty_question_list_scores_zero():
    result = grading.grade([], [])
    assert result == {"answers": [], "earned": 0, "total": 0, "correct": 0, "score": 0}


def test_unanswered_questions_still_count_towards_total():
    questions = [_q(1, 0, marks=2), _q(2, 1, marks=2)]
    result = grading.grade(questions, [(1, 0)])
    assert result["total"] == 4
    assert result["score"] == 50


def test_unknown_question_ids_are_skipped():
    result = grading.grade([_q(1, 0)], [(99, 0), (1, 0)])
    assert len(result["answers"]) == 1
    assert result["score"] == 100


@pytest.mark.parametrize("earned,total,expected", [
    (1, 2, 50),
    (2, 3, 67),
    (1, 3, 33),
    (1, 8, 13),
    (0, 0, 0),
    (5, 5, 100),
])
def test_percentage(earned, total, expected):
    assert grading.percentage(earned, total) == expected


def test_quiz_questions_default_to_one_point():
    questions = grading.quiz_questions_for_grading([
        {"id": "a", "correctAnswer": 2, "options": ["w", "x", "y", "z"]},
        {"id": "b", "correctAnswer": 0, "options": ["w", "x", "y", "z"], "points": 3},
    ])
    assert [q["marks"] for q in questions] == [1, 3]
    result = grading.grade(questions, [("a", 2), ("b", 1)])
    assert result["score"] == 25


def test_repeated_question_id_is_graded_once():
    questions = [_q(1, 0), _q(2, 1)]
    result = grading.grade(questions, [(1, 0), (1, 0), (1, 0)])
    assert result["earned"] == 1
    assert result["total"] == 2
    assert result["score"] == 50
    assert len(result["answers"]) == 1


def test_first_answer_for_a_question_counts():
    result = grading.grade([_q(1, 0)], [(1, 3), (1, 0)])
    assert result["score"] == 0
    assert result["answers"][0]["user_answer"] == 3


def test_answers_follow_stored_question_order():
    questions = [_q(1, 0), _q(2, 1)]
    result = grading.grade(questions, [(2, 1), ("1", 0)])
    assert [a["question"] for a in result["answers"]] == [1, 2]
    assert result["score"] == 100
