"""
Scoring for quiz and exam submissions.

Everything here is pure: callers load the stored questions, pass them in
together with the submitted answers and persist whatever comes back.
"""
import json
import math

KIND_MULTI_SELECT = "multiple-select"
KIND_WRITTEN = "written"
KIND_SINGLE = "single"


def decode_correct_answer(raw):
    """Stored answers are text columns; JSON arrays/numbers are decoded, anything else is kept as-is."""
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def answer_kind(correct_answer, options) -> str:
    if isinstance(correct_answer, list):
        return KIND_MULTI_SELECT
    if not options:
        return KIND_WRITTEN
    return KIND_SINGLE


def _same_value(a, b) -> bool:
    if a is None or b is None:
        return False
    if a == b:
        return True
    # "2" and 2 are the same option index
    try:
        return int(str(a).strip()) == int(str(b).strip())
    except (TypeError, ValueError):
        return str(a).strip() == str(b).strip()


def _as_set(values):
    out = set()
    for v in values:
        try:
            out.add(int(v))
        except (TypeError, ValueError):
            out.add(str(v).strip())
    return out


def is_answer_correct(correct_answer, options, user_answer) -> bool:
    kind = answer_kind(correct_answer, options)
    if kind == KIND_MULTI_SELECT:
        if not isinstance(user_answer, (list, tuple, set)):
            return False
        return len(correct_answer) == len(user_answer) and _as_set(correct_answer) == _as_set(user_answer)
    if kind == KIND_WRITTEN:
        # Written answers go to manual review; anything non-empty gets credit for now.
        return isinstance(user_answer, str) and bool(user_answer.strip())
    return _same_value(user_answer, correct_answer)


def percentage(earned, total) -> int:
    if not total or total <= 0:
        return 0
    return int(math.floor(earned / total * 100 + 0.5))


def grade(questions, submitted):
    """
    Grade a submission.

    questions: list of dicts with keys id, correct_answer, options, marks
    submitted: list of (question_id, answer) pairs

    Returns {"answers": [...], "earned": int, "total": int, "correct": int, "score": int}.
    Total marks always cover every stored question, answered or not. Each
    question is graded at most once, in stored order.
    """
    # first answer per question wins; unknown ids are ignored
    answers_by_id = {}
    for question_id, answer in submitted:
        answers_by_id.setdefault(str(question_id), answer)
    results = []
    earned = 0
    correct_count = 0
    for q in questions:
        key = str(q["id"])
        if key not in answers_by_id:
            continue
        answer = answers_by_id[key]
        correct_answer = decode_correct_answer(q.get("correct_answer"))
        ok = is_answer_correct(correct_answer, q.get("options"), answer)
        marks = int(q.get("marks") or 0)
        gained = marks if ok else 0
        earned += gained
        if ok:
            correct_count += 1
        results.append({
            "question": q["id"],
            "user_answer": answer,
            "is_correct": ok,
            "marks_earned": gained,
        })
    total = sum(int(q.get("marks") or 0) for q in questions)
    return {
        "answers": results,
        "earned": earned,
        "total": total,
        "correct": correct_count,
        "score": percentage(earned, total),
    }


def exam_questions_for_grading(exam_questions):
    return [{
        "id": q.id,
        "correct_answer": q.correct_answer,
        "options": q.options,
        "marks": q.marks,
    } for q in exam_questions]


def quiz_questions_for_grading(quiz_questions):
    out = []
    for i, q in enumerate(quiz_questions):
        out.append({
            "id": q.get("id", i),
            "correct_answer": q.get("correctAnswer"),
            "options": q.get("options"),
            "marks": q.get("points", 1),
        })
    return out
