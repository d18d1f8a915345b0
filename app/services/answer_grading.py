"""
answer_grading.py - Per-type answer grading shared by every assessment

Provides:
- grade_answer(question, response) - True / False, or None when not auto-gradeable
- score_responses(questions, responses) - Totals, per-item results and topic breakdown

Used by the diagnostic, practice gates, day tests and the video comprehension quiz.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from app.errors import ValidationError
from app.models.progression import Question, QuestionType

TRUE_VARIANTS = {"true", "t", "yes", "y", "1"}
FALSE_VARIANTS = {"false", "f", "no", "n", "0"}


def normalize_answer(answer: Any) -> str:
    """Normalize an answer for comparison."""
    if answer is None:
        return ""
    if isinstance(answer, bool):
        return "true" if answer else "false"
    return str(answer).strip().lower()


def _normalize_punctuation(text: str) -> str:
    """Remove trailing punctuation and collapse whitespace."""
    text = re.sub(r'[.,!?;:]+$', '', text)
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def _normalize_number(text: str) -> Optional[str]:
    """Canonical numeric string ("07", "7.0", "+7" -> "7"), or None if not numeric."""
    try:
        value = Decimal(text.replace(" ", ""))
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    if value == value.to_integral_value():
        return format(value.to_integral_value(), "f")
    return format(value.normalize(), "f")


def _option_set(answer: Any) -> frozenset:
    """Normalize a multiple-correct answer given as a list or "a, c" string."""
    if isinstance(answer, (list, tuple, set)):
        parts = answer
    else:
        parts = re.split(r'[,;\s]+', normalize_answer(answer))
    return frozenset(normalize_answer(p) for p in parts if normalize_answer(p))


def _to_bool(text: str) -> Optional[bool]:
    if text in TRUE_VARIANTS:
        return True
    if text in FALSE_VARIANTS:
        return False
    return None


def grade_answer(question: Question, response: Any) -> Optional[bool]:
    """
    Grade a single response against the question's canonical key.

    Returns None for free-text types, which have no deterministic grading path.
    A missing or empty response is simply incorrect.
    """
    q_type = question.type

    if not question.gradeable:
        return None

    if q_type == QuestionType.MULTIPLE_CORRECT:
        expected = _option_set(question.correct_answer)
        return bool(expected) and _option_set(response) == expected

    student_norm = normalize_answer(response)
    correct_norm = normalize_answer(question.correct_answer)

    if not student_norm:
        return False

    if q_type in (QuestionType.MCQ, QuestionType.ASSERTION_REASONING):
        return student_norm == correct_norm

    if q_type == QuestionType.INTEGER_TYPE:
        student_num = _normalize_number(student_norm)
        return student_num is not None and student_num == _normalize_number(correct_norm)

    if q_type == QuestionType.TRUE_FALSE:
        student_bool = _to_bool(student_norm)
        return student_bool is not None and student_bool == _to_bool(correct_norm)

    if q_type == QuestionType.FILL_BLANK:
        if student_norm == correct_norm:
            return True
        return _normalize_punctuation(student_norm) == _normalize_punctuation(correct_norm)

    # Default: exact match
    return student_norm == correct_norm


def score_responses(questions: List[Question], responses: Dict[str, Any]) -> Dict[str, Any]:
    """
    Score a set of responses against the questions they answer.

    Args:
        questions: The questions issued in the attempt
        responses: Dict mapping question_id to the learner's answer

    Returns:
        dict with: correct_count, gradeable_count, percentage (None when nothing
        is gradeable), items, by_topic

    Raises:
        ValidationError: a response names a question that was not issued
    """
    question_ids = {q.id for q in questions}
    unknown = sorted(qid for qid in responses if qid not in question_ids)
    if unknown:
        raise ValidationError(
            "Responses reference questions that are not part of this attempt",
            unknown_question_ids=unknown,
        )

    items = []
    correct_count = 0
    gradeable_count = 0
    by_topic: Dict[str, Dict[str, int]] = {}

    for q in questions:
        student_answer = responses.get(q.id)
        is_correct = grade_answer(q, student_answer)

        if is_correct is not None:
            gradeable_count += 1
            stats = by_topic.setdefault(q.topic or "General", {"correct": 0, "total": 0})
            stats["total"] += 1
            if is_correct:
                correct_count += 1
                stats["correct"] += 1

        items.append({
            "question_id": q.id,
            "question_type": q.type.value,
            "topic": q.topic,
            "student_answer": student_answer,
            "is_correct": is_correct,
        })

    percentage = None
    if gradeable_count:
        percentage = round(correct_count / gradeable_count * 100, 2)

    return {
        "correct_count": correct_count,
        "gradeable_count": gradeable_count,
        "percentage": percentage,
        "items": items,
        "by_topic": by_topic,
    }
