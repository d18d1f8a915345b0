"""Tests for per-type answer grading and response scoring."""

import pytest

from app.errors import ValidationError
from app.models.progression import Question, QuestionType
from app.services.answer_grading import grade_answer, normalize_answer, score_responses


def q(qid, qtype, answer="", topic="General"):
    return Question(id=qid, type=qtype, correct_answer=answer, topic=topic)


class TestGradeAnswer:
    """Grading rules per question type."""

    def test_mcq_is_case_insensitive(self):
        question = q("1", QuestionType.MCQ, "B")
        assert grade_answer(question, "b") is True
        assert grade_answer(question, " B ") is True
        assert grade_answer(question, "C") is False

    def test_assertion_reasoning_matches_option_key(self):
        question = q("1", QuestionType.ASSERTION_REASONING, "A")
        assert grade_answer(question, "a") is True
        assert grade_answer(question, "D") is False

    def test_multiple_correct_uses_set_equality(self):
        question = q("1", QuestionType.MULTIPLE_CORRECT, ["A", "C"])
        assert grade_answer(question, ["c", "a"]) is True
        assert grade_answer(question, "A, C") is True
        assert grade_answer(question, ["A"]) is False
        assert grade_answer(question, ["A", "B", "C"]) is False

    def test_integer_type_normalizes_numbers(self):
        question = q("1", QuestionType.INTEGER_TYPE, 7)
        for response in ["7", "07", "7.0", " 7 ", 7, "+7"]:
            assert grade_answer(question, response) is True, response
        assert grade_answer(question, "8") is False
        assert grade_answer(question, "seven") is False

    def test_true_false_variants(self):
        question = q("1", QuestionType.TRUE_FALSE, "true")
        for response in ["True", "t", "yes", "Y", "1", True]:
            assert grade_answer(question, response) is True, response
        for response in ["false", "no", "0", False, "maybe"]:
            assert grade_answer(question, response) is False, response

    def test_fill_blank_ignores_trailing_punctuation_and_spacing(self):
        question = q("1", QuestionType.FILL_BLANK, "Newton's first law")
        assert grade_answer(question, "newton's   first law.") is True
        assert grade_answer(question, "newton's second law") is False

    def test_free_text_is_not_gradeable(self):
        assert grade_answer(q("1", QuestionType.SHORT_ANSWER), "anything") is None
        assert grade_answer(q("2", QuestionType.LONG_ANSWER), "") is None

    def test_missing_response_is_incorrect(self):
        assert grade_answer(q("1", QuestionType.MCQ, "A"), None) is False
        assert grade_answer(q("1", QuestionType.MCQ, "A"), "") is False

    def test_normalize_answer(self):
        assert normalize_answer(None) == ""
        assert normalize_answer(True) == "true"
        assert normalize_answer("  MiXeD ") == "mixed"


class TestScoreResponses:
    """Totals, topic breakdown and validation."""

    def test_excludes_free_text_from_denominator(self):
        questions = [
            q("a", QuestionType.MCQ, "A", topic="t1"),
            q("b", QuestionType.MCQ, "A", topic="t2"),
            q("c", QuestionType.SHORT_ANSWER),
        ]
        result = score_responses(questions, {"a": "A", "b": "B", "c": "essay"})

        assert result["correct_count"] == 1
        assert result["gradeable_count"] == 2
        assert result["percentage"] == 50.0
        assert result["by_topic"] == {"t1": {"correct": 1, "total": 1}, "t2": {"correct": 0, "total": 1}}
        assert [item["is_correct"] for item in result["items"]] == [True, False, None]

    def test_missing_responses_count_as_incorrect(self):
        questions = [q("a", QuestionType.MCQ, "A"), q("b", QuestionType.MCQ, "A")]
        result = score_responses(questions, {"a": "A"})
        assert result["correct_count"] == 1
        assert result["gradeable_count"] == 2

    def test_nothing_gradeable_gives_no_percentage(self):
        result = score_responses([q("c", QuestionType.LONG_ANSWER)], {})
        assert result["gradeable_count"] == 0
        assert result["percentage"] is None

    def test_unknown_question_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            score_responses([q("a", QuestionType.MCQ, "A")], {"a": "A", "zzz": "B"})
        assert exc.value.detail["unknown_question_ids"] == ["zzz"]
