"""
diagnostic_assessor.py - Chapter diagnostic: issue, score, recommend a start level

Provides:
- start_diagnostic(db, bank, student_id, subject_id, chapter_id) - Open a timed attempt
- submit_diagnostic(db, bank, student_id, attempt_id, responses) - Score and recommend
- get_diagnostic(db, student_id, attempt_id) - Read back a stored attempt

At most one unsubmitted attempt exists per (student, chapter); the partial
unique index on diagnostic_attempts decides concurrent starts.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiosqlite

from app.config import settings
from app.db import progression as pdb
from app.errors import DiagnosticInProgress, InvalidState, NotFound
from app.services.answer_grading import score_responses
from app.services.policies import WEAK_TOPIC_THRESHOLD, plan_profile, recommended_start_level
from app.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)


async def start_diagnostic(
    db,
    bank: QuestionBank,
    student_id: int,
    subject_id: str,
    chapter_id: str,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Open a diagnostic attempt for a chapter.

    Returns:
        dict with: attempt_id, questions (answer keys stripped), time_limit_minutes, started_at

    Raises:
        DiagnosticInProgress: an unsubmitted attempt already exists for this chapter
        NotFound: the chapter has no questions in the bank
    """
    existing = await pdb.get_open_diagnostic_attempt(db, student_id, chapter_id)
    if existing:
        raise DiagnosticInProgress(
            "A diagnostic for this chapter is already in progress",
            attempt_id=existing["id"],
        )

    questions = await bank.list_chapter_questions(subject_id, chapter_id)
    if not questions:
        raise NotFound("No questions available for this chapter", subject_id=subject_id, chapter_id=chapter_id)
    questions = questions[:settings.diagnostic_question_count]

    started_at = (now or pdb.utc_now()).isoformat()
    time_limit = settings.diagnostic_time_limit_minutes

    try:
        attempt_id = await pdb.create_diagnostic_attempt(
            db, student_id, subject_id, chapter_id,
            [q.id for q in questions], time_limit, started_at
        )
    except aiosqlite.IntegrityError:
        await db.rollback()
        winner = await pdb.get_open_diagnostic_attempt(db, student_id, chapter_id)
        raise DiagnosticInProgress(
            "A diagnostic for this chapter is already in progress",
            attempt_id=winner["id"] if winner else None,
        )

    logger.info(f"Diagnostic {attempt_id} started: student={student_id} chapter={chapter_id} questions={len(questions)}")

    return {
        "attempt_id": attempt_id,
        "subject_id": subject_id,
        "chapter_id": chapter_id,
        "questions": [q.public() for q in questions],
        "time_limit_minutes": time_limit,
        "started_at": started_at,
    }


def weak_topics(by_topic: Dict[str, Dict[str, int]]) -> List[Dict[str, Any]]:
    """Topics below the accuracy threshold, weakest first."""
    weak = []
    for topic, stats in by_topic.items():
        if not stats["total"]:
            continue
        accuracy = round(stats["correct"] / stats["total"] * 100, 2)
        if accuracy < WEAK_TOPIC_THRESHOLD:
            weak.append({
                "topic": topic,
                "correct": stats["correct"],
                "total": stats["total"],
                "accuracy": accuracy,
            })
    weak.sort(key=lambda t: (t["accuracy"], t["topic"]))
    return weak


async def submit_diagnostic(
    db,
    bank: QuestionBank,
    student_id: int,
    attempt_id: int,
    responses: Dict[str, Any],
    elapsed_seconds: Optional[int] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Score a diagnostic attempt and recommend a start level.

    Late submissions are accepted and flagged timed_out. A chapter with no
    gradeable questions scores 0.

    Raises:
        NotFound: no such attempt for this student
        InvalidState: the attempt was already submitted
        ValidationError: a response names a question outside the attempt
    """
    attempt = await pdb.get_diagnostic_attempt(db, attempt_id)
    if not attempt or attempt["student_id"] != student_id:
        raise NotFound("Diagnostic attempt not found", attempt_id=attempt_id)
    if attempt["submitted_at"]:
        raise InvalidState("Diagnostic already submitted", attempt_id=attempt_id)

    questions = await bank.get_questions(attempt["question_ids"])
    scored = score_responses(questions, responses)

    score = scored["percentage"] if scored["percentage"] is not None else 0.0
    level = recommended_start_level(score)
    weak = weak_topics(scored["by_topic"])

    now = now or pdb.utc_now()
    if elapsed_seconds is None:
        elapsed_seconds = int((now - pdb.parse_iso(attempt["started_at"])).total_seconds())
    timed_out = elapsed_seconds > attempt["time_limit_minutes"] * 60

    updated = await pdb.submit_diagnostic_attempt(
        db, attempt_id,
        responses=responses,
        submitted_at=now.isoformat(),
        score_percent=score,
        correct_count=scored["correct_count"],
        gradeable_count=scored["gradeable_count"],
        recommended_start_level=level,
        weak_topics=weak,
        elapsed_seconds=elapsed_seconds,
        timed_out=timed_out,
    )
    if not updated:
        raise InvalidState("Diagnostic already submitted", attempt_id=attempt_id)

    logger.info(
        f"Diagnostic {attempt_id} scored: student={student_id} score={score} "
        f"level={level} weak_topics={len(weak)} timed_out={timed_out}"
    )

    return {
        "attempt_id": attempt_id,
        "score_percent": score,
        "correct_count": scored["correct_count"],
        "gradeable_count": scored["gradeable_count"],
        "recommended_start_level": level,
        "weak_topics": weak,
        "timed_out": timed_out,
        "elapsed_seconds": elapsed_seconds,
        "recommended_plan": plan_profile(level).to_dict(),
    }


async def get_diagnostic(db, student_id: int, attempt_id: int) -> Dict[str, Any]:
    attempt = await pdb.get_diagnostic_attempt(db, attempt_id)
    if not attempt or attempt["student_id"] != student_id:
        raise NotFound("Diagnostic attempt not found", attempt_id=attempt_id)

    result = {
        "attempt_id": attempt["id"],
        "subject_id": attempt["subject_id"],
        "chapter_id": attempt["chapter_id"],
        "question_ids": attempt["question_ids"],
        "time_limit_minutes": attempt["time_limit_minutes"],
        "started_at": attempt["started_at"],
        "submitted_at": attempt["submitted_at"],
        "submitted": attempt["submitted_at"] is not None,
    }
    if attempt["submitted_at"]:
        result.update({
            "score_percent": attempt["score_percent"],
            "correct_count": attempt["correct_count"],
            "gradeable_count": attempt["gradeable_count"],
            "recommended_start_level": attempt["recommended_start_level"],
            "weak_topics": attempt["weak_topics"] or [],
            "timed_out": bool(attempt["timed_out"]),
            "elapsed_seconds": attempt["elapsed_seconds"],
            "recommended_plan": plan_profile(attempt["recommended_start_level"]).to_dict(),
        })
    return result
