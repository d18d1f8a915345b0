"""
day_content.py - Plan day gates and the derived day status

Provides:
- derive_day_status(day, latest_attempt, now) - The single source of day status
- load_day(db, student_id, day_id) - Day row with watched videos, owner-checked
- mark_video_watched(db, student_id, day_id, video_id) - Video gate (idempotent)
- mark_reading_complete(db, student_id, day_id) - Reading gate (idempotent)
- submit_practice(db, bank, student_id, day_id, responses) - Practice gate
- get_day(db, bank, student_id, day_id) - Content view for an unlocked day

Day status is never stored. It is recomputed on every read from unlocked_at,
the three gates and the latest test attempt.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from app.db import progression as pdb
from app.errors import DayLocked, NotFound, ValidationError
from app.models.progression import DayStatus
from app.services.answer_grading import score_responses
from app.services.policies import remaining_seconds
from app.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)


def is_content_complete(day: Dict[str, Any]) -> bool:
    return (
        len(day["videos_watched"]) >= len(day["video_ids"])
        and bool(day["reading_completed_at"])
        and bool(day["practice_completed_at"])
    )


def derive_day_status(
    day: Dict[str, Any],
    latest_attempt: Optional[Dict[str, Any]],
    now: datetime
) -> DayStatus:
    """
    Derive a day's status from its stored gates and latest test attempt.

    A failed attempt whose cooldown has expired leaves the day CONTENT_COMPLETE
    again, since gates never reset.
    """
    if not day["unlocked_at"]:
        return DayStatus.LOCKED
    if day["passed_at"] or (latest_attempt and latest_attempt["passed"]):
        return DayStatus.PASSED
    if latest_attempt and not latest_attempt["submitted_at"]:
        return DayStatus.TEST_IN_PROGRESS
    if latest_attempt and remaining_seconds(pdb.parse_iso(latest_attempt["cooldown_ends_at"]), now) > 0:
        return DayStatus.FAILED_COOLDOWN
    if is_content_complete(day):
        return DayStatus.CONTENT_COMPLETE
    return DayStatus.IN_PROGRESS


async def load_day(db, student_id: int, day_id: int) -> Dict[str, Any]:
    """Fetch a day owned by the student with its watched video ids attached."""
    day = await pdb.get_plan_day(db, day_id)
    if not day or day["student_id"] != student_id:
        raise NotFound("Plan day not found", day_id=day_id)
    day["videos_watched"] = await pdb.get_watched_video_ids(db, day_id)
    return day


def gate_summary(day: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "videos_total": len(day["video_ids"]),
        "videos_watched": len(day["videos_watched"]),
        "reading_completed": bool(day["reading_completed_at"]),
        "practice_completed": bool(day["practice_completed_at"]),
    }


def _require_unlocked(day: Dict[str, Any]) -> None:
    if not day["unlocked_at"]:
        raise DayLocked("Day is locked", day_id=day["id"], day_number=day["day_number"])


async def mark_video_watched(db, student_id: int, day_id: int, video_id: int) -> Dict[str, Any]:
    day = await load_day(db, student_id, day_id)
    _require_unlocked(day)
    if video_id not in day["video_ids"]:
        raise ValidationError("Video is not part of this day", day_id=day_id, video_id=video_id)

    inserted = await pdb.add_day_video_progress(db, day_id, video_id, pdb.utc_now_iso())
    if inserted:
        day["videos_watched"].append(video_id)
        logger.info(f"Day {day_id}: video {video_id} watched ({len(day['videos_watched'])}/{len(day['video_ids'])})")

    return {"day_id": day_id, "video_id": video_id, **gate_summary(day)}


async def mark_reading_complete(db, student_id: int, day_id: int) -> Dict[str, Any]:
    day = await load_day(db, student_id, day_id)
    _require_unlocked(day)

    if not day["reading_completed_at"]:
        day["reading_completed_at"] = pdb.utc_now_iso()
        await pdb.set_reading_completed(db, day_id, day["reading_completed_at"])
        logger.info(f"Day {day_id}: reading completed")

    return {"day_id": day_id, **gate_summary(day)}


async def submit_practice(
    db,
    bank: QuestionBank,
    student_id: int,
    day_id: int,
    responses: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Grade a practice submission. The practice gate closes only when every
    gradeable practice question is correct; a partial result changes nothing
    and the learner may retry without limit.
    """
    day = await load_day(db, student_id, day_id)
    _require_unlocked(day)

    questions = await bank.get_questions(day["practice_question_ids"])
    scored = score_responses(questions, responses)
    all_correct = scored["correct_count"] == scored["gradeable_count"]

    if all_correct and not day["practice_completed_at"]:
        day["practice_completed_at"] = pdb.utc_now_iso()
        await pdb.set_practice_completed(db, day_id, day["practice_completed_at"])
        logger.info(f"Day {day_id}: practice completed")

    by_id = {q.id: q for q in questions}
    items = []
    for item in scored["items"]:
        q = by_id[item["question_id"]]
        items.append({**item, "correct_answer": q.correct_answer, "explanation": q.explanation})

    return {
        "day_id": day_id,
        "all_correct": all_correct,
        "correct_count": scored["correct_count"],
        "gradeable_count": scored["gradeable_count"],
        "percentage": scored["percentage"],
        "items": items,
        "practice_completed": bool(day["practice_completed_at"]),
    }


async def get_day(
    db,
    bank: QuestionBank,
    student_id: int,
    day_id: int,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Content view of a day. Locked days carry no content."""
    now = now or pdb.utc_now()
    day = await load_day(db, student_id, day_id)
    latest = await pdb.get_latest_day_test_attempt(db, day_id)
    status = derive_day_status(day, latest, now)

    view = {
        "day_id": day["id"],
        "plan_id": day["plan_id"],
        "day_number": day["day_number"],
        "status": status.value,
        "estimated_minutes": day["estimated_minutes"],
        "current_pass_requirement": day["current_pass_requirement"],
        **gate_summary(day),
        "videos": [],
        "practice_questions": [],
        "can_start_test": status == DayStatus.CONTENT_COMPLETE,
        "open_attempt_id": None,
        "cooldown_remaining_seconds": 0,
        "last_attempt": None,
    }

    if status == DayStatus.LOCKED:
        return view

    videos = await pdb.get_videos(db, day["video_ids"])
    for video in videos:
        video["watched"] = video["id"] in day["videos_watched"]
    view["videos"] = videos
    view["practice_questions"] = [q.public() for q in await bank.get_questions(day["practice_question_ids"])]

    if latest:
        if status == DayStatus.TEST_IN_PROGRESS:
            view["open_attempt_id"] = latest["id"]
        if status == DayStatus.FAILED_COOLDOWN:
            view["cooldown_remaining_seconds"] = remaining_seconds(pdb.parse_iso(latest["cooldown_ends_at"]), now)
            view["cooldown_ends_at"] = latest["cooldown_ends_at"]
        if latest["submitted_at"]:
            view["last_attempt"] = {
                "attempt_id": latest["id"],
                "attempt_number": latest["attempt_number"],
                "percentage": latest["percentage"],
                "passing_percent": latest["passing_percent"],
                "passed": bool(latest["passed"]),
                "submitted_at": latest["submitted_at"],
            }

    return view
