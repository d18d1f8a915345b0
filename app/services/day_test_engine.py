"""
day_test_engine.py - Gating day tests with escalating pass requirements

Provides:
- start_day_test(db, bank, student_id, day_id) - Re-check gates and open an attempt
- submit_day_test(db, bank, student_id, attempt_id, responses) - Score, then pass or fail

Pass:  day PASSED, next day unlocked, plan advanced (or completed on the last day)
Fail:  the day's pass requirement rises by one step (capped) and a cooldown
       that doubles per failed attempt blocks the next start

Submission is serialised by a conditional UPDATE on the attempt row: the first
submit wins, every later submit replays the stored result without side effects.
Abandoned attempts are never auto-failed; they stay open until submitted.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import aiosqlite

from app.config import settings
from app.db import progression as pdb
from app.errors import (
    AttemptInProgress,
    ContentIncomplete,
    CooldownActive,
    DayLocked,
    DayPassed,
    InvalidState,
    NotFound,
)
from app.models.progression import DayStatus
from app.services.answer_grading import score_responses
from app.services.day_content import derive_day_status, gate_summary, load_day
from app.services.policies import cooldown_ends_at, next_pass_requirement, remaining_seconds
from app.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)


async def start_day_test(
    db,
    bank: QuestionBank,
    student_id: int,
    day_id: int,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Open a day test attempt after re-checking the day's gates server-side.

    Raises:
        DayLocked, DayPassed, AttemptInProgress, CooldownActive, ContentIncomplete
    """
    now = now or pdb.utc_now()
    day = await load_day(db, student_id, day_id)
    latest = await pdb.get_latest_day_test_attempt(db, day_id)
    status = derive_day_status(day, latest, now)

    if status == DayStatus.LOCKED:
        raise DayLocked("Day is locked", day_id=day_id, day_number=day["day_number"])
    if status == DayStatus.PASSED:
        raise DayPassed("Day already passed", day_id=day_id)
    if status == DayStatus.TEST_IN_PROGRESS:
        raise AttemptInProgress("A test attempt is already in progress", attempt_id=latest["id"])
    if status == DayStatus.FAILED_COOLDOWN:
        raise CooldownActive(
            remaining_seconds(pdb.parse_iso(latest["cooldown_ends_at"]), now),
            latest["cooldown_ends_at"],
        )
    if status != DayStatus.CONTENT_COMPLETE:
        raise ContentIncomplete("Complete all content before taking the test", **gate_summary(day))

    questions = await bank.get_questions(day["test_question_ids"])
    attempt_number = (latest["attempt_number"] if latest else 0) + 1
    passing_percent = day["current_pass_requirement"]
    time_limit = settings.day_test_time_limit_minutes
    started_at = now.isoformat()

    try:
        attempt_id = await pdb.create_day_test_attempt(
            db, day_id, attempt_number, [q.id for q in questions],
            passing_percent, time_limit, started_at
        )
    except aiosqlite.IntegrityError:
        await db.rollback()
        winner = await pdb.get_latest_day_test_attempt(db, day_id)
        if winner and not winner["submitted_at"]:
            raise AttemptInProgress("A test attempt is already in progress", attempt_id=winner["id"])
        raise InvalidState("Day test state changed, retry", day_id=day_id)

    logger.info(
        f"Day test attempt {attempt_id} started: day={day_id} attempt_number={attempt_number} "
        f"passing_percent={passing_percent}"
    )

    return {
        "attempt_id": attempt_id,
        "attempt_number": attempt_number,
        "plan_id": day["plan_id"],
        "day_number": day["day_number"],
        "questions": [q.public() for q in questions],
        "passing_percent": passing_percent,
        "time_limit_minutes": time_limit,
        "started_at": started_at,
    }


def _attempt_result(attempt: Dict[str, Any], already_submitted: bool) -> Dict[str, Any]:
    started = pdb.parse_iso(attempt["started_at"])
    submitted = pdb.parse_iso(attempt["submitted_at"])
    time_taken = max(0, int((submitted - started).total_seconds()))
    return {
        "attempt_id": attempt["id"],
        "attempt_number": attempt["attempt_number"],
        "passed": bool(attempt["passed"]),
        "percentage": attempt["percentage"],
        "correct_count": attempt["correct_count"],
        "gradeable_count": attempt["gradeable_count"],
        "passing_percent": attempt["passing_percent"],
        "next_day_unlocked": bool(attempt["next_day_unlocked"]),
        "plan_completed": bool(attempt["plan_completed"]),
        "cooldown_ends_at": attempt["cooldown_ends_at"],
        "new_pass_requirement": attempt["new_pass_requirement"],
        "time_taken_seconds": time_taken,
        "timed_out": time_taken > attempt["time_limit_minutes"] * 60,
        "already_submitted": already_submitted,
    }


async def submit_day_test(
    db,
    bank: QuestionBank,
    student_id: int,
    attempt_id: int,
    responses: Dict[str, Any],
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Score a day test attempt and apply the pass/fail transition.

    Submission after the time limit (including the client timer firing) takes
    this same path. The threshold is inclusive.
    """
    now = now or pdb.utc_now()
    attempt = await pdb.get_day_test_attempt(db, attempt_id)
    if not attempt:
        raise NotFound("Test attempt not found", attempt_id=attempt_id)
    day = await pdb.get_plan_day(db, attempt["plan_day_id"])
    if not day or day["student_id"] != student_id:
        raise NotFound("Test attempt not found", attempt_id=attempt_id)

    if attempt["submitted_at"]:
        return _attempt_result(attempt, already_submitted=True)

    questions = await bank.get_questions(attempt["question_ids"])
    scored = score_responses(questions, responses)
    # Nothing gradeable means nothing can be failed
    percentage = scored["percentage"] if scored["percentage"] is not None else 100.0
    passing_percent = attempt["passing_percent"]
    passed = percentage >= passing_percent

    is_last_day = day["day_number"] >= day["total_days"]
    next_day_unlocked = passed and not is_last_day
    plan_completed = passed and is_last_day
    cooldown_end = None
    new_requirement = None
    if not passed:
        cooldown_end = cooldown_ends_at(now, attempt["attempt_number"]).isoformat()
        new_requirement = next_pass_requirement(day["current_pass_requirement"])

    submitted_at = now.isoformat()
    updated = await pdb.submit_day_test_attempt(
        db, attempt_id,
        responses=responses,
        submitted_at=submitted_at,
        percentage=percentage,
        correct_count=scored["correct_count"],
        gradeable_count=scored["gradeable_count"],
        passed=passed,
        cooldown_ends_at=cooldown_end,
        new_pass_requirement=new_requirement,
        next_day_unlocked=next_day_unlocked,
        plan_completed=plan_completed,
        commit=False,
    )
    if not updated:
        await db.rollback()
        return _attempt_result(await pdb.get_day_test_attempt(db, attempt_id), already_submitted=True)

    if passed:
        await pdb.mark_day_passed(db, day["id"], submitted_at, commit=False)
        if next_day_unlocked:
            await pdb.unlock_day(db, day["plan_id"], day["day_number"] + 1, submitted_at, commit=False)
            await pdb.advance_plan(db, day["plan_id"], day["day_number"] + 1, commit=False)
        else:
            await pdb.complete_plan(db, day["plan_id"], submitted_at, commit=False)
    else:
        await pdb.raise_pass_requirement(db, day["id"], new_requirement, commit=False)
    await db.commit()

    if passed:
        logger.info(
            f"Day {day['id']} passed: attempt={attempt_id} percentage={percentage} "
            f"required={passing_percent} next_day_unlocked={next_day_unlocked} plan_completed={plan_completed}"
        )
    else:
        logger.info(
            f"Day {day['id']} failed: attempt={attempt_id} percentage={percentage} "
            f"required={passing_percent} new_requirement={new_requirement} cooldown_ends_at={cooldown_end}"
        )

    return _attempt_result(await pdb.get_day_test_attempt(db, attempt_id), already_submitted=False)
