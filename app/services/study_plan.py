"""
study_plan.py - Study plan sequencing

Provides:
- distribute_content(question_ids, video_ids, profile) - Split chapter content over days
- create_plan(db, bank, student_id, subject_id, chapter_id, level) - Build a plan and its days
- get_plan_state(db, student_id, plan_id) - Plan with derived day statuses
- list_plans(db, student_id) - Progress summary of every plan the student has

Day 1 is created unlocked and every later day locked. After creation the
sequencer never touches lock state; days are unlocked by passing day tests.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiosqlite

from app.config import settings
from app.db import progression as pdb
from app.errors import InvalidState, NotFound, PlanExists, ValidationError
from app.models.progression import DayStatus
from app.services.day_content import derive_day_status, gate_summary
from app.services.policies import START_LEVELS, PlanProfile, plan_profile
from app.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)


def distribute_content(
    question_ids: List[str],
    video_ids: List[int],
    profile: PlanProfile
) -> List[Dict[str, Any]]:
    """
    Distribute chapter questions and videos sequentially over the plan's days.

    Questions are split into contiguous per-day blocks; each day practises the
    head of its block and tests on up to day_test_question_count of it.
    """
    days = []
    total_days = profile.total_days
    block = -(-len(question_ids) // total_days) if question_ids else 0

    for i in range(total_days):
        day_questions = question_ids[i * block:(i + 1) * block]
        day_videos = video_ids[i * profile.videos_per_day:(i + 1) * profile.videos_per_day]
        days.append({
            "day_number": i + 1,
            "video_ids": day_videos,
            "practice_question_ids": day_questions[:profile.practice_per_day],
            "test_question_ids": day_questions[:settings.day_test_question_count],
        })
    return days


async def create_plan(
    db,
    bank: QuestionBank,
    student_id: int,
    subject_id: str,
    chapter_id: str,
    recommended_start_level: str,
    diagnostic_attempt_id: Optional[int] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Create a day-by-day plan for a chapter enrolment.

    Raises:
        ValidationError: unknown start level
        NotFound: the referenced diagnostic does not belong to the student
        InvalidState: the referenced diagnostic is unsubmitted or for another chapter
        PlanExists: the student already has a plan for this chapter
    """
    if recommended_start_level not in START_LEVELS:
        raise ValidationError(
            "Unknown start level",
            recommended_start_level=recommended_start_level,
            allowed=list(START_LEVELS),
        )

    if diagnostic_attempt_id is not None:
        attempt = await pdb.get_diagnostic_attempt(db, diagnostic_attempt_id)
        if not attempt or attempt["student_id"] != student_id:
            raise NotFound("Diagnostic attempt not found", attempt_id=diagnostic_attempt_id)
        if not attempt["submitted_at"]:
            raise InvalidState("Diagnostic has not been submitted", attempt_id=diagnostic_attempt_id)
        if attempt["chapter_id"] != chapter_id:
            raise InvalidState("Diagnostic belongs to a different chapter", attempt_id=diagnostic_attempt_id)

    profile = plan_profile(recommended_start_level)
    questions = await bank.list_chapter_questions(subject_id, chapter_id)
    videos = await pdb.list_chapter_videos(db, subject_id, chapter_id)
    day_content = distribute_content([q.id for q in questions], [v["id"] for v in videos], profile)

    created_at = (now or pdb.utc_now()).isoformat()
    try:
        plan_id = await pdb.create_study_plan(
            db, student_id, subject_id, chapter_id, recommended_start_level,
            profile.total_days, created_at, diagnostic_attempt_id, commit=False
        )
        for content in day_content:
            await pdb.create_plan_day(
                db, plan_id,
                day_number=content["day_number"],
                estimated_minutes=profile.minutes_per_day,
                video_ids=content["video_ids"],
                practice_question_ids=content["practice_question_ids"],
                test_question_ids=content["test_question_ids"],
                pass_requirement=settings.default_pass_percent,
                unlocked_at=created_at if content["day_number"] == 1 else None,
                commit=False,
            )
        await db.commit()
    except aiosqlite.IntegrityError:
        await db.rollback()
        raise PlanExists("A study plan for this chapter already exists", chapter_id=chapter_id)

    logger.info(
        f"Study plan {plan_id} created: student={student_id} chapter={chapter_id} "
        f"level={recommended_start_level} days={profile.total_days}"
    )
    return await get_plan_state(db, student_id, plan_id, now=now)


async def get_plan_state(
    db,
    student_id: int,
    plan_id: int,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    now = now or pdb.utc_now()
    plan = await pdb.get_study_plan(db, plan_id)
    if not plan or plan["student_id"] != student_id:
        raise NotFound("Study plan not found", plan_id=plan_id)

    days = []
    for day in await pdb.get_plan_days(db, plan_id):
        day["videos_watched"] = await pdb.get_watched_video_ids(db, day["id"])
        latest = await pdb.get_latest_day_test_attempt(db, day["id"])
        status = derive_day_status(day, latest, now)
        days.append({
            "day_id": day["id"],
            "day_number": day["day_number"],
            "status": status.value,
            "estimated_minutes": day["estimated_minutes"],
            "current_pass_requirement": day["current_pass_requirement"],
            **gate_summary(day),
            "attempts": latest["attempt_number"] if latest else 0,
        })

    completed_days = sum(1 for d in days if d["status"] == DayStatus.PASSED.value)
    total_days = plan["total_days"]

    return {
        "plan_id": plan["id"],
        "subject_id": plan["subject_id"],
        "chapter_id": plan["chapter_id"],
        "start_level": plan["start_level"],
        "diagnostic_attempt_id": plan["diagnostic_attempt_id"],
        "current_day_number": plan["current_day_number"],
        "completed_days": completed_days,
        "total_days": total_days,
        "percent_complete": round(completed_days / total_days * 100, 2) if total_days else 0.0,
        "status": "COMPLETED" if plan["completed_at"] else "ACTIVE",
        "created_at": plan["created_at"],
        "completed_at": plan["completed_at"],
        "days": days,
    }


async def list_plans(db, student_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    plans = []
    for plan in await pdb.get_study_plans_by_student(db, student_id):
        state = await get_plan_state(db, student_id, plan["id"], now=now)
        state.pop("days")
        plans.append(state)
    return plans
