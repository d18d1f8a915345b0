"""Study planner endpoints: diagnostic, plans, day gates and day tests."""

from fastapi import APIRouter, Depends, Request
from app.db.database import get_db
from app.models.progression import (
    DayTestSubmission,
    DiagnosticStart,
    DiagnosticSubmission,
    PlanCreate,
    PracticeSubmission,
    VideoWatched,
)
from app.routes.auth import require_student
from app.services import day_content, day_test_engine, diagnostic_assessor, study_plan
from app.services.question_bank import get_question_bank

router = APIRouter(prefix="/api/study-planner", tags=["study-planner"])


# ── Diagnostic ───────────────────────────────────────────────────────

@router.post("/diagnostic/start")
async def start_diagnostic(
    body: DiagnosticStart,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    """
    Start the chapter diagnostic.

    Returns the questions without answer keys and the time limit.
    409 with the open attempt_id if one is already running.
    """
    user = await require_student(request)
    return await diagnostic_assessor.start_diagnostic(
        db, bank, user["id"], body.subject_id, body.chapter_id
    )


@router.post("/diagnostic/{attempt_id}/submit")
async def submit_diagnostic(
    attempt_id: int,
    body: DiagnosticSubmission,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    user = await require_student(request)
    return await diagnostic_assessor.submit_diagnostic(
        db, bank, user["id"], attempt_id, body.responses, body.elapsed_seconds
    )


@router.get("/diagnostic/{attempt_id}")
async def get_diagnostic(attempt_id: int, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await diagnostic_assessor.get_diagnostic(db, user["id"], attempt_id)


# ── Plans ────────────────────────────────────────────────────────────

@router.post("/plans")
async def create_plan(
    body: PlanCreate,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    """
    Create a day-by-day plan from a recommended start level.

    Day 1 starts unlocked; later days unlock as day tests are passed.
    """
    user = await require_student(request)
    return await study_plan.create_plan(
        db, bank, user["id"], body.subject_id, body.chapter_id,
        body.recommended_start_level, body.diagnostic_attempt_id,
    )


@router.get("/plans")
async def list_plans(request: Request, db=Depends(get_db)):
    user = await require_student(request)
    plans = await study_plan.list_plans(db, user["id"])
    return {"plans": plans, "total": len(plans)}


@router.get("/plans/{plan_id}")
async def get_plan_state(plan_id: int, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await study_plan.get_plan_state(db, user["id"], plan_id)


# ── Day content ──────────────────────────────────────────────────────

@router.get("/days/{day_id}")
async def get_day(
    day_id: int,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    user = await require_student(request)
    return await day_content.get_day(db, bank, user["id"], day_id)


@router.post("/days/{day_id}/videos")
async def mark_video_watched(day_id: int, body: VideoWatched, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await day_content.mark_video_watched(db, user["id"], day_id, body.video_id)


@router.post("/days/{day_id}/reading")
async def mark_reading_complete(day_id: int, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await day_content.mark_reading_complete(db, user["id"], day_id)


@router.post("/days/{day_id}/practice")
async def submit_practice(
    day_id: int,
    body: PracticeSubmission,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    user = await require_student(request)
    return await day_content.submit_practice(db, bank, user["id"], day_id, body.responses)


# ── Day tests ────────────────────────────────────────────────────────

@router.post("/days/{day_id}/test/start")
async def start_day_test(
    day_id: int,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    """
    Start a day test.

    Gates are re-checked here. 409 responses carry structured detail, e.g.
    remaining_seconds for an active cooldown or the open attempt_id.
    """
    user = await require_student(request)
    return await day_test_engine.start_day_test(db, bank, user["id"], day_id)


@router.post("/test/{attempt_id}/submit")
async def submit_day_test(
    attempt_id: int,
    body: DayTestSubmission,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    """Submit a day test (also used when the client timer expires)."""
    user = await require_student(request)
    return await day_test_engine.submit_day_test(db, bank, user["id"], attempt_id, body.responses)
