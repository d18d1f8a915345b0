"""Video endpoints: catalogue, watch sessions, attention challenges and the comprehension quiz."""

from typing import Optional
from fastapi import APIRouter, Depends, Request
from app.db.database import get_db
from app.models.progression import (
    ChallengeSubmission,
    ComprehensionAnswer,
    ProgressUpdate,
    SessionRef,
    VideoRegistration,
    WatchStart,
)
from app.routes.auth import get_current_user, require_role, require_student
from app.services import watch_integrity
from app.services.question_bank import get_question_bank

router = APIRouter(prefix="/api/videos", tags=["videos"])


# ── Catalogue ────────────────────────────────────────────────────────

@router.post("")
async def register_video(
    body: VideoRegistration,
    db=Depends(get_db),
    user=Depends(require_role("teacher", "admin")),
):
    return await watch_integrity.register_video(
        db, body.youtube_video_id, body.subject_id, body.chapter_id,
        body.duration_seconds, body.title,
    )


@router.get("")
async def list_videos(subject_id: str, chapter_id: str, request: Request, db=Depends(get_db)):
    await get_current_user(request)
    videos = await watch_integrity.list_videos(db, subject_id, chapter_id)
    return {"videos": videos, "total": len(videos)}


# ── Watch sessions ───────────────────────────────────────────────────
# Static /watch/... paths are declared before /{video_id}/... ones

@router.get("/watch/stats")
async def get_my_watch_stats(request: Request, video_id: Optional[int] = None, db=Depends(get_db)):
    user = await require_student(request)
    return await watch_integrity.get_student_watch_stats(db, user["id"], video_id)


@router.post("/watch/progress")
async def update_progress(body: ProgressUpdate, request: Request, db=Depends(get_db)):
    """
    Persist the playback position (client polls at ~1 Hz).

    needs_verification / needs_quiz tell the player to pause and fetch the
    challenge or quiz; the challenge always takes priority.
    """
    user = await require_student(request)
    return await watch_integrity.update_progress(db, user["id"], body.session_id, body.position_seconds)


@router.get("/watch/{session_id}/challenge")
async def get_attention_challenge(session_id: int, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    challenge = await watch_integrity.get_attention_challenge(db, user["id"], session_id)
    return {"challenge": challenge}


@router.post("/watch/challenge")
async def submit_attention_challenge(body: ChallengeSubmission, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await watch_integrity.submit_attention_challenge(
        db, user["id"], body.session_id, body.challenge_id, body.word
    )


@router.get("/watch/{session_id}/quiz")
async def get_comprehension_quiz(
    session_id: int,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    user = await require_student(request)
    quiz = await watch_integrity.get_comprehension_quiz(db, bank, user["id"], session_id)
    return {"quiz": quiz}


@router.post("/watch/quiz/answer")
async def submit_comprehension_answer(
    body: ComprehensionAnswer,
    request: Request,
    db=Depends(get_db),
    bank=Depends(get_question_bank),
):
    user = await require_student(request)
    return await watch_integrity.submit_comprehension_answer(
        db, bank, user["id"], body.session_id, body.question_id, body.answer
    )


@router.post("/watch/quiz/dismiss")
async def dismiss_comprehension_quiz(body: SessionRef, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await watch_integrity.dismiss_comprehension_quiz(db, user["id"], body.session_id)


@router.post("/watch/end")
async def end_watch(body: SessionRef, request: Request, db=Depends(get_db)):
    user = await require_student(request)
    return await watch_integrity.end_watch(db, user["id"], body.session_id)


# ── Per-video ────────────────────────────────────────────────────────

@router.post("/{video_id}/watch")
async def start_watch(video_id: int, body: WatchStart, request: Request, db=Depends(get_db)):
    """Open (or resume) the learner's watch session for a video."""
    user = await require_student(request)
    return await watch_integrity.start_watch(db, user["id"], video_id, body.plan_day_id)


@router.get("/{video_id}/stats")
async def get_video_stats(video_id: int, db=Depends(get_db), user=Depends(require_role("teacher", "admin"))):
    return await watch_integrity.get_video_stats(db, video_id)
