"""
watch_integrity.py - Server side of video watch integrity

Provides:
- register_video / list_videos - Chapter video catalogue
- start_watch, update_progress, end_watch - Watch session lifecycle
- get_attention_challenge, submit_attention_challenge - Periodic presence checks
- get_comprehension_quiz, submit_comprehension_answer, dismiss_comprehension_quiz - One-time quiz
- get_student_watch_stats, get_video_stats - Aggregates over sessions

No timers live here. Every call re-evaluates due-ness from the stored
position and counters, so any process can serve any session. A challenge
is due every verification interval of video position (pausing never makes
one due); the quiz is due once per session when credited watch time first
reaches the trigger, and never while a challenge is due or outstanding.
"""

import logging
import random
from typing import Any, Dict, List, Optional

import aiosqlite

from app.db import progression as pdb
from app.errors import DayLocked, InvalidState, NotFound, NoOpenSession, ValidationError
from app.services.answer_grading import grade_answer
from app.services.policies import WatchPolicy, watch_policy
from app.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)

VERIFICATION_WORDS = [
    "apple", "banana", "orange", "grape", "mango",
    "pencil", "eraser", "notebook", "folder", "marker",
    "window", "mirror", "carpet", "pillow", "blanket",
    "guitar", "piano", "violin", "drums", "flute",
    "coffee", "water", "juice", "milk", "honey",
    "sunset", "rainbow", "thunder", "breeze", "cloud",
    "garden", "flower", "tree", "grass", "leaf",
    "mountain", "river", "ocean", "valley", "forest",
    "student", "teacher", "school", "class", "lesson",
    "science", "history", "english", "math", "art",
    "rocket", "planet", "galaxy", "star", "moon",
    "dolphin", "elephant", "tiger", "eagle", "rabbit",
    "diamond", "crystal", "golden", "silver", "bronze",
    "puzzle", "riddle", "mystery", "secret", "wonder",
    "journey", "adventure", "explore", "discover", "learn",
    "courage", "wisdom", "kindness", "patience", "strength",
    "melody", "rhythm", "harmony", "tempo", "chorus",
    "castle", "bridge", "tower", "palace", "temple",
    "sunrise", "twilight", "midnight", "dawn", "dusk",
    "compass", "anchor", "lighthouse", "harbor", "voyage",
]


# ── Catalogue ────────────────────────────────────────────────────────

async def register_video(
    db,
    youtube_video_id: str,
    subject_id: str,
    chapter_id: str,
    duration_seconds: int,
    title: str = ""
) -> Dict[str, Any]:
    if duration_seconds <= 0:
        raise ValidationError("Video duration must be positive", duration_seconds=duration_seconds)
    video_id = await pdb.create_video(db, youtube_video_id, subject_id, chapter_id, duration_seconds, title)
    logger.info(f"Video {video_id} registered: {youtube_video_id} ({subject_id}/{chapter_id}, {duration_seconds}s)")
    return await pdb.get_video(db, video_id)


async def list_videos(db, subject_id: str, chapter_id: str) -> List[Dict[str, Any]]:
    return await pdb.list_chapter_videos(db, subject_id, chapter_id)


# ── Session helpers ──────────────────────────────────────────────────

def session_view(session: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "session_id": session["id"],
        "video_id": session["video_id"],
        "plan_day_id": session["plan_day_id"],
        "duration_seconds": session["duration_seconds"],
        "total_watch_time_seconds": session["total_watch_time_seconds"],
        "last_position_seconds": session["last_position_seconds"],
        "last_verification_seconds": session["last_verification_seconds"],
        "verifications_completed": session["verifications_completed"],
        "questions_answered": session["questions_answered"],
        "questions_graded": session["questions_graded"],
        "questions_correct": session["questions_correct"],
        "quiz_triggered": session["quiz_triggered_at_seconds"] is not None,
        "quiz_dismissed": session["quiz_dismissed_at"] is not None,
        "is_completed": bool(session["is_completed"]),
        "started_at": session["started_at"],
        "ended_at": session["ended_at"],
    }


async def _get_session(db, student_id: int, session_id: int) -> Dict[str, Any]:
    session = await pdb.get_watch_session(db, session_id)
    if not session or session["student_id"] != student_id:
        raise NotFound("Watch session not found", session_id=session_id)
    return session


async def _get_open_session(db, student_id: int, session_id: int) -> Dict[str, Any]:
    session = await _get_session(db, student_id, session_id)
    if session["ended_at"]:
        raise NoOpenSession("Watch session has ended", session_id=session_id)
    return session


async def _challenge_pending(db, session: Dict[str, Any], policy: WatchPolicy) -> bool:
    """A challenge blocks the quiz while it is due or outstanding."""
    if policy.challenge_due(session["last_position_seconds"], session["last_verification_seconds"]):
        return True
    return await pdb.get_outstanding_challenge(db, session["id"]) is not None


def _quiz_pending(session: Dict[str, Any], policy: WatchPolicy) -> bool:
    if session["quiz_dismissed_at"]:
        return False
    if session["quiz_triggered_at_seconds"] is not None:
        return True
    return policy.quiz_due(session["total_watch_time_seconds"])


# ── Session lifecycle ────────────────────────────────────────────────

async def start_watch(
    db,
    student_id: int,
    video_id: int,
    plan_day_id: Optional[int] = None
) -> Dict[str, Any]:
    """
    Return the student's open session for the video, creating one if needed.
    Concurrent starts resolve to the first writer's session.
    """
    video = await pdb.get_video(db, video_id)
    if not video:
        raise NotFound("Video not found", video_id=video_id)

    if plan_day_id is not None:
        day = await pdb.get_plan_day(db, plan_day_id)
        if not day or day["student_id"] != student_id:
            raise NotFound("Plan day not found", day_id=plan_day_id)
        if not day["unlocked_at"]:
            raise DayLocked("Day is locked", day_id=plan_day_id, day_number=day["day_number"])
        if video_id not in day["video_ids"]:
            raise ValidationError("Video is not part of this day", day_id=plan_day_id, video_id=video_id)

    session = await pdb.get_open_watch_session(db, student_id, video_id)
    if session:
        return session_view(session)

    try:
        session_id = await pdb.create_watch_session(db, video_id, student_id, pdb.utc_now_iso(), plan_day_id)
    except aiosqlite.IntegrityError:
        await db.rollback()
        session = await pdb.get_open_watch_session(db, student_id, video_id)
        if not session:
            raise
        return session_view(session)

    logger.info(f"Watch session {session_id} started: student={student_id} video={video_id} day={plan_day_id}")
    return session_view(await pdb.get_watch_session(db, session_id))


async def update_progress(
    db,
    student_id: int,
    session_id: int,
    position_seconds: float,
    policy: Optional[WatchPolicy] = None
) -> Dict[str, Any]:
    """
    Persist the playback position. Credited watch time grows by the forward
    delta, capped per tick, so seeking ahead earns nothing beyond the cap.
    """
    policy = policy or watch_policy()
    session = await _get_open_session(db, student_id, session_id)

    position = min(max(position_seconds, 0.0), float(session["duration_seconds"]))
    credited = policy.credited_seconds(position, session["last_position_seconds"])
    total = session["total_watch_time_seconds"] + credited
    await pdb.update_watch_position(db, session_id, position, total)

    session["last_position_seconds"] = position
    session["total_watch_time_seconds"] = total

    needs_verification = await _challenge_pending(db, session, policy)
    needs_quiz = not needs_verification and _quiz_pending(session, policy)

    return {
        "session": session_view(session),
        "needs_verification": needs_verification,
        "needs_quiz": needs_quiz,
    }


async def end_watch(db, student_id: int, session_id: int, policy: Optional[WatchPolicy] = None) -> Dict[str, Any]:
    """Close the session. Ending an ended session returns it unchanged."""
    policy = policy or watch_policy()
    session = await _get_session(db, student_id, session_id)
    if session["ended_at"]:
        return session_view(session)

    completed = policy.reached_end(session["last_position_seconds"], session["duration_seconds"])
    await pdb.end_watch_session(db, session_id, pdb.utc_now_iso(), completed)
    session = await pdb.get_watch_session(db, session_id)

    logger.info(
        f"Watch session {session_id} ended: completed={bool(session['is_completed'])} "
        f"watched={session['total_watch_time_seconds']}s verifications={session['verifications_completed']}"
    )
    return session_view(session)


# ── Attention challenges ─────────────────────────────────────────────

def _challenge_view(challenge: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "challenge_id": challenge["id"],
        "word": challenge["word"],
        "at_seconds": challenge["at_seconds"],
    }


async def get_attention_challenge(
    db,
    student_id: int,
    session_id: int,
    policy: Optional[WatchPolicy] = None
) -> Optional[Dict[str, Any]]:
    """The outstanding challenge, a newly issued one if due, or None."""
    policy = policy or watch_policy()
    session = await _get_open_session(db, student_id, session_id)

    outstanding = await pdb.get_outstanding_challenge(db, session_id)
    if outstanding:
        return _challenge_view(outstanding)

    if not policy.challenge_due(session["last_position_seconds"], session["last_verification_seconds"]):
        return None

    word = random.choice(VERIFICATION_WORDS)
    try:
        challenge_id = await pdb.create_attention_challenge(
            db, session_id, word, session["last_position_seconds"], pdb.utc_now_iso()
        )
    except aiosqlite.IntegrityError:
        await db.rollback()
        outstanding = await pdb.get_outstanding_challenge(db, session_id)
        if not outstanding:
            raise
        return _challenge_view(outstanding)

    logger.info(f"Attention challenge {challenge_id} issued: session={session_id} at={session['last_position_seconds']}s")
    return _challenge_view(await pdb.get_attention_challenge(db, challenge_id))


async def submit_attention_challenge(
    db,
    student_id: int,
    session_id: int,
    challenge_id: int,
    word: str
) -> Dict[str, Any]:
    """
    Check a typed challenge word. The exact word (trimmed, case-insensitive)
    consumes the challenge and advances last_verification_seconds to the
    current position; anything else leaves the session untouched.
    """
    session = await _get_open_session(db, student_id, session_id)
    challenge = await pdb.get_attention_challenge(db, challenge_id)
    if not challenge or challenge["session_id"] != session_id:
        raise NotFound("Attention challenge not found", challenge_id=challenge_id)
    if challenge["consumed_at"]:
        raise InvalidState("Attention challenge already answered", challenge_id=challenge_id)

    is_correct = (word or "").strip().lower() == challenge["word"].lower()
    if is_correct:
        consumed = await pdb.consume_challenge(db, challenge_id, pdb.utc_now_iso(), commit=False)
        if consumed:
            await pdb.record_verification(db, session_id, session["last_position_seconds"], commit=False)
        await db.commit()
        session = await pdb.get_watch_session(db, session_id)
        logger.info(f"Attention challenge {challenge_id} passed: session={session_id}")

    return {"is_correct": is_correct, "session": session_view(session)}


# ── Comprehension quiz ───────────────────────────────────────────────

async def _quiz_view(db, bank: QuestionBank, session: Dict[str, Any]) -> Dict[str, Any]:
    question_ids = session["quiz_question_ids"] or []
    questions = await bank.get_questions(question_ids)
    by_id = {q.id: q for q in questions}

    answers = {}
    for response in await pdb.get_comprehension_responses(db, session["id"]):
        q = by_id.get(response["question_id"])
        if q is None:
            continue
        answers[q.id] = {
            "answer": response["answer"],
            "is_correct": None if response["is_correct"] is None else bool(response["is_correct"]),
            "correct_answer": q.correct_answer,
            "explanation": q.explanation,
        }

    return {
        "session_id": session["id"],
        "triggered_at_seconds": session["quiz_triggered_at_seconds"],
        "questions": [q.public() for q in questions],
        "answers": answers,
        "all_answered": len(answers) >= len(questions),
    }


async def get_comprehension_quiz(
    db,
    bank: QuestionBank,
    student_id: int,
    session_id: int,
    policy: Optional[WatchPolicy] = None
) -> Optional[Dict[str, Any]]:
    """
    The session's quiz instance once due, issued at most once.

    Returns None when not yet due, when a challenge is pending, or after
    the learner dismissed the results.
    """
    policy = policy or watch_policy()
    session = await _get_open_session(db, student_id, session_id)

    if not _quiz_pending(session, policy):
        return None
    if await _challenge_pending(db, session, policy):
        return None

    if session["quiz_triggered_at_seconds"] is None:
        questions = await bank.get_video_questions(session["video_id"], policy.quiz_question_count)
        issued = await pdb.set_quiz_triggered(
            db, session_id, [q.id for q in questions], session["total_watch_time_seconds"]
        )
        if issued:
            logger.info(f"Comprehension quiz issued: session={session_id} questions={len(questions)}")
        session = await pdb.get_watch_session(db, session_id)

    return await _quiz_view(db, bank, session)


async def submit_comprehension_answer(
    db,
    bank: QuestionBank,
    student_id: int,
    session_id: int,
    question_id: str,
    answer: Any
) -> Dict[str, Any]:
    """Grade one quiz answer immediately. Re-answering returns the stored grading."""
    session = await _get_open_session(db, student_id, session_id)
    if session["quiz_triggered_at_seconds"] is None:
        raise InvalidState("No comprehension quiz has been issued", session_id=session_id)
    if question_id not in (session["quiz_question_ids"] or []):
        raise ValidationError("Question is not part of this quiz", question_id=question_id)

    question = (await bank.get_questions([question_id]))[0]
    graded = grade_answer(question, answer)
    inserted = await pdb.create_comprehension_response(
        db, session_id, question_id, answer, graded,
        session["last_position_seconds"], pdb.utc_now_iso()
    )

    if not inserted:
        stored = next(
            r for r in await pdb.get_comprehension_responses(db, session_id)
            if r["question_id"] == question_id
        )
        answer = stored["answer"]
        graded = None if stored["is_correct"] is None else bool(stored["is_correct"])

    return {
        "question_id": question_id,
        "answer": answer,
        "is_correct": graded,
        "correct_answer": question.correct_answer,
        "explanation": question.explanation,
        "already_answered": not inserted,
    }


async def dismiss_comprehension_quiz(db, student_id: int, session_id: int) -> Dict[str, Any]:
    """Close the quiz results screen; playback may resume afterwards."""
    session = await _get_open_session(db, student_id, session_id)
    if session["quiz_triggered_at_seconds"] is None:
        raise InvalidState("No comprehension quiz has been issued", session_id=session_id)

    if await pdb.dismiss_quiz(db, session_id, pdb.utc_now_iso()):
        logger.info(f"Comprehension quiz dismissed: session={session_id}")
    return session_view(await pdb.get_watch_session(db, session_id))


# ── Stats ────────────────────────────────────────────────────────────

async def get_student_watch_stats(db, student_id: int, video_id: Optional[int] = None) -> Dict[str, Any]:
    sessions = await pdb.get_watch_sessions_by_student(db, student_id, video_id)

    total_watch_time = sum(s["total_watch_time_seconds"] for s in sessions)
    questions_answered = sum(s["questions_answered"] for s in sessions)
    questions_graded = sum(s["questions_graded"] for s in sessions)
    questions_correct = sum(s["questions_correct"] for s in sessions)

    return {
        "total_sessions": len(sessions),
        "total_videos": len({s["video_id"] for s in sessions}),
        "completed_videos": len({s["video_id"] for s in sessions if s["is_completed"]}),
        "total_watch_time_seconds": total_watch_time,
        "average_watch_time_seconds": round(total_watch_time / len(sessions), 2) if sessions else 0.0,
        "verifications_completed": sum(s["verifications_completed"] for s in sessions),
        "questions_answered": questions_answered,
        "questions_graded": questions_graded,
        "questions_correct": questions_correct,
        "question_accuracy": round(questions_correct / questions_graded * 100, 2) if questions_graded else 0.0,
    }


async def get_video_stats(db, video_id: int) -> Dict[str, Any]:
    video = await pdb.get_video(db, video_id)
    if not video:
        raise NotFound("Video not found", video_id=video_id)

    sessions = await pdb.get_watch_sessions_by_video(db, video_id)

    total = len(sessions)
    total_watch_time = sum(s["total_watch_time_seconds"] for s in sessions)
    completed = sum(1 for s in sessions if s["is_completed"])
    questions_answered = sum(s["questions_answered"] for s in sessions)
    questions_graded = sum(s["questions_graded"] for s in sessions)
    questions_correct = sum(s["questions_correct"] for s in sessions)

    return {
        "video_id": video_id,
        "total_sessions": total,
        "unique_students": len({s["student_id"] for s in sessions}),
        "total_watch_time_seconds": total_watch_time,
        "average_watch_time_seconds": round(total_watch_time / total, 2) if total else 0.0,
        "completion_rate": round(completed / total * 100, 2) if total else 0.0,
        "question_accuracy": round(questions_correct / questions_graded * 100, 2) if questions_graded else 0.0,
    }
