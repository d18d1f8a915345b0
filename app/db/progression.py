"""
progression.py - Database helper queries for the study-progression engine

Provides insert/fetch/update functions for:
- videos
- diagnostic_attempts
- study_plans / plan_days / day_video_progress
- day_test_attempts
- watch_sessions / attention_challenges / comprehension_responses

Helpers that take part in a multi-step state transition accept commit=False so
the calling service can commit the whole transition at once. Conditional
updates return the affected row count; the at-most-one invariants live in
partial unique indexes and surface as aiosqlite.IntegrityError.
"""

import json
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import aiosqlite


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ══════════════════════════════════════════════════════════════════════════════
# VIDEOS
# ══════════════════════════════════════════════════════════════════════════════

async def create_video(
    db: aiosqlite.Connection,
    youtube_video_id: str,
    subject_id: str,
    chapter_id: str,
    duration_seconds: int,
    title: str = ""
) -> int:
    """Register a chapter video. Returns the new video ID."""
    cursor = await db.execute(
        """INSERT INTO videos (youtube_video_id, subject_id, chapter_id, title, duration_seconds)
           VALUES (?, ?, ?, ?, ?)""",
        (youtube_video_id, subject_id, chapter_id, title, duration_seconds)
    )
    await db.commit()
    return cursor.lastrowid


async def get_video(db: aiosqlite.Connection, video_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM videos WHERE id = ?", (video_id,))
    row = await cursor.fetchone()
    return _row_to_dict(row)


async def get_videos(db: aiosqlite.Connection, video_ids: List[int]) -> List[Dict[str, Any]]:
    """Get videos by ID, preserving the requested order."""
    if not video_ids:
        return []
    placeholders = ",".join("?" for _ in video_ids)
    cursor = await db.execute(
        f"SELECT * FROM videos WHERE id IN ({placeholders})",
        tuple(video_ids)
    )
    by_id = {row["id"]: _row_to_dict(row) for row in await cursor.fetchall()}
    return [by_id[vid] for vid in video_ids if vid in by_id]


async def list_chapter_videos(
    db: aiosqlite.Connection,
    subject_id: str,
    chapter_id: str
) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM videos WHERE subject_id = ? AND chapter_id = ? ORDER BY id",
        (subject_id, chapter_id)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r) for r in rows]


# ══════════════════════════════════════════════════════════════════════════════
# DIAGNOSTIC ATTEMPTS
# ══════════════════════════════════════════════════════════════════════════════

DIAGNOSTIC_JSON_FIELDS = ['question_ids', 'responses', 'weak_topics']


async def create_diagnostic_attempt(
    db: aiosqlite.Connection,
    student_id: int,
    subject_id: str,
    chapter_id: str,
    question_ids: List[str],
    time_limit_minutes: int,
    started_at: str
) -> int:
    """Open a diagnostic attempt. Raises IntegrityError if one is already open."""
    cursor = await db.execute(
        """INSERT INTO diagnostic_attempts
           (student_id, subject_id, chapter_id, question_ids, time_limit_minutes, started_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (student_id, subject_id, chapter_id, json.dumps(question_ids), time_limit_minutes, started_at)
    )
    await db.commit()
    return cursor.lastrowid


async def get_diagnostic_attempt(db: aiosqlite.Connection, attempt_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM diagnostic_attempts WHERE id = ?",
        (attempt_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=DIAGNOSTIC_JSON_FIELDS)


async def get_open_diagnostic_attempt(
    db: aiosqlite.Connection,
    student_id: int,
    chapter_id: str
) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT * FROM diagnostic_attempts
           WHERE student_id = ? AND chapter_id = ? AND submitted_at IS NULL
           LIMIT 1""",
        (student_id, chapter_id)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=DIAGNOSTIC_JSON_FIELDS)


async def submit_diagnostic_attempt(
    db: aiosqlite.Connection,
    attempt_id: int,
    responses: Dict[str, Any],
    submitted_at: str,
    score_percent: float,
    correct_count: int,
    gradeable_count: int,
    recommended_start_level: str,
    weak_topics: List[Dict[str, Any]],
    elapsed_seconds: Optional[int],
    timed_out: bool
) -> int:
    """Record the scored submission. Returns 0 if the attempt was already submitted."""
    cursor = await db.execute(
        """UPDATE diagnostic_attempts
           SET responses = ?, submitted_at = ?, score_percent = ?, correct_count = ?,
               gradeable_count = ?, recommended_start_level = ?, weak_topics = ?,
               elapsed_seconds = ?, timed_out = ?
           WHERE id = ? AND submitted_at IS NULL""",
        (
            json.dumps(responses),
            submitted_at,
            score_percent,
            correct_count,
            gradeable_count,
            recommended_start_level,
            json.dumps(weak_topics),
            elapsed_seconds,
            1 if timed_out else 0,
            attempt_id,
        )
    )
    await db.commit()
    return cursor.rowcount


# ══════════════════════════════════════════════════════════════════════════════
# STUDY PLANS & DAYS
# ══════════════════════════════════════════════════════════════════════════════

PLAN_DAY_JSON_FIELDS = ['video_ids', 'practice_question_ids', 'test_question_ids']


async def create_study_plan(
    db: aiosqlite.Connection,
    student_id: int,
    subject_id: str,
    chapter_id: str,
    start_level: str,
    total_days: int,
    created_at: str,
    diagnostic_attempt_id: Optional[int] = None,
    commit: bool = True
) -> int:
    """Create a study plan row. Raises IntegrityError if the student is already enrolled."""
    cursor = await db.execute(
        """INSERT INTO study_plans
           (student_id, subject_id, chapter_id, diagnostic_attempt_id, start_level, total_days, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (student_id, subject_id, chapter_id, diagnostic_attempt_id, start_level, total_days, created_at)
    )
    if commit:
        await db.commit()
    return cursor.lastrowid


async def get_study_plan(db: aiosqlite.Connection, plan_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM study_plans WHERE id = ?", (plan_id,))
    row = await cursor.fetchone()
    return _row_to_dict(row)


async def get_study_plans_by_student(db: aiosqlite.Connection, student_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM study_plans WHERE student_id = ? ORDER BY created_at DESC, id DESC",
        (student_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r) for r in rows]


async def create_plan_day(
    db: aiosqlite.Connection,
    plan_id: int,
    day_number: int,
    estimated_minutes: int,
    video_ids: List[int],
    practice_question_ids: List[str],
    test_question_ids: List[str],
    pass_requirement: float,
    unlocked_at: Optional[str] = None,
    commit: bool = True
) -> int:
    cursor = await db.execute(
        """INSERT INTO plan_days
           (plan_id, day_number, estimated_minutes, video_ids, practice_question_ids,
            test_question_ids, current_pass_requirement, unlocked_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            plan_id,
            day_number,
            estimated_minutes,
            json.dumps(video_ids),
            json.dumps(practice_question_ids),
            json.dumps(test_question_ids),
            pass_requirement,
            unlocked_at,
        )
    )
    if commit:
        await db.commit()
    return cursor.lastrowid


async def get_plan_day(db: aiosqlite.Connection, day_id: int) -> Optional[Dict[str, Any]]:
    """Get a plan day joined with its plan's owner."""
    cursor = await db.execute(
        """SELECT d.*, p.student_id, p.total_days
           FROM plan_days d
           JOIN study_plans p ON p.id = d.plan_id
           WHERE d.id = ?""",
        (day_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=PLAN_DAY_JSON_FIELDS)


async def get_plan_days(db: aiosqlite.Connection, plan_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT d.*, p.student_id, p.total_days
           FROM plan_days d
           JOIN study_plans p ON p.id = d.plan_id
           WHERE d.plan_id = ?
           ORDER BY d.day_number""",
        (plan_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=PLAN_DAY_JSON_FIELDS) for r in rows]


async def set_reading_completed(db: aiosqlite.Connection, day_id: int, completed_at: str) -> int:
    cursor = await db.execute(
        "UPDATE plan_days SET reading_completed_at = ? WHERE id = ? AND reading_completed_at IS NULL",
        (completed_at, day_id)
    )
    await db.commit()
    return cursor.rowcount


async def set_practice_completed(db: aiosqlite.Connection, day_id: int, completed_at: str) -> int:
    cursor = await db.execute(
        "UPDATE plan_days SET practice_completed_at = ? WHERE id = ? AND practice_completed_at IS NULL",
        (completed_at, day_id)
    )
    await db.commit()
    return cursor.rowcount


async def raise_pass_requirement(
    db: aiosqlite.Connection,
    day_id: int,
    new_requirement: float,
    commit: bool = True
) -> None:
    """Raise the day's pass requirement; MAX() keeps it non-decreasing."""
    await db.execute(
        "UPDATE plan_days SET current_pass_requirement = MAX(current_pass_requirement, ?) WHERE id = ?",
        (new_requirement, day_id)
    )
    if commit:
        await db.commit()


async def mark_day_passed(db: aiosqlite.Connection, day_id: int, passed_at: str, commit: bool = True) -> None:
    await db.execute(
        "UPDATE plan_days SET passed_at = ? WHERE id = ? AND passed_at IS NULL",
        (passed_at, day_id)
    )
    if commit:
        await db.commit()


async def unlock_day(
    db: aiosqlite.Connection,
    plan_id: int,
    day_number: int,
    unlocked_at: str,
    commit: bool = True
) -> int:
    """Unlock a locked day. Returns 1 if it flipped, 0 if missing or already unlocked."""
    cursor = await db.execute(
        """UPDATE plan_days SET unlocked_at = ?
           WHERE plan_id = ? AND day_number = ? AND unlocked_at IS NULL""",
        (unlocked_at, plan_id, day_number)
    )
    if commit:
        await db.commit()
    return cursor.rowcount


async def advance_plan(
    db: aiosqlite.Connection,
    plan_id: int,
    day_number: int,
    commit: bool = True
) -> None:
    await db.execute(
        "UPDATE study_plans SET current_day_number = MAX(current_day_number, ?) WHERE id = ?",
        (day_number, plan_id)
    )
    if commit:
        await db.commit()


async def complete_plan(db: aiosqlite.Connection, plan_id: int, completed_at: str, commit: bool = True) -> None:
    await db.execute(
        "UPDATE study_plans SET completed_at = ? WHERE id = ? AND completed_at IS NULL",
        (completed_at, plan_id)
    )
    if commit:
        await db.commit()


# ══════════════════════════════════════════════════════════════════════════════
# DAY VIDEO PROGRESS
# ══════════════════════════════════════════════════════════════════════════════

async def add_day_video_progress(
    db: aiosqlite.Connection,
    day_id: int,
    video_id: int,
    completed_at: str
) -> int:
    """Record a watched video for a day. Returns 0 if it was already recorded."""
    cursor = await db.execute(
        """INSERT INTO day_video_progress (plan_day_id, video_id, completed_at)
           VALUES (?, ?, ?)
           ON CONFLICT (plan_day_id, video_id) DO NOTHING""",
        (day_id, video_id, completed_at)
    )
    await db.commit()
    return cursor.rowcount


async def get_watched_video_ids(db: aiosqlite.Connection, day_id: int) -> List[int]:
    cursor = await db.execute(
        "SELECT video_id FROM day_video_progress WHERE plan_day_id = ? ORDER BY id",
        (day_id,)
    )
    rows = await cursor.fetchall()
    return [row["video_id"] for row in rows]


# ══════════════════════════════════════════════════════════════════════════════
# DAY TEST ATTEMPTS
# ══════════════════════════════════════════════════════════════════════════════

DAY_TEST_JSON_FIELDS = ['question_ids', 'responses']


async def create_day_test_attempt(
    db: aiosqlite.Connection,
    day_id: int,
    attempt_number: int,
    question_ids: List[str],
    passing_percent: float,
    time_limit_minutes: int,
    started_at: str
) -> int:
    """Open a day test attempt. Raises IntegrityError if one is already open."""
    cursor = await db.execute(
        """INSERT INTO day_test_attempts
           (plan_day_id, attempt_number, question_ids, passing_percent, time_limit_minutes, started_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (day_id, attempt_number, json.dumps(question_ids), passing_percent, time_limit_minutes, started_at)
    )
    await db.commit()
    return cursor.lastrowid


async def get_day_test_attempt(db: aiosqlite.Connection, attempt_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM day_test_attempts WHERE id = ?",
        (attempt_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=DAY_TEST_JSON_FIELDS)


async def get_latest_day_test_attempt(db: aiosqlite.Connection, day_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT * FROM day_test_attempts
           WHERE plan_day_id = ?
           ORDER BY attempt_number DESC
           LIMIT 1""",
        (day_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=DAY_TEST_JSON_FIELDS)


async def get_day_test_attempts(db: aiosqlite.Connection, day_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM day_test_attempts WHERE plan_day_id = ? ORDER BY attempt_number",
        (day_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=DAY_TEST_JSON_FIELDS) for r in rows]


async def submit_day_test_attempt(
    db: aiosqlite.Connection,
    attempt_id: int,
    responses: Dict[str, Any],
    submitted_at: str,
    percentage: float,
    correct_count: int,
    gradeable_count: int,
    passed: bool,
    cooldown_ends_at: Optional[str],
    new_pass_requirement: Optional[float],
    next_day_unlocked: bool,
    plan_completed: bool,
    commit: bool = True
) -> int:
    """Record the scored submission. Returns 0 if another submit got there first."""
    cursor = await db.execute(
        """UPDATE day_test_attempts
           SET responses = ?, submitted_at = ?, percentage = ?, correct_count = ?,
               gradeable_count = ?, passed = ?, cooldown_ends_at = ?,
               new_pass_requirement = ?, next_day_unlocked = ?, plan_completed = ?
           WHERE id = ? AND submitted_at IS NULL""",
        (
            json.dumps(responses),
            submitted_at,
            percentage,
            correct_count,
            gradeable_count,
            1 if passed else 0,
            cooldown_ends_at,
            new_pass_requirement,
            1 if next_day_unlocked else 0,
            1 if plan_completed else 0,
            attempt_id,
        )
    )
    if commit:
        await db.commit()
    return cursor.rowcount


# ══════════════════════════════════════════════════════════════════════════════
# WATCH SESSIONS
# ══════════════════════════════════════════════════════════════════════════════

WATCH_SESSION_JSON_FIELDS = ['quiz_question_ids']


async def create_watch_session(
    db: aiosqlite.Connection,
    video_id: int,
    student_id: int,
    started_at: str,
    plan_day_id: Optional[int] = None
) -> int:
    """Open a watch session. Raises IntegrityError if one is already open."""
    cursor = await db.execute(
        """INSERT INTO watch_sessions (video_id, student_id, plan_day_id, started_at)
           VALUES (?, ?, ?, ?)""",
        (video_id, student_id, plan_day_id, started_at)
    )
    await db.commit()
    return cursor.lastrowid


async def get_watch_session(db: aiosqlite.Connection, session_id: int) -> Optional[Dict[str, Any]]:
    """Get a watch session joined with its video's duration."""
    cursor = await db.execute(
        """SELECT s.*, v.duration_seconds, v.youtube_video_id
           FROM watch_sessions s
           JOIN videos v ON v.id = s.video_id
           WHERE s.id = ?""",
        (session_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=WATCH_SESSION_JSON_FIELDS)


async def get_open_watch_session(
    db: aiosqlite.Connection,
    student_id: int,
    video_id: int
) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT s.*, v.duration_seconds, v.youtube_video_id
           FROM watch_sessions s
           JOIN videos v ON v.id = s.video_id
           WHERE s.student_id = ? AND s.video_id = ? AND s.ended_at IS NULL
           LIMIT 1""",
        (student_id, video_id)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row, parse_json_fields=WATCH_SESSION_JSON_FIELDS)


async def get_watch_sessions_by_student(
    db: aiosqlite.Connection,
    student_id: int,
    video_id: Optional[int] = None
) -> List[Dict[str, Any]]:
    if video_id is None:
        cursor = await db.execute(
            "SELECT * FROM watch_sessions WHERE student_id = ? ORDER BY id",
            (student_id,)
        )
    else:
        cursor = await db.execute(
            "SELECT * FROM watch_sessions WHERE student_id = ? AND video_id = ? ORDER BY id",
            (student_id, video_id)
        )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=WATCH_SESSION_JSON_FIELDS) for r in rows]


async def get_watch_sessions_by_video(db: aiosqlite.Connection, video_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM watch_sessions WHERE video_id = ? ORDER BY id",
        (video_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=WATCH_SESSION_JSON_FIELDS) for r in rows]


async def update_watch_position(
    db: aiosqlite.Connection,
    session_id: int,
    position_seconds: float,
    total_watch_time_seconds: float
) -> None:
    await db.execute(
        """UPDATE watch_sessions
           SET last_position_seconds = ?, total_watch_time_seconds = ?
           WHERE id = ? AND ended_at IS NULL""",
        (position_seconds, total_watch_time_seconds, session_id)
    )
    await db.commit()


async def record_verification(
    db: aiosqlite.Connection,
    session_id: int,
    position_seconds: float,
    commit: bool = True
) -> None:
    await db.execute(
        """UPDATE watch_sessions
           SET last_verification_seconds = ?, verifications_completed = verifications_completed + 1
           WHERE id = ?""",
        (position_seconds, session_id)
    )
    if commit:
        await db.commit()


async def set_quiz_triggered(
    db: aiosqlite.Connection,
    session_id: int,
    question_ids: List[str],
    at_seconds: float
) -> int:
    """Issue the session's comprehension quiz. Returns 0 if it was already issued."""
    cursor = await db.execute(
        """UPDATE watch_sessions
           SET quiz_question_ids = ?, quiz_triggered_at_seconds = ?
           WHERE id = ? AND quiz_triggered_at_seconds IS NULL""",
        (json.dumps(question_ids), at_seconds, session_id)
    )
    await db.commit()
    return cursor.rowcount


async def dismiss_quiz(db: aiosqlite.Connection, session_id: int, dismissed_at: str) -> int:
    cursor = await db.execute(
        """UPDATE watch_sessions SET quiz_dismissed_at = ?
           WHERE id = ? AND quiz_dismissed_at IS NULL""",
        (dismissed_at, session_id)
    )
    await db.commit()
    return cursor.rowcount


async def end_watch_session(
    db: aiosqlite.Connection,
    session_id: int,
    ended_at: str,
    is_completed: bool
) -> int:
    """Close a session. Returns 0 if it was already closed."""
    cursor = await db.execute(
        """UPDATE watch_sessions SET ended_at = ?, is_completed = ?
           WHERE id = ? AND ended_at IS NULL""",
        (ended_at, 1 if is_completed else 0, session_id)
    )
    await db.commit()
    return cursor.rowcount


# ══════════════════════════════════════════════════════════════════════════════
# ATTENTION CHALLENGES
# ══════════════════════════════════════════════════════════════════════════════

async def create_attention_challenge(
    db: aiosqlite.Connection,
    session_id: int,
    word: str,
    at_seconds: float,
    created_at: str
) -> int:
    """Issue a challenge. Raises IntegrityError if one is already outstanding."""
    cursor = await db.execute(
        """INSERT INTO attention_challenges (session_id, word, at_seconds, created_at)
           VALUES (?, ?, ?, ?)""",
        (session_id, word, at_seconds, created_at)
    )
    await db.commit()
    return cursor.lastrowid


async def get_attention_challenge(
    db: aiosqlite.Connection,
    challenge_id: int
) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM attention_challenges WHERE id = ?",
        (challenge_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row)


async def get_outstanding_challenge(
    db: aiosqlite.Connection,
    session_id: int
) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        """SELECT * FROM attention_challenges
           WHERE session_id = ? AND consumed_at IS NULL
           LIMIT 1""",
        (session_id,)
    )
    row = await cursor.fetchone()
    return _row_to_dict(row)


async def consume_challenge(
    db: aiosqlite.Connection,
    challenge_id: int,
    consumed_at: str,
    commit: bool = True
) -> int:
    cursor = await db.execute(
        "UPDATE attention_challenges SET consumed_at = ? WHERE id = ? AND consumed_at IS NULL",
        (consumed_at, challenge_id)
    )
    if commit:
        await db.commit()
    return cursor.rowcount


# ══════════════════════════════════════════════════════════════════════════════
# COMPREHENSION RESPONSES
# ══════════════════════════════════════════════════════════════════════════════

async def create_comprehension_response(
    db: aiosqlite.Connection,
    session_id: int,
    question_id: str,
    answer: Any,
    is_correct: Optional[bool],
    at_seconds: float,
    answered_at: str
) -> int:
    """Store a graded answer and bump the session counters in one transaction.

    is_correct is None for free-text answers; they are stored but never
    counted as graded. Returns 0 if this question was already answered in
    the session.
    """
    stored = None if is_correct is None else int(is_correct)
    cursor = await db.execute(
        """INSERT INTO comprehension_responses
           (session_id, question_id, answer, is_correct, at_seconds, answered_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT (session_id, question_id) DO NOTHING""",
        (session_id, question_id, json.dumps(answer), stored, at_seconds, answered_at)
    )
    inserted = cursor.rowcount
    if inserted:
        await db.execute(
            """UPDATE watch_sessions
               SET questions_answered = questions_answered + 1,
                   questions_graded = questions_graded + ?,
                   questions_correct = questions_correct + ?
               WHERE id = ?""",
            (0 if stored is None else 1, stored or 0, session_id)
        )
    await db.commit()
    return inserted


async def get_comprehension_responses(
    db: aiosqlite.Connection,
    session_id: int
) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM comprehension_responses WHERE session_id = ? ORDER BY id",
        (session_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=['answer']) for r in rows]


# ══════════════════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ══════════════════════════════════════════════════════════════════════════════

def _row_to_dict(row: aiosqlite.Row, parse_json_fields: List[str] = None) -> Optional[Dict[str, Any]]:
    """Convert a database row to a dictionary, optionally parsing JSON fields."""
    if row is None:
        return None

    result = dict(row)

    if parse_json_fields:
        for field in parse_json_fields:
            if field in result and result[field]:
                try:
                    result[field] = json.loads(result[field])
                except (json.JSONDecodeError, TypeError):
                    pass  # Keep original value if JSON parsing fails

    return result
