"""add_video_watch_tables

Tables for video watch integrity:
- watch_sessions: per (student, video) playback session, at most one open at a time
- attention_challenges: single-use verification words issued during playback
- comprehension_responses: graded answers to the one-time comprehension quiz

Revision ID: 8e4d2c6a1f55
Revises: 3c1f9a2b7d10
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "8e4d2c6a1f55"
down_revision: Union[str, Sequence[str], None] = "3c1f9a2b7d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    dialect = op.get_bind().dialect.name
    pk = "SERIAL PRIMARY KEY" if dialect == "postgresql" else "INTEGER PRIMARY KEY AUTOINCREMENT"

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS watch_sessions (
            id {pk},
            video_id INTEGER NOT NULL REFERENCES videos(id),
            student_id INTEGER NOT NULL,
            plan_day_id INTEGER REFERENCES plan_days(id),
            total_watch_time_seconds REAL NOT NULL DEFAULT 0,
            last_position_seconds REAL NOT NULL DEFAULT 0,
            last_verification_seconds REAL NOT NULL DEFAULT 0,
            verifications_completed INTEGER NOT NULL DEFAULT 0,
            quiz_question_ids TEXT,
            quiz_triggered_at_seconds REAL,
            quiz_dismissed_at TEXT,
            questions_answered INTEGER NOT NULL DEFAULT 0,
            questions_graded INTEGER NOT NULL DEFAULT 0,
            questions_correct INTEGER NOT NULL DEFAULT 0,
            is_completed INTEGER NOT NULL DEFAULT 0,
            started_at TEXT NOT NULL,
            ended_at TEXT
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_watch_sessions_open_unique "
        "ON watch_sessions(student_id, video_id) WHERE ended_at IS NULL"
    ))
    op.execute(sa.text(
        "CREATE INDEX IF NOT EXISTS idx_watch_sessions_student "
        "ON watch_sessions(student_id)"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS attention_challenges (
            id {pk},
            session_id INTEGER NOT NULL REFERENCES watch_sessions(id),
            word TEXT NOT NULL,
            at_seconds REAL NOT NULL,
            created_at TEXT NOT NULL,
            consumed_at TEXT
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_attention_challenges_outstanding "
        "ON attention_challenges(session_id) WHERE consumed_at IS NULL"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS comprehension_responses (
            id {pk},
            session_id INTEGER NOT NULL REFERENCES watch_sessions(id),
            question_id TEXT NOT NULL,
            answer TEXT,
            is_correct INTEGER,
            at_seconds REAL NOT NULL,
            answered_at TEXT NOT NULL
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_comprehension_responses_unique "
        "ON comprehension_responses(session_id, question_id)"
    ))


def downgrade() -> None:
    op.execute(sa.text("DROP TABLE IF EXISTS comprehension_responses"))
    op.execute(sa.text("DROP TABLE IF EXISTS attention_challenges"))
    op.execute(sa.text("DROP TABLE IF EXISTS watch_sessions"))
