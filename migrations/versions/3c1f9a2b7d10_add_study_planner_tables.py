"""add_study_planner_tables

Tables for the adaptive study planner:
- videos: chapter video catalogue (youtube id + duration)
- diagnostic_attempts: one-shot chapter diagnostic, at most one open per (student, chapter)
- study_plans / plan_days: day-by-day plan; day status is derived, only gates are stored
- day_video_progress: per-day watched videos (videos_watched is a count of these rows)
- day_test_attempts: gating day tests, at most one unsubmitted attempt per day

Revision ID: 3c1f9a2b7d10
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "3c1f9a2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    dialect = op.get_bind().dialect.name
    pk = "SERIAL PRIMARY KEY" if dialect == "postgresql" else "INTEGER PRIMARY KEY AUTOINCREMENT"

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS videos (
            id {pk},
            youtube_video_id TEXT NOT NULL,
            subject_id TEXT NOT NULL,
            chapter_id TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            duration_seconds INTEGER NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """))
    op.execute(sa.text(
        "CREATE INDEX IF NOT EXISTS idx_videos_chapter "
        "ON videos(subject_id, chapter_id)"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS diagnostic_attempts (
            id {pk},
            student_id INTEGER NOT NULL,
            subject_id TEXT NOT NULL,
            chapter_id TEXT NOT NULL,
            question_ids TEXT NOT NULL,
            time_limit_minutes INTEGER NOT NULL,
            responses TEXT,
            started_at TEXT NOT NULL,
            submitted_at TEXT,
            score_percent REAL,
            correct_count INTEGER,
            gradeable_count INTEGER,
            recommended_start_level TEXT,
            weak_topics TEXT,
            elapsed_seconds INTEGER,
            timed_out INTEGER NOT NULL DEFAULT 0
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_diagnostic_open_unique "
        "ON diagnostic_attempts(student_id, chapter_id) WHERE submitted_at IS NULL"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS study_plans (
            id {pk},
            student_id INTEGER NOT NULL,
            subject_id TEXT NOT NULL,
            chapter_id TEXT NOT NULL,
            diagnostic_attempt_id INTEGER REFERENCES diagnostic_attempts(id),
            start_level TEXT NOT NULL,
            total_days INTEGER NOT NULL,
            current_day_number INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            completed_at TEXT
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_study_plans_enrollment "
        "ON study_plans(student_id, chapter_id)"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS plan_days (
            id {pk},
            plan_id INTEGER NOT NULL REFERENCES study_plans(id),
            day_number INTEGER NOT NULL,
            estimated_minutes INTEGER NOT NULL,
            video_ids TEXT NOT NULL,
            practice_question_ids TEXT NOT NULL,
            test_question_ids TEXT NOT NULL,
            reading_completed_at TEXT,
            practice_completed_at TEXT,
            current_pass_requirement REAL NOT NULL,
            unlocked_at TEXT,
            passed_at TEXT
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_plan_days_number "
        "ON plan_days(plan_id, day_number)"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS day_video_progress (
            id {pk},
            plan_day_id INTEGER NOT NULL REFERENCES plan_days(id),
            video_id INTEGER NOT NULL REFERENCES videos(id),
            completed_at TEXT NOT NULL
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_day_video_progress_unique "
        "ON day_video_progress(plan_day_id, video_id)"
    ))

    op.execute(sa.text(f"""
        CREATE TABLE IF NOT EXISTS day_test_attempts (
            id {pk},
            plan_day_id INTEGER NOT NULL REFERENCES plan_days(id),
            attempt_number INTEGER NOT NULL,
            question_ids TEXT NOT NULL,
            passing_percent REAL NOT NULL,
            time_limit_minutes INTEGER NOT NULL,
            responses TEXT,
            started_at TEXT NOT NULL,
            submitted_at TEXT,
            percentage REAL,
            correct_count INTEGER,
            gradeable_count INTEGER,
            passed INTEGER,
            cooldown_ends_at TEXT,
            new_pass_requirement REAL,
            next_day_unlocked INTEGER NOT NULL DEFAULT 0,
            plan_completed INTEGER NOT NULL DEFAULT 0
        )
    """))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_day_test_attempt_number "
        "ON day_test_attempts(plan_day_id, attempt_number)"
    ))
    op.execute(sa.text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_day_test_open_unique "
        "ON day_test_attempts(plan_day_id) WHERE submitted_at IS NULL"
    ))


def downgrade() -> None:
    op.execute(sa.text("DROP TABLE IF EXISTS day_test_attempts"))
    op.execute(sa.text("DROP TABLE IF EXISTS day_video_progress"))
    op.execute(sa.text("DROP TABLE IF EXISTS plan_days"))
    op.execute(sa.text("DROP TABLE IF EXISTS study_plans"))
    op.execute(sa.text("DROP TABLE IF EXISTS diagnostic_attempts"))
    op.execute(sa.text("DROP TABLE IF EXISTS videos"))
