"""Shared fixtures: a migrated SQLite file per test and an in-memory question bank."""

import asyncio
import os

import pytest

# Settings are validated at import time
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-study-progression-engine")

from app.db.database import connect, run_alembic_upgrade
from app.db import progression as pdb
from app.models.progression import Question, QuestionType
from app.services.question_bank import StaticQuestionBank

SUBJECT = "physics"
CHAPTER = "kinematics"
STUDENT = 7
OTHER_STUDENT = 8


def chapter_questions(count: int = 20):
    """MCQ questions whose correct answer is always "A", alternating topics."""
    topics = ["velocity", "acceleration"]
    return [
        Question(
            id=f"q{i:02d}",
            type=QuestionType.MCQ,
            text=f"Question {i}",
            options={"A": "right", "B": "wrong"},
            correct_answer="A",
            explanation=f"Because of rule {i}",
            topic=topics[i % 2],
        )
        for i in range(1, count + 1)
    ]


def video_questions(video_id: int):
    return [
        Question(id=f"v{video_id}-q1", type=QuestionType.TRUE_FALSE, text="True?", correct_answer="true"),
        Question(id=f"v{video_id}-q2", type=QuestionType.MCQ, options={"A": "x", "B": "y"}, correct_answer="B"),
        Question(id=f"v{video_id}-q3", type=QuestionType.SHORT_ANSWER, text="Explain."),
    ]


def all_correct(question_ids):
    return {qid: "A" for qid in question_ids}


@pytest.fixture
def bank():
    return StaticQuestionBank(
        chapters={(SUBJECT, CHAPTER): chapter_questions()},
        video_questions={vid: video_questions(vid) for vid in range(1, 11)},
    )


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "progression.db"
    run_alembic_upgrade(str(path))
    return str(path)


@pytest.fixture
def run_db(db_path):
    """Run an async scenario against a fresh connection to the test database."""
    def _run(scenario):
        async def _main():
            db = await connect(db_path)
            try:
                return await scenario(db)
            finally:
                await db.close()
        return asyncio.run(_main())
    return _run


async def seed_videos(db, count: int = 8, duration: int = 2000):
    return [
        await pdb.create_video(db, f"yt{i}", SUBJECT, CHAPTER, duration, f"Lesson {i}")
        for i in range(1, count + 1)
    ]
