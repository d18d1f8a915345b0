"""Database access for the study-progression engine (SQLite via aiosqlite).

Schema is owned by Alembic (migrations/); init_db() upgrades to head once at
startup. Routes receive a connection through the get_db() dependency.

Timestamps are stored as ISO-8601 UTC strings, JSON columns as TEXT.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Optional

import aiosqlite
from alembic import command
from alembic.config import Config

from app.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


async def connect(database_path: Optional[str] = None) -> aiosqlite.Connection:
    db = await aiosqlite.connect(database_path or settings.database_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    return db


async def get_db() -> AsyncGenerator:
    """FastAPI dependency that yields a database connection and closes it after the request."""
    db = await connect()
    try:
        yield db
    finally:
        await db.close()


def run_alembic_upgrade(database_path: Optional[str] = None):
    """Run Alembic migrations to head (synchronous, called once at startup)."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    alembic_cfg.set_main_option(
        "sqlalchemy.url", f"sqlite:///{database_path or settings.database_path}"
    )
    command.upgrade(alembic_cfg, "head")


async def init_db():
    # Ensure parent directory exists (for Docker volume mounts)
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Using SQLite backend: {settings.database_path}")

    # Alembic handles all schema creation and migrations
    run_alembic_upgrade()
