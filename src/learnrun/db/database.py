"""SQLite database connection and schema management.

Provides connection management and schema initialization for learning runs.
Writers that must not interleave (answer submission, run transitions) open the
connection with ``immediate=True``: SQLite then takes the write lock up front,
which serializes attempt numbering and transcript sequencing across threads and
processes.
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

from learnrun.config.app_config import load_app_config
from learnrun.core.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)

# Seconds a writer waits for the SQLite lock before giving up
BUSY_TIMEOUT = 30.0

# Current database path (module-level for simplicity in CLI context)
_db_path: Path | None = None


def get_db_path() -> Path:
    """Resolve the active database path.

    Order: path given to ``init_db``, ``LEARNRUN_DB_PATH`` env var,
    ``paths.db_path`` from the application config.
    """
    if _db_path is not None:
        return _db_path
    env_path = os.environ.get("LEARNRUN_DB_PATH")
    if env_path:
        return Path(env_path)
    return load_app_config().db_path


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to ``get_db_path()``
    """
    global _db_path
    _db_path = db_path or get_db_path()

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


def reset_db_path() -> None:
    """Forget the path set by ``init_db`` (for testing)."""
    global _db_path
    _db_path = None


@contextmanager
def get_db(immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Commits on success, rolls back on any exception so a failed submission
    leaves no partial writes behind.

    Args:
        immediate: Start a ``BEGIN IMMEDIATE`` write transaction

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Raises:
        StoreUnavailableError: If the database cannot be opened or fails
            with an operational error

    Example:
        with get_db(immediate=True) as conn:
            conn.execute("UPDATE runs SET state = ? WHERE run_id = ?", ...)
    """
    db_path = get_db_path()

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT)
    except (OSError, sqlite3.Error) as e:
        raise StoreUnavailableError(f"Cannot open database {db_path}: {e}") from e

    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON")
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except sqlite3.IntegrityError:
        conn.rollback()
        raise
    except sqlite3.DatabaseError as e:
        conn.rollback()
        logger.error("database.operation_failed", path=str(db_path), error=str(e))
        raise StoreUnavailableError(f"Database error: {e}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- Curriculum levels; questions hang off a level
        CREATE TABLE IF NOT EXISTS levels (
            level_id TEXT PRIMARY KEY,
            domain TEXT NOT NULL,
            level_number INTEGER NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            UNIQUE (domain, level_number)
        );

        -- Questions are immutable once stored
        CREATE TABLE IF NOT EXISTS questions (
            question_id TEXT PRIMARY KEY,
            level_id TEXT NOT NULL REFERENCES levels(level_id),
            position INTEGER NOT NULL,
            prompt TEXT NOT NULL,
            expected_category TEXT NOT NULL DEFAULT '',
            expected_format TEXT NOT NULL DEFAULT 'literal',
            expected_value TEXT NOT NULL DEFAULT ''
        );

        -- Learning runs; mode-specific fields live in the metadata JSON bag
        CREATE TABLE IF NOT EXISTS runs (
            run_id TEXT PRIMARY KEY,
            mode TEXT NOT NULL CHECK(mode IN ('single-level', 'level-range', 'retry-set')),
            state TEXT NOT NULL CHECK(state IN ('pending', 'running', 'completed', 'failed')),
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        -- One row per graded submission, never updated
        CREATE TABLE IF NOT EXISTS attempts (
            attempt_id TEXT PRIMARY KEY,
            run_id TEXT NOT NULL REFERENCES runs(run_id),
            question_id TEXT NOT NULL REFERENCES questions(question_id),
            attempt_number INTEGER NOT NULL CHECK(attempt_number >= 1),
            answer_text TEXT NOT NULL,
            verdict TEXT NOT NULL CHECK(verdict IN ('pass', 'fail')),
            severity TEXT NOT NULL,
            error_type TEXT,
            created_at TEXT NOT NULL,
            UNIQUE (run_id, question_id, attempt_number)
        );

        -- Append-only transcript
        CREATE TABLE IF NOT EXISTS messages (
            message_id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL REFERENCES runs(run_id),
            sequence_number INTEGER NOT NULL,
            role TEXT NOT NULL CHECK(role IN ('system', 'agent', 'teacher')),
            content TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'delivered',
            created_at TEXT NOT NULL,
            UNIQUE (run_id, sequence_number)
        );

        CREATE INDEX IF NOT EXISTS idx_questions_level ON questions(level_id, position);
        CREATE INDEX IF NOT EXISTS idx_attempts_run_question ON attempts(run_id, question_id);
        CREATE INDEX IF NOT EXISTS idx_messages_run ON messages(run_id, sequence_number);
        CREATE INDEX IF NOT EXISTS idx_runs_created ON runs(created_at);
        """
    )
