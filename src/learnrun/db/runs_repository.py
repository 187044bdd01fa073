"""Repository functions for runs table.

The ``metadata`` column is a free-form JSON bag. Which keys are present
depends on the run mode:

- single-level: domain, level_number
- level-range: start_level, end_level, current_level, auto_mode
- retry-set: failed_questions

Every mode carries cursor, questions_completed and questions_failed.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import structlog

logger = structlog.get_logger(__name__)

RunMode = Literal["single-level", "level-range", "retry-set"]
RunState = Literal["pending", "running", "completed", "failed"]

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass
class RunRecord:
    """Run record from database."""

    run_id: str
    mode: RunMode
    state: RunState
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @property
    def cursor(self) -> int:
        """Index into the question sequence (tolerates a missing key)."""
        return int(self.metadata.get("cursor", 0) or 0)

    @property
    def is_running(self) -> bool:
        return self.state == "running"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def domain(self) -> str | None:
        return self.metadata.get("domain")

    @property
    def level_number(self) -> int | None:
        return self.metadata.get("level_number")

    @property
    def current_level(self) -> int | None:
        return self.metadata.get("current_level")

    @property
    def start_level(self) -> int | None:
        return self.metadata.get("start_level")

    @property
    def end_level(self) -> int | None:
        return self.metadata.get("end_level")

    @property
    def auto_mode(self) -> bool:
        return bool(self.metadata.get("auto_mode", False))

    @property
    def failed_questions(self) -> list[str]:
        return list(self.metadata.get("failed_questions", []))

    @property
    def questions_completed(self) -> int:
        return int(self.metadata.get("questions_completed", 0) or 0)

    @property
    def questions_failed(self) -> int:
        return int(self.metadata.get("questions_failed", 0) or 0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "state": self.state,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def insert_run(
    conn: sqlite3.Connection,
    run_id: str,
    mode: RunMode,
    metadata: dict[str, Any],
    state: RunState = "running",
) -> RunRecord:
    """Insert a new run record.

    Args:
        conn: Open connection (caller owns the transaction)
        run_id: Opaque run identifier
        mode: Run mode
        metadata: Mode-specific fields plus cursor/counters
        state: Initial state (runs start directly in 'running')

    Returns:
        The inserted RunRecord
    """
    now = _now()
    conn.execute(
        """
        INSERT INTO runs (run_id, mode, state, metadata, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, mode, state, json.dumps(metadata), now, now),
    )
    logger.debug("runs.inserted", run_id=run_id, mode=mode)
    return RunRecord(
        run_id=run_id,
        mode=mode,
        state=state,
        metadata=dict(metadata),
        created_at=now,
        updated_at=now,
    )


def get_run(conn: sqlite3.Connection, run_id: str) -> RunRecord | None:
    """Get run by ID.

    Returns:
        RunRecord if found, None otherwise
    """
    row = conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def update_run(
    conn: sqlite3.Connection,
    run_id: str,
    state: RunState,
    metadata: dict[str, Any],
) -> None:
    """Persist state and metadata of a run."""
    conn.execute(
        "UPDATE runs SET state = ?, metadata = ?, updated_at = ? WHERE run_id = ?",
        (state, json.dumps(metadata), _now(), run_id),
    )
    logger.debug("runs.updated", run_id=run_id, state=state)


def list_runs(conn: sqlite3.Connection, limit: int = 100) -> list[RunRecord]:
    """Get most recent runs first."""
    rows = conn.execute(
        "SELECT * FROM runs ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
    ).fetchall()
    return [_row_to_record(row) for row in rows]


def count_runs_by_state(conn: sqlite3.Connection, state: RunState) -> int:
    """Count runs in one lifecycle state."""
    row = conn.execute("SELECT COUNT(*) FROM runs WHERE state = ?", (state,)).fetchone()
    return int(row[0])


def _row_to_record(row: sqlite3.Row) -> RunRecord:
    """Convert database row to RunRecord."""
    try:
        metadata = json.loads(row["metadata"]) if row["metadata"] else {}
    except json.JSONDecodeError:
        logger.warning("runs.metadata_unreadable", run_id=row["run_id"])
        metadata = {}

    return RunRecord(
        run_id=row["run_id"],
        mode=row["mode"],
        state=row["state"],
        metadata=metadata,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
