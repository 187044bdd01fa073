"""Repository functions for attempts table.

Attempts are insert-only. Only the attempt ledger writes here.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

Verdict = Literal["pass", "fail"]


@dataclass(frozen=True)
class AttemptRecord:
    """Attempt record from database."""

    attempt_id: str
    run_id: str
    question_id: str
    attempt_number: int
    answer_text: str
    verdict: Verdict
    severity: str
    error_type: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "attempt_id": self.attempt_id,
            "run_id": self.run_id,
            "question_id": self.question_id,
            "attempt_number": self.attempt_number,
            "answer_text": self.answer_text,
            "verdict": self.verdict,
            "severity": self.severity,
            "error_type": self.error_type,
            "created_at": self.created_at,
        }


def insert_attempt(
    conn: sqlite3.Connection,
    attempt_id: str,
    run_id: str,
    question_id: str,
    attempt_number: int,
    answer_text: str,
    verdict: Verdict,
    severity: str,
    error_type: str | None,
) -> AttemptRecord:
    """Insert an attempt.

    Raises:
        sqlite3.IntegrityError: If (run, question, attempt_number) already exists
    """
    created_at = datetime.now(timezone.utc).isoformat()
    conn.execute(
        """
        INSERT INTO attempts (
            attempt_id, run_id, question_id, attempt_number,
            answer_text, verdict, severity, error_type, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            attempt_id,
            run_id,
            question_id,
            attempt_number,
            answer_text,
            verdict,
            severity,
            error_type,
            created_at,
        ),
    )
    return AttemptRecord(
        attempt_id=attempt_id,
        run_id=run_id,
        question_id=question_id,
        attempt_number=attempt_number,
        answer_text=answer_text,
        verdict=verdict,
        severity=severity,
        error_type=error_type,
        created_at=created_at,
    )


def count_attempts(conn: sqlite3.Connection, run_id: str, question_id: str) -> int:
    """Count attempts for a (run, question) pair."""
    row = conn.execute(
        "SELECT COUNT(*) FROM attempts WHERE run_id = ? AND question_id = ?",
        (run_id, question_id),
    ).fetchone()
    return int(row[0])


def list_attempts_for_run(conn: sqlite3.Connection, run_id: str) -> list[AttemptRecord]:
    """Get every attempt of a run in submission order."""
    rows = conn.execute(
        "SELECT * FROM attempts WHERE run_id = ? ORDER BY rowid",
        (run_id,),
    ).fetchall()
    return [_row_to_record(row) for row in rows]


def list_attempts_for_question(
    conn: sqlite3.Connection, run_id: str, question_id: str
) -> list[AttemptRecord]:
    """Get attempts of one (run, question) pair ordered by attempt number."""
    rows = conn.execute(
        """
        SELECT * FROM attempts
        WHERE run_id = ? AND question_id = ?
        ORDER BY attempt_number
        """,
        (run_id, question_id),
    ).fetchall()
    return [_row_to_record(row) for row in rows]


def _row_to_record(row: sqlite3.Row) -> AttemptRecord:
    return AttemptRecord(
        attempt_id=row["attempt_id"],
        run_id=row["run_id"],
        question_id=row["question_id"],
        attempt_number=row["attempt_number"],
        answer_text=row["answer_text"],
        verdict=row["verdict"],
        severity=row["severity"],
        error_type=row["error_type"],
        created_at=row["created_at"],
    )
