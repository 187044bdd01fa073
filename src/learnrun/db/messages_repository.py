"""Repository functions for the transcript (messages table).

The transcript is append-only and ordered by a per-run ``sequence_number``.
``append_message`` computes the next number from the current maximum, so it
must run inside the caller's write transaction.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

MessageRole = Literal["system", "agent", "teacher"]
MessageStatus = Literal["delivered", "pending_validation"]


@dataclass(frozen=True)
class MessageRecord:
    """Transcript entry from database."""

    run_id: str
    sequence_number: int
    role: MessageRole
    content: str
    status: MessageStatus
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "sequence_number": self.sequence_number,
            "role": self.role,
            "content": self.content,
            "status": self.status,
            "created_at": self.created_at,
        }


def next_sequence_number(conn: sqlite3.Connection, run_id: str) -> int:
    """Next free sequence number for a run (1 for an empty transcript)."""
    row = conn.execute(
        "SELECT COALESCE(MAX(sequence_number), 0) FROM messages WHERE run_id = ?",
        (run_id,),
    ).fetchone()
    return int(row[0]) + 1


def append_message(
    conn: sqlite3.Connection,
    run_id: str,
    role: MessageRole,
    content: str,
    status: MessageStatus = "delivered",
) -> MessageRecord:
    """Append a message at the end of a run's transcript."""
    sequence_number = next_sequence_number(conn, run_id)
    created_at = datetime.now(timezone.utc).isoformat()
    conn.execute(
        """
        INSERT INTO messages (run_id, sequence_number, role, content, status, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, sequence_number, role, content, status, created_at),
    )
    return MessageRecord(
        run_id=run_id,
        sequence_number=sequence_number,
        role=role,
        content=content,
        status=status,
        created_at=created_at,
    )


def list_messages(conn: sqlite3.Connection, run_id: str) -> list[MessageRecord]:
    """Get a run's transcript in sequence order."""
    rows = conn.execute(
        "SELECT * FROM messages WHERE run_id = ? ORDER BY sequence_number",
        (run_id,),
    ).fetchall()
    return [
        MessageRecord(
            run_id=row["run_id"],
            sequence_number=row["sequence_number"],
            role=row["role"],
            content=row["content"],
            status=row["status"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


def count_messages(conn: sqlite3.Connection, run_id: str) -> int:
    """Count transcript entries of a run."""
    row = conn.execute("SELECT COUNT(*) FROM messages WHERE run_id = ?", (run_id,)).fetchone()
    return int(row[0])
