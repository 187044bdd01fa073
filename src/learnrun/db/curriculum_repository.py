"""Repository functions for levels and questions tables.

Questions are read-only for the learning core: they are inserted by the
curriculum loader and looked up by level + position afterwards.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

LITERAL_FORMAT = "literal"


@dataclass(frozen=True)
class LevelRecord:
    """Level record from database."""

    level_id: str
    domain: str
    level_number: int
    title: str


@dataclass(frozen=True)
class QuestionRecord:
    """Question record from database."""

    question_id: str
    level_id: str
    position: int
    prompt: str
    expected_category: str
    expected_format: str
    expected_value: str

    @property
    def is_literal(self) -> bool:
        """Whether answers are graded with the literal grammar."""
        return self.expected_format == LITERAL_FORMAT

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "question_id": self.question_id,
            "level_id": self.level_id,
            "position": self.position,
            "prompt": self.prompt,
            "expected_category": self.expected_category,
            "expected_format": self.expected_format,
            "expected_value": self.expected_value,
        }


# =============================================================================
# LEVELS
# =============================================================================


def insert_level(
    conn: sqlite3.Connection,
    level_id: str,
    domain: str,
    level_number: int,
    title: str = "",
) -> LevelRecord:
    """Insert a new level record.

    Raises:
        sqlite3.IntegrityError: If (domain, level_number) already exists
    """
    conn.execute(
        "INSERT INTO levels (level_id, domain, level_number, title) VALUES (?, ?, ?, ?)",
        (level_id, domain, level_number, title),
    )
    logger.debug("levels.inserted", level_id=level_id, domain=domain, level_number=level_number)
    return LevelRecord(level_id=level_id, domain=domain, level_number=level_number, title=title)


def get_level(conn: sqlite3.Connection, domain: str, level_number: int) -> LevelRecord | None:
    """Get a level by domain and number."""
    row = conn.execute(
        "SELECT * FROM levels WHERE domain = ? AND level_number = ?",
        (domain, level_number),
    ).fetchone()
    return _row_to_level(row) if row is not None else None


def get_first_level_by_number(conn: sqlite3.Connection, level_number: int) -> LevelRecord | None:
    """Get the first level with this number across all domains.

    Level-range runs span domains; ties are broken by domain name so the
    choice is stable.
    """
    row = conn.execute(
        "SELECT * FROM levels WHERE level_number = ? ORDER BY domain LIMIT 1",
        (level_number,),
    ).fetchone()
    return _row_to_level(row) if row is not None else None


def get_next_level_number(conn: sqlite3.Connection, after_level: int) -> int | None:
    """Smallest stored level number strictly greater than ``after_level``."""
    row = conn.execute(
        "SELECT MIN(level_number) FROM levels WHERE level_number > ?",
        (after_level,),
    ).fetchone()
    return int(row[0]) if row[0] is not None else None


# =============================================================================
# QUESTIONS
# =============================================================================


def insert_question(
    conn: sqlite3.Connection,
    question_id: str,
    level_id: str,
    position: int,
    prompt: str,
    expected_category: str,
    expected_format: str,
    expected_value: str,
) -> QuestionRecord:
    """Insert a new question record."""
    conn.execute(
        """
        INSERT INTO questions (
            question_id, level_id, position, prompt,
            expected_category, expected_format, expected_value
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            question_id,
            level_id,
            position,
            prompt,
            expected_category,
            expected_format,
            expected_value,
        ),
    )
    return QuestionRecord(
        question_id=question_id,
        level_id=level_id,
        position=position,
        prompt=prompt,
        expected_category=expected_category,
        expected_format=expected_format,
        expected_value=expected_value,
    )


def get_question(conn: sqlite3.Connection, question_id: str) -> QuestionRecord | None:
    """Get question by ID."""
    row = conn.execute(
        "SELECT * FROM questions WHERE question_id = ?", (question_id,)
    ).fetchone()
    return _row_to_question(row) if row is not None else None


def list_questions_for_level(conn: sqlite3.Connection, level_id: str) -> list[QuestionRecord]:
    """Get all questions of a level in stored order."""
    rows = conn.execute(
        "SELECT * FROM questions WHERE level_id = ? ORDER BY position, question_id",
        (level_id,),
    ).fetchall()
    return [_row_to_question(row) for row in rows]


def get_questions_by_ids(conn: sqlite3.Connection, question_ids: list[str]) -> list[QuestionRecord]:
    """Get questions preserving the order of ``question_ids``.

    Unknown ids are skipped; callers compare lengths when that matters.
    """
    if not question_ids:
        return []
    placeholders = ", ".join("?" for _ in question_ids)
    rows = conn.execute(
        f"SELECT * FROM questions WHERE question_id IN ({placeholders})",
        tuple(question_ids),
    ).fetchall()
    by_id = {row["question_id"]: _row_to_question(row) for row in rows}
    return [by_id[qid] for qid in question_ids if qid in by_id]


def _row_to_level(row: sqlite3.Row) -> LevelRecord:
    return LevelRecord(
        level_id=row["level_id"],
        domain=row["domain"],
        level_number=row["level_number"],
        title=row["title"],
    )


def _row_to_question(row: sqlite3.Row) -> QuestionRecord:
    return QuestionRecord(
        question_id=row["question_id"],
        level_id=row["level_id"],
        position=row["position"],
        prompt=row["prompt"],
        expected_category=row["expected_category"],
        expected_format=row["expected_format"],
        expected_value=row["expected_value"],
    )
