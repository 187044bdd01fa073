"""Auto-mode level progression.

A level-range run stays on ``current_level`` until enough of that level's
questions have been passed in the run. Mastery is the share of distinct
questions of the level with a passing attempt; crossing the threshold moves
the run to the next stored level number, and moving past ``end_level``
completes the run.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

import structlog

from learnrun.core.attempt_ledger import AttemptLedger
from learnrun.db import curriculum_repository
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.db.runs_repository import RunRecord

logger = structlog.get_logger(__name__)

DEFAULT_MASTERY_THRESHOLD = 0.8


@dataclass(frozen=True)
class LevelProgress:
    """Outcome of a mastery check for the run's current level."""

    level_number: int
    mastery: float
    level_up: bool = False
    next_level: int | None = None
    completed: bool = False


class LevelAdvancer:
    """Decides when an auto-mode run moves to its next level."""

    def __init__(
        self,
        ledger: AttemptLedger | None = None,
        mastery_threshold: float = DEFAULT_MASTERY_THRESHOLD,
    ):
        self.ledger = ledger or AttemptLedger()
        self.mastery_threshold = mastery_threshold

    def mastery(
        self,
        conn: sqlite3.Connection,
        run_id: str,
        questions: list[QuestionRecord],
    ) -> float:
        """Share of ``questions`` with a passing attempt in the run."""
        if not questions:
            return 0.0
        passed = self.ledger.passed_question_ids(conn, run_id)
        level_ids = {q.question_id for q in questions}
        return len(level_ids & passed) / len(level_ids)

    def evaluate(
        self,
        conn: sqlite3.Connection,
        run: RunRecord,
        questions: list[QuestionRecord],
    ) -> LevelProgress | None:
        """Check mastery of the current level after an advancing submission.

        Args:
            conn: Connection holding the submission transaction
            run: Run as it stands before this check
            questions: Questions of the run's current level

        Returns:
            LevelProgress, or None for runs that are not in auto mode
        """
        if not run.auto_mode or run.current_level is None:
            return None

        current = run.current_level
        mastery = self.mastery(conn, run.run_id, questions)

        if mastery < self.mastery_threshold:
            return LevelProgress(level_number=current, mastery=mastery)

        next_level = curriculum_repository.get_next_level_number(conn, current)
        end_level = run.end_level if run.end_level is not None else current

        if next_level is None or next_level > end_level:
            logger.info(
                "level_range_completed",
                run_id=run.run_id,
                level=current,
                end_level=end_level,
                mastery=round(mastery, 3),
            )
            return LevelProgress(
                level_number=current,
                mastery=mastery,
                level_up=True,
                next_level=current + 1,
                completed=True,
            )

        logger.info(
            "level_mastered",
            run_id=run.run_id,
            level=current,
            next_level=next_level,
            mastery=round(mastery, 3),
        )
        return LevelProgress(
            level_number=current,
            mastery=mastery,
            level_up=True,
            next_level=next_level,
        )
