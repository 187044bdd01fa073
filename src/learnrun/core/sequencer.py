"""Question sequencing for learning runs.

The question shown next is ``questions[cursor mod n]``. When the cursor runs
past the end of a level the sequence starts again from the top, so a run can
cycle through a level indefinitely. The two-question lookahead returns
``(cursor mod n, (cursor + 1) mod n)``.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

import structlog

from learnrun.core.errors import EmptyLevelError, LevelNotFoundError
from learnrun.db import curriculum_repository
from learnrun.db.curriculum_repository import LevelRecord, QuestionRecord
from learnrun.db.runs_repository import RunRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SequencedQuestion:
    """Next question for a run and its index in the level."""

    question: QuestionRecord
    index: int


@dataclass(frozen=True)
class SequencedPair:
    """Two-question lookahead."""

    questions: list[QuestionRecord]
    indices: list[int]


class QuestionSequencer:
    """Picks the next question(s) for a run from its cursor."""

    def next(self, conn: sqlite3.Connection, run: RunRecord) -> SequencedQuestion:
        """Question at ``cursor mod n``.

        Raises:
            LevelNotFoundError: If the run's level is not in the store
            EmptyLevelError: If the level has no questions
        """
        questions = self.questions_for(conn, run)
        index = run.cursor % len(questions)
        return SequencedQuestion(question=questions[index], index=index)

    def next_two(self, conn: sqlite3.Connection, run: RunRecord) -> SequencedPair:
        """Questions at ``cursor mod n`` and ``(cursor + 1) mod n``.

        With a single-question level both entries are the same question.
        """
        questions = self.questions_for(conn, run)
        first = run.cursor % len(questions)
        second = (run.cursor + 1) % len(questions)
        return SequencedPair(
            questions=[questions[first], questions[second]],
            indices=[first, second],
        )

    def questions_for(self, conn: sqlite3.Connection, run: RunRecord) -> list[QuestionRecord]:
        """Full ordered question list the run is cycling through."""
        if run.mode == "retry-set":
            ids = run.failed_questions
            questions = curriculum_repository.get_questions_by_ids(conn, ids)
            if not questions:
                raise EmptyLevelError(
                    f"Retry set of run {run.run_id} has no questions",
                    {"run_id": run.run_id},
                )
            return questions

        level = self.resolve_level(conn, run)
        questions = curriculum_repository.list_questions_for_level(conn, level.level_id)
        if not questions:
            logger.error("level_has_no_questions", run_id=run.run_id, level_id=level.level_id)
            raise EmptyLevelError(
                f"No questions in level {level.domain}/{level.level_number}",
                {"level_id": level.level_id},
            )
        return questions

    def resolve_level(self, conn: sqlite3.Connection, run: RunRecord) -> LevelRecord:
        """Active level of a single-level or level-range run."""
        if run.mode == "level-range" or run.auto_mode:
            level_number = run.current_level
            level = (
                curriculum_repository.get_first_level_by_number(conn, level_number)
                if level_number is not None
                else None
            )
            label = str(level_number)
        else:
            domain = run.domain
            level_number = run.level_number
            level = (
                curriculum_repository.get_level(conn, domain, level_number)
                if domain is not None and level_number is not None
                else None
            )
            label = f"{domain}/{level_number}"

        if level is None:
            logger.error("level_not_found", run_id=run.run_id, level=label)
            raise LevelNotFoundError(f"Level not found: {label}", {"run_id": run.run_id})
        return level
