"""Attempt ledger module.

Responsibilities:
- Record one attempt per submission for a (run, question) pair
- Number attempts 1..k without gaps
- Answer history questions (verdict counts, unresolved questions)

The attempt number is ``count(existing) + 1``, so ``record`` must be called
inside a write transaction opened with ``get_db(immediate=True)``; the
UNIQUE(run_id, question_id, attempt_number) constraint rejects any duplicate
that slips through. The ledger does not know the attempt cap: the lifecycle
manager decides whether attempt N was the last.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass

import structlog

from learnrun.core.answer_validator import ValidationResult
from learnrun.db import attempts_repository
from learnrun.db.attempts_repository import AttemptRecord
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.db.runs_repository import RunRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VerdictCounts:
    """Pass/fail totals over a run's full attempt history."""

    passed: int
    failed: int

    @property
    def total(self) -> int:
        return self.passed + self.failed


class AttemptLedger:
    """Insert-only record of graded submissions."""

    def record(
        self,
        conn: sqlite3.Connection,
        run: RunRecord,
        question: QuestionRecord,
        answer_text: str,
        validation: ValidationResult,
    ) -> AttemptRecord:
        """Record an attempt and assign its number.

        Args:
            conn: Connection holding the write transaction
            run: Run being answered
            question: Question being answered
            answer_text: Raw answer text
            validation: Verdict from the validator

        Returns:
            The stored AttemptRecord
        """
        attempt_number = attempts_repository.count_attempts(conn, run.run_id, question.question_id) + 1

        attempt = attempts_repository.insert_attempt(
            conn,
            attempt_id=uuid.uuid4().hex,
            run_id=run.run_id,
            question_id=question.question_id,
            attempt_number=attempt_number,
            answer_text=answer_text,
            verdict="pass" if validation.is_correct else "fail",
            severity=validation.severity.value,
            error_type=validation.error_type,
        )

        logger.debug(
            "attempt_recorded",
            run_id=run.run_id,
            question_id=question.question_id,
            attempt_number=attempt_number,
            verdict=attempt.verdict,
        )
        return attempt

    def history(self, conn: sqlite3.Connection, run_id: str) -> list[AttemptRecord]:
        """Every attempt of a run in submission order."""
        return attempts_repository.list_attempts_for_run(conn, run_id)

    def count_verdicts(self, conn: sqlite3.Connection, run_id: str) -> VerdictCounts:
        """Recompute pass/fail totals from the stored history."""
        attempts = self.history(conn, run_id)
        passed = sum(1 for a in attempts if a.verdict == "pass")
        return VerdictCounts(passed=passed, failed=len(attempts) - passed)

    def find_pass(
        self, conn: sqlite3.Connection, run_id: str, question_id: str
    ) -> AttemptRecord | None:
        """The passing attempt of a (run, question) pair, if any."""
        for attempt in attempts_repository.list_attempts_for_question(conn, run_id, question_id):
            if attempt.verdict == "pass":
                return attempt
        return None

    def passed_question_ids(self, conn: sqlite3.Connection, run_id: str) -> set[str]:
        """Questions with a passing attempt in this run."""
        return {a.question_id for a in self.history(conn, run_id) if a.verdict == "pass"}

    def unresolved_question_ids(self, conn: sqlite3.Connection, run_id: str) -> list[str]:
        """Questions that failed at least once and were never passed.

        Ordered by first failure, ready to seed a retry set.
        """
        attempts = self.history(conn, run_id)
        passed = {a.question_id for a in attempts if a.verdict == "pass"}
        unresolved: list[str] = []
        for attempt in attempts:
            if (
                attempt.verdict == "fail"
                and attempt.question_id not in passed
                and attempt.question_id not in unresolved
            ):
                unresolved.append(attempt.question_id)
        return unresolved
