"""Run lifecycle module.

Responsibilities:
- Create runs (single level, level range in auto mode, retry set)
- Accept answers: validate, record the attempt, compose feedback, decide
  advance vs retry
- Own every run state transition (running -> completed | failed)
- Keep the per-run transcript

Every write goes through ``get_db(immediate=True)``: SQLite takes its write
lock before anything is read, so attempt numbers and transcript sequence
numbers are assigned one submission at a time, and the attempt, both
transcript entries and the run update commit together or not at all.

Progress counters are recomputed from the attempt history on every
submission rather than incremented.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from learnrun.config.app_config import AppConfig, load_app_config
from learnrun.core.answer_validator import AnswerValidator, ValidationResult
from learnrun.core.attempt_ledger import AttemptLedger
from learnrun.core.errors import (
    InvalidRunRequestError,
    InvalidTransitionError,
    LevelNotFoundError,
    ProviderUnavailableError,
    QuestionNotFoundError,
    RunNotActiveError,
    RunNotFoundError,
    StoreUnavailableError,
)
from learnrun.core.feedback import FeedbackComposer
from learnrun.core.level_advancer import LevelAdvancer
from learnrun.core.sequencer import QuestionSequencer, SequencedPair, SequencedQuestion
from learnrun.db import curriculum_repository, messages_repository, runs_repository
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.db.database import get_db
from learnrun.db.messages_repository import MessageRecord
from learnrun.db.runs_repository import RunRecord, RunState
from learnrun.llm.client import LLMClient, LLMConnectionError, LLMError
from learnrun.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 5

ALREADY_PASSED_TEMPLATE = (
    "Already answered correctly (attempt {attempt_number}). Moving to next question."
)

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class SubmissionResult:
    """Outcome of one submitted answer."""

    correct: bool
    severity: str
    error_type: str | None
    attempt_number: int
    max_attempts: int
    should_advance: bool
    can_retry: bool
    messages: list[str] = field(default_factory=list)
    normalized_answer: str | None = None
    feedback: str = ""
    run_state: str = "running"
    question_id: str = ""
    current_level: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "question_id": self.question_id,
            "correct": self.correct,
            "severity": self.severity,
            "error_type": self.error_type,
            "attempt_number": self.attempt_number,
            "max_attempts": self.max_attempts,
            "should_advance": self.should_advance,
            "can_retry": self.can_retry,
            "messages": list(self.messages),
            "normalized_answer": self.normalized_answer,
            "feedback": self.feedback,
            "run_state": self.run_state,
            "current_level": self.current_level,
        }


@dataclass
class RunStatus:
    """Run snapshot with counters recomputed from the attempt history."""

    run: RunRecord
    questions_completed: int
    questions_failed: int
    attempt_count: int
    message_count: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run.run_id,
            "mode": self.run.mode,
            "state": self.run.state,
            "domain": self.run.domain,
            "level_number": self.run.level_number,
            "current_level": self.run.current_level,
            "start_level": self.run.start_level,
            "end_level": self.run.end_level,
            "auto_mode": self.run.auto_mode,
            "cursor": self.run.cursor,
            "questions_completed": self.questions_completed,
            "questions_failed": self.questions_failed,
            "attempt_count": self.attempt_count,
            "message_count": self.message_count,
            "created_at": self.run.created_at,
            "updated_at": self.run.updated_at,
        }


@dataclass
class GeneratedAnswer:
    """Answer produced by the provider, optionally already submitted."""

    run_id: str
    question_id: str
    answer_text: str
    latency_ms: int = 0
    submission: SubmissionResult | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "question_id": self.question_id,
            "answer_text": self.answer_text,
            "latency_ms": self.latency_ms,
            "submission": self.submission.to_dict() if self.submission else None,
        }


def _initial_metadata(**fields: Any) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "cursor": 0,
        "questions_completed": 0,
        "questions_failed": 0,
    }
    metadata.update(fields)
    return metadata


# =============================================================================
# RUN LIFECYCLE MANAGER
# =============================================================================


class RunLifecycleManager:
    """Orchestrates validator, ledger, sequencer and feedback for runs."""

    def __init__(
        self,
        validator: AnswerValidator | None = None,
        ledger: AttemptLedger | None = None,
        sequencer: QuestionSequencer | None = None,
        composer: FeedbackComposer | None = None,
        advancer: LevelAdvancer | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        client: LLMClient | None = None,
    ):
        """Initialize manager.

        Args:
            validator: Answer grader
            ledger: Attempt recorder
            sequencer: Question selection
            composer: Feedback templates (with an enrichment client, if any)
            advancer: Auto-mode level progression
            max_attempts: Attempts allowed per (run, question)
            client: Provider used by ``generate_answer``
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.validator = validator or AnswerValidator()
        self.ledger = ledger or AttemptLedger()
        self.sequencer = sequencer or QuestionSequencer()
        self.composer = composer or FeedbackComposer()
        self.advancer = advancer or LevelAdvancer(self.ledger)
        self.max_attempts = max_attempts
        self.client = client

    @classmethod
    def from_config(
        cls,
        config: AppConfig | None = None,
        client: LLMClient | None = None,
    ) -> RunLifecycleManager:
        """Build a manager from the application config.

        Feedback enrichment, when enabled, gets its own client whose timeout
        is ``run.enrichment_timeout`` so a slow provider cannot stall a
        submission for long.
        """
        config = config or load_app_config()
        policy = config.run
        ledger = AttemptLedger()

        enrichment_client = None
        if policy.feedback_enrichment and client is not None:
            enrichment_client = LLMClient(
                config=replace(client.config),
                timeout=policy.enrichment_timeout,
            )

        return cls(
            ledger=ledger,
            composer=FeedbackComposer(enrichment_client),
            advancer=LevelAdvancer(ledger, policy.mastery_threshold),
            max_attempts=policy.max_attempts,
            client=client,
        )

    # -------------------------------------------------------------------------
    # Run creation
    # -------------------------------------------------------------------------

    def start_run(self, domain: str, level_number: int) -> RunRecord:
        """Start a run on a single level.

        Raises:
            LevelNotFoundError: If (domain, level_number) is not stored
        """
        run_id = uuid.uuid4().hex

        with get_db(immediate=True) as conn:
            if curriculum_repository.get_level(conn, domain, level_number) is None:
                raise LevelNotFoundError(
                    f"Level not found: {domain}/{level_number}",
                    {"domain": domain, "level_number": level_number},
                )

            run = runs_repository.insert_run(
                conn,
                run_id=run_id,
                mode="single-level",
                metadata=_initial_metadata(domain=domain, level_number=level_number),
            )
            messages_repository.append_message(
                conn, run_id, "system", f"Learning run started: {domain} Level {level_number}"
            )

        logger.info("run_started", run_id=run_id, mode=run.mode, domain=domain, level=level_number)
        return run

    def start_run_auto_mode(self, start_level: int, end_level: int) -> RunRecord:
        """Start an auto-mode run over a range of level numbers.

        Raises:
            InvalidRunRequestError: If the range is empty or not positive
            LevelNotFoundError: If no stored level lies in the range
        """
        if start_level < 1 or end_level < start_level:
            raise InvalidRunRequestError(
                f"Invalid level range {start_level}-{end_level}",
                {"start_level": start_level, "end_level": end_level},
            )

        run_id = uuid.uuid4().hex

        with get_db(immediate=True) as conn:
            # Gaps in level numbering are skipped from the very first level
            first_level = curriculum_repository.get_next_level_number(conn, start_level - 1)
            if first_level is None or first_level > end_level:
                raise LevelNotFoundError(
                    f"No levels found in range {start_level}-{end_level}",
                    {"start_level": start_level, "end_level": end_level},
                )

            run = runs_repository.insert_run(
                conn,
                run_id=run_id,
                mode="level-range",
                metadata=_initial_metadata(
                    start_level=start_level,
                    end_level=end_level,
                    current_level=first_level,
                    auto_mode=True,
                ),
            )
            messages_repository.append_message(
                conn,
                run_id,
                "system",
                f"Learning run started (Auto Mode): Levels {start_level}-{end_level}",
            )

        logger.info(
            "run_started",
            run_id=run_id,
            mode=run.mode,
            start_level=start_level,
            end_level=end_level,
        )
        return run

    def start_retry_set(
        self,
        failed_question_ids: list[str],
        source_run_id: str | None = None,
    ) -> RunRecord:
        """Start a run that cycles through the given questions.

        Duplicate ids are dropped, first occurrence wins.

        Raises:
            InvalidRunRequestError: If no question ids are given
            QuestionNotFoundError: If an id is not stored
        """
        question_ids = list(dict.fromkeys(qid.strip() for qid in failed_question_ids if qid.strip()))
        if not question_ids:
            raise InvalidRunRequestError("No failed questions to retry")

        run_id = uuid.uuid4().hex

        with get_db(immediate=True) as conn:
            found = curriculum_repository.get_questions_by_ids(conn, question_ids)
            if len(found) != len(question_ids):
                known = {q.question_id for q in found}
                missing = next(qid for qid in question_ids if qid not in known)
                raise QuestionNotFoundError(missing)

            metadata = _initial_metadata(failed_questions=question_ids)
            if source_run_id:
                metadata["source_run_id"] = source_run_id

            run = runs_repository.insert_run(conn, run_id=run_id, mode="retry-set", metadata=metadata)
            messages_repository.append_message(
                conn,
                run_id,
                "system",
                f"Auto-retry started for {len(question_ids)} failed questions",
            )

        logger.info("run_started", run_id=run_id, mode=run.mode, questions=len(question_ids))
        return run

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: str) -> RunRecord:
        """Get a run or raise RunNotFoundError."""
        with get_db() as conn:
            return self._require_run(conn, run_id)

    def get_run_status(self, run_id: str) -> RunStatus:
        """Run state plus counters recomputed from the attempt history."""
        with get_db() as conn:
            run = self._require_run(conn, run_id)
            counts = self.ledger.count_verdicts(conn, run_id)
            message_count = messages_repository.count_messages(conn, run_id)

        return RunStatus(
            run=run,
            questions_completed=counts.passed,
            questions_failed=counts.failed,
            attempt_count=counts.total,
            message_count=message_count,
        )

    def get_next_question(self, run_id: str) -> SequencedQuestion:
        """Question the run is currently on.

        Raises:
            RunNotFoundError, RunNotActiveError, LevelNotFoundError, EmptyLevelError
        """
        with get_db() as conn:
            run = self._require_active_run(conn, run_id)
            return self.sequencer.next(conn, run)

    def get_next_two_questions(self, run_id: str) -> SequencedPair:
        """Current question and the one after it (wrapping)."""
        with get_db() as conn:
            run = self._require_active_run(conn, run_id)
            return self.sequencer.next_two(conn, run)

    def get_transcript(self, run_id: str) -> list[MessageRecord]:
        """Full transcript of a run in sequence order."""
        with get_db() as conn:
            self._require_run(conn, run_id)
            return messages_repository.list_messages(conn, run_id)

    def get_failed_questions(self, run_id: str) -> list[QuestionRecord]:
        """Questions failed in this run and never passed afterwards."""
        with get_db() as conn:
            self._require_run(conn, run_id)
            question_ids = self.ledger.unresolved_question_ids(conn, run_id)
            return curriculum_repository.get_questions_by_ids(conn, question_ids)

    def list_runs(self, limit: int = 100) -> list[RunRecord]:
        """Most recent runs first."""
        with get_db() as conn:
            return runs_repository.list_runs(conn, limit=limit)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit_answer(self, run_id: str, question_id: str, answer_text: str) -> SubmissionResult:
        """Grade an answer and move the run forward.

        Args:
            run_id: Running run
            question_id: Question being answered
            answer_text: Raw answer text

        Returns:
            SubmissionResult with verdict, attempt bookkeeping and feedback

        Raises:
            RunNotFoundError: Unknown run
            RunNotActiveError: Run is completed or failed
            QuestionNotFoundError: Unknown question
            StoreUnavailableError: Store failed; nothing was written
        """
        question_id = question_id.strip()
        answer_text = answer_text or ""

        # Provider call happens before the write lock is taken
        enrichment = self._enrich(run_id, question_id, answer_text)

        try:
            with get_db(immediate=True) as conn:
                result = self._submit(conn, run_id, question_id, answer_text, enrichment)
        except sqlite3.IntegrityError as e:
            logger.error("submission_conflict", run_id=run_id, question_id=question_id, error=str(e))
            raise StoreUnavailableError(
                f"Concurrent submission conflict for run {run_id}",
                {"run_id": run_id, "question_id": question_id},
            ) from e

        logger.info(
            "answer_submitted",
            run_id=run_id,
            question_id=question_id,
            attempt_number=result.attempt_number,
            correct=result.correct,
            error_type=result.error_type,
            should_advance=result.should_advance,
            run_state=result.run_state,
        )
        return result

    def _submit(
        self,
        conn: sqlite3.Connection,
        run_id: str,
        question_id: str,
        answer_text: str,
        enrichment: str | None,
    ) -> SubmissionResult:
        run = self._require_active_run(conn, run_id)
        question = self._require_question(conn, question_id)

        messages_repository.append_message(
            conn, run_id, "agent", answer_text, status="pending_validation"
        )

        validation = self.validator.validate(answer_text, question)

        # One passing attempt per (run, question): a repeat pass after
        # wrap-around is acknowledged without a new attempt row
        previous_pass = None
        if validation.is_correct:
            previous_pass = self.ledger.find_pass(conn, run_id, question_id)

        if previous_pass is not None:
            attempt_number = previous_pass.attempt_number
            feedback = ALREADY_PASSED_TEMPLATE.format(attempt_number=attempt_number)
            logger.debug("repeat_pass_not_recorded", run_id=run_id, question_id=question_id)
        else:
            attempt = self.ledger.record(conn, run, question, answer_text, validation)
            attempt_number = attempt.attempt_number
            feedback = self.composer.compose(
                question, validation, attempt_number, self.max_attempts, enrichment
            )
        messages_repository.append_message(conn, run_id, "teacher", feedback)

        should_advance = validation.is_correct or attempt_number >= self.max_attempts
        can_retry = attempt_number < self.max_attempts and not validation.is_correct

        metadata = dict(run.metadata)
        state: RunState = run.state
        if should_advance:
            metadata["cursor"] = run.cursor + 1

        counts = self.ledger.count_verdicts(conn, run_id)
        metadata["questions_completed"] = counts.passed
        metadata["questions_failed"] = counts.failed

        if should_advance and run.auto_mode:
            state = self._advance_level(conn, run, metadata)

        runs_repository.update_run(conn, run_id, state, metadata)

        return SubmissionResult(
            correct=validation.is_correct,
            severity=validation.severity.value,
            error_type=validation.error_type,
            attempt_number=attempt_number,
            max_attempts=self.max_attempts,
            should_advance=should_advance,
            can_retry=can_retry,
            messages=list(validation.messages),
            normalized_answer=validation.normalized_answer,
            feedback=feedback,
            run_state=state,
            question_id=question_id,
            current_level=metadata.get("current_level"),
        )

    def _advance_level(
        self,
        conn: sqlite3.Connection,
        run: RunRecord,
        metadata: dict[str, Any],
    ) -> RunState:
        """Apply auto-mode level progression to ``metadata``; return new state."""
        questions = self.sequencer.questions_for(conn, run)
        progress = self.advancer.evaluate(conn, run, questions)
        if progress is None or not progress.level_up:
            return run.state

        metadata["current_level"] = progress.next_level
        mastery_pct = f"{progress.mastery:.0%}"

        if progress.completed:
            messages_repository.append_message(
                conn,
                run.run_id,
                "system",
                f"Level {progress.level_number} mastered ({mastery_pct}). "
                f"Level range {run.start_level}-{run.end_level} completed.",
            )
            return "completed"

        messages_repository.append_message(
            conn,
            run.run_id,
            "system",
            f"Level {progress.level_number} mastered ({mastery_pct}). "
            f"Advancing to level {progress.next_level}.",
        )
        return run.state

    def _enrich(self, run_id: str, question_id: str, answer_text: str) -> str | None:
        """Optional provider hint for a failing answer, computed outside the write lock.

        Lookup problems are left for the submission transaction to report.
        """
        if self.composer.client is None:
            return None

        with get_db() as conn:
            run = runs_repository.get_run(conn, run_id)
            question = curriculum_repository.get_question(conn, question_id)

        if run is None or not run.is_running or question is None:
            return None

        validation: ValidationResult = self.validator.validate(answer_text, question)
        return self.composer.enrich(question, answer_text, validation)

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def stop_run(self, run_id: str) -> RunRecord:
        """Stop a running run (running -> completed).

        Raises:
            RunNotFoundError: Unknown run
            InvalidTransitionError: Run already completed or failed
        """
        with get_db(immediate=True) as conn:
            run = self._require_run(conn, run_id)
            self._check_transition(run, "completed")

            messages_repository.append_message(conn, run_id, "system", "Learning run stopped by user")
            runs_repository.update_run(conn, run_id, "completed", run.metadata)
            stopped = self._require_run(conn, run_id)

        logger.info("run_stopped", run_id=run_id)
        return stopped

    def fail_run(self, run_id: str, reason: str) -> RunRecord:
        """Mark a running run as failed (running -> failed).

        Raises:
            RunNotFoundError: Unknown run
            InvalidTransitionError: Run already completed or failed
        """
        with get_db(immediate=True) as conn:
            run = self._require_run(conn, run_id)
            self._check_transition(run, "failed")

            metadata = dict(run.metadata)
            metadata["failure_reason"] = reason
            messages_repository.append_message(conn, run_id, "system", f"Learning run failed: {reason}")
            runs_repository.update_run(conn, run_id, "failed", metadata)
            failed = self._require_run(conn, run_id)

        logger.warning("run_failed", run_id=run_id, reason=reason)
        return failed

    @staticmethod
    def _check_transition(run: RunRecord, to_state: RunState) -> None:
        if run.is_terminal:
            raise InvalidTransitionError(run.run_id, run.state, to_state)

    # -------------------------------------------------------------------------
    # Provider-generated answers
    # -------------------------------------------------------------------------

    def generate_answer(
        self,
        run_id: str,
        question_id: str | None = None,
        submit: bool = True,
    ) -> GeneratedAnswer:
        """Ask the provider to answer a question, and optionally submit it.

        Args:
            run_id: Running run
            question_id: Question to answer (defaults to the run's current one)
            submit: Submit the generated answer through ``submit_answer``

        Raises:
            ProviderUnavailableError: No provider, provider offline, or no usable answer
        """
        if self.client is None:
            raise ProviderUnavailableError("No text-generation provider configured")

        with get_db() as conn:
            run = self._require_active_run(conn, run_id)
            if question_id:
                question = self._require_question(conn, question_id.strip())
            else:
                question = self.sequencer.next(conn, run).question

        system_key = "agent/answer_system" if question.is_literal else "agent/answer_freeform_system"

        try:
            response = self.client.generate(question.prompt, system_prompt=get_prompt(system_key))
        except LLMConnectionError as e:
            logger.error("provider_offline", run_id=run_id, error=str(e))
            raise ProviderUnavailableError(str(e), {"run_id": run_id}) from e
        except LLMError as e:
            logger.error("provider_bad_output", run_id=run_id, error=str(e))
            raise ProviderUnavailableError(
                f"Provider returned no usable answer: {e}", {"run_id": run_id}
            ) from e

        answer_text = response.text.strip()
        logger.info(
            "answer_generated",
            run_id=run_id,
            question_id=question.question_id,
            latency_ms=response.latency_ms,
        )

        generated = GeneratedAnswer(
            run_id=run_id,
            question_id=question.question_id,
            answer_text=answer_text,
            latency_ms=response.latency_ms,
        )
        if submit:
            generated.submission = self.submit_answer(run_id, question.question_id, answer_text)
        return generated

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_run(conn: sqlite3.Connection, run_id: str) -> RunRecord:
        run = runs_repository.get_run(conn, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def _require_active_run(self, conn: sqlite3.Connection, run_id: str) -> RunRecord:
        run = self._require_run(conn, run_id)
        if not run.is_running:
            raise RunNotActiveError(run_id, run.state)
        return run

    @staticmethod
    def _require_question(conn: sqlite3.Connection, question_id: str) -> QuestionRecord:
        question = curriculum_repository.get_question(conn, question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)
        return question
