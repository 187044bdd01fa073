"""Error taxonomy for learning runs.

Validation outcomes (empty answer, wrong category, ...) are NOT errors: they
come back as ``ValidationResult`` data and drive retry feedback. Everything in
this module is raised:

- state errors: the caller asked for something the run cannot do
- data/config errors: curriculum content is missing upstream
- infrastructure errors: the store or the provider is unavailable

All errors inherit from ``LearnRunError`` and carry a stable ``code``.
"""

from __future__ import annotations

from typing import Any


class LearnRunError(Exception):
    """Base exception for all learning-run errors."""

    code = "LEARNRUN_ERROR"

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {"code": self.code, "message": self.message, "details": self.details}


# =============================================================================
# STATE ERRORS
# =============================================================================


class RunNotFoundError(LearnRunError):
    """Raised when a run id does not exist."""

    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}", {"run_id": run_id})
        self.run_id = run_id


class RunNotActiveError(LearnRunError):
    """Raised when submitting to a run that is not running."""

    code = "RUN_NOT_ACTIVE"

    def __init__(self, run_id: str, state: str) -> None:
        super().__init__(
            f"Run {run_id} is not running (state: {state})",
            {"run_id": run_id, "state": state},
        )
        self.run_id = run_id
        self.state = state


class QuestionNotFoundError(LearnRunError):
    """Raised when a question id does not exist."""

    code = "QUESTION_NOT_FOUND"

    def __init__(self, question_id: str) -> None:
        super().__init__(f"Question not found: {question_id}", {"question_id": question_id})
        self.question_id = question_id


class InvalidTransitionError(LearnRunError):
    """Raised on an attempt to move a run out of a terminal state."""

    code = "INVALID_TRANSITION"

    def __init__(self, run_id: str, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Run {run_id} cannot move from '{from_state}' to '{to_state}'",
            {"run_id": run_id, "from_state": from_state, "to_state": to_state},
        )
        self.from_state = from_state
        self.to_state = to_state


class InvalidRunRequestError(LearnRunError):
    """Raised when run creation arguments are inconsistent."""

    code = "INVALID_REQUEST"


# =============================================================================
# DATA / CONFIG ERRORS
# =============================================================================


class LevelNotFoundError(LearnRunError):
    """Raised when the level a run points at is not in the store."""

    code = "LEVEL_NOT_FOUND"


class EmptyLevelError(LearnRunError):
    """Raised when a level (or retry set) has zero questions."""

    code = "NO_QUESTIONS"


class CurriculumFormatError(LearnRunError):
    """Raised when a curriculum file cannot be imported."""

    code = "CURRICULUM_FORMAT"


# =============================================================================
# INFRASTRUCTURE ERRORS
# =============================================================================


class InfrastructureError(LearnRunError):
    """A collaborator (store or provider) is unavailable.

    Never conflated with a wrong answer: the run state is left untouched.
    """

    code = "INFRA_UNAVAILABLE"


class StoreUnavailableError(InfrastructureError):
    """The durable store could not be reached or failed mid-transaction."""


class ProviderUnavailableError(InfrastructureError):
    """The text-generation provider is offline or returned unusable output."""
