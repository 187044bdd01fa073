"""Teacher feedback composition.

Templates are authoritative: every failing message carries the question's
expected value as a hint, and the last allowed attempt reveals it verbatim
before the run moves on. Provider-written prose is optional, appended after
the template, and silently dropped when the provider is offline, slow or
returns nothing useful.
"""

from __future__ import annotations

import structlog

from learnrun.core.answer_validator import ErrorType, ValidationResult
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.llm.client import LLMClient, LLMError
from learnrun.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

# =============================================================================
# TEMPLATES
# =============================================================================

PASS_TEMPLATE = "Correct! Well done. You've mastered this concept."

RETRY_TEMPLATE = "Not quite. Attempt {attempt_number}/{max_attempts}\n\n{issue}Guidance: {guidance}\n\nTry again!"

EXHAUSTED_TEMPLATE = (
    "Max attempts reached ({attempt_number}/{max_attempts})\n\n"
    "Correct Answer: {expected_value}\n\n"
    "Moving to next question. Remember this for future learning!"
)

ENRICHMENT_TEMPLATE = "\n\nTeacher note: {enrichment}"

STRUCTURE_ERRORS = frozenset(
    {ErrorType.EMPTY_ANSWER, ErrorType.MULTI_SENTENCE, ErrorType.FORMAT_VIOLATION}
)
METRIC_ERRORS = frozenset({ErrorType.WRONG_CATEGORY, ErrorType.MULTIPLE_METRICS})


def guidance_for(error_type: str | None, expected_value: str) -> str:
    """Hint text for a failed attempt, keyed by error family."""
    if error_type in STRUCTURE_ERRORS:
        return (
            "Check your formatting and structure. "
            f"The expected answer follows this pattern: {expected_value}"
        )
    if error_type in METRIC_ERRORS:
        return f"Answer only the metric the question asks about. Think about: {expected_value}"
    if error_type == ErrorType.VALUE_VARIANCE:
        return (
            "You're on the right track, now state the value plainly without hedging. "
            f"Expected: {expected_value}"
        )
    return f"Try another approach. Expected: {expected_value}"


class FeedbackComposer:
    """Builds the teacher message for a graded attempt."""

    def __init__(self, client: LLMClient | None = None):
        """Initialize composer.

        Args:
            client: Optional provider for enrichment; None disables it
        """
        self.client = client

    def compose(
        self,
        question: QuestionRecord,
        validation: ValidationResult,
        attempt_number: int,
        max_attempts: int,
        enrichment: str | None = None,
    ) -> str:
        """Compose feedback for one attempt.

        Args:
            question: Question that was answered
            validation: Validator verdict
            attempt_number: 1-based attempt number for (run, question)
            max_attempts: Attempt cap
            enrichment: Optional provider text to append on failure

        Returns:
            Feedback text
        """
        if validation.is_correct:
            return PASS_TEMPLATE

        if attempt_number >= max_attempts:
            text = EXHAUSTED_TEMPLATE.format(
                attempt_number=attempt_number,
                max_attempts=max_attempts,
                expected_value=question.expected_value,
            )
        else:
            issue = f"Issue: {validation.messages[0]}\n" if validation.messages else ""
            text = RETRY_TEMPLATE.format(
                attempt_number=attempt_number,
                max_attempts=max_attempts,
                issue=issue,
                guidance=guidance_for(validation.error_type, question.expected_value),
            )

        if enrichment:
            text += ENRICHMENT_TEMPLATE.format(enrichment=enrichment)
        return text

    def enrich(
        self,
        question: QuestionRecord,
        answer_text: str,
        validation: ValidationResult,
    ) -> str | None:
        """Ask the provider for a one-sentence hint.

        Returns:
            Hint text, or None when enrichment is disabled, not needed,
            or the provider fails
        """
        if self.client is None or validation.is_correct:
            return None

        prompt = get_prompt(
            "feedback/enrich",
            expected_category=question.expected_category or "the asked topic",
            question=question.prompt,
            answer=answer_text,
            error_type=validation.error_type or "UNKNOWN",
        )

        try:
            response = self.client.generate(prompt)
        except LLMError as e:
            logger.warning(
                "feedback_enrichment_failed",
                question_id=question.question_id,
                error=str(e),
            )
            return None

        hint = response.text.splitlines()[0].strip() if response.text else ""
        return hint or None
