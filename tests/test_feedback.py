"""Tests for teacher feedback composition."""

from unittest.mock import MagicMock

import pytest

from learnrun.core.answer_validator import validate_answer
from learnrun.core.feedback import FeedbackComposer, guidance_for
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.llm.client import LLMConnectionError, LLMResponse

QUESTION = QuestionRecord(
    question_id="q-cpu",
    level_id="metrics-L1",
    position=1,
    prompt="CPU Load = 42%. Describe.",
    expected_category="CPU_LOAD",
    expected_format="literal",
    expected_value="CPU load is 42%.",
)


def response(content: str) -> LLMResponse:
    return LLMResponse(content=content, model="m", provider="lmstudio")


@pytest.fixture
def composer():
    return FeedbackComposer()


class TestCompose:
    """Template selection."""

    def test_correct_answer(self, composer):
        text = composer.compose(QUESTION, validate_answer("CPU load is 42%.", QUESTION), 1, 5)
        assert text == "Correct! Well done. You've mastered this concept."

    def test_retry_message_names_issue_and_hint(self, composer):
        """A non-final failure shows attempt count, issue and expected value."""
        validation = validate_answer("Memory is 80%.", QUESTION)
        text = composer.compose(QUESTION, validation, 2, 5)

        assert text.startswith("Not quite. Attempt 2/5")
        assert "Issue: Wrong metric." in text
        assert "Think about: CPU load is 42%." in text
        assert text.endswith("Try again!")

    def test_last_attempt_reveals_answer(self, composer):
        """The final failure shows the expected value verbatim."""
        validation = validate_answer("Memory is 80%.", QUESTION)
        text = composer.compose(QUESTION, validation, 5, 5)

        assert text.startswith("Max attempts reached (5/5)")
        assert "Correct Answer: CPU load is 42%." in text
        assert "Moving to next question" in text

    def test_enrichment_appended_on_failure(self, composer):
        validation = validate_answer("Memory is 80%.", QUESTION)
        text = composer.compose(QUESTION, validation, 1, 5, enrichment="Look at the CPU line.")
        assert text.endswith("\n\nTeacher note: Look at the CPU line.")

    def test_enrichment_ignored_on_pass(self, composer):
        validation = validate_answer("CPU load is 42%.", QUESTION)
        text = composer.compose(QUESTION, validation, 1, 5, enrichment="unused")
        assert "Teacher note" not in text


class TestGuidance:
    """Guidance text by error family."""

    @pytest.mark.parametrize(
        "error_type,fragment",
        [
            ("EMPTY_ANSWER", "formatting and structure"),
            ("MULTI_SENTENCE", "formatting and structure"),
            ("FORMAT_VIOLATION", "formatting and structure"),
            ("WRONG_CATEGORY", "Answer only the metric"),
            ("MULTIPLE_METRICS", "Answer only the metric"),
            ("VALUE_VARIANCE", "without hedging"),
            (None, "Try another approach"),
        ],
    )
    def test_family_hints(self, error_type, fragment):
        text = guidance_for(error_type, "X is 1.")
        assert fragment in text
        assert text.endswith("X is 1.")


class TestEnrich:
    """Optional provider hints."""

    def test_no_client(self, composer):
        assert composer.enrich(QUESTION, "Memory is 80%.", validate_answer("Memory is 80%.", QUESTION)) is None

    def test_correct_answer_not_enriched(self):
        client = MagicMock()
        composer = FeedbackComposer(client)
        validation = validate_answer("CPU load is 42%.", QUESTION)

        assert composer.enrich(QUESTION, "CPU load is 42%.", validation) is None
        client.generate.assert_not_called()

    def test_first_line_of_provider_text(self):
        client = MagicMock()
        client.generate.return_value = response("<think>hmm</think>Mention CPU only.\nSecond line.")
        composer = FeedbackComposer(client)

        hint = composer.enrich(QUESTION, "Memory is 80%.", validate_answer("Memory is 80%.", QUESTION))

        assert hint == "Mention CPU only."
        prompt = client.generate.call_args.args[0]
        assert "CPU_LOAD" in prompt
        assert "Memory is 80%." in prompt

    def test_provider_failure_is_dropped(self):
        client = MagicMock()
        client.generate.side_effect = LLMConnectionError("offline")
        composer = FeedbackComposer(client)

        assert composer.enrich(QUESTION, "x", validate_answer("x", QUESTION)) is None
