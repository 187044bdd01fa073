"""Answer validation module.

Responsibilities:
- Grade a free-text answer against a question, deterministically
- Literal questions use a small grammar of named rules, evaluated in a fixed
  order with early exit
- Non-literal questions are accepted as-is (freeform escape hatch)

Literal rules (first failing rule wins):
1. single_sentence   - one sentence only            -> MULTI_SENTENCE
2. shape             - "<subject> is <value>."      -> FORMAT_VIOLATION
3. single_metric     - one metric category in text  -> MULTIPLE_METRICS
4. category_lock     - subject names asked metric   -> WRONG_CATEGORY
5. severity          - hedging / leading article    -> VALUE_VARIANCE (MILD)

Validation outcomes are data, never exceptions: the caller feeds them into
retry feedback.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

import structlog

logger = structlog.get_logger(__name__)

# =============================================================================
# TYPES
# =============================================================================


class Severity(str, Enum):
    """Graded confidence in an answer beyond pass/fail."""

    NONE = "NONE"
    MILD = "MILD"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"


class MetricCategory(str, Enum):
    """Closed taxonomy of metric kinds a literal question can ask about."""

    CPU_LOAD = "CPU_LOAD"
    MEMORY_USAGE = "MEMORY_USAGE"
    DISK_USAGE = "DISK_USAGE"
    RESPONSE_TIME = "RESPONSE_TIME"
    STATUS_CODE = "STATUS_CODE"


class ErrorType:
    """Error classification tags attached to failed answers."""

    EMPTY_ANSWER = "EMPTY_ANSWER"
    MULTI_SENTENCE = "MULTI_SENTENCE"
    FORMAT_VIOLATION = "FORMAT_VIOLATION"
    MULTIPLE_METRICS = "MULTIPLE_METRICS"
    WRONG_CATEGORY = "WRONG_CATEGORY"
    VALUE_VARIANCE = "VALUE_VARIANCE"


class GradableQuestion(Protocol):
    """What the validator needs to know about a question."""

    expected_category: str
    expected_format: str


# =============================================================================
# GRAMMAR
# =============================================================================

LITERAL_FORMAT = "literal"

SENTENCE_SPLIT = re.compile(r"[.!?]")

# "<subject> <connector> <value>" with an optional trailing period. The hedged
# copulas are part of the connector so hedged answers are structurally valid
# and get downgraded by the severity rule instead.
LITERAL_PATTERN = re.compile(
    r"^(?P<subject>.+?)\s+"
    r"(?P<connector>(?:seems|appears|looks)\s+to\s+be|looks\s+like|is|=|equals|shows|displays)"
    r"\s+(?P<value>.+?)\.?$",
    re.IGNORECASE,
)

# Subject sniffing, checked in order. A bare "load" means CPU load.
SUBJECT_KEYWORDS: list[tuple[tuple[str, ...], MetricCategory]] = [
    (("cpu",), MetricCategory.CPU_LOAD),
    (("memory", "ram"), MetricCategory.MEMORY_USAGE),
    (("disk",), MetricCategory.DISK_USAGE),
    (("response", "latency"), MetricCategory.RESPONSE_TIME),
    (("status",), MetricCategory.STATUS_CODE),
    (("load",), MetricCategory.CPU_LOAD),
]

# Whole-word scan of the full answer for the single-metric rule
METRIC_PATTERNS: list[tuple[re.Pattern[str], MetricCategory]] = [
    (re.compile(r"\bcpu\b", re.IGNORECASE), MetricCategory.CPU_LOAD),
    (re.compile(r"\bmemory\b|\bram\b", re.IGNORECASE), MetricCategory.MEMORY_USAGE),
    (re.compile(r"\bdisk\b", re.IGNORECASE), MetricCategory.DISK_USAGE),
    (re.compile(r"\bresponse\b|\blatency\b", re.IGNORECASE), MetricCategory.RESPONSE_TIME),
    (re.compile(r"\bstatus\b", re.IGNORECASE), MetricCategory.STATUS_CODE),
]

HEDGE_PATTERN = re.compile(r"\b(?:seems|appears|looks)\b", re.IGNORECASE)
LEADING_ARTICLE = re.compile(r"^the\s", re.IGNORECASE)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for one answer.

    ``is_correct`` is true only when ``severity`` is exactly NONE.
    """

    is_correct: bool
    severity: Severity
    error_type: str | None
    messages: list[str] = field(default_factory=list)
    normalized_answer: str | None = None

    @property
    def verdict(self) -> str:
        """Ledger verdict: 'pass' or 'fail'."""
        return "pass" if self.is_correct else "fail"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "is_correct": self.is_correct,
            "severity": self.severity.value,
            "error_type": self.error_type,
            "messages": list(self.messages),
            "normalized_answer": self.normalized_answer,
        }


@dataclass(frozen=True)
class LiteralParts:
    """Pieces of a literal answer that passed the shape rule."""

    answer: str
    subject: str
    connector: str
    value: str


def _fail(error_type: str, message: str) -> ValidationResult:
    return ValidationResult(
        is_correct=False,
        severity=Severity.SEVERE,
        error_type=error_type,
        messages=[message],
    )


# =============================================================================
# HELPERS
# =============================================================================


def detect_category(subject: str) -> MetricCategory | None:
    """Map the subject of an answer to a metric category by keyword sniffing."""
    lower = subject.lower()
    for keywords, category in SUBJECT_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return None


def find_metric_categories(text: str) -> set[MetricCategory]:
    """All metric categories mentioned anywhere in ``text``."""
    return {category for pattern, category in METRIC_PATTERNS if pattern.search(text)}


def classify_severity(parts: LiteralParts) -> Severity:
    """Residual severity of a structurally valid answer."""
    if HEDGE_PATTERN.search(parts.answer):
        return Severity.MILD  # speculative language
    if LEADING_ARTICLE.match(parts.answer):
        return Severity.MILD
    return Severity.NONE


# =============================================================================
# VALIDATOR
# =============================================================================


class AnswerValidator:
    """Deterministic grader for curriculum answers.

    Stateless: validating the same answer against the same question always
    yields an equal ``ValidationResult``.
    """

    def validate(self, answer_text: str, question: GradableQuestion) -> ValidationResult:
        """Validate an answer.

        Args:
            answer_text: Raw answer as submitted
            question: Question with expected_category / expected_format

        Returns:
            ValidationResult (never raises for bad answers)
        """
        trimmed = (answer_text or "").strip()

        if not trimmed:
            return _fail(ErrorType.EMPTY_ANSWER, "Answer cannot be empty")

        expected_format = question.expected_format or LITERAL_FORMAT
        if expected_format != LITERAL_FORMAT:
            # Freeform questions are accepted without grading
            return ValidationResult(
                is_correct=True,
                severity=Severity.NONE,
                error_type=None,
                messages=["Valid answer"],
                normalized_answer=trimmed,
            )

        return self.validate_literal(trimmed, question.expected_category or "")

    def validate_literal(self, answer: str, expected_category: str) -> ValidationResult:
        """Run the literal grammar on a trimmed, non-empty answer."""
        rules: list[Callable[[str, str], ValidationResult | None]] = [
            self._rule_single_sentence,
            self._rule_shape,
            self._rule_single_metric,
            self._rule_category_lock,
        ]
        for rule in rules:
            result = rule(answer, expected_category)
            if result is not None:
                return result

        parts = self._split(answer)
        assert parts is not None  # guaranteed by the shape rule
        severity = classify_severity(parts)

        if severity is Severity.NONE:
            return ValidationResult(
                is_correct=True,
                severity=severity,
                error_type=None,
                messages=["Valid answer"],
                normalized_answer=answer,
            )

        return ValidationResult(
            is_correct=False,
            severity=severity,
            error_type=ErrorType.VALUE_VARIANCE,
            messages=[f"Acceptable but not exact (severity: {severity.value})"],
            normalized_answer=answer,
        )

    # -------------------------------------------------------------------------
    # Rules: return a failing result, or None to continue
    # -------------------------------------------------------------------------

    def _rule_single_sentence(self, answer: str, expected_category: str) -> ValidationResult | None:
        sentences = [s for s in SENTENCE_SPLIT.split(answer) if s.strip()]
        if len(sentences) > 1:
            return _fail(
                ErrorType.MULTI_SENTENCE,
                "Answer must be a single sentence. No multiple sentences allowed.",
            )
        return None

    def _rule_shape(self, answer: str, expected_category: str) -> ValidationResult | None:
        if self._split(answer) is None:
            return _fail(
                ErrorType.FORMAT_VIOLATION,
                'Answer must follow format: "<metric> is <value>."',
            )
        return None

    def _rule_single_metric(self, answer: str, expected_category: str) -> ValidationResult | None:
        found = find_metric_categories(answer)
        if len(found) > 1:
            names = ", ".join(sorted(c.value for c in found))
            return _fail(
                ErrorType.MULTIPLE_METRICS,
                f"Answer mentions multiple metrics ({names}). Answer only the asked metric.",
            )
        return None

    def _rule_category_lock(self, answer: str, expected_category: str) -> ValidationResult | None:
        parts = self._split(answer)
        assert parts is not None
        detected = detect_category(parts.subject)
        if detected is None or detected.value != expected_category:
            actual = detected.value if detected else "unknown"
            return _fail(
                ErrorType.WRONG_CATEGORY,
                f"Wrong metric. Expected: {expected_category}, but answered about: {actual}",
            )
        return None

    @staticmethod
    def _split(answer: str) -> LiteralParts | None:
        match = LITERAL_PATTERN.match(answer)
        if not match:
            return None
        return LiteralParts(
            answer=answer,
            subject=match.group("subject").strip(),
            connector=match.group("connector").lower(),
            value=match.group("value").rstrip(".").strip(),
        )


# Module-level validator (stateless, safe to share)
validator = AnswerValidator()


def validate_answer(answer_text: str, question: GradableQuestion) -> ValidationResult:
    """Validate with the shared stateless validator."""
    return validator.validate(answer_text, question)
