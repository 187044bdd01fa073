"""Pydantic schemas for the learning-run Web API.

Serialization models for runs, questions, submissions and transcripts.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str
    store: str = "ok"
    active_runs: int = 0


# =============================================================================
# RUN SCHEMAS
# =============================================================================


class StartRunRequest(BaseModel):
    """Request body for starting a run.

    Either ``domain`` + ``level_number``, or ``auto_mode`` with a level range.
    """

    domain: str | None = Field(default=None, min_length=1)
    level_number: int | None = Field(default=None, ge=1)
    auto_mode: bool = False
    start_level: int | None = Field(default=None, ge=1)
    end_level: int | None = Field(default=None, ge=1)


class StartRunResponse(BaseModel):
    """Response for a started run."""

    run_id: str
    status: str = "started"
    mode: str


class RunStatusResponse(BaseModel):
    """Run state and progress counters."""

    run_id: str
    mode: str
    state: str
    domain: str | None = None
    level_number: int | None = None
    current_level: int | None = None
    start_level: int | None = None
    end_level: int | None = None
    auto_mode: bool = False
    cursor: int
    questions_completed: int
    questions_failed: int
    attempt_count: int
    message_count: int
    created_at: str
    updated_at: str


class RunSummaryResponse(BaseModel):
    """Run row for listings."""

    run_id: str
    mode: str
    state: str
    metadata: dict[str, Any]
    created_at: str
    updated_at: str


class RunListResponse(BaseModel):
    """Response for list of runs."""

    runs: list[RunSummaryResponse]
    count: int


class StopRunRequest(BaseModel):
    """Request body for stopping a run."""

    run_id: str = Field(..., min_length=1)


class StopRunResponse(BaseModel):
    """Response for a stopped run."""

    run_id: str
    status: str = "stopped"
    state: str


class RetryRequest(BaseModel):
    """Request body for a retry-set run.

    Give ``question_ids`` directly, or a ``run_id`` whose unresolved
    questions should be retried.
    """

    run_id: str | None = None
    question_ids: list[str] = Field(default_factory=list)


# =============================================================================
# QUESTION SCHEMAS
# =============================================================================


class QuestionResponse(BaseModel):
    """A question as shown to the answering agent (no expected value)."""

    question_id: str
    prompt: str
    expected_category: str
    expected_format: str
    position: int
    index: int | None = None


class NextQuestionsResponse(BaseModel):
    """Two-question lookahead."""

    questions: list[QuestionResponse]
    question_indices: list[int]


class FailedQuestionResponse(BaseModel):
    """A question failed and never passed within a run."""

    question_id: str
    prompt: str
    expected_category: str
    expected_format: str
    expected_value: str


class FailedQuestionsResponse(BaseModel):
    """Failed questions of a run."""

    run_id: str
    questions: list[FailedQuestionResponse]
    count: int


# =============================================================================
# SUBMISSION SCHEMAS
# =============================================================================


class SubmitAnswerRequest(BaseModel):
    """Request body for submitting an answer."""

    run_id: str = Field(..., min_length=1)
    question_id: str = Field(..., min_length=1)
    answer_text: str = ""


class SubmissionResponse(BaseModel):
    """Verdict, attempt bookkeeping and teacher feedback."""

    question_id: str
    correct: bool
    severity: str
    error_type: str | None = None
    attempt_number: int
    max_attempts: int
    should_advance: bool
    can_retry: bool
    messages: list[str]
    normalized_answer: str | None = None
    feedback: str
    run_state: str
    current_level: int | None = None


class GenerateAnswerRequest(BaseModel):
    """Request body for a provider-generated answer."""

    run_id: str = Field(..., min_length=1)
    question_id: str | None = None
    submit: bool = True


class GenerateAnswerResponse(BaseModel):
    """Provider answer, with its submission when submitted."""

    run_id: str
    question_id: str
    answer_text: str
    latency_ms: int
    submission: SubmissionResponse | None = None


# =============================================================================
# TRANSCRIPT SCHEMAS
# =============================================================================


class MessageResponse(BaseModel):
    """Transcript entry."""

    sequence_number: int
    role: str
    content: str
    status: str
    created_at: str


class TranscriptResponse(BaseModel):
    """Transcript of a run."""

    run_id: str
    messages: list[MessageResponse]
    count: int
