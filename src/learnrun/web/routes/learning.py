"""Learning-run endpoints.

Handlers are plain ``def`` functions: they block on SQLite and, for
generated answers, on the provider, so FastAPI runs them in its threadpool.
"""

from fastapi import APIRouter, Depends, status

from learnrun.core.errors import InvalidRunRequestError, LearnRunError
from learnrun.core.run_lifecycle import RunLifecycleManager
from learnrun.db.curriculum_repository import QuestionRecord
from learnrun.web.runs import get_run_manager, http_error
from learnrun.web.schemas import (
    FailedQuestionResponse,
    FailedQuestionsResponse,
    GenerateAnswerRequest,
    GenerateAnswerResponse,
    MessageResponse,
    NextQuestionsResponse,
    QuestionResponse,
    RetryRequest,
    RunStatusResponse,
    StartRunRequest,
    StartRunResponse,
    StopRunRequest,
    StopRunResponse,
    SubmissionResponse,
    SubmitAnswerRequest,
    TranscriptResponse,
)

router = APIRouter(prefix="/api/learning", tags=["learning"])


def _question_response(question: QuestionRecord, index: int | None = None) -> QuestionResponse:
    return QuestionResponse(
        question_id=question.question_id,
        prompt=question.prompt,
        expected_category=question.expected_category,
        expected_format=question.expected_format,
        position=question.position,
        index=index,
    )


@router.post("/start", response_model=StartRunResponse, status_code=status.HTTP_201_CREATED)
def start_run(
    request: StartRunRequest,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> StartRunResponse:
    """Start a single-level run, or an auto-mode run over a level range."""
    try:
        if request.auto_mode:
            if request.start_level is None or request.end_level is None:
                raise InvalidRunRequestError("Auto mode requires start_level and end_level")
            run = manager.start_run_auto_mode(request.start_level, request.end_level)
        else:
            if request.domain is None or request.level_number is None:
                raise InvalidRunRequestError("domain and level_number are required")
            run = manager.start_run(request.domain, request.level_number)
    except LearnRunError as e:
        raise http_error(e) from e

    return StartRunResponse(run_id=run.run_id, mode=run.mode)


@router.get("/status/{run_id}", response_model=RunStatusResponse)
def get_status(
    run_id: str,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> RunStatusResponse:
    """Get run state and counters."""
    try:
        run_status = manager.get_run_status(run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    return RunStatusResponse(**run_status.to_dict())


@router.get("/question/{run_id}", response_model=NextQuestionsResponse)
def get_next_questions(
    run_id: str,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> NextQuestionsResponse:
    """Get the current question and the one after it."""
    try:
        pair = manager.get_next_two_questions(run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    return NextQuestionsResponse(
        questions=[
            _question_response(question, index)
            for question, index in zip(pair.questions, pair.indices)
        ],
        question_indices=list(pair.indices),
    )


@router.get("/question/{run_id}/single", response_model=QuestionResponse)
def get_next_question(
    run_id: str,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> QuestionResponse:
    """Get the current question only."""
    try:
        sequenced = manager.get_next_question(run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    return _question_response(sequenced.question, sequenced.index)


@router.post("/submit-answer", response_model=SubmissionResponse)
def submit_answer(
    request: SubmitAnswerRequest,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> SubmissionResponse:
    """Submit an answer and get verdict plus feedback."""
    try:
        result = manager.submit_answer(request.run_id, request.question_id, request.answer_text)
    except LearnRunError as e:
        raise http_error(e) from e

    return SubmissionResponse(**result.to_dict())


@router.post("/generate-answer", response_model=GenerateAnswerResponse)
def generate_answer(
    request: GenerateAnswerRequest,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> GenerateAnswerResponse:
    """Let the provider answer a question (and submit it by default)."""
    try:
        generated = manager.generate_answer(
            request.run_id,
            question_id=request.question_id,
            submit=request.submit,
        )
    except LearnRunError as e:
        raise http_error(e) from e

    return GenerateAnswerResponse(**generated.to_dict())


@router.post("/stop", response_model=StopRunResponse)
def stop_run(
    request: StopRunRequest,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> StopRunResponse:
    """Stop a running run."""
    try:
        run = manager.stop_run(request.run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    return StopRunResponse(run_id=run.run_id, state=run.state)


@router.post("/retry", response_model=StartRunResponse, status_code=status.HTTP_201_CREATED)
def start_retry(
    request: RetryRequest,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> StartRunResponse:
    """Start a retry-set run from question ids or from a previous run."""
    try:
        question_ids = list(request.question_ids)
        if request.run_id:
            question_ids += [q.question_id for q in manager.get_failed_questions(request.run_id)]
        run = manager.start_retry_set(question_ids, source_run_id=request.run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    return StartRunResponse(run_id=run.run_id, status="auto-retry-started", mode=run.mode)


@router.get("/failed-questions/{run_id}", response_model=FailedQuestionsResponse)
def get_failed_questions(
    run_id: str,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> FailedQuestionsResponse:
    """Questions failed in a run and never passed."""
    try:
        questions = manager.get_failed_questions(run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    items = [
        FailedQuestionResponse(
            question_id=q.question_id,
            prompt=q.prompt,
            expected_category=q.expected_category,
            expected_format=q.expected_format,
            expected_value=q.expected_value,
        )
        for q in questions
    ]
    return FailedQuestionsResponse(run_id=run_id, questions=items, count=len(items))


@router.get("/messages/{run_id}", response_model=TranscriptResponse)
def get_messages(
    run_id: str,
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> TranscriptResponse:
    """Full transcript of a run."""
    try:
        messages = manager.get_transcript(run_id)
    except LearnRunError as e:
        raise http_error(e) from e

    items = [
        MessageResponse(
            sequence_number=m.sequence_number,
            role=m.role,
            content=m.content,
            status=m.status,
            created_at=m.created_at,
        )
        for m in messages
    ]
    return TranscriptResponse(run_id=run_id, messages=items, count=len(items))
