"""Run manager wiring for the Web API.

Holds the process-wide ``RunLifecycleManager`` the routes depend on and
maps learning-run errors to HTTP responses.
"""

from __future__ import annotations

import structlog
from fastapi import HTTPException, status

from learnrun.config.app_config import load_app_config
from learnrun.core.errors import (
    InfrastructureError,
    InvalidTransitionError,
    LearnRunError,
    QuestionNotFoundError,
    RunNotActiveError,
    RunNotFoundError,
)
from learnrun.core.run_lifecycle import RunLifecycleManager
from learnrun.llm.client import LLMClient, LLMError, build_client

logger = structlog.get_logger(__name__)

# Global run manager instance
_run_manager: RunLifecycleManager | None = None


def _build_provider() -> LLMClient | None:
    """Provider client from config, or None when it cannot be configured."""
    try:
        return build_client()
    except LLMError as e:
        logger.warning("provider_not_configured", error=str(e))
        return None


def get_run_manager() -> RunLifecycleManager:
    """Get the global run manager instance."""
    global _run_manager
    if _run_manager is None:
        _run_manager = RunLifecycleManager.from_config(load_app_config(), client=_build_provider())
    return _run_manager


def reset_run_manager() -> None:
    """Reset the run manager (for testing)."""
    global _run_manager
    _run_manager = None


def http_error(error: LearnRunError) -> HTTPException:
    """Translate a learning-run error into an HTTPException.

    not found -> 404, not running / bad transition -> 409,
    store or provider down -> 503, everything else (data/config) -> 422.
    """
    if isinstance(error, (RunNotFoundError, QuestionNotFoundError)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (RunNotActiveError, InvalidTransitionError)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, InfrastructureError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = 422

    logger.info("api_error", code=error.code, status_code=status_code, message=error.message)
    return HTTPException(status_code=status_code, detail=error.to_dict())
