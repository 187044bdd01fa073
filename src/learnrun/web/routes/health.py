"""Health check endpoint.

Reports whether the run store answers; an unreachable store makes the API
``degraded`` rather than failing the check itself.
"""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter

from learnrun.core.errors import StoreUnavailableError
from learnrun.db import runs_repository
from learnrun.db.database import get_db
from learnrun.web.schemas import HealthResponse

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check API and run store health."""
    try:
        with get_db() as conn:
            active_runs = runs_repository.count_runs_by_state(conn, "running")
    except StoreUnavailableError as e:
        logger.warning("health_store_unavailable", error=e.message)
        return HealthResponse(
            status="degraded",
            version="0.1.0",
            timestamp=datetime.now(timezone.utc).isoformat(),
            store="unavailable",
        )

    return HealthResponse(
        status="ok",
        version="0.1.0",
        timestamp=datetime.now(timezone.utc).isoformat(),
        active_runs=active_runs,
    )
