"""Run listing endpoint."""

from fastapi import APIRouter, Depends, Query

from learnrun.core.errors import LearnRunError
from learnrun.core.run_lifecycle import RunLifecycleManager
from learnrun.web.runs import get_run_manager, http_error
from learnrun.web.schemas import RunListResponse, RunSummaryResponse

router = APIRouter(prefix="/api/runs", tags=["runs"])


@router.get("", response_model=RunListResponse)
def list_runs(
    limit: int = Query(default=100, ge=1, le=1000),
    manager: RunLifecycleManager = Depends(get_run_manager),
) -> RunListResponse:
    """List runs, most recent first."""
    try:
        runs = manager.list_runs(limit=limit)
    except LearnRunError as e:
        raise http_error(e) from e

    items = [RunSummaryResponse(**run.to_dict()) for run in runs]
    return RunListResponse(runs=items, count=len(items))
