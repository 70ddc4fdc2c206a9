"""
Pipeline run API endpoints
Queue runs, follow their progress, and cancel them
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from jhdeploy.core.config import settings
from jhdeploy.db.session import get_db
from jhdeploy.models.pipeline_schemas import (
    PipelineRunListResponse,
    PipelineRunRequest,
    PipelineRunResponse,
    PipelineRunStatus,
)
from jhdeploy.models.stage_results import PipelineStatus
from jhdeploy.services.background_executor import background_executor
from jhdeploy.services.pipeline import DeploymentPipeline
from jhdeploy.services.run_store import RunStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["pipeline"])


def get_executor():
    return background_executor


@router.post("/runs", response_model=PipelineRunResponse, status_code=202)
async def create_run(
    request: PipelineRunRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    executor=Depends(get_executor),
):
    """
    Queue a pipeline run

    Returns immediately with the run ID; follow progress via the status endpoint.
    """
    unknown = set(request.skip) - set(DeploymentPipeline.STAGES)
    if unknown:
        raise HTTPException(
            status_code=400, detail=f"Unknown stage(s): {', '.join(sorted(unknown))}"
        )

    store = RunStore(db)
    try:
        run = store.create_run(
            settings.image_ref,
            build_number=request.build_number,
            triggered_by=request.triggered_by,
            options={"skip": request.skip, "failure_policy": request.failure_policy},
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background_tasks.add_task(executor.start_run, run.id)

    return PipelineRunResponse(
        run_id=run.id,
        build_number=run.build_number,
        status=run.status.value,
        message="Run queued. Check the status endpoint for progress.",
    )


@router.get("/runs", response_model=PipelineRunListResponse)
async def list_runs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[PipelineStatus] = None,
    db: Session = Depends(get_db),
):
    """List runs, newest build first, optionally filtered by status"""
    runs, total_count = RunStore(db).list_runs(
        offset=(page - 1) * page_size, limit=page_size, status=status
    )
    return PipelineRunListResponse(
        runs=[PipelineRunStatus.model_validate(r.to_dict()) for r in runs],
        total_count=total_count,
        page=page,
        page_size=page_size,
    )


@router.get("/runs/{run_id}", response_model=PipelineRunStatus)
async def get_run(run_id: str, db: Session = Depends(get_db)):
    """Get run status with per-stage outcomes"""
    run = RunStore(db).get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return PipelineRunStatus.model_validate(run.to_dict(include_stages=True))


@router.delete("/runs/{run_id}")
async def cancel_run(
    run_id: str,
    db: Session = Depends(get_db),
    executor=Depends(get_executor),
):
    """
    Cancel a pending or running pipeline

    Stages already finished keep their side effects; nothing is rolled back.
    """
    store = RunStore(db)
    run = store.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")

    if run.status not in (PipelineStatus.PENDING, PipelineStatus.RUNNING):
        raise HTTPException(
            status_code=400,
            detail=f"Cannot cancel run in '{run.status.value}' status",
        )

    cancelled = await executor.cancel_run(run_id)
    if not cancelled:
        db.refresh(run)
        if run.status == PipelineStatus.PENDING:
            # Never picked up by the executor
            store.finish_run(run, PipelineStatus.CANCELLED, "Run was cancelled")
        elif run.status != PipelineStatus.RUNNING:
            raise HTTPException(status_code=400, detail=f"Run already {run.status.value}")

    return {"message": "Run cancellation requested"}
