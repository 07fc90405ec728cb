"""Operator endpoints for the scenario generation queue and the analysis sweep."""

from __future__ import annotations

import hmac
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .errors import CurriculumError
from .learning_path import (
    AnalysisSweepResult,
    BatchResult,
    JobStatus,
    QueueStats,
    ScenarioGenerationJob,
)
from .queue_processor import QueueProcessor
from .scenario_queue import ScenarioQueueStore
from .services import get_analysis_engine, get_queue_processor, get_queue_store
from .weekly_analysis import WeeklyAnalysisEngine

router = APIRouter(prefix="/api/queue", tags=["queue"])
analysis_router = APIRouter(prefix="/api/analysis", tags=["analysis"])
logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


class ProcessQueueRequest(BaseModel):
    limit: int = Field(default=10, ge=1)
    dry_run: bool = False


class ProcessQueueResponse(BaseModel):
    result: BatchResult
    stats: QueueStats


class ReclaimRequest(BaseModel):
    older_than_seconds: int = Field(default=900, ge=1)


class ReclaimResponse(BaseModel):
    requeued: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    stats: QueueStats


class RequeueRequest(BaseModel):
    older_than_seconds: Optional[int] = Field(default=None, ge=1)


class AnalysisSweepRequest(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)


def require_trigger_secret(
    authorization: Optional[str] = Header(default=None),
    x_queue_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.queue_trigger_secret
    if not expected:
        return
    provided = x_queue_secret
    if authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Queue trigger secret is missing or invalid.",
        )


@router.get("/stats", response_model=QueueStats)
def queue_stats(store: ScenarioQueueStore = Depends(get_queue_store)) -> QueueStats:
    return store.get_stats()


@router.get("/jobs", response_model=List[ScenarioGenerationJob])
def queue_jobs(
    job_status: JobStatus = Query(default=JobStatus.PENDING, alias="status"),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    store: ScenarioQueueStore = Depends(get_queue_store),
) -> List[ScenarioGenerationJob]:
    return store.get_jobs_by_status(job_status, limit)


@router.get("/jobs/{job_id}", response_model=ScenarioGenerationJob)
def queue_job(job_id: str, store: ScenarioQueueStore = Depends(get_queue_store)) -> ScenarioGenerationJob:
    job = store.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Scenario job '{job_id}' was not found.",
        )
    return job


@router.post(
    "/process",
    response_model=ProcessQueueResponse,
    dependencies=[Depends(require_trigger_secret)],
)
def process_queue(
    payload: Optional[ProcessQueueRequest] = None,
    processor: QueueProcessor = Depends(get_queue_processor),
    store: ScenarioQueueStore = Depends(get_queue_store),
) -> ProcessQueueResponse:
    request = payload or ProcessQueueRequest()
    result = processor.process_batch(request.limit, dry_run=request.dry_run)
    return ProcessQueueResponse(result=result, stats=store.get_stats())


@router.post(
    "/reclaim",
    response_model=ReclaimResponse,
    dependencies=[Depends(require_trigger_secret)],
)
def reclaim_stale(
    payload: Optional[ReclaimRequest] = None,
    store: ScenarioQueueStore = Depends(get_queue_store),
) -> ReclaimResponse:
    request = payload or ReclaimRequest()
    outcome: Dict[str, List[str]] = store.reclaim_stale(timedelta(seconds=request.older_than_seconds))
    return ReclaimResponse(
        requeued=outcome.get("requeued", []),
        failed=outcome.get("failed", []),
        stats=store.get_stats(),
    )


@router.post(
    "/jobs/{job_id}/requeue",
    response_model=ScenarioGenerationJob,
    dependencies=[Depends(require_trigger_secret)],
)
def requeue_job(
    job_id: str,
    payload: Optional[RequeueRequest] = None,
    store: ScenarioQueueStore = Depends(get_queue_store),
) -> ScenarioGenerationJob:
    request = payload or RequeueRequest()
    older_than = timedelta(seconds=request.older_than_seconds) if request.older_than_seconds else None
    try:
        job = store.requeue_stuck(job_id, older_than)
    except CurriculumError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    logger.info("Operator requeued scenario job %s", job_id)
    return job


@analysis_router.post(
    "/process",
    response_model=AnalysisSweepResult,
    dependencies=[Depends(require_trigger_secret)],
)
def process_pending_analyses(
    payload: Optional[AnalysisSweepRequest] = None,
    engine: WeeklyAnalysisEngine = Depends(get_analysis_engine),
) -> AnalysisSweepResult:
    request = payload or AnalysisSweepRequest()
    return engine.analyze_pending(request.limit)


__all__ = ["analysis_router", "require_trigger_secret", "router"]
