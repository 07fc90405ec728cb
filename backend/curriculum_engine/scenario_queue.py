"""Scenario generation queue store: durable jobs with atomic status transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .db.session import session_scope
from .learning_path import ConversationSeed, JobStatus, QueueStats, ScenarioGenerationJob
from .telemetry import emit_event

if TYPE_CHECKING:
    from .repositories.scenario_jobs import ScenarioJobRepository

logger = logging.getLogger(__name__)


def _repo() -> "ScenarioJobRepository":
    from .repositories.scenario_jobs import scenario_jobs as repository

    return repository


class ScenarioQueueStore:
    """Each call runs in its own transaction; no business rules live here."""

    def enqueue(
        self,
        *,
        path_assignment_id: str,
        week_id: str,
        seed: ConversationSeed,
        payload: Optional[Dict[str, Any]] = None,
        max_attempts: int = 3,
    ) -> ScenarioGenerationJob:
        with session_scope() as session:
            job, _ = _repo().enqueue(
                session,
                path_assignment_id=path_assignment_id,
                week_id=week_id,
                seed=seed,
                payload=payload,
                max_attempts=max_attempts,
            )
            return job

    def get_job(self, job_id: str) -> Optional[ScenarioGenerationJob]:
        with session_scope(commit=False) as session:
            return _repo().get(session, job_id)

    def claim_batch(self, limit: int) -> List[ScenarioGenerationJob]:
        with session_scope() as session:
            return _repo().claim_batch(session, limit)

    def mark_ready(self, job_id: str, result: Dict[str, Any]) -> ScenarioGenerationJob:
        with session_scope() as session:
            return _repo().mark_ready(session, job_id, result)

    def mark_pending_retry(self, job_id: str, error: Optional[str] = None) -> ScenarioGenerationJob:
        with session_scope() as session:
            return _repo().mark_pending_retry(session, job_id, error)

    def mark_failed(self, job_id: str, error: str) -> ScenarioGenerationJob:
        with session_scope() as session:
            return _repo().mark_failed(session, job_id, error)

    def get_stats(self) -> QueueStats:
        with session_scope(commit=False) as session:
            return _repo().stats(session)

    def get_jobs_by_status(self, status: JobStatus, limit: int = 50) -> List[ScenarioGenerationJob]:
        with session_scope(commit=False) as session:
            return _repo().list_by_status(session, JobStatus(status), limit)

    def get_pending_jobs(self, limit: int = 50) -> List[ScenarioGenerationJob]:
        return self.get_jobs_by_status(JobStatus.PENDING, limit)

    def get_ready_jobs_for_week(self, week_id: str, limit: int = 50) -> List[ScenarioGenerationJob]:
        with session_scope(commit=False) as session:
            return _repo().list_by_status(session, JobStatus.READY, limit, week_id=week_id)

    def get_jobs_for_week(self, week_id: str) -> List[ScenarioGenerationJob]:
        with session_scope(commit=False) as session:
            return _repo().list_for_week(session, week_id)

    def reclaim_stale(self, older_than: timedelta) -> Dict[str, List[str]]:
        cutoff = datetime.now(timezone.utc) - older_than
        with session_scope() as session:
            outcome = _repo().reclaim_stale(session, cutoff)
        if outcome["requeued"] or outcome["failed"]:
            logger.warning(
                "Reclaimed %d stale scenario jobs (%d failed permanently)",
                len(outcome["requeued"]) + len(outcome["failed"]),
                len(outcome["failed"]),
            )
            emit_event(
                "queue_jobs_reclaimed",
                requeued=len(outcome["requeued"]),
                failed=len(outcome["failed"]),
                older_than_seconds=int(older_than.total_seconds()),
            )
        return outcome

    def requeue_stuck(self, job_id: str, older_than: Optional[timedelta] = None) -> ScenarioGenerationJob:
        cutoff = datetime.now(timezone.utc) - older_than if older_than is not None else None
        with session_scope() as session:
            job = _repo().requeue_stuck(session, job_id, cutoff)
        logger.info("Scenario job %s requeued by operator", job_id)
        return job

    def purge_terminal(self, older_than_days: int = 30) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        with session_scope() as session:
            removed = _repo().purge_terminal(session, cutoff)
        logger.info("Purged %d terminal scenario jobs older than %d days", removed, older_than_days)
        return removed


scenario_queue = ScenarioQueueStore()

__all__ = ["ScenarioQueueStore", "scenario_queue"]
