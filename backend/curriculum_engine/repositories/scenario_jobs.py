"""Database-backed scenario generation job repository."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models import PersistenceAuditEventModel, ScenarioGenerationJobModel
from ..errors import NotFoundError, StaleTransitionError
from ..learning_path import (
    ConversationSeed,
    JobStatus,
    QueueStats,
    ScenarioGenerationJob,
    ensure_job_transition,
    job_predecessors,
)

Job = ScenarioGenerationJobModel

MAX_CLAIM_ROUNDS = 3


class ScenarioJobRepository:
    """Owns every scenario job status change; all transitions are conditional updates."""

    def enqueue(
        self,
        session: Session,
        *,
        path_assignment_id: str,
        week_id: str,
        seed: ConversationSeed,
        payload: Optional[Dict[str, Any]] = None,
        max_attempts: int = 3,
    ) -> Tuple[ScenarioGenerationJob, bool]:
        """Insert a pending job, or return the existing one for the same week and seed."""
        stmt = select(Job).where(Job.week_id == week_id, Job.seed_key == seed.id)
        existing = session.execute(stmt).scalar_one_or_none()
        if existing is not None:
            return self._to_domain(existing), False

        model = Job(
            path_assignment_id=path_assignment_id,
            week_id=week_id,
            seed_key=seed.id,
            seed=seed.model_dump(mode="json"),
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            payload=payload,
        )
        session.add(model)
        session.flush()
        self._record_audit(session, model.id, "scenario_job_enqueued", {"week_id": week_id, "seed": seed.id})
        return self._to_domain(model), True

    def get(self, session: Session, job_id: str) -> ScenarioGenerationJob | None:
        model = session.get(Job, job_id)
        return self._to_domain(model) if model else None

    def claim_batch(self, session: Session, limit: int) -> List[ScenarioGenerationJob]:
        """Flip up to ``limit`` pending jobs to processing and return exactly the rows this call won."""
        if limit <= 0:
            return []

        token = str(uuid.uuid4())
        claimed = 0
        for _ in range(MAX_CLAIM_ROUNDS):
            remaining = limit - claimed
            candidates = (
                select(Job.id)
                .where(Job.status == JobStatus.PENDING)
                .order_by(Job.created_at.asc(), Job.id.asc())
                .limit(remaining)
            )
            if session.get_bind().dialect.name != "sqlite":
                candidates = candidates.with_for_update(skip_locked=True)
            ids = list(session.execute(candidates).scalars().all())
            if not ids:
                break

            now = utcnow()
            result = session.execute(
                update(Job)
                .where(Job.id.in_(ids), Job.status == JobStatus.PENDING)
                .values(status=JobStatus.PROCESSING, claim_token=token, claimed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            claimed += result.rowcount or 0
            if claimed >= limit or result.rowcount == len(ids):
                break

        if claimed == 0:
            return []

        stmt = (
            select(Job)
            .where(Job.claim_token == token)
            .order_by(Job.created_at.asc(), Job.id.asc())
            .execution_options(populate_existing=True)
        )
        models = session.execute(stmt).scalars().all()
        self._record_audit(session, None, "scenario_jobs_claimed", {"job_ids": [model.id for model in models]})
        return [self._to_domain(model) for model in models]

    def mark_ready(self, session: Session, job_id: str, result: Dict[str, Any]) -> ScenarioGenerationJob:
        job = self._transition(
            session,
            job_id,
            JobStatus.READY,
            result=result,
            last_error=None,
            claim_token=None,
        )
        self._record_audit(session, job_id, "scenario_job_ready", {"attempts": job.attempts})
        return job

    def mark_pending_retry(self, session: Session, job_id: str, error: Optional[str] = None) -> ScenarioGenerationJob:
        job = self._transition(
            session,
            job_id,
            JobStatus.PENDING,
            attempts=Job.attempts + 1,
            last_error=error,
            claim_token=None,
            claimed_at=None,
        )
        self._record_audit(session, job_id, "scenario_job_retry", {"attempts": job.attempts, "error": error})
        return job

    def mark_failed(self, session: Session, job_id: str, error: str) -> ScenarioGenerationJob:
        job = self._transition(
            session,
            job_id,
            JobStatus.FAILED,
            attempts=Job.attempts + 1,
            last_error=error,
            claim_token=None,
        )
        self._record_audit(session, job_id, "scenario_job_failed", {"attempts": job.attempts, "error": error})
        return job

    def reclaim_stale(self, session: Session, older_than: datetime) -> Dict[str, List[str]]:
        """Return processing jobs claimed before ``older_than`` to pending, counting one attempt each."""
        stale = (Job.status == JobStatus.PROCESSING, Job.claimed_at < older_than)
        exhausted_ids = list(
            session.execute(select(Job.id).where(*stale, Job.attempts + 1 >= Job.max_attempts)).scalars().all()
        )
        requeued_ids = list(
            session.execute(select(Job.id).where(*stale, Job.attempts + 1 < Job.max_attempts)).scalars().all()
        )

        now = utcnow()
        failed: List[str] = []
        requeued: List[str] = []
        if exhausted_ids:
            session.execute(
                update(Job)
                .where(Job.id.in_(exhausted_ids), *stale)
                .values(
                    status=JobStatus.FAILED,
                    attempts=Job.attempts + 1,
                    last_error="Processing window expired; attempt ceiling reached.",
                    claim_token=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            failed = self._ids_with_status(session, exhausted_ids, JobStatus.FAILED)
        if requeued_ids:
            session.execute(
                update(Job)
                .where(Job.id.in_(requeued_ids), *stale)
                .values(
                    status=JobStatus.PENDING,
                    attempts=Job.attempts + 1,
                    last_error="Processing window expired; job returned to the queue.",
                    claim_token=None,
                    claimed_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            requeued = self._ids_with_status(session, requeued_ids, JobStatus.PENDING)

        if failed or requeued:
            self._record_audit(
                session,
                None,
                "scenario_jobs_reclaimed",
                {"requeued": requeued, "failed": failed, "older_than": older_than.isoformat()},
            )
        return {"requeued": requeued, "failed": failed}

    def requeue_stuck(
        self,
        session: Session,
        job_id: str,
        older_than: Optional[datetime] = None,
    ) -> ScenarioGenerationJob:
        """Operator re-queue of one processing job; the attempt counter is left untouched."""
        conditions = [Job.id == job_id, Job.status == JobStatus.PROCESSING]
        if older_than is not None:
            conditions.append(Job.claimed_at < older_than)
        result = session.execute(
            update(Job)
            .where(*conditions)
            .values(status=JobStatus.PENDING, claim_token=None, claimed_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            model = self._require_model(session, job_id)
            if model.status == JobStatus.PROCESSING:
                raise StaleTransitionError(f"Scenario job '{job_id}' was claimed too recently to requeue.")
            ensure_job_transition(job_id, model.status, JobStatus.PENDING)
            raise StaleTransitionError(f"Scenario job '{job_id}' is {model.status.value}, not processing.")
        self._record_audit(session, job_id, "scenario_job_requeued", {})
        return self._to_domain(self._require_model(session, job_id, refresh=True))

    def purge_terminal(self, session: Session, older_than: datetime) -> int:
        result = session.execute(
            delete(Job)
            .where(Job.status.in_([JobStatus.READY, JobStatus.FAILED]), Job.updated_at < older_than)
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount or 0
        if removed:
            self._record_audit(session, None, "scenario_jobs_purged", {"removed": removed})
        return removed

    def delete_for_assignment(self, session: Session, path_assignment_id: str) -> int:
        result = session.execute(
            delete(Job)
            .where(Job.path_assignment_id == path_assignment_id)
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount or 0
        if removed:
            self._record_audit(session, path_assignment_id, "scenario_jobs_discarded", {"removed": removed})
        return removed

    def stats(self, session: Session) -> QueueStats:
        rows = session.execute(select(Job.status, func.count(Job.id)).group_by(Job.status)).all()
        counts = {status.value: count for status, count in rows}
        return QueueStats(
            pending=counts.get(JobStatus.PENDING.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            ready=counts.get(JobStatus.READY.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
            total=sum(counts.values()),
        )

    def list_by_status(
        self,
        session: Session,
        status: JobStatus,
        limit: int,
        *,
        week_id: Optional[str] = None,
    ) -> List[ScenarioGenerationJob]:
        stmt = select(Job).where(Job.status == status)
        if week_id is not None:
            stmt = stmt.where(Job.week_id == week_id)
        stmt = stmt.order_by(Job.created_at.asc(), Job.id.asc()).limit(limit)
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def list_for_week(self, session: Session, week_id: str) -> List[ScenarioGenerationJob]:
        stmt = select(Job).where(Job.week_id == week_id).order_by(Job.created_at.asc(), Job.id.asc())
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def _transition(
        self,
        session: Session,
        job_id: str,
        target: JobStatus,
        **values: Any,
    ) -> ScenarioGenerationJob:
        predecessors = sorted(job_predecessors(target), key=lambda status: status.value)
        result = session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status.in_(predecessors))
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            model = self._require_model(session, job_id)
            ensure_job_transition(job_id, model.status, target)
            raise StaleTransitionError(f"Scenario job '{job_id}' changed status concurrently.")
        return self._to_domain(self._require_model(session, job_id, refresh=True))

    def _require_model(self, session: Session, job_id: str, *, refresh: bool = False) -> ScenarioGenerationJobModel:
        model = session.get(Job, job_id, populate_existing=refresh)
        if model is None:
            raise NotFoundError(f"Scenario job '{job_id}' was not found.")
        return model

    def _ids_with_status(self, session: Session, ids: Iterable[str], status: JobStatus) -> List[str]:
        stmt = select(Job.id).where(Job.id.in_(list(ids)), Job.status == status)
        return list(session.execute(stmt).scalars().all())

    def _to_domain(self, model: ScenarioGenerationJobModel) -> ScenarioGenerationJob:
        return ScenarioGenerationJob(
            id=model.id,
            path_assignment_id=model.path_assignment_id,
            week_id=model.week_id,
            seed=ConversationSeed.model_validate(model.seed),
            status=model.status,
            attempts=model.attempts,
            max_attempts=model.max_attempts,
            payload=model.payload,
            result=model.result,
            last_error=model.last_error,
            claimed_at=model.claimed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _record_audit(self, session: Session, subject_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        event = PersistenceAuditEventModel(
            subject_id=subject_id,
            event_type=event_type,
            payload=payload,
            actor="system",
        )
        session.add(event)


scenario_jobs = ScenarioJobRepository()

__all__ = ["ScenarioJobRepository", "scenario_jobs"]
