"""Queue processor: drains pending scenario jobs through the generation pipeline."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any, Dict, Optional, Tuple

from .config import Settings, get_settings
from .errors import GenerationTimeoutError, NotFoundError, StaleTransitionError
from .learning_path import AdaptiveWeek, BatchResult, JobOutcome, JobStatus, ScenarioGenerationJob
from .prompt_utils import build_scenario_description
from .scenario_generator import GenerationResult, OpenAIScenarioGenerator, PromptPayload, ScenarioGenerator
from .scenario_queue import ScenarioQueueStore, scenario_queue
from .telemetry import emit_event

logger = logging.getLogger(__name__)


def generation_payload(week: AdaptiveWeek, *, target_language: Optional[str] = None) -> Dict[str, Any]:
    """Snapshot of the week a job generates content for, stored on the job at enqueue time."""
    payload: Dict[str, Any] = {
        "week_number": week.week_number,
        "theme": week.theme,
        "theme_description": week.theme_description,
        "difficulty_min": week.difficulty_min,
        "difficulty_max": week.difficulty_max,
        "focus_areas": [area.model_dump(mode="json") for area in week.focus_areas],
    }
    if target_language:
        payload["target_language"] = target_language
    return payload


def build_prompt(job: ScenarioGenerationJob) -> PromptPayload:
    payload = job.payload or {}
    description = build_scenario_description(
        job.seed,
        theme=str(payload.get("theme") or job.seed.title),
        theme_description=str(payload.get("theme_description") or ""),
        difficulty_min=str(payload.get("difficulty_min") or "A1"),
        difficulty_max=str(payload.get("difficulty_max") or "A2"),
        week_number=int(payload.get("week_number") or 1),
        target_language=payload.get("target_language"),
    )
    return PromptPayload(
        job_id=job.id,
        seed_id=job.seed.id,
        user=description,
        metadata={"week_id": job.week_id, "path_assignment_id": job.path_assignment_id},
    )


class QueueProcessor:
    """Invoked on demand; overlapping runs are safe because claiming is atomic in the store."""

    def __init__(
        self,
        store: Optional[ScenarioQueueStore] = None,
        generator: Optional[ScenarioGenerator] = None,
        *,
        settings: Optional[Settings] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or scenario_queue
        self._generator = generator
        self._timeout = timeout_seconds if timeout_seconds is not None else self._settings.generation_timeout_seconds

    @property
    def generator(self) -> ScenarioGenerator:
        if self._generator is None:
            self._generator = OpenAIScenarioGenerator(self._settings)
        return self._generator

    def resolve_limit(self, limit: Optional[int]) -> int:
        requested = limit if limit is not None else self._settings.queue_default_batch
        return max(1, min(int(requested), self._settings.queue_max_batch))

    def process_batch(self, limit: Optional[int] = None, dry_run: bool = False) -> BatchResult:
        resolved = self.resolve_limit(limit)
        started = perf_counter()

        if dry_run:
            jobs = self._store.get_pending_jobs(resolved)
        else:
            stale_after = self._settings.queue_stale_after_seconds
            if stale_after:
                self._store.reclaim_stale(timedelta(seconds=stale_after))
            jobs = self._store.claim_batch(resolved)

        batch = BatchResult(dry_run=dry_run)
        for job in jobs:
            outcome, succeeded = self._process_job(job, dry_run=dry_run)
            batch.processed += 1
            if succeeded:
                batch.succeeded += 1
            else:
                batch.failed += 1
            batch.results.append(outcome)

        duration_ms = round((perf_counter() - started) * 1000.0, 2)
        logger.info(
            "Scenario batch processed=%d succeeded=%d failed=%d dry_run=%s in %sms",
            batch.processed,
            batch.succeeded,
            batch.failed,
            dry_run,
            duration_ms,
        )
        emit_event(
            "queue_batch_processed",
            processed=batch.processed,
            succeeded=batch.succeeded,
            failed=batch.failed,
            dry_run=dry_run,
            limit=resolved,
            duration_ms=duration_ms,
        )
        return batch

    def _process_job(self, job: ScenarioGenerationJob, *, dry_run: bool) -> Tuple[JobOutcome, bool]:
        try:
            generated = self._generate(job)
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or exc.__class__.__name__
            logger.warning("Scenario job %s failed (attempt %d/%d): %s", job.id, job.attempts + 1, job.max_attempts, error)
            return self._record_failure(job, error, dry_run=dry_run), False

        if dry_run:
            return JobOutcome(job_id=job.id, status=JobStatus.READY, attempts=job.attempts), True

        result = {
            "seed_id": job.seed.id,
            "scenario": generated.content.model_dump(mode="json"),
            "model": generated.model,
            "latency_ms": generated.latency_ms,
            "tokens_used": generated.tokens_used,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            updated = self._store.mark_ready(job.id, result)
        except (StaleTransitionError, NotFoundError) as exc:
            logger.warning("Scenario job %s could not be marked ready: %s", job.id, exc)
            return JobOutcome(job_id=job.id, status=job.status, attempts=job.attempts, error=str(exc)), False

        emit_event("scenario_job_ready", job_id=job.id, week_id=job.week_id, attempts=updated.attempts)
        return JobOutcome(job_id=job.id, status=updated.status, attempts=updated.attempts), True

    def _record_failure(self, job: ScenarioGenerationJob, error: str, *, dry_run: bool) -> JobOutcome:
        will_retry = job.attempts + 1 < job.max_attempts
        if dry_run:
            projected = JobStatus.PENDING if will_retry else JobStatus.FAILED
            return JobOutcome(job_id=job.id, status=projected, attempts=job.attempts, error=error)

        try:
            if will_retry:
                updated = self._store.mark_pending_retry(job.id, error)
                emit_event("scenario_job_retry", job_id=job.id, attempts=updated.attempts, error=error)
            else:
                updated = self._store.mark_failed(job.id, error)
                logger.error("Scenario job %s failed permanently after %d attempts", job.id, updated.attempts)
                emit_event("scenario_job_failed", job_id=job.id, attempts=updated.attempts, error=error)
        except (StaleTransitionError, NotFoundError) as exc:
            logger.warning("Scenario job %s failure could not be recorded: %s", job.id, exc)
            return JobOutcome(job_id=job.id, status=job.status, attempts=job.attempts, error=str(exc))
        return JobOutcome(job_id=job.id, status=updated.status, attempts=updated.attempts, error=error)

    def _generate(self, job: ScenarioGenerationJob) -> GenerationResult:
        prompt = build_prompt(job)
        # Fresh worker per call; a hung call holds only its own thread.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scenario-generation")
        future = pool.submit(self.generator.generate, prompt, timeout=self._timeout)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError as exc:
            raise GenerationTimeoutError(
                f"Scenario generation for job '{job.id}' exceeded {self._timeout:g}s"
            ) from exc
        finally:
            pool.shutdown(wait=False)


__all__ = [
    "QueueProcessor",
    "build_prompt",
    "generation_payload",
]
