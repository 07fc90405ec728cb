"""Queue processor: retry ceiling, dry runs, timeouts and per-job isolation."""

from __future__ import annotations

import threading
from datetime import timedelta

from sqlalchemy import update

from curriculum_engine.config import Settings
from curriculum_engine.db.models import ScenarioGenerationJobModel
from curriculum_engine.db.session import session_scope
from curriculum_engine.learning_path import AdaptiveWeek, FocusArea, JobStatus
from curriculum_engine.queue_processor import QueueProcessor, build_prompt, generation_payload
from curriculum_engine.scenario_queue import ScenarioQueueStore
from support import ScriptedGenerator, generation_failure, make_seed


def _processor(store: ScenarioQueueStore, generator, settings: Settings, **kwargs) -> QueueProcessor:
    return QueueProcessor(store, generator, settings=settings, **kwargs)


def test_job_fails_permanently_after_max_attempts(database, settings, events) -> None:
    store = ScenarioQueueStore()
    job = store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed("seed-a"), max_attempts=3)
    generator = ScriptedGenerator({"seed-a": [generation_failure()] * 3})
    processor = _processor(store, generator, settings)
    for expected_attempts in (1, 2):
        batch = processor.process_batch(10)
        assert batch.failed == 1
        assert batch.results[0].status is JobStatus.PENDING
        assert batch.results[0].attempts == expected_attempts
    batch = processor.process_batch(10)

    assert batch.results[0].status is JobStatus.FAILED
    stored = store.get_job(job.id)
    assert stored is not None
    assert stored.status is JobStatus.FAILED
    assert stored.attempts == 3
    assert stored.last_error == "model unavailable"
    assert stored.result is None
    assert [event.name for event in events].count("scenario_job_failed") == 1
    assert processor.process_batch(10).processed == 0


def test_job_succeeds_after_two_failures(database, settings) -> None:
    store = ScenarioQueueStore()
    job = store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed("seed-b"), max_attempts=3)
    generator = ScriptedGenerator({"seed-b": [generation_failure(), generation_failure()]})
    processor = _processor(store, generator, settings)
    processor.process_batch(10)
    processor.process_batch(10)
    batch = processor.process_batch(10)

    assert batch.succeeded == 1
    stored = store.get_job(job.id)
    assert stored is not None
    assert stored.status is JobStatus.READY
    assert stored.attempts == 2
    assert stored.result is not None
    assert stored.result["seed_id"] == "seed-b"
    assert stored.result["scenario"]["title"] == "Scenario for seed-b"
    assert stored.result["tokens_used"] == 42
    assert len(generator.calls) == 3


def test_dry_run_never_mutates_jobs(database, settings) -> None:
    store = ScenarioQueueStore()
    ok = store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed("seed-ok"))
    bad = store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed("seed-bad"), max_attempts=1)
    generator = ScriptedGenerator({"seed-bad": [generation_failure()]})
    processor = _processor(store, generator, settings)
    batch = processor.process_batch(10, dry_run=True)

    assert batch.dry_run is True
    assert (batch.processed, batch.succeeded, batch.failed) == (2, 1, 1)
    outcomes = {outcome.job_id: outcome for outcome in batch.results}
    assert outcomes[ok.id].status is JobStatus.READY
    assert outcomes[bad.id].status is JobStatus.FAILED
    for job_id in (ok.id, bad.id):
        stored = store.get_job(job_id)
        assert stored is not None
        assert stored.status is JobStatus.PENDING
        assert stored.attempts == 0
        assert stored.result is None
    assert store.get_stats().pending == 2


def test_generation_timeout_counts_as_attempt(database, settings) -> None:
    store = ScenarioQueueStore()
    job = store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed("seed-slow"))
    release = threading.Event()

    def hang(prompt):
        release.wait(5)
        return None

    generator = ScriptedGenerator(default=hang)
    processor = _processor(store, generator, settings, timeout_seconds=0.05)
    try:
        batch = processor.process_batch(1)
    finally:
        release.set()

    assert batch.failed == 1
    outcome = batch.results[0]
    assert outcome.status is JobStatus.PENDING
    assert outcome.attempts == 1
    assert outcome.error is not None and "exceeded" in outcome.error
    stored = store.get_job(job.id)
    assert stored is not None
    assert stored.attempts == 1


def test_hung_generations_do_not_starve_later_jobs(database, settings) -> None:
    store = ScenarioQueueStore()
    for index in range(4):
        store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed(f"seed-hang-{index}"), max_attempts=1)
    release = threading.Event()

    def hang_on_slow_seeds(prompt):
        if prompt.seed_id.startswith("seed-hang"):
            release.wait(10)
        return None

    generator = ScriptedGenerator(default=hang_on_slow_seeds)
    processor = _processor(store, generator, settings, timeout_seconds=0.5)
    try:
        first = processor.process_batch(4)
        healthy = [
            store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed(seed_id))
            for seed_id in ("seed-fresh-1", "seed-fresh-2")
        ]
        second = processor.process_batch(2)
    finally:
        release.set()

    assert first.failed == 4
    assert {outcome.status for outcome in first.results} == {JobStatus.FAILED}
    assert (second.processed, second.succeeded) == (2, 2)
    for job in healthy:
        stored = store.get_job(job.id)
        assert stored is not None
        assert stored.status is JobStatus.READY
        assert stored.attempts == 0
    called = [prompt.seed_id for prompt in generator.calls]
    assert "seed-fresh-1" in called and "seed-fresh-2" in called


def test_one_failing_job_does_not_abort_the_batch(database, settings) -> None:
    store = ScenarioQueueStore()
    seeds = ["seed-1", "seed-2", "seed-3"]
    for seed_id in seeds:
        store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed(seed_id))
    generator = ScriptedGenerator({"seed-2": [RuntimeError("boom")]})
    processor = _processor(store, generator, settings)
    batch = processor.process_batch(10)

    assert (batch.processed, batch.succeeded, batch.failed) == (3, 2, 1)
    stats = store.get_stats()
    assert stats.ready == 2
    assert stats.pending == 1


def test_limit_is_clamped_to_configured_bounds(database) -> None:
    settings = Settings(CURRICULUM_QUEUE_DEFAULT_BATCH=2, CURRICULUM_QUEUE_MAX_BATCH=3)
    processor = QueueProcessor(ScenarioQueueStore(), ScriptedGenerator(), settings=settings)
    assert processor.resolve_limit(None) == 2
    assert processor.resolve_limit(0) == 1
    assert processor.resolve_limit(100) == 3


def test_stale_jobs_are_reclaimed_before_claiming(database, monkeypatch) -> None:
    settings = Settings(CURRICULUM_QUEUE_STALE_AFTER_SECONDS=60)
    store = ScenarioQueueStore()
    job = store.enqueue(path_assignment_id="a", week_id="w", seed=make_seed("seed-stuck"))
    store.claim_batch(1)
    with session_scope() as session:
        model = session.get(ScenarioGenerationJobModel, job.id)
        assert model is not None and model.claimed_at is not None
        session.execute(
            update(ScenarioGenerationJobModel)
            .where(ScenarioGenerationJobModel.id == job.id)
            .values(claimed_at=model.claimed_at - timedelta(minutes=5))
        )

    processor = QueueProcessor(store, ScriptedGenerator(), settings=settings)
    batch = processor.process_batch(5)

    assert batch.succeeded == 1
    stored = store.get_job(job.id)
    assert stored is not None
    assert stored.status is JobStatus.READY
    assert stored.attempts == 1


def test_build_prompt_uses_week_snapshot(database) -> None:
    week = AdaptiveWeek(
        id="w2",
        assignment_id="a",
        week_number=2,
        theme="Last Week",
        theme_description="Recent past stories",
        difficulty_min="A2",
        difficulty_max="A2",
        focus_areas=[FocusArea(type="grammar", description="past tense", priority="high")],
    )
    payload = generation_payload(week, target_language="es")
    store = ScenarioQueueStore()
    job = store.enqueue(path_assignment_id="a", week_id="w2", seed=make_seed("seed-story"), payload=payload)

    prompt = build_prompt(job)

    assert prompt.job_id == job.id
    assert prompt.seed_id == "seed-story"
    assert "WEEKLY THEME: Last Week" in prompt.user
    assert "TARGET DIFFICULTY: A2 to A2" in prompt.user
    assert "REALISM LEVEL: REALISTIC" in prompt.user
    assert "ES language learning scenario" in prompt.user
    assert prompt.metadata["week_id"] == "w2"
    assert payload["focus_areas"][0]["description"] == "past tense"
