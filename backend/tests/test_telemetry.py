from __future__ import annotations

from datetime import datetime, timezone

from curriculum_engine.learning_path import JobStatus
from curriculum_engine.telemetry import emit_event


def test_listeners_receive_sanitized_payload(events) -> None:
    emit_event(
        "scenario_job_ready",
        job_id="job-1",
        status=JobStatus.READY,
        at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
    )

    (event,) = events
    assert event.name == "scenario_job_ready"
    assert event.payload == {"job_id": "job-1", "status": "ready", "at": "2026-01-05T09:00:00+00:00"}


def test_failing_listener_does_not_block_others(events) -> None:
    from curriculum_engine.telemetry import register_listener

    def broken(event) -> None:
        raise RuntimeError("listener down")

    register_listener(broken)
    received = []
    register_listener(received.append)

    emit_event("queue_batch_processed", processed=0)

    assert [event.name for event in events] == ["queue_batch_processed"]
    assert [event.name for event in received] == ["queue_batch_processed"]


def test_events_are_logged(caplog, events) -> None:
    with caplog.at_level("INFO", logger="curriculum.telemetry"):
        emit_event("week_completed", week_id="week-1")
    assert any('TELEMETRY {"event": "week_completed", "week_id": "week-1"}' in record.getMessage() for record in caplog.records)


def test_filtered_listener_only_sees_subscribed_events(events) -> None:
    from curriculum_engine.telemetry import register_listener, unregister_listener

    failures = []
    register_listener(failures.append, events={"scenario_job_failed"})

    emit_event("scenario_job_retry", job_id="job-1")
    emit_event("scenario_job_failed", job_id="job-1")
    unregister_listener(failures.append)
    emit_event("scenario_job_failed", job_id="job-2")

    assert [event.payload["job_id"] for event in failures] == ["job-1"]
    assert failures[0].is_failure
    assert len(events) == 3


def test_failure_events_log_at_warning(caplog, events) -> None:
    with caplog.at_level("INFO", logger="curriculum.telemetry"):
        emit_event("analysis_dispatch_failed", week_id="week-1", error="boom")
        emit_event("session_started", session_id="s-1")
    levels = [(record.levelname, record.getMessage()) for record in caplog.records]
    assert ("WARNING", 'TELEMETRY {"event": "analysis_dispatch_failed", "week_id": "week-1", "error": "boom"}') in levels
    assert ("INFO", 'TELEMETRY {"event": "session_started", "session_id": "s-1"}') in levels
