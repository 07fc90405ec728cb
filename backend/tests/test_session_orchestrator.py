"""Session orchestration: idempotent completion, week transitions and decoupled analysis dispatch."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from curriculum_engine.analysis_dispatch import InlineAnalysisDispatcher
from curriculum_engine.errors import AlreadyCompletedError, InvalidStateError, NotFoundError
from curriculum_engine.learning_path import AssignmentStatus, SessionRecord, WeekStatus
from curriculum_engine.path_manager import AdaptivePathManager
from curriculum_engine.scenario_queue import ScenarioQueueStore
from curriculum_engine.session_orchestrator import (
    SessionOrchestrator,
    encouragement_message,
    practice_minutes,
)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.weeks: List[str] = []

    def dispatch(self, week_id: str) -> None:
        self.weeks.append(week_id)


class ExplodingDispatcher:
    def dispatch(self, week_id: str) -> None:
        raise RuntimeError("broker offline")


def _assignment(manager: AdaptivePathManager, sessions_required: int = 3):
    assignment = manager.create_assignment("learner-1", "daily-life", sessions_required=sessions_required)
    current = manager.get_current_week(assignment.id)
    assert current is not None
    return assignment, current.week


def test_start_session_requires_active_week(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    assignment, week_one = _assignment(manager)
    week_two = manager.list_weeks(assignment.id)[1]

    record = orchestrator.start_session(week_one.id)
    assert record.week_id == week_one.id
    assert record.conversation_id
    assert record.completed_at is None

    with pytest.raises(InvalidStateError):
        orchestrator.start_session(week_two.id)
    with pytest.raises(NotFoundError):
        orchestrator.start_session("missing-week")


def test_start_session_rejects_paused_assignment(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    assignment, week = _assignment(manager)
    manager.pause_assignment(assignment.id)

    with pytest.raises(InvalidStateError):
        orchestrator.start_session(week.id)


def test_start_session_binds_only_ready_scenarios(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator(conversation_factory=lambda week: f"conv-{week.week_number}")
    store = ScenarioQueueStore()
    _, week = _assignment(manager)
    pending = store.get_jobs_for_week(week.id)[0]

    with pytest.raises(InvalidStateError):
        orchestrator.start_session(week.id, scenario_job_id=pending.id)

    (claimed,) = store.claim_batch(1)
    store.mark_ready(claimed.id, {"seed_id": claimed.seed.id})
    record = orchestrator.start_session(week.id, scenario_job_id=claimed.id)

    assert record.scenario_job_id == claimed.id
    assert record.conversation_id == "conv-1"
    assert [job.id for job in orchestrator.list_ready_scenarios(week.id)] == [claimed.id]
    with pytest.raises(NotFoundError):
        orchestrator.start_session(week.id, scenario_job_id="missing-job")


def test_complete_session_twice_counts_once(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    _, week = _assignment(manager)
    record = orchestrator.start_session(week.id)

    completion = orchestrator.complete_session(record.id, 0.8, transcript="Hola, me llamo Ana.")
    with pytest.raises(AlreadyCompletedError):
        orchestrator.complete_session(record.id, 0.4)

    assert completion.progress.sessions_completed == 1
    assert completion.encouragement == "Nice start to your week!"
    assert completion.week_completed is False
    progress = manager.get_week_progress(week.id)
    assert progress.sessions_completed == 1
    assert progress.aggregate_score == pytest.approx(0.8)
    with pytest.raises(NotFoundError):
        orchestrator.complete_session("missing-session")


def test_outcome_score_range_is_validated(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    _, week = _assignment(manager)
    record = orchestrator.start_session(week.id)

    with pytest.raises(ValueError):
        orchestrator.complete_session(record.id, 1.5)
    assert orchestrator.get_active_session(week.id) is not None


def test_unscored_sessions_do_not_skew_mean(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    _, week = _assignment(manager, sessions_required=5)
    for score in (0.6, None, 1.0):
        record = orchestrator.start_session(week.id)
        orchestrator.complete_session(record.id, score)

    progress = manager.get_week_progress(week.id)
    assert progress.sessions_completed == 3
    assert progress.scored_sessions == 2
    assert progress.aggregate_score == pytest.approx(0.8)


def test_reaching_required_sessions_completes_week_and_dispatches(database, events) -> None:
    manager = AdaptivePathManager()
    dispatcher = RecordingDispatcher()
    orchestrator = SessionOrchestrator(dispatcher)
    assignment, week_one = _assignment(manager)

    completions = []
    for _ in range(3):
        record = orchestrator.start_session(week_one.id)
        completions.append(orchestrator.complete_session(record.id, 0.7))

    assert [completion.week_completed for completion in completions] == [False, False, True]
    assert completions[-1].encouragement == "3 conversations this week. You're building a rhythm."
    weeks = manager.list_weeks(assignment.id)
    assert weeks[0].status is WeekStatus.COMPLETED
    assert weeks[0].completed_at is not None
    assert weeks[1].status is WeekStatus.ACTIVE
    assert completions[-1].next_week_id == weeks[1].id
    assert dispatcher.weeks == [week_one.id]
    assert any(event.name == "week_completed" for event in events)

    current = manager.get_current_week(assignment.id)
    assert current is not None
    assert current.week.week_number == 2


def test_final_week_completes_assignment(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    assignment = manager.create_assignment("learner-1", "daily-life", sessions_required=1)

    last = None
    for _ in range(4):
        current = manager.get_current_week(assignment.id)
        assert current is not None
        record = orchestrator.start_session(current.week.id)
        last = orchestrator.complete_session(record.id)

    assert last is not None
    assert last.week_completed is True
    assert last.next_week_id is None
    assert last.assignment_completed is True
    assert manager.get_assignment(assignment.id).status is AssignmentStatus.COMPLETED
    assert manager.get_current_week(assignment.id) is None


def test_dispatch_failure_never_fails_completion(database, events) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator(ExplodingDispatcher())
    _, week = _assignment(manager, sessions_required=1)
    record = orchestrator.start_session(week.id)

    completion = orchestrator.complete_session(record.id, 0.9)

    assert completion.week_completed is True
    assert manager.get_week(week.id).status is WeekStatus.COMPLETED
    failures = [event for event in events if event.name == "analysis_dispatch_failed"]
    assert failures and failures[0].payload["error"] == "broker offline"


def test_inline_analysis_errors_are_contained(database) -> None:
    def analyze(week_id: str) -> None:
        raise RuntimeError(f"model outage for {week_id}")

    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator(InlineAnalysisDispatcher(analyze))
    _, week = _assignment(manager, sessions_required=1)
    record = orchestrator.start_session(week.id)

    completion = orchestrator.complete_session(record.id)
    assert completion.week_completed is True


def test_concurrent_completions_are_all_counted(database) -> None:
    manager = AdaptivePathManager()
    dispatcher = RecordingDispatcher()
    orchestrator = SessionOrchestrator(dispatcher)
    _, week = _assignment(manager, sessions_required=4)
    records = [orchestrator.start_session(week.id) for _ in range(4)]
    barrier = threading.Barrier(len(records))
    errors: List[Exception] = []

    def complete(record_id: str) -> None:
        barrier.wait()
        try:
            orchestrator.complete_session(record_id, 0.5)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=complete, args=(record.id,)) for record in records]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert not errors
    progress = manager.get_week_progress(week.id)
    assert progress.sessions_completed == 4
    assert manager.get_week(week.id).status is WeekStatus.COMPLETED
    assert dispatcher.weeks == [week.id]


def test_list_sessions_and_active_session(database) -> None:
    manager = AdaptivePathManager()
    orchestrator = SessionOrchestrator()
    _, week = _assignment(manager)
    first = orchestrator.start_session(week.id)
    second = orchestrator.start_session(week.id)
    orchestrator.complete_session(first.id)

    assert [record.id for record in orchestrator.list_sessions(week.id)] == [first.id, second.id]
    active = orchestrator.get_active_session(week.id)
    assert active is not None and active.id == second.id
    assert orchestrator.get_session(first.id) is not None
    with pytest.raises(NotFoundError):
        orchestrator.list_sessions("missing-week")


def test_encouragement_messages() -> None:
    assert encouragement_message(1) == "Nice start to your week!"
    assert encouragement_message(2) == "2 conversations this week."
    assert encouragement_message(5, 47.6) == "48 minutes of practice this week. That's real progress."
    assert encouragement_message(9) == "You're really committing to this. It shows."


def test_practice_minutes_sums_completed_sessions() -> None:
    start = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    sessions = [
        SessionRecord(id="s1", week_id="w", conversation_id="c1", started_at=start, completed_at=start + timedelta(minutes=10)),
        SessionRecord(id="s2", week_id="w", conversation_id="c2", started_at=start, completed_at=start + timedelta(minutes=5)),
        SessionRecord(id="s3", week_id="w", conversation_id="c3", started_at=start),
    ]
    assert practice_minutes(sessions) == pytest.approx(15.0)
