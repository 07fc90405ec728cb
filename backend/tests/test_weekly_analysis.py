"""Weekly analysis: transcript selection, atomic persistence and next-week adaptation."""

from __future__ import annotations

import pytest
from support import FakeAnalysisModel, analysis_response

from curriculum_engine.errors import (
    AlreadyAnalyzedError,
    AnalysisModelError,
    AnalysisParseError,
    IncompleteWeekError,
    NotFoundError,
)
from curriculum_engine.learning_path import WeekStatus
from curriculum_engine.path_manager import AdaptivePathManager
from curriculum_engine.scenario_queue import ScenarioQueueStore
from curriculum_engine.session_orchestrator import SessionOrchestrator
from curriculum_engine.weekly_analysis import (
    WeeklyAnalysisEngine,
    derive_focus_areas,
    parse_analysis_response,
)


def _complete_week(orchestrator: SessionOrchestrator, week_id: str, count: int, label: str) -> None:
    for index in range(count):
        record = orchestrator.start_session(week_id)
        orchestrator.complete_session(record.id, 0.75, transcript=f"{label} transcript {index + 1}")


def _assignment(sessions_required: int = 3):
    manager = AdaptivePathManager()
    assignment = manager.create_assignment("learner-1", "daily-life", sessions_required=sessions_required)
    return manager, SessionOrchestrator(), manager.list_weeks(assignment.id)


def test_analysis_reads_only_the_analysed_weeks_transcripts(database) -> None:
    manager, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    _complete_week(orchestrator, weeks[1].id, 1, "week-two")
    model = FakeAnalysisModel()

    WeeklyAnalysisEngine(model).analyze_week(weeks[0].id)

    (variables,) = model.calls
    assert variables["week_number"] == "1"
    assert variables["theme"] == weeks[0].theme
    for index in (1, 2, 3):
        assert f"week-one transcript {index}" in variables["transcripts"]
    assert "week-two" not in variables["transcripts"]
    assert "generated_seeds" in variables["schema"]


def test_successful_analysis_adapts_next_week(database, events) -> None:
    manager, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    store = ScenarioQueueStore()

    analysis = WeeklyAnalysisEngine(FakeAnalysisModel()).analyze_week(weeks[0].id)

    assert analysis.week_id == weeks[0].id
    assert [seed.id for seed in analysis.generated_seeds] == ["seed-market-visit", "seed-last-weekend"]
    stored = WeeklyAnalysisEngine(FakeAnalysisModel()).get_analysis(weeks[0].id)
    assert stored is not None and stored.id == analysis.id

    week_two = manager.get_week(weeks[1].id)
    (focus,) = week_two.focus_areas
    assert focus.type == "grammar"
    assert focus.priority == "high"
    assert focus.source == "analysis"
    assert focus.description == "Short stories about last weekend."

    jobs = store.get_jobs_for_week(weeks[1].id)
    assert sorted(job.seed.id for job in jobs) == ["seed-last-weekend", "seed-market-visit"]
    assert all(job.payload and job.payload["theme"] == weeks[1].theme for job in jobs)
    assert store.get_stats().total == 4 + 2
    assert any(event.name == "weekly_analysis_completed" for event in events)


def test_malformed_response_leaves_no_trace(database, events) -> None:
    manager, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    store = ScenarioQueueStore()
    engine = WeeklyAnalysisEngine(FakeAnalysisModel(responses=["I think the learner did great!"]))

    with pytest.raises(AnalysisParseError):
        engine.analyze_week(weeks[0].id)

    assert engine.get_analysis(weeks[0].id) is None
    assert store.get_jobs_for_week(weeks[1].id) == []
    assert store.get_stats().total == 4
    assert manager.get_week(weeks[0].id).status is WeekStatus.COMPLETED
    assert manager.get_week(weeks[1].id).focus_areas == []
    assert any(event.name == "weekly_analysis_failed" for event in events)


def test_model_failure_propagates_without_writes(database) -> None:
    _, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    engine = WeeklyAnalysisEngine(FakeAnalysisModel(error=AnalysisModelError("rate limited")))

    with pytest.raises(AnalysisModelError):
        engine.analyze_week(weeks[0].id)
    assert engine.get_analysis(weeks[0].id) is None


def test_week_is_analysed_at_most_once(database) -> None:
    _, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    model = FakeAnalysisModel()
    engine = WeeklyAnalysisEngine(model)
    engine.analyze_week(weeks[0].id)

    with pytest.raises(AlreadyAnalyzedError):
        engine.analyze_week(weeks[0].id)
    assert len(model.calls) == 1


class InterleavingModel(FakeAnalysisModel):
    """Runs ``during_call`` while the analysis is in flight, then answers normally."""

    def __init__(self, during_call) -> None:
        super().__init__()
        self.during_call = during_call

    def complete(self, prompt_template, variables):
        self.during_call()
        return super().complete(prompt_template, variables)


def test_analysis_stored_by_overlapping_run_is_reported_as_analysed(database) -> None:
    _, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    overlapping = WeeklyAnalysisEngine(FakeAnalysisModel())
    engine = WeeklyAnalysisEngine(InterleavingModel(lambda: overlapping.analyze_week(weeks[0].id)))

    with pytest.raises(AlreadyAnalyzedError):
        engine.analyze_week(weeks[0].id)

    stored = engine.get_analysis(weeks[0].id)
    assert stored is not None
    assert len(ScenarioQueueStore().get_jobs_for_week(weeks[1].id)) == 2


def test_cancelling_during_analysis_reports_missing_week(database, events) -> None:
    manager, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    engine = WeeklyAnalysisEngine(InterleavingModel(lambda: manager.cancel_assignment(weeks[0].assignment_id)))

    with pytest.raises(NotFoundError):
        engine.analyze_week(weeks[0].id)

    assert ScenarioQueueStore().get_stats().total == 0
    assert "weekly_analysis_completed" not in [event.name for event in events]


def test_incomplete_or_missing_week_is_rejected(database) -> None:
    _, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 2, "week-one")
    model = FakeAnalysisModel()
    engine = WeeklyAnalysisEngine(model)

    with pytest.raises(IncompleteWeekError):
        engine.analyze_week(weeks[0].id)
    with pytest.raises(NotFoundError):
        engine.analyze_week("missing-week")
    assert model.calls == []


def test_final_week_seeds_target_the_analysed_week(database) -> None:
    _, orchestrator, weeks = _assignment(sessions_required=1)
    for week in weeks:
        _complete_week(orchestrator, week.id, 1, f"week-{week.week_number}")
    store = ScenarioQueueStore()

    WeeklyAnalysisEngine(FakeAnalysisModel()).analyze_week(weeks[-1].id)

    jobs = store.get_jobs_for_week(weeks[-1].id)
    assert sorted(job.seed.id for job in jobs) == ["seed-last-weekend", "seed-market-visit"]


def test_sweep_analyses_completed_weeks_once(database) -> None:
    _, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    engine = WeeklyAnalysisEngine(FakeAnalysisModel())

    first = engine.analyze_pending(limit=5)
    second = engine.analyze_pending(limit=5)

    assert (first.processed, first.succeeded, first.failed) == (1, 1, 0)
    assert len(first.analysis_ids) == 1
    assert second.processed == 0


def test_sweep_reports_failures_per_week(database) -> None:
    _, orchestrator, weeks = _assignment()
    _complete_week(orchestrator, weeks[0].id, 3, "week-one")
    engine = WeeklyAnalysisEngine(FakeAnalysisModel(responses=["{}"]))

    sweep = engine.analyze_pending()

    assert (sweep.processed, sweep.succeeded, sweep.failed) == (1, 0, 1)
    assert sweep.errors[0].week_id == weeks[0].id


def test_parse_accepts_fenced_json() -> None:
    payload = parse_analysis_response(f"```json\n{analysis_response()}\n```")
    assert payload.next_week_recommendation.summary.startswith("Build on greetings")


def test_parse_rejects_too_many_seeds() -> None:
    seeds = [{"id": f"seed-{index}", "title": "t", "description": "d"} for index in range(9)]
    with pytest.raises(AnalysisParseError):
        parse_analysis_response(analysis_response(generated_seeds=seeds))


def test_recommended_focus_areas_take_precedence() -> None:
    recommendation = {
        "summary": "Work on vocabulary.",
        "focus_areas": [{"type": "vocabulary", "description": "Food words", "priority": "low"}],
    }
    payload = parse_analysis_response(analysis_response(next_week_recommendation=recommendation))

    (focus,) = derive_focus_areas(payload)
    assert focus.type == "vocabulary"
    assert focus.priority == "low"
    assert focus.source == "analysis"


def test_unmatched_challenge_defaults_to_confidence() -> None:
    challenges = [{"area": "speaking up", "description": "Quiet in group settings", "severity": "minor"}]
    payload = parse_analysis_response(analysis_response(identified_challenges=challenges))

    (focus,) = derive_focus_areas(payload)
    assert focus.type == "confidence"
    assert focus.priority == "low"
    assert focus.description == "Quiet in group settings"
