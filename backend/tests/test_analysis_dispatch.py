from __future__ import annotations

import threading

from curriculum_engine.analysis_dispatch import (
    BackgroundAnalysisDispatcher,
    DisabledAnalysisDispatcher,
    InlineAnalysisDispatcher,
    build_dispatcher,
)
from curriculum_engine.errors import AlreadyAnalyzedError


def test_build_dispatcher_modes() -> None:
    analyze = lambda week_id: None  # noqa: E731
    assert isinstance(build_dispatcher("off", analyze), DisabledAnalysisDispatcher)
    assert isinstance(build_dispatcher("inline", analyze), InlineAnalysisDispatcher)
    assert isinstance(build_dispatcher("background", None), DisabledAnalysisDispatcher)
    background = build_dispatcher("background", analyze)
    try:
        assert isinstance(background, BackgroundAnalysisDispatcher)
    finally:
        background.shutdown()


def test_background_dispatch_runs_off_the_caller_thread() -> None:
    seen = []

    def analyze(week_id: str) -> None:
        seen.append((week_id, threading.current_thread().name))

    dispatcher = BackgroundAnalysisDispatcher(analyze, max_workers=1)
    try:
        dispatcher.dispatch("week-1").result(timeout=5)
    finally:
        dispatcher.shutdown()

    (week_id, thread_name) = seen[0]
    assert week_id == "week-1"
    assert thread_name.startswith("weekly-analysis")


def test_failures_are_reported_not_raised(events) -> None:
    def analyze(week_id: str) -> None:
        raise ValueError("model returned nothing")

    InlineAnalysisDispatcher(analyze).dispatch("week-2")

    (event,) = [event for event in events if event.name == "analysis_dispatch_failed"]
    assert event.payload == {"week_id": "week-2", "error": "model returned nothing"}


def test_already_analysed_week_is_skipped_quietly(events) -> None:
    def analyze(week_id: str) -> None:
        raise AlreadyAnalyzedError(week_id)

    InlineAnalysisDispatcher(analyze).dispatch("week-3")

    assert not [event for event in events if event.name == "analysis_dispatch_failed"]
