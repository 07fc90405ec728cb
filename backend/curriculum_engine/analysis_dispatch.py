"""Dispatch of weekly analysis after a week's completion has been committed."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Literal, Optional, Protocol

from .errors import AlreadyAnalyzedError
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DispatchMode = Literal["background", "inline", "off"]
AnalyzeWeek = Callable[[str], Any]


class AnalysisDispatcher(Protocol):
    def dispatch(self, week_id: str) -> Any:  # pragma: no cover - protocol definition
        ...


def _run_analysis(analyze: AnalyzeWeek, week_id: str) -> None:
    try:
        analyze(week_id)
    except AlreadyAnalyzedError:
        logger.info("Week %s already has an analysis; dispatch skipped", week_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Weekly analysis for week %s failed", week_id)
        emit_event("analysis_dispatch_failed", week_id=week_id, error=str(exc))


class BackgroundAnalysisDispatcher:
    """Hands each week to a small thread pool so session completion never waits on the model."""

    def __init__(self, analyze: AnalyzeWeek, *, max_workers: int = 2) -> None:
        self._analyze = analyze
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="weekly-analysis")

    def dispatch(self, week_id: str) -> Future:
        logger.debug("Queueing weekly analysis for week %s", week_id)
        return self._executor.submit(_run_analysis, self._analyze, week_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineAnalysisDispatcher:
    """Runs the analysis on the caller's thread; failures are logged, never raised."""

    def __init__(self, analyze: AnalyzeWeek) -> None:
        self._analyze = analyze

    def dispatch(self, week_id: str) -> None:
        _run_analysis(self._analyze, week_id)


class DisabledAnalysisDispatcher:
    def dispatch(self, week_id: str) -> None:
        logger.info("Analysis dispatch disabled; week %s left for the sweep", week_id)


def build_dispatcher(mode: DispatchMode, analyze: Optional[AnalyzeWeek]) -> AnalysisDispatcher:
    if mode == "off" or analyze is None:
        return DisabledAnalysisDispatcher()
    if mode == "inline":
        return InlineAnalysisDispatcher(analyze)
    return BackgroundAnalysisDispatcher(analyze)


__all__ = [
    "AnalysisDispatcher",
    "BackgroundAnalysisDispatcher",
    "DisabledAnalysisDispatcher",
    "DispatchMode",
    "InlineAnalysisDispatcher",
    "build_dispatcher",
]
