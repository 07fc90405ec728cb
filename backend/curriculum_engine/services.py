"""Process-wide service instances shared by the HTTP routes and scripts."""

from __future__ import annotations

from typing import Optional

from .analysis_dispatch import AnalysisDispatcher, BackgroundAnalysisDispatcher, build_dispatcher
from .config import get_settings
from .path_manager import AdaptivePathManager
from .queue_processor import QueueProcessor
from .scenario_queue import ScenarioQueueStore, scenario_queue
from .session_orchestrator import SessionOrchestrator
from .weekly_analysis import WeeklyAnalysisEngine

_path_manager: Optional[AdaptivePathManager] = None
_analysis_engine: Optional[WeeklyAnalysisEngine] = None
_dispatcher: Optional[AnalysisDispatcher] = None
_orchestrator: Optional[SessionOrchestrator] = None
_processor: Optional[QueueProcessor] = None


def get_path_manager() -> AdaptivePathManager:
    global _path_manager
    if _path_manager is None:
        _path_manager = AdaptivePathManager()
    return _path_manager


def get_analysis_engine() -> WeeklyAnalysisEngine:
    global _analysis_engine
    if _analysis_engine is None:
        _analysis_engine = WeeklyAnalysisEngine()
    return _analysis_engine


def get_dispatcher() -> AnalysisDispatcher:
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = build_dispatcher(settings.analysis_dispatch, get_analysis_engine().analyze_week)
    return _dispatcher


def get_session_orchestrator() -> SessionOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SessionOrchestrator(get_dispatcher())
    return _orchestrator


def get_queue_store() -> ScenarioQueueStore:
    return scenario_queue


def get_queue_processor() -> QueueProcessor:
    global _processor
    if _processor is None:
        _processor = QueueProcessor(get_queue_store())
    return _processor


def reset_services() -> None:
    """Drop cached services so the next call picks up fresh settings."""
    global _path_manager, _analysis_engine, _dispatcher, _orchestrator, _processor
    if isinstance(_dispatcher, BackgroundAnalysisDispatcher):
        _dispatcher.shutdown(wait=False)
    _path_manager = None
    _analysis_engine = None
    _dispatcher = None
    _orchestrator = None
    _processor = None


__all__ = [
    "get_analysis_engine",
    "get_dispatcher",
    "get_path_manager",
    "get_queue_processor",
    "get_queue_store",
    "get_session_orchestrator",
    "reset_services",
]
