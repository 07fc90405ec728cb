"""Learner-facing REST endpoints for path assignments, weeks and sessions."""

from __future__ import annotations

from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from .errors import CurriculumError
from .learning_path import (
    AdaptiveWeek,
    CurrentWeek,
    PathAssignment,
    ScenarioGenerationJob,
    SessionCompletion,
    SessionRecord,
    WeeklyAnalysis,
    WeekProgress,
)
from .path_manager import AdaptivePathManager
from .path_templates import list_templates
from .services import get_analysis_engine, get_path_manager, get_session_orchestrator
from .session_orchestrator import SessionOrchestrator
from .weekly_analysis import WeeklyAnalysisEngine

router = APIRouter(prefix="/api/paths", tags=["paths"])


class CreateAssignmentRequest(BaseModel):
    path_template_id: str = Field(..., min_length=1)
    sessions_required: Optional[int] = Field(default=None, ge=1, le=21)
    target_language: Optional[str] = Field(default=None, max_length=40)


class StartSessionRequest(BaseModel):
    scenario_job_id: Optional[str] = None


class CompleteSessionRequest(BaseModel):
    outcome_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    transcript: Optional[str] = Field(default=None, max_length=20000)


class TemplateSummary(BaseModel):
    template_id: str
    title: str
    duration_weeks: int
    minimum_sessions_per_week: Optional[int] = None
    suggested_sessions_per_week: int


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required.",
        )
    return user_id


def _raise_http(exc: CurriculumError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _owned_assignment(manager: AdaptivePathManager, assignment_id: str, user_id: str) -> PathAssignment:
    try:
        assignment = manager.get_assignment(assignment_id)
    except CurriculumError as exc:
        _raise_http(exc)
    if assignment.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Path assignment '{assignment_id}' was not found.",
        )
    return assignment


def _owned_week(manager: AdaptivePathManager, week_id: str, user_id: str) -> AdaptiveWeek:
    try:
        week = manager.get_week(week_id)
    except CurriculumError as exc:
        _raise_http(exc)
    _owned_assignment(manager, week.assignment_id, user_id)
    return week


@router.get("/templates", response_model=List[TemplateSummary])
def path_templates() -> List[TemplateSummary]:
    return [
        TemplateSummary(
            template_id=template.template_id,
            title=template.title,
            duration_weeks=template.duration_weeks,
            minimum_sessions_per_week=template.minimum_sessions_per_week,
            suggested_sessions_per_week=template.suggested_sessions_per_week,
        )
        for template in list_templates()
    ]


@router.post("", response_model=PathAssignment, status_code=status.HTTP_201_CREATED)
def create_assignment(
    payload: CreateAssignmentRequest,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> PathAssignment:
    try:
        return manager.create_assignment(
            user_id,
            payload.path_template_id,
            sessions_required=payload.sessions_required,
            target_language=payload.target_language,
        )
    except CurriculumError as exc:
        _raise_http(exc)


@router.get("", response_model=List[PathAssignment])
def list_assignments(
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> List[PathAssignment]:
    return manager.list_assignments(user_id)


@router.get("/{assignment_id}", response_model=PathAssignment)
def get_assignment(
    assignment_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> PathAssignment:
    return _owned_assignment(manager, assignment_id, user_id)


@router.get("/{assignment_id}/weeks", response_model=List[AdaptiveWeek])
def list_weeks(
    assignment_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> List[AdaptiveWeek]:
    _owned_assignment(manager, assignment_id, user_id)
    return manager.list_weeks(assignment_id)


@router.get("/{assignment_id}/current-week", response_model=Optional[CurrentWeek])
def current_week(
    assignment_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> Optional[CurrentWeek]:
    _owned_assignment(manager, assignment_id, user_id)
    try:
        return manager.get_current_week(assignment_id)
    except CurriculumError as exc:
        _raise_http(exc)


@router.post("/{assignment_id}/pause", response_model=PathAssignment)
def pause_assignment(
    assignment_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> PathAssignment:
    _owned_assignment(manager, assignment_id, user_id)
    try:
        return manager.pause_assignment(assignment_id)
    except CurriculumError as exc:
        _raise_http(exc)


@router.post("/{assignment_id}/resume", response_model=PathAssignment)
def resume_assignment(
    assignment_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> PathAssignment:
    _owned_assignment(manager, assignment_id, user_id)
    try:
        return manager.resume_assignment(assignment_id)
    except CurriculumError as exc:
        _raise_http(exc)


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_assignment(
    assignment_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> Response:
    _owned_assignment(manager, assignment_id, user_id)
    try:
        manager.cancel_assignment(assignment_id)
    except CurriculumError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/weeks/{week_id}/progress", response_model=WeekProgress)
def week_progress(
    week_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
) -> WeekProgress:
    _owned_week(manager, week_id, user_id)
    try:
        return manager.get_week_progress(week_id)
    except CurriculumError as exc:
        _raise_http(exc)


@router.post("/weeks/{week_id}/sessions", response_model=SessionRecord, status_code=status.HTTP_201_CREATED)
def start_session(
    week_id: str,
    payload: Optional[StartSessionRequest] = None,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> SessionRecord:
    _owned_week(manager, week_id, user_id)
    scenario_job_id = payload.scenario_job_id if payload else None
    try:
        return orchestrator.start_session(week_id, scenario_job_id=scenario_job_id)
    except CurriculumError as exc:
        _raise_http(exc)


@router.get("/weeks/{week_id}/sessions", response_model=List[SessionRecord])
def list_sessions(
    week_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> List[SessionRecord]:
    _owned_week(manager, week_id, user_id)
    return orchestrator.list_sessions(week_id)


@router.post(
    "/weeks/{week_id}/sessions/{session_id}/complete",
    response_model=SessionCompletion,
)
def complete_session(
    week_id: str,
    session_id: str,
    payload: Optional[CompleteSessionRequest] = None,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> SessionCompletion:
    _owned_week(manager, week_id, user_id)
    record = orchestrator.get_session(session_id)
    if record is None or record.week_id != week_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' was not found.",
        )
    body = payload or CompleteSessionRequest()
    try:
        return orchestrator.complete_session(
            session_id,
            body.outcome_score,
            transcript=body.transcript,
        )
    except CurriculumError as exc:
        _raise_http(exc)


@router.get("/weeks/{week_id}/scenarios", response_model=List[ScenarioGenerationJob])
def ready_scenarios(
    week_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> List[ScenarioGenerationJob]:
    _owned_week(manager, week_id, user_id)
    return orchestrator.list_ready_scenarios(week_id, limit)


@router.get("/weeks/{week_id}/analysis", response_model=WeeklyAnalysis)
def week_analysis(
    week_id: str,
    user_id: str = Depends(current_user),
    manager: AdaptivePathManager = Depends(get_path_manager),
    engine: WeeklyAnalysisEngine = Depends(get_analysis_engine),
) -> WeeklyAnalysis:
    _owned_week(manager, week_id, user_id)
    analysis = engine.get_analysis(week_id)
    if analysis is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Week '{week_id}' has not been analysed yet.",
        )
    return analysis


__all__ = ["current_user", "router"]
