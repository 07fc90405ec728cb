"""Session orchestrator: starts and completes practice sessions against the active week."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Optional, Sequence

from .analysis_dispatch import AnalysisDispatcher, DisabledAnalysisDispatcher
from .config import Settings, get_settings
from .db.session import session_scope
from .errors import InvalidStateError, NotFoundError
from .learning_path import (
    AdaptiveWeek,
    AssignmentStatus,
    JobStatus,
    ScenarioGenerationJob,
    SessionCompletion,
    SessionRecord,
    WeekStatus,
)
from .repositories.learning_paths import LearningPathRepository, WeekTransition, learning_paths
from .repositories.scenario_jobs import ScenarioJobRepository, scenario_jobs
from .telemetry import emit_event

logger = logging.getLogger(__name__)

ConversationFactory = Callable[[AdaptiveWeek], str]


def new_conversation_id(week: AdaptiveWeek) -> str:
    return uuid.uuid4().hex


def encouragement_message(sessions_completed: int, practice_minutes: float = 0.0) -> str:
    """Warm acknowledgement of the week's progress; no streaks or points."""
    if sessions_completed == 1:
        return "Nice start to your week!"
    if sessions_completed == 3:
        return f"{sessions_completed} conversations this week. You're building a rhythm."
    if sessions_completed == 5:
        return f"{round(practice_minutes)} minutes of practice this week. That's real progress."
    if sessions_completed >= 7:
        return "You're really committing to this. It shows."
    return f"{sessions_completed} conversations this week."


def practice_minutes(sessions: Sequence[SessionRecord]) -> float:
    total = 0.0
    for record in sessions:
        if record.completed_at is None:
            continue
        total += max((record.completed_at - record.started_at).total_seconds(), 0.0) / 60.0
    return total


class SessionOrchestrator:
    def __init__(
        self,
        dispatcher: Optional[AnalysisDispatcher] = None,
        *,
        settings: Optional[Settings] = None,
        paths: Optional[LearningPathRepository] = None,
        jobs: Optional[ScenarioJobRepository] = None,
        conversation_factory: Optional[ConversationFactory] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._dispatcher: AnalysisDispatcher = dispatcher or DisabledAnalysisDispatcher()
        self._paths = paths or learning_paths
        self._jobs = jobs or scenario_jobs
        self._conversation_factory = conversation_factory or new_conversation_id

    def start_session(self, week_id: str, *, scenario_job_id: Optional[str] = None) -> SessionRecord:
        with session_scope() as session:
            week = self._paths.get_week(session, week_id)
            if week is None:
                raise NotFoundError(f"Week '{week_id}' was not found.")
            if week.status != WeekStatus.ACTIVE:
                raise InvalidStateError(f"Week '{week_id}' is {week.status.value}; sessions need an active week.")
            assignment = self._paths.get_assignment(session, week.assignment_id)
            if assignment is None or assignment.status != AssignmentStatus.ACTIVE:
                status = assignment.status.value if assignment else "missing"
                raise InvalidStateError(f"Assignment for week '{week_id}' is {status}.")
            if scenario_job_id is not None:
                self._require_ready_job(self._jobs.get(session, scenario_job_id), scenario_job_id, week_id)

            conversation_id = self._conversation_factory(week)
            record = self._paths.create_session_record(
                session,
                week_id=week_id,
                conversation_id=conversation_id,
                scenario_job_id=scenario_job_id,
            )

        emit_event("session_started", session_id=record.id, week_id=week_id, scenario_job_id=scenario_job_id)
        return record

    def complete_session(
        self,
        session_id: str,
        outcome_score: Optional[float] = None,
        *,
        transcript: Optional[str] = None,
    ) -> SessionCompletion:
        """Finalise the session and bump week progress in one transaction, then dispatch analysis."""
        if outcome_score is not None and not 0.0 <= outcome_score <= 1.0:
            raise ValueError("outcome_score must be between 0 and 1.")

        transition = WeekTransition(completed=False)
        with session_scope() as session:
            record = self._paths.finalize_session_record(
                session,
                session_id,
                outcome_score=outcome_score,
                transcript=transcript,
            )
            progress = self._paths.record_session_completion(session, record.week_id, outcome_score)
            if progress.sessions_completed == progress.sessions_required:
                transition = self._paths.complete_week(session, record.week_id)
            minutes = practice_minutes(self._paths.list_session_records(session, record.week_id, completed_only=True))

        emit_event(
            "session_completed",
            session_id=session_id,
            week_id=record.week_id,
            sessions_completed=progress.sessions_completed,
            sessions_required=progress.sessions_required,
        )
        if transition.completed:
            self._after_week_completed(record.week_id, transition)

        return SessionCompletion(
            session=record,
            progress=progress,
            week_completed=transition.completed,
            next_week_id=transition.next_week.id if transition.next_week else None,
            assignment_completed=transition.assignment_completed,
            encouragement=encouragement_message(progress.sessions_completed, minutes),
        )

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with session_scope(commit=False) as session:
            return self._paths.get_session_record(session, session_id)

    def get_active_session(self, week_id: str) -> Optional[SessionRecord]:
        with session_scope(commit=False) as session:
            return self._paths.get_open_session_record(session, week_id)

    def list_sessions(self, week_id: str) -> List[SessionRecord]:
        with session_scope(commit=False) as session:
            if self._paths.get_week(session, week_id) is None:
                raise NotFoundError(f"Week '{week_id}' was not found.")
            return self._paths.list_session_records(session, week_id)

    def list_ready_scenarios(self, week_id: str, limit: int = 50) -> List[ScenarioGenerationJob]:
        with session_scope(commit=False) as session:
            if self._paths.get_week(session, week_id) is None:
                raise NotFoundError(f"Week '{week_id}' was not found.")
            return self._jobs.list_by_status(session, JobStatus.READY, limit, week_id=week_id)

    def _after_week_completed(self, week_id: str, transition: WeekTransition) -> None:
        logger.info(
            "Week %s completed (next=%s, assignment_completed=%s)",
            week_id,
            transition.next_week.id if transition.next_week else None,
            transition.assignment_completed,
        )
        emit_event(
            "week_completed",
            week_id=week_id,
            next_week_id=transition.next_week.id if transition.next_week else None,
            assignment_completed=transition.assignment_completed,
        )
        try:
            self._dispatcher.dispatch(week_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Could not dispatch weekly analysis for week %s", week_id)
            emit_event("analysis_dispatch_failed", week_id=week_id, error=str(exc))

    @staticmethod
    def _require_ready_job(job: Optional[ScenarioGenerationJob], job_id: str, week_id: str) -> None:
        if job is None:
            raise NotFoundError(f"Scenario job '{job_id}' was not found.")
        if job.week_id != week_id:
            raise InvalidStateError(f"Scenario job '{job_id}' belongs to a different week.")
        if job.status != JobStatus.READY:
            raise InvalidStateError(f"Scenario job '{job_id}' is {job.status.value}, not ready.")


__all__ = [
    "ConversationFactory",
    "SessionOrchestrator",
    "encouragement_message",
    "new_conversation_id",
    "practice_minutes",
]
