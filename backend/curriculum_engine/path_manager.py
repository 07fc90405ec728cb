"""Adaptive path manager: assignment lifecycle and week read APIs."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.session import session_scope
from .errors import ConflictError, NotFoundError
from .learning_path import (
    AdaptiveWeek,
    AssignmentStatus,
    CurrentWeek,
    PathAssignment,
    WeekProgress,
)
from .path_templates import get_template
from .queue_processor import generation_payload
from .repositories.learning_paths import LearningPathRepository, learning_paths
from .repositories.scenario_jobs import ScenarioJobRepository, scenario_jobs
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class AdaptivePathManager:
    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        paths: Optional[LearningPathRepository] = None,
        jobs: Optional[ScenarioJobRepository] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._paths = paths or learning_paths
        self._jobs = jobs or scenario_jobs

    def create_assignment(
        self,
        user_id: str,
        path_template_id: str,
        *,
        sessions_required: Optional[int] = None,
        target_language: Optional[str] = None,
    ) -> PathAssignment:
        """Enrol the user, materialise every template week and queue content for week one."""
        normalized_user = (user_id or "").strip()
        if not normalized_user:
            raise ValueError("User id cannot be empty.")
        template = get_template(path_template_id)
        required = sessions_required or template.minimum_sessions_per_week or self._settings.default_sessions_required
        if required < 1:
            raise ValueError("sessions_required must be at least 1.")

        with session_scope() as session:
            existing = self._paths.find_open_assignment(session, normalized_user, template.template_id)
            if existing is not None:
                raise ConflictError(
                    f"User '{normalized_user}' already has a {existing.status.value} assignment "
                    f"for '{template.template_id}'."
                )
            try:
                assignment = self._paths.create_assignment(
                    session,
                    user_id=normalized_user,
                    template=template,
                    sessions_required=required,
                )
            except IntegrityError as exc:
                raise ConflictError(
                    f"User '{normalized_user}' already has an open assignment for '{template.template_id}'."
                ) from exc
            first_week = self._paths.get_week_by_number(session, assignment.id, 1)
            enqueued = 0
            if first_week is not None:
                payload = generation_payload(first_week, target_language=target_language)
                for seed in first_week.seeds:
                    _, created = self._jobs.enqueue(
                        session,
                        path_assignment_id=assignment.id,
                        week_id=first_week.id,
                        seed=seed,
                        payload=payload,
                        max_attempts=self._settings.job_max_attempts,
                    )
                    enqueued += int(created)

        logger.info(
            "Created assignment %s for %s on %s (%d weeks)",
            assignment.id,
            normalized_user,
            template.template_id,
            template.duration_weeks,
        )
        emit_event(
            "assignment_created",
            assignment_id=assignment.id,
            user_id=normalized_user,
            template=template.template_id,
            weeks=template.duration_weeks,
            sessions_required=required,
            jobs_enqueued=enqueued,
        )
        return assignment

    def get_assignment(self, assignment_id: str) -> PathAssignment:
        with session_scope(commit=False) as session:
            assignment = self._paths.get_assignment(session, assignment_id)
        if assignment is None:
            raise NotFoundError(f"Path assignment '{assignment_id}' was not found.")
        return assignment

    def list_assignments(self, user_id: str) -> List[PathAssignment]:
        with session_scope(commit=False) as session:
            return self._paths.list_assignments(session, user_id.strip())

    def list_weeks(self, assignment_id: str) -> List[AdaptiveWeek]:
        with session_scope(commit=False) as session:
            self._require_assignment(session, assignment_id)
            return self._paths.list_weeks(session, assignment_id)

    def get_week(self, week_id: str) -> AdaptiveWeek:
        with session_scope(commit=False) as session:
            week = self._paths.get_week(session, week_id)
        if week is None:
            raise NotFoundError(f"Week '{week_id}' was not found.")
        return week

    def get_current_week(self, assignment_id: str) -> Optional[CurrentWeek]:
        """The active week with its progress, or ``None`` once every week is completed."""
        with session_scope(commit=False) as session:
            self._require_assignment(session, assignment_id)
            week = self._paths.get_active_week(session, assignment_id)
            if week is None:
                return None
            progress = self._paths.get_progress(session, week.id)
        if progress is None:
            raise NotFoundError(f"Progress for week '{week.id}' was not found.")
        return CurrentWeek(week=week, progress=progress)

    def get_week_progress(self, week_id: str) -> WeekProgress:
        with session_scope(commit=False) as session:
            progress = self._paths.get_progress(session, week_id)
        if progress is None:
            raise NotFoundError(f"Progress for week '{week_id}' was not found.")
        return progress

    def pause_assignment(self, assignment_id: str) -> PathAssignment:
        with session_scope() as session:
            assignment = self._paths.set_assignment_status(
                session,
                assignment_id,
                expected=AssignmentStatus.ACTIVE,
                target=AssignmentStatus.PAUSED,
            )
        logger.info("Paused assignment %s", assignment_id)
        return assignment

    def resume_assignment(self, assignment_id: str) -> PathAssignment:
        with session_scope() as session:
            assignment = self._paths.set_assignment_status(
                session,
                assignment_id,
                expected=AssignmentStatus.PAUSED,
                target=AssignmentStatus.ACTIVE,
            )
        logger.info("Resumed assignment %s", assignment_id)
        return assignment

    def cancel_assignment(self, assignment_id: str) -> None:
        """Delete the assignment with its weeks, progress, sessions, analyses and queued jobs."""
        with session_scope() as session:
            removed = self._paths.delete_assignment(session, assignment_id)
            if not removed:
                raise NotFoundError(f"Path assignment '{assignment_id}' was not found.")
            discarded = self._jobs.delete_for_assignment(session, assignment_id)
        logger.info("Cancelled assignment %s (%d scenario jobs discarded)", assignment_id, discarded)

    def _require_assignment(self, session: Session, assignment_id: str) -> PathAssignment:
        assignment = self._paths.get_assignment(session, assignment_id)
        if assignment is None:
            raise NotFoundError(f"Path assignment '{assignment_id}' was not found.")
        return assignment


__all__ = ["AdaptivePathManager"]
