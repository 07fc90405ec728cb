"""Database-backed repository for path assignments, weeks, progress, sessions and analyses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models import (
    AdaptiveWeekModel,
    PathAssignmentModel,
    PersistenceAuditEventModel,
    SessionRecordModel,
    WeeklyAnalysisModel,
    WeekProgressModel,
)
from ..errors import AlreadyCompletedError, InvalidStateError, NotFoundError
from ..learning_path import (
    AdaptiveWeek,
    AssignmentStatus,
    ConversationSeed,
    FocusArea,
    IdentifiedChallenge,
    IdentifiedStrength,
    NextWeekRecommendation,
    PathAssignment,
    SessionRecord,
    TopicAffinity,
    WeeklyAnalysis,
    WeekProgress,
    WeekStatus,
)
from ..path_templates import PathTemplate

OPEN_ASSIGNMENT_STATUSES = (AssignmentStatus.ACTIVE, AssignmentStatus.PAUSED)


@dataclass(frozen=True)
class WeekTransition:
    """What happened when a week reached its required session count."""

    completed: bool
    next_week: Optional[AdaptiveWeek] = None
    assignment_completed: bool = False


class LearningPathRepository:
    """Session-scoped persistence helpers; callers own the transaction boundary."""

    def find_open_assignment(self, session: Session, user_id: str, template_id: str) -> PathAssignment | None:
        stmt = (
            select(PathAssignmentModel)
            .where(
                PathAssignmentModel.user_id == user_id,
                PathAssignmentModel.path_template_id == template_id,
                PathAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES),
            )
            .order_by(PathAssignmentModel.started_at.desc())
            .limit(1)
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._assignment_to_domain(model) if model else None

    def create_assignment(
        self,
        session: Session,
        *,
        user_id: str,
        template: PathTemplate,
        sessions_required: int,
    ) -> PathAssignment:
        now = utcnow()
        assignment = PathAssignmentModel(
            user_id=user_id,
            path_template_id=template.template_id,
            status=AssignmentStatus.ACTIVE,
            started_at=now,
        )
        session.add(assignment)
        session.flush()

        for theme in template.weeks:
            is_first = theme.week_number == 1
            week = AdaptiveWeekModel(
                assignment_id=assignment.id,
                week_number=theme.week_number,
                theme=theme.theme,
                theme_description=theme.theme_description,
                difficulty_min=theme.difficulty_min,
                difficulty_max=theme.difficulty_max,
                is_anchor_week=theme.is_anchor_week,
                focus_areas=[],
                seeds=[seed.model_dump(mode="json") for seed in template.week_one_seeds] if is_first else [],
                status=WeekStatus.ACTIVE if is_first else WeekStatus.UPCOMING,
                started_at=now if is_first else None,
            )
            session.add(week)
            session.flush()
            session.add(
                WeekProgressModel(
                    week_id=week.id,
                    sessions_completed=0,
                    sessions_required=sessions_required,
                    scored_sessions=0,
                )
            )

        session.flush()
        self._record_audit(
            session,
            assignment.id,
            "assignment_created",
            {"user_id": user_id, "template": template.template_id, "weeks": template.duration_weeks},
        )
        return self._assignment_to_domain(assignment)

    def get_assignment(self, session: Session, assignment_id: str) -> PathAssignment | None:
        model = session.get(PathAssignmentModel, assignment_id)
        return self._assignment_to_domain(model) if model else None

    def list_assignments(self, session: Session, user_id: str) -> List[PathAssignment]:
        stmt = (
            select(PathAssignmentModel)
            .where(PathAssignmentModel.user_id == user_id)
            .order_by(PathAssignmentModel.started_at.asc())
        )
        return [self._assignment_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def set_assignment_status(
        self,
        session: Session,
        assignment_id: str,
        *,
        expected: AssignmentStatus,
        target: AssignmentStatus,
    ) -> PathAssignment:
        values: Dict[str, Any] = {"status": target, "updated_at": utcnow()}
        if target == AssignmentStatus.COMPLETED:
            values["completed_at"] = utcnow()
        result = session.execute(
            update(PathAssignmentModel)
            .where(PathAssignmentModel.id == assignment_id, PathAssignmentModel.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        model = session.get(PathAssignmentModel, assignment_id, populate_existing=True)
        if model is None:
            raise NotFoundError(f"Path assignment '{assignment_id}' was not found.")
        if result.rowcount == 0:
            raise InvalidStateError(
                f"Path assignment '{assignment_id}' is {model.status.value}; expected {expected.value}."
            )
        self._record_audit(session, assignment_id, "assignment_status_update", {"status": target.value})
        return self._assignment_to_domain(model)

    def delete_assignment(self, session: Session, assignment_id: str) -> bool:
        model = session.get(PathAssignmentModel, assignment_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        self._record_audit(session, assignment_id, "assignment_cancelled", {"user_id": model.user_id})
        return True

    def list_weeks(self, session: Session, assignment_id: str) -> List[AdaptiveWeek]:
        stmt = (
            select(AdaptiveWeekModel)
            .where(AdaptiveWeekModel.assignment_id == assignment_id)
            .order_by(AdaptiveWeekModel.week_number.asc())
        )
        return [self._week_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def get_week(self, session: Session, week_id: str) -> AdaptiveWeek | None:
        model = session.get(AdaptiveWeekModel, week_id)
        return self._week_to_domain(model) if model else None

    def get_active_week(self, session: Session, assignment_id: str) -> AdaptiveWeek | None:
        stmt = (
            select(AdaptiveWeekModel)
            .where(
                AdaptiveWeekModel.assignment_id == assignment_id,
                AdaptiveWeekModel.status == WeekStatus.ACTIVE,
            )
            .order_by(AdaptiveWeekModel.week_number.asc())
            .limit(1)
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._week_to_domain(model) if model else None

    def get_week_by_number(self, session: Session, assignment_id: str, week_number: int) -> AdaptiveWeek | None:
        stmt = select(AdaptiveWeekModel).where(
            AdaptiveWeekModel.assignment_id == assignment_id,
            AdaptiveWeekModel.week_number == week_number,
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._week_to_domain(model) if model else None

    def replace_focus_areas(self, session: Session, week_id: str, focus_areas: Iterable[FocusArea]) -> AdaptiveWeek:
        model = self._require_week(session, week_id)
        model.focus_areas = [area.model_dump(mode="json") for area in focus_areas]
        session.flush()
        self._record_audit(session, week_id, "week_focus_areas_replaced", {"count": len(model.focus_areas)})
        return self._week_to_domain(model)

    def get_progress(self, session: Session, week_id: str) -> WeekProgress | None:
        stmt = select(WeekProgressModel).where(WeekProgressModel.week_id == week_id)
        model = session.execute(stmt).scalar_one_or_none()
        return self._progress_to_domain(model) if model else None

    def record_session_completion(
        self,
        session: Session,
        week_id: str,
        outcome_score: Optional[float],
    ) -> WeekProgress:
        """Increment the completed count and fold the score into the running mean in one statement."""
        progress = WeekProgressModel
        values: Dict[str, Any] = {
            "sessions_completed": progress.sessions_completed + 1,
            "updated_at": utcnow(),
        }
        if outcome_score is not None:
            values["aggregate_score"] = case(
                (progress.aggregate_score.is_(None), outcome_score),
                else_=(progress.aggregate_score * progress.scored_sessions + outcome_score)
                / (progress.scored_sessions + 1),
            )
            values["scored_sessions"] = progress.scored_sessions + 1

        result = session.execute(
            update(progress)
            .where(progress.week_id == week_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Progress for week '{week_id}' was not found.")
        stmt = (
            select(progress)
            .where(progress.week_id == week_id)
            .execution_options(populate_existing=True)
        )
        return self._progress_to_domain(session.execute(stmt).scalar_one())

    def complete_week(self, session: Session, week_id: str) -> WeekTransition:
        """Mark the week completed and activate its successor, or finish the assignment."""
        now = utcnow()
        result = session.execute(
            update(AdaptiveWeekModel)
            .where(AdaptiveWeekModel.id == week_id, AdaptiveWeekModel.status == WeekStatus.ACTIVE)
            .values(status=WeekStatus.COMPLETED, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return WeekTransition(completed=False)

        week = self._require_week(session, week_id, refresh=True)
        self._record_audit(session, week_id, "week_completed", {"week_number": week.week_number})

        successor = session.execute(
            select(AdaptiveWeekModel).where(
                AdaptiveWeekModel.assignment_id == week.assignment_id,
                AdaptiveWeekModel.week_number == week.week_number + 1,
            )
        ).scalar_one_or_none()
        if successor is not None:
            session.execute(
                update(AdaptiveWeekModel)
                .where(AdaptiveWeekModel.id == successor.id, AdaptiveWeekModel.status == WeekStatus.UPCOMING)
                .values(status=WeekStatus.ACTIVE, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            successor = self._require_week(session, successor.id, refresh=True)
            return WeekTransition(completed=True, next_week=self._week_to_domain(successor))

        finished = session.execute(
            update(PathAssignmentModel)
            .where(
                PathAssignmentModel.id == week.assignment_id,
                PathAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES),
            )
            .values(status=AssignmentStatus.COMPLETED, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if finished.rowcount:
            self._record_audit(session, week.assignment_id, "assignment_completed", {})
        return WeekTransition(completed=True, assignment_completed=bool(finished.rowcount))

    def create_session_record(
        self,
        session: Session,
        *,
        week_id: str,
        conversation_id: str,
        scenario_job_id: Optional[str] = None,
    ) -> SessionRecord:
        model = SessionRecordModel(
            week_id=week_id,
            conversation_id=conversation_id,
            scenario_job_id=scenario_job_id,
            started_at=utcnow(),
        )
        session.add(model)
        session.flush()
        self._record_audit(session, model.id, "session_started", {"week_id": week_id})
        return self._session_to_domain(model)

    def get_session_record(self, session: Session, session_id: str) -> SessionRecord | None:
        model = session.get(SessionRecordModel, session_id)
        return self._session_to_domain(model) if model else None

    def list_session_records(
        self,
        session: Session,
        week_id: str,
        *,
        completed_only: bool = False,
    ) -> List[SessionRecord]:
        stmt = select(SessionRecordModel).where(SessionRecordModel.week_id == week_id)
        if completed_only:
            stmt = stmt.where(SessionRecordModel.completed_at.is_not(None))
        stmt = stmt.order_by(SessionRecordModel.started_at.asc(), SessionRecordModel.id.asc())
        return [self._session_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def get_open_session_record(self, session: Session, week_id: str) -> SessionRecord | None:
        stmt = (
            select(SessionRecordModel)
            .where(SessionRecordModel.week_id == week_id, SessionRecordModel.completed_at.is_(None))
            .order_by(SessionRecordModel.started_at.asc())
            .limit(1)
        )
        model = session.execute(stmt).scalar_one_or_none()
        return self._session_to_domain(model) if model else None

    def finalize_session_record(
        self,
        session: Session,
        session_id: str,
        *,
        outcome_score: Optional[float],
        transcript: Optional[str],
    ) -> SessionRecord:
        """Set ``completed_at`` only while it is still null; a second call raises AlreadyCompletedError."""
        result = session.execute(
            update(SessionRecordModel)
            .where(SessionRecordModel.id == session_id, SessionRecordModel.completed_at.is_(None))
            .values(completed_at=utcnow(), outcome_score=outcome_score, transcript=transcript)
            .execution_options(synchronize_session=False)
        )
        model = session.get(SessionRecordModel, session_id, populate_existing=True)
        if model is None:
            raise NotFoundError(f"Session '{session_id}' was not found.")
        if result.rowcount == 0:
            raise AlreadyCompletedError(f"Session '{session_id}' has already been completed.")
        self._record_audit(session, session_id, "session_completed", {"week_id": model.week_id})
        return self._session_to_domain(model)

    def get_analysis(self, session: Session, week_id: str) -> WeeklyAnalysis | None:
        stmt = select(WeeklyAnalysisModel).where(WeeklyAnalysisModel.week_id == week_id)
        model = session.execute(stmt).scalar_one_or_none()
        return self._analysis_to_domain(model) if model else None

    def save_analysis(self, session: Session, analysis: WeeklyAnalysis) -> WeeklyAnalysis:
        model = WeeklyAnalysisModel(
            id=analysis.id,
            week_id=analysis.week_id,
            identified_strengths=[item.model_dump(mode="json") for item in analysis.identified_strengths],
            identified_challenges=[item.model_dump(mode="json") for item in analysis.identified_challenges],
            topic_affinities=[item.model_dump(mode="json") for item in analysis.topic_affinities],
            next_week_recommendation=analysis.next_week_recommendation.model_dump(mode="json"),
            generated_seeds=[seed.model_dump(mode="json") for seed in analysis.generated_seeds],
            created_at=analysis.created_at,
        )
        session.add(model)
        session.flush()
        self._record_audit(
            session,
            analysis.week_id,
            "weekly_analysis_saved",
            {"analysis_id": analysis.id, "seed_count": len(analysis.generated_seeds)},
        )
        return self._analysis_to_domain(model)

    def list_unanalyzed_completed_weeks(self, session: Session, limit: int) -> List[AdaptiveWeek]:
        stmt = (
            select(AdaptiveWeekModel)
            .outerjoin(WeeklyAnalysisModel, WeeklyAnalysisModel.week_id == AdaptiveWeekModel.id)
            .where(AdaptiveWeekModel.status == WeekStatus.COMPLETED, WeeklyAnalysisModel.id.is_(None))
            .order_by(AdaptiveWeekModel.completed_at.asc(), AdaptiveWeekModel.id.asc())
            .limit(limit)
        )
        return [self._week_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def _require_week(self, session: Session, week_id: str, *, refresh: bool = False) -> AdaptiveWeekModel:
        model = session.get(AdaptiveWeekModel, week_id, populate_existing=refresh)
        if model is None:
            raise NotFoundError(f"Week '{week_id}' was not found.")
        return model

    def _assignment_to_domain(self, model: PathAssignmentModel) -> PathAssignment:
        return PathAssignment(
            id=model.id,
            user_id=model.user_id,
            path_template_id=model.path_template_id,
            status=model.status,
            started_at=model.started_at,
            completed_at=model.completed_at,
        )

    def _week_to_domain(self, model: AdaptiveWeekModel) -> AdaptiveWeek:
        return AdaptiveWeek(
            id=model.id,
            assignment_id=model.assignment_id,
            week_number=model.week_number,
            theme=model.theme,
            theme_description=model.theme_description,
            difficulty_min=model.difficulty_min,
            difficulty_max=model.difficulty_max,
            is_anchor_week=model.is_anchor_week,
            focus_areas=[FocusArea.model_validate(item) for item in model.focus_areas or []],
            seeds=[ConversationSeed.model_validate(item) for item in model.seeds or []],
            status=model.status,
            started_at=model.started_at,
            completed_at=model.completed_at,
        )

    def _progress_to_domain(self, model: WeekProgressModel) -> WeekProgress:
        return WeekProgress(
            week_id=model.week_id,
            sessions_completed=model.sessions_completed,
            sessions_required=model.sessions_required,
            aggregate_score=model.aggregate_score,
            scored_sessions=model.scored_sessions,
        )

    def _session_to_domain(self, model: SessionRecordModel) -> SessionRecord:
        return SessionRecord(
            id=model.id,
            week_id=model.week_id,
            conversation_id=model.conversation_id,
            scenario_job_id=model.scenario_job_id,
            started_at=model.started_at,
            completed_at=model.completed_at,
            outcome_score=model.outcome_score,
            transcript=model.transcript,
        )

    def _analysis_to_domain(self, model: WeeklyAnalysisModel) -> WeeklyAnalysis:
        return WeeklyAnalysis(
            id=model.id,
            week_id=model.week_id,
            identified_strengths=[IdentifiedStrength.model_validate(item) for item in model.identified_strengths],
            identified_challenges=[IdentifiedChallenge.model_validate(item) for item in model.identified_challenges],
            topic_affinities=[TopicAffinity.model_validate(item) for item in model.topic_affinities],
            next_week_recommendation=NextWeekRecommendation.model_validate(model.next_week_recommendation),
            generated_seeds=[ConversationSeed.model_validate(item) for item in model.generated_seeds],
            created_at=model.created_at,
        )

    def _record_audit(self, session: Session, subject_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        session.add(
            PersistenceAuditEventModel(
                subject_id=subject_id,
                event_type=event_type,
                payload=payload,
                actor="system",
            )
        )


learning_paths = LearningPathRepository()

__all__ = ["LearningPathRepository", "WeekTransition", "learning_paths"]
