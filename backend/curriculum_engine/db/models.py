"""ORM models backing the curriculum engine persistence layer."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional, Type

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from ..learning_path import AssignmentStatus, JobStatus, WeekStatus
from .base import Base, TimestampMixin, utcnow

JSONType = JSON
OPEN_ASSIGNMENT_PREDICATE = text("status IN ('active', 'paused')")


def _status_column(enum_cls: Type[PyEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=16,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


def _new_id() -> str:
    return str(uuid.uuid4())


class PathAssignmentModel(TimestampMixin, Base):
    __tablename__ = "path_assignments"
    __table_args__ = (
        Index("ix_path_assignments_user_template", "user_id", "path_template_id"),
        # At most one open assignment per user and template.
        Index(
            "uq_path_assignments_open",
            "user_id",
            "path_template_id",
            unique=True,
            sqlite_where=OPEN_ASSIGNMENT_PREDICATE,
            postgresql_where=OPEN_ASSIGNMENT_PREDICATE,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    path_template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        _status_column(AssignmentStatus, "assignment_status"),
        default=AssignmentStatus.ACTIVE,
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    weeks: Mapped[list["AdaptiveWeekModel"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="AdaptiveWeekModel.week_number",
    )


class AdaptiveWeekModel(TimestampMixin, Base):
    __tablename__ = "adaptive_weeks"
    __table_args__ = (
        UniqueConstraint("assignment_id", "week_number", name="uq_adaptive_weeks_assignment_week"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("path_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    theme: Mapped[str] = mapped_column(String(255), nullable=False)
    theme_description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    difficulty_min: Mapped[str] = mapped_column(String(4), default="A1", nullable=False)
    difficulty_max: Mapped[str] = mapped_column(String(4), default="A2", nullable=False)
    is_anchor_week: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    focus_areas: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    seeds: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[WeekStatus] = mapped_column(
        _status_column(WeekStatus, "week_status"),
        default=WeekStatus.UPCOMING,
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    assignment: Mapped[PathAssignmentModel] = relationship(back_populates="weeks")
    progress: Mapped["WeekProgressModel"] = relationship(
        back_populates="week", cascade="all, delete-orphan", uselist=False
    )
    sessions: Mapped[list["SessionRecordModel"]] = relationship(
        back_populates="week", cascade="all, delete-orphan"
    )
    analysis: Mapped[Optional["WeeklyAnalysisModel"]] = relationship(
        back_populates="week", cascade="all, delete-orphan", uselist=False
    )


class WeekProgressModel(Base):
    __tablename__ = "week_progress"
    __table_args__ = (UniqueConstraint("week_id", name="uq_week_progress_week"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("adaptive_weeks.id", ondelete="CASCADE"), nullable=False
    )
    sessions_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sessions_required: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    aggregate_score: Mapped[float | None] = mapped_column(Float)
    scored_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    week: Mapped[AdaptiveWeekModel] = relationship(back_populates="progress")


class SessionRecordModel(Base):
    __tablename__ = "session_records"
    __table_args__ = (Index("ix_session_records_week_started", "week_id", "started_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    week_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("adaptive_weeks.id", ondelete="CASCADE"), nullable=False
    )
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scenario_job_id: Mapped[str | None] = mapped_column(String(36))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    outcome_score: Mapped[float | None] = mapped_column(Float)
    transcript: Mapped[str | None] = mapped_column(Text)

    week: Mapped[AdaptiveWeekModel] = relationship(back_populates="sessions")


class WeeklyAnalysisModel(Base):
    __tablename__ = "weekly_analyses"
    __table_args__ = (UniqueConstraint("week_id", name="uq_weekly_analyses_week"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    week_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("adaptive_weeks.id", ondelete="CASCADE"), nullable=False
    )
    identified_strengths: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    identified_challenges: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    topic_affinities: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    next_week_recommendation: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    generated_seeds: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    week: Mapped[AdaptiveWeekModel] = relationship(back_populates="analysis")


class ScenarioGenerationJobModel(TimestampMixin, Base):
    __tablename__ = "scenario_generation_jobs"
    __table_args__ = (
        UniqueConstraint("week_id", "seed_key", name="uq_scenario_jobs_week_seed"),
        Index("ix_scenario_jobs_status_created", "status", "created_at"),
        Index("ix_scenario_jobs_claim_token", "claim_token"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    path_assignment_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    week_id: Mapped[str] = mapped_column(String(36), nullable=False)
    seed_key: Mapped[str] = mapped_column(String(120), nullable=False)
    seed: Mapped[dict] = mapped_column(JSONType, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        _status_column(JobStatus, "job_status"),
        default=JobStatus.PENDING,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONType)
    result: Mapped[dict | None] = mapped_column(JSONType)
    last_error: Mapped[str | None] = mapped_column(Text)
    claim_token: Mapped[str | None] = mapped_column(String(36))
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class PersistenceAuditEventModel(Base):
    __tablename__ = "persistence_audit_events"
    __table_args__ = (Index("ix_persistence_audit_events_subject", "subject_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subject_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


__all__ = [
    "AdaptiveWeekModel",
    "PathAssignmentModel",
    "PersistenceAuditEventModel",
    "ScenarioGenerationJobModel",
    "SessionRecordModel",
    "WeekProgressModel",
    "WeeklyAnalysisModel",
]
