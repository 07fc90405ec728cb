"""Curriculum engine schema: paths, weeks, sessions, analyses and the scenario queue."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_curriculum_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "path_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("path_template_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_path_assignments_user_template", "path_assignments", ["user_id", "path_template_id"])
    op.create_index(
        "uq_path_assignments_open",
        "path_assignments",
        ["user_id", "path_template_id"],
        unique=True,
        sqlite_where=sa.text("status IN ('active', 'paused')"),
        postgresql_where=sa.text("status IN ('active', 'paused')"),
    )

    op.create_table(
        "adaptive_weeks",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("assignment_id", sa.String(length=36), sa.ForeignKey("path_assignments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("theme", sa.String(length=255), nullable=False),
        sa.Column("theme_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("difficulty_min", sa.String(length=4), nullable=False, server_default="A1"),
        sa.Column("difficulty_max", sa.String(length=4), nullable=False, server_default="A2"),
        sa.Column("is_anchor_week", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("focus_areas", sa.JSON(), nullable=False),
        sa.Column("seeds", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="upcoming"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("assignment_id", "week_number", name="uq_adaptive_weeks_assignment_week"),
    )
    op.create_index("ix_adaptive_weeks_assignment_id", "adaptive_weeks", ["assignment_id"])

    op.create_table(
        "week_progress",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("week_id", sa.String(length=36), sa.ForeignKey("adaptive_weeks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sessions_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sessions_required", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("aggregate_score", sa.Float(), nullable=True),
        sa.Column("scored_sessions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("week_id", name="uq_week_progress_week"),
    )

    op.create_table(
        "session_records",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("week_id", sa.String(length=36), sa.ForeignKey("adaptive_weeks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("conversation_id", sa.String(length=64), nullable=False),
        sa.Column("scenario_job_id", sa.String(length=36), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome_score", sa.Float(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
    )
    op.create_index("ix_session_records_week_started", "session_records", ["week_id", "started_at"])

    op.create_table(
        "weekly_analyses",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("week_id", sa.String(length=36), sa.ForeignKey("adaptive_weeks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("identified_strengths", sa.JSON(), nullable=False),
        sa.Column("identified_challenges", sa.JSON(), nullable=False),
        sa.Column("topic_affinities", sa.JSON(), nullable=False),
        sa.Column("next_week_recommendation", sa.JSON(), nullable=False),
        sa.Column("generated_seeds", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("week_id", name="uq_weekly_analyses_week"),
    )

    op.create_table(
        "scenario_generation_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("path_assignment_id", sa.String(length=36), nullable=False),
        sa.Column("week_id", sa.String(length=36), nullable=False),
        sa.Column("seed_key", sa.String(length=120), nullable=False),
        sa.Column("seed", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claim_token", sa.String(length=36), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("week_id", "seed_key", name="uq_scenario_jobs_week_seed"),
    )
    op.create_index("ix_scenario_jobs_status_created", "scenario_generation_jobs", ["status", "created_at"])
    op.create_index("ix_scenario_jobs_claim_token", "scenario_generation_jobs", ["claim_token"])
    op.create_index(
        "ix_scenario_generation_jobs_path_assignment_id",
        "scenario_generation_jobs",
        ["path_assignment_id"],
    )

    op.create_table(
        "persistence_audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("subject_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_persistence_audit_events_subject", "persistence_audit_events", ["subject_id"])


def downgrade() -> None:
    op.drop_index("ix_persistence_audit_events_subject", table_name="persistence_audit_events")
    op.drop_table("persistence_audit_events")
    op.drop_index("ix_scenario_generation_jobs_path_assignment_id", table_name="scenario_generation_jobs")
    op.drop_index("ix_scenario_jobs_claim_token", table_name="scenario_generation_jobs")
    op.drop_index("ix_scenario_jobs_status_created", table_name="scenario_generation_jobs")
    op.drop_table("scenario_generation_jobs")
    op.drop_table("weekly_analyses")
    op.drop_index("ix_session_records_week_started", table_name="session_records")
    op.drop_table("session_records")
    op.drop_table("week_progress")
    op.drop_index("ix_adaptive_weeks_assignment_id", table_name="adaptive_weeks")
    op.drop_table("adaptive_weeks")
    op.drop_index("uq_path_assignments_open", table_name="path_assignments")
    op.drop_index("ix_path_assignments_user_template", table_name="path_assignments")
    op.drop_table("path_assignments")
