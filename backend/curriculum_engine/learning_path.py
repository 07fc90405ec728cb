"""Learning path domain models: assignments, weeks, sessions, analyses and generation jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from .errors import StaleTransitionError

CefrLevel = Literal["A1", "A2", "B1", "B2", "C1", "C2"]
FocusAreaType = Literal["vocabulary", "grammar", "pronunciation", "fluency", "confidence"]
Priority = Literal["high", "medium", "low"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class WeekStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return not JOB_TRANSITIONS[self]


JOB_TRANSITIONS: Mapping[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.PENDING, JobStatus.READY, JobStatus.FAILED}),
    JobStatus.READY: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def job_predecessors(target: JobStatus) -> FrozenSet[JobStatus]:
    """Statuses a job may hold immediately before moving to ``target``."""
    return frozenset(source for source, targets in JOB_TRANSITIONS.items() if target in targets)


def ensure_job_transition(job_id: str, current: JobStatus, target: JobStatus) -> None:
    if target not in JOB_TRANSITIONS[current]:
        raise StaleTransitionError(
            f"Scenario job '{job_id}' cannot move from {current.value} to {target.value}."
        )


class FocusArea(BaseModel):
    type: FocusAreaType
    description: str
    priority: Priority = "medium"
    source: Literal["baseline", "analysis", "user_request"] = "baseline"


class ConversationSeed(BaseModel):
    """Prompt fragment that a scenario generation job turns into session content."""

    id: str = Field(..., min_length=1, max_length=120)
    title: str
    description: str
    suggested_session_types: List[str] = Field(default_factory=list)
    vocabulary_hints: List[str] = Field(default_factory=list)
    grammar_hints: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None


class IdentifiedStrength(BaseModel):
    area: str
    description: str
    evidence: List[str] = Field(default_factory=list)
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)


class IdentifiedChallenge(BaseModel):
    area: str
    description: str
    evidence: List[str] = Field(default_factory=list)
    suggested_approach: str = ""
    severity: Literal["minor", "moderate", "significant"] = "moderate"


class TopicAffinity(BaseModel):
    topic: str
    engagement_level: Priority = "medium"
    sessions_in_topic: int = Field(default=0, ge=0)
    average_comfort_in_topic: Optional[float] = None


class NextWeekRecommendation(BaseModel):
    summary: str
    focus_areas: List[FocusArea] = Field(default_factory=list)
    suggested_theme: Optional[str] = None
    difficulty_adjustment: Literal["easier", "same", "harder"] = "same"


class PathAssignment(BaseModel):
    id: str
    user_id: str
    path_template_id: str
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class AdaptiveWeek(BaseModel):
    id: str
    assignment_id: str
    week_number: int = Field(..., ge=1)
    theme: str
    theme_description: str = ""
    difficulty_min: CefrLevel = "A1"
    difficulty_max: CefrLevel = "A2"
    is_anchor_week: bool = False
    focus_areas: List[FocusArea] = Field(default_factory=list)
    seeds: List[ConversationSeed] = Field(default_factory=list)
    status: WeekStatus = WeekStatus.UPCOMING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WeekProgress(BaseModel):
    week_id: str
    sessions_completed: int = Field(default=0, ge=0)
    sessions_required: int = Field(default=3, ge=1)
    aggregate_score: Optional[float] = None
    scored_sessions: int = Field(default=0, ge=0)

    @property
    def is_complete(self) -> bool:
        return self.sessions_completed >= self.sessions_required


class SessionRecord(BaseModel):
    id: str
    week_id: str
    conversation_id: str
    scenario_job_id: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    outcome_score: Optional[float] = None
    transcript: Optional[str] = None


class WeeklyAnalysis(BaseModel):
    id: str
    week_id: str
    identified_strengths: List[IdentifiedStrength] = Field(default_factory=list)
    identified_challenges: List[IdentifiedChallenge] = Field(default_factory=list)
    topic_affinities: List[TopicAffinity] = Field(default_factory=list)
    next_week_recommendation: NextWeekRecommendation
    generated_seeds: List[ConversationSeed] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class ScenarioGenerationJob(BaseModel):
    id: str
    path_assignment_id: str
    week_id: str
    seed: ConversationSeed
    status: JobStatus = JobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    payload: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    ready: int = 0
    failed: int = 0
    total: int = 0


class JobOutcome(BaseModel):
    job_id: str
    status: JobStatus
    attempts: int
    error: Optional[str] = None


class BatchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    dry_run: bool = False
    results: List[JobOutcome] = Field(default_factory=list)


class CurrentWeek(BaseModel):
    week: AdaptiveWeek
    progress: WeekProgress


class SessionCompletion(BaseModel):
    """Outcome of completing a session, returned to the caller that finished it."""

    session: SessionRecord
    progress: WeekProgress
    week_completed: bool = False
    next_week_id: Optional[str] = None
    assignment_completed: bool = False
    encouragement: str = ""


class AnalysisSweepError(BaseModel):
    week_id: str
    error: str


class AnalysisSweepResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    analysis_ids: List[str] = Field(default_factory=list)
    errors: List[AnalysisSweepError] = Field(default_factory=list)


__all__ = [
    "AdaptiveWeek",
    "AnalysisSweepError",
    "AnalysisSweepResult",
    "AssignmentStatus",
    "BatchResult",
    "CefrLevel",
    "ConversationSeed",
    "CurrentWeek",
    "FocusArea",
    "FocusAreaType",
    "IdentifiedChallenge",
    "IdentifiedStrength",
    "JOB_TRANSITIONS",
    "JobOutcome",
    "JobStatus",
    "NextWeekRecommendation",
    "PathAssignment",
    "QueueStats",
    "ScenarioGenerationJob",
    "SessionCompletion",
    "SessionRecord",
    "TopicAffinity",
    "WeekProgress",
    "WeekStatus",
    "WeeklyAnalysis",
    "ensure_job_transition",
    "job_predecessors",
]
