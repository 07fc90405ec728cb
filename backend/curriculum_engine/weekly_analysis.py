"""Weekly analysis engine: turns a completed week's conversations into next week's plan."""

from __future__ import annotations

import json
import logging
import uuid
from time import perf_counter
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import IntegrityError

from .analysis_model import AgentAnalysisModel, AnalysisModel
from .config import Settings, get_settings
from .db.session import session_scope
from .errors import (
    AlreadyAnalyzedError,
    AnalysisModelError,
    AnalysisParseError,
    CurriculumError,
    IncompleteWeekError,
    NotFoundError,
)
from .learning_path import (
    AnalysisSweepError,
    AnalysisSweepResult,
    ConversationSeed,
    FocusArea,
    FocusAreaType,
    IdentifiedChallenge,
    IdentifiedStrength,
    NextWeekRecommendation,
    TopicAffinity,
    WeeklyAnalysis,
)
from .prompt_utils import WEEKLY_ANALYSIS_TEMPLATE, analysis_prompt_variables, strip_json_fence
from .queue_processor import generation_payload
from .repositories.learning_paths import LearningPathRepository, learning_paths
from .repositories.scenario_jobs import ScenarioJobRepository, scenario_jobs
from .telemetry import emit_event

logger = logging.getLogger(__name__)

MAX_GENERATED_SEEDS = 8

_SEVERITY_PRIORITY = {"significant": "high", "moderate": "medium", "minor": "low"}
_AREA_KEYWORDS: tuple[tuple[str, FocusAreaType], ...] = (
    ("grammar", "grammar"),
    ("tense", "grammar"),
    ("vocab", "vocabulary"),
    ("word", "vocabulary"),
    ("pronunc", "pronunciation"),
    ("accent", "pronunciation"),
    ("fluen", "fluency"),
    ("pace", "fluency"),
)


class AnalysisResponsePayload(BaseModel):
    """JSON contract the analysis model must satisfy."""

    identified_strengths: List[IdentifiedStrength] = Field(default_factory=list)
    identified_challenges: List[IdentifiedChallenge] = Field(default_factory=list)
    topic_affinities: List[TopicAffinity] = Field(default_factory=list)
    next_week_recommendation: NextWeekRecommendation
    generated_seeds: List[ConversationSeed] = Field(default_factory=list, max_length=MAX_GENERATED_SEEDS)


def parse_analysis_response(raw: str) -> AnalysisResponsePayload:
    try:
        return AnalysisResponsePayload.model_validate_json(strip_json_fence(raw))
    except (ValidationError, json.JSONDecodeError, ValueError) as exc:
        raise AnalysisParseError(f"Weekly analysis returned invalid payload: {exc}") from exc


def _focus_type_for(area: str) -> FocusAreaType:
    lowered = area.lower()
    for keyword, focus_type in _AREA_KEYWORDS:
        if keyword in lowered:
            return focus_type
    return "confidence"


def derive_focus_areas(payload: AnalysisResponsePayload) -> List[FocusArea]:
    """Next week's focus areas: the recommendation's own list, else one per identified challenge."""
    recommended = payload.next_week_recommendation.focus_areas
    if recommended:
        return [area.model_copy(update={"source": "analysis"}) for area in recommended]
    return [
        FocusArea(
            type=_focus_type_for(challenge.area),
            description=challenge.suggested_approach or challenge.description,
            priority=_SEVERITY_PRIORITY.get(challenge.severity, "medium"),  # type: ignore[arg-type]
            source="analysis",
        )
        for challenge in payload.identified_challenges
    ]


class WeeklyAnalysisEngine:
    def __init__(
        self,
        model: Optional[AnalysisModel] = None,
        *,
        settings: Optional[Settings] = None,
        paths: Optional[LearningPathRepository] = None,
        jobs: Optional[ScenarioJobRepository] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model
        self._paths = paths or learning_paths
        self._jobs = jobs or scenario_jobs

    @property
    def model(self) -> AnalysisModel:
        if self._model is None:
            self._model = AgentAnalysisModel(self._settings)
        return self._model

    def analyze_week(self, week_id: str) -> WeeklyAnalysis:
        """Analyse a completed week once; nothing is written unless the model output parses."""
        with session_scope(commit=False) as session:
            week = self._paths.get_week(session, week_id)
            if week is None:
                raise NotFoundError(f"Week '{week_id}' was not found.")
            if self._paths.get_analysis(session, week_id) is not None:
                raise AlreadyAnalyzedError(f"Week '{week_id}' has already been analysed.")
            progress = self._paths.get_progress(session, week_id)
            if progress is None or not progress.is_complete:
                completed = progress.sessions_completed if progress else 0
                required = progress.sessions_required if progress else 0
                raise IncompleteWeekError(
                    f"Week '{week_id}' has {completed} of {required} required sessions completed."
                )
            sessions = self._paths.list_session_records(session, week_id, completed_only=True)
            successor = self._paths.get_week_by_number(session, week.assignment_id, week.week_number + 1)

        variables = analysis_prompt_variables(
            week,
            sessions,
            schema=AnalysisResponsePayload.model_json_schema(),
            max_chars=self._settings.transcript_excerpt_chars,
        )
        started = perf_counter()
        try:
            raw = self.model.complete(WEEKLY_ANALYSIS_TEMPLATE, variables)
            payload = parse_analysis_response(raw)
        except (AnalysisModelError, AnalysisParseError) as exc:
            logger.warning("Weekly analysis for week %s failed: %s", week_id, exc)
            emit_event("weekly_analysis_failed", week_id=week_id, error=str(exc), error_type=type(exc).__name__)
            raise

        analysis = WeeklyAnalysis(
            id=str(uuid.uuid4()),
            week_id=week_id,
            identified_strengths=payload.identified_strengths,
            identified_challenges=payload.identified_challenges,
            topic_affinities=payload.topic_affinities,
            next_week_recommendation=payload.next_week_recommendation,
            generated_seeds=payload.generated_seeds,
        )
        target_week = successor or week
        focus_areas = derive_focus_areas(payload)
        enqueued = 0

        try:
            with session_scope() as session:
                stored = self._paths.save_analysis(session, analysis)
                if successor is not None:
                    target_week = self._paths.replace_focus_areas(session, successor.id, focus_areas)
                job_payload = generation_payload(target_week)
                for seed in payload.generated_seeds:
                    _, created = self._jobs.enqueue(
                        session,
                        path_assignment_id=week.assignment_id,
                        week_id=target_week.id,
                        seed=seed,
                        payload=job_payload,
                        max_attempts=self._settings.job_max_attempts,
                    )
                    enqueued += int(created)
        except IntegrityError as exc:
            conflict = self._save_conflict(week_id)
            if conflict is None:
                raise
            logger.warning("Weekly analysis for week %s was not stored: %s", week_id, conflict)
            raise conflict from exc

        latency_ms = round((perf_counter() - started) * 1000.0, 2)
        logger.info("Weekly analysis stored for week %s (%d jobs enqueued)", week_id, enqueued)
        emit_event(
            "weekly_analysis_completed",
            week_id=week_id,
            analysis_id=stored.id,
            seeds=len(stored.generated_seeds),
            jobs_enqueued=enqueued,
            target_week_id=target_week.id,
            latency_ms=latency_ms,
        )
        return stored

    def _save_conflict(self, week_id: str) -> Optional[CurriculumError]:
        """Explain a rejected analysis insert: the week vanished or another run stored it first."""
        with session_scope(commit=False) as session:
            if self._paths.get_week(session, week_id) is None:
                return NotFoundError(f"Week '{week_id}' was removed before its analysis could be stored.")
            if self._paths.get_analysis(session, week_id) is not None:
                return AlreadyAnalyzedError(f"Week '{week_id}' has already been analysed.")
        return None

    def get_analysis(self, week_id: str) -> Optional[WeeklyAnalysis]:
        with session_scope(commit=False) as session:
            if self._paths.get_week(session, week_id) is None:
                raise NotFoundError(f"Week '{week_id}' was not found.")
            return self._paths.get_analysis(session, week_id)

    def analyze_pending(self, limit: int = 10) -> AnalysisSweepResult:
        """Analyse completed weeks that never received an analysis, e.g. after a lost dispatch."""
        with session_scope(commit=False) as session:
            weeks = self._paths.list_unanalyzed_completed_weeks(session, limit)

        sweep = AnalysisSweepResult()
        for week in weeks:
            sweep.processed += 1
            try:
                analysis = self.analyze_week(week.id)
            except CurriculumError as exc:
                sweep.failed += 1
                sweep.errors.append(AnalysisSweepError(week_id=week.id, error=str(exc)))
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected failure analysing week %s", week.id)
                sweep.failed += 1
                sweep.errors.append(AnalysisSweepError(week_id=week.id, error=str(exc)))
            else:
                sweep.succeeded += 1
                sweep.analysis_ids.append(analysis.id)
        return sweep


__all__ = [
    "AnalysisResponsePayload",
    "MAX_GENERATED_SEEDS",
    "WeeklyAnalysisEngine",
    "derive_focus_areas",
    "parse_analysis_response",
]
