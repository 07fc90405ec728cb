"""Fakes and builders shared by the curriculum engine tests."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Mapping, Optional

from curriculum_engine.errors import ScenarioGenerationError
from curriculum_engine.learning_path import ConversationSeed
from curriculum_engine.scenario_generator import GenerationResult, PromptPayload, ScenarioContent


def make_seed(seed_id: str, title: Optional[str] = None) -> ConversationSeed:
    return ConversationSeed(
        id=seed_id,
        title=title or seed_id.replace("-", " ").title(),
        description=f"Talk about {seed_id}",
        suggested_session_types=["quick-checkin"],
        vocabulary_hints=["today"],
        grammar_hints=["present tense"],
    )


class ScriptedGenerator:
    """Generator whose per-seed outcomes are scripted; an exception in the script is raised."""

    def __init__(self, script: Optional[dict] = None, default: Optional[Callable[[PromptPayload], object]] = None) -> None:
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.default = default
        self.calls: List[PromptPayload] = []

    def generate(self, prompt: PromptPayload, *, timeout: float) -> GenerationResult:
        self.calls.append(prompt)
        outcomes = self.script.get(prompt.seed_id)
        outcome: object = outcomes.pop(0) if outcomes else None
        if outcome is None and self.default is not None:
            outcome = self.default(prompt)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, GenerationResult):
            return outcome
        return GenerationResult(
            content=ScenarioContent(title=f"Scenario for {prompt.seed_id}", description="Practice scenario"),
            model="fake-model",
            latency_ms=1.0,
            tokens_used=42,
        )


def generation_failure(message: str = "model unavailable") -> ScenarioGenerationError:
    return ScenarioGenerationError(message)


def analysis_response(**overrides: Any) -> str:
    payload: Dict[str, Any] = {
        "identified_strengths": [
            {
                "area": "greetings",
                "description": "Opened every conversation confidently.",
                "evidence": ["Bonjour, ça va ?"],
                "confidence_score": 0.8,
            }
        ],
        "identified_challenges": [
            {
                "area": "past tense",
                "description": "Hesitated when telling stories about yesterday.",
                "suggested_approach": "Short stories about last weekend.",
                "severity": "significant",
            }
        ],
        "topic_affinities": [{"topic": "food", "engagement_level": "high", "sessions_in_topic": 2}],
        "next_week_recommendation": {
            "summary": "Build on greetings and practise past events.",
            "difficulty_adjustment": "same",
        },
        "generated_seeds": [
            {"id": "seed-market-visit", "title": "At the market", "description": "Buy fruit for a picnic"},
            {"id": "seed-last-weekend", "title": "Last weekend", "description": "Tell a friend about Saturday"},
        ],
    }
    payload.update(overrides)
    return json.dumps(payload)


class FakeAnalysisModel:
    """Returns queued responses in order, then a well-formed default; records every variable set."""

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[Exception] = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.calls: List[Mapping[str, str]] = []

    def complete(self, prompt_template: object, variables: Mapping[str, str]) -> str:
        self.calls.append(dict(variables))
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return analysis_response()
