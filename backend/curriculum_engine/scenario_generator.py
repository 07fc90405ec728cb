"""Generation pipeline collaborator that turns a conversation seed into scenario content."""

from __future__ import annotations

import json
import logging
from time import perf_counter
from typing import Any, Dict, List, Optional, Protocol

from openai import APITimeoutError, OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from .config import Settings, get_settings
from .errors import GenerationTimeoutError, ScenarioGenerationError
from .prompt_utils import strip_json_fence

logger = logging.getLogger(__name__)

SCENARIO_SYSTEM_PROMPT = (
    "You are a language learning scenario designer. Expand the description into a complete practice "
    "scenario with culturally appropriate details. Focus on teaching and gentle correction. Return JSON "
    "with the keys: title, description, learning_goal, instructions, context, expected_outcome, "
    "learning_objectives (list of strings), persona (object with name and role), cefr_level, difficulty."
)


class PromptPayload(BaseModel):
    """Generation request built from a job's seed and payload."""

    job_id: str
    seed_id: str
    system: str = SCENARIO_SYSTEM_PROMPT
    user: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ScenarioPersona(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None


class ScenarioContent(BaseModel):
    title: str
    description: str
    learning_goal: Optional[str] = None
    instructions: Optional[str] = None
    context: Optional[str] = None
    expected_outcome: Optional[str] = None
    learning_objectives: List[str] = Field(default_factory=list)
    persona: Optional[ScenarioPersona] = None
    cefr_level: Optional[str] = None
    difficulty: Optional[str] = None


class GenerationResult(BaseModel):
    content: ScenarioContent
    model: Optional[str] = None
    latency_ms: float = 0.0
    tokens_used: int = 0


class ScenarioGenerator(Protocol):
    def generate(self, prompt: PromptPayload, *, timeout: float) -> GenerationResult:  # pragma: no cover
        ...


def parse_scenario_content(raw: str) -> ScenarioContent:
    try:
        return ScenarioContent.model_validate_json(strip_json_fence(raw))
    except (ValidationError, json.JSONDecodeError, ValueError) as exc:
        raise ScenarioGenerationError(f"Scenario generator returned invalid payload: {exc}") from exc


class OpenAIScenarioGenerator:
    """Chat-completions backed generator; the client is created on first use."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[OpenAI] = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self._settings.openai_api_key, max_retries=0)
        return self._client

    def generate(self, prompt: PromptPayload, *, timeout: float) -> GenerationResult:
        model = self._settings.generation_model
        started = perf_counter()
        try:
            response = self._get_client().chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                response_format={"type": "json_object"},
                timeout=timeout,
            )
        except APITimeoutError as exc:
            raise GenerationTimeoutError(f"Scenario generation timed out after {timeout:.0f}s") from exc
        except OpenAIError as exc:
            raise ScenarioGenerationError(f"Scenario generation call failed: {exc}") from exc

        latency_ms = round((perf_counter() - started) * 1000.0, 2)
        choice = response.choices[0] if response.choices else None
        raw = choice.message.content if choice and choice.message else None
        if not raw:
            raise ScenarioGenerationError("Scenario generator returned an empty response.")
        content = parse_scenario_content(raw)
        tokens_used = response.usage.total_tokens if response.usage else 0
        logger.debug("Scenario generated for seed %s in %sms", prompt.seed_id, latency_ms)
        return GenerationResult(content=content, model=response.model, latency_ms=latency_ms, tokens_used=tokens_used)


__all__ = [
    "GenerationResult",
    "OpenAIScenarioGenerator",
    "PromptPayload",
    "SCENARIO_SYSTEM_PROMPT",
    "ScenarioContent",
    "ScenarioGenerator",
    "ScenarioPersona",
    "parse_scenario_content",
]
