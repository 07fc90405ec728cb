"""Language-model collaborator used by the weekly analysis engine."""

from __future__ import annotations

import logging
from string import Template
from time import perf_counter
from typing import Dict, Mapping, Optional, Protocol, Union, cast

from agents import Agent, ModelSettings, RunConfig, Runner
from openai.types.shared.reasoning import Reasoning
from openai.types.shared.reasoning_effort import ReasoningEffort

from .config import Settings, get_settings
from .errors import AnalysisModelError

logger = logging.getLogger(__name__)

PromptTemplate = Union[str, Template]

ANALYSIS_INSTRUCTIONS = (
    "You are the weekly coach for a conversational language-learning program. "
    "Read the learner's conversations from the past week and describe what went well, what was hard, "
    "which topics sparked engagement, and what next week should emphasise. Be specific, cite evidence "
    "from the transcripts, stay encouraging, and always answer with JSON that matches the provided schema."
)


class AnalysisModel(Protocol):
    """Anything that can fill a prompt template and return the model's raw text."""

    def complete(self, prompt_template: PromptTemplate, variables: Mapping[str, str]) -> str:  # pragma: no cover
        ...


def render_prompt(prompt_template: PromptTemplate, variables: Mapping[str, str]) -> str:
    template = prompt_template if isinstance(prompt_template, Template) else Template(prompt_template)
    try:
        return template.substitute(variables)
    except (KeyError, ValueError) as exc:
        raise AnalysisModelError(f"Analysis prompt could not be rendered: {exc}") from exc


def _effort(value: str) -> ReasoningEffort:
    allowed = {"minimal", "low", "medium", "high"}
    return cast(ReasoningEffort, value if value in allowed else "medium")


_AGENT_CACHE: Dict[str, Agent] = {}


def _analysis_agent(model: str) -> Agent:
    if model not in _AGENT_CACHE:
        _AGENT_CACHE[model] = Agent(
            name="Weekly Progress Analyst",
            instructions=ANALYSIS_INSTRUCTIONS,
            model=model,
            tools=[],
            model_settings=ModelSettings(store=False),
        )
    return _AGENT_CACHE[model]


class AgentAnalysisModel:
    """Runs the analysis prompt through a cached agent, one synchronous call per week."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def complete(self, prompt_template: PromptTemplate, variables: Mapping[str, str]) -> str:
        prompt = render_prompt(prompt_template, variables)
        agent = _analysis_agent(self._settings.analysis_model)
        started = perf_counter()
        try:
            result = Runner.run_sync(
                agent,
                prompt,
                context=None,
                run_config=RunConfig(
                    model_settings=ModelSettings(
                        reasoning=Reasoning(effort=_effort(self._settings.analysis_reasoning)),
                    )
                ),
            )
        except Exception as exc:  # noqa: BLE001
            raise AnalysisModelError(f"Analysis model call failed: {exc}") from exc

        latency_ms = round((perf_counter() - started) * 1000.0, 2)
        logger.debug("Analysis model responded in %sms (model=%s)", latency_ms, self._settings.analysis_model)
        output = result.final_output
        if not isinstance(output, str):
            output = str(output or "")
        return output


__all__ = [
    "ANALYSIS_INSTRUCTIONS",
    "AgentAnalysisModel",
    "AnalysisModel",
    "PromptTemplate",
    "render_prompt",
]
