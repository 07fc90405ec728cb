"""Utilities that build weekly analysis and scenario generation prompts."""

from __future__ import annotations

import json
import re
from string import Template
from typing import Any, Literal, Mapping, Optional, Sequence

from .learning_path import AdaptiveWeek, ConversationSeed, FocusArea, SessionRecord

RealismLevel = Literal["supportive", "realistic", "challenging"]

_FENCE_PATTERN = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(?P<body>.*?)\n?\s*```\s*$", re.DOTALL)

WEEKLY_ANALYSIS_TEMPLATE = Template(
    """You are analysing week $week_number of a language learner's practice.

WEEKLY THEME: $theme
$theme_description

FOCUS AREAS THIS WEEK:
$focus_areas

Your goal is to:
1. Identify strengths: vocabulary used correctly, comfortable grammar patterns, topics where the learner
   showed confidence, improvements from early to late in the week.
2. Identify challenges (gently): vocabulary gaps, grammar that caused hesitation, uncomfortable topics,
   patterns of self-correction or confusion.
3. Notice topic affinities: which topics engaged the learner and where they spoke more freely.
4. Recommend how next week should adapt: what to build on, what to introduce gently, what to avoid.
5. Create 4-6 conversation seeds for next week that build on this theme, include topics they enjoyed
   and weave in areas for growth.

Be encouraging. This is about growth, not judgment.

CONVERSATIONS THIS WEEK:
$transcripts

Respond strictly with JSON. Schema:
$schema
"""
)

_PARTNER_BEHAVIOUR: Mapping[str, Sequence[str]] = {
    "supportive": (
        "Warm, patient, and encouraging",
        "Speaks clearly and at a comfortable pace",
        "Gives the learner time to respond",
    ),
    "realistic": (
        "Generally friendly but not overly accommodating",
        "May ask follow-up questions the learner didn't prepare for",
        "Occasionally pauses, expecting the learner to continue",
        "Uses natural speech patterns",
    ),
    "challenging": (
        "Realistic human behaviour, not artificially supportive",
        "May express mild skepticism or ask probing questions",
        "Uses indirect communication that requires interpretation",
        "Creates moments where the learner must recover from small mistakes",
    ),
}


def realism_level(week_number: int) -> RealismLevel:
    if week_number <= 1:
        return "supportive"
    if week_number == 2:
        return "realistic"
    return "challenging"


def format_focus_areas(focus_areas: Sequence[FocusArea]) -> str:
    if not focus_areas:
        return "- None set yet (anchor week)."
    return "\n".join(f"- [{area.priority}] {area.type}: {area.description}" for area in focus_areas)


def format_transcripts(sessions: Sequence[SessionRecord], max_chars: int) -> str:
    """Render one excerpt per session, oldest first, each truncated to ``max_chars``."""
    if not sessions:
        return "(no transcripts recorded)"
    blocks: list[str] = []
    for index, record in enumerate(sessions, start=1):
        text = (record.transcript or "").strip() or "(no transcript captured)"
        if len(text) > max_chars:
            text = text[: max_chars - 3].rstrip() + "..."
        score = f"{record.outcome_score:.2f}" if record.outcome_score is not None else "n/a"
        blocks.append(f"Session {index} (outcome score: {score}):\n{text}")
    return "\n\n".join(blocks)


def analysis_prompt_variables(
    week: AdaptiveWeek,
    sessions: Sequence[SessionRecord],
    *,
    schema: Mapping[str, Any],
    max_chars: int,
) -> dict[str, str]:
    return {
        "week_number": str(week.week_number),
        "theme": week.theme,
        "theme_description": week.theme_description,
        "focus_areas": format_focus_areas(week.focus_areas),
        "transcripts": format_transcripts(sessions, max_chars),
        "schema": json.dumps(schema, ensure_ascii=False, indent=2),
    }


def strip_json_fence(text: str) -> str:
    match = _FENCE_PATTERN.match(text or "")
    if match:
        return match.group("body").strip()
    return (text or "").strip()


def build_scenario_description(
    seed: ConversationSeed,
    *,
    theme: str,
    theme_description: str,
    difficulty_min: str,
    difficulty_max: str,
    week_number: int,
    target_language: Optional[str] = None,
) -> str:
    """Describe the scenario the generator should write for ``seed``."""
    language = target_language.upper() if target_language else "target-language"
    realism = realism_level(week_number)
    parts: list[str] = [
        f"Create a personalized {language} language learning scenario.",
        "",
        f"CONVERSATION TOPIC: {seed.title}",
        seed.description,
        "",
        f"WEEKLY THEME: {theme}",
        theme_description,
        "",
        f"TARGET DIFFICULTY: {difficulty_min} to {difficulty_max}",
        "",
    ]
    if seed.vocabulary_hints:
        parts.extend(["KEY VOCABULARY TO PRACTICE:", f"- {', '.join(seed.vocabulary_hints)}", ""])
    if seed.grammar_hints:
        parts.extend(["GRAMMAR FOCUS:", f"- {', '.join(seed.grammar_hints)}", ""])
    if seed.suggested_session_types:
        parts.extend([f"SESSION STYLE: {' or '.join(seed.suggested_session_types)}", ""])

    parts.append(f"REALISM LEVEL: {realism.upper()}")
    parts.append("")
    parts.append("CONVERSATION PARTNER BEHAVIOR:")
    parts.extend(f"- {line}" for line in _PARTNER_BEHAVIOUR[realism])
    parts.append("")
    parts.append("Create a scenario that balances learning support with realistic human interaction.")
    return "\n".join(parts)


__all__ = [
    "RealismLevel",
    "WEEKLY_ANALYSIS_TEMPLATE",
    "analysis_prompt_variables",
    "build_scenario_description",
    "format_focus_areas",
    "format_transcripts",
    "realism_level",
    "strip_json_fence",
]
