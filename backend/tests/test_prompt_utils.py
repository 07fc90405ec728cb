from datetime import datetime, timedelta, timezone

from curriculum_engine.learning_path import AdaptiveWeek, ConversationSeed, FocusArea, SessionRecord
from curriculum_engine.prompt_utils import (
    WEEKLY_ANALYSIS_TEMPLATE,
    analysis_prompt_variables,
    build_scenario_description,
    format_focus_areas,
    format_transcripts,
    realism_level,
    strip_json_fence,
)

STARTED = datetime(2026, 3, 2, 18, 30, tzinfo=timezone.utc)


def _session(index: int, transcript, score=None) -> SessionRecord:
    return SessionRecord(
        id=f"session-{index}",
        week_id="week-1",
        conversation_id=f"conv-{index}",
        started_at=STARTED + timedelta(days=index),
        completed_at=STARTED + timedelta(days=index, minutes=12),
        outcome_score=score,
        transcript=transcript,
    )


def test_realism_level_escalates_by_week():
    assert realism_level(1) == "supportive"
    assert realism_level(2) == "realistic"
    assert realism_level(3) == "challenging"
    assert realism_level(4) == "challenging"


def test_scenario_description_includes_hints_and_partner_behaviour():
    seed = ConversationSeed(
        id="seed-cafe",
        title="Ordering at a café",
        description="Order a drink and a pastry",
        suggested_session_types=["quick-checkin", "story-moment"],
        vocabulary_hints=["croissant", "l'addition"],
        grammar_hints=["je voudrais"],
    )

    result = build_scenario_description(
        seed,
        theme="My Day",
        theme_description="Everyday routines.",
        difficulty_min="A1",
        difficulty_max="A2",
        week_number=2,
        target_language="fr",
    )

    assert result.startswith("Create a personalized FR language learning scenario.")
    assert "CONVERSATION TOPIC: Ordering at a café" in result
    assert "TARGET DIFFICULTY: A1 to A2" in result
    assert "- croissant, l'addition" in result
    assert "GRAMMAR FOCUS:" in result
    assert "SESSION STYLE: quick-checkin or story-moment" in result
    assert "REALISM LEVEL: REALISTIC" in result
    assert "- May ask follow-up questions the learner didn't prepare for" in result


def test_scenario_description_without_hints_or_language():
    seed = ConversationSeed(id="seed-plain", title="Small talk", description="Chat with a neighbour")

    result = build_scenario_description(
        seed,
        theme="My Day",
        theme_description="",
        difficulty_min="A1",
        difficulty_max="A1",
        week_number=1,
    )

    assert "target-language language learning scenario" in result
    assert "KEY VOCABULARY" not in result
    assert "GRAMMAR FOCUS" not in result
    assert "REALISM LEVEL: SUPPORTIVE" in result


def test_format_focus_areas():
    assert format_focus_areas([]) == "- None set yet (anchor week)."
    areas = [FocusArea(type="grammar", description="Past tense stories", priority="high")]
    assert format_focus_areas(areas) == "- [high] grammar: Past tense stories"


def test_format_transcripts_truncates_and_labels_scores():
    sessions = [_session(1, "x" * 200, 0.5), _session(2, None)]

    result = format_transcripts(sessions, max_chars=100)

    first, second = result.split("\n\n")
    assert first.startswith("Session 1 (outcome score: 0.50):")
    assert first.endswith("...")
    assert len(first.split("\n", 1)[1]) == 100
    assert second == "Session 2 (outcome score: n/a):\n(no transcript captured)"
    assert format_transcripts([], max_chars=100) == "(no transcripts recorded)"


def test_analysis_prompt_renders_every_placeholder():
    week = AdaptiveWeek(id="week-1", assignment_id="a-1", week_number=1, theme="My Day", theme_description="Routines")
    variables = analysis_prompt_variables(
        week,
        [_session(1, "Je me lève tôt.", 0.9)],
        schema={"type": "object"},
        max_chars=500,
    )

    prompt = WEEKLY_ANALYSIS_TEMPLATE.substitute(variables)

    assert "week 1 of a language learner's practice" in prompt
    assert "WEEKLY THEME: My Day" in prompt
    assert "Je me lève tôt." in prompt
    assert '"type": "object"' in prompt


def test_strip_json_fence():
    assert strip_json_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_json_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_json_fence('  {"a": 1}  ') == '{"a": 1}'
    assert strip_json_fence("") == ""
