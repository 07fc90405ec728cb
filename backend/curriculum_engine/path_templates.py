"""Built-in learning path templates: default week themes and week-one conversation seeds."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Optional, Tuple

from .errors import NotFoundError
from .learning_path import CefrLevel, ConversationSeed


@dataclass(frozen=True)
class WeekTheme:
    week_number: int
    theme: str
    theme_description: str
    difficulty_min: CefrLevel
    difficulty_max: CefrLevel
    is_anchor_week: bool = False


@dataclass(frozen=True)
class PathTemplate:
    template_id: str
    title: str
    weeks: Tuple[WeekTheme, ...]
    minimum_sessions_per_week: Optional[int] = None
    suggested_sessions_per_week: int = 5
    week_one_seeds: Tuple[ConversationSeed, ...] = field(default_factory=tuple)

    @property
    def duration_weeks(self) -> int:
        return len(self.weeks)


def _seed(
    seed_id: str,
    title: str,
    description: str,
    session_types: Tuple[str, ...],
    vocabulary: Tuple[str, ...],
    grammar: Tuple[str, ...],
) -> ConversationSeed:
    return ConversationSeed(
        id=seed_id,
        title=title,
        description=description,
        suggested_session_types=list(session_types),
        vocabulary_hints=list(vocabulary),
        grammar_hints=list(grammar),
    )


_DAILY_LIFE = PathTemplate(
    template_id="daily-life",
    title="Daily Life",
    weeks=(
        WeekTheme(
            week_number=1,
            theme="My Day",
            theme_description=(
                "Start with the familiar. Talk about your daily routines, what you did today, simple plans "
                "for tomorrow. Build confidence with present and near-past."
            ),
            difficulty_min="A1",
            difficulty_max="A2",
            is_anchor_week=True,
        ),
        WeekTheme(
            week_number=2,
            theme="Last Week",
            theme_description=(
                "Expand into the recent past. Share stories about what happened, describe experiences, "
                "practice narrative flow."
            ),
            difficulty_min="A2",
            difficulty_max="A2",
        ),
        WeekTheme(
            week_number=3,
            theme="My Life",
            theme_description=(
                "Go deeper. Talk about your life, interests, relationships, and experiences. Express opinions "
                "and preferences."
            ),
            difficulty_min="A2",
            difficulty_max="B1",
        ),
        WeekTheme(
            week_number=4,
            theme="The Moment",
            theme_description=(
                "Practice for your goal. Rehearse the real conversations you want to have, integrate "
                "everything learned."
            ),
            difficulty_min="B1",
            difficulty_max="B1",
        ),
    ),
    week_one_seeds=(
        _seed(
            "seed-morning-routine",
            "Your morning routine",
            "Describe what you do in the morning",
            ("quick-checkin", "story-moment"),
            ("wake up", "breakfast", "morning", "usually"),
            ("present tense", "time words"),
        ),
        _seed(
            "seed-today-plans",
            "What are you doing today?",
            "Talk about your plans for today",
            ("quick-checkin",),
            ("today", "going to", "later", "evening"),
            ("future/present", "time expressions"),
        ),
        _seed(
            "seed-yesterday",
            "How was yesterday?",
            "Tell a short story about yesterday",
            ("story-moment", "question-game"),
            ("yesterday", "was", "did", "went"),
            ("past tense", "sequence words"),
        ),
        _seed(
            "seed-weekend",
            "Weekend activities",
            "Talk about what you do on weekends",
            ("story-moment", "question-game"),
            ("weekend", "Saturday", "Sunday", "relax"),
            ("present/past tense", "frequency words"),
        ),
    ),
)

_MEET_FAMILY = PathTemplate(
    template_id="meet-family",
    title="Meet the Family",
    weeks=(
        WeekTheme(
            week_number=1,
            theme="Introducing Myself",
            theme_description=(
                "The basics of talking about yourself. Name, work, hobbies, how you met your partner. "
                "Comfortable, low-pressure practice."
            ),
            difficulty_min="A1",
            difficulty_max="A2",
            is_anchor_week=True,
        ),
        WeekTheme(
            week_number=2,
            theme="Daily Life Stories",
            theme_description=(
                "Share stories about your days, weekends, and routines. Practice past tense naturally "
                "through storytelling."
            ),
            difficulty_min="A2",
            difficulty_max="A2",
        ),
        WeekTheme(
            week_number=3,
            theme="Opinions & Preferences",
            theme_description=(
                "Express what you like, what you think, gentle opinions. Food, places, activities. Build "
                "personality in the language."
            ),
            difficulty_min="A2",
            difficulty_max="B1",
        ),
        WeekTheme(
            week_number=4,
            theme="Family Dinner",
            theme_description=(
                "The big rehearsal. Practice common family dinner scenarios: questions from parents, small "
                "talk, telling stories."
            ),
            difficulty_min="B1",
            difficulty_max="B1",
        ),
    ),
    week_one_seeds=(
        _seed(
            "seed-introduce-yourself",
            "Introduce yourself",
            "Practice introducing yourself: name, where you're from, what you do",
            ("quick-checkin", "mini-roleplay"),
            ("name", "work", "live", "from"),
            ("present tense", "simple sentences"),
        ),
        _seed(
            "seed-how-you-met",
            "How you met your partner",
            "Tell the story of how you met - a common question from family",
            ("story-moment", "mini-roleplay"),
            ("meet", "first time", "together", "relationship"),
            ("past tense", "time expressions"),
        ),
        _seed(
            "seed-your-hobbies",
            "Your hobbies and interests",
            "Talk about what you like to do in your free time",
            ("quick-checkin", "question-game"),
            ("like", "enjoy", "free time", "weekend"),
            ("present tense", "likes/preferences"),
        ),
        _seed(
            "seed-your-work",
            "What you do for work",
            "Explain your job in simple terms",
            ("quick-checkin", "story-moment"),
            ("work", "job", "company", "every day"),
            ("present tense", "daily routines"),
        ),
        _seed(
            "seed-ask-about-them",
            "Ask about their life",
            "Practice asking questions about family members",
            ("question-game", "mini-roleplay"),
            ("how", "what", "where", "family"),
            ("question formation", "polite forms"),
        ),
    ),
)

_TEMPLATE_LIBRARY: Dict[str, PathTemplate] = {
    _DAILY_LIFE.template_id: _DAILY_LIFE,
    _MEET_FAMILY.template_id: _MEET_FAMILY,
}
_lock = RLock()


def get_template(template_id: str) -> PathTemplate:
    key = (template_id or "").strip().lower()
    with _lock:
        template = _TEMPLATE_LIBRARY.get(key)
    if template is None:
        raise NotFoundError(f"Path template '{template_id}' was not found.")
    return template


def list_templates() -> List[PathTemplate]:
    with _lock:
        return sorted(_TEMPLATE_LIBRARY.values(), key=lambda template: template.template_id)


def register_template(template: PathTemplate, *, replace: bool = False) -> PathTemplate:
    """Add a custom template. Week numbers must run contiguously from 1."""
    numbers = [week.week_number for week in template.weeks]
    if not numbers or numbers != list(range(1, len(numbers) + 1)):
        raise ValueError(f"Template '{template.template_id}' must number its weeks 1..N without gaps.")
    key = template.template_id.strip().lower()
    with _lock:
        if key in _TEMPLATE_LIBRARY and not replace:
            raise ValueError(f"Template '{template.template_id}' is already registered.")
        _TEMPLATE_LIBRARY[key] = template
    return template


def unregister_template(template_id: str) -> Optional[PathTemplate]:
    with _lock:
        return _TEMPLATE_LIBRARY.pop(template_id.strip().lower(), None)


__all__ = [
    "PathTemplate",
    "WeekTheme",
    "get_template",
    "list_templates",
    "register_template",
    "unregister_template",
]
