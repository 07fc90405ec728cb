"""In-process telemetry fan-out for assignment, session, analysis and queue events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger("curriculum.telemetry")

CURRICULUM_EVENTS: FrozenSet[str] = frozenset(
    {
        "assignment_created",
        "session_started",
        "session_completed",
        "week_completed",
        "weekly_analysis_completed",
        "weekly_analysis_failed",
        "analysis_dispatch_failed",
        "queue_batch_processed",
        "queue_jobs_reclaimed",
        "scenario_job_ready",
        "scenario_job_retry",
        "scenario_job_failed",
        "db_pool_status",
    }
)
FAILURE_EVENTS: FrozenSet[str] = frozenset(
    {"weekly_analysis_failed", "analysis_dispatch_failed", "scenario_job_failed"}
)


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_failure(self) -> bool:
        return self.name in FAILURE_EVENTS


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []
_lock = RLock()


def register_listener(listener: Listener, *, events: Optional[Iterable[str]] = None) -> None:
    """Subscribe ``listener`` to every event, or only to the names in ``events``."""
    names = frozenset(events) if events is not None else None
    unknown = sorted(names - CURRICULUM_EVENTS) if names else []
    if unknown:
        logger.warning("Telemetry listener subscribed to unknown events: %s", ", ".join(unknown))
    with _lock:
        _listeners.append((listener, names))


def unregister_listener(listener: Listener) -> None:
    with _lock:
        _listeners[:] = [entry for entry in _listeners if entry[0] != listener]


def clear_listeners() -> None:
    """Remove all registered listeners. Mainly used to reset test state."""
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> None:
    """Emit a structured telemetry event and fan it out to the listeners subscribed to it."""
    event = TelemetryEvent(name=name, payload=_sanitize(fields))

    with _lock:
        listeners = [listener for listener, names in _listeners if names is None or name in names]

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, **event.payload}
    level = logging.WARNING if event.is_failure else logging.INFO
    logger.log(level, "TELEMETRY %s", json.dumps(structured, default=_json_default))


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        else:
            sanitized[key] = value
    return sanitized


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


__all__ = [
    "CURRICULUM_EVENTS",
    "FAILURE_EVENTS",
    "Listener",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
