"""Connection pool instrumentation for the curriculum store."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event


@dataclass
class PoolTelemetryState:
    engine: Any = None
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    invalidations: int = 0
    last_emit: float = 0.0

    @property
    def in_use(self) -> int:
        return max(self.checkouts - self.checkins, 0)


# Keyed by id(); the state keeps the engine alive so an id is never reused while tracked.
_STATE_BY_ENGINE: Dict[int, PoolTelemetryState] = {}
_TELEMETRY_INTERVAL = float(os.getenv("CURRICULUM_DB_TELEMETRY_INTERVAL", "30"))


def instrument_engine(engine: Engine) -> None:
    """Attach pool listeners that emit throttled ``db_pool_status`` events."""
    key = id(engine)
    if key in _STATE_BY_ENGINE:
        return

    state = PoolTelemetryState(engine=engine)
    _STATE_BY_ENGINE[key] = state

    def snapshot(trigger: str, *, force: bool = False) -> None:
        now = time.time()
        if not force and _TELEMETRY_INTERVAL > 0 and (now - state.last_emit) < _TELEMETRY_INTERVAL:
            return
        state.last_emit = now
        emit_event("db_pool_status", trigger=trigger, **_counters(engine, state))

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.connects += 1
        snapshot("connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        state.checkouts += 1
        snapshot("checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.checkins += 1
        snapshot("checkin")

    @event.listens_for(engine, "invalidate")
    def _on_invalidate(dbapi_connection, connection_record, exception) -> None:  # type: ignore[no-untyped-def]
        state.invalidations += 1
        snapshot("invalidate", force=True)


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    """Return pool counters and status for ``engine``; zeros when it was never instrumented."""
    state = _STATE_BY_ENGINE.get(id(engine))
    if state is None or state.engine is not engine:
        state = PoolTelemetryState()
    return _counters(engine, state)


def forget_engine(engine: Engine) -> None:
    state = _STATE_BY_ENGINE.get(id(engine))
    if state is not None and state.engine is engine:
        del _STATE_BY_ENGINE[id(engine)]


def _counters(engine: Engine, state: PoolTelemetryState) -> Dict[str, object]:
    return {
        "status": _safe_pool_status(engine),
        "connects": state.connects,
        "checkouts": state.checkouts,
        "checkins": state.checkins,
        "in_use": state.in_use,
        "invalidations": state.invalidations,
    }


def _safe_pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover
        return f"unavailable: {exc}"


__all__ = [
    "PoolTelemetryState",
    "forget_engine",
    "get_pool_snapshot",
    "instrument_engine",
]
