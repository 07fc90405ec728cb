from __future__ import annotations

from pathlib import Path
from typing import Iterator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from curriculum_engine.config import Settings, get_settings
from curriculum_engine.db.session import create_schema, dispose_engine
from curriculum_engine.services import reset_services
from curriculum_engine.telemetry import TelemetryEvent, clear_listeners, register_listener


@pytest.fixture
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Engine]:
    monkeypatch.setenv("CURRICULUM_DATABASE_URL", f"sqlite:///{tmp_path / 'curriculum.db'}")
    monkeypatch.setenv("CURRICULUM_ANALYSIS_DISPATCH", "off")
    monkeypatch.delenv("CURRICULUM_QUEUE_TRIGGER_SECRET", raising=False)
    monkeypatch.delenv("CURRICULUM_QUEUE_STALE_AFTER_SECONDS", raising=False)
    get_settings.cache_clear()
    reset_services()
    dispose_engine()
    engine = create_schema()
    try:
        yield engine
    finally:
        reset_services()
        dispose_engine()
        get_settings.cache_clear()


@pytest.fixture
def settings(database: Engine) -> Settings:
    return get_settings()


@pytest.fixture
def events() -> Iterator[List[TelemetryEvent]]:
    recorded: List[TelemetryEvent] = []
    register_listener(recorded.append)
    try:
        yield recorded
    finally:
        clear_listeners()


@pytest.fixture
def client(database: Engine) -> Iterator[TestClient]:
    from curriculum_engine.main import app

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
