"""Engine and session helpers for the curriculum store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from .base import Base
from .monitoring import forget_engine, instrument_engine

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


def _build_engine(settings: Settings) -> Engine:
    database_url = settings.database_url
    if not database_url:
        raise RuntimeError("CURRICULUM_DATABASE_URL must be configured before using the database.")

    kwargs: dict[str, object] = {
        "echo": settings.database_echo,
        "future": True,
        "pool_pre_ping": True,
    }

    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # Concurrent writers queue on the file lock instead of failing fast.
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow

    engine = create_engine(database_url, **kwargs)
    if is_sqlite:
        _enable_sqlite_foreign_keys(engine)
    return engine


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        _engine = _build_engine(get_settings())
        instrument_engine(_engine)
        _session_factory = sessionmaker(
            bind=_engine,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


@contextmanager
def session_scope(*, commit: bool = True) -> Generator[Session, None, None]:
    """One unit of work: commit on success, roll back on any error, always close."""
    session = get_session_factory()()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Optional[Engine] = None) -> Engine:
    """Create every curriculum table directly from the ORM metadata (tests and local runs)."""
    from . import models  # noqa: F401

    target = engine or get_engine()
    Base.metadata.create_all(target)
    return target


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        forget_engine(_engine)
        _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "SQLITE_BUSY_TIMEOUT_SECONDS",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
