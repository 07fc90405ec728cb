"""Apply the curriculum schema with Alembic once the database answers a readiness probe.

Deploys run this before the API starts so the scenario queue tables exist
before the first trigger fires. ``--check`` only reports pending revisions.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("curriculum.migrations")
DEFAULT_TIMEOUT = int(os.getenv("CURRICULUM_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("CURRICULUM_DB_MIGRATION_POLL_INTERVAL", "3"))
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_ROOT = SCRIPT_DIR.parent
URL_PLACEHOLDER = "%(CURRICULUM_DATABASE_URL)s"
REQUIRED_TABLES = (
    "path_assignments",
    "adaptive_weeks",
    "week_progress",
    "session_records",
    "weekly_analyses",
    "scenario_generation_jobs",
    "persistence_audit_events",
)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the curriculum database schema.")
    parser.add_argument(
        "--revision",
        default=os.getenv("CURRICULUM_DB_MIGRATION_REVISION", "head"),
        help="Alembic revision to upgrade to (default: head).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the database (default: {DEFAULT_TIMEOUT}).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between readiness probes (default: {DEFAULT_POLL_INTERVAL}).",
    )
    parser.add_argument(
        "--config",
        default=str(BACKEND_ROOT / "alembic.ini"),
        help="Path to alembic.ini.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Report pending revisions and exit 1 if any, without upgrading.",
    )
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url and url != URL_PLACEHOLDER:
        return url
    env_url = os.getenv("CURRICULUM_DATABASE_URL")
    if not env_url:
        raise RuntimeError("CURRICULUM_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    """Retry ``SELECT 1`` until it succeeds; give up after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None

    try:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
        while time.monotonic() < deadline:
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database is reachable.")
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError("Database did not become ready in time.") from last_error


def pending_revisions(config: Config, database_url: str) -> List[str]:
    """Revisions between the database's current head and the script head, oldest first."""
    script = ScriptDirectory.from_config(config)
    engine = create_engine(database_url, future=True)
    try:
        with engine.connect() as connection:
            current = MigrationContext.configure(connection).get_current_heads()
    finally:
        engine.dispose()
    lower = current[0] if current else None
    revisions = [revision.revision for revision in script.iterate_revisions("heads", lower)]
    return list(reversed(revisions))


def verify_schema(database_url: str) -> None:
    engine = create_engine(database_url, future=True)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    missing = [name for name in REQUIRED_TABLES if name not in tables]
    if missing:
        raise RuntimeError(f"Curriculum schema is missing tables: {', '.join(missing)}")


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    LOGGER.info("Upgrading curriculum schema to %s (timeout=%ss poll=%ss)", revision, timeout, poll_interval)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    if revision == "head":
        verify_schema(database_url)
    LOGGER.info("Curriculum schema is at %s.", revision)


def check_migrations(*, timeout: int, poll_interval: float, config: Config) -> int:
    database_url = resolve_database_url(config)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    pending = pending_revisions(config, database_url)
    if pending:
        LOGGER.warning("Pending curriculum migrations: %s", ", ".join(pending))
        return 1
    LOGGER.info("Curriculum schema is up to date.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("CURRICULUM_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        config = get_alembic_config(args.config)
        if args.check:
            return check_migrations(timeout=args.timeout, poll_interval=args.poll_interval, config=config)
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=config,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
