"""Print a one-off JSON snapshot of scenario queue counts and database pool state."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from sqlalchemy import text

from curriculum_engine.db.monitoring import get_pool_snapshot
from curriculum_engine.db.session import get_engine
from curriculum_engine.scenario_queue import scenario_queue

LOGGER = logging.getLogger("curriculum.queue_metrics")


def collect() -> dict:
    engine = get_engine()
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": scenario_queue.get_stats().model_dump(),
        "pool": get_pool_snapshot(engine),
    }


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        payload = collect()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to collect queue metrics: %s", exc)
        return 1
    print(json.dumps(payload))
    return 0


if __name__ == "__main__":
    sys.exit(main())
