"""Scheduled trigger for the scenario generation queue.

Cron or an operator runs this; overlapping runs are fine because claims are
atomic in the store.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from curriculum_engine.logging_config import configure_logging
from curriculum_engine.queue_processor import QueueProcessor
from curriculum_engine.scenario_queue import scenario_queue
from curriculum_engine.weekly_analysis import WeeklyAnalysisEngine

LOGGER = logging.getLogger("curriculum.process_queue")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process a batch of pending scenario generation jobs.")
    parser.add_argument("--limit", type=int, default=None, help="Jobs to claim (default: CURRICULUM_QUEUE_DEFAULT_BATCH).")
    parser.add_argument("--dry-run", action="store_true", help="Run generation without changing job status.")
    parser.add_argument(
        "--sweep-analyses",
        type=int,
        default=0,
        metavar="N",
        help="Also analyse up to N completed weeks that are missing an analysis.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)
    processor = QueueProcessor(scenario_queue)
    try:
        output = {}
        if args.sweep_analyses > 0 and not args.dry_run:
            sweep = WeeklyAnalysisEngine().analyze_pending(args.sweep_analyses)
            output["analysis"] = sweep.model_dump(mode="json")
        result = processor.process_batch(args.limit, dry_run=args.dry_run)
        output["result"] = result.model_dump(mode="json")
        output["stats"] = scenario_queue.get_stats().model_dump(mode="json")
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Queue run failed: %s", exc)
        return 1
    print(json.dumps(output))
    return 0


if __name__ == "__main__":
    sys.exit(main())
