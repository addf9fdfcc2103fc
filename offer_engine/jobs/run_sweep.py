"""Run one offer sweep. Meant to be called once a day by cron or a scheduler.

Example:
  - offer-sweep
  - python -m offer_engine.jobs.run_sweep --now 2026-03-01T09:00:00+01:00 --json
Exit status:
  - 0 when the sweep finished, 1 when it was aborted (store unavailable),
    so the trigger can reschedule.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from offer_engine.config import get_settings
from offer_engine.core.offer_fsm import ensure_utc
from offer_engine.db.database import get_engine, get_session_factory
from offer_engine.db.offer_store import SqlOfferStore
from offer_engine.notify.notifier import build_notifier
from offer_engine.sweep.orchestrator import SweepOrchestrator, SweepReport

logger = logging.getLogger(__name__)


def parse_now(value: Optional[str]) -> datetime:
    """ISO-8601 timestamp; naive values are taken as UTC. None means wall clock."""
    return ensure_utc(datetime.fromisoformat(value) if value else None)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the daily offer follow-up sweep")
    parser.add_argument("--now", help="Treat this ISO-8601 timestamp as the current time")
    parser.add_argument("--json", action="store_true", help="Print the sweep report as JSON")
    return parser.parse_args(argv)


async def run(now: datetime) -> SweepReport:
    settings = get_settings()
    session_factory = get_session_factory()
    orchestrator = SweepOrchestrator(
        SqlOfferStore(session_factory),
        build_notifier(settings, session_factory),
        settings,
    )
    try:
        return await orchestrator.run_sweep(now)
    finally:
        await get_engine().dispose()


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    report = asyncio.run(run(parse_now(args.now)))

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))

    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
