#!/usr/bin/env python3
"""Time out runs stuck in 'running'.

Meant for a cron job; a run left open by a crashed or cancelled worker is
moved to 'timeout' once it is older than the threshold.

Usage:
    python -m scripts.cleanup_stale_runs
    python -m scripts.cleanup_stale_runs --minutes 30
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

_backend = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_backend))

from dotenv import load_dotenv
load_dotenv(_backend / ".env")

import structlog

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

from docpipe.core.config import settings
from docpipe.core.database import async_session_factory
from docpipe.modules.pipeline.run_tracker import RunTracker

logger = structlog.get_logger()


async def cleanup(minutes: int) -> int:
    async with async_session_factory() as db:
        run_ids = await RunTracker(db).mark_stale_runs(older_than=timedelta(minutes=minutes))
        await db.commit()
    logger.info("cleanup_complete", timed_out=len(run_ids), threshold_minutes=minutes)
    return len(run_ids)


def main() -> None:
    parser = argparse.ArgumentParser(description="Time out stale pipeline runs")
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.stale_run_minutes,
        help="Age after which a running run is considered stale",
    )
    args = parser.parse_args()

    asyncio.run(cleanup(args.minutes))


if __name__ == "__main__":
    main()
