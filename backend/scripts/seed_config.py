#!/usr/bin/env python3
"""Seed default model capabilities, agents, prompts and bindings.

Usage:
    python -m scripts.seed_config
    python -m scripts.seed_config --environment dev --environment staging
"""
from __future__ import annotations

import argparse
import asyncio
import sys
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

from docpipe.core.database import async_session_factory
from docpipe.modules.pipeline.seed import seed_pipeline_config

logger = structlog.get_logger()


async def seed(environments: list[str]) -> None:
    async with async_session_factory() as db:
        try:
            counts = await seed_pipeline_config(db, environments)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error("seed_failed", exc_info=True)
            raise
    logger.info("seed_complete", environments=environments, **counts)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed pipeline configuration")
    parser.add_argument(
        "--environment",
        action="append",
        dest="environments",
        help="Environment to create bindings for (repeatable, default: dev)",
    )
    args = parser.parse_args()

    asyncio.run(seed(args.environments or ["dev"]))


if __name__ == "__main__":
    main()
