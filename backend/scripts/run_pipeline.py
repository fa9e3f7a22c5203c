#!/usr/bin/env python3
"""Batch pipeline runner.

Runs every text document in a directory (or the given files) through
extract -> normalize -> validate -> arbitrate and writes a JSON summary.

Usage:
    # All .txt / .md files in a directory
    python -m scripts.run_pipeline --input-dir ./documents

    # Specific files, staging bindings
    python -m scripts.run_pipeline doc1.txt doc2.txt --environment staging

    # Limit to N documents
    python -m scripts.run_pipeline --input-dir ./documents --limit 5

    # Dry run (list documents only)
    python -m scripts.run_pipeline --input-dir ./documents --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Any

# Add backend to path for imports
_backend = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_backend))

# Load .env before importing docpipe modules
from dotenv import load_dotenv
load_dotenv(_backend / ".env")

import httpx
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
from docpipe.core.errors import PipelineError
from docpipe.modules.pipeline.agents.orchestrator import PipelineOrchestrator
from docpipe.modules.pipeline.gateway.adapter import AIInvocationAdapter
from docpipe.modules.pipeline.gateway.capabilities import CapabilityRegistry

logger = structlog.get_logger()

DEFAULT_OUTPUT_DIR = _backend / "output" / "pipeline_runs"
_SUFFIXES = {".txt", ".md"}


def discover_documents(input_dir: Path | None, files: list[Path]) -> list[Path]:
    docs = list(files)
    if input_dir is not None:
        docs.extend(sorted(p for p in input_dir.rglob("*") if p.suffix.lower() in _SUFFIXES))
    return docs


async def run_batch(
    documents: list[Path],
    environment: str,
    output_dir: Path,
) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []

    async with httpx.AsyncClient(timeout=settings.ai_timeout_seconds) as client:
        async with async_session_factory() as db:
            registry = await CapabilityRegistry.load(db)
        adapter = AIInvocationAdapter(registry, client=client)

        for i, path in enumerate(documents, 1):
            text = path.read_text(encoding="utf-8")
            entry: dict[str, Any] = {"file": str(path), "chars": len(text)}

            if not settings.document_min_chars <= len(text) <= settings.document_max_chars:
                logger.warning("Document skipped: length out of range", file=path.name, chars=len(text))
                entry.update(status="skipped", error="document length out of range")
                results.append(entry)
                continue

            logger.info(f"[{i}/{len(documents)}] Running pipeline", file=path.name)
            # One session per document
            async with async_session_factory() as db:
                orchestrator = PipelineOrchestrator(db, adapter)
                try:
                    outcome = await orchestrator.run(
                        text, environment=environment, document_id=str(uuid.uuid4())
                    )
                except PipelineError as e:
                    logger.error("Pipeline failed", file=path.name, error=str(e))
                    entry.update(status="error", error=str(e))
                    results.append(entry)
                    continue

            entry.update(
                run_id=str(outcome.run_id),
                status=outcome.status,
                error=outcome.error_message,
                metrics=outcome.metrics,
            )
            results.append(entry)

    output_dir.mkdir(parents=True, exist_ok=True)
    out_file = output_dir / "summary.json"
    out_file.write_text(json.dumps(results, indent=2, default=str), encoding="utf-8")
    logger.info("Summary written", path=str(out_file))
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the document pipeline over text files")
    parser.add_argument("files", nargs="*", type=Path, help="Documents to process")
    parser.add_argument("--input-dir", type=Path, default=None,
                        help="Directory scanned recursively for .txt / .md files")
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR,
                        help="Where summary.json is written")
    parser.add_argument("--environment", default=settings.default_environment,
                        help="Binding environment (dev|staging|prod)")
    parser.add_argument("--limit", type=int, default=0, help="Process at most N documents")
    parser.add_argument("--dry-run", action="store_true", help="List documents only")
    args = parser.parse_args()

    documents = discover_documents(args.input_dir, args.files)
    if args.limit:
        documents = documents[: args.limit]

    print(f"\n{'='*60}")
    print("  DOCUMENT PIPELINE")
    print(f"{'='*60}")
    print(f"  Documents:     {len(documents)}")
    print(f"  Environment:   {args.environment}")
    print(f"  Output dir:    {args.output_dir}")
    print(f"{'='*60}\n")

    if not documents:
        print("No documents found.")
        return

    if args.dry_run:
        print("--- DRY RUN ---")
        for doc in documents:
            print(f"  {doc}")
        return

    results = asyncio.run(run_batch(documents, args.environment, args.output_dir))

    ok = sum(1 for r in results if r["status"] == "success")
    cost = sum((r.get("metrics") or {}).get("cost_usd", 0.0) for r in results)
    print(f"\n{'='*60}")
    print("  PIPELINE SUMMARY")
    print(f"{'='*60}")
    print(f"  Succeeded:     {ok}/{len(results)}")
    print(f"  Est. cost:     ${cost:.4f}")
    print(f"{'='*60}\n")


if __name__ == "__main__":
    main()
