"""Token usage & cost estimation per model family for one pipeline run.

Usage:
    tracker = UsageTracker()
    tracker.record("extractor", "google/gemini-2.5-flash", tokens_in=5000, tokens_out=800,
                   latency_ms=2300)
    run.metrics = tracker.summary()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from docpipe.modules.pipeline.gateway.capabilities import family_code

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Pricing per 1M tokens (USD): (input, output)
# ---------------------------------------------------------------------------

_PRICING: dict[str, tuple[float, float]] = {
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-flash-lite": (0.10, 0.40),
    "gemini-2.5-pro": (1.25, 10.00),
    "gpt-5": (1.25, 10.00),
    "gpt-5-mini": (0.25, 2.00),
    "gpt-5-nano": (0.05, 0.40),
    "o3-mini": (1.10, 4.40),
}

# Conservative estimate for families without a price entry
_FALLBACK_PRICING = (1.25, 10.00)


def _get_pricing(model_family: str) -> tuple[float, float]:
    """Look up pricing for a family, longest partial match first."""
    model = family_code(model_family)
    if model in _PRICING:
        return _PRICING[model]
    for key in sorted(_PRICING, key=len, reverse=True):
        if key in model:
            return _PRICING[key]
    logger.warning("Unknown model pricing, using fallback", model_family=model_family)
    return _FALLBACK_PRICING


@dataclass
class UsageRecord:
    """Token usage for a single step invocation."""

    node_id: str
    model_family: str
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    cost_usd: float = 0.0

    def compute_cost(self) -> None:
        input_price, output_price = _get_pricing(self.model_family)
        self.cost_usd = (
            (self.tokens_in / 1_000_000) * input_price
            + (self.tokens_out / 1_000_000) * output_price
        )


class UsageTracker:
    """Aggregates token usage, latency and cost across the steps of a run."""

    def __init__(self) -> None:
        self.records: list[UsageRecord] = []

    def record(
        self,
        node_id: str,
        model_family: str,
        *,
        tokens_in: int = 0,
        tokens_out: int = 0,
        latency_ms: int = 0,
    ) -> UsageRecord:
        rec = UsageRecord(
            node_id=node_id,
            model_family=model_family,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            latency_ms=latency_ms,
        )
        rec.compute_cost()
        self.records.append(rec)

        logger.info(
            "Usage tracked",
            node_id=node_id,
            model_family=model_family,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=f"${rec.cost_usd:.4f}",
        )
        return rec

    def summary(self) -> dict[str, Any]:
        by_family: dict[str, dict[str, Any]] = {}
        for rec in self.records:
            s = by_family.setdefault(
                rec.model_family,
                {"calls": 0, "tokens_in": 0, "tokens_out": 0, "cost_usd": 0.0},
            )
            s["calls"] += 1
            s["tokens_in"] += rec.tokens_in
            s["tokens_out"] += rec.tokens_out
            s["cost_usd"] += rec.cost_usd

        for s in by_family.values():
            s["cost_usd"] = round(s["cost_usd"], 6)

        return {
            "agent_calls": len(self.records),
            "tokens_in": sum(r.tokens_in for r in self.records),
            "tokens_out": sum(r.tokens_out for r in self.records),
            "ai_latency_ms": sum(r.latency_ms for r in self.records),
            "cost_usd": round(sum(r.cost_usd for r in self.records), 6),
            "model_families": by_family,
        }
