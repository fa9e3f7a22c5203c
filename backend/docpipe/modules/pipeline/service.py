"""Pipeline service: agent lookup and downstream persistence of entities & facts."""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.errors import AgentNotFound
from docpipe.modules.pipeline.models import AgentDefinition, Entity, Fact

logger = structlog.get_logger()

FACT_APPROVED = "approved"
FACT_FLAGGED = "flagged"

_DEFAULT_CONFIDENCE = 0.8


async def get_agent_by_name(db: AsyncSession, name: str) -> AgentDefinition:
    result = await db.execute(select(AgentDefinition).where(AgentDefinition.name == name))
    agent = result.scalar_one_or_none()
    if agent is None:
        raise AgentNotFound(name)
    return agent


async def store_entities(
    db: AsyncSession,
    run_id: uuid.UUID,
    normalized_entities: list[dict[str, Any]],
    *,
    document_id: str | None = None,
) -> int:
    """Persist the resolver's normalized entities. Returns the number stored."""
    for e in normalized_entities:
        original = e["original_name"]
        canonical = e.get("canonical_name") or original
        derived = e.get("derived") or {}
        db.add(
            Entity(
                run_id=run_id,
                legal_name=canonical,
                entity_type=e["entity_type"],
                trading_names=[original] if original != canonical else [],
                identifiers=derived.get("identifiers") or {},
                website=derived.get("website"),
                metadata_={
                    "source": "pipeline",
                    "document_id": document_id,
                    "run_id": str(run_id),
                    "original_name": original,
                    "addresses": derived.get("addresses") or [],
                    "relationships": derived.get("relationships") or [],
                },
            )
        )
    await db.flush()

    logger.info("Entities stored", run_id=str(run_id), count=len(normalized_entities))
    return len(normalized_entities)


def fact_triple(fact: dict[str, Any]) -> tuple[str, str, str]:
    """subject / predicate / object for a normalized fact.

    Facts without a derived triple fall back to (first word, "states", statement).
    """
    triple = (fact.get("derived") or {}).get("triple")
    if triple:
        return triple["subject"], triple["predicate"], triple["object"]
    statement = fact.get("normalized_statement") or fact["original_statement"]
    return statement.split(" ", 1)[0], "states", statement


async def store_facts(
    db: AsyncSession,
    run_id: uuid.UUID,
    normalized_facts: list[dict[str, Any]],
    *,
    status: str,
    document_id: str | None = None,
    decision: str | None = None,
) -> int:
    """Persist facts that passed arbitration. Returns the number stored."""
    for f in normalized_facts:
        subject, predicate, obj = fact_triple(f)
        derived = f.get("derived") or {}
        evidence = derived.get("evidence") or {}
        confidence = f.get("confidence_numeric")
        if confidence is None:
            confidence = derived.get("confidence")
        db.add(
            Fact(
                run_id=run_id,
                subject=subject,
                predicate=predicate,
                object=obj,
                evidence_text=evidence.get("text") or f["original_statement"],
                evidence_doc_id=document_id,
                confidence=confidence if confidence is not None else _DEFAULT_CONFIDENCE,
                status=status,
                metadata_={
                    "source": "pipeline",
                    "run_id": str(run_id),
                    "normalized_by": "resolver",
                    "arbiter_decision": decision,
                    "evidence_span": evidence.get("span"),
                },
            )
        )
    await db.flush()

    logger.info("Facts stored", run_id=str(run_id), count=len(normalized_facts), status=status)
    return len(normalized_facts)
