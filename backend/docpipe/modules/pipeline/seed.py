"""
Default pipeline configuration seed data.

Model capabilities for the two provider dialects, the four step agents,
their initial prompt versions and bindings for the requested environments.

Safe to run multiple times: existing rows (by natural key) are left untouched.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.modules.pipeline.models import (
    AgentDefinition,
    ModelConfiguration,
    PromptBinding,
    PromptVersion,
)

logger = structlog.get_logger()

GATEWAY_CHAT_ENDPOINT = "https://ai.gateway.lovable.dev/v1/chat/completions"
OPENAI_CHAT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
OPENAI_RESPONSES_ENDPOINT = "https://api.openai.com/v1/responses"

_OPENAI_EFFORTS = ["minimal", "low", "medium", "high"]


# ── Model capabilities ──

MODEL_CONFIGURATIONS: list[dict] = [
    {
        "model_family_code": "gemini-2.5-flash",
        "api_endpoint": GATEWAY_CHAT_ENDPOINT,
        "api_version": "chat_completions",
        "supports_temperature": True,
        "temperature_default": 0.7,
        "supports_seed": False,
        "reasoning_effort_levels": None,
        "max_output_tokens_param": "max_tokens",
    },
    {
        "model_family_code": "gemini-2.5-pro",
        "api_endpoint": GATEWAY_CHAT_ENDPOINT,
        "api_version": "chat_completions",
        "supports_temperature": True,
        "temperature_default": 0.7,
        "supports_seed": True,
        "reasoning_effort_levels": None,
        "max_output_tokens_param": "max_tokens",
    },
    {
        "model_family_code": "gpt-5",
        "api_endpoint": OPENAI_RESPONSES_ENDPOINT,
        "api_version": "responses",
        "supports_temperature": False,
        "supports_seed": False,
        "reasoning_effort_levels": _OPENAI_EFFORTS,
        "max_output_tokens_param": "max_output_tokens",
    },
    {
        "model_family_code": "gpt-5-mini",
        "api_endpoint": OPENAI_CHAT_ENDPOINT,
        "api_version": "chat_completions",
        "supports_temperature": False,
        "supports_seed": True,
        "reasoning_effort_levels": _OPENAI_EFFORTS,
        "max_output_tokens_param": "max_completion_tokens",
    },
    {
        "model_family_code": "gpt-5-nano",
        "api_endpoint": OPENAI_CHAT_ENDPOINT,
        "api_version": "chat_completions",
        "supports_temperature": False,
        "supports_seed": True,
        "reasoning_effort_levels": _OPENAI_EFFORTS,
        "max_output_tokens_param": "max_completion_tokens",
    },
    {
        "model_family_code": "o3-mini",
        "api_endpoint": OPENAI_CHAT_ENDPOINT,
        "api_version": "chat_completions",
        "supports_temperature": False,
        "supports_seed": True,
        "reasoning_effort_levels": ["low", "medium", "high"],
        "max_output_tokens_param": "max_completion_tokens",
    },
]


# ── Agents ──

AGENTS: list[dict] = [
    {
        "name": "extractor",
        "preferred_model_family": "google/gemini-2.5-flash",
        "fallback_model_family": "google/gemini-2.5-pro",
        "reasoning_effort": None,
        "max_tokens": 8000,
    },
    {
        "name": "resolver",
        "preferred_model_family": "google/gemini-2.5-flash",
        "fallback_model_family": "google/gemini-2.5-pro",
        "reasoning_effort": None,
        "max_tokens": 8000,
    },
    {
        "name": "critic",
        "preferred_model_family": "gpt-5-mini",
        "fallback_model_family": "gpt-5-nano",
        "reasoning_effort": "low",
        "max_tokens": 4000,
    },
    {
        "name": "arbiter",
        "preferred_model_family": "gpt-5",
        "fallback_model_family": "gpt-5-mini",
        "reasoning_effort": "medium",
        "max_tokens": 4000,
    },
]


# ── Prompts (v1.0.0) ──

PROMPTS: dict[str, str] = {
    "extractor": (
        "You are an expert at extracting structured company intelligence from documents.\n\n"
        "CRITICAL: You MUST use the extract_entities function to return your response. "
        "Do NOT provide a text response.\n\n"
        "Extract:\n"
        "1. Entity mentions (companies, people, products, locations, events)\n"
        "2. Relationships (CEO, parent company, subsidiary)\n"
        "3. Facts with evidence, character spans and confidence scores (0.0-1.0)"
    ),
    "resolver": (
        "You are a data normalization agent. Normalize entities and facts to canonical "
        "forms. For each entity provide original_name, canonical_name and entity_type. For "
        "each fact provide original_statement, normalized_statement and confidence_numeric "
        "(0-1). Always use the normalize_data function."
    ),
    "critic": (
        "You are a data quality critic. Validate the facts for contradictions (same subject "
        "and predicate with conflicting objects), missing citations and schema errors. "
        "Reference facts by their fact_id. Set is_valid to false only for contradictions or "
        "schema errors that make the facts unusable. Always use the validate_facts function."
    ),
    "arbiter": (
        "You are a policy arbiter. Decide whether the facts may be published: BLOCK if they "
        "contain personal data (SSN, credit card, phone, email, medical record), WARN if "
        "citations are missing or confidence is low, otherwise ALLOW. Give reasons and any "
        "required disclosures. Always use the apply_policies function."
    ),
}

PROMPT_SEMVER = "1.0.0"

# Bindings start at a fixed point in the past so they are active immediately
BINDINGS_EFFECTIVE_FROM = datetime(2025, 1, 1, tzinfo=timezone.utc)


async def seed_pipeline_config(
    db: AsyncSession,
    environments: Iterable[str] = ("dev",),
) -> dict[str, int]:
    """Insert default capabilities, agents, prompts and bindings. Returns inserted counts."""
    counts = {"model_configurations": 0, "agents": 0, "prompt_versions": 0, "bindings": 0}

    existing_families = set(
        (await db.execute(select(ModelConfiguration.model_family_code))).scalars().all()
    )
    for row in MODEL_CONFIGURATIONS:
        if row["model_family_code"] not in existing_families:
            db.add(ModelConfiguration(**row))
            counts["model_configurations"] += 1

    agents_by_name = {
        a.name: a for a in (await db.execute(select(AgentDefinition))).scalars().all()
    }
    for row in AGENTS:
        if row["name"] not in agents_by_name:
            agent = AgentDefinition(**row)
            db.add(agent)
            agents_by_name[row["name"]] = agent
            counts["agents"] += 1
    await db.flush()

    for name, content in PROMPTS.items():
        agent = agents_by_name[name]
        existing = (
            await db.execute(
                select(PromptBinding.environment).where(PromptBinding.agent_id == agent.agent_id)
            )
        ).scalars().all()
        missing_envs = [env for env in environments if env not in set(existing)]
        if not missing_envs:
            continue

        version = PromptVersion(semver=PROMPT_SEMVER, content_text=content)
        db.add(version)
        await db.flush()
        counts["prompt_versions"] += 1

        for env in missing_envs:
            db.add(
                PromptBinding(
                    agent_id=agent.agent_id,
                    environment=env,
                    prompt_version=version,
                    traffic_weight=100,
                    effective_from=BINDINGS_EFFECTIVE_FROM,
                )
            )
            counts["bindings"] += 1

    await db.flush()
    logger.info("Pipeline configuration seeded", **counts)
    return counts
