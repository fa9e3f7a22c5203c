"""Prompt binding resolution.

A binding is active for (agent, environment) at `now` when its window
contains `now` and its traffic_weight is positive. Among active bindings
the winner is the one with the highest (effective_from, traffic_weight,
binding_id), which is a total order, so resolution is deterministic.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.database import as_utc
from docpipe.core.errors import NoActiveBinding
from docpipe.modules.pipeline.models import AgentDefinition, PromptBinding

logger = structlog.get_logger()


def is_active(binding: PromptBinding, now: datetime) -> bool:
    if binding.traffic_weight <= 0:
        return False
    if as_utc(binding.effective_from) > now:
        return False
    if binding.effective_to is not None and as_utc(binding.effective_to) < now:
        return False
    return True


def _rank(binding: PromptBinding) -> tuple[datetime, int, str]:
    return (as_utc(binding.effective_from), binding.traffic_weight, str(binding.binding_id))


def select_active_binding(
    bindings: Iterable[PromptBinding],
    now: datetime,
    *,
    agent: str = "",
    environment: str = "",
) -> PromptBinding:
    now = as_utc(now)
    candidates = [b for b in bindings if is_active(b, now)]
    if not candidates:
        raise NoActiveBinding(agent, environment)
    return max(candidates, key=_rank)


class BindingResolver:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def resolve(
        self,
        agent: AgentDefinition,
        environment: str,
        now: datetime,
    ) -> PromptBinding:
        result = await self.db.execute(
            select(PromptBinding).where(
                PromptBinding.agent_id == agent.agent_id,
                PromptBinding.environment == environment,
            )
        )
        binding = select_active_binding(
            result.scalars().all(), now, agent=agent.name, environment=environment
        )
        logger.info(
            "Prompt binding resolved",
            agent=agent.name,
            environment=environment,
            binding_id=str(binding.binding_id),
            prompt_version=binding.prompt_version.semver,
        )
        return binding


class RunBindingSnapshot:
    """Caches the binding resolved for each agent for the lifetime of one run."""

    def __init__(self, resolver: BindingResolver, environment: str) -> None:
        self.resolver = resolver
        self.environment = environment
        self._cache: dict[uuid.UUID, PromptBinding] = {}

    async def get(self, agent: AgentDefinition, now: datetime) -> PromptBinding:
        if agent.agent_id not in self._cache:
            self._cache[agent.agent_id] = await self.resolver.resolve(agent, self.environment, now)
        return self._cache[agent.agent_id]
