"""Model capability registry.

Maps a model family id to the API dialect it speaks and the controls it
accepts. Loaded once per deployment and read-only afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.errors import UnknownModelFamily
from docpipe.modules.pipeline.models import ModelConfiguration

logger = structlog.get_logger()


class ApiDialect(str, Enum):
    RESPONSES = "responses"
    CHAT_COMPLETIONS = "chat_completions"


def family_code(family_id: str) -> str:
    """'openai/gpt-5-mini' -> 'gpt-5-mini'."""
    return family_id.split("/", 1)[-1]


@dataclass(frozen=True)
class ModelCapability:
    family_id: str
    api_dialect: ApiDialect
    endpoint: str
    supports_temperature: bool = False
    supports_seed: bool = False
    reasoning_effort_levels: tuple[str, ...] = ()
    max_tokens_param_name: str = "max_tokens"
    temperature_default: float | None = None

    def supports_reasoning_effort(self, level: str | None) -> bool:
        return bool(level) and level in self.reasoning_effort_levels

    @classmethod
    def from_row(cls, row: ModelConfiguration) -> ModelCapability:
        return cls(
            family_id=row.model_family_code,
            api_dialect=ApiDialect(row.api_version),
            endpoint=row.api_endpoint,
            supports_temperature=row.supports_temperature,
            supports_seed=row.supports_seed,
            reasoning_effort_levels=tuple(row.reasoning_effort_levels or ()),
            max_tokens_param_name=row.max_output_tokens_param,
            temperature_default=row.temperature_default,
        )


class CapabilityRegistry:
    """Immutable family_id -> ModelCapability lookup."""

    def __init__(self, capabilities: Iterable[ModelCapability]) -> None:
        self._by_family: dict[str, ModelCapability] = {}
        for cap in capabilities:
            key = family_code(cap.family_id)
            if key in self._by_family:
                raise ValueError(f"Duplicate model family in registry: {key}")
            self._by_family[key] = cap

    def resolve(self, family_id: str) -> ModelCapability:
        try:
            return self._by_family[family_code(family_id)]
        except KeyError:
            raise UnknownModelFamily(family_id) from None

    def __contains__(self, family_id: object) -> bool:
        return isinstance(family_id, str) and family_code(family_id) in self._by_family

    def __len__(self) -> int:
        return len(self._by_family)

    @property
    def families(self) -> list[str]:
        return sorted(self._by_family)

    @classmethod
    async def load(cls, db: AsyncSession) -> CapabilityRegistry:
        """Build the registry from the model_configurations table."""
        result = await db.execute(
            select(ModelConfiguration).order_by(ModelConfiguration.model_family_code)
        )
        registry = cls(ModelCapability.from_row(row) for row in result.scalars().all())
        logger.info("Capability registry loaded", families=registry.families)
        return registry
