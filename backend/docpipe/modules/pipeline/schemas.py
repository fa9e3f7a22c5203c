"""Pipeline API schemas: step trigger and full-run request / response bodies.

The wire format is camelCase (documentText, runId, ...); Python attributes
stay snake_case.
"""

from __future__ import annotations

import re
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from docpipe.core.config import settings

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def parse_uuid(value: str) -> uuid.UUID:
    """Canonical hyphenated hex only; raises ValueError otherwise."""
    if not UUID_RE.match(value):
        raise ValueError("must be a UUID in canonical hyphenated hex form")
    return uuid.UUID(value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _PipelineInput(_CamelModel):
    environment: str = Field(default_factory=lambda: settings.default_environment, max_length=20)
    document_id: str | None = Field(None, max_length=64)

    @field_validator("document_id")
    @classmethod
    def _check_document_id(cls, v: str | None) -> str | None:
        if v is not None:
            parse_uuid(v)
        return v


class StepRequest(_PipelineInput):
    """Body of POST /pipeline/steps/{step}. Which fields are required depends on the step."""

    document_text: str | None = Field(
        None,
        min_length=settings.document_min_chars,
        max_length=settings.document_max_chars,
    )
    entities: list[dict[str, Any]] | None = Field(None, max_length=settings.max_items_per_array)
    facts: list[dict[str, Any]] | None = Field(None, max_length=settings.max_items_per_array)
    run_id: uuid.UUID | None = None

    @field_validator("run_id", mode="before")
    @classmethod
    def _check_run_id(cls, v: Any) -> Any:
        if v is None:
            return v
        if not isinstance(v, str):
            raise ValueError("runId must be a string")
        return parse_uuid(v)


class RunRequest(_PipelineInput):
    """Body of POST /pipeline/runs."""

    document_text: str = Field(
        ...,
        min_length=settings.document_min_chars,
        max_length=settings.document_max_chars,
    )


class GuardrailView(_CamelModel):
    suite: str
    verdict: str
    details: dict[str, Any] = Field(default_factory=dict)


class StepResponse(_CamelModel):
    success: bool
    run_id: uuid.UUID
    node_run_id: uuid.UUID
    step: str
    structured_output: dict[str, Any] | None = None
    guardrails: list[GuardrailView] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class StepSummary(_CamelModel):
    step: str
    node_run_id: uuid.UUID
    status: str
    error: str | None = None
    guardrails: list[GuardrailView] = Field(default_factory=list)


class RunResponse(_CamelModel):
    success: bool
    run_id: uuid.UUID
    status: str
    steps_completed: list[str] = Field(default_factory=list)
    entities_extracted: int = 0
    facts_extracted: int = 0
    entities_stored: int = 0
    facts_stored: int = 0
    arbiter_decision: str | None = None
    steps: list[StepSummary] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class CleanupResponse(_CamelModel):
    timed_out: int
    run_ids: list[uuid.UUID] = Field(default_factory=list)
