"""History API schemas: read-only views of Run, NodeRun and their audit records."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class MessageLogView(BaseModel):
    model_config = {"from_attributes": True}

    seq: int
    role: str
    content_text: str | None = None
    tool_name: str | None = None
    tool_args: dict[str, Any] | None = None


class GuardrailResultView(BaseModel):
    model_config = {"from_attributes": True}

    suite: str
    verdict: str
    details: dict[str, Any] | None = None


class NodeRunDetail(BaseModel):
    """One step of a run, with its transcript and guardrail verdicts."""

    model_config = {"from_attributes": True}

    node_run_id: uuid.UUID
    node_id: str
    agent_id: uuid.UUID | None = None
    prompt_version_id: uuid.UUID | None = None
    model_family: str | None = None
    status: str
    error_message: str | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    inputs: dict[str, Any] | None = None
    outputs: dict[str, Any] | None = None
    model_params: dict[str, Any] | None = None
    created_at: datetime
    messages: list[MessageLogView] = Field(default_factory=list)
    guardrail_results: list[GuardrailResultView] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Compact view of a Run (used in lists)."""

    model_config = {"from_attributes": True}

    run_id: uuid.UUID
    environment: str
    status: str
    document_id: str | None = None
    started_at: datetime
    ended_at: datetime | None = None
    error_message: str | None = None
    metrics: dict[str, Any] | None = None


class RunDetail(RunSummary):
    node_runs: list[NodeRunDetail] = Field(default_factory=list)


class PaginatedRuns(BaseModel):
    items: list[RunSummary]
    total: int
    page: int
    page_size: int
    pages: int
