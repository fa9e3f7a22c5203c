"""Pipeline persistence models.

Configuration (read-only to the pipeline):
  ModelConfiguration  one row per model family (capability registry)
  AgentDefinition     one row per pipeline step agent
  PromptVersion       immutable prompt text
  PromptBinding       time-windowed, weighted prompt deployment per environment

Audit trail (append-only outputs):
  Run -> NodeRun -> MessageLog / GuardrailResult

Downstream results:
  Entity, Fact
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docpipe.core.database import Base, JSONType, utcnow

# Status vocabularies
RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_ERROR = "error"
RUN_TIMEOUT = "timeout"  # written only by the stale-run sweeper
RUN_STATUSES = {RUN_RUNNING, RUN_SUCCESS, RUN_ERROR, RUN_TIMEOUT}

NODE_SUCCESS = "success"
NODE_ERROR = "error"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ModelConfiguration(Base):
    """Capability row for one model family."""

    __tablename__ = "model_configurations"

    config_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    model_family_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    api_endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    api_version: Mapped[str] = mapped_column(
        String(30), nullable=False, default="chat_completions"
    )  # responses | chat_completions
    supports_temperature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    temperature_default: Mapped[Optional[float]] = mapped_column(Float)
    supports_seed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reasoning_effort_levels: Mapped[Optional[list[str]]] = mapped_column(JSONType)
    max_output_tokens_param: Mapped[str] = mapped_column(
        String(50), nullable=False, default="max_tokens"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class AgentDefinition(Base):
    __tablename__ = "agent_definitions"

    agent_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    preferred_model_family: Mapped[str] = mapped_column(String(100), nullable=False)
    fallback_model_family: Mapped[Optional[str]] = mapped_column(String(100))
    reasoning_effort: Mapped[Optional[str]] = mapped_column(String(20))
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer)
    # {"name": ..., "description": ..., "parameters": {...json schema...}}
    tool_schema: Mapped[Optional[dict]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class PromptVersion(Base):
    __tablename__ = "prompt_versions"

    prompt_version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    semver: Mapped[str] = mapped_column(String(30), nullable=False)
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class PromptBinding(Base):
    """Deploys a prompt version to an agent in one environment.

    Window is active iff effective_from <= now and (effective_to is null or
    effective_to >= now).
    """

    __tablename__ = "prompt_bindings"

    binding_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    agent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("agent_definitions.agent_id", ondelete="CASCADE"), nullable=False
    )
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    prompt_version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("prompt_versions.prompt_version_id", ondelete="CASCADE"), nullable=False
    )
    traffic_weight: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    effective_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    prompt_version: Mapped[PromptVersion] = relationship(lazy="selectin")

    __table_args__ = (
        Index("idx_bindings_agent_env", "agent_id", "environment"),
    )


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


class Run(Base):
    """One execution of the pipeline (or of a single step triggered alone)."""

    __tablename__ = "runs"

    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RUN_RUNNING)
    document_id: Mapped[Optional[str]] = mapped_column(String(64))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    metrics: Mapped[Optional[dict]] = mapped_column(JSONType, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    node_runs: Mapped[list[NodeRun]] = relationship(
        back_populates="run", order_by="NodeRun.created_at", lazy="raise"
    )

    __table_args__ = (
        Index("idx_runs_status_started", "status", "started_at"),
    )


class NodeRun(Base):
    """One attempted step within a run. Never updated after insert."""

    __tablename__ = "node_runs"

    node_run_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False
    )
    node_id: Mapped[str] = mapped_column(String(100), nullable=False)
    agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("agent_definitions.agent_id", ondelete="SET NULL")
    )
    prompt_version_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("prompt_versions.prompt_version_id", ondelete="SET NULL")
    )
    model_family: Mapped[Optional[str]] = mapped_column(String(100))
    rendered_prompt: Mapped[Optional[str]] = mapped_column(Text)
    inputs: Mapped[Optional[dict]] = mapped_column(JSONType)
    outputs: Mapped[Optional[dict]] = mapped_column(JSONType)
    tool_calls: Mapped[Optional[list]] = mapped_column(JSONType)
    model_params: Mapped[Optional[dict]] = mapped_column(JSONType)
    tokens_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_out: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=NODE_SUCCESS)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    run: Mapped[Run] = relationship(back_populates="node_runs", lazy="raise")
    messages: Mapped[list[MessageLog]] = relationship(
        order_by="MessageLog.seq", lazy="raise"
    )
    guardrail_results: Mapped[list[GuardrailResult]] = relationship(lazy="raise")

    __table_args__ = (
        Index("idx_node_runs_run", "run_id"),
        Index("idx_node_runs_agent", "agent_id"),
    )


class MessageLog(Base):
    __tablename__ = "message_logs"

    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    node_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("node_runs.node_run_id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # system | user | tool
    content_text: Mapped[Optional[str]] = mapped_column(Text)
    tool_name: Mapped[Optional[str]] = mapped_column(String(100))
    tool_args: Mapped[Optional[dict]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_msg_node", "node_run_id"),
    )


class GuardrailResult(Base):
    __tablename__ = "guardrail_results"

    result_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    node_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("node_runs.node_run_id", ondelete="CASCADE"), nullable=False
    )
    suite: Mapped[str] = mapped_column(String(50), nullable=False)
    verdict: Mapped[str] = mapped_column(String(10), nullable=False)  # pass | warn | fail
    details: Mapped[Optional[dict]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("node_run_id", "suite", name="uq_guardrail_node_suite"),
    )


# ---------------------------------------------------------------------------
# Downstream results
# ---------------------------------------------------------------------------


class Entity(Base):
    """Normalized entity persisted after the normalization step."""

    __tablename__ = "entities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False
    )
    legal_name: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    trading_names: Mapped[Optional[list[str]]] = mapped_column(JSONType, default=list)
    identifiers: Mapped[Optional[dict]] = mapped_column(JSONType, default=dict)
    website: Mapped[Optional[str]] = mapped_column(Text)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_entities_run", "run_id"),
        Index("idx_entities_legal_name", "legal_name"),
    )


class Fact(Base):
    """Subject-predicate-object fact persisted after arbitration."""

    __tablename__ = "facts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False
    )
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    predicate: Mapped[str] = mapped_column(String(200), nullable=False)
    object: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_text: Mapped[Optional[str]] = mapped_column(Text)
    evidence_doc_id: Mapped[Optional[str]] = mapped_column(String(64))
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # approved | flagged
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_facts_run", "run_id"),
        Index("idx_facts_subject_predicate", "subject", "predicate"),
    )
