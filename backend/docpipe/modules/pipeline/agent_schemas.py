"""Agent Contracts: Pydantic models for the forced tool output of each step.

Data flowing forward through the pipeline:
  Extractor  -> Normalizer:  ExtractionOutput   (extract_entities)
  Normalizer -> Validator:   NormalizationOutput (normalize_data)
  Validator  -> Arbiter:     ValidationOutput   (validate_facts)
  Arbiter    -> persistence: ArbitrationOutput  (apply_policies)

Models accept extra keys so that richer model output is kept, not rejected.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EntityType = Literal["company", "person", "product", "location", "event"]


class _ToolOutput(BaseModel):
    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# Step 1: extraction
# ---------------------------------------------------------------------------


class EvidenceSpan(_ToolOutput):
    start: int
    end: int


class ExtractedEntity(_ToolOutput):
    name: str
    entity_type: EntityType
    aliases: list[str] = Field(default_factory=list)


class ExtractedFact(_ToolOutput):
    statement: str
    evidence: str = ""
    evidence_span: EvidenceSpan | None = None
    # Range is checked by the data-quality guardrail, not rejected here
    confidence: float
    entity_name: str | None = None


class ExtractionOutput(_ToolOutput):
    entities: list[ExtractedEntity]
    facts: list[ExtractedFact]


# ---------------------------------------------------------------------------
# Step 2: normalization
# ---------------------------------------------------------------------------


class NormalizedEntity(_ToolOutput):
    original_name: str
    canonical_name: str | None = None
    entity_type: EntityType
    derived: dict[str, Any] = Field(
        default_factory=dict,
        description="identifiers, addresses, relationships, website",
    )


class Triple(_ToolOutput):
    subject: str
    predicate: str
    object: str


class FactEvidence(_ToolOutput):
    text: str = ""
    span: EvidenceSpan | None = None


class DerivedFact(_ToolOutput):
    triple: Triple | None = None
    confidence: float | None = None
    evidence: FactEvidence | None = None


class NormalizedFact(_ToolOutput):
    original_statement: str
    normalized_statement: str | None = None
    confidence_numeric: float | None = None
    derived: DerivedFact | None = None


class UnknownValue(_ToolOutput):
    field: str
    reason: str = ""


class NormalizationOutput(_ToolOutput):
    normalized_entities: list[NormalizedEntity]
    normalized_facts: list[NormalizedFact]
    unknown_values: list[UnknownValue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Step 3: validation
# ---------------------------------------------------------------------------


class Contradiction(_ToolOutput):
    subject: str = ""
    predicate: str = ""
    conflicting_objects: list[str] = Field(default_factory=list)
    fact_ids: list[str] = Field(default_factory=list)
    reason: str = ""


class MissingCitation(_ToolOutput):
    fact_id: str
    issue: str | None = None
    confidence: float | None = None


class SchemaIssue(_ToolOutput):
    fact_id: str
    error: str = ""


class ValidationOutput(_ToolOutput):
    is_valid: bool
    contradictions: list[Contradiction] = Field(default_factory=list)
    missing_citations: list[MissingCitation] = Field(default_factory=list)
    schema_errors: list[SchemaIssue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Step 4: arbitration
# ---------------------------------------------------------------------------


class PiiFinding(_ToolOutput):
    type: Literal["ssn", "credit_card", "phone", "email", "medical_record"]
    location: str = ""


class ArbitrationOutput(_ToolOutput):
    decision: Literal["ALLOW", "BLOCK", "WARN"]
    reasons: list[str]
    pii_detected: list[PiiFinding] = Field(default_factory=list)
    missing_citations: list[MissingCitation] = Field(default_factory=list)
    disclosures: list[str] = Field(default_factory=list)
