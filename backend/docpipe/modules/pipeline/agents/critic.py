"""Step 3: Critic agent. Contradictions, missing citations and schema problems across facts."""

from __future__ import annotations

import json
from typing import Any

from docpipe.modules.pipeline.agent_schemas import ValidationOutput
from docpipe.modules.pipeline.agents.base import StepAgent
from docpipe.modules.pipeline.guardrails import VALIDATION

VALIDATE_FACTS_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "is_valid": {"type": "boolean"},
        "contradictions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "subject": {"type": "string"},
                    "predicate": {"type": "string"},
                    "conflicting_objects": {"type": "array", "items": {"type": "string"}},
                    "fact_ids": {"type": "array", "items": {"type": "string"}},
                    "reason": {"type": "string"},
                },
            },
        },
        "missing_citations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"fact_id": {"type": "string"}, "issue": {"type": "string"}},
            },
        },
        "schema_errors": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"fact_id": {"type": "string"}, "error": {"type": "string"}},
            },
        },
    },
    "required": ["is_valid", "contradictions", "missing_citations", "schema_errors"],
}


def with_fact_ids(facts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Give every fact a stable id the model can reference in its findings."""
    return [{"fact_id": f.get("fact_id") or f"fact_{i}", **f} for i, f in enumerate(facts)]


class CriticAgent(StepAgent):
    agent_name = "critic"
    step = "validate"
    tool_name = "validate_facts"
    tool_description = "Validate facts for contradictions, missing citations and schema errors"
    tool_parameters = VALIDATE_FACTS_PARAMETERS
    output_model = ValidationOutput
    guardrail_suites = (VALIDATION,)
    # Deterministic where the model family allows it
    temperature = 0.1
    seed = 42
    default_reasoning_effort = "low"

    def build_user_content(self, payload: dict[str, Any]) -> str:
        return json.dumps(
            {
                "documentId": payload.get("document_id"),
                "facts": with_fact_ids(payload.get("facts") or []),
            }
        )

    def input_summary(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "document_id": payload.get("document_id"),
            "facts_count": len(payload.get("facts") or []),
        }
