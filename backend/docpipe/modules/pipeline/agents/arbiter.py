"""Step 4: Arbiter agent. Policy gate (PII, citations, disclosures) deciding ALLOW / WARN / BLOCK."""

from __future__ import annotations

import json
from typing import Any

from docpipe.modules.pipeline.agent_schemas import ArbitrationOutput
from docpipe.modules.pipeline.agents.base import StepAgent
from docpipe.modules.pipeline.agents.critic import with_fact_ids
from docpipe.modules.pipeline.guardrails import POLICY

APPLY_POLICIES_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "decision": {"type": "string", "enum": ["ALLOW", "BLOCK", "WARN"]},
        "reasons": {"type": "array", "items": {"type": "string"}},
        "pii_detected": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["ssn", "credit_card", "phone", "email", "medical_record"],
                    },
                    "location": {"type": "string"},
                },
            },
        },
        "missing_citations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"fact_id": {"type": "string"}, "confidence": {"type": "number"}},
            },
        },
        "disclosures": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["decision", "reasons"],
}


class ArbiterAgent(StepAgent):
    agent_name = "arbiter"
    step = "arbitrate"
    tool_name = "apply_policies"
    tool_description = "Apply policy gates for PII, IP, compliance, and citation requirements"
    tool_parameters = APPLY_POLICIES_PARAMETERS
    output_model = ArbitrationOutput
    guardrail_suites = (POLICY,)
    default_reasoning_effort = "medium"

    def build_user_content(self, payload: dict[str, Any]) -> str:
        return json.dumps(
            {
                "facts": with_fact_ids(payload.get("facts") or []),
                "entities": payload.get("entities") or [],
            }
        )

    def input_summary(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "entities_count": len(payload.get("entities") or []),
            "facts_count": len(payload.get("facts") or []),
        }
