"""Step 2: Resolver agent. Canonical entity names and subject-predicate-object triples."""

from __future__ import annotations

import json
from typing import Any

from docpipe.modules.pipeline.agent_schemas import NormalizationOutput
from docpipe.modules.pipeline.agents.base import StepAgent
from docpipe.modules.pipeline.guardrails import SCHEMA
from docpipe.modules.pipeline.models import PromptBinding

_SPAN = {
    "type": "object",
    "properties": {"start": {"type": "number"}, "end": {"type": "number"}},
}

NORMALIZE_DATA_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "normalized_entities": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "original_name": {"type": "string"},
                    "canonical_name": {"type": "string"},
                    "entity_type": {
                        "type": "string",
                        "enum": ["company", "person", "product", "location", "event"],
                    },
                    "derived": {
                        "type": "object",
                        "properties": {
                            "identifiers": {"type": "object"},
                            "addresses": {"type": "array", "items": {"type": "object"}},
                            "relationships": {"type": "array", "items": {"type": "object"}},
                            "website": {"type": "string"},
                        },
                    },
                },
                "required": ["original_name", "entity_type"],
            },
        },
        "normalized_facts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "original_statement": {"type": "string"},
                    "normalized_statement": {"type": "string"},
                    "confidence_numeric": {"type": "number"},
                    "derived": {
                        "type": "object",
                        "properties": {
                            "triple": {
                                "type": "object",
                                "properties": {
                                    "subject": {"type": "string"},
                                    "predicate": {"type": "string"},
                                    "object": {"type": "string"},
                                },
                                "required": ["subject", "predicate", "object"],
                            },
                            "confidence": {"type": "number"},
                            "evidence": {
                                "type": "object",
                                "properties": {"text": {"type": "string"}, "span": _SPAN},
                            },
                        },
                        "required": ["triple"],
                    },
                },
                "required": ["original_statement", "derived"],
            },
        },
        "unknown_values": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"field": {"type": "string"}, "reason": {"type": "string"}},
            },
        },
    },
    "required": ["normalized_entities", "normalized_facts"],
}

NORMALIZATION_INSTRUCTIONS = """\
CRITICAL INSTRUCTIONS:

1. ENTITY TYPE PRESERVATION: Keep the exact entity_type of every input entity. It must be \
one of: company, person, product, location, event. Never change an entity's type while \
normalizing it.

2. FACT TRIPLE EXTRACTION: For every fact, fill derived.triple:
   - subject: the main entity (e.g. "BrightBid Group AB (publ)", "Annual General Meeting")
   - predicate: the relationship or attribute (e.g. "changed_name_to", "scheduled_date")
   - object: the value, target entity or description (e.g. "BrightBid AB", "2024-07-04")

3. PREDICATE NAMING: snake_case, specific, with temporal context where relevant \
(e.g. "revenue_q3_2024" rather than "revenue").

4. EVIDENCE: Carry the evidence text and span of the original fact into derived.evidence.

5. UNKNOWN VALUES: When a value cannot be normalized, leave it out and list it in \
unknown_values with the field and the reason."""


class ResolverAgent(StepAgent):
    agent_name = "resolver"
    step = "normalize"
    tool_name = "normalize_data"
    tool_description = "Normalize entities to canonical names and facts to structured triples"
    tool_parameters = NORMALIZE_DATA_PARAMETERS
    output_model = NormalizationOutput
    guardrail_suites = (SCHEMA,)
    temperature = 0.7

    def render_prompt(self, binding: PromptBinding) -> str:
        return f"{binding.prompt_version.content_text}\n\n{NORMALIZATION_INSTRUCTIONS}"

    def build_user_content(self, payload: dict[str, Any]) -> str:
        return json.dumps(
            {"entities": payload.get("entities") or [], "facts": payload.get("facts") or []}
        )

    def input_summary(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "entities_count": len(payload.get("entities") or []),
            "facts_count": len(payload.get("facts") or []),
        }
