"""Step 1: Extractor agent. Entity mentions and evidenced facts from raw document text."""

from __future__ import annotations

from typing import Any

from docpipe.modules.pipeline.agent_schemas import ExtractionOutput
from docpipe.modules.pipeline.agents.base import StepAgent
from docpipe.modules.pipeline.guardrails import DATA_QUALITY

_ENTITY_TYPES = ["company", "person", "product", "location", "event"]

EXTRACT_ENTITIES_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "entities": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "entity_type": {"type": "string", "enum": _ENTITY_TYPES},
                    "aliases": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name", "entity_type"],
            },
        },
        "facts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "statement": {"type": "string"},
                    "evidence": {"type": "string"},
                    "evidence_span": {
                        "type": "object",
                        "description": "Character offsets in document where evidence was found",
                        "properties": {
                            "start": {"type": "number", "description": "Starting character offset"},
                            "end": {"type": "number", "description": "Ending character offset"},
                        },
                        "required": ["start", "end"],
                    },
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "entity_name": {"type": "string"},
                },
                "required": ["statement", "evidence", "evidence_span", "confidence"],
            },
        },
    },
    "required": ["entities", "facts"],
}


class ExtractorAgent(StepAgent):
    agent_name = "extractor"
    step = "extract"
    tool_name = "extract_entities"
    tool_description = "Extract structured entities, relationships, and facts from company documents"
    tool_parameters = EXTRACT_ENTITIES_PARAMETERS
    output_model = ExtractionOutput
    guardrail_suites = (DATA_QUALITY,)
    temperature = 0.7

    def build_user_content(self, payload: dict[str, Any]) -> str:
        return payload["document_text"]

    def input_summary(self, payload: dict[str, Any]) -> dict[str, Any]:
        # The full text is already in the message log (truncated); keep the node row small
        return {
            "document_id": payload.get("document_id"),
            "document_chars": len(payload["document_text"]),
        }
