"""Dialect-independent request / response shapes for AI invocations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ChatMessage:
    role: str  # system | user | assistant
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ToolDefinition:
    """A function tool the model may (or must) call."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_schema(cls, schema: dict[str, Any]) -> ToolDefinition:
        """Accept both the nested {"type": "function", "function": {...}} and flat shapes."""
        body = schema.get("function", schema)
        return cls(
            name=body["name"],
            description=body.get("description", ""),
            parameters=body.get("parameters") or {"type": "object", "properties": {}},
        )

    def to_chat_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_flat_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(frozen=True)
class CanonicalAICall:
    model_family: str
    messages: tuple[ChatMessage, ...]
    tools: tuple[ToolDefinition, ...] = ()
    forced_tool: str | None = None
    temperature: float | None = None
    seed: int | None = None
    reasoning_effort: str | None = None
    max_output_tokens: int | None = None
    verbosity: str | None = None
    continuation_token: str | None = None

    @property
    def system_prompt(self) -> str | None:
        if self.messages and self.messages[0].role == "system":
            return self.messages[0].content
        return None

    def content_for(self, role: str) -> str | None:
        for message in self.messages:
            if message.role == role:
                return message.content
        return None


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    arguments: str  # raw JSON text as returned by the provider
    call_id: str | None = None

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the arguments; raises ValueError on invalid JSON or a non-object."""
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(value).__name__}")
        return value

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments, "call_id": self.call_id}


@dataclass
class CanonicalAIResult:
    text: str | None = None
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    tokens_in: int = 0
    tokens_out: int = 0
    continuation_token: str | None = None

    def find_tool(self, name: str) -> ToolInvocation | None:
        for invocation in self.tool_invocations:
            if invocation.name == name:
                return invocation
        return None
