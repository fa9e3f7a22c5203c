"""Wire codecs for the provider API dialects.

Each dialect is a (build_request, normalize_response) pair registered in
DIALECTS under its ApiDialect tag. Supporting a new provider contract means
adding a new pair, not editing an existing one.

  responses         instructions + input, flat tools, reasoning object, no temperature
  chat_completions  messages, nested tools, temperature or flat reasoning_effort
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from docpipe.modules.pipeline.gateway.canonical import (
    CanonicalAICall,
    CanonicalAIResult,
    ToolInvocation,
)
from docpipe.modules.pipeline.gateway.capabilities import ApiDialect, ModelCapability


@dataclass(frozen=True)
class DialectCodec:
    build_request: Callable[[CanonicalAICall, ModelCapability], dict[str, Any]]
    normalize_response: Callable[[dict[str, Any]], CanonicalAIResult]


def _arguments_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return json.dumps(raw)


def _apply_common_controls(
    body: dict[str, Any], call: CanonicalAICall, cap: ModelCapability
) -> None:
    if cap.supports_seed and call.seed is not None:
        body["seed"] = call.seed
    if call.max_output_tokens:
        body[cap.max_tokens_param_name] = call.max_output_tokens


# ---------------------------------------------------------------------------
# Dialect A: responses
# ---------------------------------------------------------------------------


def build_responses_request(call: CanonicalAICall, cap: ModelCapability) -> dict[str, Any]:
    messages = list(call.messages)
    body: dict[str, Any] = {"model": call.model_family}

    if messages and messages[0].role == "system":
        body["instructions"] = messages.pop(0).content
    body["input"] = [m.to_dict() for m in messages]

    if call.tools:
        body["tools"] = [tool.to_flat_tool() for tool in call.tools]
    if call.forced_tool:
        body["tool_choice"] = {"type": "function", "name": call.forced_tool}

    if cap.supports_reasoning_effort(call.reasoning_effort):
        body["reasoning"] = {"effort": call.reasoning_effort}
    if call.verbosity:
        body["text"] = {"verbosity": call.verbosity}
    if call.continuation_token:
        body["previous_response_id"] = call.continuation_token

    _apply_common_controls(body, call, cap)
    return body


def normalize_responses_response(data: dict[str, Any]) -> CanonicalAIResult:
    result = CanonicalAIResult(continuation_token=data.get("id"))

    for item in data.get("output") or []:
        item_type = item.get("type")
        if item_type == "message" and result.text is None:
            for block in item.get("content") or []:
                if block.get("type") == "output_text":
                    result.text = block.get("text", "")
                    break
        elif item_type == "function_call":
            result.tool_invocations.append(
                ToolInvocation(
                    name=item.get("name", ""),
                    arguments=_arguments_text(item.get("arguments")),
                    call_id=item.get("call_id"),
                )
            )

    usage = data.get("usage") or {}
    result.tokens_in = int(usage.get("input_tokens") or 0)
    result.tokens_out = int(usage.get("output_tokens") or 0)
    return result


# ---------------------------------------------------------------------------
# Dialect B: chat_completions
# ---------------------------------------------------------------------------


def build_chat_request(call: CanonicalAICall, cap: ModelCapability) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": call.model_family,
        "messages": [m.to_dict() for m in call.messages],
    }

    if call.tools:
        body["tools"] = [tool.to_chat_tool() for tool in call.tools]
    if call.forced_tool:
        body["tool_choice"] = {"type": "function", "function": {"name": call.forced_tool}}

    if cap.supports_temperature:
        if call.temperature is not None:
            body["temperature"] = call.temperature
    elif cap.supports_reasoning_effort(call.reasoning_effort):
        body["reasoning_effort"] = call.reasoning_effort

    _apply_common_controls(body, call, cap)
    return body


def normalize_chat_response(data: dict[str, Any]) -> CanonicalAIResult:
    result = CanonicalAIResult()

    choices = data.get("choices") or []
    if choices:
        message = choices[0].get("message") or {}
        result.text = message.get("content")
        for tool_call in message.get("tool_calls") or []:
            function = tool_call.get("function") or {}
            result.tool_invocations.append(
                ToolInvocation(
                    name=function.get("name", ""),
                    arguments=_arguments_text(function.get("arguments")),
                    call_id=tool_call.get("id"),
                )
            )

    usage = data.get("usage") or {}
    result.tokens_in = int(usage.get("prompt_tokens") or 0)
    result.tokens_out = int(usage.get("completion_tokens") or 0)
    return result


DIALECTS: dict[ApiDialect, DialectCodec] = {
    ApiDialect.RESPONSES: DialectCodec(build_responses_request, normalize_responses_response),
    ApiDialect.CHAT_COMPLETIONS: DialectCodec(build_chat_request, normalize_chat_response),
}


def codec_for(dialect: ApiDialect) -> DialectCodec:
    return DIALECTS[dialect]
