"""Unit tests for the provider dialect codecs.

Request building must drop every control the capability doesn't support,
and response normalization must produce the same canonical result shape
for both dialects.
"""

from __future__ import annotations

import json

from conftest import CHAT_NO_TEMPERATURE, CHAT_WITH_TEMPERATURE, RESPONSES

from docpipe.modules.pipeline.gateway.canonical import (
    CanonicalAICall,
    ChatMessage,
    ToolDefinition,
)
from docpipe.modules.pipeline.gateway.capabilities import ApiDialect, ModelCapability
from docpipe.modules.pipeline.gateway.dialects import (
    DIALECTS,
    build_chat_request,
    build_responses_request,
    codec_for,
    normalize_chat_response,
    normalize_responses_response,
)

TOOL = ToolDefinition(
    name="validate_facts",
    description="Validate facts",
    parameters={"type": "object", "properties": {"is_valid": {"type": "boolean"}}},
)


def _call(model: str, **controls) -> CanonicalAICall:
    return CanonicalAICall(
        model_family=model,
        messages=(ChatMessage("system", "You are a critic."), ChatMessage("user", "facts...")),
        tools=(TOOL,),
        forced_tool="validate_facts",
        **controls,
    )


# ---------------------------------------------------------------------------
# chat_completions: request
# ---------------------------------------------------------------------------


def test_chat_request_shape() -> None:
    body = build_chat_request(_call("gemini-2.5-flash", temperature=0.7), CHAT_WITH_TEMPERATURE)

    assert body["model"] == "gemini-2.5-flash"
    assert body["messages"] == [
        {"role": "system", "content": "You are a critic."},
        {"role": "user", "content": "facts..."},
    ]
    assert body["tools"][0]["type"] == "function"
    assert body["tools"][0]["function"]["name"] == "validate_facts"
    assert body["tool_choice"] == {"type": "function", "function": {"name": "validate_facts"}}
    assert body["temperature"] == 0.7


def test_chat_request_omits_temperature_when_unsupported() -> None:
    body = build_chat_request(
        _call("gpt-5-mini", temperature=0.1, reasoning_effort="low"), CHAT_NO_TEMPERATURE
    )

    assert "temperature" not in body
    assert body["reasoning_effort"] == "low"


def test_chat_request_sends_neither_temperature_nor_effort_when_not_requested() -> None:
    body = build_chat_request(_call("gpt-5-mini"), CHAT_NO_TEMPERATURE)

    assert "temperature" not in body
    assert "reasoning_effort" not in body


def test_chat_request_temperature_capable_family_ignores_reasoning_effort() -> None:
    body = build_chat_request(
        _call("gemini-2.5-flash", temperature=0.2, reasoning_effort="low"), CHAT_WITH_TEMPERATURE
    )

    assert body["temperature"] == 0.2
    assert "reasoning_effort" not in body


def test_chat_request_drops_unsupported_effort_level() -> None:
    cap = ModelCapability(
        family_id="o3-mini",
        api_dialect=ApiDialect.CHAT_COMPLETIONS,
        endpoint="https://api.openai.com/v1/chat/completions",
        reasoning_effort_levels=("low", "medium", "high"),
    )
    body = build_chat_request(_call("o3-mini", reasoning_effort="minimal"), cap)

    assert "reasoning_effort" not in body


def test_chat_request_seed_only_when_supported() -> None:
    with_seed = build_chat_request(_call("gpt-5-mini", seed=42), CHAT_NO_TEMPERATURE)
    without_seed = build_chat_request(_call("gemini-2.5-flash", seed=42), CHAT_WITH_TEMPERATURE)

    assert with_seed["seed"] == 42
    assert "seed" not in without_seed


def test_chat_request_uses_capability_max_tokens_param() -> None:
    body = build_chat_request(_call("gpt-5-mini", max_output_tokens=4000), CHAT_NO_TEMPERATURE)

    assert body["max_completion_tokens"] == 4000
    assert "max_tokens" not in body


# ---------------------------------------------------------------------------
# responses: request
# ---------------------------------------------------------------------------


def test_responses_request_shape() -> None:
    body = build_responses_request(
        _call("gpt-5", reasoning_effort="medium", verbosity="low", max_output_tokens=2000),
        RESPONSES,
    )

    assert body["instructions"] == "You are a critic."
    assert body["input"] == [{"role": "user", "content": "facts..."}]
    assert body["tools"] == [
        {
            "type": "function",
            "name": "validate_facts",
            "description": "Validate facts",
            "parameters": TOOL.parameters,
        }
    ]
    assert body["tool_choice"] == {"type": "function", "name": "validate_facts"}
    assert body["reasoning"] == {"effort": "medium"}
    assert body["text"] == {"verbosity": "low"}
    assert body["max_output_tokens"] == 2000


def test_responses_request_never_sends_temperature_or_unsupported_seed() -> None:
    body = build_responses_request(_call("gpt-5", temperature=0.7, seed=7), RESPONSES)

    assert "temperature" not in body
    assert "seed" not in body
    assert "reasoning" not in body


def test_responses_request_passes_continuation_token() -> None:
    call = CanonicalAICall(
        model_family="gpt-5",
        messages=(ChatMessage("user", "continue"),),
        continuation_token="resp_123",
    )
    body = build_responses_request(call, RESPONSES)

    assert body["previous_response_id"] == "resp_123"
    assert "instructions" not in body
    assert "tool_choice" not in body


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_normalize_responses_collects_every_function_call() -> None:
    data = {
        "id": "resp_abc",
        "output": [
            {"type": "reasoning", "summary": []},
            {"type": "function_call", "name": "a", "arguments": "{}", "call_id": "c1"},
            {"type": "function_call", "name": "b", "arguments": {"x": 1}, "call_id": "c2"},
        ],
        "usage": {"input_tokens": 11, "output_tokens": 5},
    }

    result = normalize_responses_response(data)

    assert len(result.tool_invocations) == 2
    assert [t.name for t in result.tool_invocations] == ["a", "b"]
    assert result.tool_invocations[1].arguments == json.dumps({"x": 1})
    assert result.tool_invocations[1].call_id == "c2"
    assert result.tokens_in == 11
    assert result.tokens_out == 5
    assert result.continuation_token == "resp_abc"
    assert result.text is None


def test_normalize_responses_text_output() -> None:
    data = {
        "output": [
            {"type": "message", "content": [{"type": "output_text", "text": "hello"}]},
        ],
    }

    result = normalize_responses_response(data)

    assert result.text == "hello"
    assert result.tool_invocations == []
    assert result.tokens_in == 0


def test_normalize_chat_response() -> None:
    data = {
        "choices": [
            {
                "message": {
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "function": {"name": "validate_facts", "arguments": '{"is_valid": true}'},
                        }
                    ],
                }
            }
        ],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20},
    }

    result = normalize_chat_response(data)

    assert len(result.tool_invocations) == 1
    invocation = result.find_tool("validate_facts")
    assert invocation is not None
    assert invocation.parsed_arguments() == {"is_valid": True}
    assert result.tokens_in == 100
    assert result.tokens_out == 20


def test_normalize_chat_response_without_choices() -> None:
    result = normalize_chat_response({})

    assert result.text is None
    assert result.tool_invocations == []


def test_every_dialect_has_a_codec() -> None:
    assert set(DIALECTS) == set(ApiDialect)
    assert codec_for(ApiDialect.RESPONSES).build_request is build_responses_request
