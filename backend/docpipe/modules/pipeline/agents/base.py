"""StepAgent: shared call-building, invocation and output parsing for pipeline steps.

A step agent knows three things about its step:
  - how to turn the upstream payload into the user message
  - which forced tool the model must call (and its JSON schema)
  - which Pydantic model the tool arguments must satisfy

Everything provider-specific is left to the AI Invocation Adapter.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from docpipe.core.config import settings
from docpipe.core.errors import MalformedStepOutput, PipelineError, UnknownModelFamily
from docpipe.modules.pipeline.gateway.adapter import AIInvocationAdapter
from docpipe.modules.pipeline.gateway.canonical import (
    CanonicalAICall,
    CanonicalAIResult,
    ChatMessage,
    ToolDefinition,
)
from docpipe.modules.pipeline.models import AgentDefinition, PromptBinding

logger = structlog.get_logger()


@dataclass
class StepExecution:
    """Outcome of one agent invocation, successful or not."""

    call: CanonicalAICall
    result: CanonicalAIResult | None = None
    output: dict[str, Any] | None = None
    error: PipelineError | None = None
    latency_ms: int = 0
    model_params: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.output is not None


class StepAgent:
    """Base class for the four pipeline step agents."""

    agent_name: str = "base"
    step: str = ""
    tool_name: str = ""
    tool_description: str = ""
    tool_parameters: dict[str, Any] = {}
    output_model: type[BaseModel] = BaseModel
    guardrail_suites: tuple[str, ...] = ()

    # Generation controls; the adapter drops whatever the model family doesn't support
    temperature: float | None = None
    seed: int | None = None
    default_reasoning_effort: str | None = None

    def __init__(self, adapter: AIInvocationAdapter) -> None:
        self.adapter = adapter

    # ------------------------------------------------------------------
    # Call construction
    # ------------------------------------------------------------------

    def render_prompt(self, binding: PromptBinding) -> str:
        return binding.prompt_version.content_text

    def build_user_content(self, payload: dict[str, Any]) -> str:
        raise NotImplementedError

    def input_summary(self, payload: dict[str, Any]) -> dict[str, Any]:
        """What gets stored as NodeRun.inputs."""
        return payload

    def select_model_family(self, agent: AgentDefinition) -> str:
        registry = self.adapter.registry
        if agent.preferred_model_family in registry:
            return agent.preferred_model_family
        if agent.fallback_model_family and agent.fallback_model_family in registry:
            logger.warning(
                f"{self.agent_name} using fallback model family",
                preferred=agent.preferred_model_family,
                fallback=agent.fallback_model_family,
            )
            return agent.fallback_model_family
        raise UnknownModelFamily(agent.preferred_model_family)

    def tool_definition(self, agent: AgentDefinition) -> ToolDefinition:
        if agent.tool_schema:
            return ToolDefinition.from_schema(agent.tool_schema)
        return ToolDefinition(
            name=self.tool_name,
            description=self.tool_description,
            parameters=self.tool_parameters,
        )

    def build_call(
        self,
        agent: AgentDefinition,
        binding: PromptBinding,
        payload: dict[str, Any],
    ) -> CanonicalAICall:
        tool = self.tool_definition(agent)
        max_tokens = agent.max_tokens or settings.ai_max_output_tokens or None
        return CanonicalAICall(
            model_family=self.select_model_family(agent),
            messages=(
                ChatMessage("system", self.render_prompt(binding)),
                ChatMessage("user", self.build_user_content(payload)),
            ),
            tools=(tool,),
            forced_tool=tool.name,
            temperature=self.temperature,
            seed=self.seed,
            reasoning_effort=agent.reasoning_effort or self.default_reasoning_effort,
            max_output_tokens=max_tokens,
        )

    # ------------------------------------------------------------------
    # Output parsing
    # ------------------------------------------------------------------

    def parse_output(self, call: CanonicalAICall, result: CanonicalAIResult) -> dict[str, Any]:
        """Validate the single forced tool invocation against the output model."""
        invocation = result.find_tool(call.forced_tool or self.tool_name)
        if invocation is None:
            raise MalformedStepOutput(
                f"{self.agent_name}: model did not call {call.forced_tool}"
                + (f" (text response: {result.text[:200]})" if result.text else "")
            )

        try:
            arguments = invocation.parsed_arguments()
        except ValueError as e:
            raise MalformedStepOutput(
                f"{self.agent_name}: tool arguments are not valid JSON: {e}"
            ) from e

        try:
            model = self.output_model.model_validate(arguments)
        except ValidationError as e:
            raise MalformedStepOutput(
                f"{self.agent_name}: tool arguments failed {self.output_model.__name__} validation",
                errors=json.loads(e.json(include_url=False, include_context=False)),
            ) from e

        return model.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def execute(self, call: CanonicalAICall, *, timeout: float | None = None) -> StepExecution:
        execution = StepExecution(call=call, model_params=self.adapter.transmitted_params(call))
        start = time.monotonic()
        try:
            execution.result = await self.adapter.invoke(call, timeout=timeout)
            execution.output = self.parse_output(call, execution.result)
        except PipelineError as e:
            execution.error = e
        finally:
            execution.latency_ms = int((time.monotonic() - start) * 1000)

        if execution.error is not None:
            logger.error(
                f"{self.agent_name} step failed",
                model_family=call.model_family,
                error=str(execution.error),
            )
        else:
            logger.info(
                f"{self.agent_name} step completed",
                model_family=call.model_family,
                latency_ms=execution.latency_ms,
            )
        return execution
