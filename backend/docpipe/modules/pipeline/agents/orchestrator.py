"""Pipeline Orchestrator.

Pure Python controller, no LLM calls of its own. Drives one document
through the step agents as an explicit state machine:

  EXTRACTING -> NORMALIZING -> VALIDATING -> ARBITRATING -> DONE
       \\______________\\______________\\______________\\___> FAILED

Per step: resolve binding (cached for the run) -> build canonical call ->
invoke adapter -> parse forced tool output -> record NodeRun + messages ->
guardrails -> commit -> forward output. Committed steps are never touched
again, whatever happens later in the run.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.database import utcnow
from docpipe.core.errors import InvalidInput, MalformedStepOutput, PipelineError
from docpipe.modules.pipeline.agents.arbiter import ArbiterAgent
from docpipe.modules.pipeline.agents.base import StepAgent
from docpipe.modules.pipeline.agents.critic import CriticAgent
from docpipe.modules.pipeline.agents.extractor import ExtractorAgent
from docpipe.modules.pipeline.agents.resolver import ResolverAgent
from docpipe.modules.pipeline.bindings import BindingResolver, RunBindingSnapshot
from docpipe.modules.pipeline.gateway.adapter import AIInvocationAdapter
from docpipe.modules.pipeline.guardrails import GuardrailEvaluator, GuardrailVerdict
from docpipe.modules.pipeline.models import (
    NODE_ERROR,
    NODE_SUCCESS,
    RUN_ERROR,
    RUN_RUNNING,
    RUN_SUCCESS,
    AgentDefinition,
    PromptBinding,
    Run,
)
from docpipe.modules.pipeline.run_tracker import RunTracker
from docpipe.modules.pipeline.service import (
    FACT_APPROVED,
    FACT_FLAGGED,
    get_agent_by_name,
    store_entities,
    store_facts,
)
from docpipe.modules.pipeline.usage_tracker import UsageTracker

logger = structlog.get_logger()


class PipelineState(str, Enum):
    EXTRACTING = "extracting"
    NORMALIZING = "normalizing"
    VALIDATING = "validating"
    ARBITRATING = "arbitrating"
    DONE = "done"
    FAILED = "failed"


_SUCCESSOR = {
    PipelineState.EXTRACTING: PipelineState.NORMALIZING,
    PipelineState.NORMALIZING: PipelineState.VALIDATING,
    PipelineState.VALIDATING: PipelineState.ARBITRATING,
    PipelineState.ARBITRATING: PipelineState.DONE,
}

STATE_STEPS = {
    PipelineState.EXTRACTING: "extract",
    PipelineState.NORMALIZING: "normalize",
    PipelineState.VALIDATING: "validate",
    PipelineState.ARBITRATING: "arbitrate",
}

STEPS = tuple(STATE_STEPS.values())


def next_state(state: PipelineState, succeeded: bool) -> PipelineState:
    if state not in _SUCCESSOR:
        raise ValueError(f"No transition out of terminal state {state.value}")
    return _SUCCESSOR[state] if succeeded else PipelineState.FAILED


def default_agents(adapter: AIInvocationAdapter) -> dict[str, StepAgent]:
    agents: list[StepAgent] = [
        ExtractorAgent(adapter),
        ResolverAgent(adapter),
        CriticAgent(adapter),
        ArbiterAgent(adapter),
    ]
    return {a.step: a for a in agents}


@dataclass
class StepRecord:
    """What one attempted step produced."""

    step: str
    node_id: str
    node_run_id: uuid.UUID
    status: str
    output: dict[str, Any] | None = None
    error: PipelineError | None = None
    verdicts: list[GuardrailVerdict] = field(default_factory=list)
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0

    @property
    def blocking_verdict(self) -> GuardrailVerdict | None:
        for verdict in self.verdicts:
            if verdict.blocks_run:
                return verdict
        return None

    @property
    def succeeded(self) -> bool:
        return self.status == NODE_SUCCESS and self.blocking_verdict is None

    @property
    def failure_reason(self) -> str | None:
        if self.error is not None:
            return str(self.error)
        blocking = self.blocking_verdict
        if blocking is not None:
            return f"{self.node_id}: '{blocking.suite}' guardrail failed"
        return None


@dataclass
class PipelineOutcome:
    run_id: uuid.UUID
    status: str
    state: PipelineState
    steps: list[StepRecord]
    metrics: dict[str, Any]
    error_message: str | None = None


class PipelineOrchestrator:
    """Sequences the step agents for one document and owns all persistence."""

    def __init__(
        self,
        db: AsyncSession,
        adapter: AIInvocationAdapter,
        *,
        agents: dict[str, StepAgent] | None = None,
        evaluator: GuardrailEvaluator | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.adapter = adapter
        self.agents = agents or default_agents(adapter)
        self.evaluator = evaluator or GuardrailEvaluator()
        self.timeout = timeout
        self.clock = clock
        self.tracker = RunTracker(db)
        self.usage = UsageTracker()

    # ------------------------------------------------------------------
    # Single step
    # ------------------------------------------------------------------

    async def run_step(
        self,
        run: Run,
        step: str,
        payload: dict[str, Any],
        *,
        snapshot: RunBindingSnapshot,
    ) -> StepRecord:
        """Execute one step and commit its NodeRun, messages and guardrail results."""
        agent_impl = self.agents[step]
        inputs = agent_impl.input_summary(payload)
        agent_row: AgentDefinition | None = None
        binding: PromptBinding | None = None

        # Configuration errors surface here, before any network call
        try:
            agent_row = await get_agent_by_name(self.db, agent_impl.agent_name)
            binding = await snapshot.get(agent_row, self.clock())
            call = agent_impl.build_call(agent_row, binding, payload)
            self.adapter.credentials.for_endpoint(
                self.adapter.registry.resolve(call.model_family).endpoint
            )
        except PipelineError as e:
            node_run = await self.tracker.record_node_run(
                run,
                node_id=agent_impl.agent_name,
                agent=agent_row,
                binding=binding,
                inputs=inputs,
                error=e,
            )
            await self.db.commit()
            return StepRecord(
                step=step,
                node_id=agent_impl.agent_name,
                node_run_id=node_run.node_run_id,
                status=NODE_ERROR,
                error=e,
            )

        execution = await agent_impl.execute(call, timeout=self.timeout)
        result = execution.result
        if result is not None:
            self.usage.record(
                agent_impl.agent_name,
                call.model_family,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                latency_ms=execution.latency_ms,
            )

        node_run = await self.tracker.record_node_run(
            run,
            node_id=agent_impl.agent_name,
            agent=agent_row,
            binding=binding,
            call=call,
            inputs=inputs,
            result=result,
            output=execution.output,
            error=execution.error,
            model_params=execution.model_params,
            latency_ms=execution.latency_ms,
        )

        verdicts: list[GuardrailVerdict] = []
        if isinstance(execution.error, MalformedStepOutput):
            verdicts.append(self.evaluator.malformed(execution.error))
        elif execution.succeeded:
            for suite in agent_impl.guardrail_suites:
                verdicts.append(self.evaluator.evaluate(suite, execution.output or {}))
        for verdict in verdicts:
            await self.tracker.record_guardrail(node_run, verdict)

        await self.db.commit()

        return StepRecord(
            step=step,
            node_id=agent_impl.agent_name,
            node_run_id=node_run.node_run_id,
            status=node_run.status,
            output=execution.output,
            error=execution.error,
            verdicts=verdicts,
            tokens_in=node_run.tokens_in,
            tokens_out=node_run.tokens_out,
            latency_ms=execution.latency_ms,
        )

    async def execute_single_step(
        self,
        step: str,
        payload: dict[str, Any],
        *,
        environment: str,
        run_id: uuid.UUID | None = None,
    ) -> tuple[Run, StepRecord]:
        """Run one step on its own.

        With a run_id the step joins that (still running) run. A successful
        step leaves the joined run open; a failed one ends it in 'error'.
        Without a run_id a fresh run is created and finalized around the step.
        """
        if run_id is not None:
            run = await self.tracker.get_run(run_id)
            if run is None:
                raise InvalidInput("runId", f"Run {run_id} not found")
            if run.status != RUN_RUNNING:
                raise InvalidInput("runId", f"Run {run_id} is already {run.status}")
            owns_run = False
        else:
            run = await self.tracker.begin_run(environment, document_id=payload.get("document_id"))
            await self.db.commit()
            owns_run = True

        snapshot = RunBindingSnapshot(BindingResolver(self.db), run.environment)
        record = await self.run_step(run, step, payload, snapshot=snapshot)

        if owns_run or not record.succeeded:
            await self.tracker.end_run(
                run,
                RUN_SUCCESS if record.succeeded else RUN_ERROR,
                {**self.usage.summary(), "steps_completed": [step] if record.succeeded else []},
                error_message=record.failure_reason,
            )
            await self.db.commit()
        return run, record

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------

    async def run(
        self,
        document_text: str,
        *,
        environment: str,
        document_id: str | None = None,
    ) -> PipelineOutcome:
        start = time.monotonic()
        run = await self.tracker.begin_run(environment, document_id=document_id)
        await self.db.commit()
        run_id = run.run_id

        logger.info(
            "Orchestrator: pipeline started",
            run_id=str(run_id),
            environment=environment,
            document_chars=len(document_text),
        )

        snapshot = RunBindingSnapshot(BindingResolver(self.db), environment)
        payload: dict[str, Any] = {"document_text": document_text, "document_id": document_id}
        counters: dict[str, Any] = {
            "entities_extracted": 0,
            "facts_extracted": 0,
            "entities_stored": 0,
            "facts_stored": 0,
            "arbiter_decision": None,
        }
        steps: list[StepRecord] = []
        state = PipelineState.EXTRACTING

        try:
            while state in STATE_STEPS:
                step = STATE_STEPS[state]
                record = await self.run_step(run, step, payload, snapshot=snapshot)
                steps.append(record)
                if record.output is not None and step == "arbitrate":
                    counters["arbiter_decision"] = record.output.get("decision")
                if record.succeeded:
                    payload = await self._forward(run, step, record.output or {}, payload, counters)
                state = next_state(state, record.succeeded)
        except Exception as e:
            logger.error(
                "Orchestrator: pipeline crashed",
                run_id=str(run_id),
                state=state.value,
                error=str(e),
                exc_info=True,
            )
            await self.db.rollback()
            await self.db.refresh(run)
            if run.status == RUN_RUNNING:
                await self.tracker.end_run(
                    run,
                    RUN_ERROR,
                    self._metrics(steps, counters, start),
                    error_message=f"Internal error: {e}",
                )
                await self.db.commit()
            raise

        failed = next((s for s in steps if not s.succeeded), None)
        status = RUN_SUCCESS if state is PipelineState.DONE else RUN_ERROR
        error_message = failed.failure_reason if failed else None
        metrics = self._metrics(steps, counters, start)

        await self.tracker.end_run(run, status, metrics, error_message=error_message)
        await self.db.commit()

        logger.info(
            "Orchestrator: pipeline finished",
            run_id=str(run_id),
            status=status,
            steps_completed=metrics["steps_completed"],
            entities_stored=counters["entities_stored"],
            facts_stored=counters["facts_stored"],
            total_latency_ms=metrics["total_latency_ms"],
        )

        return PipelineOutcome(
            run_id=run_id,
            status=status,
            state=state,
            steps=steps,
            metrics=metrics,
            error_message=error_message,
        )

    async def _forward(
        self,
        run: Run,
        step: str,
        output: dict[str, Any],
        payload: dict[str, Any],
        counters: dict[str, Any],
    ) -> dict[str, Any]:
        """Persist what a successful step unlocks and build the next step's payload."""
        document_id = payload.get("document_id")

        if step == "extract":
            counters["entities_extracted"] = len(output["entities"])
            counters["facts_extracted"] = len(output["facts"])
            return {"entities": output["entities"], "facts": output["facts"], "document_id": document_id}

        if step == "normalize":
            counters["entities_stored"] = await store_entities(
                self.db, run.run_id, output["normalized_entities"], document_id=document_id
            )
            await self.db.commit()
            return {
                "entities": output["normalized_entities"],
                "facts": output["normalized_facts"],
                "document_id": document_id,
            }

        if step == "arbitrate":
            decision = output["decision"]
            counters["facts_stored"] = await store_facts(
                self.db,
                run.run_id,
                payload.get("facts") or [],
                status=FACT_APPROVED if decision == "ALLOW" else FACT_FLAGGED,
                document_id=document_id,
                decision=decision,
            )
            await self.db.commit()

        return payload

    def _metrics(
        self,
        steps: list[StepRecord],
        counters: dict[str, Any],
        start: float,
    ) -> dict[str, Any]:
        return {
            **self.usage.summary(),
            **counters,
            "steps_completed": [s.step for s in steps if s.succeeded],
            "total_latency_ms": int((time.monotonic() - start) * 1000),
            "errors_count": sum(1 for s in steps if not s.succeeded),
        }
