"""Run Tracker: writes the audit trail of a pipeline run.

Every attempted step produces exactly one NodeRun (success or error) plus one
MessageLog per role present in the exchange. Records are flushed as they are
written; the caller commits at step boundaries so completed steps survive a
later failure or cancellation.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from docpipe.core.config import settings
from docpipe.core.database import utcnow
from docpipe.core.errors import RunAlreadyFinalized
from docpipe.modules.pipeline.gateway.canonical import CanonicalAICall, CanonicalAIResult
from docpipe.modules.pipeline.guardrails import GuardrailVerdict
from docpipe.modules.pipeline.models import (
    NODE_ERROR,
    NODE_SUCCESS,
    RUN_RUNNING,
    RUN_TIMEOUT,
    AgentDefinition,
    GuardrailResult,
    MessageLog,
    NodeRun,
    PromptBinding,
    Run,
)

logger = structlog.get_logger()


def _truncate(text: str | None, limit: int) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[:limit]


class RunTracker:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def begin_run(
        self,
        environment: str,
        *,
        document_id: str | None = None,
        run_id: uuid.UUID | None = None,
    ) -> Run:
        run = Run(
            run_id=run_id or uuid.uuid4(),
            environment=environment,
            status=RUN_RUNNING,
            document_id=document_id,
            started_at=utcnow(),
            metrics={},
        )
        self.db.add(run)
        await self.db.flush()
        logger.info("Run started", run_id=str(run.run_id), environment=environment)
        return run

    async def get_run(self, run_id: uuid.UUID) -> Run | None:
        return await self.db.get(Run, run_id)

    async def record_node_run(
        self,
        run: Run,
        *,
        node_id: str,
        agent: AgentDefinition | None = None,
        binding: PromptBinding | None = None,
        call: CanonicalAICall | None = None,
        inputs: dict[str, Any] | None = None,
        result: CanonicalAIResult | None = None,
        output: dict[str, Any] | None = None,
        error: Exception | None = None,
        model_params: dict[str, Any] | None = None,
        latency_ms: int = 0,
    ) -> NodeRun:
        """Persist one attempted step and its message transcript."""
        node_run = NodeRun(
            node_run_id=uuid.uuid4(),
            run_id=run.run_id,
            node_id=node_id,
            agent_id=agent.agent_id if agent else None,
            prompt_version_id=binding.prompt_version_id if binding else None,
            model_family=call.model_family if call else None,
            rendered_prompt=call.system_prompt if call else None,
            inputs=inputs or {},
            outputs=output,
            tool_calls=[t.to_dict() for t in result.tool_invocations] if result else [],
            model_params=model_params or {},
            tokens_in=result.tokens_in if result else 0,
            tokens_out=result.tokens_out if result else 0,
            latency_ms=latency_ms,
            status=NODE_ERROR if error is not None else NODE_SUCCESS,
            error_message=str(error) if error is not None else None,
            created_at=utcnow(),
        )
        self.db.add(node_run)

        for seq, message in enumerate(self._transcript(call, result, output)):
            self.db.add(MessageLog(node_run_id=node_run.node_run_id, seq=seq, **message))

        await self.db.flush()

        log = logger.error if error is not None else logger.info
        log(
            "Node run recorded",
            run_id=str(run.run_id),
            node_run_id=str(node_run.node_run_id),
            node_id=node_id,
            status=node_run.status,
            model_family=node_run.model_family,
            tokens_in=node_run.tokens_in,
            tokens_out=node_run.tokens_out,
            latency_ms=latency_ms,
            error=node_run.error_message,
        )
        return node_run

    @staticmethod
    def _transcript(
        call: CanonicalAICall | None,
        result: CanonicalAIResult | None,
        output: dict[str, Any] | None,
    ) -> list[dict[str, Any]]:
        if call is None:
            return []

        messages: list[dict[str, Any]] = []
        system = call.system_prompt
        if system is not None:
            messages.append({"role": "system", "content_text": system})

        user = call.content_for("user")
        if user is not None:
            messages.append(
                {"role": "user", "content_text": _truncate(user, settings.message_log_max_chars)}
            )

        if output is not None:
            messages.append({"role": "tool", "tool_name": call.forced_tool, "tool_args": output})
        elif result is not None and result.tool_invocations:
            # Unparseable arguments are kept as text
            invocation = result.find_tool(call.forced_tool or "") or result.tool_invocations[0]
            messages.append(
                {
                    "role": "tool",
                    "tool_name": invocation.name,
                    "content_text": _truncate(invocation.arguments, settings.message_log_max_chars),
                }
            )
        return messages

    async def record_guardrail(self, node_run: NodeRun, verdict: GuardrailVerdict) -> GuardrailResult:
        row = GuardrailResult(
            node_run_id=node_run.node_run_id,
            suite=verdict.suite,
            verdict=verdict.verdict.value,
            details=verdict.details,
            created_at=utcnow(),
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def _finalize(self, run_id: uuid.UUID, values: dict[str, Any]) -> bool:
        """Write a terminal status only if the row is still 'running'.

        Another session (the stale-run sweeper, a second worker) may have
        finalized the row since this session loaded it.
        """
        result = await self.db.execute(
            update(Run)
            .where(Run.run_id == run_id, Run.status == RUN_RUNNING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def end_run(
        self,
        run: Run,
        status: str,
        metrics: dict[str, Any] | None = None,
        *,
        error_message: str | None = None,
    ) -> Run:
        if run.status != RUN_RUNNING or run.ended_at is not None:
            raise RunAlreadyFinalized(run.run_id, run.status)

        values = {
            "status": status,
            "ended_at": utcnow(),
            "metrics": {**(run.metrics or {}), **(metrics or {})},
            "error_message": error_message,
        }
        if not await self._finalize(run.run_id, values):
            current = await self.db.scalar(select(Run.status).where(Run.run_id == run.run_id))
            logger.warning(
                "Run finalized elsewhere",
                run_id=str(run.run_id),
                status=current,
                attempted_status=status,
            )
            raise RunAlreadyFinalized(run.run_id, current or run.status)

        for key, value in values.items():
            set_committed_value(run, key, value)

        logger.info(
            "Run finished",
            run_id=str(run.run_id),
            status=status,
            error=error_message,
        )
        return run

    async def mark_stale_runs(
        self,
        *,
        older_than: timedelta | None = None,
        now: datetime | None = None,
    ) -> list[uuid.UUID]:
        """Move runs stuck in 'running' past the threshold to 'timeout'."""
        now = now or utcnow()
        cutoff = now - (older_than or timedelta(minutes=settings.stale_run_minutes))

        result = await self.db.execute(
            select(Run).where(Run.status == RUN_RUNNING, Run.started_at < cutoff)
        )
        values = {
            "status": RUN_TIMEOUT,
            "ended_at": now,
            "error_message": "Run exceeded the stale-run threshold",
        }
        stale: list[Run] = []
        for run in result.scalars().all():
            # Skip runs that finished between the select and the update
            if not await self._finalize(run.run_id, values):
                continue
            for key, value in values.items():
                set_committed_value(run, key, value)
            stale.append(run)

        if stale:
            logger.warning(
                "Stale runs timed out",
                count=len(stale),
                run_ids=[str(r.run_id) for r in stale],
            )
        return [r.run_id for r in stale]
