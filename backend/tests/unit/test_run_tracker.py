"""Unit tests for the Run Tracker audit trail."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docpipe.core.config import settings
from docpipe.core.database import utcnow
from docpipe.core.errors import ProviderTimeout, RunAlreadyFinalized
from docpipe.modules.pipeline.gateway.canonical import (
    CanonicalAICall,
    CanonicalAIResult,
    ChatMessage,
    ToolInvocation,
)
from docpipe.modules.pipeline.guardrails import VALIDATION, GuardrailVerdict, Verdict
from docpipe.modules.pipeline.models import (
    RUN_RUNNING,
    RUN_SUCCESS,
    RUN_TIMEOUT,
    GuardrailResult,
    MessageLog,
    NodeRun,
    Run,
)
from docpipe.modules.pipeline.run_tracker import RunTracker


def _call(user: str = "facts") -> CanonicalAICall:
    return CanonicalAICall(
        model_family="gpt-5-mini",
        messages=(ChatMessage("system", "You are a critic."), ChatMessage("user", user)),
        forced_tool="validate_facts",
    )


async def _messages(db: AsyncSession, node_run: NodeRun) -> list[MessageLog]:
    result = await db.execute(
        select(MessageLog).where(MessageLog.node_run_id == node_run.node_run_id).order_by(MessageLog.seq)
    )
    return list(result.scalars().all())


async def test_begin_and_end_run(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)

    run = await tracker.begin_run("dev", document_id="doc-1")
    assert run.status == RUN_RUNNING
    assert run.ended_at is None

    await tracker.end_run(run, RUN_SUCCESS, {"tokens_in": 10})

    assert run.status == RUN_SUCCESS
    assert run.ended_at is not None
    assert run.metrics == {"tokens_in": 10}


async def test_end_run_twice_raises(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    run = await tracker.begin_run("dev")
    await tracker.end_run(run, RUN_SUCCESS)

    with pytest.raises(RunAlreadyFinalized):
        await tracker.end_run(run, RUN_SUCCESS)


async def test_successful_node_run_transcript(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    run = await tracker.begin_run("dev")
    result = CanonicalAIResult(
        tool_invocations=[ToolInvocation("validate_facts", '{"is_valid": true}', "c1")],
        tokens_in=50,
        tokens_out=10,
    )

    node_run = await tracker.record_node_run(
        run,
        node_id="critic",
        call=_call(),
        inputs={"facts_count": 1},
        result=result,
        output={"is_valid": True},
        model_params={"seed": 42},
        latency_ms=120,
    )

    assert node_run.status == "success"
    assert node_run.model_family == "gpt-5-mini"
    assert node_run.rendered_prompt == "You are a critic."
    assert node_run.tool_calls == [{"name": "validate_facts", "arguments": '{"is_valid": true}', "call_id": "c1"}]
    assert (node_run.tokens_in, node_run.tokens_out) == (50, 10)

    messages = await _messages(db_session, node_run)
    assert [m.role for m in messages] == ["system", "user", "tool"]
    assert [m.seq for m in messages] == [0, 1, 2]
    assert messages[2].tool_name == "validate_facts"
    assert messages[2].tool_args == {"is_valid": True}


async def test_user_message_truncated(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    run = await tracker.begin_run("dev")

    node_run = await tracker.record_node_run(run, node_id="extractor", call=_call("x" * 5000))

    messages = await _messages(db_session, node_run)
    assert len(messages[1].content_text) == settings.message_log_max_chars


async def test_unparseable_tool_arguments_kept_as_text(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    run = await tracker.begin_run("dev")
    result = CanonicalAIResult(tool_invocations=[ToolInvocation("validate_facts", "{oops")])

    node_run = await tracker.record_node_run(
        run, node_id="critic", call=_call(), result=result, error=ValueError("bad json")
    )

    messages = await _messages(db_session, node_run)
    assert node_run.status == "error"
    assert node_run.error_message == "bad json"
    assert messages[-1].role == "tool"
    assert messages[-1].content_text == "{oops"
    assert messages[-1].tool_args is None


async def test_error_without_call_has_no_messages(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    run = await tracker.begin_run("dev")

    node_run = await tracker.record_node_run(
        run, node_id="arbiter", error=ProviderTimeout("https://api.openai.com/v1/responses", 60)
    )

    assert node_run.status == "error"
    assert await _messages(db_session, node_run) == []


async def test_record_guardrail(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    run = await tracker.begin_run("dev")
    node_run = await tracker.record_node_run(run, node_id="critic", call=_call())

    await tracker.record_guardrail(node_run, GuardrailVerdict(VALIDATION, Verdict.FAIL, {"is_valid": False}))

    count = await db_session.scalar(
        select(func.count()).select_from(GuardrailResult).where(GuardrailResult.node_run_id == node_run.node_run_id)
    )
    assert count == 1


async def test_mark_stale_runs(db_session: AsyncSession) -> None:
    tracker = RunTracker(db_session)
    now = utcnow()
    stale = await tracker.begin_run("dev")
    stale.started_at = now - timedelta(minutes=30)
    fresh = await tracker.begin_run("dev")
    done = await tracker.begin_run("dev")
    done.started_at = now - timedelta(minutes=30)
    await tracker.end_run(done, RUN_SUCCESS)
    await db_session.flush()

    timed_out = await tracker.mark_stale_runs(older_than=timedelta(minutes=10), now=now)

    assert timed_out == [stale.run_id]
    assert stale.status == RUN_TIMEOUT
    assert stale.ended_at is not None
    assert fresh.status == RUN_RUNNING
    assert (await db_session.get(Run, done.run_id)).status == RUN_SUCCESS


async def test_end_run_loses_to_sweeper_in_another_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as worker:
        tracker = RunTracker(worker)
        run = await tracker.begin_run("dev")
        await worker.commit()
        run_id = run.run_id

        async with session_factory() as sweeper:
            timed_out = await RunTracker(sweeper).mark_stale_runs(now=utcnow() + timedelta(hours=1))
            await sweeper.commit()
        assert timed_out == [run_id]

        # The worker still holds a 'running' copy of the row
        assert run.status == RUN_RUNNING
        with pytest.raises(RunAlreadyFinalized) as exc_info:
            await tracker.end_run(run, RUN_SUCCESS)
        assert exc_info.value.status == RUN_TIMEOUT
        await worker.rollback()

    async with session_factory() as reader:
        stored = await reader.get(Run, run_id)
        assert stored.status == RUN_TIMEOUT
        assert stored.error_message == "Run exceeded the stale-run threshold"


async def test_sweeper_skips_run_finished_in_another_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as sweeper_session:
        sweeper = RunTracker(sweeper_session)
        run = await sweeper.begin_run("dev")
        await sweeper_session.commit()

        async with session_factory() as worker:
            worker_run = await worker.get(Run, run.run_id)
            await RunTracker(worker).end_run(worker_run, RUN_SUCCESS)
            await worker.commit()

        timed_out = await sweeper.mark_stale_runs(now=utcnow() + timedelta(hours=1))
        await sweeper_session.commit()

    assert timed_out == []
    async with session_factory() as reader:
        assert (await reader.get(Run, run.run_id)).status == RUN_SUCCESS
