"""Pipeline API: /pipeline/ endpoints.

Triggers:
  - POST /steps/{step}         Run a single step (extract|normalize|validate|arbitrate)
  - POST /runs                 Run the full pipeline over one document

History (read-only):
  - GET  /runs                 Paginated list of runs
  - GET  /runs/{run_id}        Single run with node runs, messages and guardrails

Maintenance:
  - POST /runs/cleanup-stale   Time out runs stuck in 'running'

Triggers require a bearer token and are rate limited per caller before any
persistence or provider call.
"""

from __future__ import annotations

import math
from typing import Any

import httpx
import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.database import get_db
from docpipe.core.errors import InvalidInput, RunNotFound
from docpipe.core.security import get_caller_id
from docpipe.modules.pipeline.agents.orchestrator import STEPS, PipelineOrchestrator
from docpipe.modules.pipeline.gateway.adapter import AIInvocationAdapter
from docpipe.modules.pipeline.gateway.capabilities import CapabilityRegistry
from docpipe.modules.pipeline.history_schemas import PaginatedRuns, RunDetail, RunSummary
from docpipe.modules.pipeline.history_service import get_run_detail, list_runs
from docpipe.modules.pipeline.rate_limiter import RateLimiter, get_rate_limiter
from docpipe.modules.pipeline.run_tracker import RunTracker
from docpipe.modules.pipeline.schemas import (
    CleanupResponse,
    GuardrailView,
    RunRequest,
    RunResponse,
    StepRequest,
    StepResponse,
    StepSummary,
    parse_uuid,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def enforce_rate_limit(
    caller_id: str = Depends(get_caller_id),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> str:
    limiter.check(caller_id)
    return caller_id


def get_http_client(request: Request) -> httpx.AsyncClient | None:
    """Shared provider client created in the app lifespan (None outside it)."""
    return getattr(request.app.state, "http_client", None)


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient | None = Depends(get_http_client),
) -> PipelineOrchestrator:
    registry = await CapabilityRegistry.load(db)
    return PipelineOrchestrator(db, AIInvocationAdapter(registry, client=client))


def _guardrail_views(verdicts: list[Any]) -> list[GuardrailView]:
    return [GuardrailView(suite=v.suite, verdict=v.verdict.value, details=v.details) for v in verdicts]


def _step_payload(step: str, body: StepRequest) -> dict[str, Any]:
    """Check the step's required inputs and build its payload."""
    if step == "extract":
        if body.document_text is None:
            raise InvalidInput(
                "documentText", "documentText is required for the extract step"
            )
        return {"document_text": body.document_text, "document_id": body.document_id}

    if body.facts is None:
        raise InvalidInput("facts", f"facts is required for the {step} step")
    if step == "normalize" and body.entities is None:
        raise InvalidInput("entities", "entities is required for the normalize step")
    return {
        "entities": body.entities or [],
        "facts": body.facts,
        "document_id": body.document_id,
    }


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@router.post("/steps/{step}", response_model=StepResponse)
async def trigger_step(
    step: str,
    body: StepRequest,
    caller_id: str = Depends(enforce_rate_limit),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> StepResponse:
    """Run one pipeline step, optionally inside an existing running run."""
    if step not in STEPS:
        raise InvalidInput("step", f"Unknown step '{step}'. Expected one of: {', '.join(STEPS)}")
    payload = _step_payload(step, body)

    logger.info(
        "Step triggered",
        step=step,
        caller_id=caller_id,
        environment=body.environment,
        run_id=str(body.run_id) if body.run_id else None,
    )

    run, record = await orchestrator.execute_single_step(
        step, payload, environment=body.environment, run_id=body.run_id
    )

    if record.error is not None:
        record.error.context.update(
            {"runId": str(run.run_id), "nodeRunId": str(record.node_run_id)}
        )
        raise record.error

    return StepResponse(
        success=record.succeeded,
        run_id=run.run_id,
        node_run_id=record.node_run_id,
        step=step,
        structured_output=record.output,
        guardrails=_guardrail_views(record.verdicts),
        metrics={
            "tokens_in": record.tokens_in,
            "tokens_out": record.tokens_out,
            "latency_ms": record.latency_ms,
        },
        error=record.failure_reason,
    )


@router.post("/runs", response_model=RunResponse)
async def trigger_run(
    body: RunRequest,
    caller_id: str = Depends(enforce_rate_limit),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> RunResponse:
    """Run extract -> normalize -> validate -> arbitrate over one document."""
    logger.info(
        "Pipeline triggered",
        caller_id=caller_id,
        environment=body.environment,
        document_id=body.document_id,
    )

    outcome = await orchestrator.run(
        body.document_text, environment=body.environment, document_id=body.document_id
    )
    m = outcome.metrics

    return RunResponse(
        success=outcome.status == "success",
        run_id=outcome.run_id,
        status=outcome.status,
        steps_completed=m["steps_completed"],
        entities_extracted=m["entities_extracted"],
        facts_extracted=m["facts_extracted"],
        entities_stored=m["entities_stored"],
        facts_stored=m["facts_stored"],
        arbiter_decision=m["arbiter_decision"],
        steps=[
            StepSummary(
                step=s.step,
                node_run_id=s.node_run_id,
                status=s.status,
                error=s.failure_reason,
                guardrails=_guardrail_views(s.verdicts),
            )
            for s in outcome.steps
        ],
        metrics=m,
        error=outcome.error_message,
    )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@router.get("/runs", response_model=PaginatedRuns)
async def get_runs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: str | None = Query(None),
    environment: str | None = Query(None),
    _caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> PaginatedRuns:
    runs, total = await list_runs(
        db, page=page, page_size=page_size, status=status, environment=environment
    )
    return PaginatedRuns(
        items=[RunSummary.model_validate(r) for r in runs],
        total=total,
        page=page,
        page_size=page_size,
        pages=max(1, math.ceil(total / page_size)),
    )


@router.post("/runs/cleanup-stale", response_model=CleanupResponse)
async def cleanup_stale_runs(
    _caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> CleanupResponse:
    run_ids = await RunTracker(db).mark_stale_runs()
    return CleanupResponse(timed_out=len(run_ids), run_ids=run_ids)


@router.get("/runs/{run_id}", response_model=RunDetail)
async def get_run(
    run_id: str,
    _caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> RunDetail:
    try:
        parsed = parse_uuid(run_id)
    except ValueError:
        raise InvalidInput("runId", "runId must be a valid UUID") from None

    run = await get_run_detail(db, parsed)
    if run is None:
        raise RunNotFound(run_id)
    return RunDetail.model_validate(run)
