"""History service: DB queries for Run & NodeRun."""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from docpipe.modules.pipeline.models import NodeRun, Run


async def list_runs(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    status: str | None = None,
    environment: str | None = None,
) -> tuple[list[Run], int]:
    """Return a paginated list of runs, newest first."""
    base = select(Run)
    count_base = select(func.count()).select_from(Run)

    if status is not None:
        base = base.where(Run.status == status)
        count_base = count_base.where(Run.status == status)
    if environment is not None:
        base = base.where(Run.environment == environment)
        count_base = count_base.where(Run.environment == environment)

    total = (await db.execute(count_base)).scalar_one()

    query = (
        base.order_by(Run.started_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def get_run_detail(
    db: AsyncSession,
    run_id: uuid.UUID,
) -> Run | None:
    """Return a run with its node runs, messages and guardrail results (or None)."""
    result = await db.execute(
        select(Run)
        .where(Run.run_id == run_id)
        .options(
            selectinload(Run.node_runs).selectinload(NodeRun.messages),
            selectinload(Run.node_runs).selectinload(NodeRun.guardrail_results),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
