"""Dashboard aggregates for admins and members."""

from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.db.base import utcnow
from taskdesk.models.task import STATUS_COMPLETED, Task
from taskdesk.services.access_control import Principal
from taskdesk.services.task_query import assigned_to_contains, dialect_name

logger = structlog.get_logger()

UPCOMING_LIMIT = 10


async def _counts_by(db: AsyncSession, column, conditions: list) -> dict[str, int]:
    result = await db.execute(
        select(column, func.count(Task.id)).where(*conditions).group_by(column)
    )
    return {key: int(count) for key, count in result.all()}


async def dashboard_data(db: AsyncSession, principal: Principal) -> dict[str, Any]:
    """Task counts, overdue total and the next incomplete tasks.

    Admins get figures over every task; members over the tasks they are
    assigned to.
    """
    conditions = []
    if not principal.is_admin:
        conditions.append(assigned_to_contains(principal.id, dialect_name(db)))

    counts_by_status = await _counts_by(db, Task.status, conditions)
    counts_by_priority = await _counts_by(db, Task.priority, conditions)

    overdue = (
        await db.execute(
            select(func.count(Task.id)).where(
                *conditions,
                Task.status != STATUS_COMPLETED,
                Task.due_date < utcnow(),
            )
        )
    ).scalar_one()

    upcoming = (
        await db.execute(
            select(Task)
            .where(*conditions, Task.status != STATUS_COMPLETED)
            .order_by(Task.due_date.asc(), Task.id.asc())
            .limit(UPCOMING_LIMIT)
        )
    ).scalars().all()

    return {
        "counts_by_status": counts_by_status,
        "counts_by_priority": counts_by_priority,
        "total": sum(counts_by_status.values()),
        "overdue": int(overdue),
        "upcoming": list(upcoming),
    }
