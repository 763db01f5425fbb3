"""Removal of a user id from every task's assignee list."""

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.exceptions import CascadeError
from taskdesk.models.task import Task
from taskdesk.services.task_query import assigned_to_contains, dialect_name

logger = structlog.get_logger()


async def remove_user_from_all_tasks(db: AsyncSession, user_id: int) -> int:
    """Unassign ``user_id`` from every task that lists it.

    Remaining assignees keep their order and an emptied list is stored as
    ``[]``. Runs in the caller's transaction and only flushes; on any
    failure the session is rolled back and ``CascadeError`` is raised.

    Returns:
        Number of tasks that were rewritten
    """
    try:
        result = await db.execute(
            select(Task.id, Task.assigned_to).where(
                assigned_to_contains(user_id, dialect_name(db))
            )
        )
        rows = result.all()

        updated = 0
        for task_id, assignees in rows:
            remaining = [assignee for assignee in assignees if assignee != user_id]
            if remaining == assignees:
                continue
            await db.execute(
                update(Task)
                .where(Task.id == task_id)
                .values(assigned_to=remaining)
            )
            updated += 1

        await db.flush()
    except Exception as e:
        await db.rollback()
        logger.error("user_task_cascade_failed", user_id=user_id, error=str(e))
        raise CascadeError(user_id, e) from e

    logger.info("user_removed_from_tasks", user_id=user_id, tasks_updated=updated)
    return updated
