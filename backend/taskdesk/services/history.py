"""Task audit trail."""

from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.models.task import Task, TaskHistory, TaskTodo

logger = structlog.get_logger()

# Task columns captured in history snapshots
SNAPSHOT_FIELDS = (
    "title",
    "description",
    "priority",
    "status",
    "due_date",
    "assigned_to",
    "attachments",
    "progress",
)


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    return value


def task_snapshot(task: Task) -> dict[str, Any]:
    return {name: _json_safe(getattr(task, name)) for name in SNAPSHOT_FIELDS}


def todo_snapshot(todo: TaskTodo) -> dict[str, Any]:
    return {"text": todo.text, "completed": bool(todo.completed), "sort_order": todo.sort_order}


def diff_snapshots(old: dict[str, Any] | None, new: dict[str, Any] | None) -> dict[str, dict]:
    """Changed fields only, as ``{field: {"from": old, "to": new}}``."""
    old = old or {}
    new = new or {}
    diff = {}
    for key in sorted(set(old) | set(new)):
        before = old.get(key)
        after = new.get(key)
        if before != after:
            diff[key] = {"from": before, "to": after}
    return diff


def record(
    db: AsyncSession,
    *,
    task_id: int,
    actor_id: int | None,
    action: str,
    entity: str = "task",
    entity_id: int | None = None,
    old: dict[str, Any] | None = None,
    new: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
) -> TaskHistory | None:
    """Add a history row to the session.

    Updates that changed nothing are not recorded.
    """
    diff = diff_snapshots(old, new) if old is not None and new is not None else None
    if diff is not None and not diff:
        return None

    entry = TaskHistory(
        task_id=task_id,
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        old=old,
        new=new,
        diff=diff,
        meta=meta,
    )
    db.add(entry)
    logger.debug("task_history_recorded", task_id=task_id, action=action, entity=entity)
    return entry


async def list_history(
    db: AsyncSession,
    task_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[TaskHistory]:
    """History of a task, newest first."""
    result = await db.execute(
        select(TaskHistory)
        .where(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.created_at.desc(), TaskHistory.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())
