"""Task listing with role-based scoping and checklist counts."""

from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import ColumnElement, cast, func, or_, select, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.config import get_settings
from taskdesk.models.task import TASK_PRIORITIES, TASK_STATUSES, Task, TaskTodo
from taskdesk.services.access_control import Principal
from taskdesk.utils.json_fields import coerce_id

logger = structlog.get_logger()
settings = get_settings()


@dataclass
class TaskFilters:
    """Optional listing filters. Unknown status/priority values are ignored."""

    status: str | None = None
    priority: str | None = None
    search: str | None = None
    due_from: datetime | None = None
    due_to: datetime | None = None
    assigned_to: int | str | None = None
    limit: int | None = None
    offset: int = 0


@dataclass
class TaskListItem:
    task: Task
    todo_total_count: int = 0
    completed_todo_count: int = 0


@dataclass
class TaskPage:
    items: list[TaskListItem] = field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0


LIKE_ESCAPE = "\\"


def contains_pattern(term: str) -> str:
    """``ILIKE`` pattern matching ``term`` literally anywhere in the value."""
    escaped = (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )
    return f"%{escaped}%"


def dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def assigned_to_contains(user_id: int, dialect: str) -> ColumnElement[bool]:
    """SQL predicate: ``tasks.assigned_to`` holds ``user_id``.

    Matches the id whether it was stored as a number or as a numeric string.
    """
    if dialect == "postgresql":
        column = cast(Task.assigned_to, JSONB)
        return or_(column.contains([user_id]), column.contains([str(user_id)]))
    if dialect in ("mysql", "mariadb"):
        return or_(
            func.json_contains(Task.assigned_to, func.json_array(user_id)) == 1,
            func.json_contains(Task.assigned_to, func.json_array(str(user_id))) == 1,
        )
    if dialect == "sqlite":
        return text(
            "EXISTS (SELECT 1 FROM json_each(tasks.assigned_to) "
            "WHERE CAST(json_each.value AS INTEGER) = :assignee_id)"
        ).bindparams(assignee_id=user_id)
    raise NotImplementedError(f"JSON membership is not supported on {dialect}")


def build_task_conditions(
    principal: Principal,
    filters: TaskFilters,
    dialect: str,
) -> list[ColumnElement[bool]]:
    """WHERE clauses for a listing, including the non-admin scope."""
    conditions: list[ColumnElement[bool]] = []

    if principal.is_admin:
        assignee_id = coerce_id(filters.assigned_to)
        if assignee_id is not None:
            conditions.append(assigned_to_contains(assignee_id, dialect))
    else:
        # Members only ever see their own assignments
        conditions.append(assigned_to_contains(principal.id, dialect))

    if filters.status in TASK_STATUSES:
        conditions.append(Task.status == filters.status)
    if filters.priority in TASK_PRIORITIES:
        conditions.append(Task.priority == filters.priority)

    if filters.search and filters.search.strip():
        pattern = contains_pattern(filters.search.strip())
        conditions.append(
            or_(
                Task.title.ilike(pattern, escape=LIKE_ESCAPE),
                Task.description.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )

    if filters.due_from is not None:
        conditions.append(Task.due_date >= filters.due_from)
    if filters.due_to is not None:
        conditions.append(Task.due_date <= filters.due_to)

    return conditions


def _page_bounds(filters: TaskFilters) -> tuple[int, int]:
    limit = filters.limit if filters.limit and filters.limit > 0 else settings.task_list_default_limit
    limit = min(limit, settings.task_list_max_limit)
    offset = max(filters.offset or 0, 0)
    return limit, offset


async def list_tasks(
    db: AsyncSession,
    principal: Principal,
    filters: TaskFilters | None = None,
) -> TaskPage:
    """List tasks visible to ``principal``, soonest due first.

    Admins see every task and may narrow by ``assigned_to``. Everyone else
    is restricted to tasks they are assigned to, whatever they pass in
    ``assigned_to``.
    """
    filters = filters or TaskFilters()
    conditions = build_task_conditions(principal, filters, dialect_name(db))
    limit, offset = _page_bounds(filters)

    todo_total = (
        select(func.count(TaskTodo.id))
        .where(TaskTodo.task_id == Task.id)
        .correlate(Task)
        .scalar_subquery()
    )
    todo_done = (
        select(func.count(TaskTodo.id))
        .where(TaskTodo.task_id == Task.id, TaskTodo.completed.is_(True))
        .correlate(Task)
        .scalar_subquery()
    )

    query = (
        select(
            Task,
            todo_total.label("todo_total_count"),
            todo_done.label("completed_todo_count"),
        )
        .where(*conditions)
        .order_by(Task.due_date.asc(), Task.id.asc())
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(query)).all()

    count_query = select(func.count(Task.id)).where(*conditions)
    total = (await db.execute(count_query)).scalar_one()

    items = [
        TaskListItem(
            task=row[0],
            todo_total_count=row.todo_total_count or 0,
            completed_todo_count=row.completed_todo_count or 0,
        )
        for row in rows
    ]

    logger.debug(
        "tasks_listed",
        principal_id=principal.id,
        count=len(items),
        total=total,
    )
    return TaskPage(items=items, total=total, limit=limit, offset=offset)
