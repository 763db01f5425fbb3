"""Tasks API endpoints."""

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.api.v1.auth import CurrentPrincipal
from taskdesk.db.session import get_db_session
from taskdesk.models.task import PRIORITY_MEDIUM, Task
from taskdesk.services.dashboard import dashboard_data
from taskdesk.services.task_query import TaskFilters, TaskListItem, list_tasks
from taskdesk.services.tasks import TaskService

router = APIRouter()
logger = structlog.get_logger()


# Request/Response Models
class ChecklistItemIn(BaseModel):
    """A checklist item as sent by clients. ``completed`` accepts true/"true"/1/"1"."""

    id: int | None = None
    text: str = ""
    completed: Any = False
    sort_order: int | None = None


class TaskCreate(BaseModel):
    """Create a new task."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    priority: str = Field(default=PRIORITY_MEDIUM, pattern="^(Low|Medium|High)$")
    status: str | None = Field(None, pattern="^(Pending|In Progress|Completed)$")
    progress: int | None = None
    due_date: datetime
    assigned_to: Any = None
    attachments: Any = None
    checklist: list[ChecklistItemIn] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    """Patch a task. Only the fields sent are applied."""

    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None
    due_date: datetime | None = None
    assigned_to: Any = None
    attachments: Any = None
    progress: Any = None


class StatusUpdate(BaseModel):
    status: str
    progress: Any = None


class ChecklistReplace(BaseModel):
    items: list[ChecklistItemIn]


class TodoCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)
    completed: Any = False
    sort_order: int | None = None


class TodoUpdate(BaseModel):
    text: str | None = Field(None, max_length=500)
    completed: Any = None
    sort_order: int | None = None


class TodoResponse(BaseModel):
    id: int
    text: str
    completed: bool
    sort_order: int

    class Config:
        from_attributes = True


class TaskResponse(BaseModel):
    """Task response."""

    id: int
    title: str
    description: str | None
    priority: str
    status: str
    due_date: datetime
    assigned_to: list[int]
    created_by: int | None
    attachments: list[Any]
    progress: int
    created_at: datetime
    updated_at: datetime
    checklist: list[TodoResponse] = Field(default_factory=list)
    todo_total_count: int = 0
    completed_todo_count: int = 0

    class Config:
        from_attributes = True


class TaskListResponse(BaseModel):
    items: list[TaskResponse]
    total: int
    limit: int
    offset: int


class UpcomingTaskResponse(BaseModel):
    id: int
    title: str
    status: str
    priority: str
    due_date: datetime
    assigned_to: list[int]

    class Config:
        from_attributes = True


class DashboardResponse(BaseModel):
    counts_by_status: dict[str, int]
    counts_by_priority: dict[str, int]
    total: int
    overdue: int
    upcoming: list[UpcomingTaskResponse]


class TaskHistoryResponse(BaseModel):
    id: int
    task_id: int
    actor_id: int | None
    action: str
    entity: str
    entity_id: int | None
    old: dict | None
    new: dict | None
    diff: dict | None
    meta: dict | None
    created_at: datetime

    class Config:
        from_attributes = True


def _task_to_response(task: Task) -> TaskResponse:
    response = TaskResponse.model_validate(task)
    response.todo_total_count = len(task.todos)
    response.completed_todo_count = sum(1 for todo in task.todos if todo.completed)
    return response


def _list_item_to_response(item: TaskListItem) -> TaskResponse:
    response = TaskResponse.model_validate(item.task)
    response.todo_total_count = item.todo_total_count
    response.completed_todo_count = item.completed_todo_count
    return response


# =============================================================================
# Dashboard / listing
# =============================================================================


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    """Counts over all tasks for admins, over assigned tasks for members."""
    return await dashboard_data(db, principal)


@router.get("", response_model=TaskListResponse)
async def get_tasks(
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
    status: str | None = Query(None),
    priority: str | None = Query(None),
    search: str | None = Query(None),
    due_from: datetime | None = Query(None),
    due_to: datetime | None = Query(None),
    assigned_to: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
):
    """List tasks. Members only ever see tasks they are assigned to."""
    page = await list_tasks(
        db,
        principal,
        TaskFilters(
            status=status,
            priority=priority,
            search=search,
            due_from=due_from,
            due_to=due_to,
            assigned_to=assigned_to,
            limit=limit,
            offset=offset,
        ),
    )
    return TaskListResponse(
        items=[_list_item_to_response(item) for item in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


# =============================================================================
# Task CRUD
# =============================================================================


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    body: TaskCreate,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService(db).create_task(
        principal,
        title=body.title,
        description=body.description,
        priority=body.priority,
        status=body.status,
        progress=body.progress,
        due_date=body.due_date,
        assigned_to=body.assigned_to,
        attachments=body.attachments,
        checklist=body.checklist,
    )
    return _task_to_response(task)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService(db).get_task(principal, task_id)
    return _task_to_response(task)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    body: TaskUpdate,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    """Patch fields. Non-admins may only change description, attachments and progress."""
    task = await TaskService(db).update_task(
        principal, task_id, body.model_dump(exclude_unset=True)
    )
    return _task_to_response(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
) -> None:
    await TaskService(db).delete_task(principal, task_id)


@router.put("/{task_id}/status", response_model=TaskResponse)
async def update_task_status(
    task_id: int,
    body: StatusUpdate,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    """Set status directly. Admin or assignee, and only while the checklist is empty."""
    task = await TaskService(db).update_status(
        principal, task_id, body.status, progress=body.progress
    )
    return _task_to_response(task)


@router.get("/{task_id}/history", response_model=list[TaskHistoryResponse])
async def get_task_history(
    task_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await TaskService(db).get_history(principal, task_id, limit=limit, offset=offset)


# =============================================================================
# Checklist
# =============================================================================


@router.put("/{task_id}/todo", response_model=TaskResponse)
async def replace_checklist(
    task_id: int,
    body: ChecklistReplace,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    """Replace the whole checklist; status and progress are re-derived."""
    task = await TaskService(db).replace_checklist(principal, task_id, body.items)
    return _task_to_response(task)


@router.post("/{task_id}/todos", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def add_todo(
    task_id: int,
    body: TodoCreate,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService(db).add_todo(
        principal, task_id, body.text, completed=body.completed, sort_order=body.sort_order
    )
    return _task_to_response(task)


@router.patch("/{task_id}/todos/{todo_id}", response_model=TaskResponse)
async def update_todo(
    task_id: int,
    todo_id: int,
    body: TodoUpdate,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService(db).update_todo(
        principal, task_id, todo_id, body.model_dump(exclude_unset=True)
    )
    return _task_to_response(task)


@router.delete("/{task_id}/todos/{todo_id}", response_model=TaskResponse)
async def delete_todo(
    task_id: int,
    todo_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService(db).delete_todo(principal, task_id, todo_id)
    return _task_to_response(task)
