"""Task service: create, read, update, delete and checklist management."""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.exceptions import NotFoundError, ValidationError
from taskdesk.models.task import (
    PRIORITY_MEDIUM,
    STATUS_PENDING,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskTodo,
)
from taskdesk.services import history
from taskdesk.services.access_control import (
    ADMIN_FIELDS,
    Principal,
    require_status_update,
    require_task_access,
    require_task_fields,
    require_task_management,
)
from taskdesk.services.checklist import derive_checklist_state, is_completed
from taskdesk.services.task_files import unlink_quietly
from taskdesk.utils.json_fields import coerce_id, normalize_id_list, normalize_list

logger = structlog.get_logger()

DERIVED_FIELDS = ("status", "progress")


def validate_progress(value: Any) -> int:
    """Progress must be a whole number between 0 and 100."""
    if isinstance(value, bool):
        raise ValidationError("progress must be between 0 and 100", field="progress")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError("progress must be between 0 and 100", field="progress")
    if not (0 <= number <= 100) or not number.is_integer():
        raise ValidationError("progress must be between 0 and 100", field="progress")
    return int(number)


def validate_status(value: Any) -> str:
    if value not in TASK_STATUSES:
        raise ValidationError(f"Invalid status: {value}", field="status")
    return value


def validate_priority(value: Any) -> str:
    if value not in TASK_PRIORITIES:
        raise ValidationError(f"Invalid priority: {value}", field="priority")
    return value


def validate_title(value: Any) -> str:
    title = str(value or "").strip()
    if not title:
        raise ValidationError("title is required", field="title")
    return title


def validate_sort_order(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("sort_order must be an integer", field="sort_order")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("sort_order must be an integer", field="sort_order")


def _todo_payload(item: Any, position: int) -> dict[str, Any]:
    """Normalize an incoming checklist item (dict or pydantic model)."""
    if hasattr(item, "model_dump"):
        item = item.model_dump(exclude_unset=False)
    sort_order = item.get("sort_order")
    if sort_order is None:
        sort_order = item.get("sortOrder")
    try:
        sort_order = int(sort_order)
    except (TypeError, ValueError):
        sort_order = position
    return {
        "id": coerce_id(item.get("id")),
        "text": str(item.get("text") or "").strip(),
        "completed": is_completed(item.get("completed")),
        "sort_order": sort_order,
    }


class TaskService:
    """Service for tasks and their checklists.

    Every method takes the calling ``Principal`` and enforces the
    authorization policy before writing anything.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Loading
    # =========================================================================

    async def _load(self, task_id: int) -> Task:
        # populate_existing reloads the checklist and files even when the
        # task is already in the identity map
        result = await self.db.execute(
            select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFoundError("Task")
        return task

    async def get_task(self, principal: Principal, task_id: int) -> Task:
        """Fetch a task the principal can read, with its checklist."""
        task = await self._load(task_id)
        require_task_access(principal, task)
        return task

    async def get_history(
        self,
        principal: Principal,
        task_id: int,
        limit: int = 50,
        offset: int = 0,
    ):
        await self.get_task(principal, task_id)
        return await history.list_history(self.db, task_id, limit=limit, offset=offset)

    # =========================================================================
    # Task CRUD
    # =========================================================================

    async def create_task(
        self,
        principal: Principal,
        *,
        title: str,
        due_date: datetime | None,
        description: str | None = None,
        priority: str = PRIORITY_MEDIUM,
        status: str | None = None,
        progress: Any = None,
        assigned_to: Any = None,
        attachments: Any = None,
        checklist: list[Any] | None = None,
    ) -> Task:
        """Create a task. Admin only."""
        require_task_management(principal)

        title = validate_title(title)
        if due_date is None:
            raise ValidationError("due_date is required", field="due_date")
        priority = validate_priority(priority or PRIORITY_MEDIUM)

        items = [_todo_payload(item, i) for i, item in enumerate(checklist or [])]
        items = [item for item in items if item["text"]]

        if items and (status is not None or progress is not None):
            raise ValidationError(
                "status and progress are derived from the checklist", field="status"
            )

        task = Task(
            title=title,
            description=description,
            priority=priority,
            status=validate_status(status) if status is not None else STATUS_PENDING,
            progress=validate_progress(progress) if progress is not None else 0,
            due_date=due_date,
            assigned_to=normalize_id_list(assigned_to),
            attachments=normalize_list(attachments),
            created_by=principal.id,
            todos=[
                TaskTodo(
                    text=item["text"],
                    completed=item["completed"],
                    sort_order=item["sort_order"],
                )
                for item in items
            ],
            files=[],
        )
        if items:
            self._refresh_derived_state(task)

        self.db.add(task)
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="created",
            new=history.task_snapshot(task),
        )
        await self.db.commit()

        logger.info(
            "task_created",
            task_id=task.id,
            created_by=principal.id,
            assignees=task.assigned_to,
            checklist_items=len(items),
        )
        return task

    async def update_task(
        self,
        principal: Principal,
        task_id: int,
        changes: dict[str, Any],
    ) -> Task:
        """Patch task fields, each gated by the field-level policy."""
        task = await self._load(task_id)

        unknown = set(changes) - ADMIN_FIELDS
        if unknown:
            raise ValidationError(f"Unknown field: {sorted(unknown)[0]}")
        require_task_fields(principal, task, changes)

        # Validate everything before the first write
        values: dict[str, Any] = {}
        for field, value in changes.items():
            if field == "title":
                values[field] = validate_title(value)
            elif field == "priority":
                values[field] = validate_priority(value)
            elif field == "status":
                values[field] = validate_status(value)
            elif field == "progress":
                values[field] = validate_progress(value)
            elif field == "due_date":
                if value is None:
                    raise ValidationError("due_date is required", field="due_date")
                values[field] = value
            elif field == "assigned_to":
                values[field] = normalize_id_list(value)
            elif field == "attachments":
                values[field] = normalize_list(value)
            else:
                values[field] = value

        if task.todos and any(field in values for field in DERIVED_FIELDS):
            raise ValidationError(
                "status and progress are derived from the checklist",
                field="status" if "status" in values else "progress",
            )

        before = history.task_snapshot(task)
        for field, value in values.items():
            setattr(task, field, value)
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="updated",
            old=before,
            new=history.task_snapshot(task),
        )
        await self.db.commit()

        logger.info("task_updated", task_id=task.id, fields=sorted(values), actor_id=principal.id)
        return task

    async def update_status(
        self,
        principal: Principal,
        task_id: int,
        status: str,
        progress: Any = None,
    ) -> Task:
        """Set status (and optionally progress) on a task without checklist items."""
        status = validate_status(status)
        task = await self._load(task_id)
        require_status_update(principal, task)

        if task.todos:
            raise ValidationError(
                "status and progress are derived from the checklist", field="status"
            )
        new_progress = validate_progress(progress) if progress is not None else None

        before = history.task_snapshot(task)
        task.status = status
        if new_progress is not None:
            task.progress = new_progress
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="status_changed",
            old=before,
            new=history.task_snapshot(task),
        )
        await self.db.commit()

        logger.info("task_status_changed", task_id=task.id, status=status, actor_id=principal.id)
        return task

    async def delete_task(self, principal: Principal, task_id: int) -> None:
        """Delete a task with its checklist, file records and stored blobs. Admin only."""
        require_task_management(principal)
        task = await self._load(task_id)

        stored_paths = [f.storage_path for f in task.files]
        await self.db.delete(task)
        await self.db.commit()

        for path in stored_paths:
            unlink_quietly(path)

        logger.info("task_deleted", task_id=task_id, actor_id=principal.id, files=len(stored_paths))

    # =========================================================================
    # Checklist
    # =========================================================================

    def _refresh_derived_state(self, task: Task) -> None:
        # Emptying the checklist resets the task to Pending/0
        state = derive_checklist_state(task.todos)
        task.status = state.status
        task.progress = state.progress

    async def _load_for_checklist(self, principal: Principal, task_id: int) -> Task:
        task = await self._load(task_id)
        require_status_update(principal, task)
        return task

    async def replace_checklist(
        self,
        principal: Principal,
        task_id: int,
        items: list[Any],
    ) -> Task:
        """Replace the checklist with ``items``.

        Items whose id is already on the task are updated, others inserted,
        and existing items missing from ``items`` are deleted. Blank texts
        are skipped.
        """
        task = await self._load_for_checklist(principal, task_id)

        payloads = [_todo_payload(item, i) for i, item in enumerate(items)]
        existing = {todo.id: todo for todo in task.todos}
        incoming_ids = {p["id"] for p in payloads if p["id"] is not None}
        before = [history.todo_snapshot(todo) for todo in task.checklist]

        for todo_id, todo in existing.items():
            if todo_id not in incoming_ids:
                task.todos.remove(todo)

        for payload in payloads:
            if not payload["text"]:
                continue
            todo = existing.get(payload["id"]) if payload["id"] is not None else None
            if todo is not None:
                todo.text = payload["text"]
                todo.completed = payload["completed"]
                todo.sort_order = payload["sort_order"]
            else:
                task.todos.append(
                    TaskTodo(
                        text=payload["text"],
                        completed=payload["completed"],
                        sort_order=payload["sort_order"],
                    )
                )

        self._refresh_derived_state(task)
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="todo_updated",
            entity="todo",
            old={"checklist": before},
            new={"checklist": [history.todo_snapshot(todo) for todo in task.checklist]},
        )
        await self.db.commit()

        logger.info("task_checklist_replaced", task_id=task.id, items=len(task.todos))
        return task

    async def add_todo(
        self,
        principal: Principal,
        task_id: int,
        text: str,
        completed: Any = False,
        sort_order: int | None = None,
    ) -> Task:
        task = await self._load_for_checklist(principal, task_id)

        text = str(text or "").strip()
        if not text:
            raise ValidationError("text is required", field="text")
        if sort_order is None:
            sort_order = max((todo.sort_order for todo in task.todos), default=-1) + 1

        todo = TaskTodo(text=text, completed=is_completed(completed), sort_order=sort_order)
        task.todos.append(todo)
        self._refresh_derived_state(task)
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="todo_added",
            entity="todo",
            entity_id=todo.id,
            new=history.todo_snapshot(todo),
        )
        await self.db.commit()

        logger.info("task_todo_added", task_id=task.id, todo_id=todo.id)
        return task

    async def update_todo(
        self,
        principal: Principal,
        task_id: int,
        todo_id: int,
        changes: dict[str, Any],
    ) -> Task:
        task = await self._load_for_checklist(principal, task_id)
        todo = next((t for t in task.todos if t.id == todo_id), None)
        if todo is None:
            raise NotFoundError("Checklist item")

        values: dict[str, Any] = {}
        if "text" in changes:
            text = str(changes["text"] or "").strip()
            if not text:
                raise ValidationError("text is required", field="text")
            values["text"] = text
        if "completed" in changes:
            values["completed"] = is_completed(changes["completed"])
        if changes.get("sort_order") is not None:
            values["sort_order"] = validate_sort_order(changes["sort_order"])

        before = history.todo_snapshot(todo)
        for field, value in values.items():
            setattr(todo, field, value)
        self._refresh_derived_state(task)
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="todo_updated",
            entity="todo",
            entity_id=todo.id,
            old=before,
            new=history.todo_snapshot(todo),
        )
        await self.db.commit()
        return task

    async def delete_todo(self, principal: Principal, task_id: int, todo_id: int) -> Task:
        task = await self._load_for_checklist(principal, task_id)
        todo = next((t for t in task.todos if t.id == todo_id), None)
        if todo is None:
            raise NotFoundError("Checklist item")

        before = history.todo_snapshot(todo)
        task.todos.remove(todo)
        self._refresh_derived_state(task)
        await self.db.flush()

        history.record(
            self.db,
            task_id=task.id,
            actor_id=principal.id,
            action="todo_deleted",
            entity="todo",
            entity_id=todo_id,
            old=before,
        )
        await self.db.commit()
        return task
