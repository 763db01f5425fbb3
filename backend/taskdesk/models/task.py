"""Task, checklist, attachment and history models."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskdesk.db.base import Base, BaseModel, utcnow
from taskdesk.db.types import IdList, JSONList

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"
TASK_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)

PRIORITY_LOW = "Low"
PRIORITY_MEDIUM = "Medium"
PRIORITY_HIGH = "High"
TASK_PRIORITIES = (PRIORITY_LOW, PRIORITY_MEDIUM, PRIORITY_HIGH)


class Task(BaseModel):
    """A unit of work assigned to zero or more users."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("progress BETWEEN 0 AND 100", name="ck_tasks_progress"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Low, Medium, High
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PRIORITY_MEDIUM, index=True
    )
    # Pending, In Progress, Completed
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=STATUS_PENDING, index=True
    )
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Ordered user ids; membership is what matters for access
    assigned_to: Mapped[list[int]] = mapped_column(IdList, nullable=False, default=list)
    created_by: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # URLs or free-text labels, not file content
    attachments: Mapped[list[Any]] = mapped_column(JSONList, nullable=False, default=list)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    todos: Mapped[list["TaskTodo"]] = relationship(
        "TaskTodo",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: [TaskTodo.sort_order, TaskTodo.id],
        lazy="selectin",
    )
    files: Mapped[list["TaskFile"]] = relationship(
        "TaskFile",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: TaskFile.id.desc(),
        lazy="selectin",
    )

    @property
    def checklist(self) -> list["TaskTodo"]:
        """Checklist items in display order."""
        return sorted(self.todos, key=lambda t: (t.sort_order, t.id or 0))

    def __repr__(self) -> str:
        return f"<Task id={self.id} {self.title!r}>"


class TaskTodo(BaseModel):
    """One checklist item of a task."""

    __tablename__ = "task_todos"

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text: Mapped[str] = mapped_column(String(500), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    task: Mapped["Task"] = relationship("Task", back_populates="todos")

    def __repr__(self) -> str:
        return f"<TaskTodo id={self.id} task_id={self.task_id}>"


class TaskFile(BaseModel):
    """Metadata for a file uploaded to a task. The blob lives on disk."""

    __tablename__ = "task_files"

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(150), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)
    uploaded_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    checksum_sha1: Mapped[str | None] = mapped_column(String(40), nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="files")

    def __repr__(self) -> str:
        return f"<TaskFile id={self.id} {self.original_name!r}>"


class TaskHistory(Base):
    """Audit trail entry for a task or one of its checklist items/files."""

    __tablename__ = "task_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # created, updated, status_changed, todo_added, todo_updated, todo_deleted, file_added, file_deleted
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    # task, todo, file
    entity: Mapped[str] = mapped_column(String(40), nullable=False, default="task")
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    diff: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<TaskHistory task_id={self.task_id} {self.action}>"
