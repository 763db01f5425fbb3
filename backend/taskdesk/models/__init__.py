"""SQLAlchemy models package."""

from taskdesk.models.company import Company
from taskdesk.models.task import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskFile,
    TaskHistory,
    TaskTodo,
)
from taskdesk.models.user import ROLE_ADMIN, ROLE_MEMBER, USER_ROLES, User

__all__ = [
    "Company",
    "ROLE_ADMIN",
    "ROLE_MEMBER",
    "TASK_PRIORITIES",
    "TASK_STATUSES",
    "Task",
    "TaskFile",
    "TaskHistory",
    "TaskTodo",
    "USER_ROLES",
    "User",
]
