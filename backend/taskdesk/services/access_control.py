"""Task authorization policy.

Pure functions over a ``Principal`` and a task snapshot (ORM object or dict):

- Admins may do anything.
- Assignees and the creator may read the task and its files, and patch the
  member-editable fields.
- Status changes are limited to admins and assignees. The creator alone is
  not enough.
- Creating and deleting tasks is admin only.

Denials surface as ``ForbiddenError`` with no reason attached.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from taskdesk.exceptions import ForbiddenError
from taskdesk.models.user import ROLE_ADMIN, User
from taskdesk.utils.json_fields import coerce_id, normalize_id_list

# Fields a full task update may touch
ADMIN_FIELDS = frozenset(
    {
        "title",
        "description",
        "priority",
        "status",
        "due_date",
        "assigned_to",
        "attachments",
        "progress",
    }
)
MEMBER_FIELDS = frozenset({"description", "attachments", "progress"})


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, passed explicitly into every core call."""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(id=user.id, role=user.role)


def _field(task: Any, name: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def is_assignee(principal: Principal, task: Any) -> bool:
    """Numeric membership test, so ``"3"`` and ``3`` are the same user."""
    return principal.id in normalize_id_list(_field(task, "assigned_to"))


def is_creator(principal: Principal, task: Any) -> bool:
    created_by = coerce_id(_field(task, "created_by"))
    return created_by is not None and created_by == principal.id


def can_access_task(principal: Principal, task: Any) -> bool:
    """Read access to a task, its files and its history."""
    if principal.is_admin:
        return True
    return is_assignee(principal, task) or is_creator(principal, task)


def can_mutate_task_field(principal: Principal, task: Any, field: str) -> bool:
    """Whether ``principal`` may patch ``field`` through a full task update."""
    if principal.is_admin:
        return field in ADMIN_FIELDS
    if is_assignee(principal, task) or is_creator(principal, task):
        return field in MEMBER_FIELDS
    return False


def can_update_task_status(principal: Principal, task: Any) -> bool:
    """Status endpoint and checklist edits: admin or assignee only."""
    return principal.is_admin or is_assignee(principal, task)


def can_manage_tasks(principal: Principal) -> bool:
    """Create and delete tasks."""
    return principal.is_admin


def require_task_access(principal: Principal, task: Any) -> None:
    if not can_access_task(principal, task):
        raise ForbiddenError()


def require_task_fields(principal: Principal, task: Any, fields) -> None:
    """Raise unless every field in ``fields`` may be patched."""
    for field in fields:
        if not can_mutate_task_field(principal, task, field):
            raise ForbiddenError()


def require_status_update(principal: Principal, task: Any) -> None:
    if not can_update_task_status(principal, task):
        raise ForbiddenError()


def require_task_management(principal: Principal) -> None:
    if not can_manage_tasks(principal):
        raise ForbiddenError()


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise ForbiddenError()
