"""Task status and progress derived from checklist items."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from taskdesk.models.task import STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING

_TRUTHY_STRINGS = {"true", "1"}


@dataclass(frozen=True)
class ChecklistState:
    status: str
    progress: int


def is_completed(value: Any) -> bool:
    """Normalize a checklist ``completed`` flag.

    ``True``, ``1``, ``"true"`` and ``"1"`` all count as completed; anything
    else (including ``"false"``, ``0`` and ``None``) does not.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return False


def _completed_flag(item: Any) -> Any:
    if isinstance(item, Mapping):
        return item.get("completed")
    return getattr(item, "completed", None)


def derive_checklist_state(items: Iterable[Any]) -> ChecklistState:
    """Compute status and progress purely from checklist items.

    Items may be dicts or objects with a ``completed`` attribute. Progress is
    ``round(100 * done / total)`` with halves rounded up, and 0 for an empty
    checklist.

    Examples:
        >>> derive_checklist_state([{"completed": True}, {"completed": False}])
        ChecklistState(status='In Progress', progress=50)
    """
    flags = [is_completed(_completed_flag(item)) for item in items]
    total = len(flags)
    done = sum(flags)

    if total == 0:
        return ChecklistState(status=STATUS_PENDING, progress=0)

    progress = (200 * done + total) // (2 * total)
    if done == total:
        status = STATUS_COMPLETED
    elif done > 0:
        status = STATUS_IN_PROGRESS
    else:
        status = STATUS_PENDING
    return ChecklistState(status=status, progress=progress)
