"""Services package."""

from taskdesk.services.access_control import Principal
from taskdesk.services.company import CompanyService
from taskdesk.services.task_files import TaskFileService
from taskdesk.services.tasks import TaskService
from taskdesk.services.users import UserDeletionResult, UserService

__all__ = [
    "CompanyService",
    "Principal",
    "TaskFileService",
    "TaskService",
    "UserDeletionResult",
    "UserService",
]
