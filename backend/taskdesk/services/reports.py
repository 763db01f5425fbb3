"""Task and user reports, exported as CSV or Excel workbooks."""

import csv
import io
from datetime import datetime

import structlog
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.models.task import Task
from taskdesk.models.user import User
from taskdesk.services.access_control import Principal, require_admin
from taskdesk.services.users import UserService

logger = structlog.get_logger()

TASK_HEADERS = [
    "ID",
    "Title",
    "Description",
    "Priority",
    "Status",
    "Due Date",
    "Progress",
    "Assigned To (IDs)",
    "Assigned To (Names)",
    "Created By (ID)",
    "Created By (Name)",
    "Created At",
    "Updated At",
]

USER_HEADERS = [
    "ID",
    "Name",
    "Email",
    "Role",
    "Pending",
    "In Progress",
    "Completed",
    "Overdue",
    "Created At",
    "Updated At",
]


def generate_csv(headers: list[str], rows: list[list]) -> io.StringIO:
    """Generate CSV content from headers and rows."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(rows)
    output.seek(0)
    return output


def generate_xlsx(sheet_title: str, headers: list[str], rows: list[list]) -> io.BytesIO:
    """Generate a single-sheet workbook with a bold header row."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        # Control characters are not allowed in sheet cells
        ws.append([ILLEGAL_CHARACTERS_RE.sub("", v) if isinstance(v, str) else v for v in row])

    for index, header in enumerate(headers, start=1):
        width = max([len(header)] + [len(str(row[index - 1])) for row in rows])
        ws.column_dimensions[get_column_letter(index)].width = min(width + 2, 60)
    ws.freeze_panes = "A2"

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""


async def task_report_rows(db: AsyncSession, principal: Principal) -> list[list]:
    """Every task with assignee and creator names resolved. Admin only."""
    require_admin(principal)

    tasks = (
        await db.execute(select(Task).order_by(Task.due_date.asc(), Task.id.asc()))
    ).scalars().all()

    user_ids = set()
    for task in tasks:
        user_ids.update(task.assigned_to)
        if task.created_by:
            user_ids.add(task.created_by)

    names: dict[int, str] = {}
    if user_ids:
        result = await db.execute(select(User.id, User.name).where(User.id.in_(user_ids)))
        names = {user_id: name for user_id, name in result.all()}

    rows = []
    for task in tasks:
        rows.append([
            task.id,
            task.title,
            task.description or "",
            task.priority,
            task.status,
            _iso(task.due_date),
            task.progress,
            ", ".join(str(user_id) for user_id in task.assigned_to),
            ", ".join(names[user_id] for user_id in task.assigned_to if user_id in names),
            task.created_by or "",
            names.get(task.created_by, "") if task.created_by else "",
            _iso(task.created_at),
            _iso(task.updated_at),
        ])
    return rows


async def user_report_rows(db: AsyncSession, principal: Principal) -> list[list]:
    """Every user with their task counts. Admin only."""
    require_admin(principal)
    service = UserService(db)

    users = (await db.execute(select(User).order_by(User.name.asc(), User.id.asc()))).scalars().all()

    rows = []
    for user in users:
        counts = await service.task_counts(user.id)
        rows.append([
            user.id,
            user.name,
            user.email,
            user.role,
            counts.pending_tasks,
            counts.in_progress_tasks,
            counts.completed_tasks,
            counts.overdue_tasks,
            _iso(user.created_at),
            _iso(user.updated_at),
        ])
    return rows


async def export_tasks(
    db: AsyncSession, principal: Principal, fmt: str = "csv"
) -> io.StringIO | io.BytesIO:
    rows = await task_report_rows(db, principal)
    logger.info("tasks_exported", rows=len(rows), format=fmt, actor_id=principal.id)
    if fmt == "xlsx":
        return generate_xlsx("Tasks", TASK_HEADERS, rows)
    return generate_csv(TASK_HEADERS, rows)


async def export_users(
    db: AsyncSession, principal: Principal, fmt: str = "csv"
) -> io.StringIO | io.BytesIO:
    rows = await user_report_rows(db, principal)
    logger.info("users_exported", rows=len(rows), format=fmt, actor_id=principal.id)
    if fmt == "xlsx":
        return generate_xlsx("Users", USER_HEADERS, rows)
    return generate_csv(USER_HEADERS, rows)
