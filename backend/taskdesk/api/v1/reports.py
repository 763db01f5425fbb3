"""Report endpoints: task and user exports as CSV or Excel."""

from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.api.v1.auth import AdminPrincipal
from taskdesk.db.session import get_db_session
from taskdesk.services.reports import export_tasks, export_users

router = APIRouter()

ReportFormat = Literal["csv", "xlsx"]

MEDIA_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _report_response(output, prefix: str, fmt: ReportFormat) -> StreamingResponse:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f"attachment; filename={prefix}_{timestamp}.{fmt}"},
    )


@router.get("/export/tasks")
async def export_tasks_report(
    principal: AdminPrincipal,
    fmt: ReportFormat = Query("csv", alias="format"),
    db: AsyncSession = Depends(get_db_session),
) -> StreamingResponse:
    """Export all tasks with assignee and creator names."""
    output = await export_tasks(db, principal, fmt)
    return _report_response(output, "tasks", fmt)


@router.get("/export/users")
async def export_users_report(
    principal: AdminPrincipal,
    fmt: ReportFormat = Query("csv", alias="format"),
    db: AsyncSession = Depends(get_db_session),
) -> StreamingResponse:
    """Export all users with their task counts."""
    output = await export_users(db, principal, fmt)
    return _report_response(output, "users", fmt)
