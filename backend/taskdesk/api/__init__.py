"""API router package."""

from fastapi import APIRouter

from taskdesk.api.v1 import (
    auth,
    company,
    health,
    reports,
    task_files,
    tasks,
    users,
)

router = APIRouter()

# Include all API routers
router.include_router(health.router, tags=["Health"])
router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(task_files.router, prefix="/tasks", tags=["Task Files"])
router.include_router(reports.router, prefix="/reports", tags=["Reports"])
router.include_router(company.router, prefix="/company", tags=["Company"])
