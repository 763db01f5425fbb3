"""User management endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.api.v1.auth import AdminPrincipal, CurrentUser, UserResponse
from taskdesk.db.session import get_db_session
from taskdesk.models.user import ROLE_MEMBER
from taskdesk.services.users import TaskCounts, UserService, UserWithCounts

router = APIRouter()
logger = structlog.get_logger()


class UserCreate(BaseModel):
    """Create a user (admin)."""

    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=191)
    password: str
    role: str = Field(default=ROLE_MEMBER, pattern="^(admin|member)$")
    profile_image_url: str | None = None


class UserUpdate(BaseModel):
    """Update a user (admin)."""

    name: str | None = Field(None, min_length=1, max_length=120)
    role: str | None = Field(None, pattern="^(admin|member)$")
    profile_image_url: str | None = None
    password: str | None = None


class MyProfileUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=120)
    profile_image_url: str | None = None


class PasswordChange(BaseModel):
    password: str


class UserWithCountsResponse(UserResponse):
    """User with the status counts of their assigned tasks."""

    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    overdue_tasks: int = 0


class UserDeletionResponse(BaseModel):
    message: str
    deleted: bool
    cascade_applied: bool
    cascade_error: str | None = None
    tasks_updated: int = 0


def _with_counts(row: UserWithCounts) -> UserWithCountsResponse:
    return UserWithCountsResponse(
        **UserResponse.model_validate(row.user).model_dump(),
        pending_tasks=row.counts.pending_tasks,
        in_progress_tasks=row.counts.in_progress_tasks,
        completed_tasks=row.counts.completed_tasks,
        overdue_tasks=row.counts.overdue_tasks,
    )


# =============================================================================
# Own profile
# =============================================================================


@router.get("/me", response_model=UserResponse)
async def get_my_profile(current_user: CurrentUser):
    return current_user


@router.put("/me", response_model=UserResponse)
async def update_my_profile(
    body: MyProfileUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
):
    fields = body.model_fields_set
    return await UserService(db).update_profile(
        current_user,
        name=body.name,
        profile_image_url=body.profile_image_url,
        clear_profile_image="profile_image_url" in fields and body.profile_image_url is None,
    )


@router.put("/me/password", response_model=UserResponse)
async def change_my_password(
    body: PasswordChange,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
):
    return await UserService(db).change_password(current_user, body.password)


# =============================================================================
# Admin management
# =============================================================================


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    return await UserService(db).create_user(
        principal,
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        profile_image_url=body.profile_image_url,
    )


@router.get("", response_model=list[UserWithCountsResponse])
async def list_users(
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
    role: str | None = Query(None),
    search: str | None = Query(None),
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    with_counts: bool = Query(False),
):
    """List users; ``with_counts`` adds per-user task counts."""
    rows = await UserService(db).list_users(
        principal,
        role=role,
        search=search,
        limit=limit,
        offset=offset,
        with_counts=with_counts,
    )
    return [_with_counts(row) for row in rows]


@router.get("/{user_id}", response_model=UserWithCountsResponse)
async def get_user(
    user_id: int,
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
    with_counts: bool = Query(False),
):
    service = UserService(db)
    user = await service.get_user(user_id)
    counts = await service.task_counts(user.id) if with_counts else TaskCounts()
    return _with_counts(UserWithCounts(user=user, counts=counts))


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    body: UserUpdate,
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    changes = body.model_dump(exclude_unset=True)
    return await UserService(db).update_user(principal, user_id, changes)


@router.delete("/{user_id}", response_model=UserDeletionResponse)
async def delete_user(
    user_id: int,
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
) -> UserDeletionResponse:
    """Delete a user and unassign them from every task.

    When unassignment fails under the strict policy the user is kept and the
    cascade error is returned as a 500.
    """
    result = await UserService(db).delete_user(principal, user_id)
    if not result.deleted:
        raise result.cascade_error

    return UserDeletionResponse(
        message="User deleted",
        deleted=result.deleted,
        cascade_applied=result.cascade_applied,
        cascade_error=result.cascade_error.message if result.cascade_error else None,
        tasks_updated=result.tasks_updated,
    )
