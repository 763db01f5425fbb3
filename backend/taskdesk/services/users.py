"""User management, authentication and the user deletion flow."""

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.config import get_settings
from taskdesk.db.base import utcnow
from taskdesk.exceptions import (
    AuthenticationError,
    CascadeError,
    ConflictError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from taskdesk.models.task import STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING, Task
from taskdesk.models.user import ROLE_ADMIN, ROLE_MEMBER, USER_ROLES, User
from taskdesk.services import user_removal
from taskdesk.services.access_control import Principal, require_admin
from taskdesk.services.security import hash_password, tokens_match, verify_password
from taskdesk.services.task_query import (
    LIKE_ESCAPE,
    assigned_to_contains,
    contains_pattern,
    dialect_name,
)

logger = structlog.get_logger()
settings = get_settings()


@dataclass
class TaskCounts:
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    overdue_tasks: int = 0


@dataclass
class UserWithCounts:
    user: User
    counts: TaskCounts = field(default_factory=TaskCounts)


@dataclass
class UserDeletionResult:
    """Outcome of a user deletion.

    ``cascade_applied`` tells whether the user was removed from task
    assignee lists; ``cascade_error`` holds the failure when it was not.
    """

    deleted: bool
    cascade_applied: bool
    cascade_error: CascadeError | None = None
    tasks_updated: int = 0


def normalize_email(email: str | None) -> str:
    value = str(email or "").strip().lower()
    if not value or "@" not in value:
        raise ValidationError("A valid email is required", field="email")
    return value


def validate_password(password: str | None) -> str:
    if not password or len(str(password)) < settings.password_min_length:
        raise ValidationError(
            f"Password must be at least {settings.password_min_length} characters",
            field="password",
        )
    return str(password)


def validate_name(name: str | None) -> str:
    value = str(name or "").strip()
    if not value:
        raise ValidationError("name is required", field="name")
    return value


def validate_role(role: str | None) -> str:
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role: {role}", field="role")
    return role


class UserService:
    """Service for users, their credentials and their removal."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.email == str(email).strip().lower())
        )
        return result.scalar_one_or_none()

    async def count_admins(self, exclude_user_id: int | None = None) -> int:
        query = select(func.count(User.id)).where(User.role == ROLE_ADMIN)
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        return (await self.db.execute(query)).scalar_one()

    async def is_last_admin(self, user: User) -> bool:
        return user.is_admin and await self.count_admins(exclude_user_id=user.id) == 0

    async def task_counts(self, user_id: int) -> TaskCounts:
        """Status counts over the tasks a user is assigned to."""
        now = utcnow()
        query = select(
            func.coalesce(func.sum(case((Task.status == STATUS_PENDING, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Task.status == STATUS_IN_PROGRESS, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Task.status == STATUS_COMPLETED, 1), else_=0)), 0),
            func.coalesce(
                func.sum(
                    case(
                        ((Task.status != STATUS_COMPLETED) & (Task.due_date < now), 1),
                        else_=0,
                    )
                ),
                0,
            ),
        ).where(assigned_to_contains(user_id, dialect_name(self.db)))
        pending, in_progress, completed, overdue = (await self.db.execute(query)).one()
        return TaskCounts(
            pending_tasks=int(pending),
            in_progress_tasks=int(in_progress),
            completed_tasks=int(completed),
            overdue_tasks=int(overdue),
        )

    async def list_users(
        self,
        principal: Principal,
        *,
        role: str | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
        with_counts: bool = False,
    ) -> list[UserWithCounts]:
        """List users, optionally with per-user task counts. Admin only."""
        require_admin(principal)

        query = select(User)
        if role in USER_ROLES:
            query = query.where(User.role == role)
        if search and search.strip():
            pattern = contains_pattern(search.strip())
            query = query.where(
                or_(
                    User.name.ilike(pattern, escape=LIKE_ESCAPE),
                    User.email.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        query = query.order_by(User.name.asc(), User.id.asc()).limit(max(limit, 1)).offset(max(offset, 0))

        users = list((await self.db.execute(query)).scalars().all())
        rows = []
        for user in users:
            counts = await self.task_counts(user.id) if with_counts else TaskCounts()
            rows.append(UserWithCounts(user=user, counts=counts))
        return rows

    # =========================================================================
    # Admin CRUD
    # =========================================================================

    async def _insert(self, user: User) -> User:
        if await self.get_by_email(user.email) is not None:
            raise ConflictError("Email is already registered")
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Email is already registered")
        await self.db.commit()
        return user

    async def create_user(
        self,
        principal: Principal,
        *,
        name: str,
        email: str,
        password: str,
        role: str = ROLE_MEMBER,
        profile_image_url: str | None = None,
    ) -> User:
        """Create a user. Admin only."""
        require_admin(principal)

        user = User(
            name=validate_name(name),
            email=normalize_email(email),
            password_hash=hash_password(validate_password(password)),
            role=validate_role(role or ROLE_MEMBER),
            profile_image_url=profile_image_url,
        )
        user = await self._insert(user)
        logger.info("user_created", user_id=user.id, role=user.role, created_by=principal.id)
        return user

    async def update_user(
        self,
        principal: Principal,
        user_id: int,
        changes: dict[str, Any],
    ) -> User:
        """Update name, role, avatar or password of a user. Admin only.

        The last admin cannot be downgraded, and nobody can downgrade
        themselves.
        """
        require_admin(principal)
        user = await self.get_user(user_id)

        role = changes.get("role")
        if role is not None and role != user.role:
            validate_role(role)
            if user.is_admin and role == ROLE_MEMBER and await self.is_last_admin(user):
                raise InvariantViolationError("Cannot downgrade the last admin")
        if principal.id == user.id and role == ROLE_MEMBER:
            raise InvariantViolationError("Cannot downgrade your own user")

        values: dict[str, Any] = {}
        if "name" in changes and changes["name"] is not None:
            values["name"] = validate_name(changes["name"])
        if "profile_image_url" in changes:
            values["profile_image_url"] = changes["profile_image_url"]
        if role is not None:
            values["role"] = role
        if changes.get("password") is not None:
            values["password_hash"] = hash_password(validate_password(changes["password"]))

        for key, value in values.items():
            setattr(user, key, value)
        await self.db.commit()

        logger.info(
            "user_updated",
            user_id=user.id,
            fields=sorted(values),
            actor_id=principal.id,
        )
        return user

    async def delete_user(
        self,
        principal: Principal,
        user_id: int,
        strict: bool | None = None,
    ) -> UserDeletionResult:
        """Delete a user after unassigning them from every task. Admin only.

        Invariants (last admin, self-delete) are checked before any write.
        When the unassignment fails, ``strict`` (default from settings)
        decides: abort and keep the user, or log and delete anyway.
        """
        require_admin(principal)
        strict = settings.strict_user_cascade if strict is None else strict
        user = await self.get_user(user_id)

        if await self.is_last_admin(user):
            raise InvariantViolationError("Cannot delete the last admin")
        if principal.id == user.id:
            raise InvariantViolationError("Cannot delete your own user")

        cascade_error: CascadeError | None = None
        tasks_updated = 0
        try:
            tasks_updated = await user_removal.remove_user_from_all_tasks(self.db, user_id)
        except CascadeError as e:
            cascade_error = e

        if cascade_error is not None:
            if strict:
                logger.error(
                    "user_deletion_aborted",
                    user_id=user_id,
                    actor_id=principal.id,
                    error=cascade_error.message,
                )
                return UserDeletionResult(
                    deleted=False,
                    cascade_applied=False,
                    cascade_error=cascade_error,
                )
            logger.warning(
                "user_task_cascade_skipped",
                user_id=user_id,
                actor_id=principal.id,
                error=cascade_error.message,
            )
            # The rollback expired the loaded row
            user = await self.get_user(user_id)

        await self.db.delete(user)
        await self.db.commit()

        logger.info(
            "user_deleted",
            user_id=user_id,
            actor_id=principal.id,
            cascade_applied=cascade_error is None,
            tasks_updated=tasks_updated,
        )
        return UserDeletionResult(
            deleted=True,
            cascade_applied=cascade_error is None,
            cascade_error=cascade_error,
            tasks_updated=tasks_updated,
        )

    async def ensure_admin(self) -> User | None:
        """Seed the first admin from settings when no admin exists."""
        if await self.count_admins() > 0:
            return None

        email = normalize_email(settings.admin_email)
        existing = await self.get_by_email(email)
        if existing is not None:
            existing.role = ROLE_ADMIN
            await self.db.commit()
            logger.info("admin_promoted", user_id=existing.id)
            return existing

        user = User(
            name=settings.admin_name,
            email=email,
            password_hash=hash_password(settings.admin_password.get_secret_value()),
            role=ROLE_ADMIN,
        )
        self.db.add(user)
        await self.db.commit()
        logger.info("admin_seeded", user_id=user.id, email=email)
        return user

    # =========================================================================
    # Self-service
    # =========================================================================

    async def register(
        self,
        *,
        name: str,
        email: str,
        password: str,
        profile_image_url: str | None = None,
        admin_invite_token: str | None = None,
    ) -> User:
        """Public sign-up. The admin role requires the configured invite token."""
        expected = settings.admin_invite_token.get_secret_value()
        role = ROLE_ADMIN if tokens_match(admin_invite_token, expected) else ROLE_MEMBER

        user = User(
            name=validate_name(name),
            email=normalize_email(email),
            password_hash=hash_password(validate_password(password)),
            role=role,
            profile_image_url=profile_image_url,
        )
        user = await self._insert(user)
        logger.info("user_registered", user_id=user.id, role=role)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        if not email or not password:
            raise ValidationError("email and password are required")
        user = await self.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("login_failed", email=str(email).strip().lower())
            raise AuthenticationError("Invalid credentials")
        return user

    async def update_profile(
        self,
        user: User,
        *,
        name: str | None = None,
        profile_image_url: str | None = None,
        clear_profile_image: bool = False,
    ) -> User:
        if name is not None:
            user.name = validate_name(name)
        if profile_image_url is not None or clear_profile_image:
            user.profile_image_url = profile_image_url
        await self.db.commit()
        return user

    async def change_password(
        self,
        user: User,
        new_password: str,
        current_password: str | None = None,
        require_current: bool = False,
    ) -> User:
        """Change a user's own password, optionally proving the current one."""
        validate_password(new_password)
        if require_current:
            if not current_password:
                raise ValidationError(
                    "currentPassword is required to change the password",
                    field="current_password",
                )
            if not verify_password(current_password, user.password_hash):
                raise AuthenticationError("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        await self.db.commit()
        logger.info("password_changed", user_id=user.id)
        return user
