"""Pytest fixtures: in-memory SQLite store, seeded users and an API client."""

import os

# Settings and the module-level engine are built at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["ADMIN_INVITE_TOKEN"] = "let-me-in"
os.environ["ENVIRONMENT"] = "development"

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

import taskdesk.models  # noqa: F401
from taskdesk.db.base import Base
from taskdesk.db.session import build_engine, get_db_session
from taskdesk.main import app
from taskdesk.models.task import Task
from taskdesk.models.user import ROLE_ADMIN, ROLE_MEMBER, User
from taskdesk.services.access_control import Principal
from taskdesk.services.security import create_access_token, hash_password

PASSWORD = "correct-horse"


@pytest.fixture
async def engine():
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _add_user(db, name: str, role: str) -> User:
    user = User(
        name=name,
        email=f"{name.lower()}@example.com",
        password_hash=hash_password(PASSWORD),
        role=role,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def admin(db) -> User:
    return await _add_user(db, "Ada", ROLE_ADMIN)


@pytest.fixture
async def alice(db) -> User:
    return await _add_user(db, "Alice", ROLE_MEMBER)


@pytest.fixture
async def bob(db) -> User:
    return await _add_user(db, "Bob", ROLE_MEMBER)


@pytest.fixture
async def carol(db) -> User:
    return await _add_user(db, "Carol", ROLE_MEMBER)


def principal_of(user: User) -> Principal:
    return Principal.from_user(user)


def due_in(days: int) -> datetime:
    return datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc) + timedelta(days=days)


@pytest.fixture
def make_task(db, admin):
    """Insert a task directly, bypassing the service layer."""

    async def _make(title: str = "Task", **fields) -> Task:
        fields.setdefault("due_date", due_in(0))
        fields.setdefault("created_by", admin.id)
        task = Task(title=title, **fields)
        db.add(task)
        await db.commit()
        return task

    return _make


@pytest.fixture
async def client(session_factory):
    async def override_get_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
