import pytest
from sqlalchemy import func, select

from conftest import PASSWORD, due_in, principal_of
from taskdesk.exceptions import (
    AuthenticationError,
    CascadeError,
    ConflictError,
    ForbiddenError,
    InvariantViolationError,
    ValidationError,
)
from taskdesk.models.task import Task
from taskdesk.models.user import ROLE_ADMIN, ROLE_MEMBER, User
from taskdesk.services import user_removal
from taskdesk.services.users import UserService


async def _user_exists(db, user_id: int) -> bool:
    result = await db.execute(select(func.count(User.id)).where(User.id == user_id))
    return result.scalar_one() == 1


async def _second_admin(db, admin) -> User:
    return await UserService(db).create_user(
        principal_of(admin),
        name="Grace",
        email="grace@example.com",
        password=PASSWORD,
        role=ROLE_ADMIN,
    )


async def _failing_cascade(session, user_id):
    await session.rollback()
    raise CascadeError(user_id, RuntimeError("store unavailable"))


# =============================================================================
# Deletion invariants
# =============================================================================


async def test_sole_admin_cannot_be_deleted(db, admin):
    with pytest.raises(InvariantViolationError, match="last admin"):
        await UserService(db).delete_user(principal_of(admin), admin.id)

    assert await _user_exists(db, admin.id)


async def test_admin_cannot_delete_self(db, admin):
    await _second_admin(db, admin)

    with pytest.raises(InvariantViolationError, match="your own user"):
        await UserService(db).delete_user(principal_of(admin), admin.id)

    assert await _user_exists(db, admin.id)


async def test_member_cannot_delete_users(db, admin, alice, bob):
    with pytest.raises(ForbiddenError):
        await UserService(db).delete_user(principal_of(alice), bob.id)


async def test_delete_unassigns_user_from_tasks(db, admin, alice, bob, make_task):
    task = await make_task(assigned_to=[alice.id, bob.id])
    alice_id, bob_id, task_id = alice.id, bob.id, task.id

    result = await UserService(db).delete_user(principal_of(admin), alice_id)

    assert result.deleted is True
    assert result.cascade_applied is True
    assert result.cascade_error is None
    assert result.tasks_updated == 1
    assert not await _user_exists(db, alice_id)
    assignees = (await db.execute(select(Task.assigned_to).where(Task.id == task_id))).scalar_one()
    assert assignees == [bob_id]


async def test_strict_mode_keeps_user_when_cleanup_fails(db, admin, alice, monkeypatch):
    admin_principal, alice_id = principal_of(admin), alice.id
    monkeypatch.setattr(user_removal, "remove_user_from_all_tasks", _failing_cascade)

    result = await UserService(db).delete_user(admin_principal, alice_id, strict=True)

    assert result.deleted is False
    assert result.cascade_applied is False
    assert isinstance(result.cascade_error, CascadeError)
    assert await _user_exists(db, alice_id)


async def test_lenient_mode_deletes_user_anyway(db, admin, alice, monkeypatch):
    admin_principal, alice_id = principal_of(admin), alice.id
    monkeypatch.setattr(user_removal, "remove_user_from_all_tasks", _failing_cascade)

    result = await UserService(db).delete_user(admin_principal, alice_id, strict=False)

    assert result.deleted is True
    assert result.cascade_applied is False
    assert isinstance(result.cascade_error, CascadeError)
    assert not await _user_exists(db, alice_id)


# =============================================================================
# Role changes
# =============================================================================


async def test_last_admin_cannot_be_downgraded(db, admin):
    with pytest.raises(InvariantViolationError, match="last admin"):
        await UserService(db).update_user(principal_of(admin), admin.id, {"role": ROLE_MEMBER})

    assert admin.role == ROLE_ADMIN


async def test_admin_cannot_downgrade_self(db, admin):
    await _second_admin(db, admin)

    with pytest.raises(InvariantViolationError, match="your own user"):
        await UserService(db).update_user(principal_of(admin), admin.id, {"role": ROLE_MEMBER})


async def test_admin_can_downgrade_another_admin(db, admin):
    grace = await _second_admin(db, admin)

    updated = await UserService(db).update_user(
        principal_of(admin), grace.id, {"role": ROLE_MEMBER, "name": "Grace H."}
    )

    assert updated.role == ROLE_MEMBER
    assert updated.name == "Grace H."


async def test_invalid_role_is_rejected(db, admin, alice):
    with pytest.raises(ValidationError):
        await UserService(db).update_user(principal_of(admin), alice.id, {"role": "owner"})


# =============================================================================
# Creation, registration and login
# =============================================================================


async def test_create_user_normalizes_email(db, admin):
    user = await UserService(db).create_user(
        principal_of(admin), name=" Dan ", email="  Dan@Example.COM ", password=PASSWORD
    )

    assert user.email == "dan@example.com"
    assert user.name == "Dan"
    assert user.role == ROLE_MEMBER
    assert user.password_hash != PASSWORD


async def test_duplicate_email_conflicts(db, admin, alice):
    with pytest.raises(ConflictError):
        await UserService(db).create_user(
            principal_of(admin), name="Other", email="ALICE@example.com", password=PASSWORD
        )


async def test_short_password_is_rejected(db, admin):
    with pytest.raises(ValidationError):
        await UserService(db).create_user(
            principal_of(admin), name="Dan", email="dan@example.com", password="short"
        )


@pytest.mark.parametrize(
    "token, expected_role",
    [
        ("let-me-in", ROLE_ADMIN),
        ("guess", ROLE_MEMBER),
        (None, ROLE_MEMBER),
    ],
)
async def test_register_role_depends_on_invite_token(db, token, expected_role):
    user = await UserService(db).register(
        name="Eve", email="eve@example.com", password=PASSWORD, admin_invite_token=token
    )
    assert user.role == expected_role


async def test_authenticate(db, alice):
    service = UserService(db)

    user = await service.authenticate(" ALICE@example.com", PASSWORD)
    assert user.id == alice.id

    with pytest.raises(AuthenticationError):
        await service.authenticate("alice@example.com", "wrong-password")
    with pytest.raises(AuthenticationError):
        await service.authenticate("nobody@example.com", PASSWORD)


async def test_change_password_requires_current_when_asked(db, alice):
    service = UserService(db)

    with pytest.raises(AuthenticationError):
        await service.change_password(
            alice, "new-password-1", current_password="nope", require_current=True
        )

    await service.change_password(
        alice, "new-password-1", current_password=PASSWORD, require_current=True
    )
    assert (await service.authenticate("alice@example.com", "new-password-1")).id == alice.id


async def test_ensure_admin_is_noop_when_admin_exists(db, admin):
    assert await UserService(db).ensure_admin() is None


async def test_ensure_admin_seeds_first_admin(db):
    user = await UserService(db).ensure_admin()

    assert user is not None
    assert user.role == ROLE_ADMIN
    assert user.email == "admin@example.com"


# =============================================================================
# Listing
# =============================================================================


async def test_list_users_with_task_counts(db, admin, alice, bob, make_task):
    await make_task("Future", assigned_to=[alice.id], status="Pending", due_date=due_in(10))
    await make_task("Late", assigned_to=[alice.id], status="In Progress", due_date=due_in(-5000))
    await make_task("Done", assigned_to=[alice.id], status="Completed", due_date=due_in(-5000))

    rows = await UserService(db).list_users(principal_of(admin), with_counts=True)

    assert [row.user.name for row in rows] == ["Ada", "Alice", "Bob"]
    counts = {row.user.name: row.counts for row in rows}
    assert counts["Alice"].pending_tasks == 1
    assert counts["Alice"].in_progress_tasks == 1
    assert counts["Alice"].completed_tasks == 1
    assert counts["Alice"].overdue_tasks == 1
    assert counts["Bob"].pending_tasks == 0


async def test_list_users_filters_by_role_and_search(db, admin, alice, bob):
    service = UserService(db)

    members = await service.list_users(principal_of(admin), role=ROLE_MEMBER)
    assert {row.user.name for row in members} == {"Alice", "Bob"}

    found = await service.list_users(principal_of(admin), search="bob@")
    assert [row.user.name for row in found] == ["Bob"]

    # Wildcards are matched literally
    assert await service.list_users(principal_of(admin), search="_") == []


async def test_list_users_is_admin_only(db, alice):
    with pytest.raises(ForbiddenError):
        await UserService(db).list_users(principal_of(alice))
