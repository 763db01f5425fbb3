import pytest
from sqlalchemy import func, select

from conftest import due_in, principal_of
from taskdesk.exceptions import ForbiddenError, NotFoundError, ValidationError
from taskdesk.models.task import TaskHistory, TaskTodo, Task
from taskdesk.services.tasks import TaskService, validate_progress


async def _create(db, admin, **fields):
    fields.setdefault("title", "Write report")
    fields.setdefault("due_date", due_in(3))
    return await TaskService(db).create_task(principal_of(admin), **fields)


async def _stored(db, task_id: int, column):
    return (await db.execute(select(column).where(Task.id == task_id))).scalar_one()


# =============================================================================
# Creation
# =============================================================================


async def test_create_task_defaults(db, admin, alice):
    task = await _create(db, admin, assigned_to=[alice.id, str(alice.id), "x"])

    assert task.id is not None
    assert task.status == "Pending"
    assert task.progress == 0
    assert task.priority == "Medium"
    assert task.created_by == admin.id
    assert task.assigned_to == [alice.id]
    assert task.todos == []


async def test_create_with_checklist_derives_state(db, admin):
    task = await _create(
        db,
        admin,
        checklist=[
            {"text": "Draft", "completed": "true"},
            {"text": "Review", "completed": 0},
            {"text": "   ", "completed": True},
        ],
    )

    assert [todo.text for todo in task.checklist] == ["Draft", "Review"]
    assert task.status == "In Progress"
    assert task.progress == 50


async def test_create_rejects_status_with_checklist(db, admin):
    with pytest.raises(ValidationError):
        await _create(db, admin, status="Completed", checklist=[{"text": "Draft"}])

    assert (await db.execute(select(func.count(Task.id)))).scalar_one() == 0


async def test_member_cannot_create(db, admin, alice):
    with pytest.raises(ForbiddenError):
        await TaskService(db).create_task(principal_of(alice), title="Mine", due_date=due_in(1))


@pytest.mark.parametrize("title", ["", "   ", None])
async def test_create_requires_title(db, admin, title):
    with pytest.raises(ValidationError):
        await _create(db, admin, title=title)


@pytest.mark.parametrize("value", [-1, 101, 50.5, "abc", None, True])
def test_validate_progress_rejects(value):
    with pytest.raises(ValidationError):
        validate_progress(value)


@pytest.mark.parametrize("value, expected", [(0, 0), (100, 100), ("40", 40), (75.0, 75)])
def test_validate_progress_accepts(value, expected):
    assert validate_progress(value) == expected


# =============================================================================
# Field-level updates
# =============================================================================


async def test_member_can_patch_member_fields(db, admin, alice, make_task):
    task = await make_task(assigned_to=[alice.id])

    updated = await TaskService(db).update_task(
        principal_of(alice), task.id, {"description": "notes", "progress": 30}
    )

    assert updated.description == "notes"
    assert updated.progress == 30


@pytest.mark.parametrize("field, value", [("priority", "High"), ("title", "Renamed"), ("assigned_to", [])])
async def test_member_cannot_patch_admin_fields(db, admin, alice, make_task, field, value):
    task = await make_task(assigned_to=[alice.id])

    with pytest.raises(ForbiddenError):
        await TaskService(db).update_task(principal_of(alice), task.id, {field: value})


async def test_outsider_cannot_patch(db, admin, alice, bob, make_task):
    task = await make_task(assigned_to=[alice.id])

    with pytest.raises(ForbiddenError):
        await TaskService(db).update_task(principal_of(bob), task.id, {"description": "x"})


async def test_invalid_progress_writes_nothing(db, admin, make_task):
    task = await make_task(progress=10)

    with pytest.raises(ValidationError):
        await TaskService(db).update_task(
            principal_of(admin), task.id, {"description": "changed", "progress": 101}
        )

    assert await _stored(db, task.id, Task.progress) == 10
    assert await _stored(db, task.id, Task.description) is None


async def test_unknown_field_is_rejected(db, admin, make_task):
    task = await make_task()

    with pytest.raises(ValidationError):
        await TaskService(db).update_task(principal_of(admin), task.id, {"created_by": 99})


async def test_progress_is_derived_while_checklist_exists(db, admin):
    task = await _create(db, admin, checklist=[{"text": "Draft"}])

    with pytest.raises(ValidationError):
        await TaskService(db).update_task(principal_of(admin), task.id, {"progress": 80})


async def test_missing_task_is_not_found(db, admin):
    with pytest.raises(NotFoundError):
        await TaskService(db).get_task(principal_of(admin), 999)


# =============================================================================
# Status endpoint
# =============================================================================


async def test_assignee_sets_status_without_checklist(db, admin, alice, make_task):
    task = await make_task(assigned_to=[alice.id])

    updated = await TaskService(db).update_status(principal_of(alice), task.id, "In Progress", 40)

    assert updated.status == "In Progress"
    assert updated.progress == 40


async def test_status_rejected_while_checklist_exists(db, admin, alice):
    task = await _create(db, admin, assigned_to=[alice.id], checklist=[{"text": "Draft"}])

    with pytest.raises(ValidationError):
        await TaskService(db).update_status(principal_of(alice), task.id, "Completed")

    assert await _stored(db, task.id, Task.status) == "Pending"


async def test_creator_who_is_not_assignee_cannot_set_status(db, admin, alice, bob, make_task):
    task = await make_task(created_by=alice.id, assigned_to=[bob.id])
    service = TaskService(db)

    # The creator can read and patch member fields
    assert (await service.get_task(principal_of(alice), task.id)).id == task.id
    await service.update_task(principal_of(alice), task.id, {"description": "mine"})

    with pytest.raises(ForbiddenError):
        await service.update_status(principal_of(alice), task.id, "Completed")
    with pytest.raises(ForbiddenError):
        await service.add_todo(principal_of(alice), task.id, "Step")


async def test_invalid_status_is_rejected(db, admin, make_task):
    task = await make_task()

    with pytest.raises(ValidationError):
        await TaskService(db).update_status(principal_of(admin), task.id, "Done")


# =============================================================================
# Checklist
# =============================================================================


async def test_replace_checklist_updates_inserts_and_deletes(db, admin, alice):
    task = await _create(
        db,
        admin,
        assigned_to=[alice.id],
        checklist=[{"text": "One"}, {"text": "Two"}, {"text": "Three"}],
    )
    one, two, _ = task.checklist
    one_id, two_id = one.id, two.id

    updated = await TaskService(db).replace_checklist(
        principal_of(alice),
        task.id,
        [
            {"id": one_id, "text": "One (edited)", "completed": True, "sort_order": 1},
            {"id": str(two_id), "text": "Two", "completed": "1", "sort_order": 2},
            {"text": "Four", "completed": False, "sortOrder": 0},
            {"text": ""},
        ],
    )

    assert [todo.text for todo in updated.checklist] == ["Four", "One (edited)", "Two"]
    assert {todo.id for todo in updated.checklist} >= {one_id, two_id}
    assert updated.progress == 67
    assert updated.status == "In Progress"

    stored = (
        await db.execute(select(func.count(TaskTodo.id)).where(TaskTodo.task_id == task.id))
    ).scalar_one()
    assert stored == 3


async def test_completing_every_item_completes_task(db, admin):
    task = await _create(db, admin, checklist=[{"text": "A"}, {"text": "B"}])
    service = TaskService(db)

    for todo in list(task.checklist):
        task = await service.update_todo(principal_of(admin), task.id, todo.id, {"completed": True})

    assert task.status == "Completed"
    assert task.progress == 100


async def test_add_todo_appends_and_rederives(db, admin):
    task = await _create(db, admin, checklist=[{"text": "A", "completed": True}])

    task = await TaskService(db).add_todo(principal_of(admin), task.id, "B")

    assert [todo.text for todo in task.checklist] == ["A", "B"]
    assert task.checklist[1].sort_order == 1
    assert task.status == "In Progress"
    assert task.progress == 50


async def test_deleting_last_todo_resets_task(db, admin):
    task = await _create(db, admin, checklist=[{"text": "Only", "completed": True}])
    assert task.status == "Completed"

    task = await TaskService(db).delete_todo(principal_of(admin), task.id, task.checklist[0].id)

    assert task.todos == []
    assert task.status == "Pending"
    assert task.progress == 0


async def test_todo_of_unknown_id_is_not_found(db, admin):
    task = await _create(db, admin, checklist=[{"text": "A"}])

    with pytest.raises(NotFoundError):
        await TaskService(db).update_todo(principal_of(admin), task.id, 12345, {"completed": True})


@pytest.mark.parametrize("sort_order", ["first", True, [1]])
async def test_todo_sort_order_must_be_an_integer(db, admin, sort_order):
    task = await _create(db, admin, checklist=[{"text": "A"}])
    todo_id = task.checklist[0].id

    with pytest.raises(ValidationError) as exc_info:
        await TaskService(db).update_todo(
            principal_of(admin), task.id, todo_id, {"sort_order": sort_order}
        )
    assert exc_info.value.field == "sort_order"


async def test_todo_sort_order_accepts_numeric_strings(db, admin):
    task = await _create(db, admin, checklist=[{"text": "A"}])

    task = await TaskService(db).update_todo(
        principal_of(admin), task.id, task.checklist[0].id, {"sort_order": "4"}
    )

    assert task.checklist[0].sort_order == 4


# =============================================================================
# History and deletion
# =============================================================================


async def test_history_records_changes_newest_first(db, admin):
    task = await _create(db, admin)
    service = TaskService(db)

    await service.update_task(principal_of(admin), task.id, {"title": "Final report"})
    # Writing the same value again records nothing
    await service.update_task(principal_of(admin), task.id, {"title": "Final report"})

    entries = await service.get_history(principal_of(admin), task.id)

    assert [entry.action for entry in entries] == ["updated", "created"]
    assert entries[0].diff == {"title": {"from": "Write report", "to": "Final report"}}
    assert entries[0].actor_id == admin.id


async def test_history_requires_read_access(db, admin, alice, make_task):
    task = await make_task()

    with pytest.raises(ForbiddenError):
        await TaskService(db).get_history(principal_of(alice), task.id)


async def test_delete_task_removes_children(db, admin):
    task = await _create(db, admin, checklist=[{"text": "A"}, {"text": "B"}])
    task_id = task.id

    await TaskService(db).delete_task(principal_of(admin), task_id)

    assert (await db.execute(select(func.count(Task.id)))).scalar_one() == 0
    todos = await db.execute(select(func.count(TaskTodo.id)).where(TaskTodo.task_id == task_id))
    assert todos.scalar_one() == 0
    entries = await db.execute(
        select(func.count(TaskHistory.id)).where(TaskHistory.task_id == task_id)
    )
    assert entries.scalar_one() == 0


async def test_member_cannot_delete_task(db, admin, alice, make_task):
    task = await make_task(assigned_to=[alice.id])

    with pytest.raises(ForbiddenError):
        await TaskService(db).delete_task(principal_of(alice), task.id)
