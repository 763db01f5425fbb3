"""Task listing: scoping, filters, ordering and checklist counts."""

import pytest
from sqlalchemy import text

from conftest import due_in, principal_of
from taskdesk.models.task import TaskTodo
from taskdesk.services.task_query import TaskFilters, list_tasks


def _ids(page):
    return [item.task.id for item in page.items]


async def test_admin_sees_all_tasks_ordered_by_due_date(db, admin, alice, make_task):
    later = await make_task("later", due_date=due_in(5))
    sooner = await make_task("sooner", due_date=due_in(1), assigned_to=[alice.id])
    unassigned = await make_task("unassigned", due_date=due_in(3))

    page = await list_tasks(db, principal_of(admin))

    assert _ids(page) == [sooner.id, unassigned.id, later.id]
    assert page.total == 3
    assert page.limit == 50
    assert page.offset == 0


async def test_member_sees_only_assigned_tasks(db, alice, bob, make_task):
    mine = await make_task("mine", assigned_to=[bob.id, alice.id])
    await make_task("theirs", assigned_to=[bob.id])
    await make_task("nobody")

    page = await list_tasks(db, principal_of(alice))

    assert _ids(page) == [mine.id]


async def test_member_cannot_widen_scope_with_assigned_to(db, alice, bob, make_task):
    mine = await make_task("mine", assigned_to=[alice.id])
    await make_task("bobs", assigned_to=[bob.id])

    page = await list_tasks(db, principal_of(alice), TaskFilters(assigned_to=bob.id))

    assert _ids(page) == [mine.id]


async def test_admin_can_filter_by_assignee(db, admin, alice, bob, make_task):
    await make_task("alice's", assigned_to=[alice.id])
    bobs = await make_task("bob's", assigned_to=[alice.id, bob.id])

    page = await list_tasks(db, principal_of(admin), TaskFilters(assigned_to=str(bob.id)))

    assert _ids(page) == [bobs.id]


async def test_membership_tolerates_string_ids_in_storage(db, alice, make_task):
    task = await make_task("legacy")
    await db.execute(
        text("UPDATE tasks SET assigned_to = :value WHERE id = :id"),
        {"value": f'["{alice.id}"]', "id": task.id},
    )
    await db.commit()

    page = await list_tasks(db, principal_of(alice))

    assert _ids(page) == [task.id]


async def test_unknown_status_and_priority_are_ignored(db, admin, make_task):
    await make_task("a", status="Completed", priority="High")
    await make_task("b")

    page = await list_tasks(db, principal_of(admin), TaskFilters(status="Done", priority="Urgent"))
    assert page.total == 2

    page = await list_tasks(db, principal_of(admin), TaskFilters(status="Completed"))
    assert page.total == 1


async def test_search_matches_title_or_description(db, admin, make_task):
    by_title = await make_task("Quarterly REPORT", due_date=due_in(1))
    by_description = await make_task("Other", description="draft the report", due_date=due_in(2))
    await make_task("Unrelated")

    page = await list_tasks(db, principal_of(admin), TaskFilters(search="report"))

    assert _ids(page) == [by_title.id, by_description.id]


@pytest.mark.parametrize("term", ["_", "%", "5%_off", "\\"])
async def test_search_treats_wildcards_literally(db, admin, make_task, term):
    await make_task("abc", due_date=due_in(1))
    literal = await make_task("sale: 5%_off, C:\\temp", due_date=due_in(2))

    page = await list_tasks(db, principal_of(admin), TaskFilters(search=term))

    assert _ids(page) == [literal.id]


async def test_due_bounds_are_inclusive(db, admin, make_task):
    await make_task("before", due_date=due_in(0))
    first = await make_task("first", due_date=due_in(1))
    last = await make_task("last", due_date=due_in(2))
    await make_task("after", due_date=due_in(3))

    page = await list_tasks(
        db,
        principal_of(admin),
        TaskFilters(due_from=due_in(1), due_to=due_in(2)),
    )

    assert _ids(page) == [first.id, last.id]


async def test_limit_and_offset(db, admin, make_task):
    tasks = [await make_task(f"t{i}", due_date=due_in(i)) for i in range(5)]

    page = await list_tasks(db, principal_of(admin), TaskFilters(limit=2, offset=1))

    assert _ids(page) == [tasks[1].id, tasks[2].id]
    assert page.total == 5


async def test_rows_carry_checklist_counts(db, admin, make_task):
    task = await make_task("with checklist")
    db.add_all(
        [
            TaskTodo(task_id=task.id, text="a", completed=True, sort_order=0),
            TaskTodo(task_id=task.id, text="b", completed=False, sort_order=1),
            TaskTodo(task_id=task.id, text="c", completed=True, sort_order=2),
        ]
    )
    await db.commit()
    await make_task("empty", due_date=due_in(9))

    page = await list_tasks(db, principal_of(admin))

    counts = {item.task.title: (item.todo_total_count, item.completed_todo_count) for item in page.items}
    assert counts == {"with checklist": (3, 2), "empty": (0, 0)}
