"""Derived task status and progress."""

from types import SimpleNamespace

import pytest

from taskdesk.services.checklist import ChecklistState, derive_checklist_state, is_completed


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        (1, True),
        ("true", True),
        ("TRUE", True),
        ("1", True),
        (False, False),
        (0, False),
        ("false", False),
        ("0", False),
        ("yes", False),
        (None, False),
        (2, False),
    ],
)
def test_is_completed_encodings(value, expected):
    assert is_completed(value) is expected


def test_empty_checklist_is_pending_with_zero_progress():
    assert derive_checklist_state([]) == ChecklistState(status="Pending", progress=0)


def test_half_done_is_in_progress():
    items = [{"text": "a", "completed": True}, {"text": "b", "completed": False}]
    assert derive_checklist_state(items) == ChecklistState(status="In Progress", progress=50)


def test_all_done_is_completed():
    items = [{"completed": "true"}, {"completed": 1}, {"completed": True}]
    assert derive_checklist_state(items) == ChecklistState(status="Completed", progress=100)


def test_none_done_is_pending():
    items = [{"completed": False}, {"completed": "false"}]
    assert derive_checklist_state(items) == ChecklistState(status="Pending", progress=0)


@pytest.mark.parametrize(
    "done,total,progress",
    [
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),  # 12.5 rounds up
        (3, 8, 38),  # 37.5 rounds up
        (1, 200, 1),  # 0.5 rounds up
    ],
)
def test_progress_rounds_half_up(done, total, progress):
    items = [{"completed": i < done} for i in range(total)]
    assert derive_checklist_state(items).progress == progress


def test_accepts_objects_with_completed_attribute():
    items = [SimpleNamespace(completed=True), SimpleNamespace(completed=False)]
    assert derive_checklist_state(items).status == "In Progress"
