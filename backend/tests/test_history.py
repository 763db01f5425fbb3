from datetime import datetime, timezone

from taskdesk.services.history import _json_safe, diff_snapshots, record


def test_diff_only_changed_fields():
    old = {"title": "A", "progress": 10, "assigned_to": [1, 2]}
    new = {"title": "A", "progress": 40, "assigned_to": [2]}

    assert diff_snapshots(old, new) == {
        "assigned_to": {"from": [1, 2], "to": [2]},
        "progress": {"from": 10, "to": 40},
    }


def test_diff_handles_missing_sides():
    assert diff_snapshots(None, {"title": "A"}) == {"title": {"from": None, "to": "A"}}
    assert diff_snapshots({"title": "A"}, None) == {"title": {"from": "A", "to": None}}
    assert diff_snapshots({"title": "A"}, {"title": "A"}) == {}


def test_json_safe_serializes_datetimes():
    when = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert _json_safe({"due": when, "items": [when]}) == {
        "due": "2030-01-01T12:00:00+00:00",
        "items": ["2030-01-01T12:00:00+00:00"],
    }


class _Session:
    def __init__(self):
        self.added = []

    def add(self, obj):
        self.added.append(obj)


def test_record_skips_noop_update():
    session = _Session()

    entry = record(session, task_id=1, actor_id=2, action="updated", old={"a": 1}, new={"a": 1})

    assert entry is None
    assert session.added == []


def test_record_keeps_creation_without_diff():
    session = _Session()

    entry = record(session, task_id=1, actor_id=2, action="created", new={"a": 1})

    assert session.added == [entry]
    assert entry.diff is None
    assert entry.new == {"a": 1}
