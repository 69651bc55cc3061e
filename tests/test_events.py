"""Tests for the event store."""

import pytest

from multiblock.events import EventStore
from multiblock.models import BoardEvent


def _event(op="create_board", board_id="b1", **data) -> BoardEvent:
    return BoardEvent(op=op, actor_id="user-1", board_id=board_id, data=data or {"id": board_id})


def test_append_and_read(temp_data_dir):
    """Test appending and reading events."""
    store = EventStore(temp_data_dir / "multiblock.db")

    event = _event(id="b1", user_id="user-1", title="Research")
    store.append(event)

    events = store.read_all()
    assert len(events) == 1
    assert events[0].id == event.id
    assert events[0].op == "create_board"
    assert events[0].data["title"] == "Research"
    store.close()


def test_read_empty():
    """An in-memory log starts empty."""
    store = EventStore()
    assert store.read_all() == []
    assert store.count() == 0


def test_events_survive_reopen(temp_data_dir):
    """Events written to a file are read back by a new store."""
    path = temp_data_dir / "multiblock.db"
    store = EventStore(path)
    store.append(_event())
    store.close()

    reopened = EventStore(path)
    assert reopened.count() == 1
    reopened.close()


def test_read_preserves_append_order():
    """Replay order is append order, even for identical timestamps."""
    store = EventStore()
    first = _event(board_id="b1")
    second = _event(board_id="b2")
    second.ts = first.ts
    store.append_batch([first, second])

    assert [e.id for e in store.read_all()] == [first.id, second.id]


def test_read_by_board():
    """Only events recorded against the board are returned."""
    store = EventStore()
    store.append(_event(board_id="b1"))
    store.append(_event(board_id="b2"))
    store.append(_event(op="delete_board", board_id="b1"))

    ops = [e.op for e in store.read_by_board("b1")]
    assert ops == ["create_board", "delete_board"]


def test_read_recent_newest_first():
    """Test reading recent events."""
    store = EventStore()
    events = [_event(board_id=f"b{i}") for i in range(5)]
    for event in events:
        store.append(event)

    recent = store.read_recent(limit=2)
    assert [e.id for e in recent] == [events[4].id, events[3].id]


def test_read_all_skips_malformed_rows():
    """Tolerant mode skips rows whose payload cannot be decoded."""
    store = EventStore()
    store.append(_event())
    conn = store._get_conn()
    conn.execute(
        "INSERT INTO events (id, ts, op, actor_id, board_id, data) VALUES (?, ?, ?, ?, ?, ?)",
        ("bad", "2026-01-01T00:00:00+00:00", "create_board", "user-1", "b1", "{not json"),
    )
    conn.commit()

    assert len(store.read_all()) == 1


def test_read_all_strict_raises():
    """Strict mode raises on a malformed row."""
    store = EventStore()
    conn = store._get_conn()
    conn.execute(
        "INSERT INTO events (id, ts, op, actor_id, board_id, data) VALUES (?, ?, ?, ?, ?, ?)",
        ("bad", "2026-01-01T00:00:00+00:00", "create_board", "user-1", "b1", "{not json"),
    )
    conn.commit()

    with pytest.raises(ValueError, match="Malformed event bad"):
        store.read_all(tolerant=False)
