"""Tests for the engine facade."""

import pytest

from multiblock.engine import MultiblockEngine
from multiblock.errors import NotFoundError, OwnershipError
from multiblock.models import MessageMetadata
from multiblock.settings import save_settings


def test_engine_persists_to_data_dir(temp_data_dir):
    """Test that a reopened engine sees the same board."""
    engine = MultiblockEngine(temp_data_dir, "user-1")
    board = engine.create_board("Persistent")
    x = engine.create_block(board.id, title="X")
    y = engine.create_block(board.id, title="Y")
    engine.graph.create(x.id, y.id)
    engine.add_message(x.id, "assistant", "saved answer")
    engine.close()

    assert (temp_data_dir / "multiblock.db").exists()

    reopened = MultiblockEngine(temp_data_dir, "user-1")
    [ctx] = reopened.resolve_incoming_context(y.id)
    assert ctx.content == "saved answer"
    reopened.close()


def test_engine_reads_settings(temp_data_dir):
    """Test that settings from the data directory reach the components."""
    save_settings(temp_data_dir, {"summary_chars": 10, "max_memory_chars": 500})
    engine = MultiblockEngine(temp_data_dir, "user-1")

    assert engine.resolver.summary_chars == 10
    assert engine.composer.max_memory_chars == 500
    assert engine.settings["log_level"] == "INFO"
    engine.close()


def test_list_boards_only_accessible(store, engine, board):
    """Test that each user only lists their own boards."""
    other = MultiblockEngine(None, "user-2", store=store)
    other.create_board("Private")

    assert [b.id for b in engine.list_boards()] == [board.id]


def test_create_block_requires_board_access(store, board):
    """Test that a stranger cannot add blocks."""
    stranger = MultiblockEngine(None, "user-2", store=store)

    with pytest.raises(OwnershipError):
        stranger.create_block(board.id, title="Intruder")


def test_add_message_with_metadata(engine, blocks):
    """Test adding a message with metadata."""
    x = blocks["X"]
    message = engine.add_message(
        x.id, "assistant", "ok", metadata=MessageMetadata(tokens=3, model_id="gpt-4o")
    )

    [stored] = engine.list_messages(x.id)
    assert stored.id == message.id
    assert stored.metadata.tokens == 3
    assert stored.size_bytes == 2


def test_add_message_to_missing_block(store):
    with pytest.raises(NotFoundError):
        store.add_message("user-1", "missing", "user", "hi")


def test_edit_and_delete_message(engine, blocks):
    """Test editing then deleting a message."""
    x = blocks["X"]
    message = engine.add_message(x.id, "user", "typo")

    engine.edit_message(message.id, "fixed")
    assert engine.list_messages(x.id)[0].content == "fixed"

    engine.delete_message(message.id)
    assert engine.list_messages(x.id) == []

    assert engine.edit_message("missing", "x") is None


def test_compose_requires_ownership(store, blocks):
    """Test that composing another user's block is refused."""
    stranger = MultiblockEngine(None, "user-2", store=store)

    with pytest.raises(OwnershipError):
        stranger.compose_context(blocks["Y"].id)


def test_delete_board_removes_everything(engine, board, blocks):
    """Test that deleting a board cascades to all its records."""
    engine.graph.create(blocks["X"].id, blocks["Y"].id)
    engine.memory.create(board.id, "fact", "gone soon")

    engine.delete_board(board.id)

    counts = engine.store.counts()
    assert counts["boards"] == counts["blocks"] == counts["connections"] == counts["memory"] == 0


def test_subscribe_board_requires_access(store, board):
    """Test that subscribing to a foreign board is refused."""
    stranger = MultiblockEngine(None, "user-2", store=store)

    with pytest.raises(OwnershipError):
        stranger.subscribe_board(board.id)


def test_close_unsubscribes(temp_data_dir):
    """Test that close() releases sync handles."""
    engine = MultiblockEngine(temp_data_dir, "user-1")
    assert engine.store.listener_count() == 1
    engine.close()
    assert engine.store.listener_count() == 0


def test_update_block_validates_before_writing(engine, blocks):
    """A rejected block update leaves the log and downstream context intact."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)
    engine.add_message(x.id, "assistant", "answer")
    events_before = engine.store.event_store.count()

    with pytest.raises(ValueError):
        engine.update_block(x.id, title=None)

    assert engine.store.event_store.count() == events_before
    assert engine.store.get_block(x.id).title == "X"
    assert engine.compose_context(y.id).block_contexts[0].source_block_title == "X"


def test_update_block_rejects_unknown_and_immutable_fields(engine, blocks):
    """Fields that cannot change raise instead of being dropped."""
    x = blocks["X"]

    with pytest.raises(ValueError, match="colour"):
        engine.update_block(x.id, colour="red")
    with pytest.raises(ValueError, match="board_id"):
        engine.update_block(x.id, board_id="elsewhere")
    with pytest.raises(ValueError, match="id"):
        engine.update_block(x.id, id="renamed")

    assert engine.store.get_block(x.id).board_id == blocks["Y"].board_id


def test_update_block_coerces_and_persists(temp_data_dir):
    """Validated values are what gets written and replayed."""
    engine = MultiblockEngine(temp_data_dir, "user-1")
    board = engine.create_board()
    block = engine.create_block(board.id, title="X")
    engine.update_block(block.id, title="Renamed", position_x=3)
    engine.close()

    reopened = MultiblockEngine(temp_data_dir, "user-1")
    replayed = reopened.store.get_block(block.id)
    assert replayed.title == "Renamed"
    assert replayed.position_x == 3.0
    reopened.close()
