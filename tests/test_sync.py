"""Tests for live context invalidation."""

import pytest

from multiblock.errors import TransientFetchError
from multiblock.models import Message
from multiblock.sync import ConnectionSync, Subscription, SubscriptionState


def test_message_invalidates_all_targets(engine, board, blocks):
    """A new message in X refreshes the composed context of Y and Z."""
    x, y, z = blocks["X"], blocks["Y"], blocks["Z"]
    engine.graph.create(x.id, y.id)
    engine.graph.create(x.id, z.id)
    engine.add_message(x.id, "assistant", "old answer")
    engine.compose_context(y.id)
    engine.compose_context(z.id)

    with engine.subscribe_board(board.id):
        engine.add_message(x.id, "assistant", "new answer")

        assert engine.compose_context(y.id).block_contexts[0].content == "new answer"
        assert engine.compose_context(z.id).block_contexts[0].content == "new answer"


def test_without_subscription_cache_is_kept(engine, blocks):
    """Without a subscription, new messages do not touch the cache."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)
    engine.add_message(x.id, "assistant", "old answer")
    first = engine.compose_context(y.id)

    engine.add_message(x.id, "assistant", "new answer")

    assert engine.compose_context(y.id) is first


def test_start_is_idempotent_and_stop_releases_listeners(engine, board):
    """Test start/stop bookkeeping on the store."""
    baseline = engine.store.listener_count()
    sync = engine.subscribe_board(board.id)
    assert sync.state is SubscriptionState.INACTIVE

    sync.start()
    sync.start()
    assert sync.active
    assert engine.store.listener_count() == baseline + 2

    sync.stop()
    sync.stop()
    assert sync.state is SubscriptionState.INACTIVE
    assert engine.store.listener_count() == baseline


def test_no_processing_after_stop(engine, board, blocks):
    """Test that a stopped handle ignores new messages."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)
    invalidated = []
    sync = ConnectionSync(
        engine.store, engine.store, engine.store, engine.composer,
        board.id, engine.user_id, on_invalidate=invalidated.append,
    )
    sync.start()
    engine.add_message(x.id, "user", "first")
    sync.stop()
    engine.add_message(x.id, "user", "second")

    assert invalidated == [y.id]


def test_handle_message_ignores_other_actors(engine, board, blocks):
    """Test that other users' messages are ignored."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)
    sync = engine.subscribe_board(board.id)
    message = Message(block_id=x.id, role="user", content="hi")

    assert sync.handle_message(message, "user-2") == []
    assert sync.handle_message(message, "user-1") == [y.id]


def test_handle_message_ignores_other_boards(engine, board, blocks):
    """Test that messages on other boards are ignored."""
    other_board = engine.create_board("Other")
    a = engine.create_block(other_board.id, title="A")
    b = engine.create_block(other_board.id, title="B")
    engine.graph.create(a.id, b.id)

    sync = engine.subscribe_board(board.id)
    message = Message(block_id=a.id, role="user", content="hi")

    assert sync.handle_message(message, "user-1") == []


def test_block_without_outgoing_connections(engine, board, blocks):
    sync = engine.subscribe_board(board.id)
    message = Message(block_id=blocks["Z"].id, role="user", content="hi")

    assert sync.handle_message(message, "user-1") == []


def test_outgoing_targets_cached(engine, board, blocks):
    """Test that outgoing targets are looked up once per block."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)
    sync = engine.subscribe_board(board.id)

    assert sync.get_outgoing_targets(x.id) == [y.id]
    # Without a running subscription nothing clears the cache
    engine.graph.create(x.id, blocks["Z"].id)
    assert sync.get_outgoing_targets(x.id) == [y.id]


def test_connection_change_clears_cache(engine, board, blocks):
    """Connection edits drop cached targets and invalidate the board."""
    x, y, z = blocks["X"], blocks["Y"], blocks["Z"]
    engine.graph.create(x.id, y.id)

    with engine.subscribe_board(board.id) as sync:
        assert sync.get_outgoing_targets(x.id) == [y.id]
        engine.compose_context(z.id)

        engine.graph.create(x.id, z.id)

        assert engine.composer.is_stale(z.id)
        assert sync.get_outgoing_targets(x.id) == [y.id, z.id]


def test_transient_failure_returns_no_targets_and_retries(engine, board, blocks):
    """A failed target lookup is not cached."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)

    class FlakyConnections:
        calls = 0

        def list_outgoing(self, block_id):
            FlakyConnections.calls += 1
            if FlakyConnections.calls == 1:
                raise TransientFetchError("timeout")
            return engine.store.list_outgoing(block_id)

    sync = ConnectionSync(
        engine.store, engine.store, FlakyConnections(), engine.composer, board.id, engine.user_id
    )

    assert sync.get_outgoing_targets(x.id) == []
    assert sync.get_outgoing_targets(x.id) == [y.id]


def test_events_handled_in_arrival_order(engine, board, blocks):
    """Test that queued events drain in order."""
    x, y, z = blocks["X"], blocks["Y"], blocks["Z"]
    engine.graph.create(x.id, y.id)
    engine.graph.create(z.id, x.id)
    seen = []
    sync = ConnectionSync(
        engine.store, engine.store, engine.store, engine.composer,
        board.id, engine.user_id, on_invalidate=seen.append,
    )

    with sync:
        engine.add_message(x.id, "user", "one")
        engine.add_message(z.id, "user", "two")
        engine.add_message(x.id, "user", "three")

    assert seen == [y.id, x.id, y.id]


def test_block_delete_counts_as_connection_change(engine, board, blocks):
    """Test that deleting a block is treated as a connection change."""
    x, y = blocks["X"], blocks["Y"]
    engine.graph.create(x.id, y.id)

    with engine.subscribe_board(board.id) as sync:
        sync.get_outgoing_targets(x.id)
        engine.delete_block(y.id)
        assert sync.get_outgoing_targets(x.id) == []


# --- Per-block sync ---


def test_block_context_sync(engine, board, blocks):
    """Test watching a single block's incoming context."""
    x, y, z = blocks["X"], blocks["Y"], blocks["Z"]
    engine.graph.create(x.id, y.id)

    with engine.watch_block(y.id) as watcher:
        assert watcher.source_block_ids == {x.id}

        engine.compose_context(y.id)
        engine.add_message(z.id, "assistant", "unrelated")
        assert not engine.composer.is_stale(y.id)

        engine.add_message(x.id, "assistant", "relevant")
        assert engine.composer.is_stale(y.id)

        engine.graph.create(z.id, y.id)
        assert watcher.source_block_ids == {x.id, z.id}

    assert watcher.source_block_ids == set()


def test_subscription_requires_open():
    """The base handle cannot be used without an _open implementation."""
    with pytest.raises(TypeError):
        Subscription()


def test_failed_open_leaves_handle_inactive():
    """start() only reports active once listeners are registered."""

    class Broken(Subscription):
        def _open(self):
            raise TransientFetchError("feed offline")

    handle = Broken()
    with pytest.raises(TransientFetchError):
        handle.start()

    assert handle.state is SubscriptionState.INACTIVE
    assert not handle.active
