"""Shared test fixtures and helpers for multiblock tests."""

import tempfile
from pathlib import Path

import pytest

from multiblock.engine import MultiblockEngine
from multiblock.models import MemoryItem
from multiblock.store import BoardStore


# --- Fixtures ---


@pytest.fixture
def temp_data_dir():
    """Provide a temporary data directory.

    Yields a Path to a temporary directory that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store():
    """Provide an in-memory BoardStore.

    Yields a store with an empty event log and closes it after the test.
    """
    store = BoardStore()
    yield store
    store.close()


@pytest.fixture
def engine(store):
    """Provide a MultiblockEngine acting as user-1.

    Shares the in-memory store, so other engines built on the same store
    can act as different users.
    """
    return MultiblockEngine(None, "user-1", store=store)


@pytest.fixture
def board(engine):
    """Provide a board owned by user-1."""
    return engine.create_board("Research")


@pytest.fixture
def blocks(engine, board):
    """Provide three blocks on the board.

    Returns a dict keyed by title (X, Y, Z), created in that order and
    not yet connected.
    """
    return {
        name: engine.create_block(board.id, title=name)
        for name in ("X", "Y", "Z")
    }


# --- Helper Functions (not fixtures) ---


def make_memory(
    content: str,
    type: str = "note",
    scope: str = "board",
    source_block_id: str | None = None,
    board_id: str = "board-1",
    keywords: list[str] | None = None,
) -> MemoryItem:
    """Build a detached MemoryItem for filtering and packing tests.

    Args:
        content: The memory text
        type: Memory item type
        scope: Visibility scope
        source_block_id: Block the item came from, if any
        board_id: Owning board
        keywords: Explicit keywords; none are extracted here
    """
    return MemoryItem(
        board_id=board_id,
        user_id="user-1",
        type=type,
        content=content,
        scope=scope,
        source_block_id=source_block_id,
        keywords=keywords or [],
    )
