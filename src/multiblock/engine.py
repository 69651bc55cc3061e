"""Multiblock engine - wires store, graph, memory, resolver and composer."""

import logging
from pathlib import Path

from .access import AccessPolicy, TeamAccess
from .composer import ContextComposer
from .constants import DB_FILENAME
from .graph import ConnectionGraph
from .injection import MemoryFilterOptions
from .memory import MemoryStore
from .models import (
    Block,
    Board,
    BoardEvent,
    BlockContext,
    ComposedContext,
    ConnectionStats,
    InjectedMemoryResult,
    Message,
    MessageMetadata,
    MessageRole,
)
from .resolver import ContextResolver
from .settings import DEFAULT_SETTINGS, load_settings
from .store import BoardStore
from .sync import BlockContextSync, ConnectionSync

logger = logging.getLogger(__name__)

# Events after which cached contexts on the board can no longer be trusted
_BOARD_WIDE_OPS = (
    "delete_board",
    "create_connection",
    "update_connection",
    "delete_connection",
    "create_memory",
    "update_memory",
    "delete_memory",
    "update_block",
    "delete_block",
)
_MESSAGE_EDIT_OPS = ("update_message", "delete_message")


class MultiblockEngine:
    """Main entry point for one user's view of their boards.

    Thread-safety: designed for single-process use. Several engines may
    share one BoardStore (one per acting user); running two processes on
    the same data directory is not supported.
    """

    def __init__(
        self,
        data_dir: Path | None,
        user_id: str,
        store: BoardStore | None = None,
        team_access: TeamAccess | None = None,
        settings: dict | None = None,
    ):
        self.data_dir = data_dir
        self.user_id = user_id

        if settings is None:
            settings = load_settings(data_dir) if data_dir is not None else DEFAULT_SETTINGS.copy()
        self.settings = settings

        if store is None:
            store = BoardStore(data_dir / DB_FILENAME if data_dir is not None else None)
        self.store = store

        self.access = AccessPolicy(store, store, team_access)
        self.resolver = ContextResolver(
            store, store, store, summary_chars=int(settings["summary_chars"])
        )
        self.composer = ContextComposer(
            self.resolver, store, store, max_memory_chars=int(settings["max_memory_chars"])
        )
        self.graph = ConnectionGraph(store, self.access, user_id, resolver=self.resolver)
        self.memory = MemoryStore(store, self.access, user_id)

        self._unsubscribe_events = store.subscribe_events(self._on_store_event)

    def close(self) -> None:
        self._unsubscribe_events()
        self.store.close()

    def _on_store_event(self, event: BoardEvent) -> None:
        """Mark contexts stale after edits.

        New messages are left to the live sync layer (ConnectionSync).
        """
        if event.op in _BOARD_WIDE_OPS and event.board_id:
            if event.op == "delete_board":
                self.composer.evict_board(event.board_id)
                return
            if event.op == "delete_block":
                self.composer.evict(event.data.get("id", ""))
            self.composer.invalidate_board(event.board_id)
        elif event.op in _MESSAGE_EDIT_OPS:
            # An edited answer changes what downstream blocks receive
            for conn in self.store.list_outgoing(event.data.get("block_id", "")):
                self.composer.invalidate(conn.to_block)

    # --- Boards and blocks ---

    def create_board(self, title: str = "Untitled board", team_id: str | None = None) -> Board:
        return self.store.create_board(self.user_id, title=title, team_id=team_id)

    def delete_board(self, board_id: str) -> None:
        self.access.require_board(self.user_id, board_id)
        self.store.delete_board(self.user_id, board_id)

    def list_boards(self) -> list[Board]:
        return [
            b for b in self.store.list_boards()
            if self.access.can_access_board(self.user_id, b)
        ]

    def create_block(self, board_id: str, title: str = "Untitled block", **fields) -> Block:
        self.access.require_board(self.user_id, board_id)
        return self.store.create_block(self.user_id, board_id, title=title, **fields)

    def update_block(self, block_id: str, **updates) -> Block:
        self.access.require_block(self.user_id, block_id)
        return self.store.update_block(self.user_id, block_id, **updates)

    def delete_block(self, block_id: str) -> None:
        """Delete a block with its messages and incident connections."""
        self.access.require_block(self.user_id, block_id)
        self.store.delete_block(self.user_id, block_id)

    # --- Messages ---

    def add_message(
        self,
        block_id: str,
        role: MessageRole,
        content: str,
        metadata: MessageMetadata | None = None,
    ) -> Message:
        self.access.require_block(self.user_id, block_id)
        return self.store.add_message(self.user_id, block_id, role, content, metadata)

    def edit_message(self, message_id: str, content: str) -> Message | None:
        message = self.store.get_message(message_id)
        if message is None:
            logger.warning(f"edit_message: message not found: {message_id}")
            return None
        self.access.require_block(self.user_id, message.block_id)
        return self.store.update_message(self.user_id, message_id, content)

    def delete_message(self, message_id: str) -> None:
        message = self.store.get_message(message_id)
        if message is None:
            return
        self.access.require_block(self.user_id, message.block_id)
        self.store.delete_message(self.user_id, message_id)

    def list_messages(self, block_id: str) -> list[Message]:
        self.access.require_block(self.user_id, block_id)
        return self.store.list_messages(block_id)

    # --- Context ---

    def resolve_incoming_context(self, block_id: str) -> list[BlockContext]:
        self.access.require_block(self.user_id, block_id)
        return self.resolver.resolve_incoming_context(block_id)

    def compose_context(self, block_id: str) -> ComposedContext:
        block = self.access.require_block(self.user_id, block_id)
        return self.composer.compose_context(block_id, block.board_id)

    def memory_for_block(
        self, block_id: str, options: MemoryFilterOptions | None = None
    ) -> InjectedMemoryResult:
        return self.memory.for_block(block_id, options)

    def connection_stats(self, block_id: str) -> ConnectionStats:
        self.access.require_block(self.user_id, block_id)
        return self.graph.stats(block_id)

    # --- Live sync ---

    def subscribe_board(self, board_id: str) -> ConnectionSync:
        """Live sync handle for a board; the caller owns start()/stop()."""
        self.access.require_board(self.user_id, board_id)
        return ConnectionSync(
            self.store, self.store, self.store, self.composer, board_id, self.user_id
        )

    def watch_block(self, block_id: str) -> BlockContextSync:
        """Live sync handle scoped to a single block's sources."""
        block = self.access.require_block(self.user_id, block_id)
        return BlockContextSync(
            self.store, self.store, self.composer, block_id, block.board_id, self.user_id
        )
