"""Repository interfaces consumed by the resolver, composer and sync layer.

The context engine never reaches into a global store; each collaborator is
handed the narrow interface it reads from. BoardStore implements all of
them, tests can pass fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from .models import Block, Board, BoardEvent, Connection, MemoryItem, Message

MessageListener = Callable[["Message", str], None]  # (message, actor_id)
EventListener = Callable[["BoardEvent"], None]
ConnectionListener = EventListener
Unsubscribe = Callable[[], None]


class BoardRepository(Protocol):
    def get_board(self, board_id: str) -> Board | None: ...

    def list_boards(self, user_id: str | None = None) -> list[Board]: ...


class BlockRepository(Protocol):
    def get_block(self, block_id: str) -> Block | None: ...

    def list_blocks(self, board_id: str) -> list[Block]: ...


class MessageRepository(Protocol):
    def list_messages(self, block_id: str) -> list[Message]: ...

    def latest_message(self, block_id: str, role: str = "assistant") -> Message | None: ...


class ConnectionRepository(Protocol):
    def get_connection(self, connection_id: str) -> Connection | None: ...

    def list_outgoing(self, block_id: str) -> list[Connection]: ...

    def list_incoming(self, block_id: str) -> list[Connection]: ...

    def list_board_connections(self, board_id: str) -> list[Connection]: ...


class MemoryRepository(Protocol):
    def get_memory(self, item_id: str) -> MemoryItem | None: ...

    def list_memory(self, board_id: str) -> list[MemoryItem]: ...


class MessageFeed(Protocol):
    """Push channel for asynchronously arriving changes."""

    def subscribe_messages(self, user_id: str, listener: MessageListener) -> Unsubscribe: ...

    def subscribe_connections(self, board_id: str, listener: ConnectionListener) -> Unsubscribe: ...
