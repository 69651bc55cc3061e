"""Persistence collaborator: event log + materialized state + push channel.

All board changes flow through BoardStore.emit(). The event is durably
stored in the event log (source of truth), applied to the in-memory state,
and then pushed to subscribers. Listeners run in the emitting thread after
the write lock is released.
"""

import logging
import threading
from pathlib import Path

from .errors import NotFoundError
from .events import EventStore
from .models import (
    Block,
    Board,
    BoardEvent,
    Connection,
    MemoryItem,
    Message,
    MessageMetadata,
    MessageRole,
)
from .repository import ConnectionListener, EventListener, MessageListener, Unsubscribe
from .state import BLOCK_UPDATABLE_FIELDS, BoardState, apply_event, materialize

logger = logging.getLogger(__name__)

CONNECTION_OPS = ("create_connection", "update_connection", "delete_connection")


class BoardStore:
    """In-process implementation of every repository interface.

    Thread-safety: writes are serialized by a lock; readers see the
    materialized state as of the last applied event. Designed for
    single-process use, like the event log it wraps.
    """

    def __init__(self, db_path: Path | None = None):
        self.event_store = EventStore(db_path)
        self.state: BoardState = materialize(self.event_store.read_all())
        self._lock = threading.RLock()
        self._message_listeners: dict[str, list[MessageListener]] = {}
        self._connection_listeners: dict[str, list[ConnectionListener]] = {}
        self._event_listeners: list[EventListener] = []

    def close(self) -> None:
        self.event_store.close()

    # --- Mutation point ---

    def emit(self, op: str, actor_id: str, data: dict, board_id: str | None = None) -> BoardEvent:
        """Append an event, apply it to state, then notify listeners."""
        event = BoardEvent(
            op=op,  # type: ignore[arg-type]
            actor_id=actor_id,
            board_id=board_id,
            data=data,
        )
        with self._lock:
            self.event_store.append(event)
            apply_event(self.state, event)
        self._publish(event)
        return event

    def _publish(self, event: BoardEvent) -> None:
        for listener in list(self._event_listeners):
            self._deliver(listener, event)
        if event.op == "add_message":
            message = self.state.messages.get(event.data["id"])
            if message is None:
                return
            for listener in list(self._message_listeners.get(event.actor_id, [])):
                self._deliver(listener, message, event.actor_id)
        elif event.op in CONNECTION_OPS or event.op == "delete_block":
            # Block deletion cascades to connections
            if event.board_id is None:
                return
            for listener in list(self._connection_listeners.get(event.board_id, [])):
                self._deliver(listener, event)

    @staticmethod
    def _deliver(listener, *args) -> None:
        try:
            listener(*args)
        except Exception:
            logger.exception(f"Listener {listener!r} failed")

    # --- Push channel ---

    def subscribe_messages(self, user_id: str, listener: MessageListener) -> Unsubscribe:
        """Receive every message inserted by user_id."""
        with self._lock:
            self._message_listeners.setdefault(user_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._message_listeners.get(user_id, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def subscribe_connections(self, board_id: str, listener: ConnectionListener) -> Unsubscribe:
        """Receive every connection change on board_id."""
        with self._lock:
            self._connection_listeners.setdefault(board_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._connection_listeners.get(board_id, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def subscribe_events(self, listener: EventListener) -> Unsubscribe:
        """Receive every event, after it has been applied."""
        with self._lock:
            self._event_listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._event_listeners:
                    self._event_listeners.remove(listener)

        return unsubscribe

    def listener_count(self) -> int:
        return (
            len(self._event_listeners)
            + sum(len(v) for v in self._message_listeners.values())
            + sum(len(v) for v in self._connection_listeners.values())
        )

    # --- Boards ---

    def get_board(self, board_id: str) -> Board | None:
        return self.state.boards.get(board_id)

    def list_boards(self, user_id: str | None = None) -> list[Board]:
        boards = list(self.state.boards.values())
        if user_id is not None:
            boards = [b for b in boards if b.user_id == user_id]
        return boards

    def create_board(self, user_id: str, title: str = "Untitled board", team_id: str | None = None) -> Board:
        board = Board(user_id=user_id, title=title, team_id=team_id)
        self.emit("create_board", user_id, board.model_dump(mode="json"), board_id=board.id)
        return board

    def delete_board(self, actor_id: str, board_id: str) -> None:
        if board_id in self.state.boards:
            self.emit("delete_board", actor_id, {"id": board_id}, board_id=board_id)

    # --- Blocks ---

    def get_block(self, block_id: str) -> Block | None:
        return self.state.blocks.get(block_id)

    def get_block_or_raise(self, block_id: str) -> Block:
        block = self.state.blocks.get(block_id)
        if block is None:
            raise NotFoundError("block", block_id)
        return block

    def list_blocks(self, board_id: str) -> list[Block]:
        return self.state.get_board_blocks(board_id)

    def create_block(self, actor_id: str, board_id: str, **fields) -> Block:
        block = Block(board_id=board_id, **fields)
        self.emit("create_block", actor_id, block.model_dump(mode="json"), board_id=board_id)
        return block

    def update_block(self, actor_id: str, block_id: str, **updates) -> Block | None:
        """Partially update a block. Missing ids are a logged no-op.

        Raises:
            ValueError: a field is unknown or immutable, or a value fails
                validation (pydantic ValidationError)
        """
        block = self.state.blocks.get(block_id)
        if block is None:
            logger.warning(f"update_block: block not found: {block_id}")
            return None

        rejected = sorted(key for key in updates if key not in BLOCK_UPDATABLE_FIELDS)
        if rejected:
            raise ValueError(f"Cannot update block field(s): {', '.join(rejected)}")
        if not updates:
            return block

        # Validate the merged record before anything is written
        merged = Block.model_validate({**block.model_dump(), **updates})
        payload = {key: getattr(merged, key) for key in updates}
        self.emit(
            "update_block", actor_id, {"id": block_id, "updates": payload}, board_id=block.board_id
        )
        return block

    def delete_block(self, actor_id: str, block_id: str) -> None:
        """Delete a block; messages and incident connections go with it."""
        block = self.state.blocks.get(block_id)
        if block is None:
            return
        self.emit("delete_block", actor_id, {"id": block_id}, board_id=block.board_id)

    # --- Messages ---

    def get_message(self, message_id: str) -> Message | None:
        return self.state.messages.get(message_id)

    def list_messages(self, block_id: str) -> list[Message]:
        return self.state.get_block_messages(block_id)

    def latest_message(self, block_id: str, role: str = "assistant") -> Message | None:
        """Most recent message of a role; later insertion wins ties."""
        latest: Message | None = None
        for message in self.state.get_block_messages(block_id):
            if message.role == role and (latest is None or message.created_at >= latest.created_at):
                latest = message
        return latest

    def add_message(
        self,
        actor_id: str,
        block_id: str,
        role: MessageRole,
        content: str,
        metadata: MessageMetadata | None = None,
    ) -> Message:
        block = self.get_block_or_raise(block_id)
        message = Message(block_id=block_id, role=role, content=content, metadata=metadata)
        self.emit("add_message", actor_id, message.model_dump(mode="json"), board_id=block.board_id)
        return message

    def update_message(self, actor_id: str, message_id: str, content: str) -> Message | None:
        message = self.state.messages.get(message_id)
        if message is None:
            logger.warning(f"update_message: message not found: {message_id}")
            return None
        block = self.state.blocks.get(message.block_id)
        self.emit(
            "update_message",
            actor_id,
            {"id": message_id, "block_id": message.block_id, "content": content},
            board_id=block.board_id if block else None,
        )
        return message

    def delete_message(self, actor_id: str, message_id: str) -> None:
        message = self.state.messages.get(message_id)
        if message is None:
            return
        block = self.state.blocks.get(message.block_id)
        self.emit(
            "delete_message",
            actor_id,
            {"id": message_id, "block_id": message.block_id},
            board_id=block.board_id if block else None,
        )

    # --- Connections (mutations live in graph.ConnectionGraph) ---

    def get_connection(self, connection_id: str) -> Connection | None:
        return self.state.connections.get(connection_id)

    def list_outgoing(self, block_id: str) -> list[Connection]:
        return self.state.get_outgoing_connections(block_id)

    def list_incoming(self, block_id: str) -> list[Connection]:
        return self.state.get_incoming_connections(block_id)

    def list_board_connections(self, board_id: str) -> list[Connection]:
        block_ids = {b.id for b in self.state.get_board_blocks(board_id)}
        return [
            c for c in self.state.connections.values()
            if c.from_block in block_ids or c.to_block in block_ids
        ]

    # --- Memory (mutations live in memory.MemoryStore) ---

    def get_memory(self, item_id: str) -> MemoryItem | None:
        return self.state.memory.get(item_id)

    def list_memory(self, board_id: str) -> list[MemoryItem]:
        return self.state.get_board_memory(board_id)

    # --- Stats ---

    def counts(self) -> dict[str, int]:
        return {
            "boards": len(self.state.boards),
            "blocks": len(self.state.blocks),
            "messages": len(self.state.messages),
            "connections": len(self.state.connections),
            "memory": len(self.state.memory),
            "events": self.event_store.count(),
        }
