"""State materialization from events.

Replays the event log to build the current board state. Every mutation in
the engine is expressed as a BoardEvent computed from the current snapshot
and applied here, so the read-then-write contract stays explicit.
"""

from dataclasses import dataclass, field

from .models import (
    Block,
    Board,
    BoardEvent,
    Connection,
    MemoryItem,
    Message,
)

# Block fields that may change after creation
BLOCK_UPDATABLE_FIELDS = tuple(
    name for name in Block.model_fields if name not in ("id", "board_id", "created_at", "updated_at")
)


@dataclass
class BoardState:
    """Materialized state of every board, block, message, edge and memory item.

    Includes indices for O(1) lookups:
    - _blocks_by_board: board ID -> block IDs in creation order
    - _messages_by_block: block ID -> messages in insertion order
    - _outgoing: block ID -> connections from it
    - _incoming: block ID -> connections to it
    - _memory_by_board: board ID -> memory item IDs in creation order
    """

    boards: dict[str, Board] = field(default_factory=dict)
    blocks: dict[str, Block] = field(default_factory=dict)
    messages: dict[str, Message] = field(default_factory=dict)
    connections: dict[str, Connection] = field(default_factory=dict)
    memory: dict[str, MemoryItem] = field(default_factory=dict)
    last_event_id: str | None = None

    _blocks_by_board: dict[str, list[str]] = field(default_factory=dict)
    _messages_by_block: dict[str, list[Message]] = field(default_factory=dict)
    _outgoing: dict[str, list[Connection]] = field(default_factory=dict)
    _incoming: dict[str, list[Connection]] = field(default_factory=dict)
    _memory_by_board: dict[str, list[str]] = field(default_factory=dict)

    def get_board_blocks(self, board_id: str) -> list[Block]:
        return [self.blocks[bid] for bid in self._blocks_by_board.get(board_id, [])]

    def get_block_messages(self, block_id: str) -> list[Message]:
        """Messages of a block ordered by created_at (stable on insertion)."""
        return sorted(self._messages_by_block.get(block_id, []), key=lambda m: m.created_at)

    def get_outgoing_connections(self, block_id: str) -> list[Connection]:
        """O(1) lookup of connections where block is source."""
        return list(self._outgoing.get(block_id, []))

    def get_incoming_connections(self, block_id: str) -> list[Connection]:
        """O(1) lookup of connections where block is target."""
        return list(self._incoming.get(block_id, []))

    def get_board_memory(self, board_id: str) -> list[MemoryItem]:
        return [self.memory[mid] for mid in self._memory_by_board.get(board_id, [])]

    def board_of_block(self, block_id: str) -> Board | None:
        block = self.blocks.get(block_id)
        if block is None:
            return None
        return self.boards.get(block.board_id)

    def _rebuild_indices(self) -> None:
        """Rebuild all indices from base collections."""
        self._blocks_by_board = {}
        for block in self.blocks.values():
            self._blocks_by_board.setdefault(block.board_id, []).append(block.id)

        self._messages_by_block = {}
        for msg in self.messages.values():
            self._messages_by_block.setdefault(msg.block_id, []).append(msg)

        self._outgoing = {}
        self._incoming = {}
        for conn in self.connections.values():
            self._outgoing.setdefault(conn.from_block, []).append(conn)
            self._incoming.setdefault(conn.to_block, []).append(conn)

        self._memory_by_board = {}
        for item in self.memory.values():
            self._memory_by_board.setdefault(item.board_id, []).append(item.id)

    def check_index_consistency(self) -> list[str]:
        """Validate that indices match base state. Returns list of errors.

        Debug/test utility to detect index drift after incremental updates.
        """
        errors: list[str] = []
        rebuilt = BoardState(
            boards=self.boards,
            blocks=self.blocks,
            messages=self.messages,
            connections=self.connections,
            memory=self.memory,
        )
        rebuilt._rebuild_indices()

        def ids(index: dict[str, list]) -> dict[str, set[str]]:
            return {
                key: {v if isinstance(v, str) else v.id for v in values}
                for key, values in index.items()
                if values
            }

        for name in (
            "_blocks_by_board",
            "_messages_by_block",
            "_outgoing",
            "_incoming",
            "_memory_by_board",
        ):
            if ids(getattr(self, name)) != ids(getattr(rebuilt, name)):
                errors.append(f"{name} does not match base state")

        return errors


def materialize(events: list[BoardEvent]) -> BoardState:
    """Replay events to build current state."""
    state = BoardState()

    for event in events:
        apply_event(state, event)

    state._rebuild_indices()

    return state


def apply_event(state: BoardState, event: BoardEvent) -> None:
    """Apply a single event to state (mutates in place).

    Used for incremental updates after initial materialization.
    Updates indices automatically. Events that reference missing records
    are ignored so a replay never fails halfway.
    """
    op = event.op
    data = event.data

    if op == "create_board":
        board = Board.model_validate(data)
        state.boards[board.id] = board

    elif op == "delete_board":
        board_id = data.get("id")
        if board_id in state.boards:
            for block_id in list(state._blocks_by_board.get(board_id, [])):
                _delete_block(state, block_id)
            for item_id in list(state._memory_by_board.get(board_id, [])):
                state.memory.pop(item_id, None)
            state._memory_by_board.pop(board_id, None)
            state._blocks_by_board.pop(board_id, None)
            del state.boards[board_id]

    elif op == "create_block":
        block = Block.model_validate(data)
        state.blocks[block.id] = block
        state._blocks_by_board.setdefault(block.board_id, []).append(block.id)

    elif op == "update_block":
        block = state.blocks.get(data.get("id"))
        if block is not None:
            for key, value in data.get("updates", {}).items():
                if key in BLOCK_UPDATABLE_FIELDS:
                    setattr(block, key, value)
            block.updated_at = event.ts

    elif op == "delete_block":
        block_id = data.get("id")
        if block_id in state.blocks:
            _delete_block(state, block_id)

    elif op == "add_message":
        message = Message.model_validate(data)
        if message.block_id in state.blocks:
            state.messages[message.id] = message
            state._messages_by_block.setdefault(message.block_id, []).append(message)

    elif op == "update_message":
        message = state.messages.get(data.get("id"))
        if message is not None and "content" in data:
            # size_bytes is derived from content
            message.content = data["content"]

    elif op == "delete_message":
        message = state.messages.pop(data.get("id"), None)
        if message is not None:
            remaining = [
                m for m in state._messages_by_block.get(message.block_id, [])
                if m.id != message.id
            ]
            if remaining:
                state._messages_by_block[message.block_id] = remaining
            else:
                state._messages_by_block.pop(message.block_id, None)

    elif op == "create_connection":
        conn = Connection.model_validate(data)
        state.connections[conn.id] = conn
        state._outgoing.setdefault(conn.from_block, []).append(conn)
        state._incoming.setdefault(conn.to_block, []).append(conn)

    elif op == "update_connection":
        conn = state.connections.get(data.get("id"))
        if conn is not None:
            for key, value in data.get("updates", {}).items():
                if key in ("context_type", "transform_template", "enabled"):
                    setattr(conn, key, value)

    elif op == "delete_connection":
        conn = state.connections.pop(data.get("id"), None)
        if conn is not None:
            _remove_connection_from_indices(state, conn)

    elif op == "create_memory":
        item = MemoryItem.model_validate(data)
        state.memory[item.id] = item
        state._memory_by_board.setdefault(item.board_id, []).append(item.id)

    elif op == "update_memory":
        item = state.memory.get(data.get("id"))
        if item is not None:
            for key, value in data.get("updates", {}).items():
                if key in ("type", "content", "scope", "keywords"):
                    setattr(item, key, value)
            item.updated_at = event.ts

    elif op == "delete_memory":
        item = state.memory.pop(data.get("id"), None)
        if item is not None:
            ids = state._memory_by_board.get(item.board_id, [])
            state._memory_by_board[item.board_id] = [i for i in ids if i != item.id]

    state.last_event_id = event.id


def _delete_block(state: BoardState, block_id: str) -> None:
    """Remove a block and cascade to its messages and incident connections."""
    block = state.blocks.pop(block_id)

    for message in state._messages_by_block.pop(block_id, []):
        state.messages.pop(message.id, None)

    incident = state._outgoing.get(block_id, []) + state._incoming.get(block_id, [])
    for conn in incident:
        if state.connections.pop(conn.id, None) is not None:
            _remove_connection_from_indices(state, conn)

    siblings = state._blocks_by_board.get(block.board_id, [])
    state._blocks_by_board[block.board_id] = [b for b in siblings if b != block_id]


def _remove_connection_from_indices(state: BoardState, conn: Connection) -> None:
    """Remove a connection from the outgoing/incoming indices."""
    if conn.from_block in state._outgoing:
        state._outgoing[conn.from_block] = [
            c for c in state._outgoing[conn.from_block] if c.id != conn.id
        ]
        if not state._outgoing[conn.from_block]:
            del state._outgoing[conn.from_block]

    if conn.to_block in state._incoming:
        state._incoming[conn.to_block] = [
            c for c in state._incoming[conn.to_block] if c.id != conn.id
        ]
        if not state._incoming[conn.to_block]:
            del state._incoming[conn.to_block]
