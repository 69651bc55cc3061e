"""Connection graph: directed context-sharing edges between blocks.

If block A -> block B, B receives A's output as context; A receives nothing
from B. Edges are never deduplicated: two A -> B edges are two
contributions. Cycles are allowed, self-loops are not.
"""

import logging

from .access import AccessPolicy
from .errors import SelfLoopError
from .models import Connection, ConnectionStats, ContextType, utf8_size
from .store import BoardStore

logger = logging.getLogger(__name__)

_UNSET = object()


class ConnectionGraph:
    """Owner-validated CRUD over connections, acting on behalf of one user."""

    def __init__(self, store: BoardStore, access: AccessPolicy, actor_id: str, resolver=None):
        self.store = store
        self.access = access
        self.actor_id = actor_id
        # Optional ContextResolver, only needed for stats()
        self._resolver = resolver

    # --- Mutations ---

    def create(
        self,
        from_block_id: str,
        to_block_id: str,
        context_type: ContextType = "full",
        transform_template: str | None = None,
    ) -> Connection:
        """Create an enabled connection from one owned block to another.

        Raises:
            OwnershipError: actor does not own both blocks (via their boards)
            SelfLoopError: from_block_id == to_block_id
        """
        from_block = self.access.require_block(self.actor_id, from_block_id)
        self.access.require_block(self.actor_id, to_block_id)

        if from_block_id == to_block_id:
            raise SelfLoopError(from_block_id)

        if self.exists_between(from_block_id, to_block_id):
            logger.warning(
                f"Connection {from_block_id} -> {to_block_id} already exists, adding another"
            )

        connection = Connection(
            from_block=from_block_id,
            to_block=to_block_id,
            context_type=context_type,
            transform_template=transform_template,
            enabled=True,
        )
        self.store.emit(
            "create_connection",
            self.actor_id,
            connection.model_dump(mode="json"),
            board_id=from_block.board_id,
        )
        logger.info(f"Connected {from_block_id} -> {to_block_id} ({context_type})")
        return connection

    def update(
        self,
        connection_id: str,
        context_type: ContextType | object = _UNSET,
        transform_template: str | None | object = _UNSET,
        enabled: bool | object = _UNSET,
    ) -> None:
        """Partially update a connection. Missing ids are a logged no-op."""
        conn = self.store.get_connection(connection_id)
        if conn is None:
            logger.warning(f"update: connection not found: {connection_id}")
            return

        updates = {
            key: value
            for key, value in (
                ("context_type", context_type),
                ("transform_template", transform_template),
                ("enabled", enabled),
            )
            if value is not _UNSET
        }
        if not updates:
            return

        # Validate the merged record before anything is written
        merged = Connection.model_validate({**conn.model_dump(), **updates})
        payload = {key: getattr(merged, key) for key in updates}
        self._emit_update(conn, payload)

    def remove(self, connection_id: str) -> None:
        """Hard delete; idempotent."""
        conn = self.store.get_connection(connection_id)
        if conn is None:
            return
        self.store.emit(
            "delete_connection",
            self.actor_id,
            {"id": connection_id},
            board_id=self._board_of(conn),
        )

    def toggle(self, connection_id: str) -> Connection | None:
        """Flip enabled. Returns None (and logs) when the connection is gone."""
        conn = self.store.get_connection(connection_id)
        if conn is None:
            logger.warning(f"toggle: connection not found: {connection_id}")
            return None
        self._emit_update(conn, {"enabled": not conn.enabled})
        return conn

    def make_bidirectional(self, connection_id: str) -> Connection | None:
        """Create the reverse of a connection unless it already exists."""
        conn = self.store.get_connection(connection_id)
        if conn is None:
            logger.warning(f"make_bidirectional: connection not found: {connection_id}")
            return None
        if self.exists_between(conn.to_block, conn.from_block):
            logger.info(f"Connection {connection_id} is already bidirectional")
            return None
        return self.create(
            conn.to_block,
            conn.from_block,
            context_type=conn.context_type,
            transform_template=conn.transform_template,
        )

    def _emit_update(self, conn: Connection, updates: dict) -> None:
        self.store.emit(
            "update_connection",
            self.actor_id,
            {"id": conn.id, "updates": updates},
            board_id=self._board_of(conn),
        )

    def _board_of(self, conn: Connection) -> str | None:
        for block_id in (conn.from_block, conn.to_block):
            block = self.store.get_block(block_id)
            if block is not None:
                return block.board_id
        return None

    # --- Queries ---

    def list_outgoing(self, block_id: str, enabled_only: bool = False) -> list[Connection]:
        conns = self.store.list_outgoing(block_id)
        return [c for c in conns if c.enabled] if enabled_only else conns

    def list_incoming(self, block_id: str, enabled_only: bool = False) -> list[Connection]:
        conns = self.store.list_incoming(block_id)
        return [c for c in conns if c.enabled] if enabled_only else conns

    def board_connections(self, board_id: str) -> list[Connection]:
        return self.store.list_board_connections(board_id)

    def exists_between(self, from_block_id: str, to_block_id: str) -> bool:
        return any(c.to_block == to_block_id for c in self.store.list_outgoing(from_block_id))

    def exists_bidirectional(self, block_a: str, block_b: str) -> bool:
        return self.exists_between(block_a, block_b) and self.exists_between(block_b, block_a)

    def stats(self, block_id: str) -> ConnectionStats:
        """Connection counts and resolved context size for a block."""
        contexts = self._resolver.resolve_incoming_context(block_id) if self._resolver else []
        return ConnectionStats(
            incoming_count=len(self.list_incoming(block_id, enabled_only=True)),
            outgoing_count=len(self.list_outgoing(block_id, enabled_only=True)),
            has_context=bool(contexts),
            context_sources=[ctx.source_block_title for ctx in contexts],
            total_context_bytes=sum(utf8_size(ctx.content) for ctx in contexts),
        )
