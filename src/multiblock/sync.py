"""Live invalidation: keep composed contexts fresh as messages arrive.

When a message lands in block A, every block connected FROM A (A -> B,
A -> C) has its composed context marked stale, so the next read picks up
the new message. Connection changes anywhere on the board clear the
outgoing-target cache and mark the whole board stale.

Subscriptions are explicit handles: whoever composes the service calls
start() and stop(); nothing is tied to a UI lifecycle.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Callable

from .composer import ContextComposer
from .errors import TransientFetchError
from .models import BoardEvent, Message
from .repository import BlockRepository, ConnectionRepository, MessageFeed, Unsubscribe

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    INACTIVE = "inactive"
    SUBSCRIBED = "subscribed"


class Subscription(ABC):
    """Start/stop handle around a set of feed listeners.

    Subclasses implement _open() to register their listeners and may
    override _close() to drop caches.

    Events are queued and handled one at a time in arrival order. After
    stop() returns, no further event is handled, including queued ones.
    """

    name = "subscription"

    def __init__(self):
        self._state = SubscriptionState.INACTIVE
        self._unsubscribers: list[Unsubscribe] = []
        self._pending: deque[tuple[Callable, tuple]] = deque()
        self._drain_lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is SubscriptionState.SUBSCRIBED

    def start(self) -> "Subscription":
        with self._state_lock:
            if self.active:
                return self
            # A failed _open leaves the handle inactive
            self._unsubscribers = self._open()
            self._state = SubscriptionState.SUBSCRIBED
        logger.info(f"Started {self.name}")
        return self

    def stop(self) -> None:
        with self._state_lock:
            if not self.active:
                return
            self._state = SubscriptionState.INACTIVE
            unsubscribers, self._unsubscribers = self._unsubscribers, []
            for unsubscribe in unsubscribers:
                unsubscribe()
            self._pending.clear()
            self._close()
        logger.info(f"Stopped {self.name}")

    def __enter__(self) -> "Subscription":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()

    @abstractmethod
    def _open(self) -> list[Unsubscribe]:
        """Register feed listeners; returns their unsubscribe callables."""

    def _close(self) -> None:
        """Release per-subscription caches."""

    def _dispatch(self, handler: Callable, *args) -> None:
        """Queue an event and drain the queue unless another thread is."""
        if not self.active:
            return
        self._pending.append((handler, args))
        while self._pending:
            if not self._drain_lock.acquire(blocking=False):
                return  # the current drainer picks it up
            try:
                while self._pending and self.active:
                    queued_handler, queued_args = self._pending.popleft()
                    queued_handler(*queued_args)
            finally:
                self._drain_lock.release()
            if not self.active:
                return


class ConnectionSync(Subscription):
    """Board-wide live sync for one user's message inserts."""

    def __init__(
        self,
        feed: MessageFeed,
        blocks: BlockRepository,
        connections: ConnectionRepository,
        composer: ContextComposer,
        board_id: str,
        user_id: str,
        on_invalidate: Callable[[str], None] | None = None,
    ):
        super().__init__()
        self.name = f"connection sync for board {board_id}"
        self._feed = feed
        self._blocks = blocks
        self._connections = connections
        self._composer = composer
        self.board_id = board_id
        self.user_id = user_id
        self._on_invalidate = on_invalidate
        # source block ID -> target block IDs
        self._outgoing_cache: dict[str, list[str]] = {}

    def _open(self) -> list[Unsubscribe]:
        return [
            self._feed.subscribe_messages(self.user_id, self._on_message),
            self._feed.subscribe_connections(self.board_id, self._on_connection_change),
        ]

    def _close(self) -> None:
        self._outgoing_cache.clear()

    def _on_message(self, message: Message, actor_id: str) -> None:
        self._dispatch(self.handle_message, message, actor_id)

    def _on_connection_change(self, event: BoardEvent) -> None:
        self._dispatch(self.handle_connection_change, event)

    # --- Handlers ---

    def handle_message(self, message: Message, actor_id: str) -> list[str]:
        """Invalidate every block fed by the message's block.

        Returns the invalidated target block IDs.
        """
        if actor_id != self.user_id or not message.block_id:
            return []
        if not self._belongs_to_board(message.block_id):
            return []

        targets = self.get_outgoing_targets(message.block_id)
        if not targets:
            logger.debug(f"No outgoing connections from block {message.block_id}")
            return []

        for target in targets:
            self._composer.invalidate(target)
            if self._on_invalidate is not None:
                self._on_invalidate(target)
        logger.debug(f"Invalidated context for {targets} after message in {message.block_id}")
        return targets

    def handle_connection_change(self, event: BoardEvent) -> None:
        """Conservative invalidation: forget every cached target list."""
        logger.debug(f"Connection change ({event.op}) on board {self.board_id}, clearing cache")
        self._outgoing_cache.clear()
        self._composer.invalidate_board(self.board_id)

    def get_outgoing_targets(self, block_id: str) -> list[str]:
        """Target block IDs of a block's outgoing connections, cached.

        A failed lookup yields no targets and is not cached, so the next
        event retries naturally.
        """
        cached = self._outgoing_cache.get(block_id)
        if cached is not None:
            return cached

        try:
            connections = self._connections.list_outgoing(block_id)
        except TransientFetchError:
            logger.error(f"Error fetching outgoing connections for {block_id}", exc_info=True)
            return []

        targets = [c.to_block for c in connections]
        self._outgoing_cache[block_id] = targets
        return targets

    def _belongs_to_board(self, block_id: str) -> bool:
        try:
            block = self._blocks.get_block(block_id)
        except TransientFetchError:
            logger.error(f"Error fetching block {block_id}", exc_info=True)
            return False
        return block is not None and block.board_id == self.board_id


class BlockContextSync(Subscription):
    """Per-block live sync: watches only the sources feeding one block."""

    def __init__(
        self,
        feed: MessageFeed,
        connections: ConnectionRepository,
        composer: ContextComposer,
        block_id: str,
        board_id: str,
        user_id: str,
    ):
        super().__init__()
        self.name = f"context sync for block {block_id}"
        self._feed = feed
        self._connections = connections
        self._composer = composer
        self.block_id = block_id
        self.board_id = board_id
        self.user_id = user_id
        self.source_block_ids: set[str] = set()

    def _open(self) -> list[Unsubscribe]:
        self.refresh_sources()
        return [
            self._feed.subscribe_messages(self.user_id, self._on_message),
            self._feed.subscribe_connections(self.board_id, self._on_connection_change),
        ]

    def _close(self) -> None:
        self.source_block_ids = set()

    def refresh_sources(self) -> None:
        try:
            incoming = self._connections.list_incoming(self.block_id)
        except TransientFetchError:
            logger.error(f"Error fetching incoming connections for {self.block_id}", exc_info=True)
            return
        self.source_block_ids = {c.from_block for c in incoming}
        logger.debug(f"Block {self.block_id} watching sources {sorted(self.source_block_ids)}")

    def _on_message(self, message: Message, actor_id: str) -> None:
        self._dispatch(self._handle_message, message)

    def _on_connection_change(self, event: BoardEvent) -> None:
        self._dispatch(self._handle_connection_change)

    def _handle_message(self, message: Message) -> None:
        if message.block_id in self.source_block_ids:
            self._composer.invalidate(self.block_id)

    def _handle_connection_change(self) -> None:
        self.refresh_sources()
        self._composer.invalidate(self.block_id)
