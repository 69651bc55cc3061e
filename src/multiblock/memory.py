"""Scoped memory CRUD on behalf of one user."""

import logging

from .access import AccessPolicy
from .errors import NotFoundError
from .injection import (
    MemoryFilterOptions,
    extract_keywords,
    filter_memory_items,
    get_memory_for_block,
)
from .models import InjectedMemoryResult, MemoryItem, MemoryItemType, MemoryScope
from .store import BoardStore

logger = logging.getLogger(__name__)


class MemoryStore:
    """Create, edit and delete memory items, with ownership checks.

    Keywords are extracted from content unless the caller supplies them,
    and re-extracted whenever content changes without explicit keywords.
    """

    def __init__(self, store: BoardStore, access: AccessPolicy, actor_id: str):
        self.store = store
        self.access = access
        self.actor_id = actor_id

    def create(
        self,
        board_id: str,
        type: MemoryItemType,
        content: str,
        scope: MemoryScope = "board",
        source_block_id: str | None = None,
        source_message_id: str | None = None,
        keywords: list[str] | None = None,
    ) -> MemoryItem:
        self.access.require_board(self.actor_id, board_id)
        if source_block_id is not None:
            self.access.require_block(self.actor_id, source_block_id)

        item = MemoryItem(
            board_id=board_id,
            user_id=self.actor_id,
            type=type,
            content=content,
            scope=scope,
            source_block_id=source_block_id,
            source_message_id=source_message_id,
            keywords=keywords if keywords is not None else extract_keywords(content),
        )
        self.store.emit("create_memory", self.actor_id, item.model_dump(mode="json"), board_id=board_id)
        logger.info(f"Saved {scope} {type} memory {item.id} on board {board_id}")
        return item

    def save_message(
        self,
        message_id: str,
        type: MemoryItemType = "note",
        scope: MemoryScope = "block",
        content: str | None = None,
    ) -> MemoryItem:
        """Save a chat message (or an excerpt of it) to memory.

        Provenance points at the message and its block.
        """
        message = self.store.get_message(message_id)
        if message is None:
            raise NotFoundError("message", message_id)
        block = self.access.require_block(self.actor_id, message.block_id)
        return self.create(
            block.board_id,
            type,
            content if content is not None else message.content,
            scope=scope,
            source_block_id=block.id,
            source_message_id=message.id,
        )

    def update(
        self,
        item_id: str,
        type: MemoryItemType | None = None,
        content: str | None = None,
        scope: MemoryScope | None = None,
        keywords: list[str] | None = None,
    ) -> MemoryItem:
        item = self._require_item(item_id)

        updates: dict = {}
        if type is not None:
            updates["type"] = type
        if scope is not None:
            updates["scope"] = scope
        if content is not None:
            updates["content"] = content
        if keywords is not None:
            updates["keywords"] = keywords
        elif content is not None:
            updates["keywords"] = extract_keywords(content)
        if not updates:
            return item

        # Validate before writing
        MemoryItem.model_validate({**item.model_dump(), **updates})
        self.store.emit(
            "update_memory",
            self.actor_id,
            {"id": item_id, "updates": updates},
            board_id=item.board_id,
        )
        return item

    def delete(self, item_id: str) -> None:
        """Delete a memory item; deleting a missing item is a no-op."""
        item = self.store.get_memory(item_id)
        if item is None:
            logger.warning(f"delete: memory item not found: {item_id}")
            return
        self.access.require_board(self.actor_id, item.board_id)
        self.store.emit("delete_memory", self.actor_id, {"id": item_id}, board_id=item.board_id)

    def list_items(self, board_id: str, options: MemoryFilterOptions | None = None) -> list[MemoryItem]:
        self.access.require_board(self.actor_id, board_id)
        items = self.store.list_memory(board_id)
        return filter_memory_items(items, options) if options else items

    def for_block(self, block_id: str, options: MemoryFilterOptions | None = None) -> InjectedMemoryResult:
        block = self.access.require_block(self.actor_id, block_id)
        return get_memory_for_block(self.store.list_memory(block.board_id), block_id, options)

    def _require_item(self, item_id: str) -> MemoryItem:
        item = self.store.get_memory(item_id)
        if item is None:
            raise NotFoundError("memory item", item_id)
        self.access.require_board(self.actor_id, item.board_id)
        return item
