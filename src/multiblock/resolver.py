"""Resolve the incoming context of a block from its connected sources."""

from __future__ import annotations

import logging

from .constants import SUMMARY_ELLIPSIS, SUMMARY_MAX_CHARS, TEMPLATE_PLACEHOLDER
from .errors import TransientFetchError
from .models import BlockContext, Connection
from .repository import BlockRepository, ConnectionRepository, MessageRepository

logger = logging.getLogger(__name__)


def summarize(content: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    """Cut content to max_chars, marking the cut with an ellipsis."""
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + SUMMARY_ELLIPSIS


def apply_transform(connection: Connection, content: str, summary_chars: int = SUMMARY_MAX_CHARS) -> str:
    """Apply a connection's context type and template to source content.

    Only the first placeholder is substituted; a template without one
    replaces the content entirely.
    """
    if connection.context_type == "summary":
        content = summarize(content, summary_chars)
    if connection.transform_template and content:
        content = connection.transform_template.replace(TEMPLATE_PLACEHOLDER, content, 1)
    return content


class ContextResolver:
    """Walks enabled incoming edges and pulls each source's latest answer."""

    def __init__(
        self,
        blocks: BlockRepository,
        messages: MessageRepository,
        connections: ConnectionRepository,
        summary_chars: int = SUMMARY_MAX_CHARS,
    ):
        self._blocks = blocks
        self._messages = messages
        self._connections = connections
        self.summary_chars = summary_chars

    def resolve_incoming_context(self, target_block_id: str) -> list[BlockContext]:
        """One BlockContext per enabled incoming connection with content.

        Dangling edges and sources without an assistant message contribute
        nothing. Order follows connection creation order. A transient store
        failure drops the affected contribution instead of raising.
        """
        try:
            incoming = self._connections.list_incoming(target_block_id)
        except TransientFetchError:
            logger.error(f"Incoming connections unavailable for {target_block_id}", exc_info=True)
            return []

        contexts: list[BlockContext] = []
        for conn in incoming:
            if not conn.enabled:
                continue
            try:
                context = self._resolve_one(conn)
            except TransientFetchError:
                logger.error(f"Source {conn.from_block} unavailable, skipping {conn.id}", exc_info=True)
                continue
            if context is not None:
                contexts.append(context)

        return contexts

    def _resolve_one(self, conn: Connection) -> BlockContext | None:
        source = self._blocks.get_block(conn.from_block)
        if source is None:
            logger.debug(f"Skipping dangling connection {conn.id}: no block {conn.from_block}")
            return None

        message = self._messages.latest_message(conn.from_block, role="assistant")
        if message is None or not message.content:
            return None

        content = apply_transform(conn, message.content, self.summary_chars)
        if not content:
            return None

        return BlockContext(
            connection_id=conn.id,
            source_block_id=conn.from_block,
            source_block_title=source.title,
            context_type=conn.context_type,
            content=content,
            created_at=message.created_at,
        )
