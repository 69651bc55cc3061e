"""Core data models for the context engine.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, computed_field
from ulid import ULID


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def utf8_size(text: str) -> int:
    """Byte length of text when UTF-8 encoded."""
    return len(text.encode("utf-8"))


class Board(BaseModel):
    """A user-owned canvas containing blocks and their connections."""

    id: str = Field(default_factory=generate_id)
    user_id: str
    title: str = "Untitled board"
    team_id: str | None = None  # team-scoped boards defer to a team predicate
    created_at: datetime = Field(default_factory=utc_now)


class Block(BaseModel):
    """A single AI chat unit on a board."""

    id: str = Field(default_factory=generate_id)
    board_id: str
    title: str = "Untitled block"
    model_id: str = ""
    system_prompt: str = ""
    position_x: float = 0.0
    position_y: float = 0.0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


MessageRole = Literal["user", "assistant", "system"]


class MessageMetadata(BaseModel):
    """Optional accounting attached to a message by the LLM collaborator."""

    tokens: int | None = None
    cost: float | None = None
    latency_ms: int | None = None
    model_id: str | None = None


class Message(BaseModel):
    """One chat turn inside a block."""

    id: str = Field(default_factory=generate_id)
    block_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utc_now)
    metadata: MessageMetadata | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def size_bytes(self) -> int:
        """UTF-8 length of content; follows content edits automatically."""
        return utf8_size(self.content)


ContextType = Literal["full", "summary"]


class Connection(BaseModel):
    """Directed context-sharing edge from one block to another."""

    id: str = Field(default_factory=generate_id)
    from_block: str
    to_block: str
    context_type: ContextType = "full"
    transform_template: str | None = None  # "{{output}}" is substituted
    enabled: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    def to_summary(self) -> dict:
        """Return a compact summary of this connection."""
        return {
            "id": self.id,
            "from_block": self.from_block,
            "to_block": self.to_block,
            "context_type": self.context_type,
            "enabled": self.enabled,
            "templated": bool(self.transform_template),
        }


MemoryItemType = Literal[
    "fact",        # things known to be true
    "decision",    # choices already made
    "constraint",  # rules the model must respect
    "note",        # everything else
]

MemoryScope = Literal[
    "board",  # visible to every block on the board
    "block",  # visible to its source block only
    "chat",   # visible to its source block only, conversational framing
]


class MemoryItem(BaseModel):
    """A durable, typed, scoped piece of knowledge attached to a board."""

    id: str = Field(default_factory=generate_id)
    board_id: str
    user_id: str
    type: MemoryItemType = "note"
    content: str
    scope: MemoryScope = "board"
    source_block_id: str | None = None    # provenance, not ownership
    source_message_id: str | None = None
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ─────────────────────────────────────────────────────────────────────────────
# Derived (never persisted)
# ─────────────────────────────────────────────────────────────────────────────


class BlockContext(BaseModel):
    """Resolved, transformed output of one source block for a target block."""

    connection_id: str
    source_block_id: str
    source_block_title: str
    context_type: ContextType
    content: str
    created_at: datetime  # timestamp of the source message used


class InjectedMemoryResult(BaseModel):
    """Memory packed into a character budget and formatted for a prompt."""

    formatted_content: str = ""
    included_items: list[MemoryItem] = Field(default_factory=list)
    excluded_items: list[MemoryItem] = Field(default_factory=list)
    char_count: int = 0
    was_truncated: bool = False


class ComposedContext(BaseModel):
    """Final prompt context for a block, with provenance."""

    block_id: str
    board_id: str
    content: str
    memory: InjectedMemoryResult
    block_contexts: list[BlockContext] = Field(default_factory=list)
    composed_at: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def contributing_connection_ids(self) -> list[str]:
        return [ctx.connection_id for ctx in self.block_contexts]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def memory_truncated(self) -> bool:
        return self.memory.was_truncated


class ConnectionStats(BaseModel):
    """Connection summary for a block as shown next to its card."""

    incoming_count: int
    outgoing_count: int
    has_context: bool
    context_sources: list[str]
    total_context_bytes: int


EventOp = Literal[
    "create_board",
    "delete_board",
    "create_block",
    "update_block",
    "delete_block",
    "add_message",
    "update_message",
    "delete_message",
    "create_connection",
    "update_connection",
    "delete_connection",
    "create_memory",
    "update_memory",
    "delete_memory",
]


class BoardEvent(BaseModel):
    """An append-only event in the event log."""

    id: str = Field(default_factory=generate_id)
    ts: datetime = Field(default_factory=utc_now)
    op: EventOp
    actor_id: str
    board_id: str | None = None
    data: dict  # operation-specific payload
