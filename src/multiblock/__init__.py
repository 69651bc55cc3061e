"""Multiblock: context composition for connected AI chat blocks."""

from .composer import ContextComposer
from .engine import MultiblockEngine
from .errors import (
    MultiblockError,
    NotFoundError,
    OwnershipError,
    SelfLoopError,
    TransientFetchError,
)
from .graph import ConnectionGraph
from .injection import (
    build_memory_context,
    extract_keywords,
    filter_memory_items,
    format_memory_for_prompt,
    get_memory_for_block,
)
from .resolver import ContextResolver
from .store import BoardStore
from .sync import BlockContextSync, ConnectionSync, Subscription

__all__ = [
    "BlockContextSync",
    "BoardStore",
    "ConnectionGraph",
    "ConnectionSync",
    "ContextComposer",
    "ContextResolver",
    "MultiblockEngine",
    "MultiblockError",
    "NotFoundError",
    "OwnershipError",
    "SelfLoopError",
    "Subscription",
    "TransientFetchError",
    "build_memory_context",
    "extract_keywords",
    "filter_memory_items",
    "format_memory_for_prompt",
    "get_memory_for_block",
]
