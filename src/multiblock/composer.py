"""Compose the final prompt context for a block.

Memory (budgeted) comes first, then one labeled section per incoming block
context (not budgeted). Results are memoized per block until the live
invalidation layer, or a caller, marks them stale.
"""

import logging
import threading

from .constants import CONTEXT_SECTION_PREFIX, DEFAULT_MAX_MEMORY_CHARS
from .errors import TransientFetchError
from .injection import MemoryFilterOptions, get_memory_for_block
from .models import BlockContext, ComposedContext, InjectedMemoryResult, MemoryItem
from .repository import BlockRepository, MemoryRepository
from .resolver import ContextResolver

logger = logging.getLogger(__name__)


def merge_context(memory: InjectedMemoryResult, block_contexts: list[BlockContext]) -> str:
    """Concatenate formatted memory and labeled block contexts."""
    sections: list[str] = []
    if memory.formatted_content:
        sections.append(memory.formatted_content)
    for ctx in block_contexts:
        sections.append(f"{CONTEXT_SECTION_PREFIX} {ctx.source_block_title}\n{ctx.content}")
    return "\n\n".join(sections)


class ContextComposer:
    """Resolver + memory composer, with a per-block stale-aware cache.

    Thread-safety: the cache is guarded by a lock; composition itself runs
    outside it. An invalidation that lands during compute keeps that result
    out of the cache. Deleted blocks and boards are evicted, not marked stale.
    """

    def __init__(
        self,
        resolver: ContextResolver,
        blocks: BlockRepository,
        memory: MemoryRepository,
        max_memory_chars: int = DEFAULT_MAX_MEMORY_CHARS,
    ):
        self.resolver = resolver
        self._blocks = blocks
        self._memory = memory
        self.max_memory_chars = max_memory_chars

        self._cache: dict[str, ComposedContext] = {}  # block_id -> context
        self._stale: set[str] = set()  # only ids that are cached or being computed
        self._computing: dict[str, int] = {}  # block_id -> reads in flight
        self._lock = threading.Lock()

    def compose_context(self, target_block_id: str, board_id: str | None = None) -> ComposedContext:
        """Return the composed context for a block, recomputing if stale.

        board_id defaults to the block's own board. Never raises for
        dangling references or transient memory failures; it returns a
        smaller context instead.
        """
        with self._lock:
            cached = self._cache.get(target_block_id)
            if cached is not None and target_block_id not in self._stale:
                if board_id is None or cached.board_id == board_id:
                    return cached
            self._stale.discard(target_block_id)
            self._computing[target_block_id] = self._computing.get(target_block_id, 0) + 1

        try:
            composed = self._compute(target_block_id, board_id)
        except Exception:
            with self._lock:
                self._finish_compute(target_block_id)
            raise

        with self._lock:
            remaining = self._finish_compute(target_block_id)
            if target_block_id in self._stale:
                if target_block_id not in self._cache and not remaining:
                    self._stale.discard(target_block_id)
            else:
                self._cache[target_block_id] = composed
        return composed

    def _finish_compute(self, block_id: str) -> int:
        """Drop one in-flight read; returns how many are still running."""
        remaining = self._computing.pop(block_id) - 1
        if remaining:
            self._computing[block_id] = remaining
        return remaining

    def _compute(self, target_block_id: str, board_id: str | None) -> ComposedContext:
        if board_id is None:
            block = self._blocks.get_block(target_block_id)
            board_id = block.board_id if block is not None else ""

        block_contexts = self.resolver.resolve_incoming_context(target_block_id)
        memory = get_memory_for_block(
            self._memory_pool(board_id),
            target_block_id,
            MemoryFilterOptions(max_chars=self.max_memory_chars),
        )

        logger.debug(
            f"Composed context for {target_block_id}: {len(block_contexts)} sources, "
            f"{len(memory.included_items)} memory items (truncated={memory.was_truncated})"
        )
        return ComposedContext(
            block_id=target_block_id,
            board_id=board_id,
            content=merge_context(memory, block_contexts),
            memory=memory,
            block_contexts=block_contexts,
        )

    def _memory_pool(self, board_id: str) -> list[MemoryItem]:
        if not board_id:
            return []
        try:
            return self._memory.list_memory(board_id)
        except TransientFetchError:
            logger.error(f"Memory pool unavailable for board {board_id}", exc_info=True)
            return []

    # --- Invalidation ---

    def invalidate(self, block_id: str) -> None:
        """Mark one block's composed context stale."""
        with self._lock:
            self._mark_stale([block_id])

    def invalidate_board(self, board_id: str) -> None:
        """Mark every cached (or in-flight) context of a board stale."""
        block_ids = [b.id for b in self._blocks.list_blocks(board_id)]
        with self._lock:
            block_ids.extend(bid for bid, ctx in self._cache.items() if ctx.board_id == board_id)
            self._mark_stale(block_ids)

    def _mark_stale(self, block_ids) -> None:
        # Uncached blocks are recomputed on read anyway
        self._stale.update(
            bid for bid in block_ids if bid in self._cache or bid in self._computing
        )

    def evict(self, block_id: str) -> None:
        """Forget a block's cached context, e.g. after the block is deleted."""
        with self._lock:
            self._cache.pop(block_id, None)
            if block_id in self._computing:
                self._stale.add(block_id)
            else:
                self._stale.discard(block_id)

    def evict_board(self, board_id: str) -> None:
        """Forget every cached context that belongs to a board."""
        with self._lock:
            for bid in [bid for bid, ctx in self._cache.items() if ctx.board_id == board_id]:
                del self._cache[bid]
                self._stale.discard(bid)

    def is_stale(self, block_id: str) -> bool:
        """True when the next read will recompute (stale or never cached)."""
        with self._lock:
            return block_id in self._stale or block_id not in self._cache

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._stale.clear()
