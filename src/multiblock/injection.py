"""Memory filtering, prioritization and packing for prompt injection.

Scope rules decide which items a block may see, priorities decide which
items survive the character budget, and the formatter renders the
survivors as a markdown section.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field

from .constants import (
    DEFAULT_MAX_MEMORY_CHARS,
    KEYWORD_LIMIT,
    KEYWORD_MIN_LENGTH,
    MEMORY_HEADER,
    MEMORY_HEADER_OVERHEAD,
    MEMORY_ITEM_OVERHEAD,
    SCOPE_PRIORITY,
    TYPE_LABELS,
    TYPE_PRIORITY,
    TYPE_SECTION_ORDER,
)
from .models import InjectedMemoryResult, MemoryItem

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class MemoryFilterOptions:
    """Selection and budget knobs for memory injection.

    Empty lists mean "no filter" for that category.
    """

    scopes: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    source_block_id: str | None = None
    max_chars: int = DEFAULT_MAX_MEMORY_CHARS


def filter_memory_items(
    items: list[MemoryItem],
    options: MemoryFilterOptions | None = None,
) -> list[MemoryItem]:
    """Filter memory by scope, type, source block and keywords.

    Categories combine with AND; values within a category combine with OR.
    Board-scoped items always pass the source-block filter.
    """
    options = options or MemoryFilterOptions()
    filtered = list(items)

    if options.scopes:
        filtered = [i for i in filtered if i.scope in options.scopes]

    if options.types:
        filtered = [i for i in filtered if i.type in options.types]

    if options.source_block_id:
        filtered = [
            i for i in filtered
            if i.scope == "board" or i.source_block_id == options.source_block_id
        ]

    if options.keywords:
        wanted = [k.lower() for k in options.keywords]
        filtered = [i for i in filtered if _matches_keywords(i, wanted)]

    return filtered


def _matches_keywords(item: MemoryItem, wanted: list[str]) -> bool:
    if any(k.lower() in wanted for k in item.keywords):
        return True
    content = item.content.lower()
    return any(k in content for k in wanted)


def format_memory_for_prompt(
    items: list[MemoryItem],
    include_scope: bool = False,
    header: str = MEMORY_HEADER,
) -> str:
    """Render items grouped by type: Facts, Decisions, Constraints, Notes.

    The section order is fixed and independent of packing priority.
    """
    if not items:
        return ""

    lines = [header]
    for item_type in TYPE_SECTION_ORDER:
        group = [i for i in items if i.type == item_type]
        if not group:
            continue
        lines.append(f"\n### {TYPE_LABELS[item_type]}")
        for item in group:
            scope = f" [{item.scope}]" if include_scope else ""
            lines.append(f"- {item.content}{scope}")

    return "\n".join(lines)


def _priority(item: MemoryItem) -> tuple[int, int]:
    return TYPE_PRIORITY[item.type], SCOPE_PRIORITY[item.scope]


def build_memory_context(
    items: list[MemoryItem],
    options: MemoryFilterOptions | None = None,
) -> InjectedMemoryResult:
    """Filter, prioritize and pack memory into the character budget.

    Packing is greedy in priority order (constraints, decisions, facts,
    notes; board before block before chat). Each item costs
    len(content) + MEMORY_ITEM_OVERHEAD on top of a fixed header overhead,
    and is kept iff the running total stays within max_chars. An item that
    does not fit is excluded; later items are still tried.
    """
    options = options or MemoryFilterOptions()
    ordered = sorted(filter_memory_items(items, options), key=_priority)

    included: list[MemoryItem] = []
    excluded: list[MemoryItem] = []
    used = 0

    for item in ordered:
        cost = len(item.content) + MEMORY_ITEM_OVERHEAD
        if used + cost + MEMORY_HEADER_OVERHEAD <= options.max_chars:
            included.append(item)
            used += cost
        else:
            excluded.append(item)

    formatted = format_memory_for_prompt(included, include_scope=True)

    return InjectedMemoryResult(
        formatted_content=formatted,
        included_items=included,
        excluded_items=excluded,
        char_count=len(formatted),
        was_truncated=bool(excluded),
    )


def get_memory_for_block(
    items: list[MemoryItem],
    block_id: str,
    options: MemoryFilterOptions | None = None,
) -> InjectedMemoryResult:
    """Memory visible to one block, packed for its prompt.

    Board-scoped items are visible to every block on the board. Block- and
    chat-scoped items are visible only to the block they were saved from.
    """
    visible = [
        item for item in items
        if item.scope == "board" or item.source_block_id == block_id
    ]
    return build_memory_context(visible, options)


def extract_keywords(content: str) -> list[str]:
    """Top five most frequent words longer than three characters.

    Ties keep first-occurrence order.
    """
    words = _NON_WORD.sub("", content.lower()).split()
    counts = Counter(w for w in words if len(w) >= KEYWORD_MIN_LENGTH)
    return [word for word, _ in counts.most_common(KEYWORD_LIMIT)]
