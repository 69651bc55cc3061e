"""Tunable constants shared across the context engine.

Kept in one place so tests and callers agree on budgets and overheads.
"""

# --- Memory injection ---

# ~2000 tokens, conservative proxy for an LLM context budget
DEFAULT_MAX_MEMORY_CHARS = 8000

# Header used by the memory formatter
MEMORY_HEADER = "## Memory"

# Estimated header overhead charged once before packing any item
MEMORY_HEADER_OVERHEAD = len("## Memory\n\n### Facts\n")

# Fixed per-item formatting overhead ("- ", " [board]", newline, ...)
MEMORY_ITEM_OVERHEAD = 20

# Packing priority (lower first)
TYPE_PRIORITY = {
    "constraint": 0,
    "decision": 1,
    "fact": 2,
    "note": 3,
}
SCOPE_PRIORITY = {
    "board": 0,
    "block": 1,
    "chat": 2,
}

# Display order of formatted sections, independent of packing priority
TYPE_SECTION_ORDER = ("fact", "decision", "constraint", "note")
TYPE_LABELS = {
    "fact": "Facts",
    "decision": "Decisions",
    "constraint": "Constraints",
    "note": "Notes",
}

# --- Keyword extraction ---

KEYWORD_MIN_LENGTH = 4  # words of length <= 3 are dropped
KEYWORD_LIMIT = 5

# --- Context resolution ---

SUMMARY_MAX_CHARS = 200
SUMMARY_ELLIPSIS = "..."
TEMPLATE_PLACEHOLDER = "{{output}}"
CONTEXT_SECTION_PREFIX = "## Context from"

# --- Storage ---

DB_FILENAME = "multiblock.db"
SETTINGS_FILENAME = "multiblock.yaml"
LOG_FILENAME = "multiblock.log"
DEFAULT_DATA_DIR = ".multiblock"
