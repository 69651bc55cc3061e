"""Settings loader and logging setup.

Reads settings from multiblock.yaml in the data directory, falling back to
defaults for anything not set:

```
max_memory_chars: 8000
summary_chars: 200
log_level: INFO
log_to_file: true
```
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_MAX_MEMORY_CHARS,
    LOG_FILENAME,
    SETTINGS_FILENAME,
    SUMMARY_MAX_CHARS,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
    "max_memory_chars": DEFAULT_MAX_MEMORY_CHARS,
    "summary_chars": SUMMARY_MAX_CHARS,
    "log_level": "INFO",
    "log_to_file": True,
}


def get_data_dir() -> Path:
    """Data directory from MULTIBLOCK_PATH, else ./.multiblock."""
    if env_path := os.environ.get("MULTIBLOCK_PATH"):
        return Path(env_path)
    return Path.cwd() / DEFAULT_DATA_DIR


def load_settings(data_dir: str | Path) -> dict[str, Any]:
    """Load settings from <data_dir>/multiblock.yaml merged over defaults.

    Unknown keys are kept; a malformed file raises yaml.YAMLError.
    """
    settings_path = Path(data_dir) / SETTINGS_FILENAME

    if not settings_path.exists():
        return DEFAULT_SETTINGS.copy()

    user_settings = yaml.safe_load(settings_path.read_text()) or {}
    if not isinstance(user_settings, dict):
        raise ValueError(f"{settings_path} must contain a mapping, got {type(user_settings).__name__}")

    return {**DEFAULT_SETTINGS, **user_settings}


def save_settings(data_dir: str | Path, settings: dict[str, Any]) -> Path:
    """Write settings back as YAML. Returns the file path."""
    settings_path = Path(data_dir) / SETTINGS_FILENAME
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(yaml.safe_dump(settings, sort_keys=True))
    return settings_path


def configure_logging(data_dir: Path | None, level: str = "INFO", to_file: bool = True) -> None:
    """Log to stderr, and to <data_dir>/multiblock.log when requested."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if to_file and data_dir is not None:
        data_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(data_dir / LOG_FILENAME))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )
