from __future__ import annotations

from .state import resolve_state_dir
from .storage import (
    JsonFileStorage,
    MemoryStorage,
    StateFiles,
    Storage,
    TextFileStorage,
)

__all__ = [
    "JsonFileStorage",
    "MemoryStorage",
    "StateFiles",
    "Storage",
    "TextFileStorage",
    "resolve_state_dir",
]
