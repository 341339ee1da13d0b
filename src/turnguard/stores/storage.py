"""Durable document storage behind a small load/save/clear interface.

Every piece of supervisor state (pending-turn marker, crash list, error log,
turn ring buffer, parameter defaults, sessions) lives in one document. File
backends write atomically through a temp file and ``os.replace``; the memory
backend is used by tests and by callers that do not want durability.
"""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol


class Storage(Protocol):
    def load(self) -> Any | None:
        ...

    def save(self, value: Any) -> None:
        ...

    def clear(self) -> None:
        ...


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


@dataclass
class JsonFileStorage:
    path: Path

    def load(self) -> Any | None:
        if not self.path.exists():
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))

    def save(self, value: Any) -> None:
        _atomic_write(self.path, json.dumps(value, indent=2, ensure_ascii=False))

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass
class TextFileStorage:
    path: Path

    def load(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def save(self, value: str) -> None:
        _atomic_write(self.path, value)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass
class MemoryStorage:
    value: Any | None = None
    saves: int = field(default=0, init=False)

    def load(self) -> Any | None:
        return copy.deepcopy(self.value)

    def save(self, value: Any) -> None:
        self.value = copy.deepcopy(value)
        self.saves += 1

    def clear(self) -> None:
        self.value = None


@dataclass(frozen=True)
class StateFiles:
    """File-backed storages for one state directory."""

    state_dir: Path

    def pending_turn(self) -> JsonFileStorage:
        return JsonFileStorage(self.state_dir / "pending_turn.json")

    def crashes(self) -> JsonFileStorage:
        return JsonFileStorage(self.state_dir / "crashes.json")

    def error_log(self) -> TextFileStorage:
        return TextFileStorage(self.state_dir / "logs" / "error.log")

    def logged_turns(self) -> JsonFileStorage:
        return JsonFileStorage(self.state_dir / "logged_turns.json")

    def default_params(self) -> JsonFileStorage:
        return JsonFileStorage(self.state_dir / "default_params.json")

    def sessions(self) -> JsonFileStorage:
        return JsonFileStorage(self.state_dir / "sessions.json")
