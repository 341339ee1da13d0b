from __future__ import annotations

import logging
from typing import Any

from .stores.storage import Storage

LOGGER = logging.getLogger(__name__)

DEFAULT_TURN_TIMEOUT = 600.0

BUILTIN_DEFAULTS: dict[str, Any] = {
    "turn_timeout": DEFAULT_TURN_TIMEOUT,
    "temperature": 0.7,
    "max_tokens": 4096,
}

RuntimeParams = dict[str, Any]


class ParameterStore:
    """Current and saved-default runtime parameters.

    Values are not validated here; providers interpret what they understand.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self._defaults = self._load_defaults()
        self._current: RuntimeParams = dict(self._defaults)

    def _load_defaults(self) -> RuntimeParams:
        defaults = dict(BUILTIN_DEFAULTS)
        try:
            saved = self.storage.load()
        except Exception:
            LOGGER.exception("failed to load default params")
            return defaults
        if isinstance(saved, dict):
            defaults.update(saved)
        elif saved is not None:
            LOGGER.warning("ignoring malformed default params: %r", saved)
        return defaults

    def get(self) -> RuntimeParams:
        return dict(self._current)

    def defaults(self) -> RuntimeParams:
        return dict(self._defaults)

    def set(self, key: str, value: Any) -> None:
        self._current[key] = value

    def set_many(self, partial: dict[str, Any]) -> None:
        self._current.update(partial)

    def save_as_defaults(self) -> None:
        snapshot = dict(self._current)
        try:
            self.storage.save(snapshot)
        except Exception:
            LOGGER.exception("failed to save default params")
            return
        self._defaults = snapshot

    def reset_to_defaults(self) -> None:
        self._current = dict(self._defaults)

    def forget_defaults(self) -> None:
        """Drop saved defaults and fall back to the built-in values."""
        self.storage.clear()
        self._defaults = dict(BUILTIN_DEFAULTS)
        self._current = dict(self._defaults)

    def get_timeout(self) -> float:
        raw = self._current.get("turn_timeout")
        try:
            timeout = float(raw)
        except (TypeError, ValueError):
            return DEFAULT_TURN_TIMEOUT
        if timeout <= 0:
            return DEFAULT_TURN_TIMEOUT
        return timeout
