from __future__ import annotations

import pytest

from turnguard.params import BUILTIN_DEFAULTS, DEFAULT_TURN_TIMEOUT, ParameterStore
from turnguard.stores import MemoryStorage


def test_builtin_defaults() -> None:
    store = ParameterStore(MemoryStorage())

    assert store.get() == BUILTIN_DEFAULTS
    assert store.get_timeout() == 600.0


def test_saved_defaults_overlay_builtins() -> None:
    store = ParameterStore(MemoryStorage({"temperature": 0.2, "model": "m"}))

    params = store.get()

    assert params["temperature"] == 0.2
    assert params["model"] == "m"
    assert params["max_tokens"] == 4096


def test_set_changes_current_only_until_saved() -> None:
    storage = MemoryStorage()
    store = ParameterStore(storage)

    store.set("temperature", 1.0)
    assert store.get()["temperature"] == 1.0
    assert storage.value is None

    store.reset_to_defaults()
    assert store.get()["temperature"] == 0.7


def test_save_as_defaults_persists_and_survives_reset() -> None:
    storage = MemoryStorage()
    store = ParameterStore(storage)
    store.set_many({"turn_timeout": 30, "model": "fast"})

    store.save_as_defaults()
    store.set("model", "slow")
    store.reset_to_defaults()

    assert store.get()["model"] == "fast"
    assert ParameterStore(storage).get_timeout() == 30.0


def test_forget_defaults_restores_builtins() -> None:
    storage = MemoryStorage({"temperature": 0.1})
    store = ParameterStore(storage)

    store.forget_defaults()

    assert store.get() == BUILTIN_DEFAULTS
    assert storage.value is None


def test_get_returns_a_copy() -> None:
    store = ParameterStore(MemoryStorage())

    store.get()["temperature"] = 5

    assert store.get()["temperature"] == 0.7


@pytest.mark.parametrize("raw", [None, "soon", -5, 0])
def test_get_timeout_falls_back_for_invalid_values(raw: object) -> None:
    store = ParameterStore(MemoryStorage())
    store.set("turn_timeout", raw)

    assert store.get_timeout() == DEFAULT_TURN_TIMEOUT


def test_get_timeout_accepts_numeric_strings() -> None:
    store = ParameterStore(MemoryStorage())
    store.set("turn_timeout", "45")

    assert store.get_timeout() == 45.0
