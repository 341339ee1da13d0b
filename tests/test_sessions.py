from __future__ import annotations

from pathlib import Path

import pytest

from turnguard.sessions import SessionManager
from turnguard.stores import JsonFileStorage, MemoryStorage


def test_get_session_creates_default() -> None:
    manager = SessionManager(MemoryStorage())

    session = manager.get_session("u1", "claude")

    assert session.user_id == "u1"
    assert session.provider == "claude"
    assert session.session_id is None
    assert session.context_mode == "continue"
    assert manager.get_session("u1", "codex") is session


def test_sessions_survive_restart(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "sessions.json")
    manager = SessionManager(storage)
    manager.get_session("u1", "claude")
    manager.set_session_id("u1", "sess-1")
    manager.set_context_mode("u1", "resume")
    manager.append_exchange("u1", "hi", "hello")

    restored = SessionManager(storage).get_session("u1", "claude")

    assert restored.session_id == "sess-1"
    assert restored.context_mode == "resume"
    assert restored.history[0]["prompt"] == "hi"
    assert restored.history[0]["response"] == "hello"


def test_history_is_bounded() -> None:
    manager = SessionManager(MemoryStorage(), history_limit=2)
    manager.get_session("u1", "codex")

    for idx in range(4):
        manager.append_exchange("u1", f"q{idx}", f"a{idx}")

    history = manager.get_session("u1", "codex").history
    assert [ex["prompt"] for ex in history] == ["q2", "q3"]


def test_zero_history_limit_keeps_nothing() -> None:
    manager = SessionManager(MemoryStorage(), history_limit=0)
    manager.get_session("u1", "codex")

    manager.append_exchange("u1", "q", "a")

    assert manager.get_session("u1", "codex").history == []


def test_clear_session_keeps_mode() -> None:
    manager = SessionManager(MemoryStorage())
    manager.get_session("u1", "claude")
    manager.set_session_id("u1", "sess-1")
    manager.set_context_mode("u1", "none")
    manager.append_exchange("u1", "q", "a")

    manager.clear_session("u1")

    session = manager.get_session("u1", "claude")
    assert session.session_id is None
    assert session.history == []
    assert session.context_mode == "none"


def test_set_context_mode_rejects_unknown() -> None:
    manager = SessionManager(MemoryStorage())

    with pytest.raises(ValueError, match="unknown context mode"):
        manager.set_context_mode("u1", "forever")  # type: ignore[arg-type]


def test_updates_for_unknown_user_are_ignored() -> None:
    storage = MemoryStorage()
    manager = SessionManager(storage)

    manager.set_session_id("ghost", "x")
    manager.append_exchange("ghost", "q", "a")

    assert manager.all_sessions() == []
    assert storage.saves == 0


def test_delete_session() -> None:
    manager = SessionManager(MemoryStorage())
    manager.get_session("u1", "claude")

    manager.delete_session("u1")

    assert manager.all_sessions() == []


def test_corrupt_document_starts_empty() -> None:
    manager = SessionManager(MemoryStorage({"sessions": "broken"}))

    assert manager.all_sessions() == []
