from __future__ import annotations

from pathlib import Path

import pytest

from turnguard.journal import CrashLog, ErrorLog, TurnJournal
from turnguard.stores import MemoryStorage, StateFiles


@pytest.fixture
def journal() -> TurnJournal:
    return TurnJournal(
        MemoryStorage(),
        CrashLog(MemoryStorage()),
        ErrorLog(MemoryStorage()),
    )


@pytest.fixture
def state_files(tmp_path: Path) -> StateFiles:
    return StateFiles(tmp_path / ".turnguard")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "TURNGUARD_STATE_DIR",
        "TURNGUARD_PROVIDER",
        "TURNGUARD_MAX_CRASHES",
        "TURNGUARD_ANALYST_ENABLED",
        "TURNGUARD_USER_IDS",
    ):
        monkeypatch.delenv(key, raising=False)
