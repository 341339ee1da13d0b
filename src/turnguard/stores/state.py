from __future__ import annotations

import os
from pathlib import Path


def resolve_state_dir(cwd: Path | None = None, *, create: bool = True) -> Path:
    """Return the turnguard state directory, creating it if needed.

    Resolution order:
    1. TURNGUARD_STATE_DIR
    2. nearest existing .turnguard directory from cwd upward
    3. cwd/.turnguard
    """
    raw = os.environ.get("TURNGUARD_STATE_DIR", "").strip()
    if raw:
        state_dir = Path(raw).expanduser().resolve()
    else:
        start = (cwd or Path.cwd()).resolve()
        state_dir = start / ".turnguard"
        for base in (start, *start.parents):
            candidate = base / ".turnguard"
            if candidate.exists() and candidate.is_dir():
                state_dir = candidate
                break

    if create:
        state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir
