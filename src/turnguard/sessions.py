from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, TypedDict

from .providers.types import CONTEXT_MODES, ContextMode
from .stores.storage import Storage
from .util import now_ms, utc_now_iso

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 5


class Exchange(TypedDict):
    prompt: str
    response: str
    timestamp: str


@dataclass
class UserSession:
    user_id: str
    provider: str
    session_id: str | None = None
    context_mode: ContextMode = "continue"
    created_at: int = field(default_factory=now_ms)
    last_activity: int = field(default_factory=now_ms)
    history: list[Exchange] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "UserSession":
        mode = raw.get("context_mode")
        history = raw.get("history")
        return cls(
            user_id=str(raw.get("user_id") or ""),
            provider=str(raw.get("provider") or ""),
            session_id=raw.get("session_id") or None,
            context_mode=mode if mode in CONTEXT_MODES else "continue",
            created_at=int(raw.get("created_at") or now_ms()),
            last_activity=int(raw.get("last_activity") or now_ms()),
            history=list(history) if isinstance(history, list) else [],
        )


class SessionManager:
    """Per-user provider session state, persisted as one JSON document."""

    def __init__(self, storage: Storage, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.storage = storage
        self.history_limit = max(0, int(history_limit))
        self._sessions: dict[str, UserSession] = self._load()

    def _load(self) -> dict[str, UserSession]:
        try:
            raw = self.storage.load()
        except Exception:
            LOGGER.warning("failed to load sessions", exc_info=True)
            return {}
        if not isinstance(raw, dict) or not isinstance(raw.get("sessions"), dict):
            return {}
        return {
            str(user_id): UserSession.from_dict(data)
            for user_id, data in raw["sessions"].items()
            if isinstance(data, dict)
        }

    def _save(self) -> None:
        payload = {
            "sessions": {uid: asdict(s) for uid, s in self._sessions.items()},
            "updated": utc_now_iso(),
        }
        try:
            self.storage.save(payload)
        except Exception:
            LOGGER.warning("failed to save sessions", exc_info=True)

    def get_session(self, user_id: str, provider: str) -> UserSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = UserSession(user_id=user_id, provider=provider)
            self._sessions[user_id] = session
            self._save()
        return session

    def _touch(self, session: UserSession) -> None:
        session.last_activity = now_ms()
        self._save()

    def set_session_id(self, user_id: str, session_id: str | None) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.session_id = session_id
            self._touch(session)

    def set_context_mode(self, user_id: str, mode: ContextMode) -> None:
        if mode not in CONTEXT_MODES:
            raise ValueError(f"unknown context mode {mode!r}")
        session = self._sessions.get(user_id)
        if session is not None:
            session.context_mode = mode
            self._touch(session)

    def append_exchange(self, user_id: str, prompt: str, response: str) -> None:
        session = self._sessions.get(user_id)
        if session is None:
            return
        session.history.append(
            {"prompt": prompt, "response": response, "timestamp": utc_now_iso()}
        )
        if self.history_limit:
            session.history = session.history[-self.history_limit :]
        else:
            session.history = []
        self._touch(session)

    def clear_session(self, user_id: str) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.session_id = None
            session.history = []
            self._touch(session)

    def delete_session(self, user_id: str) -> None:
        if self._sessions.pop(user_id, None) is not None:
            self._save()

    def all_sessions(self) -> list[UserSession]:
        return list(self._sessions.values())
