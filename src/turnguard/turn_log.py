"""Per-turn action log with a bounded, persisted history of finished turns."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal

from .stores.storage import Storage
from .util import new_turn_id, utc_now_iso

LOGGER = logging.getLogger(__name__)

DEFAULT_TURN_LOG_LIMIT = 100

ActionType = Literal["text_response", "tool_call", "tool_result", "error"]


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return json.loads(json.dumps(value, default=str))
    return value


@dataclass(frozen=True)
class TurnAction:
    type: ActionType
    content: str
    timestamp: str = field(default_factory=utc_now_iso)
    tool_name: str | None = None
    tool_args: dict[str, Any] | None = None
    tool_result: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "timestamp": self.timestamp,
            "content": self.content,
        }
        if self.tool_name is not None:
            out["tool_name"] = self.tool_name
        if self.tool_args is not None:
            out["tool_args"] = _jsonable(self.tool_args)
        if self.tool_result is not None:
            out["tool_result"] = _jsonable(self.tool_result)
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "TurnAction":
        args = raw.get("tool_args")
        return cls(
            type=raw.get("type", "text_response"),
            content=str(raw.get("content") or ""),
            timestamp=str(raw.get("timestamp") or ""),
            tool_name=raw.get("tool_name"),
            tool_args=args if isinstance(args, dict) else None,
            tool_result=raw.get("tool_result"),
        )


@dataclass(frozen=True)
class TurnRecord:
    turn_id: str
    timestamp: str
    user_prompt: str
    params: dict[str, Any]
    actions: tuple[TurnAction, ...] = ()
    duration_ms: int = 0
    completed: bool = False
    abort_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "turn_id": self.turn_id,
            "timestamp": self.timestamp,
            "user_prompt": self.user_prompt,
            "actions": [a.to_dict() for a in self.actions],
            "params": _jsonable(self.params),
            "duration_ms": self.duration_ms,
            "completed": self.completed,
        }
        if self.abort_reason:
            out["abort_reason"] = self.abort_reason
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "TurnRecord":
        actions = raw.get("actions") or []
        params = raw.get("params")
        return cls(
            turn_id=str(raw.get("turn_id") or ""),
            timestamp=str(raw.get("timestamp") or ""),
            user_prompt=str(raw.get("user_prompt") or ""),
            params=params if isinstance(params, dict) else {},
            actions=tuple(
                TurnAction.from_dict(a) for a in actions if isinstance(a, dict)
            ),
            duration_ms=int(raw.get("duration_ms") or 0),
            completed=bool(raw.get("completed")),
            abort_reason=raw.get("abort_reason"),
        )


class TurnLogStore:
    """Ring buffer of finalized turns, oldest first."""

    def __init__(self, storage: Storage, *, limit: int = DEFAULT_TURN_LOG_LIMIT) -> None:
        self.storage = storage
        self.limit = max(1, int(limit))

    def turns(self) -> list[TurnRecord]:
        try:
            raw = self.storage.load()
        except Exception:
            LOGGER.exception("failed to read logged turns")
            return []
        if not isinstance(raw, list):
            return []
        return [TurnRecord.from_dict(row) for row in raw if isinstance(row, dict)]

    def append(self, record: TurnRecord) -> None:
        turns = self.turns()
        turns.append(record)
        turns = turns[-self.limit :]
        try:
            self.storage.save([t.to_dict() for t in turns])
        except Exception:
            LOGGER.exception("failed to save turn %s", record.turn_id)


class TurnActionLog:
    """Records what happens inside the currently open turn.

    At most one turn is open at a time; the supervisor gives each user its own
    log so concurrent users never share an open turn.
    """

    def __init__(
        self,
        store: TurnLogStore,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self._clock = clock
        self._open: TurnRecord | None = None
        self._actions: list[TurnAction] = []
        self._started: float = 0.0

    def start_turn(self, prompt: str, params: dict[str, Any]) -> str:
        if self._open is not None:
            LOGGER.warning("discarding unfinished turn %s", self._open.turn_id)
        self._open = TurnRecord(
            turn_id=new_turn_id(),
            timestamp=utc_now_iso(),
            user_prompt=prompt,
            params=dict(params),
        )
        self._actions = []
        self._started = self._clock()
        return self._open.turn_id

    def log_action(self, action: TurnAction) -> None:
        if self._open is None:
            LOGGER.warning("no open turn; dropping %s action", action.type)
            return
        self._actions.append(action)

    def log_text(self, text: str) -> None:
        self.log_action(TurnAction(type="text_response", content=text))

    def log_tool_call(self, name: str, args: dict[str, Any] | None = None) -> None:
        self.log_action(
            TurnAction(
                type="tool_call",
                content=f"Calling tool: {name}",
                tool_name=name,
                tool_args=dict(args or {}),
            )
        )

    def log_tool_result(self, name: str, result: Any) -> None:
        self.log_action(
            TurnAction(
                type="tool_result",
                content=f"Tool result: {name}",
                tool_name=name,
                tool_result=result,
            )
        )

    def log_error(self, message: str) -> None:
        self.log_action(TurnAction(type="error", content=message))

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def current_turn(self) -> TurnRecord | None:
        if self._open is None:
            return None
        return replace(
            self._open,
            actions=tuple(self._actions),
            duration_ms=self._elapsed_ms(),
        )

    def end_turn(
        self, completed: bool = True, abort_reason: str | None = None
    ) -> TurnRecord | None:
        if self._open is None:
            return None
        record = replace(
            self._open,
            actions=tuple(self._actions),
            duration_ms=self._elapsed_ms(),
            completed=completed,
            abort_reason=abort_reason,
        )
        self._open = None
        self._actions = []
        self.store.append(record)
        return record

    def logged_turns(self) -> list[TurnRecord]:
        return self.store.turns()
