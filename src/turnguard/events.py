from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass(frozen=True)
class TurnguardEvent:
    type: str
    timestamp: str
    user_id: str
    turn_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[TurnguardEvent], None]
