from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Literal, Protocol, Union

ContextMode = Literal["none", "continue", "resume"]
CONTEXT_MODES: tuple[ContextMode, ...] = ("none", "continue", "resume")


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_name: str
    result: Any = None
    is_error: bool = False


@dataclass(frozen=True)
class ErrorBlock:
    error: str


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ErrorBlock]


class AgentProvider(Protocol):
    """What the supervisor needs from an agent backend.

    Session-capable providers additionally implement ``get_session_id``,
    ``set_session_id``, ``set_context_mode`` and ``clear_context``; the
    supervisor checks for them with ``getattr``.
    """

    name: str
    display_name: str

    async def is_available(self) -> bool:
        ...

    async def available_models(self) -> list[str]:
        ...

    def get_params(self) -> dict[str, Any]:
        ...

    def set_params(self, params: dict[str, Any]) -> None:
        ...

    def query(self, prompt: str) -> AsyncIterator[ContentBlock]:
        ...

    def abort(self) -> None:
        ...


ProviderFactory = Callable[[Path], AgentProvider]


def supports_sessions(provider: object) -> bool:
    return all(
        callable(getattr(provider, attr, None))
        for attr in ("get_session_id", "set_session_id")
    )
