from __future__ import annotations

from .registry import (
    create_provider,
    first_available_provider,
    list_providers,
    register_provider,
)
from .types import (
    CONTEXT_MODES,
    AgentProvider,
    ContentBlock,
    ContextMode,
    ErrorBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    supports_sessions,
)


_LOADED = False


def load_builtin_providers() -> None:
    global _LOADED
    if _LOADED:
        return
    from .claude import ClaudeProvider
    from .codex import CodexProvider

    register_provider("claude", ClaudeProvider)
    register_provider("codex", CodexProvider)
    _LOADED = True


load_builtin_providers()

__all__ = [
    "CONTEXT_MODES",
    "AgentProvider",
    "ContentBlock",
    "ContextMode",
    "ErrorBlock",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "create_provider",
    "first_available_provider",
    "list_providers",
    "load_builtin_providers",
    "register_provider",
    "supports_sessions",
]
