from __future__ import annotations

from typing import Any

from .base import StreamProvider
from .types import (
    ContentBlock,
    ContextMode,
    ErrorBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)


class ClaudeProvider(StreamProvider):
    """Claude CLI in ``stream-json`` mode. Keeps a session id between turns."""

    name = "claude"
    display_name = "Claude (Anthropic)"
    executable = "claude"
    models = (
        "claude-sonnet-4-5",
        "claude-opus-4-1",
        "claude-haiku-4-5",
    )
    default_model = "claude-sonnet-4-5"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.context_mode: ContextMode = "continue"
        self.session_id: str | None = None
        self._tool_names: dict[str, str] = {}

    def get_session_id(self) -> str | None:
        return self.session_id

    def set_session_id(self, session_id: str | None) -> None:
        self.session_id = session_id

    def set_context_mode(self, mode: ContextMode) -> None:
        self.context_mode = mode

    def clear_context(self) -> None:
        self.session_id = None

    def build_argv(self, prompt: str) -> list[str]:
        argv = [
            "claude",
            "--dangerously-skip-permissions",
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--model",
            self.model(),
        ]
        # "continue" follows this provider's own last session rather than
        # the newest session in cwd, which may belong to another user.
        if self.context_mode != "none" and self.session_id:
            argv += ["--resume", self.session_id]
        argv.append(prompt)
        return argv

    def parse_event(self, event: dict[str, Any]) -> list[ContentBlock]:
        session_id = event.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.session_id = session_id

        etype = event.get("type")
        if etype == "assistant":
            return self._assistant_blocks(event.get("message") or {})
        if etype == "user":
            return self._tool_results(event.get("message") or {})
        if etype == "result" and event.get("is_error"):
            detail = event.get("result") or event.get("subtype") or "unknown error"
            return [ErrorBlock(str(detail))]
        return []

    def _assistant_blocks(self, message: dict[str, Any]) -> list[ContentBlock]:
        out: list[ContentBlock] = []
        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            btype = block.get("type")
            if btype == "text":
                text = str(block.get("text") or "")
                if text:
                    out.append(TextBlock(text))
            elif btype == "tool_use":
                name = str(block.get("name") or "unknown")
                if block.get("id"):
                    self._tool_names[str(block["id"])] = name
                tool_input = block.get("input")
                out.append(
                    ToolUseBlock(
                        tool_name=name,
                        tool_input=tool_input if isinstance(tool_input, dict) else {},
                    )
                )
        return out

    def _tool_results(self, message: dict[str, Any]) -> list[ContentBlock]:
        out: list[ContentBlock] = []
        content = message.get("content")
        if not isinstance(content, list):
            return out
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            tool_id = str(block.get("tool_use_id") or "")
            out.append(
                ToolResultBlock(
                    tool_name=self._tool_names.pop(tool_id, tool_id or "unknown"),
                    result=block.get("content"),
                    is_error=bool(block.get("is_error")),
                )
            )
        return out
