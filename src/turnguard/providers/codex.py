from __future__ import annotations

from typing import Any

from .base import StreamProvider
from .types import ContentBlock, ErrorBlock, TextBlock, ToolResultBlock, ToolUseBlock


class CodexProvider(StreamProvider):
    """``codex exec --json``. Stateless: every query starts a fresh thread."""

    name = "codex"
    display_name = "Codex (OpenAI)"
    executable = "codex"
    models = ("gpt-5-codex", "gpt-5", "o3")
    default_model = "gpt-5-codex"

    def build_argv(self, prompt: str) -> list[str]:
        argv = [
            "codex",
            "exec",
            "--dangerously-bypass-approvals-and-sandbox",
            "--json",
            "-C",
            str(self.cwd),
            "-m",
            self.model(),
        ]
        reasoning = self.params.get("reasoning")
        if reasoning:
            argv += ["-c", f"reasoning={reasoning}"]
        argv.append(prompt)
        return argv

    def parse_event(self, event: dict[str, Any]) -> list[ContentBlock]:
        etype = str(event.get("type") or "")

        if etype == "error":
            return [ErrorBlock(str(event.get("message") or "codex error"))]

        if etype == "turn.failed":
            error = event.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            return [ErrorBlock(str(message or "codex turn failed"))]

        item = event.get("item")
        if not isinstance(item, dict):
            return []
        item_type = str(item.get("type") or "")

        if etype == "item.started" and item_type == "command_execution":
            return [
                ToolUseBlock(
                    tool_name="shell",
                    tool_input={"command": str(item.get("command") or "")},
                )
            ]

        if etype != "item.completed":
            return []
        if item_type == "agent_message":
            text = str(item.get("text") or "")
            return [TextBlock(text)] if text.strip() else []
        if item_type == "command_execution":
            exit_code = item.get("exit_code")
            return [
                ToolResultBlock(
                    tool_name="shell",
                    result=item.get("aggregated_output"),
                    is_error=isinstance(exit_code, int) and exit_code != 0,
                )
            ]
        if item_type == "file_change":
            changes = item.get("changes") or []
            return [
                ToolUseBlock(tool_name="apply_patch", tool_input={"changes": changes}),
                ToolResultBlock(tool_name="apply_patch", result=item.get("status")),
            ]
        return []
