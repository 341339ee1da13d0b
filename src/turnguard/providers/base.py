from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator

from ..util import which
from .types import ContentBlock, ErrorBlock

LOGGER = logging.getLogger(__name__)

# stream-json lines can carry whole tool outputs
_LINE_LIMIT = 16 * 1024 * 1024


class StreamProvider:
    """Agent provider backed by a CLI that prints one JSON event per line."""

    name: str
    display_name: str
    executable: str
    models: tuple[str, ...] = ()
    default_model: str = ""

    def __init__(self, cwd: Path, *, env: dict[str, str] | None = None) -> None:
        self.cwd = cwd
        self.env = env
        self.params: dict[str, Any] = {"model": self.default_model}
        self._proc: asyncio.subprocess.Process | None = None
        self._aborted = False

    def build_argv(self, prompt: str) -> list[str]:
        raise NotImplementedError

    def parse_event(self, event: dict[str, Any]) -> list[ContentBlock]:
        raise NotImplementedError

    async def is_available(self) -> bool:
        return which(self.executable) is not None

    async def available_models(self) -> list[str]:
        return list(self.models)

    def get_params(self) -> dict[str, Any]:
        return dict(self.params)

    def set_params(self, params: dict[str, Any]) -> None:
        self.params.update(params)

    def model(self) -> str:
        return str(self.params.get("model") or self.default_model)

    def parse_line(self, line: str) -> list[ContentBlock]:
        raw = line.strip()
        if not raw:
            return []
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.debug("[%s] %s", self.name, raw)
            return []
        if not isinstance(event, dict):
            return []
        return self.parse_event(event)

    async def query(self, prompt: str) -> AsyncIterator[ContentBlock]:
        argv = self.build_argv(prompt)
        self._aborted = False
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.cwd),
                env=self.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=_LINE_LIMIT,
            )
        except OSError as exc:
            yield ErrorBlock(f"failed to start {self.executable}: {exc}")
            return

        self._proc = proc
        try:
            assert proc.stdout is not None
            async for raw in proc.stdout:
                for block in self.parse_line(raw.decode("utf-8", errors="replace")):
                    yield block
            returncode = await proc.wait()
            if returncode != 0 and not self._aborted:
                yield ErrorBlock(f"{self.executable} exited with status {returncode}")
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
            self._proc = None

    def abort(self) -> None:
        self._aborted = True
        proc = self._proc
        if proc is not None and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
