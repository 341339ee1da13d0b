from __future__ import annotations

import logging
from dataclasses import dataclass

from .journal import CrashRecord, TurnJournal
from .util import truncate_text, utc_now_iso

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CRASHES = 3

_CRASH_PROMPT_MAX = 200
_CRASH_ERROR_LINES = 10
_CRASH_ERROR_MAX = 500
_BREAKER_RECENT = 3
_BREAKER_PROMPT_MAX = 100


@dataclass
class CircuitBreaker:
    journal: TurnJournal
    threshold: int = DEFAULT_MAX_CRASHES

    def crashes(self) -> list[CrashRecord]:
        return self.journal.crash_log.records()

    def crash_count(self) -> int:
        return len(self.crashes())

    def should_halt(self) -> bool:
        return self.crash_count() >= self.threshold

    def on_clean_boot(self) -> None:
        self.journal.crash_log.clear()
        self.journal.error_log.clear()
        self.journal.end_turn()

    def reset(self) -> None:
        """Manual intervention: forget crash history so the next boot proceeds."""
        LOGGER.info("crash history cleared (%d records)", self.crash_count())
        self.on_clean_boot()

    def format_crash_notice(self, record: CrashRecord, *, crash_count: int) -> str:
        lines = [
            "Recovered from a crash",
            "",
            f"Time: {utc_now_iso()}",
            f"Crash {crash_count} of {self.threshold} allowed",
            "",
            "Pending prompt:",
            truncate_text(record.pending_prompt, _CRASH_PROMPT_MAX),
        ]
        if record.error_log.strip():
            tail = "\n".join(record.error_log.strip().splitlines()[-_CRASH_ERROR_LINES:])
            lines += ["", "Recent errors:", tail[:_CRASH_ERROR_MAX]]
        return "\n".join(lines)

    def format_halt_notice(self) -> str:
        crashes = self.crashes()
        lines = [
            "Circuit breaker open",
            "",
            f"{len(crashes)} consecutive crashes recorded; startup halted.",
            "",
            "Recent crashes:",
        ]
        for idx, crash in enumerate(crashes[-_BREAKER_RECENT:], start=1):
            lines.append(f"{idx}. {crash.timestamp}")
            lines.append(f"   prompt: {truncate_text(crash.pending_prompt, _BREAKER_PROMPT_MAX)}")
        lines += [
            "",
            "Inspect the error logs, then run `turnguard reset` to clear crash history.",
        ]
        return "\n".join(lines)
