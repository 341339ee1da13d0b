"""Crash-safe turn journal.

A pending-turn marker is written before a prompt reaches the provider and
removed on every exit path. A marker found at process start means the
previous process died mid-turn; ``recover_crash`` turns it into a CrashRecord
together with a snapshot of the durable error log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .stores.storage import Storage
from .util import utc_now_iso

LOGGER = logging.getLogger(__name__)

DEFAULT_MARKER_KEY = "default"


@dataclass(frozen=True)
class PendingTurnMarker:
    prompt: str
    written_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"prompt": self.prompt, "written_at": self.written_at}

    @classmethod
    def from_dict(cls, raw: Any) -> "PendingTurnMarker":
        if isinstance(raw, str):
            return cls(prompt=raw, written_at="")
        if not isinstance(raw, dict):
            raise ValueError(f"malformed pending-turn marker: {raw!r}")
        return cls(
            prompt=str(raw.get("prompt") or ""),
            written_at=str(raw.get("written_at") or ""),
        )


@dataclass(frozen=True)
class CrashRecord:
    timestamp: str
    pending_prompt: str
    error_log: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "pending_prompt": self.pending_prompt,
            "error_log": self.error_log,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CrashRecord":
        return cls(
            timestamp=str(raw.get("timestamp") or ""),
            pending_prompt=str(raw.get("pending_prompt") or ""),
            error_log=str(raw.get("error_log") or ""),
        )


class CrashLog:
    """Append-only list of crash records persisted as ``{"crashes": [...]}``."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def records(self) -> list[CrashRecord]:
        try:
            raw = self.storage.load()
        except Exception:
            LOGGER.exception("failed to load crash log")
            return []
        if not isinstance(raw, dict):
            return []
        rows = raw.get("crashes")
        if not isinstance(rows, list):
            return []
        return [CrashRecord.from_dict(row) for row in rows if isinstance(row, dict)]

    def append(self, record: CrashRecord) -> int:
        records = self.records()
        records.append(record)
        self.storage.save({"crashes": [r.to_dict() for r in records]})
        return len(records)

    def clear(self) -> None:
        self.storage.clear()

    def __len__(self) -> int:
        return len(self.records())


class ErrorLog:
    """Durable text log of errors since the last clean boot."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def append(self, message: str) -> None:
        entry = f"[{utc_now_iso()}] {message}\n"
        try:
            current = self.storage.load() or ""
            self.storage.save(current + entry)
        except Exception:
            LOGGER.exception("failed to write error log")

    def read(self) -> str:
        try:
            return self.storage.load() or ""
        except Exception:
            LOGGER.exception("failed to read error log")
            return ""

    def clear(self) -> None:
        try:
            self.storage.clear()
        except OSError:
            LOGGER.exception("failed to clear error log")


class TurnJournal:
    """Pending-turn markers for every in-flight turn, kept in one document.

    Turns for different users overlap, so the marker file holds
    ``{"turns": {key: {prompt, written_at}}}`` and a turn only removes its
    own entry. The file is deleted once no turn is pending.
    """

    def __init__(
        self,
        marker_storage: Storage,
        crash_log: CrashLog,
        error_log: ErrorLog,
    ) -> None:
        self.marker_storage = marker_storage
        self.crash_log = crash_log
        self.error_log = error_log

    def _load_markers(self) -> dict[str, PendingTurnMarker]:
        try:
            raw = self.marker_storage.load()
        except Exception:
            LOGGER.exception("failed to read pending-turn marker")
            return {}
        if raw is None:
            return {}
        if isinstance(raw, dict) and isinstance(raw.get("turns"), dict):
            markers: dict[str, PendingTurnMarker] = {}
            for key, entry in raw["turns"].items():
                try:
                    markers[str(key)] = PendingTurnMarker.from_dict(entry)
                except ValueError:
                    markers[str(key)] = PendingTurnMarker(prompt="", written_at="")
            return markers
        # single-marker document
        try:
            return {DEFAULT_MARKER_KEY: PendingTurnMarker.from_dict(raw)}
        except ValueError:
            LOGGER.warning("ignoring malformed pending-turn marker")
            return {DEFAULT_MARKER_KEY: PendingTurnMarker(prompt="", written_at="")}

    def begin_turn(self, prompt: str, *, key: str = DEFAULT_MARKER_KEY) -> None:
        markers = self._load_markers()
        markers[key] = PendingTurnMarker(prompt=prompt, written_at=utc_now_iso())
        try:
            self.marker_storage.save({"turns": {k: m.to_dict() for k, m in markers.items()}})
        except Exception:
            # An unmarked turn that crashes looks like a clean exit.
            LOGGER.exception("failed to persist pending-turn marker")

    def end_turn(self, key: str | None = None) -> None:
        """Remove the marker for ``key``, or every marker when ``key`` is None."""
        try:
            if key is not None:
                markers = self._load_markers()
                markers.pop(key, None)
                if markers:
                    self.marker_storage.save(
                        {"turns": {k: m.to_dict() for k, m in markers.items()}}
                    )
                    return
            self.marker_storage.clear()
        except OSError:
            LOGGER.exception("failed to clear pending-turn marker")

    def pending_turns(self) -> list[PendingTurnMarker]:
        return sorted(self._load_markers().values(), key=lambda m: m.written_at)

    def pending_turn(self) -> PendingTurnMarker | None:
        pending = self.pending_turns()
        return pending[0] if pending else None

    def is_dirty_boot(self) -> bool:
        return bool(self._load_markers())

    def log_error(self, message: str) -> None:
        self.error_log.append(message)

    def recover_crash(self) -> CrashRecord | None:
        pending = self.pending_turns()
        if not pending:
            return None
        record = CrashRecord(
            timestamp=utc_now_iso(),
            pending_prompt="\n".join(m.prompt for m in pending),
            error_log=self.error_log.read(),
        )
        count = self.crash_log.append(record)
        self.error_log.clear()
        self.end_turn()
        LOGGER.warning(
            "recorded crash #%d with %d pending turn(s): %.80r",
            count,
            len(pending),
            record.pending_prompt,
        )
        return record
