"""Process start-up: crash recovery, circuit breaker and wiring.

``run_boot`` must run before any turn is accepted. A leftover pending-turn
marker is converted into a crash record; a clean start clears the crash
history, so the breaker only counts consecutive crashes.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Callable, Iterable

from .analyst import provider_analyst
from .breaker import CircuitBreaker
from .config import TurnguardConfig
from .errors import CircuitOpen
from .events import EventSink
from .journal import CrashLog, CrashRecord, ErrorLog, TurnJournal
from .params import ParameterStore
from .providers.types import AgentProvider
from .sessions import SessionManager
from .stores.storage import StateFiles
from .supervisor import TurnSupervisor
from .turn_log import TurnLogStore

LOGGER = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]


@dataclass(frozen=True)
class BootReport:
    dirty: bool
    crash: CrashRecord | None
    crash_count: int
    threshold: int
    halted: bool
    notice: str | None = None

    @property
    def exit_code(self) -> int:
        return 3 if self.halted else 0

    def raise_if_halted(self) -> None:
        if self.halted:
            raise CircuitOpen(self.crash_count, self.threshold)


@dataclass
class Runtime:
    config: TurnguardConfig
    journal: TurnJournal
    breaker: CircuitBreaker
    params: ParameterStore
    turn_store: TurnLogStore
    sessions: SessionManager


def build_runtime(config: TurnguardConfig) -> Runtime:
    files = StateFiles(config.state_dir)
    journal = TurnJournal(
        files.pending_turn(),
        CrashLog(files.crashes()),
        ErrorLog(files.error_log()),
    )
    return Runtime(
        config=config,
        journal=journal,
        breaker=CircuitBreaker(journal, threshold=config.max_crashes),
        params=ParameterStore(files.default_params()),
        turn_store=TurnLogStore(files.logged_turns(), limit=config.turn_log_limit),
        sessions=SessionManager(files.sessions(), history_limit=config.history_limit),
    )


def build_supervisor(
    runtime: Runtime,
    *,
    provider_factory: Callable[[], AgentProvider] | None = None,
    event_sink: EventSink | None = None,
) -> TurnSupervisor:
    config = runtime.config
    return TurnSupervisor(
        journal=runtime.journal,
        params=runtime.params,
        turn_store=runtime.turn_store,
        sessions=runtime.sessions,
        provider_name=config.provider,
        cwd=config.cwd,
        provider_factory=provider_factory,
        analyst_factory=provider_analyst if config.analyst_enabled else None,
        analyst_timeout=config.analyst_timeout,
        event_sink=event_sink,
    )


def _notify_all(notify: Notifier | None, user_ids: Iterable[str], text: str) -> None:
    if notify is None:
        return
    for user_id in user_ids:
        try:
            notify(user_id, text)
        except Exception:
            LOGGER.warning("failed to notify %s", user_id, exc_info=True)


def run_boot(
    journal: TurnJournal,
    breaker: CircuitBreaker,
    *,
    notify: Notifier | None = None,
    user_ids: Iterable[str] = (),
) -> BootReport:
    dirty = journal.is_dirty_boot()
    record: CrashRecord | None = None
    if dirty:
        record = journal.recover_crash()
    else:
        breaker.on_clean_boot()

    count = breaker.crash_count()
    halted = breaker.should_halt()
    notice: str | None = None
    if halted:
        notice = breaker.format_halt_notice()
        LOGGER.error("circuit breaker open: %d crashes (threshold %d)", count, breaker.threshold)
    elif record is not None:
        notice = breaker.format_crash_notice(record, crash_count=count)

    if notice is not None:
        _notify_all(notify, tuple(user_ids), notice)

    return BootReport(
        dirty=dirty,
        crash=record,
        crash_count=count,
        threshold=breaker.threshold,
        halted=halted,
        notice=notice,
    )


def install_shutdown_handlers(journal: TurnJournal) -> Callable[[], None]:
    """Clear the marker and cancel the current task on SIGINT/SIGTERM.

    Must be called from inside the running loop. Returns a function that
    removes the handlers again.
    """
    loop = asyncio.get_running_loop()
    main = asyncio.current_task()

    def _shutdown(signame: str) -> None:
        LOGGER.info("received %s; shutting down", signame)
        journal.end_turn()
        if main is not None:
            main.cancel()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)

    def remove() -> None:
        for sig in installed:
            loop.remove_signal_handler(sig)

    return remove
