"""Turn supervisor: one in-flight turn per user, journaled and watched.

Each user that has a turn in flight owns a lane: its own provider instance,
action-log cursor and watchdog. The lane exists exactly as long as the user's
lock is held, so idle users cost nothing. The turn ring buffer, parameter
store, journal and session manager are shared.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .errors import AlreadyProcessing, ProviderError, ProviderUnavailable, TurnStuck
from .events import EventSink, TurnguardEvent
from .journal import TurnJournal
from .params import ParameterStore
from .providers import create_provider, list_providers
from .providers.types import (
    AgentProvider,
    ContentBlock,
    ContextMode,
    ErrorBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    supports_sessions,
)
from .sessions import SessionManager, UserSession
from .turn_log import TurnActionLog, TurnLogStore, TurnRecord
from .util import utc_now_iso
from .watchdog import DEFAULT_ANALYST_TIMEOUT, Analyst, Watchdog, WatchdogAnalysis

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant reached through a chat bridge. "
    "Be clear and direct, say when you cannot do something, and break large "
    "tasks into steps."
)

AnalystFactory = Callable[[AgentProvider], Analyst]


@dataclass(frozen=True)
class TurnResponse:
    text: str
    turn_id: str
    provider: str
    model: str | None
    session_id: str | None
    duration_ms: int


@dataclass
class _Lane:
    user_id: str
    provider: AgentProvider
    turn_log: TurnActionLog
    watchdog: Watchdog
    turn_id: str | None = None
    task: asyncio.Task | None = None
    stuck: WatchdogAnalysis | None = None
    cancel_reason: str | None = None
    errors: list[str] = field(default_factory=list)


class TurnSupervisor:
    def __init__(
        self,
        *,
        journal: TurnJournal,
        params: ParameterStore,
        turn_store: TurnLogStore,
        sessions: SessionManager,
        provider_name: str,
        cwd: Path,
        provider_factory: Callable[[], AgentProvider] | None = None,
        analyst_factory: AnalystFactory | None = None,
        analyst_timeout: float | None = DEFAULT_ANALYST_TIMEOUT,
        event_sink: EventSink | None = None,
    ) -> None:
        self.journal = journal
        self.params = params
        self.turn_store = turn_store
        self.sessions = sessions
        self.cwd = cwd
        self.analyst_factory = analyst_factory
        self.analyst_timeout = analyst_timeout
        self.event_sink = event_sink
        self._provider_name = provider_name
        self._provider_factory = provider_factory or self._registry_factory(provider_name)
        self._lanes: dict[str, _Lane] = {}

    # -- providers ---------------------------------------------------------

    def _registry_factory(self, name: str) -> Callable[[], AgentProvider]:
        def factory() -> AgentProvider:
            return create_provider(name, cwd=self.cwd)

        return factory

    @property
    def provider_name(self) -> str:
        return self._provider_name

    def new_provider(self) -> AgentProvider:
        return self._provider_factory()

    async def set_provider(self, name: str) -> None:
        if name not in list_providers():
            raise KeyError(f"unknown provider '{name}'")
        candidate = create_provider(name, cwd=self.cwd)
        if not await candidate.is_available():
            raise ProviderUnavailable(name)
        self._provider_name = name
        self._provider_factory = self._registry_factory(name)
        # provider-side session ids do not carry across providers
        for session in self.sessions.all_sessions():
            self.sessions.set_session_id(session.user_id, None)
        LOGGER.info("switched provider to %s", name)

    async def list_models(self) -> list[str]:
        return await self.new_provider().available_models()

    async def set_model(self, model: str) -> None:
        models = await self.list_models()
        if model not in models:
            raise ValueError(f"model not found: {model}")
        self.params.set("model", model)

    # -- parameters --------------------------------------------------------

    def get_params(self) -> dict[str, Any]:
        return {**self.new_provider().get_params(), **self.params.get()}

    def set_param(self, key: str, value: Any) -> None:
        self.params.set(key, value)

    def set_params(self, partial: dict[str, Any]) -> None:
        self.params.set_many(partial)

    def save_params_as_defaults(self) -> None:
        self.params.save_as_defaults()

    # -- sessions ----------------------------------------------------------

    def get_session(self, user_id: str) -> UserSession:
        return self.sessions.get_session(user_id, self._provider_name)

    def clear_session(self, user_id: str) -> None:
        self.sessions.clear_session(user_id)

    def set_context_mode(self, user_id: str, mode: ContextMode) -> None:
        self.get_session(user_id)
        self.sessions.set_context_mode(user_id, mode)

    # -- turn state --------------------------------------------------------

    def is_processing(self, user_id: str) -> bool:
        return user_id in self._lanes

    def current_turn(self, user_id: str) -> TurnRecord | None:
        lane = self._lanes.get(user_id)
        return lane.turn_log.current_turn() if lane else None

    def logged_turns(self) -> list[TurnRecord]:
        return self.turn_store.turns()

    def abort(self, user_id: str) -> bool:
        lane = self._lanes.get(user_id)
        if lane is None or lane.task is None or lane.task.done():
            return False
        lane.cancel_reason = "turn aborted by request"
        lane.provider.abort()
        lane.task.cancel()
        return True

    # -- processing --------------------------------------------------------

    def _emit(
        self,
        event_type: str,
        user_id: str,
        turn_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if not self.event_sink:
            return
        self.event_sink(
            TurnguardEvent(
                type=event_type,
                timestamp=utc_now_iso(),
                user_id=user_id,
                turn_id=turn_id,
                payload=dict(payload or {}),
            )
        )

    def _open_lane(self, user_id: str) -> _Lane:
        provider = self.new_provider()
        turn_log = TurnActionLog(self.turn_store)
        analyst = self.analyst_factory(self.new_provider()) if self.analyst_factory else None
        watchdog = Watchdog(
            turn_log,
            self.params,
            analyst=analyst,
            analyst_timeout=self.analyst_timeout,
        )
        lane = _Lane(user_id=user_id, provider=provider, turn_log=turn_log, watchdog=watchdog)
        self._lanes[user_id] = lane
        return lane

    async def process(self, user_id: str, prompt: str) -> TurnResponse:
        if user_id in self._lanes:
            raise AlreadyProcessing(user_id)
        lane = self._open_lane(user_id)
        self._emit("turn.processing", user_id, None, {"processing": True})
        try:
            return await self._run_turn(lane, prompt)
        finally:
            lane.watchdog.stop_watching()
            self._lanes.pop(user_id, None)
            self._emit("turn.processing", user_id, lane.turn_id, {"processing": False})

    async def _run_turn(self, lane: _Lane, prompt: str) -> TurnResponse:
        provider = lane.provider
        session = self.sessions.get_session(lane.user_id, provider.name)
        self._restore_session(provider, session)

        self.journal.begin_turn(prompt, key=lane.user_id)
        try:
            params = {**provider.get_params(), **self.params.get()}
            provider.set_params(params)
            lane.turn_id = lane.turn_log.start_turn(prompt, params)
            self._emit("turn.start", lane.user_id, lane.turn_id, {"provider": provider.name})

            dispatch = self._build_prompt(provider, session, prompt)
            lane.watchdog.start_watching(lambda analysis: self._on_stuck(lane, analysis))
            lane.task = asyncio.create_task(self._consume(lane, dispatch))
        except Exception as exc:
            lane.watchdog.stop_watching()
            reason = str(exc) or type(exc).__name__
            if lane.turn_log.current_turn() is not None:
                lane.turn_log.log_error(reason)
            self._fail_turn(lane, reason)
            raise ProviderError(reason, provider=provider.name) from exc

        try:
            text = await lane.task
        except asyncio.CancelledError:
            lane.watchdog.stop_watching()
            if lane.stuck is not None:
                raise TurnStuck(lane.stuck) from None
            reason = lane.cancel_reason or "turn cancelled"
            lane.turn_log.log_error(reason)
            self._fail_turn(lane, reason)
            if lane.cancel_reason:
                raise ProviderError(reason, provider=provider.name) from None
            raise
        except Exception as exc:
            lane.watchdog.stop_watching()
            reason = str(exc) or type(exc).__name__
            lane.turn_log.log_error(reason)
            self._fail_turn(lane, reason)
            raise ProviderError(reason, provider=provider.name) from exc

        lane.watchdog.stop_watching()
        if lane.errors and not text:
            reason = lane.errors[-1]
            self._fail_turn(lane, reason)
            raise ProviderError(reason, provider=provider.name)

        record = lane.turn_log.end_turn(True) if lane.turn_log.current_turn() else None
        self.journal.end_turn(lane.user_id)

        session_id = None
        if supports_sessions(provider):
            session_id = provider.get_session_id()
            self.sessions.set_session_id(lane.user_id, session_id)
        self.sessions.append_exchange(lane.user_id, prompt, text)

        response = TurnResponse(
            text=text,
            turn_id=lane.turn_id,
            provider=provider.name,
            model=params.get("model"),
            session_id=session_id,
            duration_ms=record.duration_ms if record else 0,
        )
        self._emit(
            "turn.complete",
            lane.user_id,
            lane.turn_id,
            {"chars": len(text), "duration_ms": response.duration_ms},
        )
        return response

    async def _consume(self, lane: _Lane, prompt: str) -> str:
        parts: list[str] = []
        async for block in lane.provider.query(prompt):
            self._log_block(lane, block)
            if isinstance(block, TextBlock):
                parts.append(block.text)
            self._emit("turn.chunk", lane.user_id, lane.turn_id, _chunk_payload(block))
        return "".join(parts)

    def _log_block(self, lane: _Lane, block: ContentBlock) -> None:
        log = lane.turn_log
        if isinstance(block, TextBlock):
            log.log_text(block.text)
        elif isinstance(block, ToolUseBlock):
            log.log_tool_call(block.tool_name, block.tool_input)
        elif isinstance(block, ToolResultBlock):
            log.log_tool_result(block.tool_name, block.result)
        elif isinstance(block, ErrorBlock):
            lane.errors.append(block.error)
            log.log_error(block.error)

    def _fail_turn(self, lane: _Lane, reason: str) -> None:
        if lane.turn_log.current_turn() is not None:
            lane.turn_log.end_turn(False, reason)
        self.journal.log_error(f"turn {lane.turn_id} failed: {reason}")
        self.journal.end_turn(lane.user_id)
        LOGGER.warning("turn %s for %s failed: %s", lane.turn_id, lane.user_id, reason)
        self._emit("turn.error", lane.user_id, lane.turn_id, {"reason": reason})

    def _on_stuck(self, lane: _Lane, analysis: WatchdogAnalysis) -> None:
        task = lane.task
        if task is None or task.done():
            return
        lane.stuck = analysis
        reason = analysis.reason or "timeout exceeded"

        lane.provider.abort()
        clear_context = getattr(lane.provider, "clear_context", None)
        if callable(clear_context):
            clear_context()
        self.sessions.set_session_id(lane.user_id, None)

        if lane.turn_log.current_turn() is not None:
            lane.turn_log.log_error(f"aborted by watchdog: {reason}")
            lane.turn_log.end_turn(False, reason)
        self.journal.log_error(f"turn {lane.turn_id} stuck: {reason}")
        self.journal.end_turn(lane.user_id)
        self._emit(
            "turn.stuck",
            lane.user_id,
            lane.turn_id,
            {
                "reason": reason,
                "recommendation": analysis.recommendation,
                "source": analysis.source,
            },
        )
        task.cancel()

    def _restore_session(self, provider: AgentProvider, session: UserSession) -> None:
        set_mode = getattr(provider, "set_context_mode", None)
        if callable(set_mode):
            set_mode(session.context_mode)
        set_session_id = getattr(provider, "set_session_id", None)
        if callable(set_session_id) and session.context_mode != "none":
            set_session_id(session.session_id)

    def _build_prompt(self, provider: AgentProvider, session: UserSession, prompt: str) -> str:
        if supports_sessions(provider) and provider.get_session_id():
            return prompt
        system = self.params.get().get("system_prompt") or DEFAULT_SYSTEM_PROMPT
        sections = [f"[System]\n{system}"]
        if session.history and session.context_mode != "none":
            exchanges = [
                f"User: {ex['prompt']}\nAssistant: {ex['response']}"
                for ex in session.history
            ]
            sections.append("[Recent conversation]\n" + "\n\n".join(exchanges))
        sections.append(f"[User message]\n{prompt}")
        return "\n\n".join(sections)


def _chunk_payload(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "content": block.text}
    if isinstance(block, ToolUseBlock):
        return {
            "type": "tool_use",
            "content": f"Calling {block.tool_name}",
            "tool_name": block.tool_name,
        }
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "content": str(block.result),
            "tool_name": block.tool_name,
        }
    return {"type": "error", "content": block.error}
