"""Stuck-turn detection.

The watchdog arms a single-shot deadline for the open turn. When it fires, a
cheap local heuristic classifies the turn; an optional analyst (usually
another agent call) may overrule it. A turn judged healthy is rechecked after
another full timeout; a stuck turn triggers ``on_stuck`` exactly once.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from .params import ParameterStore
from .turn_log import TurnActionLog, TurnAction, TurnRecord
from .util import truncate_text

LOGGER = logging.getLogger(__name__)

# Tunable heuristic thresholds.
REPETITION_WINDOW = 6
REPETITION_MIN_TOOL_CALLS = 4
ERROR_WINDOW = 5
ERROR_MIN_COUNT = 3

SUMMARY_MAX_ACTIONS = 20
SUMMARY_PROMPT_MAX = 200
SUMMARY_CONTENT_MAX = 100

DEFAULT_ANALYST_TIMEOUT = 60.0

# Deadlines fire slightly after the timeout so the elapsed time exceeds it.
DEADLINE_SLACK = 0.01

AnalysisSource = Literal["heuristic", "escalated"]
WatchState = Literal["idle", "watching", "rechecking", "stuck"]


@dataclass(frozen=True)
class WatchdogAnalysis:
    is_stuck: bool
    recommendation: str
    reason: str | None = None
    source: AnalysisSource = "heuristic"


Analyst = Callable[[str], Awaitable[WatchdogAnalysis]]
StuckCallback = Callable[[WatchdogAnalysis], Any]


def _has_repetitive_pattern(actions: tuple[TurnAction, ...]) -> bool:
    if len(actions) < REPETITION_WINDOW:
        return False
    recent = actions[-REPETITION_WINDOW:]
    tool_names = [a.tool_name for a in recent if a.type == "tool_call"]
    if len(tool_names) < REPETITION_MIN_TOOL_CALLS:
        return False
    if len(set(tool_names)) == 1:
        return True
    a, b, c, d = tool_names[-4:]
    return a == c and b == d


def _has_no_progress(actions: tuple[TurnAction, ...]) -> bool:
    return not actions


def _has_repeated_errors(actions: tuple[TurnAction, ...]) -> bool:
    recent = actions[-ERROR_WINDOW:]
    return sum(1 for a in recent if a.type == "error") >= ERROR_MIN_COUNT


def analyze_with_heuristics(turn: TurnRecord, timeout: float) -> WatchdogAnalysis:
    """Classify a turn without any external call.

    ``timeout`` is in seconds. Nothing is ever stuck before it elapses.
    """
    if turn.duration_ms <= timeout * 1000:
        return WatchdogAnalysis(is_stuck=False, recommendation="continue monitoring")

    actions = turn.actions
    abort = "abort turn and notify user"
    if _has_repetitive_pattern(actions):
        return WatchdogAnalysis(
            is_stuck=True,
            reason="repetitive action pattern (possible infinite loop)",
            recommendation=abort,
        )
    if _has_no_progress(actions):
        return WatchdogAnalysis(
            is_stuck=True,
            reason="no progress: no actions recorded within timeout",
            recommendation=abort,
        )
    if _has_repeated_errors(actions):
        return WatchdogAnalysis(
            is_stuck=True,
            reason="repeated errors in recent actions",
            recommendation=abort,
        )
    return WatchdogAnalysis(
        is_stuck=True,
        reason=f"timeout exceeded ({timeout:g}s)",
        recommendation=abort,
    )


def format_turn_summary(turn: TurnRecord, timeout: float) -> str:
    actions = turn.actions[-SUMMARY_MAX_ACTIONS:]
    lines = [
        "## Turn analysis",
        "",
        f"**Duration:** {round(turn.duration_ms / 1000)}s",
        f"**Timeout:** {timeout:g}s",
        f"**User prompt:** {truncate_text(turn.user_prompt, SUMMARY_PROMPT_MAX)}",
        "",
        f"**Last actions ({len(actions)}):**",
    ]
    for idx, action in enumerate(actions, start=1):
        line = f"{idx}. [{action.type}]"
        if action.tool_name:
            line += f" {action.tool_name}"
        if action.content:
            line += f" - {truncate_text(action.content, SUMMARY_CONTENT_MAX, suffix='')}"
        lines.append(line)
    return "\n".join(lines)


class Watchdog:
    def __init__(
        self,
        turn_log: TurnActionLog,
        params: ParameterStore,
        *,
        analyst: Analyst | None = None,
        analyst_timeout: float | None = DEFAULT_ANALYST_TIMEOUT,
    ) -> None:
        self.turn_log = turn_log
        self.params = params
        self.analyst = analyst
        self.analyst_timeout = analyst_timeout
        self.state: WatchState = "idle"
        self._on_stuck: StuckCallback | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._check_task: asyncio.Task | None = None

    def start_watching(self, on_stuck: StuckCallback) -> None:
        self.stop_watching()
        self._on_stuck = on_stuck
        self._schedule()

    def stop_watching(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task = self._check_task
        self._check_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._on_stuck = None
        self.state = "idle"

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self.params.get_timeout() + DEADLINE_SLACK, self._on_deadline
        )
        self.state = "watching"

    def _on_deadline(self) -> None:
        self._timer = None
        if self._on_stuck is None:
            return
        self._check_task = asyncio.get_running_loop().create_task(self._check())

    async def analyze(self, turn: TurnRecord) -> WatchdogAnalysis:
        timeout = self.params.get_timeout()
        heuristic = analyze_with_heuristics(turn, timeout)
        if self.analyst is None:
            return heuristic
        summary = format_turn_summary(turn, timeout)
        try:
            verdict = await asyncio.wait_for(
                self.analyst(summary), timeout=self.analyst_timeout
            )
        except asyncio.TimeoutError:
            LOGGER.warning("analyst timed out; using heuristic verdict")
            return heuristic
        except Exception:
            LOGGER.exception("analyst failed; using heuristic verdict")
            return heuristic
        return WatchdogAnalysis(
            is_stuck=verdict.is_stuck,
            reason=verdict.reason,
            recommendation=verdict.recommendation,
            source="escalated",
        )

    async def _check(self) -> None:
        turn = self.turn_log.current_turn()
        if turn is None:
            self.state = "idle"
            return
        self.state = "rechecking"
        analysis = await self.analyze(turn)

        on_stuck = self._on_stuck
        if on_stuck is None:
            # stop_watching ran while the analysis was in flight
            return
        if analysis.is_stuck:
            LOGGER.warning("turn %s judged stuck: %s", turn.turn_id, analysis.reason)
            self._on_stuck = None
            self._check_task = None
            self.state = "stuck"
            result = on_stuck(analysis)
            if inspect.isawaitable(result):
                await result
            self.state = "idle"
            return
        if self.turn_log.current_turn() is None:
            self.state = "idle"
            return
        LOGGER.debug("turn %s still healthy; rechecking later", turn.turn_id)
        self._schedule()
