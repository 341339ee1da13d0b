from __future__ import annotations

import asyncio

from turnguard.params import ParameterStore
from turnguard.stores import MemoryStorage
from turnguard.turn_log import TurnAction, TurnActionLog, TurnLogStore, TurnRecord
from turnguard.watchdog import (
    Watchdog,
    WatchdogAnalysis,
    analyze_with_heuristics,
    format_turn_summary,
)


def _tool(name: str) -> TurnAction:
    return TurnAction(type="tool_call", content=f"Calling tool: {name}", tool_name=name)


def _error(message: str = "boom") -> TurnAction:
    return TurnAction(type="error", content=message)


def _text(message: str = "working") -> TurnAction:
    return TurnAction(type="text_response", content=message)


def _turn(actions: list[TurnAction], *, duration_ms: int = 700_000) -> TurnRecord:
    return TurnRecord(
        turn_id="turn-1",
        timestamp="2026-01-01T00:00:00Z",
        user_prompt="fix the build",
        params={},
        actions=tuple(actions),
        duration_ms=duration_ms,
    )


def _params(timeout: float) -> ParameterStore:
    store = ParameterStore(MemoryStorage())
    store.set("turn_timeout", timeout)
    return store


def test_nothing_is_stuck_before_timeout() -> None:
    analysis = analyze_with_heuristics(_turn([], duration_ms=600_000), 600)

    assert not analysis.is_stuck
    assert analysis.recommendation == "continue monitoring"
    assert analysis.source == "heuristic"


def test_same_tool_repeated_is_a_loop() -> None:
    actions = [_text()] + [_tool("Read")] * 5

    analysis = analyze_with_heuristics(_turn(actions), 600)

    assert analysis.is_stuck
    assert analysis.reason is not None and "repetitive" in analysis.reason


def test_alternating_tools_are_a_loop() -> None:
    actions = [_text(), _text(), _tool("Read"), _tool("Edit"), _tool("Read"), _tool("Edit")]

    analysis = analyze_with_heuristics(_turn(actions), 600)

    assert analysis.is_stuck
    assert "repetitive" in (analysis.reason or "")


def test_repetition_needs_six_actions() -> None:
    actions = [_tool("Read")] * 5

    analysis = analyze_with_heuristics(_turn(actions), 600)

    assert analysis.is_stuck
    assert analysis.reason == "timeout exceeded (600s)"


def test_repetition_needs_four_tool_calls() -> None:
    actions = [_text(), _text(), _text(), _tool("Read"), _tool("Read"), _tool("Read")]

    analysis = analyze_with_heuristics(_turn(actions), 600)

    assert analysis.reason == "timeout exceeded (600s)"


def test_no_actions_is_no_progress() -> None:
    analysis = analyze_with_heuristics(_turn([]), 600)

    assert analysis.is_stuck
    assert analysis.reason is not None and analysis.reason.startswith("no progress")


def test_repeated_errors_are_stuck() -> None:
    actions = [_text(), _error(), _text(), _error(), _error()]

    analysis = analyze_with_heuristics(_turn(actions), 600)

    assert analysis.is_stuck
    assert analysis.reason == "repeated errors in recent actions"


def test_varied_progress_past_timeout_is_still_stuck() -> None:
    actions = [_tool("Read"), _text(), _tool("Edit"), _text()]

    analysis = analyze_with_heuristics(_turn(actions), 600)

    assert analysis.is_stuck
    assert analysis.reason == "timeout exceeded (600s)"
    assert analysis.recommendation == "abort turn and notify user"


def test_summary_lists_recent_actions() -> None:
    actions = [_tool(f"t{i}") for i in range(25)]

    summary = format_turn_summary(_turn(actions, duration_ms=61_000), 60)

    assert "**Duration:** 61s" in summary
    assert "**Timeout:** 60s" in summary
    assert "**Last actions (20):**" in summary
    assert "[tool_call] t5 " in summary
    assert "[tool_call] t4 " not in summary


def test_analyst_failure_falls_back_to_heuristic() -> None:
    async def broken_analyst(summary: str) -> WatchdogAnalysis:
        raise RuntimeError("analyst offline")

    log = TurnActionLog(TurnLogStore(MemoryStorage()))
    watchdog = Watchdog(log, _params(600), analyst=broken_analyst)

    analysis = asyncio.run(watchdog.analyze(_turn([])))

    assert analysis == analyze_with_heuristics(_turn([]), 600)
    assert analysis.source == "heuristic"


def test_analyst_timeout_falls_back_to_heuristic() -> None:
    async def slow_analyst(summary: str) -> WatchdogAnalysis:
        await asyncio.sleep(10)
        raise AssertionError("unreachable")

    log = TurnActionLog(TurnLogStore(MemoryStorage()))
    watchdog = Watchdog(log, _params(600), analyst=slow_analyst, analyst_timeout=0.01)

    analysis = asyncio.run(watchdog.analyze(_turn([])))

    assert analysis.is_stuck
    assert analysis.source == "heuristic"


def test_analyst_verdict_is_marked_escalated() -> None:
    seen: list[str] = []

    async def analyst(summary: str) -> WatchdogAnalysis:
        seen.append(summary)
        return WatchdogAnalysis(is_stuck=False, recommendation="let it finish")

    log = TurnActionLog(TurnLogStore(MemoryStorage()))
    watchdog = Watchdog(log, _params(600), analyst=analyst)

    analysis = asyncio.run(watchdog.analyze(_turn([])))

    assert not analysis.is_stuck
    assert analysis.source == "escalated"
    assert analysis.recommendation == "let it finish"
    assert "fix the build" in seen[0]


def test_deadline_fires_stuck_callback_once() -> None:
    async def scenario() -> list[WatchdogAnalysis]:
        log = TurnActionLog(TurnLogStore(MemoryStorage()))
        watchdog = Watchdog(log, _params(0.05))
        calls: list[WatchdogAnalysis] = []
        log.start_turn("hang", {})
        watchdog.start_watching(calls.append)
        await asyncio.sleep(0.3)
        assert watchdog.state == "idle"
        return calls

    calls = asyncio.run(scenario())

    assert len(calls) == 1
    assert calls[0].is_stuck
    assert calls[0].reason is not None and calls[0].reason.startswith("no progress")


def test_healthy_verdict_reschedules_until_stopped() -> None:
    async def scenario() -> tuple[int, list[WatchdogAnalysis]]:
        checks = 0

        async def analyst(summary: str) -> WatchdogAnalysis:
            nonlocal checks
            checks += 1
            return WatchdogAnalysis(is_stuck=False, recommendation="keep going")

        log = TurnActionLog(TurnLogStore(MemoryStorage()))
        watchdog = Watchdog(log, _params(0.05), analyst=analyst)
        calls: list[WatchdogAnalysis] = []
        log.start_turn("long job", {})
        watchdog.start_watching(calls.append)
        await asyncio.sleep(0.2)
        watchdog.stop_watching()
        seen = checks
        await asyncio.sleep(0.15)
        assert checks == seen
        return checks, calls

    checks, calls = asyncio.run(scenario())

    assert checks >= 2
    assert calls == []


def test_stop_watching_before_deadline_prevents_callback() -> None:
    async def scenario() -> list[WatchdogAnalysis]:
        log = TurnActionLog(TurnLogStore(MemoryStorage()))
        watchdog = Watchdog(log, _params(0.05))
        calls: list[WatchdogAnalysis] = []
        log.start_turn("quick", {})
        watchdog.start_watching(calls.append)
        log.end_turn()
        watchdog.stop_watching()
        await asyncio.sleep(0.15)
        return calls

    assert asyncio.run(scenario()) == []


def test_async_stuck_callback_is_awaited() -> None:
    async def scenario() -> list[str]:
        events: list[str] = []

        async def on_stuck(analysis: WatchdogAnalysis) -> None:
            await asyncio.sleep(0)
            events.append(analysis.reason or "")

        log = TurnActionLog(TurnLogStore(MemoryStorage()))
        watchdog = Watchdog(log, _params(0.05))
        log.start_turn("hang", {})
        watchdog.start_watching(on_stuck)
        await asyncio.sleep(0.2)
        return events

    events = asyncio.run(scenario())

    assert len(events) == 1
