from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .watchdog import WatchdogAnalysis


class TurnguardError(RuntimeError):
    pass


class AlreadyProcessing(TurnguardError):
    def __init__(self, user_id: str):
        super().__init__(f"already processing a message for user {user_id!r}")
        self.user_id = user_id


class ProviderError(TurnguardError):
    """The agent provider failed the turn. Logged, never retried."""

    def __init__(self, reason: str, *, provider: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.provider = provider

    def user_message(self) -> str:
        return f"The agent failed: {self.reason}"


class TurnStuck(TurnguardError):
    def __init__(self, analysis: "WatchdogAnalysis"):
        reason = analysis.reason or "timeout exceeded"
        super().__init__(f"agent stuck: {reason}")
        self.analysis = analysis
        self.reason = reason

    def user_message(self) -> str:
        return f"The agent was stuck and was restarted: {self.reason}"


class CircuitOpen(TurnguardError):
    def __init__(self, crash_count: int, threshold: int):
        super().__init__(
            f"circuit breaker open: {crash_count} crashes (threshold {threshold})"
        )
        self.crash_count = crash_count
        self.threshold = threshold


class ProviderUnavailable(TurnguardError):
    def __init__(self, name: str):
        super().__init__(f"provider {name} is not available")
        self.name = name
