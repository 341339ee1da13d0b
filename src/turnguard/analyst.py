"""Analyst escalation backed by an agent provider.

The analyst asks a provider to judge a turn summary and expects a single JSON
object back. Anything that cannot be parsed raises, which makes the watchdog
fall back to its heuristic verdict.
"""

from __future__ import annotations

import json
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .providers.types import AgentProvider, ErrorBlock, TextBlock
from .watchdog import Analyst, WatchdogAnalysis

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

ANALYST_PROMPT = """You are a diagnostic analyst. Decide whether the AI agent turn below is stuck.

{summary}

Reply with JSON only, in this shape:
{{
  "is_stuck": true or false,
  "reason": "why, if stuck",
  "recommendation": "what to do next"
}}

Treat the turn as stuck when it:
- repeats the same action more than 3 times
- loops between two actions
- shows no visible progress after the timeout
- keeps hitting errors

Be conservative: only report stuck when the evidence is clear."""


class AnalystVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_stuck: bool = Field(alias="isStuck")
    reason: str | None = None
    recommendation: str = "inspect turn"


class AnalystResponseError(ValueError):
    pass


def parse_verdict(text: str) -> WatchdogAnalysis:
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise AnalystResponseError("analyst reply contained no JSON object")
    try:
        verdict = AnalystVerdict.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise AnalystResponseError(f"invalid analyst verdict: {exc}") from exc
    return WatchdogAnalysis(
        is_stuck=verdict.is_stuck,
        reason=verdict.reason or ("analyst verdict" if verdict.is_stuck else None),
        recommendation=verdict.recommendation,
        source="escalated",
    )


def provider_analyst(provider: AgentProvider) -> Analyst:
    """Build an analyst that runs the summary through ``provider``.

    The call is not itself watched; the watchdog bounds it with its analyst
    timeout. Pass a provider instance that is not serving the watched turn.
    """
    set_context_mode = getattr(provider, "set_context_mode", None)
    if callable(set_context_mode):
        set_context_mode("none")

    async def analyze(summary: str) -> WatchdogAnalysis:
        parts: list[str] = []
        async for block in provider.query(ANALYST_PROMPT.format(summary=summary)):
            if isinstance(block, TextBlock):
                parts.append(block.text)
            elif isinstance(block, ErrorBlock):
                raise AnalystResponseError(block.error)
        return parse_verdict("".join(parts))

    return analyze
