from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import pytest

from turnguard.analyst import AnalystResponseError, parse_verdict, provider_analyst
from turnguard.providers.types import ContentBlock, ErrorBlock, TextBlock


class ScriptedProvider:
    name = "scripted"
    display_name = "Scripted"

    def __init__(self, blocks: list[ContentBlock]) -> None:
        self.blocks = blocks
        self.prompts: list[str] = []
        self.context_mode = "continue"

    async def is_available(self) -> bool:
        return True

    async def available_models(self) -> list[str]:
        return []

    def get_params(self) -> dict[str, Any]:
        return {}

    def set_params(self, params: dict[str, Any]) -> None:
        pass

    def set_context_mode(self, mode: str) -> None:
        self.context_mode = mode

    async def query(self, prompt: str) -> AsyncIterator[ContentBlock]:
        self.prompts.append(prompt)
        for block in self.blocks:
            yield block

    def abort(self) -> None:
        pass


def test_parse_verdict_extracts_json_from_prose() -> None:
    text = 'Looking at this:\n{"is_stuck": true, "reason": "loop", "recommendation": "abort"}\nDone.'

    analysis = parse_verdict(text)

    assert analysis.is_stuck
    assert analysis.reason == "loop"
    assert analysis.recommendation == "abort"
    assert analysis.source == "escalated"


def test_parse_verdict_accepts_camel_case() -> None:
    analysis = parse_verdict('{"isStuck": false}')

    assert not analysis.is_stuck
    assert analysis.reason is None
    assert analysis.recommendation == "inspect turn"


def test_parse_verdict_fills_reason_for_stuck_verdict() -> None:
    assert parse_verdict('{"is_stuck": true}').reason == "analyst verdict"


@pytest.mark.parametrize(
    "text",
    [
        "no json here",
        "{not valid json}",
        '{"reason": "missing verdict"}',
        '{"is_stuck": "perhaps"}',
    ],
)
def test_parse_verdict_rejects_bad_replies(text: str) -> None:
    with pytest.raises(AnalystResponseError):
        parse_verdict(text)


def test_provider_analyst_runs_without_context() -> None:
    provider = ScriptedProvider([TextBlock('{"is_stuck": '), TextBlock('true, "reason": "spinning"}')])

    analyst = provider_analyst(provider)
    analysis = asyncio.run(analyst("## Turn analysis\nsummary body"))

    assert provider.context_mode == "none"
    assert "summary body" in provider.prompts[0]
    assert "Reply with JSON only" in provider.prompts[0]
    assert analysis.is_stuck
    assert analysis.reason == "spinning"


def test_provider_analyst_raises_on_provider_error() -> None:
    analyst = provider_analyst(ScriptedProvider([ErrorBlock("overloaded")]))

    with pytest.raises(AnalystResponseError, match="overloaded"):
        asyncio.run(analyst("summary"))
