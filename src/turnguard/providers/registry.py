from __future__ import annotations

import logging
from pathlib import Path

from .types import AgentProvider, ProviderFactory

LOGGER = logging.getLogger(__name__)

_FACTORIES: dict[str, ProviderFactory] = {}


def register_provider(name: str, factory: ProviderFactory) -> None:
    if not name:
        raise ValueError("provider name cannot be empty")
    if name in _FACTORIES:
        if _FACTORIES[name] is factory:
            return
        raise ValueError(f"provider already registered: {name}")
    _FACTORIES[name] = factory


def create_provider(name: str, *, cwd: Path) -> AgentProvider:
    factory = _FACTORIES.get(name)
    if factory is None:
        available = ", ".join(sorted(_FACTORIES))
        raise KeyError(f"unknown provider '{name}'. available: {available}")
    return factory(cwd)


def list_providers() -> list[str]:
    return sorted(_FACTORIES)


async def first_available_provider(*, cwd: Path) -> AgentProvider | None:
    for name in list_providers():
        provider = create_provider(name, cwd=cwd)
        try:
            if await provider.is_available():
                return provider
        except Exception:
            LOGGER.warning("availability probe for %s failed", name, exc_info=True)
    return None
