from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "TurnResponse",
    "TurnSupervisor",
    "TurnguardConfig",
    "TurnguardEvent",
    "load_config",
    "run_boot",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .boot import run_boot
    from .config import TurnguardConfig, load_config
    from .events import TurnguardEvent
    from .supervisor import TurnResponse, TurnSupervisor


def __getattr__(name: str):
    if name == "TurnguardEvent":
        from .events import TurnguardEvent

        return TurnguardEvent
    if name in {"TurnResponse", "TurnSupervisor"}:
        from .supervisor import TurnResponse, TurnSupervisor

        return {"TurnResponse": TurnResponse, "TurnSupervisor": TurnSupervisor}[name]
    if name in {"TurnguardConfig", "load_config"}:
        from .config import TurnguardConfig, load_config

        return {"TurnguardConfig": TurnguardConfig, "load_config": load_config}[name]
    if name == "run_boot":
        from .boot import run_boot

        return run_boot
    raise AttributeError(f"module 'turnguard' has no attribute {name!r}")
