from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import tomllib

from .breaker import DEFAULT_MAX_CRASHES
from .sessions import DEFAULT_HISTORY_LIMIT
from .stores.state import resolve_state_dir
from .turn_log import DEFAULT_TURN_LOG_LIMIT
from .watchdog import DEFAULT_ANALYST_TIMEOUT

CONFIG_FILENAME = "config.toml"
ENV_PREFIX = "TURNGUARD_"
DEFAULT_PROVIDER = "claude"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TurnguardConfig:
    state_dir: Path
    cwd: Path
    provider: str = DEFAULT_PROVIDER
    max_crashes: int = DEFAULT_MAX_CRASHES
    turn_log_limit: int = DEFAULT_TURN_LOG_LIMIT
    analyst_enabled: bool = True
    analyst_timeout: float = DEFAULT_ANALYST_TIMEOUT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    user_ids: tuple[str, ...] = ()

    @property
    def config_path(self) -> Path:
        return self.state_dir / CONFIG_FILENAME


def _as_str(value: object, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")
    return value.strip()


def _as_int(value: object, *, field: str, minimum: int) -> int:
    if isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be an integer")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ConfigValidationError(f"{field} must be an integer") from None
    if not isinstance(value, int):
        raise ConfigValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}")
    return value


def _as_positive_float(value: object, *, field: str) -> float:
    if isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be a number")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ConfigValidationError(f"{field} must be a number") from None
    if not isinstance(value, (int, float)):
        raise ConfigValidationError(f"{field} must be a number")
    if value <= 0:
        raise ConfigValidationError(f"{field} must be > 0")
    return float(value)


def _as_bool(value: object, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ConfigValidationError(f"{field} must be a boolean")


def _as_str_tuple(value: object, *, field: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if not isinstance(value, list):
        raise ConfigValidationError(f"{field} must be an array of strings")
    out: list[str] = []
    for idx, item in enumerate(value):
        out.append(_as_str(item, field=f"{field}[{idx}]"))
    return tuple(out)


def _as_path(value: object, *, field: str, base: Path) -> Path:
    path = Path(_as_str(value, field=field)).expanduser()
    if not path.is_absolute():
        path = base / path
    return path.resolve()


_PARSERS = {
    "provider": lambda v, f, base: _as_str(v, field=f),
    "cwd": lambda v, f, base: _as_path(v, field=f, base=base),
    "max_crashes": lambda v, f, base: _as_int(v, field=f, minimum=1),
    "turn_log_limit": lambda v, f, base: _as_int(v, field=f, minimum=1),
    "analyst_enabled": lambda v, f, base: _as_bool(v, field=f),
    "analyst_timeout": lambda v, f, base: _as_positive_float(v, field=f),
    "history_limit": lambda v, f, base: _as_int(v, field=f, minimum=0),
    "user_ids": lambda v, f, base: _as_str_tuple(v, field=f),
}


def _apply(
    config: TurnguardConfig,
    values: Mapping[str, Any],
    *,
    source: str,
    base: Path,
) -> TurnguardConfig:
    updates: dict[str, Any] = {}
    for key, raw in values.items():
        parser = _PARSERS.get(key)
        field = ENV_PREFIX + key.upper() if source == "env" else f"{source}.{key}"
        if parser is None:
            raise ConfigValidationError(f"unknown key {field}")
        updates[key] = parser(raw, field, base)
    return replace(config, **updates) if updates else config


def _read_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigValidationError(f"failed to parse {path}: {exc}") from exc
    section = data.get("turnguard", {})
    if not isinstance(section, dict):
        raise ConfigValidationError("[turnguard] must be a table")
    return section


def _read_env(environ: Mapping[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key in _PARSERS:
        value = environ.get(ENV_PREFIX + key.upper())
        if value is not None and value.strip():
            out[key] = value
    return out


def load_config(
    cwd: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> TurnguardConfig:
    """Resolve configuration: defaults, then config.toml, then environment."""
    env = os.environ if environ is None else environ
    base = (cwd or Path.cwd()).resolve()
    state_dir = resolve_state_dir(base)
    config = TurnguardConfig(state_dir=state_dir, cwd=base)
    config = _apply(
        config,
        _read_file(state_dir / CONFIG_FILENAME),
        source="[turnguard]",
        base=state_dir.parent,
    )
    return _apply(config, _read_env(env), source="env", base=base)
