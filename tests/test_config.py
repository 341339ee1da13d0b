from __future__ import annotations

from pathlib import Path

import pytest

from turnguard.config import ConfigValidationError, load_config


def _write_config(tmp_path: Path, body: str) -> Path:
    state_dir = tmp_path / ".turnguard"
    state_dir.mkdir(exist_ok=True)
    path = state_dir / "config.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_defaults_without_config(tmp_path: Path) -> None:
    config = load_config(tmp_path, environ={})

    assert config.state_dir == tmp_path.resolve() / ".turnguard"
    assert config.cwd == tmp_path.resolve()
    assert config.provider == "claude"
    assert config.max_crashes == 3
    assert config.turn_log_limit == 100
    assert config.analyst_enabled
    assert config.analyst_timeout == 60.0
    assert config.history_limit == 5
    assert config.user_ids == ()


def test_config_file_overrides_defaults(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
[turnguard]
provider = "codex"
max_crashes = 5
analyst_enabled = false
analyst_timeout = 15
user_ids = ["alice", "bob"]
cwd = "work"
""",
    )

    config = load_config(tmp_path, environ={})

    assert config.provider == "codex"
    assert config.max_crashes == 5
    assert not config.analyst_enabled
    assert config.analyst_timeout == 15.0
    assert config.user_ids == ("alice", "bob")
    assert config.cwd == (tmp_path / "work").resolve()


def test_environment_overrides_file(tmp_path: Path) -> None:
    _write_config(tmp_path, '[turnguard]\nprovider = "codex"\n')

    config = load_config(
        tmp_path,
        environ={
            "TURNGUARD_PROVIDER": "claude",
            "TURNGUARD_MAX_CRASHES": "7",
            "TURNGUARD_ANALYST_ENABLED": "no",
            "TURNGUARD_USER_IDS": "a, b",
        },
    )

    assert config.provider == "claude"
    assert config.max_crashes == 7
    assert not config.analyst_enabled
    assert config.user_ids == ("a", "b")


def test_unknown_key_is_rejected(tmp_path: Path) -> None:
    _write_config(tmp_path, "[turnguard]\nmax_crash = 2\n")

    with pytest.raises(ConfigValidationError, match=r"unknown key \[turnguard\]\.max_crash"):
        load_config(tmp_path, environ={})


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("max_crashes = 0", "must be >= 1"),
        ("max_crashes = true", "must be an integer"),
        ("analyst_timeout = -1", "must be > 0"),
        ("analyst_enabled = 3", "must be a boolean"),
        ("provider = ''", "must be a non-empty string"),
        ("user_ids = [1]", r"user_ids\[0\]"),
    ],
)
def test_invalid_values_name_the_key(tmp_path: Path, body: str, message: str) -> None:
    _write_config(tmp_path, f"[turnguard]\n{body}\n")

    with pytest.raises(ConfigValidationError, match=message):
        load_config(tmp_path, environ={})


def test_invalid_env_value_names_variable(tmp_path: Path) -> None:
    with pytest.raises(ConfigValidationError, match="TURNGUARD_TURN_LOG_LIMIT"):
        load_config(tmp_path, environ={"TURNGUARD_TURN_LOG_LIMIT": "lots"})


def test_malformed_toml_is_a_config_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "[turnguard\n")

    with pytest.raises(ConfigValidationError, match="failed to parse"):
        load_config(tmp_path, environ={})
