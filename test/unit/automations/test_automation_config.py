"""Unit tests for layered settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

import config


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point settings at temp YAML files and clear overriding env vars."""
    default = _write(tmp_path / "default.yml", "scheduler:\n  tick_seconds: 30\n")
    monkeypatch.setattr(config, "_DEFAULT_CONFIG_PATH", default)
    monkeypatch.setattr(config, "_USER_CONFIG_PATHS", [tmp_path / "user.yml"])
    for key in ("AUTOMATIONS_TICK_SECONDS", "AUTOMATIONS_UNDO_EXPIRY_SECONDS", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_defaults_come_from_yaml(isolated_config: Path) -> None:
    """Values missing from YAML fall back to model defaults."""
    settings = config.Settings()

    assert settings.scheduler.tick_seconds == 30
    assert settings.undo.expiry_seconds == 10
    assert settings.execution_log.max_entries == 20


def test_user_yaml_overrides_default(isolated_config: Path) -> None:
    """User YAML takes precedence over the packaged defaults."""
    _write(isolated_config / "user.yml", "scheduler:\n  tick_seconds: 15\n")

    assert config.Settings().scheduler.tick_seconds == 15


def test_user_files_merge_sections(
    isolated_config: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Later user files override keys without dropping sibling keys."""
    first = _write(
        isolated_config / "first.yml",
        "scheduler:\n  tick_seconds: 15\n  catch_up_on_start: false\n",
    )
    second = _write(isolated_config / "second.yml", "scheduler:\n  tick_seconds: 20\n")
    monkeypatch.setattr(config, "_USER_CONFIG_PATHS", [first, second])

    settings = config.Settings()

    assert settings.scheduler.tick_seconds == 20
    assert settings.scheduler.catch_up_on_start is False


def test_env_overrides_yaml(isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment variables win over every YAML layer."""
    _write(isolated_config / "user.yml", "scheduler:\n  tick_seconds: 15\n")
    monkeypatch.setenv("AUTOMATIONS_TICK_SECONDS", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = config.Settings()

    assert settings.scheduler.tick_seconds == 5
    assert settings.log_level == "DEBUG"


def test_invalid_values_are_rejected(isolated_config: Path) -> None:
    """Out-of-range values fail validation."""
    _write(isolated_config / "user.yml", "scheduler:\n  tick_seconds: 0\n")

    with pytest.raises(ValidationError):
        config.Settings()


def test_invalid_timezone_is_rejected(
    isolated_config: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Unknown timezones fail validation."""
    monkeypatch.setenv("USER_TIMEZONE", "Mars/Olympus_Mons")

    with pytest.raises(ValidationError):
        config.Settings()
