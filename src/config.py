"""Settings for the automations core.

Precedence, highest first: explicit init arguments, the environment variables
listed in ``_ENV_KEYS``, user YAML files, then ``config/automations.yml``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "automations.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/automations/automations.yml").expanduser(),
    Path("/config/automations.yml"),
]

# Environment variable -> (dotted settings path, value kind).
_ENV_KEYS: dict[str, tuple[str, str]] = {
    "DATABASE_URL": ("database.url", "str"),
    "LOG_LEVEL": ("log_level", "str"),
    "LOG_JSON": ("log_json", "bool"),
    "AUTOMATIONS_TICK_SECONDS": ("scheduler.tick_seconds", "int"),
    "AUTOMATIONS_CATCH_UP_ON_START": ("scheduler.catch_up_on_start", "bool"),
    "AUTOMATIONS_LOG_MAX_ENTRIES": ("execution_log.max_entries", "int"),
    "AUTOMATIONS_LOG_MAX_DETAILS": ("execution_log.max_details", "int"),
    "AUTOMATIONS_UNDO_EXPIRY_SECONDS": ("undo.expiry_seconds", "int"),
    "AUTOMATIONS_CREATE_CARD_DEDUP": ("create_card.dedup_enabled", "bool"),
    "USER_TIMEZONE": ("user.timezone", "str"),
}


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Return the mapping stored at ``path``; a missing file is empty."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _merge_into(target: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into ``target`` and return it."""
    for key, value in overrides.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = value
    return target


def _yaml_source(paths_getter):
    """Build a settings source over YAML files; later files win."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths_getter():
            _merge_into(merged, _read_yaml_mapping(path))
        return merged

    return source


def _coerce_env(raw: str, kind: str) -> Any:
    if kind == "int":
        return int(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return raw


def _env_source() -> dict[str, Any]:
    """Map the known environment variables onto nested settings keys."""
    data: dict[str, Any] = {}
    for env_key, (dotted, kind) in _ENV_KEYS.items():
        raw = os.environ.get(env_key)
        if raw is None:
            continue
        *parents, leaf = dotted.split(".")
        node = data
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = _coerce_env(raw, kind)
    return data


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite:///automations.db"
    echo: bool = False


class SchedulerConfig(BaseModel):
    """Scheduler tick configuration."""

    tick_seconds: int = 60
    catch_up_on_start: bool = True

    @field_validator("tick_seconds")
    @classmethod
    def validate_tick_seconds(cls, value: int) -> int:
        """Ensure the tick period is positive."""
        if value < 1:
            raise ValueError("scheduler.tick_seconds must be >= 1.")
        return value


class ExecutionLogConfig(BaseModel):
    """Bounds for per-rule execution history."""

    max_entries: int = 20
    max_details: int = 10

    @field_validator("max_entries", "max_details")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure history bounds are positive."""
        if value < 1:
            raise ValueError("execution_log bounds must be >= 1.")
        return value


class UndoConfig(BaseModel):
    """Undo slot configuration."""

    expiry_seconds: int = 10

    @field_validator("expiry_seconds")
    @classmethod
    def validate_expiry_seconds(cls, value: int) -> int:
        """Ensure the undo window is non-negative."""
        if value < 0:
            raise ValueError("undo.expiry_seconds must be >= 0.")
        return value


class CreateCardConfig(BaseModel):
    """Create-card action configuration."""

    dedup_enabled: bool = True


class UserConfig(BaseModel):
    """User locale configuration."""

    timezone: str = "UTC"

    @model_validator(mode="after")
    def validate_timezone(self) -> "UserConfig":
        """Ensure the configured timezone is valid."""
        try:
            ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {self.timezone}") from exc
        return self


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _env_source,
            _yaml_source(lambda: _USER_CONFIG_PATHS),
            _yaml_source(lambda: [_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Database Configuration
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Scheduler Configuration
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    # Execution History
    execution_log: ExecutionLogConfig = Field(default_factory=ExecutionLogConfig)

    # Undo
    undo: UndoConfig = Field(default_factory=UndoConfig)

    # Actions
    create_card: CreateCardConfig = Field(default_factory=CreateCardConfig)

    # User Context
    user: UserConfig = Field(default_factory=UserConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensure the log level is a standard logging level name."""
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be a standard logging level.")
        return normalized


settings = Settings()
