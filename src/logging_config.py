"""Stdout logging configuration with structured rule context.

While a rule is being evaluated the engine wraps its work in ``log_context``
so every record carries ``rule_id`` and ``project_id``. The context lives in a
``ContextVar``; the scheduler thread and callers on other threads never see
each other's fields.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Mapping

_LOG_CONTEXT: ContextVar[dict[str, str]] = ContextVar("automations_log_context", default={})


def get_context() -> dict[str, str]:
    return dict(_LOG_CONTEXT.get())


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind ``values`` (minus ``None``s) for the duration of the block."""
    merged = get_context()
    merged.update({key: str(value) for key, value in values.items() if value is not None})
    token = _LOG_CONTEXT.set(merged)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_context()
        return True


class RuleContextFormatter(logging.Formatter):
    """Render records as JSON lines, or as text followed by key=value context."""

    def __init__(self, *, json_output: bool) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "context", None) or {}
        if not self.json_output:
            line = super().format(record)
            pairs = " ".join(f"{key}={context[key]}" for key in sorted(context))
            return f"{line} {pairs}" if pairs else line

        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **context,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(*, level: str = "INFO", json_output: bool = True) -> None:
    """Install a single stdout handler on the root logger, replacing any previous one."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(RuleContextFormatter(json_output=json_output))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())
    root.addHandler(handler)
