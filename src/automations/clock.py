"""Clock sources for the engine and scheduler."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable

from time_utils import local_now

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Return the current time in the configured local timezone."""
    return local_now()


class ManualClock:
    """Clock that only moves when told to; used for previews and tests."""

    def __init__(self, start: datetime) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self._now = self._now + delta
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value
