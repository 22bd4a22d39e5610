"""Unit tests for clock and timezone helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from config import settings
from time_utils import ensure_aware, ensure_utc, get_local_timezone, local_now


def test_get_local_timezone_uses_settings(monkeypatch) -> None:
    """Local timezone resolves from settings."""
    monkeypatch.setattr(settings.user, "timezone", "America/New_York", raising=False)

    assert get_local_timezone().key == "America/New_York"


def test_get_local_timezone_rejects_unknown_zone(monkeypatch) -> None:
    """Unknown zones raise a ValueError."""
    monkeypatch.setattr(settings.user, "timezone", "Nowhere/Special", raising=False)

    with pytest.raises(ValueError):
        get_local_timezone()


def test_local_now_carries_configured_zone(monkeypatch) -> None:
    """local_now is aware and in the configured zone."""
    monkeypatch.setattr(settings.user, "timezone", "Europe/Berlin", raising=False)

    assert local_now().tzinfo.key == "Europe/Berlin"


def test_ensure_aware_treats_naive_as_utc() -> None:
    """Naive values gain UTC; aware values and None pass through."""
    offset = timezone(timedelta(hours=-5))
    aware = datetime(2024, 3, 6, 7, 0, tzinfo=offset)

    assert ensure_aware(datetime(2024, 3, 6, 12, 0)) == datetime(
        2024, 3, 6, 12, 0, tzinfo=timezone.utc
    )
    assert ensure_aware(aware).tzinfo is offset
    assert ensure_aware(None) is None


def test_ensure_utc_converts_offsets() -> None:
    """Aware values are converted to UTC wall-clock time."""
    offset = timezone(timedelta(hours=-5))

    converted = ensure_utc(datetime(2024, 3, 6, 7, 0, tzinfo=offset))

    assert converted.tzinfo == timezone.utc
    assert converted.hour == 12
