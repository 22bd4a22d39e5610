"""Symbolic date option resolution and working-day arithmetic.

All functions are pure: the result depends only on the arguments. Calendar
math happens in the timezone carried by ``now`` and every resolved value is the
start of the resolved day in that timezone.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, time, timedelta

from automations.errors import DateOptionError

# Python weekday numbering (Monday=0).
WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}
ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "last": -1}

_DAY_OF_MONTH_PATTERN = re.compile(r"^day_of_month_(\d{1,2})$")
_NEXT_WEEK_PATTERN = re.compile(r"^next_week_([a-z]+)$")
_NEXT_WEEKDAY_PATTERN = re.compile(r"^next_([a-z]+)$")
_NTH_WEEKDAY_PATTERN = re.compile(r"^([a-z]+)_([a-z]+)_of_month$")


def start_of_day(value: datetime) -> datetime:
    """Return midnight of the value's calendar day in its own timezone."""
    return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)


def _at_day(day: date, now: datetime) -> datetime:
    return datetime.combine(day, time.min, tzinfo=now.tzinfo)


def is_working_day(day: date) -> bool:
    """Return True for Monday through Friday."""
    return day.weekday() < 5


def add_working_days(day: date, count: int) -> date:
    """Move ``count`` working days from ``day``.

    With ``count == 0`` the day itself is returned when it is a working day,
    otherwise the following Monday. Negative counts walk backwards.
    """
    if count == 0:
        current = day
        while not is_working_day(current):
            current += timedelta(days=1)
        return current
    step = 1 if count > 0 else -1
    remaining = abs(count)
    current = day
    while remaining:
        current += timedelta(days=step)
        if is_working_day(current):
            remaining -= 1
    return current


def subtract_working_days(day: date, count: int) -> date:
    """Move ``count`` working days backwards from ``day``."""
    return add_working_days(day, -count)


def working_days_between(start: date, end: date) -> int:
    """Count working days strictly between two dates (both ends excluded)."""
    count = 0
    current = start + timedelta(days=1)
    while current < end:
        if is_working_day(current):
            count += 1
        current += timedelta(days=1)
    return count


def _target_month(now: datetime, month_target: str | None) -> tuple[int, int]:
    year, month = now.year, now.month
    if month_target == "next_month":
        if month == 12:
            return year + 1, 1
        return year, month + 1
    return year, month


def _last_day(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def day_of_month(now: datetime, day: int, month_target: str | None = None) -> datetime:
    """Resolve day ``day`` of the target month, clamped to the month length."""
    year, month = _target_month(now, month_target)
    return _at_day(date(year, month, min(day, _last_day(year, month))), now)


def last_day_of_month(now: datetime, month_target: str | None = None) -> datetime:
    year, month = _target_month(now, month_target)
    return _at_day(date(year, month, _last_day(year, month)), now)


def last_working_day_of_month(now: datetime, month_target: str | None = None) -> datetime:
    year, month = _target_month(now, month_target)
    current = date(year, month, _last_day(year, month))
    while not is_working_day(current):
        current -= timedelta(days=1)
    return _at_day(current, now)


def nth_weekday_of_month(
    now: datetime,
    nth: int,
    weekday: int,
    month_target: str | None = None,
) -> datetime:
    """Resolve the nth weekday of the target month.

    ``nth == -1`` selects the last occurrence. Asking for an occurrence the
    month does not have falls back to the last one.
    """
    year, month = _target_month(now, month_target)
    occurrences = [
        date(year, month, day)
        for day in range(1, _last_day(year, month) + 1)
        if date(year, month, day).weekday() == weekday
    ]
    if nth == -1 or nth > len(occurrences):
        return _at_day(occurrences[-1], now)
    return _at_day(occurrences[nth - 1], now)


def next_weekday(now: datetime, weekday: int) -> datetime:
    """Resolve the next occurrence of ``weekday`` strictly after today."""
    days_ahead = (weekday - now.weekday()) % 7 or 7
    return _at_day(now.date() + timedelta(days=days_ahead), now)


def next_week_on(now: datetime, weekday: int) -> datetime:
    """Resolve ``weekday`` within the following Monday-to-Sunday week."""
    this_monday = now.date() - timedelta(days=now.weekday())
    return _at_day(this_monday + timedelta(days=7 + weekday), now)


def specific_date(now: datetime, month: int, day: int) -> datetime:
    """Resolve a fixed month and day into the nearest year not yet passed.

    Days beyond the month length clamp, so Feb 29 becomes Feb 28 in
    non-leap years.
    """
    today = now.date()
    year = today.year
    if (month, day) < (today.month, today.day):
        year += 1
    return _at_day(date(year, month, min(day, _last_day(year, month))), now)


def resolve_date_option(
    option: str,
    now: datetime,
    *,
    specific_month: int | None = None,
    specific_day: int | None = None,
    month_target: str | None = None,
) -> datetime:
    """Map a symbolic date option to the start of a concrete day."""
    if option == "today":
        return start_of_day(now)
    if option == "tomorrow":
        return _at_day(now.date() + timedelta(days=1), now)
    if option == "next_working_day":
        return _at_day(add_working_days(now.date(), 1), now)
    if option == "last_day_of_month":
        return last_day_of_month(now, month_target)
    if option == "last_working_day_of_month":
        return last_working_day_of_month(now, month_target)
    if option == "specific_date":
        if not specific_month or not specific_day:
            raise DateOptionError(
                "specific_date requires specific_month and specific_day.",
                {"option": option},
            )
        return specific_date(now, specific_month, specific_day)

    match = _DAY_OF_MONTH_PATTERN.match(option)
    if match:
        day = int(match.group(1))
        if 1 <= day <= 31:
            return day_of_month(now, day, month_target)

    # next_week_<weekday> must be checked before next_<weekday>.
    match = _NEXT_WEEK_PATTERN.match(option)
    if match and match.group(1) in WEEKDAYS:
        return next_week_on(now, WEEKDAYS[match.group(1)])

    match = _NEXT_WEEKDAY_PATTERN.match(option)
    if match and match.group(1) in WEEKDAYS:
        return next_weekday(now, WEEKDAYS[match.group(1)])

    match = _NTH_WEEKDAY_PATTERN.match(option)
    if match and match.group(1) in ORDINALS and match.group(2) in WEEKDAYS:
        return nth_weekday_of_month(
            now, ORDINALS[match.group(1)], WEEKDAYS[match.group(2)], month_target
        )

    raise DateOptionError(f"Unsupported date option: {option}", {"option": option})


def is_valid_date_option(option: str) -> bool:
    """Return True when ``option`` names a resolvable date option."""
    sample = datetime(2024, 1, 1)
    try:
        resolve_date_option(option, sample, specific_month=1, specific_day=1)
    except DateOptionError:
        return False
    return True
