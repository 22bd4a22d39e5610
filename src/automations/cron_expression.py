"""Conversion between 5-field cron strings and cron schedules.

Only expressions that collapse to a single time of day are representable:
minute and hour must each resolve to one value and the month field must be
``*``. Quartz extensions (``L``, ``W``, ``#``, ``?``) are rejected.
"""

from __future__ import annotations

import re

from automations.domain import CronSchedule
from automations.errors import CronExpressionError

_UNSUPPORTED_CHARS = re.compile(r"[LWlw#?]")

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DAY_NAMES_SHORT = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _parse_int(raw: str, minimum: int, maximum: int, field_name: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise CronExpressionError(
            f'Invalid value "{raw}" in {field_name} field',
            {"field": field_name, "value": raw},
        ) from exc
    if value < minimum or value > maximum:
        raise CronExpressionError(
            f'Invalid value "{raw}" in {field_name} field (expected {minimum}-{maximum})',
            {"field": field_name, "value": raw},
        )
    return value


def _parse_range(raw: str, minimum: int, maximum: int, field_name: str) -> tuple[int, int]:
    parts = raw.split("-")
    if len(parts) != 2:
        raise CronExpressionError(
            f'Invalid range "{raw}" in {field_name} field', {"field": field_name}
        )
    start = _parse_int(parts[0], minimum, maximum, field_name)
    end = _parse_int(parts[1], minimum, maximum, field_name)
    if start > end:
        raise CronExpressionError(
            f'Invalid range "{raw}" in {field_name} field', {"field": field_name}
        )
    return start, end


def parse_field(raw: str, minimum: int, maximum: int, field_name: str) -> list[int] | None:
    """Parse one cron field into sorted values; ``None`` means wildcard."""
    if _UNSUPPORTED_CHARS.search(raw):
        raise CronExpressionError(
            f'Unsupported character in {field_name} field: "{raw}"', {"field": field_name}
        )
    if raw == "*":
        return None

    if "/" in raw:
        range_part, step_raw = raw.split("/", 1)
        try:
            step = int(step_raw)
        except ValueError:
            step = 0
        if step < 1:
            raise CronExpressionError(
                f'Invalid step value "{step_raw}" in {field_name} field', {"field": field_name}
            )
        start, end = minimum, maximum
        if range_part != "*":
            if "-" in range_part:
                start, end = _parse_range(range_part, minimum, maximum, field_name)
            else:
                start = _parse_int(range_part, minimum, maximum, field_name)
        return list(range(start, end + 1, step))

    if "-" in raw:
        start, end = _parse_range(raw, minimum, maximum, field_name)
        return list(range(start, end + 1))

    if "," in raw:
        return sorted({_parse_int(part, minimum, maximum, field_name) for part in raw.split(",")})

    return [_parse_int(raw, minimum, maximum, field_name)]


def _single_value(values: list[int] | None, raw: str, field_name: str) -> int:
    if values is None:
        raise CronExpressionError(
            f"Wildcard (*) for {field_name} field produces multiple values and cannot be "
            "represented as a single schedule",
            {"field": field_name},
        )
    if len(values) != 1:
        raise CronExpressionError(
            f'The {field_name} field "{raw}" produces multiple values and cannot be '
            "represented as a single schedule",
            {"field": field_name},
        )
    return values[0]


def parse_cron_expression(expression: str) -> CronSchedule:
    """Parse a 5-field cron expression into a cron schedule."""
    trimmed = expression.strip()
    if not trimmed:
        raise CronExpressionError("Cron expression is required")

    match = _UNSUPPORTED_CHARS.search(trimmed)
    if match:
        raise CronExpressionError(f'Unsupported character "{match.group(0)}" in cron expression')

    fields = trimmed.split()
    if len(fields) != 5:
        message = (
            "Expected 5 fields (minute hour day-of-month month day-of-week), "
            f"got {len(fields)}"
        )
        if len(fields) > 5:
            message += ". 6-field (seconds) and 7-field (year) cron expressions are not supported."
        raise CronExpressionError(message, {"field_count": len(fields)})

    minute_raw, hour_raw, dom_raw, month_raw, dow_raw = fields
    if month_raw != "*":
        raise CronExpressionError("Month filtering is not supported. Use * for the month field.")

    minute = _single_value(parse_field(minute_raw, 0, 59, "minute"), minute_raw, "minute")
    hour = _single_value(parse_field(hour_raw, 0, 23, "hour"), hour_raw, "hour")
    days_of_month = parse_field(dom_raw, 1, 31, "day-of-month") or []
    days_of_week = parse_field(dow_raw, 0, 6, "day-of-week") or []

    return CronSchedule(
        hour=hour,
        minute=minute,
        days_of_week=days_of_week,
        days_of_month=days_of_month,
    )


def to_cron_expression(schedule: CronSchedule) -> str:
    """Render a cron schedule as a 5-field cron expression."""
    dom = ",".join(str(day) for day in schedule.days_of_month) or "*"
    dow = ",".join(str(day) for day in schedule.days_of_week) or "*"
    return f"{schedule.minute} {schedule.hour} {dom} * {dow}"


def ordinal(value: int) -> str:
    """Return ``value`` with its English ordinal suffix."""
    if 10 <= value % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(value % 10, "th")
    return f"{value}{suffix}"


def describe_cron_expression(schedule: CronSchedule) -> str:
    """Return a sentence such as ``Every Monday at 09:00``."""
    at = f"{schedule.hour:02d}:{schedule.minute:02d}"
    if schedule.days_of_week:
        if len(schedule.days_of_week) == 1:
            return f"Every {DAY_NAMES[schedule.days_of_week[0]]} at {at}"
        days = ", ".join(DAY_NAMES_SHORT[day] for day in schedule.days_of_week)
        return f"Every {days} at {at}"
    if schedule.days_of_month:
        days = ", ".join(ordinal(day) for day in schedule.days_of_month)
        return f"Every {days} of month at {at}"
    return f"Every day at {at}"
