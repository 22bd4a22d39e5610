"""Human-readable text for schedules, triggers, filters and next runs."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from automations.cron_expression import ordinal
from automations.domain import (
    CardFilter,
    EventTrigger,
    Schedule,
    ScheduledTrigger,
    Trigger,
)
from automations.schedule_evaluation import next_cron_occurrence
from time_utils import ensure_aware

SectionLookup = Callable[[str], str | None]

_DAY_NAMES_SHORT = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
_MONTH_ABBREVIATIONS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_short_date(value: datetime) -> str:
    return f"{_MONTH_ABBREVIATIONS[value.month - 1]} {value.day}, {value.year}"


def format_fire_at(value: datetime) -> str:
    """Return ``Mon D, YYYY at HH:MM``."""
    return f"{format_short_date(value)} at {value.hour:02d}:{value.minute:02d}"


def describe_schedule(schedule: Schedule) -> str:
    """Describe a schedule, e.g. ``5 minutes`` or ``Mon, Wed at 09:00``."""
    if schedule.kind == "interval":
        minutes = schedule.interval_minutes
        if minutes >= 1440 and minutes % 1440 == 0:
            return _plural(minutes // 1440, "day")
        if minutes >= 60 and minutes % 60 == 0:
            return _plural(minutes // 60, "hour")
        return _plural(minutes, "minute")

    if schedule.kind == "cron":
        at = f"{schedule.hour:02d}:{schedule.minute:02d}"
        if schedule.days_of_week:
            days = ", ".join(_DAY_NAMES_SHORT[day] for day in schedule.days_of_week)
            return f"{days} at {at}"
        if schedule.days_of_month:
            days = ", ".join(ordinal(day) for day in schedule.days_of_month)
            return f"{days} of month at {at}"
        return f"day at {at}"

    if schedule.kind == "due_date_relative":
        offset = abs(schedule.offset_minutes)
        direction = "before" if schedule.offset_minutes < 0 else "after"
        if offset >= 1440:
            amount = _plural(round(offset / 1440), "day")
        elif offset >= 60:
            amount = _plural(round(offset / 60), "hour")
        else:
            amount = _plural(offset, "minute")
        return f"{amount} {direction} due date"

    return f"On {format_fire_at(schedule.fire_at)}"


def describe_trigger(trigger: Trigger, section_lookup: SectionLookup | None = None) -> str:
    """Describe what fires a rule, as recorded in execution history."""
    if isinstance(trigger, ScheduledTrigger):
        if trigger.schedule.kind == "one_time":
            return describe_schedule(trigger.schedule)
        return f"Every {describe_schedule(trigger.schedule)}"

    section_name = None
    if isinstance(trigger, EventTrigger) and trigger.section_id and section_lookup:
        section_name = section_lookup(trigger.section_id) or "unknown section"

    if trigger.type == "card_moved_into_section":
        return f"Card moved into '{section_name}'" if section_name else "Card moved into section"
    if trigger.type == "card_moved_out_of_section":
        return f"Card moved out of '{section_name}'" if section_name else "Card moved out of section"
    if trigger.type == "card_marked_complete":
        return "Card marked complete"
    if trigger.type == "card_marked_incomplete":
        return "Card marked incomplete"
    if trigger.type == "section_created":
        return "Section created"
    if trigger.type == "section_renamed":
        return "Section renamed"
    return "Unknown trigger"


def _unit_label(unit: str) -> str:
    return {"working_days": "working days", "hours": "hours"}.get(unit, "days")


_AGE_TEMPLATES = {
    "created_more_than": "created more than {value} {unit} ago",
    "completed_more_than": "completed more than {value} {unit} ago",
    "last_updated_more_than": "last updated more than {value} {unit} ago",
    "not_modified_in": "not modified in {value} {unit}",
    "overdue_by_more_than": "overdue by more than {value} {unit}",
    "in_section_for_more_than": "in section for more than {value} {unit}",
}

_STATIC_FILTER_TEXT = {
    "has_due_date": "with a due date",
    "no_due_date": "without a due date",
    "is_overdue": "that is overdue",
}


def describe_filter(card_filter: CardFilter, section_lookup: SectionLookup | None = None) -> str:
    """Describe a filter as a phrase that follows the word ``cards``."""
    filter_type = card_filter.type
    if filter_type in ("in_section", "not_in_section"):
        name = section_lookup(card_filter.section_id) if section_lookup else None
        prefix = "in" if filter_type == "in_section" else "not in"
        return f'{prefix} "{name or "___"}"'
    if filter_type in _STATIC_FILTER_TEXT:
        return _STATIC_FILTER_TEXT[filter_type]
    if filter_type in _AGE_TEMPLATES:
        return _AGE_TEMPLATES[filter_type].format(
            value=card_filter.value, unit=_unit_label(card_filter.unit)
        )
    if filter_type == "due_in_between":
        return (
            f"due in {card_filter.min_value}-{card_filter.max_value} "
            f"{_unit_label(card_filter.unit)}"
        )
    if filter_type.startswith("due_in_"):
        comparison = filter_type.removeprefix("due_in_").replace("_", " ")
        return f"due in {comparison} {card_filter.value} {_unit_label(card_filter.unit)}"
    # Range buckets read naturally from their type name.
    return filter_type.replace("_", " ")


def _format_duration(delta: timedelta) -> str:
    minutes = round(delta.total_seconds() / 60)
    if minutes < 60:
        return f"{minutes} min"
    hours = round(minutes / 60)
    if hours < 24:
        return f"{hours}h"
    return f"{round(hours / 24)}d"


def describe_next_run(trigger: ScheduledTrigger, now: datetime, enabled: bool = True) -> str:
    """Describe when a scheduled rule will next be considered."""
    schedule = trigger.schedule
    if schedule.kind == "interval":
        if trigger.last_evaluated_at is None:
            return "On next tick"
        next_run = ensure_aware(trigger.last_evaluated_at) + timedelta(
            minutes=schedule.interval_minutes
        )
        if next_run <= now:
            return "On next tick"
        return f"in {_format_duration(next_run - now)}"

    if schedule.kind == "cron":
        next_run = next_cron_occurrence(schedule, now)
        if next_run is None:
            return f"Next: {describe_schedule(schedule)}"
        return f"Next: {format_fire_at(next_run)}"

    if schedule.kind == "due_date_relative":
        return "Checks on next tick"

    fire_at = ensure_aware(schedule.fire_at).astimezone(now.tzinfo)
    if not enabled:
        return f"Fired on {format_short_date(fire_at)}"
    if fire_at.date() == now.date():
        return f"Fires today at {fire_at.hour:02d}:{fire_at.minute:02d}"
    days = round((fire_at - now).total_seconds() / 86400)
    return f"Fires on {format_short_date(fire_at)} (in {_plural(days, 'day')})"
