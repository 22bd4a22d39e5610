"""Card filter evaluation.

Each filter type maps to a predicate ``(task, filter, now) -> bool`` in
``FILTER_PREDICATES``. A rule's filters are AND-combined and an empty list
always matches. Calendar buckets are computed in the timezone of ``now``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from automations.date_options import add_working_days, subtract_working_days
from automations.domain import (
    AgeFilter,
    CardFilter,
    DueDateBetweenFilter,
    DueDateComparisonFilter,
    SectionFilter,
    TaskRecord,
)
from automations.errors import FilterEvaluationError
from time_utils import ensure_aware

FilterPredicate = Callable[[TaskRecord, CardFilter, datetime], bool]


def _local(value: datetime, now: datetime) -> datetime:
    return ensure_aware(value).astimezone(now.tzinfo)


def _due_day(task: TaskRecord, now: datetime) -> date | None:
    if task.due_date is None:
        return None
    return _local(task.due_date, now).date()


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _next_month(day: date) -> tuple[int, int]:
    if day.month == 12:
        return day.year + 1, 1
    return day.year, day.month + 1


def _target_day(now: datetime, value: int, unit: str) -> date:
    today = now.date()
    if unit == "working_days":
        return add_working_days(today, value)
    return today + timedelta(days=value)


def _age_threshold(now: datetime, value: int, unit: str) -> datetime:
    """Return the instant a timestamp must precede to be older than value/unit."""
    if unit == "hours":
        return now - timedelta(hours=value)
    if unit == "working_days":
        day = subtract_working_days(now.date(), value)
        return datetime.combine(day, now.timetz())
    return now - timedelta(days=value)


def _older_than(timestamp: datetime, now: datetime, value: int, unit: str) -> bool:
    return _local(timestamp, now) < _age_threshold(now, value, unit)


# Section filters


def _in_section(task: TaskRecord, card_filter: SectionFilter, now: datetime) -> bool:
    return task.section_id == card_filter.section_id


def _not_in_section(task: TaskRecord, card_filter: SectionFilter, now: datetime) -> bool:
    return task.section_id != card_filter.section_id


# Presence filters


def _has_due_date(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    return task.due_date is not None


def _no_due_date(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    return task.due_date is None


def _is_overdue(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    if task.due_date is None or task.completed:
        return False
    return ensure_aware(task.due_date) < now


# Range buckets


def _due_today(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    return _due_day(task, now) == now.date()


def _due_tomorrow(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    return _due_day(task, now) == now.date() + timedelta(days=1)


def _due_this_week(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    due = _due_day(task, now)
    return due is not None and _week_start(due) == _week_start(now.date())


def _due_next_week(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    due = _due_day(task, now)
    return due is not None and _week_start(due) == _week_start(now.date()) + timedelta(days=7)


def _due_this_month(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    due = _due_day(task, now)
    return due is not None and (due.year, due.month) == (now.year, now.month)


def _due_next_month(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
    due = _due_day(task, now)
    return due is not None and (due.year, due.month) == _next_month(now.date())


def _negated(predicate: FilterPredicate) -> FilterPredicate:
    """Negate a bucket predicate; tasks without a due date always match."""

    def evaluate(task: TaskRecord, card_filter: CardFilter, now: datetime) -> bool:
        if task.due_date is None:
            return True
        return not predicate(task, card_filter, now)

    return evaluate


# Comparisons


def _due_in_less_than(
    task: TaskRecord, card_filter: DueDateComparisonFilter, now: datetime
) -> bool:
    due = _due_day(task, now)
    if due is None:
        return False
    return now.date() < due <= _target_day(now, card_filter.value, card_filter.unit)


def _due_in_more_than(
    task: TaskRecord, card_filter: DueDateComparisonFilter, now: datetime
) -> bool:
    due = _due_day(task, now)
    if due is None:
        return False
    return due > _target_day(now, card_filter.value, card_filter.unit)


def _due_in_exactly(
    task: TaskRecord, card_filter: DueDateComparisonFilter, now: datetime
) -> bool:
    due = _due_day(task, now)
    if due is None:
        return False
    return due == _target_day(now, card_filter.value, card_filter.unit)


def _due_in_between(task: TaskRecord, card_filter: DueDateBetweenFilter, now: datetime) -> bool:
    due = _due_day(task, now)
    if due is None:
        return False
    lower = _target_day(now, card_filter.min_value, card_filter.unit)
    upper = _target_day(now, card_filter.max_value, card_filter.unit)
    return lower <= due <= upper


# Age filters


def _created_more_than(task: TaskRecord, card_filter: AgeFilter, now: datetime) -> bool:
    if task.created_at is None:
        return False
    return _older_than(task.created_at, now, card_filter.value, card_filter.unit)


def _completed_more_than(task: TaskRecord, card_filter: AgeFilter, now: datetime) -> bool:
    if not task.completed:
        return False
    # Completed tasks with no recorded completion time count as old.
    if task.completed_at is None:
        return True
    return _older_than(task.completed_at, now, card_filter.value, card_filter.unit)


def _last_updated_more_than(task: TaskRecord, card_filter: AgeFilter, now: datetime) -> bool:
    if task.updated_at is None:
        return False
    return _older_than(task.updated_at, now, card_filter.value, card_filter.unit)


def _overdue_by_more_than(task: TaskRecord, card_filter: AgeFilter, now: datetime) -> bool:
    if task.due_date is None or task.completed:
        return False
    return _older_than(task.due_date, now, card_filter.value, card_filter.unit)


def _in_section_for_more_than(task: TaskRecord, card_filter: AgeFilter, now: datetime) -> bool:
    entered = task.moved_to_section_at or task.created_at
    if entered is None:
        return False
    return _older_than(entered, now, card_filter.value, card_filter.unit)


FILTER_PREDICATES: dict[str, FilterPredicate] = {
    "in_section": _in_section,
    "not_in_section": _not_in_section,
    "has_due_date": _has_due_date,
    "no_due_date": _no_due_date,
    "is_overdue": _is_overdue,
    "due_today": _due_today,
    "due_tomorrow": _due_tomorrow,
    "due_this_week": _due_this_week,
    "due_next_week": _due_next_week,
    "due_this_month": _due_this_month,
    "due_next_month": _due_next_month,
    "not_due_today": _negated(_due_today),
    "not_due_tomorrow": _negated(_due_tomorrow),
    "not_due_this_week": _negated(_due_this_week),
    "not_due_next_week": _negated(_due_next_week),
    "not_due_this_month": _negated(_due_this_month),
    "not_due_next_month": _negated(_due_next_month),
    "due_in_less_than": _due_in_less_than,
    "due_in_more_than": _due_in_more_than,
    "due_in_exactly": _due_in_exactly,
    "due_in_between": _due_in_between,
    "created_more_than": _created_more_than,
    "completed_more_than": _completed_more_than,
    "last_updated_more_than": _last_updated_more_than,
    "not_modified_in": _last_updated_more_than,
    "overdue_by_more_than": _overdue_by_more_than,
    "in_section_for_more_than": _in_section_for_more_than,
}


def evaluate_filter(card_filter: CardFilter, task: TaskRecord, now: datetime) -> bool:
    """Evaluate a single filter against a task snapshot."""
    predicate = FILTER_PREDICATES.get(card_filter.type)
    if predicate is None:
        raise FilterEvaluationError(
            f"Unknown filter type: {card_filter.type}",
            {"filter_type": card_filter.type},
        )
    return predicate(task, card_filter, now)


def evaluate_filters(filters: Iterable[CardFilter], task: TaskRecord, now: datetime) -> bool:
    """Return True when every filter matches; an empty list always matches."""
    return all(evaluate_filter(card_filter, task, now) for card_filter in filters)
