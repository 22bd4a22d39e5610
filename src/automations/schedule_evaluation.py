"""Schedule occurrence calculation.

Given a schedule, the instant the rule was last checked and ``now``, decide
whether an occurrence fell in ``(last_evaluated_at, now]``, how many were
missed and whether the run reconciles a backlog rather than the live tick.
Cron schedules are matched in the timezone carried by ``now``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from automations.domain import (
    CronSchedule,
    DueDateRelativeSchedule,
    IntervalSchedule,
    OneTimeSchedule,
    Schedule,
)
from time_utils import ensure_aware

DEFAULT_TICK_PERIOD = timedelta(seconds=60)
# Cron days-of-month always exist in some month, so a year bounds the search.
_CRON_SEARCH_DAYS = 366


@dataclass(frozen=True)
class ScheduleOccurrence:
    """Result of evaluating one schedule at one instant.

    ``advance_when_idle`` tells the caller whether ``new_last_evaluated_at``
    should be persisted even when no task matched; interval rules waiting for
    their period keep their anchor.
    """

    due: bool
    missed_count: int
    is_backlog: bool
    new_last_evaluated_at: datetime
    latest_occurrence: datetime | None = None
    next_occurrence: datetime | None = None
    advance_when_idle: bool = False


def _is_stale(last: datetime | None, now: datetime, tick_period: timedelta) -> bool:
    return last is not None and now - last > tick_period * 2


# ---------------------------------------------------------------------------
# Cron helpers
# ---------------------------------------------------------------------------


def _last_day_of_month(day: date) -> int:
    if day.month == 12:
        following = date(day.year + 1, 1, 1)
    else:
        following = date(day.year, day.month + 1, 1)
    return (following - timedelta(days=1)).day


def cron_day_matches(schedule: CronSchedule, day: date) -> bool:
    """Return True when the cron schedule runs on ``day``.

    A day matches when either non-empty day list contains it. Days of month
    past the end of a short month resolve to its last day.
    """
    if not schedule.days_of_week and not schedule.days_of_month:
        return True
    cron_weekday = (day.weekday() + 1) % 7
    if schedule.days_of_week and cron_weekday in schedule.days_of_week:
        return True
    if schedule.days_of_month:
        last_day = _last_day_of_month(day)
        if any(min(value, last_day) == day.day for value in schedule.days_of_month):
            return True
    return False


def _cron_instant(schedule: CronSchedule, day: date, now: datetime) -> datetime:
    return datetime.combine(day, time(schedule.hour, schedule.minute), tzinfo=now.tzinfo)


def cron_occurrences(schedule: CronSchedule, start: datetime, end: datetime) -> list[datetime]:
    """Return matching instants in ``(start, end]`` in ``end``'s timezone."""
    start = start.astimezone(end.tzinfo)
    occurrences: list[datetime] = []
    day = start.date()
    while day <= end.date():
        if cron_day_matches(schedule, day):
            instant = _cron_instant(schedule, day, end)
            if start < instant <= end:
                occurrences.append(instant)
        day += timedelta(days=1)
    return occurrences


def next_cron_occurrence(schedule: CronSchedule, after: datetime) -> datetime | None:
    """Return the first matching instant strictly after ``after``."""
    day = after.date()
    for _ in range(_CRON_SEARCH_DAYS + 1):
        if cron_day_matches(schedule, day):
            instant = _cron_instant(schedule, day, after)
            if instant > after:
                return instant
        day += timedelta(days=1)
    return None


# ---------------------------------------------------------------------------
# Per-kind evaluation
# ---------------------------------------------------------------------------


def _evaluate_interval(
    schedule: IntervalSchedule,
    last: datetime | None,
    now: datetime,
    tick_period: timedelta,
) -> ScheduleOccurrence:
    interval = timedelta(minutes=schedule.interval_minutes)
    if last is None:
        return ScheduleOccurrence(
            due=True,
            missed_count=1,
            is_backlog=False,
            new_last_evaluated_at=now,
            latest_occurrence=now,
            next_occurrence=now + interval,
            advance_when_idle=True,
        )
    elapsed = now - last
    missed = max(elapsed // interval, 0)
    due = missed >= 1
    earliest = last + interval
    is_backlog = due and (missed > 1 or now - earliest > tick_period)
    return ScheduleOccurrence(
        due=due,
        missed_count=missed,
        is_backlog=is_backlog,
        new_last_evaluated_at=now,
        latest_occurrence=last + interval * missed if due else None,
        next_occurrence=last + interval * (missed + 1),
        advance_when_idle=due,
    )


def _evaluate_cron(
    schedule: CronSchedule,
    last: datetime | None,
    now: datetime,
    tick_period: timedelta,
) -> ScheduleOccurrence:
    # Never evaluated: only an occurrence in the current tick window counts.
    window_start = last if last is not None else now - tick_period
    occurrences = cron_occurrences(schedule, window_start, now)
    due = bool(occurrences)
    is_backlog = due and last is not None and (
        len(occurrences) > 1 or now - occurrences[0] > tick_period
    )
    return ScheduleOccurrence(
        due=due,
        missed_count=len(occurrences),
        is_backlog=is_backlog,
        new_last_evaluated_at=now,
        latest_occurrence=occurrences[-1] if occurrences else None,
        next_occurrence=next_cron_occurrence(schedule, now),
        advance_when_idle=due or _is_stale(last, now, tick_period),
    )


def _evaluate_due_date_relative(
    schedule: DueDateRelativeSchedule,
    last: datetime | None,
    now: datetime,
    tick_period: timedelta,
) -> ScheduleOccurrence:
    stale = _is_stale(last, now, tick_period)
    return ScheduleOccurrence(
        due=True,
        missed_count=0,
        is_backlog=stale,
        new_last_evaluated_at=now,
        advance_when_idle=stale,
    )


def _evaluate_one_time(
    schedule: OneTimeSchedule,
    last: datetime | None,
    now: datetime,
    tick_period: timedelta,
) -> ScheduleOccurrence:
    fire_at = ensure_aware(schedule.fire_at)
    due = fire_at <= now and (last is None or last < fire_at)
    return ScheduleOccurrence(
        due=due,
        missed_count=1 if due else 0,
        is_backlog=due and now - fire_at > tick_period,
        new_last_evaluated_at=now,
        latest_occurrence=fire_at if due else None,
        next_occurrence=fire_at if fire_at > now else None,
        advance_when_idle=due or _is_stale(last, now, tick_period),
    )


_EVALUATORS = {
    "interval": _evaluate_interval,
    "cron": _evaluate_cron,
    "due_date_relative": _evaluate_due_date_relative,
    "one_time": _evaluate_one_time,
}


def evaluate_schedule(
    schedule: Schedule,
    last_evaluated_at: datetime | None,
    now: datetime,
    *,
    tick_period: timedelta = DEFAULT_TICK_PERIOD,
) -> ScheduleOccurrence:
    """Decide whether a schedule is due at ``now``.

    A null ``last_evaluated_at`` means the rule was never checked; interval and
    one-time schedules then treat it as due, cron schedules only when an
    occurrence falls inside the current tick window.
    """
    last = ensure_aware(last_evaluated_at)
    evaluator = _EVALUATORS[schedule.kind]
    return evaluator(schedule, last, now, tick_period)


def due_date_trigger_window(
    last_evaluated_at: datetime | None,
    now: datetime,
    *,
    tick_period: timedelta = DEFAULT_TICK_PERIOD,
) -> tuple[datetime, datetime]:
    """Return the ``(start, end]`` window for due-date-relative trigger times."""
    last = ensure_aware(last_evaluated_at)
    return (last if last is not None else now - tick_period, now)


def due_date_trigger_time(due_date: datetime, offset_minutes: int) -> datetime:
    """Return the instant a due-date-relative rule fires for a task."""
    return ensure_aware(due_date) + timedelta(minutes=offset_minutes)
