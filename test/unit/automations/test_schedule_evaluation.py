"""Unit tests for schedule occurrence calculation."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from automations.domain import (
    CronSchedule,
    DueDateRelativeSchedule,
    IntervalSchedule,
    OneTimeSchedule,
)
from automations.schedule_evaluation import (
    cron_day_matches,
    due_date_trigger_time,
    due_date_trigger_window,
    evaluate_schedule,
    next_cron_occurrence,
)

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)
TICK = timedelta(seconds=60)


def test_interval_never_evaluated_is_due() -> None:
    """A fresh interval rule fires on its first tick."""
    occurrence = evaluate_schedule(IntervalSchedule(interval_minutes=5), None, NOW)

    assert occurrence.due
    assert occurrence.missed_count == 1
    assert not occurrence.is_backlog
    assert occurrence.new_last_evaluated_at == NOW


def test_interval_waiting_keeps_anchor() -> None:
    """Before the period elapses the rule is idle and keeps its anchor."""
    occurrence = evaluate_schedule(
        IntervalSchedule(interval_minutes=5), NOW - timedelta(minutes=3), NOW
    )

    assert not occurrence.due
    assert not occurrence.advance_when_idle
    assert occurrence.next_occurrence == NOW + timedelta(minutes=2)


def test_interval_exactly_one_period_is_live() -> None:
    """One elapsed period on time is a live run."""
    occurrence = evaluate_schedule(
        IntervalSchedule(interval_minutes=5), NOW - timedelta(minutes=5), NOW
    )

    assert occurrence.due
    assert occurrence.missed_count == 1
    assert not occurrence.is_backlog


def test_interval_missed_periods_are_backlog() -> None:
    """Twelve minutes on a five-minute interval misses two occurrences."""
    occurrence = evaluate_schedule(
        IntervalSchedule(interval_minutes=5), NOW - timedelta(minutes=12), NOW
    )

    assert occurrence.due
    assert occurrence.missed_count == 2
    assert occurrence.is_backlog
    assert occurrence.latest_occurrence == NOW - timedelta(minutes=2)


def test_interval_within_one_tick_is_not_backlog() -> None:
    """A single occurrence at most one tick late is still live."""
    occurrence = evaluate_schedule(
        IntervalSchedule(interval_minutes=30), NOW - timedelta(minutes=31), NOW
    )

    assert occurrence.due
    assert not occurrence.is_backlog


def test_evaluating_twice_at_same_instant_is_idempotent() -> None:
    """Persisting the new anchor makes the same instant not due again."""
    schedule = IntervalSchedule(interval_minutes=5)
    first = evaluate_schedule(schedule, NOW - timedelta(minutes=12), NOW)

    second = evaluate_schedule(schedule, first.new_last_evaluated_at, NOW)

    assert first.due
    assert not second.due


def test_cron_never_evaluated_uses_current_tick_window() -> None:
    """A fresh cron rule fires only if an occurrence is inside this tick."""
    schedule = CronSchedule(hour=9, minute=0)
    at_nine = datetime(2024, 3, 6, 9, 0, 30, tzinfo=timezone.utc)

    assert evaluate_schedule(schedule, None, at_nine).due
    assert not evaluate_schedule(schedule, None, NOW).due


def test_cron_missed_weekday_is_backlog() -> None:
    """A Monday run missed since Friday is reported as backlog."""
    schedule = CronSchedule(hour=9, minute=0, days_of_week=[1])
    last = datetime(2024, 3, 1, 9, 0, 30, tzinfo=timezone.utc)

    occurrence = evaluate_schedule(schedule, last, NOW)

    assert occurrence.due
    assert occurrence.missed_count == 1
    assert occurrence.is_backlog
    assert occurrence.latest_occurrence == datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def test_cron_idle_advances_only_when_stale() -> None:
    """Idle cron rules advance their anchor once it is older than two ticks."""
    schedule = CronSchedule(hour=9, minute=0)

    recent = evaluate_schedule(schedule, NOW - timedelta(seconds=60), NOW)
    stale = evaluate_schedule(schedule, NOW - timedelta(minutes=10), NOW)

    assert not recent.due and not recent.advance_when_idle
    assert not stale.due and stale.advance_when_idle


def test_cron_day_matching_is_a_union() -> None:
    """Weekday and day-of-month lists combine with OR."""
    schedule = CronSchedule(hour=9, minute=0, days_of_week=[1], days_of_month=[15])

    assert cron_day_matches(schedule, date(2024, 3, 15))
    assert cron_day_matches(schedule, date(2024, 3, 11))
    assert not cron_day_matches(schedule, date(2024, 3, 12))


def test_cron_day_of_month_clamps_to_month_end() -> None:
    """Day 31 fires on the last day of a shorter month."""
    schedule = CronSchedule(hour=9, minute=0, days_of_month=[31])

    assert cron_day_matches(schedule, date(2024, 2, 29))
    assert not cron_day_matches(schedule, date(2024, 2, 28))


def test_next_cron_occurrence() -> None:
    """The next daily occurrence after noon is tomorrow morning."""
    schedule = CronSchedule(hour=9, minute=0)

    assert next_cron_occurrence(schedule, NOW) == datetime(2024, 3, 7, 9, 0, tzinfo=timezone.utc)


def test_due_date_relative_is_always_checked() -> None:
    """Due-date-relative schedules are evaluated every tick."""
    schedule = DueDateRelativeSchedule(offset_minutes=-60)

    live = evaluate_schedule(schedule, NOW - TICK, NOW)
    stale = evaluate_schedule(schedule, NOW - timedelta(minutes=10), NOW)

    assert live.due and live.missed_count == 0 and not live.is_backlog
    assert stale.due and stale.is_backlog and stale.advance_when_idle


def test_one_time_fires_once() -> None:
    """A one-time schedule is due until an evaluation passes its fire time."""
    schedule = OneTimeSchedule(fire_at=NOW - timedelta(seconds=30))

    first = evaluate_schedule(schedule, None, NOW)
    again = evaluate_schedule(schedule, NOW, NOW + TICK)

    assert first.due and not first.is_backlog
    assert not again.due


def test_one_time_long_past_is_backlog() -> None:
    """A fire time more than a tick ago is reconciled as backlog."""
    schedule = OneTimeSchedule(fire_at=NOW - timedelta(hours=2))

    occurrence = evaluate_schedule(schedule, None, NOW)

    assert occurrence.due
    assert occurrence.is_backlog


def test_one_time_in_future_is_not_due() -> None:
    """Future fire times report themselves as the next occurrence."""
    fire_at = NOW + timedelta(hours=1)

    occurrence = evaluate_schedule(OneTimeSchedule(fire_at=fire_at), None, NOW)

    assert not occurrence.due
    assert occurrence.next_occurrence == fire_at


def test_due_date_trigger_helpers() -> None:
    """Trigger windows default to one tick and offsets shift the due date."""
    due = datetime(2024, 3, 8, 9, 0, tzinfo=timezone.utc)

    assert due_date_trigger_window(None, NOW) == (NOW - TICK, NOW)
    assert due_date_trigger_window(NOW - timedelta(minutes=5), NOW) == (
        NOW - timedelta(minutes=5),
        NOW,
    )
    assert due_date_trigger_time(due, -1440) == due - timedelta(days=1)


def test_missed_count_never_drops_as_now_advances() -> None:
    """With a fixed anchor, a later ``now`` never reports fewer missed runs."""
    last = NOW - timedelta(days=3)
    schedules = [
        IntervalSchedule(interval_minutes=45),
        CronSchedule(hour=9, minute=30, days_of_week=[1, 3, 5]),
        CronSchedule(hour=23, minute=0, days_of_month=[15]),
        OneTimeSchedule(fire_at=NOW - timedelta(days=1)),
    ]
    instants = [last + timedelta(minutes=37 * step) for step in range(600)]

    for schedule in schedules:
        counts = [
            evaluate_schedule(schedule, last, now, tick_period=TICK).missed_count
            for now in instants
        ]
        assert counts == sorted(counts), schedule.kind
        assert counts[-1] >= 1, schedule.kind
