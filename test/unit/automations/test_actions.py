"""Unit tests for action handlers and the executor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from automations.actions import (
    ActionContext,
    ActionExecutor,
    dedup_lookback,
    interpolate_title,
)
from automations.domain import (
    TRIGGER_SECTION,
    CardStatusAction,
    CreateCardAction,
    CronSchedule,
    IntervalSchedule,
    MoveCardAction,
    RemoveDueDateAction,
    ScheduledTrigger,
    SetDueDateAction,
    TaskRecord,
)
from automations.errors import AutomationValidationError, SectionNotFoundError

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


def _add_task(task_store, **overrides) -> TaskRecord:
    """Persist a task with defaults and return the stored snapshot."""
    values = {
        "project_id": "project-1",
        "description": overrides.get("id", "task"),
        "section_id": "todo",
        "created_at": NOW - timedelta(days=1),
    }
    values.update(overrides)
    return task_store.create_task(TaskRecord(**values))


def _context(task_store, rule=None, **overrides) -> ActionContext:
    """Return an action context at the fixed instant."""
    return ActionContext(task_store=task_store, now=NOW, rule=rule, **overrides)


def test_move_to_top_places_card_above_siblings(task_store) -> None:
    """Moving to the top orders the card before existing cards."""
    _add_task(task_store, id="a", section_id="done", order=1)
    _add_task(task_store, id="b", section_id="done", order=2)
    task = _add_task(task_store, id="moving", section_id="todo", order=5)
    executor = ActionExecutor()

    result = executor.execute(
        MoveCardAction(type="move_card_to_top_of_section", section_id="done"),
        task,
        _context(task_store),
    )

    moved = task_store.get_task("moving")
    assert moved.section_id == "done"
    assert moved.order == 0
    assert moved.moved_to_section_at == NOW
    assert result.description == "Moved to top of 'Done'"
    assert result.task_name == "moving"


def test_move_to_bottom_of_empty_section(task_store) -> None:
    """The first card in a section gets order 1 at the bottom."""
    task = _add_task(task_store, id="moving")

    ActionExecutor().execute(
        MoveCardAction(type="move_card_to_bottom_of_section", section_id="doing"),
        task,
        _context(task_store),
    )

    assert task_store.get_task("moving").order == 1


def test_move_to_deleted_section_raises(task_store) -> None:
    """A missing target section is a section-not-found error."""
    task = _add_task(task_store, id="moving")

    with pytest.raises(SectionNotFoundError):
        ActionExecutor().execute(
            MoveCardAction(type="move_card_to_top_of_section", section_id="gone"),
            task,
            _context(task_store),
        )


def test_move_requires_a_task(task_store) -> None:
    """Card actions without a task are rejected."""
    with pytest.raises(AutomationValidationError):
        ActionExecutor().execute(
            MoveCardAction(type="move_card_to_top_of_section", section_id="done"),
            None,
            _context(task_store),
        )


def test_complete_cascades_and_undo_restores(task_store, make_rule) -> None:
    """Completing a card completes open subtasks; undo reverts both."""
    parent = _add_task(task_store, id="parent")
    _add_task(task_store, id="child", parent_task_id="parent")
    executor = ActionExecutor()
    rule = make_rule(action=CardStatusAction(type="mark_card_complete"))
    context = _context(task_store, rule)

    snapshot = executor.snapshot(rule, parent, context)
    executor.execute(rule.action, parent, context)

    assert task_store.get_task("parent").completed
    assert task_store.get_task("child").completed

    executor.undo(snapshot, task_store)

    assert not task_store.get_task("parent").completed
    assert not task_store.get_task("child").completed
    assert task_store.get_task("child").completed_at is None


def test_mark_incomplete_clears_completed_at(task_store) -> None:
    """Marking incomplete clears the completion time."""
    task = _add_task(task_store, id="done-task", completed=True, completed_at=NOW)

    result = ActionExecutor().execute(
        CardStatusAction(type="mark_card_incomplete"), task, _context(task_store)
    )

    stored = task_store.get_task("done-task")
    assert not stored.completed
    assert stored.completed_at is None
    assert result.description == "Marked as incomplete"


def test_set_and_remove_due_date(task_store) -> None:
    """Due dates resolve from options and can be removed."""
    task = _add_task(task_store, id="dated")
    executor = ActionExecutor()

    executor.execute(SetDueDateAction(date_option="tomorrow"), task, _context(task_store))
    assert task_store.get_task("dated").due_date == datetime(2024, 3, 7, tzinfo=timezone.utc)

    result = executor.execute(RemoveDueDateAction(), task, _context(task_store))
    assert task_store.get_task("dated").due_date is None
    assert result.description == "Removed due date"


def test_create_card_interpolates_title(task_store, make_rule) -> None:
    """Created cards use the interpolated title and go to the bottom."""
    _add_task(task_store, id="existing", section_id="todo", order=4)
    action = CreateCardAction(
        section_id="todo", card_title="Standup {{date}}", card_date_option="today"
    )

    result = ActionExecutor().execute(action, None, _context(task_store, make_rule(action=action)))

    created = task_store.get_task(result.created_task_id)
    assert created.description == "Standup 2024-03-06 (Wednesday)"
    assert created.order == 5
    assert created.due_date == datetime(2024, 3, 6, tzinfo=timezone.utc)
    assert result.description == "Created card 'Standup {{date}}'"


def test_create_card_dedup_for_scheduled_rules(task_store, make_rule) -> None:
    """Scheduled rules skip an identical card created within the lookback."""
    action = CreateCardAction(section_id="todo", card_title="Weekly review")
    rule = make_rule(
        trigger=ScheduledTrigger(schedule=CronSchedule(hour=9, minute=0)),
        action=action,
    )
    executor = ActionExecutor()

    first = executor.execute(action, None, _context(task_store, rule))
    second = executor.execute(action, None, _context(task_store, rule))

    assert not first.skipped
    assert second.skipped
    assert [t.description for t in task_store.list_tasks("project-1")] == ["Weekly review"]


def test_create_card_no_dedup_for_event_rules(task_store, make_rule) -> None:
    """Event-driven rules always create their card."""
    action = CreateCardAction(section_id="todo", card_title="Follow up")
    rule = make_rule(action=action)
    executor = ActionExecutor()

    executor.execute(action, None, _context(task_store, rule))
    executor.execute(action, None, _context(task_store, rule))

    assert len(task_store.list_tasks("project-1")) == 2


def test_create_card_resolves_trigger_section(task_store, make_rule) -> None:
    """The trigger-section placeholder resolves to the event's section."""
    action = CreateCardAction(section_id=TRIGGER_SECTION, card_title="Checklist")

    result = ActionExecutor().execute(
        action, None, _context(task_store, make_rule(action=action), trigger_section_id="doing")
    )

    assert task_store.get_task(result.created_task_id).section_id == "doing"


def test_create_card_undo_deletes_card(task_store, make_rule) -> None:
    """Undoing a create deletes the created card."""
    action = CreateCardAction(section_id="todo", card_title="Temp")
    rule = make_rule(action=action)
    executor = ActionExecutor()
    context = _context(task_store, rule)

    result = executor.execute(action, None, context)
    snapshot = executor.snapshot(rule, None, context)
    executor.undo(
        type(snapshot)(**{**snapshot.__dict__, "created_entity_id": result.created_task_id}),
        task_store,
    )

    assert task_store.get_task(result.created_task_id) is None


def test_interpolate_title_tokens() -> None:
    """All supported tokens are replaced; others are left alone."""
    title = interpolate_title("{{day}} {{weekday}} {{month}} {{other}}", NOW)

    assert title == "2024-03-06 Wednesday March {{other}}"


def test_dedup_lookback(make_rule) -> None:
    """Interval rules look back one minute less than their period."""
    interval = make_rule(trigger=ScheduledTrigger(schedule=IntervalSchedule(interval_minutes=30)))
    short = make_rule(trigger=ScheduledTrigger(schedule=IntervalSchedule(interval_minutes=5)))
    cron = make_rule(trigger=ScheduledTrigger(schedule=CronSchedule(hour=9, minute=0)))

    assert dedup_lookback(interval) == timedelta(minutes=29)
    assert dedup_lookback(short) == timedelta(minutes=4)
    assert dedup_lookback(cron) == timedelta(hours=24)


def test_executor_rejects_unknown_action_type(task_store) -> None:
    """Actions without a registered handler are validation errors."""
    with pytest.raises(AutomationValidationError):
        ActionExecutor(handlers={}).execute(RemoveDueDateAction(), None, _context(task_store))
