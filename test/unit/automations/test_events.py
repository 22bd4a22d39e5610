"""Unit tests for deriving domain events from entity changes."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from automations.domain import SectionRecord
from automations.events import events_from_section_change, events_from_task_change

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


def test_section_move_yields_out_then_in(make_task) -> None:
    """Moving a card emits the exit event before the entry event."""
    before = make_task(id="card", section_id="todo")
    after = replace(before, section_id="doing")

    events = events_from_task_change(before, after, NOW)

    assert [(event.type, event.section_id) for event in events] == [
        ("card_moved_out_of_section", "todo"),
        ("card_moved_into_section", "doing"),
    ]
    assert all(event.task == after for event in events)


def test_new_task_only_moves_in(make_task) -> None:
    """A created task has no previous section to leave."""
    after = make_task(id="card", section_id="todo")

    events = events_from_task_change(None, after, NOW)

    assert [event.type for event in events] == ["card_moved_into_section"]


def test_completion_changes(make_task) -> None:
    """Completion toggles emit complete or incomplete events."""
    open_task = make_task(id="card")
    done = replace(open_task, completed=True)

    completed = events_from_task_change(open_task, done, NOW)
    reopened = events_from_task_change(done, open_task, NOW)

    assert [(event.type, event.section_id) for event in completed] == [
        ("card_marked_complete", "todo")
    ]
    assert [event.type for event in reopened] == ["card_marked_incomplete"]


def test_unchanged_task_yields_nothing(make_task) -> None:
    """Edits that touch neither section nor completion emit no events."""
    before = make_task(id="card")
    after = replace(before, description="Renamed")

    assert events_from_task_change(before, after, NOW) == []


def test_section_changes() -> None:
    """Creating or renaming a section emits a section event."""
    created = SectionRecord(id="review", project_id="project-1", name="Review", order=3)
    renamed = replace(created, name="QA")

    assert [event.type for event in events_from_section_change(None, created, NOW)] == [
        "section_created"
    ]
    assert [event.type for event in events_from_section_change(created, renamed, NOW)] == [
        "section_renamed"
    ]
    assert events_from_section_change(created, created, NOW) == []
