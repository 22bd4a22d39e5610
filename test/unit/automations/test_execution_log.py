"""Unit tests for execution history and the undo slot."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from automations.domain import ExecutionLogEntry
from automations.errors import TaskNotFoundError
from automations.execution_log import (
    SKIPPED_TRIGGER_DESCRIPTION,
    UndoSlot,
    UndoSnapshot,
    append_log_entry,
    build_aggregated_entry,
    build_skipped_entry,
)

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


def _entry(index: int) -> ExecutionLogEntry:
    """Return a minimal history entry tagged with an index."""
    return ExecutionLogEntry(
        timestamp=NOW + timedelta(minutes=index),
        trigger_description="Card marked complete",
        action_description=f"action {index}",
        execution_type="event",
        task_name=f"Task {index}",
    )


def _snapshot(created_at: datetime = NOW) -> UndoSnapshot:
    """Return a move snapshot created at the given instant."""
    return UndoSnapshot(
        rule_id="rule-1",
        rule_name="Rule",
        action_type="move_card_to_top_of_section",
        target_entity_id="task-1",
        previous_state={"section_id": "todo", "order": 3},
        created_at=created_at,
    )


def test_append_log_entry_drops_oldest() -> None:
    """History keeps only the newest entries, most recent last."""
    entries: list[ExecutionLogEntry] = []
    for index in range(25):
        entries = append_log_entry(entries, _entry(index), max_entries=20)

    assert len(entries) == 20
    assert entries[0].action_description == "action 5"
    assert entries[-1].action_description == "action 24"


def test_build_aggregated_entry_caps_details() -> None:
    """Aggregated entries keep the full count but cap the detail list."""
    names = [f"Task {index}" for index in range(12)]

    entry = build_aggregated_entry(
        timestamp=NOW,
        trigger_description="Every 5 minutes",
        action_description="Marked as complete",
        task_names=names,
        execution_type="catch_up",
        max_details=10,
    )

    assert entry.match_count == 12
    assert entry.details == names[:10]
    assert entry.task_name == "Task 0"
    assert entry.execution_type == "catch_up"


def test_build_skipped_entry() -> None:
    """Skipped entries carry the skip descriptions and no task."""
    entry = build_skipped_entry(NOW)

    assert entry.execution_type == "skipped"
    assert entry.trigger_description == SKIPPED_TRIGGER_DESCRIPTION
    assert entry.task_name is None


def test_undo_slot_holds_one_snapshot() -> None:
    """Storing a snapshot replaces the previous one."""
    slot = UndoSlot(timedelta(seconds=10))
    slot.store(_snapshot())
    newer = UndoSnapshot(**{**_snapshot().__dict__, "rule_id": "rule-2"})
    slot.store(newer)

    assert slot.peek(NOW) == newer


def test_undo_slot_expires_lazily() -> None:
    """Snapshots older than the expiry are gone on the next read."""
    slot = UndoSlot(timedelta(seconds=10))
    slot.store(_snapshot())

    assert slot.peek(NOW + timedelta(seconds=10)) is not None
    assert slot.peek(NOW + timedelta(seconds=11)) is None
    assert slot.peek(NOW) is None


def test_perform_undo_applies_and_clears() -> None:
    """A successful undo applies the snapshot once."""
    slot = UndoSlot(timedelta(seconds=10))
    slot.store(_snapshot())
    applied: list[UndoSnapshot] = []

    result = slot.perform_undo(applied.append, NOW + timedelta(seconds=1))

    assert result.status == "undone"
    assert applied == [_snapshot()]
    assert slot.perform_undo(applied.append, NOW).status == "nothing_to_undo"


def test_perform_undo_failure_still_clears() -> None:
    """A failed undo is reported and the slot is emptied."""
    slot = UndoSlot(timedelta(seconds=10))
    slot.store(_snapshot())

    def fail(snapshot: UndoSnapshot) -> None:
        raise TaskNotFoundError("Task no longer exists.", {"task_id": snapshot.target_entity_id})

    result = slot.perform_undo(fail, NOW)

    assert result.status == "failed"
    assert result.error == "Task no longer exists."
    assert slot.peek(NOW) is None
