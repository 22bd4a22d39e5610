"""Bounded execution history and the single-slot undo store."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from automations.domain import ExecutionLogEntry, ExecutionType
from automations.errors import AutomationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 20
DEFAULT_MAX_DETAILS = 10
DEFAULT_UNDO_EXPIRY = timedelta(seconds=10)

SKIPPED_TRIGGER_DESCRIPTION = "Skipped (catch-up)"
SKIPPED_ACTION_DESCRIPTION = "Catch-up suppressed by skip_missed policy"


def append_log_entry(
    entries: Sequence[ExecutionLogEntry],
    entry: ExecutionLogEntry,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> list[ExecutionLogEntry]:
    """Append an entry and drop the oldest ones beyond ``max_entries``."""
    updated = [*entries, entry]
    if len(updated) > max_entries:
        updated = updated[len(updated) - max_entries :]
    return updated


def build_task_entry(
    *,
    timestamp: datetime,
    trigger_description: str,
    action_description: str,
    task_name: str,
    execution_type: ExecutionType = "event",
) -> ExecutionLogEntry:
    """Build a single-task entry as written for event-driven rules."""
    return ExecutionLogEntry(
        timestamp=timestamp,
        trigger_description=trigger_description,
        action_description=action_description,
        execution_type=execution_type,
        task_name=task_name,
    )


def build_aggregated_entry(
    *,
    timestamp: datetime,
    trigger_description: str,
    action_description: str,
    task_names: Sequence[str],
    execution_type: ExecutionType,
    max_details: int = DEFAULT_MAX_DETAILS,
) -> ExecutionLogEntry:
    """Build one entry summarizing a scheduled batch."""
    return ExecutionLogEntry(
        timestamp=timestamp,
        trigger_description=trigger_description,
        action_description=action_description,
        execution_type=execution_type,
        task_name=task_names[0] if task_names else None,
        match_count=len(task_names),
        details=list(task_names[:max_details]),
    )


def build_skipped_entry(timestamp: datetime) -> ExecutionLogEntry:
    return ExecutionLogEntry(
        timestamp=timestamp,
        trigger_description=SKIPPED_TRIGGER_DESCRIPTION,
        action_description=SKIPPED_ACTION_DESCRIPTION,
        execution_type="skipped",
    )


@dataclass(frozen=True)
class UndoSnapshot:
    """Pre-mutation state of the entity touched by the last automated action."""

    rule_id: str
    rule_name: str
    action_type: str
    target_entity_id: str
    previous_state: dict[str, Any]
    created_at: datetime
    created_entity_id: str | None = None
    subtask_states: tuple[tuple[str, dict[str, Any]], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class UndoResult:
    """Outcome of an undo attempt."""

    status: str
    snapshot: UndoSnapshot | None = None
    error: str | None = None


class UndoSlot:
    """Holds at most one undo snapshot, expiring lazily at read time."""

    def __init__(self, expiry: timedelta = DEFAULT_UNDO_EXPIRY) -> None:
        self._expiry = expiry
        self._snapshot: UndoSnapshot | None = None
        self._lock = threading.Lock()

    def store(self, snapshot: UndoSnapshot) -> None:
        """Replace any pending snapshot."""
        with self._lock:
            self._snapshot = snapshot

    def peek(self, now: datetime) -> UndoSnapshot | None:
        """Return the pending snapshot if it has not expired."""
        with self._lock:
            return self._current(now)

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None

    def take(self, now: datetime) -> UndoSnapshot | None:
        """Return the live snapshot and empty the slot."""
        with self._lock:
            snapshot = self._current(now)
            self._snapshot = None
            return snapshot

    def perform_undo(self, apply: Callable[[UndoSnapshot], None], now: datetime) -> UndoResult:
        """Apply the inverse of the pending snapshot and clear the slot.

        The slot is cleared whether or not ``apply`` succeeds; a failed undo
        is reported in the result, never retried.
        """
        snapshot = self.take(now)
        if snapshot is None:
            return UndoResult(status="nothing_to_undo")
        try:
            apply(snapshot)
        except AutomationError as exc:
            logger.warning(
                "Undo failed for rule %s (%s): %s",
                snapshot.rule_id,
                snapshot.action_type,
                exc.message,
            )
            return UndoResult(status="failed", snapshot=snapshot, error=exc.message)
        logger.info("Undid %s for rule %s", snapshot.action_type, snapshot.rule_id)
        return UndoResult(status="undone", snapshot=snapshot)

    def _current(self, now: datetime) -> UndoSnapshot | None:
        if self._snapshot is None:
            return None
        if now - self._snapshot.created_at > self._expiry:
            self._snapshot = None
            return None
        return self._snapshot
