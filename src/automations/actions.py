"""Action execution through a handler registry keyed by action type.

Handlers decide how an action mutates the board, never whether it should
run. Each handler can snapshot the fields it is about to change so the engine
can offer a single-step undo, describe itself for history entries, and apply
the inverse of a snapshot.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from automations.date_options import resolve_date_option
from automations.domain import (
    TRIGGER_SECTION,
    Action,
    AutomationRule,
    CreateCardAction,
    MoveCardAction,
    ScheduledTrigger,
    SetDueDateAction,
    TaskRecord,
)
from automations.errors import AutomationValidationError, SectionNotFoundError, TaskNotFoundError
from automations.execution_log import UndoSnapshot
from automations.stores import TaskStore, TaskUpdate

logger = logging.getLogger(__name__)

_WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

DEFAULT_DEDUP_LOOKBACK = timedelta(hours=24)


@dataclass(frozen=True)
class ActionContext:
    """Inputs an action needs besides the action and the target task."""

    task_store: TaskStore
    now: datetime
    rule: AutomationRule | None = None
    trigger_section_id: str | None = None
    dedup_enabled: bool = True


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one action execution."""

    description: str
    mutated_fields: dict[str, Any] = field(default_factory=dict)
    created_task_id: str | None = None
    task_name: str | None = None
    skipped: bool = False


class ActionHandler(Protocol):
    """Strategy for one action type."""

    def execute(self, action: Action, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        ...

    def snapshot(self, action: Action, task: TaskRecord | None, context: ActionContext) -> dict[str, Any]:
        ...

    def describe(self, action: Action, section_lookup: Callable[[str], str | None]) -> str:
        ...

    def undo(self, snapshot: UndoSnapshot, task_store: TaskStore) -> None:
        ...


def interpolate_title(template: str, now: datetime) -> str:
    """Replace ``{{date}}``, ``{{day}}``, ``{{weekday}}`` and ``{{month}}`` tokens.

    ``{{date}}`` renders as ``YYYY-MM-DD (Weekday)``; ``{{day}}`` is the bare
    ISO date. Unknown tokens are left untouched.
    """
    iso_day = now.date().isoformat()
    weekday = _WEEKDAY_NAMES[now.weekday()]
    return (
        template.replace("{{date}}", f"{iso_day} ({weekday})")
        .replace("{{day}}", iso_day)
        .replace("{{weekday}}", weekday)
        .replace("{{month}}", _MONTH_NAMES[now.month - 1])
    )


def dedup_lookback(rule: AutomationRule | None) -> timedelta:
    """Return how far back an identical card suppresses a scheduled create.

    Interval rules use one tick less than their period so timing jitter does
    not block the next legitimate run; other schedules use a day.
    """
    if rule is not None and isinstance(rule.trigger, ScheduledTrigger):
        schedule = rule.trigger.schedule
        if schedule.kind == "interval":
            return max(timedelta(minutes=schedule.interval_minutes - 1), timedelta(minutes=1))
    return DEFAULT_DEDUP_LOOKBACK


def should_skip_create_card(
    title: str,
    section_id: str,
    tasks: list[TaskRecord],
    lookback: timedelta,
    now: datetime,
) -> bool:
    """Return True when a card with the same title was created recently."""
    return any(
        task.description == title
        and task.section_id == section_id
        and task.created_at is not None
        and now - task.created_at < lookback
        for task in tasks
    )


def _require_task(task: TaskRecord | None) -> TaskRecord:
    if task is None:
        raise AutomationValidationError("Action requires a target task.")
    return task


def _require_section(task_store: TaskStore, section_id: str | None) -> str:
    if not section_id or task_store.get_section(section_id) is None:
        raise SectionNotFoundError(
            "Referenced section no longer exists.", {"section_id": section_id}
        )
    return section_id


def _require_existing_task(task_store: TaskStore, task_id: str) -> TaskRecord:
    current = task_store.get_task(task_id)
    if current is None:
        raise TaskNotFoundError("Task no longer exists.", {"task_id": task_id})
    return current


class MoveToSectionHandler:
    """Move a card to the top or bottom of a section."""

    def __init__(self, position: str) -> None:
        self.position = position

    def execute(self, action: MoveCardAction, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        task = _require_task(task)
        store = context.task_store
        section_id = _require_section(store, action.section_id)
        current = _require_existing_task(store, task.id)
        siblings = [
            other.order
            for other in store.list_tasks(current.project_id)
            if other.section_id == section_id and other.id != current.id
        ]
        if self.position == "top":
            new_order = min(siblings) - 1 if siblings else -1
        else:
            new_order = max(siblings) + 1 if siblings else 1

        changes: dict[str, Any] = {"section_id": section_id, "order": new_order}
        if current.section_id != section_id:
            changes["moved_to_section_at"] = context.now
        store.update_task(current.id, TaskUpdate(updated_at=context.now, **changes))
        return ActionResult(
            description=self.describe(action, lambda sid: _section_name(store, sid)),
            mutated_fields=changes,
            task_name=current.description,
        )

    def snapshot(self, action: MoveCardAction, task: TaskRecord | None, context: ActionContext) -> dict[str, Any]:
        task = _require_task(task)
        return {
            "section_id": task.section_id,
            "order": task.order,
            "moved_to_section_at": task.moved_to_section_at,
        }

    def describe(self, action: MoveCardAction, section_lookup: Callable[[str], str | None]) -> str:
        name = section_lookup(action.section_id)
        if name is None:
            return f"Moved to {self.position} of section"
        return f"Moved to {self.position} of '{name}'"

    def undo(self, snapshot: UndoSnapshot, task_store: TaskStore) -> None:
        _require_existing_task(task_store, snapshot.target_entity_id)
        task_store.update_task(snapshot.target_entity_id, TaskUpdate(**snapshot.previous_state))


class CompletionHandler:
    """Mark a card complete or incomplete.

    Completing a card also completes its open subtasks.
    """

    def __init__(self, completed: bool) -> None:
        self.completed = completed

    def execute(self, action: Action, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        task = _require_task(task)
        store = context.task_store
        current = _require_existing_task(store, task.id)
        completed_at = context.now if self.completed else None
        changes = {"completed": self.completed, "completed_at": completed_at}
        store.update_task(current.id, TaskUpdate(updated_at=context.now, **changes))
        if self.completed:
            for subtask in self._open_subtasks(store, current):
                store.update_task(
                    subtask.id,
                    TaskUpdate(completed=True, completed_at=completed_at, updated_at=context.now),
                )
        return ActionResult(
            description=self.describe(action, lambda sid: None),
            mutated_fields=changes,
            task_name=current.description,
        )

    def snapshot(self, action: Action, task: TaskRecord | None, context: ActionContext) -> dict[str, Any]:
        task = _require_task(task)
        return {"completed": task.completed, "completed_at": task.completed_at}

    def subtask_snapshots(self, task: TaskRecord, task_store: TaskStore) -> tuple[tuple[str, dict[str, Any]], ...]:
        if not self.completed:
            return ()
        return tuple(
            (subtask.id, {"completed": subtask.completed, "completed_at": subtask.completed_at})
            for subtask in self._open_subtasks(task_store, task)
        )

    def describe(self, action: Action, section_lookup: Callable[[str], str | None]) -> str:
        return "Marked as complete" if self.completed else "Marked as incomplete"

    def undo(self, snapshot: UndoSnapshot, task_store: TaskStore) -> None:
        _require_existing_task(task_store, snapshot.target_entity_id)
        task_store.update_task(snapshot.target_entity_id, TaskUpdate(**snapshot.previous_state))
        for subtask_id, state in snapshot.subtask_states:
            if task_store.get_task(subtask_id) is None:
                continue
            task_store.update_task(subtask_id, TaskUpdate(**state))

    @staticmethod
    def _open_subtasks(task_store: TaskStore, task: TaskRecord) -> list[TaskRecord]:
        return [
            other
            for other in task_store.list_tasks(task.project_id)
            if other.parent_task_id == task.id and not other.completed
        ]


class SetDueDateHandler:
    def execute(self, action: SetDueDateAction, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        task = _require_task(task)
        store = context.task_store
        current = _require_existing_task(store, task.id)
        due_date = resolve_date_option(
            action.date_option,
            context.now,
            specific_month=action.specific_month,
            specific_day=action.specific_day,
            month_target=action.month_target,
        )
        store.update_task(current.id, TaskUpdate(due_date=due_date, updated_at=context.now))
        return ActionResult(
            description=self.describe(action, lambda sid: None),
            mutated_fields={"due_date": due_date},
            task_name=current.description,
        )

    def snapshot(self, action: Action, task: TaskRecord | None, context: ActionContext) -> dict[str, Any]:
        return {"due_date": _require_task(task).due_date}

    def describe(self, action: Action, section_lookup: Callable[[str], str | None]) -> str:
        return "Set due date"

    def undo(self, snapshot: UndoSnapshot, task_store: TaskStore) -> None:
        _require_existing_task(task_store, snapshot.target_entity_id)
        task_store.update_task(snapshot.target_entity_id, TaskUpdate(**snapshot.previous_state))


class RemoveDueDateHandler(SetDueDateHandler):
    def execute(self, action: Action, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        task = _require_task(task)
        store = context.task_store
        current = _require_existing_task(store, task.id)
        store.update_task(current.id, TaskUpdate(due_date=None, updated_at=context.now))
        return ActionResult(
            description=self.describe(action, lambda sid: None),
            mutated_fields={"due_date": None},
            task_name=current.description,
        )

    def describe(self, action: Action, section_lookup: Callable[[str], str | None]) -> str:
        return "Removed due date"


class CreateCardHandler:
    """Create a new card in a target section.

    Scheduled rules skip creation when an identical card was created in the
    same section within the dedup lookback.
    """

    def execute(self, action: CreateCardAction, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        store = context.task_store
        section_id = action.section_id
        if section_id == TRIGGER_SECTION:
            section_id = context.trigger_section_id
        section_id = _require_section(store, section_id)
        section = store.get_section(section_id)

        title = interpolate_title(action.card_title, context.now)
        project_tasks = store.list_tasks(section.project_id)
        if (
            context.dedup_enabled
            and context.rule is not None
            and context.rule.is_scheduled
            and should_skip_create_card(
                title, section_id, project_tasks, dedup_lookback(context.rule), context.now
            )
        ):
            logger.info("Skipping duplicate card %r in section %s", title, section_id)
            return ActionResult(
                description=self.describe(action, lambda sid: None),
                task_name=title,
                skipped=True,
            )

        due_date = None
        if action.card_date_option:
            due_date = resolve_date_option(
                action.card_date_option,
                context.now,
                specific_month=action.specific_month,
                specific_day=action.specific_day,
                month_target=action.month_target,
            )
        in_section = [other.order for other in project_tasks if other.section_id == section_id]
        created = store.create_task(
            TaskRecord(
                id=str(uuid.uuid4()),
                project_id=section.project_id,
                description=title,
                section_id=section_id,
                due_date=due_date,
                order=(max(in_section) if in_section else 0) + 1,
                created_at=context.now,
                updated_at=context.now,
                moved_to_section_at=context.now,
            )
        )
        return ActionResult(
            description=self.describe(action, lambda sid: None),
            mutated_fields={"section_id": section_id, "description": title, "due_date": due_date},
            created_task_id=created.id,
            task_name=created.description,
        )

    def snapshot(self, action: Action, task: TaskRecord | None, context: ActionContext) -> dict[str, Any]:
        return {}

    def describe(self, action: CreateCardAction, section_lookup: Callable[[str], str | None]) -> str:
        return f"Created card '{action.card_title}'"

    def undo(self, snapshot: UndoSnapshot, task_store: TaskStore) -> None:
        task_store.delete_task(snapshot.created_entity_id or snapshot.target_entity_id)


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "move_card_to_top_of_section": MoveToSectionHandler("top"),
    "move_card_to_bottom_of_section": MoveToSectionHandler("bottom"),
    "mark_card_complete": CompletionHandler(True),
    "mark_card_incomplete": CompletionHandler(False),
    "set_due_date": SetDueDateHandler(),
    "remove_due_date": RemoveDueDateHandler(),
    "create_card": CreateCardHandler(),
}


def _section_name(task_store: TaskStore, section_id: str) -> str | None:
    section = task_store.get_section(section_id)
    return section.name if section is not None else None


class ActionExecutor:
    """Dispatch actions to their registered handlers."""

    def __init__(self, handlers: dict[str, ActionHandler] | None = None) -> None:
        self._handlers = handlers if handlers is not None else ACTION_HANDLERS

    def _handler(self, action_type: str) -> ActionHandler:
        handler = self._handlers.get(action_type)
        if handler is None:
            raise AutomationValidationError(
                f"Unknown action type: {action_type}", {"action_type": action_type}
            )
        return handler

    def execute(self, action: Action, task: TaskRecord | None, context: ActionContext) -> ActionResult:
        """Apply ``action`` to ``task`` and return what changed."""
        return self._handler(action.type).execute(action, task, context)

    def snapshot(
        self,
        rule: AutomationRule,
        task: TaskRecord | None,
        context: ActionContext,
    ) -> UndoSnapshot:
        """Capture the fields ``rule``'s action is about to change."""
        handler = self._handler(rule.action.type)
        subtask_states: tuple[tuple[str, dict[str, Any]], ...] = ()
        if isinstance(handler, CompletionHandler) and task is not None:
            subtask_states = handler.subtask_snapshots(task, context.task_store)
        return UndoSnapshot(
            rule_id=rule.id,
            rule_name=rule.name,
            action_type=rule.action.type,
            target_entity_id=task.id if task is not None else "",
            previous_state=handler.snapshot(rule.action, task, context),
            created_at=context.now,
            subtask_states=subtask_states,
        )

    def describe(self, action: Action, section_lookup: Callable[[str], str | None]) -> str:
        """Describe ``action`` as recorded in execution history."""
        return self._handler(action.type).describe(action, section_lookup)

    def undo(self, snapshot: UndoSnapshot, task_store: TaskStore) -> None:
        """Apply the inverse of ``snapshot``."""
        self._handler(snapshot.action_type).undo(snapshot, task_store)
