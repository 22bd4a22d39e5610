"""Rule and task store contracts with SQLAlchemy implementations.

The engine talks to storage only through ``RuleStore`` and ``TaskStore``.
The SQLAlchemy stores keep rule ``order`` values dense (0..N-1 per project)
after create, delete and reorder.
"""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Callable, Protocol

from pydantic import TypeAdapter
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from automations.domain import (
    Action,
    AutomationRule,
    CardFilter,
    ExecutionLogEntry,
    SectionRecord,
    TaskRecord,
    Trigger,
)
from automations.errors import RuleNotFoundError, TaskNotFoundError
from models import AutomationRule as AutomationRuleRow
from models import Section as SectionRow
from models import Task as TaskRow
from time_utils import ensure_aware, ensure_utc, utc_now

logger = logging.getLogger(__name__)

UNSET = object()

_TRIGGER_ADAPTER: TypeAdapter[Trigger] = TypeAdapter(Trigger)
_ACTION_ADAPTER: TypeAdapter[Action] = TypeAdapter(Action)
_FILTERS_ADAPTER: TypeAdapter[list[CardFilter]] = TypeAdapter(list[CardFilter])
_ENTRIES_ADAPTER: TypeAdapter[list[ExecutionLogEntry]] = TypeAdapter(list[ExecutionLogEntry])


@dataclass(frozen=True)
class RuleUpdate:
    """Partial update for a rule; fields left as ``UNSET`` are not touched."""

    name: object = UNSET
    trigger: object = UNSET
    filters: object = UNSET
    action: object = UNSET
    enabled: object = UNSET
    broken_reason: object = UNSET
    execution_count: object = UNSET
    last_executed_at: object = UNSET
    recent_executions: object = UNSET
    bulk_paused_at: object = UNSET

    def changed_fields(self) -> dict[str, Any]:
        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not UNSET
        }


@dataclass(frozen=True)
class TaskUpdate:
    """Partial update for a task; fields left as ``UNSET`` are not touched."""

    section_id: object = UNSET
    order: object = UNSET
    completed: object = UNSET
    completed_at: object = UNSET
    due_date: object = UNSET
    moved_to_section_at: object = UNSET
    updated_at: object = UNSET

    def changed_fields(self) -> dict[str, Any]:
        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not UNSET
        }


RuleListener = Callable[[list[AutomationRule]], None]


class RuleStore(Protocol):
    """Persistence contract for automation rules."""

    def find_by_id(self, rule_id: str) -> AutomationRule | None:
        """Return a rule by id."""

    def find_by_project_id(self, project_id: str) -> list[AutomationRule]:
        """Return a project's rules in display order."""

    def find_all(self) -> list[AutomationRule]:
        """Return every rule across projects."""

    def create(self, rule: AutomationRule) -> AutomationRule:
        """Persist a new rule at the end of its project's order."""

    def update(self, rule_id: str, update: RuleUpdate) -> AutomationRule:
        """Apply a partial update and return the stored rule."""

    def delete(self, rule_id: str) -> None:
        """Delete a rule and close the gap in its project's order."""

    def reorder(self, project_id: str, ordered_ids: list[str]) -> list[AutomationRule]:
        """Assign order values following ``ordered_ids``."""

    def subscribe(self, listener: RuleListener) -> Callable[[], None]:
        """Register a change listener and return an unsubscribe callable."""


class TaskStore(Protocol):
    """Task and section access used by filters and actions."""

    def get_task(self, task_id: str) -> TaskRecord | None:
        """Return a task snapshot by id."""

    def list_tasks(self, project_id: str | None = None) -> list[TaskRecord]:
        """Return task snapshots, optionally limited to one project."""

    def get_section(self, section_id: str) -> SectionRecord | None:
        """Return a section snapshot by id."""

    def list_sections(self, project_id: str | None = None) -> list[SectionRecord]:
        """Return section snapshots, optionally limited to one project."""

    def create_task(self, task: TaskRecord) -> TaskRecord:
        """Persist a new task."""

    def update_task(self, task_id: str, update: TaskUpdate) -> TaskRecord:
        """Apply a partial update to a task."""

    def delete_task(self, task_id: str) -> None:
        """Delete a task."""


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def _to_storage(value: Any) -> Any:
    """Store instants in UTC; SQLite keeps only the wall-clock value."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


def rule_from_row(row: AutomationRuleRow) -> AutomationRule:
    """Build a domain rule from a stored row."""
    return AutomationRule(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        trigger=_TRIGGER_ADAPTER.validate_python(row.trigger),
        filters=_FILTERS_ADAPTER.validate_python(row.filters or []),
        action=_ACTION_ADAPTER.validate_python(row.action),
        enabled=row.enabled,
        broken_reason=row.broken_reason,
        execution_count=row.execution_count,
        last_executed_at=ensure_aware(row.last_executed_at),
        recent_executions=_ENTRIES_ADAPTER.validate_python(row.recent_executions or []),
        bulk_paused_at=ensure_aware(row.bulk_paused_at),
        order=row.order,
        created_at=ensure_aware(row.created_at),
        updated_at=ensure_aware(row.updated_at),
    )


def _apply_rule_fields(row: AutomationRuleRow, values: dict[str, Any]) -> None:
    for name, value in values.items():
        if name == "trigger":
            row.trigger = _TRIGGER_ADAPTER.dump_python(value, mode="json")
            row.trigger_type = value.type
        elif name == "action":
            row.action = _ACTION_ADAPTER.dump_python(value, mode="json")
        elif name == "filters":
            row.filters = _FILTERS_ADAPTER.dump_python(list(value), mode="json")
        elif name == "recent_executions":
            row.recent_executions = _ENTRIES_ADAPTER.dump_python(list(value), mode="json")
        else:
            setattr(row, name, _to_storage(value))


def task_from_row(row: TaskRow) -> TaskRecord:
    """Build a task snapshot from a stored row."""
    return TaskRecord(
        id=row.id,
        project_id=row.project_id,
        description=row.description,
        section_id=row.section_id,
        parent_task_id=row.parent_task_id,
        completed=row.completed,
        completed_at=ensure_aware(row.completed_at),
        due_date=ensure_aware(row.due_date),
        order=row.order,
        created_at=ensure_aware(row.created_at),
        updated_at=ensure_aware(row.updated_at),
        moved_to_section_at=ensure_aware(row.moved_to_section_at),
    )


def section_from_row(row: SectionRow) -> SectionRecord:
    return SectionRecord(id=row.id, project_id=row.project_id, name=row.name, order=row.order)


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------


class SqlAlchemyRuleStore:
    """Rule store backed by the ``automation_rules`` table."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._now_provider = now_provider
        self._listeners: list[RuleListener] = []
        self._listeners_lock = threading.Lock()

    def find_by_id(self, rule_id: str) -> AutomationRule | None:
        with closing(self._session_factory()) as session:
            row = session.get(AutomationRuleRow, rule_id)
            return rule_from_row(row) if row is not None else None

    def find_by_project_id(self, project_id: str) -> list[AutomationRule]:
        with closing(self._session_factory()) as session:
            rows = session.scalars(
                select(AutomationRuleRow)
                .where(AutomationRuleRow.project_id == project_id)
                .order_by(AutomationRuleRow.order, AutomationRuleRow.created_at)
            ).all()
            return [rule_from_row(row) for row in rows]

    def find_all(self) -> list[AutomationRule]:
        with closing(self._session_factory()) as session:
            rows = session.scalars(
                select(AutomationRuleRow).order_by(
                    AutomationRuleRow.project_id, AutomationRuleRow.order
                )
            ).all()
            return [rule_from_row(row) for row in rows]

    def create(self, rule: AutomationRule) -> AutomationRule:
        with closing(self._session_factory()) as session:
            count = session.scalar(
                select(func.count())
                .select_from(AutomationRuleRow)
                .where(AutomationRuleRow.project_id == rule.project_id)
            )
            row = AutomationRuleRow(
                id=rule.id,
                project_id=rule.project_id,
                order=count or 0,
                created_at=_to_storage(rule.created_at),
                updated_at=_to_storage(rule.updated_at),
            )
            _apply_rule_fields(
                row,
                {
                    "name": rule.name,
                    "trigger": rule.trigger,
                    "filters": rule.filters,
                    "action": rule.action,
                    "enabled": rule.enabled,
                    "broken_reason": rule.broken_reason,
                    "execution_count": rule.execution_count,
                    "last_executed_at": rule.last_executed_at,
                    "recent_executions": rule.recent_executions,
                    "bulk_paused_at": rule.bulk_paused_at,
                },
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            created = rule_from_row(row)
        self._notify(created.project_id)
        return created

    def update(self, rule_id: str, update: RuleUpdate) -> AutomationRule:
        changes = update.changed_fields()
        with closing(self._session_factory()) as session:
            row = session.get(AutomationRuleRow, rule_id)
            if row is None:
                raise RuleNotFoundError("Rule not found.", {"rule_id": rule_id})
            _apply_rule_fields(row, changes)
            row.updated_at = self._now_provider()
            session.commit()
            session.refresh(row)
            updated = rule_from_row(row)
        logger.debug("Updated rule %s fields=%s", rule_id, sorted(changes))
        self._notify(updated.project_id)
        return updated

    def delete(self, rule_id: str) -> None:
        with closing(self._session_factory()) as session:
            row = session.get(AutomationRuleRow, rule_id)
            if row is None:
                raise RuleNotFoundError("Rule not found.", {"rule_id": rule_id})
            project_id = row.project_id
            session.delete(row)
            session.flush()
            self._renumber(session, project_id)
            session.commit()
        self._notify(project_id)

    def reorder(self, project_id: str, ordered_ids: list[str]) -> list[AutomationRule]:
        with closing(self._session_factory()) as session:
            rows = session.scalars(
                select(AutomationRuleRow)
                .where(AutomationRuleRow.project_id == project_id)
                .order_by(AutomationRuleRow.order)
            ).all()
            by_id = {row.id: row for row in rows}
            # Ids not mentioned keep their relative order after the listed ones.
            ordered = [by_id[rule_id] for rule_id in ordered_ids if rule_id in by_id]
            listed = set(ordered_ids)
            ordered.extend(row for row in rows if row.id not in listed)
            for index, row in enumerate(ordered):
                row.order = index
            session.commit()
            result = [rule_from_row(row) for row in ordered]
        self._notify(project_id)
        return result

    def subscribe(self, listener: RuleListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _renumber(self, session: Session, project_id: str) -> None:
        rows = session.scalars(
            select(AutomationRuleRow)
            .where(AutomationRuleRow.project_id == project_id)
            .order_by(AutomationRuleRow.order, AutomationRuleRow.created_at)
        ).all()
        for index, row in enumerate(rows):
            row.order = index

    def _notify(self, project_id: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        rules = self.find_by_project_id(project_id)
        for listener in listeners:
            try:
                listener(rules)
            except Exception:
                logger.exception("Rule store listener failed for project %s", project_id)


class SqlAlchemyTaskStore:
    """Task store backed by the ``tasks`` and ``sections`` tables."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_task(self, task_id: str) -> TaskRecord | None:
        with closing(self._session_factory()) as session:
            row = session.get(TaskRow, task_id)
            return task_from_row(row) if row is not None else None

    def list_tasks(self, project_id: str | None = None) -> list[TaskRecord]:
        with closing(self._session_factory()) as session:
            query = select(TaskRow).order_by(TaskRow.order)
            if project_id is not None:
                query = query.where(TaskRow.project_id == project_id)
            return [task_from_row(row) for row in session.scalars(query).all()]

    def get_section(self, section_id: str) -> SectionRecord | None:
        with closing(self._session_factory()) as session:
            row = session.get(SectionRow, section_id)
            return section_from_row(row) if row is not None else None

    def list_sections(self, project_id: str | None = None) -> list[SectionRecord]:
        with closing(self._session_factory()) as session:
            query = select(SectionRow).order_by(SectionRow.order)
            if project_id is not None:
                query = query.where(SectionRow.project_id == project_id)
            return [section_from_row(row) for row in session.scalars(query).all()]

    def create_task(self, task: TaskRecord) -> TaskRecord:
        with closing(self._session_factory()) as session:
            row = TaskRow(
                id=task.id,
                project_id=task.project_id,
                section_id=task.section_id,
                parent_task_id=task.parent_task_id,
                description=task.description,
                completed=task.completed,
                completed_at=_to_storage(task.completed_at),
                due_date=_to_storage(task.due_date),
                order=task.order,
                created_at=_to_storage(task.created_at),
                updated_at=_to_storage(task.updated_at or task.created_at),
                moved_to_section_at=_to_storage(task.moved_to_section_at),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return task_from_row(row)

    def update_task(self, task_id: str, update: TaskUpdate) -> TaskRecord:
        with closing(self._session_factory()) as session:
            row = session.get(TaskRow, task_id)
            if row is None:
                raise TaskNotFoundError("Task not found.", {"task_id": task_id})
            for name, value in update.changed_fields().items():
                setattr(row, name, _to_storage(value))
            session.commit()
            session.refresh(row)
            return task_from_row(row)

    def delete_task(self, task_id: str) -> None:
        with closing(self._session_factory()) as session:
            row = session.get(TaskRow, task_id)
            if row is None:
                raise TaskNotFoundError("Task not found.", {"task_id": task_id})
            session.delete(row)
            session.commit()

    def create_section(self, section: SectionRecord) -> SectionRecord:
        with closing(self._session_factory()) as session:
            row = SectionRow(
                id=section.id,
                project_id=section.project_id,
                name=section.name,
                order=section.order,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return section_from_row(row)

    def delete_section(self, section_id: str) -> None:
        """Delete a section; tasks keep their dangling ``section_id``."""
        with closing(self._session_factory()) as session:
            row = session.get(SectionRow, section_id)
            if row is None:
                return
            session.delete(row)
            session.commit()
