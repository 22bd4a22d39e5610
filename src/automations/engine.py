"""Rule evaluation engine for event-driven and scheduled automation rules.

The engine selects matching tasks, dispatches actions through the executor,
records history and maintains rule metadata. All read-modify-write cycles on a
rule happen under ``self.lock``; the scheduler and bulk operations share the
same lock so manual runs and bulk toggles never lose updates made by a tick.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Iterable

from automations.actions import ActionContext, ActionExecutor, ActionResult
from automations.clock import Clock, system_clock
from automations.descriptions import describe_trigger
from automations.domain import (
    AutomationRule,
    DomainEvent,
    EventTrigger,
    ScheduledTrigger,
    SectionRecord,
    TaskRecord,
)
from automations.errors import (
    AutomationError,
    AutomationValidationError,
    RuleNotFoundError,
    SectionNotFoundError,
)
from automations.execution_log import (
    UndoResult,
    UndoSlot,
    append_log_entry,
    build_aggregated_entry,
    build_skipped_entry,
    build_task_entry,
)
from automations.filters import evaluate_filters
from automations.schedule_evaluation import (
    due_date_trigger_time,
    due_date_trigger_window,
    evaluate_schedule,
)
from automations.stores import RuleStore, RuleUpdate, TaskStore
from config import settings
from logging_config import log_context

logger = logging.getLogger(__name__)

BROKEN_SECTION_DELETED = "section_deleted"

ErrorReporter = Callable[[AutomationRule, Exception], None]


@dataclass(frozen=True)
class EventExecutionResult:
    """Outcome of one event-driven rule."""

    rule_id: str
    status: str
    description: str | None = None
    task_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ScheduledEvaluationResult:
    """Outcome of one scheduled evaluation cycle for a rule.

    ``status`` is one of ``inactive``, ``not_due``, ``no_matches``,
    ``executed``, ``skipped``, ``failed`` or ``broken``.
    """

    rule_id: str
    status: str
    execution_type: str | None = None
    match_count: int = 0
    succeeded_count: int = 0
    affected_task_ids: list[str] = field(default_factory=list)
    failed_task_ids: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def fired(self) -> bool:
        return self.status in {"executed", "skipped"}


@dataclass(frozen=True)
class DryRunResult:
    """Preview of what a rule would do without touching any state."""

    matching_tasks: list[TaskRecord]
    action_description: str
    total_count: int


class RuleEngine:
    """Evaluate rules against events and schedules and apply their actions."""

    def __init__(
        self,
        rule_store: RuleStore,
        task_store: TaskStore,
        *,
        executor: ActionExecutor | None = None,
        undo_slot: UndoSlot | None = None,
        clock: Clock = system_clock,
        tick_period: timedelta | None = None,
        max_entries: int | None = None,
        max_details: int | None = None,
        dedup_enabled: bool | None = None,
        error_reporter: ErrorReporter | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self.rule_store = rule_store
        self.task_store = task_store
        self.executor = executor or ActionExecutor()
        self.undo_slot = undo_slot or UndoSlot(timedelta(seconds=settings.undo.expiry_seconds))
        self.clock = clock
        self.tick_period = tick_period or timedelta(seconds=settings.scheduler.tick_seconds)
        self.max_entries = max_entries or settings.execution_log.max_entries
        self.max_details = max_details or settings.execution_log.max_details
        self.dedup_enabled = (
            settings.create_card.dedup_enabled if dedup_enabled is None else dedup_enabled
        )
        self.error_reporter = error_reporter
        self.lock = lock or threading.RLock()

    # ------------------------------------------------------------------
    # Event-driven rules
    # ------------------------------------------------------------------

    def evaluate(
        self,
        event: DomainEvent,
        rules: Iterable[AutomationRule] | None = None,
    ) -> list[EventExecutionResult]:
        """Run every enabled rule whose trigger matches ``event``.

        Each matching rule fires independently; there is no priority between
        rules targeting the same task.
        """
        if rules is None:
            rules = self.rule_store.find_by_project_id(event.project_id)
        results: list[EventExecutionResult] = []
        for rule in rules:
            if not self._trigger_matches(rule, event):
                continue
            result = self._run_event_rule(rule, event)
            if result is not None:
                results.append(result)
        return results

    def _trigger_matches(self, rule: AutomationRule, event: DomainEvent) -> bool:
        if not rule.is_active or not isinstance(rule.trigger, EventTrigger):
            return False
        if rule.project_id != event.project_id or rule.trigger.type != event.type:
            return False
        if rule.trigger.section_id is not None and rule.trigger.section_id != event.section_id:
            return False
        return True

    def _run_event_rule(self, rule: AutomationRule, event: DomainEvent) -> EventExecutionResult | None:
        with self.lock, log_context({"rule_id": rule.id, "project_id": rule.project_id}):
            current = self.rule_store.find_by_id(rule.id)
            if current is None or not current.is_active:
                return None
            now = self.clock()
            try:
                if event.task is None:
                    # Section events carry no card, so only unfiltered rules apply.
                    if current.filters:
                        return None
                elif not evaluate_filters(current.filters, event.task, now):
                    return None
                context = ActionContext(
                    task_store=self.task_store,
                    now=now,
                    rule=current,
                    trigger_section_id=event.section_id,
                    dedup_enabled=self.dedup_enabled,
                )
                result = self._execute_with_undo(current, event.task, context)
            except SectionNotFoundError as exc:
                self._mark_broken(current, exc)
                return EventExecutionResult(rule_id=current.id, status="broken", error=exc.message)
            except AutomationError as exc:
                self._report(current, exc)
                return EventExecutionResult(rule_id=current.id, status="failed", error=exc.message)

            if result.skipped:
                return EventExecutionResult(
                    rule_id=current.id, status="skipped", description=result.description
                )
            entry = build_task_entry(
                timestamp=now,
                trigger_description=self._describe_trigger(current),
                action_description=result.description,
                task_name=result.task_name or "",
            )
            self.rule_store.update(
                current.id,
                RuleUpdate(
                    execution_count=current.execution_count + 1,
                    last_executed_at=now,
                    recent_executions=append_log_entry(
                        current.recent_executions, entry, self.max_entries
                    ),
                ),
            )
            logger.info("Rule %s fired on %s: %s", current.id, event.type, result.description)
            return EventExecutionResult(
                rule_id=current.id,
                status="executed",
                description=result.description,
                task_id=event.task.id if event.task is not None else result.created_task_id,
            )

    # ------------------------------------------------------------------
    # Scheduled rules
    # ------------------------------------------------------------------

    def evaluate_scheduled(
        self,
        rule: AutomationRule,
        now: datetime | None = None,
        tasks: list[TaskRecord] | None = None,
        *,
        is_catch_up: bool = False,
        force: bool = False,
    ) -> ScheduledEvaluationResult:
        """Run one evaluation cycle for a scheduled rule.

        ``force`` bypasses the due check (manual run). ``is_catch_up`` marks
        the start-up sweep, whose due occurrences always count as backlog.
        """
        now = now or self.clock()
        with self.lock, log_context({"rule_id": rule.id, "project_id": rule.project_id}):
            current = self.rule_store.find_by_id(rule.id)
            if current is None:
                raise RuleNotFoundError("Rule not found.", {"rule_id": rule.id})
            trigger = current.trigger
            if not isinstance(trigger, ScheduledTrigger):
                raise AutomationValidationError(
                    "Rule does not have a scheduled trigger.", {"rule_id": current.id}
                )
            if not force and not current.is_active:
                return ScheduledEvaluationResult(rule_id=current.id, status="inactive")

            occurrence = evaluate_schedule(
                trigger.schedule,
                trigger.last_evaluated_at,
                now,
                tick_period=self.tick_period,
            )
            if not force and not occurrence.due:
                if occurrence.advance_when_idle:
                    self._advance(current, now)
                return ScheduledEvaluationResult(rule_id=current.id, status="not_due")

            is_backlog = (
                not force
                and trigger.last_evaluated_at is not None
                and (occurrence.is_backlog or is_catch_up)
            )
            execution_type = "catch_up" if is_backlog else "scheduled"
            skip_backlog = is_backlog and trigger.catch_up_policy == "skip_missed"
            is_due_relative = trigger.schedule.kind == "due_date_relative"
            is_one_time = trigger.schedule.kind == "one_time" and not force

            # Calendar schedules skip without looking at tasks; due-date-relative
            # backlog only exists for tasks that fall in the window.
            if skip_backlog and not is_due_relative:
                return self._skip(current, now, 0)

            try:
                candidates = self._scheduled_candidates(current, now, tasks)
            except AutomationError as exc:
                self._report(current, exc)
                self._advance(current, now)
                return ScheduledEvaluationResult(
                    rule_id=current.id, status="failed", error=exc.message
                )

            is_create = current.action.type == "create_card"
            fires = bool(candidates) or (is_create and not is_due_relative)
            if not fires:
                self._advance(current, now, disable=is_one_time)
                return ScheduledEvaluationResult(rule_id=current.id, status="no_matches")

            if skip_backlog:
                return self._skip(current, now, len(candidates))

            return self._execute_batch(
                current,
                now,
                candidates,
                execution_type=execution_type,
                once=is_create,
                disable_after=is_one_time,
            )

    def run_now(self, rule_id: str) -> ScheduledEvaluationResult:
        """Evaluate a scheduled rule immediately, bypassing the due check."""
        rule = self.rule_store.find_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError("Rule not found.", {"rule_id": rule_id})
        logger.info("Manual run requested for rule %s", rule_id)
        return self.evaluate_scheduled(rule, self.clock(), force=True)

    def mark_evaluated(self, rule_id: str, now: datetime) -> None:
        """Advance ``last_evaluated_at`` after an unexpected evaluation failure."""
        with self.lock:
            current = self.rule_store.find_by_id(rule_id)
            if current is None or not isinstance(current.trigger, ScheduledTrigger):
                return
            self._advance(current, now)

    def _scheduled_candidates(
        self,
        rule: AutomationRule,
        now: datetime,
        tasks: list[TaskRecord] | None,
    ) -> list[TaskRecord]:
        if tasks is None:
            tasks = self.task_store.list_tasks(rule.project_id)
        candidates = [
            task
            for task in tasks
            if task.project_id == rule.project_id and not task.is_subtask
        ]
        trigger = rule.trigger
        if isinstance(trigger, ScheduledTrigger) and trigger.schedule.kind == "due_date_relative":
            start, end = due_date_trigger_window(
                trigger.last_evaluated_at, now, tick_period=self.tick_period
            )
            offset = trigger.schedule.offset_minutes
            candidates = [
                task
                for task in candidates
                if not task.completed
                and task.due_date is not None
                and start < due_date_trigger_time(task.due_date, offset) <= end
            ]
        return [task for task in candidates if evaluate_filters(rule.filters, task, now)]

    def _skip(self, rule: AutomationRule, now: datetime, match_count: int) -> ScheduledEvaluationResult:
        trigger = rule.trigger
        changes = {
            "trigger": trigger.model_copy(update={"last_evaluated_at": now}),
            "recent_executions": append_log_entry(
                rule.recent_executions, build_skipped_entry(now), self.max_entries
            ),
        }
        if trigger.schedule.kind == "one_time":
            changes["enabled"] = False
        self.rule_store.update(rule.id, RuleUpdate(**changes))
        logger.info("Skipped catch-up for rule %s (skip_missed)", rule.id)
        return ScheduledEvaluationResult(
            rule_id=rule.id,
            status="skipped",
            execution_type="skipped",
            match_count=match_count,
        )

    def _execute_batch(
        self,
        rule: AutomationRule,
        now: datetime,
        candidates: list[TaskRecord],
        *,
        execution_type: str,
        once: bool,
        disable_after: bool,
    ) -> ScheduledEvaluationResult:
        context = ActionContext(
            task_store=self.task_store,
            now=now,
            rule=rule,
            dedup_enabled=self.dedup_enabled,
        )
        targets: list[TaskRecord | None] = [None] if once else list(candidates)
        task_names: list[str] = []
        affected: list[str] = []
        failed: list[str] = []
        broken_error: SectionNotFoundError | None = None
        description = None

        for task in targets:
            try:
                result = self._execute_with_undo(rule, task, context)
            except SectionNotFoundError as exc:
                broken_error = exc
                break
            except AutomationError as exc:
                self._report(rule, exc)
                if task is not None:
                    failed.append(task.id)
                continue
            description = result.description
            if result.skipped:
                continue
            task_names.append(result.task_name or "")
            affected.append(result.created_task_id or (task.id if task is not None else ""))

        changes: dict[str, object] = {
            "trigger": rule.trigger.model_copy(update={"last_evaluated_at": now}),
        }
        if task_names:
            entry = build_aggregated_entry(
                timestamp=now,
                trigger_description=self._describe_trigger(rule),
                action_description=description or self.executor.describe(rule.action, self._section_name),
                task_names=task_names,
                execution_type=execution_type,
                max_details=self.max_details,
            )
            changes.update(
                execution_count=rule.execution_count + 1,
                last_executed_at=now,
                recent_executions=append_log_entry(
                    rule.recent_executions, entry, self.max_entries
                ),
            )
        if broken_error is not None:
            changes.update(enabled=False, broken_reason=BROKEN_SECTION_DELETED)
        elif disable_after:
            changes["enabled"] = False
        self.rule_store.update(rule.id, RuleUpdate(**changes))

        if broken_error is not None:
            logger.warning(
                "Rule %s marked broken: %s", rule.id, broken_error.message
            )
            return ScheduledEvaluationResult(
                rule_id=rule.id,
                status="broken",
                execution_type=execution_type,
                match_count=len(candidates),
                succeeded_count=len(task_names),
                affected_task_ids=affected,
                failed_task_ids=failed,
                error=broken_error.message,
            )
        if failed:
            logger.warning(
                "Rule %s completed %d of %d actions", rule.id, len(task_names), len(targets)
            )
        else:
            logger.info(
                "Rule %s ran %s on %d task(s)", rule.id, execution_type, len(task_names)
            )
        return ScheduledEvaluationResult(
            rule_id=rule.id,
            status="executed" if task_names or not failed else "failed",
            execution_type=execution_type,
            match_count=len(candidates),
            succeeded_count=len(task_names),
            affected_task_ids=affected,
            failed_task_ids=failed,
        )

    # ------------------------------------------------------------------
    # Dry run and undo
    # ------------------------------------------------------------------

    def dry_run(
        self,
        rule: AutomationRule,
        now: datetime | None = None,
        tasks: list[TaskRecord] | None = None,
        sections: list[SectionRecord] | None = None,
    ) -> DryRunResult:
        """Return the tasks ``rule`` would act on now, without side effects."""
        now = now or self.clock()
        if tasks is None:
            tasks = self.task_store.list_tasks(rule.project_id)
        if sections is None:
            sections = self.task_store.list_sections(rule.project_id)
        matching = self._scheduled_candidates(rule, now, tasks)
        names = {section.id: section.name for section in sections}
        handler_description = self.executor.describe(rule.action, names.get)
        return DryRunResult(
            matching_tasks=matching,
            action_description=handler_description,
            total_count=len(matching),
        )

    def undo_last(self, now: datetime | None = None) -> UndoResult:
        """Revert the most recent automated mutation if it has not expired."""
        with self.lock:
            return self.undo_slot.perform_undo(
                lambda snapshot: self.executor.undo(snapshot, self.task_store),
                now or self.clock(),
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _execute_with_undo(
        self,
        rule: AutomationRule,
        task: TaskRecord | None,
        context: ActionContext,
    ) -> ActionResult:
        if rule.action.type == "create_card":
            # A created card has no prior state; its undo deletes it.
            result = self.executor.execute(rule.action, task, context)
            if result.created_task_id is not None:
                snapshot = self.executor.snapshot(rule, task, context)
                self.undo_slot.store(
                    replace(
                        snapshot,
                        target_entity_id=result.created_task_id,
                        created_entity_id=result.created_task_id,
                    )
                )
            return result
        self.undo_slot.store(self.executor.snapshot(rule, task, context))
        return self.executor.execute(rule.action, task, context)

    def _describe_trigger(self, rule: AutomationRule) -> str:
        return describe_trigger(rule.trigger, self._section_name)

    def _section_name(self, section_id: str) -> str | None:
        section = self.task_store.get_section(section_id)
        return section.name if section is not None else None

    def _advance(self, rule: AutomationRule, now: datetime, *, disable: bool = False) -> None:
        update = RuleUpdate(trigger=rule.trigger.model_copy(update={"last_evaluated_at": now}))
        if disable:
            update = replace(update, enabled=False)
            logger.info("One-time rule %s fired with no matching tasks; disabled", rule.id)
        self.rule_store.update(rule.id, update)

    def _mark_broken(self, rule: AutomationRule, exc: SectionNotFoundError) -> None:
        logger.warning("Rule %s marked broken: %s", rule.id, exc.message)
        self.rule_store.update(
            rule.id,
            RuleUpdate(enabled=False, broken_reason=BROKEN_SECTION_DELETED),
        )

    def _report(self, rule: AutomationRule, exc: Exception) -> None:
        logger.error("Rule %s evaluation failed: %s", rule.id, exc)
        if self.error_reporter is None:
            return
        try:
            self.error_reporter(rule, exc)
        except Exception:
            logger.exception("Error reporter failed for rule %s", rule.id)
