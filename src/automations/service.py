"""Wiring for the automations core.

``build_service`` assembles the stores, engine, scheduler and bulk operations
around one shared lock. ``AutomationService`` is the surface a board
application talks to: it forwards task and section changes to the engine as
domain events and keeps rules consistent when sections disappear.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from automations.bulk import BulkRuleService
from automations.clock import Clock, system_clock
from automations.domain import SectionRecord, TaskRecord
from automations.engine import ErrorReporter, EventExecutionResult, RuleEngine
from automations.events import events_from_section_change, events_from_task_change
from automations.execution_log import UndoResult, UndoSlot
from automations.rule_maintenance import detect_broken_rules
from automations.scheduler import Scheduler
from automations.stores import SqlAlchemyRuleStore, SqlAlchemyTaskStore
from config import settings
from database import get_session_factory, init_db
from logging_config import configure_logging

logger = logging.getLogger(__name__)


class AutomationService:
    """Entry point for event delivery, scheduling and undo."""

    def __init__(
        self,
        rule_store: SqlAlchemyRuleStore,
        task_store: SqlAlchemyTaskStore,
        engine: RuleEngine,
        scheduler: Scheduler,
        bulk: BulkRuleService,
    ) -> None:
        self.rule_store = rule_store
        self.task_store = task_store
        self.engine = engine
        self.scheduler = scheduler
        self.bulk = bulk

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def task_changed(self, before: TaskRecord | None, after: TaskRecord) -> list[EventExecutionResult]:
        """Deliver the events implied by a task change to the engine."""
        results: list[EventExecutionResult] = []
        for event in events_from_task_change(before, after, self.engine.clock()):
            results.extend(self.engine.evaluate(event))
        return results

    def section_changed(
        self,
        before: SectionRecord | None,
        after: SectionRecord,
    ) -> list[EventExecutionResult]:
        """Deliver ``section_created`` or ``section_renamed`` to the engine."""
        results: list[EventExecutionResult] = []
        for event in events_from_section_change(before, after, self.engine.clock()):
            results.extend(self.engine.evaluate(event))
        return results

    def section_deleted(self, project_id: str, section_id: str) -> list[str]:
        """Delete a section and mark every rule that referenced it broken."""
        with self.engine.lock:
            self.task_store.delete_section(section_id)
            return detect_broken_rules(self.rule_store, project_id, section_id)

    def undo_last(self) -> UndoResult:
        return self.engine.undo_last()


def build_service(
    session_factory: Callable[[], Session] | None = None,
    *,
    clock: Clock = system_clock,
    error_reporter: ErrorReporter | None = None,
    configure_logs: bool = True,
) -> AutomationService:
    """Assemble an ``AutomationService`` from settings.

    Without a ``session_factory`` the configured database is used and its
    tables are created when missing.
    """
    if configure_logs:
        configure_logging(level=settings.log_level, json_output=settings.log_json)
    if session_factory is None:
        init_db()
        session_factory = get_session_factory()

    lock = threading.RLock()
    rule_store = SqlAlchemyRuleStore(session_factory)
    task_store = SqlAlchemyTaskStore(session_factory)
    engine = RuleEngine(
        rule_store,
        task_store,
        undo_slot=UndoSlot(timedelta(seconds=settings.undo.expiry_seconds)),
        clock=clock,
        tick_period=timedelta(seconds=settings.scheduler.tick_seconds),
        max_entries=settings.execution_log.max_entries,
        max_details=settings.execution_log.max_details,
        dedup_enabled=settings.create_card.dedup_enabled,
        error_reporter=error_reporter,
        lock=lock,
    )
    bulk = BulkRuleService(rule_store, lock=lock, now_provider=clock)
    scheduler = Scheduler(
        engine,
        rule_store,
        bulk=bulk,
        tick_seconds=settings.scheduler.tick_seconds,
        catch_up_on_start=settings.scheduler.catch_up_on_start,
    )
    logger.info("Automation service assembled")
    return AutomationService(rule_store, task_store, engine, scheduler, bulk)
