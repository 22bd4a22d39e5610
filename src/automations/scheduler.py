"""In-process scheduler that ticks scheduled automation rules.

On start the scheduler runs one catch-up sweep, then evaluates every active
scheduled rule once per tick on a daemon thread. A failing rule is logged and
skipped; it never stops the tick or the thread.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from automations.bulk import BulkPauseResult, BulkResumeResult, BulkRuleService
from automations.engine import RuleEngine, ScheduledEvaluationResult
from automations.stores import RuleStore
from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickSummary:
    """Counts for one scheduler tick."""

    rules_evaluated: int
    rules_fired: int
    tasks_affected: int
    is_catch_up: bool = False


class Scheduler:
    """Drive ``RuleEngine.evaluate_scheduled`` on a fixed tick."""

    def __init__(
        self,
        engine: RuleEngine,
        rule_store: RuleStore,
        *,
        bulk: BulkRuleService | None = None,
        tick_seconds: int | None = None,
        catch_up_on_start: bool | None = None,
    ) -> None:
        self.engine = engine
        self.rule_store = rule_store
        self.bulk = bulk or BulkRuleService(rule_store, lock=engine.lock)
        self.tick_seconds = tick_seconds or settings.scheduler.tick_seconds
        self.catch_up_on_start = (
            settings.scheduler.catch_up_on_start if catch_up_on_start is None else catch_up_on_start
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()

    @property
    def tick_period(self) -> timedelta:
        return timedelta(seconds=self.tick_seconds)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run the catch-up sweep and start the tick thread."""
        with self._state_lock:
            if self.is_running:
                return
            if self.catch_up_on_start:
                self.tick(is_catch_up=True)
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="automation-scheduler", daemon=True
            )
            self._thread.start()
        logger.info("Automation scheduler started (tick=%ss)", self.tick_seconds)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the tick thread to stop and wait for it to exit."""
        with self._state_lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None:
            thread.join(timeout)
        logger.info("Automation scheduler stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.tick_seconds):
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")

    def tick(self, *, is_catch_up: bool = False) -> TickSummary:
        """Evaluate every active scheduled rule once."""
        now = self.engine.clock()
        evaluated = 0
        fired = 0
        affected = 0
        for rule in self.rule_store.find_all():
            if not rule.is_scheduled or not rule.is_active:
                continue
            evaluated += 1
            try:
                result = self.engine.evaluate_scheduled(rule, now, is_catch_up=is_catch_up)
            except Exception:
                logger.exception("Scheduled rule %s failed", rule.id)
                self._advance_after_failure(rule.id, now)
                continue
            if result.fired:
                fired += 1
                affected += result.succeeded_count
        summary = TickSummary(
            rules_evaluated=evaluated,
            rules_fired=fired,
            tasks_affected=affected,
            is_catch_up=is_catch_up,
        )
        if fired:
            logger.info(
                "Scheduler %s: %d rule(s) fired, %d task(s) affected",
                "catch-up" if is_catch_up else "tick",
                fired,
                affected,
            )
        return summary

    def _advance_after_failure(self, rule_id: str, now: datetime) -> None:
        try:
            self.engine.mark_evaluated(rule_id, now)
        except Exception:
            logger.exception("Could not record evaluation time for rule %s", rule_id)

    def run_now(self, rule_id: str) -> ScheduledEvaluationResult:
        """Evaluate one rule immediately, bypassing its schedule."""
        return self.engine.run_now(rule_id)

    def pause_all_scheduled(self, project_id: str) -> BulkPauseResult:
        return self.bulk.pause_all_scheduled(project_id)

    def resume_all_scheduled(self, project_id: str) -> BulkResumeResult:
        return self.bulk.resume_all_scheduled(project_id)
