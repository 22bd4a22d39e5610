"""Project-wide enable, disable, pause and resume of automation rules."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from automations.stores import RuleStore, RuleUpdate
from time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkPauseResult:
    paused_count: int
    paused_rule_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BulkResumeResult:
    resumed_count: int
    resumed_rule_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BulkToggleResult:
    changed_count: int
    changed_rule_ids: list[str] = field(default_factory=list)


class BulkRuleService:
    """Toggle many rules of one project at once.

    Pausing marks each scheduled rule with ``bulk_paused_at`` so resume only
    re-enables what the pause disabled; rules the user disabled by hand stay
    disabled.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        *,
        lock: threading.RLock | None = None,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._rule_store = rule_store
        self._lock = lock or threading.RLock()
        self._now_provider = now_provider

    def pause_all_scheduled(self, project_id: str) -> BulkPauseResult:
        """Disable every enabled scheduled rule and stamp it as bulk-paused."""
        with self._lock:
            now = self._now_provider()
            paused: list[str] = []
            for rule in self._rule_store.find_by_project_id(project_id):
                if not rule.is_scheduled or not rule.enabled:
                    continue
                self._rule_store.update(rule.id, RuleUpdate(enabled=False, bulk_paused_at=now))
                paused.append(rule.id)
        logger.info("Paused %d scheduled rule(s) in project %s", len(paused), project_id)
        return BulkPauseResult(paused_count=len(paused), paused_rule_ids=paused)

    def resume_all_scheduled(self, project_id: str) -> BulkResumeResult:
        """Re-enable exactly the rules a previous pause disabled."""
        with self._lock:
            resumed: list[str] = []
            for rule in self._rule_store.find_by_project_id(project_id):
                if rule.bulk_paused_at is None:
                    continue
                if rule.broken_reason is not None:
                    # A rule broken while paused stays disabled.
                    self._rule_store.update(rule.id, RuleUpdate(bulk_paused_at=None))
                    continue
                self._rule_store.update(rule.id, RuleUpdate(enabled=True, bulk_paused_at=None))
                resumed.append(rule.id)
        logger.info("Resumed %d scheduled rule(s) in project %s", len(resumed), project_id)
        return BulkResumeResult(resumed_count=len(resumed), resumed_rule_ids=resumed)

    def enable_all(self, project_id: str) -> BulkToggleResult:
        """Enable every non-broken rule in the project."""
        with self._lock:
            changed: list[str] = []
            for rule in self._rule_store.find_by_project_id(project_id):
                if rule.broken_reason is not None:
                    continue
                if rule.enabled and rule.bulk_paused_at is None:
                    continue
                self._rule_store.update(rule.id, RuleUpdate(enabled=True, bulk_paused_at=None))
                changed.append(rule.id)
        return BulkToggleResult(changed_count=len(changed), changed_rule_ids=changed)

    def disable_all(self, project_id: str) -> BulkToggleResult:
        """Disable every enabled rule in the project."""
        with self._lock:
            changed: list[str] = []
            for rule in self._rule_store.find_by_project_id(project_id):
                if not rule.enabled:
                    continue
                self._rule_store.update(rule.id, RuleUpdate(enabled=False))
                changed.append(rule.id)
        return BulkToggleResult(changed_count=len(changed), changed_rule_ids=changed)
