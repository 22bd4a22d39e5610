"""Rule upkeep: section references, broken-rule detection and one-time rules."""

from __future__ import annotations

import logging
from datetime import datetime

from automations.domain import TRIGGER_SECTION, AutomationRule, EventTrigger, ScheduledTrigger
from automations.errors import AutomationValidationError, RuleNotFoundError
from automations.stores import RuleStore, RuleUpdate
from time_utils import ensure_aware

logger = logging.getLogger(__name__)


def collect_section_references(rule: AutomationRule) -> list[str]:
    """Return every section id the rule's trigger, action and filters name."""
    references: list[str] = []
    if isinstance(rule.trigger, EventTrigger) and rule.trigger.section_id is not None:
        references.append(rule.trigger.section_id)
    action_section = getattr(rule.action, "section_id", None)
    if action_section is not None and action_section != TRIGGER_SECTION:
        references.append(action_section)
    for card_filter in rule.filters:
        if card_filter.type in ("in_section", "not_in_section") and card_filter.section_id:
            references.append(card_filter.section_id)
    return references


def detect_broken_rules(
    rule_store: RuleStore,
    project_id: str,
    deleted_section_id: str,
) -> list[str]:
    """Disable and mark broken every rule that references a deleted section.

    Returns the ids of the rules that were marked.
    """
    broken: list[str] = []
    for rule in rule_store.find_by_project_id(project_id):
        if deleted_section_id not in collect_section_references(rule):
            continue
        rule_store.update(rule.id, RuleUpdate(enabled=False, broken_reason="section_deleted"))
        broken.append(rule.id)
    if broken:
        logger.warning(
            "Section %s deleted; marked %d rule(s) broken", deleted_section_id, len(broken)
        )
    return broken


def validate_one_time_reenable(rule: AutomationRule, now: datetime) -> None:
    """Reject re-enabling a one-time rule whose fire time has passed."""
    if not isinstance(rule.trigger, ScheduledTrigger):
        return
    schedule = rule.trigger.schedule
    if schedule.kind != "one_time":
        return
    if ensure_aware(schedule.fire_at) <= now:
        raise AutomationValidationError(
            "Cannot enable a one-time rule whose fire time has passed; reschedule it first.",
            {"rule_id": rule.id, "fire_at": schedule.fire_at.isoformat()},
        )


def reschedule_one_time(
    rule_store: RuleStore,
    rule_id: str,
    fire_at: datetime,
    now: datetime,
) -> AutomationRule:
    """Move a one-time rule to a new future fire time and enable it."""
    rule = rule_store.find_by_id(rule_id)
    if rule is None:
        raise RuleNotFoundError("Rule not found.", {"rule_id": rule_id})
    trigger = rule.trigger
    if not isinstance(trigger, ScheduledTrigger) or trigger.schedule.kind != "one_time":
        raise AutomationValidationError(
            "Only one-time rules can be rescheduled.", {"rule_id": rule_id}
        )
    fire_at = ensure_aware(fire_at)
    if fire_at <= now:
        raise AutomationValidationError(
            "Fire time must be in the future.", {"fire_at": fire_at.isoformat()}
        )
    schedule = trigger.schedule.model_copy(update={"fire_at": fire_at})
    return rule_store.update(
        rule_id,
        RuleUpdate(
            trigger=trigger.model_copy(update={"schedule": schedule, "last_evaluated_at": None}),
            enabled=rule.broken_reason is None,
        ),
    )


def set_rule_enabled(
    rule_store: RuleStore,
    rule_id: str,
    enabled: bool,
    now: datetime,
) -> AutomationRule:
    """Toggle one rule, refusing to enable broken or expired one-time rules.

    Any manual toggle clears the bulk-pause marker.
    """
    rule = rule_store.find_by_id(rule_id)
    if rule is None:
        raise RuleNotFoundError("Rule not found.", {"rule_id": rule_id})
    if enabled:
        if rule.broken_reason is not None:
            raise AutomationValidationError(
                "Cannot enable a broken rule.",
                {"rule_id": rule_id, "broken_reason": rule.broken_reason},
            )
        validate_one_time_reenable(rule, now)
    return rule_store.update(rule_id, RuleUpdate(enabled=enabled, bulk_paused_at=None))
