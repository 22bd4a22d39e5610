"""Unit tests for broken-rule detection and one-time rule upkeep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from automations.domain import (
    TRIGGER_SECTION,
    CreateCardAction,
    EventTrigger,
    OneTimeSchedule,
    ScheduledTrigger,
    SectionFilter,
)
from automations.errors import AutomationValidationError, RuleNotFoundError
from automations.rule_maintenance import (
    collect_section_references,
    detect_broken_rules,
    reschedule_one_time,
    set_rule_enabled,
    validate_one_time_reenable,
)
from automations.stores import RuleUpdate

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


def _one_time(make_rule, fire_at: datetime, **kw):
    return make_rule(trigger=ScheduledTrigger(schedule=OneTimeSchedule(fire_at=fire_at)), **kw)


def test_collect_section_references(make_rule) -> None:
    """Trigger, action and filter sections are collected; the placeholder is not."""
    rule = make_rule(
        trigger=EventTrigger(type="card_moved_into_section", section_id="doing"),
        filters=[SectionFilter(type="not_in_section", section_id="done")],
        action=CreateCardAction(section_id=TRIGGER_SECTION, card_title="Checklist"),
    )

    assert collect_section_references(rule) == ["doing", "done"]


def test_detect_broken_rules(rule_store, make_rule) -> None:
    """Only rules naming the deleted section are disabled."""
    affected = rule_store.create(make_rule())
    untouched = rule_store.create(
        make_rule(action=CreateCardAction(section_id="todo", card_title="Other"))
    )

    broken = detect_broken_rules(rule_store, "project-1", "done")

    assert broken == [affected.id]
    stored = rule_store.find_by_id(affected.id)
    assert stored.enabled is False
    assert stored.broken_reason == "section_deleted"
    assert rule_store.find_by_id(untouched.id).enabled is True


def test_validate_one_time_reenable(make_rule) -> None:
    """Past one-time rules cannot be re-enabled; future ones can."""
    validate_one_time_reenable(_one_time(make_rule, NOW + timedelta(hours=1)), NOW)
    validate_one_time_reenable(make_rule(), NOW)

    with pytest.raises(AutomationValidationError):
        validate_one_time_reenable(_one_time(make_rule, NOW - timedelta(hours=1)), NOW)


def test_reschedule_one_time(rule_store, make_rule) -> None:
    """Rescheduling sets a new fire time, resets evaluation and enables."""
    rule = rule_store.create(_one_time(make_rule, NOW - timedelta(days=1), enabled=False))
    new_time = NOW + timedelta(days=2)

    updated = reschedule_one_time(rule_store, rule.id, new_time, NOW)

    assert updated.enabled is True
    assert updated.trigger.schedule.fire_at == new_time
    assert updated.trigger.last_evaluated_at is None


def test_reschedule_rejects_bad_input(rule_store, make_rule) -> None:
    """Unknown rules, non one-time rules and past times are rejected."""
    event_rule = rule_store.create(make_rule())
    one_time = rule_store.create(_one_time(make_rule, NOW - timedelta(days=1)))

    with pytest.raises(RuleNotFoundError):
        reschedule_one_time(rule_store, "missing", NOW + timedelta(days=1), NOW)
    with pytest.raises(AutomationValidationError):
        reschedule_one_time(rule_store, event_rule.id, NOW + timedelta(days=1), NOW)
    with pytest.raises(AutomationValidationError):
        reschedule_one_time(rule_store, one_time.id, NOW - timedelta(minutes=1), NOW)


def test_set_rule_enabled(rule_store, make_rule) -> None:
    """Manual toggles clear the pause marker and refuse broken rules."""
    rule = rule_store.create(make_rule(enabled=False, bulk_paused_at=NOW))
    broken = rule_store.create(make_rule(enabled=False))
    rule_store.update(broken.id, RuleUpdate(broken_reason="section_deleted"))

    enabled = set_rule_enabled(rule_store, rule.id, True, NOW)

    assert enabled.enabled is True
    assert enabled.bulk_paused_at is None
    with pytest.raises(AutomationValidationError):
        set_rule_enabled(rule_store, broken.id, True, NOW)
    assert set_rule_enabled(rule_store, broken.id, False, NOW).enabled is False
