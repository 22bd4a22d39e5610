"""Copy rules between projects and validate rules coming from an export."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError

from automations.domain import (
    TRIGGER_SECTION,
    AutomationRule,
    EventTrigger,
    ScheduledTrigger,
    SectionRecord,
)
from automations.rule_maintenance import collect_section_references
from models import TriggerTypeEnum

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SUPPORTED_TRIGGER_TYPES = frozenset(TriggerTypeEnum.enums)


def _remap(
    section_id: str | None,
    source_names: dict[str, str],
    target_ids: dict[str, str],
) -> tuple[str | None, bool]:
    """Return the target section id for ``section_id`` and whether it is missing."""
    if section_id is None or section_id == TRIGGER_SECTION:
        return section_id, False
    name = source_names.get(section_id)
    if name is None or name not in target_ids:
        return section_id, True
    return target_ids[name], False


def duplicate_rule(
    rule: AutomationRule,
    target_project_id: str,
    source_sections: Iterable[SectionRecord],
    target_sections: Iterable[SectionRecord],
    now: datetime,
) -> AutomationRule:
    """Copy ``rule`` into another project, remapping sections by name.

    The copy starts disabled with fresh history. If any referenced section has
    no same-named counterpart in the target project the copy is marked broken
    and keeps the original id for that reference.
    """
    source_names = {section.id: section.name for section in source_sections}
    target_ids: dict[str, str] = {}
    for section in target_sections:
        # Names match case-sensitively; the first section with a name wins.
        target_ids.setdefault(section.name, section.id)

    broken = False
    trigger = rule.trigger
    if isinstance(trigger, EventTrigger):
        section_id, missing = _remap(trigger.section_id, source_names, target_ids)
        broken = broken or missing
        trigger = trigger.model_copy(update={"section_id": section_id})
    elif isinstance(trigger, ScheduledTrigger):
        trigger = trigger.model_copy(update={"last_evaluated_at": None})

    action = rule.action
    if hasattr(action, "section_id"):
        section_id, missing = _remap(action.section_id, source_names, target_ids)
        broken = broken or missing
        action = action.model_copy(update={"section_id": section_id})

    filters = []
    for card_filter in rule.filters:
        if card_filter.type in ("in_section", "not_in_section"):
            section_id, missing = _remap(card_filter.section_id, source_names, target_ids)
            broken = broken or missing
            card_filter = card_filter.model_copy(update={"section_id": section_id})
        filters.append(card_filter)

    return rule.model_copy(
        update={
            "id": str(uuid.uuid4()),
            "project_id": target_project_id,
            "name": f"Copy of {rule.name}"[:200],
            "trigger": trigger,
            "filters": filters,
            "action": action,
            "enabled": False,
            "broken_reason": "section_deleted" if broken else None,
            "execution_count": 0,
            "last_executed_at": None,
            "recent_executions": [],
            "bulk_paused_at": None,
            "created_at": now,
            "updated_at": now,
        }
    )


def export_rules(rules: Iterable[AutomationRule]) -> dict[str, Any]:
    """Serialize rules into a versioned export document."""
    return {
        "schema_version": SCHEMA_VERSION,
        "rules": [rule.model_dump(mode="json") for rule in rules],
    }


@dataclass
class ImportReport:
    """Result of validating an export document.

    ``unsupported`` holds raw payloads whose trigger type this version cannot
    run; they are returned disabled and marked broken, never parsed.
    """

    rules: list[AutomationRule] = field(default_factory=list)
    unsupported: list[dict[str, Any]] = field(default_factory=list)
    invalid: list[dict[str, Any]] = field(default_factory=list)
    schema_version: int = SCHEMA_VERSION

    @property
    def version_mismatch(self) -> bool:
        return self.schema_version != SCHEMA_VERSION


def validate_imported_rules(
    payloads: Iterable[dict[str, Any]],
    available_section_ids: set[str],
) -> ImportReport:
    """Validate raw rule payloads against the sections that exist.

    Scheduled rules restart their schedule; rules referencing a missing
    section come back disabled and marked broken.
    """
    report = ImportReport()
    for payload in payloads:
        trigger_type = (payload.get("trigger") or {}).get("type")
        if trigger_type not in SUPPORTED_TRIGGER_TYPES:
            report.unsupported.append(
                {**payload, "enabled": False, "broken_reason": "unsupported_trigger"}
            )
            continue
        try:
            rule = AutomationRule.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Rejected imported rule %s: %s", payload.get("id"), exc)
            report.invalid.append(payload)
            continue
        if isinstance(rule.trigger, ScheduledTrigger):
            rule = rule.model_copy(
                update={"trigger": rule.trigger.model_copy(update={"last_evaluated_at": None})}
            )
        if any(ref not in available_section_ids for ref in collect_section_references(rule)):
            rule = rule.model_copy(update={"enabled": False, "broken_reason": "section_deleted"})
        report.rules.append(rule)
    return report


def import_rules(
    document: dict[str, Any],
    available_section_ids: set[str],
) -> ImportReport:
    """Validate an export document produced by ``export_rules``."""
    report = validate_imported_rules(document.get("rules", []), available_section_ids)
    report.schema_version = int(document.get("schema_version", SCHEMA_VERSION))
    if report.version_mismatch:
        logger.warning(
            "Importing rules with schema version %s (current %s)",
            report.schema_version,
            SCHEMA_VERSION,
        )
    return report
