"""Derive automation domain events from task and section changes."""

from __future__ import annotations

from datetime import datetime

from automations.domain import DomainEvent, SectionRecord, TaskRecord


def events_from_task_change(
    before: TaskRecord | None,
    after: TaskRecord,
    now: datetime,
) -> list[DomainEvent]:
    """Return the events implied by a task going from ``before`` to ``after``.

    A section change yields ``card_moved_out_of_section`` for the old section
    followed by ``card_moved_into_section`` for the new one. A newly created
    task only counts as moving into its section.
    """
    events: list[DomainEvent] = []
    old_section = before.section_id if before is not None else None
    if after.section_id != old_section:
        if old_section is not None:
            events.append(
                DomainEvent(
                    type="card_moved_out_of_section",
                    project_id=after.project_id,
                    timestamp=now,
                    task=after,
                    section_id=old_section,
                )
            )
        if after.section_id is not None:
            events.append(
                DomainEvent(
                    type="card_moved_into_section",
                    project_id=after.project_id,
                    timestamp=now,
                    task=after,
                    section_id=after.section_id,
                )
            )

    was_completed = before.completed if before is not None else False
    if after.completed != was_completed:
        events.append(
            DomainEvent(
                type="card_marked_complete" if after.completed else "card_marked_incomplete",
                project_id=after.project_id,
                timestamp=now,
                task=after,
                section_id=after.section_id,
            )
        )
    return events


def events_from_section_change(
    before: SectionRecord | None,
    after: SectionRecord,
    now: datetime,
) -> list[DomainEvent]:
    """Return ``section_created`` or ``section_renamed`` for a section change."""
    if before is None:
        event_type = "section_created"
    elif before.name != after.name:
        event_type = "section_renamed"
    else:
        return []
    return [
        DomainEvent(
            type=event_type,
            project_id=after.project_id,
            timestamp=now,
            section_id=after.id,
        )
    ]
