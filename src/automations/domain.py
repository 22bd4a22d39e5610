"""Domain types for automation rules, triggers, filters, actions and history.

Rules round-trip through JSON storage, so the tagged unions are modelled as
pydantic discriminated unions keyed on ``type`` (triggers, filters, actions) or
``kind`` (schedules). Task and section snapshots handed to the engine are plain
frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from time_utils import ensure_aware

AwareDatetime = Annotated[datetime, AfterValidator(ensure_aware)]

# Placeholder section id for create-card actions on section events; resolved to
# the event's section at execution time.
TRIGGER_SECTION = "__trigger_section__"

EventTriggerType = Literal[
    "card_moved_into_section",
    "card_moved_out_of_section",
    "card_marked_complete",
    "card_marked_incomplete",
    "section_created",
    "section_renamed",
]

CatchUpPolicy = Literal["catch_up_latest", "skip_missed"]
ExecutionType = Literal["scheduled", "catch_up", "skipped", "event"]
MonthTarget = Literal["this_month", "next_month"]
ComparisonUnit = Literal["days", "working_days"]
AgeUnit = Literal["hours", "days", "working_days"]


class _DomainModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class IntervalSchedule(_DomainModel):
    """Fire every N minutes."""

    kind: Literal["interval"] = "interval"
    interval_minutes: int = Field(ge=5, le=10080)


class CronSchedule(_DomainModel):
    """Fire at a wall-clock time on selected weekdays or days of month.

    ``days_of_week`` uses the cron convention (0=Sunday). When both day lists
    are empty the schedule fires daily.
    """

    kind: Literal["cron"] = "cron"
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)
    days_of_week: list[int] = Field(default_factory=list)
    days_of_month: list[int] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def validate_days_of_week(cls, value: list[int]) -> list[int]:
        """Ensure weekday numbers are within 0..6."""
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week values must be between 0 and 6.")
        return sorted(set(value))

    @field_validator("days_of_month")
    @classmethod
    def validate_days_of_month(cls, value: list[int]) -> list[int]:
        """Ensure day-of-month numbers are within 1..31."""
        if any(day < 1 or day > 31 for day in value):
            raise ValueError("days_of_month values must be between 1 and 31.")
        return sorted(set(value))


class DueDateRelativeSchedule(_DomainModel):
    """Fire for each task at its due date plus an offset (negative = before)."""

    kind: Literal["due_date_relative"] = "due_date_relative"
    offset_minutes: int


class OneTimeSchedule(_DomainModel):
    """Fire once at a fixed instant."""

    kind: Literal["one_time"] = "one_time"
    fire_at: AwareDatetime


Schedule = Annotated[
    Union[IntervalSchedule, CronSchedule, DueDateRelativeSchedule, OneTimeSchedule],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class EventTrigger(_DomainModel):
    """Trigger fired by a live domain event, optionally scoped to a section."""

    type: EventTriggerType
    section_id: str | None = None


class ScheduledTrigger(_DomainModel):
    """Trigger fired by the scheduler.

    ``last_evaluated_at`` records the last time the rule was checked, not the
    last time it fired.
    """

    type: Literal["scheduled"] = "scheduled"
    schedule: Schedule
    last_evaluated_at: AwareDatetime | None = None
    catch_up_policy: CatchUpPolicy = "catch_up_latest"


Trigger = Annotated[Union[EventTrigger, ScheduledTrigger], Field(discriminator="type")]


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class SectionFilter(_DomainModel):
    type: Literal["in_section", "not_in_section"]
    section_id: str


class DueDatePresenceFilter(_DomainModel):
    type: Literal["has_due_date", "no_due_date", "is_overdue"]


class DueDateRangeFilter(_DomainModel):
    type: Literal[
        "due_today",
        "due_tomorrow",
        "due_this_week",
        "due_next_week",
        "due_this_month",
        "due_next_month",
        "not_due_today",
        "not_due_tomorrow",
        "not_due_this_week",
        "not_due_next_week",
        "not_due_this_month",
        "not_due_next_month",
    ]


class DueDateComparisonFilter(_DomainModel):
    type: Literal["due_in_less_than", "due_in_more_than", "due_in_exactly"]
    value: int = Field(ge=0)
    unit: ComparisonUnit = "days"


class DueDateBetweenFilter(_DomainModel):
    type: Literal["due_in_between"] = "due_in_between"
    min_value: int = Field(ge=0)
    max_value: int = Field(ge=0)
    unit: ComparisonUnit = "days"


class AgeFilter(_DomainModel):
    type: Literal[
        "created_more_than",
        "completed_more_than",
        "last_updated_more_than",
        "not_modified_in",
        "overdue_by_more_than",
        "in_section_for_more_than",
    ]
    value: int = Field(ge=0)
    unit: AgeUnit = "days"


CardFilter = Annotated[
    Union[
        SectionFilter,
        DueDatePresenceFilter,
        DueDateRangeFilter,
        DueDateComparisonFilter,
        DueDateBetweenFilter,
        AgeFilter,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class MoveCardAction(_DomainModel):
    type: Literal["move_card_to_top_of_section", "move_card_to_bottom_of_section"]
    section_id: str


class CardStatusAction(_DomainModel):
    type: Literal["mark_card_complete", "mark_card_incomplete"]


class SetDueDateAction(_DomainModel):
    type: Literal["set_due_date"] = "set_due_date"
    date_option: str
    specific_month: int | None = Field(default=None, ge=1, le=12)
    specific_day: int | None = Field(default=None, ge=1, le=31)
    month_target: MonthTarget | None = None


class RemoveDueDateAction(_DomainModel):
    type: Literal["remove_due_date"] = "remove_due_date"


class CreateCardAction(_DomainModel):
    """Create a new card; ``card_title`` may contain ``{{date}}`` style tokens."""

    type: Literal["create_card"] = "create_card"
    section_id: str
    card_title: str = Field(min_length=1)
    card_date_option: str | None = None
    specific_month: int | None = Field(default=None, ge=1, le=12)
    specific_day: int | None = Field(default=None, ge=1, le=31)
    month_target: MonthTarget | None = None


Action = Annotated[
    Union[
        MoveCardAction,
        CardStatusAction,
        SetDueDateAction,
        RemoveDueDateAction,
        CreateCardAction,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Rules and history
# ---------------------------------------------------------------------------


class ExecutionLogEntry(_DomainModel):
    """One line of a rule's bounded execution history."""

    timestamp: AwareDatetime
    trigger_description: str
    action_description: str
    execution_type: ExecutionType
    task_name: str | None = None
    match_count: int | None = None
    details: list[str] | None = None


class AutomationRule(_DomainModel):
    """An automation rule: trigger, AND-combined filters, one action."""

    id: str
    project_id: str
    name: str = Field(min_length=1, max_length=200)
    trigger: Trigger
    filters: list[CardFilter] = Field(default_factory=list)
    action: Action
    enabled: bool = True
    broken_reason: str | None = None
    execution_count: int = Field(default=0, ge=0)
    last_executed_at: AwareDatetime | None = None
    recent_executions: list[ExecutionLogEntry] = Field(default_factory=list)
    bulk_paused_at: AwareDatetime | None = None
    order: int = 0
    created_at: AwareDatetime
    updated_at: AwareDatetime

    @property
    def is_scheduled(self) -> bool:
        return isinstance(self.trigger, ScheduledTrigger)

    @property
    def is_active(self) -> bool:
        """Return True when the rule is enabled and not broken."""
        return self.enabled and self.broken_reason is None


# ---------------------------------------------------------------------------
# Board snapshots and events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskRecord:
    """Snapshot of a task as seen by filters and actions."""

    id: str
    project_id: str
    description: str
    section_id: str | None = None
    parent_task_id: str | None = None
    completed: bool = False
    completed_at: datetime | None = None
    due_date: datetime | None = None
    order: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    moved_to_section_at: datetime | None = None

    @property
    def is_subtask(self) -> bool:
        return self.parent_task_id is not None


@dataclass(frozen=True)
class SectionRecord:
    """Snapshot of a board section."""

    id: str
    project_id: str
    name: str
    order: int = 0


@dataclass(frozen=True)
class DomainEvent:
    """A live board change that may trigger event-driven rules."""

    type: EventTriggerType
    project_id: str
    timestamp: datetime
    task: TaskRecord | None = None
    section_id: str | None = None
