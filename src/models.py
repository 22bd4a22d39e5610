"""Data models for task board automations."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Automation enums
TriggerTypeEnum = Enum(
    "card_moved_into_section",
    "card_moved_out_of_section",
    "card_marked_complete",
    "card_marked_incomplete",
    "section_created",
    "section_renamed",
    "scheduled",
    name="automation_trigger_type",
    native_enum=False,
)
BrokenReasonEnum = Enum(
    "section_deleted",
    "unsupported_trigger",
    name="automation_broken_reason",
    native_enum=False,
)


class Section(Base):
    """Board column that groups tasks within a project."""

    __tablename__ = "sections"
    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_sections_project_name"),)

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Task(Base):
    """Card on the board; subtasks point at their parent."""

    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=False, index=True)
    section_id = Column(String(64), ForeignKey("sections.id"), nullable=True, index=True)
    parent_task_id = Column(String(64), ForeignKey("tasks.id"), nullable=True)
    description = Column(Text, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    moved_to_section_at = Column(DateTime(timezone=True), nullable=True)


class AutomationRule(Base):
    """Persisted automation rule.

    Trigger, filters, action and recent executions are stored as JSON documents
    that round-trip through the pydantic models in ``automations.domain``.
    """

    __tablename__ = "automation_rules"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    trigger_type = Column(TriggerTypeEnum, nullable=False)
    trigger = Column(JSON, nullable=False)
    filters = Column(JSON, nullable=False, default=list)
    action = Column(JSON, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    broken_reason = Column(BrokenReasonEnum, nullable=True)
    execution_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime(timezone=True), nullable=True)
    recent_executions = Column(JSON, nullable=False, default=list)
    bulk_paused_at = Column(DateTime(timezone=True), nullable=True)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
