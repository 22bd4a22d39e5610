"""Pytest configuration for the automations test suite."""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator


def _ensure_test_env() -> None:
    """Seed environment variables for tests."""
    os.environ.setdefault("USER_TIMEZONE", "UTC")
    os.environ.setdefault("LOG_JSON", "false")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from automations.clock import ManualClock  # noqa: E402
from automations.domain import (  # noqa: E402
    AutomationRule,
    EventTrigger,
    MoveCardAction,
    SectionRecord,
    TaskRecord,
)
from automations.engine import RuleEngine  # noqa: E402
from automations.execution_log import UndoSlot  # noqa: E402
from automations.stores import SqlAlchemyRuleStore, SqlAlchemyTaskStore  # noqa: E402
from database import init_db  # noqa: E402

# Wednesday, noon UTC.
NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)
PROJECT_ID = "project-1"


@pytest.fixture
def now() -> datetime:
    """Return the fixed instant tests are anchored on."""
    return NOW


@pytest.fixture
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file."""
    engine = create_engine(f"sqlite:///{tmp_path / 'automations.db'}")
    init_db(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def rule_store(sqlite_session_factory: sessionmaker) -> SqlAlchemyRuleStore:
    """Return a rule store whose update timestamps use the fixed clock."""
    return SqlAlchemyRuleStore(sqlite_session_factory, now_provider=lambda: NOW)


@pytest.fixture
def task_store(sqlite_session_factory: sessionmaker) -> SqlAlchemyTaskStore:
    """Return a task store seeded with To Do, Doing and Done sections."""
    store = SqlAlchemyTaskStore(sqlite_session_factory)
    for order, (section_id, name) in enumerate(
        [("todo", "To Do"), ("doing", "Doing"), ("done", "Done")]
    ):
        store.create_section(
            SectionRecord(id=section_id, project_id=PROJECT_ID, name=name, order=order)
        )
    return store


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(NOW)


@pytest.fixture
def engine(
    rule_store: SqlAlchemyRuleStore,
    task_store: SqlAlchemyTaskStore,
    clock: ManualClock,
) -> RuleEngine:
    """Return an engine wired to the sqlite stores and the manual clock."""
    return RuleEngine(
        rule_store,
        task_store,
        undo_slot=UndoSlot(timedelta(seconds=10)),
        clock=clock,
        tick_period=timedelta(seconds=60),
        max_entries=20,
        max_details=10,
        dedup_enabled=True,
    )


@pytest.fixture
def make_rule() -> Callable[..., AutomationRule]:
    """Return a factory for rules with sensible defaults."""

    def factory(**overrides) -> AutomationRule:
        values = {
            "id": str(uuid.uuid4()),
            "project_id": PROJECT_ID,
            "name": "Rule",
            "trigger": EventTrigger(type="card_marked_complete"),
            "filters": [],
            "action": MoveCardAction(type="move_card_to_bottom_of_section", section_id="done"),
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }
        values.update(overrides)
        return AutomationRule(**values)

    return factory


@pytest.fixture
def make_task() -> Callable[..., TaskRecord]:
    """Return a factory for task snapshots with sensible defaults."""

    def factory(**overrides) -> TaskRecord:
        values = {
            "id": str(uuid.uuid4()),
            "project_id": PROJECT_ID,
            "description": "Task",
            "section_id": "todo",
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }
        values.update(overrides)
        return TaskRecord(**values)

    return factory
