"""Shared test fixtures and configuration.

All stores share one temp SQLite file per test, and every service gets the
same fixed clock so dates in assertions are stable.
"""

import os

# Patch env vars BEFORE any reminder_engine imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import datetime

import pytest

# Tuesday morning, not a leap year
NOW = datetime(2026, 3, 10, 9, 30)
TODAY = NOW.date()


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_reminders.db")


@pytest.fixture
def owner_db(tmp_db_path):
    from reminder_engine.data.db import OwnerDB
    return OwnerDB(db_path=tmp_db_path, timeout=1.0)


@pytest.fixture
def contact_db(tmp_db_path):
    from reminder_engine.data.db import ContactDB
    return ContactDB(db_path=tmp_db_path, timeout=1.0)


@pytest.fixture
def rule_db(tmp_db_path):
    from reminder_engine.data.db import RuleDB
    return RuleDB(db_path=tmp_db_path, timeout=1.0)


@pytest.fixture
def instance_db(tmp_db_path):
    from reminder_engine.data.db import InstanceDB
    return InstanceDB(db_path=tmp_db_path, timeout=1.0)


@pytest.fixture
def materializer(rule_db, contact_db, instance_db, clock):
    from reminder_engine.core.materializer import Materializer
    return Materializer(rules=rule_db, targets=contact_db, instances=instance_db, clock=clock)


@pytest.fixture
def scorer(instance_db, clock):
    from reminder_engine.core.queue_scorer import QueueScorer
    return QueueScorer(instance_db, clock=clock)


@pytest.fixture
def state_machine(instance_db, clock):
    from reminder_engine.core.state_machine import InstanceStateMachine
    return InstanceStateMachine(instance_db, clock=clock)


@pytest.fixture
def service(rule_db, contact_db, instance_db, materializer, clock):
    from reminder_engine.core.reminder_service import ReminderService
    return ReminderService(
        rules=rule_db,
        contacts=contact_db,
        instances=instance_db,
        materializer=materializer,
        clock=clock,
    )


@pytest.fixture
def owner(owner_db):
    return owner_db.add_owner("Amit")


@pytest.fixture
def contact(contact_db, owner):
    return contact_db.add_contact(owner.id, "Dana")
