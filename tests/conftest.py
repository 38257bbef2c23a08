"""
Shared fixtures.

Everything runs against the in-memory store with a fixed clock; there
are no network calls anywhere in the suite.
"""

from datetime import datetime, timezone

import pytest

from pocket_planner.audit import AuditLogger
from pocket_planner.config import LedgerSettings, NotificationSettings
from pocket_planner.ledger import CategoryRegistry, TransactionCoordinator
from pocket_planner.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
PERIOD = "2024-05"


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        backend="memory",
        commit_max_attempts=3,
        reject_duplicate_categories=True,
    )


@pytest.fixture
def notification_settings():
    return NotificationSettings(
        success_seconds=2.0,
        info_seconds=4.0,
        warning_seconds=6.0,
        error_seconds=None,
    )


@pytest.fixture
def store(clock):
    return InMemoryLedgerStore(clock=clock)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage, user_id="user-1")


@pytest.fixture
def registry(store, audit_logger, ledger_settings, clock):
    return CategoryRegistry(store, audit_logger, settings=ledger_settings, clock=clock)


@pytest.fixture
def coordinator(store, registry, audit_logger, ledger_settings, clock):
    return TransactionCoordinator(
        store, registry, audit_logger, settings=ledger_settings, clock=clock
    )
