"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- In-memory SQLite engine, schema and session per test
- Record store, deterministic clock and a recording notifier
- Seeded approver chains and phase owners
- Structured log capture

Environment Variables:
- WORKFLOW_TEST_DATABASE_URL: run the database tests against another
  database (e.g. PostgreSQL) instead of in-memory SQLite.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from io import StringIO
from typing import Any

import pytest

from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.subject import Actor, GroupKind
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.record_store import SqlAlchemyRecordStore
from workflow_modules.coins_purchase.service import PurchaseOrderService
from workflow_modules.coins_purchase.workflows import ASSIGNMENT_TABLE
from workflow_modules.tickets.service import TicketApprovalService
from workflow_modules.tickets.workflows import ADMIN_TABLE

DEFAULT_TEST_URL = "sqlite://"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, tickets):
            tickets.advance(...)
            logs = captured_logs()
            assert any(r["message"] == "ticket_advanced" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh schema (with history triggers) per test."""
    eng = init_engine_from_url(os.environ.get("WORKFLOW_TEST_DATABASE_URL", DEFAULT_TEST_URL))
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine):
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def store(session):
    return SqlAlchemyRecordStore(session)


@pytest.fixture
def clock():
    return DeterministicClock()


# =============================================================================
# Notifications
# =============================================================================


@dataclass
class RecordingNotifier:
    """Keeps every notification for assertions."""

    sent: list[tuple[str, Any, frozenset[str], dict]] = field(default_factory=list)

    def notify(self, event, subject, recipients, detail) -> None:
        self.sent.append((event, subject, frozenset(recipients), dict(detail)))

    def events(self) -> list[str]:
        return [event for event, _, _, _ in self.sent]

    def recipients_of(self, event: str) -> list[frozenset[str]]:
        return [r for e, _, r, _ in self.sent if e == event]


@pytest.fixture
def notifier():
    return RecordingNotifier()


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def requester():
    return Actor("req-1", "Robin Requester")


@pytest.fixture
def actor():
    """Generic actor for phased workflow tests."""
    return Actor("clerk-1", "Casey Clerk")


# =============================================================================
# Reference data
# =============================================================================


@pytest.fixture
def add_admin(store):
    """Insert one ``department_admins`` row."""

    def _add(
        department_id: str,
        user_id: str,
        order: int,
        kind: GroupKind = GroupKind.PRIMARY,
        requires_cost_center: bool = False,
    ) -> None:
        store.insert(
            ADMIN_TABLE,
            {
                "department_id": department_id,
                "user_id": user_id,
                "user_name": user_id,
                "admin_order": order,
                "is_purchase_admin": kind == GroupKind.SECONDARY,
                "requires_cost_center": requires_cost_center,
            },
        )

    return _add


@pytest.fixture
def it_department(add_admin):
    """Primary ranks 0 (a1) and 1 (a2); purchase ranks 0 (p1, needs cost center) and 1 (p2)."""
    add_admin("IT", "a1", 0)
    add_admin("IT", "a2", 1)
    add_admin("IT", "p1", 0, GroupKind.SECONDARY, requires_cost_center=True)
    add_admin("IT", "p2", 1, GroupKind.SECONDARY)
    return "IT"


@pytest.fixture
def phase_owners(store):
    for phase, user_id in (("sending", "logistics"), ("receiving", "vault"), ("coins_entry", "vault")):
        store.insert(ASSIGNMENT_TABLE, {"phase": phase, "user_id": user_id, "user_name": user_id})


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def tickets(store, clock, notifier):
    return TicketApprovalService(store, clock=clock, notifier=notifier)


@pytest.fixture
def orders(store, clock, notifier):
    return PurchaseOrderService(store, clock=clock, notifier=notifier)
