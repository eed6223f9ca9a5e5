"""
Fixtures for clearance tests.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from nodue.modules.audit.repository import InMemoryAuditSink
from nodue.modules.clearance.aggregation import aggregate_status, can_reapply
from nodue.modules.clearance.models import Department, Verdict
from nodue.modules.clearance.repository import InMemoryApplicationStore
from nodue.modules.clearance.schemas import Application, ApplicationCreate
from nodue.modules.clearance.service import ClearanceRegistry


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def mock_session_maker(mock_db):
    """A session factory whose sessions are all `mock_db`."""
    session_ctx = MagicMock()
    session_ctx.__aenter__ = AsyncMock(return_value=mock_db)
    session_ctx.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=session_ctx)


@pytest.fixture
def store():
    return InMemoryApplicationStore()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def mock_notifier():
    """Create a mock notification dispatcher."""
    notifier = AsyncMock()
    notifier.notify_approved = AsyncMock()
    notifier.notify_decision = AsyncMock()
    return notifier


@pytest.fixture
def registry(store, mock_notifier, audit_sink):
    return ClearanceRegistry(
        store,
        notifier=mock_notifier,
        audit=audit_sink,
        timeout_seconds=1.0,
        lock_timeout_seconds=1.0,
    )


@pytest.fixture
def sample_candidate():
    """Create a sample submission."""
    return ApplicationCreate(
        student_id="STU001",
        student_name="Asha Rao",
        roll_number="21CS042",
        email="asha.rao@example.edu",
        department="Computer Science",
        course="B.Tech",
        year="4",
        reason="Graduation",
        college_name="Sample University",
    )


@pytest.fixture
def make_application():
    """Build an Application with the given verdicts (anything unspecified is pending)."""

    def _make(student_id: str = "STU001", version: int = 1, **verdicts: Verdict) -> Application:
        progress = {d: verdicts.get(d.value, Verdict.PENDING) for d in Department}
        status = aggregate_status(progress)
        return Application(
            id=uuid4(),
            student_id=student_id,
            student_name="Asha Rao",
            roll_number="21CS042",
            email="asha.rao@example.edu",
            department="Computer Science",
            course="B.Tech",
            year="4",
            submission_date=datetime.now(UTC),
            progress=progress,
            status=status,
            can_reapply=can_reapply(status),
            version=version,
        )

    return _make
