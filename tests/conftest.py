"""
Pytest fixtures for the fees engine test suite.

Provides:
- One engine and one set of tables per test session
- Per-test sessions rolled back at teardown (kernel and selector tests)
- A tracked session factory with real commits (orchestrator and
  concurrency tests), cleaned up at teardown
- Factories for students, fees and notifications

Environment Variables:
- DATABASE_URL: connection URL.  If not set, a SQLite file in a temporary
  directory is used.  Point it at PostgreSQL to run the suite against the
  production backend.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from fees_kernel.db.base import Base
from fees_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from fees_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fees_kernel.domain.clock import DeterministicClock
from fees_kernel.domain.dtos import NotificationChannel, PaymentNotification
from fees_kernel.domain.notifications import NotificationPolicy, NotificationRequest
from fees_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fees_kernel.services.student_serializer import LockScope, StudentLockRegistry
from fees_services.payment_orchestrator import PaymentOrchestrator
from fees_services.unit_of_work import KernelServices

OPERATOR_PHONE = "254700000001"
PARENT_PHONE = "254711000000"


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
    Capture fees_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, kernel):
            ...
            logs = captured_logs()
            assert any(r["message"] == "ingest_accepted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fees_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        db_path = tmp_path_factory.mktemp("fees_db") / "fees_test.db"
        db_url = f"sqlite:///{db_path}"
    eng = init_engine_from_url(db_url, echo=False, pool_size=30, max_overflow=20)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay active."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _clear_all_tables(engine) -> None:
    """Remove all rows with raw SQL (bypasses ORM immutability listeners)."""
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        if is_postgres():
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Session joined to an outer transaction that is rolled back at teardown.

    Savepoints opened by the services (claims, student registration) nest
    inside the outer transaction.  Do not combine with ``session_factory``
    in one test: on SQLite the outer transaction holds the write lock.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Real-commit session factory (orchestrator / concurrency tests)
# =============================================================================


@pytest.fixture
def session_factory(db_engine, db_tables):
    """Tracked session factory; every created session is closed and all rows
    are removed at teardown."""
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        nonlocal closed
        with lock:
            if closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True
    for s in created_sessions:
        s.close()
    _clear_all_tables(db_engine)


# =============================================================================
# Clock, policy, locks
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def policy() -> NotificationPolicy:
    return NotificationPolicy(
        school_name="Test Academy",
        currency="KES",
        operator_recipients=(OPERATOR_PHONE,),
        notify_operator_on_payment=True,
    )


@pytest.fixture
def lock_registry() -> StudentLockRegistry:
    return StudentLockRegistry(timeout_seconds=5.0)


# =============================================================================
# Kernel services over the rollback session
# =============================================================================


@pytest.fixture
def kernel(session, lock_registry, policy, deterministic_clock):
    """KernelServices wired over the per-test session."""
    scope = LockScope(lock_registry)
    services = KernelServices(session, scope, policy, deterministic_clock)
    yield services
    scope.release_all()


@pytest.fixture
def make_student(kernel):
    """Register a student through StudentService."""

    def _make(reference_code: str | None = None, parent_phone: str | None = PARENT_PHONE, **kwargs):
        return kernel.students.register_student(
            reference_code or f"ADM{uuid4().hex[:8].upper()}",
            kwargs.pop("first_name", "Amina"),
            kwargs.pop("last_name", "Otieno"),
            parent_phone=parent_phone,
            **kwargs,
        )

    return _make


@pytest.fixture
def assign_fee(kernel, deterministic_clock):
    """Assign a fee; each call opens one second later so allocation order
    follows call order."""

    def _assign(student_id, amount, description="Tuition", **kwargs):
        kwargs.setdefault("opened_at", deterministic_clock.tick())
        obligation, _ = kernel.obligations.assign_fee(
            student_id, Decimal(str(amount)), description, **kwargs
        )
        return obligation

    return _assign


@pytest.fixture
def make_notification(deterministic_clock):
    """Build a PaymentNotification with a fresh transaction id."""

    def _make(
        reference: str = "",
        amount="100.00",
        external_transaction_id: str | None = None,
        receipt_number: str | None = None,
        channel: NotificationChannel = NotificationChannel.PAYBILL,
        occurred_at: datetime | None = None,
        **kwargs,
    ) -> PaymentNotification:
        return PaymentNotification(
            external_transaction_id=external_transaction_id or f"TX{uuid4().hex[:10].upper()}",
            amount=Decimal(str(amount)) if amount is not None else None,
            raw_reference=reference,
            occurred_at=occurred_at or deterministic_clock.now(),
            receipt_number=receipt_number,
            channel=channel,
            payer_phone=kwargs.pop("payer_phone", "254722000000"),
            payer_name=kwargs.pop("payer_name", "John Doe"),
            **kwargs,
        )

    return _make


# =============================================================================
# Notifiers and orchestrator
# =============================================================================


class RecordingNotifier:
    """Collects every request it is asked to send."""

    def __init__(self):
        self.sent: list[NotificationRequest] = []
        self._lock = threading.Lock()

    def send(self, request: NotificationRequest) -> None:
        with self._lock:
            self.sent.append(request)


class FailingNotifier:
    """Raises on every send."""

    def __init__(self, message: str = "SMS gateway unavailable"):
        self.message = message
        self.calls = 0

    def send(self, request: NotificationRequest) -> None:
        self.calls += 1
        raise ConnectionError(self.message)


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(session_factory, recording_notifier, policy, lock_registry, deterministic_clock):
    return PaymentOrchestrator(
        session_factory,
        notifier=recording_notifier,
        policy=policy,
        lock_registry=lock_registry,
        clock=deterministic_clock,
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
