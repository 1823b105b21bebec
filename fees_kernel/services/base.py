"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  Concrete services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The caller
      (fees_services.unit_of_work.UnitOfWork, or a test harness) owns
      commit/rollback, so one notification's claim, payment record,
      obligation updates, credit and ledger entries land atomically.

Failure modes:
    - A subclass that commits breaks the all-or-nothing guarantee of
      Ingest and Resolve.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fees_kernel.db.base import Base
from fees_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a ``Session`` and an optional ``Clock``; business time is
        always read from the clock, never from datetime.now().

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models -- those belong in
          ``fees_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock if clock is not None else SystemClock()
