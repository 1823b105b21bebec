"""
fees_services.unit_of_work -- transaction boundary and service container.

Responsibility:
    KernelServices creates every kernel service for one session exactly
    once and wires them together.  UnitOfWork owns the session lifecycle:
    commit on success, rollback on any exception, release the in-process
    student locks afterwards and run post-commit hooks only after a
    successful commit.

Architecture position:
    Services -- the only place kernel services are constructed and the
    only place a commit happens.

Invariants enforced:
    - Single-instance lifecycle: one AuditLedgerService, one
      StudentSerializer, one outbox per unit of work.
    - Student locks are released after commit/rollback, never before, so
      another writer cannot observe uncommitted state for the student.
    - Post-commit hooks never affect the committed transaction; a failing
      hook is logged and the remaining hooks still run.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session, sessionmaker

from fees_kernel.domain.clock import Clock, SystemClock
from fees_kernel.domain.notifications import NotificationPolicy
from fees_kernel.logging_config import get_logger
from fees_kernel.selectors import BalanceSelector, LedgerSelector, UnmatchedSelector
from fees_kernel.services import (
    AllocationService,
    AuditLedgerService,
    CreditLedgerService,
    LockScope,
    NotificationOutboxService,
    ObligationService,
    PaymentIntakeGateway,
    PaymentRecordService,
    StudentLockRegistry,
    StudentResolver,
    StudentSerializer,
    StudentService,
    UnmatchedPaymentQueue,
)

logger = get_logger("services.unit_of_work")


class KernelServices:
    """Kernel services sharing one session, clock and lock scope.

    Contract:
        Construction order is the dependency graph.  Nothing here commits.
    """

    def __init__(
        self,
        session: Session,
        lock_scope: LockScope,
        policy: NotificationPolicy,
        clock: Clock,
    ) -> None:
        self.session = session

        # Foundational
        self.audit = AuditLedgerService(session, clock)
        self.credits = CreditLedgerService(session, self.audit, clock)
        self.allocation = AllocationService(session, self.audit, self.credits, clock)
        self.serializer = StudentSerializer(session, lock_scope, clock)

        self.resolver = StudentResolver(session, clock)
        self.students = StudentService(session, clock)
        self.payments = PaymentRecordService(session, clock)
        self.outbox = NotificationOutboxService(session, clock)

        self.unmatched = UnmatchedPaymentQueue(
            session,
            self.serializer,
            self.payments,
            self.allocation,
            self.audit,
            self.outbox,
            policy=policy,
            clock=clock,
        )
        self.gateway = PaymentIntakeGateway(
            session,
            serializer=self.serializer,
            resolver=self.resolver,
            payments=self.payments,
            allocation=self.allocation,
            audit=self.audit,
            unmatched=self.unmatched,
            outbox=self.outbox,
            policy=policy,
            clock=clock,
        )
        self.obligations = ObligationService(
            session, self.serializer, self.audit, self.allocation, clock,
        )

        # Read models
        self.balances = BalanceSelector(session)
        self.ledger = LedgerSelector(session)
        self.unmatched_view = UnmatchedSelector(session)


class UnitOfWork:
    """One database transaction.

    Usage:
        with UnitOfWork(factory, registry, policy) as uow:
            uow.services.gateway.ingest(notification)
            uow.after_commit(lambda: dispatch(uow.services.outbox.staged_ids))
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lock_registry: StudentLockRegistry,
        policy: NotificationPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._lock_registry = lock_registry
        self._policy = policy if policy is not None else NotificationPolicy()
        self._clock = clock if clock is not None else SystemClock()
        self._hooks: list[Callable[[], object]] = []
        self.session: Session | None = None
        self.locks: LockScope | None = None
        self.services: KernelServices | None = None
        self.committed = False

    def after_commit(self, hook: Callable[[], object]) -> None:
        self._hooks.append(hook)

    def __enter__(self) -> UnitOfWork:
        self.session = self._session_factory()
        self.locks = LockScope(self._lock_registry)
        self.services = KernelServices(self.session, self.locks, self._policy, self._clock)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.session.commit()
                self.committed = True
            else:
                self.session.rollback()
        finally:
            self.locks.release_all()
            self.session.close()

        if self.committed:
            self._run_hooks()

    def _run_hooks(self) -> None:
        for hook in self._hooks:
            try:
                hook()
            except Exception:
                logger.exception(
                    "post_commit_hook_failed",
                    extra={"hook": getattr(hook, "__name__", repr(hook))},
                )
