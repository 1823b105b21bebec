"""
fees_services.payment_orchestrator -- single transactional entry point.

Responsibility:
    Every operation that moves money or changes reconciliation state runs
    here, inside one UnitOfWork: payment intake, unmatched resolution and
    rejection, fee assignment, push-payment lifecycle and the student
    freeze.  Staged notifications are dispatched after commit.

Architecture position:
    Services -- composition root.  Adapters (fees_ingestion) and operator
    tools (scripts/) call this module; nothing in fees_kernel does.

Invariants enforced:
    - All-or-nothing: each public call is one database transaction.
    - Bounded retry: ConcurrencyConflictError (lock timeout, lost
      version CAS) re-runs the whole unit up to max_conflict_retries times,
      then propagates.
    - Halt on violation: any InvariantViolationError other than
      StudentFrozenError rolls the unit back, freezes the student in a
      separate transaction, is logged at CRITICAL and re-raised.  It is
      never retried.
    - Notification delivery happens after commit and can never undo or
      fail the financial transaction.

Failure modes:
    - Domain errors from the kernel (NotFoundError, DuplicateError,
      UnmatchedPaymentAlreadyResolvedError, ...) propagate unchanged after
      rollback.

Usage:
    orchestrator = build_payment_orchestrator(get_session_factory())
    result = orchestrator.handle_notification(notification)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from fees_kernel.db.immutability import register_immutability_listeners
from fees_kernel.domain.clock import Clock, SystemClock
from fees_kernel.domain.dtos import (
    CreditApplication,
    IngestResult,
    PaymentMethod,
    PaymentNotification,
    ResolutionOutcome,
)
from fees_kernel.domain.notifications import NotificationPolicy
from fees_kernel.exceptions import (
    ConcurrencyConflictError,
    InvariantViolationError,
    StudentFrozenError,
)
from fees_kernel.logging_config import LogContext, get_logger
from fees_kernel.models.obligation import Obligation
from fees_kernel.models.payment import PaymentRecord
from fees_kernel.models.student import EnrollmentStatus, Student
from fees_kernel.models.unmatched_payment import UnmatchedPayment
from fees_kernel.services.student_serializer import StudentLockRegistry
from fees_services.notification_dispatcher import DispatchReport, OutboxDispatcher
from fees_services.notifier import LoggingNotifier, Notifier
from fees_services.observability import (
    log_conflict_exhausted,
    log_conflict_retry,
    log_invariant_violation,
    log_payment_ingested,
    log_student_frozen,
)
from fees_services.unit_of_work import KernelServices, UnitOfWork

logger = get_logger("services.payment_orchestrator")

T = TypeVar("T")

DEFAULT_MAX_CONFLICT_RETRIES = 3


class PaymentOrchestrator:
    """Runs kernel operations in units of work.

    Contract:
        Receives a session factory (one session per unit of work), a
        Notifier and the kernel-level policy objects built from
        configuration.  Holds no session of its own between calls, so one
        instance is safe to share between threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier: Notifier | None = None,
        policy: NotificationPolicy | None = None,
        lock_registry: StudentLockRegistry | None = None,
        clock: Clock | None = None,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        dispatch_batch_size: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._policy = policy if policy is not None else NotificationPolicy()
        self._lock_registry = (
            lock_registry if lock_registry is not None else StudentLockRegistry()
        )
        self._clock = clock if clock is not None else SystemClock()
        self._max_conflict_retries = max_conflict_retries
        self._dispatch_batch_size = dispatch_batch_size
        self.dispatcher = OutboxDispatcher(
            session_factory,
            notifier if notifier is not None else LoggingNotifier(),
            self._clock,
        )
        register_immutability_listeners()

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[KernelServices], T],
        student_id: UUID | None = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._run_once(work)
            except ConcurrencyConflictError as exc:
                if attempt > self._max_conflict_retries:
                    log_conflict_exhausted(
                        operation=operation, attempts=attempt, exc_code=exc.code,
                    )
                    raise
                log_conflict_retry(operation=operation, attempt=attempt, exc_code=exc.code)
            except StudentFrozenError:
                raise
            except InvariantViolationError as exc:
                self._halt(operation, exc, exc.student_id or student_id)
                raise

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(
            self._session_factory, self._lock_registry, self._policy, self._clock,
        )

    def _run_once(self, work: Callable[[KernelServices], T]) -> T:
        with self.unit_of_work() as uow:
            outcome = work(uow.services)
            staged = list(uow.services.outbox.staged_ids)
            if staged:
                uow.after_commit(lambda: self.dispatcher.dispatch(staged))
        return outcome

    def _halt(self, operation: str, exc: InvariantViolationError, student_id) -> None:
        log_invariant_violation(
            operation=operation,
            exc_code=exc.code,
            student_id=str(student_id) if student_id is not None else None,
            detail=str(exc),
        )
        if student_id is None:
            return
        student_uuid = student_id if isinstance(student_id, UUID) else UUID(str(student_id))
        reason = f"{exc.code}: {exc}"
        try:
            with self.unit_of_work() as uow:
                uow.services.students.freeze_student(student_uuid, reason)
        except Exception:
            logger.exception(
                "student_freeze_failed",
                extra={"student_id": str(student_uuid), "operation": operation},
            )
            return
        log_student_frozen(student_id=str(student_uuid), reason=reason)

    # ------------------------------------------------------------------
    # Payment intake
    # ------------------------------------------------------------------

    def handle_notification(self, notification: PaymentNotification) -> IngestResult:
        """Ingest one settlement notification (at most once per key)."""
        started = time.perf_counter()
        result = self._run(
            "handle_notification",
            lambda services: services.gateway.ingest(notification),
        )
        log_payment_ingested(
            status=result.status.value,
            matched=result.matched,
            duration_ms=(time.perf_counter() - started) * 1000,
            payload_mismatch=result.payload_mismatch,
            external_transaction_id=notification.external_transaction_id,
        )
        return result

    def register_pending_payment(
        self,
        student_id: UUID,
        amount: Decimal,
        external_transaction_id: str,
        phone_number: str | None = None,
        method: PaymentMethod = PaymentMethod.MPESA,
    ) -> PaymentRecord:
        return self._run(
            "register_pending_payment",
            lambda services: services.payments.register_pending(
                student_id, amount, external_transaction_id, phone_number, method,
            ),
        )

    def fail_pending_payment(self, external_transaction_id: str, reason: str) -> PaymentRecord:
        with LogContext.bind(transaction_id=external_transaction_id):
            return self._run(
                "fail_pending_payment",
                lambda services: services.payments.mark_failed(external_transaction_id, reason),
            )

    # ------------------------------------------------------------------
    # Unmatched queue
    # ------------------------------------------------------------------

    def resolve_unmatched(
        self,
        unmatched_payment_id: UUID,
        student_id: UUID,
        operator_id: str,
        notes: str | None = None,
    ) -> ResolutionOutcome:
        with LogContext.bind(operator_id=operator_id):
            return self._run(
                "resolve_unmatched",
                lambda services: services.unmatched.resolve(
                    unmatched_payment_id, student_id, operator_id, notes,
                ),
                student_id=student_id,
            )

    def reject_unmatched(
        self,
        unmatched_payment_id: UUID,
        operator_id: str,
        notes: str | None = None,
    ) -> UnmatchedPayment:
        with LogContext.bind(operator_id=operator_id):
            return self._run(
                "reject_unmatched",
                lambda services: services.unmatched.reject(
                    unmatched_payment_id, operator_id, notes,
                ),
            )

    # ------------------------------------------------------------------
    # Students and fees
    # ------------------------------------------------------------------

    def register_student(
        self,
        reference_code: str,
        first_name: str,
        last_name: str,
        parent_phone: str | None = None,
        enrollment_status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
    ) -> Student:
        return self._run(
            "register_student",
            lambda services: services.students.register_student(
                reference_code, first_name, last_name, parent_phone, enrollment_status,
            ),
        )

    def assign_fee(
        self,
        student_id: UUID,
        amount_due: Decimal,
        description: str,
        fee_code: str | None = None,
        academic_year: int | None = None,
        term: str | None = None,
        opened_at: datetime | None = None,
    ) -> tuple[Obligation, tuple[CreditApplication, ...]]:
        with LogContext.bind(student_id=student_id):
            return self._run(
                "assign_fee",
                lambda services: services.obligations.assign_fee(
                    student_id, amount_due, description,
                    fee_code=fee_code,
                    academic_year=academic_year,
                    term=term,
                    opened_at=opened_at,
                ),
                student_id=student_id,
            )

    def freeze_student(self, student_id: UUID, reason: str) -> Student:
        student = self._run(
            "freeze_student",
            lambda services: services.students.freeze_student(student_id, reason),
        )
        log_student_frozen(student_id=str(student_id), reason=reason)
        return student

    def unfreeze_student(
        self,
        student_id: UUID,
        operator_id: str,
        notes: str | None = None,
    ) -> Student:
        with LogContext.bind(operator_id=operator_id):
            return self._run(
                "unfreeze_student",
                lambda services: services.students.unfreeze_student(
                    student_id, operator_id, notes,
                ),
            )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def dispatch_notifications(self, limit: int | None = None) -> DispatchReport:
        """Deliver PENDING outbox rows and retry FAILED ones."""
        return self.dispatcher.dispatch_pending(limit=limit or self._dispatch_batch_size)


def build_payment_orchestrator(
    session_factory: sessionmaker[Session],
    config_path: Path | str | None = None,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
) -> PaymentOrchestrator:
    """Wire an orchestrator from the active configuration."""
    from fees_config import get_active_config
    from fees_config.bridges import notification_policy, student_lock_registry

    config = get_active_config(config_path)
    return PaymentOrchestrator(
        session_factory,
        notifier=notifier,
        policy=notification_policy(config),
        lock_registry=student_lock_registry(config),
        clock=clock,
        max_conflict_retries=config.concurrency.max_conflict_retries,
        dispatch_batch_size=config.notifications.dispatch_batch_size,
    )
