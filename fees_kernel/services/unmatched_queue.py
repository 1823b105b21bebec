"""
UnmatchedPaymentQueue -- payments waiting for manual attribution.

Responsibility:
    Parks payments the resolver could not attribute and runs the operator
    state machine: PENDING -> RESOLVED (payment record + allocation) or
    PENDING -> REJECTED (no financial effect).

Architecture position:
    Kernel > Services.  park() is called by PaymentIntakeGateway; resolve()
    and reject() by the orchestrator on operator commands.

Invariants enforced:
    - Exactly one transition out of PENDING.  The transition is a
      conditional ``UPDATE ... WHERE id = :id AND status = 'PENDING'``;
      the loser of a race updates zero rows and gets
      UnmatchedPaymentAlreadyResolvedError.  Under READ COMMITTED the loser
      blocks on the winner's row lock and re-evaluates the predicate after
      the winner commits; if the winner rolls back, the loser proceeds.
    - The CAS runs before the student section is entered (lock ordering,
      see StudentSerializer).
    - A RESOLVED row links resulting_payment_id to the payment record it
      produced; terminal rows are immutable (db/immutability.py).

Failure modes:
    - UnmatchedPaymentNotFoundError, UnmatchedPaymentAlreadyResolvedError.
    - StudentNotFoundError / StudentFrozenError from the serializer (the
      whole unit rolls back, the row stays PENDING).
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fees_kernel.db.types import as_utc, round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.domain.dtos import PaymentNotification, ResolutionOutcome
from fees_kernel.domain.notifications import (
    Audience,
    NotificationKind,
    NotificationPolicy,
    payment_received,
)
from fees_kernel.exceptions import (
    UnmatchedPaymentAlreadyResolvedError,
    UnmatchedPaymentNotFoundError,
)
from fees_kernel.logging_config import LogContext, get_logger
from fees_kernel.models.unmatched_payment import UnmatchedPayment, UnmatchedStatus
from fees_kernel.services.allocation_service import AllocationService
from fees_kernel.services.audit_ledger import AuditLedgerService
from fees_kernel.services.base import BaseService
from fees_kernel.services.outbox import NotificationOutboxService
from fees_kernel.services.payment_record_service import PaymentRecordService
from fees_kernel.services.student_serializer import StudentSerializer

logger = get_logger("services.unmatched_queue")


class UnmatchedPaymentQueue(BaseService[UnmatchedPayment]):
    def __init__(
        self,
        session: Session,
        serializer: StudentSerializer,
        payments: PaymentRecordService,
        allocation: AllocationService,
        audit: AuditLedgerService,
        outbox: NotificationOutboxService,
        policy: NotificationPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._serializer = serializer
        self._payments = payments
        self._allocation = allocation
        self._audit = audit
        self._outbox = outbox
        self._policy = policy if policy is not None else NotificationPolicy()

    def find_by_transaction(self, external_transaction_id: str) -> UnmatchedPayment | None:
        return self.session.execute(
            select(UnmatchedPayment).where(
                UnmatchedPayment.external_transaction_id == external_transaction_id
            )
        ).scalar_one_or_none()

    def park(
        self,
        notification: PaymentNotification,
        amount: Decimal,
        note: str | None = None,
    ) -> UnmatchedPayment:
        """Hold a received payment for manual review."""
        row = UnmatchedPayment(
            external_transaction_id=notification.external_transaction_id,
            receipt_number=notification.receipt_number,
            amount=round_money(amount),
            method=notification.method,
            raw_reference=(notification.raw_reference or "").strip(),
            payer_phone=notification.payer_phone,
            payer_name=notification.payer_name,
            occurred_at=notification.occurred_at,
            status=UnmatchedStatus.PENDING.value,
            notes=note,
        )
        self.session.add(row)
        self.session.flush()

        logger.warning(
            "unmatched_payment_created",
            extra={
                "unmatched_payment_id": str(row.id),
                "external_transaction_id": row.external_transaction_id,
                "raw_reference": row.raw_reference,
                "amount": str(row.amount),
                "note": note,
            },
        )
        return row

    def _load(self, unmatched_payment_id: UUID) -> UnmatchedPayment:
        row = self.session.execute(
            select(UnmatchedPayment)
            .where(UnmatchedPayment.id == unmatched_payment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise UnmatchedPaymentNotFoundError(str(unmatched_payment_id))
        if row.status != UnmatchedStatus.PENDING.value:
            raise UnmatchedPaymentAlreadyResolvedError(str(unmatched_payment_id), row.status)
        return row

    def _transition(
        self,
        row: UnmatchedPayment,
        target: UnmatchedStatus,
        operator_id: str,
        notes: str | None,
        resulting_payment_id: UUID | None = None,
    ) -> None:
        result = self.session.execute(
            update(UnmatchedPayment)
            .where(
                UnmatchedPayment.id == row.id,
                UnmatchedPayment.status == UnmatchedStatus.PENDING.value,
            )
            .values(
                status=target.value,
                resolved_by=operator_id,
                resolved_at=self.clock.now(),
                notes=notes,
                resulting_payment_id=resulting_payment_id,
            )
        )
        if result.rowcount != 1:
            self.session.refresh(row)
            logger.warning(
                "unmatched_payment_transition_lost",
                extra={
                    "unmatched_payment_id": str(row.id),
                    "target_status": target.value,
                    "current_status": row.status,
                },
            )
            raise UnmatchedPaymentAlreadyResolvedError(str(row.id), row.status)

    def resolve(
        self,
        unmatched_payment_id: UUID,
        student_id: UUID,
        operator_id: str,
        notes: str | None = None,
    ) -> ResolutionOutcome:
        """
        Attribute the payment to student_id and allocate it.

        If a PENDING push-payment record carries the same transaction id it
        is confirmed instead of creating a second record.
        """
        row = self._load(unmatched_payment_id)

        pending = self._payments.find_pending(row.external_transaction_id)
        payment_id = pending.id if pending is not None else uuid4()

        self._transition(row, UnmatchedStatus.RESOLVED, operator_id, notes, payment_id)

        with LogContext.bind(student_id=student_id, operator_id=operator_id):
            student = self._serializer.enter(student_id)
            amount = round_money(row.amount)

            if pending is not None:
                payment = self._payments.confirm(
                    pending,
                    amount=amount,
                    receipt_number=row.receipt_number,
                    payer_phone=row.payer_phone,
                    payer_name=row.payer_name,
                    occurred_at=row.occurred_at,
                    student_id=student_id,
                    unmatched_payment_id=row.id,
                )
            else:
                payment = self._payments.create_confirmed(
                    PaymentNotification(
                        external_transaction_id=row.external_transaction_id,
                        amount=amount,
                        raw_reference=row.raw_reference,
                        occurred_at=as_utc(row.occurred_at),
                        method=row.method,
                        payer_phone=row.payer_phone,
                        payer_name=row.payer_name,
                        receipt_number=row.receipt_number,
                    ),
                    student_id,
                    amount,
                    payment_id=payment_id,
                    unmatched_payment_id=row.id,
                )

            allocation = self._allocation.allocate(student, amount, payment)
            self._audit.assert_consistent(student_id)
            self._serializer.bump_version(student)

            self._outbox.enqueue(
                request
                for request in payment_received(
                    self._policy,
                    student_id=student.id,
                    student_name=student.full_name,
                    reference_code=student.reference_code,
                    parent_phone=student.parent_phone,
                    amount=amount,
                    amount_owed=allocation.amount_owed,
                    transaction_ref=row.external_transaction_id,
                    method=row.method,
                    occurred_at=as_utc(row.occurred_at),
                    kind=NotificationKind.UNMATCHED_RESOLVED,
                )
                if request.audience is Audience.PARENT
            )

            logger.info(
                "unmatched_payment_resolved",
                extra={
                    "unmatched_payment_id": str(row.id),
                    "payment_id": str(payment.id),
                    "amount": str(amount),
                },
            )

        return ResolutionOutcome(
            unmatched_payment_id=row.id,
            payment_id=payment.id,
            student_id=student_id,
            allocation=allocation,
        )

    def reject(
        self,
        unmatched_payment_id: UUID,
        operator_id: str,
        notes: str | None = None,
    ) -> UnmatchedPayment:
        """Close the row with no financial effect (refunded or written off)."""
        row = self._load(unmatched_payment_id)
        self._transition(row, UnmatchedStatus.REJECTED, operator_id, notes)
        logger.info(
            "unmatched_payment_rejected",
            extra={
                "unmatched_payment_id": str(row.id),
                "operator_id": operator_id,
                "amount": str(round_money(row.amount)),
            },
        )
        return row
