"""
PaymentRecordService -- lifecycle of payment records.

Responsibility:
    Creates CONFIRMED records for settled notifications, PENDING records
    for push payments we initiated, and moves PENDING records to CONFIRMED
    or FAILED.

Architecture position:
    Kernel > Services.  Called by PaymentIntakeGateway and
    UnmatchedPaymentQueue; register_pending/mark_failed are also exposed
    through the orchestrator for the push-initiation component.

Invariants enforced:
    - PENDING -> CONFIRMED | FAILED only (PaymentRecord.validate_transition).
    - A CONFIRMED record always carries a student id.
    - FAILED has no financial effect.

Failure modes:
    - InvalidPaymentTransitionError, PaymentRecordNotFoundError.
"""

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select

from fees_kernel.db.types import ZERO, round_money
from fees_kernel.domain.dtos import PaymentMethod, PaymentNotification
from fees_kernel.exceptions import PaymentRecordNotFoundError
from fees_kernel.logging_config import get_logger
from fees_kernel.models.payment import PaymentRecord, PaymentStatus
from fees_kernel.services.base import BaseService

logger = get_logger("services.payment_record")


class PaymentRecordService(BaseService[PaymentRecord]):
    def find_by_keys(self, keys: Sequence[str]) -> list[PaymentRecord]:
        """Records whose transaction id or receipt number is one of keys."""
        if not keys:
            return []
        return list(
            self.session.execute(
                select(PaymentRecord)
                .where(
                    or_(
                        PaymentRecord.external_transaction_id.in_(keys),
                        PaymentRecord.receipt_number.in_(keys),
                    )
                )
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def find_pending(self, external_transaction_id: str) -> PaymentRecord | None:
        return self.session.execute(
            select(PaymentRecord)
            .where(
                PaymentRecord.external_transaction_id == external_transaction_id,
                PaymentRecord.status == PaymentStatus.PENDING.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_by_transaction(self, external_transaction_id: str) -> PaymentRecord:
        record = self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.external_transaction_id == external_transaction_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise PaymentRecordNotFoundError(external_transaction_id)
        return record

    def register_pending(
        self,
        student_id: UUID,
        amount: Decimal,
        external_transaction_id: str,
        phone_number: str | None = None,
        method: PaymentMethod = PaymentMethod.MPESA,
    ) -> PaymentRecord:
        """Record a push payment we asked the payer to approve."""
        amount = round_money(amount)
        if amount <= ZERO:
            raise ValueError(f"Payment amount must be positive, got {amount}")

        record = PaymentRecord(
            external_transaction_id=external_transaction_id,
            student_id=student_id,
            amount=amount,
            method=PaymentMethod(method).value,
            status=PaymentStatus.PENDING.value,
            payer_phone=phone_number,
            occurred_at=self.clock.now(),
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            "payment_pending_registered",
            extra={
                "external_transaction_id": external_transaction_id,
                "student_id": str(student_id),
                "amount": str(amount),
            },
        )
        return record

    def create_confirmed(
        self,
        notification: PaymentNotification,
        student_id: UUID,
        amount: Decimal,
        *,
        payment_id: UUID | None = None,
        unmatched_payment_id: UUID | None = None,
        occurred_at: datetime | None = None,
    ) -> PaymentRecord:
        record = PaymentRecord(
            external_transaction_id=notification.external_transaction_id,
            receipt_number=notification.receipt_number,
            student_id=student_id,
            amount=round_money(amount),
            method=notification.method,
            status=PaymentStatus.CONFIRMED.value,
            payer_phone=notification.payer_phone,
            payer_name=notification.payer_name,
            occurred_at=occurred_at or notification.occurred_at,
            confirmed_at=self.clock.now(),
            unmatched_payment_id=unmatched_payment_id,
        )
        if payment_id is not None:
            record.id = payment_id
        self.session.add(record)
        self.session.flush()

        logger.info(
            "payment_confirmed",
            extra={
                "external_transaction_id": record.external_transaction_id,
                "payment_id": str(record.id),
                "student_id": str(student_id),
                "amount": str(record.amount),
            },
        )
        return record

    def confirm(
        self,
        record: PaymentRecord,
        *,
        amount: Decimal,
        receipt_number: str | None = None,
        payer_phone: str | None = None,
        payer_name: str | None = None,
        occurred_at: datetime | None = None,
        student_id: UUID | None = None,
        unmatched_payment_id: UUID | None = None,
    ) -> PaymentRecord:
        """
        PENDING -> CONFIRMED.

        The settled amount replaces the requested one: the payer may have
        approved a different amount than we asked for.
        """
        record.validate_transition(PaymentStatus.CONFIRMED)

        requested = round_money(record.amount)
        record.status = PaymentStatus.CONFIRMED.value
        record.amount = round_money(amount)
        record.confirmed_at = self.clock.now()
        if receipt_number:
            record.receipt_number = receipt_number
        if payer_phone:
            record.payer_phone = payer_phone
        if payer_name:
            record.payer_name = payer_name
        if occurred_at is not None:
            record.occurred_at = occurred_at
        if student_id is not None:
            record.student_id = student_id
        if unmatched_payment_id is not None:
            record.unmatched_payment_id = unmatched_payment_id
        self.session.flush()

        if requested != record.amount:
            logger.warning(
                "payment_amount_differs_from_request",
                extra={
                    "external_transaction_id": record.external_transaction_id,
                    "requested": str(requested),
                    "settled": str(record.amount),
                },
            )
        logger.info(
            "payment_confirmed",
            extra={
                "external_transaction_id": record.external_transaction_id,
                "payment_id": str(record.id),
                "student_id": str(record.student_id),
                "amount": str(record.amount),
            },
        )
        return record

    def mark_failed(self, external_transaction_id: str, reason: str) -> PaymentRecord:
        """PENDING -> FAILED; replaying the failure is a no-op."""
        record = self.get_by_transaction(external_transaction_id)
        if record.status == PaymentStatus.FAILED.value:
            logger.info(
                "payment_failure_replayed",
                extra={"external_transaction_id": external_transaction_id},
            )
            return record

        record.validate_transition(PaymentStatus.FAILED)
        record.status = PaymentStatus.FAILED.value
        record.failure_reason = reason[:500]
        self.session.flush()

        logger.info(
            "payment_failed",
            extra={"external_transaction_id": external_transaction_id, "reason": reason},
        )
        return record
