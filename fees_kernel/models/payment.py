"""
Module: fees_kernel.models.payment
Responsibility: ORM persistence for payment records, the durable record of
    one money-movement event.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain value objects.

Invariants enforced:
    - external_transaction_id is unique (uq_payment_external_transaction).
    - receipt_number is unique when present (uq_payment_receipt_number).
    - Status follows VALID_TRANSITIONS: PENDING -> CONFIRMED | FAILED.
      CONFIRMED and FAILED are terminal (db/immutability.py).
    - A CONFIRMED record always carries student_id.

Failure modes:
    - IntegrityError on duplicate external_transaction_id / receipt_number.
    - InvalidPaymentTransitionError from validate_transition().
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import TimestampedBase, UUIDString
from fees_kernel.domain.dtos import PaymentMethod


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


VALID_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.CONFIRMED, PaymentStatus.FAILED}),
    PaymentStatus.CONFIRMED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


class PaymentRecord(TimestampedBase):
    """
    One received (or expected) payment.

    Contract:
        PENDING rows are created by the push-payment initiator and later
        confirmed or failed by a gateway callback.  Notifications without a
        prior pending row create CONFIRMED rows directly.
    """

    __tablename__ = "payment_records"

    __table_args__ = (
        UniqueConstraint("external_transaction_id", name="uq_payment_external_transaction"),
        UniqueConstraint("receipt_number", name="uq_payment_receipt_number"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    external_transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    receipt_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    student_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentMethod.MPESA.value,
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    payer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    payer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Set when the payment came through the unmatched queue
    unmatched_payment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status_enum]

    def validate_transition(self, target: PaymentStatus) -> None:
        """Raise InvalidPaymentTransitionError unless target is reachable."""
        from fees_kernel.exceptions import InvalidPaymentTransitionError

        if target not in VALID_TRANSITIONS[self.status_enum]:
            raise InvalidPaymentTransitionError(
                self.external_transaction_id, self.status, target.value
            )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.external_transaction_id} {self.status}>"
