"""
Module: fees_kernel.models.unmatched_payment
Responsibility: ORM persistence for received payments that could not be
    attributed to a student.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - external_transaction_id is unique (uq_unmatched_external_transaction).
    - PENDING -> RESOLVED | REJECTED exactly once.  The transition is a
      conditional UPDATE ... WHERE status = 'PENDING' (UnmatchedPaymentQueue)
      and terminal rows are immutable (db/immutability.py).

Audit relevance:
    resolved_by / resolved_at / notes record the operator decision;
    resulting_payment_id links a RESOLVED row to its PaymentRecord.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import TimestampedBase, UUIDString


class UnmatchedStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


VALID_TRANSITIONS: dict[UnmatchedStatus, frozenset[UnmatchedStatus]] = {
    UnmatchedStatus.PENDING: frozenset({UnmatchedStatus.RESOLVED, UnmatchedStatus.REJECTED}),
    UnmatchedStatus.RESOLVED: frozenset(),
    UnmatchedStatus.REJECTED: frozenset(),
}


class UnmatchedPayment(TimestampedBase):
    """A payment waiting for an operator to attribute or reject it."""

    __tablename__ = "unmatched_payments"

    __table_args__ = (
        UniqueConstraint(
            "external_transaction_id", name="uq_unmatched_external_transaction"
        ),
        CheckConstraint("amount > 0", name="ck_unmatched_amount_positive"),
        Index("idx_unmatched_status_occurred", "status", "occurred_at"),
    )

    external_transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    receipt_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    method: Mapped[str] = mapped_column(String(20), nullable=False)

    raw_reference: Mapped[str] = mapped_column(String(200), nullable=False)

    payer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    payer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UnmatchedStatus.PENDING.value,
    )

    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    resulting_payment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    @property
    def status_enum(self) -> UnmatchedStatus:
        return UnmatchedStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status_enum]

    def __repr__(self) -> str:
        return f"<UnmatchedPayment {self.external_transaction_id} {self.status}>"
