"""
Module: fees_kernel.models.credit
Responsibility: ORM persistence for stored credit created by overpayment.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - 0 <= remaining_amount <= original_amount (ck_credit_remaining_bounds).
    - is_active == (remaining_amount > 0), maintained by CreditLedgerService.
    - original_amount never changes; credits are never deleted.

Audit relevance:
    Exhausted credits stay in the table (is_active=False) as history.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import TimestampedBase, UUIDString


class Credit(TimestampedBase):
    """Stored value a student is owed, consumed oldest-first."""

    __tablename__ = "credits"

    __table_args__ = (
        CheckConstraint(
            "remaining_amount >= 0 AND ROUND(original_amount - remaining_amount, 2) >= 0",
            name="ck_credit_remaining_bounds",
        ),
        CheckConstraint("original_amount > 0", name="ck_credit_original_positive"),
        Index("idx_credit_student_active", "student_id", "is_active", "opened_at"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    original_amount: Mapped[Decimal] = mapped_column(nullable=False)

    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)

    source: Mapped[str] = mapped_column(String(200), nullable=False)

    source_payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("payment_records.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Business time of creation; FIFO order key
    opened_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Credit {self.remaining_amount}/{self.original_amount} active={self.is_active}>"
