"""
Module: fees_kernel.models.obligation
Responsibility: ORM persistence for obligations (fee assignments).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount_paid + balance == amount_due to the cent (ck_obligation_arithmetic).
    - balance >= 0 (ck_obligation_balance_non_negative).
    - OPEN -> SETTLED is monotonic; a SETTLED obligation is never reopened
      and amount_due never changes (db/immutability.py).
    - Obligations are never deleted (db/immutability.py).
    - At most one obligation per (student, fee_code) when fee_code is set.

Failure modes:
    - IntegrityError on CHECK or UNIQUE violation.

Audit relevance:
    Every change to amount_paid/balance is mirrored by a ledger entry
    referencing this obligation.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import TimestampedBase, UUIDString


class ObligationStatus(str, Enum):
    OPEN = "OPEN"
    SETTLED = "SETTLED"


class Obligation(TimestampedBase):
    """
    One fee a student owes.

    Contract:
        Created by ObligationService.assign_fee; mutated only by
        AllocationService.

    Guarantees:
        - status == SETTLED iff balance == 0.
    """

    __tablename__ = "obligations"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_obligation_balance_non_negative"),
        # SQLite stores Numeric as REAL; compare at currency precision
        CheckConstraint(
            "ROUND(amount_paid + balance - amount_due, 2) = 0",
            name="ck_obligation_arithmetic",
        ),
        CheckConstraint("amount_due > 0", name="ck_obligation_amount_due_positive"),
        UniqueConstraint("student_id", "fee_code", name="uq_obligation_student_fee"),
        Index("idx_obligation_student_open", "student_id", "status", "opened_at"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(String(200), nullable=False)

    fee_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    academic_year: Mapped[int | None] = mapped_column(nullable=True)

    term: Mapped[str | None] = mapped_column(String(20), nullable=True)

    amount_due: Mapped[Decimal] = mapped_column(nullable=False)

    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    balance: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ObligationStatus.OPEN.value,
    )

    opened_at: Mapped[datetime] = mapped_column(nullable=False)

    settled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status == ObligationStatus.OPEN.value

    def __repr__(self) -> str:
        return f"<Obligation {self.description} balance={self.balance} {self.status}>"
