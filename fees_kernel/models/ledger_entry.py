"""
Module: fees_kernel.models.ledger_entry
Responsibility: ORM persistence for the per-student audit ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE, no DELETE (ORM listener + PostgreSQL trigger).
    - (student_id, sequence) is unique; sequence increases by one per entry.
    - running_balance[n] == running_balance[n-1] + amount[n] in
      (occurred_at, sequence) order.
    - Sign convention: positive moves the student toward credit, negative
      toward debt.  sum(amount) == sum(active credit remaining)
      - sum(open obligation balance).

Audit relevance:
    The ledger is the independent cross-check of obligation/credit state and
    the source for rebuilding a student's balance from scratch.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import Base, UUIDString


class LedgerEntryType(str, Enum):
    """
    Kinds of monetary event.

    amount sign per type:
        CHARGE          negative (fee assigned)
        PAYMENT         positive (payment applied to an obligation)
        CREDIT_CREATED  positive (overpayment stored as credit)
        CREDIT_APPLIED  zero; principal records the credit moved onto
                        an obligation (debt and credit fall together)
        ADJUSTMENT      either sign
    """

    CHARGE = "CHARGE"
    PAYMENT = "PAYMENT"
    CREDIT_APPLIED = "CREDIT_APPLIED"
    CREDIT_CREATED = "CREDIT_CREATED"
    ADJUSTMENT = "ADJUSTMENT"


class LedgerEntry(Base):
    """One immutable, balance-carrying monetary event for a student."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("student_id", "sequence", name="uq_ledger_student_sequence"),
        Index("idx_ledger_student_order", "student_id", "occurred_at", "sequence"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(nullable=False)

    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Signed effect on the running balance
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Unsigned money moved
    principal: Mapped[Decimal] = mapped_column(nullable=False)

    running_balance: Mapped[Decimal] = mapped_column(nullable=False)

    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    obligation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    credit_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry #{self.sequence} {self.entry_type} {self.amount} "
            f"-> {self.running_balance}>"
        )
