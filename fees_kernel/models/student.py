"""
Module: fees_kernel.models.student
Responsibility: ORM persistence for students, the owners of obligations,
    credits and ledger entries.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - reference_code is unique (uq_student_reference_code) and immutable
      after insert (db/immutability.py).
    - ledger_version increases by exactly one per committed financial
      mutation (compare-and-swap in StudentSerializer).
    - A frozen student accepts no financial writes.

Failure modes:
    - IntegrityError on duplicate reference_code.

Audit relevance:
    is_frozen / frozen_reason / frozen_at record when and why writes were
    halted after an invariant violation.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import TimestampedBase


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"
    TRANSFERRED = "TRANSFERRED"


class Student(TimestampedBase):
    """
    A student and the human-facing reference code payers quote.

    Guarantees:
        - Payments are accepted for every enrollment status.
        - The reference code never changes once stored.
    """

    __tablename__ = "students"

    __table_args__ = (
        UniqueConstraint("reference_code", name="uq_student_reference_code"),
    )

    reference_code: Mapped[str] = mapped_column(String(64), nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)

    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    parent_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    enrollment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EnrollmentStatus.ACTIVE.value,
    )

    ledger_version: Mapped[int] = mapped_column(nullable=False, default=0)

    is_frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    frozen_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    frozen_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Student {self.reference_code}>"
