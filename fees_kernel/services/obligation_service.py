"""
ObligationService -- assigns fees to students.

Responsibility:
    Creates an OPEN obligation, writes its CHARGE entry and immediately lets
    any stored credit pay it down.

Architecture position:
    Kernel > Services.  Enters the student's serialization point itself;
    the caller owns the transaction.

Invariants enforced:
    - amount_due > 0, rounded to currency precision.
    - At most one obligation per (student, fee_code) when fee_code is set.
    - The CHARGE entry and the credit consumption land in the same unit of
      work as the obligation, and the ledger is cross-checked before return.

Failure modes:
    - InvalidObligationAmountError, ObligationAlreadyAssignedError.
    - StudentNotFoundError, StudentFrozenError, concurrency conflicts from
      StudentSerializer.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fees_kernel.db.types import ZERO, round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.domain.dtos import CreditApplication
from fees_kernel.exceptions import (
    InvalidObligationAmountError,
    ObligationAlreadyAssignedError,
)
from fees_kernel.logging_config import get_logger
from fees_kernel.models.ledger_entry import LedgerEntryType
from fees_kernel.models.obligation import Obligation, ObligationStatus
from fees_kernel.services.allocation_service import AllocationService
from fees_kernel.services.audit_ledger import AuditLedgerService
from fees_kernel.services.base import BaseService
from fees_kernel.services.student_serializer import StudentSerializer

logger = get_logger("services.obligation")


class ObligationService(BaseService[Obligation]):
    def __init__(
        self,
        session: Session,
        serializer: StudentSerializer,
        audit: AuditLedgerService,
        allocation: AllocationService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._serializer = serializer
        self._audit = audit
        self._allocation = allocation

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
        """
        Assign a fee and consume available credit against it.

        Returns:
            The obligation (after credit consumption) and the credit slices
            that were applied.
        """
        if amount_due is None or not amount_due.is_finite() or amount_due <= ZERO:
            raise InvalidObligationAmountError(amount_due)
        amount_due = round_money(amount_due)

        student = self._serializer.enter(student_id)

        if fee_code is not None:
            existing = self.session.execute(
                select(Obligation.id).where(
                    Obligation.student_id == student_id,
                    Obligation.fee_code == fee_code,
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise ObligationAlreadyAssignedError(str(student_id), fee_code)

        obligation = Obligation(
            student_id=student_id,
            description=description,
            fee_code=fee_code,
            academic_year=academic_year,
            term=term,
            amount_due=amount_due,
            amount_paid=ZERO,
            balance=amount_due,
            status=ObligationStatus.OPEN.value,
            opened_at=opened_at or self.clock.now(),
        )
        self.session.add(obligation)
        self.session.flush()

        self._audit.append_entry(
            student_id=student_id,
            entry_type=LedgerEntryType.CHARGE,
            amount=-amount_due,
            principal=amount_due,
            description=description,
            reference_id=obligation.id,
            obligation_id=obligation.id,
        )

        logger.info(
            "obligation_assigned",
            extra={
                "student_id": str(student_id),
                "obligation_id": str(obligation.id),
                "amount_due": str(amount_due),
                "fee_code": fee_code,
            },
        )

        applications = self._allocation.apply_available_credit(student)
        self._audit.assert_consistent(student_id)
        self._serializer.bump_version(student)
        return obligation, applications
