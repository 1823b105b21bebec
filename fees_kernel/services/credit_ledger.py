"""
CreditLedgerService -- stored value a student is owed.

Responsibility:
    Creates credits from overpayment and consumes them oldest-first.

Architecture position:
    Kernel > Services.  Called by AllocationService under the student's
    serialization point.

Invariants enforced:
    - 0 <= remaining_amount <= original_amount for every credit.
    - is_active == (remaining_amount > 0); a credit that reaches zero is
      deactivated in the same flush and never deleted.
    - Consumption order is FIFO by opened_at, id as tie-break.
    - Never consumes more than the sum of active remaining amounts.
    - create_credit() writes the CREDIT_CREATED ledger entry.  Consumption
      writes no entry of its own: the caller records one CREDIT_APPLIED
      entry per (credit, obligation) slice it moved.

Failure modes:
    - CreditBoundsError if a credit would leave its bounds.
    - ValueError on a non-positive amount.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fees_engines.waterfall import WaterfallResult, WaterfallTarget, allocate_waterfall
from fees_kernel.db.types import ZERO, round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.exceptions import CreditBoundsError
from fees_kernel.logging_config import get_logger
from fees_kernel.models.credit import Credit
from fees_kernel.models.ledger_entry import LedgerEntryType
from fees_kernel.services.audit_ledger import AuditLedgerService
from fees_kernel.services.base import BaseService

logger = get_logger("services.credit_ledger")


class CreditLedgerService(BaseService[Credit]):
    def __init__(
        self,
        session: Session,
        audit: AuditLedgerService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._audit = audit

    def active_credits(self, student_id: UUID) -> list[Credit]:
        """Active credits in consumption order."""
        return list(
            self.session.execute(
                select(Credit)
                .where(Credit.student_id == student_id, Credit.is_active.is_(True))
                .order_by(Credit.opened_at, Credit.id)
            ).scalars()
        )

    def available_total(self, student_id: UUID) -> Decimal:
        return round_money(
            sum((c.remaining_amount for c in self.active_credits(student_id)), ZERO)
        )

    def create_credit(
        self,
        student_id: UUID,
        amount: Decimal,
        source: str,
        source_payment_id: UUID | None = None,
    ) -> Credit:
        amount = round_money(amount)
        if amount <= ZERO:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        credit = Credit(
            student_id=student_id,
            original_amount=amount,
            remaining_amount=amount,
            source=source,
            source_payment_id=source_payment_id,
            is_active=True,
            opened_at=self.clock.now(),
        )
        self.session.add(credit)
        self.session.flush()

        self._audit.append_entry(
            student_id=student_id,
            entry_type=LedgerEntryType.CREDIT_CREATED,
            amount=amount,
            principal=amount,
            description=source,
            reference_id=source_payment_id,
            credit_id=credit.id,
        )

        logger.info(
            "credit_created",
            extra={
                "student_id": str(student_id),
                "credit_id": str(credit.id),
                "amount": str(amount),
                "source": source,
            },
        )
        return credit

    def consume_fifo(self, student_id: UUID, amount: Decimal) -> WaterfallResult:
        """
        Consume up to amount from active credits, oldest first.

        Returns the per-credit waterfall; total_applied is what was actually
        consumed.
        """
        credits = self.active_credits(student_id)
        result = allocate_waterfall(
            amount=round_money(amount),
            targets=[
                WaterfallTarget(target_id=c.id, balance=round_money(c.remaining_amount))
                for c in credits
            ],
        )

        by_id = {c.id: c for c in credits}
        for line in result.applied_lines:
            self._decrement(by_id[line.target_id], line.applied)
        self.session.flush()

        if result.total_applied > ZERO:
            logger.info(
                "credit_consumed",
                extra={
                    "student_id": str(student_id),
                    "requested": str(amount),
                    "consumed": str(result.total_applied),
                    "credits_touched": len(result.applied_lines),
                },
            )
        return result

    def consume_credit(self, student_id: UUID, amount: Decimal) -> Decimal:
        """Consume oldest-first; returns the amount actually consumed."""
        return self.consume_fifo(student_id, amount).total_applied

    def _decrement(self, credit: Credit, applied: Decimal) -> None:
        remaining = round_money(credit.remaining_amount) - applied
        original = round_money(credit.original_amount)
        if remaining < ZERO or remaining > original:
            logger.critical(
                "credit_bounds_violation",
                extra={
                    "student_id": str(credit.student_id),
                    "credit_id": str(credit.id),
                    "remaining_amount": str(remaining),
                    "original_amount": str(original),
                },
            )
            raise CreditBoundsError(
                str(credit.student_id), str(credit.id), remaining, original
            )

        credit.remaining_amount = remaining
        if remaining == ZERO:
            credit.is_active = False
            logger.debug(
                "credit_exhausted",
                extra={"student_id": str(credit.student_id), "credit_id": str(credit.id)},
            )
