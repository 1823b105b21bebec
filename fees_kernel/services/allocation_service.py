"""
AllocationService -- the single owner of obligation and credit mutation.

Responsibility:
    Turns a confirmed payment (or newly assigned fee) into obligation
    updates, credit movements and their ledger entries.

Architecture position:
    Kernel > Services.  The caller has entered the student's serialization
    point (StudentSerializer.enter) and owns the transaction.  The
    arithmetic is delegated to the pure fees_engines.waterfall.

Algorithm (Allocate):
    1. Load open obligations and active credits, oldest first
       (opened_at, id).
    2. If credit is available and obligations are open, waterfall the
       available credit across them (CREDIT_APPLIED entries, one per
       credit/obligation slice).  This runs before, and independently of,
       the new payment.
    3. Waterfall the payment across the obligations still open
       (PAYMENT entries, one per obligation that received money).
    4. Any leftover becomes a new Credit (CREDIT_CREATED entry).
    5. Check obligation arithmetic on every touched obligation.

Invariants enforced:
    - balance >= 0 and amount_paid + balance == amount_due after every
      mutation; SETTLED exactly when balance reaches zero.
    - Every mutation in steps 2-4 has exactly one ledger entry.

Failure modes:
    - NegativeBalanceError / ObligationArithmeticError / CreditBoundsError
      (InvariantViolationError: the unit of work rolls back and the student
      is frozen by the orchestrator).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fees_engines.waterfall import WaterfallTarget, allocate_waterfall, pair_slices
from fees_kernel.db.types import ZERO, round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.domain.dtos import AllocationLine, AllocationResult, CreditApplication
from fees_kernel.exceptions import NegativeBalanceError, ObligationArithmeticError
from fees_kernel.logging_config import get_logger
from fees_kernel.models.ledger_entry import LedgerEntryType
from fees_kernel.models.obligation import Obligation, ObligationStatus
from fees_kernel.models.payment import PaymentRecord
from fees_kernel.models.student import Student
from fees_kernel.services.audit_ledger import AuditLedgerService
from fees_kernel.services.base import BaseService
from fees_kernel.services.credit_ledger import CreditLedgerService

logger = get_logger("services.allocation")


def _targets(obligations: list[Obligation]) -> list[WaterfallTarget]:
    return [
        WaterfallTarget(target_id=o.id, balance=round_money(o.balance))
        for o in obligations
    ]


class AllocationService(BaseService[Obligation]):
    def __init__(
        self,
        session: Session,
        audit: AuditLedgerService,
        credits: CreditLedgerService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._audit = audit
        self._credits = credits

    def open_obligations(self, student_id: UUID) -> list[Obligation]:
        """Open obligations in allocation order."""
        return list(
            self.session.execute(
                select(Obligation)
                .where(
                    Obligation.student_id == student_id,
                    Obligation.status == ObligationStatus.OPEN.value,
                )
                .order_by(Obligation.opened_at, Obligation.id)
            ).scalars()
        )

    def apply_available_credit(self, student: Student) -> tuple[CreditApplication, ...]:
        """
        Move stored credit onto open obligations, oldest first on both sides.

        Returns the slices moved; empty when there is no credit or nothing
        is owed.
        """
        obligations = self.open_obligations(student.id)
        available = self._credits.available_total(student.id)
        if available <= ZERO or not obligations:
            return ()

        obligation_result = allocate_waterfall(amount=available, targets=_targets(obligations))
        if obligation_result.total_applied <= ZERO:
            return ()

        credit_result = self._credits.consume_fifo(student.id, obligation_result.total_applied)
        slices = pair_slices(credit_result.lines, obligation_result.lines)

        by_id = {o.id: o for o in obligations}
        for line in obligation_result.applied_lines:
            self._apply(student.id, by_id[line.target_id], line.applied)

        applications = []
        for credit_slice in slices:
            obligation = by_id[credit_slice.obligation_id]
            self._audit.append_entry(
                student_id=student.id,
                entry_type=LedgerEntryType.CREDIT_APPLIED,
                amount=ZERO,
                principal=credit_slice.amount,
                description=f"Credit applied to {obligation.description}",
                reference_id=credit_slice.credit_id,
                obligation_id=obligation.id,
                credit_id=credit_slice.credit_id,
            )
            applications.append(
                CreditApplication(
                    credit_id=credit_slice.credit_id,
                    obligation_id=credit_slice.obligation_id,
                    amount=credit_slice.amount,
                )
            )

        logger.info(
            "credit_applied",
            extra={
                "student_id": str(student.id),
                "amount": str(obligation_result.total_applied),
                "slice_count": len(applications),
            },
        )
        return tuple(applications)

    def allocate(
        self,
        student: Student,
        amount: Decimal,
        payment: PaymentRecord,
    ) -> AllocationResult:
        """
        Allocate a confirmed payment for student.

        Raises:
            ValueError: amount <= 0.
            InvariantViolationError subclasses on arithmetic violations.
        """
        amount = round_money(amount)
        if amount <= ZERO:
            raise ValueError(f"Allocation amount must be positive, got {amount}")

        logger.info(
            "allocation_started",
            extra={
                "student_id": str(student.id),
                "amount": str(amount),
                "external_transaction_id": payment.external_transaction_id,
            },
        )

        credit_applications = self.apply_available_credit(student)

        # Obligations settled by credit drop out of the payment waterfall
        obligations = [o for o in self.open_obligations(student.id) if o.is_open]
        result = allocate_waterfall(amount=amount, targets=_targets(obligations))

        by_id = {o.id: o for o in obligations}
        lines = []
        for line in result.lines:
            obligation = by_id[line.target_id]
            if line.applied > ZERO:
                self._apply(student.id, obligation, line.applied)
                self._audit.append_entry(
                    student_id=student.id,
                    entry_type=LedgerEntryType.PAYMENT,
                    amount=line.applied,
                    principal=line.applied,
                    description=(
                        f"Payment {payment.external_transaction_id} applied to "
                        f"{obligation.description}"
                    ),
                    reference_id=payment.id,
                    obligation_id=obligation.id,
                )
            lines.append(
                AllocationLine(
                    obligation_id=obligation.id,
                    applied_amount=line.applied,
                    new_balance=line.remaining_balance,
                )
            )

        credit_created_id = None
        if result.leftover > ZERO:
            credit = self._credits.create_credit(
                student.id,
                result.leftover,
                source=f"Overpayment from transaction {payment.external_transaction_id}",
                source_payment_id=payment.id,
            )
            credit_created_id = credit.id

        amount_owed = -self._audit.current_balance(student.id)

        logger.info(
            "allocation_completed",
            extra={
                "student_id": str(student.id),
                "external_transaction_id": payment.external_transaction_id,
                "total_applied": str(result.total_applied),
                "leftover": str(result.leftover),
                "credit_applied": str(sum((c.amount for c in credit_applications), ZERO)),
                "amount_owed": str(amount_owed),
            },
        )

        return AllocationResult(
            student_id=student.id,
            entries=tuple(lines),
            total_applied=result.total_applied,
            leftover=result.leftover,
            credit_applications=credit_applications,
            credit_created_id=credit_created_id,
            amount_owed=amount_owed,
        )

    def _apply(self, student_id: UUID, obligation: Obligation, applied: Decimal) -> None:
        amount_due = round_money(obligation.amount_due)
        amount_paid = round_money(obligation.amount_paid) + applied
        balance = round_money(obligation.balance) - applied

        if balance < ZERO:
            logger.critical(
                "negative_balance_detected",
                extra={
                    "student_id": str(student_id),
                    "obligation_id": str(obligation.id),
                    "balance": str(balance),
                },
            )
            raise NegativeBalanceError(str(student_id), str(obligation.id), balance)

        if amount_paid + balance != amount_due:
            logger.critical(
                "obligation_arithmetic_violation",
                extra={
                    "student_id": str(student_id),
                    "obligation_id": str(obligation.id),
                    "amount_due": str(amount_due),
                    "amount_paid": str(amount_paid),
                    "balance": str(balance),
                },
            )
            raise ObligationArithmeticError(
                str(student_id), str(obligation.id), amount_due, amount_paid, balance
            )

        obligation.amount_paid = amount_paid
        obligation.balance = balance
        if balance == ZERO:
            obligation.status = ObligationStatus.SETTLED.value
            obligation.settled_at = self.clock.now()
            logger.info(
                "obligation_settled",
                extra={"student_id": str(student_id), "obligation_id": str(obligation.id)},
            )
