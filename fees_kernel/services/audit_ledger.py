"""
AuditLedgerService -- the append-only, balance-carrying ledger per student.

Responsibility:
    Appends one LedgerEntry per monetary event and verifies that the ledger
    agrees with the obligation/credit state it mirrors.

Architecture position:
    Kernel > Services.  Called by AllocationService, CreditLedgerService and
    ObligationService inside the caller's unit of work, always after
    StudentSerializer.enter() for the same student.

Invariants enforced:
    - append_entry() is the only mutator.  No update or delete is exposed
      (and db/immutability.py + db/triggers.py refuse them).
    - sequence = previous + 1 and running_balance = previous running
      balance + amount.  The previous entry is read under the student's
      serialization point, so the chain cannot fork.
    - occurred_at never goes backwards within a student's ledger, so
      (occurred_at, sequence) order equals insertion order.
    - assert_consistent(): sum(amount) == last running_balance ==
      active credit - open obligation balance.

Failure modes:
    - LedgerMismatchError / RunningBalanceChainError (invariant violations,
      never retried).

Audit relevance:
    The ledger is the independent cross-check used by reconciliation and
    dispute resolution.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from fees_kernel.db.types import ZERO, as_utc, round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.exceptions import LedgerMismatchError, RunningBalanceChainError
from fees_kernel.logging_config import get_logger
from fees_kernel.models.ledger_entry import LedgerEntry, LedgerEntryType
from fees_kernel.selectors.balance_selector import BalanceSelector
from fees_kernel.selectors.ledger_selector import LedgerSelector, StudentLedger
from fees_kernel.services.base import BaseService

logger = get_logger("services.audit_ledger")


class AuditLedgerService(BaseService[LedgerEntry]):
    """
    Append and verify ledger entries.

    Usage:
        audit.append_entry(
            student_id=student.id,
            entry_type=LedgerEntryType.PAYMENT,
            amount=applied,
            principal=applied,
            description="Payment applied to Term 1 tuition",
            reference_id=payment.id,
            obligation_id=obligation.id,
        )
        audit.assert_consistent(student.id)
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._ledger = LedgerSelector(session)
        self._balances = BalanceSelector(session)

    def append_entry(
        self,
        *,
        student_id: UUID,
        entry_type: LedgerEntryType,
        amount: Decimal,
        principal: Decimal,
        description: str,
        reference_id: UUID | None = None,
        obligation_id: UUID | None = None,
        credit_id: UUID | None = None,
    ) -> LedgerEntry:
        """Append one entry; the caller has already mutated the mirrored row."""
        amount = round_money(amount)
        previous = self._ledger.last_entry(student_id)

        occurred_at = self.clock.now()
        if previous is not None:
            previous_at = as_utc(previous.occurred_at)
            if previous_at > occurred_at:
                occurred_at = previous_at
            sequence = previous.sequence + 1
            running_balance = round_money(previous.running_balance) + amount
        else:
            sequence = 1
            running_balance = amount

        entry = LedgerEntry(
            student_id=student_id,
            sequence=sequence,
            entry_type=LedgerEntryType(entry_type).value,
            amount=amount,
            principal=round_money(principal),
            running_balance=running_balance,
            reference_id=reference_id,
            obligation_id=obligation_id,
            credit_id=credit_id,
            description=description,
            occurred_at=occurred_at,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_appended",
            extra={
                "student_id": str(student_id),
                "sequence": sequence,
                "entry_type": entry.entry_type,
                "amount": str(amount),
                "running_balance": str(running_balance),
            },
        )
        return entry

    def current_balance(self, student_id: UUID) -> Decimal:
        """Last running balance (credit minus owed), zero for an empty ledger."""
        last = self._ledger.last_entry(student_id)
        return round_money(last.running_balance) if last is not None else ZERO

    def get_ledger(self, student_id: UUID) -> StudentLedger:
        return self._ledger.get_ledger(student_id)

    def verify_chain(self, student_id: UUID) -> Decimal:
        """
        Walk the ledger and check every running balance.

        Returns:
            The rebuilt balance (sum of amounts).

        Raises:
            RunningBalanceChainError: first entry whose running balance is
                not previous + amount.
        """
        running = ZERO
        for entry in self._ledger.entries(student_id):
            running = running + round_money(entry.amount)
            actual = round_money(entry.running_balance)
            if actual != running:
                logger.critical(
                    "running_balance_chain_broken",
                    extra={
                        "student_id": str(student_id),
                        "sequence": entry.sequence,
                        "expected": str(running),
                        "actual": str(actual),
                    },
                )
                raise RunningBalanceChainError(
                    str(student_id), entry.sequence, running, actual
                )
        return running

    def assert_consistent(self, student_id: UUID) -> Decimal:
        """
        Cross-check the ledger against obligation and credit rows.

        Returns:
            The agreed balance (credit minus owed).

        Raises:
            LedgerMismatchError: the three views of the balance disagree.
        """
        self.session.flush()
        ledger_balance = self._ledger.rebuild_balance(student_id)
        running_balance = self.current_balance(student_id)
        aggregate_balance = self._balances.aggregate_balance(student_id)

        if not (ledger_balance == running_balance == aggregate_balance):
            logger.critical(
                "ledger_mismatch_detected",
                extra={
                    "student_id": str(student_id),
                    "ledger_balance": str(ledger_balance),
                    "running_balance": str(running_balance),
                    "aggregate_balance": str(aggregate_balance),
                },
            )
            raise LedgerMismatchError(
                str(student_id),
                ledger_balance=ledger_balance,
                aggregate_balance=aggregate_balance,
                running_balance=running_balance,
            )
        return aggregate_balance
