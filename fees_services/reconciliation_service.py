"""
ReconciliationService -- periodic cross-check of every student's ledger.

Composes the kernel's LedgerSelector and BalanceSelector inside a unit of
work that holds the student's section, so the ledger and the
obligation/credit rows are read at one consistent point.

Architecture: fees_services -- imperative shell.

Checks (per student):
    - Entry sequence is contiguous from 1.
    - Each running balance equals the previous one plus the entry amount.
    - Sum of amounts == last running balance == available credit minus
      open obligation balances.
    - amount_paid + balance == amount_due and balance >= 0 for every
      obligation; status SETTLED iff balance is zero.
    - 0 <= remaining_amount <= original_amount for every credit; a credit
      is active iff it has something left.

A failed check freezes the student (through the orchestrator, so it runs
in its own transaction) and is logged at CRITICAL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from fees_kernel.db.types import ZERO, round_money
from fees_kernel.logging_config import LogContext, get_logger
from fees_kernel.models.credit import Credit
from fees_kernel.models.obligation import Obligation, ObligationStatus
from fees_kernel.models.student import Student
from fees_services.observability import log_reconciliation_result
from fees_services.payment_orchestrator import PaymentOrchestrator

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class ReconciliationReport:
    student_id: UUID
    entry_count: int
    ledger_balance: Decimal
    running_balance: Decimal
    aggregate_balance: Decimal
    problems: tuple[str, ...] = field(default_factory=tuple)
    frozen: bool = False

    @property
    def ok(self) -> bool:
        return not self.problems


class ReconciliationService:
    """Read-only checks; the only write is the freeze on failure.

    Contract:
        - ``check_student()`` checks one student and freezes it on failure.
        - ``check_all()`` checks every student in reference-code order.
    """

    def __init__(self, orchestrator: PaymentOrchestrator, freeze_on_failure: bool = True) -> None:
        self._orchestrator = orchestrator
        self._freeze_on_failure = freeze_on_failure

    def check_student(self, student_id: UUID) -> ReconciliationReport:
        with LogContext.bind(student_id=student_id):
            with self._orchestrator.unit_of_work() as uow:
                services = uow.services
                services.serializer.enter(student_id, require_writable=False)
                report = self._inspect(uow.session, services, student_id)

            log_reconciliation_result(
                student_id=str(student_id),
                ok=report.ok,
                problems=list(report.problems),
                entry_count=report.entry_count,
            )
            if report.ok or not self._freeze_on_failure:
                return report

            reason = "Reconciliation failed: " + "; ".join(report.problems)
            self._orchestrator.freeze_student(student_id, reason[:500])
            return ReconciliationReport(
                student_id=report.student_id,
                entry_count=report.entry_count,
                ledger_balance=report.ledger_balance,
                running_balance=report.running_balance,
                aggregate_balance=report.aggregate_balance,
                problems=report.problems,
                frozen=True,
            )

    def check_all(self) -> list[ReconciliationReport]:
        with self._orchestrator.unit_of_work() as uow:
            student_ids = list(
                uow.session.execute(
                    select(Student.id).order_by(Student.reference_code)
                ).scalars()
            )

        reports = [self.check_student(student_id) for student_id in student_ids]
        failed = sum(1 for report in reports if not report.ok)
        logger.info(
            "reconciliation_sweep_completed",
            extra={"students_checked": len(reports), "students_failed": failed},
        )
        return reports

    def _inspect(self, session, services, student_id: UUID) -> ReconciliationReport:
        problems: list[str] = []

        entries = services.ledger.entries(student_id)
        running = ZERO
        for expected_sequence, entry in enumerate(entries, start=1):
            if entry.sequence != expected_sequence:
                problems.append(
                    f"sequence gap: expected {expected_sequence}, found {entry.sequence}"
                )
                break
            running = running + round_money(entry.amount)
            if round_money(entry.running_balance) != running:
                problems.append(
                    f"running balance broken at entry {entry.sequence}: "
                    f"expected {running}, found {round_money(entry.running_balance)}"
                )
                break

        ledger_balance = services.ledger.rebuild_balance(student_id)
        last = services.ledger.last_entry(student_id)
        running_balance = round_money(last.running_balance) if last is not None else ZERO
        aggregate_balance = services.balances.aggregate_balance(student_id)

        if ledger_balance != running_balance:
            problems.append(
                f"ledger sum {ledger_balance} != last running balance {running_balance}"
            )
        if ledger_balance != aggregate_balance:
            problems.append(
                f"ledger sum {ledger_balance} != obligations/credits {aggregate_balance}"
            )

        obligations = session.execute(
            select(Obligation).where(Obligation.student_id == student_id)
        ).scalars()
        for obligation in obligations:
            due = round_money(obligation.amount_due)
            paid = round_money(obligation.amount_paid)
            balance = round_money(obligation.balance)
            if balance < ZERO:
                problems.append(f"obligation {obligation.id} has negative balance {balance}")
            if paid + balance != due:
                problems.append(
                    f"obligation {obligation.id}: paid {paid} + balance {balance} != due {due}"
                )
            settled = obligation.status == ObligationStatus.SETTLED.value
            if settled != (balance == ZERO):
                problems.append(
                    f"obligation {obligation.id} status {obligation.status} "
                    f"with balance {balance}"
                )

        credits = session.execute(
            select(Credit).where(Credit.student_id == student_id)
        ).scalars()
        for credit in credits:
            remaining = round_money(credit.remaining_amount)
            original = round_money(credit.original_amount)
            if remaining < ZERO or remaining > original:
                problems.append(
                    f"credit {credit.id}: remaining {remaining} outside [0, {original}]"
                )
            if credit.is_active != (remaining > ZERO):
                problems.append(
                    f"credit {credit.id} is_active={credit.is_active} "
                    f"with remaining {remaining}"
                )

        return ReconciliationReport(
            student_id=student_id,
            entry_count=len(entries),
            ledger_balance=ledger_balance,
            running_balance=running_balance,
            aggregate_balance=aggregate_balance,
            problems=tuple(problems),
        )
