"""
Module: fees_kernel.selectors.balance_selector
Responsibility: Current balance of a student computed from obligation and
    credit rows -- the "aggregate state" side of the ledger cross-check.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - net_balance == available_credit - outstanding, the same sign
      convention as the audit ledger (negative means the student owes).
    - Breakdowns are returned in allocation order: opened_at, then id.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select

from fees_kernel.db.types import ZERO, as_utc, round_money
from fees_kernel.models.credit import Credit
from fees_kernel.models.obligation import Obligation, ObligationStatus
from fees_kernel.selectors.base import BaseSelector


class BalanceStatus(str, Enum):
    OWING = "OWING"
    CLEAR = "CLEAR"
    IN_CREDIT = "IN_CREDIT"


@dataclass(frozen=True)
class ObligationView:
    obligation_id: UUID
    description: str
    fee_code: str | None
    academic_year: int | None
    term: str | None
    amount_due: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str
    opened_at: datetime
    settled_at: datetime | None


@dataclass(frozen=True)
class CreditView:
    credit_id: UUID
    original_amount: Decimal
    remaining_amount: Decimal
    source: str
    is_active: bool
    opened_at: datetime


@dataclass(frozen=True)
class StudentBalance:
    """
    Totals for one student.

    outstanding is the sum of open obligation balances; amount_owed nets
    active credit against it.
    """

    student_id: UUID
    total_due: Decimal
    total_paid: Decimal
    outstanding: Decimal
    available_credit: Decimal

    @property
    def net_balance(self) -> Decimal:
        return self.available_credit - self.outstanding

    @property
    def amount_owed(self) -> Decimal:
        return self.outstanding - self.available_credit

    @property
    def status(self) -> BalanceStatus:
        if self.amount_owed > ZERO:
            return BalanceStatus.OWING
        if self.amount_owed < ZERO:
            return BalanceStatus.IN_CREDIT
        return BalanceStatus.CLEAR


@dataclass(frozen=True)
class BalanceBreakdown:
    student_id: UUID
    open_obligations: tuple[ObligationView, ...]
    active_credits: tuple[CreditView, ...]


def _obligation_view(o: Obligation) -> ObligationView:
    return ObligationView(
        obligation_id=o.id,
        description=o.description,
        fee_code=o.fee_code,
        academic_year=o.academic_year,
        term=o.term,
        amount_due=round_money(o.amount_due),
        amount_paid=round_money(o.amount_paid),
        balance=round_money(o.balance),
        status=o.status,
        opened_at=as_utc(o.opened_at),
        settled_at=as_utc(o.settled_at),
    )


def _credit_view(c: Credit) -> CreditView:
    return CreditView(
        credit_id=c.id,
        original_amount=round_money(c.original_amount),
        remaining_amount=round_money(c.remaining_amount),
        source=c.source,
        is_active=c.is_active,
        opened_at=as_utc(c.opened_at),
    )


class BalanceSelector(BaseSelector[Obligation]):
    """Balance read model over obligations and credits."""

    def _obligations(self, student_id: UUID, open_only: bool) -> list[Obligation]:
        query = select(Obligation).where(Obligation.student_id == student_id)
        if open_only:
            query = query.where(Obligation.status == ObligationStatus.OPEN.value)
        query = query.order_by(Obligation.opened_at, Obligation.id)
        return list(self.session.execute(query).scalars())

    def _active_credits(self, student_id: UUID) -> list[Credit]:
        return list(
            self.session.execute(
                select(Credit)
                .where(Credit.student_id == student_id, Credit.is_active.is_(True))
                .order_by(Credit.opened_at, Credit.id)
            ).scalars()
        )

    def outstanding(self, student_id: UUID) -> Decimal:
        return round_money(
            sum((o.balance for o in self._obligations(student_id, True)), ZERO)
        )

    def available_credit(self, student_id: UUID) -> Decimal:
        return round_money(
            sum((c.remaining_amount for c in self._active_credits(student_id)), ZERO)
        )

    def aggregate_balance(self, student_id: UUID) -> Decimal:
        """available credit minus outstanding obligations."""
        return self.available_credit(student_id) - self.outstanding(student_id)

    def current_balance(self, student_id: UUID) -> StudentBalance:
        obligations = self._obligations(student_id, False)
        open_balances = (o.balance for o in obligations if o.is_open)
        return StudentBalance(
            student_id=student_id,
            total_due=round_money(sum((o.amount_due for o in obligations), ZERO)),
            total_paid=round_money(sum((o.amount_paid for o in obligations), ZERO)),
            outstanding=round_money(sum(open_balances, ZERO)),
            available_credit=self.available_credit(student_id),
        )

    def breakdown(self, student_id: UUID) -> BalanceBreakdown:
        return BalanceBreakdown(
            student_id=student_id,
            open_obligations=tuple(
                _obligation_view(o) for o in self._obligations(student_id, True)
            ),
            active_credits=tuple(
                _credit_view(c) for c in self._active_credits(student_id)
            ),
        )
