"""
Module: fees_kernel.selectors.ledger_selector
Responsibility: Read-only access to a student's audit ledger: the ordered
    entry list, the balance at a point in time, and the from-scratch
    rebuild used by reconciliation.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Entries are returned in running-balance order: occurred_at, then
      sequence (insertion order).  AuditLedgerService never writes an entry
      with an occurred_at earlier than its predecessor, so this order is
      also sequence order.

Audit relevance:
    rebuild_balance() is independent of running_balance: it sums the signed
    amounts, so a corrupted running balance and a corrupted amount are
    detected separately.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from fees_kernel.db.types import ZERO, as_utc, round_money
from fees_kernel.models.ledger_entry import LedgerEntry
from fees_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerEntryView:
    entry_id: UUID
    sequence: int
    entry_type: str
    amount: Decimal
    principal: Decimal
    running_balance: Decimal
    description: str
    occurred_at: datetime
    reference_id: UUID | None = None
    obligation_id: UUID | None = None
    credit_id: UUID | None = None


@dataclass(frozen=True)
class StudentLedger:
    """
    Full ledger for one student.

    totals_by_type sums principal per entry type (money moved), which is
    more useful for statements than the signed amount: CREDIT_APPLIED moves
    money without changing the net balance.
    """

    student_id: UUID
    entries: tuple[LedgerEntryView, ...]
    totals_by_type: dict[str, Decimal] = field(default_factory=dict)

    @property
    def closing_balance(self) -> Decimal:
        return self.entries[-1].running_balance if self.entries else ZERO


def _entry_view(entry: LedgerEntry) -> LedgerEntryView:
    return LedgerEntryView(
        entry_id=entry.id,
        sequence=entry.sequence,
        entry_type=entry.entry_type,
        amount=round_money(entry.amount),
        principal=round_money(entry.principal),
        running_balance=round_money(entry.running_balance),
        description=entry.description,
        occurred_at=as_utc(entry.occurred_at),
        reference_id=entry.reference_id,
        obligation_id=entry.obligation_id,
        credit_id=entry.credit_id,
    )


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Selector for per-student ledger queries."""

    def entries(self, student_id: UUID, as_of: datetime | None = None) -> list[LedgerEntry]:
        query = select(LedgerEntry).where(LedgerEntry.student_id == student_id)
        if as_of is not None:
            query = query.where(LedgerEntry.occurred_at <= as_of)
        query = query.order_by(LedgerEntry.occurred_at, LedgerEntry.sequence)
        return list(self.session.execute(query).scalars())

    def last_entry(self, student_id: UUID) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.student_id == student_id)
            .order_by(LedgerEntry.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_ledger(self, student_id: UUID) -> StudentLedger:
        views = tuple(_entry_view(e) for e in self.entries(student_id))
        totals: dict[str, Decimal] = {}
        for view in views:
            totals[view.entry_type] = totals.get(view.entry_type, ZERO) + view.principal
        return StudentLedger(student_id=student_id, entries=views, totals_by_type=totals)

    def balance_at(self, student_id: UUID, as_of: datetime) -> Decimal:
        """Running balance after the last entry at or before as_of."""
        entries = self.entries(student_id, as_of=as_of)
        if not entries:
            return ZERO
        return round_money(entries[-1].running_balance)

    def rebuild_balance(self, student_id: UUID) -> Decimal:
        """Sum of signed amounts, ignoring stored running balances."""
        return round_money(sum((e.amount for e in self.entries(student_id)), ZERO))
