"""
Module: fees_kernel.selectors.unmatched_selector
Responsibility: The operator work list of unattributed payments.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fees_kernel.db.types import as_utc, round_money
from fees_kernel.exceptions import UnmatchedPaymentNotFoundError
from fees_kernel.models.unmatched_payment import UnmatchedPayment, UnmatchedStatus
from fees_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class UnmatchedPaymentView:
    unmatched_payment_id: UUID
    external_transaction_id: str
    amount: Decimal
    method: str
    raw_reference: str
    payer_phone: str | None
    payer_name: str | None
    occurred_at: datetime
    status: str
    resolved_by: str | None
    resolved_at: datetime | None
    resulting_payment_id: UUID | None
    notes: str | None


@dataclass(frozen=True)
class UnmatchedPage:
    items: tuple[UnmatchedPaymentView, ...]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


def _view(row: UnmatchedPayment) -> UnmatchedPaymentView:
    return UnmatchedPaymentView(
        unmatched_payment_id=row.id,
        external_transaction_id=row.external_transaction_id,
        amount=round_money(row.amount),
        method=row.method,
        raw_reference=row.raw_reference,
        payer_phone=row.payer_phone,
        payer_name=row.payer_name,
        occurred_at=as_utc(row.occurred_at),
        status=row.status,
        resolved_by=row.resolved_by,
        resolved_at=as_utc(row.resolved_at),
        resulting_payment_id=row.resulting_payment_id,
        notes=row.notes,
    )


class UnmatchedSelector(BaseSelector[UnmatchedPayment]):
    def list(
        self,
        status: UnmatchedStatus | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> UnmatchedPage:
        """Newest first.  page is 1-based; page_size is capped."""
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        filters = []
        if status is not None:
            filters.append(UnmatchedPayment.status == UnmatchedStatus(status).value)

        total = self.session.execute(
            select(func.count()).select_from(UnmatchedPayment).where(*filters)
        ).scalar_one()

        rows = self.session.execute(
            select(UnmatchedPayment)
            .where(*filters)
            .order_by(UnmatchedPayment.occurred_at.desc(), UnmatchedPayment.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()

        return UnmatchedPage(
            items=tuple(_view(r) for r in rows),
            total=total,
            page=page,
            page_size=page_size,
        )

    def get(self, unmatched_payment_id: UUID) -> UnmatchedPaymentView:
        row = self.session.get(UnmatchedPayment, unmatched_payment_id)
        if row is None:
            raise UnmatchedPaymentNotFoundError(str(unmatched_payment_id))
        return _view(row)
