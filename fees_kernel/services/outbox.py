"""
NotificationOutboxService -- stage notifications inside the financial
transaction.

Rows are inserted in the same unit of work as the allocation they
describe; the dispatcher in fees_services delivers them after commit.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from fees_kernel.db.types import round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.domain.notifications import NotificationRequest
from fees_kernel.logging_config import get_logger
from fees_kernel.models.notification_outbox import NotificationOutbox, OutboxStatus
from fees_kernel.services.base import BaseService

logger = get_logger("services.outbox")


class NotificationOutboxService(BaseService[NotificationOutbox]):
    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        # Rows staged by this unit of work, for dispatch after commit
        self.staged_ids: list[UUID] = []

    def enqueue(self, requests: Iterable[NotificationRequest]) -> list[NotificationOutbox]:
        rows = []
        now = self.clock.now()
        for request in requests:
            row = NotificationOutbox(
                student_id=request.student_id,
                audience=request.audience.value,
                kind=request.kind.value,
                recipient=request.recipient,
                amount=round_money(request.amount),
                new_balance=(
                    round_money(request.new_balance)
                    if request.new_balance is not None
                    else None
                ),
                transaction_ref=request.transaction_ref,
                message=request.message,
                status=OutboxStatus.PENDING.value,
                attempts=0,
                created_at=now,
            )
            self.session.add(row)
            rows.append(row)

        if rows:
            self.session.flush()
            self.staged_ids.extend(r.id for r in rows)
            logger.debug(
                "notifications_enqueued",
                extra={"count": len(rows), "kinds": sorted({r.kind for r in rows})},
            )
        return rows
