"""
OutboxDispatcher -- best-effort delivery of staged notifications.

Responsibility:
    Hands PENDING (and retryable FAILED) outbox rows to a Notifier after
    the financial transaction that staged them has committed.

Invariants enforced:
    - Runs in its own sessions, one short transaction per row; never
      touches a financial table.
    - A Notifier exception marks the row FAILED with the error text and the
      attempt count, is logged, and is not re-raised.
    - A row is claimed by moving attempts forward under a conditional
      UPDATE, so two dispatchers never send the same attempt twice.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from fees_kernel.db.types import round_money
from fees_kernel.domain.clock import Clock, SystemClock
from fees_kernel.domain.notifications import (
    Audience,
    NotificationKind,
    NotificationRequest,
)
from fees_kernel.logging_config import get_logger
from fees_kernel.models.notification_outbox import NotificationOutbox, OutboxStatus
from fees_services.notifier import Notifier
from fees_services.observability import log_notification_delivery

logger = get_logger("services.notification_dispatcher")

DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class DispatchReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


def _request(row: NotificationOutbox) -> NotificationRequest:
    return NotificationRequest(
        student_id=row.student_id,
        amount=round_money(row.amount),
        new_balance=round_money(row.new_balance) if row.new_balance is not None else None,
        transaction_ref=row.transaction_ref,
        audience=Audience(row.audience),
        kind=NotificationKind(row.kind),
        recipient=row.recipient,
        message=row.message,
    )


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier: Notifier,
        clock: Clock | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._clock = clock if clock is not None else SystemClock()
        self._max_attempts = max_attempts

    def dispatch(self, outbox_ids: Iterable[UUID]) -> DispatchReport:
        """Deliver specific rows, typically those staged by one unit of work."""
        sent = failed = skipped = 0
        for outbox_id in outbox_ids:
            outcome = self._deliver_one(outbox_id)
            if outcome is OutboxStatus.SENT:
                sent += 1
            elif outcome is OutboxStatus.FAILED:
                failed += 1
            else:
                skipped += 1

        report = DispatchReport(sent=sent, failed=failed, skipped=skipped)
        if sent or failed:
            log_notification_delivery(sent=sent, failed=failed, skipped=skipped)
        return report

    def dispatch_pending(
        self,
        limit: int = 100,
        max_attempts: int | None = None,
    ) -> DispatchReport:
        """Deliver PENDING rows and retry FAILED rows below max_attempts."""
        ceiling = max_attempts if max_attempts is not None else self._max_attempts
        with self._session_factory() as session:
            ids = list(
                session.execute(
                    select(NotificationOutbox.id)
                    .where(
                        or_(
                            NotificationOutbox.status == OutboxStatus.PENDING.value,
                            (NotificationOutbox.status == OutboxStatus.FAILED.value)
                            & (NotificationOutbox.attempts < ceiling),
                        )
                    )
                    .order_by(NotificationOutbox.created_at, NotificationOutbox.id)
                    .limit(limit)
                ).scalars()
            )
        return self.dispatch(ids)

    def _deliver_one(self, outbox_id: UUID) -> OutboxStatus | None:
        with self._session_factory() as session:
            row = session.get(NotificationOutbox, outbox_id)
            if row is None or row.status == OutboxStatus.SENT.value:
                return None
            if row.attempts >= self._max_attempts:
                return None

            seen_attempts = row.attempts
            claimed = session.execute(
                update(NotificationOutbox)
                .where(
                    NotificationOutbox.id == outbox_id,
                    NotificationOutbox.attempts == seen_attempts,
                    NotificationOutbox.status != OutboxStatus.SENT.value,
                )
                .values(attempts=seen_attempts + 1)
            )
            session.commit()
            if claimed.rowcount != 1:
                return None

            request = _request(row)
            try:
                self._notifier.send(request)
            except Exception as exc:
                session.execute(
                    update(NotificationOutbox)
                    .where(NotificationOutbox.id == outbox_id)
                    .values(status=OutboxStatus.FAILED.value, last_error=str(exc)[:2000])
                )
                session.commit()
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "outbox_id": str(outbox_id),
                        "kind": request.kind.value,
                        "recipient": request.recipient,
                        "attempt": seen_attempts + 1,
                        "error": str(exc),
                    },
                    exc_info=True,
                )
                return OutboxStatus.FAILED

            session.execute(
                update(NotificationOutbox)
                .where(NotificationOutbox.id == outbox_id)
                .values(
                    status=OutboxStatus.SENT.value,
                    sent_at=self._clock.now(),
                    last_error=None,
                )
            )
            session.commit()
            logger.debug(
                "notification_delivered",
                extra={"outbox_id": str(outbox_id), "kind": request.kind.value},
            )
            return OutboxStatus.SENT
