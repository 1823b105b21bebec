"""
Notifier -- the delivery port for SMS / email notifications.

Delivery mechanics (gateway APIs, templates, retries at the provider) are
outside the fees engine.  Adapters implement ``send``; raising any
exception marks the outbox row FAILED and never affects money.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from fees_kernel.domain.notifications import NotificationRequest
from fees_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


@runtime_checkable
class Notifier(Protocol):
    def send(self, request: NotificationRequest) -> None:
        ...


class LoggingNotifier:
    """Development adapter: writes each message to the structured log."""

    def send(self, request: NotificationRequest) -> None:
        logger.info(
            "notification_sent",
            extra={
                "audience": request.audience.value,
                "kind": request.kind.value,
                "recipient": request.recipient,
                "student_id": str(request.student_id) if request.student_id else None,
                "transaction_ref": request.transaction_ref,
                "notification_text": request.message,
            },
        )
