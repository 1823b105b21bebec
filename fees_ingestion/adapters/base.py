"""
Gateway adapter protocol.

Contract:
    NotificationAdapter.to_notification() turns one decoded callback body
    into a PaymentNotification.  Field values are carried as received (a
    malformed amount or time becomes None) so the Intake Gateway can reject
    them with a reason instead of the adapter raising.

Architecture: fees_ingestion/adapters.  No database access, no kernel
services; only the kernel's value objects.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Protocol, runtime_checkable

from fees_kernel.domain.dtos import PaymentNotification

GATEWAY_TIME_FORMAT = "%Y%m%d%H%M%S"


@runtime_checkable
class NotificationAdapter(Protocol):
    """Protocol for turning a gateway callback into a notification."""

    def to_notification(self, payload: Mapping[str, Any]) -> PaymentNotification:
        ...


def parse_amount(value: Any) -> Decimal | None:
    """Decimal from a string or number; None when absent or malformed."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_gateway_time(value: Any) -> datetime | None:
    """YYYYMMDDHHmmss (string or integer) as an aware UTC datetime."""
    if value is None:
        return None
    try:
        return datetime.strptime(str(value).strip(), GATEWAY_TIME_FORMAT).replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        return None


def clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
