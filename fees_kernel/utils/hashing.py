"""
Replay fingerprints for settlement notifications.

A transaction claim stores the fingerprint of the notification that won it.
A later delivery under the same key is compared by fingerprint, so values
that mean the same money must hash the same:

    - amounts are compared at currency precision (150, 150.0 and 150.00
      are one amount);
    - settlement times are compared in UTC, whatever offset the gateway
      used;
    - surrounding whitespace in string fields is ignored.
"""

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from fees_kernel.db.types import has_money_precision, round_money


def _normalize(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value.is_finite() and has_money_precision(value):
            return str(round_money(value))
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


def canonical_notification_json(payload: dict[str, Any]) -> str:
    """Sorted-key, whitespace-free JSON of the normalized payload."""
    return json.dumps(
        {key: _normalize(value) for key, value in payload.items()},
        sort_keys=True,
        separators=(",", ":"),
    )


def notification_fingerprint(payload: dict[str, Any]) -> str:
    """SHA-256 hex digest (64 characters) of the canonical payload."""
    return hashlib.sha256(canonical_notification_json(payload).encode("utf-8")).hexdigest()
