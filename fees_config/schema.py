"""
FeesConfiguration schema.

The YAML file is parsed by fees_config.loader into these frozen types.
Nothing here performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchoolConfig:
    name: str
    currency: str = "KES"


@dataclass(frozen=True)
class MpesaConfig:
    """Mobile-money gateway settings used by the C2B validate phase."""

    business_short_code: str
    minimum_amount: Decimal = Decimal("1")


@dataclass(frozen=True)
class ConcurrencyConfig:
    student_lock_timeout_seconds: float = 10.0
    max_conflict_retries: int = 3


@dataclass(frozen=True)
class NotificationsConfig:
    operator_recipients: tuple[str, ...] = ()
    notify_operator_on_payment: bool = True
    dispatch_batch_size: int = 100


@dataclass(frozen=True)
class DatabaseConfig:
    url: str | None = None


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeesConfiguration:
    """
    The complete, validated configuration.

    checksum is the SHA-256 of the parsed document, logged in
    FEES_CONFIG_TRACE so every run can be tied to the exact file it used.
    """

    school: SchoolConfig
    mpesa: MpesaConfig
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    checksum: str = ""
    source: str = ""
