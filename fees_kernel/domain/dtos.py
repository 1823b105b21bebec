"""
Domain Data Transfer Objects.

Immutable value objects passed between the adapters, the kernel services and
the pure engines.  No ORM imports, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class PaymentMethod(str, Enum):
    MPESA = "MPESA"
    BANK = "BANK"
    CASH = "CASH"
    OTHER = "OTHER"


class NotificationChannel(str, Enum):
    """Where a notification came from."""

    PAYBILL = "PAYBILL"  # payer-initiated (C2B confirm)
    PUSH = "PUSH"  # confirmation of a push request we initiated (STK)


@dataclass(frozen=True)
class PaymentNotification:
    """
    Normalized settlement notification.

    Contract:
        Produced by ingestion adapters; consumed by the Intake Gateway.
        Fields are carried as received -- validation happens in
        validate_notification(), not in the constructor, so that a malformed
        notification can still be represented and rejected.

    Guarantees:
        - external_transaction_id is the idempotency key.
        - receipt_number, when present and different, is a second key that
          identifies the same money (STK receipt == C2B TransID).
    """

    external_transaction_id: str
    amount: Decimal | None
    raw_reference: str
    occurred_at: datetime | None
    method: str = PaymentMethod.MPESA.value
    payer_phone: str | None = None
    payer_name: str | None = None
    receipt_number: str | None = None
    channel: NotificationChannel = NotificationChannel.PAYBILL

    def claim_keys(self) -> tuple[str, ...]:
        """Idempotency keys this notification owns, primary key first."""
        keys = [self.external_transaction_id]
        if self.receipt_number and self.receipt_number != self.external_transaction_id:
            keys.append(self.receipt_number)
        return tuple(keys)

    def canonical_payload(self) -> dict[str, Any]:
        """Stable dict used for the replay payload hash."""
        return {
            "external_transaction_id": self.external_transaction_id,
            "amount": self.amount,
            "raw_reference": self.raw_reference,
            "occurred_at": self.occurred_at,
            "method": self.method,
            "payer_phone": self.payer_phone,
            "receipt_number": self.receipt_number,
            "channel": self.channel.value,
        }


@dataclass(frozen=True)
class ValidationError:
    """
    A single validation error.

    Contract:
        Carries a machine-readable code, a human-readable message and the
        offending field.  It IS the error representation; nothing raises it.
    """

    code: str
    message: str
    field: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of validation.

    Guarantees:
        - errors is always a tuple (never None)
        - bool(result) == result.is_valid
    """

    is_valid: bool
    errors: tuple[ValidationError, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True, errors=())

    @classmethod
    def failure(cls, *errors: ValidationError) -> ValidationResult:
        return cls(is_valid=False, errors=tuple(errors))

    @property
    def reason(self) -> str:
        return "; ".join(e.message for e in self.errors)

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass(frozen=True)
class AllocationLine:
    """Payment or credit applied to one obligation."""

    obligation_id: UUID
    applied_amount: Decimal
    new_balance: Decimal


@dataclass(frozen=True)
class CreditApplication:
    """A slice of one credit moved onto one obligation."""

    credit_id: UUID
    obligation_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one Allocate(studentId, amount) call.

    Guarantees:
        - total_applied == sum(line.applied_amount for line in entries)
        - total_applied + leftover == the allocated amount
        - credit_created_id is set iff leftover > 0
        - amount_owed is what the student still owes afterwards
          (open balances minus active credit; negative means in credit)
    """

    student_id: UUID
    entries: tuple[AllocationLine, ...]
    total_applied: Decimal
    leftover: Decimal
    credit_applications: tuple[CreditApplication, ...] = ()
    credit_created_id: UUID | None = None
    amount_owed: Decimal = Decimal("0")

    @property
    def credit_applied_total(self) -> Decimal:
        return sum((c.amount for c in self.credit_applications), Decimal("0"))


class IngestStatus(str, Enum):
    """Outcome of one Ingest(notification) call."""

    ACCEPTED = "ACCEPTED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"  # Idempotent success
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class IngestResult:
    """
    Result of an ingestion operation.

    Contract:
        Every status is acknowledged to the upstream sender; REJECTED and
        ALREADY_PROCESSED are recorded internally only.
    """

    status: IngestStatus
    external_transaction_id: str
    matched: bool = False
    student_id: UUID | None = None
    payment_id: UUID | None = None
    unmatched_payment_id: UUID | None = None
    allocation: AllocationResult | None = None
    validation: ValidationResult | None = None
    message: str | None = None
    payload_mismatch: bool = False

    @property
    def is_success(self) -> bool:
        """Accepted or idempotent duplicate."""
        return self.status in (IngestStatus.ACCEPTED, IngestStatus.ALREADY_PROCESSED)

    @property
    def reason(self) -> str | None:
        if self.validation is not None and not self.validation.is_valid:
            return self.validation.reason
        return self.message


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of resolving an unmatched payment to a student."""

    unmatched_payment_id: UUID
    payment_id: UUID
    student_id: UUID
    allocation: AllocationResult
