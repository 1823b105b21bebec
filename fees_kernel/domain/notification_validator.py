"""NotificationValidator -- Pure payment notification validation."""

from datetime import datetime
from decimal import Decimal

from fees_kernel.db.types import has_money_precision
from fees_kernel.domain.dtos import (
    NotificationChannel,
    PaymentMethod,
    PaymentNotification,
    ValidationError,
    ValidationResult,
)
from fees_kernel.logging_config import get_logger

logger = get_logger("domain.notification_validator")

MAX_KEY_LENGTH = 64
MAX_REFERENCE_LENGTH = 200

_KNOWN_METHODS = frozenset(m.value for m in PaymentMethod)


def validate_notification(notification: PaymentNotification) -> ValidationResult:
    """
    Validate a notification before anything is persisted.

    A PUSH confirmation may omit the reference: it is reconciled against the
    pending record created when the push was initiated.
    """
    errors: list[ValidationError] = []
    errors.extend(validate_transaction_id(notification.external_transaction_id))
    errors.extend(validate_receipt_number(notification.receipt_number))
    errors.extend(validate_amount(notification.amount))
    if notification.channel is not NotificationChannel.PUSH:
        errors.extend(validate_reference(notification.raw_reference))
    errors.extend(validate_occurred_at(notification.occurred_at))

    if notification.method not in _KNOWN_METHODS:
        errors.append(
            ValidationError(
                code="UNKNOWN_METHOD",
                message=f"Unknown payment method {notification.method!r}",
                field="method",
            )
        )

    if errors:
        logger.warning(
            "validation_failed",
            extra={
                "external_transaction_id": notification.external_transaction_id,
                "error_codes": [e.code for e in errors],
            },
        )
        return ValidationResult.failure(*errors)

    return ValidationResult.success()


def validate_transaction_id(value: str | None) -> list[ValidationError]:
    if value is None or not value.strip():
        return [
            ValidationError(
                code="MISSING_TRANSACTION_ID",
                message="External transaction id is required",
                field="external_transaction_id",
            )
        ]
    if len(value) > MAX_KEY_LENGTH:
        return [
            ValidationError(
                code="TRANSACTION_ID_TOO_LONG",
                message=f"External transaction id exceeds {MAX_KEY_LENGTH} characters",
                field="external_transaction_id",
            )
        ]
    return []


def validate_receipt_number(value: str | None) -> list[ValidationError]:
    """Optional; when present it becomes a claim key."""
    if value is not None and len(value) > MAX_KEY_LENGTH:
        return [
            ValidationError(
                code="RECEIPT_NUMBER_TOO_LONG",
                message=f"Receipt number exceeds {MAX_KEY_LENGTH} characters",
                field="receipt_number",
            )
        ]
    return []


def validate_amount(value: Decimal | None) -> list[ValidationError]:
    if value is None:
        return [
            ValidationError(
                code="MISSING_AMOUNT",
                message="Amount is required",
                field="amount",
            )
        ]
    if not value.is_finite() or value <= 0:
        return [
            ValidationError(
                code="NON_POSITIVE_AMOUNT",
                message=f"Amount must be positive, got {value}",
                field="amount",
            )
        ]
    if not has_money_precision(value):
        return [
            ValidationError(
                code="AMOUNT_PRECISION",
                message=f"Amount {value} has more than 2 decimal places",
                field="amount",
            )
        ]
    return []


def validate_reference(value: str | None) -> list[ValidationError]:
    if value is None or not value.strip():
        return [
            ValidationError(
                code="MISSING_REFERENCE",
                message="Payer reference is required",
                field="raw_reference",
            )
        ]
    if len(value) > MAX_REFERENCE_LENGTH:
        return [
            ValidationError(
                code="REFERENCE_TOO_LONG",
                message=f"Payer reference exceeds {MAX_REFERENCE_LENGTH} characters",
                field="raw_reference",
            )
        ]
    return []


def validate_occurred_at(value: datetime | None) -> list[ValidationError]:
    if value is None:
        return [
            ValidationError(
                code="MISSING_OCCURRED_AT",
                message="Settlement time is required",
                field="occurred_at",
            )
        ]
    if value.tzinfo is None:
        return [
            ValidationError(
                code="NAIVE_OCCURRED_AT",
                message="Settlement time must be timezone-aware",
                field="occurred_at",
            )
        ]
    return []
