"""
Notification content -- what to tell whom after a payment.

Responsibility:
    Decide audience and message text for payment events.  Delivery is an
    external concern (fees_services.notifier); this module only builds
    NotificationRequest values.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Configuration arrives as a
    NotificationPolicy built by fees_config.bridges.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class Audience(str, Enum):
    PARENT = "PARENT"
    OPERATOR = "OPERATOR"


class NotificationKind(str, Enum):
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_RECEIVED_OPERATOR = "PAYMENT_RECEIVED_OPERATOR"
    UNMATCHED_PAYMENT = "UNMATCHED_PAYMENT"
    UNMATCHED_RESOLVED = "UNMATCHED_RESOLVED"


@dataclass(frozen=True)
class NotificationPolicy:
    """Who gets told what, derived from configuration."""

    school_name: str = "School Fees Office"
    currency: str = "KES"
    operator_recipients: tuple[str, ...] = ()
    notify_operator_on_payment: bool = True


@dataclass(frozen=True)
class NotificationRequest:
    """
    One message for one recipient.

    new_balance is what the student still owes after the event (negative
    when the student is in credit); None for unattributed payments.
    """

    student_id: UUID | None
    amount: Decimal
    new_balance: Decimal | None
    transaction_ref: str
    audience: Audience
    kind: NotificationKind
    recipient: str | None
    message: str


def format_money(amount: Decimal, currency: str) -> str:
    return f"{currency} {amount:,.2f}"


def _balance_line(amount_owed: Decimal, currency: str) -> str:
    if amount_owed > 0:
        return f"Balance: {format_money(amount_owed, currency)}"
    if amount_owed == 0:
        return "PAID IN FULL"
    return f"PAID IN FULL\nCredit: {format_money(-amount_owed, currency)}"


def payment_received(
    policy: NotificationPolicy,
    *,
    student_id: UUID,
    student_name: str,
    reference_code: str,
    parent_phone: str | None,
    amount: Decimal,
    amount_owed: Decimal,
    transaction_ref: str,
    method: str,
    occurred_at: datetime,
    kind: NotificationKind = NotificationKind.PAYMENT_RECEIVED,
) -> list[NotificationRequest]:
    """Parent confirmation plus, if enabled, one operator copy per recipient."""
    requests = [
        NotificationRequest(
            student_id=student_id,
            amount=amount,
            new_balance=amount_owed,
            transaction_ref=transaction_ref,
            audience=Audience.PARENT,
            kind=kind,
            recipient=parent_phone,
            message=(
                f"{policy.school_name}\n"
                "Payment Confirmed\n"
                f"Student: {student_name} ({reference_code})\n"
                f"Amount: {format_money(amount, policy.currency)}\n"
                f"{_balance_line(amount_owed, policy.currency)}\n"
                f"Ref: {transaction_ref}\n"
                "Thank you!"
            ),
        )
    ]

    if policy.notify_operator_on_payment:
        operator_message = (
            f"{policy.school_name} - PAYMENT RECEIVED\n"
            f"Student: {student_name} ({reference_code})\n"
            f"Amount: {format_money(amount, policy.currency)}\n"
            f"Method: {method}\n"
            f"Ref: {transaction_ref}\n"
            f"Time: {occurred_at:%Y-%m-%d %H:%M}"
        )
        requests.extend(
            NotificationRequest(
                student_id=student_id,
                amount=amount,
                new_balance=amount_owed,
                transaction_ref=transaction_ref,
                audience=Audience.OPERATOR,
                kind=NotificationKind.PAYMENT_RECEIVED_OPERATOR,
                recipient=recipient,
                message=operator_message,
            )
            for recipient in policy.operator_recipients
        )

    return requests


def unmatched_payment(
    policy: NotificationPolicy,
    *,
    amount: Decimal,
    raw_reference: str,
    payer_name: str | None,
    payer_phone: str | None,
    transaction_ref: str,
    note: str | None = None,
) -> list[NotificationRequest]:
    """Operator alert: a payment needs manual attribution."""
    payer = " ".join(part for part in (payer_name, payer_phone) if part) or "unknown"
    message = (
        f"{policy.school_name} - UNMATCHED PAYMENT\n"
        f"Amount: {format_money(amount, policy.currency)}\n"
        f"Account ref: {raw_reference or '(none)'}\n"
        f"Payer: {payer}\n"
        f"Ref: {transaction_ref}\n"
        f"{note or 'Manual review required.'}"
    )
    return [
        NotificationRequest(
            student_id=None,
            amount=amount,
            new_balance=None,
            transaction_ref=transaction_ref,
            audience=Audience.OPERATOR,
            kind=NotificationKind.UNMATCHED_PAYMENT,
            recipient=recipient,
            message=message,
        )
        for recipient in policy.operator_recipients
    ]
