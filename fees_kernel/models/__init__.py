"""Domain models for the fees kernel."""

from fees_kernel.models.credit import Credit
from fees_kernel.models.ledger_entry import LedgerEntry, LedgerEntryType
from fees_kernel.models.notification_outbox import NotificationOutbox, OutboxStatus
from fees_kernel.models.obligation import Obligation, ObligationStatus
from fees_kernel.models.payment import PaymentMethod, PaymentRecord, PaymentStatus
from fees_kernel.models.student import EnrollmentStatus, Student
from fees_kernel.models.transaction_claim import ClaimKind, TransactionClaim
from fees_kernel.models.unmatched_payment import UnmatchedPayment, UnmatchedStatus

__all__ = [
    "ClaimKind",
    "Credit",
    "EnrollmentStatus",
    "LedgerEntry",
    "LedgerEntryType",
    "NotificationOutbox",
    "Obligation",
    "ObligationStatus",
    "OutboxStatus",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentStatus",
    "Student",
    "TransactionClaim",
    "UnmatchedPayment",
    "UnmatchedStatus",
]
