"""Transactional kernel services.  All of them flush; none of them commit."""

from fees_kernel.services.allocation_service import AllocationService
from fees_kernel.services.audit_ledger import AuditLedgerService
from fees_kernel.services.credit_ledger import CreditLedgerService
from fees_kernel.services.intake_gateway import PaymentIntakeGateway
from fees_kernel.services.obligation_service import ObligationService
from fees_kernel.services.outbox import NotificationOutboxService
from fees_kernel.services.payment_record_service import PaymentRecordService
from fees_kernel.services.student_resolver import StudentResolver
from fees_kernel.services.student_serializer import (
    LockScope,
    StudentLockRegistry,
    StudentSerializer,
)
from fees_kernel.services.student_service import StudentService
from fees_kernel.services.unmatched_queue import UnmatchedPaymentQueue

__all__ = [
    "AllocationService",
    "AuditLedgerService",
    "CreditLedgerService",
    "LockScope",
    "NotificationOutboxService",
    "ObligationService",
    "PaymentIntakeGateway",
    "PaymentRecordService",
    "StudentLockRegistry",
    "StudentResolver",
    "StudentSerializer",
    "StudentService",
    "UnmatchedPaymentQueue",
]
