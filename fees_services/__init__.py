"""
fees_services -- composition root of the fees engine.

PaymentOrchestrator is the single transactional entry point; everything in
fees_kernel runs underneath it, one UnitOfWork per call.
"""

from fees_services.notification_dispatcher import DispatchReport, OutboxDispatcher
from fees_services.notifier import LoggingNotifier, Notifier
from fees_services.payment_orchestrator import (
    PaymentOrchestrator,
    build_payment_orchestrator,
)
from fees_services.reconciliation_service import (
    ReconciliationReport,
    ReconciliationService,
)
from fees_services.unit_of_work import KernelServices, UnitOfWork

__all__ = [
    "DispatchReport",
    "KernelServices",
    "LoggingNotifier",
    "Notifier",
    "OutboxDispatcher",
    "PaymentOrchestrator",
    "ReconciliationReport",
    "ReconciliationService",
    "UnitOfWork",
    "build_payment_orchestrator",
]
