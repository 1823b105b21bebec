"""Gateway callback adapters (no database access)."""

from fees_ingestion.adapters.base import NotificationAdapter
from fees_ingestion.adapters.mpesa_c2b import C2BValidationDecision, MpesaC2BAdapter
from fees_ingestion.adapters.mpesa_stk import MpesaStkAdapter, StkFailure

__all__ = [
    "C2BValidationDecision",
    "MpesaC2BAdapter",
    "MpesaStkAdapter",
    "NotificationAdapter",
    "StkFailure",
]
