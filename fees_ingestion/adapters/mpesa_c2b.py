"""
M-Pesa C2B (paybill) adapter.

Two phases:
    - validate(): called before the money moves.  Accepts or rejects with a
      C2B result code; nothing is persisted.
    - to_notification(): the confirmation body, normalized.  The caller
      hands the notification to the orchestrator and always answers with
      acknowledge(), whatever the outcome, so the gateway stops retrying.

Field mapping (confirmation):
    TransID -> external_transaction_id (and receipt number)
    TransAmount -> amount
    BillRefNumber (trimmed) -> raw_reference
    MSISDN -> payer_phone
    FirstName MiddleName LastName -> payer_name
    TransTime (YYYYMMDDHHmmss, UTC) -> occurred_at
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from fees_ingestion.adapters.base import clean, parse_amount, parse_gateway_time
from fees_kernel.domain.dtos import (
    IngestResult,
    NotificationChannel,
    PaymentMethod,
    PaymentNotification,
)
from fees_kernel.logging_config import get_logger

logger = get_logger("ingestion.mpesa_c2b")

RESULT_ACCEPTED = "C2B00000"
RESULT_SYSTEM_ERROR = "C2B00011"
RESULT_INVALID_DATA = "C2B00012"
RESULT_INVALID_SHORT_CODE = "C2B00013"
RESULT_INVALID_AMOUNT = "C2B00014"

_DESCRIPTIONS = {
    RESULT_ACCEPTED: "Accepted",
    RESULT_SYSTEM_ERROR: "System error occurred",
    RESULT_INVALID_DATA: "Invalid payment data",
    RESULT_INVALID_SHORT_CODE: "Invalid business short code",
    RESULT_INVALID_AMOUNT: "Invalid amount",
}


@dataclass(frozen=True)
class C2BValidationDecision:
    result_code: str
    result_desc: str

    @property
    def accepted(self) -> bool:
        return self.result_code == RESULT_ACCEPTED

    def as_response(self) -> dict[str, str]:
        return {"ResultCode": self.result_code, "ResultDesc": self.result_desc}


def _decision(code: str) -> C2BValidationDecision:
    return C2BValidationDecision(result_code=code, result_desc=_DESCRIPTIONS[code])


class MpesaC2BAdapter:
    """Paybill validation and confirmation callbacks."""

    def __init__(self, business_short_code: str, minimum_amount: Decimal = Decimal("1")):
        self.business_short_code = str(business_short_code)
        self.minimum_amount = minimum_amount

    @classmethod
    def from_config(cls, config) -> MpesaC2BAdapter:
        return cls(
            business_short_code=config.mpesa.business_short_code,
            minimum_amount=config.mpesa.minimum_amount,
        )

    def validate(self, payload: Mapping[str, Any]) -> C2BValidationDecision:
        try:
            decision = self._validate(payload)
        except Exception:
            logger.exception("c2b_validation_error")
            decision = _decision(RESULT_SYSTEM_ERROR)

        logger.info(
            "c2b_validation_decision",
            extra={
                "external_transaction_id": clean(payload.get("TransID")),
                "result_code": decision.result_code,
            },
        )
        return decision

    def _validate(self, payload: Mapping[str, Any]) -> C2BValidationDecision:
        if not (
            clean(payload.get("TransID"))
            and clean(payload.get("TransAmount"))
            and clean(payload.get("BillRefNumber"))
        ):
            return _decision(RESULT_INVALID_DATA)

        if clean(payload.get("BusinessShortCode")) != self.business_short_code:
            return _decision(RESULT_INVALID_SHORT_CODE)

        amount = parse_amount(payload.get("TransAmount"))
        if amount is None or amount < self.minimum_amount:
            return _decision(RESULT_INVALID_AMOUNT)

        return _decision(RESULT_ACCEPTED)

    def to_notification(self, payload: Mapping[str, Any]) -> PaymentNotification:
        transaction_id = clean(payload.get("TransID")) or ""
        name_parts = (
            clean(payload.get(key)) for key in ("FirstName", "MiddleName", "LastName")
        )
        payer_name = " ".join(part for part in name_parts if part) or None

        return PaymentNotification(
            external_transaction_id=transaction_id,
            amount=parse_amount(payload.get("TransAmount")),
            raw_reference=clean(payload.get("BillRefNumber")) or "",
            occurred_at=parse_gateway_time(payload.get("TransTime")),
            method=PaymentMethod.MPESA.value,
            payer_phone=clean(payload.get("MSISDN")),
            payer_name=payer_name,
            receipt_number=transaction_id or None,
            channel=NotificationChannel.PAYBILL,
        )

    @staticmethod
    def acknowledge(result: IngestResult | None = None) -> dict[str, Any]:
        """The confirmation response; identical for every outcome."""
        return {"ResultCode": 0, "ResultDesc": "Accepted"}
