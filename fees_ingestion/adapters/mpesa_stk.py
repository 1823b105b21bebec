"""
M-Pesa STK push callback adapter.

The callback confirms (or fails) a push request the school initiated, for
which a PENDING payment record already exists under the CheckoutRequestID.

    ResultCode == 0 -> PaymentNotification keyed by CheckoutRequestID, with
                       MpesaReceiptNumber as the receipt number (the same
                       value a C2B confirmation would carry as TransID).
    ResultCode != 0 -> StkFailure; the caller marks the pending record
                       FAILED.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from fees_ingestion.adapters.base import clean, parse_amount, parse_gateway_time
from fees_kernel.domain.dtos import (
    NotificationChannel,
    PaymentMethod,
    PaymentNotification,
)
from fees_kernel.logging_config import get_logger

logger = get_logger("ingestion.mpesa_stk")


@dataclass(frozen=True)
class StkFailure:
    checkout_request_id: str
    result_code: int
    result_desc: str


class MpesaStkAdapter:
    """Parses ``{"Body": {"stkCallback": {...}}}`` callbacks."""

    @staticmethod
    def _callback(payload: Mapping[str, Any]) -> Mapping[str, Any]:
        body = payload.get("Body")
        if isinstance(body, Mapping) and isinstance(body.get("stkCallback"), Mapping):
            return body["stkCallback"]
        return payload

    @staticmethod
    def _metadata(callback: Mapping[str, Any]) -> dict[str, Any]:
        items = (callback.get("CallbackMetadata") or {}).get("Item") or []
        return {
            item["Name"]: item.get("Value")
            for item in items
            if isinstance(item, Mapping) and "Name" in item
        }

    def parse(self, payload: Mapping[str, Any]) -> PaymentNotification | StkFailure:
        callback = self._callback(payload)
        checkout_request_id = clean(callback.get("CheckoutRequestID")) or ""

        try:
            result_code = int(callback.get("ResultCode"))
        except (TypeError, ValueError):
            result_code = -1

        if result_code != 0:
            failure = StkFailure(
                checkout_request_id=checkout_request_id,
                result_code=result_code,
                result_desc=clean(callback.get("ResultDesc")) or "Push payment failed",
            )
            logger.info(
                "stk_callback_failed",
                extra={
                    "external_transaction_id": checkout_request_id,
                    "result_code": result_code,
                    "result_desc": failure.result_desc,
                },
            )
            return failure

        return self.to_notification(payload)

    def to_notification(self, payload: Mapping[str, Any]) -> PaymentNotification:
        callback = self._callback(payload)
        metadata = self._metadata(callback)
        return PaymentNotification(
            external_transaction_id=clean(callback.get("CheckoutRequestID")) or "",
            amount=parse_amount(metadata.get("Amount")),
            raw_reference=clean(metadata.get("AccountReference")) or "",
            occurred_at=parse_gateway_time(metadata.get("TransactionDate")),
            method=PaymentMethod.MPESA.value,
            payer_phone=clean(metadata.get("PhoneNumber")),
            receipt_number=clean(metadata.get("MpesaReceiptNumber")),
            channel=NotificationChannel.PUSH,
        )
