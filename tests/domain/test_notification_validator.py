"""Pure notification validation, before anything is persisted."""

from datetime import datetime
from decimal import Decimal

import pytest

from fees_kernel.domain.dtos import NotificationChannel, PaymentNotification
from fees_kernel.domain.notification_validator import (
    MAX_KEY_LENGTH,
    MAX_REFERENCE_LENGTH,
    validate_notification,
)
from tests.conftest import utc


def _notification(**overrides):
    fields = {
        "external_transaction_id": "RKTQDM7W6S",
        "amount": Decimal("1500.00"),
        "raw_reference": "ADM1234",
        "occurred_at": utc(2024, 1, 15, 14, 30, 22),
    }
    fields.update(overrides)
    return PaymentNotification(**fields)


def _codes(result):
    return [e.code for e in result.errors]


class TestValidateNotification:
    def test_valid(self):
        result = validate_notification(_notification())

        assert result
        assert result.errors == ()

    @pytest.mark.parametrize(
        "overrides,code",
        [
            ({"external_transaction_id": "  "}, "MISSING_TRANSACTION_ID"),
            ({"external_transaction_id": "X" * (MAX_KEY_LENGTH + 1)}, "TRANSACTION_ID_TOO_LONG"),
            ({"receipt_number": "R" * (MAX_KEY_LENGTH + 1)}, "RECEIPT_NUMBER_TOO_LONG"),
            ({"amount": None}, "MISSING_AMOUNT"),
            ({"amount": Decimal("0")}, "NON_POSITIVE_AMOUNT"),
            ({"amount": Decimal("-5.00")}, "NON_POSITIVE_AMOUNT"),
            ({"amount": Decimal("Infinity")}, "NON_POSITIVE_AMOUNT"),
            ({"amount": Decimal("10.005")}, "AMOUNT_PRECISION"),
            ({"raw_reference": ""}, "MISSING_REFERENCE"),
            ({"raw_reference": "R" * (MAX_REFERENCE_LENGTH + 1)}, "REFERENCE_TOO_LONG"),
            ({"occurred_at": None}, "MISSING_OCCURRED_AT"),
            ({"occurred_at": datetime(2024, 1, 15)}, "NAIVE_OCCURRED_AT"),
            ({"method": "CHEQUE"}, "UNKNOWN_METHOD"),
        ],
    )
    def test_rejections(self, overrides, code):
        result = validate_notification(_notification(**overrides))

        assert not result
        assert _codes(result) == [code]

    def test_all_errors_reported(self):
        result = validate_notification(
            _notification(external_transaction_id="", amount=None, raw_reference="")
        )

        assert _codes(result) == ["MISSING_TRANSACTION_ID", "MISSING_AMOUNT", "MISSING_REFERENCE"]
        assert "Amount is required" in result.reason

    def test_push_may_omit_reference(self):
        result = validate_notification(
            _notification(raw_reference="", channel=NotificationChannel.PUSH)
        )

        assert result.is_valid

    def test_failure_logged(self, captured_logs):
        validate_notification(_notification(amount=None))

        (record,) = [r for r in captured_logs() if r["message"] == "validation_failed"]
        assert record["error_codes"] == ["MISSING_AMOUNT"]


class TestClaimKeys:
    def test_primary_key_only(self):
        assert _notification().claim_keys() == ("RKTQDM7W6S",)

    def test_receipt_is_second_key(self):
        notification = _notification(
            external_transaction_id="ws_CO_1", receipt_number="NLJ7RT61SV",
            channel=NotificationChannel.PUSH,
        )

        assert notification.claim_keys() == ("ws_CO_1", "NLJ7RT61SV")

    def test_receipt_equal_to_id_not_repeated(self):
        notification = _notification(receipt_number="RKTQDM7W6S")

        assert notification.claim_keys() == ("RKTQDM7W6S",)
