"""
Gateway adapter tests: C2B validation and confirmation mapping, STK
callback parsing, and the end-to-end path into the intake gateway.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fees_ingestion.adapters import (
    MpesaC2BAdapter,
    MpesaStkAdapter,
    NotificationAdapter,
    StkFailure,
)
from fees_ingestion.adapters.base import clean, parse_amount, parse_gateway_time
from fees_ingestion.adapters.mpesa_c2b import (
    RESULT_ACCEPTED,
    RESULT_INVALID_AMOUNT,
    RESULT_INVALID_DATA,
    RESULT_INVALID_SHORT_CODE,
    RESULT_SYSTEM_ERROR,
)
from fees_kernel.domain.dtos import IngestStatus, NotificationChannel, PaymentMethod

SHORT_CODE = "600100"


def c2b_payload(**overrides):
    payload = {
        "TransactionType": "Pay Bill",
        "TransID": "RKTQDM7W6S",
        "TransTime": "20240115143022",
        "TransAmount": "1500.00",
        "BusinessShortCode": SHORT_CODE,
        "BillRefNumber": " ADM1234 ",
        "MSISDN": "254712345678",
        "FirstName": "John",
        "MiddleName": "",
        "LastName": "Doe",
    }
    payload.update(overrides)
    return payload


def stk_payload(result_code=0, **metadata_overrides):
    items = {
        "Amount": 500,
        "MpesaReceiptNumber": "NLJ7RT61SV",
        "TransactionDate": 20240115143022,
        "PhoneNumber": 254712345678,
        "AccountReference": "ADM1234",
    }
    items.update(metadata_overrides)
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_191220191020363925",
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully.",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [{"Name": name, "Value": value} for name, value in items.items()]
        }
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
def c2b():
    return MpesaC2BAdapter(business_short_code=SHORT_CODE, minimum_amount=Decimal("10"))


class TestHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1500.00", Decimal("1500.00")),
            (500, Decimal("500")),
            (" 12.5 ", Decimal("12.5")),
            ("abc", None),
            ("NaN", None),
            (None, None),
            (True, None),
        ],
    )
    def test_parse_amount(self, value, expected):
        assert parse_amount(value) == expected

    def test_parse_gateway_time(self):
        assert parse_gateway_time(20240115143022) == datetime(
            2024, 1, 15, 14, 30, 22, tzinfo=timezone.utc
        )
        assert parse_gateway_time("2024-01-15") is None
        assert parse_gateway_time(None) is None

    def test_clean(self):
        assert clean("  x ") == "x"
        assert clean("   ") is None
        assert clean(None) is None


class TestC2BValidation:
    def test_valid_payload_accepted(self, c2b):
        decision = c2b.validate(c2b_payload())

        assert decision.accepted
        assert decision.as_response() == {"ResultCode": RESULT_ACCEPTED, "ResultDesc": "Accepted"}

    @pytest.mark.parametrize("missing", ["TransID", "TransAmount", "BillRefNumber"])
    def test_missing_field_is_invalid_data(self, c2b, missing):
        decision = c2b.validate(c2b_payload(**{missing: "  "}))

        assert decision.result_code == RESULT_INVALID_DATA

    def test_wrong_short_code(self, c2b):
        assert c2b.validate(c2b_payload(BusinessShortCode="999999")).result_code == (
            RESULT_INVALID_SHORT_CODE
        )

    @pytest.mark.parametrize("amount", ["5.00", "abc"])
    def test_bad_amount(self, c2b, amount):
        assert c2b.validate(c2b_payload(TransAmount=amount)).result_code == RESULT_INVALID_AMOUNT

    def test_unexpected_error_is_system_error(self, c2b):
        class Exploding(dict):
            def get(self, key, default=None):
                if key == "BusinessShortCode":
                    raise RuntimeError("bad payload")
                return super().get(key, default)

        decision = c2b.validate(Exploding(c2b_payload()))

        assert decision.result_code == RESULT_SYSTEM_ERROR
        assert not decision.accepted

    def test_decision_logged(self, c2b, captured_logs):
        c2b.validate(c2b_payload())

        (record,) = [r for r in captured_logs() if r["message"] == "c2b_validation_decision"]
        assert record["result_code"] == RESULT_ACCEPTED
        assert record["external_transaction_id"] == "RKTQDM7W6S"

    def test_from_config(self):
        from fees_config.loader import parse_configuration

        config = parse_configuration(
            {
                "school": {"name": "Test"},
                "mpesa": {"business_short_code": 600100, "minimum_amount": "50"},
            }
        )

        adapter = MpesaC2BAdapter.from_config(config)

        assert adapter.business_short_code == "600100"
        assert adapter.minimum_amount == Decimal("50")


class TestC2BConfirmation:
    def test_maps_fields(self, c2b):
        notification = c2b.to_notification(c2b_payload())

        assert notification.external_transaction_id == "RKTQDM7W6S"
        assert notification.receipt_number == "RKTQDM7W6S"
        assert notification.amount == Decimal("1500.00")
        assert notification.raw_reference == "ADM1234"
        assert notification.occurred_at == datetime(2024, 1, 15, 14, 30, 22, tzinfo=timezone.utc)
        assert notification.payer_phone == "254712345678"
        assert notification.payer_name == "John Doe"
        assert notification.method == PaymentMethod.MPESA.value
        assert notification.channel is NotificationChannel.PAYBILL

    def test_malformed_values_carried_as_none(self, c2b):
        notification = c2b.to_notification(c2b_payload(TransAmount="x", TransTime="soon"))

        assert notification.amount is None
        assert notification.occurred_at is None

    def test_acknowledge_is_constant(self):
        assert MpesaC2BAdapter.acknowledge() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    def test_is_a_notification_adapter(self, c2b):
        assert isinstance(c2b, NotificationAdapter)
        assert isinstance(MpesaStkAdapter(), NotificationAdapter)


class TestStkCallback:
    def test_success_maps_fields(self):
        notification = MpesaStkAdapter().parse(stk_payload())

        assert notification.external_transaction_id == "ws_CO_191220191020363925"
        assert notification.receipt_number == "NLJ7RT61SV"
        assert notification.amount == Decimal("500")
        assert notification.raw_reference == "ADM1234"
        assert notification.payer_phone == "254712345678"
        assert notification.occurred_at == datetime(2024, 1, 15, 14, 30, 22, tzinfo=timezone.utc)
        assert notification.channel is NotificationChannel.PUSH

    def test_failure(self, captured_logs):
        payload = stk_payload(result_code=1032)
        payload["Body"]["stkCallback"]["ResultDesc"] = "Request cancelled by user"

        outcome = MpesaStkAdapter().parse(payload)

        assert outcome == StkFailure(
            checkout_request_id="ws_CO_191220191020363925",
            result_code=1032,
            result_desc="Request cancelled by user",
        )
        assert any(r["message"] == "stk_callback_failed" for r in captured_logs())

    def test_unparseable_result_code_is_failure(self):
        outcome = MpesaStkAdapter().parse(stk_payload(result_code="oops"))

        assert isinstance(outcome, StkFailure)
        assert outcome.result_code == -1

    def test_unwrapped_callback_accepted(self):
        payload = stk_payload()["Body"]["stkCallback"]

        notification = MpesaStkAdapter().parse(payload)

        assert notification.receipt_number == "NLJ7RT61SV"


class TestEndToEnd:
    def test_c2b_confirmation_allocates(self, session, kernel, make_student, assign_fee, c2b):
        student = make_student("ADM1234")
        fee = assign_fee(student.id, "2000.00")

        result = kernel.gateway.ingest(c2b.to_notification(c2b_payload()))

        assert result.status == IngestStatus.ACCEPTED
        assert result.student_id == student.id
        assert fee.balance == Decimal("500.00")

    def test_stk_confirmation_confirms_pending(self, session, kernel, make_student):
        student = make_student("ADM1234")
        pending = kernel.payments.register_pending(
            student.id, Decimal("500"), "ws_CO_191220191020363925"
        )

        result = kernel.gateway.ingest(MpesaStkAdapter().parse(stk_payload()))

        assert result.payment_id == pending.id
        assert pending.receipt_number == "NLJ7RT61SV"
