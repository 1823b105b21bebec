"""Tests for the payment record lifecycle: PENDING -> CONFIRMED | FAILED."""

from decimal import Decimal

import pytest

from fees_kernel.exceptions import (
    InvalidPaymentTransitionError,
    PaymentRecordNotFoundError,
)
from fees_kernel.models.payment import PaymentStatus


class TestRegisterPending:
    def test_pending_record(self, session, kernel, make_student):
        student = make_student()

        record = kernel.payments.register_pending(
            student.id, Decimal("250.00"), "ws_CO_9001", phone_number="254700900900"
        )

        assert record.status == PaymentStatus.PENDING.value
        assert record.amount == Decimal("250.00")
        assert record.payer_phone == "254700900900"
        assert kernel.payments.find_pending("ws_CO_9001") is record

    def test_non_positive_amount_rejected(self, session, kernel, make_student):
        student = make_student()

        with pytest.raises(ValueError):
            kernel.payments.register_pending(student.id, Decimal("0"), "ws_CO_9002")


class TestMarkFailed:
    def test_pending_to_failed(self, session, kernel, make_student):
        student = make_student()
        kernel.payments.register_pending(student.id, Decimal("10"), "ws_CO_9010")

        record = kernel.payments.mark_failed("ws_CO_9010", "Request cancelled by user")

        assert record.status == PaymentStatus.FAILED.value
        assert record.failure_reason == "Request cancelled by user"
        assert kernel.payments.find_pending("ws_CO_9010") is None

    def test_replayed_failure_is_noop(self, session, kernel, make_student):
        student = make_student()
        kernel.payments.register_pending(student.id, Decimal("10"), "ws_CO_9011")
        kernel.payments.mark_failed("ws_CO_9011", "Timeout")

        record = kernel.payments.mark_failed("ws_CO_9011", "Timeout again")

        assert record.failure_reason == "Timeout"

    def test_confirmed_record_cannot_fail(self, session, kernel, make_student):
        student = make_student()
        record = kernel.payments.register_pending(student.id, Decimal("10"), "ws_CO_9012")
        kernel.payments.confirm(record, amount=Decimal("10"))

        with pytest.raises(InvalidPaymentTransitionError):
            kernel.payments.mark_failed("ws_CO_9012", "Late failure")

    def test_unknown_transaction(self, session, kernel):
        with pytest.raises(PaymentRecordNotFoundError):
            kernel.payments.mark_failed("ws_CO_missing", "Timeout")


class TestConfirm:
    def test_failed_record_cannot_be_confirmed(self, session, kernel, make_student):
        student = make_student()
        record = kernel.payments.register_pending(student.id, Decimal("10"), "ws_CO_9020")
        kernel.payments.mark_failed("ws_CO_9020", "Timeout")

        with pytest.raises(InvalidPaymentTransitionError):
            kernel.payments.confirm(record, amount=Decimal("10"))

    def test_find_by_keys_matches_receipt(self, session, kernel, make_student):
        student = make_student()
        record = kernel.payments.register_pending(student.id, Decimal("10"), "ws_CO_9021")
        kernel.payments.confirm(record, amount=Decimal("10"), receipt_number="RCP9021")

        assert kernel.payments.find_by_keys(["RCP9021"]) == [record]
        assert kernel.payments.find_by_keys([]) == []
