"""
ORM-level immutability tests.

Ledger entries and transaction claims are append-only; confirmed payment
records, closed unmatched payments and settled obligations are terminal;
amount_due, original_amount and reference_code never change.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from fees_kernel.exceptions import ImmutabilityViolationError
from fees_kernel.models.credit import Credit
from fees_kernel.models.ledger_entry import LedgerEntry
from fees_kernel.models.obligation import ObligationStatus
from fees_kernel.models.payment import PaymentRecord
from fees_kernel.models.transaction_claim import TransactionClaim


@pytest.fixture
def paid_student(kernel, make_student, assign_fee, make_notification):
    student = make_student()
    fee = assign_fee(student.id, "100.00")
    result = kernel.gateway.ingest(
        make_notification(student.reference_code, amount="150.00")
    )
    return student, fee, result


class TestAppendOnly:
    def test_ledger_entry_update_blocked(self, session, kernel, paid_student):
        student, _, _ = paid_student
        entry = kernel.ledger.entries(student.id)[0]

        entry.amount = Decimal("1.00")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "LedgerEntry"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_ledger_entry_delete_blocked(self, session, kernel, paid_student):
        student, _, _ = paid_student
        entry = kernel.ledger.entries(student.id)[0]

        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_claim_update_blocked(self, session, paid_student):
        _, _, result = paid_student
        claim = session.execute(
            select(TransactionClaim).where(
                TransactionClaim.claim_key == result.external_transaction_id
            )
        ).scalar_one()

        claim.payload_hash = "0" * 64
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestTerminalStates:
    def test_confirmed_payment_is_frozen(self, session, paid_student):
        _, _, result = paid_student
        payment = session.get(PaymentRecord, result.payment_id)

        payment.amount = Decimal("1.00")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert "CONFIRMED" in exc_info.value.reason

    def test_settled_obligation_never_reopened(self, session, paid_student):
        _, fee, _ = paid_student
        assert fee.status == ObligationStatus.SETTLED.value

        fee.status = ObligationStatus.OPEN.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_pending_payment_can_change(self, session, kernel, make_student):
        student = make_student()
        record = kernel.payments.register_pending(student.id, Decimal("10"), "ws_CO_IMM1")

        record.payer_phone = "254700000999"
        session.flush()


class TestFixedAmounts:
    def test_amount_due_fixed(self, session, kernel, make_student, assign_fee):
        student = make_student()
        fee = assign_fee(student.id, "100.00")

        fee.amount_due = Decimal("90.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_credit_original_amount_fixed(self, session, paid_student):
        student, _, _ = paid_student
        credit = session.execute(
            select(Credit).where(Credit.student_id == student.id)
        ).scalar_one()

        credit.original_amount = Decimal("500.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_reference_code_fixed(self, session, make_student):
        student = make_student("ADM900")

        student.reference_code = "ADM901"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_other_student_fields_editable(self, session, make_student):
        student = make_student("ADM902")

        student.parent_phone = "254700000902"
        session.flush()


class TestBlockedWritesAreLogged:
    def test_violation_logged(self, session, kernel, paid_student, captured_logs):
        student, _, _ = paid_student
        entry = kernel.ledger.entries(student.id)[0]

        entry.description = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        (record,) = [
            r for r in captured_logs() if r["message"] == "immutability_violation_blocked"
        ]
        assert record["entity_type"] == "LedgerEntry"
        assert record["operation"] == "UPDATE"
