"""CreditLedgerService: credit creation and oldest-first consumption."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from fees_kernel.models.ledger_entry import LedgerEntry, LedgerEntryType


def _entries(session, student_id):
    return list(
        session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.student_id == student_id)
            .order_by(LedgerEntry.sequence)
        ).scalars()
    )


class TestCreateCredit:
    def test_writes_credit_created_entry(self, session, kernel, make_student):
        student = make_student()

        credit = kernel.credits.create_credit(student.id, Decimal("120.004"), "Opening balance")

        assert credit.original_amount == Decimal("120.00")
        assert credit.remaining_amount == Decimal("120.00")
        assert credit.is_active is True
        entries = _entries(session, student.id)
        assert [e.entry_type for e in entries] == [LedgerEntryType.CREDIT_CREATED.value]
        assert entries[0].credit_id == credit.id

    @pytest.mark.parametrize("amount", ["0", "-5.00", "0.001"])
    def test_non_positive_amount_rejected(self, kernel, make_student, amount):
        student = make_student()

        with pytest.raises(ValueError):
            kernel.credits.create_credit(student.id, Decimal(amount), "Adjustment")


class TestConsumeCredit:
    def _two_credits(self, kernel, student, clock):
        older = kernel.credits.create_credit(student.id, Decimal("100.00"), "Overpayment A")
        clock.tick()
        newer = kernel.credits.create_credit(student.id, Decimal("50.00"), "Overpayment B")
        return older, newer

    def test_oldest_credit_consumed_first(self, kernel, make_student, deterministic_clock):
        student = make_student()
        older, newer = self._two_credits(kernel, student, deterministic_clock)

        consumed = kernel.credits.consume_credit(student.id, Decimal("130.00"))

        assert consumed == Decimal("130.00")
        assert older.remaining_amount == Decimal("0.00")
        assert older.is_active is False
        assert newer.remaining_amount == Decimal("20.00")
        assert newer.is_active is True
        assert kernel.credits.active_credits(student.id) == [newer]

    def test_consumption_capped_at_available(self, kernel, make_student, deterministic_clock):
        student = make_student()
        self._two_credits(kernel, student, deterministic_clock)

        consumed = kernel.credits.consume_credit(student.id, Decimal("500.00"))

        assert consumed == Decimal("150.00")
        assert kernel.credits.available_total(student.id) == Decimal("0.00")
        assert kernel.credits.active_credits(student.id) == []

    def test_consumption_writes_no_ledger_entry(self, session, kernel, make_student, deterministic_clock):
        student = make_student()
        self._two_credits(kernel, student, deterministic_clock)
        before = len(_entries(session, student.id))

        kernel.credits.consume_credit(student.id, Decimal("10.00"))

        assert len(_entries(session, student.id)) == before

    def test_logs_consumption(self, kernel, make_student, deterministic_clock, captured_logs):
        student = make_student()
        self._two_credits(kernel, student, deterministic_clock)

        kernel.credits.consume_credit(student.id, Decimal("120.00"))

        [record] = [r for r in captured_logs() if r["message"] == "credit_consumed"]
        assert record["consumed"] == "120.00"
        assert record["credits_touched"] == 2
