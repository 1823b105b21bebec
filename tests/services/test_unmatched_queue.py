"""
Tests for the unmatched payment queue state machine.

PENDING -> RESOLVED creates a payment record and allocates it.
PENDING -> REJECTED has no financial effect.
Terminal rows accept no further transition.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from fees_kernel.domain.dtos import NotificationChannel
from fees_kernel.domain.notifications import Audience, NotificationKind
from fees_kernel.exceptions import (
    UnmatchedPaymentAlreadyResolvedError,
    UnmatchedPaymentNotFoundError,
)
from fees_kernel.models.ledger_entry import LedgerEntry
from fees_kernel.models.notification_outbox import NotificationOutbox
from fees_kernel.models.payment import PaymentRecord, PaymentStatus
from fees_kernel.models.unmatched_payment import UnmatchedStatus
from tests.conftest import PARENT_PHONE


@pytest.fixture
def parked(kernel, make_notification):
    """Park a 300.00 payment with an unknown reference; returns its id."""

    def _park(amount="300.00", **kwargs):
        result = kernel.gateway.ingest(make_notification("WRONGREF", amount=amount, **kwargs))
        return result.unmatched_payment_id

    return _park


class TestResolve:
    def test_resolve_allocates_to_student(self, session, kernel, make_student, assign_fee, parked):
        student = make_student("ADM200")
        fee = assign_fee(student.id, "500.00")
        unmatched_id = parked()

        outcome = kernel.unmatched.resolve(unmatched_id, student.id, "ops-1", notes="Parent called")

        assert outcome.student_id == student.id
        assert outcome.allocation.total_applied == Decimal("300.00")
        assert fee.balance == Decimal("200.00")

        payment = session.get(PaymentRecord, outcome.payment_id)
        assert payment.status == PaymentStatus.CONFIRMED.value
        assert payment.student_id == student.id
        assert payment.unmatched_payment_id == unmatched_id

        session.expire_all()
        view = kernel.unmatched_view.get(unmatched_id)
        assert view.status == UnmatchedStatus.RESOLVED.value
        assert view.resolved_by == "ops-1"
        assert view.resolved_at is not None
        assert view.resulting_payment_id == outcome.payment_id
        assert view.notes == "Parent called"

    def test_resolution_notifies_parent_only(self, session, kernel, make_student, parked):
        student = make_student("ADM201")
        unmatched_id = parked()

        kernel.unmatched.resolve(unmatched_id, student.id, "ops-1")

        rows = list(
            session.execute(
                select(NotificationOutbox).where(
                    NotificationOutbox.kind == NotificationKind.UNMATCHED_RESOLVED.value
                )
            ).scalars()
        )
        assert len(rows) == 1
        assert rows[0].audience == Audience.PARENT.value
        assert rows[0].recipient == PARENT_PHONE
        assert rows[0].new_balance == Decimal("-300.00")
        assert "Credit: KES 300.00" in rows[0].message

    def test_resolve_twice_raises(self, session, kernel, make_student, parked):
        student = make_student("ADM202")
        unmatched_id = parked()
        kernel.unmatched.resolve(unmatched_id, student.id, "ops-1")

        with pytest.raises(UnmatchedPaymentAlreadyResolvedError):
            kernel.unmatched.resolve(unmatched_id, student.id, "ops-2")

        assert session.execute(
            select(func.count()).select_from(PaymentRecord)
        ).scalar_one() == 1

    def test_unknown_id_raises(self, session, kernel, make_student):
        student = make_student("ADM203")

        with pytest.raises(UnmatchedPaymentNotFoundError):
            kernel.unmatched.resolve(uuid4(), student.id, "ops-1")

    def test_resolve_reuses_pending_push_record(self, session, kernel, make_student, make_notification):
        student = make_student("ADM204")
        pending = kernel.payments.register_pending(student.id, Decimal("150.00"), "ws_CO_0204")
        kernel.students.freeze_student(student.id, "Reconciliation failed")

        held = kernel.gateway.ingest(
            make_notification(
                "", amount="150.00", external_transaction_id="ws_CO_0204",
                receipt_number="RCP0204", channel=NotificationChannel.PUSH,
            )
        )
        assert not held.matched
        assert pending.status == PaymentStatus.PENDING.value

        kernel.students.unfreeze_student(student.id, "ops-1", notes="Ledger checked")
        outcome = kernel.unmatched.resolve(held.unmatched_payment_id, student.id, "ops-1")

        assert outcome.payment_id == pending.id
        assert pending.status == PaymentStatus.CONFIRMED.value
        assert pending.receipt_number == "RCP0204"
        assert pending.unmatched_payment_id == held.unmatched_payment_id
        assert session.execute(
            select(func.count()).select_from(PaymentRecord)
        ).scalar_one() == 1


class TestReject:
    def test_reject_has_no_financial_effect(self, session, kernel, parked):
        unmatched_id = parked()

        kernel.unmatched.reject(unmatched_id, "ops-1", notes="Refunded to payer")

        session.expire_all()
        view = kernel.unmatched_view.get(unmatched_id)
        assert view.status == UnmatchedStatus.REJECTED.value
        assert view.resulting_payment_id is None
        assert view.notes == "Refunded to payer"
        assert session.execute(select(func.count()).select_from(LedgerEntry)).scalar_one() == 0

    def test_rejected_row_cannot_be_resolved(self, session, kernel, make_student, parked):
        student = make_student("ADM210")
        unmatched_id = parked()
        kernel.unmatched.reject(unmatched_id, "ops-1")

        with pytest.raises(UnmatchedPaymentAlreadyResolvedError) as exc_info:
            kernel.unmatched.resolve(unmatched_id, student.id, "ops-2")

        assert exc_info.value.code == "UNMATCHED_ALREADY_RESOLVED"

    def test_resolved_row_cannot_be_rejected(self, session, kernel, make_student, parked):
        student = make_student("ADM211")
        unmatched_id = parked()
        kernel.unmatched.resolve(unmatched_id, student.id, "ops-1")

        with pytest.raises(UnmatchedPaymentAlreadyResolvedError):
            kernel.unmatched.reject(unmatched_id, "ops-2")
