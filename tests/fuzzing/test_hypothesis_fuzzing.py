"""
Hypothesis-based property tests.

Properties checked:
- Waterfall: total_applied + leftover == amount, no target over-paid,
  money only reaches a target once every earlier target is settled
- Slice pairing conserves both sides
- Any interleaving of fee assignments and payments keeps the ledger chain
  intact, agrees with obligation and credit rows, and never leaves a
  student both owing and in credit
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite
from sqlalchemy import select

from fees_engines import WaterfallTarget, allocate_waterfall, pair_slices
from fees_kernel.models.credit import Credit
from fees_kernel.models.obligation import Obligation

ZERO = Decimal("0")


@composite
def money_amounts(draw, min_value="0.01", max_value="100000.00"):
    return draw(
        st.decimals(
            min_value=Decimal(min_value),
            max_value=Decimal(max_value),
            places=2,
            allow_nan=False,
            allow_infinity=False,
        )
    )


@composite
def target_lists(draw):
    balances = draw(st.lists(money_amounts(min_value="0.00"), min_size=0, max_size=8))
    return [WaterfallTarget(target_id=uuid4(), balance=b) for b in balances]


@composite
def activity(draw):
    """A sequence of ("fee", amount) / ("pay", amount) steps."""
    steps = draw(
        st.lists(
            st.tuples(st.sampled_from(["fee", "pay"]), money_amounts(max_value="5000.00")),
            min_size=1,
            max_size=10,
        )
    )
    return steps


class TestWaterfallProperties:
    @given(amount=money_amounts(), targets=target_lists())
    @settings(max_examples=200, deadline=None)
    def test_conservation(self, amount, targets):
        result = allocate_waterfall(amount=amount, targets=targets)

        assert result.total_applied + result.leftover == amount
        assert sum((line.applied for line in result.lines), ZERO) == result.total_applied
        assert result.leftover >= ZERO

    @given(amount=money_amounts(), targets=target_lists())
    @settings(max_examples=200, deadline=None)
    def test_never_overpays_a_target(self, amount, targets):
        result = allocate_waterfall(amount=amount, targets=targets)

        for target, line in zip(targets, result.lines, strict=True):
            assert line.target_id == target.target_id
            assert ZERO <= line.applied <= target.balance
            assert line.applied + line.remaining_balance == target.balance

    @given(amount=money_amounts(), targets=target_lists())
    @settings(max_examples=200, deadline=None)
    def test_priority_order(self, amount, targets):
        result = allocate_waterfall(amount=amount, targets=targets)

        for i, line in enumerate(result.lines):
            if line.applied > ZERO:
                assert all(earlier.is_settled for earlier in result.lines[:i])

    @given(amount=money_amounts(), targets=target_lists())
    @settings(max_examples=200, deadline=None)
    def test_leftover_only_when_everything_settled(self, amount, targets):
        result = allocate_waterfall(amount=amount, targets=targets)

        if result.leftover > ZERO:
            assert all(line.is_settled for line in result.lines)
            assert result.total_applied == sum((t.balance for t in targets), ZERO)

    @given(
        credits=st.lists(money_amounts(max_value="1000.00"), min_size=1, max_size=5),
        obligations=st.lists(money_amounts(max_value="1000.00"), min_size=1, max_size=5),
    )
    @settings(max_examples=200, deadline=None)
    def test_pairing_conserves_both_sides(self, credits, obligations):
        credit_targets = [WaterfallTarget(uuid4(), c) for c in credits]
        obligation_targets = [WaterfallTarget(uuid4(), o) for o in obligations]
        usable = min(sum(credits, ZERO), sum(obligations, ZERO))

        credit_result = allocate_waterfall(amount=usable, targets=credit_targets)
        obligation_result = allocate_waterfall(amount=usable, targets=obligation_targets)
        slices = pair_slices(credit_result.lines, obligation_result.lines)

        assert sum((s.amount for s in slices), ZERO) == usable
        for line in credit_result.lines:
            assert sum(
                (s.amount for s in slices if s.credit_id == line.target_id), ZERO
            ) == line.applied
        for line in obligation_result.lines:
            assert sum(
                (s.amount for s in slices if s.obligation_id == line.target_id), ZERO
            ) == line.applied


class TestLedgerProperties:
    @given(steps=activity())
    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
    )
    def test_any_activity_keeps_ledger_consistent(
        self, session, kernel, make_student, assign_fee, make_notification, steps,
    ):
        student = make_student()
        charged = paid = ZERO

        for kind, amount in steps:
            if kind == "fee":
                assign_fee(student.id, amount)
                charged += amount
            else:
                result = kernel.gateway.ingest(
                    make_notification(student.reference_code, amount=amount)
                )
                assert result.is_success
                paid += amount

            chain = kernel.audit.verify_chain(student.id)
            assert kernel.audit.assert_consistent(student.id) == chain
            assert chain == paid - charged

            balance = kernel.balances.current_balance(student.id)
            assert balance.outstanding == ZERO or balance.available_credit == ZERO

        obligations = session.execute(
            select(Obligation).where(Obligation.student_id == student.id)
        ).scalars()
        for obligation in obligations:
            assert ZERO <= obligation.balance <= obligation.amount_due
            assert obligation.amount_paid + obligation.balance == obligation.amount_due

        credits = session.execute(
            select(Credit).where(Credit.student_id == student.id)
        ).scalars()
        for credit in credits:
            assert ZERO <= credit.remaining_amount <= credit.original_amount
            assert credit.is_active == (credit.remaining_amount > ZERO)


@pytest.mark.parametrize("amount", ["0.01", "99999999.99"])
def test_extreme_payment_amounts(session, kernel, make_student, assign_fee, make_notification, amount):
    student = make_student()
    assign_fee(student.id, "1000.00")

    result = kernel.gateway.ingest(make_notification(student.reference_code, amount=amount))

    assert result.is_success
    assert kernel.audit.assert_consistent(student.id) == Decimal(amount) - Decimal("1000.00")
