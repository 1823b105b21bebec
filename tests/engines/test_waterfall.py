"""
Tests for the pure waterfall engine and credit/obligation slice pairing.

Verifies:
- Priority order: earlier targets are settled before later ones get money
- total_applied + leftover == amount
- Overpayment leaves a leftover
- Pairing of FIFO credit consumption with FIFO obligation payment
- FEES_ENGINE_TRACE emission
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fees_engines import (
    CreditSlice,
    WaterfallLine,
    WaterfallTarget,
    allocate_waterfall,
    pair_slices,
)
from fees_engines.tracer import compute_input_fingerprint


def _targets(*balances):
    return [WaterfallTarget(target_id=uuid4(), balance=Decimal(b)) for b in balances]


class TestAllocateWaterfall:
    def test_partial_payment_settles_oldest_first(self):
        targets = _targets("500.00", "300.00", "200.00")

        result = allocate_waterfall(amount=Decimal("650.00"), targets=targets)

        assert [line.applied for line in result.lines] == [
            Decimal("500.00"), Decimal("150.00"), Decimal("0"),
        ]
        assert [line.remaining_balance for line in result.lines] == [
            Decimal("0.00"), Decimal("150.00"), Decimal("200.00"),
        ]
        assert result.total_applied == Decimal("650.00")
        assert result.leftover == Decimal("0")

    def test_lines_keep_target_order(self):
        targets = _targets("10", "20", "30")

        result = allocate_waterfall(amount=Decimal("15"), targets=targets)

        assert [line.target_id for line in result.lines] == [t.target_id for t in targets]

    def test_overpayment_leaves_leftover(self):
        targets = _targets("100.00")

        result = allocate_waterfall(amount=Decimal("150.00"), targets=targets)

        assert result.total_applied == Decimal("100.00")
        assert result.leftover == Decimal("50.00")
        assert result.lines[0].is_settled

    def test_no_targets_everything_is_leftover(self):
        result = allocate_waterfall(amount=Decimal("75.00"), targets=[])

        assert result.lines == ()
        assert result.total_applied == Decimal("0")
        assert result.leftover == Decimal("75.00")

    def test_zero_balance_target_is_skipped(self):
        targets = _targets("0", "40")

        result = allocate_waterfall(amount=Decimal("40"), targets=targets)

        assert result.lines[0].applied == Decimal("0")
        assert result.lines[1].applied == Decimal("40")

    def test_applied_lines_excludes_untouched_targets(self):
        targets = _targets("10", "10", "10")

        result = allocate_waterfall(amount=Decimal("15"), targets=targets)

        assert [line.applied for line in result.applied_lines] == [Decimal("10"), Decimal("5")]

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValueError):
            allocate_waterfall(amount=amount, targets=_targets("10"))

    def test_negative_target_balance_rejected(self):
        with pytest.raises(ValueError):
            allocate_waterfall(amount=Decimal("5"), targets=_targets("-1"))


class TestPairSlices:
    def test_one_credit_spans_two_obligations(self):
        credit_id, first, second = uuid4(), uuid4(), uuid4()
        credit_lines = [WaterfallLine(credit_id, Decimal("80"), Decimal("0"))]
        obligation_lines = [
            WaterfallLine(first, Decimal("50"), Decimal("0")),
            WaterfallLine(second, Decimal("30"), Decimal("70")),
        ]

        slices = pair_slices(credit_lines, obligation_lines)

        assert slices == (
            CreditSlice(credit_id, first, Decimal("50")),
            CreditSlice(credit_id, second, Decimal("30")),
        )

    def test_two_credits_pay_one_obligation(self):
        older, newer, obligation = uuid4(), uuid4(), uuid4()
        credit_lines = [
            WaterfallLine(older, Decimal("20"), Decimal("0")),
            WaterfallLine(newer, Decimal("15"), Decimal("5")),
        ]
        obligation_lines = [WaterfallLine(obligation, Decimal("35"), Decimal("65"))]

        slices = pair_slices(credit_lines, obligation_lines)

        assert [(s.credit_id, s.amount) for s in slices] == [
            (older, Decimal("20")),
            (newer, Decimal("15")),
        ]
        assert sum(s.amount for s in slices) == Decimal("35")

    def test_zero_lines_are_ignored(self):
        credit_id, obligation = uuid4(), uuid4()
        slices = pair_slices(
            [WaterfallLine(credit_id, Decimal("10"), Decimal("0"))],
            [
                WaterfallLine(uuid4(), Decimal("0"), Decimal("0")),
                WaterfallLine(obligation, Decimal("10"), Decimal("0")),
            ],
        )
        assert slices == (CreditSlice(credit_id, obligation, Decimal("10")),)

    def test_mismatched_totals_rejected(self):
        with pytest.raises(ValueError):
            pair_slices(
                [WaterfallLine(uuid4(), Decimal("10"), Decimal("0"))],
                [WaterfallLine(uuid4(), Decimal("9"), Decimal("0"))],
            )


class TestEngineTrace:
    def test_trace_record_emitted(self, captured_logs):
        allocate_waterfall(amount=Decimal("10"), targets=_targets("10"))

        traces = [r for r in captured_logs() if r["message"] == "FEES_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "waterfall"
        assert traces[0]["engine_version"] == "1.0"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_is_deterministic(self):
        target_id = uuid4()
        kwargs = {
            "amount": Decimal("10"),
            "targets": [WaterfallTarget(target_id, Decimal("5"))],
        }
        first = compute_input_fingerprint(("amount", "targets"), kwargs)
        second = compute_input_fingerprint(("amount", "targets"), dict(kwargs))
        assert first == second

    def test_fingerprint_records_missing_fields(self):
        assert compute_input_fingerprint(("amount",), {}) == compute_input_fingerprint(
            ("amount",), {"amount": None}
        )

    def test_trace_summarizes_result(self, captured_logs):
        allocate_waterfall(amount=Decimal("650.00"), targets=_targets("500.00", "300.00", "200.00"))

        (trace,) = [r for r in captured_logs() if r["message"] == "FEES_ENGINE_TRACE"]
        assert trace["outcome"] == "ok"
        assert trace["total_applied"] == "650.00"
        assert trace["leftover"] == "0.00"
        assert trace["targets_reached"] == 2

    def test_failed_call_traced_and_reraised(self, captured_logs):
        with pytest.raises(ValueError):
            allocate_waterfall(amount=Decimal("0"), targets=_targets("10"))

        (trace,) = [r for r in captured_logs() if r["message"] == "FEES_ENGINE_TRACE"]
        assert trace["level"] == "WARNING"
        assert trace["outcome"] == "error:ValueError"

    def test_equal_balances_share_a_fingerprint(self):
        target_id = uuid4()

        assert compute_input_fingerprint(
            ("targets",), {"targets": [WaterfallTarget(target_id, Decimal("500"))]}
        ) == compute_input_fingerprint(
            ("targets",), {"targets": [WaterfallTarget(target_id, Decimal("500.00"))]}
        )
