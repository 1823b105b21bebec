"""
Module: fees_engines.waterfall
Responsibility:
    Deterministic waterfall allocation of an amount across ordered targets,
    and pairing of FIFO credit consumption with the obligations it pays.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller loads targets in
    priority order (oldest first, id tie-break); this module never reorders.

Invariants enforced:
    - total_applied + leftover == amount.
    - applied <= balance for every target; a target with zero balance is
      skipped.
    - One line per input target, in input order, so callers can report the
      full waterfall including targets the amount never reached.

Failure modes:
    - ValueError on a non-positive amount or a negative target balance.

Usage:
    result = allocate_waterfall(
        amount=Decimal("650"),
        targets=[
            WaterfallTarget(target_id=a, balance=Decimal("500")),
            WaterfallTarget(target_id=b, balance=Decimal("300")),
            WaterfallTarget(target_id=c, balance=Decimal("200")),
        ],
    )
    [line.applied for line in result.lines]  # [500, 150, 0]
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fees_engines.tracer import traced_engine
from fees_kernel.logging_config import get_logger

logger = get_logger("engines.waterfall")

ZERO = Decimal("0")


@dataclass(frozen=True)
class WaterfallTarget:
    """An obligation (or credit) with the balance it can absorb."""

    target_id: UUID
    balance: Decimal


@dataclass(frozen=True)
class WaterfallLine:
    target_id: UUID
    applied: Decimal
    remaining_balance: Decimal

    @property
    def is_settled(self) -> bool:
        return self.remaining_balance == ZERO


@dataclass(frozen=True)
class WaterfallResult:
    """
    Result of one waterfall.

    Guarantees:
        - len(lines) == len(targets), same order.
        - total_applied + leftover == amount.
    """

    amount: Decimal
    lines: tuple[WaterfallLine, ...]
    total_applied: Decimal
    leftover: Decimal

    @property
    def applied_lines(self) -> tuple[WaterfallLine, ...]:
        return tuple(line for line in self.lines if line.applied > ZERO)


@dataclass(frozen=True)
class CreditSlice:
    """Part of one credit moved onto one obligation."""

    credit_id: UUID
    obligation_id: UUID
    amount: Decimal


def _summary(result: WaterfallResult) -> dict[str, str | int]:
    return {
        "total_applied": str(result.total_applied),
        "leftover": str(result.leftover),
        "targets_reached": len(result.applied_lines),
    }


@traced_engine(
    "waterfall", "1.0", fingerprint_fields=("amount", "targets"), summarize=_summary,
)
def allocate_waterfall(
    *,
    amount: Decimal,
    targets: Sequence[WaterfallTarget],
) -> WaterfallResult:
    """
    Apply amount across targets in the given order.

    For each target: applied = min(remaining, balance); stop applying once
    remaining is zero (later targets get zero-applied lines).

    Raises:
        ValueError: amount <= 0 or a target has negative balance.
    """
    if amount <= ZERO:
        raise ValueError(f"Waterfall amount must be positive, got {amount}")

    remaining = amount
    lines: list[WaterfallLine] = []

    for target in targets:
        if target.balance < ZERO:
            raise ValueError(
                f"Target {target.target_id} has negative balance {target.balance}"
            )
        if remaining == ZERO or target.balance == ZERO:
            lines.append(WaterfallLine(target.target_id, ZERO, target.balance))
            continue

        applied = min(remaining, target.balance)
        remaining -= applied
        lines.append(WaterfallLine(target.target_id, applied, target.balance - applied))

    total_applied = amount - remaining

    logger.debug(
        "waterfall_completed",
        extra={
            "amount": str(amount),
            "target_count": len(lines),
            "total_applied": str(total_applied),
            "leftover": str(remaining),
        },
    )

    return WaterfallResult(
        amount=amount,
        lines=tuple(lines),
        total_applied=total_applied,
        leftover=remaining,
    )


def pair_slices(
    credit_lines: Sequence[WaterfallLine],
    obligation_lines: Sequence[WaterfallLine],
) -> tuple[CreditSlice, ...]:
    """
    Match FIFO credit consumption to FIFO obligation payment.

    Both sequences must apply the same total; zero lines are ignored.

    Raises:
        ValueError: totals differ.
    """
    credits = [[line.target_id, line.applied] for line in credit_lines if line.applied > ZERO]
    obligations = [
        [line.target_id, line.applied] for line in obligation_lines if line.applied > ZERO
    ]
    if sum((c[1] for c in credits), ZERO) != sum((o[1] for o in obligations), ZERO):
        raise ValueError("Credit and obligation totals differ; cannot pair slices")

    slices: list[CreditSlice] = []
    ci = oi = 0
    while ci < len(credits) and oi < len(obligations):
        amount = min(credits[ci][1], obligations[oi][1])
        slices.append(CreditSlice(credits[ci][0], obligations[oi][0], amount))
        credits[ci][1] -= amount
        obligations[oi][1] -= amount
        if credits[ci][1] == ZERO:
            ci += 1
        if obligations[oi][1] == ZERO:
            oi += 1

    return tuple(slices)
