"""
Fees engines -- pure calculation, no I/O, no ORM.

    from fees_engines.waterfall import allocate_waterfall, pair_slices
"""

from fees_engines.waterfall import (
    CreditSlice,
    WaterfallLine,
    WaterfallResult,
    WaterfallTarget,
    allocate_waterfall,
    pair_slices,
)

__all__ = [
    "CreditSlice",
    "WaterfallLine",
    "WaterfallResult",
    "WaterfallTarget",
    "allocate_waterfall",
    "pair_slices",
]
