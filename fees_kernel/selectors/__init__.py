"""Read-only selectors for the fees kernel."""

from fees_kernel.selectors.balance_selector import (
    BalanceBreakdown,
    BalanceSelector,
    BalanceStatus,
    CreditView,
    ObligationView,
    StudentBalance,
)
from fees_kernel.selectors.ledger_selector import (
    LedgerEntryView,
    LedgerSelector,
    StudentLedger,
)
from fees_kernel.selectors.unmatched_selector import (
    UnmatchedPage,
    UnmatchedPaymentView,
    UnmatchedSelector,
)

__all__ = [
    "BalanceBreakdown",
    "BalanceSelector",
    "BalanceStatus",
    "CreditView",
    "LedgerEntryView",
    "LedgerSelector",
    "ObligationView",
    "StudentBalance",
    "StudentLedger",
    "UnmatchedPage",
    "UnmatchedPaymentView",
    "UnmatchedSelector",
]
