"""
Fees Kernel - payment reconciliation and allocation core.

An append-only, per-student fee ledger with:
- Idempotent intake of payment notifications
- Deterministic waterfall allocation across open obligations
- Stored credit from overpayment, consumed FIFO
- Manual resolution queue for unattributable payments
- Balance-carrying audit ledger cross-checked against aggregate state
"""

__version__ = "0.1.0"
