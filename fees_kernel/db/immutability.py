"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The audit ledger and every terminal state in the payment lifecycle must be
tamper-proof.  Corrections are new rows, never edits.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy unit-of-work flushes
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (PostgreSQL triggers)
    - Catches raw SQL and bulk statements on the append-only tables

Table CHECK constraints on obligations and credits are a third, arithmetic
layer (balance >= 0, paid + balance == due, remaining within bounds).

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | Rule
-------------------|--------------------------------------------------------
LedgerEntry        | No UPDATE, no DELETE, ever
TransactionClaim   | No UPDATE, no DELETE, ever
PaymentRecord      | No UPDATE once CONFIRMED/FAILED; no DELETE
UnmatchedPayment   | No UPDATE once RESOLVED/REJECTED; no DELETE
Obligation         | amount_due fixed; no UPDATE once SETTLED; no DELETE
Credit             | original_amount fixed; no DELETE
Student            | reference_code fixed

===============================================================================
USAGE
===============================================================================

    from fees_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent

Tests that need to corrupt data on purpose may call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from fees_kernel.exceptions import ImmutabilityViolationError
from fees_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _previous_value(target, attribute: str):
    """Value the attribute had when loaded, or None if unknown."""
    history = get_history(target, attribute)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _has_changed(target, attribute: str) -> bool:
    history = get_history(target, attribute)
    return bool(history.deleted) and history.added != history.deleted


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# =============================================================================
# Append-only tables
# =============================================================================


def _check_ledger_entry_update(mapper, connection, target):
    _block("LedgerEntry", target, "UPDATE", "Ledger entries are append-only")


def _check_ledger_entry_delete(mapper, connection, target):
    _block("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


def _check_claim_update(mapper, connection, target):
    _block("TransactionClaim", target, "UPDATE", "Transaction claims are append-only")


def _check_claim_delete(mapper, connection, target):
    _block("TransactionClaim", target, "DELETE", "Transaction claims cannot be deleted")


# =============================================================================
# Terminal states
# =============================================================================


def _check_payment_record_update(mapper, connection, target):
    from fees_kernel.models.payment import PaymentStatus

    previous = _previous_value(target, "status")
    if previous is not None and previous != PaymentStatus.PENDING.value:
        _block(
            "PaymentRecord",
            target,
            "UPDATE",
            f"Payment record is {previous} and can no longer change",
        )


def _check_payment_record_delete(mapper, connection, target):
    _block("PaymentRecord", target, "DELETE", "Payment records cannot be deleted")


def _check_unmatched_payment_update(mapper, connection, target):
    from fees_kernel.models.unmatched_payment import UnmatchedStatus

    previous = _previous_value(target, "status")
    if previous is not None and previous != UnmatchedStatus.PENDING.value:
        _block(
            "UnmatchedPayment",
            target,
            "UPDATE",
            f"Unmatched payment is {previous} and can no longer change",
        )


def _check_unmatched_payment_delete(mapper, connection, target):
    _block("UnmatchedPayment", target, "DELETE", "Unmatched payments cannot be deleted")


def _check_obligation_update(mapper, connection, target):
    from fees_kernel.models.obligation import ObligationStatus

    if _has_changed(target, "amount_due"):
        _block("Obligation", target, "UPDATE", "amount_due is fixed at assignment")

    previous = _previous_value(target, "status")
    if previous == ObligationStatus.SETTLED.value:
        _block("Obligation", target, "UPDATE", "Settled obligations are never reopened")


def _check_obligation_delete(mapper, connection, target):
    _block("Obligation", target, "DELETE", "Obligations cannot be deleted")


def _check_credit_update(mapper, connection, target):
    if _has_changed(target, "original_amount"):
        _block("Credit", target, "UPDATE", "original_amount is fixed at creation")


def _check_credit_delete(mapper, connection, target):
    _block("Credit", target, "DELETE", "Credits are kept for the audit trail")


def _check_student_update(mapper, connection, target):
    if _has_changed(target, "reference_code"):
        _block("Student", target, "UPDATE", "reference_code is immutable")


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from fees_kernel.models import (
        Credit,
        LedgerEntry,
        Obligation,
        PaymentRecord,
        Student,
        TransactionClaim,
        UnmatchedPayment,
    )

    return (
        (LedgerEntry, "before_update", _check_ledger_entry_update),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (TransactionClaim, "before_update", _check_claim_update),
        (TransactionClaim, "before_delete", _check_claim_delete),
        (PaymentRecord, "before_update", _check_payment_record_update),
        (PaymentRecord, "before_delete", _check_payment_record_delete),
        (UnmatchedPayment, "before_update", _check_unmatched_payment_update),
        (UnmatchedPayment, "before_delete", _check_unmatched_payment_delete),
        (Obligation, "before_update", _check_obligation_update),
        (Obligation, "before_delete", _check_obligation_delete),
        (Credit, "before_update", _check_credit_update),
        (Credit, "before_delete", _check_credit_delete),
        (Student, "before_update", _check_student_update),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that intentionally corrupt rows to verify
    detection.
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
