"""
Typed Exception Hierarchy for the Fees Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Payment intake runs behind a webhook that the mobile-money provider retries
on any non-2xx answer. The adapter layer must decide, per failure, whether
to acknowledge, retry, or alert an operator. That decision must never depend
on parsing a message string.

Every exception here:
  1. Has its own class (catch by type, not message)
  2. Has a class-level CODE attribute (machine-readable, API-safe)
  3. Stores its context as attributes (student id, transaction id, amounts)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FeesKernelError (base)
    |
    +-- NotificationValidationError
    |
    +-- DuplicateError
    |   +-- TransactionAlreadyProcessedError
    |   +-- StudentReferenceTakenError
    |
    +-- ResolutionError
    |   +-- StudentReferenceNotFoundError
    |
    +-- NotFoundError
    |   +-- StudentNotFoundError
    |   +-- UnmatchedPaymentNotFoundError
    |   +-- PaymentRecordNotFoundError
    |
    +-- UnmatchedPaymentError
    |   +-- UnmatchedPaymentAlreadyResolvedError
    |
    +-- PaymentStateError
    |   +-- InvalidPaymentTransitionError
    |
    +-- ObligationError
    |   +-- ObligationAlreadyAssignedError
    |   +-- InvalidObligationAmountError
    |
    +-- ConcurrencyConflictError
    |   +-- StudentLockTimeoutError
    |   +-- OptimisticLockError
    |
    +-- InvariantViolationError
    |   +-- NegativeBalanceError
    |   +-- ObligationArithmeticError
    |   +-- CreditBoundsError
    |   +-- LedgerMismatchError
    |   +-- RunningBalanceChainError
    |   +-- StudentFrozenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|----------------------------------------
Validation      | VALIDATION_ERROR              | Malformed notification (no persistence)
----------------|-------------------------------|----------------------------------------
Duplicate       | TRANSACTION_ALREADY_PROCESSED | Idempotency key already claimed (OK)
                | STUDENT_REFERENCE_TAKEN       | Reference code already registered
----------------|-------------------------------|----------------------------------------
Resolution      | STUDENT_REFERENCE_NOT_FOUND   | Reference matches no student
----------------|-------------------------------|----------------------------------------
Not found       | STUDENT_NOT_FOUND             | Student id doesn't exist
                | UNMATCHED_PAYMENT_NOT_FOUND   | Unmatched payment id doesn't exist
                | PAYMENT_RECORD_NOT_FOUND      | No payment record for the key
----------------|-------------------------------|----------------------------------------
Unmatched       | UNMATCHED_ALREADY_RESOLVED    | Record left PENDING already
----------------|-------------------------------|----------------------------------------
Payment         | INVALID_PAYMENT_TRANSITION    | e.g. FAILED -> CONFIRMED
----------------|-------------------------------|----------------------------------------
Obligation      | OBLIGATION_ALREADY_ASSIGNED   | Same fee code assigned twice
                | INVALID_OBLIGATION_AMOUNT     | Non-positive amount due
----------------|-------------------------------|----------------------------------------
Concurrency     | STUDENT_LOCK_TIMEOUT          | Per-student section not acquired in time
                | OPTIMISTIC_LOCK_CONFLICT      | Ledger version moved under us
----------------|-------------------------------|----------------------------------------
Invariant       | NEGATIVE_BALANCE              | Obligation balance < 0
                | OBLIGATION_ARITHMETIC         | paid + balance != due
                | CREDIT_BOUNDS                 | remaining outside [0, original]
                | LEDGER_MISMATCH               | Ledger sum != aggregate state
                | RUNNING_BALANCE_CHAIN         | running[i] != running[i-1] + amount[i]
                | STUDENT_FROZEN                | Writes halted pending investigation
----------------|-------------------------------|----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying an append-only/terminal row
----------------|-------------------------------|----------------------------------------
Configuration   | CONFIGURATION_ERROR           | Malformed configuration file

===============================================================================
HANDLING PATTERNS
===============================================================================

1. DUPLICATES ARE SUCCESS:

    result = gateway.ingest(notification)
    if result.status is IngestStatus.ALREADY_PROCESSED:
        return acknowledge(result)

2. CONCURRENCY CONFLICTS ARE RETRIED BY THE CALLER (bounded):

    except ConcurrencyConflictError:
        if attempt < max_retries:
            continue
        raise

3. INVARIANT VIOLATIONS ARE NEVER RETRIED:

    except InvariantViolationError as e:
        freeze_student(e.student_id)
        raise
"""

from decimal import Decimal


class FeesKernelError(Exception):
    """Base exception for all fees kernel errors."""

    code: str = "FEES_KERNEL_ERROR"


# Validation


class NotificationValidationError(FeesKernelError):
    """A payment notification failed validation and must not be persisted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, external_transaction_id: str | None, errors: tuple):
        self.external_transaction_id = external_transaction_id
        self.errors = errors
        summary = "; ".join(f"{e.code}: {e.message}" for e in errors)
        super().__init__(
            f"Notification {external_transaction_id!r} rejected: {summary}"
        )


# Duplicates


class DuplicateError(FeesKernelError):
    """Base exception for already-processed inputs."""

    code: str = "DUPLICATE"


class TransactionAlreadyProcessedError(DuplicateError):
    """The idempotency key was already claimed by an earlier notification."""

    code: str = "TRANSACTION_ALREADY_PROCESSED"

    def __init__(self, external_transaction_id: str):
        self.external_transaction_id = external_transaction_id
        super().__init__(
            f"Transaction {external_transaction_id} has already been processed"
        )


class StudentReferenceTakenError(DuplicateError):
    code: str = "STUDENT_REFERENCE_TAKEN"

    def __init__(self, reference_code: str):
        self.reference_code = reference_code
        super().__init__(f"Reference code {reference_code} is already registered")


# Resolution


class ResolutionError(FeesKernelError):
    """Base exception for payer references that cannot be attributed."""

    code: str = "RESOLUTION_ERROR"


class StudentReferenceNotFoundError(ResolutionError):
    """No student carries the supplied reference code."""

    code: str = "STUDENT_REFERENCE_NOT_FOUND"

    def __init__(self, raw_reference: str):
        self.raw_reference = raw_reference
        super().__init__(f"No student matches reference {raw_reference!r}")


# Lookups


class NotFoundError(FeesKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class StudentNotFoundError(NotFoundError):
    code: str = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student not found: {student_id}")


class UnmatchedPaymentNotFoundError(NotFoundError):
    code: str = "UNMATCHED_PAYMENT_NOT_FOUND"

    def __init__(self, unmatched_payment_id: str):
        self.unmatched_payment_id = unmatched_payment_id
        super().__init__(f"Unmatched payment not found: {unmatched_payment_id}")


class PaymentRecordNotFoundError(NotFoundError):
    code: str = "PAYMENT_RECORD_NOT_FOUND"

    def __init__(self, external_transaction_id: str):
        self.external_transaction_id = external_transaction_id
        super().__init__(
            f"No payment record for transaction {external_transaction_id}"
        )


# Unmatched payment queue


class UnmatchedPaymentError(FeesKernelError):
    """Base exception for unmatched payment queue errors."""

    code: str = "UNMATCHED_PAYMENT_ERROR"


class UnmatchedPaymentAlreadyResolvedError(UnmatchedPaymentError):
    """The unmatched payment already left PENDING (resolved or rejected)."""

    code: str = "UNMATCHED_ALREADY_RESOLVED"

    def __init__(self, unmatched_payment_id: str, current_status: str):
        self.unmatched_payment_id = unmatched_payment_id
        self.current_status = current_status
        super().__init__(
            f"Unmatched payment {unmatched_payment_id} is already {current_status}"
        )


# Payment records


class PaymentStateError(FeesKernelError):
    """Base exception for payment record lifecycle errors."""

    code: str = "PAYMENT_STATE_ERROR"


class InvalidPaymentTransitionError(PaymentStateError):
    code: str = "INVALID_PAYMENT_TRANSITION"

    def __init__(self, external_transaction_id: str, from_status: str, to_status: str):
        self.external_transaction_id = external_transaction_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Payment {external_transaction_id} cannot move "
            f"from {from_status} to {to_status}"
        )


# Obligations


class ObligationError(FeesKernelError):
    """Base exception for fee assignment errors."""

    code: str = "OBLIGATION_ERROR"


class ObligationAlreadyAssignedError(ObligationError):
    code: str = "OBLIGATION_ALREADY_ASSIGNED"

    def __init__(self, student_id: str, fee_code: str):
        self.student_id = student_id
        self.fee_code = fee_code
        super().__init__(f"Fee {fee_code} is already assigned to student {student_id}")


class InvalidObligationAmountError(ObligationError):
    code: str = "INVALID_OBLIGATION_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Obligation amount must be positive, got {amount}")


# Concurrency


class ConcurrencyConflictError(FeesKernelError):
    """Base exception for contended serialization points (retryable)."""

    code: str = "CONCURRENCY_CONFLICT"


class StudentLockTimeoutError(ConcurrencyConflictError):
    """The per-student section could not be entered within the timeout."""

    code: str = "STUDENT_LOCK_TIMEOUT"

    def __init__(self, student_id: str, timeout_seconds: float):
        self.student_id = student_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for student {student_id}"
        )


class OptimisticLockError(ConcurrencyConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Invariants


class InvariantViolationError(FeesKernelError):
    """
    Base exception for should-never-happen states.

    Always carries the student the violation belongs to, so the caller can
    halt writes for that student.
    """

    code: str = "INVARIANT_VIOLATION"
    student_id: str | None = None


class NegativeBalanceError(InvariantViolationError):
    code: str = "NEGATIVE_BALANCE"

    def __init__(self, student_id: str, obligation_id: str, balance: Decimal):
        self.student_id = student_id
        self.obligation_id = obligation_id
        self.balance = balance
        super().__init__(
            f"Obligation {obligation_id} of student {student_id} "
            f"would have negative balance {balance}"
        )


class ObligationArithmeticError(InvariantViolationError):
    code: str = "OBLIGATION_ARITHMETIC"

    def __init__(
        self,
        student_id: str,
        obligation_id: str,
        amount_due: Decimal,
        amount_paid: Decimal,
        balance: Decimal,
    ):
        self.student_id = student_id
        self.obligation_id = obligation_id
        self.amount_due = amount_due
        self.amount_paid = amount_paid
        self.balance = balance
        super().__init__(
            f"Obligation {obligation_id}: paid {amount_paid} + balance {balance} "
            f"!= due {amount_due}"
        )


class CreditBoundsError(InvariantViolationError):
    code: str = "CREDIT_BOUNDS"

    def __init__(
        self,
        student_id: str,
        credit_id: str,
        remaining_amount: Decimal,
        original_amount: Decimal,
    ):
        self.student_id = student_id
        self.credit_id = credit_id
        self.remaining_amount = remaining_amount
        self.original_amount = original_amount
        super().__init__(
            f"Credit {credit_id}: remaining {remaining_amount} outside "
            f"[0, {original_amount}]"
        )


class LedgerMismatchError(InvariantViolationError):
    """Ledger-derived balance disagrees with obligation/credit state."""

    code: str = "LEDGER_MISMATCH"

    def __init__(
        self,
        student_id: str,
        ledger_balance: Decimal,
        aggregate_balance: Decimal,
        running_balance: Decimal | None = None,
    ):
        self.student_id = student_id
        self.ledger_balance = ledger_balance
        self.aggregate_balance = aggregate_balance
        self.running_balance = running_balance
        super().__init__(
            f"Ledger for student {student_id} sums to {ledger_balance} "
            f"(running {running_balance}) but obligations/credits give "
            f"{aggregate_balance}"
        )


class RunningBalanceChainError(InvariantViolationError):
    code: str = "RUNNING_BALANCE_CHAIN"

    def __init__(
        self,
        student_id: str,
        sequence: int,
        expected: Decimal,
        actual: Decimal,
    ):
        self.student_id = student_id
        self.sequence = sequence
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Ledger entry {sequence} of student {student_id} carries running "
            f"balance {actual}, expected {expected}"
        )


class StudentFrozenError(InvariantViolationError):
    """Writes for this student are halted pending investigation."""

    code: str = "STUDENT_FROZEN"

    def __init__(self, student_id: str, reason: str | None):
        self.student_id = student_id
        self.reason = reason
        super().__init__(f"Student {student_id} is frozen: {reason}")


# Immutability


class ImmutabilityError(FeesKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted modification of an append-only or terminal record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Configuration


class ConfigurationError(FeesKernelError):
    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")
