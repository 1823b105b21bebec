"""
PaymentIntakeGateway -- at-most-once processing of settlement notifications.

Responsibility:
    Validates a normalized notification, suppresses duplicates, attributes
    the money to a student (or parks it for manual review), records the
    payment, allocates it and stages the resulting notifications.

Architecture position:
    Kernel > Services.  The orchestrator (fees_services) owns the unit of
    work: everything below either commits together or not at all.

Flow:
    1. validate_notification() -- failures return REJECTED, nothing is
       written.
    2. Fast-path existence check: a claim, a payment record (by transaction
       id or receipt) or an unmatched payment with one of the
       notification's keys means ALREADY_PROCESSED.  A PENDING push-payment
       record with the same transaction id is the exception: this
       notification confirms it.
    3. Claim every idempotency key with an INSERT inside a savepoint.  The
       UNIQUE constraint on transaction_claims.claim_key is the
       serialization point between concurrent deliveries: the loser's
       INSERT fails (IntegrityError) and it returns ALREADY_PROCESSED.
    4. Attribute: the pending record's student, else StudentResolver on the
       raw reference.  No match, or a frozen student, parks the payment in
       the UnmatchedPaymentQueue and alerts operators.
    5. Enter the student's section, record / confirm the payment, allocate,
       cross-check the ledger, bump the student's ledger version and stage
       the parent / operator notifications in the outbox.

Invariants enforced:
    - At most one payment record, unmatched payment and set of ledger
      entries per idempotency key.
    - The claim is taken before the student section is entered.

Audit relevance:
    Replays whose payload differs from the first delivery are still
    suppressed, but logged as transaction_replay_payload_mismatch.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fees_kernel.db.types import round_money
from fees_kernel.domain.clock import Clock
from fees_kernel.domain.dtos import (
    IngestResult,
    IngestStatus,
    PaymentNotification,
)
from fees_kernel.domain.notification_validator import validate_notification
from fees_kernel.domain.notifications import (
    NotificationPolicy,
    payment_received,
    unmatched_payment,
)
from fees_kernel.exceptions import StudentReferenceNotFoundError
from fees_kernel.logging_config import LogContext, get_logger
from fees_kernel.models.payment import PaymentRecord, PaymentStatus
from fees_kernel.models.transaction_claim import ClaimKind, TransactionClaim
from fees_kernel.models.unmatched_payment import UnmatchedPayment
from fees_kernel.services.allocation_service import AllocationService
from fees_kernel.services.audit_ledger import AuditLedgerService
from fees_kernel.services.base import BaseService
from fees_kernel.services.outbox import NotificationOutboxService
from fees_kernel.services.payment_record_service import PaymentRecordService
from fees_kernel.services.student_resolver import StudentResolver
from fees_kernel.services.student_serializer import StudentSerializer
from fees_kernel.services.unmatched_queue import UnmatchedPaymentQueue
from fees_kernel.utils.hashing import notification_fingerprint

logger = get_logger("services.intake_gateway")


class PaymentIntakeGateway(BaseService[PaymentRecord]):
    def __init__(
        self,
        session: Session,
        *,
        serializer: StudentSerializer,
        resolver: StudentResolver,
        payments: PaymentRecordService,
        allocation: AllocationService,
        audit: AuditLedgerService,
        unmatched: UnmatchedPaymentQueue,
        outbox: NotificationOutboxService,
        policy: NotificationPolicy | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._serializer = serializer
        self._resolver = resolver
        self._payments = payments
        self._allocation = allocation
        self._audit = audit
        self._unmatched = unmatched
        self._outbox = outbox
        self._policy = policy if policy is not None else NotificationPolicy()

    def ingest(self, notification: PaymentNotification) -> IngestResult:
        with LogContext.bind(transaction_id=notification.external_transaction_id):
            logger.info(
                "ingest_started",
                extra={
                    "channel": notification.channel.value,
                    "raw_reference": notification.raw_reference,
                },
            )

            validation = validate_notification(notification)
            if not validation:
                logger.warning(
                    "ingest_rejected",
                    extra={"reason": validation.reason},
                )
                return IngestResult(
                    status=IngestStatus.REJECTED,
                    external_transaction_id=notification.external_transaction_id,
                    validation=validation,
                    message=validation.reason,
                )

            keys = notification.claim_keys()
            payload_hash = notification_fingerprint(notification.canonical_payload())

            pending, duplicate = self._existing(notification, keys)
            if duplicate:
                return self._already_processed(notification, payload_hash)

            if not self._claim(notification, keys, payload_hash):
                return self._already_processed(notification, payload_hash)

            if pending is not None:
                return self._confirm_pending(notification, pending)
            return self._process_new(notification)

    # ------------------------------------------------------------------
    # Duplicate suppression
    # ------------------------------------------------------------------

    def _existing(
        self,
        notification: PaymentNotification,
        keys: Sequence[str],
    ) -> tuple[PaymentRecord | None, bool]:
        """(pending record to confirm, is duplicate)."""
        claimed = self.session.execute(
            select(TransactionClaim.id).where(TransactionClaim.claim_key.in_(keys)).limit(1)
        ).scalar_one_or_none()
        if claimed is not None:
            return None, True

        parked = self.session.execute(
            select(UnmatchedPayment.id).where(
                UnmatchedPayment.external_transaction_id.in_(keys)
            ).limit(1)
        ).scalar_one_or_none()
        if parked is not None:
            return None, True

        pending = None
        for record in self._payments.find_by_keys(keys):
            if (
                record.status == PaymentStatus.PENDING.value
                and record.external_transaction_id == notification.external_transaction_id
            ):
                pending = record
            else:
                return None, True
        return pending, False

    def _claim(
        self,
        notification: PaymentNotification,
        keys: Sequence[str],
        payload_hash: str,
    ) -> bool:
        savepoint = self.session.begin_nested()
        try:
            for position, key in enumerate(keys):
                self.session.add(
                    TransactionClaim(
                        claim_key=key,
                        kind=(
                            ClaimKind.TRANSACTION.value
                            if position == 0
                            else ClaimKind.RECEIPT.value
                        ),
                        external_transaction_id=notification.external_transaction_id,
                        payload_hash=payload_hash,
                        claimed_at=self.clock.now(),
                    )
                )
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.info("transaction_claim_lost", extra={"claim_keys": list(keys)})
            return False
        return True

    def _already_processed(
        self,
        notification: PaymentNotification,
        payload_hash: str,
    ) -> IngestResult:
        original = self.session.execute(
            select(TransactionClaim).where(
                TransactionClaim.claim_key.in_(notification.claim_keys())
            ).order_by(TransactionClaim.claimed_at).limit(1)
        ).scalar_one_or_none()

        mismatch = original is not None and original.payload_hash != payload_hash
        if mismatch:
            logger.warning(
                "transaction_replay_payload_mismatch",
                extra={
                    "original_transaction_id": original.external_transaction_id,
                    "original_hash": original.payload_hash,
                    "replay_hash": payload_hash,
                },
            )
        logger.info("ingest_duplicate")
        return IngestResult(
            status=IngestStatus.ALREADY_PROCESSED,
            external_transaction_id=notification.external_transaction_id,
            message="Transaction already processed",
            payload_mismatch=mismatch,
        )

    # ------------------------------------------------------------------
    # Attribution and allocation
    # ------------------------------------------------------------------

    def _process_new(self, notification: PaymentNotification) -> IngestResult:
        try:
            student_id = self._resolver.resolve(notification.raw_reference)
        except StudentReferenceNotFoundError:
            return self._park(notification, note=None)

        return self._allocate(notification, student_id, pending=None)

    def _confirm_pending(
        self,
        notification: PaymentNotification,
        pending: PaymentRecord,
    ) -> IngestResult:
        logger.info(
            "pending_payment_confirmation",
            extra={"payment_id": str(pending.id), "student_id": str(pending.student_id)},
        )
        return self._allocate(notification, pending.student_id, pending=pending)

    def _allocate(
        self,
        notification: PaymentNotification,
        student_id: UUID,
        pending: PaymentRecord | None,
    ) -> IngestResult:
        amount = round_money(notification.amount)

        with LogContext.bind(student_id=student_id):
            student = self._serializer.enter(student_id, require_writable=False)
            if student.is_frozen:
                return self._park(
                    notification,
                    note=(
                        f"Student {student.reference_code} is frozen "
                        f"({student.frozen_reason}); payment held for review."
                    ),
                )

            if pending is not None:
                payment = self._payments.confirm(
                    pending,
                    amount=amount,
                    receipt_number=notification.receipt_number,
                    payer_phone=notification.payer_phone,
                    payer_name=notification.payer_name,
                    occurred_at=notification.occurred_at,
                )
            else:
                payment = self._payments.create_confirmed(notification, student_id, amount)

            allocation = self._allocation.allocate(student, amount, payment)
            self._audit.assert_consistent(student_id)
            self._serializer.bump_version(student)

            self._outbox.enqueue(
                payment_received(
                    self._policy,
                    student_id=student.id,
                    student_name=student.full_name,
                    reference_code=student.reference_code,
                    parent_phone=student.parent_phone,
                    amount=amount,
                    amount_owed=allocation.amount_owed,
                    transaction_ref=notification.receipt_number
                    or notification.external_transaction_id,
                    method=notification.method,
                    occurred_at=notification.occurred_at,
                )
            )

            logger.info(
                "ingest_accepted",
                extra={
                    "payment_id": str(payment.id),
                    "amount": str(amount),
                    "total_applied": str(allocation.total_applied),
                    "leftover": str(allocation.leftover),
                },
            )
            return IngestResult(
                status=IngestStatus.ACCEPTED,
                external_transaction_id=notification.external_transaction_id,
                matched=True,
                student_id=student.id,
                payment_id=payment.id,
                allocation=allocation,
            )

    def _park(self, notification: PaymentNotification, note: str | None) -> IngestResult:
        amount = round_money(notification.amount)
        row = self._unmatched.park(notification, amount, note=note)
        self._outbox.enqueue(
            unmatched_payment(
                self._policy,
                amount=amount,
                raw_reference=row.raw_reference,
                payer_name=notification.payer_name,
                payer_phone=notification.payer_phone,
                transaction_ref=notification.external_transaction_id,
                note=note,
            )
        )
        logger.info(
            "ingest_accepted_unmatched",
            extra={"unmatched_payment_id": str(row.id), "amount": str(amount)},
        )
        return IngestResult(
            status=IngestStatus.ACCEPTED,
            external_transaction_id=notification.external_transaction_id,
            matched=False,
            unmatched_payment_id=row.id,
        )
