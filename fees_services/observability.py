"""
Observability hooks for payment intake and reconciliation.

Emits structured log events for metrics and dashboards:
- Intake outcome: payment_ingested (status, matched) for accept / duplicate /
  reject rates and the unmatched ratio.
- Concurrency: conflict_retry and conflict_exhausted (with error code).
- Invariants: invariant_violation (always CRITICAL) and student_frozen.
- Delivery: notification_delivery (SENT / FAILED counts per dispatch run).
- Reconciliation: reconciliation_result per student.

All events carry an ``observability_event`` field so log aggregators can
build metrics without parsing messages.

Usage:
    from fees_services.observability import log_payment_ingested
    log_payment_ingested(status="ACCEPTED", matched=True, duration_ms=8.1)
"""

from __future__ import annotations

from typing import Any

from fees_kernel.logging_config import get_logger

logger = get_logger("services.observability")

EVENT_PAYMENT_INGESTED = "payment_ingested"
EVENT_CONFLICT_RETRY = "conflict_retry"
EVENT_CONFLICT_EXHAUSTED = "conflict_exhausted"
EVENT_INVARIANT_VIOLATION = "invariant_violation"
EVENT_STUDENT_FROZEN = "student_frozen"
EVENT_NOTIFICATION_DELIVERY = "notification_delivery"
EVENT_RECONCILIATION_RESULT = "reconciliation_result"


def log_payment_ingested(
    *,
    status: str,
    matched: bool,
    duration_ms: float | None = None,
    payload_mismatch: bool = False,
    **extra: Any,
) -> None:
    """One record per notification handled, whatever the outcome."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_PAYMENT_INGESTED,
        "status": status,
        "matched": matched,
        **extra,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if payload_mismatch:
        payload["payload_mismatch"] = True
    logger.info("intake_payment_ingested", extra=payload)


def log_conflict_retry(*, operation: str, attempt: int, exc_code: str, **extra: Any) -> None:
    logger.warning(
        "concurrency_conflict_retry",
        extra={
            "observability_event": EVENT_CONFLICT_RETRY,
            "operation": operation,
            "attempt": attempt,
            "exc_code": exc_code,
            **extra,
        },
    )


def log_conflict_exhausted(*, operation: str, attempts: int, exc_code: str, **extra: Any) -> None:
    logger.error(
        "concurrency_conflict_exhausted",
        extra={
            "observability_event": EVENT_CONFLICT_EXHAUSTED,
            "operation": operation,
            "attempts": attempts,
            "exc_code": exc_code,
            **extra,
        },
    )


def log_invariant_violation(
    *,
    operation: str,
    exc_code: str,
    student_id: str | None,
    detail: str,
    **extra: Any,
) -> None:
    """Should-never-happen state; always CRITICAL."""
    logger.critical(
        "invariant_violation_detected",
        extra={
            "observability_event": EVENT_INVARIANT_VIOLATION,
            "operation": operation,
            "exc_code": exc_code,
            "student_id": student_id,
            "detail": detail,
            **extra,
        },
    )


def log_student_frozen(*, student_id: str, reason: str, **extra: Any) -> None:
    logger.critical(
        "student_writes_halted",
        extra={
            "observability_event": EVENT_STUDENT_FROZEN,
            "student_id": student_id,
            "reason": reason,
            **extra,
        },
    )


def log_notification_delivery(*, sent: int, failed: int, skipped: int = 0, **extra: Any) -> None:
    payload: dict[str, Any] = {
        "observability_event": EVENT_NOTIFICATION_DELIVERY,
        "sent": sent,
        "failed": failed,
        "skipped": skipped,
        **extra,
    }
    if failed:
        logger.warning("notification_dispatch_completed", extra=payload)
    else:
        logger.info("notification_dispatch_completed", extra=payload)


def log_reconciliation_result(
    *,
    student_id: str,
    ok: bool,
    problems: list[str] | None = None,
    **extra: Any,
) -> None:
    payload: dict[str, Any] = {
        "observability_event": EVENT_RECONCILIATION_RESULT,
        "student_id": student_id,
        "ok": ok,
        **extra,
    }
    if problems:
        payload["problems"] = problems
    if ok:
        logger.info("reconciliation_student_checked", extra=payload)
    else:
        logger.critical("reconciliation_student_failed", extra=payload)
