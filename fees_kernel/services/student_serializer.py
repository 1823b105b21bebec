"""
StudentSerializer -- per-student mutual exclusion for financial mutations.

Responsibility:
    Guarantees that at most one unit of work mutates a given student's
    obligations, credits and ledger at a time, while different students
    proceed in parallel.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Entered by every service that changes money for a student
    (PaymentIntakeGateway, UnmatchedPaymentQueue.resolve,
    ObligationService.assign_fee).

Invariants enforced:
    Three layers, all keyed by student id:

    1. In-process lock (StudentLockRegistry).  Threads of one process queue
       on a per-student lock with a bounded wait.  Locks are held by the
       unit of work's LockScope until AFTER commit or rollback, so the
       next holder always reads committed state.
    2. Row lock.  ``SELECT ... FOR UPDATE`` on the student row serializes
       processes sharing a PostgreSQL database.  (SQLite takes a database
       write lock at BEGIN IMMEDIATE instead.)
    3. Compare-and-swap on ``students.ledger_version``.  Each committed
       mutation bumps the version with
       ``UPDATE ... WHERE id = :id AND ledger_version = :seen``.  Zero rows
       updated means the state we read is stale.

    Lock ordering: a unit of work claims its idempotency key / wins its
    unmatched-payment CAS BEFORE entering a student section, and never
    holds more than one student section.  No cycle is possible.

Failure modes:
    - StudentLockTimeoutError: lock not acquired within the timeout
      (retryable ConcurrencyConflictError).
    - OptimisticLockError: ledger_version moved underneath us (retryable).
    - StudentFrozenError: the student is frozen after an invariant
      violation; writes are refused.
    - StudentNotFoundError: no such student.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fees_kernel.domain.clock import Clock
from fees_kernel.exceptions import (
    OptimisticLockError,
    StudentFrozenError,
    StudentLockTimeoutError,
    StudentNotFoundError,
)
from fees_kernel.logging_config import get_logger
from fees_kernel.models.student import Student
from fees_kernel.services.base import BaseService

logger = get_logger("services.student_serializer")

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class StudentLockRegistry:
    """
    Process-wide registry of per-student locks.

    Entries are reference counted and dropped when no thread holds or waits
    for them, so the registry does not grow with the number of students
    ever seen.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._entries: dict[UUID, _LockEntry] = {}

    def acquire(self, student_id: UUID, timeout: float | None = None) -> None:
        """
        Block until the student's lock is held or the timeout expires.

        Raises:
            StudentLockTimeoutError: the lock was not acquired in time.
        """
        wait = self.timeout_seconds if timeout is None else timeout
        with self._guard:
            entry = self._entries.setdefault(student_id, _LockEntry())
            entry.refs += 1

        if not entry.lock.acquire(timeout=wait):
            self._drop_ref(student_id, entry)
            logger.warning(
                "student_lock_timeout",
                extra={"student_id": str(student_id), "timeout_seconds": wait},
            )
            raise StudentLockTimeoutError(str(student_id), wait)

    def release(self, student_id: UUID) -> None:
        with self._guard:
            entry = self._entries.get(student_id)
        if entry is None:
            raise RuntimeError(f"Student lock {student_id} is not held")
        entry.lock.release()
        self._drop_ref(student_id, entry)

    def _drop_ref(self, student_id: UUID, entry: _LockEntry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(student_id, None)

    def is_locked(self, student_id: UUID) -> bool:
        with self._guard:
            entry = self._entries.get(student_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class LockScope:
    """
    The student locks held by one unit of work.

    Re-entrant per scope: holding the same student twice is a no-op.
    release_all() is called by the unit of work after commit or rollback.
    """

    def __init__(self, registry: StudentLockRegistry):
        self._registry = registry
        self._held: list[UUID] = []

    @property
    def held(self) -> tuple[UUID, ...]:
        return tuple(self._held)

    def hold(self, student_id: UUID) -> None:
        if student_id in self._held:
            return
        self._registry.acquire(student_id)
        self._held.append(student_id)

    def release_all(self) -> None:
        while self._held:
            self._registry.release(self._held.pop())

    def __enter__(self) -> LockScope:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()


class StudentSerializer(BaseService[Student]):
    """
    Enter and leave a student's critical section inside one unit of work.

    Usage:
        student = serializer.enter(student_id)
        ... mutate obligations / credits / ledger ...
        serializer.bump_version(student)
    """

    def __init__(
        self,
        session: Session,
        lock_scope: LockScope,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._lock_scope = lock_scope
        self._seen_versions: dict[UUID, int] = {}

    def enter(self, student_id: UUID, *, require_writable: bool = True) -> Student:
        """
        Acquire the student's section and load a fresh, row-locked Student.

        Raises:
            StudentLockTimeoutError, StudentNotFoundError, StudentFrozenError.
        """
        self._lock_scope.hold(student_id)

        student = self.session.execute(
            select(Student)
            .where(Student.id == student_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if student is None:
            raise StudentNotFoundError(str(student_id))

        if require_writable and student.is_frozen:
            logger.warning(
                "student_frozen_write_refused",
                extra={"student_id": str(student_id), "reason": student.frozen_reason},
            )
            raise StudentFrozenError(str(student_id), student.frozen_reason)

        self._seen_versions.setdefault(student_id, student.ledger_version)
        return student

    def bump_version(self, student: Student) -> int:
        """
        Compare-and-swap ledger_version from the value seen at enter().

        Called once per unit of work after the student's money moved.

        Raises:
            OptimisticLockError: another writer committed in between.
        """
        seen = self._seen_versions.get(student.id, student.ledger_version)
        result = self.session.execute(
            update(Student)
            .where(Student.id == student.id, Student.ledger_version == seen)
            .values(ledger_version=seen + 1)
        )
        if result.rowcount != 1:
            logger.warning(
                "student_version_conflict",
                extra={"student_id": str(student.id), "seen_version": seen},
            )
            raise OptimisticLockError("Student", str(student.id))

        self._seen_versions[student.id] = seen + 1
        logger.debug(
            "student_version_bumped",
            extra={"student_id": str(student.id), "ledger_version": seen + 1},
        )
        return seen + 1
