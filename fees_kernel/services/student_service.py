"""
StudentService -- the student registry and the write freeze.

Responsibility:
    Registers students, records enrollment status changes and freezes or
    unfreezes a student's financial writes.

Invariants enforced:
    - reference_code is unique and never changes.
    - Enrollment status never blocks payment intake.
    - A frozen student accepts no financial writes until an operator
      unfreezes it (StudentSerializer refuses them).

Audit relevance:
    Freeze and unfreeze are logged at CRITICAL / WARNING with the reason
    and the operator.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fees_kernel.exceptions import StudentNotFoundError, StudentReferenceTakenError
from fees_kernel.logging_config import get_logger
from fees_kernel.models.student import EnrollmentStatus, Student
from fees_kernel.services.base import BaseService

logger = get_logger("services.student")


class StudentService(BaseService[Student]):
    def register_student(
        self,
        reference_code: str,
        first_name: str,
        last_name: str,
        parent_phone: str | None = None,
        enrollment_status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
    ) -> Student:
        reference_code = reference_code.strip()
        existing = self.session.execute(
            select(Student.id).where(Student.reference_code == reference_code)
        ).scalar_one_or_none()
        if existing is not None:
            raise StudentReferenceTakenError(reference_code)

        student = Student(
            reference_code=reference_code,
            first_name=first_name,
            last_name=last_name,
            parent_phone=parent_phone,
            enrollment_status=EnrollmentStatus(enrollment_status).value,
            ledger_version=0,
            is_frozen=False,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(student)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise StudentReferenceTakenError(reference_code) from exc

        logger.info(
            "student_registered",
            extra={"student_id": str(student.id), "reference_code": reference_code},
        )
        return student

    def get(self, student_id: UUID) -> Student:
        student = self.session.get(Student, student_id)
        if student is None:
            raise StudentNotFoundError(str(student_id))
        return student

    def set_enrollment_status(self, student_id: UUID, status: EnrollmentStatus) -> Student:
        student = self.get(student_id)
        previous = student.enrollment_status
        student.enrollment_status = EnrollmentStatus(status).value
        self.session.flush()
        logger.info(
            "enrollment_status_changed",
            extra={
                "student_id": str(student_id),
                "from_status": previous,
                "to_status": student.enrollment_status,
            },
        )
        return student

    def freeze_student(self, student_id: UUID, reason: str) -> Student:
        """Halt financial writes.  Idempotent: the first reason is kept."""
        student = self.get(student_id)
        if student.is_frozen:
            return student
        student.is_frozen = True
        student.frozen_reason = reason[:500]
        student.frozen_at = self.clock.now()
        self.session.flush()
        logger.critical(
            "student_frozen",
            extra={"student_id": str(student_id), "reason": reason},
        )
        return student

    def unfreeze_student(
        self,
        student_id: UUID,
        operator_id: str,
        notes: str | None = None,
    ) -> Student:
        student = self.get(student_id)
        if not student.is_frozen:
            return student
        previous_reason = student.frozen_reason
        student.is_frozen = False
        student.frozen_reason = None
        student.frozen_at = None
        self.session.flush()
        logger.warning(
            "student_unfrozen",
            extra={
                "student_id": str(student_id),
                "operator_id": operator_id,
                "previous_reason": previous_reason,
                "notes": notes,
            },
        )
        return student
