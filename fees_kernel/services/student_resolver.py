"""StudentResolver -- exact reference-code lookup."""

from uuid import UUID

from sqlalchemy import select

from fees_kernel.exceptions import StudentReferenceNotFoundError
from fees_kernel.logging_config import get_logger
from fees_kernel.models.student import Student
from fees_kernel.services.base import BaseService

logger = get_logger("services.student_resolver")


class StudentResolver(BaseService[Student]):
    """
    Map a payer-supplied reference to exactly one student.

    Only surrounding whitespace is ignored.  No case folding, no fuzzy
    matching: anything that is not an exact hit goes to manual review.
    """

    def resolve(self, raw_reference: str | None) -> UUID:
        """
        Raises:
            StudentReferenceNotFoundError: no student has this reference.
        """
        reference = (raw_reference or "").strip()
        student_id = None
        if reference:
            student_id = self.session.execute(
                select(Student.id).where(Student.reference_code == reference)
            ).scalar_one_or_none()

        if student_id is None:
            logger.info("student_reference_not_found", extra={"raw_reference": raw_reference})
            raise StudentReferenceNotFoundError(raw_reference or "")

        logger.debug(
            "student_reference_resolved",
            extra={"raw_reference": reference, "student_id": str(student_id)},
        )
        return student_id
