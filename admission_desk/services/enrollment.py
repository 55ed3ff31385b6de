import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from admission_desk.core.errors import DuplicateKeyError, StorageError
from admission_desk.core.retry import retry_storage
from admission_desk.models.application import Application
from admission_desk.models.student import Student
from admission_desk.services.numbering import generate_admission_number
from admission_desk.stores.base import StudentStore

logger = logging.getLogger(__name__)


class EnrollmentPromoter:
    """
    Turns an application into an enrolled student.

    Promotion is idempotent per application: the student store holds a
    unique key on application_id, so a retried promotion returns the
    student created by the earlier attempt instead of a second one.
    """

    def __init__(
        self,
        students: StudentStore,
        number_prefix: str = "ADM",
        default_section: str = "A",
        number_attempts: int = 10,
        retry_backoff: float = 0.5,
    ):
        self.students = students
        self.number_prefix = number_prefix
        self.default_section = default_section
        self.number_attempts = number_attempts
        self.retry_backoff = retry_backoff

    def promote(self, application: Application, section: Optional[str] = None, roll_number: Optional[str] = None) -> Student:
        existing = retry_storage(lambda: self.students.get_by_application(application.id), self.retry_backoff)
        if existing is not None:
            logger.info(f"Application {application.application_number} already enrolled as {existing.admission_number}")
            return existing

        for attempt in range(1, self.number_attempts + 1):
            student = self._build(application, section, roll_number)
            try:
                retry_storage(lambda: self.students.insert(student), self.retry_backoff)
                logger.info(f"Enrolled {student.admission_number} from application {application.application_number}")
                return student
            except DuplicateKeyError as e:
                if e.key != "admission_number":
                    # Another promotion for this application won the race,
                    # or a retried insert had already committed
                    winner = retry_storage(
                        lambda: self.students.get_by_application(application.id), self.retry_backoff
                    )
                    if winner is None:
                        raise StorageError("Student id collision")
                    return winner
                logger.warning(
                    f"Admission number {student.admission_number} taken, "
                    f"drawing another ({attempt}/{self.number_attempts})"
                )

        raise StorageError("Could not allocate a unique admission number")

    def _build(self, application: Application, section: Optional[str], roll_number: Optional[str]) -> Student:
        return Student(
            id=str(uuid.uuid4()),
            admission_number=generate_admission_number(self.number_prefix),
            application_id=application.id,
            first_name=application.first_name,
            last_name=application.last_name,
            date_of_birth=application.date_of_birth,
            gender=application.gender,
            class_name=application.class_applied,
            section=section or self.default_section,
            roll_number=roll_number or None,
            photo=application.photo,
            email=application.father_email or application.mother_email,
            phone=application.father_phone,
            father_name=application.father_name,
            father_phone=application.father_phone,
            father_occupation=application.father_occupation,
            mother_name=application.mother_name,
            mother_phone=application.mother_phone,
            mother_occupation=application.mother_occupation,
            guardian_name=application.guardian_name,
            guardian_phone=application.guardian_phone,
            guardian_relation=application.guardian_relation,
            address=application.address,
            previous_school=application.previous_school,
            academic_year=application.academic_year,
            created_at=datetime.now(timezone.utc),
        )
