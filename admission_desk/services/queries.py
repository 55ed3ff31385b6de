from typing import List, Optional, Union

from admission_desk.core.errors import NotFoundError, ValidationError
from admission_desk.models.application import (
    Application,
    ApplicationPage,
    ApplicationStats,
    ApplicationStatus,
    ClassName,
)
from admission_desk.models.student import Student
from admission_desk.stores.base import ApplicationStore, StudentStore

ALL = "all"


class AdminQueryService:
    """Read-only views over applications for the review screen."""

    def __init__(self, applications: ApplicationStore):
        self.applications = applications

    def list(
        self,
        status: Union[ApplicationStatus, str, None] = None,
        class_applied: Optional[ClassName] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Application]:
        return self.applications.list(
            status=self._status(status), class_applied=class_applied, limit=limit, offset=offset
        )

    def page(
        self,
        status: Union[ApplicationStatus, str, None] = None,
        class_applied: Optional[ClassName] = None,
        page: int = 1,
        limit: int = 10,
    ) -> ApplicationPage:
        """One page of the review queue plus the total matching the filters."""
        if page < 1:
            raise ValidationError({"page": "Page must be 1 or greater"})
        if limit < 1:
            raise ValidationError({"limit": "Limit must be 1 or greater"})
        status = self._status(status)
        applications = self.applications.list(
            status=status, class_applied=class_applied, limit=limit, offset=(page - 1) * limit
        )
        return ApplicationPage(
            total=self.applications.count(status=status, class_applied=class_applied),
            count=len(applications),
            page=page,
            limit=limit,
            applications=applications,
        )

    def get(self, application_id: str) -> Application:
        application = self.applications.get(application_id)
        if application is None:
            raise NotFoundError("Application", application_id)
        return application

    def statistics(self) -> ApplicationStats:
        counts = self.applications.count_by_status()
        return ApplicationStats(total=sum(counts.values()), **counts)

    @staticmethod
    def _status(status) -> Optional[ApplicationStatus]:
        if status is None or status == ALL:
            return None
        try:
            return ApplicationStatus(status)
        except ValueError:
            allowed = ", ".join([ALL] + [s.value for s in ApplicationStatus])
            raise ValidationError({"status": f"Invalid status '{status}'. Allowed values: {allowed}"})


class StudentQueryService:

    def __init__(self, students: StudentStore):
        self.students = students

    def list(self, class_name: Optional[ClassName] = None, section: Optional[str] = None) -> List[Student]:
        return self.students.list(class_name=class_name, section=section)

    def get(self, student_id: str) -> Student:
        student = self.students.get(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        return student

    def get_by_application(self, application_id: str) -> Student:
        student = self.students.get_by_application(application_id)
        if student is None:
            raise NotFoundError("Student for application", application_id)
        return student
