import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

from admission_desk.core.errors import DuplicateKeyError, InvalidStateError, NotFoundError, StorageError
from admission_desk.models.application import Application, ApplicationStatus, ClassName
from admission_desk.models.notification import Notification
from admission_desk.models.student import Student
from admission_desk.stores.base import ApplicationStore, NotificationStore, StudentStore


class _LockedStore:
    """Serializes access behind one lock acquired with a bounded wait."""

    def __init__(self, timeout: float = 10.0):
        self._lock = threading.RLock()
        self._timeout = timeout

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self._timeout):
            raise StorageError("Timed out waiting for the in-memory store")
        try:
            yield
        finally:
            self._lock.release()


class MemoryApplicationStore(_LockedStore, ApplicationStore):

    def __init__(self, timeout: float = 10.0):
        super().__init__(timeout)
        self._rows: Dict[str, Application] = {}
        self._numbers: Dict[str, str] = {}

    def insert(self, application: Application) -> None:
        with self._locked():
            if application.id in self._rows:
                raise DuplicateKeyError("id", application.id)
            if application.application_number in self._numbers:
                raise DuplicateKeyError("application_number", application.application_number)
            self._rows[application.id] = application.model_copy(deep=True)
            self._numbers[application.application_number] = application.id

    def get(self, application_id: str) -> Optional[Application]:
        with self._locked():
            row = self._rows.get(application_id)
            return row.model_copy(deep=True) if row else None

    def list(self, status=None, class_applied=None, limit=None, offset=0) -> List[Application]:
        with self._locked():
            rows = self._matching(status, class_applied)
            rows.sort(key=lambda a: a.created_at, reverse=True)
            end = None if limit is None else offset + limit
            return [a.model_copy(deep=True) for a in rows[offset:end]]

    def count(self, status=None, class_applied=None) -> int:
        with self._locked():
            return len(self._matching(status, class_applied))

    def _matching(self, status, class_applied) -> List[Application]:
        return [
            a for a in reversed(list(self._rows.values()))
            if (status is None or a.status == status)
            and (class_applied is None or a.class_applied == class_applied)
        ]

    def count_by_status(self) -> Dict[str, int]:
        with self._locked():
            counts = {s.value: 0 for s in ApplicationStatus}
            for a in self._rows.values():
                counts[a.status.value] += 1
            return counts

    def transition(self, application_id, expected, target, decided_at, decided_by, rejection_remarks=None):
        with self._locked():
            row = self._rows.get(application_id)
            if row is None:
                raise NotFoundError("Application", application_id)
            if row.status != expected:
                raise InvalidStateError(
                    f"Application is already {row.status.value}", current_status=row.status.value
                )
            updated = row.model_copy(update={
                "status": target,
                "decided_at": decided_at,
                "decided_by": decided_by,
                "rejection_remarks": rejection_remarks if target == ApplicationStatus.REJECTED else None,
            })
            self._rows[application_id] = updated
            return updated.model_copy(deep=True)


class MemoryStudentStore(_LockedStore, StudentStore):

    def __init__(self, timeout: float = 10.0):
        super().__init__(timeout)
        self._rows: Dict[str, Student] = {}
        self._by_number: Dict[str, str] = {}
        self._by_application: Dict[str, str] = {}

    def insert(self, student: Student) -> None:
        with self._locked():
            if student.id in self._rows:
                raise DuplicateKeyError("id", student.id)
            if student.application_id in self._by_application:
                raise DuplicateKeyError("application_id", student.application_id)
            if student.admission_number in self._by_number:
                raise DuplicateKeyError("admission_number", student.admission_number)
            self._rows[student.id] = student.model_copy(deep=True)
            self._by_number[student.admission_number] = student.id
            self._by_application[student.application_id] = student.id

    def get(self, student_id: str) -> Optional[Student]:
        with self._locked():
            row = self._rows.get(student_id)
            return row.model_copy(deep=True) if row else None

    def get_by_application(self, application_id: str) -> Optional[Student]:
        with self._locked():
            student_id = self._by_application.get(application_id)
            return self._rows[student_id].model_copy(deep=True) if student_id else None

    def list(self, class_name: Optional[ClassName] = None, section: Optional[str] = None) -> List[Student]:
        with self._locked():
            rows = [
                s for s in self._rows.values()
                if (class_name is None or s.class_name == class_name)
                and (section is None or s.section == section)
            ]
            rows.sort(key=lambda s: (s.class_name.value, s.section, s.roll_number or "", s.admission_number))
            return [s.model_copy(deep=True) for s in rows]

    def delete_for_application(self, application_id: str) -> bool:
        with self._locked():
            student_id = self._by_application.pop(application_id, None)
            if student_id is None:
                return False
            student = self._rows.pop(student_id)
            self._by_number.pop(student.admission_number, None)
            return True


class MemoryNotificationStore(_LockedStore, NotificationStore):

    def __init__(self, timeout: float = 10.0):
        super().__init__(timeout)
        self._rows: Dict[str, Notification] = {}

    def add(self, notification: Notification) -> None:
        with self._locked():
            if notification.id in self._rows:
                raise DuplicateKeyError("id", notification.id)
            self._rows[notification.id] = notification.model_copy(deep=True)

    def list(self, limit, offset=0, is_read=None, type=None) -> List[Notification]:
        with self._locked():
            rows = [
                n for n in reversed(list(self._rows.values()))
                if (is_read is None or n.is_read == is_read)
                and (type is None or n.type == type)
            ]
            rows.sort(key=lambda n: n.created_at, reverse=True)
            return [n.model_copy(deep=True) for n in rows[offset:offset + limit]]

    def unread_count(self) -> int:
        with self._locked():
            return sum(1 for n in self._rows.values() if not n.is_read)

    def mark_read(self, notification_id: str, read_at: datetime) -> Optional[Notification]:
        with self._locked():
            row = self._rows.get(notification_id)
            if row is None:
                return None
            if not row.is_read:
                row = row.model_copy(update={"is_read": True, "read_at": read_at})
                self._rows[notification_id] = row
            return row.model_copy(deep=True)

    def mark_all_read(self, read_at: datetime) -> int:
        with self._locked():
            marked = 0
            for nid, row in list(self._rows.items()):
                if not row.is_read:
                    self._rows[nid] = row.model_copy(update={"is_read": True, "read_at": read_at})
                    marked += 1
            return marked

    def delete(self, notification_id: str) -> bool:
        with self._locked():
            return self._rows.pop(notification_id, None) is not None
