"""
Persistence interfaces injected into the admission services.

Implementations enforce the unique keys themselves and raise
``DuplicateKeyError`` naming the violated key. Any infrastructure failure
or timeout surfaces as ``StorageError``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from admission_desk.models.application import Application, ApplicationStatus, ClassName
from admission_desk.models.notification import Notification, NotificationType
from admission_desk.models.student import Student


class ApplicationStore(ABC):
    """Unique keys: id, application_number."""

    @abstractmethod
    def insert(self, application: Application) -> None: ...

    @abstractmethod
    def get(self, application_id: str) -> Optional[Application]: ...

    @abstractmethod
    def list(
        self,
        status: Optional[ApplicationStatus] = None,
        class_applied: Optional[ClassName] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Application]:
        """Newest first. ``limit=None`` returns everything after ``offset``."""

    @abstractmethod
    def count(
        self,
        status: Optional[ApplicationStatus] = None,
        class_applied: Optional[ClassName] = None,
    ) -> int: ...

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]: ...

    @abstractmethod
    def transition(
        self,
        application_id: str,
        expected: ApplicationStatus,
        target: ApplicationStatus,
        decided_at: datetime,
        decided_by: str,
        rejection_remarks: Optional[str] = None,
    ) -> Application:
        """
        Compare-and-set the status. The check against ``expected`` happens
        under the store's write lock; raises NotFoundError or
        InvalidStateError (with the current status) when it fails.
        """


class StudentStore(ABC):
    """Unique keys: id, admission_number, application_id."""

    @abstractmethod
    def insert(self, student: Student) -> None: ...

    @abstractmethod
    def get(self, student_id: str) -> Optional[Student]: ...

    @abstractmethod
    def get_by_application(self, application_id: str) -> Optional[Student]: ...

    @abstractmethod
    def list(self, class_name: Optional[ClassName] = None, section: Optional[str] = None) -> List[Student]: ...

    @abstractmethod
    def delete_for_application(self, application_id: str) -> bool:
        """Only used to undo a promotion whose approval lost a race."""


class NotificationStore(ABC):

    @abstractmethod
    def add(self, notification: Notification) -> None: ...

    @abstractmethod
    def list(
        self,
        limit: int,
        offset: int = 0,
        is_read: Optional[bool] = None,
        type: Optional[NotificationType] = None,
    ) -> List[Notification]: ...

    @abstractmethod
    def unread_count(self) -> int: ...

    @abstractmethod
    def mark_read(self, notification_id: str, read_at: datetime) -> Optional[Notification]: ...

    @abstractmethod
    def mark_all_read(self, read_at: datetime) -> int: ...

    @abstractmethod
    def delete(self, notification_id: str) -> bool: ...
