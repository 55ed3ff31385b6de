"""
Approve / reject decisions on pending applications.

    PENDING --approve--> APPROVED   (terminal)
    PENDING --reject---> REJECTED   (terminal)

Approval owns both of its effects. The student is written first, bound to
the application id, and the status is flipped second with a
compare-and-set against "pending". A crash between the two steps leaves a
pending application with a student, which a retried approve() picks up
through the promoter's idempotency. A reject that wins the race between
the two steps causes the freshly written student to be removed again.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from admission_desk.core.errors import InvalidStateError, NotFoundError
from admission_desk.core.retry import retry_storage
from admission_desk.models.application import Application, ApplicationStatus
from admission_desk.models.notification import NotificationType
from admission_desk.models.student import Student
from admission_desk.services.enrollment import EnrollmentPromoter
from admission_desk.services.mailer import GuardianMail
from admission_desk.services.notifications import NotificationEmitter
from admission_desk.stores.base import ApplicationStore, StudentStore

logger = logging.getLogger(__name__)

ALREADY_DECIDED = "Application already decided, please refresh"


class KeyedLock:
    """One lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}
        self._users = defaultdict(int)

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] += 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]


class DecisionEngine:

    def __init__(
        self,
        applications: ApplicationStore,
        students: StudentStore,
        promoter: EnrollmentPromoter,
        notifier: NotificationEmitter,
        retry_backoff: float = 0.5,
        guardian_mail: Optional[GuardianMail] = None,
    ):
        self.applications = applications
        self.students = students
        self.promoter = promoter
        self.notifier = notifier
        self.retry_backoff = retry_backoff
        self.guardian_mail = guardian_mail or GuardianMail(None)
        self._locks = KeyedLock()

    def approve(
        self,
        application_id: str,
        section: Optional[str],
        decided_by: str,
        roll_number: Optional[str] = None,
    ) -> Student:
        with self._locks.hold(application_id):
            application = self._load_pending(application_id)
            student = self.promoter.promote(application, section, roll_number)

            try:
                approved = self._transition(application_id, ApplicationStatus.APPROVED, decided_by)
            except InvalidStateError as e:
                if e.current_status == ApplicationStatus.REJECTED.value:
                    logger.warning(
                        f"Application {application.application_number} was rejected during approval, "
                        f"removing student {student.admission_number}"
                    )
                    retry_storage(lambda: self.students.delete_for_application(application_id), self.retry_backoff)
                raise InvalidStateError(ALREADY_DECIDED, current_status=e.current_status)

        logger.info(
            f"Application {approved.application_number} approved by {decided_by}, "
            f"admission number {student.admission_number}"
        )
        self.notifier.notify_safely(
            type=NotificationType.ADMISSION,
            title="Admission Approved",
            message=(
                f"{approved.first_name} {approved.last_name} admitted to Class "
                f"{student.class_name.value}-{student.section} ({student.admission_number})"
            ),
            link="/admin/students",
            related_id=approved.id,
        )
        self.guardian_mail.admission_approved(approved, student)
        return student

    def reject(self, application_id: str, decided_by: str, remarks: Optional[str] = None) -> Application:
        with self._locks.hold(application_id):
            application = self._load_pending(application_id)

            enrolled = retry_storage(lambda: self.students.get_by_application(application_id), self.retry_backoff)
            if enrolled is not None:
                # An approval stopped between enrolling and flipping the status
                raise InvalidStateError(
                    "Application has an enrollment in progress, retry the approval",
                    current_status=application.status.value,
                )

            try:
                rejected = self._transition(
                    application_id, ApplicationStatus.REJECTED, decided_by, rejection_remarks=remarks or ""
                )
            except InvalidStateError as e:
                raise InvalidStateError(ALREADY_DECIDED, current_status=e.current_status)

        logger.info(f"Application {rejected.application_number} rejected by {decided_by}")
        self.notifier.notify_safely(
            type=NotificationType.ADMISSION,
            title="Admission Rejected",
            message=f"Application {rejected.application_number} of {rejected.first_name} {rejected.last_name} was rejected",
            link="/admin/admissions",
            related_id=rejected.id,
        )
        return rejected

    def _transition(
        self,
        application_id: str,
        target: ApplicationStatus,
        decided_by: str,
        rejection_remarks: Optional[str] = None,
    ) -> Application:
        """
        Compare-and-set pending -> target. The transition is retried on a
        transient StorageError, and the first attempt may have committed
        before its error was reported. A retry that then finds this exact
        decision (same target, actor and timestamp) in place counts as
        success instead of a conflict.
        """
        decided_at = datetime.now(timezone.utc)
        try:
            return retry_storage(
                lambda: self.applications.transition(
                    application_id,
                    expected=ApplicationStatus.PENDING,
                    target=target,
                    decided_at=decided_at,
                    decided_by=decided_by,
                    rejection_remarks=rejection_remarks,
                ),
                self.retry_backoff,
            )
        except InvalidStateError:
            current = retry_storage(lambda: self.applications.get(application_id), self.retry_backoff)
            if (
                current is not None
                and current.status == target
                and current.decided_by == decided_by
                and current.decided_at == decided_at
            ):
                logger.warning(
                    f"Application {current.application_number} was already {target.value} by this request, "
                    f"an earlier attempt committed before failing"
                )
                return current
            raise

    def _load_pending(self, application_id: str) -> Application:
        application = retry_storage(lambda: self.applications.get(application_id), self.retry_backoff)
        if application is None:
            raise NotFoundError("Application", application_id)
        if application.status != ApplicationStatus.PENDING:
            raise InvalidStateError(ALREADY_DECIDED, current_status=application.status.value)
        return application
