import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

import pydantic

from admission_desk.core.errors import DuplicateKeyError, StorageError, ValidationError
from admission_desk.core.retry import retry_storage
from admission_desk.models.application import Application, ApplicationCreate, ApplicationStatus
from admission_desk.models.notification import NotificationType, Priority
from admission_desk.services.mailer import GuardianMail
from admission_desk.services.notifications import NotificationEmitter
from admission_desk.services.numbering import current_academic_year, generate_application_number
from admission_desk.services.photo_storage import PhotoStorage, PhotoUpload, validate_photo
from admission_desk.stores.base import ApplicationStore

logger = logging.getLogger(__name__)


def field_errors(error: pydantic.ValidationError) -> dict:
    """Flatten pydantic errors into {"address.pincode": "message"}."""
    fields = {}
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "__root__"
        message = err["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        fields.setdefault(loc, message)
    return fields


class ApplicationIntake:
    """Accepts public admission forms and files them as pending applications."""

    def __init__(
        self,
        applications: ApplicationStore,
        notifier: NotificationEmitter,
        photo_storage: PhotoStorage,
        number_prefix: str = "DMPS",
        number_attempts: int = 10,
        retry_backoff: float = 0.5,
        max_photo_bytes: int = 5 * 1024 * 1024,
        guardian_mail: Optional[GuardianMail] = None,
    ):
        self.applications = applications
        self.notifier = notifier
        self.photo_storage = photo_storage
        self.number_prefix = number_prefix
        self.number_attempts = number_attempts
        self.retry_backoff = retry_backoff
        self.max_photo_bytes = max_photo_bytes
        self.guardian_mail = guardian_mail or GuardianMail(None)

    def submit(
        self,
        payload: Union[ApplicationCreate, dict],
        photo: Optional[PhotoUpload] = None,
    ) -> Application:
        form = self._validate(payload)
        photo_url = None
        if photo is not None:
            validate_photo(photo, self.max_photo_bytes)
            photo_url = retry_storage(lambda: self.photo_storage.save(photo), self.retry_backoff)

        try:
            application = self._persist(form, photo_url)
        except StorageError:
            if photo_url is not None:
                self.photo_storage.discard(photo_url)
            raise
        logger.info(
            f"Application {application.application_number} received for class {application.class_applied.value}"
        )

        self.notifier.notify_safely(
            type=NotificationType.ADMISSION,
            title="New Admission Application",
            message=f"{application.first_name} {application.last_name} applied for Class {application.class_applied.value}",
            link="/admin/admissions",
            priority=Priority.HIGH,
            related_id=application.id,
        )
        self.guardian_mail.application_received(application)
        return application

    def _validate(self, payload) -> ApplicationCreate:
        if isinstance(payload, ApplicationCreate):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError({"__root__": "Application data must be an object"})
        try:
            return ApplicationCreate.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(field_errors(e))

    def _persist(self, form: ApplicationCreate, photo_url: Optional[str]) -> Application:
        application_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)

        for attempt in range(1, self.number_attempts + 1):
            application = Application(
                **form.model_dump(),
                id=application_id,
                application_number=generate_application_number(self.number_prefix),
                photo=photo_url,
                academic_year=current_academic_year(),
                status=ApplicationStatus.PENDING,
                created_at=created_at,
            )
            try:
                retry_storage(lambda: self.applications.insert(application), self.retry_backoff)
                return application
            except DuplicateKeyError as e:
                if e.key == "id":
                    # A retried insert whose first attempt had already committed
                    stored = self.applications.get(application_id)
                    if stored is not None:
                        return stored
                    raise StorageError("Application id collision")
                logger.warning(
                    f"Application number {application.application_number} taken, "
                    f"drawing another ({attempt}/{self.number_attempts})"
                )

        raise StorageError("Could not allocate a unique application number")
