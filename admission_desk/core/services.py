from dataclasses import dataclass

from fastapi import Request

from admission_desk.core.config import Settings
from admission_desk.services.decisions import DecisionEngine
from admission_desk.services.enrollment import EnrollmentPromoter
from admission_desk.services.intake import ApplicationIntake
from admission_desk.services.mailer import GuardianMail, Mailer, SmtpMailer
from admission_desk.services.notifications import NotificationEmitter
from admission_desk.services.photo_storage import LocalPhotoStorage, PhotoStorage
from admission_desk.services.queries import AdminQueryService, StudentQueryService
from admission_desk.stores.base import ApplicationStore, NotificationStore, StudentStore


@dataclass
class AdmissionServices:
    intake: ApplicationIntake
    queries: AdminQueryService
    decisions: DecisionEngine
    promoter: EnrollmentPromoter
    notifications: NotificationEmitter
    students: StudentQueryService


def build_stores(settings: Settings):
    if settings.STORE_BACKEND == "memory":
        from admission_desk.stores.memory import (
            MemoryApplicationStore, MemoryNotificationStore, MemoryStudentStore,
        )
        timeout = settings.STORE_TIMEOUT_SECONDS
        return MemoryApplicationStore(timeout), MemoryStudentStore(timeout), MemoryNotificationStore(timeout)

    if settings.STORE_BACKEND == "neo4j":
        from admission_desk.stores.graph import (
            GraphApplicationStore, GraphNotificationStore, GraphStudentStore,
        )
        timeout = settings.STORE_TIMEOUT_SECONDS
        return (
            GraphApplicationStore(timeout=timeout),
            GraphStudentStore(timeout=timeout),
            GraphNotificationStore(timeout=timeout),
        )

    raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}'. Use 'neo4j' or 'memory'")


def build_services(
    settings: Settings,
    applications: ApplicationStore,
    students: StudentStore,
    notifications: NotificationStore,
    photo_storage: PhotoStorage = None,
    mailer: Mailer = None,
) -> AdmissionServices:
    if photo_storage is None:
        photo_storage = LocalPhotoStorage(settings.UPLOAD_DIR, settings.UPLOAD_BASE_URL)
    if mailer is None and settings.EMAIL_HOST:
        mailer = SmtpMailer(
            settings.EMAIL_HOST,
            settings.EMAIL_PORT,
            settings.EMAIL_FROM,
            username=settings.EMAIL_USER,
            password=settings.EMAIL_PASSWORD,
            use_tls=settings.EMAIL_USE_TLS,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    guardian_mail = GuardianMail(mailer, school_name=settings.SCHOOL_NAME)

    notifier = NotificationEmitter(notifications)
    promoter = EnrollmentPromoter(
        students,
        number_prefix=settings.ADMISSION_NUMBER_PREFIX,
        default_section=settings.DEFAULT_SECTION,
        number_attempts=settings.NUMBER_GENERATION_ATTEMPTS,
        retry_backoff=settings.STORAGE_RETRY_BACKOFF_SECONDS,
    )
    return AdmissionServices(
        intake=ApplicationIntake(
            applications,
            notifier,
            photo_storage,
            number_prefix=settings.APPLICATION_NUMBER_PREFIX,
            number_attempts=settings.NUMBER_GENERATION_ATTEMPTS,
            retry_backoff=settings.STORAGE_RETRY_BACKOFF_SECONDS,
            max_photo_bytes=settings.MAX_PHOTO_BYTES,
            guardian_mail=guardian_mail,
        ),
        queries=AdminQueryService(applications),
        decisions=DecisionEngine(
            applications,
            students,
            promoter,
            notifier,
            retry_backoff=settings.STORAGE_RETRY_BACKOFF_SECONDS,
            guardian_mail=guardian_mail,
        ),
        promoter=promoter,
        notifications=notifier,
        students=StudentQueryService(students),
    )


def get_services(request: Request) -> AdmissionServices:
    return request.app.state.services
