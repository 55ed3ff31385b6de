import os
import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from admission_desk.core.errors import StorageError, ValidationError
from admission_desk.core.services import build_services
from admission_desk.models.application import ApplicationStatus
from admission_desk.models.notification import NotificationType
from admission_desk.services import intake as intake_module
from admission_desk.services.mailer import SmtpMailer
from admission_desk.services.photo_storage import PhotoUpload
from admission_desk.stores.memory import MemoryApplicationStore

APPLICATION_NUMBER = re.compile(r"^DMPS\d{4}\d{4}$")


class FlakyApplicationStore(MemoryApplicationStore):
    """Fails the first ``failures`` inserts with a transient error."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.insert_calls = 0

    def insert(self, application):
        self.insert_calls += 1
        if self.insert_calls <= self.failures:
            raise StorageError("connection reset")
        super().insert(application)


def test_submit_creates_pending_application(services, stores, payload):
    application = services.intake.submit(payload)

    assert APPLICATION_NUMBER.match(application.application_number)
    assert application.status == ApplicationStatus.PENDING
    assert application.rejection_remarks is None
    assert application.decided_at is None
    assert stores[0].get(application.id) == application


def test_submit_emits_admission_notification(services, payload):
    application = services.intake.submit(payload)

    [notification] = services.notifications.list()
    assert notification.type == NotificationType.ADMISSION
    assert notification.title == "New Admission Application"
    assert notification.message == "Asha Verma applied for Class V"
    assert notification.related_id == application.id
    assert notification.is_read is False


def test_submitted_application_is_listed_as_pending(services, payload):
    application = services.intake.submit(payload)

    [listed] = services.queries.list("pending")
    assert listed.id == application.id
    assert listed.first_name == payload["first_name"]
    assert listed.date_of_birth.isoformat() == payload["date_of_birth"]
    assert listed.class_applied.value == payload["class_applied"]
    assert listed.father_phone == payload["father_phone"]
    assert listed.address.model_dump() == payload["address"]
    assert listed.previous_school == payload["previous_school"]


@pytest.mark.parametrize("field, value", [
    ("father_phone", "98765"),
    ("father_phone", "98765abcde"),
    ("class_applied", "XII"),
    ("date_of_birth", "14/06/2015"),
    ("date_of_birth", "2999-01-01"),
    ("gender", "Unknown"),
    ("first_name", "   "),
])
def test_invalid_fields_are_reported(services, payload, field, value):
    payload[field] = value

    with pytest.raises(ValidationError) as exc:
        services.intake.submit(payload)

    assert field in exc.value.fields
    assert services.queries.list() == []


def test_missing_required_field(services, payload):
    del payload["mother_name"]

    with pytest.raises(ValidationError) as exc:
        services.intake.submit(payload)

    assert "mother_name" in exc.value.fields


def test_nested_address_errors_use_dotted_field_names(services, payload):
    payload["address"]["pincode"] = "8000"

    with pytest.raises(ValidationError) as exc:
        services.intake.submit(payload)

    assert exc.value.fields["address.pincode"] == "Pincode must be exactly 6 digits"


def test_unknown_fields_are_rejected(services, payload):
    payload["status"] = "approved"

    with pytest.raises(ValidationError) as exc:
        services.intake.submit(payload)

    assert "status" in exc.value.fields


def test_empty_optional_phone_is_accepted(services, payload):
    payload["mother_phone"] = ""

    application = services.intake.submit(payload)

    assert application.mother_phone is None


def test_photo_is_stored_and_referenced(services, payload, settings):
    photo = PhotoUpload(filename="asha.png", content_type="image/png", content=b"\x89PNG fake")

    application = services.intake.submit(payload, photo)

    assert application.photo.startswith("http://testserver/uploads/")
    assert application.photo.endswith(".png")


@pytest.mark.parametrize("photo", [
    PhotoUpload(filename="cv.pdf", content_type="application/pdf", content=b"%PDF"),
    PhotoUpload(filename="empty.jpg", content_type="image/jpeg", content=b""),
    PhotoUpload(filename="huge.jpg", content_type="image/jpeg", content=b"x" * (5 * 1024 * 1024 + 1)),
])
def test_bad_photos_are_rejected(services, payload, photo):
    with pytest.raises(ValidationError) as exc:
        services.intake.submit(payload, photo)

    assert "photo" in exc.value.fields


def test_taken_application_number_is_redrawn(services, payload, monkeypatch):
    numbers = iter(["DMPS20261111", "DMPS20261111", "DMPS20262222"])
    monkeypatch.setattr(intake_module, "generate_application_number", lambda prefix: next(numbers))

    first = services.intake.submit(payload)
    second = services.intake.submit(payload)

    assert first.application_number == "DMPS20261111"
    assert second.application_number == "DMPS20262222"


def test_gives_up_when_no_number_is_free(services, payload, monkeypatch):
    monkeypatch.setattr(intake_module, "generate_application_number", lambda prefix: "DMPS20261111")
    services.intake.submit(payload)

    with pytest.raises(StorageError):
        services.intake.submit(payload)

    assert len(services.queries.list()) == 1


def test_transient_storage_error_is_retried_once(services, payload):
    store = FlakyApplicationStore(failures=1)
    services.intake.applications = store

    application = services.intake.submit(payload)

    assert store.insert_calls == 2
    assert store.get(application.id) is not None


def test_persistent_storage_error_is_surfaced(services, payload):
    store = FlakyApplicationStore(failures=2)
    services.intake.applications = store

    with pytest.raises(StorageError):
        services.intake.submit(payload)

    assert store.insert_calls == 2
    assert services.notifications.list() == []


def test_notification_failure_does_not_fail_submission(services, payload, monkeypatch):
    def broken_add(notification):
        raise StorageError("inbox down")

    monkeypatch.setattr(services.notifications.store, "add", broken_add)

    application = services.intake.submit(payload)

    assert services.queries.get(application.id).status == ApplicationStatus.PENDING


def test_concurrent_submissions_get_distinct_numbers(services, payload):
    with ThreadPoolExecutor(max_workers=16) as pool:
        applications = list(pool.map(lambda _: services.intake.submit(dict(payload)), range(60)))

    numbers = [a.application_number for a in applications]
    assert len(set(numbers)) == len(numbers)
    assert len(services.queries.list("pending")) == 60


def test_photo_is_removed_when_the_application_cannot_be_stored(services, payload, settings):
    services.intake.applications = FlakyApplicationStore(failures=2)
    photo = PhotoUpload(filename="asha.png", content_type="image/png", content=b"\x89PNG fake")

    with pytest.raises(StorageError):
        services.intake.submit(payload, photo)

    assert os.listdir(settings.UPLOAD_DIR) == []


def test_guardian_receives_confirmation_email(services, payload, mailer):
    application = services.intake.submit(payload)

    [email] = mailer.outbox
    assert email["to"] == "ravi.verma@example.com"
    assert email["subject"] == "Admission Application Received - D.M. Public School"
    assert application.application_number in email["body"]
    assert "Dear Ravi Verma" in email["body"]


def test_confirmation_falls_back_to_mother_email(services, payload, mailer):
    del payload["father_email"]
    payload["mother_email"] = "sunita.verma@example.com"

    services.intake.submit(payload)

    assert [e["to"] for e in mailer.outbox] == ["sunita.verma@example.com"]


def test_no_email_without_a_guardian_address(services, payload, mailer):
    del payload["father_email"]

    services.intake.submit(payload)

    assert mailer.outbox == []


def test_email_failure_does_not_fail_submission(services, payload, mailer):
    mailer.fail = True

    application = services.intake.submit(payload)

    assert services.queries.get(application.id).status == ApplicationStatus.PENDING
    assert len(services.notifications.list()) == 1


def test_smtp_mailer_is_built_from_settings(settings, stores):
    configured = settings.model_copy(update={"EMAIL_HOST": "smtp.example.com", "EMAIL_USER": "office"})

    services = build_services(configured, *stores)

    mailer = services.intake.guardian_mail.mailer
    assert isinstance(mailer, SmtpMailer)
    assert (mailer.host, mailer.port, mailer.username) == ("smtp.example.com", 587, "office")
    assert services.decisions.guardian_mail is services.intake.guardian_mail
