import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from admission_desk.core.errors import InvalidStateError, NotFoundError, StorageError
from admission_desk.core.services import build_services
from admission_desk.models.application import ApplicationStatus, ClassName
from admission_desk.models.notification import NotificationType
from admission_desk.services import enrollment as enrollment_module
from admission_desk.services.enrollment import EnrollmentPromoter
from admission_desk.stores.memory import MemoryApplicationStore, MemoryNotificationStore, MemoryStudentStore


@pytest.fixture
def pending(services, payload):
    return services.intake.submit(payload)


def test_approve_enrolls_student(services, stores, pending):
    student = services.decisions.approve(pending.id, section="B", roll_number="12", decided_by="admin-1")

    assert student.application_id == pending.id
    assert student.class_name == ClassName.V
    assert student.section == "B"
    assert student.roll_number == "12"
    assert student.admission_number.startswith("ADM")
    assert student.father_name == pending.father_name
    assert student.address == pending.address
    assert student.email == "ravi.verma@example.com"

    application = services.queries.get(pending.id)
    assert application.status == ApplicationStatus.APPROVED
    assert application.decided_by == "admin-1"
    assert application.decided_at is not None
    assert application.rejection_remarks is None
    assert stores[1].get_by_application(pending.id) == student


def test_approve_defaults_section(services, pending):
    student = services.decisions.approve(pending.id, section=None, decided_by="admin-1")

    assert student.section == "A"
    assert student.roll_number is None


def test_second_approve_fails_and_keeps_one_student(services, stores, pending):
    services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    with pytest.raises(InvalidStateError) as exc:
        services.decisions.approve(pending.id, section="C", decided_by="admin-2")

    assert exc.value.current_status == "approved"
    assert "already decided" in exc.value.message
    assert len(stores[1].list()) == 1
    assert stores[1].get_by_application(pending.id).section == "B"


def test_reject_after_approve_fails(services, pending):
    services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    with pytest.raises(InvalidStateError):
        services.decisions.reject(pending.id, decided_by="admin-2", remarks="Changed my mind")

    application = services.queries.get(pending.id)
    assert application.status == ApplicationStatus.APPROVED
    assert application.rejection_remarks is None


def test_reject_with_remarks(services, stores, pending):
    rejected = services.decisions.reject(pending.id, decided_by="admin-1", remarks="Seats full")

    assert rejected.status == ApplicationStatus.REJECTED
    assert rejected.rejection_remarks == "Seats full"
    assert rejected.decided_by == "admin-1"
    assert stores[1].get_by_application(pending.id) is None


def test_reject_without_remarks(services, pending):
    rejected = services.decisions.reject(pending.id, decided_by="admin-1")

    assert rejected.status == ApplicationStatus.REJECTED
    assert rejected.rejection_remarks == ""


def test_terminal_states_accept_no_transition(services, pending):
    services.decisions.reject(pending.id, decided_by="admin-1", remarks="Seats full")

    with pytest.raises(InvalidStateError):
        services.decisions.reject(pending.id, decided_by="admin-1", remarks="Overwritten")
    with pytest.raises(InvalidStateError):
        services.decisions.approve(pending.id, section="A", decided_by="admin-1")

    assert services.queries.get(pending.id).rejection_remarks == "Seats full"
    assert services.students.list() == []


def test_unknown_application(services):
    with pytest.raises(NotFoundError):
        services.decisions.approve("missing", section="A", decided_by="admin-1")
    with pytest.raises(NotFoundError):
        services.decisions.reject("missing", decided_by="admin-1")


def test_decisions_emit_notifications(services, payload):
    first = services.intake.submit(payload)
    second = services.intake.submit(payload)

    services.decisions.approve(first.id, section="B", decided_by="admin-1")
    services.decisions.reject(second.id, decided_by="admin-1")

    titles = [n.title for n in services.notifications.list(type=NotificationType.ADMISSION)]
    assert titles[:2] == ["Admission Rejected", "Admission Approved"]


def test_promoter_retry_returns_existing_student(services, stores, pending):
    first = services.promoter.promote(pending, "B", "12")
    second = services.promoter.promote(pending, "C", "99")

    assert second == first
    assert len(stores[1].list()) == 1


def test_approve_recovers_after_crash_between_steps(services, stores, pending):
    # A previous approve enrolled the student and died before flipping status
    orphan = services.promoter.promote(pending, "B", "12")
    assert services.queries.get(pending.id).status == ApplicationStatus.PENDING

    student = services.decisions.approve(pending.id, section="B", roll_number="12", decided_by="admin-1")

    assert student == orphan
    assert len(stores[1].list()) == 1
    assert services.queries.get(pending.id).status == ApplicationStatus.APPROVED


def test_reject_refuses_while_enrollment_in_progress(services, pending):
    services.promoter.promote(pending, "B", None)

    with pytest.raises(InvalidStateError):
        services.decisions.reject(pending.id, decided_by="admin-1")

    assert services.queries.get(pending.id).status == ApplicationStatus.PENDING


def test_admission_number_collision_is_redrawn(services, payload, monkeypatch):
    numbers = iter(["ADM202611111", "ADM202611111", "ADM202622222"])
    monkeypatch.setattr(enrollment_module, "generate_admission_number", lambda prefix: next(numbers))
    first = services.intake.submit(payload)
    second = services.intake.submit(payload)

    a = services.decisions.approve(first.id, section="A", decided_by="admin-1")
    b = services.decisions.approve(second.id, section="A", decided_by="admin-1")

    assert a.admission_number == "ADM202611111"
    assert b.admission_number == "ADM202622222"


def test_reject_winning_mid_approval_removes_student(services, stores, pending):
    promote = services.promoter.promote

    def promote_then_lose_race(application, section, roll_number):
        student = promote(application, section, roll_number)
        # Another worker rejects between enrollment and the status flip
        stores[0].transition(
            application.id,
            expected=ApplicationStatus.PENDING,
            target=ApplicationStatus.REJECTED,
            decided_at=datetime.now(timezone.utc),
            decided_by="admin-2",
            rejection_remarks="Seats full",
        )
        return student

    services.decisions.promoter.promote = promote_then_lose_race

    with pytest.raises(InvalidStateError):
        services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    assert services.queries.get(pending.id).status == ApplicationStatus.REJECTED
    assert stores[1].get_by_application(pending.id) is None


def test_racing_decisions_have_one_winner(services, stores, pending):
    barrier = threading.Barrier(8)

    def decide(i):
        barrier.wait()
        try:
            if i % 2:
                services.decisions.approve(pending.id, section="A", decided_by=f"admin-{i}")
            else:
                services.decisions.reject(pending.id, decided_by=f"admin-{i}")
            return "ok"
        except InvalidStateError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(decide, range(8)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 7
    status = services.queries.get(pending.id).status
    enrolled = stores[1].get_by_application(pending.id)
    if status == ApplicationStatus.APPROVED:
        assert enrolled is not None
    else:
        assert enrolled is None


class LostAckApplicationStore(MemoryApplicationStore):
    """
    The first transition fails with a transient error. With ``committed`` the
    write went through before the failure was reported; ``meanwhile`` runs a
    competing write before the caller retries.
    """

    def __init__(self, committed=True, meanwhile=None):
        super().__init__()
        self.committed = committed
        self.meanwhile = meanwhile
        self.failures = 1

    def transition(self, *args, **kwargs):
        if not self.failures:
            return super().transition(*args, **kwargs)
        self.failures -= 1
        if self.committed:
            super().transition(*args, **kwargs)
        if self.meanwhile:
            self.meanwhile(super().transition)
        raise StorageError("timed out waiting for commit acknowledgement")


def lost_ack_services(settings, **store_options):
    stores = (LostAckApplicationStore(**store_options), MemoryStudentStore(), MemoryNotificationStore())
    return build_services(settings, *stores), stores


def test_approve_committed_before_a_lost_acknowledgement_succeeds(settings, payload):
    services, stores = lost_ack_services(settings)
    pending = services.intake.submit(payload)

    student = services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    application = services.queries.get(pending.id)
    assert application.status == ApplicationStatus.APPROVED
    assert application.decided_by == "admin-1"
    assert stores[1].get_by_application(pending.id) == student
    titles = [n.title for n in services.notifications.list()]
    assert titles.count("Admission Approved") == 1


def test_reject_committed_before_a_lost_acknowledgement_succeeds(settings, payload):
    services, stores = lost_ack_services(settings)
    pending = services.intake.submit(payload)

    rejected = services.decisions.reject(pending.id, decided_by="admin-1", remarks="Seats full")

    assert rejected.status == ApplicationStatus.REJECTED
    assert rejected.rejection_remarks == "Seats full"
    assert rejected.decided_by == "admin-1"


def test_retry_after_failed_write_reports_another_admins_decision(settings, payload):
    def someone_else_rejects(commit):
        commit(
            pending.id,
            expected=ApplicationStatus.PENDING,
            target=ApplicationStatus.REJECTED,
            decided_at=datetime.now(timezone.utc),
            decided_by="admin-2",
            rejection_remarks="",
        )

    services, stores = lost_ack_services(settings, committed=False, meanwhile=someone_else_rejects)
    pending = services.intake.submit(payload)

    with pytest.raises(InvalidStateError) as exc:
        services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    assert exc.value.current_status == "rejected"
    assert stores[1].get_by_application(pending.id) is None
    assert services.queries.get(pending.id).decided_by == "admin-2"


def test_guardian_receives_approval_email(services, pending, mailer):
    student = services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    approval = mailer.outbox[-1]
    assert approval["to"] == "ravi.verma@example.com"
    assert approval["subject"] == "Admission Approved - D.M. Public School"
    assert student.admission_number in approval["body"]
    assert "Class: V - B" in approval["body"]


def test_rejection_sends_no_email(services, pending, mailer):
    mailer.outbox.clear()

    services.decisions.reject(pending.id, decided_by="admin-1")

    assert mailer.outbox == []


def test_approval_email_failure_keeps_the_approval(services, stores, pending, mailer):
    mailer.fail = True

    student = services.decisions.approve(pending.id, section="B", decided_by="admin-1")

    assert services.queries.get(pending.id).status == ApplicationStatus.APPROVED
    assert stores[1].get_by_application(pending.id) == student


class RacedStudentStore(MemoryStudentStore):
    """Another worker enrolls the application first; the lookup that follows fails once."""

    def __init__(self):
        super().__init__()
        self.lookups = 0
        self.raced = False

    def get_by_application(self, application_id):
        self.lookups += 1
        if self.raced and self.lookups == 2:
            raise StorageError("connection reset")
        return super().get_by_application(application_id)

    def insert(self, student):
        if not self.raced:
            self.raced = True
            super().insert(student.model_copy(update={"id": "winner", "admission_number": "ADM202600001"}))
        super().insert(student)


def test_lost_promotion_race_retries_the_winner_lookup(pending):
    students = RacedStudentStore()
    promoter = EnrollmentPromoter(students, retry_backoff=0)

    student = promoter.promote(pending, "B")

    assert student.id == "winner"
    assert students.lookups == 3
    assert len(students.list()) == 1
