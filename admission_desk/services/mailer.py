import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from admission_desk.models.application import Application
from admission_desk.models.student import Student

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, recipient: str, subject: str, body: str) -> None:
        """Deliver one plain text message, raising on failure."""


class SmtpMailer:
    """Sends through an SMTP relay, one connection per message."""

    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, recipient: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


class GuardianMail:
    """
    Emails to the applicant's guardian: one when the application is
    received and one when the admission is approved.

    Delivery is best effort. Both messages go out after the durable write,
    so a failure is logged and reported as False, never raised.
    """

    def __init__(self, mailer: Optional[Mailer], school_name: str = "D.M. Public School"):
        self.mailer = mailer
        self.school_name = school_name

    def application_received(self, application: Application) -> bool:
        body = f"""
Dear {application.father_name},

We have received the admission application for {application.first_name} {application.last_name} for Class {application.class_applied.value}.

Application Number: {application.application_number}

Your application is under review. We will notify you once it has been processed.
Please keep this application number for future reference.

Regards,
{self.school_name}
"""
        return self._send(
            application,
            f"Admission Application Received - {self.school_name}",
            body,
        )

    def admission_approved(self, application: Application, student: Student) -> bool:
        body = f"""
Dear {application.father_name},

Congratulations! The admission of {student.first_name} {student.last_name} has been approved.

Admission Number: {student.admission_number}
Class: {student.class_name.value} - {student.section}
Academic Year: {student.academic_year}

Please visit the school office to complete the remaining admission formalities.

Regards,
{self.school_name}
"""
        return self._send(
            application,
            f"Admission Approved - {self.school_name}",
            body,
        )

    def _send(self, application: Application, subject: str, body: str) -> bool:
        recipient = application.father_email or application.mother_email
        if self.mailer is None or not recipient:
            logger.debug(f"No email sent for application {application.application_number}")
            return False
        try:
            self.mailer.send(recipient, subject, body.strip() + "\n")
        except Exception:
            logger.warning(
                f"Email '{subject}' to {recipient} failed (non-critical)", exc_info=True
            )
            return False
        logger.info(f"Email '{subject}' sent to {recipient}")
        return True
