import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Callable, Optional

from ebook_lending.catalog import fetch_ebook
from ebook_lending.config import settings
from ebook_lending.database import get_db_connection
from ebook_lending.logging_config import fields
from ebook_lending.models import Loan
from ebook_lending.users import fetch_user

logger = logging.getLogger(__name__)

Transport = Callable[[EmailMessage], None]


def log_transport(message: EmailMessage) -> None:
    """Default transport: record the message instead of sending it."""
    logger.info("Email queued", extra=fields(to=message["To"], subject=message["Subject"]))


class SMTPTransport:
    def __init__(self, host: str = settings.smtp_host, port: int = settings.smtp_port,
                 username: Optional[str] = settings.smtp_username,
                 password: Optional[str] = settings.smtp_password, timeout: float = 10.0) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    def __call__(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)


def default_transport() -> Transport:
    return SMTPTransport() if settings.enable_email_notifications else log_transport


class EmailNotifier:
    """Loan notifications. Sending is fire-and-forget: failures are logged, never raised."""

    def __init__(self, transport: Optional[Transport] = None, logger: Optional[logging.Logger] = None) -> None:
        self.transport = transport or default_transport()
        self.logger = logger or logging.getLogger(__name__)

    def send_confirmation(self, loan: Loan) -> bool:
        return self._send(loan, "Your loan is confirmed",
                          "You have borrowed \"{title}\". It is due back on {due}.")

    def send_cancellation(self, loan: Loan) -> bool:
        return self._send(loan, "Your loan has ended",
                          "Your loan of \"{title}\" has ended. We hope you enjoyed it.")

    def send_reminder(self, loan: Loan, now: Optional[datetime] = None) -> bool:
        days = loan.days_remaining(now or datetime.now())
        return self._send(loan, "Your loan ends soon",
                          f"Your loan of \"{{title}}\" is due on {{due}} ({days} day(s) left). "
                          "Please finish up before then.")

    def _send(self, loan: Loan, subject: str, template: str) -> bool:
        try:
            message = self._build(loan, subject, template)
            if message is None:
                return False
            self.transport(message)
            return True
        except Exception:
            self.logger.exception("Failed to send email", extra=fields(loan_id=loan.id, subject=subject))
            return False

    def _build(self, loan: Loan, subject: str, template: str) -> Optional[EmailMessage]:
        conn = get_db_connection()
        try:
            user = fetch_user(conn, loan.user_id)
            ebook = fetch_ebook(conn, loan.ebook_id)
        finally:
            conn.close()
        if user is None or ebook is None:
            self.logger.warning("Email skipped, loan references a missing record", extra=fields(loan_id=loan.id))
            return None

        message = EmailMessage()
        message["From"] = f"{settings.smtp_from_name} <{settings.smtp_from_email}>"
        message["To"] = user.email
        message["Subject"] = subject
        body = template.format(title=ebook.title, due=loan.due_date.date().isoformat())
        message.set_content(f"Hello {user.name},\n\n{body}\n\n{settings.smtp_from_name}")
        return message
