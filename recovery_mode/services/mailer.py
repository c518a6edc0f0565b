import smtplib
from email.message import EmailMessage
from typing import Mapping, Protocol

from recovery_mode.core.logger import get_logger

logger = get_logger(__name__)


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str, headers: Mapping[str, str] | None = None) -> bool:
        ...


class SmtpMailer:
    """Plain text mail over SMTP. Reports failure instead of raising."""

    def __init__(self, host: str | None, port: int = 25, sender: str = "recovery-mode@localhost", timeout: float = 10.0):
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str, headers: Mapping[str, str] | None = None) -> bool:
        if not self.host:
            logger.warning(f"No SMTP host configured, cannot send mail to {to}")
            return False

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        for name, value in (headers or {}).items():
            message[name] = value
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.error(f"Failed to send mail to {to} via {self.host}:{self.port}", exc_info=True)
            return False

        logger.info(f"Sent mail to {to}: {subject}")
        return True
