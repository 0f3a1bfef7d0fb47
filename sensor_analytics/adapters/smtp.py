"""
SMTP email transport.

smtplib is blocking, so every send runs in a worker thread via
asyncio.to_thread. Connection, authentication and protocol errors are
raised as DeliveryFailure.

Example:
    >>> sender = SmtpEmailSender(
    ...     host="smtp.example.com",
    ...     port=587,
    ...     username="alerts",
    ...     password="secret",
    ...     from_address="alerts@example.com",
    ... )
    >>> await sender.send(["ops@example.com"], "[CRITICAL] Sensor Alert - d1", "...")
"""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Sequence

import structlog

from sensor_analytics.exceptions import DeliveryFailure

logger = structlog.get_logger(__name__)

DEFAULT_FROM_ADDRESS = "alerts@localhost"


class SmtpEmailSender:
    """
    EmailSender over SMTP with optional STARTTLS.

    Attributes:
        host: SMTP server host.
        port: SMTP server port.
        use_tls: Whether to upgrade the connection with STARTTLS.
        from_address: Sender address.
        timeout_seconds: Socket timeout.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self._username = username
        self._password = password
        self.use_tls = use_tls
        self.from_address = from_address or username or DEFAULT_FROM_ADDRESS
        self.timeout_seconds = timeout_seconds

    def build_message(self, recipients: Sequence[str], subject: str, body: str) -> MIMEMultipart:
        """Build the MIME message sent to every recipient."""
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = ", ".join(recipients)
        message.attach(MIMEText(body, "plain"))
        return message

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        """
        Send one email.

        Raises:
            DeliveryFailure: If the SMTP exchange fails.
        """
        message = self.build_message(recipients, subject, body)
        try:
            await asyncio.to_thread(self._send_sync, list(recipients), message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailure("email", str(e)) from e

        logger.info("email_sent", recipients=len(recipients), subject=subject)

    def _send_sync(self, recipients: Sequence[str], raw_message: str) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self._username and self._password:
                server.login(self._username, self._password)
            server.sendmail(self.from_address, list(recipients), raw_message)
