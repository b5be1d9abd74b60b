"""
Mail Transports

The mail-sending capability injected into the registration workflow.
SmtpMailer delivers through an SMTP server; PreviewMailer keeps messages
in memory and logs them, for development setups without SMTP.
"""

import json
import logging
import smtplib
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from portal.errors import MailDeliveryError

logger = logging.getLogger(__name__)

PREVIEW_OUTBOX_SIZE = 50


@dataclass
class MailMessage:
    """An outbound message with plaintext and HTML bodies."""
    sender: str
    to: str
    subject: str
    text: str
    html: str = ""

    def to_mime(self) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = self.to
        msg["Subject"] = self.subject
        msg.attach(MIMEText(self.text, "plain", "utf-8"))
        if self.html:
            msg.attach(MIMEText(self.html, "html", "utf-8"))
        return msg


class Mailer(ABC):
    """Base class for mail transports."""

    # Preview transports let the API echo the confirmation link back
    preview = False

    @abstractmethod
    def send(self, message: MailMessage):
        """
        Deliver a message.

        Raises:
            MailDeliveryError: The transport failed
        """
        pass


class SmtpMailer(Mailer):
    """Deliver mail through an SMTP server."""

    def __init__(self, host: str, port: int = 587, secure: bool = False,
                 user: str = "", password: str = "", timeout: float = 10):
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.secure:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        return server

    def send(self, message: MailMessage):
        try:
            with self._connect() as server:
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(message.to_mime())
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery to %s failed: %s", message.to, e)
            raise MailDeliveryError() from e
        logger.info("Mail sent to %s", message.to)


class PreviewMailer(Mailer):
    """Record messages instead of sending them; only the newest are kept."""

    preview = True

    def __init__(self):
        self.outbox: deque[MailMessage] = deque(maxlen=PREVIEW_OUTBOX_SIZE)

    def send(self, message: MailMessage):
        self.outbox.append(message)
        logger.info(
            "Mail preview: %s",
            json.dumps({k: v for k, v in asdict(message).items() if k != "html"},
                       ensure_ascii=False)
        )


def create_mailer(config: dict) -> Mailer:
    """Build the transport described by the smtp config section."""
    smtp = config.get("smtp", {})
    if not smtp.get("host"):
        return PreviewMailer()
    return SmtpMailer(
        host=smtp["host"],
        port=int(smtp.get("port", 587)),
        secure=bool(smtp.get("secure", False)),
        user=smtp.get("user", ""),
        password=smtp.get("password", ""),
        timeout=float(smtp.get("timeout", 10)),
    )
