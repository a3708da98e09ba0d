"""
SMTP delivery of coupon emails
"""

import logging
import smtplib
import ssl
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from mealpass.core.config import settings
from mealpass.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class EmailTransport:
    """Sends one message per call over a fresh SMTP connection"""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        sender_name: Optional[str] = None,
    ):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.sender_name = sender_name or settings.SMTP_SENDER_NAME

    def is_configured(self) -> bool:
        return all([self.host, self.port, self.username, self.password])

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: Optional[bytes] = None,
        attachment_name: str = "coupons.pdf",
    ) -> None:
        """Raises UpstreamError when the message could not be handed to the server"""
        if not self.is_configured():
            raise UpstreamError("SMTP", "Email transport is not configured")

        msg = MIMEMultipart()
        msg['From'] = f"{self.sender_name} <{self.username}>"
        msg['To'] = recipient
        msg['Subject'] = subject
        msg.attach(MIMEText(body, 'html'))
        if attachment is not None:
            part = MIMEApplication(attachment, _subtype='pdf')
            part.add_header('Content-Disposition', 'attachment', filename=attachment_name)
            msg.attach(part)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamError("SMTP", f"Delivery to {recipient} failed: {e}")

        logger.info(f"Coupon email sent to {recipient}")
