"""
Email channel - SMTP with STARTTLS.

smtplib is blocking, so the actual send runs in a worker thread.
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from gymcrm.config import config
from gymcrm.models import EmailContent, NotificationKind, SendResult

logger = logging.getLogger(__name__)

NOT_CONFIGURED = 'not_configured'


class EmailChannel:
    """Sends one rendered EmailContent to one address."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.host = host or config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.username = username if username is not None else config.SMTP_USERNAME
        self.password = password if password is not None else config.SMTP_PASSWORD
        self.from_address = from_address or config.SMTP_FROM or self.username
        self.from_name = from_name or config.SMTP_FROM_NAME
        self.timeout = timeout or config.SEND_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def build_message(self, recipient: str, content: EmailContent) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = content.subject
        msg['From'] = formataddr((self.from_name, self.from_address))
        msg['To'] = recipient
        msg.attach(MIMEText(content.text, 'plain', 'utf-8'))
        msg.attach(MIMEText(content.html, 'html', 'utf-8'))
        return msg

    def _send_sync(self, recipient: str, content: EmailContent) -> None:
        msg = self.build_message(recipient, content)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, kind: NotificationKind, recipient: str, content: EmailContent) -> SendResult:
        if not self.configured:
            logger.warning(f"Email not configured, skipping {kind.value} to {recipient}")
            return SendResult(success=False, error=NOT_CONFIGURED)

        try:
            await asyncio.to_thread(self._send_sync, recipient, content)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email {kind.value} to {recipient} failed: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"Email {kind.value} sent to {recipient}: {content.subject}")
        return SendResult(success=True)
