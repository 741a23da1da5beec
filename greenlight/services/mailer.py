# Outbound e-mail over SMTP. smtplib is blocking, so sends run in the default
# executor. Transient failures are retried a few times before giving up.

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage

import structlog

from greenlight.config import Settings

logger = structlog.get_logger(__name__)

WELCOME_SUBJECT = "Welcome to Greenlight!"

WELCOME_BODY = """Hi {name},

Thanks for signing up for a Greenlight account. We're excited to have you on board!

Please send a request to the `PUT /v1/users/activated` endpoint with the following
JSON body to activate your account:

    {{"token": "{token}"}}

Please note that this is a one-time use token and it will expire in {hours:g} hours.

Thanks,

The Greenlight Team
"""


class Mailer:
    """SMTP sender. With no SMTP_HOST configured, sends are skipped and logged."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        *,
        attempts: int = 3,
        retry_delay: float = 0.5,
        timeout: float = 5.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._sender = sender
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> Mailer:
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_username,
            settings.smtp_password.get_secret_value(),
            settings.smtp_sender,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._host)

    async def send_welcome(self, recipient: str, name: str, token: str, ttl_hours: float) -> None:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = recipient
        message["Subject"] = WELCOME_SUBJECT
        message.set_content(WELCOME_BODY.format(name=name, token=token, hours=ttl_hours))
        await self.send(message)

    async def send(self, message: EmailMessage) -> None:
        if not self.enabled:
            logger.info("mail_delivery_disabled", to=message["To"], subject=message["Subject"])
            return

        loop = asyncio.get_running_loop()
        for attempt in range(1, self._attempts + 1):
            try:
                await loop.run_in_executor(None, self._send_sync, message)
            except (smtplib.SMTPException, OSError) as exc:
                if attempt == self._attempts:
                    raise
                logger.warning(
                    "mail_send_retry", to=message["To"], attempt=attempt, error=str(exc)
                )
                await asyncio.sleep(self._retry_delay)
            else:
                logger.info("mail_sent", to=message["To"], subject=message["Subject"])
                return

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as conn:
            if self._username:
                conn.starttls()
                conn.login(self._username, self._password)
            conn.send_message(message)
