"""
SMTP email delivery for pipeline notifications.
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Optional

from pipeline_scheduler.config import Config
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.errors import ConfigurationError
from pipeline_scheduler.utils.logging_config import log_event


class EmailService:
    """Send plain-text notification emails through the configured SMTP relay."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: Optional[int] = None,
    ):
        self.host = host if host is not None else Config.SMTP_HOST
        self.port = port if port is not None else Config.SMTP_PORT
        self.username = username if username is not None else Config.SMTP_USERNAME
        self.password = password if password is not None else Config.SMTP_PASSWORD
        self.sender = sender if sender is not None else Config.SMTP_SENDER
        self.use_tls = use_tls if use_tls is not None else Config.SMTP_USE_TLS
        self.timeout = timeout if timeout is not None else Config.SMTP_TIMEOUT
        self.logger = get_logger("email")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.sender)

    def send(self, subject: str, content: str, receivers: list[str]) -> None:
        """
        Send one message to every receiver.

        Raises:
            ConfigurationError: If SMTP_HOST / SMTP_SENDER are not set
            ValueError: If no receivers are given
        """
        if not self.is_configured:
            raise ConfigurationError("Email is not configured: SMTP_HOST and SMTP_SENDER are required")
        if not receivers:
            raise ValueError("At least one receiver is required")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = ", ".join(receivers)
        message.set_content(content)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

        log_event(
            self.logger, "info", "email.sent", subject=subject, receivers=len(receivers)
        )
