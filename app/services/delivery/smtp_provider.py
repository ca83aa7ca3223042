from __future__ import annotations

from email.mime.text import MIMEText
import logging
import smtplib
import ssl
from typing import Optional

from app.core.observability import mask_contact

from ..exceptions import DeliveryError
from .base import BaseEmailProvider, DeliveryResult

logger = logging.getLogger(__name__)


class SMTPEmailProvider(BaseEmailProvider):
    """Sends one-time codes over SMTP with STARTTLS or implicit TLS."""

    name = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user
        self.timeout = timeout

    def send_email(self, *, email: str, subject: str, body: str) -> DeliveryResult:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_email or ""
        msg["To"] = email

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.sendmail(self.from_email, email, msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Email sending failed | to=%s | host=%s | error=%s",
                mask_contact(email),
                self.host,
                type(exc).__name__,
            )
            raise DeliveryError("Email provider rejected the message") from exc

        return DeliveryResult(recipient=email, provider=self.name, provider_status="sent")

    def _login(self, server: smtplib.SMTP) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)
