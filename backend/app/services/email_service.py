"""
services/email_service.py — Transactional email over SMTP.

Every message goes through send(to, subject, text, html). Delivery problems
raise EmailDeliveryError; the caller decides whether a failure matters
(registration only logs it, password reset reports EMAIL_SEND_FAILED).

With skip_send=True (development) nothing leaves the process: the message
is written to the log instead.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when a message could not be handed to the SMTP server."""


def redact_email(email: str | None) -> str:
    """al***@example.com — safe to write to logs."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:

    def __init__(
            self,
            *,
            smtp_host: str | None = None,
            smtp_port: int = 587,
            smtp_username: str | None = None,
            smtp_password: str | None = None,
            smtp_use_tls: bool = True,
            from_email: str | None = None,
            from_name: str = "Goddess Within",
            client_url: str = "http://localhost:5173",
            skip_send: bool = False,
            timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_username
        self.from_name = from_name
        self.client_url = client_url.rstrip("/")
        self.skip_send = skip_send
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "EmailService":
        return cls(
            smtp_host=config.get("SMTP_HOST"),
            smtp_port=config.get("SMTP_PORT", 587),
            smtp_username=config.get("SMTP_USERNAME"),
            smtp_password=config.get("SMTP_PASSWORD"),
            smtp_use_tls=config.get("SMTP_USE_TLS", True),
            from_email=config.get("SMTP_FROM_EMAIL"),
            from_name=config.get("SMTP_FROM_NAME", "Goddess Within"),
            client_url=config.get("CLIENT_URL", "http://localhost:5173"),
            skip_send=config.get("SKIP_EMAIL_SEND", False),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    # ── Transport ──────────────────────────────────────────────────────────

    def send(self, to: str, subject: str, text: str, html: str) -> None:
        """
        Sends one message.

        Raises:
          EmailDeliveryError — SMTP not configured, connection, auth or
            recipient failure.
        """
        if self.skip_send:
            logger.info(
                "Email not sent (SKIP_EMAIL_SEND): to=%s subject=%r",
                redact_email(to),
                subject,
            )
            logger.debug("Email body:\n%s", text)
            return

        if not self.is_configured:
            raise EmailDeliveryError("SMTP is not configured (SMTP_HOST / SMTP_FROM_EMAIL).")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(
                        self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    self._login(server)
                    server.send_message(msg)
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Email delivery failed: to=%s subject=%r error=%s: %s",
                redact_email(to),
                subject,
                type(exc).__name__,
                exc,
            )
            raise EmailDeliveryError(str(exc)) from exc

        logger.info("Email sent: to=%s subject=%r", redact_email(to), subject)

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_username and self.smtp_password:
            server.login(self.smtp_username, self.smtp_password)

    # ── Templates ──────────────────────────────────────────────────────────

    def verification_url(self, token: str) -> str:
        return f"{self.client_url}/auth/verify-email?token={token}"

    def reset_url(self, token: str) -> str:
        return f"{self.client_url}/reset-password/{token}"

    def send_verification_email(self, to: str, token: str) -> None:
        url = self.verification_url(token)
        self.send(
            to,
            "Email Verification",
            f"Please verify your email by opening the following link: {url}\n"
            "This link will expire in 24 hours.",
            f"""
<div>
  <h2>Email Verification</h2>
  <p>Please verify your email by clicking the button below:</p>
  <a href="{url}" style="padding:10px 15px; background-color:#4CAF50; color:white; text-decoration:none; border-radius:5px;">Verify My Email</a>
  <p>Or copy and paste this link in your browser: {url}</p>
  <p>This link will expire in 24 hours.</p>
</div>
""",
        )

    def send_password_reset_email(self, to: str, token: str) -> None:
        url = self.reset_url(token)
        self.send(
            to,
            "Password Reset",
            f"Open this link to reset your password: {url}\n"
            "This link will expire in 1 hour. If you didn't request this, ignore this email.",
            f"""
<div>
  <h2>Password Reset Request</h2>
  <p>You requested a password reset. Click the button below to reset your password:</p>
  <a href="{url}" style="padding:10px 15px; background-color:#2196F3; color:white; text-decoration:none; border-radius:5px;">Reset Password</a>
  <p>Or copy and paste this link in your browser: {url}</p>
  <p>This link will expire in 1 hour.</p>
  <p>If you didn't request this, please ignore this email.</p>
</div>
""",
        )
