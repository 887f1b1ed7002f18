"""Templated email delivery.

``MessageSender`` is the capability the credential manager depends on.
``SmtpMessageSender`` renders ``templates/email/<template>.html`` and sends it
over SMTP; when no SMTP host is configured it logs the message instead (dev
mode). ``NotificationService`` knows which template, subject and link belong
to each account email.
"""
import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urlencode

from artplatform.config import settings
from artplatform.utils.logger import logger

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


class MessageSender(Protocol):
    def send(self, recipient: str, subject: str, template: str, context: Dict[str, Any]) -> bool:
        """Deliver a templated message. Returns True on success."""


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def render_template(template: str, context: Dict[str, Any]) -> str:
    """Fill an HTML template. Every value is HTML-escaped, links included."""
    path = TEMPLATE_DIR / f"{template}.html"
    try:
        source = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LookupError(f"Email template not found: {template}") from exc
    return Template(source).safe_substitute({k: html.escape(str(v)) for k, v in context.items()})


class SmtpMessageSender:
    """Send templated HTML email over SMTP (STARTTLS or implicit TLS)."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Art Platform",
        timeout: float = 30,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "SmtpMessageSender":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            smtp_use_tls=settings.SMTP_USE_TLS,
            from_email=settings.EMAIL_FROM,
            from_name=settings.APP_NAME,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, recipient: str, subject: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = recipient
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def _deliver(self, recipient: str, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, recipient, msg.as_string())
        else:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, recipient, msg.as_string())

    def send(self, recipient: str, subject: str, template: str, context: Dict[str, Any]) -> bool:
        html_body = render_template(template, context)

        if not self.is_configured:
            # Dev mode: log the email instead of sending. The body carries the
            # raw one-time link, so only the template name is logged.
            logger.info(
                f"Email not sent (SMTP not configured): {template} to {redact_email(recipient)}",
                extra={"action": "email_dev_mode"},
            )
            return True

        try:
            self._deliver(recipient, self._build_message(recipient, subject, html_body))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                f"Email sending failed: {template} to {redact_email(recipient)}: {exc}",
                extra={"action": "email_failed"},
            )
            return False

        logger.info(f"Email sent: {template} to {redact_email(recipient)}", extra={"action": "email_sent"})
        return True


class NotificationService:
    """Account emails: verification, password reset, welcome."""

    def __init__(self, sender: MessageSender, app_name: str = "Our Service") -> None:
        self.sender = sender
        self.app_name = app_name

    @staticmethod
    def _link(base_url: str, path: str, token: str) -> str:
        return f"{base_url.rstrip('/')}{path}?{urlencode({'token': token})}"

    def send_verification(self, email: str, raw_token: str, base_url: str) -> bool:
        return self.sender.send(
            email,
            "Verify Your Email Address",
            "verify-email",
            {
                "appName": self.app_name,
                "verificationLink": self._link(base_url, "/api/auth/verify-email", raw_token),
            },
        )

    def send_password_reset(self, email: str, raw_token: str, base_url: str) -> bool:
        return self.sender.send(
            email,
            "Password Reset Request",
            "reset-password",
            {
                "appName": self.app_name,
                "resetLink": self._link(base_url, "/api/auth/reset-password", raw_token),
            },
        )

    def send_welcome(self, email: str, username: str, base_url: str) -> bool:
        return self.sender.send(
            email,
            "Welcome to Our Service",
            "welcome",
            {
                "appName": self.app_name,
                "username": username,
                "loginLink": f"{base_url.rstrip('/')}/api/auth/login",
            },
        )
