from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage
from typing import Tuple

# Plain-text bodies keyed by template. Context values are substituted with
# str.format; missing keys fall back to the raw template.
TEMPLATES = {
    "otp_login": "Your Instructo login code is {otp}. It expires in {expires_minutes} minutes.",
    "otp_password_reset": (
        "Your Instructo password reset code is {otp}. "
        "It expires in {expires_minutes} minutes."
    ),
    "account_created": (
        "Hello {name},\n\nAn Instructo {role} account has been created for {email}. "
        "Sign in with the password provided by your administrator or request a login code."
    ),
    "project_completed": (
        "Project '{project_name}' for trainee {trainee_name} was completed on {end_date}.\n"
        "Performance rating: {performance_rating}/10\n"
        "Instructor: {instructor_name}\n"
        "Project report: {project_report_path}\n"
        "Attendance record: {attendance_document_path}"
    ),
}


def render_body(template_key: str, context: dict) -> str:
    template = TEMPLATES.get(template_key)
    if template is None:
        return str((context or {}).get("body") or "")
    try:
        return template.format(**(context or {}))
    except (KeyError, IndexError):
        return template


class EmailProvider:
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        raise NotImplementedError


class NoopProvider(EmailProvider):
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        return None


class SmtpProvider(EmailProvider):
    """
    Env expected:
      SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        user: str | None = None,
        password: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "SmtpProvider | None":
        host = os.getenv("SMTP_HOST")
        port = os.getenv("SMTP_PORT")
        sender = os.getenv("SMTP_FROM")
        if not (host and port and sender):
            return None
        return cls(
            host=host,
            port=int(port),
            sender=sender,
            user=os.getenv("SMTP_USER") or None,
            password=os.getenv("SMTP_PASS") or None,
        )

    def build_message(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Subject"] = subject
        if correlation_id:
            msg["X-Correlation-ID"] = correlation_id
        msg.set_content(render_body(template_key, context))
        return msg

    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        msg = self.build_message(
            template_key=template_key,
            recipient=recipient,
            subject=subject,
            context=context,
            correlation_id=correlation_id,
        )
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
            s.starttls()
            if self.user and self.password:
                s.login(self.user, self.password)
            s.send_message(msg)


def get_email_provider() -> Tuple[EmailProvider, bool]:
    provider_name = (
        os.getenv("NOTIFICATIONS_EMAIL_PROVIDER")
        or os.getenv("EMAIL_PROVIDER")
        or ""
    ).strip().lower()
    if not provider_name or provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False
    if provider_name == "smtp":
        provider = SmtpProvider.from_env()
        if provider is None:
            return NoopProvider(), False
        return provider, True
    raise ValueError(f"Unsupported email provider: {provider_name}")
