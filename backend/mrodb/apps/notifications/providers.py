from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage
from typing import Optional

# template_key -> plain-text body; formatted with the send() context.
TEMPLATES = {
    "sms_report_submitted": (
        "Hello {reporter_name},\n\n"
        "Your safety report {report_number} \"{report_title}\" was received on {submitted_at}.\n"
        "Event date: {event_date}\n\n"
        "{report_description}\n\n"
        "Thank you for contributing to the safety management system."
    ),
}


class EmailProvider:
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: Optional[str] = None,
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
        correlation_id: Optional[str] = None,
    ) -> None:
        return None


class SmtpProvider(EmailProvider):
    def __init__(self, host: str, port: int, sender: str, user: Optional[str] = None, password: Optional[str] = None):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password

    def render(self, template_key: str, context: dict) -> str:
        template = TEMPLATES.get(template_key)
        if template is None:
            raise ValueError(f"Unknown email template: {template_key}")
        return template.format(**context)

    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: Optional[str] = None,
    ) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Subject"] = subject
        if correlation_id:
            msg["X-Correlation-ID"] = correlation_id
        msg.set_content(self.render(template_key, context))

        with smtplib.SMTP(self.host, self.port) as s:
            s.starttls()
            if self.user and self.password:
                s.login(self.user, self.password)
            s.send_message(msg)


def get_email_provider() -> EmailProvider:
    """
    SMTP when SMTP_HOST, SMTP_PORT and SMTP_FROM are set, otherwise a no-op.

    Env: SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM
    """
    host = os.getenv("SMTP_HOST")
    port = os.getenv("SMTP_PORT")
    sender = os.getenv("SMTP_FROM")
    if not (host and port and sender):
        return NoopProvider()
    return SmtpProvider(
        host,
        int(port),
        sender,
        user=os.getenv("SMTP_USER") or None,
        password=os.getenv("SMTP_PASS") or None,
    )
