from __future__ import annotations

from fastapi import BackgroundTasks

from mrodb.apps.notifications import providers
from mrodb.apps.notifications.service import deliver, queue_email


class _ExplodingProvider(providers.EmailProvider):
    def send(self, **kwargs) -> None:
        raise ConnectionRefusedError("smtp down")


class _RecordingProvider(providers.EmailProvider):
    def __init__(self):
        self.sent = []

    def send(self, **kwargs) -> None:
        self.sent.append(kwargs)


def test_provider_defaults_to_noop_without_smtp_env(monkeypatch):
    for name in ("SMTP_HOST", "SMTP_PORT", "SMTP_FROM"):
        monkeypatch.delenv(name, raising=False)

    assert isinstance(providers.get_email_provider(), providers.NoopProvider)


def test_provider_uses_smtp_when_configured(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "mail.example.com")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_FROM", "safety@example.com")

    provider = providers.get_email_provider()

    assert isinstance(provider, providers.SmtpProvider)
    assert provider.port == 587


def test_delivery_failure_is_swallowed():
    assert deliver(
        _ExplodingProvider(),
        template_key="sms_report_submitted",
        recipient="sam@example.com",
        subject="x",
        context={},
    ) is False


def test_queue_skips_missing_or_invalid_recipient():
    background = BackgroundTasks()

    assert queue_email(background, template_key="t", recipient=None, subject="s", context={}) is False
    assert queue_email(background, template_key="t", recipient="not-an-email", subject="s", context={}) is False
    assert background.tasks == []


def test_queued_task_sends_through_provider():
    background = BackgroundTasks()
    provider = _RecordingProvider()

    queue_email(
        background,
        template_key="sms_report_submitted",
        recipient="sam@example.com",
        subject="received",
        context={"report_number": "sms01"},
        provider=provider,
    )
    task = background.tasks[0]
    task.func(*task.args, **task.kwargs)

    assert provider.sent[0]["recipient"] == "sam@example.com"


def test_smtp_template_renders_context():
    provider = providers.SmtpProvider("localhost", 25, "safety@example.com")

    body = provider.render(
        "sms_report_submitted",
        {
            "reporter_name": "Sam",
            "report_number": "sms03",
            "report_title": "Bird strike",
            "report_description": "Bird strike on approach.",
            "event_date": "2025-05-02",
            "submitted_at": "2025-05-02T10:00",
        },
    )

    assert "sms03" in body
    assert "Bird strike on approach." in body
