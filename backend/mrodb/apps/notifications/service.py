from __future__ import annotations

import logging
from typing import Optional

from fastapi import BackgroundTasks

from .providers import EmailProvider, get_email_provider

logger = logging.getLogger(__name__)


def deliver(
    provider: EmailProvider,
    *,
    template_key: str,
    recipient: str,
    subject: str,
    context: dict,
    correlation_id: Optional[str] = None,
) -> bool:
    """Send one email; failures are logged and reported as False."""
    try:
        provider.send(
            template_key=template_key,
            recipient=recipient,
            subject=subject,
            context=context,
            correlation_id=correlation_id,
        )
        return True
    except Exception as exc:
        logger.warning(
            "Email delivery failed",
            extra={"template_key": template_key, "correlation_id": correlation_id, "error": str(exc)},
        )
        return False


def queue_email(
    background_tasks: BackgroundTasks,
    *,
    template_key: str,
    recipient: Optional[str],
    subject: str,
    context: dict,
    correlation_id: Optional[str] = None,
    provider: Optional[EmailProvider] = None,
) -> bool:
    """Schedule a best-effort send after the response; returns False when nothing was queued."""
    if not recipient or "@" not in recipient:
        return False
    background_tasks.add_task(
        deliver,
        provider or get_email_provider(),
        template_key=template_key,
        recipient=recipient,
        subject=subject,
        context=context,
        correlation_id=correlation_id,
    )
    return True
