"""
Operator alerting.

``send_alert`` is the single notification interface used for reconciliation
failures, catastrophic webhook failures and fraud auto-suspensions. It is
fire-and-forget: it logs at ERROR (picked up by log shipping) and emails
``settings.ADMINS``. A failure to alert is logged and swallowed so the
caller's own operation is never affected.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from django.core.mail import mail_admins

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


def send_alert(
    subject: str,
    message: str,
    context: dict[str, Any] | None = None,
) -> bool:
    """
    Send an operator alert.

    Args:
        subject: Short subject line
        message: Human-readable description
        context: Ids and counters to include (never raw PII)

    Returns:
        True if the alert was handed to the mail backend, False otherwise
    """
    context = context or {}
    logger.error(f"ALERT: {subject}", extra={"alert": subject, **context})

    try:
        body = message
        if context:
            body = f"{message}\n\n{json.dumps(context, indent=2, default=str)}"
        mail_admins(subject, body, fail_silently=True)
        return True
    except Exception:
        logger.exception("Failed to deliver alert", extra={"alert": subject})
        return False
