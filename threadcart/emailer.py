from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from . import config

logger = logging.getLogger(__name__)


def send_email(*, to_email: str, subject: str, body: str) -> None:
    msg = EmailMessage()
    msg["From"] = config.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=10) as server:
        if config.SMTP_USE_TLS:
            server.starttls()
        if config.SMTP_USERNAME and config.SMTP_PASSWORD:
            server.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
        server.send_message(msg)


def send_email_quietly(*, to_email: str, subject: str, body: str) -> bool:
    """Background-task variant: failures are logged, never raised."""
    try:
        send_email(to_email=to_email, subject=subject, body=body)
        return True
    except (smtplib.SMTPException, OSError):
        logger.exception("failed to send '%s' to %s", subject, to_email)
        return False
