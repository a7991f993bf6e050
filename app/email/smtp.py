"""
Async SMTP email delivery via aiosmtplib (primary provider).

Sends MIME-formatted HTML emails, upgrading with STARTTLS when configured.
Returns True on success, False on any failure (never raises).
"""
from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from app.config import Settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 15


def is_configured(settings: Settings) -> bool:
    """Return True when SMTP host and credentials are present."""
    return bool(settings.smtp_host and settings.smtp_username)


def build_message(to_email: str, subject: str, html: str, settings: Settings) -> EmailMessage:
    sender = settings.smtp_from_email or settings.smtp_username
    msg = EmailMessage()
    msg["From"] = f"{settings.smtp_from_name} <{sender}>"
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(html, subtype="html")
    return msg


async def deliver(to_email: str, subject: str, html: str, settings: Settings) -> bool:
    """Send an HTML email via SMTP.  Returns True on success, False on failure."""
    if not is_configured(settings):
        return False

    try:
        await aiosmtplib.send(
            build_message(to_email, subject, html, settings),
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            start_tls=settings.smtp_start_tls,
            timeout=SMTP_TIMEOUT_SECONDS,
        )
        return True
    except (aiosmtplib.SMTPException, OSError) as exc:
        logger.error("SMTP delivery failed (%s → %s): %s", settings.smtp_host, to_email, exc)
        return False
