"""
Email delivery orchestrator — SMTP (primary) with Brevo (fallback).

Providers log and return False on failure; they never raise.  The OTP mailer
turns "nothing was delivered" into ``EmailDeliveryFailed`` so the auth flow
can decide how to degrade (it logs the code for operators and keeps going).

Delivery order:
  1. SMTP    — if configured
  2. Brevo   — if SMTP fails or is not configured
"""
from __future__ import annotations

import logging

from app.config import Settings
from app.email import brevo, smtp

logger = logging.getLogger(__name__)

_BRAND = "TempMailX"


class EmailDeliveryFailed(Exception):
    """No configured provider accepted the message."""


# ── Delivery core ────────────────────────────────────────────────────────────


async def _deliver(to_email: str, subject: str, html: str, settings: Settings) -> bool:
    """Try SMTP first, fall back to Brevo.  Never raises."""
    if smtp.is_configured(settings):
        if await smtp.deliver(to_email, subject, html, settings):
            return True
        logger.warning("SMTP failed for %s — falling back to Brevo", to_email)

    if brevo.is_configured(settings):
        if await brevo.deliver(to_email, subject, html, settings):
            return True
        logger.error("Brevo fallback also failed for %s", to_email)
        return False

    logger.warning("No email provider configured — skipping email to %s", to_email)
    return False


# ── Templates ────────────────────────────────────────────────────────────────


def _otp_html(heading: str, intro: str, otp_code: str, expire_minutes: int) -> str:
    return (
        f"<h2 style='margin:0 0 16px'>{heading}</h2>"
        f"<p>{intro}</p>"
        f"<p style='text-align:center;margin:32px 0'>"
        f"<strong style='font-size:32px;letter-spacing:8px'>{otp_code}</strong></p>"
        f"<p>This code expires in <strong>{expire_minutes} minutes</strong>.</p>"
        "<p style='color:#6b7280;font-size:13px;margin-top:32px'>"
        "If you did not request this, you can safely ignore this email. "
        "Never share this code with anyone.</p>"
    )


def signup_otp_email(otp_code: str, expire_minutes: int) -> tuple[str, str]:
    return (
        f"Verify Your Email - {_BRAND}",
        _otp_html(
            f"Welcome to {_BRAND}!",
            "Use the verification code below to finish creating your account.",
            otp_code,
            expire_minutes,
        ),
    )


def password_reset_otp_email(otp_code: str, expire_minutes: int) -> tuple[str, str]:
    return (
        f"Password Reset OTP - {_BRAND}",
        _otp_html(
            "Reset your password",
            f"We received a request to reset your {_BRAND} password. "
            "Enter the code below to continue.",
            otp_code,
            expire_minutes,
        ),
    )


# ── OTP mailer (collaborator used by the auth flow) ──────────────────────────


class OTPMailer:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def _send(self, to_email: str, subject: str, html: str) -> None:
        if not await _deliver(to_email, subject, html, self._settings):
            raise EmailDeliveryFailed(f"could not deliver '{subject}' to {to_email}")

    async def send_signup_otp(self, to_email: str, otp_code: str) -> None:
        subject, html = signup_otp_email(otp_code, self._settings.otp_expire_minutes)
        await self._send(to_email, subject, html)

    async def send_password_reset_otp(self, to_email: str, otp_code: str) -> None:
        subject, html = password_reset_otp_email(otp_code, self._settings.otp_expire_minutes)
        await self._send(to_email, subject, html)
