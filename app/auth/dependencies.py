"""
Identity service — auth-specific FastAPI dependencies.

The per-app collaborators (settings, token issuer, OTP ledgers, mailer) are
built once in ``create_app`` and read back from ``app.state`` here, so tests
can swap any of them without touching module globals.
"""
from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.otp import OTPLedgers
from app.auth.schemas import UserResponse
from app.auth.service import get_user_by_id
from app.auth.tokens import TokenIssuer
from app.config import Settings
from app.database import get_db
from app.email.send import OTPMailer
from app.exceptions import AuthError, NotAuthenticated, SessionUserNotFound

http_bearer = HTTPBearer(auto_error=False)


# ── Per-app collaborators ─────────────────────────────────────────────────────

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_otp_ledgers(request: Request) -> OTPLedgers:
    return request.app.state.otp_ledgers


def get_mailer(request: Request) -> OTPMailer:
    return request.app.state.mailer


# ── Request gate ──────────────────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    session: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> UserResponse:
    """
    Resolve ``Authorization: Bearer <token>`` to the current user.

    Raises:
      NotAuthenticated     — header missing or not a Bearer credential
      TokenInvalid         — bad signature, malformed or expired token
      SessionUserNotFound  — token is fine but the account is gone
    """
    # HTTPBearer(auto_error=False) yields None for a missing or non-Bearer header
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()

    payload = issuer.verify(credentials.credentials)
    user = await get_user_by_id(session, payload.user_id)
    if user is None:
        raise SessionUserNotFound()

    current = UserResponse.model_validate(user)
    request.state.user = current
    return current


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    session: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> UserResponse | None:
    """Same resolution as get_current_user, but anonymous requests get None."""
    try:
        return await get_current_user(request, credentials, session, issuer)
    except AuthError:
        return None
