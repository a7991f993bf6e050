"""
Identity service — Google OAuth 2.0 integration.

Handles the server side of the Authorization Code flow with plain httpx calls.

Flow:
  1. GET /auth/google redirects the browser to Google's consent screen with a
     signed, short-lived ``state``.
  2. Google redirects back to GET /auth/google/callback?code=...&state=...
  3. This module exchanges the code for tokens, fetches the user profile and
     returns a normalized ``FederatedProfile``.
  4. The callback resolves the profile to a user and redirects to the
     frontend with ``?token=``.  No server-side session is involved.
"""
from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from app.auth.constants import IdentityProvider
from app.exceptions import InvalidCredentials


# ── Normalized profile returned by the provider ─────────────────────────────

@dataclass(frozen=True, slots=True)
class FederatedProfile:
    provider: IdentityProvider
    federated_id: str       # provider subject ("sub")
    email: str
    display_name: str
    email_verified: bool


# ── Google ──────────────────────────────────────────────────────────────────

_GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
_GOOGLE_SCOPES = "openid email profile"


def google_authorize_url(*, client_id: str, redirect_uri: str, state: str) -> str:
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": _GOOGLE_SCOPES,
            "state": state,
            "prompt": "select_account",
        }
    )
    return f"{_GOOGLE_AUTHORIZE_URL}?{query}"


async def exchange_google_code(
    *,
    code: str,
    redirect_uri: str,
    client_id: str,
    client_secret: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FederatedProfile:
    """
    Exchange a Google authorization code for the user's profile.

    Raises InvalidCredentials on any failure (bad code, network error, missing
    fields) so the caller doesn't need provider-specific error handling.
    """
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            # 1. Exchange code → tokens
            token_resp = await client.post(
                _GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            if token_resp.status_code != 200:
                raise InvalidCredentials()

            access_token = token_resp.json().get("access_token")
            if not access_token:
                raise InvalidCredentials()

            # 2. Fetch user profile
            info_resp = await client.get(
                _GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if info_resp.status_code != 200:
                raise InvalidCredentials()
            info = info_resp.json()
    except httpx.HTTPError as exc:
        raise InvalidCredentials() from exc

    email = info.get("email")
    sub = info.get("sub")
    if not email or not sub:
        raise InvalidCredentials()

    return FederatedProfile(
        provider=IdentityProvider.GOOGLE,
        federated_id=sub,
        email=email,
        display_name=info.get("name") or email.split("@")[0],
        email_verified=info.get("email_verified") in (True, "true"),
    )
