"""
Identity service — stateless bearer tokens.

Tokens are HS256 JWTs carrying the user id (``sub``) and email.  Nothing is
stored server-side: a token is valid exactly when its signature, issuer,
audience and expiry check out.  The same signer produces the short-lived
``state`` value for the Google OAuth round trip, so that flow needs no
session either.
"""
from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.auth.constants import ACCESS_TOKEN_EXPIRE_SECONDS, OAUTH_STATE_EXPIRE_SECONDS
from app.config import Settings
from app.exceptions import TokenInvalid

_OAUTH_STATE_TYPE = "oauth_state"


@dataclass(frozen=True, slots=True)
class TokenPayload:
    user_id: uuid.UUID
    email: str


class TokenIssuer:
    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: str,
        audience: str,
        expire_seconds: int = ACCESS_TOKEN_EXPIRE_SECONDS,
        state_expire_seconds: int = OAUTH_STATE_EXPIRE_SECONDS,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience
        self.expire_seconds = expire_seconds
        self.state_expire_seconds = state_expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            expire_seconds=settings.jwt_expire_seconds,
            state_expire_seconds=settings.oauth_state_expire_seconds,
        )

    def _encode(self, claims: dict, expire_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "iat": now,
            "exp": now + timedelta(seconds=expire_seconds),
            "iss": self._issuer,
            "aud": self._audience,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
            )
        except JWTError as exc:
            raise TokenInvalid() from exc

    # ── Access tokens ─────────────────────────────────────────────────────────

    def issue(self, user_id: uuid.UUID, email: str) -> str:
        return self._encode({"sub": str(user_id), "email": email}, self.expire_seconds)

    def verify(self, token: str) -> TokenPayload:
        """Decode ``token`` or raise TokenInvalid (bad signature, malformed or expired)."""
        claims = self._decode(token)
        if claims.get("typ") == _OAUTH_STATE_TYPE:
            raise TokenInvalid()
        try:
            return TokenPayload(user_id=uuid.UUID(claims["sub"]), email=claims.get("email") or "")
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc

    # ── OAuth state ───────────────────────────────────────────────────────────

    def issue_oauth_state(self) -> str:
        return self._encode(
            {"typ": _OAUTH_STATE_TYPE, "nonce": secrets.token_urlsafe(16)},
            self.state_expire_seconds,
        )

    def verify_oauth_state(self, state: str) -> None:
        if self._decode(state).get("typ") != _OAUTH_STATE_TYPE:
            raise TokenInvalid()
