"""
Identity service — typed domain errors.

Each error carries an ``ErrorKind`` and a client-safe message preset on the
class, so raise sites never spell out messages or status codes.  Nothing here
depends on FastAPI: the kinds are decoded to HTTP statuses exactly once, by
the exception handler registered in ``app.main``.
"""
from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    CONFLICT = "conflict"
    INVALID_CREDENTIALS = "invalid_credentials"
    OTP_NOT_FOUND = "otp_not_found"
    OTP_EXPIRED = "otp_expired"
    OTP_TOO_MANY_ATTEMPTS = "otp_too_many_attempts"
    OTP_INVALID = "otp_invalid"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    VALIDATION_FAILED = "validation_failed"
    RATE_LIMITED = "rate_limited"


class AuthError(Exception):
    kind: ErrorKind = ErrorKind.UNAUTHORIZED
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ── Registration / conflict ───────────────────────────────────────────────────

class UserAlreadyExists(AuthError):
    kind = ErrorKind.CONFLICT
    message = "User with this email already exists"


class FederatedIdentityInUse(AuthError):
    kind = ErrorKind.CONFLICT
    message = "This Google account is already linked to another user"


# ── Authentication ────────────────────────────────────────────────────────────

class InvalidCredentials(AuthError):
    """Unknown email and wrong password deliberately share this error."""

    kind = ErrorKind.INVALID_CREDENTIALS
    message = "Invalid email or password"


class NotAuthenticated(AuthError):
    kind = ErrorKind.UNAUTHORIZED
    message = "No token provided. Please login."


class TokenInvalid(AuthError):
    """Bad signature, malformed token and expiry are not distinguished."""

    kind = ErrorKind.UNAUTHORIZED
    message = "Invalid or expired token. Please login again."


class SessionUserNotFound(AuthError):
    """Token is valid but the account it names no longer exists."""

    kind = ErrorKind.UNAUTHORIZED
    message = "User not found. Please login again."


class FederatedEmailUnverified(AuthError):
    """Provider does not vouch for the email, so it cannot name a local account."""

    kind = ErrorKind.FORBIDDEN
    message = "Your Google account email is not verified."


class FederatedLoginUnavailable(AuthError):
    kind = ErrorKind.UNAVAILABLE
    message = "Google login is not configured on this server."


# ── Account state ─────────────────────────────────────────────────────────────

class UserNotFound(AuthError):
    kind = ErrorKind.NOT_FOUND
    message = "User not found"


# ── OTP ───────────────────────────────────────────────────────────────────────

class OTPNotFound(AuthError):
    kind = ErrorKind.OTP_NOT_FOUND
    message = "No OTP found. Please request a new one."


class OTPExpired(AuthError):
    kind = ErrorKind.OTP_EXPIRED
    message = "OTP has expired. Please request a new one."


class OTPTooManyAttempts(AuthError):
    """All verify attempts used up — the record is gone, a new OTP is needed."""

    kind = ErrorKind.OTP_TOO_MANY_ATTEMPTS
    message = "Too many failed attempts. Please request a new OTP."


class InvalidOTP(AuthError):
    kind = ErrorKind.OTP_INVALID

    def __init__(self, attempts_remaining: int) -> None:
        self.attempts_remaining = attempts_remaining
        super().__init__(f"Invalid OTP. {attempts_remaining} attempts remaining.")


class OTPNotVerified(AuthError):
    """Password change attempted before the reset OTP was confirmed."""

    kind = ErrorKind.FORBIDDEN
    message = "Please verify OTP before resetting password"
