"""
Identity service — Pydantic V2 request/response schemas for the auth domain.

Separation of concerns:
  - *Request  models:  input from the client (strict extra="forbid")
  - *Response models:  output to the client (no write-only fields exposed)
"""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

from app.auth.constants import (
    DISPLAY_NAME_MAX_LENGTH,
    DISPLAY_NAME_MIN_LENGTH,
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
)

_OTP_PATTERN = r"^[0-9]{6}$"


# ── Shared base ───────────────────────────────────────────────────────────────

class _Base(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
    )


# ── Signup ────────────────────────────────────────────────────────────────────

class SignupRequest(_Base):
    """Body for POST /auth/signup and POST /auth/signup/request-otp."""

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    # Defaults to the local part of the email when omitted
    name: str | None = Field(
        default=None,
        min_length=DISPLAY_NAME_MIN_LENGTH,
        max_length=DISPLAY_NAME_MAX_LENGTH,
    )


class SignupVerifyRequest(_Base):
    """Body for POST /auth/signup/verify-otp."""

    email: EmailStr
    otp: str = Field(pattern=_OTP_PATTERN, description="6-digit code sent to email")


# ── Login ─────────────────────────────────────────────────────────────────────

class LoginRequest(_Base):
    """Body for POST /auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


# ── Password reset ─────────────────────────────────────────────────────────────

class ForgotPasswordRequest(_Base):
    """Body for POST /auth/forgot-password."""

    email: EmailStr


class VerifyOTPRequest(_Base):
    """Body for POST /auth/verify-otp."""

    email: EmailStr
    otp: str = Field(pattern=_OTP_PATTERN, description="6-digit code sent to email")


class ResetPasswordRequest(_Base):
    """
    Body for POST /auth/reset-password.

    The reset OTP must already have been confirmed through /auth/verify-otp;
    the code itself is not sent again.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    new_password: str = Field(
        min_length=PASSWORD_MIN_LENGTH,
        max_length=PASSWORD_MAX_LENGTH,
        validation_alias=AliasChoices("new_password", "newPassword"),
    )


# ── Response models ───────────────────────────────────────────────────────────

class UserResponse(BaseModel):
    """Public user profile. The password hash never leaves the service."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: uuid.UUID
    email: str
    display_name: str
    has_password: bool
    created_at: datetime


class AuthData(BaseModel):
    """Payload for signup / login: the account plus a bearer token."""

    model_config = ConfigDict(extra="forbid")

    user: UserResponse
    token: str


class UserData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user: UserResponse
