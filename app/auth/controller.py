"""
Identity service — auth controller (request orchestration layer).

Responsibilities:
  - Receive validated input from the router.
  - Call service functions (which own business logic) and the OTP ledgers.
  - Dispatch OTP emails, degrading gracefully when delivery fails.
  - Compose and return the response envelope.

No framework validation logic here — that belongs in schemas.py.
No business logic here — that belongs in service.py.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.oauth import exchange_google_code, google_authorize_url
from app.auth.otp import OTPLedgers, generate_otp
from app.auth.schemas import (
    AuthData,
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    SignupVerifyRequest,
    UserData,
    UserResponse,
    VerifyOTPRequest,
)
from app.auth.service import (
    authenticate_user,
    complete_pending_signup,
    federated_login,
    get_user_by_email,
    prepare_pending_user,
    register_user,
    reset_password as reset_user_password,
)
from app.auth.tokens import TokenIssuer
from app.config import Settings
from app.email.send import EmailDeliveryFailed, OTPMailer
from app.exceptions import AuthError, FederatedLoginUnavailable, OTPNotVerified
from shared.models import ApiResponse

logger = logging.getLogger(__name__)

# ── Client-facing messages ────────────────────────────────────────────────────

SIGNUP_MESSAGE = "User registered successfully"
SIGNUP_OTP_SENT = (
    "Verification code has been sent to your email address. Please check your inbox."
)
SIGNUP_OTP_DEGRADED = (
    "Verification code generated. Note: Email service is currently unavailable. "
    "Please check server logs for your verification code or contact support."
)
SIGNUP_COMPLETE = "Account created successfully"
LOGIN_MESSAGE = "Login successful"
RESET_UNKNOWN_EMAIL = "If an account exists with this email, you will receive an OTP shortly."
RESET_OTP_SENT = "OTP has been sent to your email address. Please check your inbox."
RESET_OTP_DEGRADED = (
    "OTP generated. Note: Email service is currently unavailable. "
    "Please check server logs for your OTP or contact support."
)
RESET_OTP_VERIFIED = "OTP verified successfully"
RESET_COMPLETE = (
    "Password has been reset successfully. You can now login with your new password."
)
EMAIL_FAILED_WARNING = "Email delivery failed - check server logs"


# ── Helpers ───────────────────────────────────────────────────────────────────

def _auth_response(user: User, issuer: TokenIssuer, message: str) -> ApiResponse[AuthData]:
    return ApiResponse[AuthData](
        message=message,
        data=AuthData(
            user=UserResponse.model_validate(user),
            token=issuer.issue(user.id, user.email),
        ),
    )


async def _dispatch_otp(
    send: Callable[[str, str], Awaitable[None]],
    email: str,
    otp_code: str,
    purpose: str,
) -> bool:
    """
    Send ``otp_code`` and report whether it went out.

    On failure the code is written to the log so an operator can hand it
    over; the caller still answers success with a warning.
    """
    try:
        await send(email, otp_code)
    except EmailDeliveryFailed as exc:
        logger.warning(
            "Email delivery failed for %s OTP to %s (%s). OTP for manual delivery: %s",
            purpose,
            email,
            exc,
            otp_code,
        )
        return False
    return True


# ── Direct signup ─────────────────────────────────────────────────────────────

async def signup(
    session: AsyncSession,
    body: SignupRequest,
    issuer: TokenIssuer,
) -> ApiResponse[AuthData]:
    user = await register_user(
        session,
        email=body.email,
        password=body.password,
        display_name=body.name,
    )
    logger.info("User registered: %s", user.id)
    return _auth_response(user, issuer, SIGNUP_MESSAGE)


# ── OTP-gated signup ──────────────────────────────────────────────────────────

async def request_signup_otp(
    session: AsyncSession,
    body: SignupRequest,
    ledgers: OTPLedgers,
    mailer: OTPMailer,
) -> ApiResponse[None]:
    pending = await prepare_pending_user(
        session,
        email=body.email,
        password=body.password,
        display_name=body.name,
    )
    otp_code = generate_otp()
    ledgers.signup.store(pending.email, otp_code, pending_user=pending)

    if await _dispatch_otp(mailer.send_signup_otp, pending.email, otp_code, "signup"):
        return ApiResponse[None](message=SIGNUP_OTP_SENT)
    return ApiResponse[None](message=SIGNUP_OTP_DEGRADED, warning=EMAIL_FAILED_WARNING)


async def verify_signup_otp(
    session: AsyncSession,
    body: SignupVerifyRequest,
    ledgers: OTPLedgers,
    issuer: TokenIssuer,
) -> ApiResponse[AuthData]:
    pending = ledgers.signup.verify(body.email, body.otp)
    user = await complete_pending_signup(session, pending)
    ledgers.signup.clear(body.email)
    logger.info("User registered via OTP: %s", user.id)
    return _auth_response(user, issuer, SIGNUP_COMPLETE)


# ── Login ─────────────────────────────────────────────────────────────────────

async def login(
    session: AsyncSession,
    body: LoginRequest,
    issuer: TokenIssuer,
) -> ApiResponse[AuthData]:
    user = await authenticate_user(session, body.email, body.password)
    return _auth_response(user, issuer, LOGIN_MESSAGE)


# ── Google OAuth ──────────────────────────────────────────────────────────────

def google_authorize(settings: Settings, issuer: TokenIssuer) -> str:
    """Return the Google consent URL carrying a freshly signed state."""
    if not settings.google_configured:
        raise FederatedLoginUnavailable()
    return google_authorize_url(
        client_id=settings.google_client_id,
        redirect_uri=settings.google_callback_url,
        state=issuer.issue_oauth_state(),
    )


async def google_callback(
    session: AsyncSession,
    settings: Settings,
    issuer: TokenIssuer,
    *,
    code: str | None,
    state: str | None,
    error: str | None = None,
) -> str:
    """
    Complete the Google round trip and return the frontend URL to redirect to.

    Any failure (provider error, bad state, failed exchange) lands the browser
    on the login page with ``error=oauth_failed``.
    """
    frontend = settings.frontend_url.rstrip("/")
    failure_url = f"{frontend}/login?error=oauth_failed"

    if error or not code or not state:
        logger.warning("Google callback rejected: error=%s code_present=%s", error, bool(code))
        return failure_url

    try:
        if not settings.google_configured:
            raise FederatedLoginUnavailable()
        issuer.verify_oauth_state(state)
        profile = await exchange_google_code(
            code=code,
            redirect_uri=settings.google_callback_url,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
        user = await federated_login(session, profile)
    except AuthError as exc:
        logger.warning("Google login failed: %s", exc.message)
        return failure_url

    return f"{frontend}/auth/callback?token={issuer.issue(user.id, user.email)}"


# ── Current user ──────────────────────────────────────────────────────────────

def me(current_user: UserResponse) -> ApiResponse[UserData]:
    return ApiResponse[UserData](data=UserData(user=current_user))


# ── Password reset ────────────────────────────────────────────────────────────

async def forgot_password(
    session: AsyncSession,
    body: ForgotPasswordRequest,
    ledgers: OTPLedgers,
    mailer: OTPMailer,
) -> ApiResponse[None]:
    user = await get_user_by_email(session, body.email)
    if user is None:
        # Same answer as the happy path; nothing is stored for unknown emails.
        return ApiResponse[None](message=RESET_UNKNOWN_EMAIL)

    otp_code = generate_otp()
    ledgers.password_reset.store(user.email, otp_code)

    if await _dispatch_otp(mailer.send_password_reset_otp, user.email, otp_code, "password reset"):
        return ApiResponse[None](message=RESET_OTP_SENT)
    return ApiResponse[None](message=RESET_OTP_DEGRADED, warning=EMAIL_FAILED_WARNING)


def verify_reset_otp(body: VerifyOTPRequest, ledgers: OTPLedgers) -> ApiResponse[None]:
    ledgers.password_reset.verify(body.email, body.otp)
    return ApiResponse[None](message=RESET_OTP_VERIFIED)


async def reset_password(
    session: AsyncSession,
    body: ResetPasswordRequest,
    ledgers: OTPLedgers,
) -> ApiResponse[None]:
    # A verified OTP authorises exactly one password change.
    if not ledgers.password_reset.consume_verified(body.email):
        raise OTPNotVerified()

    user = await reset_user_password(
        session, email=body.email, new_password=body.new_password
    )
    logger.info("Password reset for %s", user.id)
    return ApiResponse[None](message=RESET_COMPLETE)
