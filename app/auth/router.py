"""
Identity service — auth router.

Only HTTP concerns live here:
  - Route declarations, HTTP methods, status codes, response_model
  - Dependency injection (session, settings, ledgers, current user)
  - Forwarding to the controller

Zero business logic. Zero DB queries.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import controller
from app.auth.dependencies import (
    get_app_settings,
    get_current_user,
    get_mailer,
    get_otp_ledgers,
    get_token_issuer,
)
from app.auth.otp import OTPLedgers
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
from app.auth.tokens import TokenIssuer
from app.config import Settings
from app.database import get_db
from app.email.send import OTPMailer
from app.rate_limit import (
    LOGIN_LIMIT,
    OTP_REQUEST_LIMIT,
    OTP_VERIFY_LIMIT,
    SIGNUP_LIMIT,
    limiter,
)
from shared.models import ApiResponse

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Direct signup ─────────────────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=ApiResponse[AuthData],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account (email + password)",
)
@limiter.limit(SIGNUP_LIMIT)
async def signup(
    request: Request,
    body: SignupRequest,
    session: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> ApiResponse[AuthData]:
    return await controller.signup(session, body, issuer)


# ── OTP-gated signup ──────────────────────────────────────────────────────────

@router.post(
    "/signup/request-otp",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Start signup: email a 6-digit verification code",
    description=(
        "Validates the details and holds the account until the code is confirmed. "
        "If the email cannot be delivered the call still succeeds and the response "
        "carries a `warning`."
    ),
)
@limiter.limit(OTP_REQUEST_LIMIT)
async def request_signup_otp(
    request: Request,
    body: SignupRequest,
    session: AsyncSession = Depends(get_db),
    ledgers: OTPLedgers = Depends(get_otp_ledgers),
    mailer: OTPMailer = Depends(get_mailer),
) -> ApiResponse[None]:
    return await controller.request_signup_otp(session, body, ledgers, mailer)


@router.post(
    "/signup/verify-otp",
    response_model=ApiResponse[AuthData],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Finish signup: confirm the code and create the account",
)
@limiter.limit(OTP_VERIFY_LIMIT)
async def verify_signup_otp(
    request: Request,
    body: SignupVerifyRequest,
    session: AsyncSession = Depends(get_db),
    ledgers: OTPLedgers = Depends(get_otp_ledgers),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> ApiResponse[AuthData]:
    return await controller.verify_signup_otp(session, body, ledgers, issuer)


# ── Login ─────────────────────────────────────────────────────────────────────

@router.post(
    "/login",
    response_model=ApiResponse[AuthData],
    response_model_exclude_none=True,
    summary="Login with email + password",
)
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    session: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> ApiResponse[AuthData]:
    return await controller.login(session, body, issuer)


# ── Google OAuth ──────────────────────────────────────────────────────────────

@router.get(
    "/google",
    status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    response_class=RedirectResponse,
    summary="Redirect to the Google consent screen",
)
async def google_login(
    settings: Settings = Depends(get_app_settings),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> RedirectResponse:
    return RedirectResponse(controller.google_authorize(settings, issuer))


@router.get(
    "/google/callback",
    status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    response_class=RedirectResponse,
    summary="Google OAuth callback",
    description=(
        "Exchanges the authorization code, resolves or creates the account and "
        "redirects to the frontend with `?token=`. Failures redirect to "
        "`/login?error=oauth_failed`."
    ),
)
async def google_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> RedirectResponse:
    url = await controller.google_callback(
        session, settings, issuer, code=code, state=state, error=error
    )
    return RedirectResponse(url)


# ── Current user ──────────────────────────────────────────────────────────────

@router.get(
    "/me",
    response_model=ApiResponse[UserData],
    response_model_exclude_none=True,
    summary="Return the authenticated user",
)
async def me(
    current_user: UserResponse = Depends(get_current_user),
) -> ApiResponse[UserData]:
    return controller.me(current_user)


# ── Password reset ────────────────────────────────────────────────────────────

@router.post(
    "/forgot-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Email a password-reset code",
    description=(
        "Always returns 200 with a generic message so the endpoint cannot be "
        "used to discover registered emails."
    ),
)
@limiter.limit(OTP_REQUEST_LIMIT)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    session: AsyncSession = Depends(get_db),
    ledgers: OTPLedgers = Depends(get_otp_ledgers),
    mailer: OTPMailer = Depends(get_mailer),
) -> ApiResponse[None]:
    return await controller.forgot_password(session, body, ledgers, mailer)


@router.post(
    "/verify-otp",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Confirm the password-reset code",
)
@limiter.limit(OTP_VERIFY_LIMIT)
async def verify_reset_otp(
    request: Request,
    body: VerifyOTPRequest,
    ledgers: OTPLedgers = Depends(get_otp_ledgers),
) -> ApiResponse[None]:
    return controller.verify_reset_otp(body, ledgers)


@router.post(
    "/reset-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Set a new password after the reset code was confirmed",
)
@limiter.limit(OTP_VERIFY_LIMIT)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    session: AsyncSession = Depends(get_db),
    ledgers: OTPLedgers = Depends(get_otp_ledgers),
) -> ApiResponse[None]:
    return await controller.reset_password(session, body, ledgers)
