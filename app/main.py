import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.auth.otp import OTPLedgers
from app.auth.router import router as auth_router
from app.auth.tokens import TokenIssuer
from app.config import Settings, get_settings
from app.database import create_tables, dispose_db, init_db
from app.email.send import OTPMailer
from app.exceptions import AuthError, ErrorKind
from app.rate_limit import limiter
from shared.middleware import (
    build_error_envelope_middleware,
    error_envelope,
    request_id_middleware,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s: %(message)s")
logger = logging.getLogger(__name__)


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## TempMail Identity Service

Accounts and sign-in for the TempMail temporary-email service:

* **Signup** — direct, or OTP-gated (the account is created only once the
  6-digit code emailed to the address is confirmed).
* **Login** — email + password, or Google OAuth.
* **Password reset** — request a code, confirm it, then set the new password.

### Authentication
Protected endpoints require:
```
Authorization: Bearer <token>
```

### Response shape
Every response uses one envelope:
```json
{ "success": true, "message": "...", "data": { }, "warning": "..." }
```
Failures set `success: false`; validation failures list per-field messages
under `errors`.

### Rate limits
`429 Too Many Requests` is returned when a per-IP limit is exceeded.
"""

_TAGS_METADATA = [
    {
        "name": "auth",
        "description": (
            "Signup (direct and OTP-gated), login, Google OAuth, the current user, "
            "and the password-reset OTP flow."
        ),
    },
]

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.OTP_NOT_FOUND: 400,
    ErrorKind.OTP_EXPIRED: 400,
    ErrorKind.OTP_TOO_MANY_ATTEMPTS: 400,
    ErrorKind.OTP_INVALID: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.RATE_LIMITED: 429,
}


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── Exception handlers ────────────────────────────────────────────────────────

async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return error_envelope(request, _STATUS_BY_KIND[exc.kind], exc.message)


def _field_message(error: dict) -> str:
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
    field = ".".join(loc)
    return f"{field}: {error['msg']}" if field else error["msg"]


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_envelope(
        request,
        _STATUS_BY_KIND[ErrorKind.VALIDATION_FAILED],
        "Validation failed",
        errors=[_field_message(e) for e in exc.errors()],
    )


_RATE_LIMIT_HEADERS = (
    "retry-after",
    "x-ratelimit-limit",
    "x-ratelimit-remaining",
    "x-ratelimit-reset",
)


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # slowapi's handler decides the headers; only the body is re-shaped.
    limited = _rate_limit_exceeded_handler(request, exc)
    response = error_envelope(
        request,
        limited.status_code,
        "Too many requests, please try again later.",
    )
    for name in _RATE_LIMIT_HEADERS:
        if name in limited.headers:
            response.headers[name] = limited.headers[name]
    return response


# ── App factory ───────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    init_db(settings.database_url)
    if settings.database_create_tables:
        await create_tables()
    app.state.otp_ledgers.start_sweeper(settings.otp_sweep_interval_seconds)
    logger.info("Identity service started (env=%s)", settings.env_name)
    yield
    await app.state.otp_ledgers.stop_sweeper()
    await dispose_db()


def create_app(
    settings: Settings | None = None,
    *,
    otp_ledgers: OTPLedgers | None = None,
    mailer: OTPMailer | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="TempMail Identity Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Per-app collaborators, read back by app.auth.dependencies
    app.state.settings = settings
    app.state.token_issuer = TokenIssuer.from_settings(settings)
    app.state.otp_ledgers = otp_ledgers or OTPLedgers(
        max_attempts=settings.otp_max_attempts,
        ttl_minutes=settings.otp_expire_minutes,
    )
    app.state.mailer = mailer or OTPMailer(settings)

    # Attach rate limiter state before middleware
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(AuthError, _auth_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # Middleware is applied in reverse-registration order (last added = outermost).
    # CORS must be outermost so ALL responses (including 429s) carry CORS headers.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(
        build_error_envelope_middleware(expose_errors=settings.is_development)
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(auth_router)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="identity")

    return app


app = create_app()
