from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User  # noqa: F401 - register with Base
from app.auth.otp import OTPLedgers
from app.config import Settings
from app.email.send import EmailDeliveryFailed
from app.main import create_app
from app.rate_limit import limiter
from shared.database.postgres import Base, get_async_engine, get_async_session_factory

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
FRONTEND_URL = "http://frontend.test"


class FakeClock:
    """Manually advanced clock for the OTP ledgers."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeMailer:
    """Records OTP emails instead of sending them; ``fail`` simulates an outage."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    async def _send(self, kind: str, to_email: str, otp_code: str) -> None:
        if self.fail:
            raise EmailDeliveryFailed("provider down")
        self.sent.append((kind, to_email, otp_code))

    async def send_signup_otp(self, to_email: str, otp_code: str) -> None:
        await self._send("signup", to_email, otp_code)

    async def send_password_reset_otp(self, to_email: str, otp_code: str) -> None:
        await self._send("password_reset", to_email, otp_code)

    def last_code(self, to_email: str) -> str:
        return next(code for _, email, code in reversed(self.sent) if email == to_email)


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": TEST_DATABASE_URL,
        "jwt_secret": "test-secret",
        "env_name": "test",
        "frontend_url": FRONTEND_URL,
        "google_client_id": "google-client-id",
        "google_client_secret": "google-client-secret",
        "smtp_host": "",
        "smtp_username": "",
        "brevo_api_key": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledgers(clock: FakeClock) -> OTPLedgers:
    return OTPLedgers(clock=clock)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def app(settings: Settings, ledgers: OTPLedgers, mailer: FakeMailer) -> FastAPI:
    return create_app(settings, otp_ledgers=ledgers, mailer=mailer)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    was_enabled = limiter.enabled
    limiter.enabled = False
    try:
        with TestClient(app) as c:
            yield c
    finally:
        limiter.enabled = was_enabled


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = get_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = get_async_session_factory(engine)
    async with session_factory() as session:
        yield session
    await engine.dispose()
