"""
Identity service — in-memory one-time passcode ledgers.

One ``OTPLedger`` per purpose (signup, password reset).  Each maps a canonical
email to at most one live ``OTPRecord``; a new ``store`` for the same email
overwrites the previous record.

Rules:
  - Records expire ``ttl_minutes`` after they are stored and are evicted on
    the first access after expiry, or by the periodic sweep.
  - Five wrong codes burn the record; the sixth attempt fails even if correct.
  - Reset ledger: a correct code flips ``verified`` and keeps the record so the
    password change can check it later.  Signup ledger: a correct code hands
    back the pending account; the caller clears the record once it is created.
  - Every read-then-write on a record runs under a per-email lock, shared with
    the sweeper.

The ledgers are plain objects built by ``create_app`` so tests can run
isolated instances and drive time through an injected clock.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import secrets
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from app.auth.constants import (
    OTP_EXPIRE_MINUTES,
    OTP_MAX,
    OTP_MAX_ATTEMPTS,
    OTP_MIN,
    OTP_SWEEP_INTERVAL_SECONDS,
    OTPPurpose,
)
from app.auth.utils import canonical_email
from app.exceptions import InvalidOTP, OTPExpired, OTPNotFound, OTPTooManyAttempts

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_rng = random.SystemRandom()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp() -> str:
    """Return a 6-digit code in [100000, 999999] drawn from the OS CSPRNG."""
    return f"{_rng.randint(OTP_MIN, OTP_MAX)}"


# ── Records ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class PendingUser:
    """Account waiting on signup OTP confirmation; the password is already hashed."""

    email: str
    password_hash: str
    display_name: str


@dataclass(slots=True)
class OTPRecord:
    code: str
    expires_at: datetime
    attempts: int = 0
    verified: bool = False
    pending_user: PendingUser | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(slots=True)
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


# ── Ledger ───────────────────────────────────────────────────────────────────

class OTPLedger:
    def __init__(
        self,
        purpose: OTPPurpose,
        *,
        clock: Clock = utcnow,
        max_attempts: int = OTP_MAX_ATTEMPTS,
        ttl_minutes: float = OTP_EXPIRE_MINUTES,
    ) -> None:
        self.purpose = purpose
        self.max_attempts = max_attempts
        self.ttl_minutes = ttl_minutes
        self._clock = clock
        self._records: dict[str, OTPRecord] = {}
        self._locks: dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and canonical_email(email) in self._records

    @contextlib.contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        # Lock entries are reference-counted and dropped once unused, so the
        # lock map never outgrows the set of in-flight operations.
        with self._guard:
            entry = self._locks.setdefault(key, _KeyLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def get(self, email: str) -> OTPRecord | None:
        """Return the live record for ``email`` without touching it."""
        return self._records.get(canonical_email(email))

    def store(
        self,
        email: str,
        code: str,
        pending_user: PendingUser | None = None,
        ttl_minutes: float | None = None,
    ) -> OTPRecord:
        key = canonical_email(email)
        ttl = self.ttl_minutes if ttl_minutes is None else ttl_minutes
        record = OTPRecord(
            code=code,
            expires_at=self._clock() + timedelta(minutes=ttl),
            pending_user=pending_user,
        )
        with self._locked(key):
            self._records[key] = record
        logger.info("Stored %s OTP for %s, expires in %s minutes", self.purpose.value, key, ttl)
        return record

    def verify(self, email: str, code: str) -> PendingUser | None:
        """
        Check ``code`` against the live record for ``email``.

        Returns the pending account (signup ledger) or None (reset ledger).

        Raises:
          OTPNotFound         — nothing stored for this email
          OTPExpired          — record expired; it is deleted
          OTPTooManyAttempts  — attempt budget spent; record is deleted
          InvalidOTP          — wrong code; the attempt counter is incremented
        """
        key = canonical_email(email)
        with self._locked(key):
            record = self._records.get(key)
            if record is None:
                raise OTPNotFound()

            if record.is_expired(self._clock()):
                del self._records[key]
                raise OTPExpired()

            if record.attempts >= self.max_attempts:
                del self._records[key]
                raise OTPTooManyAttempts()

            # Bytes, so a non-ASCII submission is an ordinary mismatch.
            if not secrets.compare_digest(record.code.encode(), str(code).encode()):
                record.attempts += 1
                raise InvalidOTP(attempts_remaining=self.max_attempts - record.attempts)

            if self.purpose is OTPPurpose.PASSWORD_RESET:
                record.verified = True

        logger.info("Verified %s OTP for %s", self.purpose.value, key)
        return record.pending_user

    def is_verified(self, email: str) -> bool:
        key = canonical_email(email)
        with self._locked(key):
            record = self._records.get(key)
            return (
                record is not None
                and record.verified
                and not record.is_expired(self._clock())
            )

    def consume_verified(self, email: str) -> bool:
        """
        Remove the record if it is verified and live; report whether it was.

        Check and delete share one critical section, so of two concurrent
        password changes only one gets True.
        """
        key = canonical_email(email)
        with self._locked(key):
            record = self._records.get(key)
            if record is None or not record.verified or record.is_expired(self._clock()):
                return False
            del self._records[key]
        logger.info("Consumed verified %s OTP for %s", self.purpose.value, key)
        return True

    def clear(self, email: str) -> None:
        key = canonical_email(email)
        with self._locked(key):
            removed = self._records.pop(key, None)
        if removed is not None:
            logger.info("Cleared %s OTP for %s", self.purpose.value, key)

    def sweep(self) -> int:
        """Evict every expired record, verified ones included. Returns the count."""
        now = self._clock()
        evicted = 0
        for key, record in list(self._records.items()):
            if not record.is_expired(now):
                continue
            with self._locked(key):
                # Re-check under the lock: the record may have been replaced.
                current = self._records.get(key)
                if current is not None and current.is_expired(now):
                    del self._records[key]
                    evicted += 1
        return evicted


class OTPLedgers:
    """The signup and password-reset ledgers plus their background sweeper."""

    def __init__(
        self,
        *,
        clock: Clock = utcnow,
        max_attempts: int = OTP_MAX_ATTEMPTS,
        ttl_minutes: float = OTP_EXPIRE_MINUTES,
    ) -> None:
        self.signup = OTPLedger(
            OTPPurpose.SIGNUP, clock=clock, max_attempts=max_attempts, ttl_minutes=ttl_minutes
        )
        self.password_reset = OTPLedger(
            OTPPurpose.PASSWORD_RESET,
            clock=clock,
            max_attempts=max_attempts,
            ttl_minutes=ttl_minutes,
        )
        self._sweeper: asyncio.Task[None] | None = None

    def sweep(self) -> int:
        evicted = self.signup.sweep() + self.password_reset.sweep()
        if evicted:
            logger.info("Cleaned up %d expired OTPs", evicted)
        return evicted

    async def run_sweeper(self, interval_seconds: float = OTP_SWEEP_INTERVAL_SECONDS) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("OTP sweep failed")

    def start_sweeper(self, interval_seconds: float = OTP_SWEEP_INTERVAL_SECONDS) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self.run_sweeper(interval_seconds), name="otp-sweeper"
            )

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
