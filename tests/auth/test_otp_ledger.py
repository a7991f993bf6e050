import asyncio
from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.auth.constants import OTPPurpose
from app.auth.otp import OTPLedger, OTPLedgers, PendingUser, generate_otp
from app.exceptions import InvalidOTP, OTPExpired, OTPNotFound, OTPTooManyAttempts

PENDING = PendingUser(email="a@x.com", password_hash="argon2-hash", display_name="a")


@pytest.fixture
def signup(clock) -> OTPLedger:
    return OTPLedger(OTPPurpose.SIGNUP, clock=clock)


@pytest.fixture
def reset(clock) -> OTPLedger:
    return OTPLedger(OTPPurpose.PASSWORD_RESET, clock=clock)


def test_generate_otp_is_six_digits_in_range() -> None:
    for _ in range(2000):
        code = generate_otp()
        assert len(code) == 6
        assert code.isdigit()
        assert 100_000 <= int(code) <= 999_999


def test_store_sets_expiry_and_resets_attempts(signup: OTPLedger, clock) -> None:
    record = signup.store("a@x.com", "123456", pending_user=PENDING)
    assert record.attempts == 0
    assert not record.verified
    assert (record.expires_at - clock.now).total_seconds() == 600
    assert len(signup) == 1


def test_store_canonicalises_email(signup: OTPLedger) -> None:
    signup.store("  A@X.com ", "123456", pending_user=PENDING)
    assert "a@x.com" in signup
    assert signup.verify("a@x.com", "123456") == PENDING


def test_store_overwrites_previous_code(signup: OTPLedger) -> None:
    signup.store("a@x.com", "111111", pending_user=PENDING)
    signup.store("a@x.com", "222222", pending_user=PENDING)
    assert len(signup) == 1
    with pytest.raises(InvalidOTP):
        signup.verify("a@x.com", "111111")
    assert signup.verify("a@x.com", "222222") == PENDING


def test_verify_missing_record(signup: OTPLedger) -> None:
    with pytest.raises(OTPNotFound) as exc_info:
        signup.verify("nobody@x.com", "123456")
    assert exc_info.value.message == "No OTP found. Please request a new one."


def test_signup_verify_returns_pending_and_keeps_record(signup: OTPLedger) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)
    assert signup.verify("a@x.com", "123456") == PENDING
    # Kept until the caller has created the account
    assert "a@x.com" in signup
    signup.clear("a@x.com")
    assert "a@x.com" not in signup


def test_wrong_code_increments_attempts(signup: OTPLedger) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)
    with pytest.raises(InvalidOTP) as exc_info:
        signup.verify("a@x.com", "000000")
    assert exc_info.value.attempts_remaining == 4
    assert exc_info.value.message == "Invalid OTP. 4 attempts remaining."
    assert signup.get("a@x.com").attempts == 1


def test_non_ascii_code_counts_as_wrong_attempt(signup: OTPLedger) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)
    with pytest.raises(InvalidOTP):
        signup.verify("a@x.com", "١٢٣٤٥٦")
    assert signup.get("a@x.com").attempts == 1


def test_sixth_attempt_fails_even_when_correct(signup: OTPLedger) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)
    for remaining in (4, 3, 2, 1, 0):
        with pytest.raises(InvalidOTP) as exc_info:
            signup.verify("a@x.com", "000000")
        assert exc_info.value.attempts_remaining == remaining

    with pytest.raises(OTPTooManyAttempts):
        signup.verify("a@x.com", "123456")
    assert "a@x.com" not in signup


def test_expired_record_is_deleted(signup: OTPLedger, clock) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING, ttl_minutes=0)
    clock.advance(seconds=1)
    with pytest.raises(OTPExpired):
        signup.verify("a@x.com", "123456")
    assert "a@x.com" not in signup


def test_record_is_live_until_exactly_expires_at(signup: OTPLedger, clock) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)
    clock.advance(minutes=10)
    assert signup.verify("a@x.com", "123456") == PENDING


def test_reset_verify_marks_verified(reset: OTPLedger, clock) -> None:
    reset.store("b@x.com", "654321")
    assert not reset.is_verified("b@x.com")
    assert reset.verify("b@x.com", "654321") is None
    assert reset.is_verified("b@x.com")

    clock.advance(minutes=11)
    assert not reset.is_verified("b@x.com")


def test_consume_verified_succeeds_once(reset: OTPLedger) -> None:
    reset.store("b@x.com", "654321")
    assert not reset.consume_verified("b@x.com")

    reset.verify("b@x.com", "654321")
    assert reset.consume_verified("b@x.com")
    assert not reset.consume_verified("b@x.com")
    assert not reset.is_verified("b@x.com")


def test_clear_is_idempotent(reset: OTPLedger) -> None:
    reset.clear("never@x.com")
    reset.store("b@x.com", "654321")
    reset.clear("b@x.com")
    reset.clear("b@x.com")
    assert len(reset) == 0


def test_sweep_evicts_expired_including_verified(reset: OTPLedger, clock) -> None:
    reset.store("old@x.com", "111111")
    reset.verify("old@x.com", "111111")
    reset.store("stale@x.com", "222222")
    clock.advance(minutes=5)
    reset.store("fresh@x.com", "333333")
    clock.advance(minutes=6)

    assert reset.sweep() == 2
    assert "fresh@x.com" in reset
    assert "old@x.com" not in reset
    assert "stale@x.com" not in reset


def test_ledgers_are_independent(ledgers: OTPLedgers) -> None:
    ledgers.signup.store("a@x.com", "123456", pending_user=PENDING)
    assert "a@x.com" not in ledgers.password_reset
    with pytest.raises(OTPNotFound):
        ledgers.password_reset.verify("a@x.com", "123456")


def test_ledgers_sweep_counts_both(ledgers: OTPLedgers, clock) -> None:
    ledgers.signup.store("a@x.com", "123456", pending_user=PENDING)
    ledgers.password_reset.store("b@x.com", "654321")
    clock.advance(minutes=11)
    assert ledgers.sweep() == 2
    assert len(ledgers.signup) == 0
    assert len(ledgers.password_reset) == 0


def test_lock_table_is_released(signup: OTPLedger) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)
    with pytest.raises(InvalidOTP):
        signup.verify("a@x.com", "000000")
    signup.clear("a@x.com")
    assert signup._locks == {}


def test_concurrent_wrong_codes_never_lose_an_attempt(signup: OTPLedger) -> None:
    signup.store("a@x.com", "123456", pending_user=PENDING)

    def attempt(_: int) -> str:
        try:
            signup.verify("a@x.com", "000000")
        except (InvalidOTP, OTPTooManyAttempts, OTPNotFound) as exc:
            return type(exc).__name__
        return "verified"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = Counter(pool.map(attempt, range(10)))

    assert outcomes == Counter(InvalidOTP=5, OTPTooManyAttempts=1, OTPNotFound=4)


@pytest.mark.asyncio
async def test_sweeper_task_evicts_expired(clock) -> None:
    ledgers = OTPLedgers(clock=clock)
    ledgers.signup.store("a@x.com", "123456", pending_user=PENDING)
    clock.advance(minutes=11)

    ledgers.start_sweeper(interval_seconds=0.01)
    for _ in range(100):
        if len(ledgers.signup) == 0:
            break
        await asyncio.sleep(0.01)
    await ledgers.stop_sweeper()

    assert len(ledgers.signup) == 0
