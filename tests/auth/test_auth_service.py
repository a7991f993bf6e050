import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.constants import IdentityProvider
from app.auth.models import User
from app.auth.oauth import FederatedProfile
from app.auth.service import (
    authenticate_user,
    complete_pending_signup,
    create_user,
    federated_login,
    get_user_by_email,
    get_user_by_federated_id,
    prepare_pending_user,
    register_user,
    reset_password,
)
from app.auth.utils import verify_password
from app.exceptions import (
    FederatedEmailUnverified,
    FederatedIdentityInUse,
    InvalidCredentials,
    UserAlreadyExists,
    UserNotFound,
)


def _profile(
    federated_id: str = "google-sub-1", email: str = "fed@x.com", email_verified: bool = True
) -> FederatedProfile:
    return FederatedProfile(
        provider=IdentityProvider.GOOGLE,
        federated_id=federated_id,
        email=email,
        display_name="Fed User",
        email_verified=email_verified,
    )


async def _user_count(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(User))).scalar_one()


# ── Registration ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_register_user(db_session: AsyncSession) -> None:
    user = await register_user(db_session, email="Svc@Example.com ", password="secret123")
    assert user.email == "svc@example.com"
    assert user.display_name == "svc"
    assert user.password_hash != "secret123"
    assert verify_password("secret123", user.password_hash)
    assert user.federated_id is None


@pytest.mark.asyncio
async def test_register_user_keeps_given_name(db_session: AsyncSession) -> None:
    user = await register_user(
        db_session, email="named@example.com", password="secret123", display_name="Named"
    )
    assert user.display_name == "Named"


@pytest.mark.asyncio
async def test_register_duplicate_raises(db_session: AsyncSession) -> None:
    await register_user(db_session, email="dup@example.com", password="secret123")
    with pytest.raises(UserAlreadyExists):
        await register_user(db_session, email="DUP@example.com", password="other123")


@pytest.mark.asyncio
async def test_create_user_maps_unique_violation_to_conflict(db_session: AsyncSession) -> None:
    # Bypasses the pre-check, as a concurrent signup would
    await create_user(db_session, email="race@example.com", display_name="one", password_hash="h1")
    with pytest.raises(UserAlreadyExists):
        await create_user(
            db_session, email="race@example.com", display_name="two", password_hash="h2"
        )


@pytest.mark.asyncio
async def test_create_user_maps_federated_id_clash_to_its_own_conflict(
    db_session: AsyncSession,
) -> None:
    await create_user(db_session, email="one@x.com", display_name="one", federated_id="g-7")
    with pytest.raises(FederatedIdentityInUse):
        await create_user(db_session, email="two@x.com", display_name="two", federated_id="g-7")


@pytest.mark.asyncio
async def test_create_user_without_credential_is_not_a_conflict(db_session: AsyncSession) -> None:
    with pytest.raises(IntegrityError):
        await create_user(db_session, email="bare@x.com", display_name="bare")


# ── OTP-gated signup ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_prepare_pending_user_hashes_once(db_session: AsyncSession) -> None:
    pending = await prepare_pending_user(db_session, email="A@X.com", password="pw123456")
    assert pending.email == "a@x.com"
    assert pending.display_name == "a"
    assert verify_password("pw123456", pending.password_hash)

    user = await complete_pending_signup(db_session, pending)
    assert user.password_hash == pending.password_hash


@pytest.mark.asyncio
async def test_prepare_pending_user_rejects_registered_email(db_session: AsyncSession) -> None:
    await register_user(db_session, email="taken@x.com", password="pw123456")
    with pytest.raises(UserAlreadyExists):
        await prepare_pending_user(db_session, email="taken@x.com", password="pw123456")


@pytest.mark.asyncio
async def test_complete_pending_signup_conflicts_when_email_taken(db_session: AsyncSession) -> None:
    pending = await prepare_pending_user(db_session, email="late@x.com", password="pw123456")
    await register_user(db_session, email="late@x.com", password="other123")
    with pytest.raises(UserAlreadyExists):
        await complete_pending_signup(db_session, pending)


# ── Authentication ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_authenticate_user(db_session: AsyncSession) -> None:
    await register_user(db_session, email="auth@example.com", password="mypass1")
    user = await authenticate_user(db_session, " AUTH@example.com", "mypass1")
    assert user.email == "auth@example.com"


@pytest.mark.asyncio
async def test_authenticate_failures_are_indistinguishable(db_session: AsyncSession) -> None:
    await register_user(db_session, email="wrong@example.com", password="right1")
    await federated_login(db_session, _profile(email="oauth-only@example.com"))

    messages = set()
    for email, password in [
        ("wrong@example.com", "wrong1"),
        ("missing@example.com", "right1"),
        ("oauth-only@example.com", "anything"),
    ]:
        with pytest.raises(InvalidCredentials) as exc_info:
            await authenticate_user(db_session, email, password)
        messages.add(exc_info.value.message)

    assert messages == {"Invalid email or password"}


# ── Federated login ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_federated_login_creates_password_less_user(db_session: AsyncSession) -> None:
    user = await federated_login(db_session, _profile())
    assert user.password_hash is None
    assert user.federated_id == "google-sub-1"
    assert user.display_name == "Fed User"


@pytest.mark.asyncio
async def test_federated_login_is_idempotent(db_session: AsyncSession) -> None:
    first = await federated_login(db_session, _profile())
    second = await federated_login(db_session, _profile())
    assert first.id == second.id
    assert await _user_count(db_session) == 1


@pytest.mark.asyncio
async def test_federated_login_links_existing_password_account(db_session: AsyncSession) -> None:
    existing = await register_user(db_session, email="both@x.com", password="pw123456")
    user = await federated_login(db_session, _profile(federated_id="g-42", email="Both@x.com"))

    assert user.id == existing.id
    assert user.federated_id == "g-42"
    assert user.password_hash is not None
    assert await _user_count(db_session) == 1
    assert (await get_user_by_federated_id(db_session, "g-42")).id == existing.id


@pytest.mark.asyncio
async def test_federated_login_refuses_unverified_email_link(db_session: AsyncSession) -> None:
    await register_user(db_session, email="victim@x.com", password="pw123456")
    with pytest.raises(FederatedEmailUnverified):
        await federated_login(
            db_session, _profile(federated_id="g-evil", email="victim@x.com", email_verified=False)
        )

    assert await get_user_by_federated_id(db_session, "g-evil") is None
    assert await _user_count(db_session) == 1


@pytest.mark.asyncio
async def test_federated_login_refuses_unverified_email_signup(db_session: AsyncSession) -> None:
    with pytest.raises(FederatedEmailUnverified):
        await federated_login(db_session, _profile(email_verified=False))
    assert await _user_count(db_session) == 0


@pytest.mark.asyncio
async def test_federated_login_known_subject_skips_email_check(db_session: AsyncSession) -> None:
    first = await federated_login(db_session, _profile())
    again = await federated_login(db_session, _profile(email_verified=False))
    assert again.id == first.id


# ── Password reset ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reset_password_replaces_hash(db_session: AsyncSession) -> None:
    await register_user(db_session, email="reset@x.com", password="oldpass1")
    await reset_password(db_session, email="reset@x.com", new_password="newpass1")

    user = await get_user_by_email(db_session, "reset@x.com")
    assert verify_password("newpass1", user.password_hash)
    with pytest.raises(InvalidCredentials):
        await authenticate_user(db_session, "reset@x.com", "oldpass1")


@pytest.mark.asyncio
async def test_reset_password_unknown_user(db_session: AsyncSession) -> None:
    with pytest.raises(UserNotFound):
        await reset_password(db_session, email="ghost@x.com", new_password="newpass1")
