"""
Identity service — pure business logic for authentication.

Rules:
  - Zero FastAPI imports.
  - Zero direct DB driver calls — only SQLAlchemy async session.
  - All I/O functions are async def.
  - Emails are canonicalised (trimmed, lower-cased) before every lookup/write.
"""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.oauth import FederatedProfile
from app.auth.otp import PendingUser
from app.auth.utils import (
    canonical_email,
    default_display_name,
    dummy_verify,
    hash_password,
    verify_password,
)
from app.exceptions import (
    FederatedEmailUnverified,
    FederatedIdentityInUse,
    InvalidCredentials,
    UserAlreadyExists,
    UserNotFound,
)

logger = logging.getLogger(__name__)


# ── Credential store ──────────────────────────────────────────────────────────

async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(
        select(User).where(User.email == canonical_email(email))
    )
    return result.scalar_one_or_none()


async def get_user_by_id(
    session: AsyncSession, user_id: uuid.UUID
) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_federated_id(
    session: AsyncSession, federated_id: str
) -> User | None:
    result = await session.execute(
        select(User).where(User.federated_id == federated_id)
    )
    return result.scalar_one_or_none()


_CREDENTIAL_CHECK = "ck_users_has_credential"


async def _flush_unique(session: AsyncSession, email: str) -> None:
    """
    Flush pending writes, turning unique-index violations into domain conflicts.

    Postgres and SQLite both name the offending column or index in the
    driver message.  Any other integrity failure (the credential CHECK) is a
    programming error and propagates unchanged.
    """
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        detail = str(exc.orig)
        if _CREDENTIAL_CHECK in detail:
            raise
        if "federated_id" in detail:
            logger.info("Federated identity conflict for %s", email)
            raise FederatedIdentityInUse() from exc
        if "email" in detail:
            logger.info("Signup conflict for %s", email)
            raise UserAlreadyExists() from exc
        raise


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    display_name: str,
    password_hash: str | None = None,
    federated_id: str | None = None,
) -> User:
    """
    Insert a user and flush so uniqueness is checked before the response.

    The unique indexes are authoritative: a concurrent signup that slipped
    past the pre-check surfaces here as UserAlreadyExists, a provider subject
    already linked elsewhere as FederatedIdentityInUse.
    """
    email = canonical_email(email)
    user = User(
        email=email,
        display_name=display_name,
        password_hash=password_hash,
        federated_id=federated_id,
    )
    session.add(user)
    await _flush_unique(session, email)
    return user


async def update_user(session: AsyncSession, user: User, **changes: object) -> User:
    email = user.email
    for field, value in changes.items():
        setattr(user, field, value)
    await _flush_unique(session, email)
    return user


# ── Registration ──────────────────────────────────────────────────────────────

async def register_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    display_name: str | None = None,
) -> User:
    """
    Create a new user account via email + password (direct signup).

    Guard clauses (uniqueness checks) run first — the happy path is last.
    """
    if await get_user_by_email(session, email) is not None:
        raise UserAlreadyExists()

    return await create_user(
        session,
        email=email,
        display_name=display_name or default_display_name(email),
        password_hash=hash_password(password),
    )


async def prepare_pending_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    display_name: str | None = None,
) -> PendingUser:
    """
    Validate and stage an OTP-gated signup.

    The password is hashed here, once; the account is created from the
    returned payload after the code is confirmed.
    """
    if await get_user_by_email(session, email) is not None:
        raise UserAlreadyExists()

    return PendingUser(
        email=canonical_email(email),
        password_hash=hash_password(password),
        display_name=display_name or default_display_name(email),
    )


async def complete_pending_signup(
    session: AsyncSession, pending: PendingUser
) -> User:
    return await create_user(
        session,
        email=pending.email,
        display_name=pending.display_name,
        password_hash=pending.password_hash,
    )


# ── Authentication (email + password) ────────────────────────────────────────

async def authenticate_user(
    session: AsyncSession,
    email: str,
    password: str,
) -> User:
    """
    Verify credentials and return the User.

    Unknown email, federated-only account and wrong password all raise the
    same InvalidCredentials.  The dummy verify keeps the miss path as slow as
    a real hash check.
    """
    user = await get_user_by_email(session, email)
    if user is None or user.password_hash is None:
        dummy_verify()
        raise InvalidCredentials()
    if not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    return user


# ── Federated login ───────────────────────────────────────────────────────────

async def federated_login(
    session: AsyncSession, profile: FederatedProfile
) -> User:
    """
    Resolve a provider profile to a local account.

    Order:
      1. account already linked to this provider subject
      2. account with the same email → link the subject onto it
      3. otherwise create a password-less account

    Steps 2 and 3 trust the email, so they require the provider to have
    verified it; otherwise FederatedEmailUnverified is raised.
    """
    user = await get_user_by_federated_id(session, profile.federated_id)
    if user is not None:
        return user

    if not profile.email_verified:
        logger.warning(
            "Rejected %s login with unverified email %s", profile.provider.value, profile.email
        )
        raise FederatedEmailUnverified()

    user = await get_user_by_email(session, profile.email)
    if user is not None:
        logger.info("Linking %s identity onto existing account %s", profile.provider.value, user.id)
        return await update_user(session, user, federated_id=profile.federated_id)

    user = await create_user(
        session,
        email=profile.email,
        display_name=profile.display_name or default_display_name(profile.email),
        federated_id=profile.federated_id,
    )
    logger.info("Created account %s from %s login", user.id, profile.provider.value)
    return user


# ── Password reset ────────────────────────────────────────────────────────────

async def reset_password(
    session: AsyncSession,
    *,
    email: str,
    new_password: str,
) -> User:
    """
    Replace the user's password hash.

    Raises UserNotFound if the account was deleted between the OTP request
    and this call.  The caller has already checked the reset OTP.
    """
    user = await get_user_by_email(session, email)
    if user is None:
        raise UserNotFound()
    return await update_user(session, user, password_hash=hash_password(new_password))
