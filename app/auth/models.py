"""
Identity service — SQLAlchemy ORM models for the auth domain.

Tables owned by this module:
  - users    Accounts: canonical email, password hash, display name and the
             federated (Google) identity when one is linked.

OTP state is deliberately not persisted; see ``app.auth.otp``.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        # Every account must be able to sign in one way or another.
        sa.CheckConstraint(
            "password_hash IS NOT NULL OR federated_id IS NOT NULL",
            name="ck_users_has_credential",
        ),
    )

    # ── Primary key ──────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Authentication identifiers ────────────────────────────────────────────
    # Stored in canonical form (trimmed, lower-cased); the unique index is the
    # authoritative guard against duplicate signups.
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False, index=True
    )
    # nullable: federated-only users have no password
    password_hash: Mapped[str | None] = mapped_column(
        sa.String(255), nullable=True
    )
    # Provider subject id (Google "sub"); unique when present
    federated_id: Mapped[str | None] = mapped_column(
        sa.String(255), unique=True, nullable=True, index=True
    )

    # ── Profile ───────────────────────────────────────────────────────────────
    display_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)

    # ── Audit timestamps ──────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"
