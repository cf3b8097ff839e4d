"""
models/user.py — User table definition.

No business logic. No imports from services or routes.

Secrets stored on this row (password_hash and the two single-use token
hashes) are never serialised; services build response dicts field by field.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Integer, String, Text, false, func, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.constants import DEFAULT_ROLE, Provider, Role
from backend.app.extensions import db
from backend.app.models.types import UTCDateTime, utcnow


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        # Local accounts cannot exist without an email; OAuth accounts may.
        CheckConstraint(
            "provider <> 'email' OR email IS NOT NULL",
            name="ck_users_email_required_for_local",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name:  Mapped[str] = mapped_column(String(50), nullable=False)

    # Always stored lower-cased; uniqueness spans active and inactive rows.
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
    )

    # bcrypt hash. OAuth-created accounts get a random, never-disclosed password.
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    provider: Mapped[Provider] = mapped_column(
        Enum(Provider, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=Provider.EMAIL,
    )
    # External subject id for google / facebook / apple accounts.
    provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
        default=DEFAULT_ROLE,
    )

    # ── Email verification ─────────────────────────────────────────────────
    is_email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    email_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    # SHA-256 of the emailed token; the plaintext is never stored.
    email_verification_token:   Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    email_verification_expires: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # ── Password reset ─────────────────────────────────────────────────────
    password_reset_token:   Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    password_reset_expires: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    password_changed_at:    Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # ── Soft delete ────────────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
        index=True,
    )
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    deactivated_by: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    deactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Privileged free text; only the admin notes endpoint returns it.
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r} role={self.role}>"
