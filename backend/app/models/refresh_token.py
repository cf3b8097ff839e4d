"""
models/refresh_token.py — RefreshToken table definition.

No business logic. No imports from services or routes.

One row per issued refresh token. Deleting the row revokes the session:
rotation, logout and bulk revocation are all plain DELETEs.

FK policy: user_id ON DELETE CASCADE — token is owned by the user;
both are deleted together.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.constants import TokenType
from backend.app.extensions import db
from backend.app.models.types import UTCDateTime, utcnow


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    __table_args__ = (
        Index("ix_refresh_tokens_user_type", "user_id", "type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE: token is destroyed when its owning user is deleted.
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # SHA-256 hex digest of the signed token, never the token itself.
    # token_service.hash_token() computes it before any DB read/write.
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=TokenType.REFRESH.value,
    )

    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="unknown")
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, default="unknown")

    # Every lookup filters on expires_at; `flask purge-expired-tokens` deletes
    # the stale rows.
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"expires_at={self.expires_at}>"
        )
