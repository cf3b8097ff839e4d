"""
repositories/user_repository.py — Data access for User rows.

Responsibilities:
  - Pure DB reads (no Flask, no HTTP, no business rules)
  - Every read takes an explicit `include_inactive` flag. Soft-deleted users
    are excluded unless the caller asks for them; there is no hidden default
    scope anywhere else in the code base.

Writes (add/flush) stay in the services; commits are the route's job.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.constants import Role
from backend.app.models.user import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _active_filter(stmt, include_inactive: bool):
    if include_inactive:
        return stmt
    return stmt.where(User.is_active.is_(True))


def find_by_id(
        user_id: int,
        session: Session,
        include_inactive: bool = False,
) -> User | None:
    """Returns the User with `user_id`, or None (also None when inactive and excluded)."""
    stmt = _active_filter(select(User).where(User.id == user_id), include_inactive)
    return session.execute(stmt).scalar_one_or_none()


def find_by_email(
        email: str,
        session: Session,
        include_inactive: bool = False,
) -> User | None:
    """Case-insensitive lookup by email."""
    stmt = select(User).where(func.lower(User.email) == normalize_email(email))
    stmt = _active_filter(stmt, include_inactive)
    return session.execute(stmt).scalar_one_or_none()


def find_by_token_hash(
        column,
        expires_column,
        token_hash: str,
        now,
        session: Session,
) -> User | None:
    """
    Looks up the user owning a single-use token hash whose expiry is still in
    the future. Used for both email verification and password reset links.
    """
    stmt = select(User).where(
        column == token_hash,
        expires_column.is_not(None),
        expires_column > now,
    )
    return session.execute(stmt).scalar_one_or_none()


def email_in_use(
        email: str,
        session: Session,
        exclude_user_id: int | None = None,
) -> bool:
    """True if any user, active or not, already owns `email`."""
    stmt = select(User.id).where(func.lower(User.email) == normalize_email(email))
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    return session.execute(stmt.limit(1)).first() is not None


def list_users(session: Session, include_inactive: bool = False) -> list[User]:
    stmt = _active_filter(select(User), include_inactive).order_by(User.created_at.asc(), User.id.asc())
    return list(session.execute(stmt).scalars().all())


def count_users(
        session: Session,
        include_inactive: bool = True,
        role: Role | None = None,
        is_email_verified: bool | None = None,
        is_active: bool | None = None,
) -> int:
    stmt = _active_filter(select(func.count(User.id)), include_inactive)
    if role is not None:
        stmt = stmt.where(User.role == role)
    if is_email_verified is not None:
        stmt = stmt.where(User.is_email_verified.is_(is_email_verified))
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    return session.execute(stmt).scalar_one()
