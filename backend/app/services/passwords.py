"""
services/passwords.py — Password hashing (bcrypt) and verification.

The raw password is never stored and never logged. Setting a password also
stamps password_changed_at, which invalidates access tokens issued earlier
(see middleware/auth_middleware.py).
"""

from __future__ import annotations

import secrets

import bcrypt

from backend.app.models.types import utcnow
from backend.app.models.user import User


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Constant-time comparison; malformed stored hashes count as a mismatch."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def set_password(user: User, password: str, rounds: int = 12) -> None:
    user.password_hash = hash_password(password, rounds)
    user.password_changed_at = utcnow()


def generate_internal_password() -> str:
    """Random password for OAuth-created accounts. Never returned to anyone."""
    return secrets.token_urlsafe(32)
