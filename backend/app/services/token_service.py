"""
services/token_service.py — Access / refresh token issuance and lifecycle.

Token design:
  - Both token kinds are HS256 JWTs carrying sub (user_id as str), type
    ("access" | "refresh"), a random fingerprint, iat and exp.
  - The fingerprint makes every issued token unique, even when two tokens
    are minted for the same user within the same second.
  - Refresh tokens are persisted as the SHA-256 hex digest of the signed
    token, never the token itself. Deleting the row revokes the session.

Rotation (one-time use):
  The old row is removed with a single conditional DELETE
  (token_hash = :h AND expires_at > now). Exactly one caller can see
  rowcount == 1; every concurrent replay of the same token sees 0 and is
  rejected with REFRESH_TOKEN_INVALID.

Layer rules:
  - No flask.request / flask.g. The service is constructed by the app
    factory with its settings and never reads current_app itself.
  - flush() only; commit is the route's job.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

import jwt
from sqlalchemy import delete
from sqlalchemy.orm import Session

from backend.app.constants import TokenType
from backend.app.errors import AppError, ErrorCode
from backend.app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)

DEFAULT_DURATION = timedelta(days=7)

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


# ── Helpers ────────────────────────────────────────────────────────────────

def parse_duration(value: str | None) -> timedelta:
    """
    Parses "<integer><s|m|h|d>" into a timedelta.

    Anything else (empty, unknown unit, non-numeric) falls back to 7 days.
    The fallback hides configuration mistakes, so it is logged loudly.
    """
    match = _DURATION_RE.match(value or "")
    if match is None:
        logger.warning(
            "Unrecognised token lifetime %r; falling back to %s.",
            value,
            DEFAULT_DURATION,
        )
        return DEFAULT_DURATION
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


def generate_random_token() -> str:
    """32 random bytes, hex encoded. Used for email verification and reset links."""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest. Only this value is ever stored."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _invalid_refresh_token() -> AppError:
    return AppError(
        ErrorCode.REFRESH_TOKEN_INVALID,
        "The refresh token is invalid, expired, or has been revoked.",
        401,
    )


# ── Service ────────────────────────────────────────────────────────────────

class TokenService:

    def __init__(
            self,
            secret_key: str,
            algorithm: str = "HS256",
            access_token_life: str = "15m",
            refresh_token_life: str = "7d",
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl = parse_duration(access_token_life)
        self.refresh_ttl = parse_duration(refresh_token_life)

    @classmethod
    def from_config(cls, config) -> "TokenService":
        return cls(
            secret_key=config["JWT_SECRET_KEY"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            access_token_life=config.get("JWT_ACCESS_TOKEN_LIFE", "15m"),
            refresh_token_life=config.get("JWT_REFRESH_TOKEN_LIFE", "7d"),
        )

    # ── Issuance ───────────────────────────────────────────────────────────

    def _encode(self, user_id: int, token_type: TokenType, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "type": token_type.value,
            "fingerprint": secrets.token_hex(8),
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def issue_access_token(self, user_id: int) -> str:
        return self._encode(user_id, TokenType.ACCESS, self.access_ttl)

    def issue_refresh_token(self, user_id: int) -> str:
        return self._encode(user_id, TokenType.REFRESH, self.refresh_ttl)

    @property
    def access_expires_in(self) -> int:
        """Access token lifetime in whole seconds (the `expires_in` response field)."""
        return int(self.access_ttl.total_seconds())

    @property
    def refresh_max_age(self) -> int:
        return int(self.refresh_ttl.total_seconds())

    # ── Verification ───────────────────────────────────────────────────────

    def decode(self, token: str, expected_type: TokenType) -> dict:
        """
        Verifies signature, expiry and token type.

        Raises the underlying jwt.InvalidTokenError subclasses unchanged
        (ExpiredSignatureError included); callers map them to their own
        error codes. A wrong `type` claim raises jwt.InvalidTokenError.
        """
        payload = jwt.decode(
            token,
            self.secret_key,
            algorithms=[self.algorithm],
            options={"require": ["sub", "exp", "iat"]},
        )
        if payload.get("type") != expected_type.value:
            raise jwt.InvalidTokenError(
                f"Expected a {expected_type.value} token, got {payload.get('type')!r}."
            )
        try:
            payload["user_id"] = int(payload["sub"])
        except (TypeError, ValueError):
            raise jwt.InvalidTokenError("The 'sub' claim is not a valid user id.")
        return payload

    # ── Persistence ────────────────────────────────────────────────────────

    def persist_refresh_token(
            self,
            session: Session,
            user_id: int,
            token: str,
            user_agent: str | None = None,
            ip: str | None = None,
    ) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            token_hash=hash_token(token),
            type=TokenType.REFRESH.value,
            user_agent=(user_agent or "unknown")[:512],
            ip_address=(ip or "unknown")[:45],
            expires_at=datetime.now(timezone.utc) + self.refresh_ttl,
        )
        session.add(record)
        # flush so the row exists before we return; commit is the route's job
        session.flush()
        return record

    def issue_token_pair(
            self,
            session: Session,
            user_id: int,
            user_agent: str | None = None,
            ip: str | None = None,
    ) -> tuple[str, str]:
        """Issues an access token and a persisted refresh token."""
        access_token = self.issue_access_token(user_id)
        refresh_token = self.issue_refresh_token(user_id)
        self.persist_refresh_token(session, user_id, refresh_token, user_agent, ip)
        return access_token, refresh_token

    def rotate_refresh_token(
            self,
            session: Session,
            old_token: str,
            user_agent: str | None = None,
            ip: str | None = None,
    ) -> tuple[int, str, str]:
        """
        Consumes `old_token` and issues a fresh access + refresh pair.

        Raises:
          AppError(REFRESH_TOKEN_INVALID, 401) — bad signature, wrong type,
            expired, unknown, or already consumed by another request.

        Returns: (user_id, access_token, refresh_token)
        """
        try:
            payload = self.decode(old_token, TokenType.REFRESH)
        except jwt.InvalidTokenError:
            raise _invalid_refresh_token()

        user_id = payload["user_id"]
        result = session.execute(
            delete(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_token(old_token),
                RefreshToken.user_id == user_id,
                RefreshToken.expires_at > datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Refresh token replay or unknown token for user %s.", user_id)
            raise _invalid_refresh_token()

        access_token, refresh_token = self.issue_token_pair(session, user_id, user_agent, ip)
        return user_id, access_token, refresh_token

    # ── Revocation ─────────────────────────────────────────────────────────

    def revoke_token(self, session: Session, token: str) -> int:
        """Deletes the row for `token` if one exists. Returns the number of rows removed."""
        result = session.execute(
            delete(RefreshToken)
            .where(RefreshToken.token_hash == hash_token(token))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def revoke_all_for_user(self, session: Session, user_id: int) -> int:
        result = session.execute(
            delete(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Revoked %d refresh token(s) for user %s.", result.rowcount, user_id)
        return result.rowcount

    def purge_expired(self, session: Session) -> int:
        """Deletes refresh tokens whose expiry has passed."""
        result = session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
