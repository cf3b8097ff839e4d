"""
services/auth_service.py — Authentication business logic.

Responsibilities:
  - Registration, login, logout and refresh-token rotation
  - Email verification and password reset (single-use hashed tokens)
  - OAuth sign-in (find-or-create from a verified provider identity)

Construction:
  AuthService receives every collaborator (token service, email service,
  rate limiter, identity verifier, settings) in its constructor. The app
  factory builds one per app and stores it on app.extensions["auth_service"].

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g or current_app; the caller's IP and
    User-Agent arrive in an explicit RequestContext
  - flush() only; commit is the route's job. The one exception is a failed
    login: its audit entry is committed before the error is raised so the
    trail survives the error response.

Token design:
  - Access token: JWT (HS256), 15 min by default, returned in the body
  - Refresh token: JWT (HS256), 7 days by default, stored as a SHA-256 hash
    and handed to the route, which moves it into an HTTP-only cookie
  - Verification / reset links: 32 random bytes, stored as SHA-256 hashes

Authentication failures stay generic: an unknown email, a wrong password
and a deactivated account all produce the same INVALID_CREDENTIALS.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from backend.app.constants import (
    DEFAULT_ROLE,
    EMAIL_VERIFICATION_TTL_HOURS,
    PASSWORD_RESET_TTL_HOURS,
    AuditAction,
    Provider,
)
from backend.app.context import RequestContext
from backend.app.errors import AppError, ErrorCode
from backend.app.models.types import utcnow
from backend.app.models.user import User
from backend.app.repositories import user_repository
from backend.app.services import audit_service
from backend.app.services.email_service import EmailDeliveryError, EmailService, redact_email
from backend.app.services.identity_verifier import (
    IdentityVerificationError,
    IdentityVerifier,
    OAuthIdentity,
)
from backend.app.services.passwords import generate_internal_password, set_password, verify_password
from backend.app.services.rate_limiter import FixedWindowRateLimiter
from backend.app.services.token_service import TokenService, generate_random_token, hash_token
from backend.app.services.user_service import build_session_user, build_user_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSettings:
    bcrypt_rounds: int = 12
    failure_delay_ms: tuple[int, int] = (200, 300)
    expose_dev_tokens: bool = False
    skip_email_send: bool = False
    revoke_sessions_on_verify: bool = False
    enable_mock_social_auth: bool = False

    @classmethod
    def from_config(cls, config) -> "AuthSettings":
        return cls(
            bcrypt_rounds=config.get("BCRYPT_LOG_ROUNDS", 12),
            failure_delay_ms=tuple(config.get("LOGIN_FAILURE_DELAY_MS", (200, 300))),
            expose_dev_tokens=config.get("EXPOSE_DEV_TOKENS", False),
            skip_email_send=config.get("SKIP_EMAIL_SEND", False),
            revoke_sessions_on_verify=config.get("REVOKE_SESSIONS_ON_VERIFY", False),
            enable_mock_social_auth=config.get("ENABLE_MOCK_SOCIAL_AUTH", False),
        )


def _invalid_credentials() -> AppError:
    return AppError(
        ErrorCode.INVALID_CREDENTIALS,
        "The email or password is incorrect.",
        401,
    )


def _invalid_link_token() -> AppError:
    return AppError(
        ErrorCode.INVALID_OR_EXPIRED_TOKEN,
        "The link is invalid or has expired.",
        400,
        field="token",
    )


def _user_not_found() -> AppError:
    return AppError(
        ErrorCode.USER_NOT_FOUND,
        "No account exists for this email address.",
        404,
        field="email",
    )


class AuthService:

    def __init__(
            self,
            tokens: TokenService,
            email: EmailService,
            rate_limiter: FixedWindowRateLimiter,
            identity_verifier: IdentityVerifier,
            settings: AuthSettings | None = None,
            sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.tokens = tokens
        self.email = email
        self.rate_limiter = rate_limiter
        self.identity_verifier = identity_verifier
        self.settings = settings or AuthSettings()
        self._sleep = sleep

    # ── Private helpers ────────────────────────────────────────────────────

    def _session_payload(
            self,
            session: Session,
            user: User,
            ctx: RequestContext,
    ) -> dict:
        """Issues and persists a token pair; builds the login-style response."""
        access_token, refresh_token = self.tokens.issue_token_pair(
            session, user.id, user_agent=ctx.user_agent, ip=ctx.ip,
        )
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": self.tokens.access_expires_in,
            "user": build_session_user(user),
        }

    def _failure_delay(self) -> None:
        low, high = self.settings.failure_delay_ms
        if high > 0:
            self._sleep(random.uniform(low, high) / 1000.0)

    @property
    def _email_bypass(self) -> bool:
        """
        Development bypass: SKIP_EMAIL_SEND in the settings, or an email
        service that only logs. Link tokens are then handed back directly.
        """
        return self.settings.skip_email_send or getattr(self.email, "skip_send", False) is True

    def _issue_verification_token(self, user: User) -> str:
        token = generate_random_token()
        user.email_verification_token = hash_token(token)
        user.email_verification_expires = utcnow() + timedelta(hours=EMAIL_VERIFICATION_TTL_HOURS)
        return token

    def _record_login_failure(
            self,
            session: Session,
            user: User | None,
            ctx: RequestContext,
            reason: str,
    ) -> None:
        logger.warning("Failed login from %s (%s).", ctx.ip, reason)
        if user is None:
            return
        audit_service.record(
            session,
            AuditAction.LOGIN_FAILURE,
            performed_by=user.id,
            target=user.id,
            details=f"Failed login: {reason}",
            metadata={"reason": reason},
            ctx=ctx,
        )
        session.commit()

    # ── Registration ───────────────────────────────────────────────────────

    def register(
            self,
            session: Session,
            ctx: RequestContext,
            first_name: str,
            last_name: str,
            email: str,
            password: str,
            confirm_password: str,
    ) -> dict:
        """
        Creates an unverified CUSTOMER account and signs it in.

        Tokens are issued straight away; login (not register) is where an
        unverified email blocks access.

        Raises:
          AppError(PASSWORD_MISMATCH, 400)
          AppError(EMAIL_IN_USE, 409) — email owned by an active or inactive user

        Returns: login payload (+ verification_token when dev tokens are exposed)
        """
        if password != confirm_password:
            raise AppError(
                ErrorCode.PASSWORD_MISMATCH,
                "Password and confirmation do not match.",
                400,
                field="confirm_password",
            )

        email = user_repository.normalize_email(email)
        if user_repository.email_in_use(email, session):
            raise AppError(
                ErrorCode.EMAIL_IN_USE,
                "This email address is already registered.",
                409,
                field="email",
            )

        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            provider=Provider.EMAIL,
            role=DEFAULT_ROLE,
            is_email_verified=False,
        )
        set_password(user, password, self.settings.bcrypt_rounds)
        verification_token = self._issue_verification_token(user)
        session.add(user)
        session.flush()  # populate user.id before tokens and audit

        audit_service.record(
            session,
            AuditAction.USER_CREATE,
            performed_by=user.id,
            target=user.id,
            details="User registered with email and password",
            metadata={"email": email, "provider": Provider.EMAIL.value},
            ctx=ctx,
        )

        try:
            self.email.send_verification_email(email, verification_token)
        except EmailDeliveryError:
            # The account is usable; the user can ask for a new link.
            logger.warning("Verification email to %s was not delivered.", redact_email(email))

        result = self._session_payload(session, user, ctx)
        if self.settings.expose_dev_tokens:
            result["verification_token"] = verification_token
        return result

    # ── Login / refresh / logout ───────────────────────────────────────────

    def login(
            self,
            session: Session,
            ctx: RequestContext,
            email: str,
            password: str,
    ) -> dict:
        """
        Raises:
          AppError(RATE_LIMITED, 429)        — too many attempts from this IP
          AppError(INVALID_CREDENTIALS, 401) — unknown email, wrong password
                                               or deactivated account
          AppError(EMAIL_NOT_VERIFIED, 403)  — correct password, email unverified
        """
        decision = self.rate_limiter.consume(ctx.ip)
        if not decision.allowed:
            raise AppError(
                ErrorCode.RATE_LIMITED,
                "Too many login attempts. Please try again later.",
                429,
                details={"retry_after": decision.retry_after},
            )

        user = user_repository.find_by_email(email, session, include_inactive=True)

        if user is None or not verify_password(password, user.password_hash):
            self._record_login_failure(session, user, ctx, "invalid credentials")
            self._failure_delay()
            raise _invalid_credentials()

        if not user.is_active:
            self._record_login_failure(session, user, ctx, "account deactivated")
            self._failure_delay()
            raise _invalid_credentials()

        if not user.is_email_verified:
            raise AppError(
                ErrorCode.EMAIL_NOT_VERIFIED,
                "Please verify your email address before logging in.",
                403,
            )

        user.last_login_at = utcnow()
        result = self._session_payload(session, user, ctx)
        audit_service.record(
            session,
            AuditAction.LOGIN_SUCCESS,
            performed_by=user.id,
            target=user.id,
            details="User logged in",
            ctx=ctx,
        )
        logger.info("User %s logged in from %s.", user.id, ctx.ip)
        return result

    def refresh(
            self,
            session: Session,
            ctx: RequestContext,
            refresh_token: str | None,
    ) -> dict:
        """
        Rotates the refresh token: the presented one is consumed, a new pair
        is issued.

        Raises:
          AppError(TOKEN_MISSING, 401)
          AppError(REFRESH_TOKEN_INVALID, 401) — bad, expired, replayed, or
            the owner is no longer active
        """
        if not refresh_token:
            raise AppError(
                ErrorCode.TOKEN_MISSING,
                "No refresh token provided.",
                401,
            )

        user_id, access_token, new_refresh_token = self.tokens.rotate_refresh_token(
            session, refresh_token, user_agent=ctx.user_agent, ip=ctx.ip,
        )

        user = user_repository.find_by_id(user_id, session, include_inactive=False)
        if user is None:
            raise AppError(
                ErrorCode.REFRESH_TOKEN_INVALID,
                "The refresh token is invalid, expired, or has been revoked.",
                401,
            )

        return {
            "access_token": access_token,
            "refresh_token": new_refresh_token,
            "expires_in": self.tokens.access_expires_in,
            "user": build_session_user(user),
        }

    def logout(self, session: Session, refresh_token: str | None) -> dict:
        """Revokes the presented refresh token if it exists. Idempotent."""
        if refresh_token:
            self.tokens.revoke_token(session, refresh_token)
        return {"message": "Logged out successfully."}

    # ── Password reset ─────────────────────────────────────────────────────

    def forgot_password(self, session: Session, email: str) -> dict:
        """
        Raises:
          AppError(USER_NOT_FOUND, 404)
          AppError(EMAIL_SEND_FAILED, 500) — delivery failed and the
            development bypass is off; the reset fields are cleared again
        """
        user = user_repository.find_by_email(email, session, include_inactive=False)
        if user is None:
            raise _user_not_found()

        reset_token = generate_random_token()
        user.password_reset_token = hash_token(reset_token)
        user.password_reset_expires = utcnow() + timedelta(hours=PASSWORD_RESET_TTL_HOURS)
        session.flush()

        try:
            self.email.send_password_reset_email(user.email, reset_token)
        except EmailDeliveryError:
            if not self._email_bypass:
                user.password_reset_token = None
                user.password_reset_expires = None
                session.flush()
                raise AppError(
                    ErrorCode.EMAIL_SEND_FAILED,
                    "Error sending email. Please try again later.",
                    500,
                )

        if self._email_bypass:
            # keep the token usable and hand it back
            return {
                "message": "Password reset link generated (email sending skipped in development).",
                "dev_token": reset_token,
            }

        result = {"message": "Password reset email sent."}
        if self.settings.expose_dev_tokens:
            result["dev_token"] = reset_token
        return result

    def reset_password(
            self,
            session: Session,
            ctx: RequestContext,
            token: str,
            password: str,
    ) -> dict:
        """
        Sets a new password from a valid reset link, then signs the user out
        everywhere. An account created through OAuth becomes a local account.

        Raises:
          AppError(INVALID_OR_EXPIRED_TOKEN, 400) — password left untouched
        """
        user = user_repository.find_by_token_hash(
            User.password_reset_token,
            User.password_reset_expires,
            hash_token(token),
            utcnow(),
            session,
        )
        if user is None or not user.is_active:
            raise _invalid_link_token()

        set_password(user, password, self.settings.bcrypt_rounds)
        user.password_reset_token = None
        user.password_reset_expires = None
        if user.provider is not Provider.EMAIL:
            user.provider = Provider.EMAIL
        session.flush()

        self.tokens.revoke_all_for_user(session, user.id)
        audit_service.record(
            session,
            AuditAction.PASSWORD_RESET,
            performed_by=user.id,
            target=user.id,
            details="Password reset via emailed link",
            ctx=ctx,
        )
        return {"message": "Password has been reset. Please log in with your new password."}

    # ── Email verification ─────────────────────────────────────────────────

    def verify_email(self, session: Session, token: str) -> dict:
        """
        Raises:
          AppError(INVALID_OR_EXPIRED_TOKEN, 400) — unknown, expired or already used
        """
        user = user_repository.find_by_token_hash(
            User.email_verification_token,
            User.email_verification_expires,
            hash_token(token),
            utcnow(),
            session,
        )
        if user is None:
            raise _invalid_link_token()

        user.is_email_verified = True
        user.email_verified_at = utcnow()
        user.email_verification_token = None
        user.email_verification_expires = None
        session.flush()

        if self.settings.revoke_sessions_on_verify:
            self.tokens.revoke_all_for_user(session, user.id)

        return {
            "message": "Email verified successfully. You can now log in.",
            "user": build_user_dict(user),
        }

    def resend_verification(self, session: Session, email: str) -> dict:
        """
        Raises:
          AppError(USER_NOT_FOUND, 404)
          AppError(ALREADY_VERIFIED, 400)
          AppError(EMAIL_SEND_FAILED, 500) — unless the development bypass is on
        """
        user = user_repository.find_by_email(email, session, include_inactive=False)
        if user is None:
            raise _user_not_found()
        if user.is_email_verified:
            raise AppError(
                ErrorCode.ALREADY_VERIFIED,
                "This email address is already verified.",
                400,
                field="email",
            )

        verification_token = self._issue_verification_token(user)
        session.flush()

        try:
            self.email.send_verification_email(user.email, verification_token)
        except EmailDeliveryError:
            if not self._email_bypass:
                raise AppError(
                    ErrorCode.EMAIL_SEND_FAILED,
                    "Error sending verification email. Please try again later.",
                    500,
                )

        if self._email_bypass:
            return {
                "message": "Verification email would be sent (development mode).",
                "verification_token": verification_token,
                "verification_url": self.email.verification_url(verification_token),
            }

        result = {"message": "Verification email has been sent."}
        if self.settings.expose_dev_tokens:
            result["verification_token"] = verification_token
        return result

    def check_email(self, session: Session, email: str) -> dict:
        user = user_repository.find_by_email(email, session, include_inactive=False)
        return {
            "exists": user is not None,
            "is_verified": bool(user is not None and user.is_email_verified),
        }

    # ── OAuth ──────────────────────────────────────────────────────────────

    def oauth_login(
            self,
            session: Session,
            ctx: RequestContext,
            provider: Provider | str,
            credential: dict,
    ) -> dict:
        """
        Raises:
          AppError(PROVIDER_VALIDATION_FAILED, 400) — credential rejected or
            no email in the verified identity
        """
        try:
            identity = self.identity_verifier.verify(provider, credential)
        except IdentityVerificationError as exc:
            logger.warning("OAuth sign-in via %s rejected: %s", provider, exc)
            raise AppError(
                ErrorCode.PROVIDER_VALIDATION_FAILED,
                str(exc) or "Error validating provider credentials.",
                400,
            )
        return self._complete_social_login(session, ctx, identity)

    def mock_social_login(
            self,
            session: Session,
            ctx: RequestContext,
            provider: Provider | str,
            email: str,
            first_name: str | None = None,
            last_name: str | None = None,
    ) -> dict:
        """Development-only sign-in with a caller-supplied identity."""
        if not self.settings.enable_mock_social_auth:
            raise AppError(ErrorCode.NOT_FOUND, "Endpoint not found.", 404)

        identity = OAuthIdentity(
            provider=Provider(provider),
            email=email,
            given_name=first_name,
            family_name=last_name,
            subject=f"mock-{Provider(provider).value}-{user_repository.normalize_email(email)}",
        )
        return self._complete_social_login(session, ctx, identity)

    def _complete_social_login(
            self,
            session: Session,
            ctx: RequestContext,
            identity: OAuthIdentity,
    ) -> dict:
        email = user_repository.normalize_email(identity.email)
        user = user_repository.find_by_email(email, session, include_inactive=True)

        if user is None:
            user = User(
                first_name=(identity.given_name or identity.provider.value.title())[:50],
                last_name=(identity.family_name or "User")[:50],
                email=email,
                provider=identity.provider,
                provider_id=identity.subject,
                role=DEFAULT_ROLE,
                is_email_verified=True,
                email_verified_at=utcnow(),
            )
            set_password(user, generate_internal_password(), self.settings.bcrypt_rounds)
            session.add(user)
            session.flush()
            audit_service.record(
                session,
                AuditAction.USER_CREATE,
                performed_by=user.id,
                target=user.id,
                details=f"User created via {identity.provider.value} sign-in",
                metadata={"email": email, "provider": identity.provider.value},
                ctx=ctx,
            )
        elif not user.is_active:
            raise _invalid_credentials()
        else:
            if user.provider is not identity.provider:
                user.provider = identity.provider
                user.provider_id = identity.subject
            if not user.is_email_verified:
                # The provider has vouched for this address.
                user.is_email_verified = True
                user.email_verified_at = utcnow()
                user.email_verification_token = None
                user.email_verification_expires = None

        user.last_login_at = utcnow()
        result = self._session_payload(session, user, ctx)
        audit_service.record(
            session,
            AuditAction.LOGIN_SUCCESS,
            performed_by=user.id,
            target=user.id,
            details=f"User logged in via {identity.provider.value}",
            ctx=ctx,
        )
        return result
