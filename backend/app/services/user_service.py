"""
services/user_service.py — Account self-service and shared user projections.

Responsibilities:
  - Profile read / update for the authenticated user
  - Password change (current password required)
  - Edit and soft-delete of an account by its owner or an administrator
  - build_user_dict / build_session_user: the only places a User becomes JSON

Layer rules:
  - Authorization (self-or-permission) is decided by the route decorator;
    this module only enforces the rules that depend on data, such as
    "only a SUPER_ADMIN acting on someone else may change a role".
  - flush() only; commit is the route's job.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from backend.app.constants import AuditAction, Role
from backend.app.context import RequestContext
from backend.app.errors import AppError, ErrorCode
from backend.app.models.types import utcnow
from backend.app.models.user import User
from backend.app.repositories import user_repository
from backend.app.services import audit_service
from backend.app.services.passwords import set_password, verify_password

logger = logging.getLogger(__name__)


# ── Projections ────────────────────────────────────────────────────────────

def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def build_session_user(user: User) -> dict:
    """Minimal projection returned with tokens."""
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "role": user.role.value,
    }


def build_user_dict(user: User) -> dict:
    """
    Full projection. Secrets (password hash, token hashes) and admin notes
    are never included.
    """
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "role": user.role.value,
        "provider": user.provider.value,
        "is_email_verified": user.is_email_verified,
        "email_verified_at": _iso(user.email_verified_at),
        "is_active": user.is_active,
        "deactivated_at": _iso(user.deactivated_at),
        "deactivation_reason": user.deactivation_reason,
        "last_login_at": _iso(user.last_login_at),
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def _snapshot(user: User, *fields: str) -> dict:
    values = {}
    for name in fields:
        value = getattr(user, name)
        values[name] = value.value if isinstance(value, Role) else value
    return values


# ── Shared lookups ─────────────────────────────────────────────────────────

def get_user_or_404(
        user_id: int,
        session: Session,
        include_inactive: bool = False,
) -> User:
    user = user_repository.find_by_id(user_id, session, include_inactive=include_inactive)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


def ensure_email_available(email: str, session: Session, exclude_user_id: int) -> str:
    email = user_repository.normalize_email(email)
    if user_repository.email_in_use(email, session, exclude_user_id=exclude_user_id):
        raise AppError(
            ErrorCode.EMAIL_IN_USE,
            "This email address is already in use.",
            409,
            field="email",
        )
    return email


def deactivate(
        user: User,
        session: Session,
        ctx: RequestContext,
        tokens,
        reason: str | None = None,
) -> None:
    """Soft delete: flags the row, records who did it, ends every session."""
    user.is_active = False
    user.deactivated_at = utcnow()
    user.deactivated_by = ctx.actor_id
    user.deactivation_reason = reason
    session.flush()
    tokens.revoke_all_for_user(session, user.id)
    audit_service.record(
        session,
        AuditAction.USER_DELETE,
        performed_by=ctx.actor_id,
        target=user.id,
        details="User account deactivated" + (" by self" if ctx.actor_id == user.id else " by admin"),
        metadata={"reason": reason, "soft_delete": True},
        ctx=ctx,
    )


# ── Self-service ───────────────────────────────────────────────────────────

def get_profile(session: Session, ctx: RequestContext) -> dict:
    return build_user_dict(get_user_or_404(ctx.actor_id, session))


def update_profile(
        session: Session,
        ctx: RequestContext,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
) -> dict:
    """
    Raises:
      AppError(EMAIL_IN_USE, 409)
    """
    user = get_user_or_404(ctx.actor_id, session)
    old_values = _snapshot(user, "first_name", "last_name", "email")

    if email is not None and user_repository.normalize_email(email) != user.email:
        user.email = ensure_email_available(email, session, exclude_user_id=user.id)
    if first_name:
        user.first_name = first_name
    if last_name:
        user.last_name = last_name
    session.flush()

    audit_service.record(
        session,
        AuditAction.USER_UPDATE,
        performed_by=user.id,
        target=user.id,
        details="User updated their profile",
        metadata={
            "old_values": old_values,
            "new_values": _snapshot(user, "first_name", "last_name", "email"),
        },
        ctx=ctx,
    )
    return build_user_dict(user)


def change_password(
        session: Session,
        ctx: RequestContext,
        current_password: str,
        new_password: str,
        bcrypt_rounds: int = 12,
) -> dict:
    """
    Raises:
      AppError(INVALID_CREDENTIALS, 401) — current password wrong. The failed
        attempt is audited and committed before the error propagates.
    """
    user = get_user_or_404(ctx.actor_id, session)

    if not verify_password(current_password, user.password_hash):
        audit_service.record(
            session,
            AuditAction.PASSWORD_RESET,
            performed_by=user.id,
            target=user.id,
            details="Failed password change attempt - incorrect current password",
            metadata={"success": False},
            ctx=ctx,
        )
        session.commit()
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "Current password is incorrect.",
            401,
            field="current_password",
        )

    set_password(user, new_password, bcrypt_rounds)
    session.flush()
    audit_service.record(
        session,
        AuditAction.PASSWORD_RESET,
        performed_by=user.id,
        target=user.id,
        details="User successfully changed password",
        metadata={"success": True},
        ctx=ctx,
    )
    return {"message": "Password changed successfully."}


# ── Owner-or-admin operations ──────────────────────────────────────────────

def edit_user(
        session: Session,
        ctx: RequestContext,
        user_id: int,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        role: str | None = None,
) -> dict:
    """
    Edits basic account fields. A role in the payload is applied only when
    the actor is a SUPER_ADMIN editing someone else; otherwise it is ignored.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(EMAIL_IN_USE, 409)
      AppError(INVALID_ROLE, 400)
    """
    user = get_user_or_404(user_id, session)
    actor = ctx.actor
    old_values = _snapshot(user, "first_name", "last_name", "email", "role")

    if email is not None and user_repository.normalize_email(email) != user.email:
        user.email = ensure_email_available(email, session, exclude_user_id=user.id)
    if first_name:
        user.first_name = first_name
    if last_name:
        user.last_name = last_name

    if role is not None and actor.role is Role.SUPER_ADMIN and actor.id != user.id:
        if role not in Role.values():
            raise AppError(
                ErrorCode.INVALID_ROLE,
                "Invalid role. Allowed roles are: " + ", ".join(Role.values()),
                400,
                field="role",
            )
        user.role = Role(role)
    session.flush()

    audit_service.record(
        session,
        AuditAction.USER_UPDATE,
        performed_by=actor.id,
        target=user.id,
        details="User details updated " + ("by self" if actor.id == user.id else "by admin"),
        metadata={
            "old_values": old_values,
            "new_values": _snapshot(user, "first_name", "last_name", "email", "role"),
        },
        ctx=ctx,
    )
    return {"message": "User updated successfully.", "user": build_session_user(user)}


def deactivate_user(
        session: Session,
        ctx: RequestContext,
        tokens,
        user_id: int,
        reason: str | None = None,
) -> dict:
    """
    Raises:
      AppError(USER_NOT_FOUND, 404) — unknown or already inactive
    """
    user = get_user_or_404(user_id, session)
    deactivate(user, session, ctx, tokens, reason)
    logger.info("User %s deactivated by %s.", user.id, ctx.actor_id)
    message = (
        "Your account has been deactivated."
        if ctx.actor_id == user.id
        else "User deactivated successfully."
    )
    return {"message": message}
