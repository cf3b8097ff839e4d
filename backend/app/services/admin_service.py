"""
services/admin_service.py — SUPER_ADMIN user management.

Every function assumes the route has already enforced require_role(SUPER_ADMIN).
Every privileged mutation, and every read of admin notes, writes an audit
entry.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from backend.app.constants import HARD_DELETE_CONFIRMATION, AuditAction, Role
from backend.app.context import RequestContext
from backend.app.errors import AppError, ErrorCode
from backend.app.models.types import utcnow
from backend.app.repositories import user_repository
from backend.app.services import audit_service
from backend.app.services.user_service import (
    build_user_dict,
    deactivate,
    ensure_email_available,
    get_user_or_404,
)

logger = logging.getLogger(__name__)


def _validate_role(role: str) -> Role:
    if role not in Role.values():
        raise AppError(
            ErrorCode.INVALID_ROLE,
            "Invalid role. Allowed roles are: " + ", ".join(Role.values()),
            400,
            field="role",
        )
    return Role(role)


def _reject_self(ctx: RequestContext, user_id: int, code: str, message: str) -> None:
    if ctx.actor_id == user_id:
        raise AppError(code, message, 409)


# ── Reads ──────────────────────────────────────────────────────────────────

def list_users(session: Session, include_inactive: bool = False) -> dict:
    users = user_repository.list_users(session, include_inactive=include_inactive)
    return {
        "users": [build_user_dict(u) for u in users],
        "count": len(users),
    }


def get_user(session: Session, user_id: int, include_inactive: bool = False) -> dict:
    return build_user_dict(get_user_or_404(user_id, session, include_inactive=include_inactive))


def dashboard_stats(session: Session, include_inactive: bool = True) -> dict:
    total = user_repository.count_users(session, include_inactive=include_inactive)
    verified = user_repository.count_users(
        session, include_inactive=include_inactive, is_email_verified=True,
    )
    return {
        "stats": {
            "total_users": total,
            "admins": user_repository.count_users(
                session, include_inactive=include_inactive, role=Role.SUPER_ADMIN,
            ),
            "customers": user_repository.count_users(
                session, include_inactive=include_inactive, role=Role.CUSTOMER,
            ),
            "verified_users": verified,
            "unverified_users": total - verified,
            "inactive_users": (
                user_repository.count_users(session, include_inactive=True, is_active=False)
                if include_inactive
                else 0
            ),
        }
    }


def get_admin_notes(session: Session, ctx: RequestContext, user_id: int) -> dict:
    user = get_user_or_404(user_id, session, include_inactive=True)
    audit_service.record(
        session,
        AuditAction.ADMIN_ACTION,
        performed_by=ctx.actor_id,
        target=user.id,
        details=f"Admin viewed admin notes for user {user.id}",
        ctx=ctx,
    )
    return {
        "user_id": user.id,
        "email": user.email,
        "admin_notes": user.admin_notes or "",
        "has_notes": bool(user.admin_notes),
    }


# ── Mutations ──────────────────────────────────────────────────────────────

def change_role(session: Session, ctx: RequestContext, user_id: int, role: str) -> dict:
    """
    Raises:
      AppError(INVALID_ROLE, 400)
      AppError(USER_NOT_FOUND, 404)
      AppError(CANNOT_CHANGE_SELF, 409)
    """
    new_role = _validate_role(role)
    user = get_user_or_404(user_id, session)
    _reject_self(ctx, user.id, ErrorCode.CANNOT_CHANGE_SELF, "You cannot change your own role.")

    old_role = user.role
    user.role = new_role
    session.flush()

    audit_service.record(
        session,
        AuditAction.USER_ROLE_CHANGE,
        performed_by=ctx.actor_id,
        target=user.id,
        details=f"User role changed from {old_role.value} to {new_role.value}",
        metadata={"email": user.email, "old_role": old_role.value, "new_role": new_role.value},
        ctx=ctx,
    )
    return {
        "message": "User role updated successfully.",
        "user": {"id": user.id, "email": user.email, "role": user.role.value},
    }


def soft_delete(
        session: Session,
        ctx: RequestContext,
        tokens,
        user_id: int,
        reason: str | None = None,
) -> dict:
    """
    Raises:
      AppError(CANNOT_DELETE_SELF, 409)
      AppError(USER_NOT_FOUND, 404) — unknown or already inactive
    """
    _reject_self(ctx, user_id, ErrorCode.CANNOT_DELETE_SELF, "You cannot delete your own account.")
    user = get_user_or_404(user_id, session)
    deactivate(user, session, ctx, tokens, reason)
    return {"message": "User deactivated successfully."}


def restore(session: Session, ctx: RequestContext, user_id: int) -> dict:
    """
    Raises:
      AppError(USER_NOT_FOUND, 404)
    """
    user = get_user_or_404(user_id, session, include_inactive=True)
    user.is_active = True
    user.deactivated_at = None
    user.deactivated_by = None
    user.deactivation_reason = None
    session.flush()

    audit_service.record(
        session,
        AuditAction.USER_RESTORE,
        performed_by=ctx.actor_id,
        target=user.id,
        details="User account restored",
        ctx=ctx,
    )
    return {"message": "User restored successfully."}


def hard_delete(
        session: Session,
        ctx: RequestContext,
        tokens,
        user_id: int,
        confirmation: str | None,
        anonymize: bool = True,
) -> dict:
    """
    Permanently removes the account and its sessions. Audit entries about
    the user stay, with personal metadata scrubbed when `anonymize` is set.

    Raises:
      AppError(CANNOT_DELETE_SELF, 409)
      AppError(CONFIRMATION_REQUIRED, 400)
      AppError(USER_NOT_FOUND, 404)
    """
    _reject_self(ctx, user_id, ErrorCode.CANNOT_DELETE_SELF, "You cannot delete your own account.")
    if confirmation != HARD_DELETE_CONFIRMATION:
        raise AppError(
            ErrorCode.CONFIRMATION_REQUIRED,
            f"This action is permanent. Please provide the confirmation code: {HARD_DELETE_CONFIRMATION}",
            400,
            field="confirmation",
        )

    user = get_user_or_404(user_id, session, include_inactive=True)
    role = user.role.value

    if anonymize:
        audit_service.anonymize_target(session, user.id)
    tokens.revoke_all_for_user(session, user.id)
    session.delete(user)
    session.flush()

    audit_service.record(
        session,
        AuditAction.USER_DELETE,
        performed_by=ctx.actor_id,
        target=user_id,
        details=f"User {user_id} was permanently deleted",
        metadata={"role": role, "hard_delete": True, "anonymized": anonymize},
        ctx=ctx,
    )
    logger.info("User %s permanently deleted by %s.", user_id, ctx.actor_id)
    return {"message": "User permanently deleted."}


def admin_edit_user(
        session: Session,
        ctx: RequestContext,
        tokens,
        user_id: int,
        changes: dict,
) -> dict:
    """
    Extended edit: names, email, role, verification flag, activation, and
    timestamped append-only admin notes.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(CANNOT_CHANGE_SELF, 409) — role in payload for own account
      AppError(CANNOT_DELETE_SELF, 409) — deactivating own account
      AppError(INVALID_ROLE, 400)
      AppError(EMAIL_IN_USE, 409)
    """
    user = get_user_or_404(user_id, session, include_inactive=True)
    actor = ctx.actor

    if "role" in changes:
        _reject_self(ctx, user.id, ErrorCode.CANNOT_CHANGE_SELF, "You cannot change your own role.")
    if changes.get("is_active") is False:
        _reject_self(ctx, user.id, ErrorCode.CANNOT_DELETE_SELF, "You cannot deactivate your own account.")

    old_values = {
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "role": user.role.value,
        "is_email_verified": user.is_email_verified,
        "is_active": user.is_active,
    }
    applied: list[str] = []

    email = changes.get("email")
    if email is not None and user_repository.normalize_email(email) != user.email:
        user.email = ensure_email_available(email, session, exclude_user_id=user.id)
        applied.append("email changed")

    for field in ("first_name", "last_name"):
        if field in changes:
            setattr(user, field, changes[field])
            applied.append(f"{field.replace('_', ' ')} changed to {changes[field]}")

    if "role" in changes:
        user.role = _validate_role(changes["role"])
        applied.append(f"role changed to {user.role.value}")

    if "is_email_verified" in changes:
        user.is_email_verified = changes["is_email_verified"]
        user.email_verified_at = utcnow() if user.is_email_verified else None
        applied.append(f"email verification status changed to {user.is_email_verified}")

    if changes.get("admin_notes"):
        author = actor.full_name if actor is not None else f"Admin {ctx.actor_id}"
        note = f"[{utcnow().isoformat()}] {author}: {changes['admin_notes']}"
        user.admin_notes = f"{user.admin_notes}\n{note}" if user.admin_notes else note
        applied.append("admin notes updated")

    session.flush()

    if "is_active" in changes and changes["is_active"] != user.is_active:
        if changes["is_active"]:
            user.is_active = True
            user.deactivated_at = None
            user.deactivated_by = None
            user.deactivation_reason = None
            session.flush()
            applied.append("user account activated")
        else:
            deactivate(user, session, ctx, tokens, changes.get("notes"))
            applied.append("user account deactivated")

    audit_service.record(
        session,
        AuditAction.USER_UPDATE,
        performed_by=ctx.actor_id,
        target=user.id,
        details="Admin updated user: " + (", ".join(applied) or "no changes"),
        metadata={
            "old_values": old_values,
            "new_values": {
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email": user.email,
                "role": user.role.value,
                "is_email_verified": user.is_email_verified,
                "is_active": user.is_active,
                "admin_notes_updated": bool(changes.get("admin_notes")),
            },
            "notes": changes.get("notes"),
        },
        ctx=ctx,
    )
    return {
        "message": "User updated successfully by admin.",
        "user": {
            "id": user.id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
            "role": user.role.value,
            "is_active": user.is_active,
            "is_email_verified": user.is_email_verified,
            "has_admin_notes": bool(user.admin_notes),
        },
    }
