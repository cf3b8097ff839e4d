"""
middleware/auth_middleware.py — Authentication and authorization decorators.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies the JWT signature, expiry and type ("access")
  3. Loads the user; deactivated or deleted accounts are rejected
  4. Rejects tokens issued before the user's last password change
  5. Passes ctx=RequestContext(actor=user, ip, user_agent) to the view

@require_role(*roles)           — 403 FORBIDDEN unless the actor holds one of `roles`
@allow_self_or_permission(r, a) — allowed when the path user_id is the actor's
                                  own id, OR has_permission(actor, r, a, target)

Both authorization decorators must sit below @require_auth.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature, wrong type,
                         unknown/inactive user, or superseded by a password change
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
  FORBIDDEN      (403) — authenticated but not allowed
"""

from __future__ import annotations

import functools
import math
from typing import Callable

import jwt
from flask import current_app, request

from backend.app.constants import Role, TokenType
from backend.app.context import RequestContext
from backend.app.errors import AppError, ErrorCode
from backend.app.extensions import db
from backend.app.models.user import User
from backend.app.permissions import has_permission
from backend.app.repositories import user_repository


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @users_bp.route("/profile")
        @require_auth
        def profile(ctx: RequestContext):
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        actor = _authenticate_request()
        kwargs["ctx"] = RequestContext.from_request(actor)
        return f(*args, **kwargs)

    return decorated


def _token_invalid(message: str) -> AppError:
    return AppError(ErrorCode.TOKEN_INVALID, message, 401)


def _authenticate_request() -> User:
    """
    Performs the full access-token check and returns the acting User.

    Raises AppError on any authentication failure; the global error handler
    turns it into the JSON response.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _token_invalid("Authorization header must be in the format: Bearer <token>.")

    # ── Step 3: Verify signature, expiry and type ─────────────────────────
    tokens = current_app.extensions["auth_service"].tokens
    try:
        payload = tokens.decode(parts[1], TokenType.ACCESS)
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Use POST /auth/refresh-token to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        raise _token_invalid("The access token is invalid or has been tampered with.")

    # ── Step 4: Load the (active) user ────────────────────────────────────
    user = user_repository.find_by_id(payload["user_id"], db.session, include_inactive=False)
    if user is None:
        raise _token_invalid("The account for this token no longer exists or is deactivated.")

    # ── Step 5: Tokens minted before a password change are dead ──────────
    if user.password_changed_at is not None:
        changed_at = math.floor(user.password_changed_at.timestamp())
        if int(payload["iat"]) < changed_at:
            raise _token_invalid("Password was changed after this token was issued. Please log in again.")

    return user


def require_role(*roles: Role) -> Callable:
    """403 FORBIDDEN unless ctx.actor holds one of `roles`."""
    allowed = {Role(r) for r in roles}

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            ctx: RequestContext = kwargs["ctx"]
            if ctx.actor is None or ctx.actor.role not in allowed:
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You do not have permission to perform this action.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator


def allow_self_or_permission(resource: str, action: str, param: str = "user_id") -> Callable:
    """
    Grants access when the `param` path argument is the actor's own id, or
    when has_permission(actor, resource, action, {"id": target_id}) holds.
    """
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            ctx: RequestContext = kwargs["ctx"]
            target_id = kwargs.get(param)
            is_self = ctx.actor is not None and target_id == ctx.actor.id
            if not is_self and not has_permission(ctx.actor, resource, action, {"id": target_id}):
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You can only manage your own account unless you have administrator privileges.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator
