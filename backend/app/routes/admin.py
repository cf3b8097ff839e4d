"""
routes/admin.py — SUPER_ADMIN user-management route handlers.

Endpoints (url_prefix=/api/v1/admin, Bearer token + SUPER_ADMIN role):
  GET    /dashboard                  → 200
  GET    /users?include_inactive=    → 200
  GET    /users/<user_id>            → 200
  GET    /users/<user_id>/notes      → 200 (audited)
  PUT    /users/<user_id>            → 200
  PATCH  /<user_id>/role             → 200 (PUT kept for older clients)
  PATCH  /<user_id>/deactivate       → 200
  PATCH  /<user_id>/restore          → 200
  DELETE /<user_id>/permanent        → 200 (confirmation required)
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from backend.app.constants import Role
from backend.app.context import RequestContext
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth, require_role
from backend.app.schemas.user_schema import (
    AdminEditUserSchema,
    DeactivateSchema,
    HardDeleteSchema,
    RoleChangeSchema,
)
from backend.app.services import admin_service

admin_bp = Blueprint("admin", __name__)


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _flag(name: str, default: bool) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _tokens():
    return current_app.extensions["auth_service"].tokens


@admin_bp.route("/dashboard", methods=["GET"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def dashboard(ctx: RequestContext):
    result = admin_service.dashboard_stats(db.session, include_inactive=_flag("include_inactive", True))
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/users", methods=["GET"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def list_users(ctx: RequestContext):
    result = admin_service.list_users(db.session, include_inactive=_flag("include_inactive", False))
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def get_user(user_id: int, ctx: RequestContext):
    result = admin_service.get_user(
        db.session, user_id, include_inactive=_flag("include_inactive", False),
    )
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/users/<int:user_id>/notes", methods=["GET"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def get_admin_notes(user_id: int, ctx: RequestContext):
    result = admin_service.get_admin_notes(db.session, ctx, user_id)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/users/<int:user_id>", methods=["PUT"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def admin_edit_user(user_id: int, ctx: RequestContext):
    changes = AdminEditUserSchema().load(_json_body())
    result = admin_service.admin_edit_user(db.session, ctx, _tokens(), user_id, changes)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/<int:user_id>/role", methods=["PATCH", "PUT"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def change_role(user_id: int, ctx: RequestContext):
    data = RoleChangeSchema().load(_json_body())
    result = admin_service.change_role(db.session, ctx, user_id, data["role"])
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/<int:user_id>/deactivate", methods=["PATCH"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def deactivate_user(user_id: int, ctx: RequestContext):
    data = DeactivateSchema().load(_json_body())
    result = admin_service.soft_delete(db.session, ctx, _tokens(), user_id, reason=data["reason"])
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/<int:user_id>/restore", methods=["PATCH"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def restore_user(user_id: int, ctx: RequestContext):
    result = admin_service.restore(db.session, ctx, user_id)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/<int:user_id>/permanent", methods=["DELETE"])
@require_auth
@require_role(Role.SUPER_ADMIN)
def hard_delete_user(user_id: int, ctx: RequestContext):
    data = HardDeleteSchema().load(_json_body())
    result = admin_service.hard_delete(
        db.session,
        ctx,
        _tokens(),
        user_id,
        confirmation=data["confirmation"],
        anonymize=data["anonymize"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
