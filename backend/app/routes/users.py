"""
routes/users.py — Account self-service route handlers.

Endpoints (url_prefix=/api/v1/users, all require a Bearer access token):
  GET    /profile            → 200
  PUT    /profile            → 200
  PUT    /change-password    → 200
  PUT    /<user_id>          → 200 (self, or users:update permission)
  DELETE /<user_id>          → 200 (self, or users:delete permission)
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from backend.app.context import RequestContext
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import allow_self_or_permission, require_auth
from backend.app.permissions import Action, Resource
from backend.app.schemas.user_schema import (
    ChangePasswordSchema,
    DeactivateSchema,
    EditUserSchema,
    UpdateProfileSchema,
)
from backend.app.services import user_service

users_bp = Blueprint("users", __name__)


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


@users_bp.route("/profile", methods=["GET"])
@require_auth
def get_profile(ctx: RequestContext):
    result = user_service.get_profile(db.session, ctx)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/profile", methods=["PUT"])
@require_auth
def update_profile(ctx: RequestContext):
    data = UpdateProfileSchema().load(_json_body())
    result = user_service.update_profile(
        db.session,
        ctx,
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        email=data.get("email"),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/change-password", methods=["PUT"])
@require_auth
def change_password(ctx: RequestContext):
    data = ChangePasswordSchema().load(_json_body())
    result = user_service.change_password(
        db.session,
        ctx,
        current_password=data["current_password"],
        new_password=data["new_password"],
        bcrypt_rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<int:user_id>", methods=["PUT"])
@require_auth
@allow_self_or_permission(Resource.USERS, Action.UPDATE)
def edit_user(user_id: int, ctx: RequestContext):
    data = EditUserSchema().load(_json_body())
    result = user_service.edit_user(
        db.session,
        ctx,
        user_id,
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        email=data.get("email"),
        role=data.get("role"),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@require_auth
@allow_self_or_permission(Resource.USERS, Action.DELETE)
def delete_user(user_id: int, ctx: RequestContext):
    data = DeactivateSchema().load(_json_body())
    result = user_service.deactivate_user(
        db.session,
        ctx,
        current_app.extensions["auth_service"].tokens,
        user_id,
        reason=data["reason"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
