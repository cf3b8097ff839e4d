"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body / query / cookie
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service method on app.extensions["auth_service"]
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

The refresh token never appears in a response body: routes move it into the
HTTP-only `refreshToken` cookie scoped to /api/v1/auth.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register                → 201
  POST   /login                   → 200
  GET    /check-email?email=      → 200
  POST   /forgot-password         → 200
  POST   /reset-password          → 200
  GET    /verify-email/<token>    → 200
  POST   /resend-verification     → 200
  POST   /refresh-token           → 200
  POST   /logout                  → 200
  POST   /oauth/<provider>        → 200
  POST   /mock-social-auth        → 200 (development only)
"""

from __future__ import annotations

from flask import Blueprint, after_this_request, current_app, jsonify, request

from backend.app.context import RequestContext
from backend.app.errors import AppError, ErrorCode
from backend.app.extensions import db
from backend.app.schemas.auth_schema import (
    CREDENTIAL_SCHEMAS,
    EmailSchema,
    LoginSchema,
    MockSocialAuthSchema,
    RefreshTokenSchema,
    RegisterSchema,
    ResetPasswordSchema,
)

auth_bp = Blueprint("auth", __name__)


def _service():
    return current_app.extensions["auth_service"]


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _set_refresh_cookie(response, refresh_token: str):
    cfg = current_app.config
    response.set_cookie(
        cfg["REFRESH_COOKIE_NAME"],
        refresh_token,
        max_age=_service().tokens.refresh_max_age,
        httponly=True,
        secure=cfg["REFRESH_COOKIE_SECURE"],
        samesite="Strict",
        path=cfg["REFRESH_COOKIE_PATH"],
    )
    return response


def _clear_refresh_cookie(response):
    cfg = current_app.config
    response.delete_cookie(
        cfg["REFRESH_COOKIE_NAME"],
        path=cfg["REFRESH_COOKIE_PATH"],
        httponly=True,
        secure=cfg["REFRESH_COOKIE_SECURE"],
        samesite="Strict",
    )
    return response


def _presented_refresh_token() -> str | None:
    """Cookie first; the JSON body field is the legacy fallback."""
    cookie = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    if cookie:
        return cookie
    return RefreshTokenSchema().load(_json_body())["refresh_token"]


def _session_response(result: dict, status: int):
    refresh_token = result.pop("refresh_token")
    response = jsonify({"data": result, "warnings": []})
    response.status_code = status
    return _set_refresh_cookie(response, refresh_token)


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account; sign in. (No auth required.)"""
    data = RegisterSchema().load(_json_body())
    result = _service().register(
        db.session,
        RequestContext.from_request(),
        first_name=data["first_name"],
        last_name=data["last_name"],
        email=data["email"],
        password=data["password"],
        confirm_password=data["confirm_password"],
    )
    db.session.commit()
    return _session_response(result, 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; access token in body, refresh token in cookie."""
    data = LoginSchema().load(_json_body())
    result = _service().login(
        db.session,
        RequestContext.from_request(),
        email=data["email"],
        password=data["password"],
    )
    db.session.commit()
    return _session_response(result, 200)


@auth_bp.route("/check-email", methods=["GET"])
def check_email():
    """GET /auth/check-email?email= — Does an active account use this email?"""
    data = EmailSchema().load(request.args.to_dict())
    result = _service().check_email(db.session, data["email"])
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    data = EmailSchema().load(_json_body())
    result = _service().forgot_password(db.session, data["email"])
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = ResetPasswordSchema().load(_json_body())
    result = _service().reset_password(
        db.session,
        RequestContext.from_request(),
        token=data["token"],
        password=data["password"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/verify-email/<token>", methods=["GET"])
def verify_email(token: str):
    result = _service().verify_email(db.session, token)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/resend-verification", methods=["POST"])
def resend_verification():
    data = EmailSchema().load(_json_body())
    result = _service().resend_verification(db.session, data["email"])
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/refresh-token", methods=["POST"])
def refresh_token():
    """
    POST /auth/refresh-token — Rotate the refresh token.

    On REFRESH_TOKEN_INVALID the cookie is cleared as well, so a browser
    stops presenting a dead token.
    """
    @after_this_request
    def clear_cookie_on_rejection(response):
        if response.status_code == 401:
            _clear_refresh_cookie(response)
        return response

    result = _service().refresh(
        db.session,
        RequestContext.from_request(),
        _presented_refresh_token(),
    )
    db.session.commit()
    return _session_response(result, 200)


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Revoke the presented refresh token; always clears the cookie."""
    result = _service().logout(db.session, _presented_refresh_token())
    db.session.commit()
    response = jsonify({"data": result, "warnings": []})
    return _clear_refresh_cookie(response), 200


@auth_bp.route("/oauth/<provider>", methods=["POST"])
def oauth(provider: str):
    """POST /auth/oauth/<google|facebook|apple> — Sign in with a provider credential."""
    schema_class = CREDENTIAL_SCHEMAS.get(provider)
    if schema_class is None:
        raise AppError(ErrorCode.NOT_FOUND, f"Unknown OAuth provider '{provider}'.", 404)

    credential = schema_class().load(_json_body())
    result = _service().oauth_login(
        db.session,
        RequestContext.from_request(),
        provider,
        credential,
    )
    db.session.commit()
    return _session_response(result, 200)


@auth_bp.route("/mock-social-auth", methods=["POST"])
def mock_social_auth():
    """POST /auth/mock-social-auth — Development-only stand-in for a provider round trip."""
    if not current_app.config.get("ENABLE_MOCK_SOCIAL_AUTH"):
        raise AppError(ErrorCode.NOT_FOUND, "Endpoint not found.", 404)

    data = MockSocialAuthSchema().load(_json_body())
    result = _service().mock_social_login(
        db.session,
        RequestContext.from_request(),
        provider=data["provider"],
        email=data["email"],
        first_name=data["first_name"],
        last_name=data["last_name"],
    )
    db.session.commit()
    return _session_response(result, 200)
