"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - `flask db migrate` to work without starting the full server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging levels from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Build the auth collaborators (token service, email service, rate
     limiter, identity verifier) and store the AuthService on
     app.extensions["auth_service"]. Tests pass fakes through the keyword
     arguments instead of patching module globals.
  5. Register all route blueprints under /api/v1
  6. Register global error handlers and the `flask purge-expired-tokens` command

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it. They are not used
  directly here — the import side-effect is sufficient.
"""

from __future__ import annotations

import logging
import traceback

import click
from flask import Flask, jsonify, request
from flask.logging import default_handler
from marshmallow import ValidationError
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    StatementError,
)
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config

# SQLSTATE codes for serialization failure and deadlock (PostgreSQL).
_TRANSIENT_SQLSTATES = {"40001", "40P01"}


# ── Application factory ────────────────────────────────────────────────────

def create_app(
        config_name: str = "development",
        *,
        token_service=None,
        email_service=None,
        rate_limiter=None,
        identity_verifier=None,
        sleep=None,
) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
        token_service, email_service, rate_limiter, identity_verifier, sleep:
                     Optional replacements for the collaborators normally
                     built from config.

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so that SQLAlchemy's MetaData is populated.
    # Alembic needs to see these to auto-generate migrations.
    with app.app_context():
        from backend.app.models import audit_log, refresh_token, user  # noqa: F401

    # ── Domain services ────────────────────────────────────────────────────
    _register_services(
        app,
        token_service=token_service,
        email_service=email_service,
        rate_limiter=rate_limiter,
        identity_verifier=identity_verifier,
        sleep=sleep,
    )

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)
    _register_cli(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to app.logger and to the `backend` logger hierarchy
    that services log through (logging.getLogger(__name__)).
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    package_logger = logging.getLogger("backend")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        package_logger.addHandler(default_handler)


def _register_services(
        app: Flask,
        *,
        token_service,
        email_service,
        rate_limiter,
        identity_verifier,
        sleep,
) -> None:
    from backend.app.services.auth_service import AuthService, AuthSettings
    from backend.app.services.email_service import EmailService
    from backend.app.services.identity_verifier import IdentityVerifier
    from backend.app.services.rate_limiter import FixedWindowRateLimiter
    from backend.app.services.token_service import TokenService

    cfg = app.config
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    app.extensions["auth_service"] = AuthService(
        tokens=token_service or TokenService.from_config(cfg),
        email=email_service or EmailService.from_config(cfg),
        rate_limiter=rate_limiter or FixedWindowRateLimiter(
            max_attempts=cfg["LOGIN_RATE_LIMIT_ATTEMPTS"],
            window_seconds=cfg["LOGIN_RATE_LIMIT_WINDOW_SECONDS"],
        ),
        identity_verifier=identity_verifier or IdentityVerifier.from_config(cfg),
        settings=AuthSettings.from_config(cfg),
        **kwargs,
    )


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Blueprint names match the route files in app/routes/.
    """
    from backend.app.routes.admin import admin_bp
    from backend.app.routes.auth import auth_bp
    from backend.app.routes.users import users_bp

    app.register_blueprint(auth_bp,  url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp, url_prefix="/api/v1/users")
    app.register_blueprint(admin_bp, url_prefix="/api/v1/admin")


def _error_body(code: str, message: str, field: str | None = None, details: dict | None = None) -> dict:
    payload = {"code": code, "message": message}
    if field is not None:
        payload["field"] = field
    if details:
        payload["details"] = details
    return {"error": payload}


def classify_persistence_error(error: Exception) -> tuple[str, str, int] | None:
    """
    Maps SQLAlchemy failures to (code, message, http_status), or None for
    anything that is not a persistence error.

    Order matters: IntegrityError, OperationalError and DataError are all
    StatementError subclasses.
    """
    from backend.app.errors import ErrorCode

    if isinstance(error, IntegrityError):
        return ErrorCode.DUPLICATE_KEY, "A record with the same unique value already exists.", 409

    if isinstance(error, DBAPIError):
        sqlstate = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
        if sqlstate in _TRANSIENT_SQLSTATES or "deadlock" in str(error.orig).lower():
            return ErrorCode.TRANSACTION_ERROR, "The transaction could not be completed. Please retry.", 500
        if error.connection_invalidated or isinstance(error, (OperationalError, InterfaceError)):
            return ErrorCode.DATABASE_UNAVAILABLE, "The database is temporarily unavailable.", 503

    if isinstance(error, (DataError, StatementError)):
        return ErrorCode.INVALID_ID, "A value in the request has an invalid format.", 400

    return None


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → first field error as MISSING_FIELD / INVALID_FIELD (or a
                        registered code used as the message), every field in
                        details.fields (400)
      HTTPException   → 404 NOT_FOUND for unknown routes; other framework errors
                        keep their status
      Exception       → persistence errors mapped by classify_persistence_error,
                        everything else INTERNAL_ERROR (500)

    Stack traces never leave the server unless INCLUDE_ERROR_TRACE is on
    (development config). They are always written to the app logger.
    """
    from backend.app.errors import AppError, ErrorCode
    from backend.app.extensions import db

    known_codes = {v for k, v in vars(ErrorCode).items() if not k.startswith("_")}

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Marshmallow raises ValidationError with a messages dict keyed by field
        name. The first error becomes the envelope's code/message/field.
        """
        messages = error.messages

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if isinstance(raw_message, str) and raw_message in known_codes:
            code = raw_message
            raw_message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD

        details = {"fields": messages} if isinstance(messages, dict) else None
        return jsonify(_error_body(code, str(raw_message), field, details)), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        if error.code == 404:
            return jsonify(_error_body(
                ErrorCode.NOT_FOUND,
                f"Route {request.method} {request.path} not found.",
            )), 404
        status = error.code or 500
        code = ErrorCode.METHOD_NOT_ALLOWED if status == 405 else ErrorCode.INVALID_FIELD
        if status >= 500:
            code = ErrorCode.INTERNAL_ERROR
        return jsonify(_error_body(code, error.description or error.name)), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions. The session is rolled back so the
        failed transaction cannot leak into the next request on this thread.
        """
        trace = traceback.format_exc()
        db.session.rollback()

        classified = classify_persistence_error(error)
        if classified is not None:
            code, message, status = classified
            app.logger.warning("Persistence error (%s): %s", code, error)
        else:
            code, message, status = (
                ErrorCode.INTERNAL_ERROR,
                "An unexpected error occurred. Please try again later.",
                500,
            )
            app.logger.error("Unhandled exception: %s\n%s", str(error), trace)

        details = {"trace": trace} if app.config.get("INCLUDE_ERROR_TRACE") else None
        return jsonify(_error_body(code, message, details=details)), status


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers and the
    refresh-token cookie.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all and origin:
            # Reflect the origin: credentialed requests cannot use "*".
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _register_cli(app: Flask) -> None:

    @app.cli.command("purge-expired-tokens")
    def purge_expired_tokens():
        """Delete refresh tokens whose expiry has passed."""
        from backend.app.extensions import db

        removed = app.extensions["auth_service"].tokens.purge_expired(db.session)
        db.session.commit()
        click.echo(f"Removed {removed} expired refresh token(s).")


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself
    (e.g. INVALID_ROLE raised by the role OneOf validator).
    """
    _messages = {
        "INVALID_ROLE": "Role must be one of: SUPER_ADMIN, CUSTOMER, GUEST, ORDER_MANAGER.",
    }
    return _messages.get(code, "Invalid input.")
