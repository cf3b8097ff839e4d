"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats, password policy.
  - services/auth_service.py: PASSWORD_MISMATCH, EMAIL_IN_USE and every other
    rule that needs the database or a second field's meaning.

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

import re

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates_schema

from backend.app.constants import OAUTH_PROVIDERS


# Password policy: 8+ characters with an uppercase letter, a digit and a symbol.
_PASSWORD_RE = re.compile(r"^(?=.*[A-Z])(?=.*\d)(?=.*[\W_]).{8,}$")

# bcrypt only accepts up to 72 bytes of input.
MAX_PASSWORD_BYTES = 72


def validate_password_policy(value: str) -> None:
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")
    if not _PASSWORD_RE.match(value):
        raise ValidationError(
            "Password must contain at least one uppercase letter, one number, and one symbol."
        )


def _name_field(label: str, required: bool = True) -> fields.Str:
    return fields.Str(
        required=required,
        validate=validate.Length(
            min=2,
            max=50,
            error=f"{label} must be between 2 and 50 characters.",
        ),
    )


def _email_field(required: bool = True) -> fields.Email:
    return fields.Email(required=required, validate=validate.Length(max=255))


class RegisterSchema(Schema):
    """
    POST /auth/register

    confirm_password must be present here; whether it matches is the
    service's call (PASSWORD_MISMATCH).
    """

    first_name = _name_field("First name")
    last_name  = _name_field("Last name")
    email      = _email_field()
    password   = fields.Str(required=True, load_only=True, validate=validate_password_policy)
    confirm_password = fields.Str(required=True, load_only=True)


class LoginSchema(Schema):
    """
    POST /auth/login

    Credential correctness is checked in auth_service.py
    (INVALID_CREDENTIALS, 401). No policy check on the password here.
    """

    email    = _email_field()
    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(min=1, error="Password is required."),
    )


class EmailSchema(Schema):
    """POST /auth/forgot-password, POST /auth/resend-verification, GET /auth/check-email"""

    email = _email_field()


class ResetPasswordSchema(Schema):
    """POST /auth/reset-password"""

    token    = fields.Str(required=True, validate=validate.Length(min=1, error="Token is required."))
    password = fields.Str(required=True, load_only=True, validate=validate_password_policy)


class RefreshTokenSchema(Schema):
    """
    Legacy body for POST /auth/refresh-token and POST /auth/logout.

    The cookie is the primary carrier; the body field is optional and
    only consulted when no cookie was sent.
    """

    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.Str(required=False, load_default=None, allow_none=True)


# ── OAuth credentials ──────────────────────────────────────────────────────

class GoogleCredentialSchema(Schema):
    """POST /auth/oauth/google — an ID token (web) or an access token (mobile)."""

    class Meta:
        unknown = EXCLUDE

    id_token     = fields.Str(load_default=None)
    access_token = fields.Str(load_default=None)

    @validates_schema
    def validate_one_token(self, data, **kwargs):
        if not data.get("id_token") and not data.get("access_token"):
            raise ValidationError("Provide either id_token or access_token.", "id_token")


class FacebookCredentialSchema(Schema):
    """POST /auth/oauth/facebook"""

    class Meta:
        unknown = EXCLUDE

    access_token = fields.Str(required=True)
    user_id      = fields.Str(required=True)


class AppleCredentialSchema(Schema):
    """
    POST /auth/oauth/apple

    Apple only returns the user's name on the first authorisation, so the
    client forwards it alongside the identity token.
    """

    class Meta:
        unknown = EXCLUDE

    id_token   = fields.Str(required=True)
    first_name = fields.Str(load_default=None, validate=validate.Length(max=50))
    last_name  = fields.Str(load_default=None, validate=validate.Length(max=50))


CREDENTIAL_SCHEMAS = {
    "google":   GoogleCredentialSchema,
    "facebook": FacebookCredentialSchema,
    "apple":    AppleCredentialSchema,
}


class MockSocialAuthSchema(Schema):
    """POST /auth/mock-social-auth (development only)"""

    provider   = fields.Str(
        required=True,
        validate=validate.OneOf([p.value for p in OAUTH_PROVIDERS]),
    )
    email      = _email_field()
    first_name = fields.Str(load_default=None, validate=validate.Length(max=50))
    last_name  = fields.Str(load_default=None, validate=validate.Length(max=50))
