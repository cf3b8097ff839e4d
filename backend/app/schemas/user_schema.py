"""
schemas/user_schema.py — Marshmallow schemas for /users and /admin endpoints.

Role values are checked here with the INVALID_ROLE code so the error
handler reports the same code the admin service uses.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate

from backend.app.constants import Role
from backend.app.errors import ErrorCode
from backend.app.schemas.auth_schema import validate_password_policy


def _optional_name(label: str) -> fields.Str:
    return fields.Str(
        validate=validate.Length(
            min=2,
            max=50,
            error=f"{label} must be between 2 and 50 characters.",
        ),
    )


def _role_field(required: bool) -> fields.Str:
    return fields.Str(
        required=required,
        validate=validate.OneOf(Role.values(), error=ErrorCode.INVALID_ROLE),
    )


class UpdateProfileSchema(Schema):
    """PUT /users/profile"""

    first_name = _optional_name("First name")
    last_name  = _optional_name("Last name")
    email      = fields.Email(validate=validate.Length(max=255))


class EditUserSchema(UpdateProfileSchema):
    """
    PUT /users/<user_id>

    `role` is accepted but only applied when a SUPER_ADMIN edits someone else.
    """

    role = _role_field(required=False)


class ChangePasswordSchema(Schema):
    """PUT /users/change-password"""

    current_password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(min=1, error="Current password is required."),
    )
    new_password = fields.Str(required=True, load_only=True, validate=validate_password_policy)


class DeactivateSchema(Schema):
    """DELETE /users/<user_id>, PATCH /admin/<user_id>/deactivate"""

    reason = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=500))


class RoleChangeSchema(Schema):
    """PATCH|PUT /admin/<user_id>/role"""

    role = _role_field(required=True)


class HardDeleteSchema(Schema):
    """
    DELETE /admin/<user_id>/permanent

    A missing or wrong confirmation is reported by the service as
    CONFIRMATION_REQUIRED, not as a schema error.
    """

    confirmation = fields.Str(load_default=None, allow_none=True)
    anonymize    = fields.Bool(load_default=True)


class AdminEditUserSchema(Schema):
    """PUT /admin/users/<user_id>"""

    first_name        = _optional_name("First name")
    last_name         = _optional_name("Last name")
    email             = fields.Email(validate=validate.Length(max=255))
    role              = _role_field(required=False)
    is_email_verified = fields.Bool()
    is_active         = fields.Bool()
    notes             = fields.Str(validate=validate.Length(max=500))
    admin_notes       = fields.Str(validate=validate.Length(max=2000))
