"""
tests/unit/test_validation_schemas.py — Unit tests for the marshmallow schemas.

What this file proves:
  - Every schema accepts valid input without raising
  - Every schema rejects invalid input with a ValidationError on the right field
  - Role values are rejected with the registered INVALID_ROLE code
  - Cross-field and database rules (PASSWORD_MISMATCH, EMAIL_IN_USE) are NOT
    tested here; they belong to the services

No database and no Flask application context: schemas inherit from
marshmallow.Schema directly (see extensions.py).
"""

from __future__ import annotations

import pytest
from marshmallow import ValidationError

from backend.app.errors import ErrorCode
from backend.app.schemas.auth_schema import (
    AppleCredentialSchema,
    GoogleCredentialSchema,
    LoginSchema,
    MockSocialAuthSchema,
    RefreshTokenSchema,
    RegisterSchema,
    validate_password_policy,
)
from backend.app.schemas.user_schema import (
    AdminEditUserSchema,
    DeactivateSchema,
    EditUserSchema,
    HardDeleteSchema,
    RoleChangeSchema,
    UpdateProfileSchema,
)

VALID_REGISTRATION = {
    "first_name": "Alice",
    "last_name": "Tester",
    "email": "alice@example.com",
    "password": "Secure1!x",
    "confirm_password": "Secure1!x",
}


# ═══════════════════════════════════════════════════════════════════════════
# Password policy
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("password", ["Password1!", "Abcdefg1_", "Zz9#zzzz"])
def test_password_policy_accepts_strong_passwords(password):
    validate_password_policy(password)


@pytest.mark.parametrize("password, fragment", [
    ("Ab1!", "at least 8 characters"),
    ("password1!", "uppercase"),
    ("Password!!", "number"),
    ("Password12", "symbol"),
])
def test_password_policy_rejects_weak_passwords(password, fragment):
    with pytest.raises(ValidationError) as exc_info:
        validate_password_policy(password)
    assert fragment in exc_info.value.messages[0]


def test_password_policy_caps_utf8_length_at_bcrypt_limit():
    validate_password_policy("Aa1!" + "x" * 68)
    with pytest.raises(ValidationError) as exc_info:
        validate_password_policy("Aa1!" + "x" * 69)
    assert "72 bytes" in exc_info.value.messages[0]
    # 39 characters, but 74 bytes once encoded
    with pytest.raises(ValidationError):
        validate_password_policy("Aa1!" + "é" * 35)


# ═══════════════════════════════════════════════════════════════════════════
# Auth schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestRegisterSchema:

    def test_valid_payload(self):
        result = RegisterSchema().load(VALID_REGISTRATION)
        assert result["email"] == "alice@example.com"
        assert result["confirm_password"] == "Secure1!x"

    def test_mismatch_is_not_a_schema_error(self):
        RegisterSchema().load(dict(VALID_REGISTRATION, confirm_password="Other1!xx"))

    @pytest.mark.parametrize("field, value", [
        ("first_name", "A"),
        ("last_name", "x" * 51),
        ("email", "not-an-email"),
        ("password", "weak"),
    ])
    def test_invalid_field(self, field, value):
        with pytest.raises(ValidationError) as exc_info:
            RegisterSchema().load(dict(VALID_REGISTRATION, **{field: value}))
        assert field in exc_info.value.messages

    def test_password_is_never_dumped(self):
        assert "password" not in RegisterSchema().dump(VALID_REGISTRATION)


class TestLoginSchema:

    def test_any_non_empty_password_is_accepted(self):
        LoginSchema().load({"email": "a@b.com", "password": "x"})

    def test_empty_password_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            LoginSchema().load({"email": "a@b.com", "password": ""})
        assert "password" in exc_info.value.messages


class TestCredentialSchemas:

    def test_refresh_token_body_is_optional(self):
        assert RefreshTokenSchema().load({}) == {"refresh_token": None}
        assert RefreshTokenSchema().load({"refresh_token": "t", "extra": 1}) == {"refresh_token": "t"}

    def test_google_needs_one_token(self):
        with pytest.raises(ValidationError) as exc_info:
            GoogleCredentialSchema().load({})
        assert "id_token" in exc_info.value.messages
        assert GoogleCredentialSchema().load({"access_token": "t"})["access_token"] == "t"

    def test_apple_forwards_names(self):
        data = AppleCredentialSchema().load({"id_token": "t", "first_name": "Anna"})
        assert data == {"id_token": "t", "first_name": "Anna", "last_name": None}

    def test_mock_social_rejects_email_provider(self):
        with pytest.raises(ValidationError) as exc_info:
            MockSocialAuthSchema().load({"provider": "email", "email": "a@b.com"})
        assert "provider" in exc_info.value.messages


# ═══════════════════════════════════════════════════════════════════════════
# User / admin schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestUserSchemas:

    def test_profile_fields_are_all_optional(self):
        assert UpdateProfileSchema().load({}) == {}

    def test_edit_user_rejects_unknown_role_with_code(self):
        with pytest.raises(ValidationError) as exc_info:
            EditUserSchema().load({"role": "OVERLORD"})
        assert exc_info.value.messages["role"] == [ErrorCode.INVALID_ROLE]

    @pytest.mark.parametrize("role", ["SUPER_ADMIN", "CUSTOMER", "GUEST", "ORDER_MANAGER"])
    def test_role_change_accepts_every_role(self, role):
        assert RoleChangeSchema().load({"role": role}) == {"role": role}

    def test_role_change_requires_role(self):
        with pytest.raises(ValidationError) as exc_info:
            RoleChangeSchema().load({})
        assert "role" in exc_info.value.messages

    def test_deactivate_reason_defaults_to_none(self):
        assert DeactivateSchema().load({}) == {"reason": None}

    def test_hard_delete_defaults(self):
        assert HardDeleteSchema().load({}) == {"confirmation": None, "anonymize": True}

    def test_admin_edit_accepts_flags_and_notes(self):
        data = AdminEditUserSchema().load({
            "is_active": False,
            "is_email_verified": True,
            "admin_notes": "VIP customer",
        })
        assert data == {"is_active": False, "is_email_verified": True, "admin_notes": "VIP customer"}
