"""
constants.py — Enumerations shared by models, services and schemas.

All enums subclass str so their values serialise directly into JSON and
compare equal to the raw strings stored in the database.
"""

from __future__ import annotations

import enum


class Role(str, enum.Enum):
    SUPER_ADMIN   = "SUPER_ADMIN"
    CUSTOMER      = "CUSTOMER"
    GUEST         = "GUEST"
    ORDER_MANAGER = "ORDER_MANAGER"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


# Role assigned to every self-registered or OAuth-created account.
DEFAULT_ROLE = Role.CUSTOMER


class Provider(str, enum.Enum):
    EMAIL    = "email"
    GOOGLE   = "google"
    FACEBOOK = "facebook"
    APPLE    = "apple"


OAUTH_PROVIDERS = (Provider.GOOGLE, Provider.FACEBOOK, Provider.APPLE)


class TokenType(str, enum.Enum):
    ACCESS             = "access"
    REFRESH            = "refresh"
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET     = "password_reset"


class AuditAction(str, enum.Enum):
    USER_CREATE      = "USER_CREATE"
    USER_UPDATE      = "USER_UPDATE"
    USER_DELETE      = "USER_DELETE"
    USER_RESTORE     = "USER_RESTORE"
    USER_ROLE_CHANGE = "USER_ROLE_CHANGE"
    LOGIN_ATTEMPT    = "LOGIN_ATTEMPT"
    LOGIN_SUCCESS    = "LOGIN_SUCCESS"
    LOGIN_FAILURE    = "LOGIN_FAILURE"
    PASSWORD_RESET   = "PASSWORD_RESET"
    ADMIN_ACTION     = "ADMIN_ACTION"


# Token lifetimes for the single-use links sent by email.
EMAIL_VERIFICATION_TTL_HOURS = 24
PASSWORD_RESET_TTL_HOURS     = 1

# Confirmation phrase required for irreversible account deletion.
HARD_DELETE_CONFIRMATION = "PERMANENT_DELETE"
