"""
errors.py — AppError base class and error code registry.

Every error returned by the API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Authentication failures stay generic ("invalid credentials") so the
    response never reveals whether an account exists.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
            details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field    # which request field caused the error
        self.details     = details  # extra machine-readable context (retry_after, ...)

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.details:
            payload["details"] = self.details
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_ID                 = "INVALID_ID"
    PASSWORD_MISMATCH          = "PASSWORD_MISMATCH"
    INVALID_ROLE               = "INVALID_ROLE"
    CONFIRMATION_REQUIRED      = "CONFIRMATION_REQUIRED"
    INVALID_OR_EXPIRED_TOKEN   = "INVALID_OR_EXPIRED_TOKEN"   # reset / verification links
    ALREADY_VERIFIED           = "ALREADY_VERIFIED"
    PROVIDER_VALIDATION_FAILED = "PROVIDER_VALIDATION_FAILED"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    EMAIL_IN_USE               = "EMAIL_IN_USE"
    CANNOT_CHANGE_SELF         = "CANNOT_CHANGE_SELF"
    CANNOT_DELETE_SELF         = "CANNOT_DELETE_SELF"
    DUPLICATE_KEY              = "DUPLICATE_KEY"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    NOT_FOUND                  = "NOT_FOUND"
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"     # 405

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403
    EMAIL_NOT_VERIFIED         = "EMAIL_NOT_VERIFIED"     # 403

    # ── Admission control (429) ────────────────────────────────────────────
    RATE_LIMITED               = "RATE_LIMITED"

    # ── External services (500) ────────────────────────────────────────────
    EMAIL_SEND_FAILED          = "EMAIL_SEND_FAILED"

    # ── System Errors (500 / 503) ──────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
    TRANSACTION_ERROR          = "TRANSACTION_ERROR"
    DATABASE_UNAVAILABLE       = "DATABASE_UNAVAILABLE"   # 503
