"""
tests/integration/helpers.py — Plain helper functions shared by the
integration tests.

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from backend.app.services.email_service import EmailDeliveryError, EmailService

PASSWORD = "Password1!"
REFRESH_COOKIE = "refreshToken"
COOKIE_PATH = "/api/v1/auth"


class FakeEmailService(EmailService):
    """Records every message instead of talking to SMTP."""

    def __init__(self) -> None:
        super().__init__(client_url="http://shop.test")
        self.outbox: list[dict] = []
        self.fail = False

    def send(self, to: str, subject: str, text: str, html: str) -> None:
        if self.fail:
            raise EmailDeliveryError("SMTP unavailable")
        self.outbox.append({"to": to, "subject": subject, "text": text})


def register(
    client,
    first_name: str = "Alice",
    email: str | None = None,
    password: str = PASSWORD,
    last_name: str = "Tester",
) -> dict:
    """
    Registers a new (unverified) customer and returns the response data dict.
    Returns: {"user": {...}, "access_token": "...", "expires_in": ..., "verification_token": "..."}
    """
    if email is None:
        email = f"{first_name.lower()}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "password": password,
            "confirm_password": password,
        },
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def verify(client, verification_token: str):
    return client.get(f"/api/v1/auth/verify-email/{verification_token}")


def login(client, email: str, password: str = PASSWORD) -> dict:
    """Logs in and returns the response data dict (refresh token is in the cookie)."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def create_verified_user(client, first_name: str = "Alice", email: str | None = None) -> dict:
    """Registers, verifies and logs in. Returns the login data dict."""
    data = register(client, first_name=first_name, email=email)
    assert verify(client, data["verification_token"]).status_code == 200
    return login(client, data["user"]["email"])


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def refresh_cookie(client) -> str | None:
    cookie = client.get_cookie(REFRESH_COOKIE, path=COOKIE_PATH)
    return cookie.value if cookie is not None else None


def cleared_refresh_cookie(response) -> bool:
    """True if the response expires the refresh-token cookie."""
    return any(
        header.startswith(f"{REFRESH_COOKIE}=;") and "Max-Age=0" in header
        for header in response.headers.getlist("Set-Cookie")
    )


def backdated_access_token(app, user_id: int, seconds: int = 120) -> str:
    """Access token whose iat lies `seconds` in the past."""
    issued = datetime.now(timezone.utc) - timedelta(seconds=seconds)
    return jwt.encode(
        {
            "sub": str(user_id),
            "type": "access",
            "fingerprint": "backdated",
            "iat": issued,
            "exp": issued + timedelta(minutes=15),
        },
        app.config["JWT_SECRET_KEY"],
        algorithm="HS256",
    )
