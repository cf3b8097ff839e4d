"""
services/identity_verifier.py — OAuth provider adapter.

Turns a client-supplied provider credential into a verified OAuthIdentity:

  google   : {"id_token"}  → tokeninfo endpoint, audience checked against
             GOOGLE_CLIENT_ID when configured
             {"access_token"} → OpenID userinfo endpoint
  facebook : {"access_token", "user_id"} → Graph API profile lookup
  apple    : {"id_token", "first_name"?, "last_name"?} → RS256 signature
             checked against Apple's JWKS; Apple only sends the name on the
             first sign-in, so the client forwards it.

Every failure (transport, non-2xx, bad signature, wrong audience, missing
email) raises IdentityVerificationError. The caller maps it to
PROVIDER_VALIDATION_FAILED.

The httpx.Client and the Apple signing-key resolver are injectable so tests
run against httpx.MockTransport and a locally generated key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx
import jwt

from backend.app.constants import Provider

logger = logging.getLogger(__name__)

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
FACEBOOK_GRAPH_URL = "https://graph.facebook.com/v12.0"
APPLE_ISSUER = "https://appleid.apple.com"
APPLE_KEYS_URL = "https://appleid.apple.com/auth/keys"


class IdentityVerificationError(Exception):
    """The provider rejected the credential, or its answer was unusable."""


@dataclass(frozen=True)
class OAuthIdentity:
    provider: Provider
    email: str
    given_name: str | None
    family_name: str | None
    subject: str | None


class IdentityVerifier:

    def __init__(
            self,
            *,
            google_client_id: str | None = None,
            facebook_app_id: str | None = None,
            apple_client_id: str | None = None,
            http_client: httpx.Client | None = None,
            timeout: float = 10.0,
            apple_key_resolver: Callable[[str], object] | None = None,
    ) -> None:
        self.google_client_id = google_client_id
        self.facebook_app_id = facebook_app_id
        self.apple_client_id = apple_client_id
        self._http = http_client or httpx.Client(timeout=timeout, follow_redirects=False)
        self._apple_key_resolver = apple_key_resolver or self._default_apple_key_resolver
        self._apple_jwks: jwt.PyJWKClient | None = None

    @classmethod
    def from_config(cls, config) -> "IdentityVerifier":
        return cls(
            google_client_id=config.get("GOOGLE_CLIENT_ID") or None,
            facebook_app_id=config.get("FACEBOOK_APP_ID") or None,
            apple_client_id=config.get("APPLE_CLIENT_ID") or None,
            timeout=config.get("OAUTH_HTTP_TIMEOUT", 10.0),
        )

    def verify(self, provider: Provider | str, credential: dict) -> OAuthIdentity:
        try:
            provider = Provider(provider)
        except ValueError:
            raise IdentityVerificationError(f"Unsupported provider {provider!r}.")

        if provider is Provider.GOOGLE:
            identity = self._verify_google(credential)
        elif provider is Provider.FACEBOOK:
            identity = self._verify_facebook(credential)
        elif provider is Provider.APPLE:
            identity = self._verify_apple(credential)
        else:
            raise IdentityVerificationError(f"Unsupported provider {provider.value!r}.")

        if not identity.email:
            raise IdentityVerificationError(f"Email not provided by {provider.value}.")
        return identity

    # ── HTTP ───────────────────────────────────────────────────────────────

    def _get_json(self, url: str, **kwargs) -> dict:
        try:
            response = self._http.get(url, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("OAuth provider rejected credential: %s %s", exc.response.status_code, url)
            raise IdentityVerificationError("The provider rejected the credential.") from exc
        except httpx.HTTPError as exc:
            logger.error("OAuth provider unreachable: %s (%s)", url, exc)
            raise IdentityVerificationError("The provider could not be reached.") from exc
        except ValueError as exc:
            raise IdentityVerificationError("The provider returned an unreadable response.") from exc

        if not isinstance(data, dict) or "error" in data:
            raise IdentityVerificationError("The provider returned an error.")
        return data

    # ── Google ─────────────────────────────────────────────────────────────

    def _verify_google(self, credential: dict) -> OAuthIdentity:
        id_token = credential.get("id_token")
        access_token = credential.get("access_token")

        if id_token:
            claims = self._get_json(GOOGLE_TOKENINFO_URL, params={"id_token": id_token})
            if claims.get("iss") not in GOOGLE_ISSUERS:
                raise IdentityVerificationError("Google token has an unexpected issuer.")
            if self.google_client_id and claims.get("aud") != self.google_client_id:
                raise IdentityVerificationError("Google token was issued for another client.")
        elif access_token:
            claims = self._get_json(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        else:
            raise IdentityVerificationError("No valid Google token provided.")

        return OAuthIdentity(
            provider=Provider.GOOGLE,
            email=claims.get("email"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            subject=claims.get("sub"),
        )

    # ── Facebook ───────────────────────────────────────────────────────────

    def _verify_facebook(self, credential: dict) -> OAuthIdentity:
        access_token = credential.get("access_token")
        user_id = credential.get("user_id")
        if not access_token or not user_id:
            raise IdentityVerificationError("Facebook access_token and user_id are required.")

        data = self._get_json(
            f"{FACEBOOK_GRAPH_URL}/{user_id}",
            params={"fields": "id,email,first_name,last_name", "access_token": access_token},
        )
        if str(data.get("id")) != str(user_id):
            raise IdentityVerificationError("Facebook token does not belong to this user.")

        return OAuthIdentity(
            provider=Provider.FACEBOOK,
            email=data.get("email"),
            given_name=data.get("first_name"),
            family_name=data.get("last_name"),
            subject=str(data.get("id")),
        )

    # ── Apple ──────────────────────────────────────────────────────────────

    def _default_apple_key_resolver(self, token: str):
        if self._apple_jwks is None:
            self._apple_jwks = jwt.PyJWKClient(APPLE_KEYS_URL)
        return self._apple_jwks.get_signing_key_from_jwt(token).key

    def _verify_apple(self, credential: dict) -> OAuthIdentity:
        id_token = credential.get("id_token")
        if not id_token:
            raise IdentityVerificationError("Apple id_token is required.")

        try:
            key = self._apple_key_resolver(id_token)
            claims = jwt.decode(
                id_token,
                key,
                algorithms=["RS256"],
                audience=self.apple_client_id,
                issuer=APPLE_ISSUER,
                options={"verify_aud": bool(self.apple_client_id)},
            )
        except jwt.PyJWTError as exc:
            logger.warning("Apple identity token rejected: %s", exc)
            raise IdentityVerificationError("Invalid Apple identity token.") from exc

        return OAuthIdentity(
            provider=Provider.APPLE,
            email=claims.get("email"),
            given_name=credential.get("first_name") or "Apple",
            family_name=credential.get("last_name") or "User",
            subject=claims.get("sub"),
        )
