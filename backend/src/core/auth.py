"""Session provider backed by the hosted identity service (OAuth with PKCE)."""
import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from core.config import Settings

logger = logging.getLogger(__name__)

AUTH_PREFIX = "/auth/v1"


class AuthenticationError(Exception):
    """Raised when a credential is missing, invalid or expired."""

    pass


@dataclass
class Identity:
    """The authenticated user a bookmark list belongs to."""

    id: str
    email: str | None = None
    name: str | None = None

    @classmethod
    def from_user(cls, user: dict[str, Any]) -> "Identity":
        """Build from the identity service's user object."""
        metadata = user.get("user_metadata") or {}
        return cls(
            id=str(user["id"]),
            email=user.get("email"),
            name=metadata.get("name") or metadata.get("full_name"),
        )


@dataclass
class Session:
    """Credentials returned by a successful sign-in."""

    access_token: str
    identity: Identity
    refresh_token: str | None = None
    expires_in: int | None = None


def generate_pkce_pair() -> tuple[str, str]:
    """
    Create a PKCE code verifier and its S256 challenge.

    Returns:
        (verifier, challenge)
    """
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class SessionProvider:
    """Sign-in redirect, code exchange, identity lookup and sign-out."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    def _get_headers(self, token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._settings.supabase_anon_key}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def build_authorize_url(self, code_challenge: str) -> str:
        """URL the browser is redirected to for signing in with the OAuth provider."""
        params = {
            "provider": self._settings.oauth_provider,
            "redirect_to": self._settings.auth_callback_url,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
            # Always show the account chooser instead of silently reusing the last account
            "prompt": "select_account",
        }
        return f"{self._settings.backend_url}{AUTH_PREFIX}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str) -> Session:
        """
        Trade the authorization code from the callback for a session.

        Raises:
            AuthenticationError: If the code is rejected.
        """
        try:
            response = await self._client.post(
                f"{AUTH_PREFIX}/token",
                params={"grant_type": "pkce"},
                json={"auth_code": code, "code_verifier": code_verifier},
                headers=self._get_headers(),
            )
            response.raise_for_status()
            body = response.json()
            return Session(
                access_token=body["access_token"],
                identity=Identity.from_user(body["user"]),
                refresh_token=body.get("refresh_token"),
                expires_in=body.get("expires_in"),
            )
        except httpx.HTTPStatusError as e:
            logger.warning("Authorization code exchange rejected: %s", e.response.status_code)
            raise AuthenticationError("Sign-in failed") from e
        except (KeyError, ValueError) as e:
            logger.error("Unexpected token response: %s", e)
            raise AuthenticationError("Sign-in failed") from e

    async def get_user(self, token: str) -> Identity:
        """
        Resolve a bearer credential to its identity.

        Raises:
            AuthenticationError: If the credential is invalid or expired.
            httpx.HTTPError: If the identity service cannot be reached.
        """
        response = await self._client.get(f"{AUTH_PREFIX}/user", headers=self._get_headers(token))
        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid or expired token")
        response.raise_for_status()
        try:
            return Identity.from_user(response.json())
        except (KeyError, ValueError) as e:
            raise AuthenticationError("Invalid or expired token") from e

    async def sign_out(self, token: str) -> None:
        """Revoke the session upstream. Failures are logged, not raised."""
        try:
            response = await self._client.post(
                f"{AUTH_PREFIX}/logout", headers=self._get_headers(token),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Sign-out request failed: %s", e)
