# OAuth endpoints: authorization URL + token endpoint calls.
# Created: 2026-10-18

from __future__ import annotations

import logging
import urllib.parse
from typing import Any

import httpx

from claimwatch.config import Settings
from claimwatch.errors import AuthorizationError, AuthRevoked, AuthTransientFailure

logger = logging.getLogger(__name__)

# Token endpoint answers that mean "this grant is dead"
REVOKED_STATUSES = (400, 401)


def build_authorization_url(
    auth_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    code_challenge: str,
    state: str,
) -> str:
    """Build the consent-screen URL for the authorization code + PKCE flow."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
    }
    return f"{auth_url}?{urllib.parse.urlencode(params)}"


class OAuthClient:
    """Talks to the OAuth token endpoint.

    Both calls return the raw JSON body
    (``access_token``, ``refresh_token?``, ``expires_in``, ``token_type``).
    """

    def __init__(self, settings: Settings, timeout: float = 15.0):
        self.settings = settings
        self.timeout = timeout

    def _client_credentials(self) -> dict[str, str]:
        return {
            "client_id": self.settings.google_oauth_client_id or "",
            "client_secret": self.settings.google_oauth_client_secret or "",
        }

    async def _post(self, data: dict[str, str]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(self.settings.oauth_token_url, data=data)
        except httpx.HTTPError as e:
            raise AuthTransientFailure(f"Token endpoint unreachable: {e}") from e

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise AuthTransientFailure("Token endpoint returned a non-JSON body") from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthTransientFailure("Token endpoint response has no access_token")
        return data

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> dict[str, Any]:
        """Exchange an authorization code (plus PKCE verifier) for tokens."""
        resp = await self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
                **self._client_credentials(),
            }
        )
        if resp.is_error:
            logger.error("Code exchange failed: %s %s", resp.status_code, resp.text)
            if resp.status_code in REVOKED_STATUSES:
                raise AuthorizationError(f"Code exchange rejected (HTTP {resp.status_code})")
            raise AuthTransientFailure(f"Code exchange failed (HTTP {resp.status_code})")
        return self._json(resp)

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Raises:
            AuthRevoked: on HTTP 400/401.
            AuthTransientFailure: on network errors, other non-2xx, bad bodies.
        """
        resp = await self._post(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                **self._client_credentials(),
            }
        )
        if resp.is_error:
            logger.error("Refresh failed: %s %s", resp.status_code, resp.text)
            if resp.status_code in REVOKED_STATUSES:
                raise AuthRevoked(resp.status_code, resp.text)
            raise AuthTransientFailure(f"Refresh failed (HTTP {resp.status_code})")
        return self._json(resp)
