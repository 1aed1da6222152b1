"""Credential selection: OAuth bearer token or static API key (optionally pooled).

Outbound calls ask ``CredentialPolicy.get_auth_context()`` at send time and
get back headers / query params; they never need to know which mode is
active.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from claimwatch.auth.tokens import TokenManager
from claimwatch.config import Settings
from claimwatch.errors import NotAuthenticated, SessionActiveError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthCredential:
    kind: Literal["oauth"] = "oauth"


@dataclass(frozen=True)
class ApiKeyCredential:
    value: str = field(repr=False)
    pool_index: int = 0
    kind: Literal["api_key"] = "api_key"


Credential = OAuthCredential | ApiKeyCredential


@dataclass(frozen=True)
class AuthContext:
    """What an outbound request needs: extra headers and/or query params."""

    headers: dict[str, str] = field(default_factory=dict, repr=False)
    params: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def kind(self) -> str:
        return "oauth" if "Authorization" in self.headers else "api_key"


class CredentialPolicy:
    """Holds the single active credential.

    Switching credentials is refused while a live session is open; callers
    stop the session first (see ``ClaimWatchApp.switch_credential``).
    """

    def __init__(
        self,
        tokens: TokenManager,
        session_open: Callable[[], bool] = lambda: False,
    ):
        self.tokens = tokens
        self._session_open = session_open
        self._active: Credential | None = None
        self._pool: list[str] = []

    @property
    def active(self) -> Credential | None:
        return self._active

    @property
    def pool_size(self) -> int:
        return len(self._pool)

    def _guard(self) -> None:
        if self._session_open():
            raise SessionActiveError("Stop the live session before switching credentials")

    def use_oauth(self) -> None:
        self._guard()
        self._active = OAuthCredential()
        self._pool = []
        logger.info("Using OAuth credentials")

    def use_api_key(self, key: str) -> None:
        self.use_key_pool([key])

    def use_key_pool(self, keys: list[str]) -> None:
        keys = [k for k in keys if k]
        if not keys:
            raise ValueError("No API key provided")
        self._guard()
        self._pool = list(keys)
        self._active = ApiKeyCredential(value=keys[0], pool_index=0)
        logger.info("Using API key credentials (pool of %d)", len(keys))

    def clear(self) -> None:
        self._guard()
        self._active = None
        self._pool = []

    def rotate_key(self) -> bool:
        """Advance to the next pooled key. False if there is nothing to rotate to."""
        active = self._active
        if not isinstance(active, ApiKeyCredential) or len(self._pool) < 2:
            return False
        index = (active.pool_index + 1) % len(self._pool)
        self._active = ApiKeyCredential(value=self._pool[index], pool_index=index)
        logger.warning("Rotated to API key %d/%d", index + 1, len(self._pool))
        return True

    async def get_auth_context(self) -> AuthContext:
        active = self._active
        if active is None:
            raise NotAuthenticated(
                "No credential configured. Run `claimwatch login` or set an API key."
            )

        if isinstance(active, ApiKeyCredential):
            return AuthContext(params={"key": active.value})

        token = await self.tokens.get_valid_token()
        if not token:
            raise NotAuthenticated(
                "Not logged in (or the session expired). Run `claimwatch login`."
            )
        return AuthContext(headers={"Authorization": f"Bearer {token}"})


def resolve_initial_credential(settings: Settings, policy: CredentialPolicy) -> Credential | None:
    """Pick the startup credential from settings.

    ``auth_mode == "auto"``: API keys if any are configured, else OAuth.
    """
    mode = settings.auth_mode
    keys = settings.api_key_pool

    if mode == "auto":
        mode = "api_key" if keys else "oauth"

    if mode == "api_key":
        if not keys:
            logger.warning("auth_mode=api_key but no CLAIMWATCH_GOOGLE_API_KEY(S) configured")
            return None
        policy.use_key_pool(keys)
    else:
        policy.use_oauth()
    return policy.active
