# Token Lifecycle Manager: access/refresh token pair + proactive refresh.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from claimwatch.auth.credential_store import CredentialStore
from claimwatch.auth.oauth import OAuthClient
from claimwatch.config import Settings
from claimwatch.errors import AuthRevoked, AuthTransientFailure
from claimwatch.events import AUTH, EventBus

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass
class TokenPair:
    """OAuth 2.0 access + refresh token pair."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: float = 0.0  # Unix timestamp
    token_type: str = "Bearer"

    @classmethod
    def from_response(cls, data: dict[str, Any], now: float) -> TokenPair:
        access_token = data.get("access_token")
        if not access_token:
            raise AuthTransientFailure("Token response has no access_token")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_at=now + float(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            token_type=data.get("token_type", "Bearer"),
        )


class TokenManager:
    """Owns the token pair and keeps the access token fresh.

    - ``store_tokens()`` records a pair, persists the refresh token and
      re-arms the background refresh timer.
    - ``get_valid_token()`` hands out a token with at least
      ``settings.token_refresh_margin`` seconds of lifetime left, refreshing
      first when needed.
    - ``refresh_access_token()`` never raises: revocation clears everything,
      transient failures leave state untouched; both return None.

    Concurrent refreshes are coalesced into one in-flight request.
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore | None = None,
        oauth: OAuthClient | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store or CredentialStore()
        self.oauth = oauth or OAuthClient(settings)
        self.bus = bus or EventBus()
        self._clock = clock

        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._expires_at: float | None = None
        self._token_type = "Bearer"

        self._timer: asyncio.TimerHandle | None = None
        self._timer_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None

    # -- state ---------------------------------------------------------------

    @property
    def margin(self) -> float:
        return self.settings.token_refresh_margin

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    @property
    def has_refresh_token(self) -> bool:
        return self._refresh_token is not None

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None or self._refresh_token is not None

    @property
    def refresh_scheduled(self) -> bool:
        return self._timer is not None

    def is_expiring_soon(self) -> bool:
        if self._access_token is None or self._expires_at is None:
            return True
        return self._clock() > self._expires_at - self.margin

    # -- storing -------------------------------------------------------------

    def store_tokens(self, tokens: TokenPair | dict[str, Any]) -> None:
        """Adopt a freshly obtained pair and (re)schedule background refresh.

        A pair without a refresh token keeps the one we already hold; servers
        routinely omit it on refresh.
        """
        if isinstance(tokens, TokenPair):
            pair = tokens
        else:
            pair = TokenPair.from_response(tokens, self._clock())
        if not pair.access_token:
            raise ValueError("access_token must not be empty")

        self._access_token = pair.access_token
        self._expires_at = pair.expires_at
        self._token_type = pair.token_type

        if pair.refresh_token and pair.refresh_token != self._refresh_token:
            self._refresh_token = pair.refresh_token
            try:
                self.store.save(pair.refresh_token)
            except OSError as e:
                logger.error("Failed to persist refresh token: %s", e)

        logger.info(
            "Token stored. Expires at %s",
            datetime.fromtimestamp(self._expires_at, tz=UTC).isoformat(),
        )
        self._schedule_refresh()

    def current_pair(self) -> TokenPair | None:
        if self._access_token is None:
            return None
        return TokenPair(
            access_token=self._access_token,
            refresh_token=self._refresh_token,
            expires_at=self._expires_at or 0.0,
            token_type=self._token_type,
        )

    # -- scheduling ----------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_refresh(self) -> None:
        self._cancel_timer()
        if self._expires_at is None or self._refresh_token is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; refresh will happen on demand")
            return

        delay = self._expires_at - self._clock() - self.margin
        if delay <= 0:
            if self._inflight is not None and not self._inflight.done():
                # The pair came from the refresh in flight; don't chain another
                return
            logger.info("Token already inside the refresh margin; refreshing now")
            self._timer_task = loop.create_task(self.refresh_access_token())
            return

        logger.info("Scheduling background refresh in %d minutes", round(delay / 60))
        self._timer = loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._timer_task = asyncio.get_running_loop().create_task(self.refresh_access_token())

    # -- retrieval -----------------------------------------------------------

    async def get_valid_token(self) -> str | None:
        """Return an access token valid for at least the safety margin, or None."""
        if self._access_token is None and self._refresh_token is None:
            logger.warning("No tokens available")
            return None

        if self.is_expiring_soon():
            logger.info("Token expired/expiring during retrieval. Refreshing...")
            return await self.refresh_access_token()

        return self._access_token

    async def refresh_access_token(self) -> str | None:
        """Refresh now. Concurrent callers share one request."""
        if self._refresh_token is None:
            logger.info("No refresh token available for refresh")
            return None

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._do_refresh())
        return await asyncio.shield(self._inflight)

    async def _do_refresh(self) -> str | None:
        refresh_token = self._refresh_token
        if refresh_token is None:
            return None

        logger.info("Refreshing access token...")
        try:
            data = await self.oauth.refresh(refresh_token)
            pair = TokenPair.from_response(data, self._clock())
        except AuthRevoked as e:
            logger.warning("%s; clearing credentials", e)
            self.clear_tokens()
            return None
        except AuthTransientFailure as e:
            logger.warning("Token refresh failed, keeping current state: %s", e)
            return None

        if self._refresh_token != refresh_token:
            # Logged out (or re-authorized) while the request was in flight
            logger.info("Discarding refresh result for a superseded token")
            return self._access_token

        self.store_tokens(pair)
        self.bus.publish(AUTH, success=True, type="refresh")
        return self._access_token

    # -- startup / logout ----------------------------------------------------

    async def load(self) -> str | None:
        """Adopt the persisted refresh token (if any) and refresh immediately."""
        refresh_token = self.store.load()
        if refresh_token is None:
            return None
        self._refresh_token = refresh_token
        logger.info("Refresh token loaded and decrypted from disk")
        return await self.refresh_access_token()

    def clear_tokens(self) -> None:
        """Log out: wipe memory, timers and the persisted file. Idempotent."""
        had_state = self.is_authenticated or self.store.exists()

        self._access_token = None
        self._refresh_token = None
        self._expires_at = None
        self._cancel_timer()

        try:
            self.store.clear()
        except OSError as e:
            logger.error("Failed to delete stored refresh token: %s", e)

        if had_state:
            logger.info("Tokens cleared and storage wiped")
            self.bus.publish(AUTH, success=False, error="Logged out")

    async def close(self) -> None:
        """Cancel timers and background refresh tasks (shutdown)."""
        self._cancel_timer()
        for task in (self._timer_task, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
