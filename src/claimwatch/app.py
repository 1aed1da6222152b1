# Application context: wires auth, credentials, live session and verification.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import websockets

from claimwatch.auth.credential_store import CredentialStore
from claimwatch.auth.flow import AuthorizationFlow
from claimwatch.auth.oauth import OAuthClient
from claimwatch.auth.tokens import TokenManager
from claimwatch.config import Settings, get_settings
from claimwatch.credentials import CredentialPolicy, resolve_initial_credential
from claimwatch.events import CLAIM_DETECTED, FACT_CHECK_RESULT, Event, EventBus
from claimwatch.gemini.client import GeminiClient
from claimwatch.lifecycle import Lifecycle
from claimwatch.live.session import LiveSession, LiveSessionManager
from claimwatch.verify.models import Claim, ClaimRecord, VerificationResult
from claimwatch.verify.pipeline import ClaimVerifier

logger = logging.getLogger(__name__)


class ClaimWatchApp:
    """Explicitly constructed context object holding every component.

    Use as ``async with ClaimWatchApp(settings) as app: ...`` or call
    ``start()`` / ``shutdown()`` yourself.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: CredentialStore | None = None,
        bus: EventBus | None = None,
        connect: Any = websockets.connect,
        open_browser: Callable[[str], object] | None = None,
    ):
        self.settings = settings or get_settings()
        self.bus = bus or EventBus()
        self.lifecycle = Lifecycle()

        self.oauth = OAuthClient(self.settings)
        self.tokens = TokenManager(self.settings, store=store, oauth=self.oauth, bus=self.bus)
        flow_kwargs = {"open_browser": open_browser} if open_browser else {}
        self.auth_flow = AuthorizationFlow(self.settings, self.tokens, **flow_kwargs)

        self.policy = CredentialPolicy(self.tokens, session_open=lambda: self.sessions.is_open)
        self.sessions = LiveSessionManager(self.settings, self.policy, self.bus, connect=connect)
        self.gemini = GeminiClient(self.settings, self.policy)
        self.verifier = ClaimVerifier(self.settings, self.gemini)

        self.claims: dict[str, ClaimRecord] = {}
        self._verifications: set[asyncio.Task] = set()
        self._unsubscribe = self.bus.subscribe(CLAIM_DETECTED, self._on_claim_detected)

        self.lifecycle.register("tokens", self.tokens.close)
        self.lifecycle.register("auth_flow", self.auth_flow.cancel)
        self.lifecycle.register("verifications", self._cancel_verifications)
        self.lifecycle.register("live_session", self.sessions.stop_session)

    async def __aenter__(self) -> ClaimWatchApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # -- startup / shutdown ---------------------------------------------------

    async def start(self) -> None:
        """Pick the initial credential and restore a persisted login."""
        resolve_initial_credential(self.settings, self.policy)
        await self.tokens.load()

    async def shutdown(self) -> None:
        self._unsubscribe()
        await self.lifecycle.shutdown_all()

    # -- auth ----------------------------------------------------------------

    async def login(self) -> None:
        await self.auth_flow.run()

    async def logout(self) -> None:
        await self.sessions.stop_session()
        self.tokens.clear_tokens()

    async def switch_credential(self, api_keys: list[str] | None = None) -> None:
        """Switch to the given API key pool, or to OAuth when none is given.

        An open live session is stopped first, as its own step.
        """
        if self.sessions.is_open:
            logger.info("Stopping live session before switching credentials")
            await self.sessions.stop_session()
        if api_keys:
            self.policy.use_key_pool(api_keys)
        else:
            self.policy.use_oauth()

    # -- live session ---------------------------------------------------------

    async def start_session(self) -> LiveSession:
        return await self.sessions.start_session()

    async def stop_session(self) -> None:
        await self.sessions.stop_session()

    async def send_audio(self, data: str, mime_type: str | None = None) -> bool:
        return await self.sessions.send_audio(data, mime_type)

    # -- claims ----------------------------------------------------------------

    def _on_claim_detected(self, event: Event) -> None:
        claim = Claim(
            title=event.data.get("title") or "Claim",
            text=event.data.get("text") or "",
            call_id=event.data.get("call_id"),
        )
        self.track_claim(claim)

    def track_claim(self, claim: Claim) -> asyncio.Task:
        """Record *claim* and verify it in the background.

        The task is independent of the live session; closing the session
        does not cancel it.
        """
        self.claims[claim.id] = ClaimRecord(claim=claim)
        task = asyncio.ensure_future(self._verify_claim(claim))
        self._verifications.add(task)
        task.add_done_callback(self._verifications.discard)
        return task

    async def _verify_claim(self, claim: Claim) -> VerificationResult:
        result = await self.verifier.verify(claim.text)
        self.claims[claim.id].result = result
        self.bus.publish(
            FACT_CHECK_RESULT,
            claim_id=claim.id,
            claim_title=claim.title,
            claim_text=claim.text,
            result=result.to_dict(),
        )
        return result

    async def verify(self, claim_text: str) -> VerificationResult:
        return await self.verifier.verify(claim_text)

    @property
    def pending_verifications(self) -> int:
        return len(self._verifications)

    async def wait_for_verifications(self) -> None:
        while self._verifications:
            await asyncio.gather(*list(self._verifications), return_exceptions=True)

    async def _cancel_verifications(self) -> None:
        for task in list(self._verifications):
            task.cancel()
        await asyncio.gather(*list(self._verifications), return_exceptions=True)
