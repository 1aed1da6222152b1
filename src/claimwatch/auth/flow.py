# Authorization Flow: browser consent with PKCE and a one-shot loopback listener.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import hmac
import logging
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass

from aiohttp import web

from claimwatch.auth.oauth import OAuthClient, build_authorization_url
from claimwatch.auth.pkce import PkceContext
from claimwatch.auth.tokens import TokenManager
from claimwatch.config import Settings
from claimwatch.errors import AuthError, AuthorizationDenied, AuthorizationError, StateMismatch
from claimwatch.events import AUTH, EventBus

logger = logging.getLogger(__name__)

_PAGE = "<html><body><h2>{title}</h2><p>{body}</p></body></html>"


@dataclass(frozen=True)
class CallbackResult:
    code: str


class CallbackListener:
    """HTTP listener on ``127.0.0.1:<os-assigned port>`` for one redirect.

    The first ``GET /`` resolves ``wait()`` with either a ``CallbackResult``
    or the appropriate ``AuthorizationError``; every later request gets 410.
    """

    def __init__(self, expected_state: str, host: str = "127.0.0.1"):
        self.expected_state = expected_state
        self.host = host
        self.port: int | None = None
        self._runner: web.AppRunner | None = None
        self._result: asyncio.Future | None = None
        self._served = False

    @property
    def redirect_uri(self) -> str:
        if self.port is None:
            raise RuntimeError("Listener not started")
        return f"http://{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> str:
        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get("/", self._handle)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, 0)
        await site.start()

        self.port = self._runner.addresses[0][1]
        logger.info("OAuth callback listener on %s", self.redirect_uri)
        return self.redirect_uri

    async def _handle(self, request: web.Request) -> web.Response:
        if self._served:
            return web.Response(status=410, text="Callback already handled")
        self._served = True

        query = request.query
        outcome: CallbackResult | AuthorizationError
        if not hmac.compare_digest(query.get("state", ""), self.expected_state):
            logger.error("OAuth state mismatch; aborting authorization")
            outcome = StateMismatch("OAuth state mismatch")
            page = _PAGE.format(title="Authorization failed", body="Security check failed.")
        elif query.get("error"):
            outcome = AuthorizationDenied(query["error"])
            page = _PAGE.format(title="Authorization failed", body="You can close this window.")
        elif not query.get("code"):
            outcome = AuthorizationError("Callback is missing the authorization code")
            page = _PAGE.format(title="Authorization failed", body="Missing authorization code.")
        else:
            outcome = CallbackResult(code=query["code"])
            page = _PAGE.format(
                title="Authorization successful",
                body="You can close this window and return to claimwatch.",
            )

        if self._result is not None and not self._result.done():
            if isinstance(outcome, Exception):
                self._result.set_exception(outcome)
            else:
                self._result.set_result(outcome)
        return web.Response(text=page, content_type="text/html")

    async def wait(self, timeout: float | None = None) -> CallbackResult:
        if self._result is None:
            raise RuntimeError("Listener not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except TimeoutError as e:
            raise AuthorizationError("Timed out waiting for the browser redirect") from e

    async def close(self) -> None:
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()
            logger.debug("OAuth callback listener closed")


class AuthorizationFlow:
    """Runs one authorization code + PKCE attempt at a time.

    Starting a new attempt cancels the pending one (and closes its listener)
    before anything else happens.
    """

    def __init__(
        self,
        settings: Settings,
        tokens: TokenManager,
        oauth: OAuthClient | None = None,
        bus: EventBus | None = None,
        open_browser: Callable[[str], object] = webbrowser.open,
    ):
        self.settings = settings
        self.tokens = tokens
        self.oauth = oauth or tokens.oauth
        self.bus = bus or tokens.bus
        self.open_browser = open_browser

        self.context: PkceContext | None = None
        self._listener: CallbackListener | None = None
        self._attempt: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._attempt is not None and not self._attempt.done()

    async def cancel(self) -> None:
        """Abandon the outstanding attempt, if any."""
        attempt, self._attempt = self._attempt, None
        if attempt is not None and not attempt.done():
            attempt.cancel()
            try:
                await attempt
            except (asyncio.CancelledError, AuthError):
                pass
        if self._listener is not None:
            await self._listener.close()
            self._listener = None
        self.context = None

    async def run(self) -> None:
        """Drive the user through consent and store the resulting tokens."""
        await self.cancel()
        self._attempt = asyncio.ensure_future(self._run_attempt())
        try:
            await self._attempt
        except AuthError as e:
            self.bus.publish(AUTH, success=False, error=str(e))
            raise
        self.bus.publish(AUTH, success=True, type="login")

    async def _run_attempt(self) -> None:
        if not self.settings.google_oauth_client_id:
            raise AuthorizationError(
                "OAuth client id not configured (CLAIMWATCH_GOOGLE_OAUTH_CLIENT_ID)"
            )

        context = self.context = PkceContext.generate()
        try:
            await self._authorize(context)
        finally:
            if self.context is context:
                self.context = None
        logger.info("Authorization complete")

    async def _authorize(self, context: PkceContext) -> None:
        listener = self._listener = CallbackListener(expected_state=context.state)
        try:
            redirect_uri = await listener.start()
            url = build_authorization_url(
                auth_url=self.settings.oauth_auth_url,
                client_id=self.settings.google_oauth_client_id,
                redirect_uri=redirect_uri,
                scopes=self.settings.oauth_scopes,
                code_challenge=context.challenge,
                state=context.state,
            )
            logger.info("Opening browser for Google sign-in")
            self.open_browser(url)

            result = await listener.wait(timeout=self.settings.oauth_timeout)
        finally:
            await listener.close()
            if self._listener is listener:
                self._listener = None

        data = await self.oauth.exchange_code(
            code=result.code,
            redirect_uri=redirect_uri,
            code_verifier=context.verifier,
        )
        self.tokens.store_tokens(data)
