# Live Session Manager: one bidirectional Gemini Live connection at a time.
# Created: 2026-10-18

from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from claimwatch.config import Settings
from claimwatch.credentials import AuthContext, CredentialPolicy
from claimwatch.errors import SessionTransportError
from claimwatch.events import (
    CLAIM_DETECTED,
    CLOSED,
    CONNECTION_ERROR,
    SERVER_CONTENT,
    SETUP_COMPLETE,
    EventBus,
)
from claimwatch.live.protocol import DETECT_CLAIM, audio_frame, setup_frame, tool_response_frame

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_SETUP_ACK = "awaiting_setup_ack"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERRORED)


class LiveSession:
    """A single streaming connection and its protocol state machine.

    idle -> connecting -> awaiting_setup_ack -> listening -> closing -> closed

    Any unexpected drop ends in ``errored``. Either way exactly one ``closed``
    event is published, with ``abnormal`` telling the two apart.
    """

    def __init__(
        self,
        settings: Settings,
        auth: AuthContext,
        bus: EventBus,
        connect: Any = websockets.connect,
    ):
        self.settings = settings
        self.bus = bus
        self._auth = auth
        self._connect = connect
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._closing = False
        self._finished = False
        self.state = SessionState.IDLE

    @property
    def url(self) -> str:
        if not self._auth.params:
            return self.settings.live_url
        return f"{self.settings.live_url}?{urllib.parse.urlencode(self._auth.params)}"

    @property
    def ready(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN and not self.state.terminal

    async def open(self) -> None:
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session already used (state={self.state.value})")

        self.state = SessionState.CONNECTING
        try:
            self._ws = await self._connect(
                self.url,
                additional_headers={**self._auth.headers, "Content-Type": "application/json"},
            )
            logger.info("Connected to Gemini Live API")
            await self._send(setup_frame(self.settings.live_model))
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.error("Live connection failed: %s", e)
            self.bus.publish(CONNECTION_ERROR, message=str(e))
            self._finish(code=None, reason=str(e), abnormal=True)
            raise SessionTransportError(f"Could not connect to live service: {e}") from e

        self.state = SessionState.AWAITING_SETUP_ACK
        logger.info("Agent setup sent; waiting for acknowledgement")
        self._reader = asyncio.ensure_future(self._read_loop())

    async def _send(self, frame: dict[str, Any]) -> None:
        await self._ws.send(json.dumps(frame))

    async def _read_loop(self) -> None:
        code: int | None = None
        reason = ""
        error: Exception | None = None
        try:
            async for raw in self._ws:
                await self._handle_raw(raw)
        except ConnectionClosed as e:
            error = e
        except (OSError, WebSocketException) as e:
            error = e
            logger.error("Live connection error: %s", e)
        finally:
            code = getattr(self._ws, "close_code", None)
            reason = getattr(self._ws, "close_reason", None) or (str(error) if error else "")
            abnormal = not self._closing
            if abnormal and error is not None:
                self.bus.publish(CONNECTION_ERROR, message=str(error))
            if abnormal and self._ws.state is State.OPEN:
                await self._close_socket()
            self._finish(code=code, reason=reason, abnormal=abnormal)

    async def _close_socket(self) -> None:
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("Error while closing live connection: %s", e)

    async def _handle_raw(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-JSON frame from live service")
            return
        if isinstance(message, dict):
            await self.handle_message(message)

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Dispatch one inbound frame by shape."""
        if "setupComplete" in message:
            logger.info("Setup confirmed by server; listening")
            if self.state is SessionState.AWAITING_SETUP_ACK:
                self.state = SessionState.LISTENING
            self.bus.publish(SETUP_COMPLETE)
            return

        if "toolCall" in message:
            tool_call = message.get("toolCall")
            calls = tool_call.get("functionCalls") if isinstance(tool_call, dict) else None
            if not isinstance(calls, list):
                logger.warning("Ignoring malformed tool call frame")
                return
            for call in calls:
                if not isinstance(call, dict):
                    logger.warning("Ignoring malformed function call: %r", call)
                    continue
                if call.get("name") != DETECT_CLAIM:
                    logger.debug("Ignoring unknown tool call %s", call.get("name"))
                    continue
                args = call.get("args")
                if not isinstance(args, dict):
                    args = {}
                call_id = call.get("id")
                title = args.get("claim_title") or "Claim"
                text = args.get("claim_text") or title
                logger.info("Claim detected: %s", title)
                self.bus.publish(CLAIM_DETECTED, title=title, text=text, call_id=call_id)
                await self._acknowledge(call_id)
            return

        if "serverContent" in message:
            self.bus.publish(SERVER_CONTENT, content=message["serverContent"])

    async def _acknowledge(self, call_id: str | None) -> None:
        if not self.ready:
            return
        try:
            await self._send(tool_response_frame(DETECT_CLAIM, call_id))
        except ConnectionClosed:
            logger.debug("Connection closed before tool response %s could be sent", call_id)

    async def send_audio(self, data: str, mime_type: str | None = None) -> bool:
        """Send one base64 PCM chunk. Returns False (frame dropped) when not open."""
        if not self.ready:
            return False
        try:
            await self._send(audio_frame(data, mime_type or self.settings.audio_mime_type))
        except ConnectionClosed:
            return False
        return True

    async def disconnect(self) -> None:
        """Close the connection. No-op when already closed."""
        if self.state.terminal or self._closing:
            if self._reader is not None:
                await asyncio.gather(self._reader, return_exceptions=True)
            return

        self._closing = True
        self.state = SessionState.CLOSING
        if self._ws is not None:
            await self._close_socket()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        code = getattr(self._ws, "close_code", None)
        self._finish(code=code, reason="client disconnect", abnormal=False)

    def _finish(self, code: int | None, reason: str, abnormal: bool) -> None:
        if self._finished:
            return
        self._finished = True
        self.state = SessionState.ERRORED if abnormal else SessionState.CLOSED
        logger.info("Live session closed: %s %s", code, reason)
        self.bus.publish(CLOSED, code=code, reason=reason, abnormal=abnormal)

    async def wait_closed(self) -> None:
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)


class LiveSessionManager:
    """Owns at most one non-terminal ``LiveSession``.

    ``start_session()`` always tears the previous session down (and waits for
    it) before opening the next one. Credentials are looked up at open time;
    an open session is never re-authorized.
    """

    def __init__(
        self,
        settings: Settings,
        policy: CredentialPolicy,
        bus: EventBus,
        connect: Any = websockets.connect,
    ):
        self.settings = settings
        self.policy = policy
        self.bus = bus
        self._connect = connect
        self._current: LiveSession | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> LiveSession | None:
        return self._current

    @property
    def state(self) -> SessionState:
        return self._current.state if self._current else SessionState.IDLE

    @property
    def is_open(self) -> bool:
        return self._current is not None and not self._current.state.terminal

    async def start_session(self) -> LiveSession:
        async with self._lock:
            await self._stop()
            auth = await self.policy.get_auth_context()
            session = LiveSession(self.settings, auth, self.bus, connect=self._connect)
            self._current = session
            await session.open()
            return session

    async def stop_session(self) -> None:
        async with self._lock:
            await self._stop()

    async def _stop(self) -> None:
        if self._current is not None:
            await self._current.disconnect()

    async def send_audio(self, data: str, mime_type: str | None = None) -> bool:
        if self._current is None:
            return False
        return await self._current.send_audio(data, mime_type)
