"""Status and session events.

Components publish ``Event`` objects on an ``EventBus``; the display layer
(CLI, UI) subscribes. Handlers may be plain callables or coroutine
functions. Coroutine handlers are scheduled on the running loop and tracked
so ``drain()`` can wait for them.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Event types
AUTH = "auth"
SETUP_COMPLETE = "setup_complete"
CLAIM_DETECTED = "claim_detected"
SERVER_CONTENT = "server_content"
CONNECTION_ERROR = "connection_error"
CLOSED = "closed"
FACT_CHECK_RESULT = "fact_check_result"

Handler = Callable[["Event"], Awaitable[None] | None]


@dataclass
class Event:
    """A single event: ``event_type`` plus a flat ``data`` payload."""

    event_type: str
    data: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Minimal publish/subscribe bus.

    ``subscribe("*", handler)`` receives every event.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register *handler*; returns a callable that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[event_type].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event_type: str, **data: Any) -> Event:
        event = Event(event_type=event_type, data=data)
        for handler in [*self._handlers.get(event_type, []), *self._handlers.get("*", [])]:
            try:
                result = handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_type)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._task_done)
        return event

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
