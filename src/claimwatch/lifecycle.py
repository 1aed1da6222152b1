"""Coordinated shutdown for the components an application context owns.

Components register their cleanup callbacks via ``register()`` and the
context's teardown path calls ``shutdown_all()``. Unlike a module-level
registry, each ``Lifecycle`` belongs to one context, so two contexts (or two
tests) never share state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class Lifecycle:
    def __init__(self) -> None:
        # name -> shutdown callback, in registration order
        self._registry: dict[str, Callable[[], Any]] = {}

    def register(self, name: str, shutdown: Callable[[], Any]) -> None:
        """Register a component's teardown callback (sync or async).

        Args:
            name: Unique identifier (e.g. ``"live_session"``, ``"tokens"``).
            shutdown: Callable for graceful teardown.
        """
        self._registry[name] = shutdown

    @property
    def names(self) -> list[str]:
        return list(self._registry)

    async def shutdown_all(self) -> None:
        """Shut down in reverse registration order.

        Errors are logged but don't prevent other shutdowns from running.
        """
        for name, shutdown_cb in reversed(list(self._registry.items())):
            try:
                result = shutdown_cb()
                if asyncio.iscoroutine(result):
                    await result
                logger.debug("Shut down %s", name)
            except Exception:
                logger.warning("Error shutting down %s", name, exc_info=True)
        self._registry.clear()
