"""
Observer registry for plugin client notifications.

Replaces a global emitter: each :class:`~sixerr_plugin.client.PluginClient`
owns one :class:`EventManager` and callers subscribe to it directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from sixerr_plugin.types import ClientEvent

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[[ClientEvent], Coroutine[Any, Any, None] | None]

# Key under which catch-all handlers are stored
ANY_EVENT = "*"


class EventManager:
    """Dispatches :class:`ClientEvent` objects to sync or async handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for one event type.

        Returns a callable that removes exactly this registration.
        """
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        return self.subscribe(ANY_EVENT, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Remove one handler, or every handler when ``handler`` is None."""
        if handler is None:
            self._handlers.pop(event_type, None)
            return
        remaining = [h for h in self._handlers.get(event_type, []) if h != handler]
        if remaining:
            self._handlers[event_type] = remaining
        else:
            self._handlers.pop(event_type, None)

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    async def dispatch(self, event: ClientEvent) -> None:
        """Call type-specific handlers, then catch-all ones, in order.

        A failing handler is logged and skipped; it never reaches the
        connection loop that emitted the event.
        """
        handlers = [*self._handlers.get(event.type, []), *self._handlers.get(ANY_EVENT, [])]
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in %s handler %r", event.type, handler)
