"""Human-readable connection status lines."""

from __future__ import annotations

import logging
from typing import Callable

from sixerr_plugin.types import ClientEvent, ConnectionState

logger = logging.getLogger(__name__)

PREFIX = "[sixerr-plugin]"


def format_status(
    state: ConnectionState | str, connection_id: str | None, request_count: int
) -> str:
    state = ConnectionState(state)
    if state is ConnectionState.CONNECTING:
        return "Connecting to server..."
    if state is ConnectionState.AUTHENTICATING:
        return "Authenticating..."
    if state is ConnectionState.CONNECTED:
        return f"Connected (id: {connection_id or '?'}) | Requests served: {request_count}"
    if state is ConnectionState.RECONNECTING:
        return "Connection lost. Reconnecting..."
    return "Disconnected"


class StatusDisplay:
    """Logs one line per status change of a plugin client."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self.last_line: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, client) -> None:
        self.detach()
        self._unsubscribe = client.on("status", self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def update(self, state: ConnectionState | str, connection_id: str | None, request_count: int) -> None:
        self.last_line = format_status(state, connection_id, request_count)
        self._log.info("%s %s", PREFIX, self.last_line)

    def log(self, message: str) -> None:
        self._log.info("%s %s", PREFIX, message)

    async def handle_event(self, event: ClientEvent) -> None:
        data = event.data
        self.update(data["status"], data.get("connectionId"), data.get("requestCount", 0))
