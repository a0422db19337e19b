"""
Incremental Server-Sent Events decoder.

Feeds arbitrary text chunks in, gets complete JSON events out. Events are
separated by a blank line; ``data:`` lines inside one event are joined
with newlines. The ``data: [DONE]`` terminator is dropped.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[Any]:
        """Consume ``chunk`` and return every event it completed, in order."""
        # Normalise after joining: a CRLF pair may straddle two chunks
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        *parts, self._buffer = self._buffer.split("\n\n")

        events: list[Any] = []
        for part in parts:
            event = self._decode(part)
            if event is not None:
                events.append(event)
        return events

    @property
    def pending(self) -> str:
        """Text of an event still waiting for its terminating blank line."""
        return self._buffer

    @staticmethod
    def _decode(part: str) -> Any | None:
        if not part.strip():
            return None

        data_lines: list[str] = []
        for line in part.split("\n"):
            if line.startswith("data:"):
                value = line[5:]
                data_lines.append(value[1:] if value.startswith(" ") else value)
            # Only data lines are used

        if not data_lines:
            return None

        data = "\n".join(data_lines)
        if data.strip() == DONE_SENTINEL:
            return None

        try:
            return json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Failed to parse SSE event data: %s", data[:100])
            return None
