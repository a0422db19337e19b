"""
Request relay: one inbound ``request`` frame in, one terminal frame out.

The relay calls the local OpenResponses-compatible gateway over HTTP and
turns its answer into ``response``, ``stream_event``/``stream_end`` or
``error`` frames. Failures never escape :meth:`RequestRelay.handle`;
they become an ``error`` frame for that request id.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
from pydantic import BaseModel, ValidationError

from sixerr_plugin.errors import BackendError
from sixerr_plugin.protocol import (
    ErrorMessage,
    ResponseMessage,
    StreamEndMessage,
    StreamEventMessage,
    Usage,
)
from sixerr_plugin.sse import SSEDecoder
from sixerr_plugin.types import BackendConfig

logger = logging.getLogger(__name__)

RESPONSES_PATH = "/v1/responses"
SESSION_KEY_HEADER = "X-OpenClaw-Session-Key"
RELAY_ERROR_CODE = "plugin_error"
COMPLETED_EVENT = "response.completed"

# Outbound frame sink, normally PluginClient.send
SendFn = Callable[[BaseModel], Awaitable[None]]


class BackendClient:
    """Thin wrapper around httpx for the local inference gateway."""

    def __init__(self, config: BackendConfig) -> None:
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.gateway_url.rstrip("/"),
            headers={"Authorization": f"Bearer {config.gateway_token}"},
            timeout=config.timeout_ms / 1000.0,
        )

    def _headers(self, streaming: bool) -> dict[str, str]:
        # Fresh session key per call
        headers = {
            SESSION_KEY_HEADER: f"agent:{self._config.agent_id}:subagent:{uuid.uuid4()}",
        }
        if streaming:
            headers["Accept"] = "text/event-stream"
        return headers

    async def forward(self, body: dict[str, Any]) -> Any:
        """POST a non-streaming request and return the parsed JSON body.

        Raises:
            BackendError: On status >= 400 or a body that is not JSON.
            httpx.HTTPError: On transport failure or timeout.
        """
        response = await self._client.post(
            RESPONSES_PATH, json=body, headers=self._headers(streaming=False)
        )

        try:
            parsed = response.json()
        except ValueError:
            raise BackendError(
                f"Backend returned invalid JSON (status {response.status_code}): "
                f"{response.text[:200]}"
            )

        if response.status_code >= 400:
            raise BackendError(
                f"Backend error (status {response.status_code}): {json.dumps(parsed)}"
            )

        return parsed

    async def stream(self, body: dict[str, Any]) -> AsyncIterator[Any]:
        """POST a streaming request and yield SSE events as they arrive.

        Raises:
            BackendError: On status >= 400, before any event is yielded.
            httpx.HTTPError: On transport failure or timeout, possibly mid-stream.
        """
        async with self._client.stream(
            "POST", RESPONSES_PATH, json=body, headers=self._headers(streaming=True)
        ) as response:
            if response.status_code >= 400:
                raw = (await response.aread()).decode("utf-8", errors="replace")
                raise BackendError(
                    f"Backend error (status {response.status_code}): {raw[:500]}"
                )

            decoder = SSEDecoder()
            async for chunk in response.aiter_text():
                for event in decoder.feed(chunk):
                    yield event

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class PendingRequest:
    """Bookkeeping for one in-flight relay call."""

    id: str
    streaming: bool = False
    usage: Usage = field(default_factory=Usage)


class RequestRelay:
    """Relays inbound requests to the backend, one independent call per id."""

    def __init__(self, config: BackendConfig, backend: BackendClient | None = None) -> None:
        self._config = config
        self._backend = backend or BackendClient(config)
        self._pending: dict[str, PendingRequest] = {}
        self._served = 0

    @property
    def served_count(self) -> int:
        """Requests completed successfully since startup."""
        return self._served

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def handle(self, request_id: str, body: Any, send: SendFn) -> bool:
        """Relay one request and emit exactly one terminal frame.

        Returns:
            ``True`` if a ``response`` or ``stream_end`` was emitted,
            ``False`` if an ``error`` was emitted or the id was refused.
        """
        if request_id in self._pending:
            # One outstanding call per id
            logger.warning("[Request %s] Duplicate id while in flight, ignoring", request_id)
            return False

        pending = PendingRequest(id=request_id)
        self._pending[request_id] = pending
        try:
            ok = await self._relay(pending, body, send)
        finally:
            del self._pending[request_id]

        if ok:
            self._served += 1
        return ok

    async def _relay(self, pending: PendingRequest, body: Any, send: SendFn) -> bool:
        try:
            # A missing body forwards as an empty request
            if body is None:
                body = {}
            if not isinstance(body, dict):
                raise BackendError("Request body must be a JSON object")
            forward_body = dict(body)

            # OpenClaw requires a concrete model string
            model = forward_body.get("model")
            if not model or model == "default":
                forward_body["model"] = self._config.default_model

            pending.streaming = forward_body.get("stream") is True
            if pending.streaming:
                return await self._relay_stream(pending, forward_body, send)

            forward_body["stream"] = False
            result = await self._backend.forward(forward_body)
            await send(ResponseMessage(id=pending.id, body=result))
            return True
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning("[Request %s] Relay failed: %s", pending.id, message)
            await send(ErrorMessage(id=pending.id, code=RELAY_ERROR_CODE, message=message))
            return False

    async def _relay_stream(
        self, pending: PendingRequest, body: dict[str, Any], send: SendFn
    ) -> bool:
        async for event in self._backend.stream(body):
            await send(StreamEventMessage(id=pending.id, event=event))
            usage = _completed_usage(event)
            if usage is not None:
                pending.usage = usage

        await send(StreamEndMessage(id=pending.id, usage=pending.usage))
        return True

    async def close(self) -> None:
        await self._backend.close()


def _completed_usage(event: Any) -> Usage | None:
    """Token counters from a ``response.completed`` event, if well-formed."""
    if not isinstance(event, dict) or event.get("type") != COMPLETED_EVENT:
        return None
    response = event.get("response")
    if not isinstance(response, dict):
        return None
    usage = response.get("usage")
    if not isinstance(usage, dict):
        return None
    try:
        return Usage(
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )
    except ValidationError:
        return None
