"""
Sixerr provider connection.

Keeps one authenticated WebSocket to the Sixerr server, answers
keepalives, hands inbound requests to :class:`~sixerr_plugin.relay.RequestRelay`
and reconnects with jittered backoff when the transport drops.

Usage::

    from sixerr_plugin import PluginClient, RequestRelay
    from sixerr_plugin.types import BackendConfig, Credential

    relay = RequestRelay(BackendConfig(gateway_token="oc_..."))
    client = PluginClient(
        server_url="wss://sixerr.ai",
        credential=Credential(token="eyJ..."),
        relay=relay,
    )
    await client.start()
    # ... serve until shutdown
    await client.stop()
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable

import websockets
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosed, WebSocketException

from sixerr_plugin.errors import ProtocolError
from sixerr_plugin.events import EventHandler, EventManager
from sixerr_plugin.protocol import (
    AuthErrorMessage,
    AuthMessage,
    AuthOkMessage,
    JwtRefreshMessage,
    PingMessage,
    PongMessage,
    PriceUpdateAckMessage,
    PriceUpdateMessage,
    RequestMessage,
    encode_message,
    parse_server_message,
)
from sixerr_plugin.reconnect import DEFAULT_RECONNECT_POLICY, BackoffPolicy, compute_backoff
from sixerr_plugin.relay import RequestRelay
from sixerr_plugin.types import ClientEvent, ConnectionState, Credential, Pricing

logger = logging.getLogger(__name__)

# Close codes
CLEAN_CLOSE = 1000
SERVICE_RESTART = 1012

# Inference payloads can carry base64 images
MAX_FRAME_BYTES = 100 * 2**20


class PluginClient:
    """
    Provider-side WebSocket client for the Sixerr marketplace.

    States move ``disconnected -> connecting -> authenticating -> connected``;
    a dropped socket goes through ``reconnecting`` back to ``connecting``.
    ``auth_error`` and :meth:`stop` are terminal.
    """

    def __init__(
        self,
        server_url: str,
        credential: Credential,
        relay: RequestRelay,
        reconnect_policy: BackoffPolicy | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._server_url = server_url
        self._credential = credential
        self._relay = relay
        self._policy = reconnect_policy or DEFAULT_RECONNECT_POLICY
        self._rand = rand
        self._events = EventManager()

        # State
        self._state = ConnectionState.DISCONNECTED
        self._ws: websockets.ClientConnection | None = None
        self._connection_id: str | None = None
        self._attempt = 0
        self._closed = True  # True = intentional shutdown, no reconnect
        self._request_count = 0
        self._run_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connection_id(self) -> str | None:
        """Server-assigned id from the last ``auth_ok``."""
        return self._connection_id

    @property
    def request_count(self) -> int:
        """Requests served successfully on this client."""
        return self._request_count

    @property
    def credential(self) -> Credential:
        """Current credential snapshot (replaced, never mutated)."""
        return self._credential

    @property
    def reconnect_attempt(self) -> int:
        return self._attempt

    # ---- Observers ----

    def on(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to ``status``, ``jwt_refresh`` or ``price_update_ack``.

        Returns a callable that undoes the subscription.
        """
        return self._events.subscribe(event_type, handler)

    def on_any(self, handler: EventHandler) -> Callable[[], None]:
        return self._events.subscribe_all(handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        self._events.unsubscribe(event_type, handler)

    # ---- Lifecycle ----

    async def start(self) -> None:
        """Open the connection and keep it open until :meth:`stop`."""
        if self._run_task is not None and not self._run_task.done():
            return
        self._closed = False
        await self._set_state(ConnectionState.CONNECTING)
        self._run_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Close the socket, cancel pending reconnects and in-flight relays."""
        self._closed = True

        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close(CLEAN_CLOSE, "plugin stopping")
            except Exception as e:
                logger.debug("Error closing socket: %s", e)

        task = self._run_task
        self._run_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        inflight = list(self._inflight)
        for relay_task in inflight:
            relay_task.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)

        await self._set_state(ConnectionState.DISCONNECTED)

    async def update_pricing(self, input_token_price: str, output_token_price: str) -> None:
        """Announce new prices without reconnecting.

        The server answers with ``price_update_ack``, which swaps the
        credential snapshot used for the next handshake.
        """
        await self.send(
            PriceUpdateMessage(
                input_token_price=input_token_price,
                output_token_price=output_token_price,
            )
        )

    async def send(self, message: BaseModel) -> None:
        """Write one frame if a socket is open; otherwise drop it.

        All writers share one lock so concurrent relay tasks never
        interleave partial frames.
        """
        ws = self._ws
        if ws is None:
            return
        payload = encode_message(message)
        async with self._send_lock:
            try:
                await ws.send(payload)
            except ConnectionClosed:
                logger.debug("Dropped %s frame: socket closed", getattr(message, "type", "?"))
            except Exception as e:
                logger.error("Failed to send message: %s", e)

    # ---- Internal ----

    async def _run(self) -> None:
        """Connect, serve, and reconnect until closed."""
        while not self._closed:
            close_code = await self._session()
            if self._closed:
                break

            if close_code == SERVICE_RESTART:
                # Planned restart: next delay uses attempt 1
                self._attempt = 0

            self._attempt += 1
            delay_ms = compute_backoff(self._policy, self._attempt, self._rand)
            await self._set_state(ConnectionState.RECONNECTING)
            logger.info("Reconnecting in %dms (attempt %d)", delay_ms, self._attempt)
            await asyncio.sleep(delay_ms / 1000.0)

        await self._set_state(ConnectionState.DISCONNECTED)

    async def _session(self) -> int | None:
        """Run one socket from open to close and return its close code."""
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(self._server_url, max_size=MAX_FRAME_BYTES)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning("Connection error: %s", e)
            return None

        if self._closed:
            await ws.close(CLEAN_CLOSE, "plugin stopping")
            return CLEAN_CLOSE

        self._ws = ws
        try:
            await self._set_state(ConnectionState.AUTHENTICATING)
            await self.send(self._auth_message())
            async for raw in ws:
                await self._handle_message(raw)
        except ConnectionClosed:
            pass
        finally:
            if self._ws is ws:
                self._ws = None

        logger.debug("Socket closed with code %s", ws.close_code)
        return ws.close_code

    def _auth_message(self) -> AuthMessage:
        credential = self._credential
        pricing = credential.pricing
        return AuthMessage(
            token=credential.token,
            protocol=credential.protocol,
            input_token_price=pricing.input_token_price if pricing else None,
            output_token_price=pricing.output_token_price if pricing else None,
            agent_name=credential.agent_name or None,
            agent_description=credential.agent_description or None,
        )

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            msg = parse_server_message(raw)
        except ProtocolError:
            # Unknown or malformed frames are dropped, the socket stays up
            logger.debug("Ignoring invalid server message")
            return

        if isinstance(msg, AuthOkMessage):
            self._connection_id = msg.connection_id
            self._attempt = 0
            await self._set_state(ConnectionState.CONNECTED)
            logger.info("Authenticated as %s", msg.connection_id)

        elif isinstance(msg, AuthErrorMessage):
            self._closed = True  # Do NOT reconnect, the credential is bad
            ws = self._ws
            self._ws = None
            if ws is not None:
                await ws.close(CLEAN_CLOSE, "auth failed")
            await self._set_state(ConnectionState.DISCONNECTED)
            logger.error("Authentication failed: %s", msg.message)

        elif isinstance(msg, PingMessage):
            await self.send(PongMessage(ts=msg.ts))

        elif isinstance(msg, JwtRefreshMessage):
            self._credential = self._credential.model_copy(update={"token": msg.token})
            logger.info("Received refreshed JWT")
            await self._events.dispatch(ClientEvent(type="jwt_refresh", data={"jwt": msg.token}))

        elif isinstance(msg, PriceUpdateAckMessage):
            pricing = Pricing(
                input_token_price=msg.input_token_price,
                output_token_price=msg.output_token_price,
            )
            self._credential = self._credential.model_copy(update={"pricing": pricing})
            await self._events.dispatch(
                ClientEvent(
                    type="price_update_ack",
                    data=pricing.model_dump(by_alias=True),
                )
            )

        elif isinstance(msg, RequestMessage):
            # Relay concurrently; the receive loop must keep reading
            task = asyncio.create_task(self._relay_request(msg.id, msg.body))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _relay_request(self, request_id: str, body: object) -> None:
        try:
            ok = await self._relay.handle(request_id, body, self.send)
        except Exception:
            logger.exception("[Request %s] Unexpected error", request_id)
            return
        if ok:
            self._request_count += 1
            await self._emit_status()

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        await self._emit_status()

    async def _emit_status(self) -> None:
        await self._events.dispatch(
            ClientEvent(
                type="status",
                data={
                    "status": self._state.value,
                    "connectionId": self._connection_id,
                    "requestCount": self._request_count,
                },
            )
        )
