"""
Programmatic start for a Sixerr provider.

Usage::

    from sixerr_plugin import PluginConfig, start_plugin

    config = PluginConfig(
        server_url="wss://sixerr.ai",
        jwt="eyJ...",
        backend={"gateway_token": "oc_..."},
    )
    handle = await start_plugin(config)
    ...
    await handle.stop()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sixerr_plugin.client import PluginClient
from sixerr_plugin.consumer import SixerrClient
from sixerr_plugin.discovery import to_http_url
from sixerr_plugin.display import StatusDisplay
from sixerr_plugin.proxy import SigningProxy
from sixerr_plugin.relay import RequestRelay
from sixerr_plugin.signers import PaymentSigner
from sixerr_plugin.types import ConsumerConfig, PluginConfig

logger = logging.getLogger(__name__)


def to_ws_url(server_url: str) -> str:
    """``https://`` -> ``wss://``, ``http://`` -> ``ws://``; ws URLs pass through."""
    if server_url.startswith("https:"):
        return "wss:" + server_url[6:]
    if server_url.startswith("http:"):
        return "ws:" + server_url[5:]
    return server_url


@dataclass
class PluginHandle:
    """A running provider; keep it to shut down cleanly."""

    client: PluginClient
    relay: RequestRelay
    display: StatusDisplay
    proxy: SigningProxy | None = None
    consumer: SixerrClient | None = None

    async def stop(self) -> None:
        self.display.log("Shutting down...")
        if self.proxy is not None:
            await self.proxy.stop()
        if self.consumer is not None:
            await self.consumer.close()
        await self.client.stop()
        await self.relay.close()


async def start_plugin(config: PluginConfig, signer: PaymentSigner | None = None) -> PluginHandle:
    """Connect to the marketplace and start serving requests.

    With a ``signer``, also starts the loopback signing proxy on
    ``config.proxy_port``. The proxy is optional: a bind failure is
    logged and the provider keeps running without it.
    """
    display = StatusDisplay()
    relay = RequestRelay(config.backend)
    client = PluginClient(
        server_url=to_ws_url(config.server_url),
        credential=config.credential(),
        relay=relay,
        reconnect_policy=config.reconnect,
    )
    display.attach(client)
    display.log(f"Server: {config.server_url}")
    display.log(f"Gateway: {config.backend.gateway_url}")

    handle = PluginHandle(client=client, relay=relay, display=display)

    if signer is not None:
        consumer = SixerrClient(signer, ConsumerConfig(server_url=to_http_url(config.server_url)))
        proxy = SigningProxy(consumer, port=config.proxy_port)
        try:
            await proxy.start()
        except OSError as e:
            logger.warning("Signing proxy unavailable on port %d: %s", config.proxy_port, e)
            await proxy.stop()
            await consumer.close()
        else:
            handle.proxy = proxy
            handle.consumer = consumer

    await client.start()
    return handle
