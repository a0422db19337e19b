"""
Local HTTP proxy that injects Permit2 payments transparently.

Any HTTP client (an agent host, curl) can POST OpenResponses requests to
``http://127.0.0.1:{port}/v1/responses``; the proxy forwards them to the
Sixerr server through :class:`~sixerr_plugin.consumer.SixerrClient`,
which signs and retries on 402.

Binds to loopback only.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
from typing import Any

import httpx
from aiohttp import web

from sixerr_plugin.consumer import SixerrClient
from sixerr_plugin.errors import SixerrError

logger = logging.getLogger(__name__)

DEFAULT_PROXY_PORT = 6166

PROVIDERS_PATH = "/v1/providers"
RESPONSES_RE = re.compile(r"^/v1/responses(?:/([^/?]+))?$")

EVENT_STREAM = "text/event-stream"


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def _json_response(status: int, payload: Any) -> web.Response:
    return web.Response(
        status=status,
        text=json.dumps(payload),
        content_type="application/json",
    )


class SigningProxy:
    """Loopback HTTP front end for :class:`SixerrClient`.

    Usage::

        proxy = SigningProxy(client)
        port = await proxy.start()
        # ... POST to proxy.base_url + "/v1/responses"
        await proxy.stop()
    """

    def __init__(
        self,
        client: SixerrClient,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PROXY_PORT,
    ) -> None:
        if not _is_loopback(host):
            raise ValueError(f"Signing proxy must bind to a loopback address, got {host!r}")
        self._client = client
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        # No body size cap: inputs may carry base64 images
        app = web.Application(client_max_size=0)
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        return app

    async def start(self) -> int:
        """Start serving. Returns the bound port."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

        # Port 0 asks the OS for a free one
        addresses = self._runner.addresses
        if addresses:
            self._port = addresses[0][1]
        logger.info("Signing proxy listening on %s", self.base_url)
        return self._port

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.debug("Signing proxy stopped")

    @property
    def port(self) -> int:
        return self._port

    @property
    def base_url(self) -> str:
        host = f"[{self._host}]" if ":" in self._host else self._host
        return f"http://{host}:{self._port}"

    # ---- Handlers ----

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        try:
            return await self._route(request)
        except Exception:
            logger.exception("Signing proxy error on %s %s", request.method, request.path)
            return _json_response(500, {"error": "Internal proxy error"})

    async def _route(self, request: web.Request) -> web.StreamResponse:
        path = request.path

        if request.method == "GET" and path == PROVIDERS_PATH:
            return await self._handle_providers()

        match = RESPONSES_RE.match(path)
        if request.method == "POST" and match:
            return await self._handle_responses(request, match.group(1))

        return _json_response(404, {"error": "Not found"})

    async def _handle_providers(self) -> web.StreamResponse:
        try:
            providers = await self._client.list_providers()
        except (SixerrError, httpx.HTTPError, ValueError) as e:
            return _json_response(502, {"error": str(e) or e.__class__.__name__})
        return _json_response(200, providers)

    async def _handle_responses(
        self, request: web.Request, agent_id: str | None
    ) -> web.StreamResponse:
        try:
            raw_body = json.loads(await request.read())
        except ValueError:
            return _json_response(400, {"error": "Invalid JSON body"})
        if not isinstance(raw_body, dict):
            return _json_response(400, {"error": "Invalid JSON body"})

        try:
            upstream = await self._client.respond_raw(raw_body, agent_id)
        except (SixerrError, httpx.HTTPError) as e:
            logger.warning("Upstream request failed: %s", e)
            return _json_response(502, {"error": str(e) or e.__class__.__name__})

        try:
            content_type = upstream.headers.get("content-type", "application/json")

            if EVENT_STREAM in content_type:
                resp = web.StreamResponse(
                    status=upstream.status_code,
                    headers={
                        "Content-Type": EVENT_STREAM,
                        "Cache-Control": "no-cache",
                        "Connection": "keep-alive",
                    },
                )
                await resp.prepare(request)
                try:
                    async for chunk in upstream.aiter_bytes():
                        await resp.write(chunk)
                except httpx.HTTPError as e:
                    # Headers are already sent; end the stream where it broke
                    logger.warning("Upstream stream failed mid-response: %s", e)
                    resp.force_close()
                except ConnectionResetError:
                    logger.debug("Proxy client disconnected during stream")
                    return resp
                await resp.write_eof()
                return resp

            body = await upstream.aread()
            return web.Response(
                status=upstream.status_code,
                body=body,
                headers={"Content-Type": content_type},
            )
        finally:
            await upstream.aclose()
