"""
Consumer-side HTTP client for the Sixerr inference marketplace.

Handles the x402 payment flow automatically:

1. Sends the request without payment.
2. On 402, signs a Permit2 authorization with the configured signer.
3. Retries exactly once with the ``X-PAYMENT`` header.

Usage::

    from sixerr_plugin import SixerrClient, LocalPaymentSigner

    async with SixerrClient(LocalPaymentSigner("0x...")) as client:
        result = await client.respond_json("Hello, world!")
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote as url_quote

import httpx
from pydantic import ValidationError

from sixerr_plugin.errors import MarketplaceError, PaymentError
from sixerr_plugin.permit2 import PAYMENT_HEADER, PaymentAuthorizer
from sixerr_plugin.protocol import MarketplaceErrorBody
from sixerr_plugin.signers import PaymentSigner
from sixerr_plugin.types import ConsumerConfig

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED = 402


def _error_message(response: httpx.Response) -> str:
    """Extract a safe error message from an already-read error response.

    Only the server's own message is surfaced, never the raw body.
    """
    try:
        return MarketplaceErrorBody.model_validate_json(response.content).error.message
    except ValidationError:
        pass
    try:
        err_data = response.json()
    except ValueError:
        return "Request failed"
    if isinstance(err_data, dict):
        err = err_data.get("error", err_data.get("message"))
        if isinstance(err, str):
            return err
    return "Request failed"


class SixerrClient:
    """HTTP client for the Sixerr marketplace with automatic x402 payment."""

    def __init__(self, signer: PaymentSigner, config: ConsumerConfig | None = None) -> None:
        self._config = config or ConsumerConfig()
        self.base_url = self._config.server_url.rstrip("/")
        self._authorizer = PaymentAuthorizer(signer, max_amount=self._config.max_amount)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._config.timeout_ms / 1000.0,
        )

    async def __aenter__(self) -> SixerrClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def respond(
        self,
        input: Any,
        model: str | None = None,
        stream: bool = False,
        agent_id: str | None = None,
        routing: str | None = None,
        max_amount: str | None = None,
    ) -> httpx.Response:
        """Send an inference request, paying if the server asks.

        Args:
            input: Input text or OpenResponses item list.
            model: Model identifier (default ``"default"``).
            stream: Request SSE streaming.
            agent_id: Target a specific provider.
            routing: ``"cheapest"`` or ``"fastest"``.
            max_amount: Per-call ceiling in atomic USDC.

        Returns:
            The unread :class:`httpx.Response`. Callers must read or
            stream it and then ``await response.aclose()``.
        """
        body: dict[str, Any] = {"model": model or "default", "input": input}
        if stream:
            body["stream"] = True
        if routing:
            body["routing"] = routing
        return await self._post_with_payment(self._responses_path(agent_id), body, max_amount)

    async def respond_raw(
        self, body: dict[str, Any], agent_id: str | None = None
    ) -> httpx.Response:
        """Forward a full OpenResponses body untouched, handling payment.

        Same return contract as :meth:`respond`.
        """
        return await self._post_with_payment(self._responses_path(agent_id), body)

    async def respond_json(self, input: Any, **kwargs: Any) -> Any:
        """Non-streaming :meth:`respond` returning the parsed JSON body.

        Raises:
            MarketplaceError: If the server answers with an error status.
        """
        kwargs["stream"] = False
        response = await self.respond(input, **kwargs)
        try:
            await response.aread()
            if response.status_code >= 400:
                raise MarketplaceError(
                    f"Sixerr request failed ({response.status_code}): {_error_message(response)}",
                    status_code=response.status_code,
                )
            return response.json()
        finally:
            await response.aclose()

    async def list_providers(self) -> Any:
        """List connected providers from the server catalog."""
        response = await self._client.get("/v1/providers")
        if response.status_code >= 400:
            raise MarketplaceError(
                f"Failed to fetch providers ({response.status_code}): {_error_message(response)}",
                status_code=response.status_code,
            )
        return response.json()

    async def close(self) -> None:
        await self._client.aclose()

    # ---- Internal ----

    @staticmethod
    def _responses_path(agent_id: str | None) -> str:
        if agent_id:
            return f"/v1/responses/{url_quote(agent_id, safe='')}"
        return "/v1/responses"

    async def _post(self, path: str, content: bytes, headers: dict[str, str]) -> httpx.Response:
        request = self._client.build_request("POST", path, content=content, headers=headers)
        return await self._client.send(request, stream=True)

    async def _post_with_payment(
        self,
        path: str,
        body: dict[str, Any],
        max_amount: str | None = None,
    ) -> httpx.Response:
        # Encoded once so the paid retry carries byte-identical content
        content = json.dumps(body).encode("utf-8")
        headers = {"Content-Type": "application/json"}

        first = await self._post(path, content, headers)
        if first.status_code != PAYMENT_REQUIRED:
            return first

        try:
            await first.aread()
            payment_body = first.json()
        except ValueError as e:
            raise PaymentError("Server returned 402 with a non-JSON body") from e
        finally:
            await first.aclose()

        x_payment = await self._authorizer.authorize(payment_body, max_amount)
        logger.debug("Retrying %s with Permit2 payment from %s", path, self._authorizer.address)

        retry = await self._post(path, content, {**headers, PAYMENT_HEADER: x_payment})
        if retry.status_code == PAYMENT_REQUIRED:
            try:
                await retry.aread()
                detail = _error_message(retry)
            finally:
                await retry.aclose()
            raise PaymentError(f"Payment rejected after authorization: {detail}")
        return retry
