"""
Register Sixerr as a model provider inside a host application.

The model list is fetched best-effort from ``GET /v1/providers``. Stale
data only affects autocomplete: the host can send any model string and
the server answers 404 for unknown agents.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import httpx
from pydantic import TypeAdapter, ValidationError

from sixerr_plugin.types import (
    DiscoveredProvider,
    ModelEntry,
    ProviderDescriptor,
    ProviderModels,
)

logger = logging.getLogger(__name__)

PROVIDER_ID = "sixerr"
PROVIDER_LABEL = "Sixerr"
AUTO_MODEL = ModelEntry(id="auto", name="Auto (cheapest available)")

_providers_adapter = TypeAdapter(list[DiscoveredProvider])


@runtime_checkable
class ProviderHost(Protocol):
    """Minimal surface of a host that accepts model providers."""

    def register_provider(self, descriptor: ProviderDescriptor) -> None: ...


def to_http_url(server_url: str) -> str:
    """``wss://`` -> ``https://``, ``ws://`` -> ``http://``, no trailing slash."""
    if server_url.startswith("wss:"):
        server_url = "https:" + server_url[4:]
    elif server_url.startswith("ws:"):
        server_url = "http:" + server_url[3:]
    return server_url.rstrip("/")


async def fetch_provider_catalog(
    server_http_url: str, timeout: float = 10.0
) -> list[DiscoveredProvider]:
    """Connected providers, or an empty list on any failure."""
    url = f"{server_http_url.rstrip('/')}/v1/providers"
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
        if response.status_code >= 400:
            return []
        data = response.json()
        if not isinstance(data, dict):
            return []
        return _providers_adapter.validate_python(data.get("providers") or [])
    except (httpx.HTTPError, ValueError, ValidationError) as e:
        logger.debug("Provider catalog unavailable: %s", e)
        return []


def build_model_list(providers: list[DiscoveredProvider]) -> list[ModelEntry]:
    """Model entries for the host; ``auto`` always comes first."""
    models = [AUTO_MODEL]
    for provider in providers:
        models.append(ModelEntry(id=provider.agent_id, name=provider.agent_id))
    return models


async def register(host: ProviderHost, server_url: str, token: str | None) -> ProviderDescriptor | None:
    """Register Sixerr with ``host``.

    Skipped silently when there is no token yet (the plugin has not
    authenticated).
    """
    if not token:
        return None

    base_url = to_http_url(server_url)
    providers = await fetch_provider_catalog(base_url)

    descriptor = ProviderDescriptor(
        id=PROVIDER_ID,
        label=PROVIDER_LABEL,
        models=ProviderModels(
            base_url=base_url,
            api_key=token,
            models=build_model_list(providers),
        ),
    )
    host.register_provider(descriptor)
    logger.info("Registered %s provider with %d models", PROVIDER_ID, len(descriptor.models.models))
    return descriptor
