"""Tests for host provider registration and status display."""

from __future__ import annotations

import logging

import httpx
import pytest
import respx

from sixerr_plugin.discovery import (
    ProviderHost,
    build_model_list,
    fetch_provider_catalog,
    register,
    to_http_url,
)
from sixerr_plugin.display import StatusDisplay, format_status
from sixerr_plugin.plugin import to_ws_url
from sixerr_plugin.types import ClientEvent, ConnectionState, DiscoveredProvider, ProviderDescriptor


SERVER_URL = "https://sixerr.test"


class _Host:
    def __init__(self) -> None:
        self.registered: list[ProviderDescriptor] = []

    def register_provider(self, descriptor: ProviderDescriptor) -> None:
        self.registered.append(descriptor)


# ============================================================
#  URLs
# ============================================================


@pytest.mark.parametrize(
    "url,expected",
    [
        ("wss://sixerr.ai/", "https://sixerr.ai"),
        ("ws://localhost:8080", "http://localhost:8080"),
        ("https://sixerr.ai", "https://sixerr.ai"),
    ],
)
def test_to_http_url(url: str, expected: str) -> None:
    assert to_http_url(url) == expected


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://sixerr.ai", "wss://sixerr.ai"),
        ("http://localhost:8080", "ws://localhost:8080"),
        ("wss://sixerr.ai", "wss://sixerr.ai"),
    ],
)
def test_to_ws_url(url: str, expected: str) -> None:
    assert to_ws_url(url) == expected


# ============================================================
#  Catalog
# ============================================================


@pytest.mark.asyncio
async def test_fetch_provider_catalog() -> None:
    with respx.mock:
        respx.get(f"{SERVER_URL}/v1/providers").mock(
            return_value=httpx.Response(
                200,
                json={
                    "providers": [
                        {
                            "agentId": "a1",
                            "available": True,
                            "pricing": {"inputTokenPrice": "1", "outputTokenPrice": "2"},
                        },
                        {"agentId": "a2", "available": False},
                    ]
                },
            )
        )
        providers = await fetch_provider_catalog(SERVER_URL + "/")

    assert [p.agent_id for p in providers] == ["a1", "a2"]
    assert providers[0].pricing is not None
    assert providers[0].pricing.output_token_price == "2"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "down"}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["unexpected"]),
        httpx.Response(200, json={"providers": [{"available": True}]}),
    ],
)
async def test_fetch_provider_catalog_is_best_effort(response: httpx.Response) -> None:
    with respx.mock:
        respx.get(f"{SERVER_URL}/v1/providers").mock(return_value=response)
        assert await fetch_provider_catalog(SERVER_URL) == []


@pytest.mark.asyncio
async def test_fetch_provider_catalog_network_failure() -> None:
    with respx.mock:
        respx.get(f"{SERVER_URL}/v1/providers").mock(side_effect=httpx.ConnectError("refused"))
        assert await fetch_provider_catalog(SERVER_URL) == []


def test_build_model_list_puts_auto_first() -> None:
    models = build_model_list([DiscoveredProvider(agent_id="a1"), DiscoveredProvider(agent_id="a2")])
    assert [(m.id, m.name) for m in models] == [
        ("auto", "Auto (cheapest available)"),
        ("a1", "a1"),
        ("a2", "a2"),
    ]


# ============================================================
#  Registration
# ============================================================


@pytest.mark.asyncio
async def test_register_with_host() -> None:
    host = _Host()
    assert isinstance(host, ProviderHost)
    with respx.mock:
        respx.get(f"{SERVER_URL}/v1/providers").mock(
            return_value=httpx.Response(200, json={"providers": [{"agentId": "a1"}]})
        )
        descriptor = await register(host, "wss://sixerr.test", "eyJ")

    assert host.registered == [descriptor]
    assert descriptor.id == "sixerr"
    assert descriptor.models.base_url == SERVER_URL
    assert descriptor.models.api_key == "eyJ"
    assert descriptor.models.api == "openai-responses"
    assert [m.id for m in descriptor.models.models] == ["auto", "a1"]


@pytest.mark.asyncio
async def test_register_without_token_is_noop() -> None:
    host = _Host()
    assert await register(host, SERVER_URL, None) is None
    assert await register(host, SERVER_URL, "") is None
    assert host.registered == []


# ============================================================
#  Status display
# ============================================================


@pytest.mark.parametrize(
    "state,expected",
    [
        (ConnectionState.CONNECTING, "Connecting to server..."),
        (ConnectionState.AUTHENTICATING, "Authenticating..."),
        (ConnectionState.CONNECTED, "Connected (id: p-1) | Requests served: 3"),
        (ConnectionState.RECONNECTING, "Connection lost. Reconnecting..."),
        (ConnectionState.DISCONNECTED, "Disconnected"),
    ],
)
def test_format_status(state: ConnectionState, expected: str) -> None:
    assert format_status(state, "p-1", 3) == expected


def test_format_status_without_id() -> None:
    assert format_status("connected", None, 0) == "Connected (id: ?) | Requests served: 0"


@pytest.mark.asyncio
async def test_status_display_logs_events(caplog: pytest.LogCaptureFixture) -> None:
    display = StatusDisplay()
    with caplog.at_level(logging.INFO, logger="sixerr_plugin.display"):
        await display.handle_event(
            ClientEvent(
                type="status",
                data={"status": "connected", "connectionId": "p-9", "requestCount": 1},
            )
        )

    assert display.last_line == "Connected (id: p-9) | Requests served: 1"
    assert "[sixerr-plugin] Connected (id: p-9) | Requests served: 1" in caplog.text
