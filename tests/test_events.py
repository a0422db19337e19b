"""Tests for the observer registry."""

from __future__ import annotations

import logging

import pytest

from sixerr_plugin.display import StatusDisplay
from sixerr_plugin.events import EventManager
from sixerr_plugin.types import ClientEvent


@pytest.mark.asyncio
async def test_sync_and_async_handlers_in_order() -> None:
    events = EventManager()
    seen: list[str] = []

    def sync_handler(event: ClientEvent) -> None:
        seen.append(f"sync:{event.type}")

    async def async_handler(event: ClientEvent) -> None:
        seen.append(f"async:{event.type}")

    events.subscribe("status", sync_handler)
    events.subscribe_all(async_handler)
    await events.dispatch(ClientEvent(type="status"))
    await events.dispatch(ClientEvent(type="jwt_refresh"))

    assert seen == ["sync:status", "async:status", "async:jwt_refresh"]


@pytest.mark.asyncio
async def test_unsubscribe_callable_removes_one_registration() -> None:
    events = EventManager()
    seen: list[int] = []

    remove_first = events.subscribe("status", lambda e: seen.append(1))
    events.subscribe("status", lambda e: seen.append(2))
    remove_first()
    await events.dispatch(ClientEvent(type="status"))

    assert seen == [2]
    assert events.handler_count("status") == 1

    events.unsubscribe("status")
    assert events.handler_count("status") == 0


@pytest.mark.asyncio
async def test_failing_handler_is_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    events = EventManager()
    seen: list[str] = []

    def broken(event: ClientEvent) -> None:
        raise RuntimeError("boom")

    events.subscribe("status", broken)
    events.subscribe("status", lambda e: seen.append("after"))

    with caplog.at_level(logging.ERROR, logger="sixerr_plugin.events"):
        await events.dispatch(ClientEvent(type="status"))

    assert seen == ["after"]
    assert "boom" in caplog.text


def test_status_display_detach() -> None:
    class _Client:
        def __init__(self) -> None:
            self.events = EventManager()

        def on(self, event_type, handler):
            return self.events.subscribe(event_type, handler)

    client = _Client()
    display = StatusDisplay()
    display.attach(client)
    display.attach(client)
    assert client.events.handler_count("status") == 1

    display.detach()
    assert client.events.handler_count("status") == 0
