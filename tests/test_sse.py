from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from pycrudsync._sse import SseDecoder, SseMessage
from pycrudsync.adapters.sse import SseAdapter
from pycrudsync.config import CrudConfig
from pycrudsync.coordinator import CrudCoordinator
from pycrudsync.events import BusEvent
from pycrudsync.exceptions import CrudConfigError, CrudConnectionError, CrudParseError
from pycrudsync.ingestion.stream import ReconnectBackoff
from pycrudsync.models.changes import ChangeEvent, DeleteChange, UpdateChange


async def _wait_for(predicate: Callable[[], bool]) -> None:
    for _ in range(500):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def _feed(decoder: SseDecoder, text: str) -> list[SseMessage]:
    messages = []
    for line in text.split("\n"):
        message = decoder.feed_line(line)
        if message is not None:
            messages.append(message)
    return messages


def test_decoder_joins_multiline_data_and_skips_other_fields() -> None:
    decoder = SseDecoder()

    messages = _feed(decoder, ": keepalive\nid: 7\nevent: ping\ndata: a\ndata:b\nretry: 1500\n\n")

    assert messages == [SseMessage(data="a\nb", event="ping")]


def test_decoder_defaults_event_name_and_skips_empty_events() -> None:
    decoder = SseDecoder()

    messages = _feed(decoder, "event: ping\n\ndata: {}\n\n")

    assert messages == [SseMessage(data="{}")]


class _SseServer:
    def __init__(self, frames: list[bytes], *, status: int = 200) -> None:
        self.frames = frames
        self.status = status
        self.release = asyncio.Event()
        self.requests: list[dict[str, Any]] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/items/sse", self.stream)
        return app

    async def stream(self, request: web.Request) -> web.StreamResponse:
        self.requests.append({"headers": request.headers})
        if self.status != 200:
            return web.Response(status=self.status, text="denied")
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        for frame in self.frames:
            await response.write(frame)
        await self.release.wait()
        return response


_FRAMES = [
    b'data: {"type": "update", "item": {"id": 1, "title": "x"}, "resource": "items"}\n\n',
    b'data: {"type": "delete", "id": 2, "resource": "orders"}\n\n',
    b'event: ping\ndata: {"type": "delete", "id": 3}\n\n',
    b"data: not json\n\n",
    b'data: {"type": "delete", "id": "42"}\n\n',
]


@pytest.mark.asyncio
async def test_sse_adapter_streams_normalized_changes() -> None:
    server_app = _SseServer(_FRAMES)
    changes: list[ChangeEvent] = []
    errors: list[Exception] = []

    async with TestServer(server_app.app()) as server, aiohttp.ClientSession() as http:
        adapter = SseAdapter(
            str(server.make_url("/api/items")),
            http,
            resource="items",
            headers_provider=lambda: {"Authorization": "Bearer abc"},
        )
        subscription = adapter.subscribe(on_change=changes.append, on_error=errors.append)

        await _wait_for(lambda: len(changes) >= 2)
        subscription.unsubscribe()
        await subscription.wait_closed()
        server_app.release.set()

    assert changes == [UpdateChange(item={"id": 1, "title": "x"}), DeleteChange(id="42")]
    assert len(errors) == 1
    assert isinstance(errors[0], CrudParseError)
    headers = server_app.requests[0]["headers"]
    assert headers["Authorization"] == "Bearer abc"
    assert headers["Accept"] == "text/event-stream"


@pytest.mark.asyncio
async def test_non_200_stream_reports_connection_error() -> None:
    server_app = _SseServer([], status=401)
    errors: list[Exception] = []

    async with TestServer(server_app.app()) as server, aiohttp.ClientSession() as http:
        adapter = SseAdapter(str(server.make_url("/api/items")), http, reconnect_initial_delay=5.0)
        subscription = adapter.subscribe(on_change=lambda change: None, on_error=errors.append)

        await _wait_for(lambda: len(errors) >= 1)
        subscription.unsubscribe()
        await subscription.wait_closed()

    assert isinstance(errors[0], CrudConnectionError)
    assert errors[0].status_code == 401
    assert len(server_app.requests) == 1
    # Each subscription backs off on its own copy of the adapter policy.
    assert subscription.backoff is not adapter.reconnect_backoff
    assert subscription.backoff.failures == 1
    assert adapter.reconnect_backoff.failures == 0


@pytest.mark.asyncio
async def test_coordinator_applies_pushed_changes_end_to_end() -> None:
    server_app = _SseServer(_FRAMES[:1])
    remote_events: list[BusEvent] = []

    async with TestServer(server_app.app()) as server, aiohttp.ClientSession() as http:
        config = CrudConfig(
            endpoint=str(server.make_url("/api/items")),
            resource="items",
            push_enabled=True,
        )
        async with CrudCoordinator(config, session=http) as crud:
            crud.bus.subscribe("remote:update", remote_events.append)
            assert crud.supports_push is True

            await _wait_for(lambda: crud.cached_item("items", 1) is not None)
            assert crud.cached_item("items", 1) == {"id": 1, "title": "x"}

        assert not http.closed
        server_app.release.set()

    assert [event.name for event in remote_events] == ["remote:update"]


@pytest.mark.asyncio
async def test_sse_adapter_defaults_and_validation() -> None:
    async with aiohttp.ClientSession() as http:
        adapter = SseAdapter.from_config(
            CrudConfig(endpoint="https://example.com/api/items/", resource="items"),
            http,
        )
        assert adapter.sse_url == "https://example.com/api/items/sse"
        assert adapter.resource == "items"
        assert adapter.supports_push is True
        assert adapter.reconnect_backoff == ReconnectBackoff(1.0, 30.0)

        explicit = SseAdapter(
            "https://example.com/api/items",
            http,
            sse_url="https://push.example.com/events",
            reconnect_initial_delay=0.5,
            reconnect_max_delay=8.0,
        )
        assert explicit.sse_url == "https://push.example.com/events"
        assert explicit.reconnect_backoff.initial_delay == 0.5
        assert explicit.reconnect_backoff.max_delay == 8.0

        with pytest.raises(CrudConfigError):
            SseAdapter("https://example.com/api/items", http, reconnect_initial_delay=10.0, reconnect_max_delay=1.0)
