"""Internal server-sent events decoding and stream helpers."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass

import aiohttp

from pycrudsync._constants import EVENT_STREAM_CONTENT_TYPE
from pycrudsync._redact import redact_for_log
from pycrudsync.exceptions import CrudConnectionError

_logger = logging.getLogger(__name__)

DEFAULT_EVENT = "message"


@dataclass(frozen=True)
class SseMessage:
    """One dispatched ``text/event-stream`` event."""

    data: str
    event: str = DEFAULT_EVENT


class SseDecoder:
    """Incremental ``text/event-stream`` line decoder.

    Feed lines without their terminator; a blank line dispatches the
    buffered event. Comment lines (``:``) and fields other than ``data`` and
    ``event`` (including ``id`` and ``retry``) are ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event = ""

    def feed_line(self, line: str) -> SseMessage | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        return None

    def _dispatch(self) -> SseMessage | None:
        if not self._data:
            self._event = ""
            return None
        message = SseMessage(
            data="\n".join(self._data),
            event=self._event or DEFAULT_EVENT,
        )
        self._data = []
        self._event = ""
        return message


async def iter_sse_messages(content: aiohttp.StreamReader) -> AsyncIterator[SseMessage]:
    """Yield decoded events from a response body."""
    decoder = SseDecoder()
    async for raw_line in content:
        line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
        message = decoder.feed_line(line)
        if message is not None:
            yield message


async def _message_data(messages: AsyncIterator[SseMessage]) -> AsyncIterator[str]:
    # Mirrors EventSource.onmessage: named events are not forwarded.
    async for message in messages:
        if message.event == DEFAULT_EVENT:
            yield message.data


@asynccontextmanager
async def open_sse_stream(
    http: aiohttp.ClientSession,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
) -> AsyncIterator[AsyncIterator[str]]:
    """Open an event stream and yield an iterator of message ``data`` strings.

    Raises :class:`CrudConnectionError` if the server does not answer 200.
    The connection is released when the context exits.
    """
    request_headers = {"Accept": EVENT_STREAM_CONTENT_TYPE, "Cache-Control": "no-cache"}
    if headers:
        request_headers.update(headers)
    request_headers["Accept"] = EVENT_STREAM_CONTENT_TYPE

    _logger.debug("SSE connect %s headers=%s", url, redact_for_log(request_headers))

    timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
    try:
        async with http.get(url, headers=request_headers, timeout=timeout) as resp:
            if resp.status != 200:
                text = await resp.text()
                raise CrudConnectionError(
                    f"HTTP {resp.status} from {url}: {text[:200]}",
                    status_code=resp.status,
                    url=url,
                )
            content_type = resp.headers.get("Content-Type", "").lower()
            if EVENT_STREAM_CONTENT_TYPE not in content_type:
                _logger.debug("SSE endpoint %s answered with content type %r", url, content_type)
            yield _message_data(iter_sse_messages(resp.content))
    except aiohttp.ClientError as exc:
        raise CrudConnectionError(f"SSE connection to {url} failed: {exc}", url=url) from exc
