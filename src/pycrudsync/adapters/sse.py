"""SSE adapter: REST request operations plus an event-stream subscription."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiohttp

from pycrudsync._constants import DEFAULT_PAGE_SIZE, DEFAULT_PK
from pycrudsync._sse import open_sse_stream
from pycrudsync.adapters.base import ChangeHandler, ErrorHandler, HeadersProvider, resolve_headers
from pycrudsync.adapters.rest import RestAdapter
from pycrudsync.config import CrudConfig
from pycrudsync.exceptions import CrudConfigError, CrudParseError
from pycrudsync.ingestion.push import normalize_push_message
from pycrudsync.ingestion.stream import PushStream, ReconnectBackoff

_logger = logging.getLogger(__name__)


class SseAdapter(RestAdapter):
    """REST adapter that also streams changes from a ``text/event-stream``.

    Each message's data must be a JSON object such as
    ``{"type": "update", "item": {...}, "resource": "items"}``. The stream
    URL defaults to ``<base_url>/sse``.
    """

    supports_push: bool = True

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        sse_url: str | None = None,
        resource: str | None = None,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        pk: str = DEFAULT_PK,
        headers_provider: HeadersProvider | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        pagination_as_query: bool = True,
        request_timeout: float | None = 30.0,
    ) -> None:
        super().__init__(
            base_url,
            http_session,
            pk=pk,
            headers_provider=headers_provider,
            default_page_size=default_page_size,
            pagination_as_query=pagination_as_query,
            request_timeout=request_timeout,
        )
        self.sse_url = sse_url or f"{self.base_url}/sse"
        self.resource = resource
        self.reconnect_backoff = ReconnectBackoff(reconnect_initial_delay, reconnect_max_delay)

    @classmethod
    def from_config(
        cls,
        config: CrudConfig,
        http_session: aiohttp.ClientSession,
        *,
        headers_provider: HeadersProvider | None = None,
    ) -> SseAdapter:
        if not config.endpoint:
            raise CrudConfigError("No adapter configured and no endpoint provided")
        return cls(
            config.endpoint,
            http_session,
            sse_url=config.sse_url,
            resource=config.resource,
            reconnect_initial_delay=config.reconnect_initial_delay,
            reconnect_max_delay=config.reconnect_max_delay,
            pk=config.pk,
            headers_provider=headers_provider,
            default_page_size=config.default_page_size,
            pagination_as_query=config.pagination_as_query,
            request_timeout=config.request_timeout,
        )

    @asynccontextmanager
    async def _open_stream(self) -> AsyncIterator[AsyncIterator[str]]:
        # Headers are resolved per attempt so refreshed tokens are picked up.
        headers = await resolve_headers({}, self._headers_provider)
        async with open_sse_stream(self._http, self.sse_url, headers=headers) as messages:
            yield messages

    def subscribe(
        self,
        *,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
        resource: str | None = None,
    ) -> PushStream:
        """Open the event stream and forward normalized changes.

        Messages naming a different ``resource`` than *resource* (or the
        adapter's own ``resource``) are ignored. Unparsable messages go to
        *on_error* and are dropped. Must be called with a running loop.
        """
        scope = resource or self.resource

        def _handle(data: str) -> None:
            try:
                change = normalize_push_message(data, resource=scope)
            except CrudParseError as exc:
                if on_error is not None:
                    on_error(exc)
                else:
                    _logger.debug("Dropping unparsable push message", exc_info=True)
                return
            if change is not None:
                on_change(change)

        stream = PushStream(
            opener=self._open_stream,
            on_message=_handle,
            on_error=on_error,
            backoff=dataclasses.replace(self.reconnect_backoff, failures=0),
            name=f"sse:{scope or self.sse_url}",
        )
        return stream.start()

