"""Reference REST adapter over aiohttp."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, urlencode

import aiohttp
from pydantic import ValidationError

from pycrudsync._constants import DEFAULT_PAGE_SIZE, DEFAULT_PK, JSON_CONTENT_TYPE, USER_AGENT
from pycrudsync._redact import redact_for_log
from pycrudsync.adapters.base import HeadersProvider, build_query_pairs, resolve_headers
from pycrudsync.config import CrudConfig
from pycrudsync.exceptions import CrudConfigError, CrudTransportError
from pycrudsync.models.results import DeleteResult, Item, ItemKey, ListResult

_logger = logging.getLogger(__name__)

_BASE_HEADERS: dict[str, str] = {
    "Accept": JSON_CONTENT_TYPE,
    "Content-Type": JSON_CONTENT_TYPE,
    "X-Requested-With": "XMLHttpRequest",
    "User-Agent": USER_AGENT,
}


def _coerce_list_result(parsed: Any) -> ListResult:
    """Accept ``[...]`` or ``{"items": [...], ...}``; anything else is empty.

    Non-object entries are dropped. Paging metadata that does not validate is
    kept raw in ``meta`` instead of failing the call.
    """
    if isinstance(parsed, list):
        return ListResult(items=[item for item in parsed if isinstance(item, dict)])
    if not isinstance(parsed, dict) or not isinstance(parsed.get("items"), list):
        return ListResult(items=[])

    items = [item for item in parsed["items"] if isinstance(item, dict)]
    try:
        return ListResult.model_validate({**parsed, "items": items})
    except ValidationError:
        _logger.debug("List metadata did not validate; keeping it in meta", exc_info=True)
    extras = {key: value for key, value in parsed.items() if key != "items"}
    return ListResult(items=items, meta=extras or None)


class RestAdapter:
    """JSON REST adapter.

    ``GET base`` lists, ``GET base/<id>`` reads, ``POST base`` creates,
    ``PUT base/<id>`` updates and ``DELETE base/<id>`` deletes. Any non-2xx
    response raises :class:`CrudTransportError` with the status code and the
    decoded body attached.

    Usage::

        async with aiohttp.ClientSession() as http:
            adapter = RestAdapter("https://example.com/api/items", http)
            page = await adapter.list({"page": 1})
    """

    supports_push: bool = False

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        pk: str = DEFAULT_PK,
        headers_provider: HeadersProvider | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        pagination_as_query: bool = True,
        request_timeout: float | None = 30.0,
    ) -> None:
        if not base_url or not base_url.strip():
            raise CrudConfigError(f"{type(self).__name__} requires a base_url")
        self.base_url = base_url.strip().rstrip("/")
        self.pk = pk
        self._http = http_session
        self._headers_provider = headers_provider
        self._default_page_size = default_page_size
        self._pagination_as_query = pagination_as_query
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    @classmethod
    def from_config(
        cls,
        config: CrudConfig,
        http_session: aiohttp.ClientSession,
        *,
        headers_provider: HeadersProvider | None = None,
    ) -> RestAdapter:
        if not config.endpoint:
            raise CrudConfigError("No adapter configured and no endpoint provided")
        return cls(
            config.endpoint,
            http_session,
            pk=config.pk,
            headers_provider=headers_provider,
            default_page_size=config.default_page_size,
            pagination_as_query=config.pagination_as_query,
            request_timeout=config.request_timeout,
        )

    def item_url(self, item_id: ItemKey) -> str:
        return f"{self.base_url}/{quote(str(item_id), safe='')}"

    def list_url(self, params: Mapping[str, Any] | None = None) -> str:
        if not self._pagination_as_query:
            return self.base_url
        query_params: dict[str, Any] = dict(params) if params else {}
        if query_params.get("pageSize") is None:
            query_params["pageSize"] = self._default_page_size
        query = urlencode(build_query_pairs(query_params))
        return f"{self.base_url}?{query}" if query else self.base_url

    async def _headers(self) -> dict[str, str]:
        return await resolve_headers(_BASE_HEADERS, self._headers_provider)

    async def _request(self, method: str, url: str, payload: Mapping[str, Any] | None = None) -> Any:
        headers = await self._headers()
        body = json.dumps(dict(payload), default=str) if payload is not None else None

        _logger.debug("%s %s headers=%s", method, url, redact_for_log(headers))

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                is_json = JSON_CONTENT_TYPE in resp.headers.get("Content-Type", "").lower()
                if not 200 <= resp.status < 300:
                    try:
                        error_body: Any = await resp.json(content_type=None) if is_json else await resp.text()
                    except (aiohttp.ClientError, ValueError) as exc:
                        error_body = f"Failed to parse response: {exc}"
                    raise CrudTransportError(
                        f"HTTP {resp.status} {resp.reason or ''}".strip(),
                        status_code=resp.status,
                        body=error_body,
                        method=method,
                        url=url,
                    )
                if is_json:
                    return await resp.json(content_type=None)
                return await resp.text()
        except CrudTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise CrudTransportError(
                f"{method} {url} failed: {exc}",
                method=method,
                url=url,
            ) from exc
        except ValueError as exc:
            raise CrudTransportError(
                f"Invalid JSON from {method} {url}: {exc}",
                method=method,
                url=url,
            ) from exc

    async def list(self, params: Mapping[str, Any] | None = None) -> ListResult:
        parsed = await self._request("GET", self.list_url(params))
        return _coerce_list_result(parsed)

    async def get(self, item_id: ItemKey) -> Item:
        return await self._request("GET", self.item_url(item_id))

    async def create(self, payload: Mapping[str, Any]) -> Item:
        return await self._request("POST", self.base_url, payload)

    async def update(self, item_id: ItemKey, payload: Mapping[str, Any]) -> Item:
        return await self._request("PUT", self.item_url(item_id), payload)

    async def delete(self, item_id: ItemKey) -> DeleteResult:
        parsed = await self._request("DELETE", self.item_url(item_id))
        if isinstance(parsed, dict) and "ok" in parsed:
            return DeleteResult.model_validate(parsed)
        # Empty body (e.g. 204) or any other shape counts as success.
        return DeleteResult(ok=True)
