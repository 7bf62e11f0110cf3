"""Transport adapter contract.

The coordinator depends only on these protocols. Having them here makes it
easy to pass test doubles while keeping the production implementations
(:class:`~pycrudsync.adapters.rest.RestAdapter`,
:class:`~pycrudsync.adapters.sse.SseAdapter`) concrete.

Push capability is declared with the ``supports_push`` flag and checked once
when the adapter is configured, never per call.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from pycrudsync.models.changes import ChangeEvent
from pycrudsync.models.results import DeleteResult, Item, ItemKey, ListResult

_logger = logging.getLogger(__name__)

HeadersProvider = Callable[[], Mapping[str, str] | None | Awaitable[Mapping[str, str] | None]]
"""Supplies dynamic headers (auth, CSRF). May be sync or async; ``None`` adds nothing."""

ChangeHandler = Callable[[ChangeEvent], None]
ErrorHandler = Callable[[Exception], None]


class Subscription(Protocol):
    """Handle returned by a push subscription."""

    def unsubscribe(self) -> None: ...

    async def wait_closed(self) -> None: ...


class NoopSubscription:
    """Subscription handle for adapters without push support."""

    def unsubscribe(self) -> None:
        return None

    async def wait_closed(self) -> None:
        return None


class CrudAdapter(Protocol):
    """Request operations. Every method raises on non-success responses."""

    supports_push: bool

    async def list(self, params: Mapping[str, Any] | None = None) -> ListResult: ...

    async def get(self, item_id: ItemKey) -> Item: ...

    async def create(self, payload: Mapping[str, Any]) -> Item: ...

    async def update(self, item_id: ItemKey, payload: Mapping[str, Any]) -> Item: ...

    async def delete(self, item_id: ItemKey) -> DeleteResult: ...


class PushAdapter(CrudAdapter, Protocol):
    """Request operations plus push-based change notifications."""

    def subscribe(
        self,
        *,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
        resource: str | None = None,
    ) -> Subscription: ...


def push_capable(adapter: CrudAdapter) -> PushAdapter | None:
    """Return *adapter* typed as a push adapter when it declares support."""
    if getattr(adapter, "supports_push", False) and callable(getattr(adapter, "subscribe", None)):
        return adapter  # type: ignore[return-value]
    return None


def build_query_pairs(params: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """Flatten list parameters into query pairs.

    - ``None`` values are skipped.
    - Mappings are JSON-encoded into a single value.
    - Lists/tuples repeat the key once per element.
    - Everything else is ``str()``-ed (booleans as ``true``/``false``).
    """
    if not params:
        return []
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            pairs.append((str(key), json.dumps(value, separators=(",", ":"), default=str)))
        elif isinstance(value, (list, tuple)):
            pairs.extend((str(key), _scalar(item)) for item in value)
        else:
            pairs.append((str(key), _scalar(value)))
    return pairs


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


async def resolve_headers(
    base: Mapping[str, str],
    provider: HeadersProvider | None,
) -> dict[str, str]:
    """Merge provider headers over *base*.

    A provider returning ``None`` adds nothing. A failing provider, or one
    returning something other than a mapping, is logged and the base headers
    are used unchanged.
    """
    headers = dict(base)
    if provider is None:
        return headers
    try:
        dynamic = provider()
        if inspect.isawaitable(dynamic):
            dynamic = await dynamic
    except Exception:
        _logger.warning("Headers provider failed; sending default headers", exc_info=True)
        return headers
    if dynamic is None:
        return headers
    if not isinstance(dynamic, Mapping):
        _logger.warning(
            "Headers provider returned %s, expected a mapping; sending default headers",
            type(dynamic).__name__,
        )
        return headers
    headers.update({str(k): str(v) for k, v in dynamic.items()})
    return headers
