"""Mutation coordinator: cached, optimistic CRUD over a transport adapter."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from pycrudsync._constants import make_temp_key
from pycrudsync.adapters.base import (
    CrudAdapter,
    HeadersProvider,
    NoopSubscription,
    PushAdapter,
    Subscription,
    push_capable,
)
from pycrudsync.adapters.rest import RestAdapter
from pycrudsync.adapters.sse import SseAdapter
from pycrudsync.config import CrudConfig
from pycrudsync.events import CrudEventName, EventBus, remote_event_name
from pycrudsync.exceptions import CrudConfigError, CrudError
from pycrudsync.models.changes import ChangeEvent, CreateChange, DeleteChange, PatchChange, UpdateChange
from pycrudsync.models.results import DeleteResult, Item, ItemKey, ListResult
from pycrudsync.state.query import make_query_key
from pycrudsync.state.store import CacheStore

_logger = logging.getLogger(__name__)


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # All waiters may be gone; mark the exception retrieved.
    if not task.cancelled():
        task.exception()


class CrudCoordinator:
    """Cache-backed CRUD engine with optimistic writes and push reconciliation.

    Usage::

        config = CrudConfig(endpoint="https://example.com/api/items", resource="items")
        async with CrudCoordinator(config) as crud:
            crud.bus.subscribe("*", print)
            page = await crud.list()
            item = await crud.create("items", {"title": "x"}, optimistic=True)

    Every operation emits lifecycle events on :attr:`bus`. Within one call
    ``before:<op>`` comes first, then cache mutations, then
    ``item:<op>``/``after:<op>`` or ``error``. Concurrent operations
    interleave at ``await`` points and the last cache write wins.
    """

    def __init__(
        self,
        config: CrudConfig | None = None,
        *,
        adapter: CrudAdapter | None = None,
        bus: EventBus | None = None,
        session: aiohttp.ClientSession | None = None,
        headers_provider: HeadersProvider | None = None,
    ) -> None:
        self._config = config or CrudConfig()
        self._bus = bus or EventBus()
        self._external_session = session is not None
        self._http_session = session
        self._headers_provider = headers_provider
        self._store = CacheStore()
        self._in_flight: dict[str, asyncio.Task[ListResult]] = {}
        self._subscriptions: list[Subscription] = []
        self._adapter: CrudAdapter | None = None
        self._push: PushAdapter | None = None
        if adapter is not None:
            self._configure_adapter(adapter)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CrudCoordinator:
        if self._adapter is None and self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._auto_subscribe()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Unsubscribe all push subscriptions and release the HTTP session."""
        subscriptions = self._subscriptions
        self._subscriptions = []
        for subscription in subscriptions:
            subscription.unsubscribe()
        for subscription in subscriptions:
            await subscription.wait_closed()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _auto_subscribe(self) -> None:
        resource = self._config.resource
        if not resource or not self._config.auto_subscribe:
            return
        if self._adapter is None and not self._config.endpoint:
            return
        self._ensure_adapter()
        if self._push is not None:
            self.subscribe(resource)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def adapter(self) -> CrudAdapter | None:
        return self._adapter

    @property
    def supports_push(self) -> bool:
        return self._push is not None

    @property
    def in_flight_keys(self) -> tuple[str, ...]:
        return tuple(self._in_flight)

    def get_config(self) -> CrudConfig:
        return self._config

    def cached_item(self, resource: str, item_id: ItemKey) -> Item | None:
        return self._store.get_item(resource, item_id)

    def cached_items(self, resource: str) -> dict[ItemKey, Item]:
        return self._store.items(resource)

    def cached_list(self, resource: str, params: Mapping[str, Any] | None = None) -> ListResult | None:
        return self._store.get_list(resource, make_query_key(resource, params))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _configure_adapter(self, adapter: CrudAdapter) -> None:
        self._adapter = adapter
        self._push = push_capable(adapter)
        _logger.debug(
            "Adapter configured: %s (push=%s)",
            type(adapter).__name__,
            self._push is not None,
        )

    def _ensure_adapter(self) -> CrudAdapter:
        if self._adapter is not None:
            return self._adapter
        if not self._config.endpoint:
            raise CrudConfigError("No adapter configured and no endpoint provided")
        if self._http_session is None:
            raise CrudError("Coordinator not initialized. Use 'async with CrudCoordinator(...) as crud:'")
        adapter_cls = SseAdapter if self._config.push_enabled else RestAdapter
        adapter = adapter_cls.from_config(
            self._config,
            self._http_session,
            headers_provider=self._headers_provider,
        )
        self._configure_adapter(adapter)
        return adapter

    def _resolve_resource(self, resource: str | None) -> str:
        resolved = resource or self._config.resource
        if not resolved:
            raise CrudConfigError("A resource name is required when none is configured")
        return resolved

    def _key_of(self, item: Any) -> ItemKey | None:
        if not isinstance(item, Mapping):
            return None
        key = item.get(self._config.pk)
        if key is None or isinstance(key, bool) or not isinstance(key, (str, int)):
            return None
        return key

    def _cache_item(self, resource: str, item: Any, key: ItemKey | None = None) -> None:
        if not isinstance(item, Mapping):
            return
        item_key = key if key is not None else self._key_of(item)
        if item_key is not None:
            self._store.put_item(resource, item_key, dict(item))

    def _restore(self, resource: str, item_id: ItemKey, snapshot: Item | None) -> None:
        if snapshot is None:
            self._store.remove_item(resource, item_id)
        else:
            self._store.put_item(resource, item_id, snapshot)

    def _emit(self, name: str, payload: dict[str, Any]) -> None:
        self._bus.emit(name, payload)

    def _emit_error(self, resource: str, action: str, exc: BaseException) -> None:
        _logger.debug("%s on %s failed: %s", action, resource, exc)
        self._emit(CrudEventName.ERROR, {"resource": resource, "action": action, "error": exc})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list(self, resource: str | None = None, params: Mapping[str, Any] | None = None) -> ListResult:
        """Fetch a list page; identical concurrent queries share one request."""
        resource = self._resolve_resource(resource)
        query_key = make_query_key(resource, params)

        pending = self._in_flight.get(query_key)
        if pending is not None:
            _logger.debug("Joining in-flight list %s", query_key)
            return await asyncio.shield(pending)

        adapter = self._ensure_adapter()
        request_params = dict(params) if params else None
        self._emit(CrudEventName.BEFORE_LIST, {"resource": resource, "params": request_params})

        task = asyncio.get_running_loop().create_task(
            self._fetch_list(adapter, resource, query_key, request_params),
        )
        task.add_done_callback(_retrieve_exception)
        self._in_flight[query_key] = task
        return await asyncio.shield(task)

    async def _fetch_list(
        self,
        adapter: CrudAdapter,
        resource: str,
        query_key: str,
        params: dict[str, Any] | None,
    ) -> ListResult:
        try:
            try:
                result = await adapter.list(params)
            except Exception as exc:
                self._emit_error(resource, "list", exc)
                raise

            self._store.put_list(resource, query_key, result)
            for item in result.items:
                self._cache_item(resource, item)
            self._emit(
                CrudEventName.AFTER_LIST,
                {"resource": resource, "params": params, "result": result},
            )
            return result
        finally:
            self._in_flight.pop(query_key, None)

    async def get(self, resource: str, item_id: ItemKey) -> Item:
        """Return an item, from cache when present, otherwise from the adapter."""
        adapter = self._ensure_adapter()
        self._emit(CrudEventName.BEFORE_GET, {"resource": resource, "id": item_id})

        cached = self._store.get_item(resource, item_id)
        if cached is not None:
            self._emit(CrudEventName.AFTER_GET, {"resource": resource, "id": item_id, "item": cached})
            return cached

        try:
            item = await adapter.get(item_id)
        except Exception as exc:
            self._emit_error(resource, "get", exc)
            raise

        self._cache_item(resource, item, key=item_id)
        self._emit(CrudEventName.AFTER_GET, {"resource": resource, "id": item_id, "item": item})
        return item

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        resource: str,
        payload: Mapping[str, Any],
        *,
        optimistic: bool = False,
    ) -> Item:
        """Create an item.

        With ``optimistic=True`` a placeholder keyed by a ``temp:`` key is
        cached and announced before the request. The placeholder is always
        removed once the request settles; on success the server item takes
        its place, on failure nothing survives.
        """
        adapter = self._ensure_adapter()
        body = dict(payload)
        self._emit(CrudEventName.BEFORE_CREATE, {"resource": resource, "payload": body})

        if not optimistic:
            try:
                created = await adapter.create(body)
            except Exception as exc:
                self._emit_error(resource, "create", exc)
                raise
            self._cache_item(resource, created)
            self._emit(CrudEventName.ITEM_CREATED, {"resource": resource, "item": created})
            return created

        temp_key = make_temp_key()
        placeholder: Item = {**body, self._config.pk: temp_key}
        self._store.put_item(resource, temp_key, placeholder)
        self._emit(
            CrudEventName.ITEM_CREATED,
            {"resource": resource, "item": dict(placeholder), "optimistic": True},
        )

        try:
            created = await adapter.create(body)
        except asyncio.CancelledError:
            self._store.remove_item(resource, temp_key)
            raise
        except Exception as exc:
            self._store.remove_item(resource, temp_key)
            self._emit_error(resource, "create", exc)
            raise

        self._store.remove_item(resource, temp_key)
        self._cache_item(resource, created)
        self._emit(
            CrudEventName.ITEM_CREATED,
            {"resource": resource, "item": created, "optimistic": False, "temp_id": temp_key},
        )
        return created

    async def update(
        self,
        resource: str,
        item_id: ItemKey,
        payload: Mapping[str, Any],
        *,
        optimistic: bool = False,
    ) -> Item:
        """Update an item; optimistic updates shallow-merge first, restore on failure."""
        adapter = self._ensure_adapter()
        body = dict(payload)
        self._emit(CrudEventName.BEFORE_UPDATE, {"resource": resource, "id": item_id, "payload": body})

        if not optimistic:
            try:
                updated = await adapter.update(item_id, body)
            except Exception as exc:
                self._emit_error(resource, "update", exc)
                raise
            self._cache_item(resource, updated, key=item_id)
            self._emit(CrudEventName.ITEM_UPDATED, {"resource": resource, "id": item_id, "item": updated})
            return updated

        snapshot = self._store.get_item(resource, item_id)
        merged: Item = {**(snapshot or {}), **body}
        merged.setdefault(self._config.pk, item_id)
        self._store.put_item(resource, item_id, merged)
        self._emit(
            CrudEventName.ITEM_UPDATED,
            {"resource": resource, "id": item_id, "item": dict(merged), "optimistic": True},
        )

        try:
            updated = await adapter.update(item_id, body)
        except asyncio.CancelledError:
            self._restore(resource, item_id, snapshot)
            raise
        except Exception as exc:
            self._restore(resource, item_id, snapshot)
            self._emit_error(resource, "update", exc)
            raise

        self._cache_item(resource, updated, key=item_id)
        self._emit(
            CrudEventName.ITEM_UPDATED,
            {"resource": resource, "id": item_id, "item": updated, "optimistic": False},
        )
        return updated

    async def delete(
        self,
        resource: str,
        item_id: ItemKey,
        *,
        optimistic: bool = False,
    ) -> DeleteResult:
        """Delete an item; optimistic deletes restore the entry on failure."""
        adapter = self._ensure_adapter()
        self._emit(CrudEventName.BEFORE_DELETE, {"resource": resource, "id": item_id})

        if not optimistic:
            try:
                result = await adapter.delete(item_id)
            except Exception as exc:
                self._emit_error(resource, "delete", exc)
                raise
            self._store.remove_item(resource, item_id)
            self._emit(CrudEventName.ITEM_DELETED, {"resource": resource, "id": item_id})
            return result

        removed = self._store.remove_item(resource, item_id)
        self._emit(CrudEventName.ITEM_DELETED, {"resource": resource, "id": item_id, "optimistic": True})

        try:
            result = await adapter.delete(item_id)
        except asyncio.CancelledError:
            if removed is not None:
                self._store.put_item(resource, item_id, removed)
            raise
        except Exception as exc:
            if removed is not None:
                self._store.put_item(resource, item_id, removed)
            self._emit_error(resource, "delete", exc)
            raise

        self._emit(CrudEventName.ITEM_DELETED, {"resource": resource, "id": item_id, "optimistic": False})
        return result

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def subscribe(
        self,
        resource: str | None = None,
        callback: Callable[[ChangeEvent], None] | None = None,
    ) -> Subscription:
        """Apply pushed changes for *resource* to the cache.

        Each change updates the cache, emits ``remote:<type>`` and then calls
        *callback*. Returns a no-op subscription when the adapter has no push
        support.
        """
        resource = self._resolve_resource(resource)
        self._ensure_adapter()
        push = self._push
        if push is None:
            _logger.debug("Adapter has no push support; subscribe(%s) is a no-op", resource)
            return NoopSubscription()

        def _on_change(change: ChangeEvent) -> None:
            self._apply_remote(resource, change)
            if callback is not None:
                callback(change)

        def _on_error(exc: Exception) -> None:
            self._emit_error(resource, "subscribe", exc)

        subscription = push.subscribe(on_change=_on_change, on_error=_on_error, resource=resource)
        self._subscriptions.append(subscription)
        return subscription

    def _apply_remote(self, resource: str, change: ChangeEvent) -> None:
        # Server-confirmed state: bypasses the optimistic machinery.
        if isinstance(change, (CreateChange, UpdateChange)):
            key = self._key_of(change.item)
            if key is None:
                _logger.warning(
                    "Remote %s on %s has no %r field; cache not updated",
                    change.type,
                    resource,
                    self._config.pk,
                )
            else:
                self._store.put_item(resource, key, change.item)
        elif isinstance(change, PatchChange):
            current = self._store.get_item(resource, change.id) or {self._config.pk: change.id}
            current.update(change.patch)
            self._store.put_item(resource, change.id, current)
        elif isinstance(change, DeleteChange):
            self._store.remove_item(resource, change.id)

        self._emit(remote_event_name(change.type), {"resource": resource, "change": change})

    # ------------------------------------------------------------------
    # Cache control
    # ------------------------------------------------------------------

    def reset_cache(self, resource: str | None = None) -> None:
        """Clear cached items and lists for *resource*, or for all resources."""
        self._store.reset(resource)
