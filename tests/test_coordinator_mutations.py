from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from pycrudsync._constants import is_temp_key
from pycrudsync.adapters.rest import RestAdapter
from pycrudsync.config import CrudConfig
from pycrudsync.coordinator import CrudCoordinator
from pycrudsync.events import BusEvent
from pycrudsync.exceptions import CrudConfigError, CrudError, CrudTransportError
from pycrudsync.models.results import DeleteResult, Item, ItemKey, ListResult


class _FakeAdapter:
    supports_push = False

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail: Exception | None = None
        self.next_id = 123
        self.page = ListResult(items=[{"id": 1, "title": "old", "done": False}])

    def _maybe_fail(self) -> None:
        if self.fail is not None:
            raise self.fail

    async def list(self, params: Mapping[str, Any] | None = None) -> ListResult:
        self.calls.append(("list", params))
        self._maybe_fail()
        return self.page

    async def get(self, item_id: ItemKey) -> Item:
        self.calls.append(("get", item_id))
        self._maybe_fail()
        return {"id": item_id, "title": "remote"}

    async def create(self, payload: Mapping[str, Any]) -> Item:
        self.calls.append(("create", dict(payload)))
        self._maybe_fail()
        return {"id": self.next_id, **payload}

    async def update(self, item_id: ItemKey, payload: Mapping[str, Any]) -> Item:
        self.calls.append(("update", item_id))
        self._maybe_fail()
        return {"id": item_id, "title": "old", "done": False, **payload, "version": 2}

    async def delete(self, item_id: ItemKey) -> DeleteResult:
        self.calls.append(("delete", item_id))
        self._maybe_fail()
        return DeleteResult(ok=True, rows_affected=1)


def _coordinator() -> tuple[CrudCoordinator, _FakeAdapter, list[BusEvent]]:
    adapter = _FakeAdapter()
    crud = CrudCoordinator(CrudConfig(resource="items"), adapter=adapter)
    events: list[BusEvent] = []
    crud.bus.subscribe("*", events.append)
    return crud, adapter, events


def _unprocessable() -> CrudTransportError:
    return CrudTransportError(
        "HTTP 422 Unprocessable Entity",
        status_code=422,
        body={"errors": {"title": ["required"]}},
    )


@pytest.mark.asyncio
async def test_optimistic_create_replaces_placeholder_with_server_item() -> None:
    crud, _adapter, events = _coordinator()
    keys_during_request: list[list[ItemKey]] = []
    crud.bus.subscribe(
        "item:created",
        lambda event: keys_during_request.append(list(crud.cached_items("items"))),
    )

    created = await crud.create("items", {"title": "x"}, optimistic=True)

    assert created == {"id": 123, "title": "x"}
    assert [e.name for e in events] == ["before:create", "item:created", "item:created"]

    placeholder = events[1].payload
    assert placeholder["optimistic"] is True
    temp_key = placeholder["item"]["id"]
    assert is_temp_key(temp_key)
    assert keys_during_request[0] == [temp_key]

    confirmed = events[2].payload
    assert confirmed["optimistic"] is False
    assert confirmed["item"] == {"id": 123, "title": "x"}
    assert confirmed["temp_id"] == temp_key

    assert crud.cached_items("items") == {123: {"id": 123, "title": "x"}}


@pytest.mark.asyncio
async def test_optimistic_create_sends_payload_without_temp_key() -> None:
    crud, adapter, _events = _coordinator()

    await crud.create("items", {"title": "x"}, optimistic=True)

    assert adapter.calls == [("create", {"title": "x"})]


@pytest.mark.asyncio
async def test_optimistic_create_failure_removes_placeholder_and_surfaces_error() -> None:
    crud, adapter, events = _coordinator()
    adapter.fail = _unprocessable()

    with pytest.raises(CrudTransportError) as exc_info:
        await crud.create("items", {"title": ""}, optimistic=True)

    assert exc_info.value.status_code == 422
    assert exc_info.value.body == {"errors": {"title": ["required"]}}
    assert [e.name for e in events] == ["before:create", "item:created", "error"]
    assert events[1].payload["optimistic"] is True
    assert events[2].payload["action"] == "create"
    assert events[2].payload["error"] is adapter.fail
    assert crud.cached_items("items") == {}


@pytest.mark.asyncio
async def test_plain_create_caches_server_item() -> None:
    crud, _adapter, events = _coordinator()

    created = await crud.create("items", {"title": "x"})

    assert created["id"] == 123
    assert [e.name for e in events] == ["before:create", "item:created"]
    assert "optimistic" not in events[1].payload
    assert crud.cached_item("items", 123) == {"id": 123, "title": "x"}


@pytest.mark.asyncio
async def test_plain_create_failure_leaves_cache_untouched() -> None:
    crud, adapter, events = _coordinator()
    adapter.fail = _unprocessable()

    with pytest.raises(CrudTransportError):
        await crud.create("items", {"title": ""})

    assert [e.name for e in events] == ["before:create", "error"]
    assert crud.cached_items("items") == {}


@pytest.mark.asyncio
async def test_optimistic_update_merges_then_confirms() -> None:
    crud, _adapter, events = _coordinator()
    await crud.list()
    events.clear()

    updated = await crud.update("items", 1, {"title": "new"}, optimistic=True)

    assert [e.name for e in events] == ["before:update", "item:updated", "item:updated"]
    assert events[1].payload["item"] == {"id": 1, "title": "new", "done": False}
    assert events[1].payload["optimistic"] is True
    assert events[2].payload["optimistic"] is False
    assert crud.cached_item("items", 1) == updated
    assert updated["version"] == 2


@pytest.mark.asyncio
async def test_optimistic_update_failure_restores_previous_item() -> None:
    crud, adapter, events = _coordinator()
    await crud.list()
    events.clear()
    adapter.fail = _unprocessable()

    with pytest.raises(CrudTransportError):
        await crud.update("items", 1, {"title": "new"}, optimistic=True)

    assert [e.name for e in events] == ["before:update", "item:updated", "error"]
    assert crud.cached_item("items", 1) == {"id": 1, "title": "old", "done": False}


@pytest.mark.asyncio
async def test_optimistic_update_failure_without_prior_entry_leaves_no_entry() -> None:
    crud, adapter, _events = _coordinator()
    adapter.fail = CrudTransportError("HTTP 404", status_code=404)

    with pytest.raises(CrudTransportError):
        await crud.update("items", 9, {"title": "new"}, optimistic=True)

    assert crud.cached_item("items", 9) is None


@pytest.mark.asyncio
async def test_plain_update_caches_confirmed_item() -> None:
    crud, _adapter, events = _coordinator()

    await crud.update("items", 1, {"done": True})

    assert [e.name for e in events] == ["before:update", "item:updated"]
    assert crud.cached_item("items", 1) == {"id": 1, "title": "old", "done": True, "version": 2}


@pytest.mark.asyncio
async def test_optimistic_delete_success() -> None:
    crud, _adapter, events = _coordinator()
    await crud.list()
    events.clear()

    result = await crud.delete("items", 1, optimistic=True)

    assert result.ok is True
    assert [e.name for e in events] == ["before:delete", "item:deleted", "item:deleted"]
    assert events[1].payload["optimistic"] is True
    assert events[2].payload["optimistic"] is False
    assert crud.cached_item("items", 1) is None


@pytest.mark.asyncio
async def test_optimistic_delete_failure_restores_entry() -> None:
    crud, adapter, events = _coordinator()
    await crud.list()
    events.clear()
    adapter.fail = CrudTransportError("HTTP 409", status_code=409)

    with pytest.raises(CrudTransportError):
        await crud.delete("items", 1, optimistic=True)

    assert [e.name for e in events] == ["before:delete", "item:deleted", "error"]
    assert crud.cached_item("items", 1) == {"id": 1, "title": "old", "done": False}


@pytest.mark.asyncio
async def test_plain_delete_removes_after_success() -> None:
    crud, _adapter, events = _coordinator()
    await crud.list()
    events.clear()

    await crud.delete("items", 1)

    assert [e.name for e in events] == ["before:delete", "item:deleted"]
    assert "optimistic" not in events[1].payload
    assert crud.cached_item("items", 1) is None


@pytest.mark.asyncio
async def test_get_prefers_cache() -> None:
    crud, adapter, events = _coordinator()
    await crud.list()
    adapter.calls.clear()
    events.clear()

    item = await crud.get("items", 1)

    assert item == {"id": 1, "title": "old", "done": False}
    assert adapter.calls == []
    assert [e.name for e in events] == ["before:get", "after:get"]


@pytest.mark.asyncio
async def test_get_miss_fetches_once_then_serves_from_cache() -> None:
    crud, adapter, _events = _coordinator()

    first = await crud.get("items", 5)
    second = await crud.get("items", 5)

    assert first == second == {"id": 5, "title": "remote"}
    assert adapter.calls == [("get", 5)]


@pytest.mark.asyncio
async def test_get_failure_emits_error() -> None:
    crud, adapter, events = _coordinator()
    adapter.fail = CrudTransportError("HTTP 404", status_code=404)

    with pytest.raises(CrudTransportError):
        await crud.get("items", 5)

    assert events[-1].name == "error"
    assert events[-1].payload["action"] == "get"


@pytest.mark.asyncio
async def test_cached_items_are_copies() -> None:
    crud, _adapter, _events = _coordinator()
    await crud.list()

    item = await crud.get("items", 1)
    item["title"] = "mutated"

    assert crud.cached_item("items", 1) == {"id": 1, "title": "old", "done": False}


@pytest.mark.asyncio
async def test_reset_cache() -> None:
    crud, _adapter, _events = _coordinator()
    await crud.list()
    await crud.list("orders")

    crud.reset_cache("items")
    assert crud.cached_items("items") == {}
    assert crud.cached_list("items") is None
    assert crud.cached_list("orders") is not None

    crud.reset_cache()
    assert crud.cached_list("orders") is None


@pytest.mark.asyncio
async def test_missing_endpoint_fails_before_any_event() -> None:
    crud = CrudCoordinator(CrudConfig(resource="items"))
    events: list[BusEvent] = []
    crud.bus.subscribe("*", events.append)

    with pytest.raises(CrudConfigError):
        await crud.create("items", {"title": "x"}, optimistic=True)

    assert events == []


@pytest.mark.asyncio
async def test_endpoint_without_session_requires_context_manager() -> None:
    crud = CrudCoordinator(CrudConfig(endpoint="http://127.0.0.1:9/api/items"))

    with pytest.raises(CrudError, match="not initialized"):
        await crud.list("items")


@pytest.mark.asyncio
async def test_context_manager_builds_rest_adapter_from_endpoint() -> None:
    config = CrudConfig(endpoint="http://127.0.0.1:9/api/items/", resource="items")

    async with CrudCoordinator(config) as crud:
        adapter = crud._ensure_adapter()
        assert isinstance(adapter, RestAdapter)
        assert adapter.base_url == "http://127.0.0.1:9/api/items"
        assert crud.supports_push is False
        assert crud.get_config() is config
