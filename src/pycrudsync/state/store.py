"""In-memory cache store.

Pure data holder: one item map and one list-result map per resource.
Only :class:`pycrudsync.coordinator.CrudCoordinator` mutates it; readers get
deep copies so cached entries cannot be changed from outside.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

from pycrudsync.models.results import Item, ItemKey, ListResult


@dataclass
class ResourceCache:
    """Cached state for a single resource."""

    items: dict[ItemKey, Item] = field(default_factory=dict)
    lists: dict[str, ListResult] = field(default_factory=dict)


class CacheStore:
    """Per-resource item and list caches."""

    def __init__(self) -> None:
        self._resources: dict[str, ResourceCache] = {}

    def _entry(self, resource: str) -> ResourceCache:
        entry = self._resources.get(resource)
        if entry is None:
            entry = ResourceCache()
            self._resources[resource] = entry
        return entry

    @property
    def resources(self) -> list[str]:
        return list(self._resources)

    def has_item(self, resource: str, key: ItemKey) -> bool:
        entry = self._resources.get(resource)
        return entry is not None and key in entry.items

    def get_item(self, resource: str, key: ItemKey) -> Item | None:
        entry = self._resources.get(resource)
        if entry is None:
            return None
        item = entry.items.get(key)
        return copy.deepcopy(item) if item is not None else None

    def items(self, resource: str) -> dict[ItemKey, Item]:
        entry = self._resources.get(resource)
        if entry is None:
            return {}
        return copy.deepcopy(entry.items)

    def put_item(self, resource: str, key: ItemKey, item: Item) -> None:
        self._entry(resource).items[key] = copy.deepcopy(item)

    def remove_item(self, resource: str, key: ItemKey) -> Item | None:
        """Remove and return the entry for *key* (``None`` if absent)."""
        entry = self._resources.get(resource)
        if entry is None:
            return None
        return entry.items.pop(key, None)

    def get_list(self, resource: str, query_key: str) -> ListResult | None:
        entry = self._resources.get(resource)
        if entry is None:
            return None
        result = entry.lists.get(query_key)
        return result.model_copy(deep=True) if result is not None else None

    def put_list(self, resource: str, query_key: str, result: ListResult) -> None:
        self._entry(resource).lists[query_key] = result.model_copy(deep=True)

    def reset(self, resource: str | None = None) -> None:
        """Drop cached items and lists for *resource*, or for everything."""
        if resource is None:
            self._resources.clear()
            return
        self._resources.pop(resource, None)
