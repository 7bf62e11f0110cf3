"""Per-coordinator event bus.

Every :class:`pycrudsync.coordinator.CrudCoordinator` owns one bus, so two
engines never see each other's notifications.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

_logger = logging.getLogger(__name__)

WILDCARD = "*"


class CrudEventName(StrEnum):
    BEFORE_LIST = "before:list"
    AFTER_LIST = "after:list"
    BEFORE_GET = "before:get"
    AFTER_GET = "after:get"
    BEFORE_CREATE = "before:create"
    ITEM_CREATED = "item:created"
    BEFORE_UPDATE = "before:update"
    ITEM_UPDATED = "item:updated"
    BEFORE_DELETE = "before:delete"
    ITEM_DELETED = "item:deleted"
    ERROR = "error"
    REMOTE_CREATE = "remote:create"
    REMOTE_UPDATE = "remote:update"
    REMOTE_DELETE = "remote:delete"
    REMOTE_PATCH = "remote:patch"


def remote_event_name(change_type: str) -> str:
    return f"remote:{change_type}"


@dataclass(frozen=True, slots=True)
class BusEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[BusEvent], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event name.

    Handlers run in subscription order inside :meth:`emit`. A handler that
    raises is logged and skipped; delivery continues with the next one.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, name: str, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* for *name* (``"*"`` for all events).

        Returns a callable that removes the registration.
        """
        key = str(name)
        self._handlers.setdefault(key, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers is None:
                return
            self._handlers[key] = [h for h in handlers if h is not handler]
            if not self._handlers[key]:
                self._handlers.pop(key, None)

        return _unsubscribe

    def emit(self, name: str, payload: dict[str, Any] | None = None) -> BusEvent:
        event = BusEvent(name=str(name), payload=payload if payload is not None else {})
        targets = [*self._handlers.get(event.name, ()), *self._handlers.get(WILDCARD, ())]
        for handler in targets:
            try:
                handler(event)
            except Exception:
                _logger.debug("Event handler for %s failed", event.name, exc_info=True)
        return event

    def clear(self) -> None:
        self._handlers.clear()
