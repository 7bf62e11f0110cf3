"""Data models for adapter results and push change events."""

from pycrudsync.models.changes import (
    CHANGE_EVENT_ADAPTER,
    ChangeEvent,
    CreateChange,
    DeleteChange,
    PatchChange,
    UpdateChange,
)
from pycrudsync.models.results import DeleteResult, Item, ItemKey, ListResult

__all__ = [
    "CHANGE_EVENT_ADAPTER",
    "ChangeEvent",
    "CreateChange",
    "DeleteChange",
    "DeleteResult",
    "Item",
    "ItemKey",
    "ListResult",
    "PatchChange",
    "UpdateChange",
]
