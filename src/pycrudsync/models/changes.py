"""Canonical change events produced by push ingestion.

Every push transport converts its wire messages into one of these four
shapes. Only :class:`pycrudsync.coordinator.CrudCoordinator` applies them
to the cache.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from pycrudsync.models.results import Item, ItemKey


class _ChangeBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class CreateChange(_ChangeBase):
    type: Literal["create"] = "create"
    item: Item


class UpdateChange(_ChangeBase):
    type: Literal["update"] = "update"
    item: Item


class DeleteChange(_ChangeBase):
    type: Literal["delete"] = "delete"
    id: ItemKey


class PatchChange(_ChangeBase):
    type: Literal["patch"] = "patch"
    id: ItemKey
    patch: dict[str, Any] = Field(default_factory=dict)


ChangeEvent = Annotated[
    CreateChange | UpdateChange | DeleteChange | PatchChange,
    Field(discriminator="type"),
]

CHANGE_EVENT_ADAPTER: TypeAdapter[CreateChange | UpdateChange | DeleteChange | PatchChange] = TypeAdapter(
    ChangeEvent
)
