"""Adapter result models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

Item = dict[str, Any]
"""An opaque record. Only the primary-key field is interpreted."""

ItemKey = str | int
"""Primary-key value: server-assigned or a ``temp:`` placeholder."""


class ListResult(BaseModel):
    """One page of items as returned by the server (order preserved)."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    items: list[Item] = Field(default_factory=list)
    total: int | None = None
    page: int | None = None
    page_size: int | None = Field(default=None, validation_alias=AliasChoices("pageSize", "page_size"))
    meta: dict[str, Any] | None = None
    """Adapter-specific extras (cursor, links, ...)."""


class DeleteResult(BaseModel):
    """Outcome of a delete call."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    ok: bool = True
    rows_affected: int | None = Field(
        default=None,
        validation_alias=AliasChoices("rowsAffected", "rows_affected"),
    )
