"""Push message normalization.

This module translates raw push payloads (one JSON object per message) into
the canonical :data:`~pycrudsync.models.changes.ChangeEvent` shapes:

- ``{"type": "create", "item": {...}}``
- ``{"type": "update", "item": {...}}``
- ``{"type": "patch", "id": ..., "patch": {...}}``
- ``{"type": "delete", "id": ...}``

Anything else is dropped, except messages carrying both a ``type`` and an
``item`` object whose type is a known create/update alias; those are
mapped best-effort.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from pycrudsync.exceptions import CrudParseError
from pycrudsync.models.changes import CHANGE_EVENT_ADAPTER, ChangeEvent, CreateChange, UpdateChange

_logger = logging.getLogger(__name__)

_LOOSE_TYPE_ALIASES: dict[str, type[CreateChange] | type[UpdateChange]] = {
    "create": CreateChange,
    "created": CreateChange,
    "insert": CreateChange,
    "update": UpdateChange,
    "updated": UpdateChange,
    "upsert": UpdateChange,
    "replace": UpdateChange,
}


def parse_push_message(data: str) -> dict[str, Any]:
    """Parse a raw message body into a JSON object.

    Raises :class:`CrudParseError` for invalid JSON or non-object payloads.
    """
    try:
        parsed = json.loads(data)
    except (TypeError, ValueError) as exc:
        raise CrudParseError(f"Push message is not valid JSON: {exc}", raw=str(data)[:512]) from exc
    if not isinstance(parsed, dict):
        raise CrudParseError("Push message is not a JSON object", raw=str(data)[:512])
    return parsed


def _is_present_key(value: Any) -> bool:
    return value is not None and value != "" and not isinstance(value, bool)


def normalize_change(message: dict[str, Any], *, resource: str | None = None) -> ChangeEvent | None:
    """Map a parsed message onto a change event, or ``None`` to drop it.

    When *resource* is given, messages that name a different ``resource``
    are dropped. Messages without a ``resource`` field are kept.
    """
    msg_resource = message.get("resource")
    if resource and msg_resource and msg_resource != resource:
        return None

    change_type = message.get("type")
    if not isinstance(change_type, str) or not change_type:
        return None

    item = message.get("item")
    candidate: dict[str, Any] | None = None
    if change_type in ("create", "update") and isinstance(item, dict):
        candidate = {"type": change_type, "item": item}
    elif change_type == "patch" and _is_present_key(message.get("id")):
        patch = message.get("patch")
        candidate = {"type": "patch", "id": message["id"], "patch": patch if isinstance(patch, dict) else {}}
    elif change_type == "delete" and _is_present_key(message.get("id")):
        candidate = {"type": "delete", "id": message["id"]}

    if candidate is not None:
        try:
            return CHANGE_EVENT_ADAPTER.validate_python(candidate)
        except ValidationError:
            _logger.debug("Dropping %s message with unusable id=%r", change_type, message.get("id"))
            return None

    # Best-effort: something that looks like a create/update.
    if isinstance(item, dict):
        model_cls = _LOOSE_TYPE_ALIASES.get(change_type.strip().lower())
        if model_cls is not None:
            return model_cls(item=item)

    _logger.debug("Dropping unrecognized push message type=%s", change_type)
    return None


def normalize_push_message(data: str, *, resource: str | None = None) -> ChangeEvent | None:
    """Parse and normalize one raw push message."""
    return normalize_change(parse_push_message(data), resource=resource)
