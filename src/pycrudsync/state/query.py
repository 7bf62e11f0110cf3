"""List query key normalization.

The same key is used for the list-result cache and for in-flight request
dedup, so identical queries collide identically in both places.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

_ALL = "*"


def normalize_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop ``None`` values; they are never sent on the wire either."""
    if not params:
        return {}
    return {str(key): value for key, value in params.items() if value is not None}


def make_query_key(resource: str, params: Mapping[str, Any] | None = None) -> str:
    """Return ``"<resource>::<canonical params>"``.

    Keys are sorted at every nesting level so that ``{"a": 1, "b": 2}`` and
    ``{"b": 2, "a": 1}`` produce the same key. Empty params map to ``*``.
    """
    normalized = normalize_params(params)
    if not normalized:
        return f"{resource}::{_ALL}"
    serialized = json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=str)
    return f"{resource}::{serialized}"
