"""Internal constants shared across the library."""

import secrets
import time

USER_AGENT = "pycrudsync"
DEFAULT_PK = "id"
DEFAULT_PAGE_SIZE = 20

#: Prefix marking engine-generated keys. Server keys never start with it.
TEMP_KEY_PREFIX = "temp:"

JSON_CONTENT_TYPE = "application/json"
EVENT_STREAM_CONTENT_TYPE = "text/event-stream"


def make_temp_key() -> str:
    """Return a time+random temporary key, e.g. ``temp:1767225600000:a1b2c3``."""
    return f"{TEMP_KEY_PREFIX}{int(time.time() * 1000)}:{secrets.token_hex(3)}"


def is_temp_key(value: object) -> bool:
    """Whether *value* is a temporary key produced by :func:`make_temp_key`."""
    return isinstance(value, str) and value.startswith(TEMP_KEY_PREFIX)
