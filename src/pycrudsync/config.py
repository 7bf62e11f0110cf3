"""Client configuration for pycrudsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pycrudsync._constants import DEFAULT_PAGE_SIZE, DEFAULT_PK


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class CrudConfig:
    """Coordinator configuration.

    Parameters
    ----------
    endpoint : str or None
        Base URL used to build the default adapter (e.g.
        ``"https://example.com/api/items"``). Required unless an adapter
        instance is handed to the coordinator.
    resource : str or None
        Default resource name. Used by ``list()`` when no resource is given
        and for the automatic push subscription.
    pk : str
        Primary-key field name of items.
    default_page_size : int
        ``pageSize`` injected into list queries that do not set one.
    pagination_as_query : bool
        Serialize list parameters into the query string.
    push_enabled : bool
        Build an SSE-capable adapter instead of the plain REST adapter.
    sse_url : str or None
        Explicit event-stream URL. Defaults to ``<endpoint>/sse``.
    auto_subscribe : bool
        Subscribe to ``resource`` push updates when the coordinator starts.
    reconnect_initial_delay : float
        First reconnect delay in seconds after a push stream failure.
    reconnect_max_delay : float
        Upper bound in seconds for the doubling reconnect delay.
    request_timeout : float
        Total timeout in seconds for request/response calls. The event
        stream itself is not subject to it.
    """

    endpoint: str | None = None
    resource: str | None = None
    pk: str = DEFAULT_PK
    default_page_size: int = DEFAULT_PAGE_SIZE
    pagination_as_query: bool = True
    push_enabled: bool = False
    sse_url: str | None = None
    auto_subscribe: bool = True
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, **overrides: Any) -> CrudConfig:
        """Create configuration from environment variables.

        Reads ``CRUD_ENDPOINT``, ``CRUD_RESOURCE`` and the optional
        ``CRUD_*`` variables below. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        CrudConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "CRUD_ENDPOINT": "endpoint",
            "CRUD_RESOURCE": "resource",
            "CRUD_PK": "pk",
            "CRUD_SSE_URL": "sse_url",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        page_size_env = env.get("CRUD_DEFAULT_PAGE_SIZE")
        if page_size_env is not None and "default_page_size" not in overrides:
            config_kwargs["default_page_size"] = int(page_size_env)

        _ENV_FLOAT_MAP = {
            "CRUD_RECONNECT_INITIAL_DELAY": "reconnect_initial_delay",
            "CRUD_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "CRUD_REQUEST_TIMEOUT": "request_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        if "pagination_as_query" not in overrides:
            config_kwargs["pagination_as_query"] = _env_bool(env.get("CRUD_PAGINATION_AS_QUERY"), True)

        if "push_enabled" not in overrides:
            config_kwargs["push_enabled"] = _env_bool(env.get("CRUD_PUSH_ENABLED"), False)

        if "auto_subscribe" not in overrides:
            config_kwargs["auto_subscribe"] = _env_bool(env.get("CRUD_AUTO_SUBSCRIBE"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
