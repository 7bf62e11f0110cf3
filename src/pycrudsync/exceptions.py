"""Custom exception hierarchy for pycrudsync."""

from __future__ import annotations

from typing import Any


class CrudError(Exception):
    """Base exception for all pycrudsync errors."""


class CrudConfigError(CrudError):
    """Invalid or missing configuration (e.g. no base endpoint)."""


class CrudTransportError(CrudError):
    """Adapter-level failure (network error or non-2xx response).

    The status code and response body are attached unchanged so callers
    can inspect validation payloads (e.g. a ``422`` body).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
        method: str = "",
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.method = method
        self.url = url
        super().__init__(message)


class CrudParseError(CrudError):
    """A push message could not be parsed as a JSON object."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)


class CrudConnectionError(CrudError):
    """Push stream failure (connect refused, non-200, stream ended).

    Raised only inside the push runtime; it reaches consumers through the
    ``on_error`` callback, never as a failed call.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)
