"""Push stream runtime with reconnect backoff.

A :class:`PushStream` keeps at most one live connection and walks through::

    CONNECTING -> OPEN -> (ERROR -> BACKOFF -> CONNECTING) -> CLOSED

Message handling failures are reported but never cause a reconnect; only
connection failures (including a stream ended by the server) do.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from enum import StrEnum

from pycrudsync.exceptions import CrudConfigError, CrudConnectionError

_logger = logging.getLogger(__name__)

StreamOpener = Callable[[], AbstractAsyncContextManager[AsyncIterator[str]]]
"""Opens one connection; the context yields raw message payloads."""


class StreamState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    ERROR = "error"
    BACKOFF = "backoff"
    CLOSED = "closed"


@dataclass
class ReconnectBackoff:
    """Doubling reconnect delay, capped and reset on success.

    The n-th consecutive failure waits ``min(initial_delay * 2**(n - 1),
    max_delay)`` seconds before the next attempt.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    failures: int = 0

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise CrudConfigError("reconnect initial delay must be positive")
        if self.max_delay < self.initial_delay:
            raise CrudConfigError("reconnect max delay must be >= initial delay")

    def peek(self) -> float:
        # Exponent is capped to keep the multiplication finite.
        return min(self.initial_delay * (2 ** min(self.failures, 62)), self.max_delay)

    def next_delay(self) -> float:
        delay = self.peek()
        self.failures += 1
        return delay

    def reset(self) -> None:
        self.failures = 0


class PushStream:
    """Self-healing push connection.

    Parameters
    ----------
    opener
        Callable returning an async context manager that connects and yields
        an async iterator of raw message payloads.
    on_message
        Called with every raw payload, one at a time.
    on_error
        Called with parse/handler failures and with
        :class:`CrudConnectionError` for connection failures.
    backoff
        Reconnect delay policy.
    sleep
        Awaitable used for backoff waits; injectable for tests.
    """

    def __init__(
        self,
        *,
        opener: StreamOpener,
        on_message: Callable[[str], None],
        on_error: Callable[[Exception], None] | None = None,
        backoff: ReconnectBackoff | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "push",
    ) -> None:
        self._opener = opener
        self._on_message = on_message
        self._on_error = on_error
        self._backoff = backoff or ReconnectBackoff()
        self._sleep = sleep
        self._name = name
        self._state = StreamState.IDLE
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    def _set_state(self, state: StreamState) -> None:
        if state != self._state:
            _logger.debug("Stream %s: %s -> %s", self._name, self._state, state)
        self._state = state

    def start(self) -> PushStream:
        """Start the connection loop on the running event loop."""
        if self._closed:
            raise RuntimeError("PushStream is closed")
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=f"pycrudsync-{self._name}")
        return self

    def unsubscribe(self) -> None:
        """Stop for good: no further reconnect attempts, live connection closed."""
        if self._closed:
            return
        self._closed = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        # A task cancelled before its first step never reaches _run.
        self._set_state(StreamState.CLOSED)

    close = unsubscribe

    async def wait_closed(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    def _report(self, exc: Exception) -> None:
        if self._on_error is None:
            _logger.debug("Stream %s error without handler: %s", self._name, exc)
            return
        try:
            self._on_error(exc)
        except Exception:
            _logger.debug("Stream %s on_error callback failed", self._name, exc_info=True)

    def _dispatch(self, data: str) -> None:
        try:
            self._on_message(data)
        except Exception as exc:
            self._report(exc)

    async def _run(self) -> None:
        try:
            while not self._closed:
                self._set_state(StreamState.CONNECTING)
                try:
                    async with self._opener() as messages:
                        self._set_state(StreamState.OPEN)
                        self._backoff.reset()
                        async for data in messages:
                            if self._closed:
                                break
                            self._dispatch(data)
                    if self._closed:
                        break
                    raise CrudConnectionError(f"Stream {self._name} ended by server")
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    if self._closed:
                        break
                    self._set_state(StreamState.ERROR)
                    if not isinstance(exc, CrudConnectionError):
                        wrapped = CrudConnectionError(f"Stream {self._name} failed: {exc}")
                        wrapped.__cause__ = exc
                        exc = wrapped
                    self._report(exc)
                    delay = self._backoff.next_delay()
                    _logger.debug("Stream %s reconnecting in %.2fs", self._name, delay)
                    self._set_state(StreamState.BACKOFF)
                    await self._sleep(delay)
        finally:
            self._set_state(StreamState.CLOSED)
