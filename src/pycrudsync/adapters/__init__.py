"""Transport adapters."""

from pycrudsync.adapters.base import (
    CrudAdapter,
    HeadersProvider,
    NoopSubscription,
    PushAdapter,
    Subscription,
    push_capable,
)
from pycrudsync.adapters.rest import RestAdapter
from pycrudsync.adapters.sse import SseAdapter

__all__ = [
    "CrudAdapter",
    "HeadersProvider",
    "NoopSubscription",
    "PushAdapter",
    "RestAdapter",
    "SseAdapter",
    "Subscription",
    "push_capable",
]
