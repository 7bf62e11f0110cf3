"""pycrudsync - Async optimistic CRUD cache with server-push reconciliation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pycrudsync")
except PackageNotFoundError:
    __version__ = "0+local"
from pycrudsync.adapters import (
    CrudAdapter,
    HeadersProvider,
    NoopSubscription,
    PushAdapter,
    RestAdapter,
    SseAdapter,
    Subscription,
    push_capable,
)
from pycrudsync.config import CrudConfig
from pycrudsync.coordinator import CrudCoordinator
from pycrudsync.events import BusEvent, CrudEventName, EventBus
from pycrudsync.exceptions import (
    CrudConfigError,
    CrudConnectionError,
    CrudError,
    CrudParseError,
    CrudTransportError,
)
from pycrudsync.ingestion.push import normalize_change, normalize_push_message
from pycrudsync.ingestion.stream import PushStream, ReconnectBackoff, StreamState
from pycrudsync.models import (
    ChangeEvent,
    CreateChange,
    DeleteChange,
    DeleteResult,
    Item,
    ItemKey,
    ListResult,
    PatchChange,
    UpdateChange,
)
from pycrudsync.state.query import make_query_key

__all__ = [
    "BusEvent",
    "ChangeEvent",
    "CreateChange",
    "CrudAdapter",
    "CrudConfig",
    "CrudConfigError",
    "CrudConnectionError",
    "CrudCoordinator",
    "CrudError",
    "CrudEventName",
    "CrudParseError",
    "CrudTransportError",
    "DeleteChange",
    "DeleteResult",
    "EventBus",
    "HeadersProvider",
    "Item",
    "ItemKey",
    "ListResult",
    "NoopSubscription",
    "PatchChange",
    "PushAdapter",
    "PushStream",
    "ReconnectBackoff",
    "RestAdapter",
    "SseAdapter",
    "StreamState",
    "Subscription",
    "UpdateChange",
    "__version__",
    "make_query_key",
    "normalize_change",
    "normalize_push_message",
    "push_capable",
]
