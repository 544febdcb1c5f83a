"""Public interface for the live radio client package."""

from .api import RadioApiClient
from .engine import (
    ListenerCountCallback,
    PositionCallback,
    StatusCallback,
    SyncEngine,
    TrackInfoCallback,
)
from .scheduler import TaskScheduler
from .storage import PositionStore
from .transport import (
    AudioTransport,
    BufferedSourceTransport,
    MediaEventCallback,
    TimeRange,
    TransportFactory,
)

__all__ = [
    "AudioTransport",
    "BufferedSourceTransport",
    "ListenerCountCallback",
    "MediaEventCallback",
    "PositionCallback",
    "PositionStore",
    "RadioApiClient",
    "StatusCallback",
    "SyncEngine",
    "TaskScheduler",
    "TimeRange",
    "TrackInfoCallback",
    "TransportFactory",
]
