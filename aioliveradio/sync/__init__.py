"""Pure synchronization components used by the sync engine."""

from .buffer import BufferHealthMonitor, BufferSample
from .drift import DriftCorrector, DriftResult, server_position_from
from .position import PlaybackPositionModel
from .profile import (
    DEVICE_PROFILES,
    NETWORK_TIMING,
    DeviceProfile,
    NetworkProfile,
    SyncConfig,
    TimingProfile,
    get_device_profile,
)
from .reconnect import ReconnectHost, ReconnectionScheduler
from .state import TRANSITIONS, ConnectionStateMachine
from .track import TrackIdentity

__all__ = [
    "DEVICE_PROFILES",
    "NETWORK_TIMING",
    "TRANSITIONS",
    "BufferHealthMonitor",
    "BufferSample",
    "ConnectionStateMachine",
    "DeviceProfile",
    "DriftCorrector",
    "DriftResult",
    "NetworkProfile",
    "PlaybackPositionModel",
    "ReconnectHost",
    "ReconnectionScheduler",
    "SyncConfig",
    "TimingProfile",
    "TrackIdentity",
    "get_device_profile",
    "server_position_from",
]
