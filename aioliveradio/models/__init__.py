"""Models for the live radio sync engine."""

from __future__ import annotations

__all__ = [
    "BufferAction",
    "ConnectionEvent",
    "ConnectionState",
    "DeviceClass",
    "DriftAction",
    "HeartbeatResponse",
    "MediaErrorCode",
    "MediaEvent",
    "NetworkClass",
    "NetworkState",
    "NowPlayingSnapshot",
    "PlaybackSession",
    "ReadyState",
    "ReconnectReason",
    "StatusUpdate",
    "StoredPosition",
    "StoredSettings",
    "api",
    "session",
    "types",
]

from . import api, session, types
from .api import HeartbeatResponse, NowPlayingSnapshot, StoredPosition, StoredSettings
from .session import PlaybackSession, StatusUpdate
from .types import (
    BufferAction,
    ConnectionEvent,
    ConnectionState,
    DeviceClass,
    DriftAction,
    MediaErrorCode,
    MediaEvent,
    NetworkClass,
    NetworkState,
    ReadyState,
    ReconnectReason,
)
