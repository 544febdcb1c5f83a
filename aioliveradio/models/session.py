"""Per-connection session state owned by the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4

from .types import ConnectionState, DeviceClass, NetworkClass


@dataclass(slots=True)
class PlaybackSession:
    """
    State of one connect/interrupt/recover lifecycle.

    Created on connect and discarded on an explicit disconnect or an
    unrecoverable error. A track change only resets the anchor fields of the
    position model, not the session.
    """

    device_class: DeviceClass
    """Fixed for the lifetime of the process."""
    network_class: NetworkClass = NetworkClass.UNKNOWN
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    """Identifier sent with heartbeats."""
    track_id: str | None = None
    track_duration: float = 0.0
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    last_server_sync: float | None = None
    """Loop time of the last applied server position."""
    disconnection_time: float | None = None
    """Loop time of the last recorded interruption."""
    last_known_position: float = 0.0
    """Estimated position at the last recorded interruption."""
    start_position: float = 0.0
    """Position the current transport was asked to start from."""
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    reconnect_attempts: int = 0
    consecutive_media_errors: int = 0
    last_error_response: float | None = None
    """Loop time at which a media error last caused a reconnection request."""
    requires_interaction: bool = False
    """Playback was rejected until the next user gesture."""
    last_heartbeat: float | None = None
    active_listeners: int | None = None


@dataclass(slots=True, frozen=True)
class StatusUpdate:
    """User-facing status change handed to status listeners."""

    message: str
    is_error: bool = False
    terminal: bool = False
    """True for the exhaustion message that requires an explicit reconnect."""
