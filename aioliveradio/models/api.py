"""
Wire models for the live radio HTTP API and the local position store.

The now-playing and heartbeat endpoints are polled by the sync engine. Only the
fields the engine reads are modelled; unknown fields are ignored so the server
can grow its payloads without breaking older clients.
"""

from __future__ import annotations

from dataclasses import dataclass

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin


@dataclass
class NowPlayingSnapshot(DataClassORJSONMixin):
    """Response of the now-playing endpoint."""

    title: str | None = None
    """Track title."""
    artist: str | None = None
    """Track artist."""
    album: str | None = None
    """Track album."""
    duration: float = 0.0
    """Track duration in seconds, 0 when unknown or unbounded."""
    path: str | None = None
    """Opaque track identity, compared by equality."""
    playback_position: float | None = None
    """Authoritative position in whole seconds."""
    playback_position_ms: int | None = None
    """Optional sub-second part of the position in milliseconds."""
    radio_position: float | None = None
    """Alternate name for playback_position used by some server builds."""
    radio_position_ms: int | None = None
    """Alternate name for playback_position_ms."""
    active_listeners: int | None = None
    """Number of listeners connected to the station."""
    error: str | None = None
    """Set by the server instead of track data when nothing is playing."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.duration < 0:
            raise ValueError(f"duration must not be negative, got {self.duration}")

    @property
    def track_id(self) -> str | None:
        """Return the identity of the playing track."""
        return self.path

    @property
    def position_seconds(self) -> float | None:
        """Return the whole-second server position, if reported."""
        if self.playback_position is not None:
            return self.playback_position
        return self.radio_position

    @property
    def position_milliseconds(self) -> int | None:
        """Return the sub-second server position, if reported."""
        if self.playback_position_ms is not None:
            return self.playback_position_ms
        return self.radio_position_ms


@dataclass
class HeartbeatResponse(DataClassORJSONMixin):
    """Response of the heartbeat endpoint."""

    active_listeners: int | None = None
    radio_position: float | None = None
    radio_position_ms: int | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class StoredPosition(DataClassORJSONMixin):
    """Best-effort starting position persisted across restarts."""

    track_id: str
    """Identity of the track the position belongs to."""
    position: float
    """Estimated position in seconds when saved."""
    timestamp: float
    """Wall clock time (seconds since the epoch) of the save."""
    platform: str
    """Device class string of the saving client."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.position < 0:
            raise ValueError(f"position must not be negative, got {self.position}")


@dataclass
class StoredSettings(DataClassORJSONMixin):
    """Everything kept in the local store file."""

    position: StoredPosition | None = None
    volume: float = 0.7
    """Playback volume in the range 0.0-1.0."""
    muted: bool = False

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True

    def __post_init__(self) -> None:
        """Clamp the volume into range."""
        self.volume = max(0.0, min(1.0, self.volume))
