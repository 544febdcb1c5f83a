"""Models for enum types used by the live radio sync engine."""

from __future__ import annotations

from enum import Enum, IntEnum


class ConnectionState(Enum):
    """Authoritative state of a playback session."""

    DISCONNECTED = "disconnected"
    """Initial state, and terminal state for a user-driven stop."""
    CONNECTING = "connecting"
    """User asked to play, first transport not playing yet."""
    CONNECTED = "connected"
    """Audio transport reports playback."""
    RECONNECTING = "reconnecting"
    """Recovering from a fault through the reconnection scheduler."""
    ERROR = "error"
    """Reconnection budget exhausted. Terminal until the user retries."""


class ConnectionEvent(Enum):
    """Inputs accepted by the connection state machine."""

    START = "start"
    MEDIA_PLAYING = "media_playing"
    MEDIA_ERROR = "media_error"
    MEDIA_STALLED_TIMEOUT = "media_stalled_timeout"
    MEDIA_ENDED = "media_ended"
    NO_SOURCE = "no_source"
    UNEXPECTED_PAUSE = "unexpected_pause"
    TRANSPORT_FAILED = "transport_failed"
    NETWORK_RESTORED = "network_restored"
    TRACK_RELOAD = "track_reload"
    BUFFER_RELOAD = "buffer_reload"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    USER_STOP = "user_stop"


class ReconnectReason(Enum):
    """Why a transport teardown and rebuild was requested."""

    MEDIA_ERROR = "media error"
    STALLED = "stalled playback"
    NO_SOURCE = "no source"
    UNEXPECTED_PAUSE = "unexpected pause"
    STREAM_ENDED = "stream ended"
    TRANSPORT_FAILED = "transport failed"
    NETWORK_RESTORED = "network restored"
    BUFFER_RECOVERY_FAILED = "buffer recovery failed"
    TRACK_CHANGE = "track change"
    BUFFER_RELOAD = "buffer reload"

    @property
    def connection_event(self) -> ConnectionEvent:
        """Return the state machine input matching this reason."""
        return _REASON_EVENTS[self]


_REASON_EVENTS = {
    ReconnectReason.MEDIA_ERROR: ConnectionEvent.MEDIA_ERROR,
    ReconnectReason.STALLED: ConnectionEvent.MEDIA_STALLED_TIMEOUT,
    ReconnectReason.NO_SOURCE: ConnectionEvent.NO_SOURCE,
    ReconnectReason.UNEXPECTED_PAUSE: ConnectionEvent.UNEXPECTED_PAUSE,
    ReconnectReason.STREAM_ENDED: ConnectionEvent.MEDIA_ENDED,
    ReconnectReason.TRANSPORT_FAILED: ConnectionEvent.TRANSPORT_FAILED,
    ReconnectReason.NETWORK_RESTORED: ConnectionEvent.NETWORK_RESTORED,
    ReconnectReason.BUFFER_RECOVERY_FAILED: ConnectionEvent.MEDIA_STALLED_TIMEOUT,
    ReconnectReason.TRACK_CHANGE: ConnectionEvent.TRACK_RELOAD,
    ReconnectReason.BUFFER_RELOAD: ConnectionEvent.BUFFER_RELOAD,
}


class DeviceClass(Enum):
    """Coarse platform classification, fixed for the lifetime of the process."""

    IOS = "ios"
    ANDROID = "android"
    DESKTOP = "desktop"

    @property
    def is_mobile(self) -> bool:
        """Return True for the constrained (mobile) platforms."""
        return self is not DeviceClass.DESKTOP


class NetworkClass(Enum):
    """Effective network class as reported by the host."""

    SLOW_2G = "slow-2g"
    TWO_G = "2g"
    THREE_G = "3g"
    FOUR_G = "4g"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | NetworkClass | None) -> NetworkClass:
        """Parse a host-reported network class, degrading to UNKNOWN."""
        if isinstance(value, NetworkClass):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class MediaEvent(Enum):
    """Lifecycle events emitted by the host audio primitive."""

    PLAYING = "playing"
    WAITING = "waiting"
    STALLED = "stalled"
    ERROR = "error"
    ENDED = "ended"
    TIMEUPDATE = "timeupdate"
    QUOTA_EXCEEDED = "quota_exceeded"
    """Buffered-source transports ran out of buffer quota."""


class MediaErrorCode(IntEnum):
    """Media error codes reported by the host audio primitive."""

    UNKNOWN = 0
    ABORTED = 1
    NETWORK = 2
    DECODE = 3
    SRC_NOT_SUPPORTED = 4

    @property
    def message(self) -> str:
        """Return a human readable description of the error."""
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES = {
    MediaErrorCode.UNKNOWN: "Unknown error",
    MediaErrorCode.ABORTED: "Playback aborted",
    MediaErrorCode.NETWORK: "Network error",
    MediaErrorCode.DECODE: "Decoding error",
    MediaErrorCode.SRC_NOT_SUPPORTED: "Format not supported",
}


class ReadyState(IntEnum):
    """How much media data the audio primitive has available."""

    HAVE_NOTHING = 0
    HAVE_METADATA = 1
    HAVE_CURRENT_DATA = 2
    HAVE_FUTURE_DATA = 3
    HAVE_ENOUGH_DATA = 4


class NetworkState(IntEnum):
    """Network activity of the audio primitive."""

    EMPTY = 0
    IDLE = 1
    LOADING = 2
    NO_SOURCE = 3


class BufferAction(Enum):
    """Interventions of the buffer health ladder, least to most invasive."""

    NONE = "none"
    RESTORE_RATE = "restore_rate"
    SHADE_RATE = "shade_rate"
    PAUSE_RESUME = "pause_resume"
    SEEK_RECOVER = "seek_recover"
    RELOAD = "reload"
    RECONNECT = "reconnect"


class DriftAction(Enum):
    """Outcome of reconciling a server position with the local estimate."""

    NONE = "none"
    """Within tolerance."""
    GRADUAL = "gradual"
    """Partial additive correction applied."""
    CONTINUITY = "continuity"
    """Re-anchored on the projection from the last known position."""
    HARD_RESET = "hard_reset"
    """Re-anchored on the raw server position."""
