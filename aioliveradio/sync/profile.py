"""
Timing and tolerance profiles for the sync engine.

Device and network specifics are closed sets of frozen records looked up by
class. `SyncConfig` holds the knobs that do not depend on either.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from aioliveradio.models.types import DeviceClass, NetworkClass

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncConfig:
    """Engine-wide configuration. All durations are in seconds."""

    max_reconnect_delay: float = 15.0
    """Cap of the exponential part of the reconnection delay."""
    min_reconnect_delay: float = 1.0
    """Floor of any reconnection delay."""
    backoff_growth: float = 1.5
    """Growth factor between consecutive reconnection attempts."""
    jitter_ratio: float = 0.25
    """Upper bound of the random jitter as a fraction of the delay."""
    settle_delay: float = 3.0
    """Time after a rebuild before another reconnection may start."""
    max_reconnect_attempts: int | None = None
    """Overrides the device profile's reconnection budget when set."""
    reconnect_base_delay: float | None = None
    """Overrides the network profile's base delay when set."""

    max_error_frequency: float = 8.0
    """Minimum interval between two reconnection requests caused by media errors."""
    healthy_reset_period: float = 30.0
    """Uninterrupted playback after which the attempt counter is reset."""
    hard_drift_factor: float = 2.0
    """Drift beyond this multiple of the tolerance re-anchors immediately."""

    heartbeat_interval: float = 15.0
    connection_check_interval: float = 8.0
    position_save_interval: float = 8.0
    network_restore_delay: float = 1.0

    buffer_healthy_ahead: float = 4.0
    buffer_low_ahead: float = 2.0
    buffer_critical_ahead: float = 0.5
    shaded_playback_rate: float = 0.97
    critical_pause: float = 1.5
    """How long a critical buffer pauses playback before resuming."""
    stall_window: float = 10.0
    """Stalls closer together than this escalate the recovery ladder."""
    max_reload_attempts: int = 3
    stall_seek_nudge: float = 0.1
    stall_seek_settle: float = 0.5

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.backoff_growth < 1.0:
            raise ValueError(f"backoff_growth must be at least 1.0, got {self.backoff_growth}")
        if not 0.0 <= self.jitter_ratio <= 0.25:
            raise ValueError(f"jitter_ratio must be within 0.0-0.25, got {self.jitter_ratio}")
        if self.min_reconnect_delay > self.max_reconnect_delay:
            raise ValueError("min_reconnect_delay must not exceed max_reconnect_delay")
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 1:
            raise ValueError(
                f"max_reconnect_attempts must be positive, got {self.max_reconnect_attempts}"
            )
        if not (
            0.0 <= self.buffer_critical_ahead
            <= self.buffer_low_ahead
            <= self.buffer_healthy_ahead
        ):
            raise ValueError("buffer thresholds must satisfy critical <= low <= healthy")
        if not 0.5 <= self.shaded_playback_rate <= 1.0:
            raise ValueError(
                f"shaded_playback_rate must be within 0.5-1.0, got {self.shaded_playback_rate}"
            )
        if self.hard_drift_factor <= 1.0:
            raise ValueError(f"hard_drift_factor must exceed 1.0, got {self.hard_drift_factor}")


@dataclass(frozen=True, slots=True)
class DeviceProfile:
    """Tolerances and cadences for one device class."""

    device_class: DeviceClass
    drift_tolerance: float
    """Drift within this many seconds is treated as noise."""
    correction_factor: float
    """Fraction of the drift applied per sync cycle."""
    max_reconnect_gap: float
    """Interruptions shorter than this prefer position continuity."""
    track_change_grace: float
    """Delay between a detected track change and the transport reload."""
    buffer_check_interval: float
    reconnect_multiplier: float
    max_reconnect_attempts: int
    stored_position_max_age: float
    play_delay: float
    """Delay between setting a new source and calling play()."""
    cleanup_delay: float
    """Time given to the host to release a torn down transport."""
    media_error_delay: float
    """Minimum retry delay after a classified media error."""
    stream_params: Mapping[str, str] = field(default_factory=dict)
    """Opaque query parameters added to the audio stream URL."""
    now_playing_params: Mapping[str, str] = field(default_factory=dict)
    """Opaque query parameters added to now-playing requests."""
    request_headers: Mapping[str, str] = field(default_factory=dict)
    """Opaque headers added to API requests."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.drift_tolerance <= 0:
            raise ValueError(f"drift_tolerance must be positive, got {self.drift_tolerance}")
        if not 0 < self.correction_factor <= 1:
            raise ValueError(
                f"correction_factor must be within (0, 1], got {self.correction_factor}"
            )
        if self.max_reconnect_attempts < 1:
            raise ValueError(
                f"max_reconnect_attempts must be positive, got {self.max_reconnect_attempts}"
            )

    @property
    def platform(self) -> str:
        """Return the platform string sent to the server."""
        return self.device_class.value


DEVICE_PROFILES: Mapping[DeviceClass, DeviceProfile] = MappingProxyType(
    {
        DeviceClass.DESKTOP: DeviceProfile(
            device_class=DeviceClass.DESKTOP,
            drift_tolerance=3.0,
            correction_factor=0.10,
            max_reconnect_gap=10.0,
            track_change_grace=2.0,
            buffer_check_interval=3.0,
            reconnect_multiplier=1.0,
            max_reconnect_attempts=5,
            stored_position_max_age=30.0,
            play_delay=0.2,
            cleanup_delay=0.5,
            media_error_delay=2.0,
        ),
        DeviceClass.ANDROID: DeviceProfile(
            device_class=DeviceClass.ANDROID,
            drift_tolerance=6.0,
            correction_factor=0.06,
            max_reconnect_gap=15.0,
            track_change_grace=3.0,
            buffer_check_interval=2.0,
            reconnect_multiplier=1.5,
            max_reconnect_attempts=5,
            stored_position_max_age=45.0,
            play_delay=0.8,
            cleanup_delay=1.0,
            media_error_delay=3.0,
            now_playing_params={"mobile_client": "true"},
            request_headers={"X-Android-Client": "true"},
        ),
        DeviceClass.IOS: DeviceProfile(
            device_class=DeviceClass.IOS,
            drift_tolerance=6.0,
            correction_factor=0.08,
            max_reconnect_gap=15.0,
            track_change_grace=3.0,
            buffer_check_interval=1.5,
            reconnect_multiplier=1.5,
            max_reconnect_attempts=8,
            stored_position_max_age=45.0,
            play_delay=0.8,
            cleanup_delay=1.0,
            media_error_delay=3.0,
            stream_params={
                "ios_optimized": "true",
                "chunk_size": "32768",
                "initial_buffer": "65536",
                "min_buffer_time": "2",
                "preload": "auto",
            },
            now_playing_params={"mobile_client": "true"},
        ),
    }
)


def get_device_profile(device_class: DeviceClass) -> DeviceProfile:
    """Return the built-in profile for a device class."""
    return DEVICE_PROFILES[device_class]


@dataclass(frozen=True, slots=True)
class TimingProfile:
    """Network dependent intervals and backoff parameters."""

    network_class: NetworkClass
    now_playing_interval: float
    """Seconds between two now-playing polls."""
    buffer_timeout: float
    """Seconds a stall may last before the transport is rebuilt."""
    reconnect_base_delay: float
    """Delay of the first reconnection attempt, before multipliers."""
    reconnect_multiplier: float
    """Backoff multiplier for slow networks."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.now_playing_interval <= 0:
            raise ValueError(
                f"now_playing_interval must be positive, got {self.now_playing_interval}"
            )
        if self.reconnect_multiplier < 1.0:
            raise ValueError(
                f"reconnect_multiplier must be at least 1.0, got {self.reconnect_multiplier}"
            )


_SLOW = {"now_playing_interval": 20.0, "buffer_timeout": 25.0, "reconnect_base_delay": 5.0}

NETWORK_TIMING: Mapping[NetworkClass, TimingProfile] = MappingProxyType(
    {
        NetworkClass.SLOW_2G: TimingProfile(NetworkClass.SLOW_2G, **_SLOW, reconnect_multiplier=2.0),
        NetworkClass.TWO_G: TimingProfile(NetworkClass.TWO_G, **_SLOW, reconnect_multiplier=2.0),
        NetworkClass.THREE_G: TimingProfile(
            NetworkClass.THREE_G,
            now_playing_interval=15.0,
            buffer_timeout=18.0,
            reconnect_base_delay=3.0,
            reconnect_multiplier=1.5,
        ),
        NetworkClass.FOUR_G: TimingProfile(
            NetworkClass.FOUR_G,
            now_playing_interval=10.0,
            buffer_timeout=12.0,
            reconnect_base_delay=2.0,
            reconnect_multiplier=1.0,
        ),
    }
)

# Absence of network information means a good connection.
DEFAULT_NETWORK_CLASS = NetworkClass.FOUR_G

# Callback invoked with (previous, current) when the network class changes.
NetworkChangeCallback = Callable[[NetworkClass, NetworkClass], None]


class NetworkProfile:
    """
    Active network timing parameters.

    The active entry is recomputed in place when the host reports a network
    change, so running loops pick up new intervals on their next tick without a
    session restart.
    """

    def __init__(
        self,
        network_class: NetworkClass | str | None = None,
        *,
        table: Mapping[NetworkClass, TimingProfile] | None = None,
    ) -> None:
        """
        Initialize the profile.

        Args:
            network_class: Initial network class, raw host strings are accepted.
            table: Timing table to use instead of NETWORK_TIMING. Classes
                missing from the table fall back to the default entry.
        """
        self._table = table if table is not None else NETWORK_TIMING
        self._network_class = NetworkClass.parse(network_class)
        self._timing = self._lookup(self._network_class)
        self._callbacks: list[NetworkChangeCallback] = []

    @property
    def network_class(self) -> NetworkClass:
        """Return the current network class."""
        return self._network_class

    @property
    def timing(self) -> TimingProfile:
        """Return the active timing parameters."""
        return self._timing

    def update(self, network_class: NetworkClass | str | None) -> bool:
        """Switch to a new network class, returning True when it changed."""
        new_class = NetworkClass.parse(network_class)
        if new_class is self._network_class:
            return False
        old_class = self._network_class
        self._network_class = new_class
        self._timing = self._lookup(new_class)
        logger.info(
            "Network changed %s -> %s: poll %.0fs, buffer timeout %.0fs, reconnect base %.0fs",
            old_class.value,
            new_class.value,
            self._timing.now_playing_interval,
            self._timing.buffer_timeout,
            self._timing.reconnect_base_delay,
        )
        for callback in list(self._callbacks):
            try:
                callback(old_class, new_class)
            except Exception:
                logger.exception("Error in network change callback %s", callback)
        return True

    def add_change_listener(self, callback: NetworkChangeCallback) -> Callable[[], None]:
        """Add a listener for network class changes.

        Returns:
            A function that removes this listener when called.
        """
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback) if callback in self._callbacks else None

    def _lookup(self, network_class: NetworkClass) -> TimingProfile:
        timing = self._table.get(network_class)
        if timing is None:
            timing = self._table.get(DEFAULT_NETWORK_CLASS, NETWORK_TIMING[DEFAULT_NETWORK_CLASS])
        return timing
