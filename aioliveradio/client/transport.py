"""
Contract of the host audio primitive.

The sync engine never decodes audio. The embedding application provides an
object implementing `AudioTransport` (a browser bridge, a media player wrapper,
a test fake) through a factory, and forwards the primitive's lifecycle events
to the listener the engine registers.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import NamedTuple, Protocol, runtime_checkable

from aioliveradio.models.types import MediaErrorCode, MediaEvent, NetworkState, ReadyState


class TimeRange(NamedTuple):
    """One contiguous buffered range, in seconds of media time."""

    start: float
    end: float


# Callback invoked with (event, error_code) for every lifecycle event.
# error_code is only set for MediaEvent.ERROR.
MediaEventCallback = Callable[[MediaEvent, MediaErrorCode | None], None]


@runtime_checkable
class AudioTransport(Protocol):
    """Opaque audio playback primitive playing one stream URL."""

    current_time: float
    """Media time of the playhead in seconds. Assigning seeks."""
    playback_rate: float
    volume: float
    """Volume in the range 0.0-1.0."""
    muted: bool

    @property
    def paused(self) -> bool:
        """Return True while playback is paused."""

    @property
    def buffered(self) -> Sequence[TimeRange]:
        """Return the buffered ranges in media time."""

    @property
    def ready_state(self) -> ReadyState:
        """Return how much data is available at the playhead."""

    @property
    def network_state(self) -> NetworkState:
        """Return the network activity of the primitive."""

    def set_source(self, url: str) -> None:
        """Point the primitive at a new stream URL."""

    async def play(self) -> None:
        """
        Start or resume playback.

        Raises:
            PlaybackNotAllowedError: If the host requires a user gesture first.
            TransportError: If playback could not be started.
        """

    async def pause(self) -> None:
        """Pause playback."""

    async def close(self) -> None:
        """Stop playback and release the source. Must be idempotent."""

    def add_event_listener(self, callback: MediaEventCallback) -> Callable[[], None]:
        """Add a lifecycle event listener and return its remover."""


@runtime_checkable
class BufferedSourceTransport(AudioTransport, Protocol):
    """Transport fed through an application-managed media buffer."""

    def remove_buffered(self, start: float, end: float) -> None:
        """Drop buffered media between `start` and `end`."""


# Factory creating a fresh transport for every (re)connection.
TransportFactory = Callable[[], AudioTransport]


def buffer_ahead(buffered: Sequence[TimeRange], current_time: float) -> float:
    """Return the seconds buffered ahead of `current_time` in its range."""
    for time_range in buffered:
        if time_range.start <= current_time < time_range.end:
            return time_range.end - current_time
    return 0.0
