"""Identity of the currently playing track."""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Callback invoked with (previous_track_id, new_track_id) on a track change.
TrackChangeCallback = Callable[[str | None, str | None], None]


class TrackIdentity:
    """Tracks the playing item's identity and reports changes."""

    def __init__(self) -> None:
        """Initialize without a known track."""
        self._track_id: str | None = None
        self._change_pending = False
        self._change_time: float | None = None
        self._callbacks: list[TrackChangeCallback] = []

    @property
    def track_id(self) -> str | None:
        """Return the current track identity."""
        return self._track_id

    @property
    def change_pending(self) -> bool:
        """Return True while a detected change has not been reloaded yet."""
        return self._change_pending

    @property
    def change_time(self) -> float | None:
        """Return the time of the last detected change."""
        return self._change_time

    def observe(self, track_id: str | None, now: float) -> bool:
        """
        Record the identity reported by a now-playing snapshot.

        Returns:
            True if the identity differs from the previous one.
        """
        if track_id == self._track_id:
            return False
        previous = self._track_id
        self._track_id = track_id
        self._change_pending = True
        self._change_time = now
        logger.info("Track changed: %s -> %s", previous, track_id)
        for callback in list(self._callbacks):
            try:
                callback(previous, track_id)
            except Exception:
                logger.exception("Error in track change callback %s", callback)
        return True

    def seed(self, track_id: str | None) -> None:
        """Set the identity without reporting a change."""
        self._track_id = track_id
        self._change_pending = False

    def clear_pending(self) -> None:
        """Mark the pending change as handled."""
        self._change_pending = False

    def reset(self) -> None:
        """Forget the current identity."""
        self._track_id = None
        self._change_pending = False
        self._change_time = None

    def add_change_listener(self, callback: TrackChangeCallback) -> Callable[[], None]:
        """Add a listener for track changes.

        Returns:
            A function that removes this listener when called.
        """
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback) if callback in self._callbacks else None
