"""Playback position estimation between server updates."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(slots=True)
class PlaybackPositionModel:
    """
    Estimate of the position in the current track.

    A pure function of the time passed in and the recorded anchor. All
    synchronization logic reduces to updating the anchor and the additive
    drift correction; the audio transport is never queried for its time.
    """

    anchor_position: float = 0.0
    """Position the model was last certain about, in seconds."""
    anchor_time: float = 0.0
    """Time at which anchor_position was valid, in seconds."""
    drift_correction: float = 0.0
    """Accumulated additive correction, in seconds."""
    duration: float = 0.0
    """Track duration in seconds, 0 means unknown or unbounded."""

    def estimate(self, now: float) -> float:
        """Return the estimated position at time `now`."""
        position = self.anchor_position + (now - self.anchor_time) + self.drift_correction
        upper = self.duration if self.duration > 0 else math.inf
        return max(0.0, min(position, upper))

    def reset_anchor(self, position: float, now: float) -> None:
        """Trust `position` as ground truth at `now` and drop any correction."""
        self.anchor_position = position
        self.anchor_time = now
        self.drift_correction = 0.0

    def apply_correction(self, delta: float) -> None:
        """Nudge future estimates by `delta` seconds."""
        self.drift_correction += delta

    def set_duration(self, duration: float) -> None:
        """Update the track duration used to bound estimates."""
        if duration < 0:
            raise ValueError(f"duration must not be negative, got {duration}")
        self.duration = duration
