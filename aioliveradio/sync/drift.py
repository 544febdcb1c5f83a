"""Drift detection and correction against the server's authoritative position."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from aioliveradio.models.types import DriftAction

from .position import PlaybackPositionModel
from .profile import DeviceProfile

logger = logging.getLogger(__name__)


def server_position_from(seconds: float, milliseconds: int | None = None) -> float:
    """Combine the whole-second position with the optional sub-second field."""
    if not milliseconds:
        return float(seconds)
    return float(seconds) + (milliseconds % 1000) / 1000.0


@dataclass(slots=True, frozen=True)
class DriftResult:
    """Outcome of one reconciliation."""

    action: DriftAction
    drift: float
    """Server position minus the estimate before correction."""
    estimate: float
    """Estimate after the correction was applied."""


class DriftCorrector:
    """
    Compares server positions to the model estimate and nudges the model.

    Small drift is noise and ignored. Moderate drift is corrected gradually so
    the progress display converges instead of jumping. Large drift means the
    estimate is stale and the anchor is reset to the server value. After a
    short interruption, the position projected from before the interruption is
    preferred when it agrees with the server, which avoids an audible jump.
    """

    def __init__(self, device: DeviceProfile, *, hard_drift_factor: float = 2.0) -> None:
        """Initialize the corrector for a device profile."""
        if hard_drift_factor <= 1.0:
            raise ValueError(f"hard_drift_factor must exceed 1.0, got {hard_drift_factor}")
        self._device = device
        self._hard_drift_factor = hard_drift_factor

    @property
    def tolerance(self) -> float:
        """Return the drift tolerance in seconds."""
        return self._device.drift_tolerance

    @property
    def hard_threshold(self) -> float:
        """Return the drift magnitude that forces an anchor reset."""
        return self._device.drift_tolerance * self._hard_drift_factor

    def continuity_position(
        self,
        server_position: float,
        now: float,
        *,
        disconnection_time: float | None,
        last_known_position: float,
    ) -> float | None:
        """
        Return the projected position if continuity should be preferred.

        The projection is `last_known_position` advanced by the time since the
        interruption. It is only returned when the interruption is younger than
        the device's maximum reconnect gap and the projection is within
        tolerance of the server position.
        """
        if disconnection_time is None:
            return None
        elapsed = now - disconnection_time
        if elapsed < 0 or elapsed >= self._device.max_reconnect_gap:
            return None
        projection = last_known_position + elapsed
        if abs(projection - server_position) > self.tolerance:
            logger.debug(
                "Continuity projection %.1fs too far from server %.1fs",
                projection,
                server_position,
            )
            return None
        return projection

    def reconcile(
        self,
        model: PlaybackPositionModel,
        server_position: float,
        now: float,
        *,
        disconnection_time: float | None = None,
        last_known_position: float = 0.0,
    ) -> DriftResult:
        """Reconcile `model` with `server_position` at time `now`."""
        estimate = model.estimate(now)
        drift = server_position - estimate
        magnitude = abs(drift)

        if magnitude <= self.tolerance:
            return DriftResult(DriftAction.NONE, drift, estimate)

        projection = self.continuity_position(
            server_position,
            now,
            disconnection_time=disconnection_time,
            last_known_position=last_known_position,
        )
        if projection is not None:
            model.reset_anchor(projection, now)
            logger.debug(
                "Drift %.2fs after interruption, continuing from %.2fs", drift, projection
            )
            return DriftResult(DriftAction.CONTINUITY, drift, model.estimate(now))

        if magnitude > self.hard_threshold:
            model.reset_anchor(server_position, now)
            logger.debug("Drift %.2fs beyond %.1fs, re-anchoring", drift, self.hard_threshold)
            return DriftResult(DriftAction.HARD_RESET, drift, model.estimate(now))

        model.apply_correction(drift * self._device.correction_factor)
        logger.debug(
            "Drift %.2fs, correction now %.3fs", drift, model.drift_correction
        )
        return DriftResult(DriftAction.GRADUAL, drift, model.estimate(now))
