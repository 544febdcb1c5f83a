"""Bounded, backoff-driven reconnection of the audio transport."""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import suppress
from typing import Protocol

from aioliveradio.models.types import ReconnectReason

from .profile import DeviceProfile, NetworkProfile, SyncConfig

logger = logging.getLogger(__name__)


class ReconnectHost(Protocol):
    """Side-effecting collaborator driven by the scheduler (the sync engine)."""

    @property
    def is_active(self) -> bool:
        """Return True while the user wants playback."""

    def on_attempt_scheduled(self, reason: ReconnectReason, attempt: int, delay: float) -> None:
        """Record that a counted attempt was scheduled."""

    def on_reload_requested(self, reason: ReconnectReason) -> None:
        """Record that an uncounted reload was started."""

    def on_reconnect_exhausted(self, reason: ReconnectReason) -> None:
        """Enter the terminal error state."""

    async def teardown_transport(self) -> None:
        """Tear down the current transport. Safe when none exists."""

    async def rebuild_transport(self, reason: ReconnectReason) -> None:
        """Fetch the authoritative position and create a new transport."""


class ReconnectionScheduler:
    """
    Computes backoff delays, enforces the attempt budget and runs attempts.

    At most one attempt or reload is in flight at a time; `is_reconnecting`
    is the mutex. The flag is only cleared a settle delay after the rebuild,
    so leftover stall events of the old transport cannot immediately trigger
    another attempt.
    """

    def __init__(
        self,
        host: ReconnectHost,
        config: SyncConfig,
        device: DeviceProfile,
        network: NetworkProfile,
        *,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler."""
        self._host = host
        self._config = config
        self._device = device
        self._network = network
        self._rng = rng or random.Random()
        self._attempts = 0
        self._is_reconnecting = False
        self._task: asyncio.Task[None] | None = None

    @property
    def attempts(self) -> int:
        """Return the number of counted attempts since the last reset."""
        return self._attempts

    @property
    def is_reconnecting(self) -> bool:
        """Return True while an attempt or reload is in flight."""
        return self._is_reconnecting

    @property
    def max_attempts(self) -> int:
        """Return the reconnection budget."""
        if self._config.max_reconnect_attempts is not None:
            return self._config.max_reconnect_attempts
        return self._device.max_reconnect_attempts

    @property
    def multiplier(self) -> float:
        """Return the combined device and network backoff multiplier."""
        return self._device.reconnect_multiplier * self._network.timing.reconnect_multiplier

    @property
    def max_delay(self) -> float:
        """Return the largest delay compute_delay can produce."""
        return self._config.max_reconnect_delay * self.multiplier

    def compute_delay(self, attempt: int, *, jitter: bool = True) -> float:
        """
        Return the delay in seconds before reconnection attempt `attempt`.

        Without jitter the result is non-decreasing in `attempt`. With or
        without jitter it never exceeds `max_delay`.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be at least 1, got {attempt}")
        base = self._config.reconnect_base_delay
        if base is None:
            base = self._network.timing.reconnect_base_delay
        delay = min(
            base * self._config.backoff_growth ** (attempt - 1),
            self._config.max_reconnect_delay,
        )
        delay *= self.multiplier
        if jitter and self._config.jitter_ratio > 0:
            delay += self._rng.uniform(0.0, self._config.jitter_ratio * delay)
        return max(self._config.min_reconnect_delay, min(delay, self.max_delay))

    def schedule_attempt(
        self, reason: ReconnectReason, *, min_delay: float = 0.0
    ) -> float | None:
        """
        Schedule a counted reconnection attempt.

        Args:
            reason: Why the transport needs rebuilding.
            min_delay: Lower bound for the delay (e.g. a classified media error
                delay). Bounded by the configured maximum delay.

        Returns:
            The delay before the attempt runs, or None if it was refused.
        """
        if self._is_reconnecting:
            logger.debug("Reconnection already in progress, ignoring %s", reason.value)
            return None
        if not self._host.is_active:
            logger.debug("Not playing, ignoring reconnection request (%s)", reason.value)
            return None
        if self._attempts >= self.max_attempts:
            logger.error(
                "Maximum reconnection attempts (%d) reached (%s)", self.max_attempts, reason.value
            )
            self._host.on_reconnect_exhausted(reason)
            return None

        self._is_reconnecting = True
        self._attempts += 1
        delay = self.compute_delay(self._attempts)
        delay = max(delay, min(min_delay, self._config.max_reconnect_delay))
        logger.info(
            "Reconnection attempt %d/%d in %.1fs (%s)",
            self._attempts,
            self.max_attempts,
            delay,
            reason.value,
        )
        self._host.on_attempt_scheduled(reason, self._attempts, delay)
        self._task = asyncio.get_running_loop().create_task(
            self._run(reason, delay), name=f"reconnect-{self._attempts}"
        )
        return delay

    def request_reload(self, reason: ReconnectReason) -> bool:
        """
        Start an immediate, uncounted transport reload.

        Returns:
            True if the reload was started.
        """
        if self._is_reconnecting:
            logger.debug("Reconnection already in progress, ignoring reload (%s)", reason.value)
            return False
        if not self._host.is_active:
            logger.debug("Not playing, ignoring reload request (%s)", reason.value)
            return False
        self._is_reconnecting = True
        logger.info("Reloading transport (%s)", reason.value)
        self._host.on_reload_requested(reason)
        self._task = asyncio.get_running_loop().create_task(
            self._run(reason, 0.0), name="reload"
        )
        return True

    def reset_attempts(self) -> None:
        """Reset the attempt counter after sustained healthy playback."""
        if self._attempts:
            logger.debug("Resetting reconnection attempts (was %d)", self._attempts)
        self._attempts = 0

    async def cancel(self) -> None:
        """Cancel an in-flight attempt and release the mutex."""
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._is_reconnecting = False

    async def _run(self, reason: ReconnectReason, delay: float) -> None:
        failed = False
        try:
            await self._host.teardown_transport()
            if delay > 0:
                await asyncio.sleep(delay)
            if not self._host.is_active:
                logger.debug("Playback stopped before reconnection ran")
                return
            try:
                await self._host.rebuild_transport(reason)
            except Exception:
                logger.exception("Reconnection failed (%s)", reason.value)
                failed = True
            await asyncio.sleep(self._config.settle_delay)
        finally:
            self._is_reconnecting = False
            if self._task is asyncio.current_task():
                self._task = None
        if failed:
            self.schedule_attempt(reason)
