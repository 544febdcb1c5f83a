"""Buffer health monitoring and the recovery ladder."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from aioliveradio.exceptions import TransportError
from aioliveradio.models.types import BufferAction, NetworkState, ReadyState

from .profile import SyncConfig

if TYPE_CHECKING:
    from aioliveradio.client.transport import AudioTransport, BufferedSourceTransport, TimeRange

logger = logging.getLogger(__name__)

# Seconds of already played media kept when trimming a full buffer.
TRIM_KEEP_BEHIND = 2.0
# Largest range removed in one trim.
TRIM_MAX_RANGE = 5.0


@dataclass(slots=True, frozen=True)
class BufferSample:
    """One reading of the audio transport's buffer state."""

    ahead: float
    """Seconds buffered ahead of the playhead."""
    ready_state: ReadyState
    network_state: NetworkState
    paused: bool
    playback_rate: float = 1.0

    @classmethod
    def from_transport(cls, transport: AudioTransport) -> BufferSample:
        """Read a sample from `transport`."""
        from aioliveradio.client.transport import buffer_ahead  # noqa: PLC0415

        return cls(
            ahead=buffer_ahead(transport.buffered, transport.current_time),
            ready_state=ReadyState(transport.ready_state),
            network_state=NetworkState(transport.network_state),
            paused=transport.paused,
            playback_rate=transport.playback_rate,
        )


class BufferHealthMonitor:
    """
    Watches buffered-time-ahead and intervenes before starvation.

    Interventions escalate from cheap to expensive: playback rate shading, a
    brief pause/resume, an in-place seek recovery, a transport reload at a
    fresh server position, and finally a full reconnection. The last two are
    returned to the caller; the others are applied by `apply`.
    """

    def __init__(self, config: SyncConfig) -> None:
        """Initialize the monitor."""
        self._config = config
        self._previous_ahead: float | None = None
        self._stalls: list[float] = []
        self._reload_attempts = 0
        self._reload_pending = False
        self._intervening = False

    @property
    def is_intervening(self) -> bool:
        """Return True while a pause/resume or seek recovery is running."""
        return self._intervening

    @property
    def reload_attempts(self) -> int:
        """Return the number of reloads since the buffer was last healthy."""
        return self._reload_attempts

    def reset(self) -> None:
        """Forget all history, e.g. after a new transport was created."""
        self._previous_ahead = None
        self._stalls.clear()
        self._reload_attempts = 0
        self._reload_pending = False

    def reload_finished(self) -> None:
        """Allow the stall ladder to escalate again after a reload completed."""
        self._reload_pending = False
        self._previous_ahead = None

    def evaluate(self, sample: BufferSample, now: float) -> BufferAction:
        """Return the intervention for `sample` taken at time `now`."""
        if sample.network_state is NetworkState.NO_SOURCE:
            logger.warning("Audio transport has no source")
            return BufferAction.RECONNECT
        if self._intervening:
            return BufferAction.NONE

        previous = self._previous_ahead
        self._previous_ahead = sample.ahead
        if sample.paused:
            return BufferAction.NONE

        if sample.ready_state < ReadyState.HAVE_FUTURE_DATA:
            logger.debug(
                "Buffer stalled: ready state %s, %.1fs ahead", sample.ready_state.name, sample.ahead
            )
            return self.record_stall(now)

        if sample.ahead >= self._config.buffer_healthy_ahead:
            self._recovered()
            if sample.playback_rate != 1.0:
                return BufferAction.RESTORE_RATE
            return BufferAction.NONE

        if (
            sample.ahead < self._config.buffer_critical_ahead
            and previous is not None
            and sample.ahead < previous
        ):
            logger.debug("Buffer critical: %.2fs ahead and shrinking", sample.ahead)
            return BufferAction.PAUSE_RESUME

        if sample.ahead < self._config.buffer_low_ahead and sample.playback_rate >= 1.0:
            logger.debug("Buffer low: %.2fs ahead", sample.ahead)
            return BufferAction.SHADE_RATE

        return BufferAction.NONE

    def record_stall(self, now: float) -> BufferAction:
        """
        Record a stall at time `now` and return the ladder's response.

        The first stall in the window is recovered in place. Repeated stalls
        trigger one reload at a time; once the reload budget is spent the
        caller must reconnect.
        """
        window = self._config.stall_window
        self._stalls = [t for t in self._stalls if now - t < window]
        self._stalls.append(now)

        if self._reload_pending:
            return BufferAction.NONE
        if len(self._stalls) == 1:
            return BufferAction.SEEK_RECOVER
        if self._reload_attempts >= self._config.max_reload_attempts:
            logger.warning(
                "Buffer recovery failed after %d reloads, reconnecting", self._reload_attempts
            )
            self.reset()
            return BufferAction.RECONNECT
        self._reload_attempts += 1
        self._reload_pending = True
        logger.info(
            "Repeated stalls (%d in %.0fs), reload %d/%d",
            len(self._stalls),
            window,
            self._reload_attempts,
            self._config.max_reload_attempts,
        )
        return BufferAction.RELOAD

    async def apply(self, action: BufferAction, transport: AudioTransport) -> None:
        """Apply a local intervention to `transport`."""
        match action:
            case BufferAction.RESTORE_RATE:
                transport.playback_rate = 1.0
            case BufferAction.SHADE_RATE:
                transport.playback_rate = self._config.shaded_playback_rate
            case BufferAction.PAUSE_RESUME:
                await self._pause_resume(transport)
            case BufferAction.SEEK_RECOVER:
                await self._seek_recover(transport)
            case _:
                logger.debug("Buffer action %s is not applied locally", action.value)

    def trim_played(self, transport: BufferedSourceTransport) -> TimeRange | None:
        """Drop already played media after the host ran out of buffer quota."""
        from aioliveradio.client.transport import TimeRange  # noqa: PLC0415

        buffered = transport.buffered
        if not buffered:
            return None
        start = buffered[0].start
        end = min(start + TRIM_MAX_RANGE, transport.current_time - TRIM_KEEP_BEHIND)
        if end <= start:
            logger.debug("Buffer quota exceeded but nothing played to trim")
            return None
        logger.info("Trimming played buffer %.1f-%.1fs", start, end)
        transport.remove_buffered(start, end)
        return TimeRange(start, end)

    def _recovered(self) -> None:
        if self._stalls or self._reload_attempts:
            logger.debug("Buffer healthy again")
        self._stalls.clear()
        self._reload_attempts = 0
        self._reload_pending = False

    async def _pause_resume(self, transport: AudioTransport) -> None:
        self._intervening = True
        try:
            await transport.pause()
            await asyncio.sleep(self._config.critical_pause)
            await transport.play()
        except TransportError as err:
            logger.warning("Resume after buffer refill failed: %s", err)
        finally:
            self._intervening = False

    async def _seek_recover(self, transport: AudioTransport) -> None:
        self._intervening = True
        try:
            transport.current_time = transport.current_time + self._config.stall_seek_nudge
            await asyncio.sleep(self._config.stall_seek_settle)
            await transport.play()
            logger.debug("In-place stall recovery resumed playback")
        except TransportError as err:
            logger.warning("In-place stall recovery failed: %s", err)
        finally:
            self._intervening = False
