"""Live radio sync engine tying position, buffer and connection handling together."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping

from aioliveradio.exceptions import PlaybackNotAllowedError, RadioApiError, TransportError
from aioliveradio.models.api import NowPlayingSnapshot
from aioliveradio.models.session import PlaybackSession, StatusUpdate
from aioliveradio.models.types import (
    BufferAction,
    ConnectionEvent,
    ConnectionState,
    DeviceClass,
    MediaErrorCode,
    MediaEvent,
    NetworkClass,
    NetworkState,
    ReadyState,
    ReconnectReason,
)
from aioliveradio.sync.buffer import BufferHealthMonitor, BufferSample
from aioliveradio.sync.drift import DriftCorrector, server_position_from
from aioliveradio.sync.position import PlaybackPositionModel
from aioliveradio.sync.profile import (
    DeviceProfile,
    NetworkProfile,
    SyncConfig,
    TimingProfile,
    get_device_profile,
)
from aioliveradio.sync.reconnect import ReconnectionScheduler
from aioliveradio.sync.state import ConnectionStateMachine, StateChangeCallback
from aioliveradio.sync.track import TrackChangeCallback, TrackIdentity

from .api import RadioApiClient
from .scheduler import TaskScheduler
from .storage import PositionStore
from .transport import AudioTransport, BufferedSourceTransport, TransportFactory

logger = logging.getLogger(__name__)

# Callback invoked with every user-facing status change.
StatusCallback = Callable[[StatusUpdate], None]

# Callback invoked with each applied now-playing snapshot.
TrackInfoCallback = Callable[[NowPlayingSnapshot], None]

# Callback invoked with the estimated position in seconds.
PositionCallback = Callable[[float], None]

# Callback invoked with the number of listeners reported by the server.
ListenerCountCallback = Callable[[int], None]

# Timer names
_NOW_PLAYING = "now-playing"
_HEARTBEAT = "heartbeat"
_BUFFER_CHECK = "buffer-check"
_CONNECTION_CHECK = "connection-check"
_POSITION_SAVE = "position-save"
_TRACK_GRACE = "track-grace"
_STALL_WATCHDOG = "stall-watchdog"
_STALL_RECOVERY = "stall-recovery"
_HEALTHY_RESET = "healthy-reset"
_NETWORK_RESTORE = "network-restore"

# Media errors beyond this count stretch the retry delay.
_ERROR_STREAK_THRESHOLD = 3
# Minimum retry delay after a network error on a 2g-class connection.
_SLOW_NETWORK_ERROR_DELAY = 5.0
_SLOW_NETWORKS = frozenset({NetworkClass.SLOW_2G, NetworkClass.TWO_G})


class SyncEngine:
    """
    Keeps a live radio transport playing in step with the server.

    The engine owns one PlaybackSession at a time. It polls the now-playing
    endpoint to keep the position estimate close to the server, watches the
    audio transport's buffer and lifecycle events, and rebuilds the transport
    through the ReconnectionScheduler when playback fails.

    Every asynchronous completion is tagged with the generation it was started
    in. Start, stop and every transport rebuild bump the generation, so late
    results and events from torn down transports are dropped.

    The engine must be created within an async context.
    """

    _session: PlaybackSession | None
    """Session of the current connect/recover lifecycle."""
    _transport: AudioTransport | None
    """The single live audio transport."""
    _generation: int
    """Bumped whenever in-flight completions must be invalidated."""

    def __init__(
        self,
        api: RadioApiClient,
        transport_factory: TransportFactory,
        *,
        device_class: DeviceClass = DeviceClass.DESKTOP,
        network_class: NetworkClass | str | None = None,
        config: SyncConfig | None = None,
        device_profile: DeviceProfile | None = None,
        store: PositionStore | None = None,
        rng: random.Random | None = None,
        network_timing: Mapping[NetworkClass, TimingProfile] | None = None,
    ) -> None:
        """
        Create a new sync engine.

        Args:
            api: Client for the radio server. Closed by `close()`.
            transport_factory: Creates a fresh audio transport for every
                (re)connection.
            device_class: Platform class of this client.
            network_class: Initial effective network class, raw host strings
                such as "3g" are accepted. Defaults to a good connection.
            config: Engine configuration, defaults to SyncConfig().
            device_profile: Overrides the built-in profile of `device_class`.
            store: Optional persistent store for the fallback start position,
                volume and mute state.
            rng: Random source for the reconnection jitter.
            network_timing: Replaces the built-in per network class timing
                table.
        """
        self._api = api
        self._transport_factory = transport_factory
        self._config = config or SyncConfig()
        self._device = device_profile or get_device_profile(device_class)
        self._network = NetworkProfile(network_class, table=network_timing)
        self._store = store
        self._store_loaded = False
        self._loop = asyncio.get_running_loop()

        self._machine = ConnectionStateMachine()
        self._machine.add_state_listener(self._on_state_changed)
        self._track = TrackIdentity()
        self._model = PlaybackPositionModel()
        self._drift = DriftCorrector(self._device, hard_drift_factor=self._config.hard_drift_factor)
        self._buffer = BufferHealthMonitor(self._config)
        self._reconnect = ReconnectionScheduler(
            self, self._config, self._device, self._network, rng=rng
        )
        self._timers = TaskScheduler()

        self._session = None
        self._transport = None
        self._remove_transport_listener: Callable[[], None] | None = None
        self._generation = 0
        self._online = True
        self._starting = False
        self._volume = 0.7
        self._muted = False
        self._terminal_reported = False
        self._halt_task: asyncio.Task[None] | None = None

        self._status_callbacks: list[StatusCallback] = []
        self._track_info_callbacks: list[TrackInfoCallback] = []
        self._position_callbacks: list[PositionCallback] = []
        self._listener_count_callbacks: list[ListenerCountCallback] = []

    @property
    def state(self) -> ConnectionState:
        """Return the connection state."""
        return self._machine.state

    @property
    def session(self) -> PlaybackSession | None:
        """Return the current session, None while disconnected."""
        return self._session

    @property
    def transport(self) -> AudioTransport | None:
        """Return the live audio transport, if any."""
        return self._transport

    @property
    def generation(self) -> int:
        """Return the current generation."""
        return self._generation

    @property
    def position(self) -> float:
        """Return the estimated position in the current track."""
        return self._model.estimate(self._loop.time())

    @property
    def device_profile(self) -> DeviceProfile:
        """Return the active device profile."""
        return self._device

    @property
    def network_profile(self) -> NetworkProfile:
        """Return the live network profile."""
        return self._network

    @property
    def reconnect_scheduler(self) -> ReconnectionScheduler:
        """Return the reconnection scheduler."""
        return self._reconnect

    @property
    def is_active(self) -> bool:
        """Return True while the user wants playback."""
        return self._machine.is_playing

    # Public operations

    async def start(self) -> None:
        """Connect and start playback from the server's current position."""
        if self._machine.is_playing:
            logger.debug("Already playing")
            return
        if self._halt_task is not None:
            await self._halt_task

        await self._load_store()
        await self._reconnect.cancel()
        self._reconnect.reset_attempts()
        self._session = PlaybackSession(
            device_class=self._device.device_class,
            network_class=self._network.network_class,
        )
        self._model = PlaybackPositionModel()
        self._track.reset()
        self._buffer.reset()
        self._terminal_reported = False

        self._machine.dispatch(ConnectionEvent.START)
        self._notify_status("Connecting...")
        self._start_loops()
        self._starting = True
        try:
            await self._open(None)
        except TransportError as err:
            logger.warning("Could not start audio transport: %s", err)
            self._request_reconnect(ReconnectReason.TRANSPORT_FAILED)
        finally:
            self._starting = False

    async def stop(self) -> None:
        """Stop playback and discard the session."""
        if self._session is None and self._machine.state is ConnectionState.DISCONNECTED:
            return
        logger.info("Stopping playback")
        self._generation += 1
        await self._timers.cancel_all()
        await self._reconnect.cancel()
        await self._save_position()
        self._machine.dispatch(ConnectionEvent.USER_STOP)
        await self.teardown_transport()
        self._discard_session()
        self._notify_status("Disconnected")

    async def close(self) -> None:
        """Stop playback and release the API client."""
        await self.stop()
        if self._halt_task is not None:
            await self._halt_task
        await self._api.close()

    async def resume_after_interaction(self) -> bool:
        """
        Retry playback after a user gesture.

        Returns:
            True if playback was resumed.
        """
        session = self._session
        transport = self._transport
        if session is None or transport is None or not session.requires_interaction:
            return False
        try:
            await transport.play()
        except PlaybackNotAllowedError:
            logger.info("Playback still requires user interaction")
            return False
        except TransportError as err:
            logger.warning("Resume after user interaction failed: %s", err)
            self._request_reconnect(ReconnectReason.TRANSPORT_FAILED)
            return False
        session.requires_interaction = False
        self._arm_stall_watchdog()
        return True

    async def refresh_now_playing(self) -> NowPlayingSnapshot | None:
        """
        Fetch the now-playing snapshot and apply it.

        Returns:
            The applied snapshot, or None if the fetch failed or its result
            was superseded while in flight.
        """
        if self._session is None:
            return None
        generation = self._generation
        snapshot = await self._fetch_now_playing()
        if snapshot is None:
            return None
        if generation != self._generation or self._session is None:
            logger.debug("Dropping stale now-playing response (generation %d)", generation)
            return None
        self._apply_snapshot(snapshot)
        return snapshot

    def handle_media_event(
        self, event: MediaEvent, error_code: MediaErrorCode | None = None
    ) -> None:
        """React to a lifecycle event of the live transport."""
        session = self._session
        if session is None:
            return
        match event:
            case MediaEvent.PLAYING:
                self._on_playing(session)
            case MediaEvent.WAITING:
                self._arm_stall_watchdog()
            case MediaEvent.STALLED:
                self._arm_stall_watchdog()
                self._on_stalled()
            case MediaEvent.ERROR:
                self._on_media_error(session, error_code or MediaErrorCode.UNKNOWN)
            case MediaEvent.ENDED:
                if self._track.change_pending:
                    logger.info("Stream ended during a track change, reloading now")
                    self._reload_for_track_change()
                else:
                    self._request_reconnect(ReconnectReason.STREAM_ENDED)
            case MediaEvent.TIMEUPDATE:
                self._notify_position(self.position)
            case MediaEvent.QUOTA_EXCEEDED:
                transport = self._transport
                if isinstance(transport, BufferedSourceTransport):
                    self._buffer.trim_played(transport)

    def handle_network_change(self, network_class: NetworkClass | str | None) -> bool:
        """
        Apply a network change reported by the host.

        Returns:
            True if the effective network class changed.
        """
        changed = self._network.update(network_class)
        if changed and self._session is not None:
            self._session.network_class = self._network.network_class
        return changed

    def handle_connectivity(self, online: bool) -> None:
        """Apply an online/offline notification from the host."""
        if online == self._online:
            return
        self._online = online
        if not online:
            logger.warning("Network connection lost")
            self._timers.cancel(_NETWORK_RESTORE)
            self._record_disconnection()
            if self._machine.is_playing:
                self._notify_status("Network connection lost", is_error=True)
            return

        logger.info("Network connection restored")
        if self._machine.is_playing:
            self._notify_status("Network connection restored")
            generation = self._generation
            self._timers.call_later(
                _NETWORK_RESTORE,
                self._config.network_restore_delay,
                lambda: self._on_network_restored(generation),
            )

    async def set_volume(self, volume: float) -> None:
        """Set the playback volume (0.0-1.0)."""
        self._volume = max(0.0, min(1.0, volume))
        if self._transport is not None:
            self._transport.volume = self._volume
        if self._store is not None:
            await self._store.set_volume(self._volume)

    async def set_muted(self, muted: bool) -> None:
        """Mute or unmute playback."""
        self._muted = muted
        if self._transport is not None:
            self._transport.muted = muted
        if self._store is not None:
            await self._store.set_muted(muted)

    # Listener registration

    def add_status_listener(self, callback: StatusCallback) -> Callable[[], None]:
        """Add a listener for user-facing status changes.

        Returns:
            A function that removes this listener when called.
        """
        self._status_callbacks.append(callback)
        return lambda: (
            self._status_callbacks.remove(callback)
            if callback in self._status_callbacks
            else None
        )

    def add_state_listener(self, callback: StateChangeCallback) -> Callable[[], None]:
        """Add a listener for connection state changes.

        Returns:
            A function that removes this listener when called.
        """
        return self._machine.add_state_listener(callback)

    def add_track_change_listener(self, callback: TrackChangeCallback) -> Callable[[], None]:
        """Add a listener for track identity changes.

        Returns:
            A function that removes this listener when called.
        """
        return self._track.add_change_listener(callback)

    def add_track_info_listener(self, callback: TrackInfoCallback) -> Callable[[], None]:
        """Add a listener for applied now-playing snapshots.

        Returns:
            A function that removes this listener when called.
        """
        self._track_info_callbacks.append(callback)
        return lambda: (
            self._track_info_callbacks.remove(callback)
            if callback in self._track_info_callbacks
            else None
        )

    def add_position_listener(self, callback: PositionCallback) -> Callable[[], None]:
        """Add a listener for position estimate updates.

        Returns:
            A function that removes this listener when called.
        """
        self._position_callbacks.append(callback)
        return lambda: (
            self._position_callbacks.remove(callback)
            if callback in self._position_callbacks
            else None
        )

    def add_listener_count_listener(self, callback: ListenerCountCallback) -> Callable[[], None]:
        """Add a listener for the station's listener count.

        Returns:
            A function that removes this listener when called.
        """
        self._listener_count_callbacks.append(callback)
        return lambda: (
            self._listener_count_callbacks.remove(callback)
            if callback in self._listener_count_callbacks
            else None
        )

    # Reconnection host

    def on_attempt_scheduled(self, reason: ReconnectReason, attempt: int, delay: float) -> None:
        """Record a scheduled reconnection attempt."""
        if self._session is not None:
            self._session.reconnect_attempts = attempt
        self._timers.cancel(_HEALTHY_RESET)
        self._timers.cancel(_STALL_WATCHDOG)
        self._timers.cancel(_STALL_RECOVERY)
        self._record_disconnection()
        self._machine.try_dispatch(reason.connection_event)
        self._notify_status(
            f"Reconnecting in {delay:.0f}s (attempt {attempt}/{self._reconnect.max_attempts})..."
        )

    def on_reload_requested(self, reason: ReconnectReason) -> None:
        """Record an uncounted transport reload."""
        self._timers.cancel(_STALL_WATCHDOG)
        self._timers.cancel(_STALL_RECOVERY)
        if reason is not ReconnectReason.TRACK_CHANGE:
            self._record_disconnection()
        self._machine.try_dispatch(reason.connection_event)
        if reason is ReconnectReason.TRACK_CHANGE:
            self._notify_status("Loading next track...")
        else:
            self._notify_status("Recovering playback...")

    def on_reconnect_exhausted(self, reason: ReconnectReason) -> None:
        """Enter the terminal error state and tear the session down."""
        self._machine.try_dispatch(ConnectionEvent.ATTEMPTS_EXHAUSTED)
        if self._terminal_reported:
            return
        self._terminal_reported = True
        attempts = self._reconnect.attempts
        logger.error("Giving up after %d reconnection attempts (%s)", attempts, reason.value)
        self._notify_status(
            f"Unable to reconnect after {attempts} attempts. Press play to try again.",
            is_error=True,
            terminal=True,
        )
        self._generation += 1
        self._halt_task = self._loop.create_task(self._halt(), name="sync-halt")

    async def teardown_transport(self) -> None:
        """Close the live transport. Safe when none exists."""
        transport = self._transport
        if transport is None:
            return
        self._transport = None
        if self._remove_transport_listener is not None:
            self._remove_transport_listener()
            self._remove_transport_listener = None
        try:
            await transport.close()
        except TransportError as err:
            logger.warning("Error while closing audio transport: %s", err)
        if self._device.cleanup_delay > 0:
            await asyncio.sleep(self._device.cleanup_delay)

    async def rebuild_transport(self, reason: ReconnectReason) -> None:
        """Fetch the server position and create a new transport."""
        await self._open(reason)

    # Connection

    async def _open(self, reason: ReconnectReason | None) -> None:
        """Create a transport at the best known position; `reason` is None on start."""
        self._generation += 1
        generation = self._generation
        self._timers.cancel(_STALL_WATCHDOG)
        self._timers.cancel(_STALL_RECOVERY)
        snapshot = await self._fetch_now_playing()
        if generation != self._generation or not self._machine.is_playing:
            logger.debug("Connection superseded while fetching now-playing")
            return

        now = self._loop.time()
        if snapshot is not None:
            position = self._anchor_to_snapshot(snapshot, reason, now)
        else:
            position = self._fallback_position(now)

        if reason is ReconnectReason.BUFFER_RELOAD:
            self._buffer.reload_finished()
        else:
            self._buffer.reset()
        await self.teardown_transport()
        if generation != self._generation or not self._machine.is_playing:
            return
        await self._create_transport(
            position, generation, buffer_recovery=reason is ReconnectReason.BUFFER_RELOAD
        )

    def _anchor_to_snapshot(
        self, snapshot: NowPlayingSnapshot, reason: ReconnectReason | None, now: float
    ) -> float:
        """Apply a snapshot fetched for a new transport and return its start position."""
        session = self._session
        assert session is not None
        self._update_track_info(snapshot)
        self._track.observe(snapshot.track_id, now)
        # The new transport starts on this track, no reload is pending anymore.
        self._track.clear_pending()
        self._timers.cancel(_TRACK_GRACE)

        seconds = snapshot.position_seconds
        if seconds is None:
            position = self._model.estimate(now)
        else:
            server_position = server_position_from(seconds, snapshot.position_milliseconds)
            projection = None
            if reason is not None and reason is not ReconnectReason.TRACK_CHANGE:
                projection = self._drift.continuity_position(
                    server_position,
                    now,
                    disconnection_time=session.disconnection_time,
                    last_known_position=session.last_known_position,
                )
            if projection is not None:
                logger.debug(
                    "Resuming from %.1fs instead of server position %.1fs",
                    projection,
                    server_position,
                )
            position = server_position if projection is None else projection
            session.last_server_sync = now
        self._model.reset_anchor(position, now)
        session.disconnection_time = None
        return self._model.estimate(now)

    def _fallback_position(self, now: float) -> float:
        """Return a start position when the server could not be reached."""
        session = self._session
        assert session is not None
        if session.track_id is not None:
            position = self._model.estimate(now)
        else:
            position = 0.0
            stored = (
                self._store.restore_position(self._device.stored_position_max_age)
                if self._store is not None
                else None
            )
            if stored is not None:
                logger.info(
                    "Server unreachable, starting %s from stored position %.0fs",
                    stored.track_id,
                    stored.position,
                )
                self._track.seed(stored.track_id)
                session.track_id = stored.track_id
                position = stored.position
        self._model.reset_anchor(position, now)
        session.disconnection_time = None
        return position

    async def _create_transport(
        self, position: float, generation: int, *, buffer_recovery: bool = False
    ) -> None:
        session = self._session
        assert session is not None
        url = self._api.build_stream_url(
            position=position,
            timestamp=time.time(),
            platform=self._device.platform,
            hints=self._device.stream_params,
            buffer_recovery=buffer_recovery,
        )
        transport = self._transport_factory()
        self._transport = transport
        self._remove_transport_listener = transport.add_event_listener(
            lambda event, code: self._on_transport_event(generation, event, code)
        )
        transport.volume = self._volume
        transport.muted = self._muted
        session.start_position = position
        logger.info("Starting audio transport at %.1fs", position)
        transport.set_source(url)

        if self._device.play_delay > 0:
            await asyncio.sleep(self._device.play_delay)
        if generation != self._generation:
            return
        try:
            await transport.play()
        except PlaybackNotAllowedError:
            self._require_interaction(session)
            return
        # Covers a source that never starts playing.
        if generation == self._generation:
            self._arm_stall_watchdog()

    def _require_interaction(self, session: PlaybackSession) -> None:
        logger.info("Playback requires user interaction")
        session.requires_interaction = True
        self._timers.cancel(_STALL_WATCHDOG)
        self._notify_status("Tap play to start audio", is_error=True)

    async def _fetch_now_playing(self) -> NowPlayingSnapshot | None:
        try:
            return await self._api.fetch_now_playing(
                params=self._device.now_playing_params,
                headers=self._device.request_headers,
            )
        except RadioApiError as err:
            logger.warning("Failed to fetch now playing: %s", err)
            return None

    async def _halt(self) -> None:
        """Tear down after the reconnection budget was spent."""
        await self._timers.cancel_all()
        await self._save_position()
        await self.teardown_transport()
        self._discard_session()
        self._halt_task = None

    def _discard_session(self) -> None:
        self._session = None
        self._track.reset()
        self._model = PlaybackPositionModel()
        self._buffer.reset()

    def _request_reconnect(
        self, reason: ReconnectReason, *, min_delay: float = 0.0
    ) -> float | None:
        if not self._machine.can_reconnect(self._reconnect.is_reconnecting):
            logger.debug("Reconnection not permitted now (%s)", reason.value)
            return None
        return self._reconnect.schedule_attempt(reason, min_delay=min_delay)

    def _record_disconnection(self) -> None:
        session = self._session
        if session is None or session.disconnection_time is not None:
            return
        now = self._loop.time()
        session.disconnection_time = now
        session.last_known_position = self._model.estimate(now)

    # Now playing

    def _apply_snapshot(self, snapshot: NowPlayingSnapshot) -> None:
        session = self._session
        assert session is not None
        now = self._loop.time()
        self._update_track_info(snapshot)

        if self._track.observe(snapshot.track_id, now):
            self._model.reset_anchor(0.0, now)
            if self._machine.is_playing:
                generation = self._generation
                self._timers.call_later(
                    _TRACK_GRACE,
                    self._device.track_change_grace,
                    lambda: self._on_track_grace_elapsed(generation),
                )
            return

        seconds = snapshot.position_seconds
        if seconds is None or self._track.change_pending:
            return
        self._reconcile(server_position_from(seconds, snapshot.position_milliseconds), now)

    def _reconcile(self, server_position: float, now: float) -> None:
        session = self._session
        assert session is not None
        if self._reconnect.is_reconnecting:
            return
        result = self._drift.reconcile(
            self._model,
            server_position,
            now,
            disconnection_time=session.disconnection_time,
            last_known_position=session.last_known_position,
        )
        session.last_server_sync = now
        session.disconnection_time = None
        logger.debug(
            "Server %.1fs, drift %.2fs, %s", server_position, result.drift, result.action.value
        )
        self._notify_position(result.estimate)

    def _update_track_info(self, snapshot: NowPlayingSnapshot) -> None:
        session = self._session
        assert session is not None
        session.track_id = snapshot.track_id
        session.track_duration = snapshot.duration
        session.title = snapshot.title
        session.artist = snapshot.artist
        session.album = snapshot.album
        self._model.set_duration(snapshot.duration)
        self._notify_track_info(snapshot)
        if snapshot.active_listeners is not None:
            self._update_listener_count(snapshot.active_listeners)

    def _update_listener_count(self, count: int) -> None:
        assert self._session is not None
        if count == self._session.active_listeners:
            return
        self._session.active_listeners = count
        self._notify_listener_count(count)

    def _on_track_grace_elapsed(self, generation: int) -> None:
        if generation != self._generation or not self._track.change_pending:
            return
        self._reload_for_track_change()

    def _reload_for_track_change(self) -> None:
        self._timers.cancel(_TRACK_GRACE)
        if self._reconnect.request_reload(ReconnectReason.TRACK_CHANGE):
            self._track.clear_pending()

    # Media events

    def _on_transport_event(
        self, generation: int, event: MediaEvent, error_code: MediaErrorCode | None
    ) -> None:
        if generation != self._generation:
            logger.debug("Ignoring %s from a replaced transport", event.value)
            return
        self.handle_media_event(event, error_code)

    def _on_playing(self, session: PlaybackSession) -> None:
        session.requires_interaction = False
        self._timers.cancel(_STALL_WATCHDOG)
        previous = self._machine.state
        if not self._machine.try_dispatch(ConnectionEvent.MEDIA_PLAYING):
            return
        if previous is ConnectionState.RECONNECTING:
            self._notify_status("Reconnected")
        elif previous is ConnectionState.CONNECTING:
            self._notify_status("Playing")
        if not self._timers.is_scheduled(_HEALTHY_RESET):
            generation = self._generation
            self._timers.call_later(
                _HEALTHY_RESET,
                self._config.healthy_reset_period,
                lambda: self._on_healthy_period(generation),
            )

    def _on_media_error(self, session: PlaybackSession, code: MediaErrorCode) -> None:
        session.consecutive_media_errors += 1
        errors = session.consecutive_media_errors
        logger.warning("Media error %s (%d in a row)", code.name, errors)

        now = self._loop.time()
        last = session.last_error_response
        if last is not None and now - last < self._config.max_error_frequency:
            # The connection check picks up a transport left broken.
            logger.debug("Ignoring media error within %.0fs of the last one", now - last)
            return
        if not self._machine.can_reconnect(self._reconnect.is_reconnecting):
            logger.debug("Media error while a reconnection is in progress")
            return
        session.last_error_response = now
        self._notify_status(f"Playback error: {code.message}", is_error=True)
        self._request_reconnect(
            ReconnectReason.MEDIA_ERROR, min_delay=self._media_error_delay(code, errors)
        )

    def _media_error_delay(self, code: MediaErrorCode, errors: int) -> float:
        delay = self._device.media_error_delay
        if code is MediaErrorCode.NETWORK and self._network.network_class in _SLOW_NETWORKS:
            delay = _SLOW_NETWORK_ERROR_DELAY
        if errors > _ERROR_STREAK_THRESHOLD:
            delay = min(self._config.max_reconnect_delay, delay * errors)
        return delay

    def _arm_stall_watchdog(self) -> None:
        if not self._machine.is_playing or self._buffer.is_intervening:
            return
        if self._timers.is_scheduled(_STALL_WATCHDOG):
            return
        generation = self._generation
        self._timers.call_later(
            _STALL_WATCHDOG,
            self._network.timing.buffer_timeout,
            lambda: self._on_stall_timeout(generation),
        )

    def _on_stall_timeout(self, generation: int) -> None:
        transport = self._transport
        if generation != self._generation or transport is None:
            return
        timeout = self._network.timing.buffer_timeout
        if not self._machine.is_connected:
            logger.warning("Audio transport did not start playing within %.0fs", timeout)
            self._request_reconnect(ReconnectReason.STALLED)
        elif transport.ready_state < ReadyState.HAVE_FUTURE_DATA:
            logger.warning("Playback stalled for %.0fs", timeout)
            self._request_reconnect(ReconnectReason.STALLED)

    def _on_stalled(self) -> None:
        transport = self._transport
        if (
            transport is None
            or not self._machine.is_connected
            or self._reconnect.is_reconnecting
        ):
            return
        action = self._buffer.record_stall(self._loop.time())
        match action:
            case BufferAction.NONE:
                return
            case BufferAction.RELOAD | BufferAction.RECONNECT:
                self._escalate_buffer(action, transport.network_state)
            case _:
                self._timers.call_later(
                    _STALL_RECOVERY, 0, lambda: self._buffer.apply(action, transport)
                )

    def _escalate_buffer(self, action: BufferAction, network_state: NetworkState) -> None:
        """Hand a buffer action the monitor cannot apply locally to the scheduler."""
        if action is BufferAction.RELOAD:
            if not self._reconnect.request_reload(ReconnectReason.BUFFER_RELOAD):
                self._buffer.reload_finished()
        elif network_state == NetworkState.NO_SOURCE:
            self._request_reconnect(ReconnectReason.NO_SOURCE)
        else:
            self._request_reconnect(ReconnectReason.BUFFER_RECOVERY_FAILED)

    def _on_healthy_period(self, generation: int) -> None:
        session = self._session
        if generation != self._generation or session is None or not self._machine.is_connected:
            return
        logger.debug("Playback healthy for %.0fs", self._config.healthy_reset_period)
        self._reconnect.reset_attempts()
        session.reconnect_attempts = 0
        session.consecutive_media_errors = 0
        session.last_error_response = None

    def _on_network_restored(self, generation: int) -> None:
        if generation != self._generation:
            return
        transport = self._transport
        if transport is None or transport.paused:
            self._request_reconnect(ReconnectReason.NETWORK_RESTORED)

    def _on_state_changed(self, old: ConnectionState, new: ConnectionState) -> None:
        if self._session is not None:
            self._session.connection_state = new
        if old is ConnectionState.CONNECTED:
            self._timers.cancel(_HEALTHY_RESET)

    # Periodic loops

    def _start_loops(self) -> None:
        self._timers.every(
            _NOW_PLAYING,
            lambda: self._network.timing.now_playing_interval,
            self.refresh_now_playing,
        )
        self._timers.every(_HEARTBEAT, self._config.heartbeat_interval, self._send_heartbeat)
        self._timers.every(_BUFFER_CHECK, self._device.buffer_check_interval, self._check_buffer)
        self._timers.every(
            _CONNECTION_CHECK, self._config.connection_check_interval, self._check_connection
        )
        if self._store is not None:
            self._timers.every(
                _POSITION_SAVE, self._config.position_save_interval, self._save_position
            )

    async def _send_heartbeat(self) -> None:
        session = self._session
        if session is None:
            return
        generation = self._generation
        try:
            response = await self._api.send_heartbeat(
                session.connection_id, headers=self._device.request_headers
            )
        except RadioApiError as err:
            logger.debug("Heartbeat failed: %s", err)
            return
        if generation != self._generation or self._session is not session:
            return
        now = self._loop.time()
        session.last_heartbeat = now
        if response.active_listeners is not None:
            self._update_listener_count(response.active_listeners)
        if (
            response.radio_position is not None
            and self._machine.is_connected
            and not self._track.change_pending
        ):
            self._reconcile(
                server_position_from(response.radio_position, response.radio_position_ms), now
            )

    async def _check_buffer(self) -> None:
        transport = self._transport
        if (
            transport is None
            or not self._machine.is_connected
            or self._reconnect.is_reconnecting
            or self._buffer.is_intervening
        ):
            return
        sample = BufferSample.from_transport(transport)
        action = self._buffer.evaluate(sample, self._loop.time())
        match action:
            case BufferAction.NONE:
                return
            case BufferAction.RELOAD | BufferAction.RECONNECT:
                self._escalate_buffer(action, sample.network_state)
            case _:
                await self._buffer.apply(action, transport)

    async def _check_connection(self) -> None:
        """Catch a transport that lost its source or paused on its own."""
        transport = self._transport
        session = self._session
        if (
            transport is None
            or session is None
            or self._starting
            or not self._machine.can_reconnect(self._reconnect.is_reconnecting)
            or self._buffer.is_intervening
            or session.requires_interaction
            or self._track.change_pending
        ):
            return
        if transport.network_state == NetworkState.NO_SOURCE:
            logger.warning("Audio transport has no source")
            self._request_reconnect(ReconnectReason.NO_SOURCE)
            return
        if not transport.paused:
            return

        logger.warning("Audio transport paused unexpectedly, resuming")
        generation = self._generation
        try:
            await transport.play()
        except PlaybackNotAllowedError:
            if generation == self._generation:
                self._require_interaction(session)
        except TransportError as err:
            if generation == self._generation:
                logger.warning("Resuming audio transport failed: %s", err)
                self._request_reconnect(ReconnectReason.UNEXPECTED_PAUSE)

    async def _save_position(self) -> None:
        session = self._session
        if self._store is None or session is None or session.track_id is None:
            return
        await self._store.save_position(session.track_id, self.position, self._device.platform)

    async def _load_store(self) -> None:
        if self._store is None or self._store_loaded:
            return
        settings = await self._store.load()
        self._store_loaded = True
        self._volume = settings.volume
        self._muted = settings.muted

    # Notifications

    def _notify_status(self, message: str, *, is_error: bool = False, terminal: bool = False) -> None:
        update = StatusUpdate(message, is_error=is_error, terminal=terminal)
        for callback in list(self._status_callbacks):
            try:
                callback(update)
            except Exception:
                logger.exception("Error in status callback %s", callback)

    def _notify_track_info(self, snapshot: NowPlayingSnapshot) -> None:
        for callback in list(self._track_info_callbacks):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Error in track info callback %s", callback)

    def _notify_position(self, position: float) -> None:
        for callback in list(self._position_callbacks):
            try:
                callback(position)
            except Exception:
                logger.exception("Error in position callback %s", callback)

    def _notify_listener_count(self, count: int) -> None:
        for callback in list(self._listener_count_callbacks):
            try:
                callback(count)
            except Exception:
                logger.exception("Error in listener count callback %s", callback)
