from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from dataclasses import replace

import pytest

from aioliveradio.client.transport import MediaEventCallback, TimeRange
from aioliveradio.exceptions import RadioApiError
from aioliveradio.models.api import HeartbeatResponse, NowPlayingSnapshot
from aioliveradio.models.types import (
    DeviceClass,
    MediaErrorCode,
    MediaEvent,
    NetworkState,
    ReadyState,
)
from aioliveradio.sync.profile import DeviceProfile, SyncConfig, get_device_profile


class FakeTransport:
    """In-memory audio transport driven by the tests."""

    def __init__(self) -> None:
        self.current_time = 0.0
        self.playback_rate = 1.0
        self.volume = 1.0
        self.muted = False
        self.paused = True
        self.buffered: list[TimeRange] = []
        self.ready_state = ReadyState.HAVE_ENOUGH_DATA
        self.network_state = NetworkState.LOADING
        self.source: str | None = None
        self.play_calls = 0
        self.pause_calls = 0
        self.closed = False
        self.play_error: Exception | None = None
        self.removed: list[tuple[float, float]] = []
        self._listeners: list[MediaEventCallback] = []

    def set_source(self, url: str) -> None:
        self.source = url

    async def play(self) -> None:
        self.play_calls += 1
        if self.play_error is not None:
            raise self.play_error
        self.paused = False

    async def pause(self) -> None:
        self.pause_calls += 1
        self.paused = True

    async def close(self) -> None:
        self.closed = True
        self.paused = True

    def add_event_listener(self, callback: MediaEventCallback) -> Callable[[], None]:
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback) if callback in self._listeners else None

    def remove_buffered(self, start: float, end: float) -> None:
        self.removed.append((start, end))

    def emit(self, event: MediaEvent, code: MediaErrorCode | None = None) -> None:
        for callback in list(self._listeners):
            callback(event, code)


class FakeApi:
    """Stand-in for RadioApiClient serving scripted responses."""

    def __init__(self) -> None:
        self.snapshot: NowPlayingSnapshot | None = NowPlayingSnapshot(
            title="Song A", artist="Artist", duration=200.0, path="a.mp3", playback_position=120
        )
        self.heartbeat = HeartbeatResponse(active_listeners=3)
        self.fail_now_playing = False
        self.gate: asyncio.Event | None = None
        self.now_playing_calls = 0
        self.heartbeat_calls: list[str] = []
        self.stream_urls: list[dict[str, object]] = []
        self.closed = False

    async def fetch_now_playing(self, *, params=None, headers=None) -> NowPlayingSnapshot:
        self.now_playing_calls += 1
        snapshot = self.snapshot
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_now_playing or snapshot is None:
            raise RadioApiError("now playing unavailable")
        return snapshot

    async def send_heartbeat(self, connection_id: str, *, headers=None) -> HeartbeatResponse:
        self.heartbeat_calls.append(connection_id)
        return self.heartbeat

    def build_stream_url(self, **kwargs: object) -> str:
        self.stream_urls.append(kwargs)
        return f"http://radio.test/direct-stream?position={int(kwargs['position'])}"

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def transports() -> list[FakeTransport]:
    """Every transport created by `transport_factory`, oldest first."""
    return []


@pytest.fixture
def transport_factory(transports: list[FakeTransport]) -> Callable[[], FakeTransport]:
    def _factory() -> FakeTransport:
        transport = FakeTransport()
        transports.append(transport)
        return transport

    return _factory


@pytest.fixture
def fast_config() -> SyncConfig:
    """Configuration with millisecond delays and idle periodic loops."""
    return SyncConfig(
        min_reconnect_delay=0.01,
        max_reconnect_delay=0.05,
        reconnect_base_delay=0.01,
        jitter_ratio=0.0,
        settle_delay=0.02,
        max_reconnect_attempts=3,
        heartbeat_interval=60.0,
        connection_check_interval=60.0,
        position_save_interval=60.0,
        network_restore_delay=0.01,
        healthy_reset_period=60.0,
        critical_pause=0.01,
        stall_seek_settle=0.01,
    )


@pytest.fixture
def fast_device() -> DeviceProfile:
    return replace(
        get_device_profile(DeviceClass.DESKTOP),
        play_delay=0.0,
        cleanup_delay=0.0,
        media_error_delay=0.0,
        track_change_grace=0.05,
        buffer_check_interval=60.0,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll `predicate` until it holds or fail after `timeout` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
