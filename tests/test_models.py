from __future__ import annotations

import orjson
import pytest

from aioliveradio.models.api import (
    HeartbeatResponse,
    NowPlayingSnapshot,
    StoredPosition,
    StoredSettings,
)
from aioliveradio.models.session import PlaybackSession
from aioliveradio.models.types import (
    ConnectionEvent,
    ConnectionState,
    DeviceClass,
    MediaErrorCode,
    NetworkClass,
    ReconnectReason,
)
from aioliveradio.util import detect_device_class


def test_now_playing_parses_server_payload() -> None:
    raw = orjson.dumps(
        {
            "title": "Song A",
            "artist": "Artist",
            "album": "Album",
            "duration": 200,
            "path": "music/a.mp3",
            "playback_position": 120,
            "playback_position_ms": 250,
            "active_listeners": 4,
            "bitrate": 128,
        }
    )

    snapshot = NowPlayingSnapshot.from_json(raw)

    assert snapshot.track_id == "music/a.mp3"
    assert snapshot.duration == 200.0
    assert snapshot.position_seconds == 120
    assert snapshot.position_milliseconds == 250
    assert snapshot.active_listeners == 4
    assert snapshot.error is None


def test_now_playing_falls_back_to_radio_position() -> None:
    snapshot = NowPlayingSnapshot.from_dict(
        {"path": "a.mp3", "radio_position": 33, "radio_position_ms": 500}
    )
    assert snapshot.position_seconds == 33
    assert snapshot.position_milliseconds == 500


def test_now_playing_omits_missing_fields() -> None:
    data = orjson.loads(NowPlayingSnapshot(path="a.mp3", duration=10.0).to_json())
    assert data == {"path": "a.mp3", "duration": 10.0}


def test_now_playing_rejects_negative_duration() -> None:
    with pytest.raises(ValueError):
        NowPlayingSnapshot(duration=-1.0)


def test_heartbeat_parses_partial_payload() -> None:
    response = HeartbeatResponse.from_json(b'{"active_listeners": 2}')
    assert response.active_listeners == 2
    assert response.radio_position is None


def test_stored_settings_clamp_volume() -> None:
    settings = StoredSettings.from_dict({"volume": 3.0, "muted": True})
    assert settings.volume == 1.0
    assert settings.muted is True
    assert settings.position is None


def test_stored_settings_roundtrip() -> None:
    settings = StoredSettings(
        position=StoredPosition(
            track_id="a.mp3", position=42.5, timestamp=1_700_000_000.0, platform="ios"
        ),
        volume=0.4,
    )
    assert StoredSettings.from_json(settings.to_json()) == settings


def test_stored_position_rejects_negative_position() -> None:
    with pytest.raises(ValueError):
        StoredPosition(track_id="a.mp3", position=-1.0, timestamp=0.0, platform="desktop")


def test_session_defaults() -> None:
    first = PlaybackSession(device_class=DeviceClass.ANDROID)
    second = PlaybackSession(device_class=DeviceClass.ANDROID)

    assert first.connection_state is ConnectionState.DISCONNECTED
    assert first.network_class is NetworkClass.UNKNOWN
    assert first.reconnect_attempts == 0
    assert len(first.connection_id) == 32
    assert first.connection_id != second.connection_id


def test_every_reason_maps_to_an_event() -> None:
    for reason in ReconnectReason:
        assert isinstance(reason.connection_event, ConnectionEvent)
    assert ReconnectReason.TRACK_CHANGE.connection_event is ConnectionEvent.TRACK_RELOAD


def test_media_error_messages() -> None:
    assert MediaErrorCode(2).message == "Network error"
    assert MediaErrorCode.SRC_NOT_SUPPORTED.message == "Format not supported"


def test_network_class_parse() -> None:
    assert NetworkClass.parse("4G") is NetworkClass.FOUR_G
    assert NetworkClass.parse(None) is NetworkClass.UNKNOWN
    assert NetworkClass.parse("wifi") is NetworkClass.UNKNOWN


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", DeviceClass.IOS),
        ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", DeviceClass.IOS),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8) Mobile", DeviceClass.ANDROID),
        ("Mozilla/5.0 (X11; Linux x86_64) Firefox/120.0", DeviceClass.DESKTOP),
        ("", DeviceClass.DESKTOP),
        (None, DeviceClass.DESKTOP),
    ],
)
def test_detect_device_class(user_agent: str | None, expected: DeviceClass) -> None:
    assert detect_device_class(user_agent) is expected
    assert expected.is_mobile is (expected is not DeviceClass.DESKTOP)
