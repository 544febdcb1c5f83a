from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from aioliveradio.models.types import DeviceClass, NetworkClass
from aioliveradio.sync.profile import (
    DEVICE_PROFILES,
    NETWORK_TIMING,
    NetworkProfile,
    SyncConfig,
    TimingProfile,
    get_device_profile,
)


def test_device_profiles_cover_every_class() -> None:
    assert set(DEVICE_PROFILES) == set(DeviceClass)
    desktop = get_device_profile(DeviceClass.DESKTOP)
    ios = get_device_profile(DeviceClass.IOS)
    android = get_device_profile(DeviceClass.ANDROID)

    assert desktop.drift_tolerance == 3.0
    assert ios.drift_tolerance == android.drift_tolerance == 6.0
    assert desktop.track_change_grace < ios.track_change_grace
    assert ios.buffer_check_interval < android.buffer_check_interval < desktop.buffer_check_interval
    assert ios.max_reconnect_attempts == 8
    assert ios.platform == "ios"


def test_device_hints_are_opaque_strings() -> None:
    ios = get_device_profile(DeviceClass.IOS)
    assert ios.stream_params["ios_optimized"] == "true"
    assert ios.stream_params["chunk_size"] == "32768"
    assert get_device_profile(DeviceClass.DESKTOP).stream_params == {}
    assert get_device_profile(DeviceClass.ANDROID).now_playing_params == {"mobile_client": "true"}


def test_device_profile_is_frozen() -> None:
    desktop = get_device_profile(DeviceClass.DESKTOP)
    with pytest.raises(FrozenInstanceError):
        desktop.drift_tolerance = 1.0  # type: ignore[misc]


def test_network_profile_defaults_to_good_connection() -> None:
    profile = NetworkProfile()
    assert profile.network_class is NetworkClass.UNKNOWN
    assert profile.timing is NETWORK_TIMING[NetworkClass.FOUR_G]


def test_network_profile_parses_host_strings() -> None:
    assert NetworkProfile("3g").network_class is NetworkClass.THREE_G
    assert NetworkProfile(" Slow-2G ").network_class is NetworkClass.SLOW_2G
    assert NetworkProfile("5g").network_class is NetworkClass.UNKNOWN


def test_network_update_recomputes_in_place() -> None:
    profile = NetworkProfile("4g")
    changes: list[tuple[NetworkClass, NetworkClass]] = []
    profile.add_change_listener(lambda old, new: changes.append((old, new)))

    assert profile.update("2g") is True
    assert profile.timing.now_playing_interval == 20.0
    assert profile.timing.buffer_timeout == 25.0
    assert profile.timing.reconnect_base_delay == 5.0
    assert profile.timing.reconnect_multiplier == 2.0

    assert profile.update(NetworkClass.TWO_G) is False
    assert changes == [(NetworkClass.FOUR_G, NetworkClass.TWO_G)]


def test_network_profile_custom_table_falls_back() -> None:
    table = {
        NetworkClass.THREE_G: TimingProfile(
            NetworkClass.THREE_G,
            now_playing_interval=1.0,
            buffer_timeout=2.0,
            reconnect_base_delay=0.5,
            reconnect_multiplier=1.0,
        )
    }
    profile = NetworkProfile("3g", table=table)
    assert profile.timing.now_playing_interval == 1.0

    profile.update("2g")
    assert profile.timing is NETWORK_TIMING[NetworkClass.FOUR_G]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"jitter_ratio": 0.5},
        {"backoff_growth": 0.9},
        {"min_reconnect_delay": 20.0},
        {"max_reconnect_attempts": 0},
        {"buffer_low_ahead": 10.0},
        {"shaded_playback_rate": 1.2},
        {"hard_drift_factor": 1.0},
    ],
)
def test_sync_config_validation(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        SyncConfig(**kwargs)
