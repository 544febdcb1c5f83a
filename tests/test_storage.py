from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from aioliveradio.client.storage import PositionStore


@pytest.mark.asyncio
async def test_missing_file_keeps_defaults(tmp_path: Path) -> None:
    store = PositionStore(tmp_path / "state.json")

    settings = await store.load()

    assert settings.volume == 0.7
    assert settings.muted is False
    assert store.restore_position(max_age=30.0) is None


@pytest.mark.asyncio
async def test_position_survives_reload(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    store = PositionStore(path)
    await store.save_position("a.mp3", 61.4, "desktop", timestamp=1000.0)
    await store.set_volume(0.25)
    await store.set_muted(True)

    reloaded = PositionStore(path)
    await reloaded.load()

    assert reloaded.volume == 0.25
    assert reloaded.muted is True
    restored = reloaded.restore_position(max_age=30.0, now=1012.7)
    assert restored is not None
    assert restored.track_id == "a.mp3"
    assert restored.position == pytest.approx(73.4)
    assert restored.platform == "desktop"


@pytest.mark.asyncio
async def test_stale_position_ignored(tmp_path: Path) -> None:
    store = PositionStore(tmp_path / "state.json")
    await store.save_position("a.mp3", 10.0, "android", timestamp=1000.0)

    assert store.restore_position(max_age=45.0, now=1044.0) is not None
    assert store.restore_position(max_age=45.0, now=1046.0) is None
    assert store.restore_position(max_age=45.0, now=900.0) is None


@pytest.mark.asyncio
async def test_clear_position(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    store = PositionStore(path)
    await store.save_position("a.mp3", 10.0, "ios", timestamp=1000.0)

    await store.clear_position()

    assert orjson.loads(path.read_bytes()).get("position") is None


@pytest.mark.asyncio
async def test_volume_is_clamped(tmp_path: Path) -> None:
    store = PositionStore(tmp_path / "state.json")
    await store.set_volume(4.0)
    assert store.volume == 1.0


@pytest.mark.asyncio
async def test_corrupt_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_bytes(b"{not json")
    store = PositionStore(path)

    settings = await store.load()

    assert settings.volume == 0.7
    assert store.path == path
