"""Local persistence of the last position, volume and mute state.

The store is a single JSON file. It is only a fallback: a position restored
from it is used when the now-playing endpoint cannot be reached at start.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import replace
from pathlib import Path

import orjson
from mashumaro.exceptions import MissingField

from aioliveradio.models.api import StoredPosition, StoredSettings

logger = logging.getLogger(__name__)

DEFAULT_STORE_FILE = Path.home() / ".config" / "aioliveradio" / "state.json"


class PositionStore:
    """Persists player state with blocking file I/O run in the default executor."""

    def __init__(self, path: Path | str | None = None) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON file. Defaults to
                ~/.config/aioliveradio/state.json.
        """
        self._path = Path(path) if path is not None else DEFAULT_STORE_FILE
        self._settings = StoredSettings()

    @property
    def path(self) -> Path:
        """Return the location of the store file."""
        return self._path

    @property
    def settings(self) -> StoredSettings:
        """Return the in-memory settings."""
        return self._settings

    @property
    def volume(self) -> float:
        """Get the stored volume (0.0-1.0)."""
        return self._settings.volume

    @property
    def muted(self) -> bool:
        """Get the stored mute state."""
        return self._settings.muted

    async def load(self) -> StoredSettings:
        """Load the store file, keeping defaults when it is missing or corrupt."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load)
        return self._settings

    async def save_position(
        self,
        track_id: str,
        position: float,
        platform: str,
        *,
        timestamp: float | None = None,
    ) -> None:
        """Persist the estimated position of `track_id`."""
        self._settings.position = StoredPosition(
            track_id=track_id,
            position=max(0.0, position),
            timestamp=time.time() if timestamp is None else timestamp,
            platform=platform,
        )
        await self._flush()

    def restore_position(
        self, max_age: float, *, now: float | None = None
    ) -> StoredPosition | None:
        """
        Return the stored position advanced to the present.

        Args:
            max_age: Stored positions older than this many seconds are ignored.
            now: Wall clock seconds, defaults to the current time.

        Returns:
            A copy of the stored position with `position` advanced by the whole
            seconds elapsed since it was saved, or None if nothing usable is
            stored.
        """
        stored = self._settings.position
        if stored is None:
            return None
        age = (time.time() if now is None else now) - stored.timestamp
        if age < 0 or age > max_age:
            logger.debug("Stored position is %.0fs old, ignoring", age)
            return None
        return replace(stored, position=stored.position + math.floor(age))

    async def clear_position(self) -> None:
        """Forget the stored position."""
        if self._settings.position is None:
            return
        self._settings.position = None
        await self._flush()

    async def set_volume(self, volume: float) -> None:
        """Persist the volume, clamped to 0.0-1.0."""
        volume = max(0.0, min(1.0, volume))
        if volume == self._settings.volume:
            return
        self._settings.volume = volume
        await self._flush()

    async def set_muted(self, muted: bool) -> None:
        """Persist the mute state."""
        if muted == self._settings.muted:
            return
        self._settings.muted = muted
        await self._flush()

    async def _flush(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save)

    def _load(self) -> None:
        """Load the store file (blocking I/O)."""
        if not self._path.exists():
            logger.debug("Store file does not exist: %s", self._path)
            return
        try:
            self._settings = StoredSettings.from_json(self._path.read_bytes())
            logger.debug(
                "Loaded store from %s: volume=%.2f, muted=%s",
                self._path,
                self._settings.volume,
                self._settings.muted,
            )
        except (ValueError, TypeError, MissingField, OSError) as err:
            logger.warning("Failed to load store from %s: %s", self._path, err)

    def _save(self) -> None:
        """Write the store file (blocking I/O)."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(
                orjson.dumps(self._settings.to_dict(), option=orjson.OPT_INDENT_2)
            )
        except OSError as err:
            logger.warning("Failed to save store to %s: %s", self._path, err)
