"""HTTP client for the live radio server."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TypeVar
from urllib.parse import urlencode

from aiohttp import ClientError, ClientSession, ClientTimeout
from mashumaro.exceptions import MissingField
from mashumaro.mixins.orjson import DataClassORJSONMixin

from aioliveradio.exceptions import RadioApiError
from aioliveradio.models.api import HeartbeatResponse, NowPlayingSnapshot

logger = logging.getLogger(__name__)

NOW_PLAYING_PATH = "/api/now-playing"
HEARTBEAT_PATH = "/api/heartbeat"
STREAM_PATH = "/direct-stream"

_NO_CACHE = {"Cache-Control": "no-cache"}

_ModelT = TypeVar("_ModelT", bound=DataClassORJSONMixin)


class RadioApiClient:
    """
    Client for the now-playing, heartbeat and stream endpoints.

    Every request bypasses caches. Transport, HTTP status and decoding failures
    are raised as RadioApiError so callers only need to handle one exception.
    """

    _session: ClientSession | None
    """Optional aiohttp ClientSession used for all requests."""
    _owns_session: bool
    """Whether this client owns and should close the session."""

    def __init__(
        self,
        base_url: str,
        *,
        session: ClientSession | None = None,
        request_timeout: float = 10.0,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        """
        Create a new API client.

        Args:
            base_url: Scheme and authority of the radio server, e.g.
                "http://radio.local:8000". A trailing slash is ignored.
            session: Optional aiohttp ClientSession. If None, a session is
                created on first use and closed by `close()`.
            request_timeout: Total timeout of one request in seconds.
            headers: Headers added to every API request.
        """
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = ClientTimeout(total=request_timeout)
        self._headers = {**_NO_CACHE, **(headers or {})}

    @property
    def base_url(self) -> str:
        """Return the server base URL."""
        return self._base_url

    async def fetch_now_playing(
        self,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> NowPlayingSnapshot:
        """
        Fetch the authoritative now-playing snapshot.

        Raises:
            RadioApiError: If the request failed, the response could not be
                decoded, or the server reported an error instead of a track.
        """
        snapshot = await self._get(NOW_PLAYING_PATH, NowPlayingSnapshot, params, headers)
        if snapshot.error:
            raise RadioApiError(f"Server reported: {snapshot.error}")
        return snapshot

    async def send_heartbeat(
        self,
        connection_id: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HeartbeatResponse:
        """
        Report this listener as connected.

        Raises:
            RadioApiError: If the request failed or the response was garbage.
        """
        return await self._get(
            HEARTBEAT_PATH, HeartbeatResponse, {"connection_id": connection_id}, headers
        )

    def build_stream_url(
        self,
        *,
        position: float,
        timestamp: float,
        platform: str,
        hints: Mapping[str, str] | None = None,
        buffer_recovery: bool = False,
    ) -> str:
        """
        Return the audio stream URL for a fresh transport.

        Args:
            position: Start position in seconds, truncated to whole seconds.
            timestamp: Wall clock seconds, used to defeat caches.
            platform: Device class string of this client.
            hints: Opaque device hints passed through unchanged.
            buffer_recovery: Set when the transport is rebuilt because its
                buffer could not be recovered in place.
        """
        query: dict[str, str] = {
            "t": str(int(timestamp * 1000)),
            "position": str(max(0, int(position))),
            "platform": platform,
        }
        if hints:
            query.update(hints)
        if buffer_recovery:
            query["buffer_recovery"] = "true"
        return f"{self._base_url}{STREAM_PATH}?{urlencode(query)}"

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _get(
        self,
        path: str,
        model: type[_ModelT],
        params: Mapping[str, str] | None,
        headers: Mapping[str, str] | None,
    ) -> _ModelT:
        if self._session is None:
            self._session = ClientSession()
        url = f"{self._base_url}{path}"
        request_headers = {**self._headers, **(headers or {})}
        try:
            async with self._session.get(
                url,
                params=dict(params or {}),
                headers=request_headers,
                timeout=self._timeout,
            ) as response:
                if response.status != 200:
                    raise RadioApiError(f"{path} returned HTTP {response.status}")
                body = await response.read()
        except (ClientError, TimeoutError) as err:
            raise RadioApiError(f"{path} request failed: {err!r}") from err

        try:
            return model.from_json(body)
        except (ValueError, TypeError, MissingField) as err:
            logger.debug("Undecodable %s response: %r", path, body[:200])
            raise RadioApiError(f"{path} returned an invalid body: {err}") from err
