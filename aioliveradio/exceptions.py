"""Exceptions raised by aioliveradio."""

from __future__ import annotations


class RadioSyncError(Exception):
    """Base class for all aioliveradio errors."""


class RadioApiError(RadioSyncError):
    """A now-playing or heartbeat request failed or returned garbage."""


class TransportError(RadioSyncError):
    """The audio transport could not be created or driven."""


class PlaybackNotAllowedError(TransportError):
    """The host rejected play() because no user gesture happened yet."""


class InvalidTransitionError(RadioSyncError, ValueError):
    """A connection state machine event has no edge from the current state."""
