"""Connection state machine of a playback session."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType

from aioliveradio.exceptions import InvalidTransitionError
from aioliveradio.models.types import ConnectionEvent, ConnectionState

logger = logging.getLogger(__name__)

_D = ConnectionState.DISCONNECTED
_CING = ConnectionState.CONNECTING
_C = ConnectionState.CONNECTED
_R = ConnectionState.RECONNECTING
_E = ConnectionState.ERROR

# Events that move a live session into reconnection.
FAULT_EVENTS = frozenset(
    {
        ConnectionEvent.MEDIA_ERROR,
        ConnectionEvent.MEDIA_STALLED_TIMEOUT,
        ConnectionEvent.MEDIA_ENDED,
        ConnectionEvent.NO_SOURCE,
        ConnectionEvent.UNEXPECTED_PAUSE,
        ConnectionEvent.TRANSPORT_FAILED,
        ConnectionEvent.NETWORK_RESTORED,
        ConnectionEvent.TRACK_RELOAD,
        ConnectionEvent.BUFFER_RELOAD,
    }
)


def _build_transitions() -> Mapping[tuple[ConnectionState, ConnectionEvent], ConnectionState]:
    edges: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
        (_D, ConnectionEvent.START): _CING,
        (_E, ConnectionEvent.START): _CING,
        (_CING, ConnectionEvent.MEDIA_PLAYING): _C,
        (_R, ConnectionEvent.MEDIA_PLAYING): _C,
        (_C, ConnectionEvent.MEDIA_PLAYING): _C,
        (_R, ConnectionEvent.ATTEMPTS_EXHAUSTED): _E,
        (_CING, ConnectionEvent.ATTEMPTS_EXHAUSTED): _E,
        (_C, ConnectionEvent.ATTEMPTS_EXHAUSTED): _E,
    }
    for event in FAULT_EVENTS:
        for source in (_CING, _C, _R):
            edges[(source, event)] = _R
    for source in ConnectionState:
        edges[(source, ConnectionEvent.USER_STOP)] = _D
    return MappingProxyType(edges)


TRANSITIONS = _build_transitions()

# Callback invoked with (old_state, new_state) after every state change.
StateChangeCallback = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """
    Single authority over the connection state.

    The state only changes through `dispatch`/`try_dispatch` along the edges in
    TRANSITIONS. The machine also decides whether a new reconnection attempt is
    permitted.
    """

    def __init__(self) -> None:
        """Initialize in the disconnected state."""
        self._state = ConnectionState.DISCONNECTED
        self._callbacks: list[StateChangeCallback] = []

    @property
    def state(self) -> ConnectionState:
        """Return the current state."""
        return self._state

    @property
    def is_playing(self) -> bool:
        """Return True while the user wants audio (any live state)."""
        return self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        )

    @property
    def is_connected(self) -> bool:
        """Return True while the transport reports playback."""
        return self._state is ConnectionState.CONNECTED

    def can_reconnect(self, is_reconnecting: bool) -> bool:
        """Return True if a new reconnection attempt may start."""
        return self.is_playing and not is_reconnecting

    def can_dispatch(self, event: ConnectionEvent) -> bool:
        """Return True if `event` has an edge from the current state."""
        return (self._state, event) in TRANSITIONS

    def dispatch(self, event: ConnectionEvent) -> ConnectionState:
        """
        Apply `event` and return the new state.

        Raises:
            InvalidTransitionError: If there is no edge for `event` from the
                current state.
        """
        target = TRANSITIONS.get((self._state, event))
        if target is None:
            raise InvalidTransitionError(
                f"No transition from {self._state.value} on {event.value}"
            )
        self._set_state(target, event)
        return target

    def try_dispatch(self, event: ConnectionEvent) -> bool:
        """Apply `event` if it has an edge from the current state."""
        target = TRANSITIONS.get((self._state, event))
        if target is None:
            logger.debug("Ignoring %s in state %s", event.value, self._state.value)
            return False
        self._set_state(target, event)
        return True

    def add_state_listener(self, callback: StateChangeCallback) -> Callable[[], None]:
        """Add a listener for state changes.

        Returns:
            A function that removes this listener when called.
        """
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback) if callback in self._callbacks else None

    def _set_state(self, target: ConnectionState, event: ConnectionEvent) -> None:
        old = self._state
        if old is target:
            return
        self._state = target
        logger.info("Connection state %s -> %s (%s)", old.value, target.value, event.value)
        for callback in list(self._callbacks):
            try:
                callback(old, target)
            except Exception:
                logger.exception("Error in state change callback %s", callback)
