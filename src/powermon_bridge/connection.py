"""Connection state machine.

Tracks Disconnected -> Connecting -> Connected -> Disconnected(reason).
Command handlers only *request* a transition (``begin_connect``); the
Connected and Disconnected states are entered exclusively from SDK
notifications, which may arrive on any thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

from .errors import ConnectionStateError

logger = logging.getLogger(__name__)

StateListener = Callable[["ConnectionState", "int | None"], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionStateMachine:
    """Thread-safe connection state.

    Listeners are called after every transition with ``(state, reason)``;
    ``reason`` is only set for Disconnected. They run on the thread that
    reported the transition, outside the internal lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._reason: int | None = None
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def reason(self) -> int | None:
        """Reason attached to the last Disconnected transition, if any."""
        with self._lock:
            return self._reason

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.state is ConnectionState.CONNECTING

    def snapshot(self) -> dict[str, Any]:
        """Atomic view of both flags, as reported by the ``status`` command."""
        with self._lock:
            state = self._state
        return {
            "connected": state is ConnectionState.CONNECTED,
            "connecting": state is ConnectionState.CONNECTING,
        }

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def begin_connect(self) -> None:
        """Disconnected -> Connecting.

        Raises:
            ConnectionStateError: If already connecting or connected
        """
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                raise ConnectionStateError("Already connected or connecting")
            self._state = ConnectionState.CONNECTING
            self._reason = None
        self._notify(ConnectionState.CONNECTING, None)

    def abort_connect(self) -> None:
        """Connecting -> Disconnected when the SDK connect call itself failed."""
        with self._lock:
            if self._state is not ConnectionState.CONNECTING:
                return
            self._state = ConnectionState.DISCONNECTED
        self._notify(ConnectionState.DISCONNECTED, None)

    def on_connected(self) -> bool:
        """SDK notification: Connecting -> Connected. Returns False if ignored."""
        with self._lock:
            if self._state is not ConnectionState.CONNECTING:
                logger.warning(f"Connect notification ignored in state {self._state.value}")
                return False
            self._state = ConnectionState.CONNECTED
        logger.info("Device connected")
        self._notify(ConnectionState.CONNECTED, None)
        return True

    def on_disconnected(self, reason: int) -> bool:
        """SDK notification: Connecting/Connected -> Disconnected(reason)."""
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                logger.debug(f"Disconnect notification ignored (reason={reason})")
                return False
            self._state = ConnectionState.DISCONNECTED
            self._reason = int(reason)
        logger.info(f"Device disconnected (reason={reason})")
        self._notify(ConnectionState.DISCONNECTED, int(reason))
        return True

    def _notify(self, state: ConnectionState, reason: int | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state, reason)
            except Exception:
                logger.exception("Connection state listener failed")
