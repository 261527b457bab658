"""PowerMon bridge.

Exposes a callback-based battery-monitor Device SDK through a line-oriented
JSON protocol (``stdio``), an object binding for asyncio hosts
(``binding``) and a subprocess client for the protocol (``client``).
"""

from .binding import PowermonDevice, RequestResult
from .client import BridgeClient
from .config import BridgeConfig
from .connection import ConnectionState, ConnectionStateMachine
from .correlator import ResponseCorrelator
from .errors import (
    BindingError,
    BridgeClientError,
    BridgeError,
    CommandError,
    ConnectionStateError,
    LogSyncError,
    SdkLoadError,
)
from .marshal import CallbackRegistration, OneShotCallback
from .stdio import StdioBridgeServer, run_stdio_bridge
from .streaming import StreamingEngine, StreamSession

__version__ = "0.1.0"

__all__ = [
    # Bridge
    "StdioBridgeServer",
    "run_stdio_bridge",
    "BridgeConfig",
    # Core
    "CallbackRegistration",
    "ConnectionState",
    "ConnectionStateMachine",
    "OneShotCallback",
    "ResponseCorrelator",
    "StreamingEngine",
    "StreamSession",
    # Binding and client
    "BridgeClient",
    "PowermonDevice",
    "RequestResult",
    # Errors
    "BindingError",
    "BridgeClientError",
    "BridgeError",
    "CommandError",
    "ConnectionStateError",
    "LogSyncError",
    "SdkLoadError",
]
