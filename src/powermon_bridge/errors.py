"""Exception hierarchy for the bridge.

Every error that is reported to a consumer as a protocol ``error`` message
derives from ``BridgeError``; the message text is ``str(exc)`` and nothing
else crosses the boundary.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors."""


class CommandError(BridgeError):
    """A command could not be executed (unknown name, bad arguments, precondition)."""


class ConnectionStateError(BridgeError):
    """An illegal connection state transition was requested."""


class BindingError(BridgeError):
    """Raised synchronously by the object binding for invalid calls."""


class SdkLoadError(BridgeError):
    """The Device SDK library could not be imported or instantiated."""


class LogSyncError(BridgeError):
    """A log listing or read failed during synchronization."""


class BridgeClientError(BridgeError):
    """The bridge subprocess failed, timed out, or rejected a command."""
