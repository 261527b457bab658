"""Device SDK interface.

The bridge never talks to a device itself. Everything device-related goes
through two collaborators:

- ``DeviceLibrary``: a module exposing pure functions (version, URL parsing,
  string tables, log decoding) and the ``create_instance`` factory.
- ``DeviceSDK``: one device handle. Every ``request_*`` call returns
  immediately and later invokes its callback exactly once, usually from a
  thread owned by the SDK.

Any module satisfying ``DeviceLibrary`` can be plugged in by import path;
``powermon_bridge.sdk.simulator`` is the built-in one.
"""

from __future__ import annotations

import importlib
import logging
from typing import Protocol, runtime_checkable

from ..errors import SdkLoadError
from .types import (
    ConnectCallback,
    DeviceIdentifier,
    DisconnectCallback,
    LogSample,
    ResultCallback,
    WifiAccessKey,
)

logger = logging.getLogger(__name__)

DEFAULT_LIBRARY = "powermon_bridge.sdk.simulator"

LIBRARY_FUNCTIONS = (
    "create_instance",
    "get_version",
    "parse_url",
    "hardware_string",
    "power_status_string",
    "decode_log",
)


@runtime_checkable
class DeviceSDK(Protocol):
    """One device handle owned by the bridge."""

    def init_ble(self) -> bool:
        """Probe Bluetooth support. Returns False instead of raising."""
        ...

    def set_on_connect(self, callback: ConnectCallback | None) -> None: ...

    def set_on_disconnect(self, callback: DisconnectCallback | None) -> None: ...

    def connect(self, access_key: WifiAccessKey) -> None: ...

    def disconnect(self) -> None: ...

    def request_info(self, callback: ResultCallback) -> None: ...

    def request_monitor_data(self, callback: ResultCallback) -> None: ...

    def request_statistics(self, callback: ResultCallback) -> None: ...

    def request_fuelgauge_statistics(self, callback: ResultCallback) -> None: ...

    def request_log_file_list(self, callback: ResultCallback) -> None: ...

    def request_read_log_file(
        self, file_id: int, offset: int, size: int, callback: ResultCallback
    ) -> None: ...

    def close(self) -> None:
        """Release SDK resources; no callback fires after this returns."""
        ...


class DeviceLibrary(Protocol):
    """Module-level functions of a device library."""

    def create_instance(self) -> DeviceSDK | None: ...

    def get_version(self) -> int:
        """Library version as ``major << 8 | minor``."""
        ...

    def parse_url(self, url: str) -> DeviceIdentifier | None: ...

    def hardware_string(self, revision_bcd: int) -> str: ...

    def power_status_string(self, status: int) -> str: ...

    def decode_log(self, data: bytes) -> tuple[int, list[LogSample]]: ...


def load_library(path: str = DEFAULT_LIBRARY) -> DeviceLibrary:
    """Import a device library module by dotted path.

    Args:
        path: Module path, e.g. ``powermon_bridge.sdk.simulator``

    Returns:
        The imported module

    Raises:
        SdkLoadError: If the module cannot be imported or lacks a required function
    """
    try:
        module = importlib.import_module(path)
    except ImportError as e:
        raise SdkLoadError(f"Cannot import device library '{path}': {e}") from e

    missing = [name for name in LIBRARY_FUNCTIONS if not callable(getattr(module, name, None))]
    if missing:
        raise SdkLoadError(f"Device library '{path}' is missing: {', '.join(missing)}")

    logger.debug(f"Loaded device library {path}")
    return module  # type: ignore[return-value]
