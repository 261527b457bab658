"""Device SDK boundary.

The bridge consumes a device library through the protocols in ``base``;
``simulator`` is a complete in-process implementation.
"""

from .base import DEFAULT_LIBRARY, DeviceLibrary, DeviceSDK, load_library
from .types import (
    DeviceIdentifier,
    DeviceInfo,
    DisconnectReason,
    FuelgaugeStatistics,
    LogFileDescriptor,
    LogSample,
    MonitorData,
    MonitorStatistics,
    PowerStatus,
    ResponseCode,
    SdkResult,
    WifiAccessKey,
)

__all__ = [
    # Interface
    "DEFAULT_LIBRARY",
    "DeviceLibrary",
    "DeviceSDK",
    "load_library",
    # Types
    "DeviceIdentifier",
    "DeviceInfo",
    "DisconnectReason",
    "FuelgaugeStatistics",
    "LogFileDescriptor",
    "LogSample",
    "MonitorData",
    "MonitorStatistics",
    "PowerStatus",
    "ResponseCode",
    "SdkResult",
    "WifiAccessKey",
]
