"""Value types exchanged with the Device SDK.

These mirror the structures the device library hands to callbacks. They are
plain frozen dataclasses; JSON shaping lives in ``powermon_bridge.payloads``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

CHANNEL_ID_SIZE = 16
ENCRYPTION_KEY_SIZE = 32


class ResponseCode(IntEnum):
    """Status codes returned with every request callback."""

    RSP_SUCCESS = 0x0000
    RSP_SUCCESS_MORE = 0x0100

    RSP_INVALID_REQ = 0x0001
    RSP_INVALID_PARAM = 0x0002
    RSP_ERROR = 0x0003
    RSP_LOCKED_USER = 0x0004
    RSP_LOCKED_MASTER = 0x0005
    RSP_CANNOT_UNLOCK = 0x0006
    RSP_NOT_FOUND = 0x0007

    RSP_TIMEOUT = 0x0008
    RSP_INVALID = 0x0009
    RSP_CANCELLED = 0x000A


class DisconnectReason(IntEnum):
    """Why a connection ended, attached to the Disconnected state."""

    CLOSED = 0
    NO_ROUTE = 1
    FAILED = 2
    UNEXPECTED_ERROR = 3
    UNEXPECTED_RESPONSE = 4
    WRITE_ERROR = 5
    READ_ERROR = 6


class PowerStatus(IntEnum):
    """Power output state reported in monitor data."""

    OFF = 0
    ON = 1
    LVD = 2  # low voltage disconnect
    OCD = 3  # over-current disconnect
    HVD = 4  # high voltage disconnect
    FGD = 5  # fuel gauge disconnect
    NCH = 6  # not charging
    LTD = 7  # low temperature disconnect
    HTD = 8  # high temperature disconnect


class HardwareRevision(IntEnum):
    """Hardware families (high nibble of the BCD revision)."""

    FAMILY_MASK = 0xF0

    POWERMON_E = 0x10
    POWERMON = 0x20
    POWERMON_5S = 0x30
    POWERMON_W = 0x40


class LogMode(IntEnum):
    """Data log sampling modes."""

    DISABLED = 0
    SEC_1 = 1
    SEC_2 = 2
    SEC_5 = 3
    SEC_10 = 4
    SEC_20 = 5
    SEC_30 = 6
    SEC_60 = 7


LOG_MODE_PERIODS: dict[int, int] = {
    LogMode.SEC_1: 1,
    LogMode.SEC_2: 2,
    LogMode.SEC_5: 5,
    LogMode.SEC_10: 10,
    LogMode.SEC_20: 20,
    LogMode.SEC_30: 30,
    LogMode.SEC_60: 60,
}


@dataclass(frozen=True)
class WifiAccessKey:
    """Credentials used to reach a remote WiFi device."""

    channel_id: bytes
    encryption_key: bytes

    def __post_init__(self) -> None:
        if len(self.channel_id) != CHANNEL_ID_SIZE:
            raise ValueError(f"channel_id must be {CHANNEL_ID_SIZE} bytes")
        if len(self.encryption_key) != ENCRYPTION_KEY_SIZE:
            raise ValueError(f"encryption_key must be {ENCRYPTION_KEY_SIZE} bytes")


@dataclass(frozen=True)
class DeviceIdentifier:
    """Everything decoded from an access URL."""

    name: str
    serial: int
    hardware_revision_bcd: int
    access_key: WifiAccessKey
    address: int = 0


# Bits of DeviceInfo.flags
FLAG_USER_PASSWORD_SET = 1 << 0
FLAG_MASTER_PASSWORD_SET = 1 << 1
FLAG_USER_LOCKED = 1 << 2
FLAG_MASTER_LOCKED = 1 << 3
FLAG_WIFI_CONNECTING = 1 << 4
FLAG_WIFI_CONNECTED = 1 << 5
FLAG_WIFI_FAILED = 1 << 6

# Bit of MonitorData.flags
FLAG_TEMPERATURE_EXTERNAL = 1 << 0


@dataclass(frozen=True)
class DeviceInfo:
    name: str
    firmware_version_bcd: int
    hardware_revision_bcd: int
    serial: int
    address: int = 0
    flags: int = 0
    timezone: int = 0
    ssid: str = ""

    def is_user_locked(self) -> bool:
        return bool(self.flags & FLAG_USER_LOCKED)

    def is_master_locked(self) -> bool:
        return bool(self.flags & FLAG_MASTER_LOCKED)

    def is_wifi_connected(self) -> bool:
        return bool(self.flags & FLAG_WIFI_CONNECTED)


@dataclass(frozen=True)
class MonitorData:
    """Real-time readings. Meters are in mAh / mWh as delivered by the device."""

    time: int
    voltage1: float
    voltage2: float
    current: float
    power: float
    temperature: float
    coulomb_meter: int
    energy_meter: int
    power_status: int
    fg_soc: int
    fg_runtime: int
    rssi: int
    flags: int = 0
    firmware_version_bcd: int = 0
    hardware_revision_bcd: int = 0

    def is_temperature_external(self) -> bool:
        return bool(self.flags & FLAG_TEMPERATURE_EXTERNAL)


@dataclass(frozen=True)
class MonitorStatistics:
    seconds_since_on: int
    voltage1_min: float
    voltage1_max: float
    voltage2_min: float
    voltage2_max: float
    peak_charge_current: float
    peak_discharge_current: float
    temperature_min: float
    temperature_max: float


@dataclass(frozen=True)
class FuelgaugeStatistics:
    time_since_last_full_charge: int
    full_charge_capacity: float
    total_discharge: int
    total_discharge_energy: int
    total_charge: int
    total_charge_energy: int
    min_voltage: float
    max_voltage: float
    max_discharge_current: float
    max_charge_current: float
    deepest_discharge: float
    last_discharge: float
    soc: float


@dataclass(frozen=True)
class LogFileDescriptor:
    """A log file on the device; ``id`` is the UNIX time of its first sample."""

    id: int
    size: int


@dataclass(frozen=True)
class LogSample:
    time: int
    voltage1: float
    voltage2: float
    current: float
    power: float
    temperature: float
    soc: int
    ps: int


@dataclass(frozen=True)
class SdkResult:
    """One resolved SDK request: status code plus typed payload."""

    code: int
    payload: Any = None

    @property
    def success(self) -> bool:
        return self.code == ResponseCode.RSP_SUCCESS


# Callback signatures the SDK invokes from its own thread
ResultCallback = Callable[[int, Any], None]
ConnectCallback = Callable[[], None]
DisconnectCallback = Callable[[int], None]
