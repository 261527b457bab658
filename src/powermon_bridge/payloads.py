"""JSON payload builders for SDK values.

Each builder turns a typed SDK value into the dict placed in the ``data``
field of a result or event. Numeric precision is fixed per quantity:
voltages and currents to 3 decimals, power to 2, temperatures to 1.
Meters reported by the device in milli-units are scaled to Ah/Wh.
"""

from __future__ import annotations

import math
from typing import Any

from .sdk.base import DeviceLibrary
from .sdk.types import (
    DeviceIdentifier,
    DeviceInfo,
    FuelgaugeStatistics,
    LogFileDescriptor,
    LogSample,
    MonitorData,
    MonitorStatistics,
)

VOLTAGE_DIGITS = 3
POWER_DIGITS = 2
TEMPERATURE_DIGITS = 1


def fixed(value: float, digits: int = VOLTAGE_DIGITS) -> float | None:
    """Round to a fixed number of decimals; NaN/inf become None (JSON null)."""
    value = float(value)
    if not math.isfinite(value):
        return None
    return round(value, digits)


def hex_upper(data: bytes) -> str:
    return data.hex().upper()


def serial_string(serial: int) -> str:
    return f"{serial:016X}"


def version_payload(version: int) -> dict[str, Any]:
    major, minor = version >> 8, version & 0xFF
    return {"major": major, "minor": minor, "string": f"{major}.{minor}"}


def identifier_payload(identifier: DeviceIdentifier, library: DeviceLibrary) -> dict[str, Any]:
    return {
        "name": identifier.name,
        "serial": serial_string(identifier.serial),
        "hardwareRevision": identifier.hardware_revision_bcd,
        "hardwareString": library.hardware_string(identifier.hardware_revision_bcd),
        "channelId": hex_upper(identifier.access_key.channel_id),
        "encryptionKey": hex_upper(identifier.access_key.encryption_key),
    }


def device_info_payload(info: DeviceInfo, library: DeviceLibrary) -> dict[str, Any]:
    bcd = info.firmware_version_bcd
    return {
        "name": info.name,
        "firmwareVersion": f"{bcd >> 8}.{bcd & 0xFF}",
        "firmwareVersionBcd": bcd,
        "hardwareRevision": info.hardware_revision_bcd,
        "hardwareString": library.hardware_string(info.hardware_revision_bcd),
        "serial": serial_string(info.serial),
        "timezone": info.timezone,
        "isUserLocked": info.is_user_locked(),
        "isMasterLocked": info.is_master_locked(),
        "isWifiConnected": info.is_wifi_connected(),
    }


def monitor_payload(data: MonitorData, library: DeviceLibrary) -> dict[str, Any]:
    return {
        "time": data.time,
        "voltage1": fixed(data.voltage1),
        "voltage2": fixed(data.voltage2),
        "current": fixed(data.current),
        "power": fixed(data.power, POWER_DIGITS),
        "temperature": fixed(data.temperature, TEMPERATURE_DIGITS),
        "coulombMeter": fixed(data.coulomb_meter / 1000.0),
        "energyMeter": fixed(data.energy_meter / 1000.0),
        "powerStatus": int(data.power_status),
        "powerStatusString": library.power_status_string(data.power_status),
        "soc": data.fg_soc,
        "runtime": data.fg_runtime,
        "rssi": data.rssi,
        "isTemperatureExternal": data.is_temperature_external(),
    }


def statistics_payload(stats: MonitorStatistics) -> dict[str, Any]:
    return {
        "secondsSinceOn": stats.seconds_since_on,
        "voltage1Min": fixed(stats.voltage1_min),
        "voltage1Max": fixed(stats.voltage1_max),
        "voltage2Min": fixed(stats.voltage2_min),
        "voltage2Max": fixed(stats.voltage2_max),
        "peakChargeCurrent": fixed(stats.peak_charge_current),
        "peakDischargeCurrent": fixed(stats.peak_discharge_current),
        "temperatureMin": fixed(stats.temperature_min, TEMPERATURE_DIGITS),
        "temperatureMax": fixed(stats.temperature_max, TEMPERATURE_DIGITS),
    }


def fuelgauge_payload(stats: FuelgaugeStatistics) -> dict[str, Any]:
    return {
        "timeSinceLastFullCharge": stats.time_since_last_full_charge,
        "fullChargeCapacity": fixed(stats.full_charge_capacity),
        "totalDischarge": fixed(stats.total_discharge / 1000.0),
        "totalDischargeEnergy": fixed(stats.total_discharge_energy / 1000.0),
        "totalCharge": fixed(stats.total_charge / 1000.0),
        "totalChargeEnergy": fixed(stats.total_charge_energy / 1000.0),
        "minVoltage": fixed(stats.min_voltage),
        "maxVoltage": fixed(stats.max_voltage),
        "maxDischargeCurrent": fixed(stats.max_discharge_current),
        "maxChargeCurrent": fixed(stats.max_charge_current),
        "deepestDischarge": fixed(stats.deepest_discharge),
        "lastDischarge": fixed(stats.last_discharge),
        "soc": fixed(stats.soc, TEMPERATURE_DIGITS),
    }


def log_files_payload(files: list[LogFileDescriptor]) -> list[dict[str, int]]:
    return [{"id": f.id, "size": f.size} for f in files]


def sample_payload(sample: LogSample) -> dict[str, Any]:
    return {
        "time": sample.time,
        "voltage1": fixed(sample.voltage1),
        "voltage2": fixed(sample.voltage2),
        "current": fixed(sample.current),
        "power": fixed(sample.power, POWER_DIGITS),
        "temperature": fixed(sample.temperature, TEMPERATURE_DIGITS),
        "soc": sample.soc,
        "powerStatus": int(sample.ps),
    }
