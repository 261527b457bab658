"""Tests for JSON payload builders."""

import math

from powermon_bridge.payloads import (
    device_info_payload,
    fixed,
    fuelgauge_payload,
    identifier_payload,
    log_files_payload,
    monitor_payload,
    sample_payload,
    statistics_payload,
    version_payload,
)
from powermon_bridge.sdk.types import (
    FLAG_MASTER_LOCKED,
    FLAG_TEMPERATURE_EXTERNAL,
    FLAG_WIFI_CONNECTED,
    DeviceInfo,
    FuelgaugeStatistics,
    LogFileDescriptor,
    LogSample,
    MonitorData,
    MonitorStatistics,
    PowerStatus,
)


class TestFixed:
    """Tests for fixed-precision rounding."""

    def test_rounds(self):
        assert fixed(12.34567) == 12.346
        assert fixed(151.337, 2) == 151.34
        assert fixed(21.04, 1) == 21.0

    def test_non_finite_becomes_none(self):
        """NaN and infinity are not valid JSON numbers."""
        assert fixed(math.nan) is None
        assert fixed(math.inf) is None

    def test_integers_are_floats(self):
        assert fixed(3) == 3.0


class TestVersionAndIdentifier:
    """Tests for library-level payloads."""

    def test_version(self):
        assert version_payload(0x010B) == {"major": 1, "minor": 11, "string": "1.11"}

    def test_identifier(self, identifier, library):
        payload = identifier_payload(identifier, library)
        assert payload["name"] == "Cabin Battery"
        assert payload["serial"] == "A3A5B30EA9B3FF98"
        assert payload["hardwareRevision"] == 0x41
        assert payload["hardwareString"] == "PowerMon-W"
        assert payload["channelId"] == bytes(range(16)).hex().upper()
        assert len(payload["encryptionKey"]) == 64


class TestDevicePayloads:
    """Tests for device request payloads."""

    def test_device_info(self, library):
        info = DeviceInfo(
            name="Van",
            firmware_version_bcd=0x0119,
            hardware_revision_bcd=0x21,
            serial=0xBEEF,
            flags=FLAG_MASTER_LOCKED | FLAG_WIFI_CONNECTED,
            timezone=-300,
        )
        payload = device_info_payload(info, library)
        assert payload == {
            "name": "Van",
            "firmwareVersion": "1.25",
            "firmwareVersionBcd": 0x0119,
            "hardwareRevision": 0x21,
            "hardwareString": "PowerMon",
            "serial": "000000000000BEEF",
            "timezone": -300,
            "isUserLocked": False,
            "isMasterLocked": True,
            "isWifiConnected": True,
        }

    def test_monitor(self, library):
        data = MonitorData(
            time=1700000000,
            voltage1=13.28771,
            voltage2=13.0211,
            current=-4.56789,
            power=-60.6789,
            temperature=22.46,
            coulomb_meter=123456,
            energy_meter=1500000,
            power_status=PowerStatus.LVD,
            fg_soc=87,
            fg_runtime=600,
            rssi=-55,
            flags=FLAG_TEMPERATURE_EXTERNAL,
        )
        payload = monitor_payload(data, library)
        assert payload["voltage1"] == 13.288
        assert payload["current"] == -4.568
        assert payload["power"] == -60.68
        assert payload["temperature"] == 22.5
        assert payload["coulombMeter"] == 123.456
        assert payload["energyMeter"] == 1500.0
        assert payload["powerStatus"] == 2
        assert payload["powerStatusString"] == "LVD"
        assert payload["soc"] == 87
        assert payload["isTemperatureExternal"] is True

    def test_statistics(self):
        stats = MonitorStatistics(
            seconds_since_on=3600,
            voltage1_min=12.1,
            voltage1_max=14.4,
            voltage2_min=12.0,
            voltage2_max=14.3,
            peak_charge_current=20.0,
            peak_discharge_current=-35.5,
            temperature_min=10.04,
            temperature_max=30.06,
        )
        payload = statistics_payload(stats)
        assert payload["secondsSinceOn"] == 3600
        assert payload["peakDischargeCurrent"] == -35.5
        assert payload["temperatureMin"] == 10.0
        assert payload["temperatureMax"] == 30.1

    def test_fuelgauge_scales_meters(self):
        """Milli-unit totals are reported in whole units."""
        stats = FuelgaugeStatistics(
            time_since_last_full_charge=10,
            full_charge_capacity=100.0,
            total_discharge=250000,
            total_discharge_energy=3000000,
            total_charge=260000,
            total_charge_energy=3100000,
            min_voltage=11.9,
            max_voltage=14.6,
            max_discharge_current=40.0,
            max_charge_current=30.0,
            deepest_discharge=60.0,
            last_discharge=10.0,
            soc=77.77,
        )
        payload = fuelgauge_payload(stats)
        assert payload["totalDischarge"] == 250.0
        assert payload["totalChargeEnergy"] == 3100.0
        assert payload["soc"] == 77.8

    def test_log_files(self):
        files = [LogFileDescriptor(id=1700000000, size=220), LogFileDescriptor(id=1700003600, size=44)]
        assert log_files_payload(files) == [
            {"id": 1700000000, "size": 220},
            {"id": 1700003600, "size": 44},
        ]

    def test_sample(self):
        sample = LogSample(
            time=1700000000,
            voltage1=12.8,
            voltage2=12.7,
            current=1.25,
            power=16.0,
            temperature=21.0,
            soc=90,
            ps=PowerStatus.ON,
        )
        assert sample_payload(sample) == {
            "time": 1700000000,
            "voltage1": 12.8,
            "voltage2": 12.7,
            "current": 1.25,
            "power": 16.0,
            "temperature": 21.0,
            "soc": 90,
            "powerStatus": 1,
        }
