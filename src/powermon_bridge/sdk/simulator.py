"""Simulated device library.

A drop-in ``DeviceLibrary`` that behaves like a remote WiFi battery monitor
without any hardware. It is what the bridge loads by default and what the
test suite drives.

Behavior that matters to the bridge is kept faithful:

- every callback fires from a dedicated worker thread, never from the
  caller's thread;
- each request callback fires exactly once (hung requests are flushed with
  ``RSP_CANCELLED`` when the connection drops);
- connect/disconnect are reported only through the registered notifications.

Fault injection hooks (``refuse_connect``, ``fail_requests``,
``hang_requests``, ``drop_connection``) let tests reproduce device failures.

Access URLs use the applink form::

    https://applinks.thornwave.com/?n=<name>&s=<serial hex>&h=<hw hex>&c=<b64 channel>&k=<b64 key>
"""

from __future__ import annotations

import base64
import binascii
import logging
import queue
import random
import struct
import threading
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit

from .types import (
    FLAG_WIFI_CONNECTED,
    LOG_MODE_PERIODS,
    ConnectCallback,
    DeviceIdentifier,
    DeviceInfo,
    DisconnectCallback,
    DisconnectReason,
    FuelgaugeStatistics,
    HardwareRevision,
    LogFileDescriptor,
    LogMode,
    LogSample,
    MonitorData,
    MonitorStatistics,
    PowerStatus,
    ResponseCode,
    ResultCallback,
    WifiAccessKey,
)

logger = logging.getLogger(__name__)

LIBRARY_VERSION = 0x010B  # 1.11

APPLINK_HOST = "applinks.thornwave.com"

HARDWARE_NAMES = {
    HardwareRevision.POWERMON_E: "PowerMon-E",
    HardwareRevision.POWERMON: "PowerMon",
    HardwareRevision.POWERMON_5S: "PowerMon-5S",
    HardwareRevision.POWERMON_W: "PowerMon-W",
}

POWER_STATUS_NAMES = {status.value: status.name for status in PowerStatus}

# Log file layout: header followed by fixed-size records
LOG_MAGIC = b"PMLG"
LOG_HEADER = struct.Struct("<4sBBHIII")  # magic, version, mode, reserved, time, mask, flags
LOG_RECORD = struct.Struct("<fffffBB")  # v1, v2, current, power, temperature, soc, ps
LOG_VERSION = 0x00

DECODE_OK = 0
DECODE_BAD_HEADER = 1
DECODE_TRUNCATED = 2
DECODE_BAD_MODE = 3


# =============================================================================
# Library functions
# =============================================================================


def get_version() -> int:
    return LIBRARY_VERSION


def hardware_string(revision_bcd: int) -> str:
    family = revision_bcd & HardwareRevision.FAMILY_MASK
    return HARDWARE_NAMES.get(family, "Unknown")


def power_status_string(status: int) -> str:
    return POWER_STATUS_NAMES.get(int(status), "UNKNOWN")


def parse_url(url: str) -> DeviceIdentifier | None:
    """Decode an applink URL. Returns None for anything malformed."""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None

    if parts.scheme not in ("https", "http") or parts.hostname != APPLINK_HOST:
        return None

    query = parse_qs(parts.query)

    def first(key: str) -> str | None:
        values = query.get(key)
        return values[0] if values else None

    name, serial, hw, channel, key = (first(k) for k in ("n", "s", "h", "c", "k"))
    if not all((name, serial, hw, channel, key)):
        return None

    try:
        access_key = WifiAccessKey(
            channel_id=_b64(channel),  # type: ignore[arg-type]
            encryption_key=_b64(key),  # type: ignore[arg-type]
        )
        return DeviceIdentifier(
            name=name,  # type: ignore[arg-type]
            serial=int(serial, 16),  # type: ignore[arg-type]
            hardware_revision_bcd=int(hw, 16) & 0xFF,  # type: ignore[arg-type]
            access_key=access_key,
        )
    except (ValueError, binascii.Error):
        return None


def to_url(identifier: DeviceIdentifier) -> str:
    """Inverse of ``parse_url``."""
    query = urlencode(
        {
            "n": identifier.name,
            "s": f"{identifier.serial:016x}",
            "h": f"{identifier.hardware_revision_bcd:02x}",
            "c": base64.b64encode(identifier.access_key.channel_id).decode("ascii"),
            "k": base64.b64encode(identifier.access_key.encryption_key).decode("ascii"),
        }
    )
    return f"https://{APPLINK_HOST}/?{query}"


def _b64(value: str) -> bytes:
    # parse_qs turns a literal '+' into a space
    return base64.b64decode(value.replace(" ", "+"), validate=True)


def encode_log(start_time: int, mode: int, samples: list[LogSample]) -> bytes:
    """Build a log file image that ``decode_log`` understands."""
    header = LOG_HEADER.pack(LOG_MAGIC, LOG_VERSION, mode, 0, start_time, 0xFFFF, 0)
    records = b"".join(
        LOG_RECORD.pack(s.voltage1, s.voltage2, s.current, s.power, s.temperature, s.soc, s.ps)
        for s in samples
    )
    return header + records


def decode_log(data: bytes) -> tuple[int, list[LogSample]]:
    """Decode a log file image into samples.

    Returns:
        (status code, samples). Status 0 means success; on a truncated
        trailing record the complete records decoded so far are returned.
    """
    data = bytes(data)
    if len(data) < LOG_HEADER.size:
        return DECODE_BAD_HEADER, []

    magic, _version, mode, _reserved, start_time, _mask, _flags = LOG_HEADER.unpack_from(data)
    if magic != LOG_MAGIC:
        return DECODE_BAD_HEADER, []

    period = LOG_MODE_PERIODS.get(mode)
    if period is None:
        return DECODE_BAD_MODE, []

    samples: list[LogSample] = []
    body = memoryview(data)[LOG_HEADER.size :]
    count, remainder = divmod(len(body), LOG_RECORD.size)
    for index in range(count):
        v1, v2, current, power, temperature, soc, ps = LOG_RECORD.unpack_from(
            body, index * LOG_RECORD.size
        )
        samples.append(
            LogSample(
                time=start_time + index * period,
                voltage1=v1,
                voltage2=v2,
                current=current,
                power=power,
                temperature=temperature,
                soc=soc,
                ps=ps,
            )
        )

    return (DECODE_TRUNCATED if remainder else DECODE_OK), samples


def create_instance(**kwargs: Any) -> SimulatedPowermon:
    return SimulatedPowermon(**kwargs)


# =============================================================================
# Simulated device handle
# =============================================================================


class SimulatedPowermon:
    """Simulated device handle with its own callback thread.

    Args:
        response_delay: Seconds between a request and its callback
        connect_delay: Seconds between connect() and the connect notification
        seed: Seed for the random walk (deterministic tests)
        ble_available: Result of the ``init_ble`` probe
        log_files: Number of log files generated on the device
        samples_per_file: Records per generated log file
    """

    def __init__(
        self,
        response_delay: float = 0.01,
        connect_delay: float = 0.02,
        seed: int | None = None,
        ble_available: bool = False,
        log_files: int = 2,
        samples_per_file: int = 60,
    ) -> None:
        self.response_delay = response_delay
        self.connect_delay = connect_delay
        self._ble_available = ble_available
        self._random = random.Random(seed)

        self._lock = threading.Lock()
        self._state = "disconnected"
        self._on_connect: ConnectCallback | None = None
        self._on_disconnect: DisconnectCallback | None = None

        self._refuse_reason: DisconnectReason | None = None
        self._fail_code: ResponseCode | None = None
        self._hang = False
        self._hung: list[ResultCallback] = []
        self.requests: list[str] = []

        self._started = time.monotonic()
        self._reading = self._initial_reading()
        self._stats = self._initial_statistics()
        self._logs = self._generate_logs(log_files, samples_per_file)

        self._closed = threading.Event()
        self._jobs: queue.Queue[Callable[[], None] | None] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="powermon-sim", daemon=True)
        self._thread.start()

    # -------------------------------------------------------------------------
    # DeviceSDK
    # -------------------------------------------------------------------------

    def init_ble(self) -> bool:
        return self._ble_available

    def set_on_connect(self, callback: ConnectCallback | None) -> None:
        self._on_connect = callback

    def set_on_disconnect(self, callback: DisconnectCallback | None) -> None:
        self._on_disconnect = callback

    def connect(self, access_key: WifiAccessKey) -> None:
        with self._lock:
            if self._state != "disconnected":
                logger.debug(f"connect() ignored, state={self._state}")
                return
            self._state = "connecting"
        self._schedule(self._finish_connect, self.connect_delay)

    def disconnect(self) -> None:
        with self._lock:
            if self._state == "disconnected":
                return
        self._schedule(lambda: self._drop(DisconnectReason.CLOSED), 0)

    def request_info(self, callback: ResultCallback) -> None:
        self._request("info", callback, self._device_info)

    def request_monitor_data(self, callback: ResultCallback) -> None:
        self._request("monitor", callback, self._next_reading)

    def request_statistics(self, callback: ResultCallback) -> None:
        self._request("statistics", callback, lambda: self._stats)

    def request_fuelgauge_statistics(self, callback: ResultCallback) -> None:
        self._request("fgstatistics", callback, self._fuelgauge_statistics)

    def request_log_file_list(self, callback: ResultCallback) -> None:
        self._request(
            "logfiles",
            callback,
            lambda: [LogFileDescriptor(id=file_id, size=len(data)) for file_id, data in self._logs.items()],
        )

    def request_read_log_file(
        self, file_id: int, offset: int, size: int, callback: ResultCallback
    ) -> None:
        def read() -> bytes:
            return self._logs[file_id][offset : offset + size]

        if file_id not in self._logs:
            self._request("readlog", callback, lambda: b"", code=ResponseCode.RSP_NOT_FOUND)
        else:
            self._request("readlog", callback, read)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._jobs.put(None)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=1.0)
        with self._lock:
            self._hung.clear()

    # -------------------------------------------------------------------------
    # Fault injection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def refuse_connect(self, reason: DisconnectReason | None = DisconnectReason.NO_ROUTE) -> None:
        """Make the next connects fail with ``reason`` (None restores normal behavior)."""
        self._refuse_reason = reason

    def fail_requests(self, code: ResponseCode | None) -> None:
        """Answer every request with ``code`` (None restores success)."""
        self._fail_code = code

    def hang_requests(self, hang: bool = True) -> None:
        """Hold request callbacks until the connection drops."""
        self._hang = hang

    def drop_connection(self, reason: DisconnectReason = DisconnectReason.READ_ERROR) -> None:
        """Simulate the device going away."""
        self._schedule(lambda: self._drop(reason), 0)

    def add_log_file(self, file_id: int, data: bytes) -> None:
        self._logs[file_id] = data

    # -------------------------------------------------------------------------
    # Worker thread
    # -------------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None or self._closed.is_set():
                break
            try:
                job()
            except Exception:
                logger.exception("Simulated device callback raised")

    def _schedule(self, job: Callable[[], None], delay: float) -> None:
        if self._closed.is_set():
            return

        def delayed() -> None:
            if delay and self._closed.wait(delay):
                return
            job()

        self._jobs.put(delayed)

    def _request(
        self,
        name: str,
        callback: ResultCallback,
        produce: Callable[[], Any],
        code: ResponseCode = ResponseCode.RSP_SUCCESS,
    ) -> None:
        self.requests.append(name)

        def respond() -> None:
            with self._lock:
                connected = self._state == "connected"
                if connected and self._hang:
                    self._hung.append(callback)
                    return
            if not connected:
                callback(ResponseCode.RSP_CANCELLED, None)
            elif self._fail_code is not None:
                callback(self._fail_code, None)
            else:
                callback(code, produce())

        self._schedule(respond, self.response_delay)

    def _finish_connect(self) -> None:
        with self._lock:
            if self._state != "connecting":
                return
            refused = self._refuse_reason
            self._state = "disconnected" if refused is not None else "connected"
        if refused is not None:
            if self._on_disconnect:
                self._on_disconnect(int(refused))
        elif self._on_connect:
            self._on_connect()

    def _drop(self, reason: DisconnectReason) -> None:
        with self._lock:
            if self._state == "disconnected":
                return
            self._state = "disconnected"
            hung, self._hung = self._hung, []
        for callback in hung:
            callback(ResponseCode.RSP_CANCELLED, None)
        if self._on_disconnect:
            self._on_disconnect(int(reason))

    # -------------------------------------------------------------------------
    # Simulated data
    # -------------------------------------------------------------------------

    def _device_info(self) -> DeviceInfo:
        return DeviceInfo(
            name="PowerMon-W Simulator",
            firmware_version_bcd=0x0119,
            hardware_revision_bcd=0x41,
            serial=0xA3A5B30EA9B3FF98,
            flags=FLAG_WIFI_CONNECTED,
            timezone=0,
            ssid="simulated",
        )

    def _initial_reading(self) -> dict[str, float]:
        voltage = 12.0 + self._random.random() * 2
        return {
            "voltage1": voltage,
            "voltage2": voltage * 0.98,
            "current": -5 + self._random.random() * 30,
            "soc": 50 + self._random.random() * 40,
            "temperature": 20 + self._random.random() * 15,
            "coulomb": 50_000 + self._random.random() * 100_000,
            "energy": 1_000_000 + self._random.random() * 5_000_000,
            "runtime": float(self._random.randrange(86400 // 60)),
        }

    def _next_reading(self) -> MonitorData:
        r = self._reading
        charging = self._random.random() > 0.3
        flow = abs(r["current"]) if charging else -abs(r["current"]) * 0.5
        soc_delta = 0.1 + self._random.random() * 0.3 if charging else -(0.05 + self._random.random() * 0.2)
        r["soc"] = min(100.0, max(5.0, r["soc"] + soc_delta))
        r["voltage1"] = 11.5 + (r["soc"] / 100) * 2.5 + (0.3 if charging else -0.1)
        r["voltage2"] = r["voltage1"] * 0.98
        r["temperature"] = min(45.0, max(-10.0, r["temperature"] + (self._random.random() - 0.5)))
        r["coulomb"] += flow * 2000 / 3600
        r["energy"] += flow * r["voltage1"] * 2000 / 3600
        self._track_statistics(r["voltage1"], r["voltage2"], flow, r["temperature"])

        return MonitorData(
            time=int(time.time()),
            voltage1=r["voltage1"],
            voltage2=r["voltage2"],
            current=flow,
            power=flow * r["voltage1"],
            temperature=r["temperature"],
            coulomb_meter=int(r["coulomb"]),
            energy_meter=int(r["energy"]),
            power_status=PowerStatus.ON,
            fg_soc=int(r["soc"]),
            fg_runtime=int(r["runtime"]),
            rssi=-40 - self._random.randrange(30),
            firmware_version_bcd=0x0119,
            hardware_revision_bcd=0x41,
        )

    def _initial_statistics(self) -> MonitorStatistics:
        r = self._reading
        return MonitorStatistics(
            seconds_since_on=0,
            voltage1_min=r["voltage1"],
            voltage1_max=r["voltage1"],
            voltage2_min=r["voltage2"],
            voltage2_max=r["voltage2"],
            peak_charge_current=max(r["current"], 0.0),
            peak_discharge_current=min(r["current"], 0.0),
            temperature_min=r["temperature"],
            temperature_max=r["temperature"],
        )

    def _track_statistics(self, v1: float, v2: float, current: float, temperature: float) -> None:
        s = self._stats
        self._stats = MonitorStatistics(
            seconds_since_on=int(time.monotonic() - self._started),
            voltage1_min=min(s.voltage1_min, v1),
            voltage1_max=max(s.voltage1_max, v1),
            voltage2_min=min(s.voltage2_min, v2),
            voltage2_max=max(s.voltage2_max, v2),
            peak_charge_current=max(s.peak_charge_current, current),
            peak_discharge_current=min(s.peak_discharge_current, current),
            temperature_min=min(s.temperature_min, temperature),
            temperature_max=max(s.temperature_max, temperature),
        )

    def _fuelgauge_statistics(self) -> FuelgaugeStatistics:
        r = self._reading
        return FuelgaugeStatistics(
            time_since_last_full_charge=int(time.monotonic() - self._started),
            full_charge_capacity=100.0,
            total_discharge=int(r["coulomb"] * 3),
            total_discharge_energy=int(r["energy"] * 3),
            total_charge=int(r["coulomb"] * 4),
            total_charge_energy=int(r["energy"] * 4),
            min_voltage=self._stats.voltage1_min,
            max_voltage=self._stats.voltage1_max,
            max_discharge_current=abs(self._stats.peak_discharge_current),
            max_charge_current=self._stats.peak_charge_current,
            deepest_discharge=62.5,
            last_discharge=12.25,
            soc=r["soc"],
        )

    def _generate_logs(self, files: int, samples_per_file: int) -> dict[int, bytes]:
        logs: dict[int, bytes] = {}
        period = LOG_MODE_PERIODS[LogMode.SEC_10]
        start = int(time.time()) - files * samples_per_file * period
        for index in range(files):
            file_start = start + index * samples_per_file * period
            samples = [
                LogSample(
                    time=file_start + i * period,
                    voltage1=12.5 + self._random.random(),
                    voltage2=12.3 + self._random.random(),
                    current=self._random.uniform(-10, 10),
                    power=self._random.uniform(-120, 120),
                    temperature=20 + self._random.random() * 5,
                    soc=self._random.randrange(20, 100),
                    ps=PowerStatus.ON,
                )
                for i in range(samples_per_file)
            ]
            logs[file_start] = encode_log(file_start, LogMode.SEC_10, samples)
        return logs
