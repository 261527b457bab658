"""Tests for the simulated device library."""

import threading

import pytest

from powermon_bridge.errors import SdkLoadError
from powermon_bridge.sdk import DeviceSDK, load_library
from powermon_bridge.sdk import simulator
from powermon_bridge.sdk.types import (
    DisconnectReason,
    LogMode,
    LogSample,
    MonitorData,
    ResponseCode,
    WifiAccessKey,
)


class RecordingCallback:
    """Result callback that records its calls and the thread they ran on."""

    def __init__(self):
        self.calls = []
        self.threads = []
        self.done = threading.Event()

    def __call__(self, *args):
        self.calls.append(args)
        self.threads.append(threading.current_thread().name)
        self.done.set()

    def wait(self, timeout=2.0):
        assert self.done.wait(timeout), "callback did not fire"
        return self.calls[0]


def connect(sim, identifier):
    connected = threading.Event()
    sim.set_on_connect(connected.set)
    sim.connect(identifier.access_key)
    assert connected.wait(2.0)


class TestLibraryFunctions:
    """Tests for the pure library functions."""

    def test_version(self):
        assert simulator.get_version() == 0x010B

    def test_hardware_string(self):
        assert simulator.hardware_string(0x41) == "PowerMon-W"
        assert simulator.hardware_string(0x1F) == "PowerMon-E"
        assert simulator.hardware_string(0x90) == "Unknown"

    def test_power_status_string(self):
        assert simulator.power_status_string(1) == "ON"
        assert simulator.power_status_string(99) == "UNKNOWN"

    def test_url_round_trip(self, identifier, access_url):
        """A generated URL decodes to the same identifier."""
        assert simulator.parse_url(access_url) == identifier

    @pytest.mark.parametrize(
        "url",
        [
            "",
            "not a url",
            "https://example.com/?n=a&s=1&h=41&c=AA&k=AA",
            "https://applinks.thornwave.com/?n=a&s=1&h=41",
            "https://applinks.thornwave.com/?n=a&s=zz&h=41&c=AAAAAAAAAAAAAAAAAAAAAA==&k=AA",
        ],
    )
    def test_parse_rejects_malformed(self, url):
        assert simulator.parse_url(url) is None

    def test_parse_rejects_short_key(self, identifier):
        """Keys of the wrong size are not accepted."""
        url = simulator.to_url(identifier).replace("&k=", "&k=AAAA&x=")
        assert simulator.parse_url(url) is None


class TestLogCodec:
    """Tests for log image decoding."""

    def make_samples(self, count):
        return [
            LogSample(
                time=0,
                voltage1=12.5,
                voltage2=12.25,
                current=-1.5,
                power=-18.75,
                temperature=20.5,
                soc=50 + i,
                ps=1,
            )
            for i in range(count)
        ]

    def test_decode(self):
        data = simulator.encode_log(1700000000, LogMode.SEC_10, self.make_samples(3))
        code, samples = simulator.decode_log(data)
        assert code == simulator.DECODE_OK
        assert [s.time for s in samples] == [1700000000, 1700000010, 1700000020]
        assert [s.soc for s in samples] == [50, 51, 52]
        assert samples[0].voltage1 == 12.5

    def test_bad_header(self):
        assert simulator.decode_log(b"XXXX" + bytes(40)) == (simulator.DECODE_BAD_HEADER, [])
        assert simulator.decode_log(b"PM") == (simulator.DECODE_BAD_HEADER, [])

    def test_bad_mode(self):
        data = simulator.encode_log(0, LogMode.DISABLED, self.make_samples(1))
        assert simulator.decode_log(data) == (simulator.DECODE_BAD_MODE, [])

    def test_truncated_keeps_complete_records(self):
        data = simulator.encode_log(100, LogMode.SEC_1, self.make_samples(2))
        code, samples = simulator.decode_log(data[:-3])
        assert code == simulator.DECODE_TRUNCATED
        assert len(samples) == 1


class TestLoadLibrary:
    """Tests for loading a device library by import path."""

    def test_load_default(self):
        assert load_library() is simulator

    def test_missing_module(self):
        with pytest.raises(SdkLoadError, match="Cannot import"):
            load_library("powermon_bridge.no_such_library")

    def test_module_without_functions(self):
        """A module that is not a device library is rejected."""
        with pytest.raises(SdkLoadError, match="missing"):
            load_library("json")


class TestSimulatedPowermon:
    """Tests for the simulated device handle."""

    def test_satisfies_protocol(self, sim):
        assert isinstance(sim, DeviceSDK)

    def test_ble_probe(self):
        device = simulator.create_instance(ble_available=True)
        try:
            assert device.init_ble() is True
        finally:
            device.close()

    def test_connect_notifies_from_worker_thread(self, sim, identifier):
        """Notifications come from the device thread, never the caller's."""
        threads = []
        connected = threading.Event()

        def on_connect():
            threads.append(threading.current_thread().name)
            connected.set()

        sim.set_on_connect(on_connect)
        sim.connect(identifier.access_key)
        assert connected.wait(2.0)
        assert threads == ["powermon-sim"]
        assert sim.state == "connected"

    def test_refused_connect_reports_disconnect(self, sim, identifier):
        reasons = []
        done = threading.Event()
        sim.set_on_disconnect(lambda reason: (reasons.append(reason), done.set()))
        sim.refuse_connect(DisconnectReason.FAILED)
        sim.connect(identifier.access_key)
        assert done.wait(2.0)
        assert reasons == [DisconnectReason.FAILED]
        assert sim.state == "disconnected"

    def test_request_when_disconnected_is_cancelled(self, sim):
        callback = RecordingCallback()
        sim.request_monitor_data(callback)
        assert callback.wait() == (ResponseCode.RSP_CANCELLED, None)

    def test_monitor_request(self, sim, identifier):
        connect(sim, identifier)
        callback = RecordingCallback()
        sim.request_monitor_data(callback)
        code, data = callback.wait()
        assert code == ResponseCode.RSP_SUCCESS
        assert isinstance(data, MonitorData)
        assert callback.threads == ["powermon-sim"]
        assert sim.requests == ["monitor"]

    def test_failed_requests(self, sim, identifier):
        connect(sim, identifier)
        sim.fail_requests(ResponseCode.RSP_TIMEOUT)
        callback = RecordingCallback()
        sim.request_statistics(callback)
        assert callback.wait() == (ResponseCode.RSP_TIMEOUT, None)

    def test_hung_request_is_flushed_on_drop(self, sim, identifier):
        """A held callback still fires exactly once, with RSP_CANCELLED."""
        connect(sim, identifier)
        sim.hang_requests()
        callback = RecordingCallback()
        sim.request_info(callback)
        assert not callback.done.wait(0.05)
        sim.drop_connection()
        assert callback.wait() == (ResponseCode.RSP_CANCELLED, None)
        assert len(callback.calls) == 1

    def test_log_files(self, sim, identifier):
        connect(sim, identifier)
        callback = RecordingCallback()
        sim.request_log_file_list(callback)
        code, files = callback.wait()
        assert code == ResponseCode.RSP_SUCCESS
        assert len(files) == 2
        assert files[0].id < files[1].id

        read = RecordingCallback()
        sim.request_read_log_file(files[0].id, 0, files[0].size, read)
        code, data = read.wait()
        assert code == ResponseCode.RSP_SUCCESS
        status, samples = simulator.decode_log(data)
        assert status == simulator.DECODE_OK
        assert len(samples) == 60

    def test_read_unknown_file(self, sim, identifier):
        connect(sim, identifier)
        callback = RecordingCallback()
        sim.request_read_log_file(12345, 0, 10, callback)
        assert callback.wait() == (ResponseCode.RSP_NOT_FOUND, b"")

    def test_disconnect_when_disconnected_is_silent(self, sim):
        fired = threading.Event()
        sim.set_on_disconnect(lambda reason: fired.set())
        sim.disconnect()
        assert not fired.wait(0.05)

    def test_close_is_idempotent(self):
        device = simulator.SimulatedPowermon()
        device.close()
        device.close()

    def test_access_key_validation(self):
        with pytest.raises(ValueError):
            WifiAccessKey(channel_id=b"short", encryption_key=bytes(32))
