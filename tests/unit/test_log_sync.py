"""Tests for incremental log synchronization."""

import asyncio

import pytest

from powermon_bridge.binding import PowermonDevice
from powermon_bridge.log_sync import (
    SyncState,
    create_initial_state,
    estimate_log_time_range,
    get_files_to_sync,
    get_log_file_list,
    sync_device_logs,
    sync_since,
)
from powermon_bridge.sdk import simulator
from powermon_bridge.sdk.types import LogMode, LogSample

SERIAL = "A3A5B30EA9B3FF98"


async def connected_device(sim, url):
    device = PowermonDevice(simulator, sdk_factory=lambda: sim)
    connected = asyncio.Event()
    device.connect(url=url, on_connect=connected.set)
    await asyncio.wait_for(connected.wait(), 2.0)
    return device


def log_image(start, count):
    sample = LogSample(
        time=0, voltage1=12.0, voltage2=12.0, current=0.5, power=6.0,
        temperature=20.0, soc=75, ps=1,
    )
    return simulator.encode_log(start, LogMode.SEC_1, [sample] * count)


class TestFileSelection:
    """Tests for get_files_to_sync."""

    FILES = [{"id": 100, "size": 50}, {"id": 200, "size": 80}, {"id": 300, "size": 10}]

    def test_no_state_reads_everything(self):
        assert get_files_to_sync(self.FILES, None) == (self.FILES, 0)
        assert get_files_to_sync(self.FILES, create_initial_state(SERIAL)) == (self.FILES, 0)

    def test_newer_files_only(self):
        state = SyncState(device_serial=SERIAL, last_file_id=200, last_file_offset=80)
        assert get_files_to_sync(self.FILES, state) == ([{"id": 300, "size": 10}], 0)

    def test_grown_file_resumes_at_offset(self):
        """A file that grew since the last sync is read from where it stopped."""
        state = SyncState(device_serial=SERIAL, last_file_id=200, last_file_offset=30)
        files, offset = get_files_to_sync(self.FILES, state)
        assert [f["id"] for f in files] == [200, 300]
        assert offset == 30

    def test_up_to_date(self):
        state = SyncState(device_serial=SERIAL, last_file_id=300, last_file_offset=10)
        assert get_files_to_sync(self.FILES, state) == ([], 0)


class TestTimeRange:
    """Tests for estimate_log_time_range."""

    def test_empty(self):
        assert estimate_log_time_range([]).oldest_time is None

    def test_range(self):
        estimate = estimate_log_time_range(
            [{"id": 1700003600, "size": 70}, {"id": 1700000000, "size": 700}]
        )
        assert estimate.oldest_time.timestamp() == 1700000000
        assert estimate.newest_time.timestamp() == 1700003600
        assert estimate.total_bytes == 770
        assert estimate.estimated_samples == 110


class TestSyncDeviceLogs:
    """Tests for sync_device_logs against the simulated device."""

    @pytest.mark.asyncio
    async def test_full_sync(self, sim, access_url):
        device = await connected_device(sim, access_url)
        phases = []

        result = await sync_device_logs(
            device, SERIAL, on_progress=lambda progress: phases.append(progress.phase)
        )

        assert result.success
        assert result.files_processed == 2
        assert result.samples_retrieved == 120
        assert len(result.samples) == 120
        assert result.new_state.total_samples_synced == 120
        assert result.new_state.last_file_offset > 0
        assert phases[0] == "listing"
        assert "decoding" in phases
        assert phases[-1] == "complete"

    @pytest.mark.asyncio
    async def test_incremental_sync(self, sim, access_url):
        """A second sync reads only what is new."""
        device = await connected_device(sim, access_url)
        first = await sync_device_logs(device, SERIAL)

        again = await sync_device_logs(device, SERIAL, first.new_state)
        assert again.success
        assert again.samples_retrieved == 0
        assert again.new_state == first.new_state

        newest = first.new_state.last_file_id + 3600
        sim.add_log_file(newest, log_image(newest, 5))
        third = await sync_device_logs(device, SERIAL, first.new_state)
        assert third.files_processed == 1
        assert third.samples_retrieved == 5
        assert [s["time"] for s in third.samples][:2] == [newest, newest + 1]
        assert third.new_state.last_file_id == newest
        assert third.new_state.total_samples_synced == 125

    @pytest.mark.asyncio
    async def test_grown_file_yields_only_new_samples(self, sim, access_url):
        """A file that grew since the last sync contributes just its new records."""
        device = await connected_device(sim, access_url)
        newest = 1_900_000_000
        sim.add_log_file(newest, log_image(newest, 5))
        first = await sync_device_logs(device, SERIAL)
        assert first.new_state.last_file_id == newest
        assert first.new_state.last_file_offset == len(log_image(newest, 5))

        sim.add_log_file(newest, log_image(newest, 8))
        second = await sync_device_logs(device, SERIAL, first.new_state)
        assert second.success
        assert second.files_processed == 1
        assert [s["time"] for s in second.samples] == [newest + 5, newest + 6, newest + 7]
        assert second.new_state.last_file_offset == len(log_image(newest, 8))

        third = await sync_device_logs(device, SERIAL, second.new_state)
        assert third.samples_retrieved == 0
        assert third.new_state.total_samples_synced == first.new_state.total_samples_synced + 3

    @pytest.mark.asyncio
    async def test_unreadable_grown_file_keeps_position(self, sim, access_url):
        device = await connected_device(sim, access_url)
        newest = 1_900_000_000
        sim.add_log_file(newest, log_image(newest, 5))
        first = await sync_device_logs(device, SERIAL)

        sim.add_log_file(newest, b"x" * 200)
        second = await sync_device_logs(device, SERIAL, first.new_state)

        assert second.success
        assert second.samples_retrieved == 0
        assert second.new_state.last_file_id == newest
        assert second.new_state.last_file_offset == first.new_state.last_file_offset

    @pytest.mark.asyncio
    async def test_unreadable_files_are_skipped(self, sim, access_url):
        device = await connected_device(sim, access_url)
        state = SyncState(device_serial=SERIAL, last_file_id=2_000_000_000)
        sim.add_log_file(2_000_000_100, b"not a log file")
        sim.add_log_file(2_000_000_200, b"")
        sim.add_log_file(2_000_000_300, log_image(2_000_000_300, 3))

        result = await sync_device_logs(device, SERIAL, state)

        assert result.success
        assert result.files_processed == 3
        assert result.samples_retrieved == 3
        assert result.new_state.last_file_id == 2_000_000_300

    @pytest.mark.asyncio
    async def test_listing_failure(self, sim):
        """Without a connection the sync fails and keeps the old state."""
        device = PowermonDevice(simulator, sdk_factory=lambda: sim)
        state = SyncState(device_serial=SERIAL, last_file_id=5, total_samples_synced=9)
        phases = []

        result = await sync_device_logs(
            device, SERIAL, state, on_progress=lambda progress: phases.append(progress.phase)
        )

        assert not result.success
        assert result.error == "Not connected"
        assert result.new_state == state
        assert phases[-1] == "error"

    @pytest.mark.asyncio
    async def test_sync_since(self, sim, access_url):
        device = await connected_device(sim, access_url)
        files = sorted(f["id"] for f in await get_log_file_list(device))

        result = await sync_since(device, SERIAL, files[0] + 1)

        assert result.files_processed == 1
        assert result.samples[0]["time"] == files[1]
