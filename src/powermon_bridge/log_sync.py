"""Incremental log synchronization.

Pulls data-log files from a connected ``PowermonDevice`` and decodes them
into samples. A ``SyncState`` remembers how far the previous sync got so
the next one only reads files that are new (or grew) since then.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from .errors import BridgeError, LogSyncError

if TYPE_CHECKING:
    from .binding import PowermonDevice, RequestResult

logger = logging.getLogger(__name__)

# Rough size of one encoded sample, for estimates only
BYTES_PER_SAMPLE = 7


class SyncState(BaseModel):
    """Where the last sync of a device stopped."""

    device_serial: str
    last_sync_time: int = 0  # milliseconds since the epoch
    last_file_id: int = 0
    last_file_offset: int = 0
    total_samples_synced: int = 0


class SyncProgress(BaseModel):
    phase: str = "listing"  # listing | reading | decoding | complete | error
    files_total: int = 0
    files_completed: int = 0
    samples_retrieved: int = 0
    message: str | None = None


class SyncResult(BaseModel):
    success: bool
    files_processed: int = 0
    samples_retrieved: int = 0
    samples: list[dict[str, Any]] = Field(default_factory=list)
    new_state: SyncState
    error: str | None = None


class LogTimeRange(BaseModel):
    oldest_time: datetime | None = None
    newest_time: datetime | None = None
    total_bytes: int = 0
    estimated_samples: int = 0


ProgressCallback = Callable[[SyncProgress], Any]


def create_initial_state(device_serial: str) -> SyncState:
    return SyncState(device_serial=device_serial)


def get_files_to_sync(
    files: list[dict[str, int]], state: SyncState | None
) -> tuple[list[dict[str, int]], int]:
    """Select the files a sync must read.

    Returns:
        (files to read, byte offset to start from in the first of them)
    """
    if state is None or state.last_file_id == 0:
        return list(files), 0

    selected: list[dict[str, int]] = []
    start_offset = 0
    for file in files:
        if file["id"] > state.last_file_id:
            selected.append(file)
        elif file["id"] == state.last_file_id and state.last_file_offset < file["size"]:
            selected.append(file)
            start_offset = state.last_file_offset
    return selected, start_offset


def estimate_log_time_range(files: list[dict[str, int]]) -> LogTimeRange:
    """Time span and sample count the given files roughly cover."""
    if not files:
        return LogTimeRange()

    ids = sorted(file["id"] for file in files)
    total_bytes = sum(file["size"] for file in files)
    return LogTimeRange(
        oldest_time=datetime.fromtimestamp(ids[0], tz=UTC),
        newest_time=datetime.fromtimestamp(ids[-1], tz=UTC),
        total_bytes=total_bytes,
        estimated_samples=total_bytes // BYTES_PER_SAMPLE,
    )


async def _call(start: Callable[[Callable[[RequestResult], None]], None]) -> RequestResult:
    """Await one binding request."""
    future: asyncio.Future[RequestResult] = asyncio.get_running_loop().create_future()

    def done(result: RequestResult) -> None:
        if not future.done():
            future.set_result(result)

    start(done)
    return await future


async def get_log_file_list(device: PowermonDevice) -> list[dict[str, int]]:
    result = await _call(device.get_log_file_list)
    if not result.success or result.data is None:
        raise LogSyncError(f"Failed to get log file list, code: {result.code}")
    return result.data


async def read_log_file_raw(device: PowermonDevice, file_id: int, offset: int, size: int) -> bytes:
    result = await _call(lambda cb: device.read_log_file(file_id, offset, size, cb))
    if not result.success or not result.data:
        raise LogSyncError(f"Failed to read log file {file_id}, code: {result.code}")
    return result.data


async def sync_device_logs(
    device: PowermonDevice,
    device_serial: str,
    state: SyncState | None = None,
    on_progress: ProgressCallback | None = None,
) -> SyncResult:
    """Read and decode every log file not covered by ``state``.

    Unreadable files are logged and skipped. A failure to list files ends
    the sync unsuccessfully and hands back the previous state.
    """
    progress = SyncProgress()

    def report(**updates: Any) -> None:
        nonlocal progress
        progress = progress.model_copy(update=updates)
        if on_progress is not None:
            on_progress(progress)

    previous = state or create_initial_state(device_serial)
    try:
        report(phase="listing", message="Getting log file list...")
        files = await get_log_file_list(device)

        to_sync, start_offset = get_files_to_sync(files, state)
        report(phase="reading", files_total=len(to_sync), message=f"{len(to_sync)} files to sync")

        if not to_sync:
            report(phase="complete", message="Already up to date")
            return SyncResult(success=True, new_state=previous)

        samples: list[dict[str, Any]] = []
        last_file_id = previous.last_file_id
        last_file_offset = previous.last_file_offset

        for index, file in enumerate(to_sync):
            # A grown file is re-read whole; only its header makes the tail decodable
            resumed = start_offset if index == 0 else 0
            new_bytes = file["size"] - resumed
            report(
                phase="reading",
                files_completed=index,
                message=f"Reading file {index + 1}/{len(to_sync)} ({new_bytes} new bytes)",
            )

            try:
                raw = await read_log_file_raw(device, file["id"], 0, file["size"])
            except BridgeError as e:
                logger.error(f"Error reading file {file['id']}: {e}")
                continue

            report(phase="decoding", message=f"Decoding {len(raw)} bytes...")
            decoded = device.decode_log_data(raw)
            if not decoded["success"] or not decoded["samples"]:
                logger.warning(f"File {file['id']} decoded no samples (code={decoded['code']})")
                continue

            seen = len(device.decode_log_data(raw[:resumed])["samples"]) if resumed else 0
            samples.extend(decoded["samples"][seen:])
            last_file_id = file["id"]
            last_file_offset = file["size"]
            report(samples_retrieved=len(samples), files_completed=index + 1)

        new_state = SyncState(
            device_serial=device_serial,
            last_sync_time=int(time.time() * 1000),
            last_file_id=last_file_id,
            last_file_offset=last_file_offset,
            total_samples_synced=previous.total_samples_synced + len(samples),
        )
        report(
            phase="complete",
            files_completed=len(to_sync),
            samples_retrieved=len(samples),
            message=f"Synced {len(samples)} samples from {len(to_sync)} files",
        )
        return SyncResult(
            success=True,
            files_processed=len(to_sync),
            samples_retrieved=len(samples),
            samples=samples,
            new_state=new_state,
        )

    except BridgeError as e:
        report(phase="error", message=str(e))
        return SyncResult(success=False, error=str(e), new_state=previous)


async def sync_since(
    device: PowermonDevice,
    device_serial: str,
    since: int,
    on_progress: ProgressCallback | None = None,
) -> SyncResult:
    """Sync files that start at or after the UNIX timestamp ``since``."""
    state = SyncState(
        device_serial=device_serial,
        last_sync_time=since * 1000,
        last_file_id=since,
    )
    return await sync_device_logs(device, device_serial, state, on_progress)
