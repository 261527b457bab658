"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from powermon_bridge.sdk import simulator
from powermon_bridge.sdk.types import DeviceIdentifier, WifiAccessKey

CHANNEL_ID = bytes(range(16))
ENCRYPTION_KEY = bytes(range(100, 132))


@pytest.fixture
def library():
    """The simulated device library module."""
    return simulator


@pytest.fixture
def identifier():
    return DeviceIdentifier(
        name="Cabin Battery",
        serial=0xA3A5B30EA9B3FF98,
        hardware_revision_bcd=0x41,
        access_key=WifiAccessKey(channel_id=CHANNEL_ID, encryption_key=ENCRYPTION_KEY),
    )


@pytest.fixture
def access_url(identifier):
    return simulator.to_url(identifier)


@pytest.fixture
def sim():
    """A fast, deterministic simulated device; closed after the test."""
    device = simulator.SimulatedPowermon(response_delay=0.005, connect_delay=0.005, seed=7)
    yield device
    device.close()


async def wait_until(predicate, timeout=2.0, interval=0.005):
    """Poll ``predicate`` on the loop until it is true or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
