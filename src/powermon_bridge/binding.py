"""Object binding for asyncio hosts.

``PowermonDevice`` exposes one Device SDK instance as a stateful object.
Request methods return immediately; their completion callback later runs
on the owner's event loop, exactly once, with a ``RequestResult``.
Connect/disconnect notifications go to long-lived callbacks registered
with ``connect()``.

Usage:
    device = PowermonDevice()  # inside a running loop
    device.connect(url=url, on_connect=ready, on_disconnect=gone)
    device.get_monitor_data(lambda result: print(result.data))
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .connection import ConnectionState, ConnectionStateMachine
from .errors import BindingError
from .marshal import CallbackRegistration, OneShotCallback
from .payloads import (
    device_info_payload,
    fuelgauge_payload,
    identifier_payload,
    log_files_payload,
    monitor_payload,
    sample_payload,
    statistics_payload,
    version_payload,
)
from .sdk.base import DeviceLibrary, DeviceSDK, load_library
from .sdk.types import ResponseCode, WifiAccessKey

logger = logging.getLogger(__name__)

# Result code delivered when no SDK instance exists
NOT_INITIALIZED = -1


@dataclass(frozen=True)
class RequestResult:
    """Outcome of one asynchronous request."""

    success: bool
    code: int
    data: Any = None


RequestCallback = Callable[[RequestResult], Any]


class PowermonDevice:
    """Stateful handle around one Device SDK instance.

    Args:
        library: Device library (default: the configured simulator)
        loop: Loop that receives every callback (default: the running loop)
        sdk_factory: Creates the SDK instance (default: ``library.create_instance``)
    """

    def __init__(
        self,
        library: DeviceLibrary | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        sdk_factory: Callable[[], DeviceSDK | None] | None = None,
    ) -> None:
        self._library = library or load_library()
        self._loop = loop or asyncio.get_running_loop()
        self._connection = ConnectionStateMachine()
        self._lock = threading.Lock()
        self._pending: set[OneShotCallback] = set()
        self._on_connect: CallbackRegistration | None = None
        self._on_disconnect: CallbackRegistration | None = None
        self._closed = False

        factory = sdk_factory or self._library.create_instance
        try:
            self._sdk: DeviceSDK | None = factory()
        except Exception as e:
            logger.error(f"Device SDK factory failed: {e}")
            self._sdk = None

        self._ble_available = False
        if self._sdk is not None:
            self._connection.add_listener(self._on_state_change)
            self._sdk.set_on_connect(self._connection.on_connected)
            self._sdk.set_on_disconnect(self._connection.on_disconnected)
            # WiFi works without Bluetooth; the probe is informational only
            try:
                self._ble_available = bool(self._sdk.init_ble())
            except Exception as e:
                logger.info(f"Bluetooth probe failed: {e}")
            logger.debug(f"Device created (ble={self._ble_available})")

    # =========================================================================
    # Library functions
    # =========================================================================

    def get_library_version(self) -> dict[str, Any]:
        return version_payload(self._library.get_version())

    def parse_access_url(self, url: str) -> dict[str, Any] | None:
        """Decode an access URL; None if malformed.

        The result carries the display fields plus ``accessKey``, a
        ``WifiAccessKey`` that can be passed back to ``connect()``.
        """
        if not isinstance(url, str):
            raise BindingError("URL string expected")
        identifier = self._library.parse_url(url)
        if identifier is None:
            return None
        return identifier_payload(identifier, self._library) | {
            "accessKey": identifier.access_key
        }

    def decode_log_data(self, data: bytes | bytearray | memoryview) -> dict[str, Any]:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise BindingError("Bytes-like object expected")
        code, samples = self._library.decode_log(bytes(data))
        return {
            "success": code == 0,
            "code": code,
            "samples": [sample_payload(sample) for sample in samples],
        }

    def get_hardware_string(self, revision: int) -> str:
        if not isinstance(revision, int):
            raise BindingError("Hardware revision number expected")
        return self._library.hardware_string(revision)

    def get_power_status_string(self, status: int) -> str:
        if not isinstance(status, int):
            raise BindingError("Power status number expected")
        return self._library.power_status_string(status)

    # =========================================================================
    # Connection
    # =========================================================================

    def is_initialized(self) -> bool:
        return self._sdk is not None and not self._closed

    def is_ble_available(self) -> bool:
        return self._ble_available

    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    def connect(
        self,
        *,
        url: str | None = None,
        access_key: WifiAccessKey | None = None,
        on_connect: Callable[[], Any] | None = None,
        on_disconnect: Callable[[int], Any] | None = None,
    ) -> None:
        """Start connecting; completion is reported through the callbacks.

        Raises:
            BindingError: SDK missing, already connected/connecting, or bad address
        """
        sdk = self._require_sdk()
        if self._connection.state is not ConnectionState.DISCONNECTED:
            raise BindingError("Already connected or connecting")

        if access_key is None:
            if url is None:
                raise BindingError("Either 'access_key' or 'url' is required")
            identifier = self._library.parse_url(url)
            if identifier is None:
                raise BindingError("Invalid access URL")
            access_key = identifier.access_key

        self._replace_notifications(on_connect, on_disconnect)
        self._connection.begin_connect()
        try:
            sdk.connect(access_key)
        except Exception:
            self._connection.abort_connect()
            raise

    def disconnect(self) -> None:
        if self._sdk is None:
            return
        if self._connection.is_connected or self._connection.is_connecting:
            self._sdk.disconnect()

    def close(self) -> None:
        """Release the SDK and every pending callback. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._replace_notifications(None, None)

        with self._lock:
            pending, self._pending = self._pending, set()
        for callback in pending:
            callback.release()

        if self._sdk is not None:
            if self._connection.is_connected or self._connection.is_connecting:
                self._sdk.disconnect()
            self._sdk.set_on_connect(None)
            self._sdk.set_on_disconnect(None)
            self._sdk.close()
        logger.debug(f"Device closed ({len(pending)} pending callbacks released)")

    def __enter__(self) -> PowermonDevice:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Requests
    # =========================================================================

    def get_info(self, callback: RequestCallback) -> None:
        self._request(
            callback,
            "request_info",
            lambda info: device_info_payload(info, self._library),
        )

    def get_monitor_data(self, callback: RequestCallback) -> None:
        self._request(
            callback,
            "request_monitor_data",
            lambda data: monitor_payload(data, self._library),
        )

    def get_statistics(self, callback: RequestCallback) -> None:
        self._request(
            callback,
            "request_statistics",
            statistics_payload,
        )

    def get_fuelgauge_statistics(self, callback: RequestCallback) -> None:
        self._request(
            callback,
            "request_fuelgauge_statistics",
            fuelgauge_payload,
        )

    def get_log_file_list(self, callback: RequestCallback) -> None:
        self._request(
            callback,
            "request_log_file_list",
            log_files_payload,
        )

    def read_log_file(self, file_id: int, offset: int, size: int, callback: RequestCallback) -> None:
        """Read a byte range; ``data`` is bytes, omitted for empty or failed reads."""
        for value in (file_id, offset, size):
            if not isinstance(value, int) or value < 0:
                raise BindingError("fileId, offset, size, and callback expected")

        def encode(data: Any) -> bytes | None:
            return bytes(data) if data else None

        self._request(
            callback,
            "request_read_log_file",
            encode,
            file_id,
            offset,
            size,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_sdk(self) -> DeviceSDK:
        if self._sdk is None or self._closed:
            raise BindingError("Device SDK not initialized")
        return self._sdk

    def _request(
        self,
        callback: RequestCallback,
        method: str,
        encode: Callable[[Any], Any],
        *args: Any,
    ) -> None:
        """Issue ``sdk.<method>(*args, callback)`` and route the reply to ``callback``."""
        if not callable(callback):
            raise BindingError("Callback function expected")

        if not self.is_initialized():
            self._loop.call_soon(callback, RequestResult(False, NOT_INITIALIZED))
            return
        if not self._connection.is_connected:
            raise BindingError("Not connected")

        holder: list[OneShotCallback] = []

        def deliver(code: int, payload: Any) -> None:
            with self._lock:
                self._pending.discard(holder[0])
            success = code == ResponseCode.RSP_SUCCESS
            data = encode(payload) if success and payload is not None else None
            callback(RequestResult(success, int(code), data))

        proxy = OneShotCallback(self._loop, deliver)
        holder.append(proxy)
        with self._lock:
            self._pending.add(proxy)
        try:
            getattr(self._sdk, method)(*args, proxy)
        except Exception:
            with self._lock:
                self._pending.discard(proxy)
            proxy.release()
            raise

    def _replace_notifications(
        self,
        on_connect: Callable[[], Any] | None,
        on_disconnect: Callable[[int], Any] | None,
    ) -> None:
        old = (self._on_connect, self._on_disconnect)
        self._on_connect = CallbackRegistration(self._loop, on_connect) if on_connect else None
        self._on_disconnect = (
            CallbackRegistration(self._loop, on_disconnect) if on_disconnect else None
        )
        for registration in old:
            if registration is not None:
                registration.revoke()

    def _on_state_change(self, state: ConnectionState, reason: int | None) -> None:
        # Runs on the SDK thread; the registrations hop onto the loop
        if state is ConnectionState.CONNECTED:
            registration = self._on_connect
            if registration is not None:
                registration()
        elif state is ConnectionState.DISCONNECTED and reason is not None:
            registration = self._on_disconnect
            if registration is not None:
                registration(reason)
