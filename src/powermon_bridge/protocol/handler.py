"""Command Handler - transport-agnostic dispatch.

Looks up each command in a fixed table, enforces its precondition, drives
the Device SDK through the correlator and yields the outbound messages.
The stdio server (and tests) simply iterate ``handle()`` and write what
comes out.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

from ..connection import ConnectionState
from ..errors import BridgeError, CommandError, ConnectionStateError
from ..payloads import (
    device_info_payload,
    fuelgauge_payload,
    identifier_payload,
    log_files_payload,
    monitor_payload,
    statistics_payload,
    version_payload,
)
from ..sdk.types import ResponseCode, SdkResult
from ..streaming import DEFAULT_INTERVAL_MS, StreamingEngine, StreamSession
from .commands import Command, CommandName
from .messages import ErrorMessage, EventMessage, Message, ResultMessage

if TYPE_CHECKING:
    import asyncio

    from ..connection import ConnectionStateMachine
    from ..correlator import Operation, ResponseCorrelator
    from ..sdk.base import DeviceLibrary, DeviceSDK

logger = logging.getLogger(__name__)

Handler = Callable[[Command], AsyncIterator[Message]]


class CommandHandler:
    """Handles protocol commands and yields outbound messages.

    Every command yields exactly one terminal message (a result or an
    error), preceded by zero or more events for ``stream``. A command
    abandoned at shutdown yields nothing.

    Usage:
        handler = CommandHandler(library, sdk, connection, correlator, streaming, shutdown)

        async for message in handler.handle(command):
            write(message.encode())
    """

    def __init__(
        self,
        library: DeviceLibrary,
        sdk: DeviceSDK,
        connection: ConnectionStateMachine,
        correlator: ResponseCorrelator,
        streaming: StreamingEngine,
        shutdown: asyncio.Event,
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        self._library = library
        self._sdk = sdk
        self._connection = connection
        self._correlator = correlator
        self._streaming = streaming
        self._shutdown = shutdown
        self._default_interval_ms = default_interval_ms

        self._table: dict[str, Handler] = {
            CommandName.VERSION.value: self._version,
            CommandName.PARSE.value: self._parse,
            CommandName.CONNECT.value: self._connect,
            CommandName.DISCONNECT.value: self._disconnect,
            CommandName.STATUS.value: self._status,
            CommandName.INFO.value: self._info,
            CommandName.MONITOR.value: self._monitor,
            CommandName.STATISTICS.value: self._statistics,
            CommandName.FG_STATISTICS.value: self._fg_statistics,
            CommandName.LOG_FILES.value: self._log_files,
            CommandName.READ_LOG.value: self._read_log,
            CommandName.STREAM.value: self._stream,
            CommandName.QUIT.value: self._quit,
            CommandName.EXIT.value: self._quit,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._table)

    async def handle(self, command: Command) -> AsyncIterator[Message]:
        """Process a command and yield its messages.

        Args:
            command: The command to process

        Yields:
            Events (stream only) followed by one result or error
        """
        logger.debug(f"Handling command: {command.name} (id={command.id})")

        handler = self._table.get(command.name)
        if handler is None:
            yield ErrorMessage(id=command.id, message="Unknown command")
            return

        try:
            async for message in handler(command):
                yield message
        except BridgeError as e:
            logger.debug(f"Command {command.id} rejected: {e}")
            yield ErrorMessage(id=command.id, message=str(e))
        except Exception as e:
            logger.exception(f"Error handling command {command.id}: {e}")
            yield ErrorMessage(id=command.id, message=str(e) or type(e).__name__)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_connected(self) -> None:
        if not self._connection.is_connected:
            raise CommandError("Not connected")

    async def _request(
        self,
        command: Command,
        operation: Operation,
        encode: Callable[[Any], Any],
    ) -> AsyncIterator[Message]:
        """Single-shot request: issue, correlate, encode."""
        self._require_connected()
        result = await self._correlator.call(operation)
        if result is None:
            return
        if result.success:
            yield ResultMessage.ok(command.id, encode(result.payload), code=result.code)
        else:
            yield ResultMessage.failed(command.id, result.code)

    # =========================================================================
    # No connection required
    # =========================================================================

    async def _version(self, command: Command) -> AsyncIterator[Message]:
        yield ResultMessage.ok(command.id, version_payload(self._library.get_version()))

    async def _parse(self, command: Command) -> AsyncIterator[Message]:
        identifier = self._library.parse_url(command.text)
        if identifier is None:
            yield ResultMessage.null(command.id, success=False, code=-1)
            return
        yield ResultMessage.ok(command.id, identifier_payload(identifier, self._library))

    # =========================================================================
    # Connection state
    # =========================================================================

    async def _connect(self, command: Command) -> AsyncIterator[Message]:
        if self._connection.state is not ConnectionState.DISCONNECTED:
            raise ConnectionStateError("Already connected or connecting")

        identifier = self._library.parse_url(command.text) if command.text else None
        if identifier is None:
            raise CommandError("Invalid access URL")

        self._connection.begin_connect()
        try:
            self._sdk.connect(identifier.access_key)
        except Exception:
            self._connection.abort_connect()
            raise
        logger.info(f"Connecting to {identifier.name} ({identifier.serial:016X})")
        yield ResultMessage.ok(command.id)

    async def _disconnect(self, command: Command) -> AsyncIterator[Message]:
        # Already disconnected is not an error
        if self._connection.is_connected or self._connection.is_connecting:
            self._streaming.cancel()
            self._sdk.disconnect()
        yield ResultMessage.ok(command.id)

    async def _status(self, command: Command) -> AsyncIterator[Message]:
        yield ResultMessage.ok(command.id, self._connection.snapshot())

    # =========================================================================
    # Device requests
    # =========================================================================

    async def _info(self, command: Command) -> AsyncIterator[Message]:
        encode = functools.partial(self._with_library, device_info_payload)
        async for message in self._request(command, self._sdk.request_info, encode):
            yield message

    async def _monitor(self, command: Command) -> AsyncIterator[Message]:
        encode = functools.partial(self._with_library, monitor_payload)
        async for message in self._request(command, self._sdk.request_monitor_data, encode):
            yield message

    async def _statistics(self, command: Command) -> AsyncIterator[Message]:
        async for message in self._request(
            command, self._sdk.request_statistics, statistics_payload
        ):
            yield message

    async def _fg_statistics(self, command: Command) -> AsyncIterator[Message]:
        async for message in self._request(
            command, self._sdk.request_fuelgauge_statistics, fuelgauge_payload
        ):
            yield message

    async def _log_files(self, command: Command) -> AsyncIterator[Message]:
        async for message in self._request(
            command, self._sdk.request_log_file_list, log_files_payload
        ):
            yield message

    async def _read_log(self, command: Command) -> AsyncIterator[Message]:
        self._require_connected()
        file_id = command.int_arg(0, "fileId")
        offset = command.int_arg(1, "offset")
        size = command.int_arg(2, "size")

        result = await self._correlator.call(
            functools.partial(self._sdk.request_read_log_file, file_id, offset, size)
        )
        if result is None:
            return
        yield self._read_log_result(command.id, result)

    @staticmethod
    def _read_log_result(command_id: str, result: SdkResult) -> ResultMessage:
        data = bytes(result.payload or b"")
        if result.success and data:
            return ResultMessage.ok(command_id, data.hex(), code=result.code)
        # Zero-length success stays distinguishable from a failed read
        return ResultMessage(
            id=command_id, success=result.code == ResponseCode.RSP_SUCCESS, code=result.code
        )

    def _with_library(self, build: Callable[..., Any], payload: Any) -> Any:
        return build(payload, self._library)

    # =========================================================================
    # Streaming
    # =========================================================================

    async def _stream(self, command: Command) -> AsyncIterator[Message]:
        self._require_connected()
        interval_ms = command.int_arg(0, "intervalMs", self._default_interval_ms)
        count = command.int_arg(1, "count", 0)
        if self._streaming.active is not None:
            raise CommandError("Stream already running")

        session = StreamSession.from_millis(interval_ms, count)
        async for result in self._streaming.run(session, self._sdk.request_monitor_data):
            yield EventMessage.monitor(monitor_payload(result.payload, self._library))

        if session.abandoned:
            return
        yield ResultMessage.ok(command.id)

    # =========================================================================
    # Process
    # =========================================================================

    async def _quit(self, command: Command) -> AsyncIterator[Message]:
        self._shutdown.set()
        yield ResultMessage.ok(command.id)
