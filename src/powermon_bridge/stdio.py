"""stdio bridge server.

Runs the line protocol over stdin/stdout:

- stdin: one command per line, ``<id> <command> [args...]``
- stdout: one JSON message per line (event / result / error / fatal)
- stderr: diagnostics only (logging)

Commands are served one at a time, in arrival order. The one exception is
a running ``stream``: input keeps being read, and ``disconnect``,
``status``, ``quit`` and ``exit`` are answered immediately so a stream can
be stopped without waiting for it. Everything else waits its turn.

Example session:
    ← {"type":"event","event":"ready"}
    → 1 connect https://applinks.thornwave.com/?n=...
    ← {"type":"result","id":"1","success":true,"code":0}
    ← {"type":"event","event":"connected"}
    → 2 stream 1000 2
    ← {"type":"event","event":"monitor","data":{...}}
    ← {"type":"event","event":"monitor","data":{...}}
    ← {"type":"result","id":"2","success":true,"code":0}
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
import threading
from collections.abc import Callable
from typing import BinaryIO

from .config import BridgeConfig
from .connection import ConnectionState, ConnectionStateMachine
from .correlator import ResponseCorrelator
from .marshal import CallbackRegistration
from .protocol import Command, CommandHandler, EventMessage, FatalMessage, Message
from .sdk.base import DeviceLibrary, DeviceSDK, load_library
from .streaming import StreamingEngine

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
NEWLINE = "\n"

FATAL_NO_INSTANCE = "Failed to create Powermon instance"

SdkFactory = Callable[[], "DeviceSDK | None"]


class StdioBridgeServer:
    """Line-protocol bridge between stdio and one Device SDK instance.

    Args:
        library: Device library providing the pure functions and the factory
        config: Runtime settings (defaults from the environment)
        stdin: Binary input stream with ``readline()`` (default: sys.stdin.buffer)
        stdout: Binary output stream (default: sys.stdout.buffer)
        sdk_factory: Creates the SDK instance (default: ``library.create_instance``)
        handle_signals: Install SIGINT/SIGTERM handlers that request shutdown
    """

    def __init__(
        self,
        library: DeviceLibrary,
        config: BridgeConfig | None = None,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        sdk_factory: SdkFactory | None = None,
        handle_signals: bool = False,
    ):
        self._library = library
        self._config = config or BridgeConfig()
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._sdk_factory = sdk_factory or library.create_instance
        self._handle_signals = handle_signals

        self._shutdown = asyncio.Event()
        self._connection = ConnectionStateMachine()
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._commands: asyncio.Queue[Command | None] = asyncio.Queue()
        self._handler: CommandHandler | None = None
        self._streaming: StreamingEngine | None = None

    @property
    def connection(self) -> ConnectionStateMachine:
        return self._connection

    def stop(self) -> None:
        """Request shutdown (same effect as SIGTERM)."""
        self._shutdown.set()

    async def run(self) -> int:
        """Serve until quit, EOF or a signal. Returns the process exit code."""
        sdk = self._create_sdk()
        if sdk is None:
            self._write(FatalMessage(message=FATAL_NO_INSTANCE))
            return 1

        loop = asyncio.get_running_loop()
        correlator = ResponseCorrelator(self._shutdown)
        self._streaming = StreamingEngine(self._connection, correlator, self._shutdown)
        self._handler = CommandHandler(
            self._library,
            sdk,
            self._connection,
            correlator,
            self._streaming,
            self._shutdown,
            default_interval_ms=self._config.stream_interval_ms,
        )

        # SDK notifications drive the state machine on the SDK thread;
        # the resulting events are written from the loop
        notifications = CallbackRegistration(loop, self._on_state_change)
        unsubscribe = self._connection.add_listener(notifications)
        sdk.set_on_connect(self._connection.on_connected)
        sdk.set_on_disconnect(self._connection.on_disconnected)

        if self._handle_signals:
            self._install_signal_handlers(loop)

        self._write(EventMessage.ready())
        self._start_reader(loop)

        intake = asyncio.create_task(self._intake())
        worker = asyncio.create_task(self._work())
        shutdown_wait = asyncio.create_task(self._shutdown.wait())
        try:
            await asyncio.wait({worker, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
            # Wake an idle worker; a busy one sees the shutdown signal itself
            self._commands.put_nowait(None)
            await worker
        finally:
            for task in (intake, shutdown_wait):
                task.cancel()
            await asyncio.gather(intake, shutdown_wait, return_exceptions=True)
            await self._teardown(sdk)
            unsubscribe()
            notifications.revoke()
            if self._handle_signals:
                self._remove_signal_handlers(loop)

        logger.info("Shutdown complete")
        return 0

    # -------------------------------------------------------------------------
    # Startup / teardown
    # -------------------------------------------------------------------------

    def _create_sdk(self) -> DeviceSDK | None:
        try:
            return self._sdk_factory()
        except Exception as e:
            logger.error(f"Device SDK factory failed: {e}")
            return None

    async def _teardown(self, sdk: DeviceSDK) -> None:
        """Disconnect (bounded wait) and release the SDK."""
        loop = asyncio.get_running_loop()
        disconnected = asyncio.Event()

        def on_state(state: ConnectionState, reason: int | None) -> None:
            if state is ConnectionState.DISCONNECTED:
                disconnected.set()

        registration = CallbackRegistration(loop, on_state)
        unsubscribe = self._connection.add_listener(registration)
        try:
            if self._connection.state is not ConnectionState.DISCONNECTED:
                logger.info("Disconnecting before exit")
                sdk.disconnect()
                try:
                    await asyncio.wait_for(
                        disconnected.wait(), timeout=self._config.shutdown_disconnect_timeout
                    )
                except TimeoutError:
                    logger.warning("Timed out waiting for disconnect notification")
        finally:
            unsubscribe()
            registration.revoke()
            sdk.set_on_connect(None)
            sdk.set_on_disconnect(None)
            sdk.close()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self._shutdown.set)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def _start_reader(self, loop: asyncio.AbstractEventLoop) -> None:
        # A daemon thread rather than the default executor: a blocking
        # readline must not keep the process alive after quit
        thread = threading.Thread(
            target=self._read_lines, args=(loop,), name="powermon-stdin", daemon=True
        )
        thread.start()

    def _read_lines(self, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            try:
                raw = self._stdin.readline()
            except (OSError, ValueError) as e:
                logger.debug(f"stdin read failed: {e}")
                raw = b""
            line = raw.decode(ENCODING, errors="replace") if raw else None
            try:
                loop.call_soon_threadsafe(self._lines.put_nowait, line)
            except RuntimeError:
                return  # loop closed
            if line is None:
                return

    async def _intake(self) -> None:
        """Parse input lines; serve control commands during a stream."""
        while True:
            line = await self._lines.get()
            if line is None:
                logger.info("stdin closed")
                self._commands.put_nowait(None)
                return

            line = line.strip()
            if line.startswith("\ufeff"):
                line = line[1:]
            command = Command.parse(line)
            if command is None:
                continue

            streaming = self._streaming is not None and self._streaming.active is not None
            if streaming and command.is_control():
                await self._dispatch(command)
            else:
                self._commands.put_nowait(command)

    async def _work(self) -> None:
        """Serve queued commands strictly one at a time."""
        while not self._shutdown.is_set():
            command = await self._commands.get()
            if command is None or self._shutdown.is_set():
                return
            await self._dispatch(command)

    async def _dispatch(self, command: Command) -> None:
        assert self._handler is not None
        async for message in self._handler.handle(command):
            self._write(message)

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def _on_state_change(self, state: ConnectionState, reason: int | None) -> None:
        if state is ConnectionState.CONNECTED:
            self._write(EventMessage.connected())
        elif state is ConnectionState.DISCONNECTED and reason is not None:
            self._write(EventMessage.disconnected(reason))

    def _write(self, message: Message) -> None:
        """Write one message as a single flushed line."""
        try:
            self._stdout.write((message.encode() + NEWLINE).encode(ENCODING))
            self._stdout.flush()
        except (OSError, ValueError) as e:
            # Consumer went away; nothing more can be reported
            logger.debug(f"Failed to write message: {e}")
            self._shutdown.set()


async def run_stdio_bridge(config: BridgeConfig | None = None) -> int:
    """Run the stdio bridge as main entry point."""
    config = config or BridgeConfig.from_env()

    # Protocol goes to stdout; diagnostics to stderr
    logging.basicConfig(
        level=config.level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    library = load_library(config.sdk)
    server = StdioBridgeServer(library, config=config, handle_signals=True)
    return await server.run()


def main(config: BridgeConfig | None = None) -> int:
    """Synchronous entry point."""
    # On Windows, ensure binary mode for stdin/stdout
    if sys.platform == "win32":
        import msvcrt

        msvcrt.setmode(sys.stdin.fileno(), os.O_BINARY)
        msvcrt.setmode(sys.stdout.fileno(), os.O_BINARY)

    return asyncio.run(run_stdio_bridge(config))
