"""Subprocess client for the stdio bridge.

Launches ``powermon-bridge`` as a child process and speaks the line
protocol over its stdin/stdout. Each command gets a generated id; replies
are matched back to the awaiting caller, while uncorrelated events are
dispatched to listeners.

Usage:
    async with BridgeClient() as client:
        client.on("monitor", lambda data: print(data["voltage1"]))
        await client.connect(url)
        await client.start_streaming(1000)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import secrets
import sys
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from .errors import BridgeClientError
from .protocol.messages import (
    ErrorMessage,
    EventMessage,
    EventName,
    FatalMessage,
    ResultMessage,
    decode_message,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = [sys.executable, "-m", "powermon_bridge"]
STARTUP_TIMEOUT = 10.0
COMMAND_TIMEOUT = 30.0
STOP_GRACE = 1.0

Listener = Callable[..., Any]


class BridgeClient:
    """Drives one bridge subprocess.

    Listener events:
        ``event`` (name, message), ``connected`` (), ``disconnected`` (reason),
        ``monitor`` (data), ``fatal`` (message), ``stderr`` (text), ``close`` (code)

    Args:
        command: Bridge command line (default: this interpreter, ``-m powermon_bridge``)
        env: Extra environment variables for the child
        startup_timeout: Seconds to wait for the ``ready`` event
        command_timeout: Seconds to wait for each reply
    """

    def __init__(
        self,
        command: list[str] | None = None,
        env: dict[str, str] | None = None,
        startup_timeout: float = STARTUP_TIMEOUT,
        command_timeout: float = COMMAND_TIMEOUT,
    ):
        self.command = command or list(DEFAULT_COMMAND)
        self.env = env
        self.startup_timeout = startup_timeout
        self.command_timeout = command_timeout

        self.connected = False
        self.connecting = False

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._pending: dict[str, asyncio.Future[ResultMessage]] = {}
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._counter = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def is_running(self) -> bool:
        return self._process is not None

    def is_connected(self) -> bool:
        return self.connected

    async def start(self) -> None:
        """Launch the bridge and wait for its ``ready`` event.

        Raises:
            BridgeClientError: If already started, the bridge reports ``fatal``,
                exits early, or is not ready within ``startup_timeout``
        """
        if self._process is not None:
            raise BridgeClientError("Bridge already started")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()

        env = {**os.environ, **self.env} if self.env else None
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            self._process = None
            raise BridgeClientError(f"Failed to launch bridge: {e}") from e

        logger.info(f"Launched bridge: {' '.join(self.command)} (pid={self._process.pid})")
        self._reader_task = asyncio.create_task(self._read_loop(self._process))
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))

        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=self.startup_timeout)
        except TimeoutError:
            self._ready.cancel()
            await self._kill()
            raise BridgeClientError("Bridge startup timeout") from None
        except BridgeClientError:
            await self._kill()
            raise

    async def stop(self) -> None:
        """Ask the bridge to quit; kill it if it does not exit promptly."""
        process = self._process
        if process is None:
            return

        with contextlib.suppress(BridgeClientError, ConnectionError):
            await self._write_line(f"{self._next_id()} quit")
        try:
            await asyncio.wait_for(process.wait(), timeout=STOP_GRACE)
        except TimeoutError:
            logger.warning("Bridge did not exit after quit; killing")
            process.kill()
            await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def __aenter__(self) -> BridgeClient:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # =========================================================================
    # Listeners
    # =========================================================================

    def on(self, name: str, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it."""
        self._listeners[name].append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[name].remove(listener)

        return remove

    def _emit(self, name: str, *args: Any) -> None:
        for listener in list(self._listeners.get(name, ())):
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for '{name}' failed")

    # =========================================================================
    # Commands
    # =========================================================================

    async def send(self, command: str) -> ResultMessage:
        """Send one command and wait for its result.

        Raises:
            BridgeClientError: On an ``error`` reply, timeout or bridge exit
        """
        command_id = self._next_id()
        future: asyncio.Future[ResultMessage] = asyncio.get_running_loop().create_future()
        self._pending[command_id] = future
        try:
            await self._write_line(f"{command_id} {command}")
            return await asyncio.wait_for(future, timeout=self.command_timeout)
        except TimeoutError:
            raise BridgeClientError(f"Command timeout: {command}") from None
        finally:
            self._pending.pop(command_id, None)

    async def get_version(self) -> ResultMessage:
        return await self.send("version")

    async def parse_url(self, url: str) -> ResultMessage:
        return await self.send(f"parse {url}")

    async def connect(self, url: str) -> ResultMessage:
        if self.connected or self.connecting:
            raise BridgeClientError("Already connected or connecting")
        self.connecting = True
        try:
            result = await self.send(f"connect {url}")
        except BridgeClientError:
            self.connecting = False
            raise
        if not result.success:
            self.connecting = False
        return result

    async def disconnect(self) -> ResultMessage:
        return await self.send("disconnect")

    async def get_status(self) -> ResultMessage:
        return await self.send("status")

    async def get_info(self) -> ResultMessage:
        return await self.send("info")

    async def get_monitor_data(self) -> ResultMessage:
        return await self.send("monitor")

    async def get_statistics(self) -> ResultMessage:
        return await self.send("statistics")

    async def get_fuelgauge_statistics(self) -> ResultMessage:
        return await self.send("fgstatistics")

    async def get_log_files(self) -> ResultMessage:
        return await self.send("logfiles")

    async def read_log_file(self, file_id: int, offset: int, size: int) -> ResultMessage:
        return await self.send(f"readlog {file_id} {offset} {size}")

    async def start_streaming(self, interval_ms: int = 2000, count: int = 0) -> str:
        """Start a stream without waiting for it; samples arrive as ``monitor`` events.

        Returns:
            The stream command id
        """
        command_id = self._next_id()
        await self._write_line(f"{command_id} stream {interval_ms} {count}")
        return command_id

    # =========================================================================
    # I/O
    # =========================================================================

    def _next_id(self) -> str:
        self._counter += 1
        return f"cmd_{self._counter}_{secrets.token_hex(4)}"

    async def _write_line(self, line: str) -> None:
        if self._process is None or self._process.stdin is None:
            raise BridgeClientError("Bridge not started")
        try:
            self._process.stdin.write((line + "\n").encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise BridgeClientError(f"Bridge input closed: {e}") from e

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = decode_message(text)
                except ValueError as e:
                    logger.debug(f"Failed to parse bridge output: {e} (line: {text[:50]})")
                    continue
                self._handle_message(message)
        finally:
            code = await process.wait()
            self._on_exit(code)

    def _handle_message(self, message: Any) -> None:
        if isinstance(message, FatalMessage):
            if self._ready is not None and not self._ready.done():
                self._ready.set_exception(BridgeClientError(message.message))
            self._emit("fatal", message.message)

        elif isinstance(message, EventMessage):
            self._emit("event", message.event, message)
            if message.event == EventName.READY.value:
                if self._ready is not None and not self._ready.done():
                    self._ready.set_result(None)
            elif message.event == EventName.CONNECTED.value:
                self.connected, self.connecting = True, False
                self._emit("connected")
            elif message.event == EventName.DISCONNECTED.value:
                self.connected, self.connecting = False, False
                self._emit("disconnected", message.payload.get("reason"))
            elif message.event == EventName.MONITOR.value:
                self._emit("monitor", message.payload.get("data"))

        elif isinstance(message, (ResultMessage, ErrorMessage)):
            future = self._pending.get(message.id)
            if future is None or future.done():
                return
            if isinstance(message, ErrorMessage):
                future.set_exception(BridgeClientError(message.message))
            else:
                future.set_result(message)

    def _on_exit(self, code: int) -> None:
        logger.info(f"Bridge exited with code {code}")
        self._process = None
        self.connected = False
        self.connecting = False

        error = BridgeClientError(f"Bridge process exited with code {code}")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(
                BridgeClientError(f"Bridge exited with code {code} during startup")
            )
        self._emit("close", code)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            line = await process.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            logger.debug(f"[bridge stderr] {text}")
            self._emit("stderr", text)

    async def _kill(self) -> None:
        process = self._process
        if process is None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        self._process = None
