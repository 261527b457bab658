"""Streaming engine.

Runs one data request repeatedly on a fixed interval, yielding each
successful result. A stream ends when its sample count is reached, when the
device disconnects, when it is cancelled, or when the process shuts down.
The interval pause waits on the cancellation and shutdown events directly,
so stopping never has to wait out a full interval.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from .connection import ConnectionState, ConnectionStateMachine
from .correlator import Operation, ResponseCorrelator
from .marshal import CallbackRegistration
from .sdk.types import SdkResult

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 2000


@dataclass
class StreamSession:
    """State of one ``stream`` command.

    Attributes:
        interval: Pause between requests, in seconds
        count: Number of samples to emit; 0 means unbounded
        cancel: Set to stop the stream early
        emitted: Samples emitted so far
        abandoned: True when shutdown ended the stream (no terminal reply)
    """

    interval: float
    count: int = 0
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    emitted: int = 0
    abandoned: bool = False

    @classmethod
    def from_millis(cls, interval_ms: int, count: int = 0) -> StreamSession:
        return cls(interval=interval_ms / 1000.0, count=count)

    @property
    def complete(self) -> bool:
        return self.count > 0 and self.emitted >= self.count


class StreamingEngine:
    """Drives stream sessions, one at a time.

    Args:
        connection: Connection state; a disconnect cancels the running stream
        correlator: Issues each request and waits for its callback
        shutdown: Process-wide shutdown signal
    """

    def __init__(
        self,
        connection: ConnectionStateMachine,
        correlator: ResponseCorrelator,
        shutdown: asyncio.Event,
    ) -> None:
        self._connection = connection
        self._correlator = correlator
        self._shutdown = shutdown
        self._active: StreamSession | None = None

    @property
    def active(self) -> StreamSession | None:
        return self._active

    def cancel(self) -> bool:
        """Stop the running stream, if any. Returns True if one was running."""
        if self._active is None:
            return False
        self._active.cancel.set()
        return True

    async def run(self, session: StreamSession, fetch: Operation) -> AsyncIterator[SdkResult]:
        """Run a session, yielding every successful result.

        Failed requests are skipped and the loop continues. On return,
        ``session.abandoned`` tells whether shutdown ended the stream.
        """
        loop = asyncio.get_running_loop()

        def on_state(state: ConnectionState, reason: int | None) -> None:
            if state is ConnectionState.DISCONNECTED:
                session.cancel.set()

        # State listeners run on the SDK thread; route them onto the loop
        registration = CallbackRegistration(loop, on_state)
        unsubscribe = self._connection.add_listener(registration)
        self._active = session
        logger.debug(f"Stream started (interval={session.interval}s, count={session.count})")

        try:
            while not session.complete:
                if self._shutdown.is_set():
                    session.abandoned = True
                    break
                if session.cancel.is_set() or not self._connection.is_connected:
                    break

                result = await self._correlator.call(fetch, cancel=session.cancel)
                if result is None:
                    session.abandoned = self._shutdown.is_set()
                    break

                if result.success:
                    session.emitted += 1
                    yield result
                else:
                    logger.debug(f"Stream sample skipped (code={result.code})")

                if session.complete:
                    break
                await self._pause(session)
        finally:
            unsubscribe()
            registration.revoke()
            if self._active is session:
                self._active = None
            logger.debug(f"Stream ended after {session.emitted} samples")

    async def _pause(self, session: StreamSession) -> None:
        waiters = [
            asyncio.ensure_future(session.cancel.wait()),
            asyncio.ensure_future(self._shutdown.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=session.interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
