"""Response correlation.

Turns one callback-style SDK request into an awaitable. The caller suspends
until either the SDK callback fires or the shutdown event is set; whichever
happens first wins and the other path becomes a no-op.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from .marshal import OneShotCallback
from .sdk.types import ResultCallback, SdkResult

logger = logging.getLogger(__name__)

# A request with its arguments bound, waiting for the completion callback,
# e.g. functools.partial(sdk.request_read_log_file, file_id, offset, size)
Operation = Callable[[ResultCallback], None]


class ResponseCorrelator:
    """Binds each outstanding SDK request to its single callback.

    Args:
        shutdown: Process-wide shutdown signal; abandons any pending call
    """

    def __init__(self, shutdown: asyncio.Event) -> None:
        self._shutdown = shutdown
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of calls currently waiting for a callback."""
        return self._pending

    async def call(
        self, operation: Operation, cancel: asyncio.Event | None = None
    ) -> SdkResult | None:
        """Issue a request and wait for its result.

        Args:
            operation: Request with its arguments bound, taking the callback
            cancel: Optional extra signal that abandons the wait (stream stop)

        Returns:
            The result, or None if shutdown (or ``cancel``) was signalled
            first. The command is then abandoned: the late callback is
            dropped and no reply is produced for it

        Raises:
            Whatever ``operation`` raises synchronously
        """
        if self._shutdown.is_set():
            return None

        loop = asyncio.get_running_loop()
        future: asyncio.Future[SdkResult] = loop.create_future()

        def resolve(code: int, payload: Any = None) -> None:
            if not future.done():
                future.set_result(SdkResult(code=int(code), payload=payload))

        callback = OneShotCallback(loop, resolve)
        try:
            operation(callback)
        except BaseException:
            callback.release()
            raise

        self._pending += 1
        waiters = [asyncio.ensure_future(self._shutdown.wait())]
        if cancel is not None:
            waiters.append(asyncio.ensure_future(cancel.wait()))
        try:
            await asyncio.wait({future, *waiters}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._pending -= 1
            for waiter in waiters:
                waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(*waiters, return_exceptions=True)
            if not future.done():
                callback.release()
                future.cancel()

        if future.cancelled():
            logger.debug("Request abandoned before its callback fired")
            return None
        return future.result()
