"""Cross-thread callback marshaling.

The Device SDK invokes callbacks from its own thread. These wrappers turn a
consumer callback into something the SDK thread can call safely: the call is
enqueued onto the consumer's asyncio loop with ``call_soon_threadsafe`` and
never runs on the SDK thread itself.

Two lifetimes are supported:

- ``OneShotCallback``: a request completion. Delivered at most once; the
  reference to the consumer target is dropped on first use.
- ``CallbackRegistration``: a long-lived notification (connect/disconnect).
  Stays valid until ``revoke()``; a call that races with revocation is
  either delivered before revocation became visible or silently dropped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class OneShotCallback:
    """Proxy callable invoked at most once, from any thread.

    Args:
        loop: Event loop the target must run on
        target: Consumer callable; receives the SDK callback arguments
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, target: Callable[..., Any]) -> None:
        self._loop = loop
        self._target: Callable[..., Any] | None = target
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        with self._lock:
            return self._target is None

    def __call__(self, *args: Any) -> bool:
        """Enqueue the target on the loop. Returns False if already used or released."""
        with self._lock:
            target, self._target = self._target, None
        if target is None:
            logger.debug("One-shot callback invoked after use or release")
            return False
        try:
            self._loop.call_soon_threadsafe(target, *args)
        except RuntimeError:
            # Loop already closed; nothing is left to deliver to
            logger.debug("Dropping callback: event loop is closed")
            return False
        return True

    def release(self) -> None:
        """Drop the target without delivering. Idempotent."""
        with self._lock:
            self._target = None


class CallbackRegistration:
    """Long-lived proxy for SDK notifications.

    Every call is forwarded to the loop until ``revoke()``. The revoked check
    happens twice: on the SDK thread before enqueueing and on the loop before
    running the target, so nothing reaches the consumer once ``revoke()`` has
    returned on the loop thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, target: Callable[..., Any]) -> None:
        self._loop = loop
        self._target = target
        self._lock = threading.Lock()
        self._revoked = False

    @property
    def revoked(self) -> bool:
        with self._lock:
            return self._revoked

    def __call__(self, *args: Any) -> bool:
        with self._lock:
            if self._revoked:
                return False
            try:
                self._loop.call_soon_threadsafe(self._deliver, args)
            except RuntimeError:
                logger.debug("Dropping notification: event loop is closed")
                return False
        return True

    def _deliver(self, args: tuple[Any, ...]) -> None:
        with self._lock:
            if self._revoked:
                return
            target = self._target
        target(*args)

    def revoke(self) -> None:
        """Stop delivering. Idempotent; safe from any thread."""
        with self._lock:
            self._revoked = True
