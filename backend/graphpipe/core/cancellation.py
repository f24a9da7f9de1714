"""Request-scoped cancellation and deadline signal."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Callable, Dict, Optional

from graphpipe.errors import RequestCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cancellation signal shared by every node of one request.

    Running statements register a callback (typically a server-side cancel)
    that fires when the token is cancelled. A deadline, when set, is
    reported through ``remaining()`` so executors can bound their waits.
    """

    def __init__(
        self,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds else None
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel once; registered callbacks run on the calling thread."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancel callback failed", exc_info=True)

    def register(self, callback: Callable[[], None]) -> int:
        """Register a callback; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                handle = next(self._ids)
                self._callbacks[handle] = callback
                return handle
        callback()
        return -1

    def unregister(self, handle: int) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self.reason or "cancelled")
