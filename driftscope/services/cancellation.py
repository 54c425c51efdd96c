"""
Cooperative cancellation shared by discovery, hashing and the wait barrier.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from driftscope.core.models import ComparisonCancelledError


class CancellationToken:
    """
    A one-way cancellation signal.

    Once cancelled it stays cancelled. Timeouts cancel the same token
    as an explicit request.
    """

    def __init__(self):
        self._event = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ComparisonCancelledError when cancellation was requested."""
        if self._event.is_set():
            raise ComparisonCancelledError("The comparison was cancelled.")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout elapses."""
        return self._event.wait(timeout)

    def cancel_after(self, seconds: float) -> None:
        """Cancel automatically after the given delay."""
        def _expire():
            logging.info(f"CancellationToken - Timeout of {seconds}s elapsed, cancelling")
            self.cancel()

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(seconds, _expire)
            self._timer.daemon = True
            self._timer.start()

    def dispose(self) -> None:
        """Stop any pending timeout timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
