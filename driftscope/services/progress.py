"""
Progress reporting for comparison runs.

Provides:
- ProgressSink protocol consumed by external renderers
- ComparisonProgressTracker, a thread-safe counter implementation
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from driftscope.core.models import ComparisonSide, ComparisonStatus


@runtime_checkable
class ProgressSink(Protocol):
    """Receives progress notifications from the engine and hash workers."""

    def file_discovered(
        self,
        relative_path: str,
        left_size: Optional[int],
        right_size: Optional[int],
    ) -> None:
        ...

    def file_completed(self, relative_path: str, status: ComparisonStatus) -> None:
        ...

    def bytes_read(self, side: ComparisonSide, byte_count: int) -> None:
        ...


@dataclass(frozen=True)
class ComparisonProgressSnapshot:
    """Point-in-time copy of the progress counters."""
    files_discovered: int
    files_completed: int
    left_bytes: int
    right_bytes: int
    elapsed: float
    last_path: Optional[str] = None

    @property
    def files_pending(self) -> int:
        return max(self.files_discovered - self.files_completed, 0)

    @property
    def total_bytes(self) -> int:
        return self.left_bytes + self.right_bytes

    @property
    def percent(self) -> float:
        if self.files_discovered == 0:
            return 0.0
        return self.files_completed / self.files_discovered * 100

    @property
    def files_per_second(self) -> float:
        return self.files_completed / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def bytes_per_second(self) -> float:
        return self.total_bytes / self.elapsed if self.elapsed > 0 else 0.0


class ComparisonProgressTracker:
    """
    Lock-protected ProgressSink implementation.

    Hash workers report bytes concurrently; every increment happens
    under one lock.
    """

    def __init__(self, clock=time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._started = clock()
        self._discovered = 0
        self._completed = 0
        self._left_bytes = 0
        self._right_bytes = 0
        self._last_path: Optional[str] = None

    def file_discovered(
        self,
        relative_path: str,
        left_size: Optional[int],
        right_size: Optional[int],
    ) -> None:
        with self._lock:
            self._discovered += 1
            self._last_path = relative_path

    def file_completed(self, relative_path: str, status: ComparisonStatus) -> None:
        with self._lock:
            self._completed += 1
            self._last_path = relative_path

    def bytes_read(self, side: ComparisonSide, byte_count: int) -> None:
        with self._lock:
            if side == ComparisonSide.LEFT:
                self._left_bytes += byte_count
            else:
                self._right_bytes += byte_count

    def snapshot(self) -> ComparisonProgressSnapshot:
        """Return a consistent copy of all counters."""
        with self._lock:
            return ComparisonProgressSnapshot(
                files_discovered=self._discovered,
                files_completed=self._completed,
                left_bytes=self._left_bytes,
                right_bytes=self._right_bytes,
                elapsed=self._clock() - self._started,
                last_path=self._last_path,
            )
