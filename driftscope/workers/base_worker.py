"""
Qt plumbing shared by the comparison workers.

A worker owns a CancellationToken that the engine observes. Cancelling
the worker (or its thread) cancels the token; the engine then raises
ComparisonCancelledError, which the worker turns into the `cancelled`
signal instead of `error`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, Optional

from PyQt6.QtCore import QMutex, QMutexLocker, QObject, QThread, pyqtSignal, pyqtSlot

from driftscope.core.models import ComparisonCancelledError
from driftscope.services.cancellation import CancellationToken
from driftscope.services.progress import ComparisonProgressSnapshot


class WorkerState(Enum):
    """Lifecycle of a worker."""
    PENDING = auto()
    RUNNING = auto()
    CANCELLING = auto()
    CANCELLED = auto()
    COMPLETED = auto()
    FAILED = auto()


class WorkerSignals(QObject):
    """
    Signals emitted by a worker.

    Emitted from the worker's thread; queued connections carry them to
    the UI thread.
    """
    # (files completed, files discovered, last relative path)
    progress = pyqtSignal(int, int, str)

    # ComparisonProgressSnapshot with byte counts and rates
    progress_detail = pyqtSignal(object)

    status = pyqtSignal(str)
    started = pyqtSignal()

    # ComparisonResult or BaselineManifest
    finished = pyqtSignal(object)

    # (exception class name, message)
    error = pyqtSignal(str, str)

    cancelled = pyqtSignal()
    state_changed = pyqtSignal(object)


class WorkerMeta(type(QObject), type(ABC)):
    pass


class BaseWorker(QObject, ABC, metaclass=WorkerMeta):
    """
    Runs `do_work` once and reports the outcome through `signals`.

    Usage:
        worker = FolderCompareWorker(settings)
        thread = WorkerThread(worker)
        worker.signals.finished.connect(show_result)
        thread.start()
    """

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.signals = WorkerSignals()
        self._mutex = QMutex()
        self._state = WorkerState.PENDING
        self._token = CancellationToken()
        self._result: Any = None
        self._error: Optional[tuple[str, str]] = None

    @property
    def state(self) -> WorkerState:
        with QMutexLocker(self._mutex):
            return self._state

    def _set_state(self, state: WorkerState) -> None:
        with QMutexLocker(self._mutex):
            self._state = state
        self.signals.state_changed.emit(state)

    @property
    def cancellation(self) -> CancellationToken:
        """Token to pass to long-running calls."""
        return self._token

    @property
    def is_cancelled(self) -> bool:
        return self._token.is_cancelled

    @property
    def result(self) -> Any:
        return self._result

    @property
    def error(self) -> Optional[tuple[str, str]]:
        return self._error

    def cancel(self) -> None:
        """Cancel the token; a running comparison stops at its next check."""
        self._token.cancel()
        if self.state == WorkerState.RUNNING:
            self._set_state(WorkerState.CANCELLING)

    @pyqtSlot()
    def run(self) -> None:
        """Entry point for the thread. Override `do_work`, not this."""
        self._set_state(WorkerState.RUNNING)
        self.signals.started.emit()

        try:
            result = self.do_work()
        except ComparisonCancelledError:
            self._finish_cancelled()
            return
        except Exception as e:
            logging.exception(f"{type(self).__name__} - Work failed")
            self._error = (type(e).__name__, str(e))
            self._set_state(WorkerState.FAILED)
            self.signals.error.emit(*self._error)
            return

        if self.is_cancelled:
            self._finish_cancelled()
            return

        self._result = result
        self._set_state(WorkerState.COMPLETED)
        self.signals.finished.emit(result)

    def _finish_cancelled(self) -> None:
        logging.info(f"{type(self).__name__} - Cancelled")
        self._set_state(WorkerState.CANCELLED)
        self.signals.cancelled.emit()

    @abstractmethod
    def do_work(self) -> Any:
        """
        Produce the worker's result.

        Raises:
            ComparisonCancelledError: Once `cancellation` was cancelled
        """

    def publish_progress(self, snapshot: ComparisonProgressSnapshot) -> None:
        """Emit both progress signals for one counter snapshot."""
        self.signals.progress.emit(
            snapshot.files_completed,
            snapshot.files_discovered,
            snapshot.last_path or "",
        )
        self.signals.progress_detail.emit(snapshot)


class WorkerThread(QThread):
    """QThread that owns one worker and quits when the worker is done."""

    def __init__(self, worker: BaseWorker, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.worker = worker
        self.worker.moveToThread(self)

        self.started.connect(self.worker.run)
        for signal in (worker.signals.finished, worker.signals.error, worker.signals.cancelled):
            signal.connect(self.quit)

    def cancel(self) -> None:
        self.worker.cancel()
