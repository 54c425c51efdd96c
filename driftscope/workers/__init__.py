"""
Background workers for non-blocking operations.

Provides QThread-based workers for:
- Folder comparison with live tree updates
- Baseline capture

All workers use Qt signals for thread-safe communication
with the UI thread.
"""

from driftscope.workers.base_worker import (
    BaseWorker,
    WorkerSignals,
    WorkerState,
    WorkerThread,
)
from driftscope.workers.compare_worker import (
    CompareWorkerSignals,
    FolderCompareWorker,
    SnapshotWorker,
)

__all__ = [
    # Base
    'BaseWorker',
    'WorkerSignals',
    'WorkerState',
    'WorkerThread',
    # Compare
    'CompareWorkerSignals',
    'FolderCompareWorker',
    'SnapshotWorker',
]
