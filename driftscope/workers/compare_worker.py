"""
Workers for folder comparison and baseline capture.
"""

from __future__ import annotations

import os
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal

from driftscope.core.folder.baseline import BaselineManifest
from driftscope.core.folder.tree_adapter import ComparisonTreeUpdateAdapter
from driftscope.core.models import ComparisonResult, ComparisonSide, ComparisonStatus
from driftscope.services.orchestrator import ComparisonOrchestrator
from driftscope.services.progress import ComparisonProgressTracker
from driftscope.services.settings import CompareSettingsInput, ResolvedCompareSettings
from driftscope.workers.base_worker import BaseWorker, WorkerSignals


class CompareWorkerSignals(WorkerSignals):
    """Worker signals plus live tree notifications."""
    # Latest ComparisonTreeSnapshot
    tree_updated = pyqtSignal(object)

    # The single ComparisonNode that changed
    node_updated = pyqtSignal(object)


class _SignalProgressSink:
    """Counts engine progress and republishes it as worker signals."""

    def __init__(self, worker: BaseWorker):
        self.worker = worker
        self.tracker = ComparisonProgressTracker()

    def file_discovered(self, relative_path: str, left_size: Optional[int], right_size: Optional[int]) -> None:
        self.tracker.file_discovered(relative_path, left_size, right_size)
        self.worker.publish_progress(self.tracker.snapshot())

    def file_completed(self, relative_path: str, status: ComparisonStatus) -> None:
        self.tracker.file_completed(relative_path, status)
        self.worker.publish_progress(self.tracker.snapshot())

    def bytes_read(self, side: ComparisonSide, byte_count: int) -> None:
        # Per-chunk; surfaced with the next file event
        self.tracker.bytes_read(side, byte_count)


class FolderCompareWorker(BaseWorker):
    """
    Worker for comparing folders.

    Handles large directory trees without blocking the UI and streams
    partial trees through `tree_updated` and `node_updated`.
    """

    def __init__(
        self,
        settings: ResolvedCompareSettings,
        orchestrator: Optional[ComparisonOrchestrator] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.signals = CompareWorkerSignals()
        self.settings = settings
        self.orchestrator = orchestrator or ComparisonOrchestrator()
        self.resolved: Optional[ResolvedCompareSettings] = None

        self.adapter = ComparisonTreeUpdateAdapter(
            case_sensitive=settings.case_sensitive,
            root_name=os.path.basename(os.path.normpath(settings.left_path)),
        )
        self.adapter.add_tree_listener(self.signals.tree_updated.emit)
        self.adapter.add_node_listener(self.signals.node_updated.emit)
        self.progress_sink = _SignalProgressSink(self)

    def do_work(self) -> ComparisonResult:
        self.signals.status.emit(f"Comparing {self.settings.left_path}...")

        result, self.resolved = self.orchestrator.run(
            CompareSettingsInput(),
            progress_sink=self.progress_sink,
            update_sink=self.adapter,
            cancellation=self.cancellation,
            settings=self.settings,
        )

        self.signals.status.emit(str(result.summary))
        return result


class SnapshotWorker(BaseWorker):
    """Worker capturing a baseline manifest in the background."""

    def __init__(
        self,
        input: CompareSettingsInput,
        output_path: str,
        orchestrator: Optional[ComparisonOrchestrator] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.input = input
        self.output_path = output_path
        self.orchestrator = orchestrator or ComparisonOrchestrator()
        self.progress_sink = _SignalProgressSink(self)

    def do_work(self) -> BaselineManifest:
        self.signals.status.emit(f"Capturing {self.input.left_path}...")
        return self.orchestrator.create_snapshot(
            self.input,
            self.output_path,
            progress_sink=self.progress_sink,
            cancellation=self.cancellation,
        )
