"""
Folder comparison engine.

Compares a left directory tree against either a right directory tree or
a recorded baseline manifest and identifies:
- Identical files
- Modified files (quick metadata check or content digests)
- Entries only on the left or only on the right
- Type mismatches (file vs directory)
- Entries that could not be read

Directory discovery runs sequentially on the calling thread. In hash
mode every matched file pair is hashed on a bounded worker pool; the
final tree is assembled after all workers finished and is sorted by
name, so completion order never affects the result.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from driftscope.core.folder.baseline import BaselineManifest, ManifestNode
from driftscope.core.folder.paths import join_relative, name_sort_key, path_key
from driftscope.core.folder.scanner import PatternMatcher, TreeScanner
from driftscope.core.folder.summary import calculate_summary, determine_directory_status
from driftscope.core.folder.tree_adapter import ComparisonUpdateSink
from driftscope.core.models import (
    BaselineHashMissingError,
    BaselineMetadata,
    ComparisonCancelledError,
    ComparisonMode,
    ComparisonNode,
    ComparisonResult,
    ComparisonSide,
    ComparisonStatus,
    ConfigurationError,
    FileComparisonDetail,
    HashAlgorithm,
    HashComputationError,
    NodeType,
    RootEnumerationError,
    RootNotFoundError,
)
from driftscope.services.cancellation import CancellationToken
from driftscope.services.filesystem import FileSystem, FileSystemEntry, PhysicalFileSystem
from driftscope.services.hashing import FileHashCalculator
from driftscope.services.progress import ProgressSink


@dataclass
class CompareOptions:
    """Options for tree comparison."""
    mode: ComparisonMode = ComparisonMode.QUICK
    algorithms: tuple[HashAlgorithm, ...] = (HashAlgorithm.CRC32,)

    # Matching
    ignore_patterns: tuple[str, ...] = ()
    case_sensitive: bool = False
    follow_symlinks: bool = False

    # Quick mode: allowed modification time difference in seconds.
    # None means timestamps are not compared.
    mtime_tolerance: Optional[float] = None

    # Performance
    threads: int = field(default_factory=lambda: os.cpu_count() or 1)


# =============================================================================
# Comparison sides
# =============================================================================

@dataclass(frozen=True)
class _SideItem:
    """An entry on one side, live or recorded."""
    name: str
    node_type: NodeType
    size: Optional[int]
    modified: Optional[datetime]
    source: Any  # FileSystemEntry or ManifestNode

    @property
    def is_directory(self) -> bool:
        return self.node_type == NodeType.DIRECTORY


class _LiveTree:
    """A side backed by a file-system provider."""

    def __init__(
        self,
        file_system: FileSystem,
        side: ComparisonSide,
        options: CompareOptions,
        hash_calculator: FileHashCalculator,
        cancellation: CancellationToken,
    ):
        self.file_system = file_system
        self.side = side
        self.hash_calculator = hash_calculator
        self.scanner = TreeScanner(
            file_system,
            ignore_patterns=options.ignore_patterns,
            case_sensitive=options.case_sensitive,
            follow_symlinks=options.follow_symlinks,
            cancellation=cancellation,
        )

    def root(self, path: str) -> _SideItem:
        if not self.file_system.directory_exists(path):
            logging.error(f"ComparisonEngine - {self.side.value.capitalize()} root not found: {path}")
            raise RootNotFoundError(
                f"{self.side.value.capitalize()} directory '{path}' was not found."
            )
        entry = FileSystemEntry(
            name=os.path.basename(os.path.normpath(path)),
            path=path,
            entry_type=NodeType.DIRECTORY,
        )
        return _SideItem(entry.name, NodeType.DIRECTORY, None, None, entry)

    def children(self, item: _SideItem, relative_path: str) -> dict[str, _SideItem]:
        """List children keyed by name key. Raises OSError on failure."""
        entries = self.scanner.list_directory(item.source.path, relative_path)
        return {
            key: _SideItem(
                name=entry.name,
                node_type=entry.entry_type,
                size=None if entry.is_directory else entry.size,
                modified=entry.modified,
                source=entry,
            )
            for key, entry in entries.items()
        }

    def hashes(
        self,
        item: _SideItem,
        algorithms: Iterable[HashAlgorithm],
        cancellation: CancellationToken,
        progress_sink: Optional[ProgressSink],
    ) -> dict[HashAlgorithm, str]:
        return self.hash_calculator.compute_hashes(
            self.file_system,
            item.source,
            algorithms,
            cancellation=cancellation,
            progress_sink=progress_sink,
            side=self.side,
        )

    def recorded_hashes(self, item: _SideItem) -> Optional[dict[HashAlgorithm, str]]:
        return None


class _BaselineTree:
    """The right side replayed from a manifest. Never touches a file system."""

    side = ComparisonSide.RIGHT

    def __init__(self, manifest: BaselineManifest, options: CompareOptions):
        self.manifest = manifest
        self.case_sensitive = options.case_sensitive
        self.matcher = PatternMatcher(options.ignore_patterns, case_sensitive=options.case_sensitive)

    def root(self) -> _SideItem:
        node = self.manifest.root
        return _SideItem(node.name, NodeType.DIRECTORY, None, None, node)

    def children(self, item: _SideItem, relative_path: str) -> dict[str, _SideItem]:
        """Replay recorded children. Raises OSError for directories the capture could not list."""
        node: ManifestNode = item.source
        if node.error_message:
            raise OSError(f"Baseline capture failed here: {node.error_message}")

        children: dict[str, _SideItem] = {}
        for child in node.children:
            child_relative = join_relative(relative_path, child.name)
            if self.matcher.matches(child_relative, child.is_directory):
                continue
            children[path_key(child.name, self.case_sensitive)] = _SideItem(
                name=child.name,
                node_type=child.node_type,
                size=child.size,
                modified=child.modified,
                source=child,
            )
        return children

    def hashes(
        self,
        item: _SideItem,
        algorithms: Iterable[HashAlgorithm],
        cancellation: CancellationToken,
        progress_sink: Optional[ProgressSink],
    ) -> dict[HashAlgorithm, str]:
        recorded = item.source.hashes
        algorithms = list(algorithms)
        if item.source.error_message:
            raise BaselineHashMissingError(
                f"Baseline has no digests for '{item.source.relative_path}': {item.source.error_message}"
            )
        missing = [a.value for a in algorithms if a not in recorded]
        if missing:
            raise BaselineHashMissingError(
                f"Baseline manifest is missing {', '.join(missing)} for "
                f"'{item.source.relative_path}'."
            )
        return {a: recorded[a] for a in algorithms}

    def recorded_hashes(self, item: _SideItem) -> Optional[dict[HashAlgorithm, str]]:
        return dict(item.source.hashes) or None


_Side = Union[_LiveTree, _BaselineTree]


# =============================================================================
# Run state
# =============================================================================

@dataclass
class _PendingFile:
    """A matched file pair dispatched to the hash pool."""
    future: Future
    name: str
    relative_path: str
    left: _SideItem
    right: _SideItem
    node: Optional[ComparisonNode] = None


@dataclass
class _DirectoryPlan:
    """A matched directory whose final node is built after hashing."""
    name: str
    relative_path: str
    children: list[Union[ComparisonNode, _PendingFile, '_DirectoryPlan']] = field(default_factory=list)


@dataclass
class _RunContext:
    options: CompareOptions
    left: _Side
    right: _Side
    cancellation: CancellationToken
    progress_sink: Optional[ProgressSink]
    update_sink: Optional[ComparisonUpdateSink]
    executor: Optional[ThreadPoolExecutor] = None
    pending: list[_PendingFile] = field(default_factory=list)

    def discovered(self, relative_path: str, name: str) -> None:
        if self.update_sink is not None:
            self.update_sink.entry_discovered(relative_path, name)

    def file_discovered(self, relative_path: str, left: Optional[_SideItem], right: Optional[_SideItem]) -> None:
        if self.progress_sink is not None:
            self.progress_sink.file_discovered(
                relative_path,
                left.size if left is not None else None,
                right.size if right is not None else None,
            )

    def file_completed(self, node: ComparisonNode) -> None:
        if self.progress_sink is not None:
            self.progress_sink.file_completed(node.relative_path, node.status)

    def completed(self, node: ComparisonNode) -> None:
        if self.update_sink is not None:
            self.update_sink.node_completed(node)


# =============================================================================
# Engine
# =============================================================================

class ComparisonEngine:
    """
    Compares directory trees.

    Uses one of two strategies for matched files:
    - Quick: size plus modification time within tolerance, no reads
    - Hash: every configured digest on both sides, computed concurrently
    """

    def __init__(self, hash_calculator: Optional[FileHashCalculator] = None):
        self.hash_calculator = hash_calculator or FileHashCalculator()

    def compare(
        self,
        left_path: str,
        right_path: str,
        options: Optional[CompareOptions] = None,
        file_system: Optional[FileSystem] = None,
        right_file_system: Optional[FileSystem] = None,
        progress_sink: Optional[ProgressSink] = None,
        update_sink: Optional[ComparisonUpdateSink] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ComparisonResult:
        """
        Compare two live directories.

        Args:
            left_path: Left/source directory
            right_path: Right/target directory
            options: Comparison options
            file_system: Provider for the left side (and right, unless given)
            right_file_system: Provider for the right side
            progress_sink: Receives per-file progress
            update_sink: Receives streaming tree events
            cancellation: Shared cancellation signal

        Returns:
            ComparisonResult with the sorted tree and summary

        Raises:
            RootNotFoundError: If a root does not exist
            RootEnumerationError: If a root cannot be listed
            ComparisonCancelledError: If the run was cancelled
        """
        options = options or CompareOptions()
        cancellation = cancellation or CancellationToken()
        left_fs = file_system or PhysicalFileSystem()
        right_fs = right_file_system or left_fs

        left = _LiveTree(left_fs, ComparisonSide.LEFT, options, self.hash_calculator, cancellation)
        right = _LiveTree(right_fs, ComparisonSide.RIGHT, options, self.hash_calculator, cancellation)
        left_root = left.root(left_path)
        right_root = right.root(right_path)

        run = self._run(
            _RunContext(options, left, right, cancellation, progress_sink, update_sink),
            left_root,
            right_root,
        )
        return _build_result(left_path, right_path, run, None)

    def compare_with_baseline(
        self,
        left_path: str,
        manifest: BaselineManifest,
        options: Optional[CompareOptions] = None,
        manifest_path: str = "",
        file_system: Optional[FileSystem] = None,
        progress_sink: Optional[ProgressSink] = None,
        update_sink: Optional[ComparisonUpdateSink] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ComparisonResult:
        """
        Compare a live directory against a recorded manifest.

        The manifest's recorded values act as the right side; no right
        file system is read.

        Raises:
            ConfigurationError: If hash mode requests digests the manifest lacks
            RootNotFoundError: If the left root does not exist
            RootEnumerationError: If the left root cannot be listed
            ComparisonCancelledError: If the run was cancelled
        """
        options = options or CompareOptions()
        cancellation = cancellation or CancellationToken()

        if options.mode == ComparisonMode.HASH and not manifest.covers(options.algorithms):
            missing = [a.value for a in options.algorithms if a not in manifest.algorithms]
            recorded = ', '.join(a.value for a in manifest.algorithms) or 'none'
            logging.error(f"ComparisonEngine - Baseline {manifest_path} lacks algorithms: {missing}")
            raise ConfigurationError(
                f"Baseline manifest '{manifest_path or manifest.source_path}' does not record "
                f"{', '.join(missing)}; recorded: {recorded}. "
                f"Capture a new baseline with the requested algorithms."
            )

        left = _LiveTree(
            file_system or PhysicalFileSystem(),
            ComparisonSide.LEFT,
            options,
            self.hash_calculator,
            cancellation,
        )
        right = _BaselineTree(manifest, options)
        left_root = left.root(left_path)

        run = self._run(
            _RunContext(options, left, right, cancellation, progress_sink, update_sink),
            left_root,
            right.root(),
        )
        metadata = BaselineMetadata(
            manifest_path=manifest_path,
            source_path=manifest.source_path,
            created_at=manifest.captured_at,
            algorithms=manifest.algorithms,
        )
        return _build_result(left_path, None, run, metadata)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _run(self, ctx: _RunContext, left_root: _SideItem, right_root: _SideItem) -> tuple[ComparisonNode, float]:
        start_time = time.time()
        ctx.cancellation.raise_if_cancelled()

        # Both roots must be listable before any node is produced
        left_children = self._list_root(ctx.left, left_root)
        right_children = self._list_root(ctx.right, right_root)

        if ctx.options.mode == ComparisonMode.HASH:
            ctx.executor = ThreadPoolExecutor(
                max_workers=max(1, ctx.options.threads),
                thread_name_prefix='driftscope-hash',
            )

        try:
            plan = self._compare_directories(ctx, left_root.name, "", left_children, right_children)
            self._wait_for_hashes(ctx)
            root = self._resolve(ctx, plan)
        except ComparisonCancelledError:
            logging.info("ComparisonEngine - Comparison cancelled")
            raise
        finally:
            if ctx.executor is not None:
                ctx.executor.shutdown(wait=True, cancel_futures=True)

        return root, time.time() - start_time

    def _list_root(self, side: _Side, root: _SideItem) -> dict[str, _SideItem]:
        try:
            return side.children(root, "")
        except OSError as e:
            path = getattr(root.source, 'path', root.name)
            logging.error(f"ComparisonEngine - Cannot enumerate {side.side.value} root {path}: {e}")
            raise RootEnumerationError(
                f"{side.side.value.capitalize()} directory '{path}' could not be enumerated: {e}"
            ) from e

    def _compare_directories(
        self,
        ctx: _RunContext,
        name: str,
        relative_path: str,
        left_children: dict[str, _SideItem],
        right_children: dict[str, _SideItem],
    ) -> _DirectoryPlan:
        ctx.discovered(relative_path, name)
        plan = _DirectoryPlan(name=name, relative_path=relative_path)

        for key in sorted(set(left_children) | set(right_children)):
            ctx.cancellation.raise_if_cancelled()

            left = left_children.get(key)
            right = right_children.get(key)
            child_name = (left or right).name
            child_relative = join_relative(relative_path, child_name)

            if left is not None and right is not None:
                if left.is_directory and right.is_directory:
                    plan.children.append(
                        self._compare_matched_directory(ctx, child_name, child_relative, left, right)
                    )
                elif left.is_directory or right.is_directory:
                    plan.children.append(self._type_mismatch(ctx, child_name, child_relative, left, right))
                else:
                    plan.children.append(self._compare_files(ctx, child_name, child_relative, left, right))
            elif left is not None:
                plan.children.append(
                    self._single_side(ctx, ctx.left, left, child_relative, ComparisonStatus.LEFT_ONLY)
                )
            else:
                plan.children.append(
                    self._single_side(ctx, ctx.right, right, child_relative, ComparisonStatus.RIGHT_ONLY)
                )

        return plan

    def _compare_matched_directory(
        self,
        ctx: _RunContext,
        name: str,
        relative_path: str,
        left: _SideItem,
        right: _SideItem,
    ) -> Union[_DirectoryPlan, ComparisonNode]:
        try:
            left_children = ctx.left.children(left, relative_path)
            right_children = ctx.right.children(right, relative_path)
        except OSError as e:
            return self._directory_error(ctx, name, relative_path, e)

        return self._compare_directories(ctx, name, relative_path, left_children, right_children)

    def _directory_error(self, ctx: _RunContext, name: str, relative_path: str, error: OSError) -> ComparisonNode:
        message = f"Failed to enumerate directory: {error}"
        logging.warning(f"ComparisonEngine - {relative_path}: {message}")
        node = ComparisonNode(
            name=name,
            relative_path=relative_path,
            node_type=NodeType.DIRECTORY,
            status=ComparisonStatus.ERROR,
            error_message=message,
        )
        ctx.completed(node)
        return node

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _compare_files(
        self,
        ctx: _RunContext,
        name: str,
        relative_path: str,
        left: _SideItem,
        right: _SideItem,
    ) -> Union[ComparisonNode, _PendingFile]:
        ctx.file_discovered(relative_path, left, right)

        if ctx.options.mode == ComparisonMode.QUICK:
            equal = left.size == right.size and self._within_tolerance(
                left.modified, right.modified, ctx.options.mtime_tolerance
            )
            node = _file_node(
                name,
                relative_path,
                ComparisonStatus.EQUAL if equal else ComparisonStatus.DIFFERENT,
                left,
                right,
                left_hashes=ctx.left.recorded_hashes(left),
                right_hashes=ctx.right.recorded_hashes(right),
            )
            ctx.file_completed(node)
            ctx.completed(node)
            return node

        future = ctx.executor.submit(self._hash_pair, ctx, name, relative_path, left, right)
        pending = _PendingFile(future, name, relative_path, left, right)
        ctx.pending.append(pending)
        return pending

    @staticmethod
    def _within_tolerance(
        left: Optional[datetime],
        right: Optional[datetime],
        tolerance: Optional[float],
    ) -> bool:
        if tolerance is None:
            return True
        if left is None or right is None:
            return False
        return abs((left - right).total_seconds()) <= tolerance

    def _hash_pair(
        self,
        ctx: _RunContext,
        name: str,
        relative_path: str,
        left: _SideItem,
        right: _SideItem,
    ) -> ComparisonNode:
        """Hash one matched pair. Runs on a pool worker."""
        algorithms = ctx.options.algorithms
        try:
            left_hashes = ctx.left.hashes(left, algorithms, ctx.cancellation, ctx.progress_sink)
            right_hashes = ctx.right.hashes(right, algorithms, ctx.cancellation, ctx.progress_sink)
        except (HashComputationError, BaselineHashMissingError) as e:
            node = self._file_error(name, relative_path, left, right, str(e))
        else:
            equal = left.size == right.size and all(
                left_hashes[a] == right_hashes[a] for a in algorithms
            )
            node = _file_node(
                name,
                relative_path,
                ComparisonStatus.EQUAL if equal else ComparisonStatus.DIFFERENT,
                left,
                right,
                left_hashes=left_hashes,
                right_hashes=right_hashes,
            )

        ctx.file_completed(node)
        ctx.completed(node)
        return node

    @staticmethod
    def _file_error(
        name: str,
        relative_path: str,
        left: _SideItem,
        right: _SideItem,
        message: str,
    ) -> ComparisonNode:
        logging.warning(f"ComparisonEngine - {relative_path}: {message}")
        return _file_node(name, relative_path, ComparisonStatus.ERROR, left, right, error_message=message)

    def _wait_for_hashes(self, ctx: _RunContext) -> None:
        """Block until every dispatched pair finished, honouring cancellation."""
        by_future = {pending.future: pending for pending in ctx.pending}
        not_done = set(by_future)

        while not_done:
            ctx.cancellation.raise_if_cancelled()
            done, not_done = wait(not_done, timeout=0.1, return_when=FIRST_COMPLETED)

            for future in done:
                pending = by_future[future]
                try:
                    pending.node = future.result()
                except ComparisonCancelledError:
                    raise
                except Exception as e:
                    pending.node = self._file_error(
                        pending.name, pending.relative_path, pending.left, pending.right, str(e)
                    )
                    ctx.file_completed(pending.node)
                    ctx.completed(pending.node)

        ctx.cancellation.raise_if_cancelled()

    # ------------------------------------------------------------------
    # Single-side entries and type mismatches
    # ------------------------------------------------------------------

    def _single_side(
        self,
        ctx: _RunContext,
        side: _Side,
        item: _SideItem,
        relative_path: str,
        status: ComparisonStatus,
    ) -> ComparisonNode:
        node = self._build_single_side(ctx, side, item, relative_path, status)
        ctx.completed(node)
        return node

    def _build_single_side(
        self,
        ctx: _RunContext,
        side: _Side,
        item: _SideItem,
        relative_path: str,
        status: ComparisonStatus,
    ) -> ComparisonNode:
        is_left = side is ctx.left

        if not item.is_directory:
            ctx.file_discovered(relative_path, item if is_left else None, None if is_left else item)
            recorded = side.recorded_hashes(item)
            node = _file_node(
                item.name,
                relative_path,
                status,
                item if is_left else None,
                None if is_left else item,
                left_hashes=recorded if is_left else None,
                right_hashes=None if is_left else recorded,
            )
            ctx.file_completed(node)
            return node

        ctx.cancellation.raise_if_cancelled()
        try:
            children = side.children(item, relative_path)
        except OSError as e:
            message = f"Failed to enumerate directory: {e}"
            logging.warning(f"ComparisonEngine - {relative_path}: {message}")
            return ComparisonNode(
                name=item.name,
                relative_path=relative_path,
                node_type=NodeType.DIRECTORY,
                status=ComparisonStatus.ERROR,
                error_message=message,
            )

        sort_key = name_sort_key(ctx.options.case_sensitive)
        nodes = [
            self._build_single_side(ctx, side, child, join_relative(relative_path, child.name), status)
            for child in sorted(children.values(), key=lambda c: sort_key(c.name))
        ]
        return ComparisonNode(
            name=item.name,
            relative_path=relative_path,
            node_type=NodeType.DIRECTORY,
            status=status,
            children=tuple(nodes),
        )

    def _type_mismatch(
        self,
        ctx: _RunContext,
        name: str,
        relative_path: str,
        left: _SideItem,
        right: _SideItem,
    ) -> ComparisonNode:
        if left.is_directory:
            note = "Left side is a directory while right side is a file."
            file_left, file_right = None, right
        else:
            note = "Left side is a file while right side is a directory."
            file_left, file_right = left, None

        ctx.file_discovered(relative_path, file_left, file_right)
        node = _file_node(name, relative_path, ComparisonStatus.DIFFERENT, file_left, file_right, note=note)
        ctx.file_completed(node)
        ctx.completed(node)
        return node

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _resolve(self, ctx: _RunContext, plan: _DirectoryPlan) -> ComparisonNode:
        sort_key = name_sort_key(ctx.options.case_sensitive)
        children: list[ComparisonNode] = []

        for child in plan.children:
            if isinstance(child, _DirectoryPlan):
                children.append(self._resolve(ctx, child))
            elif isinstance(child, _PendingFile):
                children.append(child.node)
            else:
                children.append(child)

        children.sort(key=lambda node: sort_key(node.name))
        return ComparisonNode(
            name=plan.name,
            relative_path=plan.relative_path,
            node_type=NodeType.DIRECTORY,
            status=determine_directory_status(child.status for child in children),
            children=tuple(children),
        )


def _file_node(
    name: str,
    relative_path: str,
    status: ComparisonStatus,
    left: Optional[_SideItem],
    right: Optional[_SideItem],
    left_hashes: Optional[dict[HashAlgorithm, str]] = None,
    right_hashes: Optional[dict[HashAlgorithm, str]] = None,
    error_message: Optional[str] = None,
    note: Optional[str] = None,
) -> ComparisonNode:
    detail = FileComparisonDetail(
        left_size=left.size if left is not None else None,
        right_size=right.size if right is not None else None,
        left_modified=left.modified if left is not None else None,
        right_modified=right.modified if right is not None else None,
        left_hashes=left_hashes,
        right_hashes=right_hashes,
        error_message=error_message,
        note=note,
    )
    return ComparisonNode(
        name=name,
        relative_path=relative_path,
        node_type=NodeType.FILE,
        status=status,
        detail=detail,
    )


def _build_result(
    left_path: str,
    right_path: Optional[str],
    run: tuple[ComparisonNode, float],
    baseline: Optional[BaselineMetadata],
) -> ComparisonResult:
    root, elapsed = run
    summary = calculate_summary(root)
    logging.info(f"ComparisonEngine - Compared {left_path} in {elapsed:.2f}s: {summary}")
    return ComparisonResult(
        left_path=left_path,
        right_path=right_path,
        root=root,
        summary=summary,
        baseline=baseline,
        compare_time=elapsed,
    )
