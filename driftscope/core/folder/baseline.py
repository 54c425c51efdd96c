"""
Baseline manifests: recorded snapshots of one directory tree.

A manifest stores relative paths, sizes, modification times and
optionally digests for every file under a root. It can later stand in
for the right side of a comparison to detect drift of a live directory.

Provides:
- ManifestNode / BaselineManifest data models
- BaselineManifestBuilder to capture a live tree
- load_manifest / save_manifest with a stable camelCase JSON schema
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from driftscope.core.folder.paths import join_relative, name_sort_key
from driftscope.core.folder.scanner import TreeScanner
from driftscope.core.models import (
    ComparisonSide,
    ConfigurationError,
    ComparisonStatus,
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


MANIFEST_VERSION = "1.0"


@dataclass(frozen=True)
class ManifestNode:
    """One recorded file or directory."""
    name: str
    relative_path: str
    node_type: NodeType
    size: Optional[int] = None
    modified: Optional[datetime] = None
    hashes: dict[HashAlgorithm, str] = field(default_factory=dict)
    children: tuple['ManifestNode', ...] = ()
    # Set when the entry could not be read during capture
    error_message: Optional[str] = None

    @property
    def is_directory(self) -> bool:
        return self.node_type == NodeType.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.node_type == NodeType.FILE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            'name': self.name,
            'relativePath': self.relative_path,
            'nodeType': self.node_type.value,
        }
        if self.is_file:
            data['size'] = self.size
            data['modified'] = _format_time(self.modified)
            data['hashes'] = {a.value: digest for a, digest in self.hashes.items()}
        else:
            data['children'] = [child.to_dict() for child in self.children]
        if self.error_message:
            data['errorMessage'] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'ManifestNode':
        try:
            node_type = NodeType(data.get('nodeType', 'File'))
        except ValueError:
            raise ConfigurationError(f"Unknown manifest node type '{data.get('nodeType')}'.")

        hashes = {
            HashAlgorithm.from_string(name): str(digest).lower()
            for name, digest in (data.get('hashes') or {}).items()
        }
        return cls(
            name=data.get('name', ''),
            relative_path=data.get('relativePath', ''),
            node_type=node_type,
            size=data.get('size'),
            modified=_parse_time(data.get('modified')),
            hashes=hashes,
            children=tuple(cls.from_dict(child) for child in data.get('children') or []),
            error_message=data.get('errorMessage'),
        )


@dataclass(frozen=True)
class BaselineManifest:
    """A captured directory tree."""
    source_path: str
    captured_at: datetime
    algorithms: tuple[HashAlgorithm, ...]
    root: ManifestNode
    ignore_patterns: tuple[str, ...] = ()
    case_sensitive: bool = False
    version: str = MANIFEST_VERSION

    def covers(self, algorithms: Iterable[HashAlgorithm]) -> bool:
        """Check whether every requested algorithm was recorded."""
        return set(algorithms) <= set(self.algorithms)

    def failed_entries(self) -> list[ManifestNode]:
        """Entries that could not be read during capture, depth-first."""
        failed = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node.error_message:
                failed.append(node)
            stack.extend(reversed(node.children))
        return failed

    def to_dict(self) -> dict[str, Any]:
        return {
            'version': self.version,
            'capturedAt': _format_time(self.captured_at),
            'sourcePath': self.source_path,
            'algorithms': [a.value for a in self.algorithms],
            'ignorePatterns': list(self.ignore_patterns),
            'caseSensitive': self.case_sensitive,
            'root': self.root.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'BaselineManifest':
        version = data.get('version', MANIFEST_VERSION)
        if version != MANIFEST_VERSION:
            raise ConfigurationError(
                f"Unsupported baseline manifest version '{version}'; expected '{MANIFEST_VERSION}'."
            )
        if 'root' not in data:
            raise ConfigurationError("Baseline manifest has no root entry.")

        captured_at = _parse_time(data.get('capturedAt') or data.get('createdAt'))
        return cls(
            source_path=data.get('sourcePath', ''),
            captured_at=captured_at or datetime.now(timezone.utc),
            algorithms=tuple(HashAlgorithm.from_string(a) for a in data.get('algorithms') or []),
            root=ManifestNode.from_dict(data['root']),
            ignore_patterns=tuple(data.get('ignorePatterns') or []),
            case_sensitive=bool(data.get('caseSensitive', False)),
            version=version,
        )


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ConfigurationError(f"Invalid timestamp '{value}' in baseline manifest.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def load_manifest(path: str | Path) -> BaselineManifest:
    """
    Read a manifest from disk.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.is_file():
        logging.error(f"BaselineManifest - Manifest not found: {path}")
        raise ConfigurationError(f"Baseline manifest '{path}' was not found.")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logging.error(f"BaselineManifest - Could not read manifest {path}: {e}")
        raise ConfigurationError(f"Baseline manifest '{path}' could not be read: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Baseline manifest '{path}' is not a JSON object.")
    return BaselineManifest.from_dict(data)


def save_manifest(manifest: BaselineManifest, path: str | Path) -> None:
    """Write a manifest as indented UTF-8 JSON, creating parent folders."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(manifest.to_dict(), f, indent=2)
    logging.info(f"BaselineManifest - Saved manifest to {path}")


class BaselineManifestBuilder:
    """Captures a live directory tree into a BaselineManifest."""

    def __init__(
        self,
        file_system: Optional[FileSystem] = None,
        hash_calculator: Optional[FileHashCalculator] = None,
    ):
        self.file_system = file_system or PhysicalFileSystem()
        self.hash_calculator = hash_calculator or FileHashCalculator()

    def capture(
        self,
        root_path: str,
        algorithms: Iterable[HashAlgorithm] = (),
        ignore_patterns: Iterable[str] = (),
        case_sensitive: bool = False,
        follow_symlinks: bool = False,
        cancellation: Optional[CancellationToken] = None,
        progress_sink: Optional[ProgressSink] = None,
    ) -> BaselineManifest:
        """
        Walk a root and record every visible file.

        Args:
            root_path: Directory to capture
            algorithms: Digests to record for each file (may be empty)
            ignore_patterns: Gitignore-style globs excluded from the capture
            case_sensitive: Name matching mode stored with the manifest
            follow_symlinks: Whether symbolic links are traversed
            cancellation: Checked per directory and per hash chunk
            progress_sink: Receives per-file progress

        Returns:
            The captured manifest

        Raises:
            RootNotFoundError: If the root is not a directory
            RootEnumerationError: If the root cannot be listed
        """
        algorithms = tuple(dict.fromkeys(algorithms))
        ignore_patterns = tuple(ignore_patterns)

        if not self.file_system.directory_exists(root_path):
            logging.error(f"BaselineManifestBuilder - Root not found: {root_path}")
            raise RootNotFoundError(f"Directory '{root_path}' was not found.")

        scanner = TreeScanner(
            self.file_system,
            ignore_patterns=ignore_patterns,
            case_sensitive=case_sensitive,
            follow_symlinks=follow_symlinks,
            cancellation=cancellation,
        )

        try:
            root_children = scanner.list_directory(root_path, "")
        except OSError as e:
            logging.error(f"BaselineManifestBuilder - Cannot enumerate root {root_path}: {e}")
            raise RootEnumerationError(f"Directory '{root_path}' could not be enumerated: {e}") from e

        context = _CaptureContext(scanner, algorithms, cancellation, progress_sink)
        root = self._capture_directory(
            context, os.path.basename(os.path.normpath(root_path)), "", root_children
        )

        logging.info(f"BaselineManifestBuilder - Captured {root_path}")
        return BaselineManifest(
            source_path=root_path,
            captured_at=datetime.now(timezone.utc),
            algorithms=algorithms,
            root=root,
            ignore_patterns=ignore_patterns,
            case_sensitive=case_sensitive,
        )

    def _capture_directory(
        self,
        context: '_CaptureContext',
        name: str,
        relative_path: str,
        entries: dict[str, FileSystemEntry],
    ) -> ManifestNode:
        sort_key = name_sort_key(context.scanner.case_sensitive)
        children: list[ManifestNode] = []

        for entry in sorted(entries.values(), key=lambda e: sort_key(e.name)):
            child_relative = join_relative(relative_path, entry.name)

            if entry.is_directory:
                try:
                    grandchildren = context.scanner.list_directory(entry.path, child_relative)
                except OSError as e:
                    logging.warning(
                        f"BaselineManifestBuilder - Cannot enumerate {child_relative}, "
                        f"recording it as failed: {e}"
                    )
                    children.append(ManifestNode(
                        name=entry.name,
                        relative_path=child_relative,
                        node_type=NodeType.DIRECTORY,
                        error_message=f"Failed to enumerate directory during capture: {e}",
                    ))
                    continue
                children.append(
                    self._capture_directory(context, entry.name, child_relative, grandchildren)
                )
            else:
                children.append(self._capture_file(context, entry, child_relative))

        return ManifestNode(
            name=name,
            relative_path=relative_path,
            node_type=NodeType.DIRECTORY,
            children=tuple(children),
        )

    def _capture_file(
        self,
        context: '_CaptureContext',
        entry: FileSystemEntry,
        relative_path: str,
    ) -> ManifestNode:
        if context.progress_sink is not None:
            context.progress_sink.file_discovered(relative_path, entry.size, None)

        hashes: dict[HashAlgorithm, str] = {}
        error_message = None
        if context.algorithms:
            try:
                hashes = self.hash_calculator.compute_hashes(
                    self.file_system,
                    entry,
                    context.algorithms,
                    cancellation=context.cancellation,
                    progress_sink=context.progress_sink,
                    side=ComparisonSide.LEFT,
                )
            except HashComputationError as e:
                logging.warning(
                    f"BaselineManifestBuilder - Recording {relative_path} without hashes: {e}"
                )
                error_message = f"Failed to hash during capture: {e}"

        if context.progress_sink is not None:
            context.progress_sink.file_completed(relative_path, ComparisonStatus.LEFT_ONLY)

        return ManifestNode(
            name=entry.name,
            relative_path=relative_path,
            node_type=NodeType.FILE,
            size=entry.size,
            modified=entry.modified,
            hashes=hashes,
            error_message=error_message,
        )


@dataclass
class _CaptureContext:
    scanner: TreeScanner
    algorithms: tuple[HashAlgorithm, ...]
    cancellation: Optional[CancellationToken]
    progress_sink: Optional[ProgressSink]
