"""
Live comparison tree for interactive consumers.

The engine reports two kinds of events while it runs:
- entry discovered: a directory is known to exist (path, display name)
- node completed: a finished node, directories possibly with a subtree

ComparisonTreeUpdateAdapter folds those events into a mutable working
graph keyed by normalized relative path and, after every event, publishes
an immutable ComparisonTreeSnapshot plus the single node that changed.
All mutation and publication happens under one lock, so events coming
from concurrent hash workers are applied one at a time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Optional, Protocol, runtime_checkable

from driftscope.core.folder.paths import (
    name_of,
    name_sort_key,
    normalize_relative,
    parent_of,
    path_key,
)
from driftscope.core.folder.summary import determine_directory_status
from driftscope.core.models import (
    ComparisonNode,
    ComparisonStatus,
    ComparisonTreeSnapshot,
    FileComparisonDetail,
    NodeType,
)


TreeListener = Callable[[ComparisonTreeSnapshot], None]
NodeListener = Callable[[ComparisonNode], None]


@runtime_checkable
class ComparisonUpdateSink(Protocol):
    """Receives streaming tree events from the comparison engine."""

    def entry_discovered(self, relative_path: str, name: str) -> None:
        ...

    def node_completed(self, node: ComparisonNode) -> None:
        ...


@dataclass
class _WorkingEntry:
    """Mutable node of the working graph."""
    relative_path: str
    name: str
    node_type: NodeType
    explicit_status: Optional[ComparisonStatus] = None
    detail: Optional[FileComparisonDetail] = None
    error_message: Optional[str] = None
    children: set[str] = field(default_factory=set)  # child path keys


class ComparisonTreeUpdateAdapter:
    """
    Accumulates engine events into consistent tree snapshots.

    Directory statuses are derived from children on every rebuild
    unless a completion event set them explicitly. Rebuilding never
    caches derived statuses on the working entries.
    """

    def __init__(self, case_sensitive: bool = False, root_name: str = ""):
        self.case_sensitive = case_sensitive
        self._sort_key = name_sort_key(case_sensitive)
        self._lock = threading.RLock()
        self._entries: dict[str, _WorkingEntry] = {
            "": _WorkingEntry(relative_path="", name=root_name, node_type=NodeType.DIRECTORY)
        }
        self._tree_listeners: list[TreeListener] = []
        self._node_listeners: list[NodeListener] = []
        self._snapshot = self._rebuild()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_tree_listener(self, callback: TreeListener) -> None:
        """Add a callback receiving every published snapshot."""
        with self._lock:
            self._tree_listeners.append(callback)

    def remove_tree_listener(self, callback: TreeListener) -> None:
        with self._lock:
            if callback in self._tree_listeners:
                self._tree_listeners.remove(callback)

    def add_node_listener(self, callback: NodeListener) -> None:
        """Add a callback receiving the node changed by each event."""
        with self._lock:
            self._node_listeners.append(callback)

    def remove_node_listener(self, callback: NodeListener) -> None:
        with self._lock:
            if callback in self._node_listeners:
                self._node_listeners.remove(callback)

    @property
    def snapshot(self) -> ComparisonTreeSnapshot:
        """Latest published snapshot."""
        with self._lock:
            return self._snapshot

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def entry_discovered(self, relative_path: str, name: str) -> None:
        """Record that a directory exists before its contents are known."""
        relative_path = normalize_relative(relative_path)
        with self._lock:
            entry = self._ensure_entry(relative_path, name, NodeType.DIRECTORY)
            if name:
                entry.name = name
            self._publish(relative_path)

    def node_completed(self, node: ComparisonNode) -> None:
        """Record a finished node and, for directories, its subtree."""
        with self._lock:
            self._apply(node, overwrite_status=True)
            self._publish(normalize_relative(node.relative_path))

    # ------------------------------------------------------------------
    # Working graph
    # ------------------------------------------------------------------

    def _key(self, relative_path: str) -> str:
        return path_key(relative_path, self.case_sensitive)

    def _ensure_entry(self, relative_path: str, name: str, node_type: NodeType) -> _WorkingEntry:
        """Get or create an entry and attach its whole ancestor chain."""
        key = self._key(relative_path)
        entry = self._entries.get(key)
        if entry is None:
            entry = _WorkingEntry(
                relative_path=relative_path,
                name=name or name_of(relative_path),
                node_type=node_type,
            )
            self._entries[key] = entry

        parent_path = parent_of(relative_path)
        if parent_path is not None:
            parent = self._ensure_entry(parent_path, name_of(parent_path), NodeType.DIRECTORY)
            parent.children.add(key)

        return entry

    def _apply(self, node: ComparisonNode, overwrite_status: bool) -> None:
        relative_path = normalize_relative(node.relative_path)
        entry = self._ensure_entry(relative_path, node.name, node.node_type)
        if node.name:
            entry.name = node.name
        entry.node_type = node.node_type

        if node.is_file:
            entry.explicit_status = node.status
            entry.detail = node.detail
            entry.error_message = None
            entry.children.clear()
            return

        entry.detail = None
        if overwrite_status or entry.explicit_status is None:
            entry.explicit_status = node.status
        if node.error_message is not None:
            entry.error_message = node.error_message

        for child in node.children:
            self._apply(child, overwrite_status=False)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _rebuild(self) -> ComparisonTreeSnapshot:
        nodes: dict[str, ComparisonNode] = {}
        root = self._build_node(self._entries[""], nodes)
        return ComparisonTreeSnapshot(root=root, nodes=MappingProxyType(nodes))

    def _build_node(self, entry: _WorkingEntry, nodes: dict[str, ComparisonNode]) -> ComparisonNode:
        if entry.node_type == NodeType.FILE:
            node = ComparisonNode(
                name=entry.name,
                relative_path=entry.relative_path,
                node_type=NodeType.FILE,
                status=entry.explicit_status or ComparisonStatus.EQUAL,
                detail=entry.detail,
            )
        else:
            children = [
                self._build_node(self._entries[key], nodes)
                for key in entry.children
            ]
            children.sort(key=lambda child: self._sort_key(child.name))
            status = entry.explicit_status
            if status is None:
                status = determine_directory_status(child.status for child in children)
            node = ComparisonNode(
                name=entry.name,
                relative_path=entry.relative_path,
                node_type=NodeType.DIRECTORY,
                status=status,
                children=tuple(children),
                error_message=entry.error_message,
            )

        nodes[entry.relative_path] = node
        return node

    def _publish(self, changed_path: str) -> None:
        """Rebuild the snapshot and notify listeners. Caller holds the lock."""
        self._snapshot = self._rebuild()
        changed = self._snapshot.nodes.get(changed_path)
        if changed is None:
            entry = self._entries.get(self._key(changed_path))
            if entry is not None:
                changed = self._snapshot.nodes.get(entry.relative_path)

        for callback in list(self._tree_listeners):
            try:
                callback(self._snapshot)
            except Exception:
                logging.exception("ComparisonTreeUpdateAdapter - Tree listener failed")

        if changed is not None:
            for callback in list(self._node_listeners):
                try:
                    callback(changed)
                except Exception:
                    logging.exception("ComparisonTreeUpdateAdapter - Node listener failed")
