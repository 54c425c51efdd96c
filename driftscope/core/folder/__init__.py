"""
Folder comparison module.

Provides functionality for:
- Tree comparison in quick and hash mode
- File filtering with gitignore-style patterns
- Live tree snapshots for interactive consumers
- Baseline manifest capture and replay
"""

from driftscope.core.folder.scanner import (
    IgnoreRule,
    PatternMatcher,
    TreeScanner,
)
from driftscope.core.folder.comparer import (
    ComparisonEngine,
    CompareOptions,
)
from driftscope.core.folder.summary import (
    calculate_summary,
    determine_directory_status,
)
from driftscope.core.folder.tree_adapter import (
    ComparisonTreeUpdateAdapter,
    ComparisonUpdateSink,
)
from driftscope.core.folder.baseline import (
    BaselineManifest,
    BaselineManifestBuilder,
    ManifestNode,
    load_manifest,
    save_manifest,
)

__all__ = [
    # Scanner
    'IgnoreRule',
    'PatternMatcher',
    'TreeScanner',
    # Comparer
    'ComparisonEngine',
    'CompareOptions',
    # Summary
    'calculate_summary',
    'determine_directory_status',
    # Live tree
    'ComparisonTreeUpdateAdapter',
    'ComparisonUpdateSink',
    # Baseline
    'BaselineManifest',
    'BaselineManifestBuilder',
    'ManifestNode',
    'load_manifest',
    'save_manifest',
]
