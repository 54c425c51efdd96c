"""
Core data models for directory drift detection.

This module defines all data structures shared across the package:
- Status and type enumerations
- Comparison tree models
- Summary and result models
- Baseline metadata
- Error models

All models are designed to be:
- UI-agnostic (can be used with any frontend)
- Immutable once a comparison run has produced them
- Type-hinted for IDE support
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, Mapping, Optional


# =============================================================================
# Enumerations
# =============================================================================

class ComparisonStatus(Enum):
    """Status of an entry in a tree comparison."""
    EQUAL = "Equal"            # Present on both sides and identical
    DIFFERENT = "Different"    # Present on both sides but differs
    LEFT_ONLY = "LeftOnly"     # Exists only on the left side
    RIGHT_ONLY = "RightOnly"   # Exists only on the right side
    ERROR = "Error"            # Could not be compared


class NodeType(Enum):
    """Type of comparison node."""
    FILE = "File"
    DIRECTORY = "Directory"


class ComparisonMode(Enum):
    """How file pairs are judged equal."""
    QUICK = "quick"  # Size + modification time only
    HASH = "hash"    # Content digests

    @classmethod
    def from_string(cls, value: str) -> 'ComparisonMode':
        """Create from a user-supplied identifier."""
        normalized = value.strip().lower()
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ConfigurationError(f"Unsupported comparison mode '{value}'.")


class HashAlgorithm(Enum):
    """Supported hash algorithms."""
    CRC32 = "crc32"    # Fast non-cryptographic checksum
    MD5 = "md5"        # Cryptographic 128-bit digest
    SHA1 = "sha1"
    SHA256 = "sha256"  # Cryptographic 256-bit digest
    SHA512 = "sha512"
    XXH64 = "xxh64"    # Fast non-cryptographic 64-bit digest

    @classmethod
    def from_string(cls, value: str) -> 'HashAlgorithm':
        """Create from an identifier, accepting common aliases."""
        normalized = value.strip().lower().replace('-', '')
        aliases = {
            'xxhash': cls.XXH64,
            'xxhash64': cls.XXH64,
            'sha2': cls.SHA256,
        }
        if normalized in aliases:
            return aliases[normalized]
        for algorithm in cls:
            if algorithm.value == normalized:
                return algorithm
        raise ConfigurationError(f"Unsupported hash algorithm '{value}'.")


class ComparisonSide(Enum):
    """Side of the comparison that performed an I/O operation."""
    LEFT = "left"
    RIGHT = "right"


# =============================================================================
# Comparison Tree Models
# =============================================================================

@dataclass(frozen=True)
class FileComparisonDetail:
    """
    Per-file comparison data.

    Sizes and times are None for a side where the file is absent.
    Hash maps are None unless hash mode ran or a baseline recorded digests.
    """
    left_size: Optional[int] = None
    right_size: Optional[int] = None
    left_modified: Optional[datetime] = None
    right_modified: Optional[datetime] = None
    left_hashes: Optional[dict[HashAlgorithm, str]] = None
    right_hashes: Optional[dict[HashAlgorithm, str]] = None
    error_message: Optional[str] = None
    note: Optional[str] = None  # e.g. file/directory type mismatch

    @property
    def exists_left(self) -> bool:
        return self.left_size is not None

    @property
    def exists_right(self) -> bool:
        return self.right_size is not None


@dataclass(frozen=True)
class ComparisonNode:
    """
    A node in the comparison tree.

    Represents either a file or a directory. Directory children are
    sorted by name; files carry a FileComparisonDetail and no children.
    """
    name: str
    relative_path: str
    node_type: NodeType
    status: ComparisonStatus
    detail: Optional[FileComparisonDetail] = None
    children: tuple['ComparisonNode', ...] = ()
    error_message: Optional[str] = None  # directory-level failure

    @property
    def is_directory(self) -> bool:
        return self.node_type == NodeType.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.node_type == NodeType.FILE

    @property
    def child_count(self) -> int:
        return len(self.children)

    def iter_all(self) -> Iterator['ComparisonNode']:
        """Iterate over this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.iter_all()

    def iter_files(self) -> Iterator['ComparisonNode']:
        """Iterate over file nodes in this subtree."""
        for node in self.iter_all():
            if node.is_file:
                yield node

    def find(self, relative_path: str) -> Optional['ComparisonNode']:
        """Find a descendant by its relative path."""
        for node in self.iter_all():
            if node.relative_path == relative_path:
                return node
        return None


@dataclass(frozen=True)
class ComparisonSummary:
    """Aggregate counts over file nodes."""
    total: int = 0
    equal: int = 0
    different: int = 0
    left_only: int = 0
    right_only: int = 0
    error: int = 0

    @property
    def total_differences(self) -> int:
        """Number of files that are not equal and did not fail."""
        return self.different + self.left_only + self.right_only

    @property
    def is_identical(self) -> bool:
        return self.total_differences == 0 and self.error == 0

    def __str__(self) -> str:
        return (f"Files: {self.total}, Equal: {self.equal}, Different: {self.different}, "
                f"Left only: {self.left_only}, Right only: {self.right_only}, "
                f"Errors: {self.error}")


@dataclass(frozen=True)
class BaselineMetadata:
    """Describes the baseline manifest used as the right side of a run."""
    manifest_path: str
    source_path: str
    created_at: datetime
    algorithms: tuple[HashAlgorithm, ...] = ()


@dataclass(frozen=True)
class ComparisonResult:
    """Complete result of a tree comparison."""
    left_path: str
    right_path: Optional[str]
    root: ComparisonNode
    summary: ComparisonSummary
    baseline: Optional[BaselineMetadata] = None
    compare_time: float = 0.0  # seconds

    @property
    def uses_baseline(self) -> bool:
        return self.baseline is not None

    def iter_by_status(self, status: ComparisonStatus) -> Iterator[ComparisonNode]:
        """Iterate over file nodes with the given status."""
        for node in self.root.iter_files():
            if node.status == status:
                yield node


@dataclass(frozen=True)
class ComparisonTreeSnapshot:
    """Immutable view of a partially or fully built comparison tree."""
    root: ComparisonNode
    nodes: Mapping[str, ComparisonNode] = field(default_factory=dict)

    def get(self, relative_path: str) -> Optional[ComparisonNode]:
        return self.nodes.get(relative_path)


# =============================================================================
# Error Models
# =============================================================================

class DriftScopeError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(DriftScopeError):
    """Settings or configuration content are missing or invalid."""


class RemoteSourceNotSupportedError(ConfigurationError):
    """A source string names a remote provider that is not available."""


class RootNotFoundError(DriftScopeError):
    """A comparison root does not exist or is not a directory."""


class RootEnumerationError(DriftScopeError):
    """A comparison root exists but could not be listed."""


class ComparisonCancelledError(DriftScopeError):
    """The run was cancelled before a result was produced."""


class BaselineHashMissingError(DriftScopeError):
    """A baseline entry lacks a digest required by the current run."""


class HashComputationError(DriftScopeError):
    """Reading or hashing a file failed."""

    def __init__(self, path: str, algorithm: HashAlgorithm, cause: BaseException):
        self.path = path
        self.algorithm = algorithm
        self.cause = cause
        super().__init__(f"Failed to compute {algorithm.value} for '{path}': {cause}")
