"""
Hashing service for file content comparison.
"""

from __future__ import annotations

import hashlib
import zlib
from typing import Iterable, Optional

import xxhash

from driftscope.core.models import (
    ComparisonSide,
    HashAlgorithm,
    HashComputationError,
)
from driftscope.services.cancellation import CancellationToken
from driftscope.services.filesystem import FileSystem, FileSystemEntry
from driftscope.services.progress import ProgressSink


CHUNK_SIZE = 8192


class _Crc32Hasher:
    """hashlib-style wrapper around zlib.crc32."""

    def __init__(self):
        self._value = 0

    def update(self, data: bytes) -> None:
        self._value = zlib.crc32(data, self._value)

    def hexdigest(self) -> str:
        return f"{self._value & 0xFFFFFFFF:08x}"


def create_hasher(algorithm: HashAlgorithm):
    """Create a hasher for the given algorithm."""
    if algorithm == HashAlgorithm.CRC32:
        return _Crc32Hasher()
    elif algorithm == HashAlgorithm.MD5:
        return hashlib.md5()
    elif algorithm == HashAlgorithm.SHA1:
        return hashlib.sha1()
    elif algorithm == HashAlgorithm.SHA256:
        return hashlib.sha256()
    elif algorithm == HashAlgorithm.SHA512:
        return hashlib.sha512()
    elif algorithm == HashAlgorithm.XXH64:
        return xxhash.xxh64()
    else:
        raise ValueError(f"Unknown algorithm: {algorithm}")


class FileHashCalculator:
    """Computes one or more digests for a single file."""

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def compute_hashes(
        self,
        file_system: FileSystem,
        entry: FileSystemEntry,
        algorithms: Iterable[HashAlgorithm],
        cancellation: Optional[CancellationToken] = None,
        progress_sink: Optional[ProgressSink] = None,
        side: ComparisonSide = ComparisonSide.LEFT,
    ) -> dict[HashAlgorithm, str]:
        """
        Hash a file with every requested algorithm.

        The file is streamed once per algorithm. The result map is only
        returned when every digest succeeded.

        Args:
            file_system: Provider the entry belongs to
            entry: File to hash
            algorithms: Non-empty set of algorithms
            cancellation: Checked at each chunk boundary
            progress_sink: Receives bytes read per chunk
            side: Side reported to the progress sink

        Returns:
            Mapping of algorithm to lowercase hex digest

        Raises:
            HashComputationError: If the file cannot be read
            ComparisonCancelledError: If cancellation was requested
        """
        algorithms = list(dict.fromkeys(algorithms))
        if not algorithms:
            raise ValueError("At least one hash algorithm is required.")

        results: dict[HashAlgorithm, str] = {}
        for algorithm in algorithms:
            results[algorithm] = self._hash_once(
                file_system, entry, algorithm, cancellation, progress_sink, side
            )
        return results

    def _hash_once(
        self,
        file_system: FileSystem,
        entry: FileSystemEntry,
        algorithm: HashAlgorithm,
        cancellation: Optional[CancellationToken],
        progress_sink: Optional[ProgressSink],
        side: ComparisonSide,
    ) -> str:
        hasher = create_hasher(algorithm)

        try:
            with file_system.open_read(entry.path) as f:
                while True:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    chunk = f.read(self.chunk_size)
                    if not chunk:
                        break
                    hasher.update(chunk)
                    if progress_sink is not None:
                        progress_sink.bytes_read(side, len(chunk))
        except OSError as e:
            raise HashComputationError(entry.path, algorithm, e) from e

        return hasher.hexdigest().lower()
