"""
Shared fixtures for driftscope tests.

Provides isolated temporary directories and an in-memory, deterministic
FileSystem double with controllable timestamps and injectable failures.
"""
import io
import posixpath
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Set

import pytest

# Add project root to sys.path so 'driftscope' and 'main' are importable
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from driftscope.core.models import NodeType  # noqa: E402
from driftscope.services.filesystem import FileSystemEntry  # noqa: E402


FIXED_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class MemoryFileSystem:
    """
    FileSystem implementation backed by dictionaries.

    Paths are POSIX strings. Parent directories are created implicitly.
    """

    def __init__(self):
        self.files: Dict[str, tuple] = {}  # path -> (content, modified)
        self.directories: Set[str] = set()
        self.failing_directories: Set[str] = set()
        self.failing_files: Set[str] = set()
        self.reads: list = []

    def add_dir(self, path: str) -> None:
        path = posixpath.normpath(path)
        while path not in ('/', '', '.'):
            self.directories.add(path)
            path = posixpath.dirname(path)

    def add_file(self, path: str, content: bytes = b"", modified: Optional[datetime] = None) -> None:
        path = posixpath.normpath(path)
        self.add_dir(posixpath.dirname(path))
        self.files[path] = (content, modified or FIXED_TIME)

    def remove(self, path: str) -> None:
        path = posixpath.normpath(path)
        self.files.pop(path, None)
        self.directories.discard(path)
        prefix = path + '/'
        for file_path in [p for p in self.files if p.startswith(prefix)]:
            del self.files[file_path]
        self.directories = {d for d in self.directories if not d.startswith(prefix)}

    # FileSystem protocol

    def directory_exists(self, path: str) -> bool:
        return posixpath.normpath(path) in self.directories

    def enumerate(self, path: str, follow_symlinks: bool = False) -> list:
        path = posixpath.normpath(path)
        if path in self.failing_directories:
            raise PermissionError(f"Access denied: {path}")
        if path not in self.directories:
            raise FileNotFoundError(f"No such directory: {path}")

        entries = []
        for directory in sorted(self.directories):
            if posixpath.dirname(directory) == path:
                entries.append(FileSystemEntry(
                    name=posixpath.basename(directory),
                    path=directory,
                    entry_type=NodeType.DIRECTORY,
                    modified=FIXED_TIME,
                ))
        for file_path, (content, modified) in sorted(self.files.items()):
            if posixpath.dirname(file_path) == path:
                entries.append(FileSystemEntry(
                    name=posixpath.basename(file_path),
                    path=file_path,
                    entry_type=NodeType.FILE,
                    size=len(content),
                    modified=modified,
                ))
        return entries

    def open_read(self, path: str):
        path = posixpath.normpath(path)
        self.reads.append(path)
        if path in self.failing_files:
            raise PermissionError(f"Access denied: {path}")
        if path not in self.files:
            raise FileNotFoundError(f"No such file: {path}")
        return io.BytesIO(self.files[path][0])


def later(seconds: float) -> datetime:
    """FIXED_TIME shifted by the given number of seconds."""
    return FIXED_TIME + timedelta(seconds=seconds)


class RecordingProgressSink:
    """ProgressSink that keeps every event."""

    def __init__(self):
        self.discovered = []
        self.completed = []
        self.bytes = []

    def file_discovered(self, relative_path, left_size, right_size):
        self.discovered.append((relative_path, left_size, right_size))

    def file_completed(self, relative_path, status):
        self.completed.append((relative_path, status))

    def bytes_read(self, side, byte_count):
        self.bytes.append((side, byte_count))


@pytest.fixture
def temp_dir():
    """Creates isolated temporary directory, auto-cleanup after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_fs():
    """Empty in-memory file system."""
    return MemoryFileSystem()


@pytest.fixture
def left_right(temp_dir):
    """Creates empty left and right directories on disk."""
    left = temp_dir / "left"
    right = temp_dir / "right"
    left.mkdir()
    right.mkdir()
    return left, right


def write_file(path: Path, content: bytes) -> Path:
    """Write bytes, creating parent folders."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path
