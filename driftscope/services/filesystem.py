"""
File-system capability consumed by the comparison engine.

Provides:
- FileSystem protocol (exists, enumerate, open-for-read)
- PhysicalFileSystem backed by os.scandir
- FileSystemProviderCatalog selecting a provider by source-string scheme
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Protocol, runtime_checkable

from driftscope.core.models import NodeType, RemoteSourceNotSupportedError


@dataclass(frozen=True)
class FileSystemEntry:
    """One child of an enumerated directory."""
    name: str
    path: str
    entry_type: NodeType
    size: int = 0
    modified: datetime = datetime.min.replace(tzinfo=timezone.utc)

    @property
    def is_directory(self) -> bool:
        return self.entry_type == NodeType.DIRECTORY


@runtime_checkable
class FileSystem(Protocol):
    """Abstract file-system access."""

    def directory_exists(self, path: str) -> bool:
        ...

    def enumerate(self, path: str, follow_symlinks: bool = False) -> list[FileSystemEntry]:
        """
        List the direct children of a directory.

        Raises:
            OSError: If the directory cannot be listed
        """
        ...

    def open_read(self, path: str) -> BinaryIO:
        ...


class PhysicalFileSystem:
    """Local disk access through os.scandir."""

    def directory_exists(self, path: str) -> bool:
        return os.path.isdir(path)

    def enumerate(self, path: str, follow_symlinks: bool = False) -> list[FileSystemEntry]:
        entries: list[FileSystemEntry] = []

        with os.scandir(path) as iterator:
            for item in iterator:
                try:
                    if item.is_symlink() and not follow_symlinks:
                        continue

                    st = item.stat(follow_symlinks=follow_symlinks)
                except OSError as e:
                    # Dangling links and entries removed mid-walk
                    logging.warning(f"PhysicalFileSystem - Skipping {item.path}: {e}")
                    continue

                if stat.S_ISDIR(st.st_mode):
                    entry_type = NodeType.DIRECTORY
                    size = 0
                elif stat.S_ISREG(st.st_mode):
                    entry_type = NodeType.FILE
                    size = st.st_size
                else:
                    continue

                entries.append(FileSystemEntry(
                    name=item.name,
                    path=item.path,
                    entry_type=entry_type,
                    size=size,
                    modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                ))

        return entries

    def open_read(self, path: str) -> BinaryIO:
        return open(path, 'rb')


@dataclass(frozen=True)
class FileSystemResolution:
    """A source string resolved to a provider and provider-local path."""
    path: str
    file_system: FileSystem


class FileSystemProviderCatalog:
    """
    Selects a file-system provider from a source string.

    Remote schemes are recognised but not implemented.
    """

    REMOTE_SCHEMES = ('ssh://', 'sftp://')

    def __init__(self, physical: FileSystem | None = None):
        self._physical = physical or PhysicalFileSystem()

    @classmethod
    def is_remote(cls, source: str) -> bool:
        return source.strip().lower().startswith(cls.REMOTE_SCHEMES)

    def resolve(self, source: str) -> FileSystemResolution:
        """
        Resolve a source string.

        Raises:
            RemoteSourceNotSupportedError: For ssh:// and sftp:// sources
        """
        if self.is_remote(source):
            logging.error(f"FileSystemProviderCatalog - Remote source not supported: {source}")
            raise RemoteSourceNotSupportedError(
                f"Remote source '{source}' is not supported; only local paths can be compared."
            )
        return FileSystemResolution(path=source, file_system=self._physical)
