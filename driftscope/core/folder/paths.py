"""
Relative path helpers shared by the engine, the tree adapter and manifests.

Relative paths always use '/' as separator; the root is the empty string.
"""

from __future__ import annotations

from typing import Callable


def join_relative(parent: str, name: str) -> str:
    """Join a root-relative parent path and a child name."""
    if not parent:
        return name
    return f"{parent}/{name}"


def normalize_relative(path: str) -> str:
    """Normalize separators and strip leading/trailing slashes."""
    path = path.replace('\\', '/').strip('/')
    while '//' in path:
        path = path.replace('//', '/')
    if path == '.':
        return ''
    return path


def parent_of(path: str) -> str | None:
    """Return the parent relative path, or None for the root."""
    if not path:
        return None
    index = path.rfind('/')
    if index < 0:
        return ''
    return path[:index]


def name_of(path: str) -> str:
    """Return the final segment of a relative path."""
    return path.rsplit('/', 1)[-1]


def path_key(path: str, case_sensitive: bool) -> str:
    """Key used to match relative paths under the configured comparer."""
    return path if case_sensitive else path.casefold()


def name_sort_key(case_sensitive: bool) -> Callable[[str], tuple]:
    """
    Build a sort key for entry names.

    Case-insensitive ordering falls back to the raw name so that the
    ordering stays total and deterministic.
    """
    if case_sensitive:
        return lambda name: (name,)
    return lambda name: (name.casefold(), name)
