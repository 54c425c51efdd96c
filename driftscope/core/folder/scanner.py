"""
Directory listing for tree comparison.

Provides:
- Gitignore-style ignore-glob matching
- Per-directory listing keyed by the configured case-sensitivity comparer
- Symlink handling delegated to the file-system provider
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from driftscope.core.folder.paths import join_relative, path_key
from driftscope.services.cancellation import CancellationToken
from driftscope.services.filesystem import FileSystem, FileSystemEntry


# Glob pieces, longest first; anything else is a literal character
_GLOB_TOKEN = re.compile(r"\*\*/|\*\*|\*|\?|\[(?:![^\]]+|[^!\]][^\]]*)\]|.", re.DOTALL)


@dataclass(frozen=True)
class IgnoreRule:
    """One compiled ignore glob."""
    regex: re.Pattern
    negated: bool = False
    directory_only: bool = False

    def applies(self, path: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        return self.regex.search(path) is not None


def _translate_glob(glob: str) -> str:
    parts = []
    for token in _GLOB_TOKEN.findall(glob):
        if token == '**/':
            parts.append('(?:.*/)?')
        elif token == '**':
            parts.append('.*')
        elif token == '*':
            parts.append('[^/]*')
        elif token == '?':
            parts.append('[^/]')
        elif len(token) > 2 and token[0] == '[':
            body = token[1:-1]
            negate = body.startswith('!')
            if negate:
                body = body[1:]
            parts.append('[' + ('^' if negate else '') + body.replace('\\', '\\\\') + ']')
        else:
            parts.append(re.escape(token))
    return ''.join(parts)


class PatternMatcher:
    """
    Ignore-glob matcher with gitignore conventions.

    - `*` and `?` stay inside one path segment, `**` crosses segments
    - `[...]` is a character class, `[!...]` its complement
    - A leading `!` re-includes what earlier globs excluded
    - A leading `/` anchors the glob at the comparison root
    - A trailing `/` restricts the glob to directories

    Globs are applied in order and the last one that applies decides.
    A glob that matches a directory also covers everything below it.
    """

    def __init__(self, patterns: Iterable[str], case_sensitive: bool = True):
        flags = 0 if case_sensitive else re.IGNORECASE
        self._rules: list[IgnoreRule] = []
        for pattern in patterns:
            rule = self._parse(pattern, flags)
            if rule is not None:
                self._rules.append(rule)

    @staticmethod
    def _parse(pattern: str, flags: int) -> Optional[IgnoreRule]:
        text = pattern.strip().replace('\\', '/')
        if not text or text[0] == '#':
            return None

        negated = text[0] == '!'
        text = text[1:] if negated else text
        directory_only = text.endswith('/')
        text = text.rstrip('/')
        prefix = '^' if text.startswith('/') else '(?:^|/)'
        text = text.lstrip('/')
        if not text:
            return None

        regex = re.compile(prefix + _translate_glob(text) + '(?:/.*)?$', flags)
        return IgnoreRule(regex, negated, directory_only)

    @property
    def is_empty(self) -> bool:
        """True when no glob can exclude anything."""
        return all(rule.negated for rule in self._rules)

    def matches(self, path: str, is_dir: bool = False) -> bool:
        """Return True if the root-relative `path` is excluded."""
        path = path.replace(os.sep, '/').lstrip('/')

        excluded = False
        for rule in self._rules:
            if rule.applies(path, is_dir):
                excluded = not rule.negated
        return excluded


class TreeScanner:
    """
    Lists one directory level at a time for a single comparison side.

    Ignored entries are dropped before they are returned so that they
    are invisible to matching and counting.
    """

    def __init__(
        self,
        file_system: FileSystem,
        ignore_patterns: Iterable[str] = (),
        case_sensitive: bool = False,
        follow_symlinks: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ):
        self.file_system = file_system
        self.case_sensitive = case_sensitive
        self.follow_symlinks = follow_symlinks
        self.cancellation = cancellation
        self.matcher = PatternMatcher(ignore_patterns, case_sensitive=case_sensitive)

    def list_directory(self, path: str, relative_path: str) -> dict[str, FileSystemEntry]:
        """
        List a directory's visible children keyed by comparer name key.

        Args:
            path: Provider path of the directory
            relative_path: Root-relative path of the directory

        Returns:
            Mapping of name key to entry

        Raises:
            OSError: If the directory cannot be enumerated
        """
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled()

        children: dict[str, FileSystemEntry] = {}
        for entry in self.file_system.enumerate(path, self.follow_symlinks):
            child_relative = join_relative(relative_path, entry.name)
            if self.matcher.matches(child_relative, entry.is_directory):
                continue

            key = path_key(entry.name, self.case_sensitive)
            if key in children:
                logging.warning(
                    f"TreeScanner - Names collide under case-insensitive matching: "
                    f"'{children[key].name}' and '{entry.name}' in '{relative_path or '.'}'; "
                    f"keeping '{entry.name}'"
                )
            children[key] = entry

        return children
