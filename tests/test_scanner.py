"""
Unit tests for relative path helpers, ignore-glob matching and TreeScanner.
"""
import logging

import pytest

from conftest import MemoryFileSystem
from driftscope.core.folder.paths import (
    join_relative,
    name_sort_key,
    normalize_relative,
    parent_of,
    path_key,
)
from driftscope.core.folder.scanner import PatternMatcher, TreeScanner
from driftscope.core.models import ComparisonCancelledError
from driftscope.services.cancellation import CancellationToken


class TestPaths:
    """Root-relative path helpers."""

    def test_join_relative(self):
        assert join_relative("", "a") == "a"
        assert join_relative("a/b", "c") == "a/b/c"

    def test_normalize_relative(self):
        assert normalize_relative("\\a\\b\\") == "a/b"
        assert normalize_relative("a//b") == "a/b"
        assert normalize_relative(".") == ""

    def test_parent_of(self):
        assert parent_of("") is None
        assert parent_of("a") == ""
        assert parent_of("a/b/c") == "a/b"

    def test_path_key(self):
        assert path_key("Dir/File.TXT", case_sensitive=False) == "dir/file.txt"
        assert path_key("Dir/File.TXT", case_sensitive=True) == "Dir/File.TXT"

    def test_case_insensitive_sort_is_total(self):
        names = ["b", "B", "a", "A"]
        assert sorted(names, key=name_sort_key(False)) == ["A", "a", "B", "b"]
        assert sorted(names, key=name_sort_key(True)) == ["A", "B", "a", "b"]


class TestPatternMatcher:
    """Gitignore-style matching."""

    def test_star_matches_within_segment(self):
        matcher = PatternMatcher(["*.log"])
        assert matcher.matches("app.log")
        assert matcher.matches("logs/app.log")
        assert not matcher.matches("app.log.txt")

    def test_directory_glob_excludes_contents(self):
        matcher = PatternMatcher(["build/*"])
        assert matcher.matches("build/out.bin")
        assert not matcher.matches("build", is_dir=True)
        assert not matcher.matches("src/out.bin")

    def test_double_star(self):
        matcher = PatternMatcher(["**/cache"])
        assert matcher.matches("cache", is_dir=True)
        assert matcher.matches("a/b/cache", is_dir=True)

    def test_anchored_pattern(self):
        matcher = PatternMatcher(["/dist"])
        assert matcher.matches("dist", is_dir=True)
        assert not matcher.matches("pkg/dist", is_dir=True)

    def test_directory_only_pattern(self):
        matcher = PatternMatcher(["tmp/"])
        assert matcher.matches("tmp", is_dir=True)
        assert not matcher.matches("tmp", is_dir=False)

    def test_negation(self):
        matcher = PatternMatcher(["*.log", "!keep.log"])
        assert matcher.matches("drop.log")
        assert not matcher.matches("keep.log")

    def test_last_applicable_glob_wins(self):
        matcher = PatternMatcher(["!keep.log", "*.log"])
        assert matcher.matches("keep.log")

    def test_negation_alone_excludes_nothing(self):
        matcher = PatternMatcher(["!keep.log"])
        assert matcher.is_empty
        assert not matcher.matches("keep.log")

    def test_character_class(self):
        matcher = PatternMatcher(["file[0-9].txt"])
        assert matcher.matches("file3.txt")
        assert not matcher.matches("fileA.txt")

    def test_negated_character_class(self):
        matcher = PatternMatcher(["file[!0-9].txt"])
        assert matcher.matches("fileA.txt")
        assert not matcher.matches("file3.txt")

    def test_regex_characters_are_literal(self):
        matcher = PatternMatcher(["a+b(1).txt"])
        assert matcher.matches("a+b(1).txt")
        assert not matcher.matches("aab1.txt")

    def test_case_insensitive(self):
        assert PatternMatcher(["*.LOG"], case_sensitive=False).matches("app.log")
        assert not PatternMatcher(["*.LOG"], case_sensitive=True).matches("app.log")

    def test_comments_and_blanks_ignored(self):
        matcher = PatternMatcher(["", "# comment", "   "])
        assert matcher.is_empty
        assert not matcher.matches("anything")


class TestTreeScanner:
    """Per-directory listing for one side."""

    @pytest.fixture
    def fs(self):
        fs = MemoryFileSystem()
        fs.add_file("/root/a.txt", b"a")
        fs.add_file("/root/debug.log", b"log")
        fs.add_file("/root/build/out.bin", b"bin")
        fs.add_dir("/root/empty")
        return fs

    def test_lists_children_keyed_by_name(self, fs):
        scanner = TreeScanner(fs, case_sensitive=True)
        children = scanner.list_directory("/root", "")
        assert set(children) == {"a.txt", "debug.log", "build", "empty"}
        assert children["build"].is_directory

    def test_ignored_entries_are_invisible(self, fs):
        scanner = TreeScanner(fs, ignore_patterns=["*.log"])
        assert "debug.log" not in scanner.list_directory("/root", "")

    def test_ignore_uses_relative_path(self, fs):
        scanner = TreeScanner(fs, ignore_patterns=["build/*"])
        assert scanner.list_directory("/root/build", "build") == {}
        assert "build" in scanner.list_directory("/root", "")

    def test_case_insensitive_keys(self, fs):
        fs.add_file("/root/README.md", b"r")
        children = TreeScanner(fs, case_sensitive=False).list_directory("/root", "")
        assert "readme.md" in children
        assert children["readme.md"].name == "README.md"

    def test_collision_keeps_last_and_warns(self, caplog):
        fs = MemoryFileSystem()
        fs.add_file("/root/Name.txt", b"1")
        fs.add_file("/root/name.txt", b"22")

        with caplog.at_level(logging.WARNING):
            children = TreeScanner(fs, case_sensitive=False).list_directory("/root", "")

        assert len(children) == 1
        assert children["name.txt"].name == "name.txt"
        assert "collide" in caplog.text

    def test_enumeration_failure_propagates(self, fs):
        fs.failing_directories.add("/root/build")
        with pytest.raises(OSError):
            TreeScanner(fs).list_directory("/root/build", "build")

    def test_cancellation_checked_before_listing(self, fs):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComparisonCancelledError):
            TreeScanner(fs, cancellation=token).list_directory("/root", "")
