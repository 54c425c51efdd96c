"""
Unit tests for ComparisonEngine with live trees on both sides.
Most tests run against the in-memory file system for deterministic timestamps.
"""
import pytest

from conftest import MemoryFileSystem, RecordingProgressSink, later, write_file
from driftscope.core.folder.comparer import CompareOptions, ComparisonEngine
from driftscope.core.folder.tree_adapter import ComparisonTreeUpdateAdapter
from driftscope.core.models import (
    ComparisonCancelledError,
    ComparisonMode,
    ComparisonStatus,
    HashAlgorithm,
    RootEnumerationError,
    RootNotFoundError,
)
from driftscope.services.cancellation import CancellationToken


S = ComparisonStatus

QUICK = CompareOptions(mode=ComparisonMode.QUICK, threads=2)
HASH = CompareOptions(mode=ComparisonMode.HASH, algorithms=(HashAlgorithm.SHA256,), threads=4)


def compare(fs, options=QUICK, **kwargs):
    return ComparisonEngine().compare("/left", "/right", options, file_system=fs, **kwargs)


def shape(node):
    return (node.relative_path, node.node_type, node.status, tuple(shape(c) for c in node.children))


@pytest.fixture
def fs():
    fs = MemoryFileSystem()
    fs.add_dir("/left")
    fs.add_dir("/right")
    return fs


class TestQuickMode:
    """Size and modification time only."""

    def test_same_size_and_time_is_equal(self, fs):
        fs.add_file("/left/a.txt", b"abc")
        fs.add_file("/right/a.txt", b"abc")

        result = compare(fs)

        assert result.root.find("a.txt").status == S.EQUAL
        assert result.summary.equal == 1
        assert result.summary.is_identical

    def test_size_difference_is_different(self, fs):
        fs.add_file("/left/a.txt", b"abc")
        fs.add_file("/right/a.txt", b"abcd")

        node = compare(fs).root.find("a.txt")

        assert node.status == S.DIFFERENT
        assert node.detail.left_size == 3
        assert node.detail.right_size == 4

    def test_same_size_different_content_is_equal_without_reading(self, fs):
        """Quick mode never opens files."""
        fs.add_file("/left/a.txt", b"x")
        fs.add_file("/right/a.txt", b"y")

        result = compare(fs)

        assert result.root.find("a.txt").status == S.EQUAL
        assert fs.reads == []

    def test_no_tolerance_ignores_timestamps(self, fs):
        fs.add_file("/left/a.txt", b"abc", modified=later(0))
        fs.add_file("/right/a.txt", b"abc", modified=later(3600))
        assert compare(fs).root.find("a.txt").status == S.EQUAL

    def test_timestamp_outside_tolerance_is_different(self, fs):
        fs.add_file("/left/a.txt", b"abc", modified=later(0))
        fs.add_file("/right/a.txt", b"abc", modified=later(5))
        options = CompareOptions(mode=ComparisonMode.QUICK, mtime_tolerance=2.0)
        assert compare(fs, options).root.find("a.txt").status == S.DIFFERENT

    def test_timestamp_within_tolerance_is_equal(self, fs):
        fs.add_file("/left/a.txt", b"abc", modified=later(5))
        fs.add_file("/right/a.txt", b"abc", modified=later(0))
        options = CompareOptions(mode=ComparisonMode.QUICK, mtime_tolerance=5.0)
        assert compare(fs, options).root.find("a.txt").status == S.EQUAL


class TestHashMode:
    """Content digests computed on a worker pool."""

    def test_differing_content_same_size_is_different(self, fs):
        """left a.txt('x'), right a.txt('y') gives one Different file."""
        fs.add_file("/left/a.txt", b"x")
        fs.add_file("/right/a.txt", b"y")

        result = compare(fs, HASH)

        node = result.root.find("a.txt")
        assert node.status == S.DIFFERENT
        assert result.summary.different == 1
        assert node.detail.left_hashes[HashAlgorithm.SHA256] != node.detail.right_hashes[HashAlgorithm.SHA256]

    def test_identical_content_is_equal(self, fs):
        fs.add_file("/left/a.txt", b"same", modified=later(0))
        fs.add_file("/right/a.txt", b"same", modified=later(999))

        node = compare(fs, HASH).root.find("a.txt")

        assert node.status == S.EQUAL
        assert node.detail.left_hashes == node.detail.right_hashes

    def test_every_algorithm_recorded(self, fs):
        fs.add_file("/left/a.txt", b"data")
        fs.add_file("/right/a.txt", b"data")
        options = CompareOptions(
            mode=ComparisonMode.HASH,
            algorithms=(HashAlgorithm.CRC32, HashAlgorithm.MD5, HashAlgorithm.XXH64),
        )

        detail = compare(fs, options).root.find("a.txt").detail

        assert set(detail.left_hashes) == {HashAlgorithm.CRC32, HashAlgorithm.MD5, HashAlgorithm.XXH64}
        assert detail.left_hashes == detail.right_hashes

    def test_single_side_files_are_not_hashed(self, fs):
        fs.add_file("/left/only.txt", b"left")

        node = compare(fs, HASH).root.find("only.txt")

        assert node.status == S.LEFT_ONLY
        assert node.detail.left_hashes is None
        assert fs.reads == []

    def test_read_failure_isolated_to_one_file(self, fs):
        fs.add_file("/left/bad.bin", b"1")
        fs.add_file("/right/bad.bin", b"1")
        fs.add_file("/left/good.bin", b"2")
        fs.add_file("/right/good.bin", b"2")
        fs.failing_files.add("/right/bad.bin")

        result = compare(fs, HASH)

        bad = result.root.find("bad.bin")
        assert bad.status == S.ERROR
        assert "bad.bin" in bad.detail.error_message
        assert result.root.find("good.bin").status == S.EQUAL
        assert result.summary.error == 1
        assert result.root.status == S.ERROR

    def test_result_independent_of_thread_count(self, fs):
        for i in range(40):
            fs.add_file(f"/left/d{i % 3}/f{i:02d}", bytes([i]) * (i + 1))
            content = bytes([i]) * (i + 1) if i % 5 else b"changed" * (i + 1)
            fs.add_file(f"/right/d{i % 3}/f{i:02d}", content)

        serial = compare(fs, CompareOptions(mode=ComparisonMode.HASH, threads=1))
        parallel = compare(fs, CompareOptions(mode=ComparisonMode.HASH, threads=8))

        assert serial.root == parallel.root
        assert serial.summary.different == 8


class TestStructure:
    """Matching, single-sided entries and roll-up."""

    def test_left_only_and_right_only_are_symmetric(self, fs):
        fs.add_file("/left/l.txt", b"l")
        fs.add_file("/right/r.txt", b"r")

        result = compare(fs)

        assert result.root.find("l.txt").status == S.LEFT_ONLY
        assert result.root.find("r.txt").status == S.RIGHT_ONLY
        assert result.root.find("l.txt").detail.right_size is None
        assert result.root.find("r.txt").detail.left_size is None
        assert result.summary.left_only == 1
        assert result.summary.right_only == 1
        # mixed LeftOnly + RightOnly rolls up to Different
        assert result.root.status == S.DIFFERENT

    def test_left_only_directory_subtree(self, fs):
        """left has dir/f.txt, right has no dir."""
        fs.add_file("/left/dir/f.txt", b"f")
        fs.add_file("/left/dir/sub/g.txt", b"g")

        result = compare(fs)

        directory = result.root.find("dir")
        assert directory.status == S.LEFT_ONLY
        assert [c.name for c in directory.children] == ["f.txt", "sub"]
        assert all(n.status == S.LEFT_ONLY for n in directory.iter_all())
        assert result.summary.left_only == 2
        assert result.root.status == S.LEFT_ONLY

    def test_matched_directories_recurse(self, fs):
        fs.add_file("/left/src/a.py", b"a")
        fs.add_file("/right/src/a.py", b"aa")
        fs.add_file("/left/src/b.py", b"b")
        fs.add_file("/right/src/b.py", b"b")

        result = compare(fs)

        src = result.root.find("src")
        assert src.status == S.DIFFERENT
        assert [c.status for c in src.children] == [S.DIFFERENT, S.EQUAL]

    def test_children_sorted_by_name(self, fs):
        for name in ["b.txt", "C.txt", "a.txt"]:
            fs.add_file(f"/left/{name}", b"1")
            fs.add_file(f"/right/{name}", b"1")

        names = [c.name for c in compare(fs).root.children]

        assert names == ["a.txt", "b.txt", "C.txt"]

    def test_type_mismatch(self, fs):
        fs.add_file("/left/thing/inner.txt", b"i")
        fs.add_file("/right/thing", b"file")

        result = compare(fs)

        node = result.root.find("thing")
        assert node.is_file
        assert node.status == S.DIFFERENT
        assert node.detail.note == "Left side is a directory while right side is a file."
        assert node.detail.error_message is None
        assert node.detail.right_size == 4
        assert result.root.find("thing/inner.txt") is None

    def test_reverse_type_mismatch(self, fs):
        fs.add_file("/left/thing", b"file")
        fs.add_dir("/right/thing")

        node = compare(fs).root.find("thing")

        assert node.detail.note == "Left side is a file while right side is a directory."
        assert node.detail.left_size == 4

    def test_empty_trees(self, fs):
        result = compare(fs)
        assert result.root.children == ()
        assert result.root.status == S.EQUAL
        assert result.root.name == "left"
        assert result.summary.total == 0


class TestMatchingOptions:
    """Ignore globs and case sensitivity."""

    def test_ignored_entries_are_not_counted(self, fs):
        fs.add_file("/left/app.log", b"1")
        fs.add_file("/right/other.log", b"2")
        fs.add_file("/left/build/out.bin", b"3")
        fs.add_file("/left/keep.txt", b"k")
        fs.add_file("/right/keep.txt", b"k")
        options = CompareOptions(ignore_patterns=("*.log", "build/"))

        result = compare(fs, options)

        assert [c.name for c in result.root.children] == ["keep.txt"]
        assert result.summary.total == 1
        assert result.summary.is_identical

    def test_case_insensitive_matching(self, fs):
        fs.add_file("/left/README.md", b"r")
        fs.add_file("/right/readme.md", b"r")

        result = compare(fs, CompareOptions(case_sensitive=False))

        assert len(result.root.children) == 1
        assert result.root.children[0].status == S.EQUAL

    def test_case_sensitive_matching(self, fs):
        fs.add_file("/left/README.md", b"r")
        fs.add_file("/right/readme.md", b"r")

        result = compare(fs, CompareOptions(case_sensitive=True))

        assert [(c.name, c.status) for c in result.root.children] == [
            ("README.md", S.LEFT_ONLY),
            ("readme.md", S.RIGHT_ONLY),
        ]


class TestFailures:
    """Run-level and node-scoped failures."""

    def test_missing_left_root(self, fs):
        with pytest.raises(RootNotFoundError, match="Left"):
            ComparisonEngine().compare("/nope", "/right", QUICK, file_system=fs)

    def test_missing_right_root(self, fs):
        with pytest.raises(RootNotFoundError, match="Right"):
            ComparisonEngine().compare("/left", "/nope", QUICK, file_system=fs)

    def test_unlistable_root(self, fs):
        fs.failing_directories.add("/right")
        with pytest.raises(RootEnumerationError):
            compare(fs)

    def test_unlistable_root_produces_no_events(self, fs):
        fs.add_file("/left/a.txt", b"a")
        fs.failing_directories.add("/right")
        adapter = ComparisonTreeUpdateAdapter()
        events = []
        adapter.add_node_listener(events.append)

        with pytest.raises(RootEnumerationError):
            compare(fs, update_sink=adapter)

        assert events == []

    def test_directory_failure_becomes_error_node(self, fs):
        fs.add_file("/left/locked/x.txt", b"x")
        fs.add_file("/right/locked/x.txt", b"x")
        fs.add_file("/left/ok.txt", b"o")
        fs.add_file("/right/ok.txt", b"o")
        fs.failing_directories.add("/right/locked")

        result = compare(fs)

        locked = result.root.find("locked")
        assert locked.status == S.ERROR
        assert locked.children == ()
        assert "Failed to enumerate" in locked.error_message
        assert result.root.find("ok.txt").status == S.EQUAL
        assert result.root.status == S.ERROR

    def test_failure_inside_single_sided_directory(self, fs):
        fs.add_file("/left/only/deep/x.txt", b"x")
        fs.failing_directories.add("/left/only/deep")

        result = compare(fs)

        assert result.root.find("only/deep").status == S.ERROR
        assert result.root.find("only").status == S.LEFT_ONLY


class TestCancellation:
    """Shared cancellation signal."""

    def test_cancelled_before_start(self, fs):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComparisonCancelledError):
            compare(fs, cancellation=token)

    @pytest.mark.parametrize("options", [QUICK, HASH])
    def test_cancelled_mid_run(self, fs, options):
        for i in range(5):
            fs.add_file(f"/left/f{i}", b"data")
            fs.add_file(f"/right/f{i}", b"data")
        token = CancellationToken()

        class CancelOnFirst(RecordingProgressSink):
            def file_completed(self, relative_path, status):
                super().file_completed(relative_path, status)
                token.cancel()

        with pytest.raises(ComparisonCancelledError):
            compare(fs, options, progress_sink=CancelOnFirst(), cancellation=token)

    def test_published_snapshot_survives_cancellation(self, fs):
        for i in range(3):
            fs.add_file(f"/left/f{i}", b"d")
            fs.add_file(f"/right/f{i}", b"d")
        token = CancellationToken()
        adapter = ComparisonTreeUpdateAdapter()
        adapter.add_node_listener(lambda node: token.cancel() if node.is_file else None)

        with pytest.raises(ComparisonCancelledError):
            compare(fs, update_sink=adapter, cancellation=token)

        assert adapter.snapshot.get("f0").status == S.EQUAL


class TestSinks:
    """Progress and tree update events."""

    @pytest.mark.parametrize("options", [QUICK, HASH])
    def test_update_sink_converges_to_result(self, fs, options):
        fs.add_file("/left/same.txt", b"s")
        fs.add_file("/right/same.txt", b"s")
        fs.add_file("/left/diff/a", b"1")
        fs.add_file("/right/diff/a", b"22")
        fs.add_file("/left/lonly/x", b"x")
        fs.add_file("/right/ronly.txt", b"r")
        fs.add_file("/left/locked/y", b"y")
        fs.add_file("/right/locked/y", b"y")
        fs.failing_directories.add("/left/locked")
        adapter = ComparisonTreeUpdateAdapter()

        result = compare(fs, options, update_sink=adapter)

        assert shape(adapter.snapshot.root) == shape(result.root)
        assert adapter.snapshot.root.name == "left"

    def test_progress_events_per_file(self, fs):
        fs.add_file("/left/a", b"aaa")
        fs.add_file("/right/a", b"aaa")
        fs.add_file("/left/b", b"b")
        sink = RecordingProgressSink()

        compare(fs, HASH, progress_sink=sink)

        assert sorted(sink.discovered) == [("a", 3, 3), ("b", 1, None)]
        assert sorted(sink.completed) == [("a", S.EQUAL), ("b", S.LEFT_ONLY)]
        assert sum(count for _, count in sink.bytes) == 6


class TestPhysicalTrees:
    """End-to-end on real directories."""

    def test_hash_compare_on_disk(self, left_right):
        left, right = left_right
        write_file(left / "same.txt", b"same")
        write_file(right / "same.txt", b"same")
        write_file(left / "sub" / "changed.txt", b"one")
        write_file(right / "sub" / "changed.txt", b"two")
        write_file(right / "new.txt", b"new")

        result = ComparisonEngine().compare(str(left), str(right), HASH)

        assert result.summary.total == 3
        assert result.summary.equal == 1
        assert result.summary.different == 1
        assert result.summary.right_only == 1
        assert result.right_path == str(right)
        assert result.baseline is None
        assert result.compare_time >= 0
