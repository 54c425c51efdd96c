"""
Unit tests for ComparisonOrchestrator: run modes, snapshots and exit codes.
"""
import pytest

from conftest import write_file
from driftscope.core.models import (
    ComparisonCancelledError,
    ComparisonMode,
    ComparisonNode,
    ComparisonResult,
    ComparisonStatus,
    ComparisonSummary,
    ConfigurationError,
    HashAlgorithm,
    NodeType,
    RemoteSourceNotSupportedError,
)
from driftscope.services.cancellation import CancellationToken
from driftscope.services.orchestrator import (
    EXIT_CLEAN,
    EXIT_DIFFERENCES,
    EXIT_ERRORS,
    ComparisonOrchestrator,
)
from driftscope.services.settings import CompareSettingsInput, FailOnPolicy


class NoConfigurationLoader:
    """Loader double that never finds a configuration file."""

    def load(self, path=None):
        return None


@pytest.fixture
def orchestrator():
    return ComparisonOrchestrator(loader=NoConfigurationLoader())


@pytest.fixture
def trees(left_right):
    left, right = left_right
    write_file(left / "same.txt", b"same")
    write_file(right / "same.txt", b"same")
    write_file(left / "changed.txt", b"one")
    write_file(right / "changed.txt", b"two")
    return left, right


def result_with(summary, root_status=ComparisonStatus.EQUAL):
    root = ComparisonNode(
        name="",
        relative_path="",
        node_type=NodeType.DIRECTORY,
        status=root_status,
    )
    return ComparisonResult(left_path="/l", right_path="/r", root=root, summary=summary)


class TestRun:
    """Directory and baseline runs."""

    def test_directory_run(self, orchestrator, trees):
        left, right = trees

        result, settings = orchestrator.run(
            CompareSettingsInput(left_path=str(left), right_path=str(right), mode="hash")
        )

        assert result.summary.equal == 1
        assert result.summary.different == 1
        assert settings.mode == ComparisonMode.HASH
        assert not settings.uses_baseline

    def test_preresolved_settings_used(self, orchestrator, trees):
        left, right = trees
        settings = orchestrator.resolve(CompareSettingsInput(left_path=str(left), right_path=str(right)))

        result, returned = orchestrator.run(CompareSettingsInput(), settings=settings)

        assert returned is settings
        assert result.summary.total == 2

    def test_right_path_wins_over_baseline(self, orchestrator, trees, temp_dir):
        left, right = trees
        input = CompareSettingsInput(
            left_path=str(left), right_path=str(right), baseline_path=str(temp_dir / "unused.json")
        )

        result, settings = orchestrator.run(input)

        assert result.baseline is None
        assert result.right_path == str(right)

    def test_remote_source_rejected(self, orchestrator, trees):
        left, _ = trees
        with pytest.raises(RemoteSourceNotSupportedError):
            orchestrator.run(CompareSettingsInput(left_path=str(left), right_path="ssh://host/srv"))

    def test_cancelled_run(self, orchestrator, trees):
        left, right = trees
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComparisonCancelledError):
            orchestrator.run(
                CompareSettingsInput(left_path=str(left), right_path=str(right)),
                cancellation=token,
            )

    def test_configuration_from_explicit_file(self, trees, temp_dir):
        left, right = trees
        config = temp_dir / "driftscope.json"
        config.write_text(
            '{"profiles": {"deep": {"mode": "hash", "algorithms": ["md5"]}}}', encoding="utf-8"
        )

        result, settings = ComparisonOrchestrator().run(CompareSettingsInput(
            left_path=str(left), right_path=str(right), profile="deep", configuration_path=str(config),
        ))

        assert settings.algorithms == (HashAlgorithm.MD5,)
        assert result.root.find("same.txt").detail.left_hashes[HashAlgorithm.MD5]


class TestBaseline:
    """Snapshot capture and baseline runs."""

    def test_snapshot_then_drift(self, orchestrator, temp_dir):
        site = temp_dir / "site"
        write_file(site / "f.txt", b"0123456789")
        manifest_path = temp_dir / "site.baseline.json"

        manifest = orchestrator.create_snapshot(
            CompareSettingsInput(left_path=str(site), algorithm="sha256"), str(manifest_path)
        )
        assert manifest_path.is_file()
        assert manifest.algorithms == (HashAlgorithm.SHA256,)

        write_file(site / "f.txt", b"0123456789AB")
        result, settings = orchestrator.run(
            CompareSettingsInput(left_path=str(site), baseline_path=str(manifest_path))
        )

        assert result.root.find("f.txt").status == ComparisonStatus.DIFFERENT
        assert result.right_path is None
        assert settings.uses_baseline
        assert settings.baseline_metadata.source_path == str(site)
        assert settings.baseline_metadata.manifest_path == str(manifest_path)

    def test_defaulted_algorithms_adopt_manifest_set(self, orchestrator, temp_dir):
        site = temp_dir / "site"
        write_file(site / "a.bin", b"abc")
        manifest_path = temp_dir / "m.json"
        orchestrator.create_snapshot(
            CompareSettingsInput(left_path=str(site), algorithm="md5"), str(manifest_path)
        )

        result, settings = orchestrator.run(CompareSettingsInput(
            left_path=str(site), baseline_path=str(manifest_path), mode="hash",
        ))

        assert settings.algorithms == (HashAlgorithm.MD5,)
        assert result.root.find("a.bin").status == ComparisonStatus.EQUAL

    def test_explicit_uncovered_algorithm_rejected(self, orchestrator, temp_dir):
        site = temp_dir / "site"
        write_file(site / "a.bin", b"abc")
        manifest_path = temp_dir / "m.json"
        orchestrator.create_snapshot(
            CompareSettingsInput(left_path=str(site), algorithm="md5"), str(manifest_path)
        )

        with pytest.raises(ConfigurationError, match="sha256"):
            orchestrator.run(CompareSettingsInput(
                left_path=str(site), baseline_path=str(manifest_path), mode="hash", algorithm="sha256",
            ))

    def test_missing_manifest(self, orchestrator, temp_dir):
        site = temp_dir / "site"
        site.mkdir()
        with pytest.raises(ConfigurationError, match="not found"):
            orchestrator.run(CompareSettingsInput(
                left_path=str(site), baseline_path=str(temp_dir / "none.json")
            ))

    def test_snapshot_requires_left(self, orchestrator, temp_dir):
        with pytest.raises(ConfigurationError, match="Left path"):
            orchestrator.create_snapshot(CompareSettingsInput(), str(temp_dir / "m.json"))


class TestExitCode:
    """Mapping results to process exit codes."""

    CLEAN = ComparisonSummary(total=2, equal=2)
    DIFFERENT = ComparisonSummary(total=2, equal=1, different=1)
    ERRORS = ComparisonSummary(total=2, equal=1, error=1)
    BOTH = ComparisonSummary(total=3, equal=1, different=1, error=1)

    @pytest.mark.parametrize("summary, policy, expected", [
        (CLEAN, FailOnPolicy.DIFFERENCES, EXIT_CLEAN),
        (DIFFERENT, FailOnPolicy.DIFFERENCES, EXIT_DIFFERENCES),
        (ERRORS, FailOnPolicy.DIFFERENCES, EXIT_CLEAN),
        (BOTH, FailOnPolicy.DIFFERENCES, EXIT_DIFFERENCES),
        (DIFFERENT, FailOnPolicy.ERRORS, EXIT_CLEAN),
        (ERRORS, FailOnPolicy.ERRORS, EXIT_ERRORS),
        (DIFFERENT, FailOnPolicy.ANY, EXIT_DIFFERENCES),
        (ERRORS, FailOnPolicy.ANY, EXIT_ERRORS),
        (BOTH, FailOnPolicy.ANY, EXIT_ERRORS),
        (BOTH, FailOnPolicy.ERRORS, EXIT_ERRORS),
        (CLEAN, FailOnPolicy.ANY, EXIT_CLEAN),
        (DIFFERENT, FailOnPolicy.NEVER, EXIT_CLEAN),
        (ERRORS, FailOnPolicy.NEVER, EXIT_CLEAN),
    ])
    def test_policy_matrix(self, summary, policy, expected):
        assert ComparisonOrchestrator.exit_code(result_with(summary), policy) == expected

    def test_error_directory_counts_as_error(self):
        """Directories are not counted in the summary but still fail the run."""
        result = result_with(self.CLEAN, root_status=ComparisonStatus.ERROR)
        assert ComparisonOrchestrator.exit_code(result, FailOnPolicy.ANY) == EXIT_ERRORS
        assert ComparisonOrchestrator.exit_code(result, FailOnPolicy.ERRORS) == EXIT_ERRORS

    def test_any_and_differences_differ_on_errors(self):
        result = result_with(self.ERRORS)
        assert ComparisonOrchestrator.exit_code(result, FailOnPolicy.DIFFERENCES) == EXIT_CLEAN
        assert ComparisonOrchestrator.exit_code(result, FailOnPolicy.ANY) == EXIT_ERRORS
