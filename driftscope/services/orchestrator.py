"""
Run orchestration: settings, providers, baselines and the engine.
"""

from __future__ import annotations

import logging
from typing import Optional

from driftscope.core.folder.baseline import (
    BaselineManifest,
    BaselineManifestBuilder,
    load_manifest,
    save_manifest,
)
from driftscope.core.folder.comparer import ComparisonEngine
from driftscope.core.folder.tree_adapter import ComparisonUpdateSink
from driftscope.core.models import (
    ComparisonResult,
    ComparisonStatus,
)
from driftscope.services.cancellation import CancellationToken
from driftscope.services.filesystem import FileSystemProviderCatalog
from driftscope.services.hashing import FileHashCalculator
from driftscope.services.progress import ProgressSink
from driftscope.services.settings import (
    CompareSettingsInput,
    CompareSettingsResolver,
    ConfigurationLoader,
    FailOnPolicy,
    ResolvedCompareSettings,
)


EXIT_CLEAN = 0
EXIT_DIFFERENCES = 1
EXIT_ERRORS = 2
EXIT_CANCELLED = 3


class ComparisonOrchestrator:
    """Resolves settings and runs comparisons or snapshot captures."""

    def __init__(
        self,
        loader: Optional[ConfigurationLoader] = None,
        resolver: Optional[CompareSettingsResolver] = None,
        providers: Optional[FileSystemProviderCatalog] = None,
        hash_calculator: Optional[FileHashCalculator] = None,
    ):
        self.loader = loader or ConfigurationLoader()
        self.resolver = resolver or CompareSettingsResolver()
        self.providers = providers or FileSystemProviderCatalog()
        self.hash_calculator = hash_calculator or FileHashCalculator()
        self.engine = ComparisonEngine(self.hash_calculator)

    def resolve(self, input: CompareSettingsInput) -> ResolvedCompareSettings:
        """Load the configuration file named by the input (or found by search) and resolve."""
        configuration = self.loader.load(input.configuration_path)
        return self.resolver.resolve(input, configuration)

    def run(
        self,
        input: CompareSettingsInput,
        progress_sink: Optional[ProgressSink] = None,
        update_sink: Optional[ComparisonUpdateSink] = None,
        cancellation: Optional[CancellationToken] = None,
        settings: Optional[ResolvedCompareSettings] = None,
    ) -> tuple[ComparisonResult, ResolvedCompareSettings]:
        """
        Run one comparison.

        Baseline mode applies when a baseline is resolved and no right
        path is. A configured timeout cancels the same token used for
        explicit cancellation.

        Args:
            input: Command-line values
            progress_sink: Receives per-file progress
            update_sink: Receives streaming tree events
            cancellation: Shared cancellation signal
            settings: Already resolved settings; resolved from input when omitted

        Returns:
            The result and the settings it was produced with

        Raises:
            DriftScopeError: For run-level failures, including cancellation
        """
        settings = settings or self.resolve(input)
        cancellation = cancellation or CancellationToken()

        if settings.timeout:
            cancellation.cancel_after(settings.timeout)

        try:
            if settings.baseline_path and not settings.right_path:
                return self._run_baseline(settings, progress_sink, update_sink, cancellation)

            left = self.providers.resolve(settings.left_path)
            right = self.providers.resolve(settings.right_path)
            logging.info(
                f"ComparisonOrchestrator - Comparing {left.path} with {right.path} "
                f"({settings.mode.value}, {', '.join(a.value for a in settings.algorithms)})"
            )
            result = self.engine.compare(
                left.path,
                right.path,
                settings.to_compare_options(),
                file_system=left.file_system,
                right_file_system=right.file_system,
                progress_sink=progress_sink,
                update_sink=update_sink,
                cancellation=cancellation,
            )
            return result, settings
        finally:
            cancellation.dispose()

    def _run_baseline(
        self,
        settings: ResolvedCompareSettings,
        progress_sink: Optional[ProgressSink],
        update_sink: Optional[ComparisonUpdateSink],
        cancellation: CancellationToken,
    ) -> tuple[ComparisonResult, ResolvedCompareSettings]:
        manifest = load_manifest(settings.baseline_path)

        if settings.algorithms_defaulted and manifest.algorithms:
            settings = settings.with_algorithms(manifest.algorithms)

        left = self.providers.resolve(settings.left_path)
        logging.info(
            f"ComparisonOrchestrator - Comparing {left.path} with baseline {settings.baseline_path}"
        )
        result = self.engine.compare_with_baseline(
            left.path,
            manifest,
            settings.to_compare_options(),
            manifest_path=settings.baseline_path,
            file_system=left.file_system,
            progress_sink=progress_sink,
            update_sink=update_sink,
            cancellation=cancellation,
        )
        return result, settings.with_baseline(result.baseline)

    def create_snapshot(
        self,
        input: CompareSettingsInput,
        output_path: str,
        progress_sink: Optional[ProgressSink] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BaselineManifest:
        """
        Capture the left root into a manifest and write it to disk.

        Only the left path is required; the right side is not consulted.
        """
        configuration = self.loader.load(input.configuration_path)
        settings = self.resolver.resolve(input, configuration, require_target=False)

        left = self.providers.resolve(settings.left_path)
        builder = BaselineManifestBuilder(left.file_system, self.hash_calculator)
        cancellation = cancellation or CancellationToken()
        if settings.timeout:
            cancellation.cancel_after(settings.timeout)

        try:
            manifest = builder.capture(
                left.path,
                algorithms=settings.algorithms,
                ignore_patterns=settings.ignore_patterns,
                case_sensitive=settings.case_sensitive,
                follow_symlinks=settings.follow_symlinks,
                cancellation=cancellation,
                progress_sink=progress_sink,
            )
        finally:
            cancellation.dispose()

        save_manifest(manifest, output_path)
        return manifest

    @staticmethod
    def exit_code(result: ComparisonResult, fail_on: FailOnPolicy) -> int:
        """
        Map a result to a process exit code.

        - differences: 1 when anything differs, errors are not considered
        - errors: 2 when any entry failed
        - any: 2 when any entry failed, otherwise 1 when anything differs
        - never: always 0

        Errors include directories that could not be enumerated.
        """
        summary = result.summary
        has_errors = summary.error > 0 or any(
            node.status == ComparisonStatus.ERROR for node in result.root.iter_all()
        )
        has_differences = summary.total_differences > 0

        if fail_on == FailOnPolicy.ANY and has_errors:
            return EXIT_ERRORS
        if fail_on in (FailOnPolicy.ANY, FailOnPolicy.DIFFERENCES) and has_differences:
            return EXIT_DIFFERENCES
        if fail_on == FailOnPolicy.ERRORS and has_errors:
            return EXIT_ERRORS
        return EXIT_CLEAN
