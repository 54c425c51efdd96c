"""
Main entry point for the driftscope command line.

This module handles:
- Command line argument parsing
- Logging configuration
- Running comparisons and snapshot captures
- Summary output
- Exit code policy
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from driftscope import __version__
from driftscope.core.models import (
    ComparisonCancelledError,
    ComparisonNode,
    ComparisonResult,
    ComparisonStatus,
    DriftScopeError,
)
from driftscope.services.cancellation import CancellationToken
from driftscope.services.orchestrator import (
    EXIT_CANCELLED,
    EXIT_CLEAN,
    EXIT_ERRORS,
    ComparisonOrchestrator,
)
from driftscope.services.progress import ComparisonProgressTracker
from driftscope.services.settings import CompareSettingsInput, ResolvedCompareSettings


# =============================================================================
# Constants
# =============================================================================

APP_NAME = "driftscope"

STATUS_MARKERS = {
    ComparisonStatus.EQUAL: '=',
    ComparisonStatus.DIFFERENT: '~',
    ComparisonStatus.LEFT_ONLY: '<',
    ComparisonStatus.RIGHT_ONLY: '>',
    ComparisonStatus.ERROR: '!',
}


# =============================================================================
# Logging
# =============================================================================

class LogFormatter(logging.Formatter):
    """Custom log formatter with colors for console."""

    COLORS = {
        logging.INFO: '\033[32m',      # Green
        logging.WARNING: '\033[33m',   # Yellow
        logging.ERROR: '\033[31m',     # Red
        logging.CRITICAL: '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True, stream: Optional[TextIO] = None):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        stream = stream or sys.stderr
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelno, '')
            return f"{color}{formatted}{self.RESET}"

        return formatted


def setup_logging(level: str | int = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure application logging.

    Args:
        level: Log level name or number
        log_file: Optional file path for logging

    Returns:
        Root logger instance
    """
    if isinstance(level, str):
        numeric_level = getattr(logging, level.upper(), logging.INFO)
    else:
        numeric_level = level

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    # Console output goes to stderr so stdout carries only the report
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(LogFormatter(use_colors=True, stream=sys.stderr))
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(LogFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    return root_logger


def set_log_level(level: int) -> None:
    """Change the level of the root logger and every handler on it."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


# =============================================================================
# Command Line Parsing
# =============================================================================

def _add_common_options(parser: argparse.ArgumentParser) -> None:
    """Options shared by compare and snapshot."""
    parser.add_argument(
        '--algorithm',
        help='Primary hash algorithm (crc32, md5, sha1, sha256, sha512, xxh64)'
    )
    parser.add_argument(
        '--additional-algorithm',
        dest='additional_algorithms',
        action='append',
        default=[],
        metavar='ALGORITHM',
        help='Extra hash algorithm, may be repeated'
    )
    parser.add_argument(
        '-i', '--ignore',
        dest='ignore_patterns',
        action='append',
        default=[],
        metavar='GLOB',
        help='Gitignore-style pattern to exclude, may be repeated'
    )
    case_group = parser.add_mutually_exclusive_group()
    case_group.add_argument(
        '--case-sensitive',
        dest='case_sensitive',
        action='store_const',
        const=True,
        default=None,
        help='Match names case-sensitively'
    )
    case_group.add_argument(
        '--ignore-case',
        dest='case_sensitive',
        action='store_const',
        const=False,
        help='Match names case-insensitively (default)'
    )
    parser.add_argument(
        '--follow-symlinks',
        action='store_const',
        const=True,
        default=None,
        help='Traverse symbolic links'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        metavar='SECONDS',
        help='Cancel the run after this many seconds'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Do not report progress'
    )
    parser.add_argument(
        '--verbosity',
        choices=['quiet', 'normal', 'detailed', 'diagnostic'],
        help='Output detail level'
    )
    parser.add_argument(
        '-p', '--profile',
        help='Named profile from the configuration file'
    )
    parser.add_argument(
        '-c', '--config',
        dest='configuration_path',
        help='Configuration file path'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (overrides verbosity)'
    )
    parser.add_argument(
        '--log-file',
        type=Path,
        help='Also write logs to this file'
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Detect drift between directory trees",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s compare build/ deploy/                 Quick compare two folders
  %(prog)s compare src/ dst/ --mode hash          Compare contents with sha256
  %(prog)s snapshot site/ -o site.baseline.json   Capture a baseline
  %(prog)s compare site/ --baseline site.baseline.json
        """
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest='command', required=True)

    compare = subparsers.add_parser('compare', help='Compare two folders or a folder and a baseline')
    compare.add_argument('left', nargs='?', help='Left folder')
    compare.add_argument('right', nargs='?', help='Right folder')
    compare.add_argument('-m', '--mode', choices=['quick', 'hash'], help='Comparison mode')
    compare.add_argument(
        '--mtime-tolerance',
        type=float,
        metavar='SECONDS',
        help='Allowed modification time difference in quick mode'
    )
    compare.add_argument('-t', '--threads', type=int, help='Parallel hash workers')
    compare.add_argument('-b', '--baseline', help='Baseline manifest to compare against')
    compare.add_argument('--json', dest='json_report_path', help='JSON report path')
    compare.add_argument('--summary', dest='summary_report_path', help='Summary report path')
    compare.add_argument('--csv', dest='csv_report_path', help='CSV report path')
    compare.add_argument('--markdown', dest='markdown_report_path', help='Markdown report path')
    compare.add_argument('--html', dest='html_report_path', help='HTML report path')
    compare.add_argument('--export', dest='export_format', help='Export format')
    compare.add_argument('--diff-tool', help='External diff tool')
    compare.add_argument(
        '--fail-on',
        choices=['differences', 'errors', 'any', 'never'],
        help='Which outcomes produce a non-zero exit code'
    )
    compare.add_argument(
        '--show-equal',
        action='store_true',
        help='List equal files too'
    )
    _add_common_options(compare)

    snapshot = subparsers.add_parser('snapshot', help='Capture a baseline manifest')
    snapshot.add_argument('left', nargs='?', help='Folder to capture')
    snapshot.add_argument('-o', '--output', required=True, help='Manifest file to write')
    _add_common_options(snapshot)

    return parser


def parse_arguments(args: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Args:
        args: Arguments to parse (defaults to sys.argv)

    Returns:
        Parsed arguments
    """
    return build_parser().parse_args(args)


def build_settings_input(args: argparse.Namespace) -> CompareSettingsInput:
    """Translate parsed arguments into resolver input."""
    return CompareSettingsInput(
        left_path=args.left,
        right_path=getattr(args, 'right', None),
        mode=getattr(args, 'mode', None),
        algorithm=args.algorithm,
        additional_algorithms=list(args.additional_algorithms),
        ignore_patterns=list(args.ignore_patterns),
        case_sensitive=args.case_sensitive,
        follow_symlinks=args.follow_symlinks,
        mtime_tolerance_seconds=getattr(args, 'mtime_tolerance', None),
        threads=getattr(args, 'threads', None),
        baseline_path=getattr(args, 'baseline', None),
        json_report_path=getattr(args, 'json_report_path', None),
        summary_report_path=getattr(args, 'summary_report_path', None),
        csv_report_path=getattr(args, 'csv_report_path', None),
        markdown_report_path=getattr(args, 'markdown_report_path', None),
        html_report_path=getattr(args, 'html_report_path', None),
        export_format=getattr(args, 'export_format', None),
        no_progress=args.no_progress,
        diff_tool=getattr(args, 'diff_tool', None),
        verbosity=args.verbosity,
        fail_on=getattr(args, 'fail_on', None),
        timeout_seconds=args.timeout,
        profile=args.profile,
        configuration_path=args.configuration_path,
    )


# =============================================================================
# Output
# =============================================================================

def print_tree(
    node: ComparisonNode,
    out: TextIO,
    show_equal: bool = False,
    depth: int = 0,
) -> None:
    """Print non-equal entries as an indented tree."""
    for child in node.children:
        if child.status == ComparisonStatus.EQUAL and not show_equal:
            continue

        suffix = '/' if child.is_directory else ''
        line = f"{'  ' * depth}{STATUS_MARKERS[child.status]} {child.name}{suffix}"
        message = child.error_message or (child.detail.error_message if child.detail else None)
        note = child.detail.note if child.detail else None
        if message:
            line += f"  [{message}]"
        elif note:
            line += f"  ({note})"
        out.write(line + "\n")

        if child.is_directory:
            print_tree(child, out, show_equal, depth + 1)


def print_result(
    result: ComparisonResult,
    settings: ResolvedCompareSettings,
    out: TextIO,
    show_equal: bool = False,
) -> None:
    """Print the difference tree and summary."""
    right = result.right_path
    if result.baseline is not None:
        right = f"baseline {result.baseline.manifest_path} ({result.baseline.source_path})"
    out.write(f"Left:  {result.left_path}\n")
    out.write(f"Right: {right}\n")
    out.write(f"Mode:  {settings.mode.value} ({', '.join(a.value for a in settings.algorithms)})\n\n")

    print_tree(result.root, out, show_equal)
    if not result.summary.is_identical or show_equal:
        out.write("\n")
    out.write(f"{result.summary}\n")


def _warn_unsupported_reports(settings: ResolvedCompareSettings) -> None:
    for label, path in (
        ('json', settings.json_report_path),
        ('summary', settings.summary_report_path),
        ('csv', settings.csv_report_path),
        ('markdown', settings.markdown_report_path),
        ('html', settings.html_report_path),
    ):
        if path:
            logging.warning(f"main - No {label} exporter is installed; not writing {path}")


# =============================================================================
# Commands
# =============================================================================

def run_compare(
    args: argparse.Namespace,
    orchestrator: ComparisonOrchestrator,
    cancellation: CancellationToken,
    out: TextIO,
) -> int:
    input = build_settings_input(args)
    settings = orchestrator.resolve(input)
    if args.log_level is None:
        set_log_level(settings.verbosity.log_level)
    logging.debug(
        f"main - {settings.mode.value} comparison, {settings.threads} threads, "
        f"ignoring {list(settings.ignore_patterns)}"
    )
    _warn_unsupported_reports(settings)

    tracker = None if settings.no_progress else ComparisonProgressTracker()
    result, settings = orchestrator.run(
        input,
        progress_sink=tracker,
        cancellation=cancellation,
        settings=settings,
    )

    if tracker is not None:
        progress = tracker.snapshot()
        logging.info(
            f"main - {progress.files_completed} files, {progress.total_bytes} bytes hashed "
            f"in {progress.elapsed:.2f}s"
        )

    print_result(result, settings, out, show_equal=args.show_equal)
    return orchestrator.exit_code(result, settings.fail_on)


def run_snapshot(
    args: argparse.Namespace,
    orchestrator: ComparisonOrchestrator,
    cancellation: CancellationToken,
    out: TextIO,
) -> int:
    tracker = None if args.no_progress else ComparisonProgressTracker()
    manifest = orchestrator.create_snapshot(
        build_settings_input(args),
        args.output,
        progress_sink=tracker,
        cancellation=cancellation,
    )
    file_count = sum(1 for _ in _iter_manifest_files(manifest.root))
    out.write(
        f"Captured {file_count} files from {manifest.source_path} "
        f"({', '.join(a.value for a in manifest.algorithms) or 'no hashes'}) to {args.output}\n"
    )

    failed = manifest.failed_entries()
    for node in failed:
        out.write(f"! {node.relative_path}  [{node.error_message}]\n")
    if failed:
        logging.error(f"main - {len(failed)} entries could not be captured")
        return EXIT_ERRORS
    return EXIT_CLEAN


def _iter_manifest_files(node):
    if node.is_file:
        yield node
    for child in node.children:
        yield from _iter_manifest_files(child)


def main(argv: Optional[List[str]] = None, out: Optional[TextIO] = None) -> int:
    """
    Application main entry point.

    Returns:
        Exit code: 0 clean, 1 differences, 2 errors, 3 cancelled
    """
    args = parse_arguments(argv)
    out = out or sys.stdout

    setup_logging(args.log_level or "INFO", args.log_file)
    logging.debug(f"main - Starting {APP_NAME} v{__version__}")

    cancellation = CancellationToken()
    previous_handler = signal.getsignal(signal.SIGINT)

    def _interrupt(signum, frame):
        logging.warning("main - Interrupted, cancelling")
        cancellation.cancel()

    orchestrator = ComparisonOrchestrator()
    try:
        signal.signal(signal.SIGINT, _interrupt)
    except ValueError:
        # Not on the main thread
        previous_handler = None

    try:
        if args.command == 'snapshot':
            return run_snapshot(args, orchestrator, cancellation, out)
        return run_compare(args, orchestrator, cancellation, out)
    except ComparisonCancelledError:
        logging.warning("main - Comparison cancelled")
        return EXIT_CANCELLED
    except DriftScopeError as e:
        logging.error(f"main - {e}")
        return EXIT_ERRORS
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)


if __name__ == "__main__":
    sys.exit(main())
