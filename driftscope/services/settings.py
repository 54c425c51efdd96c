"""
Comparison settings: configuration files, profiles and resolution.

Three layers feed a run:
- built-in defaults
- the configuration file ("defaults" section and named "profiles")
- explicit command-line values

CompareSettingsResolver merges them into one immutable
ResolvedCompareSettings. Scalar options use the first layer that sets
them (CLI > profile > defaults > built-in); ignore globs are the union
of all layers.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from driftscope.core.folder.comparer import CompareOptions
from driftscope.core.models import (
    BaselineMetadata,
    ComparisonMode,
    ConfigurationError,
    HashAlgorithm,
)
from driftscope.services.filesystem import FileSystemProviderCatalog


CONFIG_FILE_NAME = "driftscope.config.json"


class FailOnPolicy(Enum):
    """Which outcomes produce a non-zero exit code."""
    DIFFERENCES = "differences"
    ERRORS = "errors"
    ANY = "any"
    NEVER = "never"

    @classmethod
    def from_string(cls, value: str) -> 'FailOnPolicy':
        """Create from string value."""
        for policy in cls:
            if policy.value == value.strip().lower():
                return policy
        raise ConfigurationError(
            f"Unsupported fail-on value '{value}'. "
            f"Expected one of: {', '.join(p.value for p in cls)}."
        )


class Verbosity(Enum):
    """Console and log detail level."""
    QUIET = "quiet"
    NORMAL = "normal"
    DETAILED = "detailed"
    DIAGNOSTIC = "diagnostic"

    @classmethod
    def from_string(cls, value: str) -> 'Verbosity':
        """Create from string value."""
        for verbosity in cls:
            if verbosity.value == value.strip().lower():
                return verbosity
        raise ConfigurationError(
            f"Unsupported verbosity '{value}'. "
            f"Expected one of: {', '.join(v.value for v in cls)}."
        )

    @property
    def log_level(self) -> int:
        return {
            Verbosity.QUIET: logging.WARNING,
            Verbosity.NORMAL: logging.INFO,
            Verbosity.DETAILED: logging.INFO,
            Verbosity.DIAGNOSTIC: logging.DEBUG,
        }[self]


# =============================================================================
# Configuration file
# =============================================================================

# camelCase key -> (attribute, expected type)
_PROFILE_KEYS: dict[str, tuple[str, str]] = {
    'left': ('left', 'str'),
    'right': ('right', 'str'),
    'mode': ('mode', 'str'),
    'algorithms': ('algorithms', 'list'),
    'ignore': ('ignore', 'list'),
    'caseSensitive': ('case_sensitive', 'bool'),
    'followSymlinks': ('follow_symlinks', 'bool'),
    'mtimeToleranceSeconds': ('mtime_tolerance_seconds', 'number'),
    'threads': ('threads', 'int'),
    'baseline': ('baseline', 'str'),
    'json': ('json_report', 'str'),
    'summary': ('summary_report', 'str'),
    'csv': ('csv_report', 'str'),
    'markdown': ('markdown_report', 'str'),
    'html': ('html_report', 'str'),
    'export': ('export_format', 'str'),
    'noProgress': ('no_progress', 'bool'),
    'diffTool': ('diff_tool', 'str'),
    'verbosity': ('verbosity', 'str'),
    'failOn': ('fail_on', 'str'),
    'timeoutSeconds': ('timeout_seconds', 'number'),
    'watchDebounceMilliseconds': ('watch_debounce_milliseconds', 'int'),
}


def _type_matches(value: Any, expected: str) -> bool:
    if expected == 'str':
        return isinstance(value, str)
    if expected == 'bool':
        return isinstance(value, bool)
    if expected == 'int':
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == 'number':
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == 'list':
        return isinstance(value, list) and all(isinstance(item, str) for item in value)
    return False


@dataclass
class CompareProfile:
    """One layer of comparison values from a configuration file. None means unset."""
    left: Optional[str] = None
    right: Optional[str] = None
    mode: Optional[str] = None
    algorithms: Optional[list[str]] = None
    ignore: Optional[list[str]] = None
    case_sensitive: Optional[bool] = None
    follow_symlinks: Optional[bool] = None
    mtime_tolerance_seconds: Optional[float] = None
    threads: Optional[int] = None
    baseline: Optional[str] = None
    json_report: Optional[str] = None
    summary_report: Optional[str] = None
    csv_report: Optional[str] = None
    markdown_report: Optional[str] = None
    html_report: Optional[str] = None
    export_format: Optional[str] = None
    no_progress: Optional[bool] = None
    diff_tool: Optional[str] = None
    verbosity: Optional[str] = None
    fail_on: Optional[str] = None
    timeout_seconds: Optional[float] = None
    watch_debounce_milliseconds: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any, scope: str, errors: list[str]) -> 'CompareProfile':
        """
        Build a profile from parsed JSON.

        Type problems are appended to ``errors`` as "scope: key" entries
        instead of raising, so that every problem can be reported at once.
        """
        profile = cls()
        if data is None:
            return profile
        if not isinstance(data, dict):
            errors.append(f"{scope}: expected an object")
            return profile

        for key, value in data.items():
            if key not in _PROFILE_KEYS:
                logging.warning(f"ConfigurationLoader - Ignoring unknown key '{scope}: {key}'")
                continue
            if value is None:
                continue
            attribute, expected = _PROFILE_KEYS[key]
            if not _type_matches(value, expected):
                errors.append(f"{scope}: {key} (expected {expected})")
                continue
            setattr(profile, attribute, list(value) if expected == 'list' else value)

        return profile

    def to_dict(self) -> dict[str, Any]:
        return {
            key: getattr(self, attribute)
            for key, (attribute, _) in _PROFILE_KEYS.items()
            if getattr(self, attribute) is not None
        }


@dataclass
class DriftConfiguration:
    """Parsed configuration file."""
    defaults: CompareProfile = field(default_factory=CompareProfile)
    profiles: dict[str, CompareProfile] = field(default_factory=dict)
    source_path: Optional[str] = None

    def get_profile(self, name: str) -> Optional[CompareProfile]:
        """Look up a profile by name, ignoring case."""
        if name in self.profiles:
            return self.profiles[name]
        folded = name.casefold()
        for profile_name, profile in self.profiles.items():
            if profile_name.casefold() == folded:
                return profile
        return None

    @classmethod
    def from_dict(cls, data: Any, source_path: Optional[str] = None) -> 'DriftConfiguration':
        """
        Build a configuration from parsed JSON.

        Raises:
            ConfigurationError: Naming the file and every invalid entry
        """
        label = source_path or '<memory>'
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file '{label}' must contain a JSON object.")

        errors: list[str] = []
        defaults = CompareProfile.from_dict(data.get('defaults'), 'defaults', errors)

        profiles: dict[str, CompareProfile] = {}
        raw_profiles = data.get('profiles') or {}
        if not isinstance(raw_profiles, dict):
            errors.append("profiles: expected an object")
        else:
            for name, raw in raw_profiles.items():
                profiles[name] = CompareProfile.from_dict(raw, f"profiles.{name}", errors)

        if errors:
            raise ConfigurationError(
                f"Configuration file '{label}' is invalid: " + "; ".join(errors)
            )

        return cls(defaults=defaults, profiles=profiles, source_path=source_path)

    def to_dict(self) -> dict[str, Any]:
        return {
            'defaults': self.defaults.to_dict(),
            'profiles': {name: p.to_dict() for name, p in self.profiles.items()},
        }


class ConfigurationLoader:
    """Finds and reads driftscope configuration files."""

    RELATIVE_SEARCH_PATHS = (
        CONFIG_FILE_NAME,
        os.path.join('.driftscope', 'config.json'),
        os.path.join('.driftscope', CONFIG_FILE_NAME),
    )

    HOME_SEARCH_PATHS = (
        os.path.join('.config', 'driftscope', CONFIG_FILE_NAME),
        os.path.join('.config', 'driftscope', 'config.json'),
        os.path.join('.driftscope', 'config.json'),
    )

    def __init__(self, start_directory: Optional[str] = None):
        self.start_directory = start_directory

    def load(self, path: Optional[str] = None) -> Optional[DriftConfiguration]:
        """
        Load a configuration file.

        Args:
            path: Explicit file path; searched for when omitted

        Returns:
            The parsed configuration, or None when no file was found

        Raises:
            ConfigurationError: If an explicit file is missing or any file is invalid
        """
        resolved = self._resolve_path(path)
        if resolved is None:
            logging.debug("ConfigurationLoader - No configuration file found")
            return None

        try:
            with open(resolved, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logging.error(f"ConfigurationLoader - Could not parse {resolved}: {e}")
            raise ConfigurationError(
                f"Configuration file '{resolved}' could not be parsed: {e}"
            ) from e
        except OSError as e:
            logging.error(f"ConfigurationLoader - Could not read {resolved}: {e}")
            raise ConfigurationError(
                f"Configuration file '{resolved}' could not be read: {e}"
            ) from e

        logging.info(f"ConfigurationLoader - Loaded configuration from {resolved}")
        return DriftConfiguration.from_dict(data, str(resolved))

    def _resolve_path(self, path: Optional[str]) -> Optional[Path]:
        if path:
            absolute = Path(os.path.abspath(os.path.expanduser(path)))
            if not absolute.is_file():
                logging.error(f"ConfigurationLoader - Configuration file not found: {absolute}")
                raise ConfigurationError(f"Configuration file not found: {absolute}")
            return absolute

        for candidate in self.candidates():
            if candidate.is_file():
                return candidate
        return None

    def candidates(self) -> Iterator[Path]:
        """Yield every search location in priority order, without duplicates."""
        seen: set[str] = set()

        def _unique(paths: Iterable[Path]) -> Iterator[Path]:
            for candidate in paths:
                absolute = os.path.abspath(candidate)
                key = os.path.normcase(absolute)
                if key not in seen:
                    seen.add(key)
                    yield Path(absolute)

        start = Path(self.start_directory or os.getcwd()).resolve()
        for ancestor in (start, *start.parents):
            yield from _unique(ancestor / relative for relative in self.RELATIVE_SEARCH_PATHS)

        yield from _unique(self._fallbacks())

    def _fallbacks(self) -> Iterator[Path]:
        home = os.path.expanduser('~')
        if home and home != '~':
            for relative in self.HOME_SEARCH_PATHS:
                yield Path(home) / relative

        config_home = os.environ.get('XDG_CONFIG_HOME')
        if config_home:
            yield Path(config_home) / 'driftscope' / CONFIG_FILE_NAME

        app_data = os.environ.get('APPDATA')
        if app_data:
            yield Path(app_data) / 'driftscope' / CONFIG_FILE_NAME


# =============================================================================
# Resolution
# =============================================================================

@dataclass
class CompareSettingsInput:
    """Values supplied on the command line. None means not given."""
    left_path: Optional[str] = None
    right_path: Optional[str] = None
    mode: Optional[str] = None
    algorithm: Optional[str] = None
    additional_algorithms: list[str] = field(default_factory=list)
    ignore_patterns: list[str] = field(default_factory=list)
    case_sensitive: Optional[bool] = None
    follow_symlinks: Optional[bool] = None
    mtime_tolerance_seconds: Optional[float] = None
    threads: Optional[int] = None
    baseline_path: Optional[str] = None
    json_report_path: Optional[str] = None
    summary_report_path: Optional[str] = None
    csv_report_path: Optional[str] = None
    markdown_report_path: Optional[str] = None
    html_report_path: Optional[str] = None
    export_format: Optional[str] = None
    no_progress: bool = False
    diff_tool: Optional[str] = None
    verbosity: Optional[str] = None
    fail_on: Optional[str] = None
    timeout_seconds: Optional[float] = None
    watch_debounce_milliseconds: Optional[int] = None
    profile: Optional[str] = None
    configuration_path: Optional[str] = None


@dataclass(frozen=True)
class ResolvedCompareSettings:
    """The single authoritative configuration for one run."""
    left_path: str
    right_path: Optional[str]
    mode: ComparisonMode
    algorithms: tuple[HashAlgorithm, ...]
    ignore_patterns: tuple[str, ...]
    case_sensitive: bool
    follow_symlinks: bool
    mtime_tolerance: Optional[float]  # seconds
    threads: int
    baseline_path: Optional[str] = None
    json_report_path: Optional[str] = None
    summary_report_path: Optional[str] = None
    csv_report_path: Optional[str] = None
    markdown_report_path: Optional[str] = None
    html_report_path: Optional[str] = None
    export_format: Optional[str] = None
    no_progress: bool = False
    diff_tool: Optional[str] = None
    verbosity: Verbosity = Verbosity.NORMAL
    fail_on: FailOnPolicy = FailOnPolicy.DIFFERENCES
    timeout: Optional[float] = None  # seconds
    watch_debounce: Optional[int] = None  # milliseconds
    algorithms_defaulted: bool = False
    uses_baseline: bool = False
    baseline_metadata: Optional[BaselineMetadata] = None

    def to_compare_options(self) -> CompareOptions:
        """Engine options for this run."""
        return CompareOptions(
            mode=self.mode,
            algorithms=self.algorithms,
            ignore_patterns=self.ignore_patterns,
            case_sensitive=self.case_sensitive,
            follow_symlinks=self.follow_symlinks,
            mtime_tolerance=self.mtime_tolerance,
            threads=self.threads,
        )

    def with_algorithms(self, algorithms: Iterable[HashAlgorithm]) -> 'ResolvedCompareSettings':
        return replace(self, algorithms=tuple(algorithms), algorithms_defaulted=False)

    def with_baseline(self, metadata: BaselineMetadata) -> 'ResolvedCompareSettings':
        return replace(self, uses_baseline=True, baseline_metadata=metadata)


def _first(*values):
    """Return the first value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


def _first_text(*values: Optional[str]) -> Optional[str]:
    """Return the first value that is not None or blank."""
    for value in values:
        if value is not None and value.strip():
            return value
    return None


def _union(*layers: Optional[Iterable[str]]) -> tuple[str, ...]:
    merged: dict[str, None] = {}
    for layer in layers:
        for value in layer or ():
            value = value.strip()
            if value:
                merged.setdefault(value, None)
    return tuple(merged)


def _normalize_path(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if FileSystemProviderCatalog.is_remote(value):
        return value
    return os.path.abspath(os.path.expanduser(value))


class CompareSettingsResolver:
    """Merges CLI input, a named profile and configuration defaults."""

    def resolve(
        self,
        input: CompareSettingsInput,
        configuration: Optional[DriftConfiguration] = None,
        require_target: bool = True,
    ) -> ResolvedCompareSettings:
        """
        Resolve the settings for one run.

        Args:
            input: Command-line values
            configuration: Parsed configuration file, if any
            require_target: Whether a right path or baseline is mandatory;
                snapshot captures only read the left side

        Returns:
            Immutable resolved settings

        Raises:
            ConfigurationError: If required values are missing or invalid
        """
        defaults = configuration.defaults if configuration is not None else CompareProfile()
        profile = self._select_profile(input.profile, configuration)

        left = _first_text(input.left_path, profile.left, defaults.left)
        if left is None:
            raise ConfigurationError("Left path must be specified either via CLI or configuration.")

        right = _first_text(input.right_path, profile.right, defaults.right)
        baseline = _first_text(input.baseline_path, profile.baseline, defaults.baseline)
        if require_target and right is None and baseline is None:
            raise ConfigurationError(
                "Right path must be specified either via CLI or configuration "
                "unless a baseline manifest is provided."
            )

        mode_text = _first_text(input.mode, profile.mode, defaults.mode)
        mode = ComparisonMode.from_string(mode_text) if mode_text else ComparisonMode.QUICK
        algorithms, algorithms_defaulted = self._resolve_algorithms(input, profile, defaults, mode)

        threads = _first(input.threads, profile.threads, defaults.threads)
        if threads is None:
            threads = os.cpu_count() or 1
        if threads < 1:
            raise ConfigurationError(f"Thread count must be positive, got {threads}.")

        tolerance = _first(
            input.mtime_tolerance_seconds,
            profile.mtime_tolerance_seconds,
            defaults.mtime_tolerance_seconds,
        )
        timeout = _first(input.timeout_seconds, profile.timeout_seconds, defaults.timeout_seconds)
        debounce = _first(
            input.watch_debounce_milliseconds,
            profile.watch_debounce_milliseconds,
            defaults.watch_debounce_milliseconds,
        )
        for label, value in (
            ("Modified time tolerance", tolerance),
            ("Timeout", timeout),
            ("Watch debounce interval", debounce),
        ):
            if value is not None and value < 0:
                raise ConfigurationError(f"{label} must not be negative, got {value}.")

        verbosity_text = _first_text(input.verbosity, profile.verbosity, defaults.verbosity)
        fail_on_text = _first_text(input.fail_on, profile.fail_on, defaults.fail_on)

        settings = ResolvedCompareSettings(
            left_path=_normalize_path(left),
            right_path=_normalize_path(right),
            mode=mode,
            algorithms=algorithms,
            ignore_patterns=_union(defaults.ignore, profile.ignore, input.ignore_patterns),
            case_sensitive=bool(_first(input.case_sensitive, profile.case_sensitive, defaults.case_sensitive, False)),
            follow_symlinks=bool(_first(input.follow_symlinks, profile.follow_symlinks, defaults.follow_symlinks, False)),
            mtime_tolerance=float(tolerance) if tolerance is not None else None,
            threads=int(threads),
            baseline_path=_normalize_path(baseline),
            json_report_path=_first_text(input.json_report_path, profile.json_report, defaults.json_report),
            summary_report_path=_first_text(input.summary_report_path, profile.summary_report, defaults.summary_report),
            csv_report_path=_first_text(input.csv_report_path, profile.csv_report, defaults.csv_report),
            markdown_report_path=_first_text(input.markdown_report_path, profile.markdown_report, defaults.markdown_report),
            html_report_path=_first_text(input.html_report_path, profile.html_report, defaults.html_report),
            export_format=_first_text(input.export_format, profile.export_format, defaults.export_format),
            no_progress=bool(input.no_progress or profile.no_progress or defaults.no_progress),
            diff_tool=_first_text(input.diff_tool, profile.diff_tool, defaults.diff_tool),
            verbosity=Verbosity.from_string(verbosity_text) if verbosity_text else Verbosity.NORMAL,
            fail_on=FailOnPolicy.from_string(fail_on_text) if fail_on_text else FailOnPolicy.DIFFERENCES,
            timeout=float(timeout) if timeout is not None else None,
            watch_debounce=int(debounce) if debounce is not None else None,
            algorithms_defaulted=algorithms_defaulted,
        )

        logging.debug(f"CompareSettingsResolver - Resolved settings: {settings}")
        return settings

    @staticmethod
    def _select_profile(
        name: Optional[str],
        configuration: Optional[DriftConfiguration],
    ) -> CompareProfile:
        if name is None or not name.strip():
            return CompareProfile()

        if configuration is None:
            raise ConfigurationError(
                f"Profile '{name}' was requested but no configuration file was found."
            )

        profile = configuration.get_profile(name)
        if profile is None:
            available = ', '.join(sorted(configuration.profiles)) or 'none'
            raise ConfigurationError(
                f"Profile '{name}' was not found in the configuration file "
                f"(available: {available})."
            )
        return profile

    @staticmethod
    def _resolve_algorithms(
        input: CompareSettingsInput,
        profile: CompareProfile,
        defaults: CompareProfile,
        mode: ComparisonMode,
    ) -> tuple[tuple[HashAlgorithm, ...], bool]:
        """
        Resolve the algorithm set.

        The primary set follows scalar precedence; CLI extras are always
        added on top. Returns the set and whether only the built-in
        default applied.
        """
        defaulted = False
        if input.algorithm and input.algorithm.strip():
            primary = [input.algorithm]
        elif profile.algorithms:
            primary = list(profile.algorithms)
        elif defaults.algorithms:
            primary = list(defaults.algorithms)
        else:
            primary = ['crc32' if mode == ComparisonMode.QUICK else 'sha256']
            defaulted = True

        extras = [name for name in input.additional_algorithms if name and name.strip()]
        if extras:
            defaulted = False

        algorithms = tuple(dict.fromkeys(
            HashAlgorithm.from_string(name) for name in [*primary, *extras]
        ))
        return algorithms, defaulted
