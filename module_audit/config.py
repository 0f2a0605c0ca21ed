"""
Configuration file parsing and management.

Supports YAML configuration files with JSON fallback.
Merges configurations from multiple sources (custom → project → user → system → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from .common import vlog


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".module-audit.yml",                                      # Project root (highest priority)
    ".module-audit.yaml",
    os.path.expanduser("~/.config/module-audit/config.yml"),  # User global
    os.path.expanduser("~/.config/module-audit/config.yaml"),
    "/etc/module-audit/config.yml",                           # System global
    "/etc/module-audit/config.yaml",
]

DEFAULT_ARCHIVE_EXTENSIONS = (".zip", ".tar.gz", ".exe", ".rpm", ".deb", ".pkg", ".nupkg")
DEFAULT_NESTED_EXTENSIONS = (".zip", ".nupkg", ".jar", ".war", ".ear")
DEFAULT_EXCLUDED_SUFFIXES = (".sha512",)
DEFAULT_MODULE_EXTENSIONS = (".dll", ".exe")

# Nested archives are always opened with the zip reader
ZIP_BASED_EXTENSIONS = frozenset(DEFAULT_NESTED_EXTENSIONS)

MAX_WORKERS_LIMIT = 256
MAX_NESTED_DEPTH = 16


def _extensions(values: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if values is None:
        return default
    if isinstance(values, str):
        values = [values]
    return tuple(str(v).lower() for v in values)


def _check_extensions(label: str, values: tuple[str, ...]) -> None:
    for ext in values:
        if not ext.startswith(".") or len(ext) < 2:
            raise ValueError(f"Invalid {label} entry: {ext!r}. Extensions must start with '.'")


def _check_workers(label: str, value: int) -> None:
    if value < 0 or value > MAX_WORKERS_LIMIT:
        raise ValueError(
            f"Invalid {label}: {value}. Must be between 0 and {MAX_WORKERS_LIMIT} (0 = auto)"
        )


@dataclass(frozen=True)
class ExtractionPreferences:
    """
    Preferences for the archive extraction stage.

    Attributes:
        max_workers: Simultaneous archive extractions (0 = available parallelism)
        nested_depth: Maximum number of `nested` path segments below an archive root
        archive_extensions: Input archive suffixes picked up from the assets directory
        nested_extensions: Suffixes of entries that are expanded as nested archives
        excluded_suffixes: Suffixes excluded from discovery even if otherwise matching
    """
    max_workers: int = 0
    nested_depth: int = 3
    archive_extensions: tuple[str, ...] = DEFAULT_ARCHIVE_EXTENSIONS
    nested_extensions: tuple[str, ...] = DEFAULT_NESTED_EXTENSIONS
    excluded_suffixes: tuple[str, ...] = DEFAULT_EXCLUDED_SUFFIXES

    def __post_init__(self):
        """Validate preferences after initialization."""
        _check_workers("extraction max_workers", self.max_workers)
        if self.nested_depth < 0 or self.nested_depth > MAX_NESTED_DEPTH:
            raise ValueError(
                f"Invalid nested_depth: {self.nested_depth}. "
                f"Must be between 0 and {MAX_NESTED_DEPTH}"
            )
        _check_extensions("archive_extensions", self.archive_extensions)
        _check_extensions("nested_extensions", self.nested_extensions)
        _check_extensions("excluded_suffixes", self.excluded_suffixes)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ExtractionPreferences:
        """Create ExtractionPreferences from dictionary."""
        return ExtractionPreferences(
            max_workers=data.get("max_workers", 0),
            nested_depth=data.get("nested_depth", 3),
            archive_extensions=_extensions(data.get("archive_extensions"), DEFAULT_ARCHIVE_EXTENSIONS),
            nested_extensions=_extensions(data.get("nested_extensions"), DEFAULT_NESTED_EXTENSIONS),
            excluded_suffixes=_extensions(data.get("excluded_suffixes"), DEFAULT_EXCLUDED_SUFFIXES),
        )


@dataclass(frozen=True)
class AnalysisPreferences:
    """
    Preferences for module collection and metadata analysis.

    Attributes:
        max_workers: Simultaneous module analyses (0 = twice the available parallelism)
        module_extensions: Suffixes of files considered module candidates
        use_version_resource: Read the file version from the Win32 version resource first
    """
    max_workers: int = 0
    module_extensions: tuple[str, ...] = DEFAULT_MODULE_EXTENSIONS
    use_version_resource: bool = True

    def __post_init__(self):
        """Validate preferences after initialization."""
        _check_workers("analysis max_workers", self.max_workers)
        if not self.module_extensions:
            raise ValueError("module_extensions must not be empty")
        _check_extensions("module_extensions", self.module_extensions)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> AnalysisPreferences:
        """Create AnalysisPreferences from dictionary."""
        return AnalysisPreferences(
            max_workers=data.get("max_workers", 0),
            module_extensions=_extensions(data.get("module_extensions"), DEFAULT_MODULE_EXTENSIONS),
            use_version_resource=data.get("use_version_resource", True),
        )


@dataclass(frozen=True)
class ReportPreferences:
    """
    Report output preferences.

    Attributes:
        text_report: File name of the detailed text report
        csv_report: File name of the CSV report
        console_examples: Archives listed per version value in the console summary
    """
    text_report: str = "version-mismatch-report.txt"
    csv_report: str = "version-mismatch-report.csv"
    console_examples: int = 3

    def __post_init__(self):
        """Validate preferences after initialization."""
        if not self.text_report or not self.csv_report:
            raise ValueError("Report file names must not be empty")
        if self.console_examples < 1 or self.console_examples > 100:
            raise ValueError(
                f"Invalid console_examples: {self.console_examples}. "
                "Must be between 1 and 100"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ReportPreferences:
        """Create ReportPreferences from dictionary."""
        return ReportPreferences(
            text_report=data.get("text_report", "version-mismatch-report.txt"),
            csv_report=data.get("csv_report", "version-mismatch-report.csv"),
            console_examples=data.get("console_examples", 3),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for the module version audit.

    Attributes:
        version: Config schema version
        extraction: Extraction stage preferences
        analysis: Collection/analysis stage preferences
        report: Report output preferences
        test_mode_archives: Number of archives processed in test mode
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    extraction: ExtractionPreferences = field(default_factory=ExtractionPreferences)
    analysis: AnalysisPreferences = field(default_factory=AnalysisPreferences)
    report: ReportPreferences = field(default_factory=ReportPreferences)
    test_mode_archives: int = 3
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")
        if self.test_mode_archives < 1:
            raise ValueError(
                f"Invalid test_mode_archives: {self.test_mode_archives}. Must be at least 1"
            )

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        return Config(
            version=data.get("version", 1),
            extraction=ExtractionPreferences.from_dict(data.get("extraction") or {}),
            analysis=AnalysisPreferences.from_dict(data.get("analysis") or {}),
            report=ReportPreferences.from_dict(data.get("report") or {}),
            test_mode_archives=data.get("test_mode_archives", 3),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        A value of this config wins when it differs from the built-in default;
        otherwise the other config's value is used.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        return Config(
            version=self.version,
            extraction=_merge_dataclass(self.extraction, other.extraction, ExtractionPreferences()),
            analysis=_merge_dataclass(self.analysis, other.analysis, AnalysisPreferences()),
            report=_merge_dataclass(self.report, other.report, ReportPreferences()),
            test_mode_archives=(
                self.test_mode_archives if self.test_mode_archives != 3 else other.test_mode_archives
            ),
            source=self.source or other.source,
        )


def _merge_dataclass(mine, theirs, default):
    values = {}
    for name in mine.__dataclass_fields__:
        value = getattr(mine, name)
        values[name] = value if value != getattr(default, name) else getattr(theirs, name)
    return type(mine)(**values)


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed configuration dictionary, or None if YAML not available or file invalid
    """
    try:
        import yaml
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except ImportError:
        return None  # PyYAML not installed
    except (OSError, yaml.YAMLError):
        return None  # File not found or invalid YAML


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Args:
        file_path: Path to JSON file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    JSON files are read directly; YAML files are parsed with PyYAML, falling
    back to a sibling .json file when YAML cannot be read.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)
        if data is None:
            json_path = os.path.splitext(file_path)[0] + ".json"
            if os.path.exists(json_path):
                vlog(f"YAML not readable, trying JSON: {json_path}", verbose)
                data = _load_json(json_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError, AttributeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .module-audit.yml
    3. User ~/.config/module-audit/config.yml
    4. System /etc/module-audit/config.yml
    5. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []
    extraction = config.extraction

    for label, values in (
        ("archive_extensions", extraction.archive_extensions),
        ("nested_extensions", extraction.nested_extensions),
        ("module_extensions", config.analysis.module_extensions),
    ):
        if len(values) != len(set(values)):
            warnings.append(f"Duplicate entries in {label}")

    for ext in extraction.nested_extensions:
        if ext not in ZIP_BASED_EXTENSIONS:
            warnings.append(
                f"Nested extension {ext} is not zip based; such entries will fail to open"
            )

    excluded = set(extraction.excluded_suffixes)
    for ext in extraction.archive_extensions:
        if ext in excluded:
            warnings.append(f"Archive extension {ext} is also excluded and will never match")

    if config.report.text_report == config.report.csv_report:
        warnings.append("Text and CSV reports share the same file name")

    return warnings
