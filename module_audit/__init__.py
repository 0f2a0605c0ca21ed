"""
Module Version Audit - version mismatch detection across distribution archives.

Core Modules:
- Extraction: Concurrent, idempotent, nested archive extraction
- Metadata: PE/CLI header and ECMA-335 metadata parsing without platform APIs
- Collection: Parallel managed module discovery and version reading
- Analysis: Case-insensitive grouping and per-field mismatch detection
- Reporting: Text, CSV and JSON outputs
"""

__version__ = "1.0.0"
__author__ = "Module Version Audit Contributors"

# Foundation
from .config import (
    Config,
    ExtractionPreferences,
    AnalysisPreferences,
    ReportPreferences,
    load_config,
    load_config_file,
    validate_config,
)
from .logging_config import setup_logging, get_logger
from .models import ModuleRecord, MismatchRecord, VersionField, VersionGroup

# Extraction
from .archives import (
    ArchiveKind,
    ExtractionError,
    UnsupportedArchiveError,
    UnsafeEntryError,
    archive_kind,
    open_archive,
)
from .extraction import (
    ExtractionFailure,
    ExtractionResult,
    discover_archives,
    extract_all,
    extract_archive,
)

# Metadata
from .pe import ModuleFormatError, PEImage, parse_pe
from .metadata import MetadataReader, AssemblyIdentity, assembly_identity, find_attribute_string
from .reader import is_managed_module, read_module, read_version_resource

# Collection and analysis
from .collector import collect
from .analyzer import analyze

# Reporting
from .report import write_text_report, write_csv_report, log_results
from .snapshot import write_snapshot, load_snapshot

# Pipeline
from .pipeline import AnalysisOptions, AnalysisResult, run_analysis

__all__ = [
    # Version
    "__version__",
    # Foundation
    "Config",
    "ExtractionPreferences",
    "AnalysisPreferences",
    "ReportPreferences",
    "load_config",
    "load_config_file",
    "validate_config",
    "setup_logging",
    "get_logger",
    "ModuleRecord",
    "MismatchRecord",
    "VersionField",
    "VersionGroup",
    # Extraction
    "ArchiveKind",
    "ExtractionError",
    "UnsupportedArchiveError",
    "UnsafeEntryError",
    "archive_kind",
    "open_archive",
    "ExtractionFailure",
    "ExtractionResult",
    "discover_archives",
    "extract_all",
    "extract_archive",
    # Metadata
    "ModuleFormatError",
    "PEImage",
    "parse_pe",
    "MetadataReader",
    "AssemblyIdentity",
    "assembly_identity",
    "find_attribute_string",
    "is_managed_module",
    "read_module",
    "read_version_resource",
    # Collection and analysis
    "collect",
    "analyze",
    # Reporting
    "write_text_report",
    "write_csv_report",
    "log_results",
    "write_snapshot",
    "load_snapshot",
    # Pipeline
    "AnalysisOptions",
    "AnalysisResult",
    "run_analysis",
]
