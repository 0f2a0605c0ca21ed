"""
Analysis pipeline: discover, extract, collect, analyze, report.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path

from .analyzer import analyze
from .collector import collect
from .config import Config
from .extraction import ExtractionResult, discover_archives, extract_all
from .models import MismatchRecord, ModuleRecord
from .report import log_results, write_csv_report, write_text_report
from .snapshot import write_snapshot

logger = logging.getLogger(__name__)

TEMP_PARENT = "module-version-analysis"


def default_temp_dir() -> Path:
    """Fresh per-run extraction root below the system temp directory."""
    return Path(tempfile.gettempdir()) / TEMP_PARENT / uuid.uuid4().hex


@dataclass(frozen=True)
class AnalysisOptions:
    """
    Options of one analysis run.

    Attributes:
        assets_dir: Directory holding the distribution archives
        temp_dir: Extraction root (a fresh directory per run by default)
        test_mode: Process only the first config.test_mode_archives archives
        keep_temp: Leave the extraction root on disk after the run
        output_dir: Directory receiving the text and CSV reports
        json_path: Optional JSON snapshot destination
        config: Loaded configuration
        extract_workers: Override of config.extraction.max_workers
        analysis_workers: Override of config.analysis.max_workers
        verbose: Enable verbose logging
    """
    assets_dir: Path = Path("assets")
    temp_dir: Path = field(default_factory=default_temp_dir)
    test_mode: bool = False
    keep_temp: bool = False
    output_dir: Path = field(default_factory=Path.cwd)
    json_path: Path | None = None
    config: Config = field(default_factory=Config)
    extract_workers: int | None = None
    analysis_workers: int | None = None
    verbose: bool = False


@dataclass
class AnalysisResult:
    """
    Everything produced by one run.

    Attributes:
        archives: Archives selected for processing
        extraction: Extraction stage outcome
        records: Collected module records
        mismatches: Detected mismatches
        text_report: Written text report
        csv_report: Written CSV report
        snapshot: Written JSON snapshot, if requested
        timings: Stage durations in seconds (extraction, analysis, mismatch_detection, total)
    """
    archives: list[Path] = field(default_factory=list)
    extraction: ExtractionResult | None = None
    records: list[ModuleRecord] = field(default_factory=list)
    mismatches: list[MismatchRecord] = field(default_factory=list)
    text_report: Path | None = None
    csv_report: Path | None = None
    snapshot: Path | None = None
    timings: dict[str, float] = field(default_factory=dict)


def cleanup_temp(temp_dir: Path, keep_temp: bool) -> None:
    """Remove the extraction root unless it should be kept."""
    temp_dir = Path(temp_dir)
    if not temp_dir.exists():
        return
    if keep_temp:
        logger.info(f"⚠️ Temporary files kept at: {temp_dir}")
        return
    try:
        shutil.rmtree(temp_dir)
        logger.info("Cleaned up temporary directory")
    except OSError as e:
        logger.warning(f"Failed to cleanup temporary directory {temp_dir}: {e}")


def run_analysis(options: AnalysisOptions, stop_event: threading.Event | None = None) -> AnalysisResult:
    """
    Run the complete analysis.

    The extraction root is removed in all cases unless options.keep_temp is
    set, including when a stage raises.

    Raises:
        OSError: If the extraction root cannot be created or a report cannot be written
    """
    config = options.config
    result = AnalysisResult()
    total_start = time.time()

    logger.info("Starting version analysis...")
    if options.test_mode:
        logger.info(
            f"🧪 Running in TEST MODE - processing only first {config.test_mode_archives} archives"
        )
    logger.info(f"Assets path: {options.assets_dir}")
    logger.info(f"Temp extraction path: {options.temp_dir}")

    try:
        Path(options.temp_dir).mkdir(parents=True, exist_ok=True)

        archives = discover_archives(options.assets_dir, config.extraction)
        if options.test_mode:
            archives = archives[:config.test_mode_archives]
        result.archives = archives
        logger.info(f"Processing {len(archives)} archives")

        stage_start = time.time()
        result.extraction = extract_all(
            archives,
            options.temp_dir,
            max_concurrent=options.extract_workers,
            prefs=config.extraction,
            stop_event=stop_event,
            verbose=options.verbose,
        )
        result.timings["extraction"] = time.time() - stage_start

        analysis_prefs = config.analysis
        if options.analysis_workers:
            analysis_prefs = replace(analysis_prefs, max_workers=options.analysis_workers)

        stage_start = time.time()
        result.records = collect(
            options.temp_dir,
            analysis_prefs,
            stop_event=stop_event,
            verbose=options.verbose,
            archive_dirs=list(result.extraction.directories),
        )
        result.timings["analysis"] = time.time() - stage_start

        stage_start = time.time()
        result.mismatches = analyze(result.records)
        result.timings["mismatch_detection"] = time.time() - stage_start

        log_results(result.mismatches, result.records, config.report.console_examples)

        output_dir = Path(options.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        result.text_report = write_text_report(
            output_dir / config.report.text_report, result.mismatches, result.records
        )
        result.csv_report = write_csv_report(output_dir / config.report.csv_report, result.mismatches)
        logger.info(f"📄 Detailed report saved to: {result.text_report}")
        logger.info(f"📊 CSV report saved to: {result.csv_report}")

        if options.json_path is not None:
            write_snapshot(
                options.json_path,
                result.records,
                result.mismatches,
                extra_meta={
                    "assets_dir": str(options.assets_dir),
                    "test_mode": options.test_mode,
                    "extraction_failures": [f.to_dict() for f in result.extraction.failures],
                },
            )
            result.snapshot = Path(options.json_path)
            logger.info(f"💾 JSON snapshot saved to: {result.snapshot}")
    finally:
        cleanup_temp(options.temp_dir, options.keep_temp)

    result.timings["total"] = time.time() - total_start
    logger.info(
        "⏱️ Timings: "
        + ", ".join(f"{stage} {seconds:.1f}s" for stage, seconds in result.timings.items())
    )
    return result
