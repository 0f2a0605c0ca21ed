"""
Module collection over an extraction root.

Two independently sized worker pools: one walks the top-level archive
directories looking for managed module candidates, the other reads the
metadata of every candidate file.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

from .common import available_parallelism, has_suffix, vlog
from .config import AnalysisPreferences
from .models import ModuleRecord
from .progress import ProgressTracker
from .reader import is_managed_module, read_module

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100


@dataclass(frozen=True)
class ModuleCandidate:
    """A file that passed the managed-module pre-filter."""
    path: Path
    archive_dir: Path

    @property
    def source_archive(self) -> str:
        return self.archive_dir.name


def archive_directories(extraction_root: Path) -> list[Path]:
    """Top-level per-archive directories below the extraction root, sorted."""
    root = Path(extraction_root)
    if not root.is_dir():
        return []
    return sorted(p for p in root.iterdir() if p.is_dir())


def find_candidates(archive_dir: Path, prefs: AnalysisPreferences | None = None) -> list[ModuleCandidate]:
    """
    Recursively find managed module files inside one archive directory.

    Files are matched by extension (case-insensitive) and then checked for a
    CLI header so native binaries never reach the metadata reader.
    """
    prefs = prefs or AnalysisPreferences()
    candidates = []
    for path in sorted(Path(archive_dir).rglob("*")):
        if not has_suffix(path.name, prefs.module_extensions) or not path.is_file():
            continue
        if is_managed_module(path):
            candidates.append(ModuleCandidate(path, Path(archive_dir)))
        else:
            logger.debug(f"Skipping non-managed file: {path}")
    return candidates


def collect(
    extraction_root: Path,
    prefs: AnalysisPreferences | None = None,
    stop_event: threading.Event | None = None,
    verbose: bool = False,
    archive_dirs: list[Path] | None = None,
) -> list[ModuleRecord]:
    """
    Read every managed module found below the extraction root.

    Args:
        extraction_root: Directory holding one subdirectory per extracted archive
        prefs: Analysis preferences (extensions, worker count, file version source)
        stop_event: Once set, files and directories not yet started are skipped
        verbose: Enable verbose logging
        archive_dirs: Restrict collection to these archive directories

    Returns:
        ModuleRecords in no particular order; unreadable files contribute nothing
    """
    prefs = prefs or AnalysisPreferences()
    start_time = time.time()

    if archive_dirs is None:
        archive_dirs = archive_directories(extraction_root)
    if not archive_dirs:
        logger.info("No extracted archives to analyze")
        return []

    def _stopped() -> bool:
        return stop_event is not None and stop_event.is_set()

    def _discover(archive_dir: Path) -> list[ModuleCandidate]:
        if _stopped():
            return []
        return find_candidates(archive_dir, prefs)

    # Stage 1: candidate discovery, parallel across archive directories
    candidates: list[ModuleCandidate] = []
    discovery_workers = min(len(archive_dirs), available_parallelism())
    with ThreadPoolExecutor(max_workers=discovery_workers, thread_name_prefix="discover") as executor:
        futures = {executor.submit(_discover, d): d for d in archive_dirs}
        for future in as_completed(futures):
            archive_dir = futures[future]
            try:
                found = future.result()
            except OSError as e:
                logger.warning(f"Cannot scan {archive_dir}: {e}")
                continue
            vlog(f"Found {len(found)} modules in {archive_dir.name}", verbose)
            candidates.extend(found)

    logger.info(f"🔍 Found {len(candidates)} modules to analyze")
    if not candidates:
        return []

    # Stage 2: metadata reading, parallel across files
    results: list[ModuleRecord] = []
    results_lock = threading.Lock()

    tracker = ProgressTracker(total=len(candidates))

    def _report(current: int, total: int, item: str) -> None:
        if current % PROGRESS_INTERVAL == 0 or current == total:
            logger.info(f"🔍 Analyzed {current}/{total} modules ({tracker.percentage(current):.1f}%)")

    tracker.register_callback(_report)

    def _analyze(candidate: ModuleCandidate) -> None:
        if _stopped():
            return
        record = read_module(
            candidate.path,
            source_archive=candidate.source_archive,
            archive_root=candidate.archive_dir,
            use_version_resource=prefs.use_version_resource,
        )
        if record is not None:
            with results_lock:
                results.append(record)
        tracker.advance(candidate.path.name)

    analysis_workers = prefs.max_workers or 2 * available_parallelism()
    with ThreadPoolExecutor(max_workers=analysis_workers, thread_name_prefix="analyze") as executor:
        futures = {executor.submit(_analyze, c): c for c in candidates}
        for future in as_completed(futures):
            try:
                future.result()
            except Exception as e:
                logger.warning(f"Unexpected error analyzing {futures[future].path}: {e}")

    logger.info(
        f"✅ Analysis completed: {len(results)} managed modules from {len(candidates)} candidates "
        f"in {time.time() - start_time:.1f}s"
    )
    return results
