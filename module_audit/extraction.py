"""
Concurrent, idempotent extraction of distribution archives.

Each input archive is expanded into its own directory below the extraction
root. Archives found inside the extracted content are expanded in turn into
`nested/<name>` subdirectories, up to a fixed number of `nested` levels.
The payloads of .deb and .pkg packages are unpacked in place, next to the
package members that carried them.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .archives import (
    PAYLOAD_PACKAGE_SUFFIXES,
    ArchiveKind,
    ExtractionError,
    UnsafeEntryError,
    UnsupportedArchiveError,
    archive_kind,
    is_package_payload,
    open_archive,
)
from .common import available_parallelism, has_suffix, sanitize_directory_name, vlog
from .config import ExtractionPreferences
from .progress import ProgressTracker

logger = logging.getLogger(__name__)

NESTED_DIR = "nested"


@dataclass(frozen=True)
class ExtractionFailure:
    """An archive that contributed no content, and why."""
    archive: str
    reason: str

    def to_dict(self) -> dict:
        return {"archive": self.archive, "reason": self.reason}


@dataclass(frozen=True)
class ArchiveOutcome:
    """
    Result of extracting a single top-level archive.

    Attributes:
        archive: Input archive path
        destination: Extraction directory of the archive
        status: "extracted", "skipped" (already populated), "failed" or "cancelled"
        files_written: Regular files written, nested content included
        nested_archives: Nested archives expanded successfully
        reason: Failure reason for failed/cancelled outcomes
    """
    archive: Path
    destination: Path
    status: str
    files_written: int = 0
    nested_archives: int = 0
    reason: str = ""


@dataclass(frozen=True)
class ExtractionResult:
    """
    Outcome of extracting a batch of archives.

    Attributes:
        extracted: Directories populated by this run
        skipped: Directories that were already populated and left untouched
        failures: Archives that could not be extracted
        cancelled: Archives not processed because cancellation was requested
        duration_seconds: Wall-clock time of the batch
    """
    extracted: tuple[Path, ...]
    skipped: tuple[Path, ...]
    failures: tuple[ExtractionFailure, ...]
    cancelled: tuple[str, ...] = ()
    duration_seconds: float = 0.0

    @property
    def directories(self) -> tuple[Path, ...]:
        """Every archive directory holding content after the run."""
        return self.extracted + self.skipped


@dataclass(frozen=True)
class _WorkItem:
    archive: Path
    kind: ArchiveKind
    destination: Path
    depth: int


def discover_archives(
    assets_dir: Path,
    prefs: ExtractionPreferences | None = None,
) -> list[Path]:
    """
    List the archives directly inside an assets directory.

    Args:
        assets_dir: Directory holding the distribution archives
        prefs: Extraction preferences (suffix lists)

    Returns:
        Matching archive paths sorted by name
    """
    prefs = prefs or ExtractionPreferences()
    assets_dir = Path(assets_dir)
    if not assets_dir.is_dir():
        logger.warning(f"Assets directory not found: {assets_dir}")
        return []

    files = sorted(
        p for p in assets_dir.iterdir()
        if p.is_file()
        and has_suffix(p.name, prefs.archive_extensions)
        and not has_suffix(p.name, prefs.excluded_suffixes)
    )

    total_size = sum(p.stat().st_size for p in files)
    logger.info(f"📊 Total archive size: {total_size / (1024 ** 3):.2f} GB ({len(files)} files)")
    return files


def destination_for(archive: Path, dest_root: Path) -> Path:
    """Extraction directory of a top-level archive."""
    return Path(dest_root) / sanitize_directory_name(Path(archive).name)


def is_nested_archive(name: str, prefs: ExtractionPreferences | None = None) -> bool:
    """Whether an extracted entry should itself be expanded."""
    prefs = prefs or ExtractionPreferences()
    return has_suffix(name, prefs.nested_extensions)


def _is_populated(directory: Path) -> bool:
    return directory.is_dir() and any(directory.iterdir())


def _safe_target(root: Path, name: str) -> Path:
    """
    Map an entry name onto a path below root.

    Raises:
        UnsafeEntryError: For absolute names, drive letters or `..` segments
    """
    normalized = name.replace("\\", "/")
    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if (
        not parts
        or normalized.startswith("/")
        or ".." in parts
        or (len(parts[0]) >= 2 and parts[0][1] == ":")
    ):
        raise UnsafeEntryError(f"Unsafe entry path: {name!r}")
    return root.joinpath(*parts)


def _expand_one(item: _WorkItem, prefs: ExtractionPreferences) -> tuple[int, list[_WorkItem]]:
    """
    Write every regular entry of one archive below item.destination.

    The payload members of a .deb or .pkg are queued at the package's own
    level, so their content lands in the same archive directory and a payload
    failure fails the package.

    Returns:
        Number of files written and the archives found among them
    """
    written = 0
    found: list[_WorkItem] = []
    expects_payload = (
        item.kind is ArchiveKind.PACKAGE
        and has_suffix(item.archive.name, PAYLOAD_PACKAGE_SUFFIXES)
    )
    payloads = 0

    with open_archive(item.archive, item.kind) as reader:
        for entry in reader.entries():
            if entry.is_dir:
                continue
            try:
                target = _safe_target(item.destination, entry.name)
            except UnsafeEntryError as e:
                logger.warning(f"{item.archive.name}: {e}, entry skipped")
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as out:
                for chunk in entry.chunks():
                    out.write(chunk)
            written += 1

            if expects_payload and is_package_payload(item.archive.name, entry.name):
                payloads += 1
                found.append(_WorkItem(
                    archive=target,
                    kind=ArchiveKind.PACKAGE,
                    destination=target.parent,
                    depth=item.depth,
                ))
            elif item.depth < prefs.nested_depth and is_nested_archive(target.name, prefs):
                found.append(_WorkItem(
                    archive=target,
                    kind=ArchiveKind.ZIP,
                    destination=item.destination / NESTED_DIR / target.stem,
                    depth=item.depth + 1,
                ))

    if expects_payload and not payloads:
        logger.warning(f"{item.archive.name}: package has no payload, no installed files extracted")
    elif payloads:
        logger.debug(f"{item.archive.name}: expanding {payloads} payload(s)")
    return written, found


def extract_archive(
    archive: Path,
    dest_root: Path,
    prefs: ExtractionPreferences | None = None,
    verbose: bool = False,
) -> ArchiveOutcome:
    """
    Extract one archive, including the archives nested inside it.

    Nested archives are processed from an explicit work list; each level adds
    one `nested` path segment and expansion stops once prefs.nested_depth
    levels exist. A failing nested archive is logged and skipped. A failure of
    the top-level archive removes its partial output.

    Args:
        archive: Archive file to extract
        dest_root: Extraction root shared by all archives
        prefs: Extraction preferences
        verbose: Enable verbose logging

    Returns:
        ArchiveOutcome describing what happened (never raises for bad input)
    """
    prefs = prefs or ExtractionPreferences()
    archive = Path(archive)
    destination = destination_for(archive, dest_root)

    if _is_populated(destination):
        logger.debug(f"Skipping extraction of {archive.name} - already extracted to {destination}")
        return ArchiveOutcome(archive, destination, "skipped")

    kind = archive_kind(archive.name)
    if kind is None:
        reason = f"Unsupported archive format: {archive.name}"
        logger.warning(reason)
        return ArchiveOutcome(archive, destination, "failed", reason=reason)

    vlog(f"Extracting {archive.name} to {destination}", verbose)
    files_written = 0
    nested_done = 0
    work = deque([_WorkItem(archive, kind, destination, depth=0)])

    try:
        destination.mkdir(parents=True, exist_ok=True)
        while work:
            item = work.popleft()
            if item.depth == 0:
                written, found = _expand_one(item, prefs)
            else:
                logger.debug(f"📦 Extracting nested archive: {item.archive.name} (level {item.depth})")
                try:
                    item.destination.mkdir(parents=True, exist_ok=True)
                    written, found = _expand_one(item, prefs)
                    nested_done += 1
                except Exception as e:
                    logger.debug(f"Failed to extract nested archive {item.archive.name}: {e}")
                    continue
            files_written += written
            work.extend(found)
    except Exception as e:
        if kind is ArchiveKind.SELF_EXTRACTING and isinstance(e, UnsupportedArchiveError):
            logger.debug(f"Could not extract {archive.name} as archive, might be a real installer: {e}")
        elif isinstance(e, OSError) and not isinstance(e, ExtractionError):
            logger.warning(f"Filesystem error while extracting {archive.name}: {e}")
        else:
            logger.warning(f"Failed to extract {archive.name}: {e}")
        shutil.rmtree(destination, ignore_errors=True)
        return ArchiveOutcome(archive, destination, "failed", files_written, nested_done, reason=str(e))

    logger.debug(
        f"Successfully extracted {archive.name}: {files_written} files, {nested_done} nested archives"
    )
    return ArchiveOutcome(archive, destination, "extracted", files_written, nested_done)


def extract_all(
    archive_paths: Sequence[Path],
    dest_root: Path,
    max_concurrent: int | None = None,
    prefs: ExtractionPreferences | None = None,
    stop_event: threading.Event | None = None,
    verbose: bool = False,
) -> ExtractionResult:
    """
    Extract archives in parallel into per-archive directories.

    Args:
        archive_paths: Archives to extract
        dest_root: Extraction root (created if missing)
        max_concurrent: Simultaneous extractions (defaults to prefs, then CPU count)
        prefs: Extraction preferences
        stop_event: Once set, archives not yet started are skipped
        verbose: Enable verbose logging

    Returns:
        ExtractionResult with extracted, skipped and failed archives

    Raises:
        OSError: If the extraction root cannot be created
    """
    prefs = prefs or ExtractionPreferences()
    dest_root = Path(dest_root)
    dest_root.mkdir(parents=True, exist_ok=True)

    if not max_concurrent:
        max_concurrent = prefs.max_workers or available_parallelism()

    start_time = time.time()
    archive_paths = [Path(p) for p in archive_paths]
    logger.info(f"📦 Extracting {len(archive_paths)} archives...")

    tracker = ProgressTracker(total=len(archive_paths))
    tracker.register_callback(
        lambda current, total, item: logger.info(
            f"📦 Extracted {current}/{total} archives ({tracker.percentage(current):.1f}%): {item}"
        )
    )

    extracted: list[Path] = []
    skipped: list[Path] = []
    failures: list[ExtractionFailure] = []
    cancelled: list[str] = []

    def _run(archive: Path) -> ArchiveOutcome:
        if stop_event is not None and stop_event.is_set():
            return ArchiveOutcome(archive, destination_for(archive, dest_root), "cancelled",
                                  reason="cancelled")
        outcome = extract_archive(archive, dest_root, prefs, verbose)
        tracker.advance(archive.name)
        return outcome

    if archive_paths:
        with ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="extract") as executor:
            future_to_archive = {executor.submit(_run, path): path for path in archive_paths}

            for future in as_completed(future_to_archive):
                archive = future_to_archive[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.warning(f"Unexpected error extracting {archive.name}: {e}")
                    failures.append(ExtractionFailure(archive.name, str(e)))
                    continue

                if outcome.status == "extracted":
                    extracted.append(outcome.destination)
                elif outcome.status == "skipped":
                    skipped.append(outcome.destination)
                elif outcome.status == "cancelled":
                    cancelled.append(archive.name)
                else:
                    failures.append(ExtractionFailure(archive.name, outcome.reason))

    duration = time.time() - start_time
    logger.info(
        f"✅ Extraction completed: {len(extracted)} extracted, {len(skipped)} already present, "
        f"{len(failures)} failed"
    )
    return ExtractionResult(
        extracted=tuple(sorted(extracted)),
        skipped=tuple(sorted(skipped)),
        failures=tuple(sorted(failures, key=lambda f: f.archive)),
        cancelled=tuple(sorted(cancelled)),
        duration_seconds=duration,
    )
