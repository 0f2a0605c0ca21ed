"""
Report rendering: detailed text report, flat CSV report and console summary.
"""

from __future__ import annotations

import csv
import datetime
import logging
from pathlib import Path
from typing import Sequence, TextIO

from packaging import version

from .models import MismatchRecord, ModuleRecord, VersionField, VersionGroup

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 80
TOP_MISMATCHES = 10

CSV_HEADER = [
    "FileName",
    "MismatchTypes",
    "SourceArchive",
    "RelativePath",
    "AssemblyVersion",
    "FileVersion",
    "ProductVersion",
    "InformationalVersion",
    "VersionType",
    "Version",
    "OccurrenceCount",
]


def _sorted_mismatches(mismatches: Sequence[MismatchRecord]) -> list[MismatchRecord]:
    return sorted(mismatches, key=lambda m: (m.file_name.lower(), m.file_name))


def newest_value(groups: Sequence[VersionGroup]) -> str | None:
    """
    Highest value among the partitions of one field.

    Returns:
        The newest value when every value parses as a version, otherwise None
    """
    try:
        parsed = [(version.parse(g.value), g.value) for g in groups]
    except version.InvalidVersion:
        return None
    if len(parsed) < 2:
        return None
    return max(parsed, key=lambda item: item[0])[1]


def _group_heading(group: VersionGroup, newest: str | None) -> str:
    marker = " (newest)" if newest is not None and group.value == newest else ""
    return f"{group.value}: {group.count} occurrence(s){marker}"


def _write_groups(out: TextIO, label: str, groups: Sequence[VersionGroup]) -> None:
    if not groups:
        return
    newest = newest_value(groups)
    out.write(f"   {label}s:\n")
    for group in groups:
        out.write(f"     {_group_heading(group, newest)}\n")
        for record in sorted(group.records, key=lambda r: r.source_archive):
            out.write(f"       📦 {record.source_archive}\n")
            out.write(f"          Path: {record.relative_path}\n")
    out.write("\n")


def _write_summary(out: TextIO, mismatches: Sequence[MismatchRecord], records: Sequence[ModuleRecord]) -> None:
    out.write("=== SUMMARY STATISTICS ===\n")
    out.write(f"Archives processed: {len({r.source_archive for r in records})}\n")
    out.write(f"Unique module names: {len({r.identity_key for r in records})}\n")
    out.write(f"Modules with version mismatches: {len(mismatches)}\n")

    top = sorted(_sorted_mismatches(mismatches), key=lambda m: len(m.occurrences), reverse=True)[:TOP_MISMATCHES]
    if top:
        out.write("\n")
        out.write(f"Top {TOP_MISMATCHES} modules by archive count:\n")
        for mismatch in top:
            out.write(f"  {mismatch.file_name}: {len(mismatch.occurrences)} archives\n")


def write_text_report(
    path: Path,
    mismatches: Sequence[MismatchRecord],
    records: Sequence[ModuleRecord],
    generated_at: datetime.datetime | None = None,
) -> Path:
    """
    Write the human readable report.

    Mismatches are listed by file name; for each disagreeing field the value
    partitions follow with the archive and relative path of every occurrence.

    Args:
        path: Output file
        mismatches: Detected mismatches
        records: Every collected module record (for totals)
        generated_at: Timestamp printed in the header (defaults to now)

    Returns:
        Path of the written report
    """
    path = Path(path)
    generated_at = generated_at or datetime.datetime.now()
    logger.debug(f"Generating detailed report to {path}")

    with open(path, "w", encoding="utf-8") as out:
        out.write("=== MODULE VERSION MISMATCH ANALYSIS REPORT ===\n")
        out.write(f"Generated: {generated_at:%Y-%m-%d %H:%M:%S}\n")
        out.write(f"Total modules analyzed: {len(records)}\n")
        out.write(f"Modules with version mismatches: {len(mismatches)}\n")
        out.write("\n")

        if not mismatches:
            out.write("✅ No version mismatches found!\n")
            return path

        for mismatch in _sorted_mismatches(mismatches):
            out.write(f"🔴 {mismatch.file_name}\n")
            out.write(f"   Mismatch Types: {', '.join(mismatch.kind_labels)}\n")
            out.write(f"   Found in {len(mismatch.occurrences)} archives\n")
            out.write("\n")
            for kind in VersionField:
                _write_groups(out, kind.label, mismatch.groups_for(kind))
            out.write(SEPARATOR + "\n")
            out.write("\n")

        _write_summary(out, mismatches, records)

    return path


def csv_rows(mismatches: Sequence[MismatchRecord]) -> list[list[str]]:
    """
    Flat rows, one per (mismatch, version type, occurrence).

    A mismatch contributes one row per occurrence carrying a value for each of
    its disagreeing fields.
    """
    rows = []
    for mismatch in _sorted_mismatches(mismatches):
        kinds = "; ".join(mismatch.kind_labels)
        for kind in VersionField:
            for group in mismatch.groups_for(kind):
                for record in group.records:
                    rows.append([
                        record.file_name,
                        kinds,
                        record.source_archive,
                        record.relative_path,
                        record.assembly_version or "",
                        record.file_version or "",
                        record.product_version or "",
                        record.informational_version or "",
                        kind.value,
                        group.value,
                        str(group.count),
                    ])
    return rows


def write_csv_report(path: Path, mismatches: Sequence[MismatchRecord]) -> Path:
    """
    Write the CSV report (minimal RFC 4180 quoting).

    Returns:
        Path of the written report
    """
    path = Path(path)
    logger.debug(f"Generating CSV report to {path}")
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        writer.writerows(csv_rows(mismatches))
    return path


def log_results(
    mismatches: Sequence[MismatchRecord],
    records: Sequence[ModuleRecord],
    examples: int = 3,
) -> None:
    """
    Log the mismatch summary to the console.

    Per version value at most `examples` archives are listed, followed by
    "... and K more".
    """
    logger.info("=== VERSION MISMATCH ANALYSIS RESULTS ===")
    logger.info(f"Total modules analyzed: {len(records)}")
    logger.info(f"Modules with version mismatches: {len(mismatches)}")

    if not mismatches:
        logger.info("✅ No version mismatches found!")
        return

    for mismatch in _sorted_mismatches(mismatches):
        logger.warning(
            f"🔴 {mismatch.file_name} has {', '.join(mismatch.kind_labels)} mismatches "
            f"across {len(mismatch.occurrences)} archives:"
        )
        for kind in VersionField:
            groups = mismatch.groups_for(kind)
            if not groups:
                continue
            newest = newest_value(groups)
            logger.warning(f"  {kind.label}s:")
            for group in groups:
                logger.warning(f"    {_group_heading(group, newest)}")
                for record in group.records[:examples]:
                    logger.warning(f"      📦 {record.source_archive} ({record.relative_path})")
                if group.count > examples:
                    logger.warning(f"      ... and {group.count - examples} more")
