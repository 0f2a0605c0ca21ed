"""
JSON snapshot of an analysis run.
"""

from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Sequence

from .models import MismatchRecord, ModuleRecord

SCHEMA_VERSION = 1


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_snapshot(
    records: Sequence[ModuleRecord],
    mismatches: Sequence[MismatchRecord],
    extra_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Snapshot document with __meta__, modules and mismatches keys."""
    meta = {
        "schema_version": SCHEMA_VERSION,
        "created_at": _utc_now(),
        "module_count": len(records),
        "mismatch_count": len(mismatches),
        "archive_count": len({r.source_archive for r in records}),
    }
    if extra_meta:
        meta.update(extra_meta)

    modules = sorted(
        (r.to_dict() for r in records),
        key=lambda d: (d["file_name"].lower(), d["source_archive"], d["relative_path"]),
    )
    return {
        "__meta__": meta,
        "modules": modules,
        "mismatches": [
            m.to_dict() for m in sorted(mismatches, key=lambda m: (m.file_name.lower(), m.file_name))
        ],
    }


def write_snapshot(
    path: Path,
    records: Sequence[ModuleRecord],
    mismatches: Sequence[MismatchRecord],
    extra_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Write snapshot to file.

    Args:
        path: Destination JSON file
        records: Every collected module record
        mismatches: Detected mismatches
        extra_meta: Additional metadata to include

    Returns:
        Metadata dictionary

    Raises:
        IOError: If the snapshot cannot be written
    """
    path = Path(path)
    doc = build_snapshot(records, mismatches, extra_meta)

    # Atomic write: write to temp file then rename
    try:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, ensure_ascii=False, sort_keys=True)
        temp_path.replace(path)
    except OSError as e:
        raise IOError(f"Failed to write snapshot: {e}")

    return doc["__meta__"]


def load_snapshot(path: Path) -> dict[str, Any]:
    """Load snapshot from file.

    Returns:
        Snapshot dictionary, or an empty document when missing or invalid
    """
    path = Path(path)
    empty: dict[str, Any] = {"__meta__": {}, "modules": [], "mismatches": []}
    if not path.exists():
        return empty
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return empty
    return data if isinstance(data, dict) else empty
