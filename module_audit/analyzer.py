"""
Version mismatch detection across occurrences of same-named modules.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .models import MismatchRecord, ModuleRecord, VersionField, VersionGroup

logger = logging.getLogger(__name__)


def group_by_name(records: Iterable[ModuleRecord]) -> dict[str, list[ModuleRecord]]:
    """
    Group records by case-insensitive file name, preserving discovery order.

    Keys are the lower-cased names; each list keeps the input order.
    """
    groups: dict[str, list[ModuleRecord]] = {}
    for record in records:
        groups.setdefault(record.identity_key, []).append(record)
    return groups


def partition(records: list[ModuleRecord], version_field: VersionField) -> tuple[VersionGroup, ...]:
    """
    Partition records by their non-empty value of one field.

    Records without a value are left out rather than forming a group of
    their own. Groups are ordered by value (ordinal string order).
    """
    by_value: dict[str, list[ModuleRecord]] = {}
    for record in records:
        value = record.version(version_field)
        if value:
            by_value.setdefault(value, []).append(record)
    return tuple(VersionGroup(value, tuple(by_value[value])) for value in sorted(by_value))


def compare_group(occurrences: list[ModuleRecord]) -> MismatchRecord | None:
    """
    Compare the version fields of one name group.

    Returns:
        MismatchRecord if at least one field has two or more distinct
        non-empty values, otherwise None
    """
    if len(occurrences) < 2:
        return None

    groups: dict[VersionField, tuple[VersionGroup, ...]] = {}
    for version_field in VersionField:
        partitions = partition(occurrences, version_field)
        if len(partitions) > 1:
            groups[version_field] = partitions

    if not groups:
        return None

    return MismatchRecord(
        file_name=occurrences[0].file_name,
        occurrences=tuple(occurrences),
        mismatch_kinds=tuple(groups),
        groups=groups,
    )


def analyze(records: Iterable[ModuleRecord]) -> list[MismatchRecord]:
    """
    Find module names whose occurrences disagree on a version field.

    Args:
        records: Every collected ModuleRecord

    Returns:
        One MismatchRecord per disagreeing name; order is not meaningful
    """
    logger.info("Analyzing version mismatches...")
    groups = group_by_name(records)
    shared = [occurrences for occurrences in groups.values() if len(occurrences) > 1]
    logger.info(f"Found {len(shared)} modules that appear in multiple archives")

    mismatches = []
    for occurrences in shared:
        mismatch = compare_group(occurrences)
        if mismatch is not None:
            mismatches.append(mismatch)
    return mismatches
