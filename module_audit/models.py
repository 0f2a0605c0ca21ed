"""
Data model shared by the collection, analysis and reporting stages.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class VersionField(enum.Enum):
    """Version fields compared across occurrences of a module."""

    ASSEMBLY_VERSION = "AssemblyVersion"
    FILE_VERSION = "FileVersion"
    INFORMATIONAL_VERSION = "InformationalVersion"

    @property
    def label(self) -> str:
        """Human readable name, e.g. "Assembly Version"."""
        return _LABELS[self]

    @property
    def attribute(self) -> str:
        """Name of the ModuleRecord attribute holding this field."""
        return _ATTRIBUTES[self]


_LABELS = {
    VersionField.ASSEMBLY_VERSION: "Assembly Version",
    VersionField.FILE_VERSION: "File Version",
    VersionField.INFORMATIONAL_VERSION: "Informational Version",
}

_ATTRIBUTES = {
    VersionField.ASSEMBLY_VERSION: "assembly_version",
    VersionField.FILE_VERSION: "file_version",
    VersionField.INFORMATIONAL_VERSION: "informational_version",
}


@dataclass(frozen=True)
class ModuleRecord:
    """
    One observation of a named executable module inside one archive.

    Attributes:
        file_name: Module file name, compared case-insensitively
        full_path: Absolute location on the extraction disk
        assembly_version: Four-part version from the assembly identity
        file_version: File version (version resource or attribute)
        product_version: Product attribute value
        informational_version: Informational version attribute value
        source_archive: Name of the extracted archive directory
        relative_path: Path below the archive's extraction root
    """
    file_name: str
    full_path: str
    assembly_version: str | None = None
    file_version: str | None = None
    product_version: str | None = None
    informational_version: str | None = None
    source_archive: str = ""
    relative_path: str = ""

    def __post_init__(self):
        if not self.file_name:
            raise ValueError("ModuleRecord.file_name must not be empty")

    @property
    def identity_key(self) -> str:
        """Case-insensitive grouping key."""
        return self.file_name.lower()

    def version(self, version_field: VersionField) -> str | None:
        """Value of a compared version field."""
        return getattr(self, version_field.attribute)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "file_name": self.file_name,
            "full_path": self.full_path,
            "assembly_version": self.assembly_version,
            "file_version": self.file_version,
            "product_version": self.product_version,
            "informational_version": self.informational_version,
            "source_archive": self.source_archive,
            "relative_path": self.relative_path,
        }


@dataclass(frozen=True)
class VersionGroup:
    """Occurrences sharing one distinct value of a version field."""
    value: str
    records: tuple[ModuleRecord, ...]

    @property
    def count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class MismatchRecord:
    """
    A module name whose occurrences disagree on at least one version field.

    Attributes:
        file_name: Module file name (as first discovered)
        occurrences: Every record sharing the name, in discovery order
        mismatch_kinds: Disagreeing fields, in VersionField declaration order
        groups: Per disagreeing field, the value partitions ordered by value
    """
    file_name: str
    occurrences: tuple[ModuleRecord, ...]
    mismatch_kinds: tuple[VersionField, ...]
    groups: dict[VersionField, tuple[VersionGroup, ...]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.mismatch_kinds:
            raise ValueError(f"MismatchRecord for {self.file_name} has no mismatch kinds")
        if set(self.groups) != set(self.mismatch_kinds):
            raise ValueError(f"MismatchRecord for {self.file_name} groups do not match its kinds")

    def groups_for(self, version_field: VersionField) -> tuple[VersionGroup, ...]:
        """Value partitions for a field, empty when the field agrees."""
        return self.groups.get(version_field, ())

    @property
    def kind_labels(self) -> list[str]:
        return [kind.label for kind in self.mismatch_kinds]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "file_name": self.file_name,
            "mismatch_kinds": [kind.value for kind in self.mismatch_kinds],
            "occurrences": [r.to_dict() for r in self.occurrences],
            "groups": {
                kind.value: [
                    {
                        "value": group.value,
                        "count": group.count,
                        "archives": [r.source_archive for r in group.records],
                    }
                    for group in self.groups[kind]
                ]
                for kind in self.mismatch_kinds
            },
        }
