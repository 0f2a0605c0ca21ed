"""
Module metadata reader.

Turns one file into a ModuleRecord when it is a managed module with an
assembly identity. Native binaries, data files carrying a module extension
and truncated files are expected inputs and yield None without logging
above DEBUG. Each module is parsed by pefile once; the CLI metadata and the
Win32 version resource are both read from that parse.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pefile

from .metadata import MetadataReader, assembly_identity, find_attribute_string
from .models import ModuleRecord
from .pe import PEImage, parse_pe

logger = logging.getLogger(__name__)

# Enough for the DOS stub, PE headers and section table of any ordinary module
HEADER_READ_SIZE = 64 * 1024

FILE_VERSION_ATTRIBUTE = "AssemblyFileVersionAttribute"
PRODUCT_ATTRIBUTE = "AssemblyProductAttribute"
INFORMATIONAL_VERSION_ATTRIBUTE = "AssemblyInformationalVersionAttribute"


def is_managed_module(path: Path) -> bool:
    """
    Cheap pre-filter: does the file have PE headers with a CLI header?

    Only the head of the file is handed to a fast_load pefile parse; metadata
    validity is checked later by read_module.
    """
    try:
        with open(path, "rb") as f:
            head = f.read(HEADER_READ_SIZE)
    except OSError as e:
        logger.debug(f"Cannot read {path}: {e}")
        return False
    image = parse_pe(head)
    if image is None:
        return False
    with image:
        return image.has_cli_header


def load_metadata(data: bytes) -> MetadataReader | None:
    """Metadata of a managed module, or None for anything else."""
    image = parse_pe(data)
    if image is None:
        return None
    with image:
        return MetadataReader.from_image(image)


def read_version_resource(image: PEImage) -> str | None:
    """
    FileVersion string of the Win32 VS_VERSIONINFO resource.

    Only the resource directory is parsed on top of the fast_load headers.

    Args:
        image: Parsed module

    Returns:
        The StringFileInfo FileVersion value, or None when the module has no
        version resource or pefile cannot parse it
    """
    pe = image.pe
    try:
        pe.parse_data_directories(
            directories=[pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_RESOURCE"]]
        )
        for file_info in getattr(pe, "FileInfo", None) or []:
            # pefile >= 2018 nests FileInfo entries in per-resource lists
            entries = file_info if isinstance(file_info, list) else [file_info]
            for entry in entries:
                if getattr(entry, "Key", b"") != b"StringFileInfo":
                    continue
                for table in getattr(entry, "StringTable", []):
                    value = table.entries.get(b"FileVersion")
                    if value:
                        text = value.decode("utf-8", "replace").strip()
                        if text:
                            return text
    except Exception as e:
        logger.debug(f"Unreadable version resource: {e}")
    return None


def read_module(
    path: Path,
    source_archive: str = "",
    archive_root: Path | None = None,
    use_version_resource: bool = True,
) -> ModuleRecord | None:
    """
    Read the version identifiers of one module.

    The assembly version comes from the assembly manifest; a module without a
    readable identity yields None. The file version is read from the Win32
    version resource when enabled and present, otherwise from
    AssemblyFileVersionAttribute. Product and informational versions come
    from their assembly attributes. A field that cannot be decoded is None.

    Args:
        path: Module file
        source_archive: Name of the archive directory the module was found in
        archive_root: Extraction root of that archive, for relative_path
        use_version_resource: Prefer the Win32 version resource for the file version

    Returns:
        ModuleRecord, or None when the file is not an identifiable managed module
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.debug(f"Cannot read {path}: {e}")
        return None

    image = parse_pe(data)
    if image is None:
        logger.debug(f"Not a PE image: {path}")
        return None

    with image:
        metadata = MetadataReader.from_image(image)
        if metadata is None:
            logger.debug(f"Not a managed module: {path}")
            return None

        identity = assembly_identity(metadata)
        if identity is None:
            logger.debug(f"No assembly identity: {path}")
            return None

        file_version = read_version_resource(image) if use_version_resource else None

    if not file_version:
        file_version = find_attribute_string(metadata, FILE_VERSION_ATTRIBUTE)

    if archive_root is not None:
        try:
            relative_path = path.relative_to(archive_root).as_posix()
        except ValueError:
            relative_path = path.name
    else:
        relative_path = path.name

    return ModuleRecord(
        file_name=path.name,
        full_path=str(path.resolve()),
        assembly_version=identity.version_string,
        file_version=file_version or None,
        product_version=find_attribute_string(metadata, PRODUCT_ATTRIBUTE) or None,
        informational_version=find_attribute_string(metadata, INFORMATIONAL_VERSION_ATTRIBUTE) or None,
        source_archive=source_archive,
        relative_path=relative_path,
    )
