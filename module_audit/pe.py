"""
PE image access for managed modules.

pefile parses the DOS, COFF and optional headers and maps RVAs through the
section table. On top of that this module reads the CLI (COR20) header and
provides the bounds-checked byte view the metadata reader works with.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

import pefile

logger = logging.getLogger(__name__)

CLR_DIRECTORY_INDEX = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]
COR20_HEADER_SIZE = 72
# cb, runtime version, metadata directory and flags
COR20_MIN_SIZE = 20


class ModuleFormatError(Exception):
    """Raised by the byte-level readers on malformed or truncated input."""
    pass


class ByteView:
    """Bounds-checked little-endian reads over an immutable buffer."""

    __slots__ = ("data",)

    def __init__(self, data: bytes):
        self.data = data

    def __len__(self) -> int:
        return len(self.data)

    def _unpack(self, fmt: str, offset: int) -> int:
        size = struct.calcsize(fmt)
        if offset < 0 or offset + size > len(self.data):
            raise ModuleFormatError(f"Read of {size} bytes at {offset:#x} past end ({len(self.data):#x})")
        return struct.unpack_from(fmt, self.data, offset)[0]

    def u8(self, offset: int) -> int:
        return self._unpack("<B", offset)

    def u16(self, offset: int) -> int:
        return self._unpack("<H", offset)

    def u32(self, offset: int) -> int:
        return self._unpack("<I", offset)

    def u64(self, offset: int) -> int:
        return self._unpack("<Q", offset)

    def uint(self, offset: int, size: int) -> int:
        """Unsigned integer of 1, 2, 4 or 8 bytes."""
        return self._unpack({1: "<B", 2: "<H", 4: "<I", 8: "<Q"}[size], offset)

    def slice(self, offset: int, size: int) -> bytes:
        if offset < 0 or size < 0 or offset + size > len(self.data):
            raise ModuleFormatError(f"Range {offset:#x}+{size:#x} outside buffer ({len(self.data):#x})")
        return self.data[offset:offset + size]

    def cstring(self, offset: int, limit: int | None = None) -> bytes:
        """Null-terminated byte string starting at offset."""
        end_limit = len(self.data) if limit is None else min(len(self.data), offset + limit)
        if offset < 0 or offset > end_limit:
            raise ModuleFormatError(f"String offset {offset:#x} outside buffer")
        end = self.data.find(b"\x00", offset, end_limit)
        if end < 0:
            raise ModuleFormatError(f"Unterminated string at {offset:#x}")
        return self.data[offset:end]


@dataclass(frozen=True)
class CliHeader:
    """IMAGE_COR20_HEADER fields used by the metadata reader."""
    runtime_major: int
    runtime_minor: int
    metadata_rva: int
    metadata_size: int
    flags: int


class PEImage:
    """
    A header-only (fast_load) pefile parse of one module.

    The image owns the pefile object; close it, or use it as a context
    manager, once the module has been read.
    """

    def __init__(self, pe: pefile.PE):
        self.pe = pe

    def __enter__(self) -> PEImage:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.pe.close()

    def directory(self, index: int) -> tuple[int, int]:
        """(rva, size) of a data directory; (0, 0) when the header omits it."""
        try:
            entry = self.pe.OPTIONAL_HEADER.DATA_DIRECTORY[index]
        except (AttributeError, IndexError):
            return 0, 0
        return entry.VirtualAddress, entry.Size

    @property
    def has_cli_header(self) -> bool:
        rva, size = self.directory(CLR_DIRECTORY_INDEX)
        return rva != 0 and size != 0

    def read_rva(self, rva: int, size: int) -> bytes:
        """
        Exactly size bytes starting at rva.

        Raises:
            ModuleFormatError: When the range is unmapped or cut off by the end
                of the file or of its section
        """
        try:
            data = self.pe.get_data(rva, size)
        except pefile.PEFormatError as e:
            raise ModuleFormatError(f"RVA {rva:#x}: {e}") from e
        if len(data) != size:
            raise ModuleFormatError(f"RVA {rva:#x}+{size:#x} extends past the mapped data ({len(data):#x} bytes)")
        return data


def parse_pe(data: bytes) -> PEImage | None:
    """
    Parse PE headers.

    Args:
        data: File content; the headers alone are enough for has_cli_header

    Returns:
        PEImage, or None when pefile rejects the data
    """
    try:
        return PEImage(pefile.PE(data=data, fast_load=True))
    except pefile.PEFormatError as e:
        logger.debug(f"Not a PE image: {e}")
        return None


def parse_cli_header(image: PEImage) -> CliHeader | None:
    """
    Read the CLI (COR20) header of a managed image.

    Returns:
        CliHeader, or None for native images or a malformed header
    """
    rva, size = image.directory(CLR_DIRECTORY_INDEX)
    if rva == 0 or size < COR20_MIN_SIZE:
        return None
    try:
        raw = image.read_rva(rva, min(size, COR20_HEADER_SIZE))
    except ModuleFormatError as e:
        logger.debug(f"Unreadable CLI header: {e}")
        return None

    runtime_major, runtime_minor, metadata_rva, metadata_size, flags = struct.unpack_from("<HHIII", raw, 4)
    if metadata_rva == 0 or metadata_size == 0:
        return None
    return CliHeader(
        runtime_major=runtime_major,
        runtime_minor=runtime_minor,
        metadata_rva=metadata_rva,
        metadata_size=metadata_size,
        flags=flags,
    )
