"""
Archive format dispatch and readers.

Every supported container is exposed through the same small capability
interface: open the archive, iterate its entries, stream each entry's bytes.
The concrete reader is chosen once from the file name via ArchiveKind.
"""

from __future__ import annotations

import abc
import enum
import functools
import logging
import tarfile
import zipfile
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ExtractionError(Exception):
    """Raised when an archive cannot be opened or expanded."""
    pass


class UnsupportedArchiveError(ExtractionError):
    """Raised when no reader exists for a file or a reader cannot handle it."""
    pass


class UnsafeEntryError(ExtractionError):
    """Raised for entry names that would escape the extraction directory."""
    pass


class ArchiveKind(enum.Enum):
    """Extraction strategy selected from an archive's file name."""

    ZIP = "zip"
    TAR_GZ = "tar.gz"
    SELF_EXTRACTING = "self-extracting"
    PACKAGE = "package"


# Longest suffixes first so ".tar.gz" wins over a bare ".gz"
_KIND_BY_SUFFIX: tuple[tuple[str, ArchiveKind], ...] = (
    (".tar.gz", ArchiveKind.TAR_GZ),
    (".tgz", ArchiveKind.TAR_GZ),
    (".nupkg", ArchiveKind.ZIP),
    (".zip", ArchiveKind.ZIP),
    (".jar", ArchiveKind.ZIP),
    (".war", ArchiveKind.ZIP),
    (".ear", ArchiveKind.ZIP),
    (".exe", ArchiveKind.SELF_EXTRACTING),
    (".rpm", ArchiveKind.PACKAGE),
    (".deb", ArchiveKind.PACKAGE),
    (".pkg", ArchiveKind.PACKAGE),
)


def archive_kind(name: str) -> ArchiveKind | None:
    """Resolve the extraction strategy for a file name (case-insensitive)."""
    lowered = name.lower()
    for suffix, kind in _KIND_BY_SUFFIX:
        if lowered.endswith(suffix):
            return kind
    return None


# Packages whose members are themselves archives wrapping the installed files
PAYLOAD_PACKAGE_SUFFIXES = (".deb", ".pkg")


def is_package_payload(package_name: str, member_name: str) -> bool:
    """
    Whether a package member holds the installed files.

    A .deb keeps them in its data.tar.* member, a macOS .pkg (xar) in the
    Payload member of each component package.
    """
    package = package_name.lower()
    member = member_name.replace("\\", "/").rsplit("/", 1)[-1]
    if package.endswith(".deb"):
        return member.startswith("data.tar")
    if package.endswith(".pkg"):
        return member == "Payload"
    return False


@dataclass(frozen=True)
class ArchiveEntry:
    """
    One member of an open archive.

    The byte stream is only valid while the owning reader is positioned on
    this entry, i.e. inside the loop over ArchiveReader.entries().
    """
    name: str
    is_dir: bool
    _open_chunks: Callable[[], Iterator[bytes]]

    def chunks(self) -> Iterator[bytes]:
        """Stream the entry's content."""
        return self._open_chunks()


def _stream_chunks(open_stream: Callable[[], BinaryIO | None]) -> Iterator[bytes]:
    stream = open_stream()
    if stream is None:
        return
    with stream:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class ArchiveReader(abc.ABC):
    """Context-managed reader over one archive file."""

    kind: ArchiveKind

    def __init__(self, path: Path):
        self.path = Path(path)
        self._stack = ExitStack()

    def __enter__(self) -> ArchiveReader:
        try:
            self.open()
        except BaseException:
            self._stack.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._stack.close()

    @abc.abstractmethod
    def open(self) -> None:
        """Open the underlying container; raises on unreadable input."""

    @abc.abstractmethod
    def entries(self) -> Iterator[ArchiveEntry]:
        """Iterate archive members in storage order."""


class ZipArchiveReader(ArchiveReader):
    """Reader for zip based containers (zip, nupkg, jar, war, ear)."""

    kind = ArchiveKind.ZIP

    def open(self) -> None:
        self._zip = self._stack.enter_context(zipfile.ZipFile(self.path, "r"))

    def entries(self) -> Iterator[ArchiveEntry]:
        for info in self._zip.infolist():
            yield ArchiveEntry(
                name=info.filename,
                is_dir=info.is_dir(),
                _open_chunks=functools.partial(_stream_chunks, functools.partial(self._zip.open, info)),
            )


class TarGzArchiveReader(ArchiveReader):
    """Reader for gzip compressed tarballs."""

    kind = ArchiveKind.TAR_GZ

    def open(self) -> None:
        self._tar = self._stack.enter_context(tarfile.open(self.path, "r:gz"))

    def entries(self) -> Iterator[ArchiveEntry]:
        for member in self._tar:
            if member.isdir():
                yield ArchiveEntry(member.name, True, lambda: iter(()))
            elif member.isfile():
                yield ArchiveEntry(
                    name=member.name,
                    is_dir=False,
                    _open_chunks=functools.partial(
                        _stream_chunks, functools.partial(self._tar.extractfile, member)
                    ),
                )
            else:
                # Links and device nodes carry no module content
                logger.debug(f"Skipping non-regular tar member {member.name} in {self.path.name}")


class GenericArchiveReader(ArchiveReader):
    """
    Reader backed by libarchive for package formats (rpm, deb, xar pkg, cab).

    libarchive is imported on open so that a host without the shared library
    turns into a per-archive open failure rather than an import error.
    """

    kind = ArchiveKind.PACKAGE

    def open(self) -> None:
        try:
            import libarchive
        except (ImportError, OSError, AttributeError) as e:
            raise UnsupportedArchiveError(f"libarchive is not available: {e}") from e
        self._archive_error = libarchive.ArchiveError
        try:
            self._archive = self._stack.enter_context(libarchive.file_reader(str(self.path)))
        except libarchive.ArchiveError as e:
            raise UnsupportedArchiveError(f"Unrecognized archive format: {e}") from e

    def _headers(self) -> Iterator:
        # Some formats are only rejected while reading the first header
        iterator = iter(self._archive)
        produced = False
        while True:
            try:
                entry = next(iterator)
            except StopIteration:
                return
            except self._archive_error as e:
                if not produced:
                    raise UnsupportedArchiveError(f"Unrecognized archive format: {e}") from e
                raise ExtractionError(f"Corrupt archive {self.path.name}: {e}") from e
            produced = True
            yield entry

    def entries(self) -> Iterator[ArchiveEntry]:
        for entry in self._headers():
            if entry.isdir:
                yield ArchiveEntry(entry.pathname, True, lambda: iter(()))
            elif entry.isfile:
                yield ArchiveEntry(entry.pathname, False, entry.get_blocks)
            else:
                logger.debug(f"Skipping non-regular member {entry.pathname} in {self.path.name}")


class SelfExtractingArchiveReader(ArchiveReader):
    """
    Reader for installer executables that embed an archive payload.

    Tries the zip reader first (stub-prefixed zip payloads), then the generic
    reader (cab and other payloads). Genuine installers fail both and raise
    UnsupportedArchiveError; no attempt is made to run them.
    """

    kind = ArchiveKind.SELF_EXTRACTING

    def open(self) -> None:
        errors = []
        for reader_cls in (ZipArchiveReader, GenericArchiveReader):
            reader = reader_cls(self.path)
            try:
                self._delegate = self._stack.enter_context(reader)
                return
            except Exception as e:
                errors.append(f"{reader_cls.kind.value}: {e}")
        raise UnsupportedArchiveError(
            f"{self.path.name} is not a self-extracting archive ({'; '.join(errors)})"
        )

    def entries(self) -> Iterator[ArchiveEntry]:
        return self._delegate.entries()


_READERS: dict[ArchiveKind, type[ArchiveReader]] = {
    ArchiveKind.ZIP: ZipArchiveReader,
    ArchiveKind.TAR_GZ: TarGzArchiveReader,
    ArchiveKind.SELF_EXTRACTING: SelfExtractingArchiveReader,
    ArchiveKind.PACKAGE: GenericArchiveReader,
}


def open_archive(path: Path, kind: ArchiveKind | None = None) -> ArchiveReader:
    """
    Create the reader for an archive.

    Args:
        path: Archive file
        kind: Explicit strategy; resolved from the file name when omitted

    Returns:
        Unopened reader, to be used as a context manager

    Raises:
        UnsupportedArchiveError: If the file name maps to no known format
    """
    path = Path(path)
    if kind is None:
        kind = archive_kind(path.name)
    if kind is None:
        raise UnsupportedArchiveError(f"Unsupported archive format: {path.name}")
    return _READERS[kind](path)
