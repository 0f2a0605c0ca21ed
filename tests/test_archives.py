"""
Tests for archive format dispatch and readers (module_audit/archives.py).
"""

import libarchive
import pytest

from builders import build_native_module, make_deb, make_libarchive, make_pkg, make_tar_gz, make_zip, zip_bytes
from module_audit.archives import (
    ArchiveKind,
    GenericArchiveReader,
    SelfExtractingArchiveReader,
    TarGzArchiveReader,
    UnsupportedArchiveError,
    ZipArchiveReader,
    archive_kind,
    is_package_payload,
    open_archive,
)


def _read_all(reader):
    with reader:
        return {
            entry.name: b"".join(entry.chunks())
            for entry in reader.entries()
            if not entry.is_dir
        }


class TestArchiveKind:
    """Tests for extension based format dispatch."""

    @pytest.mark.parametrize("name,kind", [
        ("sdk.zip", ArchiveKind.ZIP),
        ("Package.NUPKG", ArchiveKind.ZIP),
        ("app.jar", ArchiveKind.ZIP),
        ("sdk-linux.tar.gz", ArchiveKind.TAR_GZ),
        ("sdk.TGZ", ArchiveKind.TAR_GZ),
        ("installer.EXE", ArchiveKind.SELF_EXTRACTING),
        ("sdk.rpm", ArchiveKind.PACKAGE),
        ("sdk.deb", ArchiveKind.PACKAGE),
        ("sdk-macos.pkg", ArchiveKind.PACKAGE),
    ])
    def test_known_extensions(self, name, kind):
        """Test each supported extension maps to its strategy."""
        assert archive_kind(name) is kind

    def test_unknown_extension(self):
        """Test unknown formats are not dispatched."""
        assert archive_kind("sdk.7z") is None
        assert archive_kind("sdk.gz") is None

    def test_open_archive_unknown(self, tmp_path):
        """Test open_archive rejects unknown formats."""
        with pytest.raises(UnsupportedArchiveError, match="Unsupported archive format"):
            open_archive(tmp_path / "data.bin")

    def test_open_archive_explicit_kind(self, tmp_path):
        """Test an explicit kind overrides the file name."""
        reader = open_archive(tmp_path / "payload.bin", ArchiveKind.ZIP)
        assert isinstance(reader, ZipArchiveReader)


class TestZipReader:
    """Tests for the zip reader."""

    def test_entries(self, tmp_path):
        """Test regular entries and their content."""
        archive = make_zip(tmp_path / "a.zip", {"bin/lib.dll": b"abc", "readme.txt": b"hello"})
        assert _read_all(ZipArchiveReader(archive)) == {"bin/lib.dll": b"abc", "readme.txt": b"hello"}

    def test_corrupt(self, tmp_path):
        """Test a corrupt zip raises on open."""
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"not a zip at all")
        with pytest.raises(Exception):
            with ZipArchiveReader(archive):
                pass


class TestTarGzReader:
    """Tests for the gzip tarball reader."""

    def test_entries(self, tmp_path):
        """Test tarball entries are streamed."""
        archive = make_tar_gz(tmp_path / "a.tar.gz", {"sdk/lib.dll": b"\x01\x02"})
        assert _read_all(TarGzArchiveReader(archive)) == {"sdk/lib.dll": b"\x01\x02"}


class TestSelfExtractingReader:
    """Tests for installer executables."""

    def test_zip_payload(self, tmp_path):
        """Test a stub-prefixed zip payload is readable."""
        installer = tmp_path / "setup.exe"
        installer.write_bytes(build_native_module() + zip_bytes({"lib.dll": b"payload"}))
        assert _read_all(SelfExtractingArchiveReader(installer)) == {"lib.dll": b"payload"}

    def test_genuine_installer(self, tmp_path):
        """Test an executable without an archive payload is unsupported."""
        installer = tmp_path / "setup.exe"
        installer.write_bytes(build_native_module())
        with pytest.raises(UnsupportedArchiveError):
            _read_all(SelfExtractingArchiveReader(installer))


class TestGenericReader:
    """Tests for the libarchive backed package reader."""

    def test_ar_members(self, tmp_path):
        """Test a .deb lists its ar members with their content."""
        archive = make_deb(tmp_path / "sdk.deb", {"./usr/lib/sdk/lib.dll": b"module"})
        entries = _read_all(GenericArchiveReader(archive))

        assert set(entries) == {"debian-binary", "control.tar.gz", "data.tar.gz"}
        assert entries["debian-binary"] == b"2.0\n"
        assert entries["data.tar.gz"][:2] == b"\x1f\x8b"

    def test_cpio_entries(self, tmp_path):
        """Test a compressed cpio archive is streamed entry by entry."""
        archive = make_libarchive(
            tmp_path / "Payload",
            "cpio",
            {"usr/local/share/dotnet/lib.dll": b"\x01\x02\x03", "usr/local/share/dotnet/LICENSE": b"MIT"},
            "gzip",
        )
        assert _read_all(GenericArchiveReader(archive)) == {
            "usr/local/share/dotnet/lib.dll": b"\x01\x02\x03",
            "usr/local/share/dotnet/LICENSE": b"MIT",
        }

    def test_xar_entries(self, tmp_path):
        """Test a xar product archive exposes its component payloads."""
        try:
            archive = make_pkg(tmp_path / "sdk.pkg", {"sdk.pkg": {"lib.dll": b"module"}})
        except libarchive.ArchiveError as e:
            pytest.skip(f"libarchive cannot write xar here: {e}")
        entries = _read_all(GenericArchiveReader(archive))

        assert {"Distribution", "sdk.pkg/PackageInfo", "sdk.pkg/Payload"} <= set(entries)
        assert entries["Distribution"] == b"<installer-gui-script/>"

    def test_large_entry_is_chunked(self, tmp_path):
        """Test entries larger than one block arrive complete."""
        data = bytes(range(256)) * 4096
        archive = make_libarchive(tmp_path / "big.cpio", "cpio", {"big.bin": data})
        assert _read_all(GenericArchiveReader(archive)) == {"big.bin": data}

    @pytest.mark.parametrize("name", ["sdk.rpm", "sdk.deb", "sdk.pkg"])
    def test_unrecognized_format(self, tmp_path, name):
        """Test non-archive content under a package name is unsupported."""
        archive = tmp_path / name
        archive.write_bytes(b"this file only pretends to be a package\n" * 32)
        with pytest.raises(UnsupportedArchiveError, match="Unrecognized archive format"):
            _read_all(open_archive(archive))

    def test_kind(self, tmp_path):
        """Test package names dispatch to the generic reader."""
        assert isinstance(open_archive(tmp_path / "sdk.rpm"), GenericArchiveReader)


class TestPackagePayload:
    """Tests for package payload member detection."""

    @pytest.mark.parametrize("package,member,expected", [
        ("sdk.deb", "data.tar.gz", True),
        ("sdk.deb", "data.tar.xz", True),
        ("sdk.DEB", "data.tar.zst", True),
        ("sdk.deb", "control.tar.gz", False),
        ("sdk.deb", "debian-binary", False),
        ("sdk.pkg", "Payload", True),
        ("sdk.pkg", "sdk-host.pkg/Payload", True),
        ("sdk.pkg", "sdk-host.pkg/Scripts", False),
        ("sdk.pkg", "Distribution", False),
        ("sdk.rpm", "data.tar.gz", False),
        ("sdk.zip", "Payload", False),
    ])
    def test_members(self, package, member, expected):
        assert is_package_payload(package, member) is expected
