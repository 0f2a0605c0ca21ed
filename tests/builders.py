"""
Byte builders for synthetic modules and archives.

The module builder lays out a minimal but well-formed PE32 image with one
.text section holding the COR20 header and an ECMA-335 metadata root, so the
metadata reader is exercised against real byte layouts. The archive helpers
write zip, tar.gz and libarchive-backed (ar, cpio, xar) containers.
"""

import io
import struct
import tarfile
import zipfile
from pathlib import Path

import libarchive


# ---------------------------------------------------------------------------
# Metadata encoding helpers
# ---------------------------------------------------------------------------

def compress_uint(value: int) -> bytes:
    if value < 0x80:
        return bytes([value])
    if value < 0x4000:
        return struct.pack(">H", 0x8000 | value)
    return struct.pack(">I", 0xC0000000 | value)


def ser_string(value) -> bytes:
    if value is None:
        return b"\xff"
    raw = value.encode("utf-8")
    return compress_uint(len(raw)) + raw


def string_attribute(type_name: str, value) -> tuple:
    """Attribute taking a single string argument."""
    return type_name, b"\x0e", b"\x01\x00" + ser_string(value) + b"\x00\x00"


def int_attribute(type_name: str, value: int) -> tuple:
    """Attribute taking a single int32 argument."""
    return type_name, b"\x08", b"\x01\x00" + struct.pack("<i", value) + b"\x00\x00"


def version_attributes(file_version=None, product=None, informational=None) -> list:
    attributes = []
    if file_version is not None:
        attributes.append(string_attribute("AssemblyFileVersionAttribute", file_version))
    if product is not None:
        attributes.append(string_attribute("AssemblyProductAttribute", product))
    if informational is not None:
        attributes.append(string_attribute("AssemblyInformationalVersionAttribute", informational))
    return attributes


class _Heap:
    def __init__(self):
        self.data = bytearray(b"\x00")
        self._index = {}

    def add(self, key, encoded: bytes) -> int:
        if key in self._index:
            return self._index[key]
        offset = len(self.data)
        self.data += encoded
        self._index[key] = offset
        return offset


def _pad4(data: bytes) -> bytes:
    return data + b"\x00" * (-len(data) % 4)


def build_metadata(
    assembly_name="Lib",
    version=(1, 0, 0, 0),
    attributes=(),
    attribute_style="memberref",
    with_assembly=True,
) -> bytes:
    """
    Build a metadata root (BSJB) with #~, #Strings, #US, #GUID and #Blob.

    attribute_style "memberref" declares attribute constructors as MemberRefs
    on TypeRefs (attributes from another assembly); "methoddef" defines the
    attribute types and their constructors in the module itself.
    """
    strings = _Heap()
    blobs = _Heap()

    def s(text):
        return strings.add(text, text.encode("utf-8") + b"\x00")

    def b(raw):
        return blobs.add(raw, compress_uint(len(raw)) + raw)

    tables = {}

    # Module
    tables[0x00] = [struct.pack("<HHHHH", 0, s(assembly_name + ".dll"), 1, 0, 0)]

    ctor_name = s(".ctor")
    type_refs, type_defs, method_defs, member_refs, custom_attributes = [], [], [], [], []

    if attribute_style == "methoddef":
        type_defs.append(struct.pack("<IHHHHH", 0, s("<Module>"), 0, 0, 1, 1))

    for index, (type_name, param_types, value) in enumerate(attributes, start=1):
        signature = b(bytes([0x20, len(param_types), 0x01]) + param_types)
        if attribute_style == "memberref":
            type_refs.append(struct.pack("<HHH", 0, s(type_name), s("System.Reflection")))
            member_refs.append(struct.pack("<HHH", (index << 3) | 1, ctor_name, signature))
            ctor = (index << 3) | 3
        else:
            type_defs.append(struct.pack("<IHHHHH", 0x100001, s(type_name), s("Lib.Attributes"), 0, 1, index))
            method_defs.append(struct.pack("<IHHHHH", 0, 0, 0x1886, ctor_name, signature, 1))
            ctor = (index << 3) | 2
        custom_attributes.append(struct.pack("<HHH", (1 << 5) | 14, ctor, b(value)))

    if type_refs:
        tables[0x01] = type_refs
    if type_defs:
        tables[0x02] = type_defs
    if method_defs:
        tables[0x06] = method_defs
    if member_refs:
        tables[0x0A] = member_refs
    if custom_attributes:
        tables[0x0C] = custom_attributes
    if with_assembly:
        tables[0x20] = [struct.pack(
            "<IHHHHIHHH", 0x8004, *version, 0, 0, s(assembly_name), 0,
        )]

    valid = 0
    for table in tables:
        valid |= 1 << table
    table_stream = bytearray(struct.pack("<IBBBBQQ", 0, 2, 0, 0, 1, valid, 0))
    for table in sorted(tables):
        table_stream += struct.pack("<I", len(tables[table]))
    for table in sorted(tables):
        for row in tables[table]:
            table_stream += row

    streams = [
        ("#~", _pad4(bytes(table_stream))),
        ("#Strings", _pad4(bytes(strings.data))),
        ("#US", _pad4(b"\x00")),
        ("#GUID", b"\x11" * 16),
        ("#Blob", _pad4(bytes(blobs.data))),
    ]

    version_string = _pad4(b"v4.0.30319\x00")
    header_size = 16 + len(version_string) + 4
    header_size += sum(8 + len(_pad4(name.encode() + b"\x00")) for name, _ in streams)

    root = bytearray(struct.pack("<IHHII", 0x424A5342, 1, 1, 0, len(version_string)))
    root += version_string
    root += struct.pack("<HH", 0, len(streams))
    offset = header_size
    for name, data in streams:
        root += struct.pack("<II", offset, len(data))
        root += _pad4(name.encode() + b"\x00")
        offset += len(data)
    for _, data in streams:
        root += data
    return bytes(root)


# ---------------------------------------------------------------------------
# PE image builder
# ---------------------------------------------------------------------------

PE_OFFSET = 0x80
SECTION_RVA = 0x2000
SECTION_RAW = 0x200
COR20_SIZE = 72


def build_pe(section_data: bytes, cli_header_size: int = 0) -> bytes:
    """PE32 image with one .text section; the CLR directory points at its start when sized."""
    raw_size = len(section_data) + (-len(section_data) % 0x200)

    dos = bytearray(PE_OFFSET)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, PE_OFFSET)

    coff = struct.pack("<HHIIIHH", 0x14C, 1, 0, 0, 0, 224, 0x2102)

    optional = bytearray(224)
    struct.pack_into("<H", optional, 0, 0x10B)
    struct.pack_into("<I", optional, 28, 0x400000)          # ImageBase
    struct.pack_into("<I", optional, 32, 0x2000)            # SectionAlignment
    struct.pack_into("<I", optional, 36, 0x200)             # FileAlignment
    struct.pack_into("<H", optional, 40, 4)                 # MajorOperatingSystemVersion
    struct.pack_into("<H", optional, 48, 4)                 # MajorSubsystemVersion
    struct.pack_into("<I", optional, 56, SECTION_RVA + 0x2000)  # SizeOfImage
    struct.pack_into("<I", optional, 60, SECTION_RAW)       # SizeOfHeaders
    struct.pack_into("<H", optional, 68, 3)                 # Subsystem
    struct.pack_into("<I", optional, 92, 16)                # NumberOfRvaAndSizes
    if cli_header_size:
        struct.pack_into("<II", optional, 96 + 14 * 8, SECTION_RVA, cli_header_size)

    section = bytearray(40)
    section[0:8] = b".text\x00\x00\x00"
    struct.pack_into("<IIII", section, 8, len(section_data), SECTION_RVA, raw_size, SECTION_RAW)
    struct.pack_into("<I", section, 36, 0x60000020)

    headers = bytes(dos) + b"PE\x00\x00" + coff + bytes(optional) + bytes(section)
    headers += b"\x00" * (SECTION_RAW - len(headers))
    return headers + section_data + b"\x00" * (raw_size - len(section_data))


def build_managed_module(
    assembly_name="Lib",
    version=(1, 0, 0, 0),
    file_version=None,
    product=None,
    informational=None,
    attributes=None,
    attribute_style="memberref",
    with_assembly=True,
) -> bytes:
    """Complete managed module bytes."""
    if attributes is None:
        attributes = version_attributes(file_version, product, informational)
    metadata = build_metadata(assembly_name, version, attributes, attribute_style, with_assembly)
    cor20 = bytearray(COR20_SIZE)
    struct.pack_into("<IHHIII", cor20, 0, COR20_SIZE, 2, 5, SECTION_RVA + COR20_SIZE, len(metadata), 1)
    return build_pe(bytes(cor20) + metadata, cli_header_size=COR20_SIZE)


def build_native_module() -> bytes:
    """PE image without a CLI header."""
    return build_pe(b"\x55\x8b\xec\xc3" * 64)


# ---------------------------------------------------------------------------
# Archive helpers
# ---------------------------------------------------------------------------

def make_zip(path: Path, files: dict) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return path


def zip_bytes(files: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def make_tar_gz(path: Path, files: dict) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path




def tar_gz_bytes(files: dict) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_libarchive(path: Path, format_name: str, files: dict, filter_name=None) -> Path:
    """Write an archive in any libarchive write format (ar_svr4, cpio, xar, ...)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with libarchive.file_writer(str(path), format_name, filter_name) as archive:
        for name, data in files.items():
            archive.add_file_from_memory(name, len(data), data)
    return path


def make_deb(path: Path, data_files: dict | None, control: bytes = b"Package: sdk\n") -> Path:
    """Debian package: an ar container with debian-binary, control and data tarballs."""
    members = {"debian-binary": b"2.0\n", "control.tar.gz": tar_gz_bytes({"./control": control})}
    if data_files is not None:
        members["data.tar.gz"] = tar_gz_bytes(data_files)
    return make_libarchive(path, "ar_svr4", members)


def make_pkg(path: Path, components: dict) -> Path:
    """
    macOS product archive: a xar container whose component packages each
    carry a gzip compressed cpio Payload.
    """
    path = Path(path)
    members = {"Distribution": b"<installer-gui-script/>"}
    for component, payload_files in components.items():
        payload = make_libarchive(path.with_name(f"{component}.payload"), "cpio", payload_files, "gzip")
        members[f"{component}/PackageInfo"] = b"<pkg-info/>"
        members[f"{component}/Payload"] = payload.read_bytes()
        payload.unlink()
    return make_libarchive(path, "xar", members)
