"""
Tests for PE and ECMA-335 metadata parsing (module_audit/pe.py, module_audit/metadata.py).
"""

import struct
from unittest.mock import patch

import pefile
import pytest

from builders import (
    COR20_SIZE,
    SECTION_RAW,
    SECTION_RVA,
    build_managed_module,
    build_native_module,
    int_attribute,
    string_attribute,
)
from module_audit.metadata import (
    ASSEMBLY,
    CUSTOM_ATTRIBUTE,
    HAS_CUSTOM_ATTRIBUTE,
    MEMBER_REF,
    METHOD_DEF,
    MetadataReader,
    assembly_identity,
    custom_attributes,
    decode_fixed_arguments,
    find_attribute_string,
    read_compressed_uint,
)
from module_audit.pe import CLR_DIRECTORY_INDEX, ByteView, ModuleFormatError, parse_cli_header, parse_pe


def _reader(data: bytes) -> MetadataReader:
    image = parse_pe(data)
    assert image is not None
    reader = MetadataReader.from_image(image)
    assert reader is not None
    return reader


class TestByteView:
    """Tests for bounds-checked reads."""

    def test_reads(self):
        """Test little-endian integer reads."""
        view = ByteView(struct.pack("<HIQ", 0x1234, 0xDEADBEEF, 1) + b"abc\x00")
        assert view.u16(0) == 0x1234
        assert view.u32(2) == 0xDEADBEEF
        assert view.u64(6) == 1
        assert view.uint(0, 2) == 0x1234
        assert view.cstring(14) == b"abc"

    def test_out_of_bounds(self):
        """Test reads past the end raise ModuleFormatError."""
        view = ByteView(b"\x00\x01")
        with pytest.raises(ModuleFormatError):
            view.u32(0)
        with pytest.raises(ModuleFormatError):
            view.slice(1, 4)
        with pytest.raises(ModuleFormatError):
            ByteView(b"abc").cstring(0)


class TestParsePE:
    """Tests for the pefile backed image."""

    def test_managed_module(self):
        """Test a managed module exposes a CLI header."""
        image = parse_pe(build_managed_module())
        assert image is not None
        assert isinstance(image.pe, pefile.PE)
        assert image.pe.OPTIONAL_HEADER.Magic == pefile.OPTIONAL_HEADER_MAGIC_PE
        assert image.has_cli_header
        assert image.directory(CLR_DIRECTORY_INDEX) == (SECTION_RVA, COR20_SIZE)
        assert [s.Name.rstrip(b"\x00") for s in image.pe.sections] == [b".text"]

        header = parse_cli_header(image)
        assert header is not None
        assert (header.runtime_major, header.runtime_minor) == (2, 5)
        assert header.metadata_rva == SECTION_RVA + COR20_SIZE
        assert header.metadata_size > 0

    def test_cli_header_read_through_pefile(self):
        """Test the COR20 header is fetched with one pefile RVA read."""
        image = parse_pe(build_managed_module())
        with patch.object(image.pe, "get_data", wraps=image.pe.get_data) as get_data:
            parse_cli_header(image)
        get_data.assert_called_once_with(SECTION_RVA, COR20_SIZE)

    def test_native_module(self):
        """Test a native image has no CLI header."""
        image = parse_pe(build_native_module())
        assert image is not None
        assert not image.has_cli_header
        assert parse_cli_header(image) is None
        assert MetadataReader.from_image(image) is None

    @pytest.mark.parametrize("data", [
        b"",
        b"MZ",
        b"garbage",
        b"This program cannot be run in DOS mode" * 10,
    ])
    def test_not_a_pe(self, data):
        """Test data files are rejected."""
        assert parse_pe(data) is None

    def test_truncated_headers(self):
        """Test an image cut inside its optional header never reports a CLI header."""
        image = parse_pe(build_managed_module()[:0x100])
        assert image is None or not image.has_cli_header

    def test_read_rva(self):
        """Test RVA reads map through the section table."""
        data = build_managed_module()
        image = parse_pe(data)
        assert image.read_rva(SECTION_RVA, 8) == data[SECTION_RAW:SECTION_RAW + 8]

    def test_read_rva_out_of_range(self):
        """Test unmapped and cut-off ranges raise ModuleFormatError."""
        image = parse_pe(build_managed_module())
        with pytest.raises(ModuleFormatError):
            image.read_rva(0x100000, 4)
        with pytest.raises(ModuleFormatError):
            image.read_rva(SECTION_RVA, 0x100000)

    def test_missing_directory(self):
        """Test directories beyond the header's count read as empty."""
        image = parse_pe(build_managed_module())
        assert image.directory(64) == (0, 0)

    def test_close(self):
        """Test the context manager closes the pefile parse."""
        image = parse_pe(build_managed_module())
        with patch.object(image.pe, "close") as close:
            with image:
                pass
        close.assert_called_once()

    def test_truncated_metadata(self):
        """Test metadata cut off by truncation yields no reader."""
        data = build_managed_module(file_version="1.0.0.0")
        image = parse_pe(data[:0x260])
        assert image is not None
        assert parse_cli_header(image) is not None
        assert MetadataReader.from_image(image) is None


class TestCompressedIntegers:
    """Tests for ECMA-335 compressed unsigned integers."""

    @pytest.mark.parametrize("raw,value,size", [
        (b"\x03", 0x03, 1),
        (b"\x7f", 0x7F, 1),
        (b"\x80\x80", 0x80, 2),
        (b"\xbf\xff", 0x3FFF, 2),
        (b"\xc0\x00\x40\x00", 0x4000, 4),
    ])
    def test_decode(self, raw, value, size):
        """Test the one, two and four byte encodings."""
        assert read_compressed_uint(raw, 0) == (value, size)

    def test_invalid(self):
        """Test invalid lead bytes and truncation."""
        with pytest.raises(ModuleFormatError):
            read_compressed_uint(b"\xff", 0)
        with pytest.raises(ModuleFormatError):
            read_compressed_uint(b"\x80", 0)


class TestMetadataTables:
    """Tests for table stream layout."""

    def test_row_counts(self):
        """Test rows of the emitted tables are visible."""
        reader = _reader(build_managed_module(file_version="2.0.0.0", product="SDK"))
        assert reader.version == "v4.0.30319"
        assert reader.is_assembly
        assert reader.row_count(ASSEMBLY) == 1
        assert reader.row_count(MEMBER_REF) == 2
        assert reader.row_count(CUSTOM_ATTRIBUTE) == 2
        assert reader.row_count(METHOD_DEF) == 0

    def test_missing_row(self):
        """Test out of range row ids raise ModuleFormatError."""
        reader = _reader(build_managed_module())
        with pytest.raises(ModuleFormatError):
            reader.row(ASSEMBLY, 2)

    def test_coded_index(self):
        """Test HasCustomAttribute decodes the assembly parent."""
        assert HAS_CUSTOM_ATTRIBUTE.decode((1 << 5) | 14) == (ASSEMBLY, 1)


class TestAssemblyIdentity:
    """Tests for assembly manifest reading."""

    def test_identity(self):
        """Test name and four-part version."""
        identity = assembly_identity(_reader(build_managed_module("Contoso.Core", (8, 0, 1, 42))))
        assert identity.name == "Contoso.Core"
        assert identity.version == (8, 0, 1, 42)
        assert identity.version_string == "8.0.1.42"
        assert identity.culture == ""

    def test_netmodule_without_manifest(self):
        """Test a module without Assembly row has no identity."""
        reader = _reader(build_managed_module(with_assembly=False))
        assert not reader.is_assembly
        assert assembly_identity(reader) is None


class TestCustomAttributes:
    """Tests for assembly attribute lookup and value decoding."""

    @pytest.mark.parametrize("style", ["memberref", "methoddef"])
    def test_find_attribute_string(self, style):
        """Test both external (MemberRef) and local (MethodDef) constructors resolve."""
        reader = _reader(build_managed_module(
            file_version="8.0.124.51004",
            product="Contoso SDK",
            informational="8.0.1+abc123",
            attribute_style=style,
        ))
        assert find_attribute_string(reader, "AssemblyFileVersionAttribute") == "8.0.124.51004"
        assert find_attribute_string(reader, "AssemblyProductAttribute") == "Contoso SDK"
        assert find_attribute_string(reader, "AssemblyInformationalVersionAttribute") == "8.0.1+abc123"

    def test_missing_attribute(self):
        """Test an absent attribute yields None."""
        reader = _reader(build_managed_module(product="SDK"))
        assert find_attribute_string(reader, "AssemblyFileVersionAttribute") is None

    def test_null_string_argument(self):
        """Test a null string argument yields None."""
        reader = _reader(build_managed_module(
            attributes=[string_attribute("AssemblyInformationalVersionAttribute", None)]
        ))
        assert find_attribute_string(reader, "AssemblyInformationalVersionAttribute") is None

    def test_non_string_argument(self):
        """Test an attribute whose first argument is not a string yields None."""
        reader = _reader(build_managed_module(attributes=[int_attribute("AssemblyFileVersionAttribute", 7)]))
        assert find_attribute_string(reader, "AssemblyFileVersionAttribute") is None

    def test_malformed_value_degrades_one_field(self):
        """Test a broken attribute blob only affects its own field."""
        broken = ("AssemblyFileVersionAttribute", b"\x0e", b"\x02\x00garbage")
        reader = _reader(build_managed_module(
            attributes=[broken, string_attribute("AssemblyProductAttribute", "SDK")]
        ))
        assert find_attribute_string(reader, "AssemblyFileVersionAttribute") is None
        assert find_attribute_string(reader, "AssemblyProductAttribute") == "SDK"

    def test_custom_attribute_rows(self):
        """Test attribute rows are attached to the assembly."""
        reader = _reader(build_managed_module(file_version="1.0", product="P"))
        attributes = custom_attributes(reader)
        assert len(attributes) == 2
        assert all(a.parent == (ASSEMBLY, 1) for a in attributes)
        assert all(a.constructor[0] == MEMBER_REF for a in attributes)


class TestDecodeFixedArguments:
    """Tests for the custom attribute value decoder."""

    def test_primitives(self):
        """Test string, bool, int32 and int64 arguments."""
        signature = bytes([0x20, 4, 0x01, 0x0E, 0x02, 0x08, 0x0A])
        value = (
            b"\x01\x00"
            + b"\x05hello"
            + b"\x01"
            + struct.pack("<i", -5)
            + struct.pack("<q", 1 << 40)
            + b"\x00\x00"
        )
        assert decode_fixed_arguments(signature, value) == ["hello", True, -5, 1 << 40]

    def test_stops_at_unsupported_type(self):
        """Test decoding stops at array parameters."""
        signature = bytes([0x20, 2, 0x01, 0x0E, 0x1D, 0x0E])
        value = b"\x01\x00\x02hi" + b"\x00\x00\x00\x00"
        assert decode_fixed_arguments(signature, value) == ["hi"]

    def test_missing_prolog(self):
        """Test blobs without the 0x0001 prolog are rejected."""
        with pytest.raises(ModuleFormatError):
            decode_fixed_arguments(bytes([0x20, 1, 0x01, 0x0E]), b"\x00\x00\x02hi")

    def test_truncated_string(self):
        """Test string lengths past the blob end are rejected."""
        with pytest.raises(ModuleFormatError):
            decode_fixed_arguments(bytes([0x20, 1, 0x01, 0x0E]), b"\x01\x00\x10hi")

    def test_non_void_constructor(self):
        """Test constructor signatures must return void."""
        with pytest.raises(ModuleFormatError):
            decode_fixed_arguments(bytes([0x20, 0, 0x08]), b"\x01\x00")
