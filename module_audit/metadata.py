"""
ECMA-335 metadata reading.

Parses the metadata root, the #Strings/#Blob/#GUID heaps and the table
stream (#~ or #-) of a managed module, then answers the two questions the
audit needs: what is the assembly identity, and what string does a given
assembly-level custom attribute carry. Each public entry point returns None
when the module does not have the requested data or when the bytes are
malformed; nothing here raises for bad input.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Any, Iterator

from .pe import ByteView, ModuleFormatError, PEImage, parse_cli_header

logger = logging.getLogger(__name__)

METADATA_SIGNATURE = 0x424A5342  # "BSJB"

# Table numbers (ECMA-335 II.22)
MODULE = 0x00
TYPE_REF = 0x01
TYPE_DEF = 0x02
FIELD_PTR = 0x03
FIELD = 0x04
METHOD_PTR = 0x05
METHOD_DEF = 0x06
PARAM_PTR = 0x07
PARAM = 0x08
INTERFACE_IMPL = 0x09
MEMBER_REF = 0x0A
CONSTANT = 0x0B
CUSTOM_ATTRIBUTE = 0x0C
FIELD_MARSHAL = 0x0D
DECL_SECURITY = 0x0E
CLASS_LAYOUT = 0x0F
FIELD_LAYOUT = 0x10
STAND_ALONE_SIG = 0x11
EVENT_MAP = 0x12
EVENT_PTR = 0x13
EVENT = 0x14
PROPERTY_MAP = 0x15
PROPERTY_PTR = 0x16
PROPERTY = 0x17
METHOD_SEMANTICS = 0x18
METHOD_IMPL = 0x19
MODULE_REF = 0x1A
TYPE_SPEC = 0x1B
IMPL_MAP = 0x1C
FIELD_RVA = 0x1D
ENC_LOG = 0x1E
ENC_MAP = 0x1F
ASSEMBLY = 0x20
ASSEMBLY_PROCESSOR = 0x21
ASSEMBLY_OS = 0x22
ASSEMBLY_REF = 0x23
ASSEMBLY_REF_PROCESSOR = 0x24
ASSEMBLY_REF_OS = 0x25
FILE = 0x26
EXPORTED_TYPE = 0x27
MANIFEST_RESOURCE = 0x28
NESTED_CLASS = 0x29
GENERIC_PARAM = 0x2A
METHOD_SPEC = 0x2B
GENERIC_PARAM_CONSTRAINT = 0x2C

TABLE_COUNT = 64

# Heap size flags of the table stream header
_LARGE_STRINGS = 0x01
_LARGE_GUIDS = 0x02
_LARGE_BLOBS = 0x04
_EXTRA_DATA = 0x40


@dataclass(frozen=True)
class CodedIndex:
    """A tagged reference into one of several tables (ECMA-335 II.24.2.6)."""
    name: str
    tag_bits: int
    tables: tuple[int | None, ...]

    def decode(self, value: int) -> tuple[int | None, int]:
        """Split a coded value into (table, 1-based row)."""
        tag = value & ((1 << self.tag_bits) - 1)
        table = self.tables[tag] if tag < len(self.tables) else None
        return table, value >> self.tag_bits


TYPE_DEF_OR_REF = CodedIndex("TypeDefOrRef", 2, (TYPE_DEF, TYPE_REF, TYPE_SPEC))
HAS_CONSTANT = CodedIndex("HasConstant", 2, (FIELD, PARAM, PROPERTY))
HAS_CUSTOM_ATTRIBUTE = CodedIndex("HasCustomAttribute", 5, (
    METHOD_DEF, FIELD, TYPE_REF, TYPE_DEF, PARAM, INTERFACE_IMPL, MEMBER_REF, MODULE,
    DECL_SECURITY, PROPERTY, EVENT, STAND_ALONE_SIG, MODULE_REF, TYPE_SPEC, ASSEMBLY,
    ASSEMBLY_REF, FILE, EXPORTED_TYPE, MANIFEST_RESOURCE, GENERIC_PARAM,
    GENERIC_PARAM_CONSTRAINT, METHOD_SPEC,
))
HAS_FIELD_MARSHAL = CodedIndex("HasFieldMarshal", 1, (FIELD, PARAM))
HAS_DECL_SECURITY = CodedIndex("HasDeclSecurity", 2, (TYPE_DEF, METHOD_DEF, ASSEMBLY))
MEMBER_REF_PARENT = CodedIndex("MemberRefParent", 3, (TYPE_DEF, TYPE_REF, MODULE_REF, METHOD_DEF, TYPE_SPEC))
HAS_SEMANTICS = CodedIndex("HasSemantics", 1, (EVENT, PROPERTY))
METHOD_DEF_OR_REF = CodedIndex("MethodDefOrRef", 1, (METHOD_DEF, MEMBER_REF))
MEMBER_FORWARDED = CodedIndex("MemberForwarded", 1, (FIELD, METHOD_DEF))
IMPLEMENTATION = CodedIndex("Implementation", 2, (FILE, ASSEMBLY_REF, EXPORTED_TYPE))
CUSTOM_ATTRIBUTE_TYPE = CodedIndex("CustomAttributeType", 3, (None, None, METHOD_DEF, MEMBER_REF, None))
RESOLUTION_SCOPE = CodedIndex("ResolutionScope", 2, (MODULE, MODULE_REF, ASSEMBLY_REF, TYPE_REF))
TYPE_OR_METHOD_DEF = CodedIndex("TypeOrMethodDef", 1, (TYPE_DEF, METHOD_DEF))

# Column kinds: an int is a fixed byte width, "string"/"guid"/"blob" are heap
# offsets, ("index", table) a simple row index and a CodedIndex a coded one.
_SCHEMA: dict[int, tuple[tuple[str, Any], ...]] = {
    MODULE: (("Generation", 2), ("Name", "string"), ("Mvid", "guid"), ("EncId", "guid"), ("EncBaseId", "guid")),
    TYPE_REF: (("ResolutionScope", RESOLUTION_SCOPE), ("TypeName", "string"), ("TypeNamespace", "string")),
    TYPE_DEF: (("Flags", 4), ("TypeName", "string"), ("TypeNamespace", "string"), ("Extends", TYPE_DEF_OR_REF),
               ("FieldList", ("index", FIELD)), ("MethodList", ("index", METHOD_DEF))),
    FIELD_PTR: (("Field", ("index", FIELD)),),
    FIELD: (("Flags", 2), ("Name", "string"), ("Signature", "blob")),
    METHOD_PTR: (("Method", ("index", METHOD_DEF)),),
    METHOD_DEF: (("RVA", 4), ("ImplFlags", 2), ("Flags", 2), ("Name", "string"), ("Signature", "blob"),
                 ("ParamList", ("index", PARAM))),
    PARAM_PTR: (("Param", ("index", PARAM)),),
    PARAM: (("Flags", 2), ("Sequence", 2), ("Name", "string")),
    INTERFACE_IMPL: (("Class", ("index", TYPE_DEF)), ("Interface", TYPE_DEF_OR_REF)),
    MEMBER_REF: (("Class", MEMBER_REF_PARENT), ("Name", "string"), ("Signature", "blob")),
    CONSTANT: (("Type", 2), ("Parent", HAS_CONSTANT), ("Value", "blob")),
    CUSTOM_ATTRIBUTE: (("Parent", HAS_CUSTOM_ATTRIBUTE), ("Type", CUSTOM_ATTRIBUTE_TYPE), ("Value", "blob")),
    FIELD_MARSHAL: (("Parent", HAS_FIELD_MARSHAL), ("NativeType", "blob")),
    DECL_SECURITY: (("Action", 2), ("Parent", HAS_DECL_SECURITY), ("PermissionSet", "blob")),
    CLASS_LAYOUT: (("PackingSize", 2), ("ClassSize", 4), ("Parent", ("index", TYPE_DEF))),
    FIELD_LAYOUT: (("Offset", 4), ("Field", ("index", FIELD))),
    STAND_ALONE_SIG: (("Signature", "blob"),),
    EVENT_MAP: (("Parent", ("index", TYPE_DEF)), ("EventList", ("index", EVENT))),
    EVENT_PTR: (("Event", ("index", EVENT)),),
    EVENT: (("EventFlags", 2), ("Name", "string"), ("EventType", TYPE_DEF_OR_REF)),
    PROPERTY_MAP: (("Parent", ("index", TYPE_DEF)), ("PropertyList", ("index", PROPERTY))),
    PROPERTY_PTR: (("Property", ("index", PROPERTY)),),
    PROPERTY: (("Flags", 2), ("Name", "string"), ("Type", "blob")),
    METHOD_SEMANTICS: (("Semantics", 2), ("Method", ("index", METHOD_DEF)), ("Association", HAS_SEMANTICS)),
    METHOD_IMPL: (("Class", ("index", TYPE_DEF)), ("MethodBody", METHOD_DEF_OR_REF),
                  ("MethodDeclaration", METHOD_DEF_OR_REF)),
    MODULE_REF: (("Name", "string"),),
    TYPE_SPEC: (("Signature", "blob"),),
    IMPL_MAP: (("MappingFlags", 2), ("MemberForwarded", MEMBER_FORWARDED), ("ImportName", "string"),
               ("ImportScope", ("index", MODULE_REF))),
    FIELD_RVA: (("RVA", 4), ("Field", ("index", FIELD))),
    ENC_LOG: (("Token", 4), ("FuncCode", 4)),
    ENC_MAP: (("Token", 4),),
    ASSEMBLY: (("HashAlgId", 4), ("MajorVersion", 2), ("MinorVersion", 2), ("BuildNumber", 2),
               ("RevisionNumber", 2), ("Flags", 4), ("PublicKey", "blob"), ("Name", "string"),
               ("Culture", "string")),
    ASSEMBLY_PROCESSOR: (("Processor", 4),),
    ASSEMBLY_OS: (("OSPlatformID", 4), ("OSMajorVersion", 4), ("OSMinorVersion", 4)),
    ASSEMBLY_REF: (("MajorVersion", 2), ("MinorVersion", 2), ("BuildNumber", 2), ("RevisionNumber", 2),
                   ("Flags", 4), ("PublicKeyOrToken", "blob"), ("Name", "string"), ("Culture", "string"),
                   ("HashValue", "blob")),
    ASSEMBLY_REF_PROCESSOR: (("Processor", 4), ("AssemblyRef", ("index", ASSEMBLY_REF))),
    ASSEMBLY_REF_OS: (("OSPlatformId", 4), ("OSMajorVersion", 4), ("OSMinorVersion", 4),
                      ("AssemblyRef", ("index", ASSEMBLY_REF))),
    FILE: (("Flags", 4), ("Name", "string"), ("HashValue", "blob")),
    EXPORTED_TYPE: (("Flags", 4), ("TypeDefId", 4), ("TypeName", "string"), ("TypeNamespace", "string"),
                    ("Implementation", IMPLEMENTATION)),
    MANIFEST_RESOURCE: (("Offset", 4), ("Flags", 4), ("Name", "string"), ("Implementation", IMPLEMENTATION)),
    NESTED_CLASS: (("NestedClass", ("index", TYPE_DEF)), ("EnclosingClass", ("index", TYPE_DEF))),
    GENERIC_PARAM: (("Number", 2), ("Flags", 2), ("Owner", TYPE_OR_METHOD_DEF), ("Name", "string")),
    METHOD_SPEC: (("Method", METHOD_DEF_OR_REF), ("Instantiation", "blob")),
    GENERIC_PARAM_CONSTRAINT: (("Owner", ("index", GENERIC_PARAM)), ("Constraint", TYPE_DEF_OR_REF)),
}


def read_compressed_uint(data: bytes, offset: int) -> tuple[int, int]:
    """
    Decode an ECMA-335 compressed unsigned integer.

    Returns:
        (value, offset just past the encoded integer)
    """
    if offset >= len(data):
        raise ModuleFormatError("Compressed integer past end of blob")
    first = data[offset]
    if first & 0x80 == 0:
        return first, offset + 1
    if first & 0xC0 == 0x80:
        if offset + 2 > len(data):
            raise ModuleFormatError("Truncated 2-byte compressed integer")
        return ((first & 0x3F) << 8) | data[offset + 1], offset + 2
    if first & 0xE0 == 0xC0:
        if offset + 4 > len(data):
            raise ModuleFormatError("Truncated 4-byte compressed integer")
        return (
            ((first & 0x1F) << 24) | (data[offset + 1] << 16) | (data[offset + 2] << 8) | data[offset + 3],
            offset + 4,
        )
    raise ModuleFormatError(f"Invalid compressed integer lead byte {first:#x}")


@dataclass(frozen=True)
class _TableLayout:
    offset: int
    rows: int
    row_size: int
    columns: tuple[tuple[str, int, int], ...]  # (name, offset in row, width)


class MetadataReader:
    """
    Random access to the metadata tables and heaps of one module.

    Rows are addressed with 1-based row ids, as in metadata tokens.
    """

    def __init__(self, streams: dict[str, bytes], version: str = ""):
        self.version = version
        self._strings = streams.get("#Strings", b"")
        self._blobs = streams.get("#Blob", b"")
        self._guids = streams.get("#GUID", b"")
        tables = streams.get("#~")
        if tables is None:
            tables = streams.get("#-")
        if tables is None:
            raise ModuleFormatError("Metadata has no table stream")
        self._tables = ByteView(tables)
        self._layouts = self._read_table_header()

    @classmethod
    def from_image(cls, image: PEImage) -> MetadataReader | None:
        """
        Open the metadata of a managed PE image.

        Returns:
            MetadataReader, or None for native images and malformed metadata
        """
        header = parse_cli_header(image)
        if header is None:
            return None
        try:
            root = ByteView(image.read_rva(header.metadata_rva, header.metadata_size))
            version, streams = _read_metadata_root(root)
            return cls(streams, version)
        except ModuleFormatError as e:
            logger.debug(f"Malformed metadata: {e}")
            return None

    def _read_table_header(self) -> dict[int, _TableLayout]:
        view = self._tables
        heap_sizes = view.u8(6)
        valid = view.u64(8)

        cursor = 24
        rows = [0] * TABLE_COUNT
        for table in range(TABLE_COUNT):
            if valid & (1 << table):
                rows[table] = view.u32(cursor)
                cursor += 4
        if heap_sizes & _EXTRA_DATA:
            cursor += 4

        widths = {
            "string": 4 if heap_sizes & _LARGE_STRINGS else 2,
            "guid": 4 if heap_sizes & _LARGE_GUIDS else 2,
            "blob": 4 if heap_sizes & _LARGE_BLOBS else 2,
        }

        def column_width(kind: Any) -> int:
            if isinstance(kind, int):
                return kind
            if isinstance(kind, str):
                return widths[kind]
            if isinstance(kind, CodedIndex):
                largest = max(rows[t] for t in kind.tables if t is not None)
                return 2 if largest < (1 << (16 - kind.tag_bits)) else 4
            return 2 if rows[kind[1]] < (1 << 16) else 4

        layouts: dict[int, _TableLayout] = {}
        for table in range(TABLE_COUNT):
            if not rows[table]:
                continue
            schema = _SCHEMA.get(table)
            if schema is None:
                # Tables past GenericParamConstraint (e.g. portable PDB tables)
                # are stored after every table read here.
                break
            columns = []
            row_size = 0
            for name, kind in schema:
                width = column_width(kind)
                columns.append((name, row_size, width))
                row_size += width
            layouts[table] = _TableLayout(cursor, rows[table], row_size, tuple(columns))
            cursor += row_size * rows[table]

        if cursor > len(view):
            raise ModuleFormatError("Table stream shorter than its declared rows")
        return layouts

    def row_count(self, table: int) -> int:
        layout = self._layouts.get(table)
        return layout.rows if layout else 0

    def row(self, table: int, rid: int) -> dict[str, int]:
        """Raw column values of one row."""
        layout = self._layouts.get(table)
        if layout is None or not 1 <= rid <= layout.rows:
            raise ModuleFormatError(f"Row {rid} of table {table:#x} does not exist")
        base = layout.offset + (rid - 1) * layout.row_size
        return {name: self._tables.uint(base + offset, width) for name, offset, width in layout.columns}

    def rows(self, table: int) -> Iterator[tuple[int, dict[str, int]]]:
        for rid in range(1, self.row_count(table) + 1):
            yield rid, self.row(table, rid)

    def string(self, offset: int) -> str:
        if offset == 0:
            return ""
        raw = ByteView(self._strings).cstring(offset)
        return raw.decode("utf-8", "replace")

    def blob(self, offset: int) -> bytes:
        if offset == 0:
            return b""
        length, start = read_compressed_uint(self._blobs, offset)
        if start + length > len(self._blobs):
            raise ModuleFormatError(f"Blob at {offset:#x} exceeds the #Blob heap")
        return self._blobs[start:start + length]

    @property
    def is_assembly(self) -> bool:
        """Whether the module carries an assembly manifest."""
        return self.row_count(ASSEMBLY) > 0


def _read_metadata_root(root: ByteView) -> tuple[str, dict[str, bytes]]:
    if root.u32(0) != METADATA_SIGNATURE:
        raise ModuleFormatError("Missing BSJB metadata signature")
    version_length = root.u32(12)
    version = root.slice(16, version_length).split(b"\x00", 1)[0].decode("ascii", "replace")
    cursor = 16 + version_length
    stream_count = root.u16(cursor + 2)
    cursor += 4

    streams: dict[str, bytes] = {}
    for _ in range(stream_count):
        offset = root.u32(cursor)
        size = root.u32(cursor + 4)
        name = root.cstring(cursor + 8, 32)
        cursor += 8 + ((len(name) + 4) & ~3)
        decoded = name.decode("ascii", "replace")
        if decoded not in streams:
            streams[decoded] = root.slice(offset, size)
    return version, streams


@dataclass(frozen=True)
class AssemblyIdentity:
    """Assembly manifest identity (Assembly table row 1)."""
    name: str
    version: tuple[int, int, int, int]
    culture: str = ""
    public_key: bytes = b""

    @property
    def version_string(self) -> str:
        return ".".join(str(part) for part in self.version)


def assembly_identity(reader: MetadataReader) -> AssemblyIdentity | None:
    """
    Read the assembly identity of a module.

    Returns:
        AssemblyIdentity, or None for netmodules and unreadable manifests
    """
    if not reader.is_assembly:
        return None
    try:
        row = reader.row(ASSEMBLY, 1)
        name = reader.string(row["Name"])
        if not name:
            return None
        return AssemblyIdentity(
            name=name,
            version=(row["MajorVersion"], row["MinorVersion"], row["BuildNumber"], row["RevisionNumber"]),
            culture=reader.string(row["Culture"]),
            public_key=reader.blob(row["PublicKey"]),
        )
    except ModuleFormatError as e:
        logger.debug(f"Unreadable assembly manifest: {e}")
        return None


@dataclass(frozen=True)
class CustomAttribute:
    """A CustomAttribute row with its coded references resolved to (table, row)."""
    parent: tuple[int | None, int]
    constructor: tuple[int | None, int]
    value: int  # #Blob offset


def custom_attributes(reader: MetadataReader, parent_table: int = ASSEMBLY, parent_row: int = 1) -> list[CustomAttribute]:
    """Custom attributes applied to one metadata entity (the assembly by default)."""
    found = []
    for _, row in reader.rows(CUSTOM_ATTRIBUTE):
        parent = HAS_CUSTOM_ATTRIBUTE.decode(row["Parent"])
        if parent == (parent_table, parent_row):
            found.append(CustomAttribute(
                parent=parent,
                constructor=CUSTOM_ATTRIBUTE_TYPE.decode(row["Type"]),
                value=row["Value"],
            ))
    return found


def _declaring_type_of_method(reader: MetadataReader, method_rid: int) -> int | None:
    """TypeDef row owning a MethodDef row (method lists are contiguous runs)."""
    position = method_rid
    if reader.row_count(METHOD_PTR):
        position = next(
            (rid for rid, row in reader.rows(METHOD_PTR) if row["Method"] == method_rid),
            None,
        )
        if position is None:
            return None
    owner = None
    for rid, row in reader.rows(TYPE_DEF):
        if row["MethodList"] <= position:
            owner = rid
        else:
            break
    return owner


def attribute_type_name(reader: MetadataReader, attribute: CustomAttribute) -> tuple[str, str] | None:
    """
    Resolve the (namespace, name) of the type declaring an attribute constructor.

    Handles constructors defined in this module (MethodDef) and constructors
    referenced from another assembly (MemberRef on a TypeRef or TypeDef).
    """
    table, rid = attribute.constructor
    try:
        if table == METHOD_DEF:
            type_rid = _declaring_type_of_method(reader, rid)
            if type_rid is None:
                return None
            type_row = reader.row(TYPE_DEF, type_rid)
            return reader.string(type_row["TypeNamespace"]), reader.string(type_row["TypeName"])
        if table == MEMBER_REF:
            parent_table, parent_rid = MEMBER_REF_PARENT.decode(reader.row(MEMBER_REF, rid)["Class"])
            if parent_table in (TYPE_REF, TYPE_DEF):
                type_row = reader.row(parent_table, parent_rid)
                return reader.string(type_row["TypeNamespace"]), reader.string(type_row["TypeName"])
    except ModuleFormatError as e:
        logger.debug(f"Unresolvable attribute constructor {attribute.constructor}: {e}")
    return None


def constructor_signature(reader: MetadataReader, attribute: CustomAttribute) -> bytes:
    table, rid = attribute.constructor
    if table not in (METHOD_DEF, MEMBER_REF):
        raise ModuleFormatError(f"Attribute constructor in unexpected table {table}")
    return reader.blob(reader.row(table, rid)["Signature"])


# Element types (ECMA-335 II.23.1.16) understood by the value decoder
ELEMENT_VOID = 0x01
ELEMENT_BOOLEAN = 0x02
ELEMENT_CHAR = 0x03
ELEMENT_STRING = 0x0E
ELEMENT_CMOD_REQD = 0x1F
ELEMENT_CMOD_OPT = 0x20

_PRIMITIVE_FORMATS = {
    0x04: "<b",   # I1
    0x05: "<B",   # U1
    0x06: "<h",   # I2
    0x07: "<H",   # U2
    0x08: "<i",   # I4
    0x09: "<I",   # U4
    0x0A: "<q",   # I8
    0x0B: "<Q",   # U8
    0x0C: "<f",   # R4
    0x0D: "<d",   # R8
}

_SIG_GENERIC = 0x10
_ATTRIBUTE_PROLOG = 0x0001


def _parameter_types(signature: bytes) -> list[int]:
    """
    Element types of a constructor's parameters.

    Parsing stops at the first parameter that is not a primitive or string;
    the returned list holds the decodable leading parameters.
    """
    if not signature:
        raise ModuleFormatError("Empty constructor signature")
    cursor = 1
    if signature[0] & _SIG_GENERIC:
        _, cursor = read_compressed_uint(signature, cursor)
    count, cursor = read_compressed_uint(signature, cursor)

    while cursor < len(signature) and signature[cursor] in (ELEMENT_CMOD_REQD, ELEMENT_CMOD_OPT):
        _, cursor = read_compressed_uint(signature, cursor + 1)
    if cursor >= len(signature) or signature[cursor] != ELEMENT_VOID:
        raise ModuleFormatError("Attribute constructor does not return void")
    cursor += 1

    types = []
    for _ in range(count):
        if cursor >= len(signature):
            raise ModuleFormatError("Constructor signature shorter than its parameter count")
        element = signature[cursor]
        if element not in _PRIMITIVE_FORMATS and element not in (ELEMENT_BOOLEAN, ELEMENT_CHAR, ELEMENT_STRING):
            break
        types.append(element)
        cursor += 1
    return types


def _read_ser_string(value: bytes, cursor: int) -> tuple[str | None, int]:
    if cursor >= len(value):
        raise ModuleFormatError("String argument past end of attribute blob")
    if value[cursor] == 0xFF:
        return None, cursor + 1
    length, cursor = read_compressed_uint(value, cursor)
    if cursor + length > len(value):
        raise ModuleFormatError("String argument exceeds attribute blob")
    return value[cursor:cursor + length].decode("utf-8", "replace"), cursor + length


def decode_fixed_arguments(signature: bytes, value: bytes) -> list[Any]:
    """
    Decode the leading fixed constructor arguments of an attribute blob.

    Supports strings and every primitive element type; decoding stops at the
    first argument of any other type.

    Raises:
        ModuleFormatError: On a malformed signature or value blob
    """
    types = _parameter_types(signature)
    if len(value) < 2 or struct.unpack_from("<H", value, 0)[0] != _ATTRIBUTE_PROLOG:
        raise ModuleFormatError("Custom attribute blob lacks the 0x0001 prolog")

    cursor = 2
    arguments: list[Any] = []
    for element in types:
        if element == ELEMENT_STRING:
            text, cursor = _read_ser_string(value, cursor)
            arguments.append(text)
            continue
        if element == ELEMENT_BOOLEAN:
            fmt = "<B"
        elif element == ELEMENT_CHAR:
            fmt = "<H"
        else:
            fmt = _PRIMITIVE_FORMATS[element]
        size = struct.calcsize(fmt)
        if cursor + size > len(value):
            raise ModuleFormatError("Primitive argument past end of attribute blob")
        number = struct.unpack_from(fmt, value, cursor)[0]
        cursor += size
        if element == ELEMENT_BOOLEAN:
            arguments.append(number != 0)
        elif element == ELEMENT_CHAR:
            arguments.append(chr(number))
        else:
            arguments.append(number)
    return arguments


def find_attribute_string(reader: MetadataReader, type_name: str) -> str | None:
    """
    First string argument of an assembly-level attribute, matched by type name.

    Args:
        reader: Module metadata
        type_name: Simple name of the attribute type, e.g. "AssemblyFileVersionAttribute"

    Returns:
        The attribute's leading string argument, or None when the attribute is
        absent, its first argument is not a string or its blobs are malformed
    """
    try:
        attributes = custom_attributes(reader)
    except ModuleFormatError as e:
        logger.debug(f"Unreadable CustomAttribute table: {e}")
        return None

    for attribute in attributes:
        resolved = attribute_type_name(reader, attribute)
        if resolved is None or resolved[1] != type_name:
            continue
        try:
            arguments = decode_fixed_arguments(
                constructor_signature(reader, attribute),
                reader.blob(attribute.value),
            )
        except ModuleFormatError as e:
            logger.debug(f"Undecodable {type_name} value: {e}")
            return None
        if arguments and isinstance(arguments[0], str):
            return arguments[0]
        return None
    return None
