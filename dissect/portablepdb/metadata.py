from __future__ import annotations

import logging
import os
from io import BytesIO
from typing import TYPE_CHECKING, BinaryIO, Iterator, NamedTuple
from uuid import UUID

# External imports
from dissect.cstruct import cstruct
from dissect.util.stream import RangeStream

# Local imports
from dissect.portablepdb.c_portablepdb import (
    HAS_CUSTOM_DEBUG_INFORMATION,
    HAS_CUSTOM_DEBUG_INFORMATION_TAG_BITS,
    PORTABLE_PDB_SIGNATURE,
    TABLE_ROW_STRUCTS,
    TableIndex,
    c_portablepdb,
    tables_def,
)
from dissect.portablepdb.exception import (
    InvalidHandleError,
    InvalidMetadataError,
    InvalidSignatureError,
)
from dissect.portablepdb.utils import align_int, iter_set_bits, read_compressed_uint

if TYPE_CHECKING:
    from dissect.cstruct import Structure

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_PORTABLEPDB", "CRITICAL"))

# Row id and token masks (ECMA-335 II.22)
RID_MASK = 0x00FFFFFF
TOKEN_TABLE_SHIFT = 24


class Handle(NamedTuple):
    """A reference to a row within one of the metadata tables."""

    table: int
    row: int

    @classmethod
    def from_method_token(cls, token: int) -> Handle:
        """Create a MethodDef handle from a metadata token.

        Both a full ``0x06xxxxxx`` token and a bare row number are accepted.

        Raises:
            InvalidHandleError: If the token refers to another table or to row 0.
        """

        table = token >> TOKEN_TABLE_SHIFT
        row = token & RID_MASK
        if table not in (0, TableIndex.MethodDef) or row == 0:
            raise InvalidHandleError(f"Not a method definition token: {token:#010x}")
        return cls(TableIndex.MethodDef, row)

    def __repr__(self) -> str:
        return f"<Handle table={self.table:#04x} row={self.row}>"


def module_handle() -> Handle:
    """Return the handle of the (only) module definition."""
    return Handle(TableIndex.Module, 1)


class CustomDebugInformation(NamedTuple):
    """A custom debug information row, with heap indices for its kind and value."""

    parent: Handle
    kind: int
    value: int


class LocalVariable(NamedTuple):
    handle: Handle
    attributes: int
    index: int
    name: str


class Table:
    """A view on the rows of a single metadata table.

    Args:
        stream: The tables stream as a file-like object.
        offset: The offset of the first row within the tables stream.
        count: The amount of rows in this table.
        row_type: The `cstruct` structure describing a single row.
    """

    def __init__(self, stream: BinaryIO, offset: int, count: int, row_type: type[Structure]):
        self.stream = stream
        self.offset = offset
        self.count = count
        self.row_type = row_type

    def __len__(self) -> int:
        return self.count

    def row(self, row: int) -> Structure:
        """Return a row by its 1-based row id."""

        if not 1 <= row <= self.count:
            raise InvalidMetadataError(f"Row {row} out of range for table with {self.count} rows")

        self.stream.seek(self.offset + (row - 1) * len(self.row_type))
        try:
            return self.row_type(self.stream)
        except EOFError as e:
            raise InvalidMetadataError(f"Truncated row {row}") from e

    def rows(self) -> Iterator[tuple[int, Structure]]:
        """Yield all the rows of this table together with their 1-based row id."""

        if not self.count:
            return

        self.stream.seek(self.offset)
        try:
            rows = self.row_type[self.count](self.stream)
        except EOFError as e:
            raise InvalidMetadataError(f"Truncated table of {self.count} rows") from e

        yield from enumerate(rows, start=1)


class MetadataReader:
    """Minimal reader for the metadata container of a Portable PDB file.

    Only the parts needed to index custom debug information and local variables are parsed: the metadata
    root, the ``#Pdb`` and ``#~`` streams and the string, blob and GUID heaps.

    Args:
        fh: A file-like object of a Portable PDB file.

    Raises:
        InvalidSignatureError: If the metadata root does not start with the Portable PDB magic.
        InvalidMetadataError: If a required stream is missing or the tables can not be indexed.
    """

    def __init__(self, fh: BinaryIO):
        self.fh = fh
        self.fh.seek(0)

        signature = self.fh.read(4)
        if len(signature) != 4 or c_portablepdb.uint32(signature) != PORTABLE_PDB_SIGNATURE:
            raise InvalidSignatureError(f"Invalid metadata signature: {signature!r}")

        self.fh.seek(0)
        try:
            self.header = c_portablepdb.METADATA_ROOT(self.fh)
        except EOFError as e:
            raise InvalidMetadataError("Truncated metadata root") from e

        self.version = self.header.version.rstrip(b"\x00").decode(errors="replace")
        try:
            self.streams = self._parse_stream_headers()
        except EOFError as e:
            raise InvalidMetadataError("Truncated metadata stream headers") from e
        log.debug("Opened metadata version %s with streams %s", self.version, list(self.streams))

        for name in ("#Pdb", "#~"):
            if name not in self.streams:
                raise InvalidMetadataError(f"Missing required metadata stream: {name}")

        self.strings = self.streams.get("#Strings", BytesIO())
        self.blobs = self.streams.get("#Blob", BytesIO())
        self.guids = self.streams.get("#GUID", BytesIO())

        self.row_counts = {}
        try:
            self._parse_pdb_stream()
            self.tables = self._parse_tables_stream()
        except EOFError as e:
            raise InvalidMetadataError("Truncated #Pdb or #~ stream") from e

    def _parse_stream_headers(self) -> dict[str, RangeStream]:
        """Parse the stream headers following the metadata root.

        Every header is followed by a null terminated name that is padded to a 4 byte boundary.
        """

        streams = {}
        for _ in range(self.header.streams):
            stream_header = c_portablepdb.STREAM_HEADER(self.fh)

            name_offset = self.fh.tell()
            name = c_portablepdb.char[None](self.fh)
            self.fh.seek(name_offset + align_int(len(name) + 1, 4))

            # The uncompressed "#-" tables stream shares the layout of the "#~" stream for our purposes
            name = name.decode(errors="replace").replace("#-", "#~")
            streams[name] = RangeStream(self.fh, stream_header.offset, stream_header.size)

        return streams

    def _parse_pdb_stream(self) -> None:
        """Parse the ``#Pdb`` stream for the row counts of the referenced type system tables."""

        stream = self.streams["#Pdb"]
        stream.seek(0)

        self.pdb_header = c_portablepdb.PDB_STREAM_HEADER(stream)
        self.pdb_id = self.pdb_header.pdbId
        self.entry_point = self.pdb_header.entryPoint

        tables = list(iter_set_bits(self.pdb_header.referencedTypeSystemTables))
        if tables:
            self.row_counts.update(zip(tables, c_portablepdb.uint32[len(tables)](stream)))

    def _parse_tables_stream(self) -> dict[int, Table]:
        """Parse the ``#~`` stream and locate the rows of every debug table present."""

        stream = self.streams["#~"]
        stream.seek(0)

        self.tables_header = c_portablepdb.TABLES_STREAM_HEADER(stream)
        present = list(iter_set_bits(self.tables_header.valid))
        if present:
            self.row_counts.update(zip(present, c_portablepdb.uint32[len(present)](stream)))

        if self.tables_header.heapSizes & c_portablepdb.HEAP_EXTRA_DATA:
            c_portablepdb.uint32(stream)

        self.c_tables = self._load_row_structs()

        tables = {}
        offset = stream.tell()
        for table in present:
            if table not in TABLE_ROW_STRUCTS:
                raise InvalidMetadataError(f"Unsupported table in Portable PDB tables stream: {table:#04x}")

            row_type = getattr(self.c_tables, TABLE_ROW_STRUCTS[table])
            tables[table] = Table(stream, offset, self.row_counts[table], row_type)
            offset += self.row_counts[table] * len(row_type)

        return tables

    def _load_row_structs(self) -> cstruct:
        """Define the row structures of the debug tables with the index widths of this file.

        Heap indices are 4 bytes wide when the corresponding HeapSizes bit is set, table indices when the
        referenced table has 2^16 rows or more and coded indices when any of the referenced tables has too many
        rows to leave room for the tag bits in 2 bytes.
        """

        heap_sizes = self.tables_header.heapSizes

        def heap_type(flag: int) -> str:
            return "uint32" if heap_sizes & flag else "uint16"

        def index_type(table: int) -> str:
            return "uint32" if self.row_counts.get(table, 0) >= 1 << 16 else "uint16"

        max_rows = max(self.row_counts.get(table, 0) for table in HAS_CUSTOM_DEBUG_INFORMATION)
        coded_type = "uint32" if max_rows >= 1 << (16 - HAS_CUSTOM_DEBUG_INFORMATION_TAG_BITS) else "uint16"

        typedefs = f"""
        typedef {heap_type(c_portablepdb.HEAP_STRING_LARGE)} StringIndex;
        typedef {heap_type(c_portablepdb.HEAP_GUID_LARGE)} GuidIndex;
        typedef {heap_type(c_portablepdb.HEAP_BLOB_LARGE)} BlobIndex;
        typedef {index_type(TableIndex.MethodDef)} MethodDefIndex;
        typedef {index_type(TableIndex.Document)} DocumentIndex;
        typedef {index_type(TableIndex.ImportScope)} ImportScopeIndex;
        typedef {index_type(TableIndex.LocalVariable)} LocalVariableIndex;
        typedef {index_type(TableIndex.LocalConstant)} LocalConstantIndex;
        typedef {coded_type} HasCustomDebugInformationIndex;
        """

        return cstruct().load(typedefs + tables_def)

    def table(self, table: int) -> Table:
        """Return the rows of a debug table, an empty table if it is not present."""

        try:
            return self.tables[table]
        except KeyError:
            return Table(self.streams["#~"], 0, 0, getattr(self.c_tables, TABLE_ROW_STRUCTS[table]))

    def get_guid(self, index: int) -> UUID | None:
        """Return the GUID at the given 1-based GUID heap index, ``None`` for the nil index."""

        if index == 0:
            return None

        self.guids.seek((index - 1) * 16)
        data = self.guids.read(16)
        if len(data) != 16:
            raise InvalidMetadataError(f"GUID heap index out of range: {index}")
        return UUID(bytes_le=data)

    def get_blob(self, index: int) -> bytes:
        """Return the bytes of the blob at the given blob heap offset.

        Every blob is prefixed with its length, encoded as a compressed unsigned integer.
        """

        if index == 0:
            return b""

        self.blobs.seek(index)
        try:
            length = read_compressed_uint(self.blobs)
        except EOFError as e:
            raise InvalidMetadataError(f"Blob heap index out of range: {index}") from e

        data = self.blobs.read(length)
        if len(data) != length:
            raise InvalidMetadataError(f"Blob at index {index} exceeds the blob heap")
        return data

    def get_string(self, index: int) -> str:
        """Return the null terminated UTF-8 string at the given string heap offset."""

        self.strings.seek(index)
        try:
            return c_portablepdb.char[None](self.strings).decode()
        except (EOFError, UnicodeDecodeError) as e:
            raise InvalidMetadataError(f"Invalid string heap index: {index}") from e

    def custom_debug_information(self, handle: Handle) -> Iterator[CustomDebugInformation]:
        """Yield the custom debug information records attached to an entity, in table order.

        Args:
            handle: The entity, e.g. the module, a method definition or a local variable.
        """

        for _, row in self.table(TableIndex.CustomDebugInformation).rows():
            tag = row.parent & ((1 << HAS_CUSTOM_DEBUG_INFORMATION_TAG_BITS) - 1)
            if tag >= len(HAS_CUSTOM_DEBUG_INFORMATION):
                log.debug("Skipping custom debug information with unknown parent tag %d", tag)
                continue

            parent = Handle(HAS_CUSTOM_DEBUG_INFORMATION[tag], row.parent >> HAS_CUSTOM_DEBUG_INFORMATION_TAG_BITS)
            if parent == handle:
                yield CustomDebugInformation(parent, row.kind, row.value)

    def local_scopes(self, method: Handle) -> Iterator[Handle]:
        """Yield the local scopes of a method in table order."""

        for row_id, row in self.table(TableIndex.LocalScope).rows():
            if row.method == method.row:
                yield Handle(TableIndex.LocalScope, row_id)

    def local_variables(self, scope: Handle) -> Iterator[Handle]:
        """Yield the local variables of a local scope.

        The variables of a scope run from its VariableList up to the VariableList of the next scope, or up to the
        end of the LocalVariable table for the last scope.
        """

        scopes = self.table(TableIndex.LocalScope)
        start = scopes.row(scope.row).variableList

        if scope.row < len(scopes):
            end = scopes.row(scope.row + 1).variableList
        else:
            end = len(self.table(TableIndex.LocalVariable)) + 1

        for row_id in range(start, end):
            yield Handle(TableIndex.LocalVariable, row_id)

    def method_local_variables(self, method: Handle) -> Iterator[Handle]:
        """Yield all local variables of a method.

        This is the positional order local variable indices refer to: the local scopes of the method in table
        order, and within each scope its variables in table order.
        """

        for scope in self.local_scopes(method):
            yield from self.local_variables(scope)

    def get_local_variable(self, handle: Handle) -> LocalVariable:
        row = self.table(TableIndex.LocalVariable).row(handle.row)
        return LocalVariable(handle, row.attributes, row.index, self.get_string(row.name))
