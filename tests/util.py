from __future__ import annotations

import struct
from uuid import UUID

from dissect.portablepdb.c_portablepdb import TableIndex

PDB_VERSION = b"PDB v1.0"

# HasCustomDebugInformation coded index tags of the tables used in tests
CODED_INDEX_TAGS = {
    TableIndex.MethodDef: 0,
    TableIndex.Module: 7,
    TableIndex.LocalScope: 23,
    TableIndex.LocalVariable: 24,
}


def compress_uint(value: int) -> bytes:
    if value < 0x80:
        return bytes([value])
    if value < 0x4000:
        return struct.pack(">H", value | 0x8000)
    return struct.pack(">I", value | 0xC0000000)


def pad4(data: bytes) -> bytes:
    return data + b"\x00" * (-len(data) % 4)


class PortablePdbBuilder:
    """Build minimal Portable PDB images with local scopes, local variables and custom debug information.

    Index widths follow the reader rules: heap indices are 4 bytes wide for the `heap_sizes` flags given, the
    MethodDef index once `methods` reaches 2^16 rows and the HasCustomDebugInformation coded index once any of the
    tables involved reaches 2^11 rows. Local scopes have to be added in method order.
    """

    def __init__(self, methods: int = 4, heap_sizes: int = 0):
        self.methods = methods
        self.heap_sizes = heap_sizes
        self.strings = bytearray(b"\x00")
        self.blobs = bytearray(b"\x00")
        self.guids = bytearray()
        self.local_scopes = []
        self.local_variables = []
        self.custom_debug_information = []

    def add_string(self, value: str) -> int:
        index = len(self.strings)
        self.strings += value.encode() + b"\x00"
        return index

    def add_blob(self, data: bytes) -> int:
        index = len(self.blobs)
        self.blobs += compress_uint(len(data)) + data
        return index

    def add_guid(self, guid: UUID) -> int:
        self.guids += guid.bytes_le
        return len(self.guids) // 16

    def add_local_scope(self, method: int, names: list[str]) -> list[tuple[int, int]]:
        """Add a local scope to a method, returns the handles of its local variables."""

        first = len(self.local_variables) + 1
        self.local_scopes.append((method, first, 0, 0x100))
        for slot, name in enumerate(names):
            self.local_variables.append((0, slot, self.add_string(name)))
        return [(TableIndex.LocalVariable, row) for row in range(first, first + len(names))]

    def add_custom_debug_information(self, parent: tuple[int, int], kind: UUID, value: bytes) -> None:
        table, row = parent
        coded = (row << 5) | CODED_INDEX_TAGS[table]
        self.custom_debug_information.append((coded, self.add_guid(kind), self.add_blob(value)))

    def _pdb_stream(self) -> bytes:
        referenced = (1 << TableIndex.Module) | (1 << TableIndex.MethodDef)
        return bytes(20) + struct.pack("<IQII", 0, referenced, 1, self.methods)

    def _tables_stream(self) -> bytes:
        string = "I" if self.heap_sizes & 0x01 else "H"
        guid = "I" if self.heap_sizes & 0x02 else "H"
        blob = "I" if self.heap_sizes & 0x04 else "H"
        method = "I" if self.methods >= 1 << 16 else "H"
        largest = max(self.methods, 1, len(self.local_scopes), len(self.local_variables))
        coded = "I" if largest >= 1 << 11 else "H"

        tables = {
            TableIndex.LocalScope: [
                struct.pack(f"<{method}HHHII", method_row, 0, variables, 1, start, length)
                for method_row, variables, start, length in self.local_scopes
            ],
            TableIndex.LocalVariable: [struct.pack(f"<HH{string}", *row) for row in self.local_variables],
            # The table is sorted on its parent column, a stable sort keeps duplicates in insertion order
            TableIndex.CustomDebugInformation: [
                struct.pack(f"<{coded}{guid}{blob}", *row)
                for row in sorted(self.custom_debug_information, key=lambda row: row[0])
            ],
        }
        present = [table for table in sorted(tables) if tables[table]]
        valid = sum(1 << table for table in present)

        data = struct.pack("<IBBBBQQ", 0, 2, 0, self.heap_sizes, 1, valid, 0)
        data += b"".join(struct.pack("<I", len(tables[table])) for table in present)
        data += b"".join(b"".join(tables[table]) for table in present)
        return data

    def build(self) -> bytes:
        version = pad4(PDB_VERSION + b"\x00")
        streams = [
            ("#Pdb", self._pdb_stream()),
            ("#~", self._tables_stream()),
            ("#Strings", bytes(self.strings)),
            ("#Blob", bytes(self.blobs)),
            ("#GUID", bytes(self.guids)),
        ]

        root = struct.pack("<IHHII", 0x424A5342, 1, 1, 0, len(version)) + version
        root += struct.pack("<HH", 0, len(streams))

        offset = len(root) + sum(8 + len(pad4(name.encode() + b"\x00")) for name, _ in streams)
        directory = b""
        body = b""
        for name, data in streams:
            data = pad4(data)
            directory += struct.pack("<II", offset, len(data)) + pad4(name.encode() + b"\x00")
            body += data
            offset += len(data)

        return root + directory + body
