from enum import IntEnum

from dissect.cstruct import cstruct

portablepdb_def = """
/////////////////////////////////////////////////////////////////////////
// Metadata container (ECMA-335 II.24.2)
/////////////////////////////////////////////////////////////////////////
#define PORTABLE_PDB_SIGNATURE      0x424A5342

#define HEAP_STRING_LARGE           0x01
#define HEAP_GUID_LARGE             0x02
#define HEAP_BLOB_LARGE             0x04
#define HEAP_EXTRA_DATA             0x40

struct METADATA_ROOT {
    uint32 signature;
    uint16 majorVersion;
    uint16 minorVersion;
    uint32 reserved;
    uint32 versionLength;
    char   version[versionLength];
    uint16 flags;
    uint16 streams;
};

struct STREAM_HEADER {
    uint32 offset;
    uint32 size;
};

struct PDB_STREAM_HEADER {
    char   pdbId[20];
    uint32 entryPoint;
    uint64 referencedTypeSystemTables;
};

struct TABLES_STREAM_HEADER {
    uint32 reserved;
    uint8  majorVersion;
    uint8  minorVersion;
    uint8  heapSizes;
    uint8  reserved2;
    uint64 valid;
    uint64 sorted;
};

/////////////////////////////////////////////////////////////////////////
// Custom debug information payloads
/////////////////////////////////////////////////////////////////////////
struct HOISTED_LOCAL_SCOPE {
    int32  offset;
    int32  length;
};
"""

# Row layouts of the debug tables (Portable PDB v1.0). The index typedefs are
# resolved per file, see `MetadataReader._load_row_structs`.
tables_def = """
struct DocumentRow {
    BlobIndex   name;
    GuidIndex   hashAlgorithm;
    BlobIndex   hash;
    GuidIndex   language;
};

struct MethodDebugInformationRow {
    DocumentIndex   document;
    BlobIndex       sequencePoints;
};

struct LocalScopeRow {
    MethodDefIndex      method;
    ImportScopeIndex    importScope;
    LocalVariableIndex  variableList;
    LocalConstantIndex  constantList;
    uint32              startOffset;
    uint32              length;
};

struct LocalVariableRow {
    uint16      attributes;
    uint16      index;
    StringIndex name;
};

struct LocalConstantRow {
    StringIndex name;
    BlobIndex   signature;
};

struct ImportScopeRow {
    ImportScopeIndex    parent;
    BlobIndex           imports;
};

struct StateMachineMethodRow {
    MethodDefIndex  moveNextMethod;
    MethodDefIndex  kickoffMethod;
};

struct CustomDebugInformationRow {
    HasCustomDebugInformationIndex  parent;
    GuidIndex                       kind;
    BlobIndex                       value;
};
"""

c_portablepdb = cstruct()
c_portablepdb.load(portablepdb_def)


class TableIndex(IntEnum):
    """Metadata table numbers (ECMA-335 II.22, Portable PDB v1.0)."""

    Module = 0x00
    TypeRef = 0x01
    TypeDef = 0x02
    Field = 0x04
    MethodDef = 0x06
    Param = 0x08
    InterfaceImpl = 0x09
    MemberRef = 0x0A
    DeclSecurity = 0x0E
    StandAloneSig = 0x11
    Event = 0x14
    Property = 0x17
    ModuleRef = 0x1A
    TypeSpec = 0x1B
    Assembly = 0x20
    AssemblyRef = 0x23
    File = 0x26
    ExportedType = 0x27
    ManifestResource = 0x28
    GenericParam = 0x2A
    MethodSpec = 0x2B
    GenericParamConstraint = 0x2C
    Document = 0x30
    MethodDebugInformation = 0x31
    LocalScope = 0x32
    LocalVariable = 0x33
    LocalConstant = 0x34
    ImportScope = 0x35
    StateMachineMethod = 0x36
    CustomDebugInformation = 0x37


PORTABLE_PDB_SIGNATURE = c_portablepdb.PORTABLE_PDB_SIGNATURE

# Row struct name per debug table, in the order they are stored in the tables stream
TABLE_ROW_STRUCTS = {
    TableIndex.Document: "DocumentRow",
    TableIndex.MethodDebugInformation: "MethodDebugInformationRow",
    TableIndex.LocalScope: "LocalScopeRow",
    TableIndex.LocalVariable: "LocalVariableRow",
    TableIndex.LocalConstant: "LocalConstantRow",
    TableIndex.ImportScope: "ImportScopeRow",
    TableIndex.StateMachineMethod: "StateMachineMethodRow",
    TableIndex.CustomDebugInformation: "CustomDebugInformationRow",
}

# Tables that can be referenced by the HasCustomDebugInformation coded index, ordered by tag
HAS_CUSTOM_DEBUG_INFORMATION = [
    TableIndex.MethodDef,
    TableIndex.Field,
    TableIndex.TypeRef,
    TableIndex.TypeDef,
    TableIndex.Param,
    TableIndex.InterfaceImpl,
    TableIndex.MemberRef,
    TableIndex.Module,
    TableIndex.DeclSecurity,
    TableIndex.Property,
    TableIndex.Event,
    TableIndex.StandAloneSig,
    TableIndex.ModuleRef,
    TableIndex.TypeSpec,
    TableIndex.Assembly,
    TableIndex.AssemblyRef,
    TableIndex.File,
    TableIndex.ExportedType,
    TableIndex.ManifestResource,
    TableIndex.GenericParam,
    TableIndex.GenericParamConstraint,
    TableIndex.MethodSpec,
    TableIndex.Document,
    TableIndex.LocalScope,
    TableIndex.LocalVariable,
    TableIndex.LocalConstant,
    TableIndex.ImportScope,
]
HAS_CUSTOM_DEBUG_INFORMATION_TAG_BITS = 5
