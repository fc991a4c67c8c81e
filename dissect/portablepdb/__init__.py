from dissect.portablepdb.cdi import CustomDebugInfoKind, CustomDebugInfoRecord, HoistedScope
from dissect.portablepdb.exception import (
    DecodeError,
    Error,
    InvalidHandleError,
    InvalidMetadataError,
    InvalidSignatureError,
    LocalVariableNotFoundError,
    MalformedBlobError,
    MalformedSourceLinkError,
)
from dissect.portablepdb.metadata import Handle, MetadataReader, module_handle
from dissect.portablepdb.portablepdb import PortablePdb, is_portable_pdb
from dissect.portablepdb.sourcelink import SourceLink, SourceLinkMap

__all__ = [
    "CustomDebugInfoKind",
    "CustomDebugInfoRecord",
    "DecodeError",
    "Error",
    "Handle",
    "HoistedScope",
    "InvalidHandleError",
    "InvalidMetadataError",
    "InvalidSignatureError",
    "LocalVariableNotFoundError",
    "MalformedBlobError",
    "MalformedSourceLinkError",
    "MetadataReader",
    "PortablePdb",
    "SourceLink",
    "SourceLinkMap",
    "is_portable_pdb",
    "module_handle",
]
