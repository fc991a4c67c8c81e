from __future__ import annotations

import logging
import os
from enum import Enum
from io import BytesIO
from typing import TYPE_CHECKING, Iterator, NamedTuple
from uuid import UUID

from dissect.portablepdb.c_portablepdb import c_portablepdb
from dissect.portablepdb.exception import MalformedBlobError

if TYPE_CHECKING:
    from dissect.portablepdb.metadata import Handle, MetadataReader

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_PORTABLEPDB", "CRITICAL"))


class CustomDebugInfoKind(Enum):
    """Well-known kinds of custom debug information records.

    See https://github.com/dotnet/runtime/blob/main/docs/design/specs/PortablePdb-Metadata.md
    """

    AsyncMethodSteppingInformation = UUID("54FD2AC5-E925-401A-9C2A-F94F171072F8")
    StateMachineHoistedLocalScopes = UUID("6DA9A61E-F8C7-4874-BE62-68BC5630DF71")
    DynamicLocalVariables = UUID("83C563C4-B4F3-47D5-B824-BA5441477EA8")
    TupleElementNames = UUID("ED9FDF71-8879-4747-8ED3-FE5EDE3CE710")
    DefaultNamespace = UUID("58B2EAB6-209F-4E4E-A22C-B2D0F910C782")
    EncLocalSlotMap = UUID("755F52A8-91C5-45BE-B4B8-209571E552BD")
    EncLambdaAndClosureMap = UUID("A643004C-0240-496F-A783-30D64F4979DE")
    SourceLink = UUID("CC110556-A091-4D38-9FEC-25AB9A351A6A")
    EmbeddedSource = UUID("0E8A571B-6926-466E-B4AD-8AB04611F5FE")

    @classmethod
    def lookup(cls, guid: UUID | None) -> CustomDebugInfoKind | None:
        """Return the kind for a GUID, ``None`` for kinds we don't know about."""

        try:
            return cls(guid)
        except ValueError:
            return None


class CustomDebugInfoRecord(NamedTuple):
    kind: CustomDebugInfoKind | None
    guid: UUID | None
    payload: bytes


class HoistedScope(NamedTuple):
    """The half-open IL offset range ``[start, end)`` in which a hoisted local is in scope."""

    start: int
    end: int


def find_custom_debug_information(reader: MetadataReader, handle: Handle, kind: CustomDebugInfoKind) -> bytes | None:
    """Return the payload of the first record of `kind` attached to an entity.

    Args:
        reader: The metadata reader of an opened Portable PDB.
        handle: The entity the records are attached to.
        kind: The kind of record to look for.

    Returns:
        The raw payload bytes, or ``None`` if no such record is attached.
    """

    for record in reader.custom_debug_information(handle):
        if reader.get_guid(record.kind) == kind.value:
            return reader.get_blob(record.value)

    log.debug("No %s custom debug information attached to %r", kind.name, handle)
    return None


def iter_custom_debug_information(reader: MetadataReader, handle: Handle) -> Iterator[CustomDebugInfoRecord]:
    """Yield every record attached to an entity, classified by kind.

    Records of unrecognized kinds are yielded with a kind of ``None``.
    """

    for record in reader.custom_debug_information(handle):
        guid = reader.get_guid(record.kind)
        yield CustomDebugInfoRecord(CustomDebugInfoKind.lookup(guid), guid, reader.get_blob(record.value))


def decode_hoisted_scopes(payload: bytes) -> list[HoistedScope]:
    """Decode a StateMachineHoistedLocalScopes payload.

    The payload is a flat array of ``(int32 offset, int32 length)`` pairs, one per hoisted local.

    Raises:
        MalformedBlobError: If the payload is not a whole number of entries.
    """

    entry_size = len(c_portablepdb.HOISTED_LOCAL_SCOPE)
    count, remainder = divmod(len(payload), entry_size)
    if remainder:
        log.warning("Hoisted local scopes payload of %d bytes is not a multiple of %d", len(payload), entry_size)
        raise MalformedBlobError(f"Invalid hoisted local scopes payload size: {len(payload)}")

    if not count:
        return []

    entries = c_portablepdb.HOISTED_LOCAL_SCOPE[count](BytesIO(payload))
    return [HoistedScope(entry.offset, entry.offset + entry.length) for entry in entries]


def decode_tuple_element_names(payload: bytes) -> list[str | None]:
    """Decode a TupleElementNames payload.

    The payload is a sequence of null terminated UTF-8 strings, one per tuple element. An empty string means the
    element has no custom name and is returned as ``None``.

    Raises:
        MalformedBlobError: If the last name is not terminated or a name is not valid UTF-8.
    """

    if not payload:
        return []

    if not payload.endswith(b"\x00"):
        log.warning("Tuple element names payload is missing its terminator")
        raise MalformedBlobError("Unterminated tuple element name")

    names = []
    for name in payload[:-1].split(b"\x00"):
        try:
            names.append(name.decode("utf-8") or None)
        except UnicodeDecodeError as e:
            raise MalformedBlobError(f"Invalid UTF-8 in tuple element name: {name!r}") from e

    return names
