from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Callable, Iterator

# Local imports
from dissect.portablepdb.c_portablepdb import PORTABLE_PDB_SIGNATURE, c_portablepdb
from dissect.portablepdb.cdi import (
    CustomDebugInfoKind,
    CustomDebugInfoRecord,
    HoistedScope,
    decode_hoisted_scopes,
    decode_tuple_element_names,
    find_custom_debug_information,
    iter_custom_debug_information,
)
from dissect.portablepdb.exception import LocalVariableNotFoundError
from dissect.portablepdb.metadata import Handle, MetadataReader, module_handle
from dissect.portablepdb.sourcelink import (
    SourceLink,
    SourceLinkMap,
    decode_source_link,
    resolve_source_link,
)

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_PORTABLEPDB", "CRITICAL"))


def is_portable_pdb(path: str | Path | None) -> bool:
    """Check whether a file is a Portable PDB by looking at its first 4 bytes.

    Args:
        path: The location of the file to check.

    Returns:
        `True` if the file starts with the Portable PDB metadata signature, `False` otherwise or if the file can't
        be read.
    """

    if not path:
        return False

    try:
        with open(path, "rb") as fh:
            signature = fh.read(4)
    except (OSError, ValueError):
        return False

    return len(signature) == 4 and c_portablepdb.uint32(signature) == PORTABLE_PDB_SIGNATURE


class PortablePdb:
    """Debug information of a single Portable PDB file.

    The file is opened for the duration of every operation and closed afterwards, only the Source Link maps are
    kept for the lifetime of this object. The file is expected not to change while this object is alive.

    Args:
        path: The location of the Portable PDB file.
        reader: A callable creating a metadata reader from a file-like object.
    """

    def __init__(self, path: str | Path, reader: Callable[[BinaryIO], MetadataReader] = MetadataReader):
        self.path = Path(path)
        self.reader = reader

        self._source_link_maps: list[SourceLinkMap] | None = None
        self._source_link_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<PortablePdb path={str(self.path)!r}>"

    @contextmanager
    def open(self) -> Iterator[MetadataReader]:
        """Open the Portable PDB file and yield a metadata reader for it, closing the file on exit."""

        with self.path.open("rb") as fh:
            yield self.reader(fh)

    def get_hoisted_scopes(self, method_token: int) -> list[HoistedScope] | None:
        """Return the live ranges of the hoisted locals of a state machine method.

        Args:
            method_token: The metadata token of the method (e.g. the ``MoveNext`` method of an async state machine).

        Returns:
            The scopes in payload order, or ``None`` if the method has no hoisted local scopes record.

        Raises:
            MalformedBlobError: If the record is present but malformed.
        """

        method = Handle.from_method_token(method_token)
        with self.open() as reader:
            payload = find_custom_debug_information(reader, method, CustomDebugInfoKind.StateMachineHoistedLocalScopes)

        if payload is None:
            return None

        return decode_hoisted_scopes(payload)

    def get_tuple_element_names(self, method_token: int, local_index: int) -> list[str | None] | None:
        """Return the tuple element names of a local variable.

        Args:
            method_token: The metadata token of the method.
            local_index: The positional index of the local variable, across all local scopes of the method. See
                `MetadataReader.method_local_variables` for the order.

        Returns:
            One entry per tuple element, ``None`` for elements without a name. ``None`` if the variable has no
            tuple element names record.

        Raises:
            LocalVariableNotFoundError: If the method has no local variable at `local_index`.
            MalformedBlobError: If the record is present but malformed.
        """

        method = Handle.from_method_token(method_token)
        if local_index < 0:
            raise LocalVariableNotFoundError(f"Invalid local variable index: {local_index}")

        with self.open() as reader:
            for index, variable in enumerate(reader.method_local_variables(method)):
                if index == local_index:
                    break
            else:
                raise LocalVariableNotFoundError(
                    f"Method {method_token:#010x} has no local variable at index {local_index}"
                )

            payload = find_custom_debug_information(reader, variable, CustomDebugInfoKind.TupleElementNames)

        if payload is None:
            return None

        return decode_tuple_element_names(payload)

    @property
    def source_link_maps(self) -> list[SourceLinkMap]:
        """The Source Link maps of the module, decoded on first access.

        Raises:
            MalformedSourceLinkError: If the Source Link record is present but malformed.
        """

        if self._source_link_maps is None:
            with self._source_link_lock:
                if self._source_link_maps is None:
                    self._source_link_maps = self._load_source_link_maps()

        return self._source_link_maps

    def _load_source_link_maps(self) -> list[SourceLinkMap]:
        with self.open() as reader:
            payload = find_custom_debug_information(reader, module_handle(), CustomDebugInfoKind.SourceLink)

        if payload is None:
            log.debug("No Source Link information in %s", self.path)
            return []

        return decode_source_link(payload)

    def resolve_source_link(self, path: str) -> SourceLink | None:
        """Resolve a local source file path to its remote location.

        Returns:
            The `SourceLink`, or ``None`` if the PDB has no Source Link information for `path`.
        """

        return resolve_source_link(self.source_link_maps, path)

    def custom_debug_information(self, handle: Handle) -> list[CustomDebugInfoRecord]:
        """Return all custom debug information records attached to an entity."""

        with self.open() as reader:
            return list(iter_custom_debug_information(reader, handle))
