from __future__ import annotations

import json
import logging
import os
import posixpath
from dataclasses import dataclass
from typing import Iterable, NamedTuple
from urllib.parse import unquote, urlsplit

from dissect.portablepdb.exception import MalformedSourceLinkError

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_PORTABLEPDB", "CRITICAL"))

WILDCARD = "*"


class SourceLinkMap(NamedTuple):
    """A single ``"documents"`` entry of a Source Link JSON document."""

    path_pattern: str
    uri_pattern: str

    @property
    def prefix(self) -> str:
        """The literal part of the path pattern, with forward slashes as separators."""
        return normalize_path(self.path_pattern.replace(WILDCARD, ""))


@dataclass(frozen=True)
class SourceLink:
    """The remote location of a local source file.

    Attributes:
        uri: The URL serving the source file.
        relative_path: A relative path identifying the file and its revision, e.g. ``org/project/sha/src/file.cs``.
    """

    uri: str
    relative_path: str


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def decode_source_link(payload: bytes) -> list[SourceLinkMap]:
    """Decode a Source Link JSON payload.

    The payload is a UTF-8 encoded JSON object with a ``"documents"`` object, mapping path patterns to URI
    patterns. The maps are returned in document order.

    Raises:
        MalformedSourceLinkError: If the payload is not valid JSON or doesn't have the expected shape.
    """

    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        log.warning("Failed to decode Source Link JSON: %s", e)
        raise MalformedSourceLinkError(f"Invalid Source Link JSON: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get("documents"), dict):
        raise MalformedSourceLinkError("Source Link JSON has no \"documents\" object")

    maps = []
    for path_pattern, uri_pattern in document["documents"].items():
        if not isinstance(uri_pattern, str):
            raise MalformedSourceLinkError(f"Invalid URI pattern for {path_pattern!r}: {uri_pattern!r}")
        maps.append(SourceLinkMap(path_pattern, uri_pattern))

    log.debug("Decoded %d Source Link maps", len(maps))
    return maps


def resolve_source_link(maps: Iterable[SourceLinkMap], path: str) -> SourceLink | None:
    """Resolve a local file path to its remote location using the first matching map.

    For the map ``"/build/*": "https://raw.githubusercontent.com/org/proj/sha/*"`` the path ``/build/src/Foo.cs``
    resolves to ``https://raw.githubusercontent.com/org/proj/sha/src/Foo.cs`` with the relative path
    ``org/proj/sha/src/Foo.cs``.

    Args:
        maps: The Source Link maps, in document order.
        path: The local path of the source file, as recorded in the PDB.

    Returns:
        The resolved `SourceLink`, or ``None`` if no map applies to `path`.
    """

    path = normalize_path(path)

    for source_link_map in maps:
        prefix = source_link_map.prefix
        if not path.startswith(prefix):
            continue

        suffix = path[len(prefix) :]
        uri_pattern = source_link_map.uri_pattern

        # The wildcard of the URI pattern is substituted by whatever the path wildcard matched, a URI pattern
        # without one is treated as a base the match is appended to
        if WILDCARD in uri_pattern:
            uri = uri_pattern.replace(WILDCARD, suffix, 1)
        else:
            uri = uri_pattern + suffix

        base_path = unquote(urlsplit(uri_pattern.replace(WILDCARD, "")).path)
        if base_path.startswith("/"):
            base_path = base_path[1:]

        return SourceLink(uri, posixpath.join(base_path, suffix) if suffix else base_path)

    return None
