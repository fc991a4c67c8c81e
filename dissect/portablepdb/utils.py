from __future__ import annotations

from typing import BinaryIO, Iterator

from dissect.portablepdb.c_portablepdb import c_portablepdb
from dissect.portablepdb.exception import InvalidMetadataError


def align_int(integer: int, blocksize: int) -> int:
    """Align an integer value to the given blocksize.

    Args:
        integer: The offset or length that needs to have an aligned value.
        blocksize: The alignment to adhere to.

    Returns:
        An aligned integer if the integer itself was not aligned yet.
    """

    needs_alignment = integer % blocksize
    return integer if not needs_alignment else integer + (blocksize - needs_alignment)


def iter_set_bits(mask: int) -> Iterator[int]:
    """Yield the positions of the bits that are set in `mask`, lowest first."""

    position = 0
    while mask:
        if mask & 1:
            yield position
        mask >>= 1
        position += 1


def read_compressed_uint(fh: BinaryIO) -> int:
    """Read an ECMA-335 compressed unsigned integer (II.23.2).

    The first byte determines the width of the value:
        - ``0xxxxxxx``: 1 byte, 7 bits of value.
        - ``10xxxxxx``: 2 bytes, 14 bits of value.
        - ``110xxxxx``: 4 bytes, 29 bits of value.

    Args:
        fh: The file-like object positioned at the compressed integer.

    Returns:
        The decoded value.

    Raises:
        InvalidMetadataError: If the leading byte does not describe a valid width.
    """

    first = c_portablepdb.uint8(fh)
    if first & 0x80 == 0:
        return first

    if first & 0xC0 == 0x80:
        return ((first & 0x3F) << 8) | c_portablepdb.uint8(fh)

    if first & 0xE0 == 0xC0:
        rest = c_portablepdb.uint8[3](fh)
        return ((first & 0x1F) << 24) | (rest[0] << 16) | (rest[1] << 8) | rest[2]

    raise InvalidMetadataError(f"Invalid compressed integer lead byte: {first:#04x}")
