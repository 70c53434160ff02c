"""
Little-endian integer helpers for PMD payloads.

Sample fields on the data channel are 1, 2 or 3 bytes wide and signed.
They are sign-extended into a 32-bit accumulator before being
reinterpreted as a signed value.
"""

import struct

_SIGNED_WIDTHS = (1, 2, 3)


def decode_signed(data: bytes, width: int) -> int:
    """Decode ``data[:width]`` as a little-endian signed integer.

    The caller guarantees ``len(data) >= width``.
    """
    if width == 3:
        fill = b"\xff" if data[2] & 0x80 else b"\x00"
        return struct.unpack("<i", bytes(data[:3]) + fill)[0]
    if width == 2:
        return struct.unpack("<h", bytes(data[:2]))[0]
    if width == 1:
        return struct.unpack("<b", bytes(data[:1]))[0]
    raise ValueError("Unsupported field width: %d (expected one of %s)" % (width, _SIGNED_WIDTHS))


def decode_unsigned(data: bytes, width: int) -> int:
    """Decode ``data[:width]`` as a little-endian unsigned integer."""
    if width not in _SIGNED_WIDTHS:
        raise ValueError("Unsupported field width: %d (expected one of %s)" % (width, _SIGNED_WIDTHS))
    return int.from_bytes(bytes(data[:width]), "little", signed=False)
