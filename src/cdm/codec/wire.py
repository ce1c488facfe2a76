"""
Length-delimited wire format primitives.

Every decoder is a pure function over ``(data, offset)`` returning
``(value, new_offset)``. Malformed input raises ``DecodeError`` with the
offending offset; nothing here tries to resynchronise past bad bytes.

Wire types:
- 0: varint
- 1: fixed 64-bit (little-endian)
- 2: length-delimited
- 5: fixed 32-bit (little-endian)
"""

from __future__ import annotations

import struct
from typing import Tuple

from ..exceptions import DecodeError

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5

WIRE_TYPES = (WIRE_VARINT, WIRE_FIXED64, WIRE_LENGTH_DELIMITED, WIRE_FIXED32)

MAX_VARINT = (1 << 64) - 1
_MAX_VARINT_BYTES = 10


def encode_varint(value: int) -> bytes:
    """Encode an unsigned integer as a little-endian base-128 varint.

    Args:
        value: Integer in ``[0, 2**64)``

    Returns:
        Encoded bytes (1 to 10 bytes)

    Raises:
        ValueError: If value is negative or too large
    """
    if value < 0 or value > MAX_VARINT:
        raise ValueError(f"varint out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode a varint starting at ``offset``.

    Returns:
        Tuple of (value, new_offset)

    Raises:
        DecodeError: If the buffer ends mid-varint or the varint is too long
    """
    result = 0
    shift = 0
    start = offset
    for _ in range(_MAX_VARINT_BYTES):
        if offset >= len(data):
            raise DecodeError("truncated varint", offset=start)
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if result > MAX_VARINT:
                raise DecodeError("varint overflows 64 bits", offset=start)
            return result, offset
        shift += 7
    raise DecodeError("varint longer than 10 bytes", offset=start)


def encode_tag(field_number: int, wire_type: int) -> bytes:
    """Pack a field number and wire type into an encoded tag."""
    if field_number < 1:
        raise ValueError(f"invalid field number: {field_number}")
    if wire_type not in WIRE_TYPES:
        raise ValueError(f"invalid wire type: {wire_type}")
    return encode_varint((field_number << 3) | wire_type)


def decode_tag(data: bytes, offset: int = 0) -> Tuple[int, int, int]:
    """Decode a tag.

    Returns:
        Tuple of (field_number, wire_type, new_offset)
    """
    key, new_offset = decode_varint(data, offset)
    field_number = key >> 3
    if field_number == 0:
        raise DecodeError("field number 0", offset=offset)
    return field_number, key & 0x07, new_offset


def encode_length_delimited(field_number: int, payload: bytes) -> bytes:
    """Encode a length-delimited field: tag, length, payload."""
    return encode_tag(field_number, WIRE_LENGTH_DELIMITED) + encode_varint(len(payload)) + bytes(payload)


def decode_length_delimited(data: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """Read a length prefix and the payload that follows it."""
    length, start = decode_varint(data, offset)
    end = start + length
    if end > len(data):
        raise DecodeError(f"length {length} runs past end of buffer", offset=offset)
    return bytes(data[start:end]), end


def encode_fixed32(value: int) -> bytes:
    return struct.pack("<I", value & 0xFFFFFFFF)


def encode_fixed64(value: int) -> bytes:
    return struct.pack("<Q", value & 0xFFFFFFFFFFFFFFFF)


def decode_fixed32(data: bytes, offset: int = 0) -> Tuple[int, int]:
    if offset + 4 > len(data):
        raise DecodeError("truncated fixed32", offset=offset)
    return struct.unpack_from("<I", data, offset)[0], offset + 4


def decode_fixed64(data: bytes, offset: int = 0) -> Tuple[int, int]:
    if offset + 8 > len(data):
        raise DecodeError("truncated fixed64", offset=offset)
    return struct.unpack_from("<Q", data, offset)[0], offset + 8


def skip_unknown_field(wire_type: int, data: bytes, offset: int) -> int:
    """Skip the value of a field whose tag has already been consumed.

    Args:
        wire_type: Wire type from the tag
        data: Buffer being decoded
        offset: Offset of the first byte after the tag

    Returns:
        Offset of the next tag

    Raises:
        DecodeError: On an unrecognised wire type or a truncated value
    """
    if wire_type == WIRE_VARINT:
        return decode_varint(data, offset)[1]
    if wire_type == WIRE_FIXED64:
        return decode_fixed64(data, offset)[1]
    if wire_type == WIRE_LENGTH_DELIMITED:
        return decode_length_delimited(data, offset)[1]
    if wire_type == WIRE_FIXED32:
        return decode_fixed32(data, offset)[1]
    raise DecodeError(f"unsupported wire type {wire_type}", offset=offset)
