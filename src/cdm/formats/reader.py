"""Strict byte reader with explicit endianness per field."""

from __future__ import annotations

import struct

from ..exceptions import DecodeError


class Reader:
    """Cursor over an immutable buffer.

    Every read names the field it is reading so that a truncated buffer
    reports where decoding stopped.
    """

    def __init__(self, data: bytes, offset: int = 0, end: int | None = None):
        self.data = bytes(data)
        self.offset = offset
        self.end = len(self.data) if end is None else end
        if self.end > len(self.data) or offset > self.end:
            raise DecodeError("reader bounds exceed buffer", offset=offset)

    @property
    def remaining(self) -> int:
        return self.end - self.offset

    def at_end(self) -> bool:
        return self.offset >= self.end

    def bytes(self, size: int, field: str = "bytes") -> bytes:
        if size < 0 or self.offset + size > self.end:
            raise DecodeError(f"need {size} bytes, {self.remaining} left", offset=self.offset, field=field)
        value = self.data[self.offset:self.offset + size]
        self.offset += size
        return value

    def rest(self) -> bytes:
        return self.bytes(self.remaining, "rest")

    def _unpack(self, fmt: str, field: str) -> int:
        size = struct.calcsize(fmt)
        return struct.unpack(fmt, self.bytes(size, field))[0]

    def u8(self, field: str = "u8") -> int:
        return self._unpack(">B", field)

    def u16be(self, field: str = "u16") -> int:
        return self._unpack(">H", field)

    def u32be(self, field: str = "u32") -> int:
        return self._unpack(">I", field)

    def u16le(self, field: str = "u16") -> int:
        return self._unpack("<H", field)

    def u32le(self, field: str = "u32") -> int:
        return self._unpack("<I", field)

    def expect(self, magic: bytes, field: str = "magic") -> None:
        start = self.offset
        found = self.bytes(len(magic), field)
        if found != magic:
            raise DecodeError(f"expected {magic!r}, found {found!r}", offset=start, field=field)

    def sub(self, size: int, field: str = "record") -> "Reader":
        """Return a reader bounded to the next ``size`` bytes and skip past them."""
        start = self.offset
        self.bytes(size, field)
        return Reader(self.data, start, start + size)
