"""Bounds-checked sequential reader over an in-memory byte buffer."""

from __future__ import annotations

import struct
from typing import Any

from kcmacho.errors import DecodeError

_BYTE_ORDER_PREFIXES = "@=<>!"


class ReadError(DecodeError):
    """Requested data lies past the end of the buffer."""


def _compile(fmt: str) -> struct.Struct:
    if not fmt or fmt[0] not in _BYTE_ORDER_PREFIXES:
        fmt = "<" + fmt
    return struct.Struct(fmt)


def _unwrap(values: tuple[Any, ...]) -> Any:
    return values[0] if len(values) == 1 else values


class SpanReader:
    """Reads little-endian structures and strings from a byte buffer.

    Formats are :mod:`struct` format strings; without an explicit byte-order
    prefix they are read little-endian and unpadded. A format with a single
    field yields that value, otherwise a tuple.
    """

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._image = memoryview(data).cast("B")
        self._offset = 0

    @property
    def offset(self) -> int:
        """Current position within the buffer."""
        return self._offset

    @property
    def remaining(self) -> int:
        """Number of bytes left after the current position."""
        return len(self._image) - self._offset

    def _verify_available(self, size: int) -> None:
        if self._offset + size > len(self._image):
            raise ReadError(
                f"Required data of size {size} is not available at offset {self._offset}"
            )

    def read(self, fmt: str) -> Any:
        """Decode *fmt* at the current position and advance past it."""
        layout = _compile(fmt)
        result = self.peek(fmt)
        self._offset += layout.size
        return result

    def peek(self, fmt: str, offset: int = 0) -> Any:
        """Decode *fmt* at *offset* bytes past the current position."""
        layout = _compile(fmt)
        self._verify_available(offset + layout.size)
        return _unwrap(layout.unpack_from(self._image, self._offset + offset))

    def _string_end(self, start: int) -> int:
        end = bytes(self._image[start:]).find(b"\0")
        if end < 0:
            self._verify_available(start - self._offset + len(self._image) + 1)
        return start + end

    def read_string(self) -> str:
        """Read a NUL-terminated string and advance past the terminator."""
        start = self._offset
        end = self._string_end(start)
        self._offset = end + 1
        return bytes(self._image[start:end]).decode("utf-8", "surrogateescape")

    def peek_string(self, offset: int = 0) -> str:
        """Read a NUL-terminated string at *offset* without advancing."""
        start = self._offset + offset
        if start > len(self._image):
            self._verify_available(offset + 1)
        end = self._string_end(start)
        return bytes(self._image[start:end]).decode("utf-8", "surrogateescape")

    def skip(self, size: int) -> SpanReader:
        """Advance by *size* bytes."""
        self._verify_available(size)
        self._offset += size
        return self

    def sub(self, size: int) -> SpanReader:
        """Return a reader over the next *size* bytes and advance past them."""
        self._verify_available(size)
        reader = SpanReader(self._image[self._offset:self._offset + size])
        self._offset += size
        return reader