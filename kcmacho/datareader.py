"""Positioned reader over an addressable data source."""

from __future__ import annotations

import abc
import struct
from typing import Any

from kcmacho.errors import DecodeError, verify

_CHUNK = 32


class DataReaderError(DecodeError):
    """Data could not be read at the requested position."""


class DataBackend(abc.ABC):
    """An addressable source of bytes covering ``[start, start + length)``."""

    @property
    @abc.abstractmethod
    def start(self) -> int:
        """Address of the first byte."""

    @property
    @abc.abstractmethod
    def length(self) -> int:
        """Number of addressable bytes."""

    @abc.abstractmethod
    def read(self, offset: int, length: int) -> bytes:
        """Return up to *length* bytes at *offset*; fewer at the end of data."""


class BytesDataBackend(DataBackend):
    """Backend over an in-memory buffer mapped at address *start*."""

    def __init__(self, data: bytes | bytearray | memoryview, start: int = 0) -> None:
        self._data = bytes(data)
        self._start = start

    @property
    def start(self) -> int:
        return self._start

    @property
    def length(self) -> int:
        return len(self._data)

    def read(self, offset: int, length: int) -> bytes:
        position = offset - self._start
        if position < 0 or position >= len(self._data):
            return b""
        return self._data[position:position + length]


def _compile(fmt: str) -> struct.Struct:
    if not fmt or fmt[0] not in "@=<>!":
        fmt = "<" + fmt
    return struct.Struct(fmt)


class DataReader:
    """Reads little-endian structures and strings from a backend.

    Formats are :mod:`struct` format strings, little-endian unless they carry
    a byte-order prefix. A single-field format yields the value itself.
    """

    def __init__(self, backend: DataBackend, offset: int) -> None:
        self._backend = backend
        self._offset = offset

    @property
    def offset(self) -> int:
        """Current address."""
        return self._offset

    def read(self, fmt: str) -> Any:
        """Decode *fmt* at the current address and advance past it."""
        result = self.peek(fmt)
        self._offset += _compile(fmt).size
        return result

    def peek(self, fmt: str) -> Any:
        """Decode *fmt* at the current address without advancing."""
        layout = _compile(fmt)
        data = self._backend.read(self._offset, layout.size)
        if len(data) != layout.size:
            raise DataReaderError(
                f"Failed to read data of size {layout.size} at offset {self._offset}, "
                f"read only {len(data)} bytes"
            )
        values = layout.unpack(data)
        return values[0] if len(values) == 1 else values

    def _find_string_length(self, max_length: int) -> int:
        for cursor in range(0, max_length, _CHUNK):
            chunk = self._backend.read(self._offset + cursor, _CHUNK)
            terminator = chunk.find(b"\0")
            if terminator >= 0:
                return cursor + terminator
            if len(chunk) != _CHUNK:
                raise DataReaderError(
                    f"Failed to read string at offset {self._offset}, "
                    f"reached EOF at {cursor + len(chunk)}"
                )
        raise DataReaderError(
            f"Failed to read string at offset {self._offset}, "
            f"string exceeds max length {max_length}"
        )

    def read_string(self, max_length: int = 1024) -> str:
        """Read a NUL-terminated string, advancing to its terminator."""
        length = self._find_string_length(max_length)
        data = self._backend.read(self._offset, length)
        verify(len(data) == length, "read == length")
        self._offset += length
        return data.decode("utf-8", "surrogateescape")

    def seek(self, length: int) -> None:
        """Advance by *length* bytes; raise if that passes the end of data."""
        self._offset += length
        end = self._backend.start + self._backend.length
        if self._offset > end:
            raise DataReaderError(
                f"Attempt to seek to position {self._offset} past EOF, "
                f"file size: {self._backend.length}"
            )

    def copy(self) -> DataReader:
        """An independent reader at the same address."""
        return DataReader(self._backend, self._offset)