"""
Wire codecs for trainer library streams.

Text: one value per line, lines starting with '%' are comments, reals
use Python's shortest round-trip representation.

Binary: a string is a one-byte length followed by UTF-8 bytes, integers
are little-endian int32, reals little-endian float64.
"""

import struct
from typing import BinaryIO, TextIO

import numpy as np

from ..errors import LibraryFormatError

INT32 = struct.Struct('<i')
REAL = np.dtype('<f8')


class TextWriter:
    """Write library fields to a text stream."""

    binary = False

    def __init__(self, stream: TextIO):
        self.stream = stream

    def comment(self, text: str):
        self.stream.write(f"% {text}\n")

    def write_str(self, value: str):
        if not value or '\n' in value or value.startswith('%'):
            raise LibraryFormatError(f"cannot write string {value!r} in text format")
        self.stream.write(value + '\n')

    def write_int(self, value: int):
        self.stream.write(f"{int(value)}\n")

    def write_real(self, value: float):
        self.stream.write(repr(float(value)) + '\n')

    def write_reals(self, values: np.ndarray):
        flat = np.asarray(values, dtype=float).ravel()
        self.stream.write(''.join(repr(float(v)) + '\n' for v in flat))


class TextReader:
    """Read library fields from a text stream."""

    binary = False

    def __init__(self, stream: TextIO, source: str = ''):
        self.stream = stream
        self.source = source
        self.line_no = 0

    def _next(self) -> str:
        for line in self.stream:
            self.line_no += 1
            line = line.strip()
            if not line or line.startswith('%'):
                continue
            return line
        raise LibraryFormatError("unexpected end of stream", source=self.source)

    def read_str(self) -> str:
        return self._next()

    def read_int(self) -> int:
        token = self._next()
        try:
            return int(token)
        except ValueError:
            raise LibraryFormatError(f"line {self.line_no}: expected integer, got {token!r}",
                                     source=self.source) from None

    def read_real(self) -> float:
        token = self._next()
        try:
            return float(token)
        except ValueError:
            raise LibraryFormatError(f"line {self.line_no}: expected real, got {token!r}",
                                     source=self.source) from None

    def read_reals(self, n: int) -> np.ndarray:
        return np.array([self.read_real() for _ in range(n)], dtype=float)


class BinaryWriter:
    """Write library fields to a binary stream."""

    binary = True

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def comment(self, text: str):
        pass

    def write_str(self, value: str):
        data = value.encode('utf-8')
        if not 0 < len(data) < 256:
            raise LibraryFormatError(f"string {value!r} must encode to 1..255 bytes")
        self.stream.write(bytes([len(data)]) + data)

    def write_int(self, value: int):
        self.stream.write(INT32.pack(int(value)))

    def write_real(self, value: float):
        self.stream.write(np.asarray(value, dtype=REAL).tobytes())

    def write_reals(self, values: np.ndarray):
        self.stream.write(np.ascontiguousarray(values, dtype=REAL).tobytes())


class BinaryReader:
    """Read library fields from a binary stream."""

    binary = True

    def __init__(self, stream: BinaryIO, source: str = ''):
        self.stream = stream
        self.source = source

    def _read(self, n: int) -> bytes:
        data = self.stream.read(n)
        if len(data) != n:
            raise LibraryFormatError(f"truncated stream (wanted {n} bytes, got {len(data)})",
                                     source=self.source)
        return data

    def read_str(self) -> str:
        n = self._read(1)[0]
        try:
            return self._read(n).decode('utf-8')
        except UnicodeDecodeError as e:
            raise LibraryFormatError(f"invalid string: {e}", source=self.source) from e

    def read_int(self) -> int:
        return INT32.unpack(self._read(INT32.size))[0]

    def read_real(self) -> float:
        return float(np.frombuffer(self._read(REAL.itemsize), dtype=REAL)[0])

    def read_reals(self, n: int) -> np.ndarray:
        if n == 0:
            return np.zeros(0)
        return np.frombuffer(self._read(n * REAL.itemsize), dtype=REAL).astype(float)


def is_binary(head: bytes) -> bool:
    """
    Detect the wire format from the first bytes of a stream.

    Binary streams start with a length byte (the tag and sentinel are both
    5 bytes long); text streams start with a printable character.
    """
    if not head:
        raise LibraryFormatError("empty library stream")
    return head[0] < 0x20
