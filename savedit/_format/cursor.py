"""
Byte cursor — little-endian primitive reads and writes.

ByteReader walks an immutable buffer between a start and an end bound.
Payload decoders get a bounded sub-reader (``reader.sub(size)``) so they can
never read into a sibling's bytes. Every read past the bound raises
TruncatedError.

ByteWriter appends to a bytearray and can back-patch an int32 written
earlier, which is how tag lengths are filled in after their payload.
"""

from __future__ import annotations

import struct

from savedit._format.errors import EncodeError, ParseError, TruncatedError
from savedit._format.spec import GUID_SIZE

_U8 = struct.Struct("<B")
_I8 = struct.Struct("<b")
_U16 = struct.Struct("<H")
_I16 = struct.Struct("<h")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")
_F32 = struct.Struct("<f")
_F64 = struct.Struct("<d")

_STRUCTS: dict[str, struct.Struct] = {}


def _compiled(fmt: str) -> struct.Struct:
    st = _STRUCTS.get(fmt)
    if st is None:
        st = _STRUCTS[fmt] = struct.Struct(fmt)
    return st


class ByteReader:
    """Bounded little-endian reader over a bytes buffer."""

    def __init__(self, data: bytes, offset: int = 0, end: int | None = None) -> None:
        self._data = data
        self.start = offset
        self.position = offset
        self.end = len(data) if end is None else end

    @property
    def remaining(self) -> int:
        return self.end - self.position

    def at_end(self) -> bool:
        return self.position >= self.end

    def read(self, n: int) -> bytes:
        if n < 0 or n > self.remaining:
            raise TruncatedError(
                f"Truncated: need {n} bytes at offset {self.position}, "
                f"only {self.remaining} available"
            )
        out = self._data[self.position:self.position + n]
        self.position += n
        return out

    def peek(self, n: int) -> bytes:
        if n < 0 or n > self.remaining:
            raise TruncatedError(
                f"Truncated: need {n} bytes at offset {self.position}, "
                f"only {self.remaining} available"
            )
        return self._data[self.position:self.position + n]

    def skip_to_end(self) -> None:
        self.position = self.end

    def sub(self, length: int) -> ByteReader:
        """Split off the next ``length`` bytes as their own reader and skip them here."""
        if length < 0 or length > self.remaining:
            raise TruncatedError(
                f"Truncated: need {length} bytes at offset {self.position}, "
                f"only {self.remaining} available"
            )
        child = ByteReader(self._data, self.position, self.position + length)
        self.position += length
        return child

    def span(self, start: int) -> bytes:
        """Bytes consumed since ``start`` (an earlier position of this buffer)."""
        return self._data[start:self.position]

    def _unpack(self, st: struct.Struct):
        return st.unpack(self.read(st.size))[0]

    def read_format(self, fmt: str):
        return self._unpack(_compiled(fmt))

    def read_u8(self) -> int:
        return self._unpack(_U8)

    def read_i8(self) -> int:
        return self._unpack(_I8)

    def read_u16(self) -> int:
        return self._unpack(_U16)

    def read_i16(self) -> int:
        return self._unpack(_I16)

    def read_u32(self) -> int:
        return self._unpack(_U32)

    def read_i32(self) -> int:
        return self._unpack(_I32)

    def read_u64(self) -> int:
        return self._unpack(_U64)

    def read_i64(self) -> int:
        return self._unpack(_I64)

    def read_f32(self) -> float:
        return self._unpack(_F32)

    def read_f64(self) -> float:
        return self._unpack(_F64)

    def read_bool(self) -> bool:
        return self.read_u8() != 0

    def read_guid(self) -> bytes:
        return self.read(GUID_SIZE)

    def read_fstring(self) -> str:
        """Read a length-prefixed string (narrow Latin-1 or wide UTF-16-LE)."""
        start = self.position
        length = self.read_i32()
        if length == 0:
            return ""
        if length > 0:
            raw = self.read(length)
            if raw[-1] != 0:
                raise ParseError(f"Unterminated string at offset {start}")
            return raw[:-1].decode("latin-1")
        raw = self.read(-length * 2)
        if raw[-2:] != b"\x00\x00":
            raise ParseError(f"Unterminated wide string at offset {start}")
        try:
            return raw[:-2].decode("utf-16-le")
        except UnicodeDecodeError as e:
            raise ParseError(f"Invalid wide string at offset {start}: {e}") from e


class ByteWriter:
    """Growable little-endian writer."""

    def __init__(self) -> None:
        self._buf = bytearray()

    @property
    def position(self) -> int:
        return len(self._buf)

    def write(self, data: bytes) -> None:
        self._buf += data

    def _pack(self, st: struct.Struct, value) -> None:
        try:
            self._buf += st.pack(value)
        except (struct.error, OverflowError) as e:
            raise EncodeError(f"Value {value!r} does not fit format {st.format!r}: {e}") from e

    def write_format(self, fmt: str, value) -> None:
        self._pack(_compiled(fmt), value)

    def write_u8(self, value: int) -> None:
        self._pack(_U8, value)

    def write_i8(self, value: int) -> None:
        self._pack(_I8, value)

    def write_u16(self, value: int) -> None:
        self._pack(_U16, value)

    def write_i16(self, value: int) -> None:
        self._pack(_I16, value)

    def write_u32(self, value: int) -> None:
        self._pack(_U32, value)

    def write_i32(self, value: int) -> None:
        self._pack(_I32, value)

    def write_u64(self, value: int) -> None:
        self._pack(_U64, value)

    def write_i64(self, value: int) -> None:
        self._pack(_I64, value)

    def write_f32(self, value: float) -> None:
        self._pack(_F32, value)

    def write_f64(self, value: float) -> None:
        self._pack(_F64, value)

    def write_bool(self, value: bool) -> None:
        self._buf.append(1 if value else 0)

    def write_guid(self, value: bytes) -> None:
        if len(value) != GUID_SIZE:
            raise EncodeError(f"GUID must be {GUID_SIZE} bytes, got {len(value)}")
        self._buf += value

    def write_fstring(self, value: str) -> None:
        """Write a length-prefixed string; ASCII goes narrow, anything else wide."""
        if not value:
            self.write_i32(0)
            return
        if value.isascii():
            data = value.encode("ascii") + b"\x00"
            self.write_i32(len(data))
        else:
            try:
                data = value.encode("utf-16-le") + b"\x00\x00"
            except UnicodeEncodeError as e:
                raise EncodeError(f"Cannot encode string {value!r}: {e}") from e
            self.write_i32(-(len(data) // 2))
        self._buf += data

    def reserve_i32(self) -> int:
        """Write a placeholder int32 and return its offset for patch_i32()."""
        offset = len(self._buf)
        self._buf += b"\x00\x00\x00\x00"
        return offset

    def patch_i32(self, offset: int, value: int) -> None:
        try:
            _I32.pack_into(self._buf, offset, value)
        except struct.error as e:
            raise EncodeError(f"Length {value} does not fit int32: {e}") from e

    def getvalue(self) -> bytes:
        return bytes(self._buf)
