"""
Tests for the byte cursor — little-endian primitives, bounds and FStrings.
"""

from __future__ import annotations

import struct

import pytest

from savedit._format.cursor import ByteReader, ByteWriter
from savedit._format.errors import EncodeError, ParseError, TruncatedError

from gvasbuild import fstring


# ---------------------------------------------------------------------------
# TestByteReader
# ---------------------------------------------------------------------------

class TestByteReader:
    """Reads, bounds and sub-readers."""

    def test_little_endian_integers(self):
        data = struct.pack("<BhIq", 0xFE, -2, 0xDEADBEEF, -(2 ** 40))
        r = ByteReader(data)
        assert r.read_u8() == 0xFE
        assert r.read_i16() == -2
        assert r.read_u32() == 0xDEADBEEF
        assert r.read_i64() == -(2 ** 40)
        assert r.at_end()

    def test_floats(self):
        r = ByteReader(struct.pack("<fd", 1.5, -0.25))
        assert r.read_f32() == 1.5
        assert r.read_f64() == -0.25

    def test_bool_is_any_nonzero_byte(self):
        r = ByteReader(b"\x00\x01\x07")
        assert [r.read_bool(), r.read_bool(), r.read_bool()] == [False, True, True]

    def test_read_past_end_raises(self):
        r = ByteReader(b"\x01\x02\x03")
        with pytest.raises(TruncatedError, match="need 4 bytes"):
            r.read_i32()

    def test_failed_read_does_not_advance(self):
        r = ByteReader(b"\x01\x02")
        with pytest.raises(TruncatedError):
            r.read_u32()
        assert r.position == 0
        assert r.read_u16() == 0x0201

    def test_peek_does_not_advance(self):
        r = ByteReader(b"abcd")
        assert r.peek(2) == b"ab"
        assert r.position == 0

    def test_sub_reader_is_bounded(self):
        r = ByteReader(b"\x01\x02\x03\x04\x05")
        child = r.sub(2)
        assert r.position == 2
        assert child.read(2) == b"\x01\x02"
        with pytest.raises(TruncatedError):
            child.read_u8()
        assert r.read_u8() == 3

    def test_sub_past_end_raises(self):
        r = ByteReader(b"\x01\x02")
        with pytest.raises(TruncatedError):
            r.sub(3)

    def test_span_returns_consumed_bytes(self):
        r = ByteReader(b"\x01\x02\x03\x04")
        r.read_u8()
        start = r.position
        r.read_u16()
        assert r.span(start) == b"\x02\x03"

    def test_guid(self):
        r = ByteReader(bytes(range(16)))
        assert r.read_guid() == bytes(range(16))


# ---------------------------------------------------------------------------
# TestFString
# ---------------------------------------------------------------------------

class TestFString:
    """Length-prefixed strings in narrow and wide form."""

    def test_empty(self):
        assert ByteReader(struct.pack("<i", 0)).read_fstring() == ""

    def test_narrow(self):
        assert ByteReader(fstring("Credits")).read_fstring() == "Credits"

    def test_narrow_latin1(self):
        data = struct.pack("<i", 4) + "Zoé".encode("latin-1") + b"\x00"
        assert ByteReader(data).read_fstring() == "Zoé"

    def test_wide(self):
        assert ByteReader(fstring("Kára ✓")).read_fstring() == "Kára ✓"

    def test_missing_terminator(self):
        data = struct.pack("<i", 3) + b"abc"
        with pytest.raises(ParseError, match="Unterminated"):
            ByteReader(data).read_fstring()

    def test_missing_wide_terminator(self):
        data = struct.pack("<i", -2) + "ab".encode("utf-16-le")
        with pytest.raises(ParseError, match="Unterminated wide"):
            ByteReader(data).read_fstring()

    def test_length_past_end(self):
        data = struct.pack("<i", 100) + b"short\x00"
        with pytest.raises(TruncatedError):
            ByteReader(data).read_fstring()

    def test_writer_matches_narrow_and_wide_layout(self):
        for text in ("", "None", "Kára", "角色"):
            w = ByteWriter()
            w.write_fstring(text)
            assert w.getvalue() == fstring(text)


# ---------------------------------------------------------------------------
# TestByteWriter
# ---------------------------------------------------------------------------

class TestByteWriter:
    """Primitive writes, overflow and back-patching."""

    def test_integers(self):
        w = ByteWriter()
        w.write_u8(1)
        w.write_i32(-5)
        w.write_u64(2 ** 63)
        assert w.getvalue() == struct.pack("<BiQ", 1, -5, 2 ** 63)

    def test_overflow_raises_encode_error(self):
        w = ByteWriter()
        with pytest.raises(EncodeError, match="does not fit"):
            w.write_i32(2 ** 31)
        with pytest.raises(EncodeError):
            w.write_u8(-1)

    def test_reserve_and_patch(self):
        w = ByteWriter()
        w.write(b"ab")
        offset = w.reserve_i32()
        w.write(b"payload")
        w.patch_i32(offset, 7)
        assert w.getvalue() == b"ab" + struct.pack("<i", 7) + b"payload"

    def test_guid_length_checked(self):
        with pytest.raises(EncodeError, match="16 bytes"):
            ByteWriter().write_guid(b"\x00" * 15)

    def test_position_tracks_length(self):
        w = ByteWriter()
        w.write_f32(1.0)
        w.write_bool(True)
        assert w.position == 5
