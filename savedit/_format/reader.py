"""
Reader — decodes a GVAS save into a SaveDocument.

Decoding rules:
  - Every tag's payload is decoded from a bounded sub-reader of exactly
    ``size`` bytes; the decoder must consume all of it
  - Known types are interpreted; anything else is kept as opaque bytes,
    including structs the engine serializes natively rather than as tags
  - Each node keeps the exact byte span it was decoded from, so untouched
    branches are written back verbatim
  - Any structural error rejects the whole file (no partial documents)

Security features:
  - File size limit checked before reading (prevents OOM from crafted files)
  - Element counts are validated against the bytes actually available
  - Struct nesting is capped at MAX_NESTING_DEPTH
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from savedit import DEFAULT_MAX_FILE_SIZE
from savedit._format.cursor import ByteReader
from savedit._format.document import (
    PropertyNode, PropertyTag, SaveDocument, SaveHeader, TextValue,
)
from savedit._format.errors import (
    NestingTooDeep, ParseError, TagLengthMismatch, TruncatedError, UnexpectedEndOfTag,
)
from savedit._format.spec import (
    ARRAY, ARRAY_PROPERTY, BOOL, BOOL_PROPERTY, BYTE, BYTE_PROPERTY,
    ELEMENT_KINDS, ENUM, ENUM_PROPERTY, GUID, GUID_SIZE, GUID_STRUCT, MAGIC,
    MAP, MAP_KEY_TYPES, MAP_PROPERTY, MAX_NESTING_DEPTH, NAME, NAME_PROPERTY,
    NUMERIC_FORMATS, NUMERIC_WIDTHS, OPAQUE, PROPERTY_SUFFIX,
    SAVE_VERSION_CUSTOM_VERSIONS, SAVE_VERSION_UE5,
    SENTINEL, SET, SET_PROPERTY, STR, STR_PROPERTY, STRUCT, STRUCT_PROPERTY,
    TEXT, TEXT_HISTORY_BASE, TEXT_HISTORY_NONE, TEXT_PROPERTY,
    TRAILER_MIN_SIZE, fixed_struct_layout,
)

log = logging.getLogger(__name__)


class SaveReader:
    """
    GVAS save decoder.

    Usage:
        doc = SaveReader.read("Character_1.sav")
        doc = SaveReader.parse(data)
    """

    @staticmethod
    def is_save(path: str | Path) -> bool:
        """Fast check if a file is a GVAS save. Reads only the magic bytes."""
        with open(path, "rb") as f:
            head = f.read(len(MAGIC))
        return head == MAGIC

    @staticmethod
    def is_save_bytes(data: bytes) -> bool:
        return data[:len(MAGIC)] == MAGIC

    @classmethod
    def read(cls, path: str | Path, max_size: int = DEFAULT_MAX_FILE_SIZE) -> SaveDocument:
        """Read and fully decode a save file."""
        path = Path(path)
        file_size = path.stat().st_size
        if file_size > max_size:
            raise ValueError(
                f"File size {file_size} exceeds maximum {max_size} bytes. "
                f"Pass max_size= to override."
            )
        with open(path, "rb") as f:
            data = f.read()
        return cls.parse(data, max_size=max_size)

    @classmethod
    def parse(cls, data: bytes, max_size: int = DEFAULT_MAX_FILE_SIZE) -> SaveDocument:
        """Decode save bytes. Raises ParseError (or a subclass) on malformed input."""
        if len(data) > max_size:
            raise ValueError(
                f"Input size {len(data)} exceeds maximum {max_size} bytes. "
                f"Pass max_size= to override."
            )
        data = bytes(data)
        r = ByteReader(data)
        header = _read_header(r)
        properties = _read_property_list(r)
        trailer = r.read(r.remaining)
        if len(trailer) < TRAILER_MIN_SIZE:
            raise TruncatedError(
                f"Truncated: trailer at offset {r.position - len(trailer)} has "
                f"{len(trailer)} bytes, expected at least {TRAILER_MIN_SIZE}"
            )
        log.debug("Decoded %s save: %d root properties, %d bytes",
                  header.save_game_class, len(properties), len(data))
        return SaveDocument(
            header=header,
            properties=properties,
            trailer=trailer,
            source_checksum=hashlib.sha256(data).hexdigest(),
        )


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

def _read_header(r: ByteReader) -> SaveHeader:
    magic = r.read(len(MAGIC))
    if magic != MAGIC:
        raise ParseError(f"Not a GVAS save: magic {magic!r}, expected {MAGIC!r}")
    save_version = r.read_i32()
    package_version = r.read_i32()
    package_version_ue5 = r.read_i32() if save_version >= SAVE_VERSION_UE5 else None
    engine_version = (r.read_u16(), r.read_u16(), r.read_u16(), r.read_u32())
    engine_branch = r.read_fstring()

    custom_format = None
    custom_versions: list[tuple[bytes, int]] = []
    if save_version >= SAVE_VERSION_CUSTOM_VERSIONS:
        custom_format = r.read_i32()
        count = r.read_i32()
        if count < 0:
            raise ParseError(f"Negative custom version count {count} at offset {r.position - 4}")
        if count * (GUID_SIZE + 4) > r.remaining:
            raise TruncatedError(
                f"Truncated: {count} custom versions at offset {r.position} "
                f"need {count * (GUID_SIZE + 4)} bytes, only {r.remaining} available"
            )
        for _ in range(count):
            custom_versions.append((r.read_guid(), r.read_i32()))

    save_game_class = r.read_fstring()
    return SaveHeader(
        save_game_version=save_version,
        package_version=package_version,
        package_version_ue5=package_version_ue5,
        engine_version=engine_version,
        engine_branch=engine_branch,
        custom_version_format=custom_format,
        custom_versions=custom_versions,
        save_game_class=save_game_class,
        raw=r.span(0),
    )


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def _read_property_list(r: ByteReader, depth: int = 0) -> list[PropertyNode]:
    """Read tagged properties up to and including the "None" sentinel."""
    start = r.position
    if depth > MAX_NESTING_DEPTH:
        raise NestingTooDeep(
            f"Property list at offset {start} is nested {depth} levels deep "
            f"(limit {MAX_NESTING_DEPTH})"
        )
    nodes = []
    while True:
        if r.at_end():
            raise UnexpectedEndOfTag(
                f"Property list at offset {start} ends at offset {r.position} "
                f"without a {SENTINEL!r} terminator"
            )
        node = _read_property(r, depth)
        if node is None:
            return nodes
        nodes.append(node)


def _looks_like_property_list(r: ByteReader) -> bool:
    """True if the bytes at the cursor open with a tag header or the sentinel.

    Structs serialized natively by the engine (SoftObjectPath,
    GameplayTagContainer, ...) carry no tags and fail this check.
    """
    start = r.position
    try:
        name = r.read_fstring()
        if name == SENTINEL:
            return True
        type_name = r.read_fstring()
    except ParseError:
        return False
    finally:
        r.position = start
    return bool(name) and type_name.endswith(PROPERTY_SUFFIX)


def _read_tag(r: ByteReader) -> tuple[PropertyTag, bool | None] | None:
    """Read a tag header. Returns None at the sentinel.

    The second item is the value of a BoolProperty, which lives in the tag.
    """
    name = r.read_fstring()
    if name == SENTINEL:
        return None
    tag = PropertyTag(name=name, type_name=r.read_fstring())
    tag.size = r.read_i32()
    tag.array_index = r.read_i32()

    bool_value = None
    type_name = tag.type_name
    if type_name == STRUCT_PROPERTY:
        tag.struct_name = r.read_fstring()
        tag.struct_guid = r.read_guid()
    elif type_name == BOOL_PROPERTY:
        bool_value = r.read_bool()
    elif type_name in (BYTE_PROPERTY, ENUM_PROPERTY):
        tag.enum_name = r.read_fstring()
    elif type_name in (ARRAY_PROPERTY, SET_PROPERTY):
        tag.inner_type = r.read_fstring()
    elif type_name == MAP_PROPERTY:
        tag.inner_type = r.read_fstring()
        tag.value_type = r.read_fstring()

    if r.read_u8():
        tag.property_guid = r.read_guid()
    return tag, bool_value


def _read_property(r: ByteReader, depth: int = 0) -> PropertyNode | None:
    start = r.position
    header = _read_tag(r)
    if header is None:
        return None
    tag, bool_value = header

    where = f"{tag.name!r} ({tag.type_name}) at offset {start}"
    if tag.size < 0:
        raise TagLengthMismatch(f"{where}: negative payload length {tag.size}")
    if tag.size > r.remaining:
        raise UnexpectedEndOfTag(
            f"{where}: payload of {tag.size} bytes runs past the end "
            f"({r.remaining} bytes available)"
        )

    payload = r.sub(tag.size)
    try:
        kind, value = _read_payload(payload, tag, bool_value, depth)
    except TruncatedError as e:
        raise TagLengthMismatch(f"{where}: declared length {tag.size} is too short: {e}") from e
    if not payload.at_end():
        raise TagLengthMismatch(
            f"{where}: declared length {tag.size}, decoded "
            f"{tag.size - payload.remaining} bytes"
        )
    return PropertyNode(tag, kind, value, raw=r.span(start))


def _read_payload(p: ByteReader, tag: PropertyTag, bool_value: bool | None, depth: int = 0):
    type_name = tag.type_name

    fmt = NUMERIC_FORMATS.get(type_name)
    if fmt is not None:
        if tag.size != NUMERIC_WIDTHS[type_name]:
            raise TagLengthMismatch(
                f"{tag.name!r} ({type_name}): declared length {tag.size}, "
                f"expected {NUMERIC_WIDTHS[type_name]}"
            )
        return ELEMENT_KINDS[type_name], p.read_format(fmt)

    if type_name == BOOL_PROPERTY:
        if tag.size != 0:
            raise TagLengthMismatch(f"{tag.name!r} (BoolProperty): declared length {tag.size}, expected 0")
        return BOOL, bool_value
    if type_name == BYTE_PROPERTY:
        if tag.enum_name in (None, SENTINEL):
            return BYTE, p.read_u8()
        return ENUM, p.read_fstring()
    if type_name == ENUM_PROPERTY:
        return ENUM, p.read_fstring()
    if type_name == STR_PROPERTY:
        return STR, p.read_fstring()
    if type_name == NAME_PROPERTY:
        return NAME, p.read_fstring()
    if type_name == TEXT_PROPERTY:
        return _read_text(p, tag)
    if type_name == STRUCT_PROPERTY:
        layout = fixed_struct_layout(tag.struct_name, p.remaining)
        if (layout is None and tag.struct_name != GUID_STRUCT
                and not _looks_like_property_list(p)):
            return _opaque(p, tag, f"native {tag.struct_name} struct")
        return _read_struct_value(p, tag.struct_name, layout, depth)
    if type_name == ARRAY_PROPERTY:
        return _read_array(p, tag, depth)
    if type_name == SET_PROPERTY:
        return _read_set(p, tag)
    if type_name == MAP_PROPERTY:
        return _read_map(p, tag, depth)
    return _opaque(p, tag, "unsupported type")


def _opaque(p: ByteReader, tag: PropertyTag, reason: str):
    """Keep a payload as raw bytes, from the start of its bounded reader."""
    log.debug("Keeping %r (%s) opaque: %s", tag.name, tag.type_name, reason)
    p.position = p.start
    return OPAQUE, p.read(p.remaining)


def _read_text(p: ByteReader, tag: PropertyTag):
    flags = p.read_u32()
    history = p.read_i8()
    if history == TEXT_HISTORY_NONE:
        parts = (p.read_fstring(),) if p.read_i32() else ()
    elif history == TEXT_HISTORY_BASE:
        parts = (p.read_fstring(), p.read_fstring(), p.read_fstring())
    else:
        return _opaque(p, tag, f"text history {history}")
    return TEXT, TextValue(flags, history, parts)


# ---------------------------------------------------------------------------
# Structs and container elements
# ---------------------------------------------------------------------------

def _read_struct_value(r: ByteReader, struct_name: str | None, layout, depth: int = 0):
    if struct_name == GUID_STRUCT:
        return GUID, r.read_guid()
    if layout is not None:
        return STRUCT, [_read_element(r, type_name, field) for field, type_name in layout]
    return STRUCT, _read_property_list(r, depth + 1)


def _read_struct_element(r: ByteReader, struct_name: str | None, layout,
                         depth: int = 0) -> PropertyNode:
    start = r.position
    kind, value = _read_struct_value(r, struct_name, layout, depth)
    tag = PropertyTag("", STRUCT_PROPERTY, struct_name=struct_name)
    return PropertyNode(tag, kind, value, raw=r.span(start))


def _read_element(r: ByteReader, type_name: str, name: str = "") -> PropertyNode:
    """Read one untagged value: a container member or a fixed struct field."""
    start = r.position
    kind = ELEMENT_KINDS[type_name]
    fmt = NUMERIC_FORMATS.get(type_name)
    if fmt is not None:
        value = r.read_format(fmt)
    elif kind == BOOL:
        value = r.read_bool()
    elif kind == BYTE:
        value = r.read_u8()
    else:
        value = r.read_fstring()
    return PropertyNode(PropertyTag(name, type_name), kind, value, raw=r.span(start))


def _read_count(p: ByteReader, tag: PropertyTag) -> int:
    count = p.read_i32()
    if count < 0:
        raise TagLengthMismatch(f"{tag.name!r} ({tag.type_name}): negative element count {count}")
    if count > p.remaining:
        # every element is at least one byte wide
        raise TagLengthMismatch(
            f"{tag.name!r} ({tag.type_name}): {count} elements cannot fit "
            f"in {p.remaining} bytes"
        )
    return count


def _read_array(p: ByteReader, tag: PropertyTag, depth: int = 0):
    count = _read_count(p, tag)
    inner = tag.inner_type or ""

    if inner == STRUCT_PROPERTY:
        header = _read_tag(p)
        if header is None:
            raise ParseError(f"{tag.name!r}: struct array has no element tag")
        proto, _ = header
        if proto.size != p.remaining:
            raise TagLengthMismatch(
                f"{tag.name!r}: element tag declares {proto.size} bytes, "
                f"{p.remaining} bytes follow"
            )
        tag.inner_tag = proto
        layout = fixed_struct_layout(proto.struct_name, p.remaining, count)
        if (layout is None and count and proto.struct_name != GUID_STRUCT
                and not _looks_like_property_list(p)):
            return _opaque(p, tag, f"array of native {proto.struct_name} structs")
        return ARRAY, [_read_struct_element(p, proto.struct_name, layout, depth)
                       for _ in range(count)]

    if inner == BYTE_PROPERTY and p.remaining != count:
        return _opaque(p, tag, f"byte array of {count} with {p.remaining} payload bytes")
    if inner not in ELEMENT_KINDS:
        return _opaque(p, tag, f"array of {inner}")
    return ARRAY, [_read_element(p, inner) for _ in range(count)]


def _read_set(p: ByteReader, tag: PropertyTag):
    removed = p.read_i32()
    if removed != 0:
        return _opaque(p, tag, f"{removed} removed entries")
    count = _read_count(p, tag)
    inner = tag.inner_type or ""
    if inner not in ELEMENT_KINDS:
        return _opaque(p, tag, f"set of {inner}")
    return SET, [_read_element(p, inner) for _ in range(count)]


def _read_map(p: ByteReader, tag: PropertyTag, depth: int = 0):
    removed = p.read_i32()
    if removed != 0:
        return _opaque(p, tag, f"{removed} removed entries")
    count = _read_count(p, tag)
    key_type = tag.inner_type or ""
    value_type = tag.value_type or ""
    if key_type not in MAP_KEY_TYPES:
        return _opaque(p, tag, f"map keyed by {key_type}")

    if value_type == STRUCT_PROPERTY:
        # values carry no struct name, so they are tried as property lists
        try:
            pairs = [(_read_element(p, key_type), _read_struct_element(p, None, None, depth))
                     for _ in range(count)]
        except NestingTooDeep:
            raise
        except ParseError as e:
            return _opaque(p, tag, f"struct values do not decode: {e}")
        return MAP, pairs

    if value_type not in ELEMENT_KINDS:
        return _opaque(p, tag, f"map of {value_type} values")
    return MAP, [(_read_element(p, key_type), _read_element(p, value_type))
                 for _ in range(count)]
