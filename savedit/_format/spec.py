"""
GVAS Save Format Specification.

Layout:
    "GVAS"                                   <- Magic (4 bytes)
    save_game_version      int32             <- 1, 2 (custom versions), 3 (UE5 package version)
    package_version_ue4    int32
    package_version_ue5    int32             <- only when save_game_version >= 3
    engine major/minor/patch  uint16 x 3
    engine changelist      uint32
    engine branch          FString
    custom_version_format  int32             <- only when save_game_version >= 2
    custom_versions        int32 count, then count x (GUID, int32)
    save_game_class        FString
    <property list>                          <- tagged properties, ends with "None"
    <trailer>                                <- at least 4 bytes, kept verbatim

Property tag:
    name FString, type FString, size int32, array_index int32,
    type metadata (see TAG_METADATA), has_guid uint8 [+ GUID], payload[size]

FString:
    int32 length; 0 = empty, > 0 = Latin-1 bytes incl. NUL,
    < 0 = -length UTF-16-LE code units incl. NUL
"""

from __future__ import annotations

import struct

# Magic bytes - first four bytes of every save file
MAGIC = b"GVAS"

# Name that terminates every property list
SENTINEL = "None"

# Trailer written after the root property list (a zero int32)
TRAILER_MIN_SIZE = 4

# Deepest chain of nested property lists (structs in structs) a file may hold
MAX_NESTING_DEPTH = 32

GUID_SIZE = 16
NULL_GUID = bytes(GUID_SIZE)

# Save game file versions
SAVE_VERSION_CUSTOM_VERSIONS = 2
SAVE_VERSION_UE5 = 3

# Property type names
BOOL_PROPERTY = "BoolProperty"
BYTE_PROPERTY = "ByteProperty"
ENUM_PROPERTY = "EnumProperty"
INT8_PROPERTY = "Int8Property"
INT16_PROPERTY = "Int16Property"
INT_PROPERTY = "IntProperty"
INT64_PROPERTY = "Int64Property"
UINT16_PROPERTY = "UInt16Property"
UINT32_PROPERTY = "UInt32Property"
UINT64_PROPERTY = "UInt64Property"
FLOAT_PROPERTY = "FloatProperty"
DOUBLE_PROPERTY = "DoubleProperty"
STR_PROPERTY = "StrProperty"
NAME_PROPERTY = "NameProperty"
TEXT_PROPERTY = "TextProperty"
STRUCT_PROPERTY = "StructProperty"
ARRAY_PROPERTY = "ArrayProperty"
SET_PROPERTY = "SetProperty"
MAP_PROPERTY = "MapProperty"

# Every type name ends with this
PROPERTY_SUFFIX = "Property"

# Tag metadata fields per type (everything else has none)
TAG_METADATA = {
    STRUCT_PROPERTY: ("struct_name", "struct_guid"),
    BOOL_PROPERTY: ("value",),
    BYTE_PROPERTY: ("enum_name",),
    ENUM_PROPERTY: ("enum_name",),
    ARRAY_PROPERTY: ("inner_type",),
    SET_PROPERTY: ("inner_type",),
    MAP_PROPERTY: ("inner_type", "value_type"),
}

# Node kinds (decoded representation of a value)
BOOL = "bool"
BYTE = "byte"
ENUM = "enum"
INT = "int"
FLOAT = "float"
STR = "str"
NAME = "name"
TEXT = "text"
GUID = "guid"
STRUCT = "struct"
ARRAY = "array"
SET = "set"
MAP = "map"
OPAQUE = "opaque"

SCALAR_KINDS = frozenset({BOOL, BYTE, ENUM, INT, FLOAT, STR, NAME, GUID})
CONTAINER_KINDS = frozenset({STRUCT, ARRAY, SET, MAP})
STRING_KINDS = frozenset({STR, NAME, ENUM})

# Fixed-width numeric payloads
NUMERIC_FORMATS = {
    INT8_PROPERTY: "<b",
    INT16_PROPERTY: "<h",
    INT_PROPERTY: "<i",
    INT64_PROPERTY: "<q",
    UINT16_PROPERTY: "<H",
    UINT32_PROPERTY: "<I",
    UINT64_PROPERTY: "<Q",
    FLOAT_PROPERTY: "<f",
    DOUBLE_PROPERTY: "<d",
}

NUMERIC_WIDTHS = {name: struct.calcsize(fmt) for name, fmt in NUMERIC_FORMATS.items()}

# Kind of a value stored as a container element (array/set/map member)
ELEMENT_KINDS = {
    **{name: FLOAT if name in (FLOAT_PROPERTY, DOUBLE_PROPERTY) else INT
       for name in NUMERIC_FORMATS},
    BOOL_PROPERTY: BOOL,
    BYTE_PROPERTY: BYTE,
    STR_PROPERTY: STR,
    NAME_PROPERTY: NAME,
    ENUM_PROPERTY: ENUM,
}

# Map keys cannot be structs (no struct name on the wire) or bytes (enum ambiguity)
MAP_KEY_TYPES = frozenset(ELEMENT_KINDS) - {BYTE_PROPERTY}

# Struct "Guid" is a bare 16-byte value
GUID_STRUCT = "Guid"

# Structs serialized as a flat field sequence instead of a property list
FIXED_STRUCTS = {
    "Vector": (("X", FLOAT_PROPERTY), ("Y", FLOAT_PROPERTY), ("Z", FLOAT_PROPERTY)),
    "Vector2D": (("X", FLOAT_PROPERTY), ("Y", FLOAT_PROPERTY)),
    "Vector4": (("X", FLOAT_PROPERTY), ("Y", FLOAT_PROPERTY),
                ("Z", FLOAT_PROPERTY), ("W", FLOAT_PROPERTY)),
    "Rotator": (("Pitch", FLOAT_PROPERTY), ("Yaw", FLOAT_PROPERTY), ("Roll", FLOAT_PROPERTY)),
    "Quat": (("X", FLOAT_PROPERTY), ("Y", FLOAT_PROPERTY),
             ("Z", FLOAT_PROPERTY), ("W", FLOAT_PROPERTY)),
    "LinearColor": (("R", FLOAT_PROPERTY), ("G", FLOAT_PROPERTY),
                    ("B", FLOAT_PROPERTY), ("A", FLOAT_PROPERTY)),
    "Color": (("B", BYTE_PROPERTY), ("G", BYTE_PROPERTY),
              ("R", BYTE_PROPERTY), ("A", BYTE_PROPERTY)),
    "IntPoint": (("X", INT_PROPERTY), ("Y", INT_PROPERTY)),
    "IntVector": (("X", INT_PROPERTY), ("Y", INT_PROPERTY), ("Z", INT_PROPERTY)),
    "DateTime": (("Ticks", INT64_PROPERTY),),
    "Timespan": (("Ticks", INT64_PROPERTY),),
}

# TextProperty history types the reader interprets
TEXT_HISTORY_NONE = -1
TEXT_HISTORY_BASE = 0

# File extension
EXTENSION = ".sav"


def fixed_struct_width(layout: tuple[tuple[str, str], ...]) -> int:
    """Encoded width of a fixed struct layout."""
    return sum(NUMERIC_WIDTHS.get(type_name, 1) for _, type_name in layout)


def fixed_struct_layout(
    struct_name: str | None, available: int, count: int = 1,
) -> tuple[tuple[str, str], ...] | None:
    """Pick the field layout for a fixed struct, or None for property-list structs.

    Float geometry structs are written with doubles by large-world-coordinate
    engine builds; that layout is chosen when the payload is exactly twice
    the float width.
    """
    layout = FIXED_STRUCTS.get(struct_name or "")
    if layout is None:
        return None
    width = fixed_struct_width(layout)
    if (count > 0 and available == 2 * width * count
            and all(type_name == FLOAT_PROPERTY for _, type_name in layout)):
        return tuple((field, DOUBLE_PROPERTY) for field, _ in layout)
    return layout
