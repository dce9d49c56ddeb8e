"""
Writer — serializes a SaveDocument back to GVAS bytes.

Strategy:
  1. Header bytes are copied verbatim
  2. Clean nodes (nothing changed at or below them) copy their decoded span
  3. Changed nodes re-encode their tag and payload; each size field is
     reserved, the payload written, then the size back-patched, so a change
     deep in a struct corrects every enclosing length on the way out
  4. Sentinel, then the trailer verbatim (GVAS has no file checksum)
"""

from __future__ import annotations

import logging
import os
import tempfile

from savedit import TEMP_SUFFIX
from savedit._format.cursor import ByteWriter
from savedit._format.document import PropertyNode, PropertyTag, SaveDocument
from savedit._format.errors import EncodeError
from savedit._format.spec import (
    ARRAY, ARRAY_PROPERTY, BOOL, BOOL_PROPERTY, BYTE, BYTE_PROPERTY,
    ENUM_PROPERTY, FIXED_STRUCTS, GUID, MAP, MAP_PROPERTY, NULL_GUID,
    NUMERIC_FORMATS, OPAQUE, SENTINEL, SET, SET_PROPERTY, STRING_KINDS,
    STRUCT_PROPERTY, TEXT, TEXT_HISTORY_NONE,
)

log = logging.getLogger(__name__)


class SaveWriter:

    @staticmethod
    def serialize(doc: SaveDocument) -> bytes:
        """Serialize a document to bytes. Pure — does not mutate the input."""
        w = ByteWriter()
        w.write(doc.header.raw)
        _write_property_list(w, doc.properties)
        w.write(doc.trailer)
        data = w.getvalue()
        log.debug("Encoded %s save: %d bytes", doc.header.save_game_class, len(data))
        return data

    @staticmethod
    def write(doc: SaveDocument, path: str, mode: int = 0o644) -> int:
        """Write a document to file atomically. Returns bytes written."""
        data = SaveWriter.serialize(doc)
        write_atomic(path, data, mode=mode)
        return len(data)


def stage_file(path: str, data: bytes, mode: int = 0o644) -> str:
    """Write ``data`` to a synced temp file beside ``path``. Returns the temp path."""
    dir_name = os.path.dirname(os.path.abspath(path)) or "."
    fd, tmp_path = tempfile.mkstemp(dir=dir_name, suffix=TEMP_SUFFIX)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return tmp_path


def write_atomic(path: str, data: bytes, mode: int = 0o644) -> None:
    """Replace ``path`` with ``data`` via temp file + os.replace."""
    tmp_path = stage_file(path, data, mode=mode)
    try:
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def _write_property_list(w: ByteWriter, nodes: list[PropertyNode]) -> None:
    for node in nodes:
        _write_property(w, node)
    w.write_fstring(SENTINEL)


def _write_property(w: ByteWriter, node: PropertyNode) -> None:
    if node.raw is not None and not node.is_modified():
        w.write(node.raw)
        return
    try:
        _write_tag(w, node.tag, node.value if node.kind == BOOL else None,
                   lambda: _write_payload(w, node))
    except EncodeError as e:
        raise EncodeError(f"{node.name}: {e}") from e


def _write_tag(w: ByteWriter, tag: PropertyTag, bool_value, write_payload) -> None:
    """Write a tag header, call ``write_payload``, then patch in the payload size."""
    w.write_fstring(tag.name)
    w.write_fstring(tag.type_name)
    size_at = w.reserve_i32()
    w.write_i32(tag.array_index)

    type_name = tag.type_name
    if type_name == STRUCT_PROPERTY:
        w.write_fstring(tag.struct_name or "")
        w.write_guid(tag.struct_guid or NULL_GUID)
    elif type_name == BOOL_PROPERTY:
        w.write_bool(bool(bool_value))
    elif type_name in (BYTE_PROPERTY, ENUM_PROPERTY):
        w.write_fstring(tag.enum_name or SENTINEL)
    elif type_name in (ARRAY_PROPERTY, SET_PROPERTY):
        w.write_fstring(tag.inner_type or "")
    elif type_name == MAP_PROPERTY:
        w.write_fstring(tag.inner_type or "")
        w.write_fstring(tag.value_type or "")

    if tag.property_guid is not None:
        w.write_u8(1)
        w.write_guid(tag.property_guid)
    else:
        w.write_u8(0)

    start = w.position
    write_payload()
    w.patch_i32(size_at, w.position - start)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def _write_payload(w: ByteWriter, node: PropertyNode) -> None:
    kind = node.kind
    type_name = node.type_name

    if kind == OPAQUE:
        w.write(node.value)
    elif kind == BOOL:
        pass  # stored in the tag
    elif type_name in NUMERIC_FORMATS:
        w.write_format(NUMERIC_FORMATS[type_name], node.value)
    elif kind == BYTE:
        w.write_u8(node.value)
    elif kind in STRING_KINDS:
        w.write_fstring(node.value)
    elif kind == TEXT:
        _write_text(w, node.value)
    elif type_name == STRUCT_PROPERTY:
        _write_struct_value(w, node)
    elif kind == ARRAY:
        _write_array(w, node)
    elif kind == SET:
        w.write_i32(0)
        w.write_i32(len(node.value))
        for element in node.value:
            _write_element(w, element)
    elif kind == MAP:
        w.write_i32(0)
        w.write_i32(len(node.value))
        for key, value in node.value:
            _write_element(w, key)
            _write_element(w, value)
    else:
        raise EncodeError(f"No encoder for {type_name} ({kind})")


def _write_text(w: ByteWriter, text) -> None:
    w.write_u32(text.flags)
    w.write_i8(text.history_type)
    if text.history_type == TEXT_HISTORY_NONE:
        w.write_i32(1 if text.parts else 0)
        for part in text.parts[:1]:
            w.write_fstring(part)
    else:
        for part in text.parts:
            w.write_fstring(part)


def _write_struct_value(w: ByteWriter, node: PropertyNode) -> None:
    if node.kind == GUID:
        w.write_guid(node.value)
    elif node.tag.struct_name in FIXED_STRUCTS:
        for field in node.value:
            _write_element(w, field)
    else:
        _write_property_list(w, node.value)


def _write_array(w: ByteWriter, node: PropertyNode) -> None:
    elements = node.value
    w.write_i32(len(elements))
    if node.tag.inner_type != STRUCT_PROPERTY:
        for element in elements:
            _write_element(w, element)
        return

    proto = node.tag.inner_tag or PropertyTag(node.name, STRUCT_PROPERTY)

    def write_elements():
        for element in elements:
            _write_element(w, element)

    _write_tag(w, proto, None, write_elements)


def _write_element(w: ByteWriter, node: PropertyNode) -> None:
    """Write one untagged value (container member or fixed struct field)."""
    if node.raw is not None and not node.is_modified():
        w.write(node.raw)
    elif node.kind == BOOL:
        w.write_bool(node.value)
    else:
        _write_payload(w, node)
