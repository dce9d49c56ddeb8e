"""
Document — in-memory property tree of a decoded save file.

A SaveDocument owns a header, an ordered root property list and a trailer.
Every PropertyNode remembers the exact bytes it was decoded from (``raw``);
the writer copies those bytes for untouched nodes and re-encodes only nodes
that were changed or contain a changed descendant.

Paths:
    XP                          first property named XP
    Cosmetic.IsMale             field of a struct
    UnlockedFlags[2]            element of an array or set (or static-array slot)
    Stats[Strength]             value of a map entry, keyed by Strength
    MetaResources[MetaRow=Credits].Count
                                field of the first struct element whose
                                MetaRow equals Credits

The mutation surface is value replacement only: nodes are never inserted,
removed, renamed or reordered.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Sequence

from savedit._format.errors import PathNotFound, TypeMismatch, ValidationError
from savedit._format.spec import (
    ARRAY, BOOL, BYTE, ELEMENT_KINDS, FLOAT, GUID, GUID_SIZE, INT, MAP, OPAQUE,
    SET, STRING_KINDS, STRUCT, STRUCT_PROPERTY, TEXT, TEXT_HISTORY_NONE,
    TRAILER_MIN_SIZE,
)


@dataclass
class PropertyTag:
    """Header of one property: name, declared type, payload length, metadata."""

    name: str
    type_name: str
    size: int = 0
    array_index: int = 0
    struct_name: str | None = None
    struct_guid: bytes | None = None
    enum_name: str | None = None
    inner_type: str | None = None
    value_type: str | None = None
    inner_tag: PropertyTag | None = None
    property_guid: bytes | None = None


@dataclass(frozen=True)
class TextValue:
    """A decoded TextProperty (culture-invariant or base history)."""

    flags: int
    history_type: int
    parts: tuple[str, ...]

    @property
    def text(self) -> str:
        return self.parts[-1] if self.parts else ""

    def with_text(self, text: str) -> TextValue:
        if self.history_type == TEXT_HISTORY_NONE:
            return replace(self, parts=(text,) if text else ())
        return replace(self, parts=self.parts[:-1] + (text,))


@dataclass(eq=False)
class PropertyNode:
    """A tag paired with its decoded value.

    ``value`` depends on ``kind``: a Python scalar for scalar kinds, a list of
    PropertyNode for struct/array/set, a list of (key, value) node pairs for
    map, TextValue for text, and raw bytes for guid and opaque.
    """

    tag: PropertyTag
    kind: str
    value: Any
    raw: bytes | None = None
    dirty: bool = False

    @property
    def name(self) -> str:
        return self.tag.name

    @property
    def type_name(self) -> str:
        return self.tag.type_name

    def child_nodes(self) -> list[PropertyNode]:
        if self.kind in (STRUCT, ARRAY, SET):
            return self.value
        if self.kind == MAP:
            return [n for pair in self.value for n in pair]
        return []

    def is_modified(self) -> bool:
        """True if this node or any descendant changed since decode."""
        if self.dirty or self.raw is None:
            return True
        return any(child.is_modified() for child in self.child_nodes())

    def to_python(self) -> Any:
        if self.kind == STRUCT:
            return _fields_to_dict(self.value)
        if self.kind in (ARRAY, SET):
            return [e.to_python() for e in self.value]
        if self.kind == MAP:
            return {k.to_python(): v.to_python() for k, v in self.value}
        if self.kind == TEXT:
            return self.value.text
        return self.value

    def assign(self, value: Any) -> None:
        """Replace this node's value after checking it against the declared type."""
        if self.kind == TEXT:
            if not isinstance(value, str):
                raise TypeMismatch(
                    f"{self.name!r}: cannot store {type(value).__name__} in a text property"
                )
            self.value = self.value.with_text(value)
        elif self.kind in (ARRAY, SET):
            self.value = self._new_elements(value)
        elif self.kind in (OPAQUE, STRUCT, MAP):
            raise TypeMismatch(
                f"{self.name!r} ({self.type_name}) is a {self.kind} value; "
                f"only scalar fields inside it can be edited"
            )
        else:
            self.value = coerce_scalar(self.kind, value, self.name or self.type_name)
        self.dirty = True

    def _new_elements(self, values: Any) -> list[PropertyNode]:
        inner = self.tag.inner_type or ""
        if inner == STRUCT_PROPERTY or inner not in ELEMENT_KINDS:
            raise TypeMismatch(
                f"{self.name!r}: elements of type {inner} cannot be replaced, "
                f"edit their fields instead"
            )
        if not isinstance(values, (list, tuple)):
            raise TypeMismatch(
                f"{self.name!r}: expected a list of values, got {type(values).__name__}"
            )
        kind = ELEMENT_KINDS[inner]
        return [
            PropertyNode(PropertyTag("", inner), kind,
                         coerce_scalar(kind, v, f"{self.name}[{i}]"), dirty=True)
            for i, v in enumerate(values)
        ]


def coerce_scalar(kind: str, value: Any, what: str) -> Any:
    """Check a Python value against a scalar kind. Raises TypeMismatch."""
    if kind == BOOL:
        ok = isinstance(value, bool)
    elif kind in (BYTE, INT):
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif kind == FLOAT:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        if ok:
            value = float(value)
    elif kind in STRING_KINDS:
        ok = isinstance(value, str)
    elif kind == GUID:
        ok = isinstance(value, (bytes, bytearray)) and len(value) == GUID_SIZE
        if ok:
            value = bytes(value)
    else:
        ok = False
    if not ok:
        raise TypeMismatch(f"{what}: cannot store {type(value).__name__} in a {kind} property")
    return value


def _fields_to_dict(nodes: list[PropertyNode]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for node in nodes:
        key = node.name if not node.tag.array_index else f"{node.name}[{node.tag.array_index}]"
        out.setdefault(key, node.to_python())
    return out


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PathSegment:
    """One step of a property path: a name plus an optional selector."""

    name: str
    index: int | str | None = None
    match: tuple[str, str] | None = None

    def __str__(self) -> str:
        if self.match is not None:
            return f"{self.name}[{self.match[0]}={self.match[1]}]"
        if self.index is not None:
            return f"{self.name}[{self.index}]"
        return self.name


_SEGMENT_RE = re.compile(r"([^.\[\]]+)(?:\[([^\]]*)\])?")


def parse_path(path: str | Sequence[PathSegment | tuple]) -> tuple[PathSegment, ...]:
    """Parse ``A.B[3].C`` style paths. Sequences of segments pass through."""
    if not isinstance(path, str):
        segments = tuple(
            seg if isinstance(seg, PathSegment) else PathSegment(*seg) for seg in path
        )
        if not segments:
            raise ValidationError("Empty property path")
        return segments

    segments = []
    pos = 0
    while True:
        m = _SEGMENT_RE.match(path, pos)
        if not m:
            raise ValidationError(f"Invalid property path {path!r} at position {pos}")
        segments.append(_make_segment(m.group(1), m.group(2)))
        pos = m.end()
        if pos == len(path):
            return tuple(segments)
        if path[pos] != ".":
            raise ValidationError(f"Invalid property path {path!r} at position {pos}")
        pos += 1


def _make_segment(name: str, selector: str | None) -> PathSegment:
    if selector is None:
        return PathSegment(name)
    if "=" in selector:
        key, _, expected = selector.partition("=")
        return PathSegment(name, match=(key, expected))
    if selector.lstrip("-").isdigit():
        return PathSegment(name, index=int(selector))
    return PathSegment(name, index=selector)


def format_path(segments: Sequence[PathSegment]) -> str:
    return ".".join(str(seg) for seg in segments)


def _select(scope: list[PropertyNode], seg: PathSegment, trail: str) -> PropertyNode:
    matches = [n for n in scope if n.name == seg.name]
    if not matches:
        raise PathNotFound(f"No property at {trail!r}")
    node = matches[0]
    if seg.index is None and seg.match is None:
        return node

    if node.kind in (ARRAY, SET):
        if seg.match is not None:
            return _match_element(node.value, seg.match, trail)
        if isinstance(seg.index, int) and 0 <= seg.index < len(node.value):
            return node.value[seg.index]
        raise PathNotFound(f"No element at {trail!r} ({len(node.value)} elements)")

    if node.kind == MAP and seg.match is None:
        for key, value in node.value:
            if key.value == seg.index or str(key.to_python()) == str(seg.index):
                return value
        raise PathNotFound(f"No map entry at {trail!r}")

    if isinstance(seg.index, int):
        for candidate in matches:
            if candidate.tag.array_index == seg.index:
                return candidate
    raise PathNotFound(f"No property at {trail!r}")


def _match_element(elements: list[PropertyNode], match: tuple[str, str], trail: str) -> PropertyNode:
    field_name, expected = match
    for element in elements:
        if element.kind != STRUCT:
            continue
        for child in element.value:
            if child.name == field_name and str(child.to_python()) == expected:
                return element
    raise PathNotFound(f"No element matches {trail!r}")


def resolve(nodes: list[PropertyNode], path: str | Sequence) -> PropertyNode:
    """Walk ``path`` from a property list. Raises PathNotFound."""
    segments = parse_path(path)
    scope: list[PropertyNode] | None = nodes
    node = None
    for depth, seg in enumerate(segments):
        trail = format_path(segments[:depth + 1])
        if scope is None:
            raise PathNotFound(f"{format_path(segments[:depth])!r} has no fields (looking for {trail!r})")
        node = _select(scope, seg, trail)
        scope = node.value if node.kind == STRUCT else None
    return node


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

@dataclass
class SaveHeader:
    """File header. Kept verbatim in ``raw``; the parsed fields are informational."""

    save_game_version: int
    package_version: int
    package_version_ue5: int | None
    engine_version: tuple[int, int, int, int]
    engine_branch: str
    custom_version_format: int | None
    custom_versions: list[tuple[bytes, int]]
    save_game_class: str
    raw: bytes

    @property
    def engine_version_string(self) -> str:
        major, minor, patch, changelist = self.engine_version
        return f"{major}.{minor}.{patch}-{changelist}+{self.engine_branch}"


@dataclass
class SaveDocument:
    """A decoded save file: header, root property list and trailer.

    Usage:
        doc = SaveReader.parse(data)
        doc.set_value("MetaResources[MetaRow=Credits].Count", 5000)
        out = doc.to_bytes()
    """

    header: SaveHeader
    properties: list[PropertyNode] = field(default_factory=list)
    trailer: bytes = b"\x00" * TRAILER_MIN_SIZE
    source_checksum: str | None = None

    def find(self, path: str | Sequence) -> PropertyNode:
        return resolve(self.properties, path)

    def get(self, path: str | Sequence) -> Any:
        return self.find(path).to_python()

    def has(self, path: str | Sequence) -> bool:
        try:
            self.find(path)
        except PathNotFound:
            return False
        return True

    def set_value(self, path: str | Sequence, value: Any) -> None:
        """Replace the value at ``path``. Raises PathNotFound or TypeMismatch."""
        self.find(path).assign(value)

    def children(self, path: str | Sequence | None = None) -> list[tuple[PropertyTag, Any]]:
        """(tag, value) pairs under a struct/array/set/map, or the root list."""
        if path is None:
            return [(n.tag, n.to_python()) for n in self.properties]
        node = self.find(path)
        if node.kind == MAP:
            return [(v.tag, (k.to_python(), v.to_python())) for k, v in node.value]
        if node.kind in (STRUCT, ARRAY, SET):
            return [(n.tag, n.to_python()) for n in node.value]
        raise ValidationError(f"{node.name!r} is a {node.kind} value and has no children")

    def walk(self) -> Iterator[tuple[str, PropertyNode]]:
        """Depth-first (path, node) pairs for every addressable node."""
        for node in self.properties:
            yield from _walk(node, _top_level_path(node))

    @property
    def is_modified(self) -> bool:
        return any(node.is_modified() for node in self.properties)

    def to_bytes(self) -> bytes:
        from savedit._format.writer import SaveWriter
        return SaveWriter.serialize(self)

    def write(self, path: str, mode: int = 0o644) -> int:
        from savedit._format.writer import SaveWriter
        return SaveWriter.write(self, path, mode=mode)

    def compute_checksum(self) -> str:
        """SHA-256 of the encoded document."""
        return hashlib.sha256(self.to_bytes()).hexdigest()


def _top_level_path(node: PropertyNode) -> str:
    if node.tag.array_index:
        return f"{node.name}[{node.tag.array_index}]"
    return node.name


def _walk(node: PropertyNode, path: str) -> Iterator[tuple[str, PropertyNode]]:
    yield path, node
    if node.kind == STRUCT:
        for child in node.value:
            yield from _walk(child, f"{path}.{_top_level_path(child)}")
    elif node.kind in (ARRAY, SET):
        for i, element in enumerate(node.value):
            yield from _walk(element, f"{path}[{i}]")
    elif node.kind == MAP:
        for key, value in node.value:
            yield from _walk(value, f"{path}[{key.to_python()}]")
