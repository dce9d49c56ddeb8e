"""
Field catalog — stable field ids mapped onto property paths.

A front end edits a save by field id ("Credits", "XP", ...) rather than by
raw path. A field is either a plain value at a path, or a flag: a boolean
that is true when an integer is present in an array property. Setting a
flag can pull in other flags it depends on, so one field may expand into
several values written to the tree.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from savedit import EXOTIC_EXTRACTION_FLAG, EXOTIC_MINING_FLAG, EXPERIENCE_CAP
from savedit._format.document import SaveDocument
from savedit._format.errors import TypeMismatch, ValidationError
from savedit._format.spec import ARRAY, SET

log = logging.getLogger(__name__)

PROFILE = "profile"
CHARACTER = "character"
LOADOUT = "loadout"
SCOPES = frozenset({PROFILE, CHARACTER, LOADOUT})

FIELD_KINDS = frozenset({"int", "float", "bool", "str"})

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class FieldSpec:
    """One editable field: id, path into the tree, value kind and scope."""

    field_id: str
    path: str
    kind: str
    scope: str
    label: str = ""
    flag: int | None = None
    requires: tuple[int, ...] = ()

    @property
    def is_flag(self) -> bool:
        return self.flag is not None

    def _flag_values(self, doc: SaveDocument) -> list:
        node = doc.find(self.path)
        if node.kind not in (ARRAY, SET):
            raise TypeMismatch(f"{self.field_id}: {self.path!r} is not an array of flags")
        return node.to_python()

    def read(self, doc: SaveDocument) -> Any:
        if self.flag is None:
            return doc.get(self.path)
        return self.flag in self._flag_values(doc)

    def expand(self, doc: SaveDocument, value: Any) -> list[tuple[str, Any]]:
        """Turn a field value into (path, value) edits against ``doc``."""
        if self.flag is None:
            return [(self.path, value)]
        if not isinstance(value, bool):
            raise TypeMismatch(f"{self.field_id}: expected a bool, got {type(value).__name__}")
        flags = list(self._flag_values(doc))
        if value:
            for flag in (*self.requires, self.flag):
                if flag not in flags:
                    flags.append(flag)
        else:
            flags = [f for f in flags if f != self.flag]
        return [(self.path, flags)]

    def parse(self, text: str) -> Any:
        """Convert command-line text to this field's kind."""
        kind = "bool" if self.flag is not None else self.kind
        return parse_value(text, kind, self.field_id)

    def to_dict(self) -> dict[str, Any]:
        d = {"path": self.path, "kind": self.kind, "scope": self.scope}
        if self.label:
            d["label"] = self.label
        if self.flag is not None:
            d["flag"] = self.flag
        if self.requires:
            d["requires"] = list(self.requires)
        return d

    @classmethod
    def from_dict(cls, field_id: str, d: Mapping[str, Any]) -> FieldSpec:
        try:
            spec = cls(
                field_id=field_id,
                path=str(d["path"]),
                kind=str(d.get("kind", "bool" if "flag" in d else "int")),
                scope=str(d.get("scope", CHARACTER)),
                label=str(d.get("label", "")),
                flag=int(d["flag"]) if "flag" in d else None,
                requires=tuple(int(f) for f in d.get("requires", ())),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid field definition {field_id!r}: {e}") from e
        if spec.kind not in FIELD_KINDS:
            raise ValidationError(f"Field {field_id!r}: unknown kind {spec.kind!r}")
        if spec.scope not in SCOPES:
            raise ValidationError(f"Field {field_id!r}: unknown scope {spec.scope!r}")
        return spec


def parse_value(text: str, kind: str, what: str = "value") -> Any:
    """Parse ``text`` as one of int / float / bool / str."""
    if kind == "str":
        return text
    if kind == "bool":
        lowered = text.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValidationError(f"{what}: {text!r} is not a boolean")
    try:
        if kind == "int":
            return int(text, 0)
        if kind == "float":
            return float(text)
    except ValueError as e:
        raise ValidationError(f"{what}: {text!r} is not a valid {kind}") from e
    raise ValidationError(f"{what}: unknown kind {kind!r}")


DEFAULT_FIELDS = (
    FieldSpec("Credits", "MetaResources[MetaRow=Credits].Count", "int", PROFILE, "Credits"),
    FieldSpec("Exotics", "MetaResources[MetaRow=Exotic1].Count", "int", PROFILE, "Exotics"),
    FieldSpec("UserID", "UserID", "str", PROFILE, "User ID"),
    FieldSpec("CharacterName", "CharacterName", "str", CHARACTER, "Name"),
    FieldSpec("XP", "XP", "int", CHARACTER, "XP"),
    FieldSpec("XPDebt", "XP_Debt", "int", CHARACTER, "XP Debt"),
    FieldSpec("IsDead", "IsDead", "bool", CHARACTER, "Dead"),
    FieldSpec("IsAbandoned", "IsAbandoned", "bool", CHARACTER, "Abandoned"),
    FieldSpec("ExoticMiningUnlocked", "UnlockedFlags", "bool", CHARACTER,
              "Exotic Mining Unlocked", flag=EXOTIC_MINING_FLAG),
    # extraction has no effect in game unless mining is unlocked as well
    FieldSpec("ExoticExtractionUnlocked", "UnlockedFlags", "bool", CHARACTER,
              "Exotic Extraction Unlocked", flag=EXOTIC_EXTRACTION_FLAG,
              requires=(EXOTIC_MINING_FLAG,)),
    # the game ignores a loadout until it is marked valid again
    FieldSpec("LoadoutValid", "Valid", "bool", LOADOUT, "Loadout Valid"),
)

PRESETS: dict[str, dict[str, Any]] = {
    "max-level": {"XP": EXPERIENCE_CAP},
    "restore": {"IsDead": False, "IsAbandoned": False, "LoadoutValid": True},
}


def preset_fields(name: str) -> dict[str, Any]:
    try:
        return dict(PRESETS[name])
    except KeyError:
        raise ValidationError(
            f"Unknown preset {name!r}. Available: {', '.join(sorted(PRESETS))}"
        ) from None


class FieldCatalog:
    """Ordered set of FieldSpecs, looked up by id."""

    def __init__(self, fields: tuple[FieldSpec, ...] | list[FieldSpec] = DEFAULT_FIELDS) -> None:
        self._fields: dict[str, FieldSpec] = {}
        for spec in fields:
            self._fields[spec.field_id] = spec

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def get(self, field_id: str) -> FieldSpec:
        spec = self._fields.get(field_id)
        if spec is None:
            raise ValidationError(f"Unknown field {field_id!r}")
        return spec

    def for_scope(self, scope: str) -> list[FieldSpec]:
        return [spec for spec in self._fields.values() if spec.scope == scope]

    def recognized(self, doc: SaveDocument) -> dict[str, Any]:
        """Fields present in ``doc`` with their current values."""
        found = {}
        for spec in self._fields.values():
            try:
                found[spec.field_id] = spec.read(doc)
            except ValidationError:
                continue
        return found

    def applicable(self, doc: SaveDocument, values: Mapping[str, Any]) -> dict[str, Any]:
        """The subset of ``values`` whose fields exist in ``doc``.

        Presets span several kinds of save; each file takes the part that
        fits it. Raises ValidationError if no field applies at all.
        """
        present = self.recognized(doc)
        subset = {field_id: value for field_id, value in values.items()
                  if self.get(field_id).field_id in present}
        if not subset:
            raise ValidationError(
                f"None of {', '.join(values)} apply to a {doc.header.save_game_class} save"
            )
        return subset

    def apply(self, doc: SaveDocument, values: Mapping[str, Any]) -> SaveDocument:
        """Apply field values to a copy of ``doc``; all-or-nothing like session.apply.

        Fields are expanded in order against the partly edited copy, so two
        flags on the same array both take effect.
        """
        staged = copy.deepcopy(doc)
        for field_id, value in values.items():
            spec = self.get(field_id)
            for path, new_value in spec.expand(staged, value):
                log.debug("Field %s -> %s = %r", field_id, path, new_value)
                staged.set_value(path, new_value)
        return staged

    def merged(self, overrides: Mapping[str, Mapping[str, Any]]) -> FieldCatalog:
        """New catalog with fields added or replaced from config tables."""
        fields = dict(self._fields)
        for field_id, table in overrides.items():
            fields[field_id] = FieldSpec.from_dict(field_id, table)
        return FieldCatalog(list(fields.values()))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> FieldCatalog:
        return cls().merged(config.get("fields") or {})
