"""
File session — the boundary the CLI (or any other front end) calls.

    doc = load(data)                          # ParseError
    staged = apply(doc, {"XP": 5000})         # ValidationError, doc untouched
    out = save(staged)                        # EncodeError

save() validates its own output: the bytes must decode again, and a document
with no changes must reproduce its source exactly.
"""

from __future__ import annotations

import copy
import hashlib
import hmac
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Iterable, Mapping, Union

from savedit import BACKUP_SUFFIX, DEFAULT_MAX_FILE_SIZE
from savedit._format.document import SaveDocument
from savedit._format.errors import EncodeError, ParseError
from savedit._format.reader import SaveReader
from savedit._format.writer import SaveWriter, write_atomic
from savedit.fields import FieldCatalog, preset_fields

log = logging.getLogger(__name__)

Edits = Union[Mapping[str, Any], Iterable[tuple]]


def load(data: bytes, max_size: int = DEFAULT_MAX_FILE_SIZE) -> SaveDocument:
    """Decode save bytes. Raises ParseError on malformed input."""
    return SaveReader.parse(data, max_size=max_size)


def apply(doc: SaveDocument, edits: Edits) -> SaveDocument:
    """Apply (path, value) edits to a copy of ``doc`` and return the copy.

    All-or-nothing: if any edit is rejected the ValidationError propagates
    and ``doc`` is unchanged.
    """
    items = edits.items() if isinstance(edits, Mapping) else edits
    staged = copy.deepcopy(doc)
    for path, value in items:
        staged.set_value(path, value)
    return staged


def save(doc: SaveDocument) -> bytes:
    """Encode ``doc`` and validate the result. Raises EncodeError."""
    data = SaveWriter.serialize(doc)
    try:
        SaveReader.parse(data, max_size=max(len(data), DEFAULT_MAX_FILE_SIZE))
    except ParseError as e:
        raise EncodeError(f"Encoded output does not decode: {e}") from e

    if not doc.is_modified and doc.source_checksum is not None:
        digest = hashlib.sha256(data).hexdigest()
        if not hmac.compare_digest(digest, doc.source_checksum):
            raise EncodeError("Unmodified document did not reproduce its source bytes")
    return data


class FileSession:
    """One save file open for editing.

    Usage:
        session = FileSession.open("Character_1.sav")
        session.apply_fields({"XP": 99_999_999})
        session.commit(backup=True)
    """

    def __init__(
        self,
        document: SaveDocument,
        path: str | Path | None = None,
        catalog: FieldCatalog | None = None,
    ) -> None:
        self._doc = document
        self.path = Path(path) if path is not None else None
        self.catalog = catalog or FieldCatalog()

    @classmethod
    def open(
        cls,
        path: str | Path,
        max_size: int = DEFAULT_MAX_FILE_SIZE,
        catalog: FieldCatalog | None = None,
    ) -> FileSession:
        doc = SaveReader.read(path, max_size=max_size)
        log.debug("Opened %s (%s)", path, doc.header.save_game_class)
        return cls(doc, path=path, catalog=catalog)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        max_size: int = DEFAULT_MAX_FILE_SIZE,
        catalog: FieldCatalog | None = None,
    ) -> FileSession:
        return cls(load(data, max_size=max_size), catalog=catalog)

    @property
    def document(self) -> SaveDocument:
        return self._doc

    @property
    def is_modified(self) -> bool:
        return self._doc.is_modified

    def fields(self) -> dict[str, Any]:
        """Catalog fields present in this file, with their current values."""
        return self.catalog.recognized(self._doc)

    def get(self, path: str) -> Any:
        return self._doc.get(path)

    def apply(self, edits: Edits) -> FileSession:
        self._doc = apply(self._doc, edits)
        return self

    def apply_fields(self, values: Mapping[str, Any]) -> FileSession:
        self._doc = self.catalog.apply(self._doc, values)
        return self

    def apply_preset(self, name: str) -> FileSession:
        """Apply the part of a named preset that this file has fields for."""
        values = self.catalog.applicable(self._doc, preset_fields(name))
        log.debug("Preset %s on %s: %s", name, self.path, ", ".join(values))
        return self.apply_fields(values)

    def preview(self) -> bytes:
        """The bytes commit() would write."""
        return save(self._doc)

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.preview()).hexdigest()

    @property
    def source_checksum(self) -> str | None:
        return self._doc.source_checksum

    def commit(self, path: str | Path | None = None, backup: bool = False) -> int:
        """Write the encoded document atomically. Returns bytes written."""
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No target path: session was not opened from a file")
        data = self.preview()
        if backup and target.exists():
            shutil.copy2(target, str(target) + BACKUP_SUFFIX)
        write_atomic(os.fspath(target), data)
        log.info("Wrote %s (%d bytes)", target, len(data))
        self._doc = load(data, max_size=max(len(data), DEFAULT_MAX_FILE_SIZE))
        self.path = target
        return len(data)
