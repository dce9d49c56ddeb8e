"""
Batch — edit many save files as one transaction.

Each file is decoded, edited and encoded on a worker thread; documents are
never shared between threads. Nothing touches the disk until every file has
been encoded and validated. Commit then:

    1. writes every new encoding to a synced temp file beside its target
       (plus a .bak copy of the old bytes when backups are on)
    2. os.replace()s each temp file over its target

If any file fails to prepare, or any temp file fails to write, no target is
replaced and the temp files are removed. If a replace fails part way, the
files already replaced are written back from their original bytes and the
BatchError lists what happened to each file.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from savedit import BACKUP_SUFFIX, DEFAULT_MAX_FILE_SIZE, DEFAULT_WORKERS
from savedit._format.errors import SaveFormatError
from savedit._format.writer import stage_file, write_atomic
from savedit.fields import FieldCatalog
from savedit.session import FileSession

log = logging.getLogger(__name__)


@dataclass
class FileEdit:
    """Edits for one file: raw path edits, catalog field values and/or a preset."""

    path: str | Path
    edits: dict[str, Any] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)
    preset: str | None = None


@dataclass
class FileResult:
    """Outcome of preparing (and possibly writing) one file."""

    path: Path
    ok: bool
    error: str | None = None
    before: str | None = None
    after: str | None = None
    data: bytes | None = field(default=None, repr=False)
    # commit outcome: written, rolled back, rollback failed, failed or not written
    state: str | None = None

    @property
    def changed(self) -> bool:
        return self.ok and self.before != self.after

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"path": str(self.path), "ok": self.ok, "changed": self.changed}
        if self.error:
            d["error"] = self.error
        if self.before:
            d["before"] = self.before
        if self.after:
            d["after"] = self.after
        if self.state:
            d["state"] = self.state
        return d


class BatchError(Exception):
    """A batch was rejected; ``results`` says which files failed and why."""

    def __init__(self, message: str, results: list[FileResult]) -> None:
        super().__init__(message)
        self.results = results

    @property
    def failed(self) -> list[FileResult]:
        return [r for r in self.results if not r.ok]


class BatchEditor:
    """Apply edits to several save files, all or nothing.

    Usage:
        editor = BatchEditor(workers=4)
        editor.run([
            FileEdit("Profile.sav", fields={"Credits": 5000}),
            FileEdit("Character_1.sav", fields={"XP": 99_999_999}),
        ])
    """

    def __init__(
        self,
        workers: int = DEFAULT_WORKERS,
        backup: bool = True,
        max_size: int = DEFAULT_MAX_FILE_SIZE,
        catalog: FieldCatalog | None = None,
    ) -> None:
        self.workers = max(1, workers)
        self.backup = backup
        self.max_size = max_size
        self.catalog = catalog or FieldCatalog()

    def prepare(self, item: FileEdit) -> FileResult:
        """Decode, edit and encode one file in memory."""
        path = Path(item.path)
        try:
            session = FileSession.open(path, max_size=self.max_size, catalog=self.catalog)
            if item.edits:
                session.apply(item.edits)
            if item.fields:
                session.apply_fields(item.fields)
            if item.preset:
                session.apply_preset(item.preset)
            data = session.preview()
        except (SaveFormatError, OSError, ValueError) as e:
            log.debug("Prepare failed for %s: %s", path, e)
            return FileResult(path, ok=False, error=f"{type(e).__name__}: {e}")
        return FileResult(
            path,
            ok=True,
            before=session.source_checksum,
            after=hashlib.sha256(data).hexdigest(),
            data=data,
        )

    def run(self, items: Iterable[FileEdit], dry_run: bool = False) -> list[FileResult]:
        """Prepare every file, then commit them together unless ``dry_run``.

        Raises BatchError if any file fails; no file is written in that case.
        """
        items = list(items)
        seen: set[Path] = set()
        for item in items:
            resolved = Path(item.path).resolve()
            if resolved in seen:
                raise ValueError(f"File listed twice in one batch: {item.path}")
            seen.add(resolved)

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            results = list(pool.map(self.prepare, items))

        failed = [r for r in results if not r.ok]
        if failed:
            for r in failed:
                log.warning("Batch rejected %s: %s", r.path, r.error)
            raise BatchError(
                f"{len(failed)} of {len(results)} files failed; no files were written",
                results,
            )

        if not dry_run:
            self._commit(results)
        return results

    def _commit(self, results: list[FileResult]) -> None:
        staged: list[tuple[FileResult, str]] = []
        originals: dict[Path, bytes] = {}
        try:
            for result in results:
                if not result.changed:
                    continue
                originals[result.path] = result.path.read_bytes()
                if self.backup:
                    shutil.copy2(result.path, str(result.path) + BACKUP_SUFFIX)
                staged.append((result, stage_file(str(result.path), result.data)))
        except BaseException:
            _discard(tmp_path for _, tmp_path in staged)
            log.warning("Batch rolled back: %d staged files removed", len(staged))
            raise

        replaced: list[FileResult] = []
        for i, (result, tmp_path) in enumerate(staged):
            try:
                os.replace(tmp_path, result.path)
            except OSError as e:
                result.ok = False
                result.state = "failed"
                result.error = f"{type(e).__name__}: {e}"
                _discard(tmp for _, tmp in staged[i:])
                self._roll_back(replaced, originals)
                for later, _ in staged[i + 1:]:
                    later.state = "not written"
                raise BatchError(
                    f"Replacing {result.path} failed ({e}); "
                    f"{len(replaced)} written files rolled back",
                    results,
                ) from e
            result.state = "written"
            replaced.append(result)
            log.info("Wrote %s (%d bytes)", result.path, len(result.data))

    def _roll_back(self, replaced: list[FileResult], originals: dict[Path, bytes]) -> None:
        """Put back the previous bytes of files this commit already replaced."""
        for result in replaced:
            try:
                write_atomic(str(result.path), originals[result.path])
            except OSError as e:
                result.state = "rollback failed"
                result.error = f"{type(e).__name__}: {e}"
                log.error("Could not restore %s: %s", result.path, e)
                continue
            result.state = "rolled back"
            log.warning("Restored %s", result.path)


def _discard(tmp_paths: Iterable[str]) -> None:
    for tmp_path in tmp_paths:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            continue
