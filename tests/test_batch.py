"""
Tests for batch editing — all-or-nothing commit across several save files.
"""

from __future__ import annotations

import os

import pytest

from savedit import EXPERIENCE_CAP, TEMP_SUFFIX
from savedit._format import writer
from savedit.batch import BatchEditor, BatchError, FileEdit, FileResult

from gvasbuild import character_save, profile_save


def temp_files(directory):
    return [p for p in directory.iterdir() if p.name.endswith(TEMP_SUFFIX)]


# ---------------------------------------------------------------------------
# TestBatchCommit
# ---------------------------------------------------------------------------

class TestBatchCommit:
    """Successful batches write every file."""

    def test_two_files(self, profile_file, character_file, tmp_path):
        results = BatchEditor(workers=2).run([
            FileEdit(profile_file, fields={"Credits": 5000}),
            FileEdit(character_file, fields={"XP": EXPERIENCE_CAP}),
        ])
        assert all(r.ok and r.changed for r in results)
        assert profile_file.read_bytes() == profile_save(credits=5000)
        assert character_file.read_bytes() == character_save(xp=EXPERIENCE_CAP)
        assert temp_files(tmp_path) == []

    def test_backups(self, profile_file, profile_bytes):
        BatchEditor().run([FileEdit(profile_file, fields={"Exotics": 1})])
        backup = profile_file.with_name(profile_file.name + ".bak")
        assert backup.read_bytes() == profile_bytes

    def test_no_backup(self, profile_file, tmp_path):
        BatchEditor(backup=False).run([FileEdit(profile_file, fields={"Exotics": 1})])
        assert sorted(p.name for p in tmp_path.iterdir()) == ["Profile.sav"]

    def test_raw_edits_and_fields_together(self, character_file):
        BatchEditor().run([
            FileEdit(character_file, edits={"CharacterName": "Mira"}, fields={"IsDead": False}),
        ])
        assert character_file.read_bytes() == character_save(name="Mira", is_dead=False)

    def test_unchanged_file_not_rewritten(self, character_file, tmp_path):
        results = BatchEditor().run([FileEdit(character_file, fields={"XP": 12345})])
        assert results[0].ok and not results[0].changed
        assert sorted(p.name for p in tmp_path.iterdir()) == ["Character_1.sav"]

    def test_dry_run_writes_nothing(self, profile_file, profile_bytes, tmp_path):
        results = BatchEditor().run(
            [FileEdit(profile_file, fields={"Credits": 1})], dry_run=True,
        )
        assert results[0].changed
        assert results[0].data == profile_save(credits=1)
        assert profile_file.read_bytes() == profile_bytes
        assert sorted(p.name for p in tmp_path.iterdir()) == ["Profile.sav"]


# ---------------------------------------------------------------------------
# TestBatchRejection
# ---------------------------------------------------------------------------

class TestBatchRejection:
    """Any failure leaves every file as it was."""

    def test_invalid_edit_rejects_all(self, profile_file, character_file,
                                      profile_bytes, character_bytes):
        with pytest.raises(BatchError, match="1 of 2 files failed") as exc:
            BatchEditor().run([
                FileEdit(profile_file, fields={"Credits": 5000}),
                FileEdit(character_file, fields={"Credits": 5000}),
            ])
        failed = exc.value.failed
        assert [r.path for r in failed] == [character_file]
        assert "PathNotFound" in failed[0].error
        assert profile_file.read_bytes() == profile_bytes
        assert character_file.read_bytes() == character_bytes

    def test_corrupt_file_rejects_all(self, profile_file, profile_bytes, tmp_path):
        broken = tmp_path / "Character_2.sav"
        broken.write_bytes(character_save()[:-30])
        with pytest.raises(BatchError) as exc:
            BatchEditor().run([
                FileEdit(profile_file, fields={"Credits": 5000}),
                FileEdit(broken, fields={"XP": 1}),
            ])
        assert [r.path for r in exc.value.failed] == [broken]
        assert profile_file.read_bytes() == profile_bytes

    def test_missing_file(self, profile_file, tmp_path):
        with pytest.raises(BatchError) as exc:
            BatchEditor().run([
                FileEdit(profile_file, fields={"Credits": 5000}),
                FileEdit(tmp_path / "missing.sav", fields={"XP": 1}),
            ])
        assert exc.value.failed[0].path.name == "missing.sav"

    def test_encode_failure_rejects_all(self, profile_file, character_file, profile_bytes):
        with pytest.raises(BatchError):
            BatchEditor().run([
                FileEdit(profile_file, fields={"Credits": 5000}),
                FileEdit(character_file, fields={"XP": 2 ** 32}),
            ])
        assert profile_file.read_bytes() == profile_bytes

    def test_duplicate_path(self, profile_file):
        with pytest.raises(ValueError, match="listed twice"):
            BatchEditor().run([
                FileEdit(profile_file, fields={"Credits": 1}),
                FileEdit(str(profile_file), fields={"Exotics": 1}),
            ])

    def test_stage_failure_rolls_back(self, profile_file, character_file, profile_bytes,
                                      character_bytes, tmp_path, monkeypatch):
        calls = []

        def flaky_stage(path, data, mode=0o644):
            calls.append(path)
            if len(calls) == 2:
                raise OSError("disk full")
            return writer.stage_file(path, data, mode)

        monkeypatch.setattr("savedit.batch.stage_file", flaky_stage)
        with pytest.raises(OSError, match="disk full"):
            BatchEditor(backup=False).run([
                FileEdit(profile_file, fields={"Credits": 5000}),
                FileEdit(character_file, fields={"XP": 1}),
            ])
        assert len(calls) == 2
        assert temp_files(tmp_path) == []
        assert profile_file.read_bytes() == profile_bytes
        assert character_file.read_bytes() == character_bytes

    def test_replace_failure_restores_written_files(self, profile_file, character_file,
                                                    profile_bytes, character_bytes,
                                                    tmp_path, monkeypatch):
        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append(dst)
            if len(calls) == 2:
                raise OSError("device busy")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", flaky_replace)
        with pytest.raises(BatchError, match="rolled back") as exc:
            BatchEditor(backup=False).run([
                FileEdit(profile_file, fields={"Credits": 5000}),
                FileEdit(character_file, fields={"XP": 1}),
            ])
        assert [r.state for r in exc.value.results] == ["rolled back", "failed"]
        assert [r.path for r in exc.value.failed] == [character_file]
        assert "device busy" in exc.value.failed[0].error
        assert profile_file.read_bytes() == profile_bytes
        assert character_file.read_bytes() == character_bytes
        assert temp_files(tmp_path) == []

    def test_replace_failure_marks_later_files(self, profile_file, character_file,
                                               character_bytes, tmp_path, monkeypatch):
        def failing_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(os, "replace", failing_replace)
        with pytest.raises(BatchError) as exc:
            BatchEditor(backup=False).run([
                FileEdit(character_file, fields={"XP": 1}),
                FileEdit(profile_file, fields={"Credits": 5000}),
            ])
        assert [r.state for r in exc.value.results] == ["failed", "not written"]
        assert exc.value.results[1].to_dict()["state"] == "not written"
        assert character_file.read_bytes() == character_bytes
        assert temp_files(tmp_path) == []


# ---------------------------------------------------------------------------
# TestFileResult
# ---------------------------------------------------------------------------

class TestFileResult:
    """Per-file outcome reporting."""

    def test_to_dict(self, tmp_path):
        result = FileResult(tmp_path / "a.sav", ok=True, before="aa", after="bb", data=b"x")
        d = result.to_dict()
        assert d == {"path": str(tmp_path / "a.sav"), "ok": True, "changed": True,
                     "before": "aa", "after": "bb"}

    def test_failed_is_never_changed(self, tmp_path):
        result = FileResult(tmp_path / "a.sav", ok=False, error="ParseError: bad")
        assert not result.changed
        assert result.to_dict()["error"] == "ParseError: bad"
