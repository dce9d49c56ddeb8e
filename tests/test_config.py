"""
Tests for config loading — defaults, TOML files, environment lookup and
config-defined fields.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from savedit import DEFAULT_MAX_FILE_SIZE, DEFAULT_WORKERS
from savedit.config import DEFAULT_CONFIG, config_path, load_config
from savedit.fields import FieldCatalog


# ---------------------------------------------------------------------------
# TestConfigPath
# ---------------------------------------------------------------------------

class TestConfigPath:
    """Where the config file is looked up."""

    def test_explicit_wins(self, tmp_path):
        assert config_path(tmp_path / "mine.toml") == tmp_path / "mine.toml"

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SAVEDIT_CONFIG", str(tmp_path / "env.toml"))
        assert config_path() == tmp_path / "env.toml"

    def test_home_default(self, monkeypatch):
        monkeypatch.delenv("SAVEDIT_CONFIG", raising=False)
        assert config_path() == Path.home() / ".savedit" / "config.toml"


# ---------------------------------------------------------------------------
# TestLoadConfig
# ---------------------------------------------------------------------------

class TestLoadConfig:
    """TOML values override the defaults."""

    def test_defaults_when_absent(self):
        config = load_config()
        assert config == DEFAULT_CONFIG
        assert config["workers"] == DEFAULT_WORKERS
        assert config["max_file_size"] == DEFAULT_MAX_FILE_SIZE
        assert config["backup"] is True

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('workers = 8\nbackup = false\nlog_level = "DEBUG"\n')
        config = load_config(path)
        assert config["workers"] == 8
        assert config["backup"] is False
        assert config["log_level"] == "DEBUG"
        assert config["max_file_size"] == DEFAULT_MAX_FILE_SIZE

    def test_env_file(self, tmp_path, monkeypatch):
        path = tmp_path / "env.toml"
        path.write_text("workers = 2\n")
        monkeypatch.setenv("SAVEDIT_CONFIG", str(path))
        assert load_config()["workers"] == 2

    def test_defaults_not_mutated(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("workers = 16\n")
        load_config(path)
        assert DEFAULT_CONFIG["workers"] == DEFAULT_WORKERS

    def test_invalid_toml_warns(self, tmp_path, caplog):
        path = tmp_path / "config.toml"
        path.write_text("workers = = 3\n")
        with caplog.at_level(logging.WARNING, logger="savedit.config"):
            config = load_config(path)
        assert config == DEFAULT_CONFIG
        assert "Failed to load config" in caplog.text

    def test_fields_table(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            "[fields.Keycards]\n"
            'path = "MetaResources[MetaRow=Keycard].Count"\n'
            'kind = "int"\n'
            'scope = "profile"\n'
        )
        catalog = FieldCatalog.from_config(load_config(path))
        spec = catalog.get("Keycards")
        assert spec.path == "MetaResources[MetaRow=Keycard].Count"
        assert spec.scope == "profile"
        assert "XP" in catalog


# ---------------------------------------------------------------------------
# TestConfigValues
# ---------------------------------------------------------------------------

class TestConfigValues:
    """Values of the wrong type are rejected with the key and the file named."""

    def write(self, tmp_path, text):
        path = tmp_path / "config.toml"
        path.write_text(text)
        return path

    @pytest.mark.parametrize("line", [
        'workers = "four"',
        "workers = 0",
        "workers = true",
        "workers = 2.5",
        'max_file_size = "64M"',
    ])
    def test_bad_numbers(self, tmp_path, line):
        path = self.write(tmp_path, line + "\n")
        with pytest.raises(ValueError, match="must be a positive integer") as exc:
            load_config(path)
        assert str(path) in str(exc.value)

    def test_bad_backup(self, tmp_path):
        with pytest.raises(ValueError, match="backup must be true or false"):
            load_config(self.write(tmp_path, 'backup = "no"\n'))

    def test_bad_log_level(self, tmp_path):
        with pytest.raises(ValueError, match="unknown log_level"):
            load_config(self.write(tmp_path, 'log_level = "LOUD"\n'))

    def test_lowercase_log_level(self, tmp_path):
        assert load_config(self.write(tmp_path, 'log_level = "debug"\n'))["log_level"] == "debug"

    def test_fields_not_a_table(self, tmp_path):
        with pytest.raises(ValueError, match="fields must be a table"):
            load_config(self.write(tmp_path, 'fields = "Credits"\n'))

    def test_field_entry_not_a_table(self, tmp_path):
        with pytest.raises(ValueError, match="fields.Keycards must be a table"):
            load_config(self.write(tmp_path, "[fields]\nKeycards = 3\n"))

    def test_unknown_key_ignored(self, tmp_path, caplog):
        path = self.write(tmp_path, "colour = true\nworkers = 3\n")
        with caplog.at_level(logging.WARNING, logger="savedit.config"):
            config = load_config(path)
        assert config["workers"] == 3
        assert "colour" not in config
        assert "Ignoring unknown config keys" in caplog.text
