from __future__ import annotations

import pytest

from gvasbuild import character_save, loadout_save, profile_save


@pytest.fixture(autouse=True)
def no_user_config(tmp_path, monkeypatch):
    """Keep a real ~/.savedit/config.toml out of every test."""
    monkeypatch.setenv("SAVEDIT_CONFIG", str(tmp_path / "absent-config.toml"))


@pytest.fixture
def character_bytes():
    return character_save()


@pytest.fixture
def profile_bytes():
    return profile_save()


@pytest.fixture
def character_file(tmp_path, character_bytes):
    path = tmp_path / "Character_1.sav"
    path.write_bytes(character_bytes)
    return path


@pytest.fixture
def profile_file(tmp_path, profile_bytes):
    path = tmp_path / "Profile.sav"
    path.write_bytes(profile_bytes)
    return path


@pytest.fixture
def loadout_file(tmp_path):
    path = tmp_path / "Loadout_1.sav"
    path.write_bytes(loadout_save())
    return path
