"""
Configuration — optional TOML file with defaults for the CLI.

Location, first match wins:
    --config PATH
    $SAVEDIT_CONFIG
    ~/.savedit/config.toml

Example:
    workers = 8
    backup = false

    [fields.Keycards]
    path = "MetaResources[MetaRow=Keycard].Count"
    kind = "int"
    scope = "profile"
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from savedit import (
    CONFIG_ENV_VAR, DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_NAME,
    DEFAULT_MAX_FILE_SIZE, DEFAULT_WORKERS,
)

log = logging.getLogger(__name__)

# Default config
DEFAULT_CONFIG = {
    "workers": DEFAULT_WORKERS,
    "max_file_size": DEFAULT_MAX_FILE_SIZE,
    "backup": True,
    "log_level": "INFO",
    "fields": {},
}


def config_path(explicit: str | Path | None = None) -> Path:
    if explicit:
        return Path(explicit)
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    return Path.home() / DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_NAME


def _check(config: dict[str, Any], path: Path) -> dict[str, Any]:
    """Raise ValueError for any key holding a value of the wrong type."""
    for key in ("workers", "max_file_size"):
        value = config[key]
        # bool is an int subclass; "workers = true" is still a mistake
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{path}: {key} must be a positive integer, got {value!r}")
    if not isinstance(config["backup"], bool):
        raise ValueError(f"{path}: backup must be true or false, got {config['backup']!r}")
    level = config["log_level"]
    if not isinstance(level, str) or not isinstance(logging.getLevelName(level.upper()), int):
        raise ValueError(f"{path}: unknown log_level {level!r}")
    if not isinstance(config["fields"], dict):
        raise ValueError(f"{path}: fields must be a table of field definitions")
    for field_id, table in config["fields"].items():
        if not isinstance(table, dict):
            raise ValueError(f"{path}: fields.{field_id} must be a table")
    return config


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load config from the first location that applies, falling back to defaults.

    Raises ValueError if the file parses but holds a value of the wrong type.
    """
    config = dict(DEFAULT_CONFIG)

    path = config_path(path)
    if not path.is_file():
        log.debug("No config file at %s", path)
        return config

    try:
        import tomllib
    except ImportError:
        try:
            import tomli as tomllib
        except ImportError:
            log.warning("tomllib/tomli not available, using default config")
            return config

    try:
        with open(path, "rb") as f:
            file_config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        log.warning("Failed to load config from %s: %s", path, e)
        return config

    unknown = sorted(set(file_config) - set(DEFAULT_CONFIG))
    if unknown:
        log.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(unknown))
    config.update((k, v) for k, v in file_config.items() if k in DEFAULT_CONFIG)
    return _check(config, path)
