"""
savedit — view and edit offline game saves stored in the GVAS property format.

Architecture:
    Codec:    savedit/_format   (cursor, tag decoder, tree model, tree encoder)
    Session:  load -> apply(edits) -> save, with round-trip validation
    Batch:    multi-file edits staged in memory, committed with temp + os.replace
    CLI:      savedit show / fields / get / set / edit / preset / verify
"""

__version__ = "0.1.0"

# Input limits
DEFAULT_MAX_FILE_SIZE = 64 * 1024 * 1024  # 64 MB, offline saves are far smaller

# Batch constants
DEFAULT_WORKERS = 4
BACKUP_SUFFIX = ".bak"
TEMP_SUFFIX = ".sav.tmp"

# Configuration
CONFIG_ENV_VAR = "SAVEDIT_CONFIG"
DEFAULT_CONFIG_DIR = ".savedit"  # under the user's home directory
DEFAULT_CONFIG_NAME = "config.toml"

# Game constants used by the field catalog
EXPERIENCE_CAP = 99_999_999
EXOTIC_MINING_FLAG = 17
EXOTIC_EXTRACTION_FLAG = 18

from savedit._format.errors import (  # noqa: E402
    SaveFormatError, ParseError, TruncatedError, UnexpectedEndOfTag,
    TagLengthMismatch, NestingTooDeep, ValidationError, PathNotFound, TypeMismatch,
    EncodeError,
)
