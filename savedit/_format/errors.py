"""
Error taxonomy for the save codec.

    SaveFormatError
    ├── ParseError            input is not a well-formed save; file is not loaded
    │   ├── TruncatedError        read past the end of the buffer
    │   ├── UnexpectedEndOfTag    payload or sentinel runs past its container
    │   ├── TagLengthMismatch     declared length disagrees with the decoded value
    │   └── NestingTooDeep        structs nested past MAX_NESTING_DEPTH
    ├── ValidationError       edit batch rejected; nothing is committed
    │   ├── PathNotFound
    │   └── TypeMismatch
    └── EncodeError           tree cannot be written; the file on disk is untouched
"""


class SaveFormatError(Exception):
    """Base class for save codec errors."""


class ParseError(SaveFormatError):
    """Malformed or truncated save data."""


class TruncatedError(ParseError):
    """A read needed more bytes than the buffer holds."""


class UnexpectedEndOfTag(ParseError):
    """A tag's payload or a property list's sentinel was not found in bounds."""


class TagLengthMismatch(ParseError):
    """A tag's declared payload length does not match what its type decodes."""


class NestingTooDeep(ParseError):
    """Property lists are nested deeper than the decoder allows."""


class ValidationError(SaveFormatError):
    """An edit was rejected before anything was changed."""


class PathNotFound(ValidationError):
    """No property exists at the requested path."""


class TypeMismatch(ValidationError):
    """The new value does not fit the property's declared type."""


class EncodeError(SaveFormatError):
    """The tree could not be serialized back to bytes."""
