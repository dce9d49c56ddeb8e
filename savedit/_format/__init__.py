"""
Internal GVAS codec engine.

Decodes Unreal-style "GVAS" save files into an addressable property tree and
re-encodes them, copying untouched branches byte for byte. This is an
internal dependency of savedit, not a public API; use savedit.session.

Format: "GVAS" header + tagged property list + "None" sentinel + trailer
"""

from savedit._format.spec import MAGIC, SENTINEL, FIXED_STRUCTS
from savedit._format.errors import (
    SaveFormatError, ParseError, TruncatedError, UnexpectedEndOfTag,
    TagLengthMismatch, NestingTooDeep, ValidationError, PathNotFound, TypeMismatch,
    EncodeError,
)
from savedit._format.document import (
    PropertyNode, PropertyTag, SaveDocument, SaveHeader, TextValue,
    PathSegment, parse_path, format_path,
)
from savedit._format.writer import SaveWriter
from savedit._format.reader import SaveReader
