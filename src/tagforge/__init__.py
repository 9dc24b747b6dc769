"""tagforge – read and rewrite audio tags without touching the audio."""

__version__ = "0.1.0"

from .core import AudioFile, FormatKind, detect, read, write
from .exceptions import (
    TagforgeError,
    CorruptHeaderError,
    UnsupportedVersionError,
    TruncatedDataError,
    FrameSizeOverflowError,
    InvalidEncodingError,
    StructuralError,
    UnknownFormatError,
    ValidationError,
)
from .metadata import CANONICAL_FIELDS, CanonicalMetadata, Picture, normalize_delta
from .utils import Config, setup_logging
from .operations import copy_metadata, export_cover, set_cover, remove_cover, guess_mime_type
from .batch import read_batch, write_batch, summarize

__all__ = [
    "AudioFile",
    "FormatKind",
    "detect",
    "read",
    "write",
    "TagforgeError",
    "CorruptHeaderError",
    "UnsupportedVersionError",
    "TruncatedDataError",
    "FrameSizeOverflowError",
    "InvalidEncodingError",
    "StructuralError",
    "UnknownFormatError",
    "ValidationError",
    "CANONICAL_FIELDS",
    "CanonicalMetadata",
    "Picture",
    "normalize_delta",
    "Config",
    "setup_logging",
    "copy_metadata",
    "export_cover",
    "set_cover",
    "remove_cover",
    "guess_mime_type",
    "read_batch",
    "write_batch",
    "summarize",
]
