"""
Exception hierarchy for tagforge.
"""


class TagforgeError(Exception):
    """Base exception for tagforge errors."""
    pass


class CorruptHeaderError(TagforgeError):
    """Raised when a tag or container header has bad magic or impossible values."""
    pass


class UnsupportedVersionError(CorruptHeaderError):
    """Raised when an ID3v2 major version (or feature) is outside what we can parse."""
    pass


class TruncatedDataError(TagforgeError):
    """Raised when a read needs more bytes than the buffer holds."""
    pass


class FrameSizeOverflowError(TagforgeError):
    """Raised when an ID3v2 frame declares more bytes than remain in the tag."""
    pass


class InvalidEncodingError(TagforgeError):
    """Raised when text cannot be decoded and strict decoding is enabled."""
    pass


class StructuralError(TagforgeError):
    """Raised when a block/page chain violates the container's layout rules."""
    pass


class UnknownFormatError(TagforgeError):
    """Raised when no supported signature is found."""
    pass


class ValidationError(TagforgeError):
    """Raised when an update delta is malformed."""
    pass
