"""
Text encoding detection and conversion for tag payloads.

ID3v2 selects the encoding of each text field with a leading byte:
0 = ISO-8859-1, 1 = UTF-16 with BOM, 2 = UTF-16BE, 3 = UTF-8.
"""

import logging
from enum import IntEnum
from typing import Optional, Tuple

from .exceptions import InvalidEncodingError
from .utils import Config

logger = logging.getLogger(__name__)

BOM_LE = b'\xff\xfe'
BOM_BE = b'\xfe\xff'
BOM_UTF8 = b'\xef\xbb\xbf'


class TextEncoding(IntEnum):
    ISO_8859_1 = 0
    UTF_16 = 1
    UTF_16BE = 2
    UTF_8 = 3

    @classmethod
    def from_byte(cls, value: int) -> 'TextEncoding':
        """Map an ID3v2 encoding byte; unknown values fall back to ISO-8859-1."""
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown text encoding byte {value}, treating as ISO-8859-1")
            return cls.ISO_8859_1

    @property
    def is_wide(self) -> bool:
        return self in (TextEncoding.UTF_16, TextEncoding.UTF_16BE)


def _codec_and_body(data: bytes, encoding: TextEncoding) -> Tuple[str, bytes]:
    """Resolve the Python codec name and strip any byte order mark."""
    if encoding is TextEncoding.ISO_8859_1:
        return 'latin-1', data
    if encoding is TextEncoding.UTF_16:
        if data.startswith(BOM_LE):
            return 'utf-16-le', data[2:]
        if data.startswith(BOM_BE):
            return 'utf-16-be', data[2:]
        return 'utf-16-le', data
    if encoding is TextEncoding.UTF_16BE:
        if data.startswith(BOM_BE):
            return 'utf-16-be', data[2:]
        return 'utf-16-be', data
    if data.startswith(BOM_UTF8):
        return 'utf-8', data[3:]
    return 'utf-8', data


def decode_strict(data: bytes, encoding: TextEncoding) -> str:
    """
    Decode text, raising InvalidEncodingError on malformed input
    (unpaired surrogates, odd-length UTF-16, invalid UTF-8).
    """
    codec, body = _codec_and_body(bytes(data), encoding)
    try:
        return body.decode(codec)
    except UnicodeDecodeError as e:
        raise InvalidEncodingError(f"Malformed {encoding.name} text: {e}") from e


def decode(data: bytes, encoding: TextEncoding, strict: Optional[bool] = None) -> str:
    """
    Decode text with the declared encoding.

    Malformed text is decoded with U+FFFD replacements unless strict decoding is
    requested (or enabled through Config.STRICT_ENCODING), in which case
    InvalidEncodingError propagates.

    Args:
        data: Raw encoded bytes, without the ID3v2 encoding byte
        encoding: Declared encoding
        strict: Override for Config.STRICT_ENCODING

    Returns:
        Decoded text
    """
    if strict is None:
        strict = Config.STRICT_ENCODING
    try:
        return decode_strict(data, encoding)
    except InvalidEncodingError as e:
        if strict:
            raise
        logger.warning(f"{e}; decoding with replacement characters")
        codec, body = _codec_and_body(bytes(data), encoding)
        return body.decode(codec, errors='replace')


def encode(text: str, encoding: TextEncoding) -> bytes:
    """Encode text, emitting a byte order mark for the UTF-16 variants."""
    if encoding is TextEncoding.ISO_8859_1:
        return text.encode('latin-1', errors='replace')
    if encoding is TextEncoding.UTF_16:
        return BOM_LE + text.encode('utf-16-le')
    if encoding is TextEncoding.UTF_16BE:
        return BOM_BE + text.encode('utf-16-be')
    return text.encode('utf-8')


def terminator(encoding: TextEncoding) -> bytes:
    return b'\x00\x00' if encoding.is_wide else b'\x00'


def split_terminated(data: bytes, encoding: TextEncoding) -> Tuple[bytes, bytes]:
    """
    Split data at the first string terminator for the encoding.

    UTF-16 terminators are two zero bytes aligned to an even offset.

    Returns:
        (text bytes, bytes after the terminator); when no terminator exists the
        whole input is text and the remainder is empty
    """
    if not encoding.is_wide:
        index = data.find(b'\x00')
        if index < 0:
            return data, b''
        return data[:index], data[index + 1:]

    index = 0
    while True:
        index = data.find(b'\x00\x00', index)
        if index < 0:
            return data, b''
        if index % 2 == 0:
            return data[:index], data[index + 2:]
        index += 1


def strip_terminators(data: bytes, encoding: TextEncoding) -> bytes:
    """Drop trailing null terminators."""
    term = terminator(encoding)
    while data.endswith(term) and len(data) >= len(term):
        if encoding.is_wide and len(data) % 2:
            break
        data = data[:-len(term)]
    return data


def pick_encoding(text: str, major_version: int) -> TextEncoding:
    """Choose the encoding a writer should use for text in an ID3v2 tag of the given version."""
    if major_version >= 4:
        return TextEncoding.UTF_8
    try:
        text.encode('latin-1')
    except UnicodeEncodeError:
        return TextEncoding.UTF_16
    return TextEncoding.ISO_8859_1
