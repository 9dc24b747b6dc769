"""
Format dispatcher and AudioFile - unified API for reading/writing audio tags.
Handles ID3v2 (2.2/2.3/2.4), ID3v1, FLAC, OGG Vorbis and Opus.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generator, Optional, Union

from . import flac, id3v1, id3v2, mapping, ogg
from .exceptions import TagforgeError, UnknownFormatError, ValidationError
from .metadata import CanonicalMetadata, normalize_delta
from .utils import Config, atomic_write

logger = logging.getLogger(__name__)


class FormatKind(Enum):
    ID3V2 = 'id3v2'
    ID3V1 = 'id3v1'
    FLAC = 'flac'
    OGG_VORBIS = 'ogg'
    OPUS = 'opus'

    @property
    def file_type(self) -> str:
        return self.value


def detect(data: bytes) -> FormatKind:
    """
    Identify the tag format of a file buffer.

    Signatures are checked in order: "ID3" at 0, "fLaC" at 0, "OggS" at 0
    (codec picked from the first packet), then "TAG" 128 bytes from the end.

    Raises:
        UnknownFormatError: when no signature matches
    """
    if id3v2.has_tag(data):
        return FormatKind.ID3V2
    if flac.has_signature(data):
        return FormatKind.FLAC
    if data[:4] == ogg.OGG_MAGIC:
        codec = ogg.identify_stream(data)
        if codec == ogg.CODEC_VORBIS:
            return FormatKind.OGG_VORBIS
        if codec == ogg.CODEC_OPUS:
            return FormatKind.OPUS
        raise UnknownFormatError("OGG stream is neither Vorbis nor Opus")
    if id3v1.has_tag(data):
        return FormatKind.ID3V1
    raise UnknownFormatError("No ID3v2, FLAC, OGG or ID3v1 signature found")


def read(data: bytes) -> CanonicalMetadata:
    """Parse a file buffer into canonical metadata with file_type and version filled in."""
    kind = detect(data)
    if kind is FormatKind.ID3V2:
        tag = id3v2.parse(data)
        return mapping.read_id3v2(tag).with_source(kind.file_type, tag.version)
    if kind is FormatKind.ID3V1:
        tag = id3v1.parse(data)
        return mapping.read_id3v1(tag).with_source(kind.file_type, tag.version)
    if kind is FormatKind.FLAC:
        return mapping.read_flac(flac.parse(data)).with_source(kind.file_type, None)
    container = ogg.parse(data, headers_only=True)
    return mapping.read_ogg(container).with_source(kind.file_type, container.version)


def write(data: bytes, delta: Optional[Dict[str, Any]]) -> bytes:
    """
    Apply a delta and return a complete new file buffer.

    An empty delta (after dropping read-only keys) returns data unchanged.

    Raises:
        ValidationError: unknown keys or badly typed values in delta
        TagforgeError: the file cannot be parsed or the result cannot be encoded
    """
    changes = normalize_delta(delta)
    if not changes:
        return data

    kind = detect(data)
    if kind is FormatKind.ID3V2:
        tag = id3v2.parse(data)
        if tag.truncated:
            logger.warning("Rewriting a truncated ID3v2 tag; frames after the damage are dropped")
        return id3v2.write(mapping.apply_id3v2(tag, changes))
    if kind is FormatKind.ID3V1:
        return id3v1.write(data, mapping.apply_id3v1(id3v1.parse(data), changes))
    if kind is FormatKind.FLAC:
        return flac.write(mapping.apply_flac(flac.parse(data), changes))
    return ogg.write(mapping.apply_ogg(ogg.parse(data), changes))


class AudioFile:
    """
    Handle on one audio file.

    The file is read once into an immutable snapshot; reads are served from it
    and writes replace the file atomically, then refresh it.
    """

    def __init__(self, path: Union[str, Path]):
        """Initialize AudioFile with the given audio file path."""
        self.path = Path(path)
        self.data = b''
        self.kind = None
        self.load_file()

    def load_file(self) -> None:
        """Load the file snapshot and detect its format."""
        size = self.path.stat().st_size
        if size > Config.MAX_FILE_SIZE:
            raise ValidationError(
                f"File {self.path} is {size} bytes, larger than the {Config.MAX_FILE_SIZE} byte limit"
            )
        self.data = self.path.read_bytes()
        self.kind = detect(self.data)
        logger.debug(f"Loaded {self.path} ({self.kind.file_type}, {len(self.data)} bytes)")

    def read_metadata(self) -> CanonicalMetadata:
        return read(self.data)

    def write_metadata(self, delta: Optional[Dict[str, Any]]) -> bool:
        """
        Apply delta to the file on disk.

        The new contents are built completely before the file is touched.

        Returns:
            True when the file changed, False when the delta was a no-op
        """
        new_data = write(self.data, delta)
        if new_data == self.data:
            logger.debug(f"No changes for {self.path}")
            return False
        atomic_write(self.path, new_data)
        logger.info(f"Updated tags in {self.path}")
        self.data = new_data
        self.kind = detect(new_data)
        return True

    def close(self) -> None:
        """Release the snapshot."""
        self.data = b''

    def __enter__(self) -> 'AudioFile':
        """Enter the context manager."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the context manager and release the snapshot."""
        self.close()

    def __str__(self) -> str:
        return f"{self.path.name} ({self.kind.file_type if self.kind else 'unknown'})"

    @staticmethod
    @contextmanager
    def managed(path: Union[str, Path]) -> Generator['AudioFile', None, None]:
        """Context manager for AudioFile with proper resource cleanup."""
        audio = None
        try:
            audio = AudioFile(path)
            yield audio
        except TagforgeError as e:
            logger.error(f"Failed to process audio file {path}: {e}")
            raise
        finally:
            if audio:
                audio.close()
