"""
Higher-level tag operations for tagforge: copying metadata between files and
managing cover art.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .core import AudioFile
from .exceptions import ValidationError
from .metadata import CANONICAL_FIELDS, Picture
from .utils import atomic_write

logger = logging.getLogger(__name__)

PathType = Union[str, Path]

# (magic prefix, MIME type); WebP is checked separately
IMAGE_SIGNATURES = (
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'BM', 'image/bmp'),
)

EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/bmp': 'bmp',
    'image/tiff': 'tiff',
}


def guess_mime_type(data: bytes) -> Optional[str]:
    """
    Guess an image MIME type from its leading bytes.

    Examples:
        >>> guess_mime_type(b'\\x89PNG\\r\\n\\x1a\\n...')
        'image/png'
    """
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'image/webp'
    for magic, mime_type in IMAGE_SIGNATURES:
        if data.startswith(magic):
            return mime_type
    return None


def extension_for(mime_type: str) -> str:
    return EXTENSIONS.get(mime_type.lower(), 'jpg')


def copy_metadata(source: PathType, targets: Iterable[PathType],
                  fields: Optional[Sequence[str]] = None) -> List[Path]:
    """
    Copy canonical fields from source to every target.

    Args:
        source: File to read tags from
        targets: Files to write to
        fields: Canonical keys to copy (default: every field present in source)

    Returns:
        Targets that were changed
    """
    if fields is not None:
        unknown = [f for f in fields if f not in CANONICAL_FIELDS]
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

    with AudioFile.managed(source) as audio:
        delta = audio.read_metadata().as_delta(fields)

    if not delta:
        logger.info(f"No metadata to copy from {source}")
        return []

    changed = []
    for target in targets:
        with AudioFile.managed(target) as audio:
            if audio.write_metadata(delta):
                changed.append(audio.path)
    logger.info(f"Copied {', '.join(delta)} from {source} to {len(changed)} files")
    return changed


def export_cover(path: PathType, dest: PathType) -> Optional[Path]:
    """
    Write the cover image of path to dest.

    A dest without a suffix gets one matching the image type.

    Returns:
        The written path, or None when the file has no cover
    """
    with AudioFile.managed(path) as audio:
        cover = audio.read_metadata().cover
    if cover is None:
        logger.info(f"No cover art in {path}")
        return None

    dest = Path(dest)
    if not dest.suffix:
        dest = dest.with_suffix('.' + extension_for(cover.mime_type))
    atomic_write(dest, cover.data)
    logger.info(f"Exported {len(cover.data)} byte cover from {path} to {dest}")
    return dest


def set_cover(path: PathType, image_path: PathType, mime_type: Optional[str] = None,
              description: str = '') -> bool:
    """Embed the image at image_path as the front cover of path."""
    data = Path(image_path).read_bytes()
    if mime_type is None:
        mime_type = guess_mime_type(data)
        if mime_type is None:
            raise ValidationError(f"Cannot determine the image type of {image_path}")
    picture = Picture(mime_type=mime_type, description=description, data=data)
    with AudioFile.managed(path) as audio:
        return audio.write_metadata({'cover': picture})


def remove_cover(path: PathType) -> bool:
    with AudioFile.managed(path) as audio:
        return audio.write_metadata({'cover': None})
