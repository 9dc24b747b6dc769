"""
Canonical metadata record, cover picture and partial-update (delta) handling.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

# Text fields every format maps onto, in exchange order
TEXT_FIELDS = ('title', 'artist', 'album', 'year', 'track', 'genre', 'comment', 'lyrics')
CANONICAL_FIELDS = TEXT_FIELDS + ('cover',)
READ_ONLY_FIELDS = ('file_type', 'version')

FRONT_COVER = 3


@dataclass(frozen=True)
class Picture:
    """Embedded cover image."""
    mime_type: str = ''
    width: int = 0
    height: int = 0
    depth: int = 0
    description: str = ''
    data: bytes = b''
    picture_type: int = FRONT_COVER
    colors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Exchange form: image bytes as base64 text."""
        return {
            'mime_type': self.mime_type,
            'width': self.width,
            'height': self.height,
            'depth': self.depth,
            'description': self.description,
            'data': base64.b64encode(self.data).decode('ascii'),
        }

    @classmethod
    def from_dict(cls, value: Dict[str, Any]) -> 'Picture':
        """
        Build a Picture from its exchange form.

        ``data`` may be base64 text or raw bytes. Missing numeric fields default to 0.
        """
        if not isinstance(value, dict):
            raise ValidationError(f"Cover must be a mapping, got {type(value).__name__}")

        raw = value.get('data', b'')
        if isinstance(raw, str):
            try:
                raw = base64.b64decode(raw, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError(f"Cover data is not valid base64: {e}") from e
        elif isinstance(raw, (bytes, bytearray, memoryview)):
            raw = bytes(raw)
        else:
            raise ValidationError(f"Cover data must be base64 text or bytes, got {type(raw).__name__}")

        try:
            return cls(
                mime_type=str(value.get('mime_type') or ''),
                width=int(value.get('width') or 0),
                height=int(value.get('height') or 0),
                depth=int(value.get('depth') or 0),
                description=str(value.get('description') or ''),
                data=raw,
                picture_type=int(value.get('picture_type', FRONT_COVER)),
                colors=int(value.get('colors') or 0),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid cover field: {e}") from e


@dataclass
class CanonicalMetadata:
    """
    Format-independent view of a file's tags.

    ``file_type`` and ``version`` describe where the values came from and are
    never written back.
    """
    file_type: Optional[str] = None
    version: Optional[str] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    year: Optional[str] = None
    track: Optional[str] = None
    genre: Optional[str] = None
    comment: Optional[str] = None
    lyrics: Optional[str] = None
    cover: Optional[Picture] = None

    def to_dict(self) -> Dict[str, Any]:
        """Flat exchange dictionary; absent values are omitted."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[f.name] = value.to_dict() if isinstance(value, Picture) else value
        return out

    @classmethod
    def from_dict(cls, value: Dict[str, Any]) -> 'CanonicalMetadata':
        known = {f.name for f in fields(cls)}
        unknown = set(value) - known
        if unknown:
            raise ValidationError(f"Unknown metadata keys: {', '.join(sorted(unknown))}")
        kwargs = dict(value)
        cover = kwargs.get('cover')
        if cover is not None and not isinstance(cover, Picture):
            kwargs['cover'] = Picture.from_dict(cover)
        return cls(**kwargs)

    def as_delta(self, keys=None) -> Dict[str, Any]:
        """Present canonical values as a delta, optionally restricted to keys."""
        wanted = CANONICAL_FIELDS if keys is None else keys
        return {k: getattr(self, k) for k in wanted if getattr(self, k) is not None}

    def with_source(self, file_type: str, version: Optional[str]) -> 'CanonicalMetadata':
        return replace(self, file_type=file_type, version=version)


def is_delete(value: Any) -> bool:
    """True for the delta values that remove a field."""
    return value is None or value == ''


def normalize_delta(delta: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate a delta and coerce its values.

    Text values become ``str`` (numbers are accepted for year and track),
    deletions become ``None``, and a cover mapping becomes a Picture. The
    read-only keys are dropped.

    Raises:
        ValidationError: for unknown keys or values of the wrong type
    """
    if not delta:
        return {}
    if not isinstance(delta, dict):
        raise ValidationError(f"Delta must be a mapping, got {type(delta).__name__}")

    out = {}
    for key, value in delta.items():
        if key in READ_ONLY_FIELDS:
            logger.debug(f"Ignoring read-only key '{key}' in delta")
            continue
        if key not in CANONICAL_FIELDS:
            raise ValidationError(f"Unknown metadata key: {key!r}")

        if is_delete(value):
            out[key] = None
        elif key == 'cover':
            if isinstance(value, Picture):
                out[key] = value
            elif isinstance(value, dict):
                out[key] = Picture.from_dict(value)
            else:
                raise ValidationError(f"Cover must be a Picture or mapping, got {type(value).__name__}")
        elif isinstance(value, bool):
            raise ValidationError(f"Invalid value for {key}: {value!r}")
        elif isinstance(value, (str, int)):
            out[key] = str(value)
        else:
            raise ValidationError(f"Value for {key} must be text, got {type(value).__name__}")
    return out
