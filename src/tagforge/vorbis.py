"""
Vorbis Comment structure shared by FLAC, OGG Vorbis and Opus.

    u32le vendor_length, vendor (UTF-8)
    u32le count
    count * (u32le length, "KEY=VALUE" (UTF-8))

Anything after the last entry (the Vorbis framing bit, Opus padding) is kept
in ``trailer`` and written back unchanged. Entries read from a file keep their
original bytes, so entries that are not edited are written back verbatim even
when they are not valid UTF-8 or have no ``=``.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Tuple

from .binary import ByteReader, ByteWriter
from .encoding import TextEncoding, decode

logger = logging.getLogger(__name__)

DEFAULT_VENDOR = 'tagforge'


@dataclass(frozen=True)
class Entry:
    """
    One comment entry.

    ``key`` is None for an entry without ``=``; such entries are never
    returned by lookups. ``raw`` holds the bytes read from the file.
    """
    key: Optional[str]
    value: str
    raw: Optional[bytes] = None

    def matches(self, upper_key: str) -> bool:
        return self.key is not None and self.key.upper() == upper_key

    def encode(self) -> bytes:
        if self.raw is not None:
            return self.raw
        return f"{self.key}={self.value}".encode('utf-8')


@dataclass(frozen=True)
class VorbisComment:
    vendor: str = DEFAULT_VENDOR
    items: Tuple[Entry, ...] = ()
    trailer: bytes = b''
    # (raw bytes, decoded text) of the vendor string as read
    vendor_source: Optional[Tuple[bytes, str]] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]], vendor: str = DEFAULT_VENDOR) -> 'VorbisComment':
        return cls(vendor=vendor, items=tuple(Entry(key, value) for key, value in pairs))

    @property
    def entries(self) -> Tuple[Tuple[str, str], ...]:
        """Well-formed (key, value) pairs in file order."""
        return tuple((e.key, e.value) for e in self.items if e.key is not None)

    def get(self, key: str) -> Optional[str]:
        """First value for key, compared case-insensitively."""
        key = key.upper()
        for entry in self.items:
            if entry.matches(key):
                return entry.value
        return None

    def get_all(self, key: str) -> List[str]:
        key = key.upper()
        return [entry.value for entry in self.items if entry.matches(key)]

    def set(self, key: str, value: str) -> 'VorbisComment':
        """
        Replace every entry for key with a single one.

        The new entry takes the position of the first existing match, or is
        appended when the key is new. A first match already holding value is
        kept as read.
        """
        upper = key.upper()
        items = []
        placed = False
        for entry in self.items:
            if entry.matches(upper):
                if not placed:
                    items.append(entry if entry.value == value else Entry(entry.key, value))
                    placed = True
                continue
            items.append(entry)
        if not placed:
            items.append(Entry(upper, value))
        return replace(self, items=tuple(items))

    def remove(self, key: str) -> 'VorbisComment':
        upper = key.upper()
        return replace(self, items=tuple(e for e in self.items if not e.matches(upper)))


def parse(data: bytes) -> VorbisComment:
    """Parse a comment body (without any packet magic)."""
    reader = ByteReader(data)
    vendor_raw = reader.read(reader.u32le())
    vendor = decode(vendor_raw, TextEncoding.UTF_8)
    count = reader.u32le()
    items = []
    for index in range(count):
        raw = reader.read(reader.u32le())
        text = decode(raw, TextEncoding.UTF_8)
        key, sep, value = text.partition('=')
        if not sep:
            logger.warning(f"Comment entry {index} has no '=', keeping it unread: {text[:40]!r}")
            items.append(Entry(None, text, raw))
            continue
        items.append(Entry(key, value, raw))
    return VorbisComment(vendor=vendor, items=tuple(items), trailer=reader.rest(),
                         vendor_source=(vendor_raw, vendor))


def serialize(comment: VorbisComment) -> bytes:
    out = ByteWriter()
    source = comment.vendor_source
    if source is not None and source[1] == comment.vendor:
        vendor = source[0]
    else:
        vendor = comment.vendor.encode('utf-8')
    out.u32le(len(vendor))
    out.write(vendor)
    out.u32le(len(comment.items))
    for entry in comment.items:
        encoded = entry.encode()
        out.u32le(len(encoded))
        out.write(encoded)
    out.write(comment.trailer)
    return out.getvalue()
