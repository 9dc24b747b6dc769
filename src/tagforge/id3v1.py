"""
ID3v1 / ID3v1.1 trailer codec.

The tag is the last 128 bytes of the file::

    "TAG" title[30] artist[30] album[30] year[4] comment[30] genre[1]

In v1.1 byte 125 is zero and byte 126 holds the track number, leaving 28
bytes for the comment.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional

from .exceptions import CorruptHeaderError, TruncatedDataError

logger = logging.getLogger(__name__)

TAG_SIZE = 128
TAG_ID = b'TAG'
NO_GENRE = 255

# (offset, width) of each text field inside the 128-byte block
FIELD_LAYOUT = {
    'title': (3, 30),
    'artist': (33, 30),
    'album': (63, 30),
    'year': (93, 4),
    'comment': (97, 30),
}
V11_COMMENT_WIDTH = 28
V11_MARKER_OFFSET = 125
V11_TRACK_OFFSET = 126
GENRE_OFFSET = 127

GENRES = (
    'Blues', 'Classic Rock', 'Country', 'Dance', 'Disco',
    'Funk', 'Grunge', 'Hip-Hop', 'Jazz', 'Metal', 'New Age', 'Oldies',
    'Other', 'Pop', 'R&B', 'Rap', 'Reggae', 'Rock', 'Techno', 'Industrial',
    'Alternative', 'Ska', 'Death Metal', 'Pranks', 'Soundtrack',
    'Euro-Techno', 'Ambient', 'Trip-Hop', 'Vocal', 'Jazz+Funk', 'Fusion',
    'Trance', 'Classical', 'Instrumental', 'Acid', 'House', 'Game',
    'Sound Clip', 'Gospel', 'Noise', 'AlternRock', 'Bass', 'Soul', 'Punk',
    'Space', 'Meditative', 'Instrumental Pop', 'Instrumental Rock',
    'Ethnic', 'Gothic', 'Darkwave', 'Techno-Industrial', 'Electronic',
    'Pop-Folk', 'Eurodance', 'Dream', 'Southern Rock', 'Comedy', 'Cult',
    'Gangsta', 'Top 40', 'Christian Rap', 'Pop/Funk', 'Jungle',
    'Native American', 'Cabaret', 'New Wave', 'Psychadelic', 'Rave',
    'Showtunes', 'Trailer', 'Lo-Fi', 'Tribal', 'Acid Punk', 'Acid Jazz',
    'Polka', 'Retro', 'Musical', 'Rock & Roll', 'Hard Rock',
)

_GENRE_LOOKUP = {name.lower(): index for index, name in enumerate(GENRES)}
_GENRE_REF = re.compile(r'^\(?(\d+)\)?$')


def genre_name(index: int) -> Optional[str]:
    """
    Resolve a genre byte to text.

    255 means no genre. Indexes outside the table are kept as their decimal text.
    """
    if index == NO_GENRE:
        return None
    if 0 <= index < len(GENRES):
        return GENRES[index]
    return str(index)


def genre_index(value: Optional[str]) -> int:
    """
    Resolve a genre name or numeric reference to a genre byte.

    Accepts names (case-insensitive), ``"17"`` and ``"(17)"``. Anything else
    maps to 255.
    """
    if not value:
        return NO_GENRE
    text = value.strip()
    index = _GENRE_LOOKUP.get(text.lower())
    if index is not None:
        return index
    match = _GENRE_REF.match(text)
    if match:
        number = int(match.group(1))
        if 0 <= number < NO_GENRE:
            return number
    return NO_GENRE


@dataclass(frozen=True)
class Id3v1Tag:
    """Decoded ID3v1 trailer. ``offset`` is where the trailer starts in the file."""
    title: str = ''
    artist: str = ''
    album: str = ''
    year: str = ''
    comment: str = ''
    track: Optional[int] = None
    genre: int = NO_GENRE
    offset: int = 0

    @property
    def version(self) -> str:
        return '1.1' if self.track else '1.0'

    def updated(self, **changes) -> 'Id3v1Tag':
        return replace(self, **changes)


def has_tag(data: bytes) -> bool:
    return len(data) >= TAG_SIZE and data[-TAG_SIZE:-TAG_SIZE + 3] == TAG_ID


def _read_text(block: bytes, offset: int, width: int) -> str:
    raw = block[offset:offset + width]
    end = raw.find(b'\x00')
    if end >= 0:
        raw = raw[:end]
    return raw.decode('latin-1').strip()


def parse(data: bytes) -> Id3v1Tag:
    """
    Parse the ID3v1 trailer of a file buffer.

    Raises:
        TruncatedDataError: buffer shorter than 128 bytes
        CorruptHeaderError: last 128 bytes do not start with "TAG"
    """
    if len(data) < TAG_SIZE:
        raise TruncatedDataError(f"Need {TAG_SIZE} bytes for an ID3v1 tag, got {len(data)}")
    block = bytes(data[-TAG_SIZE:])
    if block[:3] != TAG_ID:
        raise CorruptHeaderError("No ID3v1 'TAG' marker in the last 128 bytes")

    values = {name: _read_text(block, *layout) for name, layout in FIELD_LAYOUT.items()}

    track = None
    if block[V11_MARKER_OFFSET] == 0 and block[V11_TRACK_OFFSET] != 0:
        track = block[V11_TRACK_OFFSET]
        values['comment'] = _read_text(block, FIELD_LAYOUT['comment'][0], V11_COMMENT_WIDTH)

    tag = Id3v1Tag(track=track, genre=block[GENRE_OFFSET], offset=len(data) - TAG_SIZE, **values)
    logger.debug(f"Parsed ID3v{tag.version} trailer at offset {tag.offset}")
    return tag


def _write_text(block: bytearray, value: str, offset: int, width: int) -> None:
    raw = value.encode('latin-1', errors='replace')[:width]
    block[offset:offset + len(raw)] = raw


def serialize(tag: Id3v1Tag) -> bytes:
    """Build the 128-byte trailer; fields are truncated and zero padded."""
    block = bytearray(TAG_SIZE)
    block[:3] = TAG_ID
    for name in ('title', 'artist', 'album', 'year'):
        _write_text(block, getattr(tag, name), *FIELD_LAYOUT[name])

    comment_offset, comment_width = FIELD_LAYOUT['comment']
    track = tag.track if tag.track and 1 <= tag.track <= 255 else None
    if track is not None:
        comment_width = V11_COMMENT_WIDTH
    _write_text(block, tag.comment, comment_offset, comment_width)
    if track is not None:
        block[V11_MARKER_OFFSET] = 0
        block[V11_TRACK_OFFSET] = track

    block[GENRE_OFFSET] = tag.genre & 0xFF
    return bytes(block)


def write(data: bytes, tag: Id3v1Tag) -> bytes:
    """Replace the trailing tag of data (or append one) and return the new buffer."""
    body = data[:-TAG_SIZE] if has_tag(data) else data
    return bytes(body) + serialize(tag)
