"""
Field mapping between format-native tags and CanonicalMetadata.

Each format has a reader that projects its container onto the canonical keys
and an ``apply_*`` function that merges a normalized delta into a new
container. A key missing from the delta is left alone, ``None`` deletes it,
anything else replaces it.
"""

import base64
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from . import flac, id3v1, id3v2, ogg, vorbis
from .encoding import pick_encoding
from .exceptions import TagforgeError, TruncatedDataError, ValidationError
from .metadata import FRONT_COVER, TEXT_FIELDS, CanonicalMetadata, Picture

logger = logging.getLogger(__name__)

_YEAR = re.compile(r'^\s*(\d{4})')
_TCON_REF = re.compile(r'^\((\d+)\)(.*)$')


# ---------- Value transforms ----------
def extract_year(value: Optional[str]) -> Optional[str]:
    """Leading 4-digit year of an ISO-8601 style date; other text is kept."""
    if not value:
        return None
    match = _YEAR.match(value)
    return match.group(1) if match else value.strip()


def parse_track(value: Optional[str]) -> Optional[str]:
    """'N/total' to 'N'."""
    if not value:
        return None
    number = value.split('/', 1)[0].strip()
    return number or None


def merge_track(new: str, existing: Optional[str]) -> str:
    """Carry the '/total' part of the existing value over to a new bare number."""
    if '/' in new or not existing or '/' not in existing:
        return new
    total = existing.split('/', 1)[1].strip()
    return f"{new}/{total}" if total else new


def resolve_genre(value: Optional[str]) -> Optional[str]:
    """
    Resolve ID3v2 TCON numeric references through the ID3v1 genre table.

    ``"(17)"``, ``"(17)Rock"`` and ``"17"`` all become ``"Rock"``. Anything
    that is not a known reference is returned unchanged.
    """
    if not value:
        return None
    text = value.strip()
    match = _TCON_REF.match(text)
    if match:
        index, refinement = int(match.group(1)), match.group(2).strip()
        if refinement:
            return refinement
        if index < len(id3v1.GENRES):
            return id3v1.GENRES[index]
        return text
    if text.isdecimal() and int(text) < len(id3v1.GENRES):
        return id3v1.GENRES[int(text)]
    return value


def _front_cover(pictures: Sequence[Picture]) -> Optional[Picture]:
    for picture in pictures:
        if picture.picture_type == FRONT_COVER:
            return picture
    return pictures[0] if pictures else None


# ---------- ID3v1 ----------
def read_id3v1(tag: id3v1.Id3v1Tag) -> CanonicalMetadata:
    return CanonicalMetadata(
        title=tag.title or None,
        artist=tag.artist or None,
        album=tag.album or None,
        year=tag.year or None,
        track=str(tag.track) if tag.track else None,
        genre=id3v1.genre_name(tag.genre),
        comment=tag.comment or None,
    )


def apply_id3v1(tag: id3v1.Id3v1Tag, delta: Dict[str, Any]) -> id3v1.Id3v1Tag:
    changes = {}
    for key, value in delta.items():
        if key in ('lyrics', 'cover'):
            logger.warning(f"ID3v1 cannot store {key}; ignoring it")
        elif key == 'track':
            changes['track'] = _id3v1_track(value)
        elif key == 'genre':
            index = id3v1.genre_index(value)
            if value and index == id3v1.NO_GENRE:
                logger.warning(f"Genre {value!r} is not in the ID3v1 table; writing no genre")
            changes['genre'] = index
        elif key == 'year':
            changes['year'] = extract_year(value) or ''
        else:
            changes[key] = value or ''
    return tag.updated(**changes)


def _id3v1_track(value: Optional[str]) -> Optional[int]:
    number = parse_track(value)
    if number is None:
        return None
    if not number.isdecimal() or not 1 <= int(number) <= 255:
        raise ValidationError(f"ID3v1 track must be a number from 1 to 255, got {value!r}")
    return int(number)


# ---------- ID3v2 ----------
ID3V2_TEXT_FRAMES = {
    'title': {2: ('TT2',), 3: ('TIT2',), 4: ('TIT2',)},
    'artist': {2: ('TP1',), 3: ('TPE1',), 4: ('TPE1',)},
    'album': {2: ('TAL',), 3: ('TALB',), 4: ('TALB',)},
    'year': {2: ('TYE',), 3: ('TYER', 'TDRC'), 4: ('TDRC', 'TYER')},
    'track': {2: ('TRK',), 3: ('TRCK',), 4: ('TRCK',)},
    'genre': {2: ('TCO',), 3: ('TCON',), 4: ('TCON',)},
}
ID3V2_COMMENT_FRAMES = {
    'comment': {2: 'COM', 3: 'COMM', 4: 'COMM'},
    'lyrics': {2: 'ULT', 3: 'USLT', 4: 'USLT'},
}
ID3V2_PICTURE_FRAME = {2: 'PIC', 3: 'APIC', 4: 'APIC'}

_ID3V2_TRANSFORMS = {
    'year': extract_year,
    'track': parse_track,
    'genre': resolve_genre,
}


def _id3v2_raw_text(tag: id3v2.Id3v2Tag, frame_ids: Sequence[str]) -> Optional[str]:
    for frame_id in frame_ids:
        for frame in tag.frames_with_id(frame_id):
            content = tag.content(frame)
            if content is not None:
                return id3v2.decode_text(content) or None
    return None


def _decode_comment_frame(tag: id3v2.Id3v2Tag, frame: id3v2.Frame) -> Optional[id3v2.CommentContent]:
    """Decoded COMM/USLT content, or None for an opaque or malformed frame."""
    content = tag.content(frame)
    if content is None:
        return None
    try:
        return id3v2.decode_comment(content)
    except TruncatedDataError as e:
        logger.warning(f"Skipping malformed {frame.frame_id} frame: {e}")
        return None


def _decode_picture_frame(tag: id3v2.Id3v2Tag, frame: id3v2.Frame) -> Optional[Picture]:
    content = tag.content(frame)
    if content is None:
        return None
    try:
        return id3v2.decode_picture(content, tag.major)
    except TruncatedDataError as e:
        logger.warning(f"Skipping malformed {frame.frame_id} frame: {e}")
        return None


def _id3v2_comment(tag: id3v2.Id3v2Tag, frame_id: str) -> Optional[id3v2.CommentContent]:
    comments = [c for c in (_decode_comment_frame(tag, f) for f in tag.frames_with_id(frame_id))
                if c is not None]
    for comment in comments:
        if not comment.description:
            return comment
    return comments[0] if comments else None


def _id3v2_pictures(tag: id3v2.Id3v2Tag) -> List[Picture]:
    pictures = (_decode_picture_frame(tag, f) for f in tag.frames_with_id(ID3V2_PICTURE_FRAME[tag.major]))
    return [p for p in pictures if p is not None]


def read_id3v2(tag: id3v2.Id3v2Tag) -> CanonicalMetadata:
    values = {}
    for key, ids in ID3V2_TEXT_FRAMES.items():
        raw = _id3v2_raw_text(tag, ids[tag.major])
        transform = _ID3V2_TRANSFORMS.get(key)
        values[key] = transform(raw) if transform else raw
    for key, ids in ID3V2_COMMENT_FRAMES.items():
        comment = _id3v2_comment(tag, ids[tag.major])
        values[key] = comment.text if comment and comment.text else None
    values['cover'] = _front_cover(_id3v2_pictures(tag))
    return CanonicalMetadata(**values)


def _replace_frames(frames: List[id3v2.Frame], matches: List[int],
                    new_frame: Optional[id3v2.Frame]) -> List[id3v2.Frame]:
    """
    Drop the frames at the matched indexes and put new_frame at the first
    match, or append it when nothing matched.
    """
    target = matches[0] if matches else None
    out = []
    for index, frame in enumerate(frames):
        if index == target and new_frame is not None:
            out.append(new_frame)
        elif index not in matches:
            out.append(frame)
    if new_frame is not None and target is None:
        out.append(new_frame)
    return out


def apply_id3v2(tag: id3v2.Id3v2Tag, delta: Dict[str, Any]) -> id3v2.Id3v2Tag:
    """Merge a normalized delta into the frame list of tag."""
    major = tag.major
    frames = list(tag.frames)

    for key, value in delta.items():
        if key in ID3V2_TEXT_FRAMES:
            ids = ID3V2_TEXT_FRAMES[key][major]
            matches = [i for i, f in enumerate(frames) if f.frame_id in ids]
            new_frame = None
            if value is not None:
                if key == 'track':
                    value = merge_track(value, _id3v2_raw_text(tag, ids))
                enc = pick_encoding(value, major)
                new_frame = tag.new_frame(ids[0], id3v2.encode_text(value, enc))
            frames = _replace_frames(frames, matches, new_frame)

        elif key in ID3V2_COMMENT_FRAMES:
            frames = _apply_id3v2_comment(tag, frames, ID3V2_COMMENT_FRAMES[key][major], value)

        elif key == 'cover':
            frames = _apply_id3v2_picture(tag, frames, value)

    return tag.with_frames(frames)


def _apply_id3v2_comment(tag: id3v2.Id3v2Tag, frames: List[id3v2.Frame], frame_id: str,
                         value: Optional[str]) -> List[id3v2.Frame]:
    matches = [i for i, f in enumerate(frames) if f.frame_id == frame_id]
    if value is None:
        return _replace_frames(frames, matches, None)

    target = None
    language, description = 'eng', ''
    for index in matches:
        existing = _decode_comment_frame(tag, frames[index])
        if existing is None:
            continue
        if target is None or not existing.description:
            target, language, description = index, existing.language, existing.description
            if not existing.description:
                break

    enc = pick_encoding(value + description, tag.major)
    content = id3v2.encode_comment(id3v2.CommentContent(language, description, value), enc)
    new_frame = tag.new_frame(frame_id, content)
    if target is None:
        return frames + [new_frame]
    frames = list(frames)
    frames[target] = new_frame
    return frames


def _apply_id3v2_picture(tag: id3v2.Id3v2Tag, frames: List[id3v2.Frame],
                         picture: Optional[Picture]) -> List[id3v2.Frame]:
    frame_id = ID3V2_PICTURE_FRAME[tag.major]
    matches = [i for i, f in enumerate(frames) if f.frame_id == frame_id]
    if picture is None:
        return _replace_frames(frames, matches, None)

    target = None
    for index in matches:
        existing = _decode_picture_frame(tag, frames[index])
        if existing is None:
            continue
        if target is None:
            target = index
        if existing.picture_type == FRONT_COVER:
            target = index
            break

    enc = pick_encoding(picture.description, tag.major)
    new_frame = tag.new_frame(frame_id, id3v2.encode_picture(picture, tag.major, enc))
    if target is None:
        return frames + [new_frame]
    frames = list(frames)
    frames[target] = new_frame
    return frames


# ---------- Vorbis Comment (FLAC, OGG Vorbis, Opus) ----------
VORBIS_KEYS = {
    'title': ('TITLE',),
    'artist': ('ARTIST',),
    'album': ('ALBUM',),
    'year': ('DATE', 'YEAR'),
    'track': ('TRACKNUMBER',),
    'genre': ('GENRE',),
    'comment': ('COMMENT', 'DESCRIPTION'),
    'lyrics': ('LYRICS', 'UNSYNCEDLYRICS'),
}
PICTURE_KEY = 'METADATA_BLOCK_PICTURE'
LEGACY_COVER_KEY = 'COVERART'
LEGACY_COVER_MIME_KEY = 'COVERARTMIME'
COVER_KEYS = (PICTURE_KEY, LEGACY_COVER_KEY, LEGACY_COVER_MIME_KEY)

_VORBIS_TRANSFORMS = {
    'year': extract_year,
    'track': parse_track,
}


def _vorbis_raw(comment: vorbis.VorbisComment, key: str) -> Optional[str]:
    for name in VORBIS_KEYS[key]:
        value = comment.get(name)
        if value:
            return value
    return None


def _vorbis_cover(comment: vorbis.VorbisComment) -> Optional[Picture]:
    pictures = []
    for encoded in comment.get_all(PICTURE_KEY):
        try:
            pictures.append(flac.parse_picture(base64.b64decode(encoded)))
        except (ValueError, TagforgeError) as e:
            logger.warning(f"Skipping unreadable {PICTURE_KEY} entry: {e}")
    if pictures:
        return _front_cover(pictures)

    legacy = comment.get(LEGACY_COVER_KEY)
    if legacy:
        try:
            data = base64.b64decode(legacy)
        except ValueError as e:
            logger.warning(f"Skipping unreadable {LEGACY_COVER_KEY} entry: {e}")
            return None
        mime_type = comment.get(LEGACY_COVER_MIME_KEY) or 'image/jpeg'
        return Picture(mime_type=mime_type, data=data)
    return None


def read_vorbis(comment: Optional[vorbis.VorbisComment],
                pictures: Sequence[Picture] = ()) -> CanonicalMetadata:
    """Canonical view of a comment; native FLAC pictures take precedence over embedded ones."""
    values = {}
    if comment is not None:
        for key in TEXT_FIELDS:
            raw = _vorbis_raw(comment, key)
            transform = _VORBIS_TRANSFORMS.get(key)
            values[key] = transform(raw) if transform else raw
    cover = _front_cover(pictures)
    if cover is None and comment is not None:
        cover = _vorbis_cover(comment)
    values['cover'] = cover
    return CanonicalMetadata(**values)


def apply_vorbis(comment: vorbis.VorbisComment, delta: Dict[str, Any],
                 embed_cover: bool = True) -> vorbis.VorbisComment:
    """
    Merge a normalized delta into a comment.

    With ``embed_cover`` the cover is stored as a METADATA_BLOCK_PICTURE
    entry; otherwise (FLAC) a cover deletion only clears embedded entries.
    """
    for key, value in delta.items():
        if key == 'cover':
            for name in COVER_KEYS:
                comment = comment.remove(name)
            if value is not None and embed_cover:
                encoded = base64.b64encode(flac.serialize_picture(value)).decode('ascii')
                comment = comment.set(PICTURE_KEY, encoded)
            continue

        primary, *aliases = VORBIS_KEYS[key]
        for alias in aliases:
            comment = comment.remove(alias)
        if value is None:
            comment = comment.remove(primary)
        else:
            if key == 'track':
                value = merge_track(value, comment.get(primary))
            comment = comment.set(primary, value)
    return comment


def read_flac(container: flac.FlacContainer) -> CanonicalMetadata:
    return read_vorbis(container.vorbis_comment(), container.pictures())


def apply_flac(container: flac.FlacContainer, delta: Dict[str, Any]) -> flac.FlacContainer:
    blocks = list(container.blocks)
    existing = container.vorbis_comment()

    comment_delta = {k: v for k, v in delta.items() if k != 'cover'}
    if 'cover' in delta and existing is not None and any(existing.get(k) for k in COVER_KEYS):
        comment_delta['cover'] = None

    creates_entries = any(v is not None for v in comment_delta.values())
    if comment_delta and (existing is not None or creates_entries):
        comment = apply_vorbis(existing or vorbis.VorbisComment(), comment_delta, embed_cover=False)
        blocks = flac.set_vorbis_comment(blocks, comment)

    if 'cover' in delta:
        if delta['cover'] is None:
            blocks = flac.remove_pictures(blocks)
        else:
            blocks = flac.set_picture(blocks, delta['cover'])

    return container.with_blocks(blocks)


def read_ogg(container: ogg.OggContainer) -> CanonicalMetadata:
    return read_vorbis(container.comment)


def apply_ogg(container: ogg.OggContainer, delta: Dict[str, Any]) -> ogg.OggContainer:
    return container.with_comment(apply_vorbis(container.comment, delta))
