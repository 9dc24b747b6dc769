"""
ID3v2.2 / 2.3 / 2.4 tag codec.

A tag is a 10-byte header, an optional extended header, a run of frames and
optional padding, and (v2.4 only) an optional 10-byte footer. The three major
versions differ only in how frame headers are laid out, so each version is a
``FrameLayout`` entry in ``LAYOUTS`` rather than a subclass.
"""

import logging
import re
import zlib
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .binary import (
    ByteReader,
    ByteWriter,
    SYNCHSAFE_LIMIT,
    decode_synchsafe,
    encode_synchsafe,
    resynchronize,
    unsynchronize,
)
from .encoding import (
    TextEncoding,
    decode,
    encode,
    split_terminated,
    strip_terminators,
    terminator,
)
from .exceptions import (
    CorruptHeaderError,
    FrameSizeOverflowError,
    StructuralError,
    TruncatedDataError,
    UnsupportedVersionError,
)
from .metadata import Picture
from .utils import Config

logger = logging.getLogger(__name__)

HEADER_SIZE = 10
ID3_MAGIC = b'ID3'
FOOTER_MAGIC = b'3DI'

# Tag header flags
TAG_UNSYNC = 0x80
TAG_EXTENDED = 0x40
TAG_V22_COMPRESSED = 0x40
TAG_FOOTER = 0x10

_FRAME_ID = re.compile(rb'[A-Z0-9]{3,4}')


@dataclass(frozen=True)
class FrameLayout:
    """Frame header shape and flag bits of one ID3v2 major version."""
    major: int
    id_width: int
    size_width: int
    synchsafe_sizes: bool
    flag_width: int
    compressed: int = 0
    encrypted: int = 0
    grouping: int = 0
    unsync: int = 0
    data_length: int = 0

    @property
    def header_size(self) -> int:
        return self.id_width + self.size_width + self.flag_width

    @property
    def max_frame_size(self) -> int:
        if self.synchsafe_sizes:
            return SYNCHSAFE_LIMIT - 1
        return (1 << (8 * self.size_width)) - 1

    def read_header(self, reader: ByteReader, synchsafe: Optional[bool] = None) -> Tuple[bytes, int, int]:
        """
        Read one frame header.

        A synchsafe size field with a high bit set cannot be synchsafe and is
        read as a plain big-endian integer. Passing ``synchsafe=False`` reads
        every size that way.
        """
        if synchsafe is None:
            synchsafe = self.synchsafe_sizes
        frame_id = reader.read(self.id_width)
        if self.synchsafe_sizes:
            raw = reader.read(4)
            if synchsafe and not _has_high_bits(raw):
                size = decode_synchsafe(raw)
            else:
                size = int.from_bytes(raw, 'big')
        elif self.size_width == 3:
            size = reader.u24be()
        else:
            size = reader.u32be()
        flags = reader.u16be() if self.flag_width else 0
        return frame_id, size, flags

    def write_frame(self, writer: ByteWriter, frame: 'Frame') -> None:
        frame_id = frame.frame_id.encode('ascii')
        if len(frame_id) != self.id_width:
            raise StructuralError(
                f"Frame id {frame.frame_id!r} does not fit ID3v2.{self.major} ({self.id_width} characters)"
            )
        size = len(frame.payload)
        if size > self.max_frame_size:
            raise StructuralError(f"Frame {frame.frame_id} is too large for ID3v2.{self.major}: {size} bytes")

        writer.write(frame_id)
        if self.synchsafe_sizes:
            writer.synchsafe32(size)
        elif self.size_width == 3:
            writer.u24be(size)
        else:
            writer.u32be(size)
        if self.flag_width:
            writer.u16be(frame.flags)
        writer.write(frame.payload)


LAYOUTS: Dict[int, FrameLayout] = {
    2: FrameLayout(major=2, id_width=3, size_width=3, synchsafe_sizes=False, flag_width=0),
    3: FrameLayout(major=3, id_width=4, size_width=4, synchsafe_sizes=False, flag_width=2,
                   compressed=0x0080, encrypted=0x0040, grouping=0x0020),
    4: FrameLayout(major=4, id_width=4, size_width=4, synchsafe_sizes=True, flag_width=2,
                   compressed=0x0008, encrypted=0x0004, grouping=0x0040,
                   unsync=0x0002, data_length=0x0001),
}


@dataclass(frozen=True)
class Frame:
    """
    One frame as stored in the tag.

    ``payload`` holds the bytes after the frame header exactly as they appear
    in the (tag-level resynchronized) body, so an untouched frame is written
    back bit for bit.
    """
    frame_id: str
    payload: bytes
    flags: int = 0

    @property
    def size(self) -> int:
        return len(self.payload)

    def content(self, layout: FrameLayout, tag_unsync: bool = False) -> Optional[bytes]:
        """
        Frame data with per-frame transforms undone.

        Returns None for encrypted frames or data that cannot be inflated;
        those frames stay opaque.
        """
        data = self.payload
        flags = self.flags

        if layout.encrypted and flags & layout.encrypted:
            logger.debug(f"Frame {self.frame_id} is encrypted; keeping it opaque")
            return None

        if layout.major == 4:
            if flags & layout.grouping:
                data = data[1:]
            if flags & (layout.data_length | layout.compressed):
                data = data[4:]
            if flags & layout.unsync or tag_unsync:
                data = resynchronize(data)
        elif layout.major == 3:
            if flags & layout.compressed:
                data = data[4:]
            if flags & layout.grouping:
                data = data[1:]

        if layout.compressed and flags & layout.compressed:
            try:
                data = zlib.decompress(data)
            except zlib.error as e:
                logger.warning(f"Cannot inflate compressed frame {self.frame_id}: {e}")
                return None
        return data


@dataclass(frozen=True)
class Id3v2Tag:
    """Parsed ID3v2 tag plus the buffer it came from."""
    major: int
    minor: int
    flags: int
    frames: Tuple[Frame, ...]
    start: int = 0
    end: int = 0
    truncated: bool = False
    source: bytes = field(default=b'', repr=False)

    @property
    def layout(self) -> FrameLayout:
        return LAYOUTS[self.major]

    @property
    def version(self) -> str:
        return f"2.{self.major}"

    @property
    def unsynchronized(self) -> bool:
        return bool(self.flags & TAG_UNSYNC)

    @property
    def has_footer(self) -> bool:
        return self.major == 4 and bool(self.flags & TAG_FOOTER)

    def frames_with_id(self, *frame_ids: str) -> List[Frame]:
        return [f for f in self.frames if f.frame_id in frame_ids]

    def content(self, frame: Frame) -> Optional[bytes]:
        return frame.content(self.layout, self.major == 4 and self.unsynchronized)

    def new_frame(self, frame_id: str, content: bytes) -> Frame:
        """Build a frame for this tag; unsynchronized v2.4 tags flag it per frame."""
        layout = self.layout
        if layout.major == 4 and self.unsynchronized:
            return Frame(frame_id, unsynchronize(content), layout.unsync)
        return Frame(frame_id, bytes(content), 0)

    def with_frames(self, frames) -> 'Id3v2Tag':
        return replace(self, frames=tuple(frames))


def has_tag(data: bytes) -> bool:
    return data[:3] == ID3_MAGIC


def _parse_header(data: bytes) -> Tuple[int, int, int, int]:
    if len(data) < HEADER_SIZE:
        raise TruncatedDataError(f"ID3v2 header needs {HEADER_SIZE} bytes, got {len(data)}")
    if data[:3] != ID3_MAGIC:
        raise CorruptHeaderError("Missing 'ID3' magic")
    major, minor, flags = data[3], data[4], data[5]
    if major == 0xFF or minor == 0xFF:
        raise CorruptHeaderError(f"Invalid ID3v2 version bytes {major:#04x} {minor:#04x}")
    if major not in LAYOUTS:
        raise UnsupportedVersionError(f"Unsupported ID3v2 major version {major}")
    if major == 2 and flags & TAG_V22_COMPRESSED:
        raise UnsupportedVersionError("Compressed ID3v2.2 tags are not supported")
    size = decode_synchsafe(data[6:10])
    return major, minor, flags, size


def _skip_extended_header(body: bytes, major: int) -> bytes:
    reader = ByteReader(body)
    if major == 3:
        size = reader.u32be()
        reader.skip(size)
    else:
        size = reader.synchsafe32()
        if size < 6:
            raise CorruptHeaderError(f"Extended header size {size} is too small")
        reader.skip(size - 4)
    logger.debug(f"Skipped ID3v2.{major} extended header of {size} bytes")
    return reader.rest()


def _has_high_bits(raw: bytes) -> bool:
    return any(byte & 0x80 for byte in raw)


def _count_frames(body: bytes, layout: FrameLayout, synchsafe: bool) -> int:
    reader = ByteReader(body)
    count = 0
    while reader.remaining >= layout.header_size and reader.peek(1) != b'\x00':
        frame_id, size, _ = layout.read_header(reader, synchsafe)
        if not _FRAME_ID.fullmatch(frame_id) or size > reader.remaining:
            break
        reader.skip(size)
        count += 1
    return count


def _synchsafe_frame_sizes(body: bytes, layout: FrameLayout) -> bool:
    """
    Decide how an ID3v2.4 tag stores its frame sizes.

    Some writers put plain big-endian sizes in v2.4 tags. The frames are
    walked both ways and the reading that finds more of them wins; a tie
    keeps the synchsafe reading.
    """
    if not layout.synchsafe_sizes:
        return False
    as_synchsafe = _count_frames(body, layout, True)
    as_plain = _count_frames(body, layout, False)
    if as_plain > as_synchsafe:
        logger.warning(f"ID3v2.{layout.major} frame sizes are not synchsafe; reading them as plain integers")
        return False
    return True


def _parse_frames(body: bytes, layout: FrameLayout) -> Tuple[List[Frame], bool]:
    frames = []
    reader = ByteReader(body)
    synchsafe = _synchsafe_frame_sizes(body, layout)
    while reader.remaining >= layout.header_size:
        if reader.peek(1) == b'\x00':
            break

        frame_id, size, flags = layout.read_header(reader, synchsafe)
        if not _FRAME_ID.fullmatch(frame_id) or len(frame_id) != layout.id_width:
            logger.warning(f"Invalid frame id {frame_id!r} at offset {reader.tell() - layout.header_size}; "
                           f"ignoring the rest of the tag")
            return frames, True

        if size > reader.remaining:
            message = (f"Frame {frame_id.decode('ascii')} declares {size} bytes but only "
                       f"{reader.remaining} remain in the tag")
            if Config.STRICT_FRAME_SIZES:
                raise FrameSizeOverflowError(message)
            logger.warning(f"{message}; keeping {len(frames)} parsed frames")
            return frames, True

        frames.append(Frame(frame_id.decode('ascii'), reader.read(size), flags))
    return frames, False


def parse(data: bytes) -> Id3v2Tag:
    """
    Parse the ID3v2 tag at the start of data.

    Raises:
        CorruptHeaderError: bad magic, version bytes or size
        UnsupportedVersionError: major version outside 2-4, compressed v2.2 tag
        TruncatedDataError: declared tag size exceeds the buffer
        FrameSizeOverflowError: frame overruns the tag and Config.STRICT_FRAME_SIZES is set
    """
    data = bytes(data)
    major, minor, flags, size = _parse_header(data)
    layout = LAYOUTS[major]

    end = HEADER_SIZE + size
    if end > len(data):
        raise TruncatedDataError(f"ID3v2 tag declares {size} bytes but the file has {len(data) - HEADER_SIZE}")
    body = data[HEADER_SIZE:end]

    if major < 4 and flags & TAG_UNSYNC:
        body = resynchronize(body)
    if major >= 3 and flags & TAG_EXTENDED:
        body = _skip_extended_header(body, major)

    if major == 4 and flags & TAG_FOOTER:
        footer = data[end:end + HEADER_SIZE]
        if footer[:3] == FOOTER_MAGIC:
            end += HEADER_SIZE
        else:
            logger.warning("ID3v2.4 footer flag set but no '3DI' footer found")

    frames, truncated = _parse_frames(body, layout)
    logger.debug(f"Parsed ID3v2.{major}.{minor} tag: {len(frames)} frames, {end} bytes")
    return Id3v2Tag(major=major, minor=minor, flags=flags, frames=tuple(frames),
                    start=0, end=end, truncated=truncated, source=data)


def serialize(tag: Id3v2Tag) -> bytes:
    """
    Build tag bytes: header, frames, and the footer if the tag had one.

    The extended header is dropped and no padding is written.
    """
    layout = tag.layout
    body = ByteWriter()
    for frame in tag.frames:
        layout.write_frame(body, frame)
    body_bytes = body.getvalue()

    flags = tag.flags & ~TAG_EXTENDED
    if tag.major < 4 and flags & TAG_UNSYNC:
        body_bytes = unsynchronize(body_bytes)
    if len(body_bytes) >= SYNCHSAFE_LIMIT:
        raise StructuralError(f"ID3v2 tag body of {len(body_bytes)} bytes exceeds the synchsafe limit")

    out = ByteWriter()
    out.write(ID3_MAGIC)
    out.u8(tag.major)
    out.u8(tag.minor)
    out.u8(flags)
    slot = out.reserve(4)
    out.write(body_bytes)
    out.patch_synchsafe32(slot, len(out) - HEADER_SIZE)

    if tag.has_footer:
        out.write(FOOTER_MAGIC + bytes([tag.major, tag.minor, flags]) + encode_synchsafe(len(body_bytes)))
    return out.getvalue()


def write(tag: Id3v2Tag) -> bytes:
    """Splice the serialized tag in place of the original tag region."""
    return serialize(tag) + tag.source[tag.end:]


# ---------- Frame payloads ----------
def decode_text(content: bytes) -> str:
    """Text frame content: encoding byte then one or more terminated strings joined with '/'."""
    if not content:
        return ''
    enc = TextEncoding.from_byte(content[0])
    rest = content[1:]
    values = []
    while rest:
        text, rest = split_terminated(rest, enc)
        values.append(decode(text, enc))
    return '/'.join(v for v in values if v)


def encode_text(text: str, enc: TextEncoding) -> bytes:
    return bytes([enc]) + encode(text, enc)


@dataclass(frozen=True)
class CommentContent:
    """COMM / USLT (COM / ULT in v2.2) content."""
    language: str
    description: str
    text: str


def decode_comment(content: bytes) -> CommentContent:
    reader = ByteReader(content)
    enc = TextEncoding.from_byte(reader.u8())
    language = reader.read(3).decode('latin-1')
    desc, text = split_terminated(reader.rest(), enc)
    return CommentContent(language, decode(desc, enc), decode(strip_terminators(text, enc), enc))


def encode_comment(comment: CommentContent, enc: TextEncoding) -> bytes:
    language = comment.language.encode('latin-1', errors='replace')[:3].ljust(3, b' ')
    return (bytes([enc]) + language + encode(comment.description, enc) + terminator(enc)
            + encode(comment.text, enc))


_V22_IMAGE_FORMATS = {'JPG': 'image/jpeg', 'PNG': 'image/png', 'GIF': 'image/gif', 'BMP': 'image/bmp'}


def _mime_from_v22(image_format: str) -> str:
    upper = image_format.upper().strip()
    return _V22_IMAGE_FORMATS.get(upper, f"image/{upper.lower()}" if upper else '')


def _v22_from_mime(mime_type: str) -> bytes:
    for image_format, mime in _V22_IMAGE_FORMATS.items():
        if mime == mime_type.lower():
            return image_format.encode('ascii')
    subtype = mime_type.split('/')[-1].upper()
    return subtype.encode('latin-1', errors='replace')[:3].ljust(3, b' ')


def decode_picture(content: bytes, major: int) -> Picture:
    """APIC (PIC in v2.2) content to a Picture."""
    reader = ByteReader(content)
    enc = TextEncoding.from_byte(reader.u8())
    if major == 2:
        mime_type = _mime_from_v22(reader.read(3).decode('latin-1'))
        rest = reader.rest()
    else:
        mime, rest = split_terminated(reader.rest(), TextEncoding.ISO_8859_1)
        mime_type = mime.decode('latin-1')
    if not rest:
        raise TruncatedDataError("Picture frame ends before the picture type")
    picture_type = rest[0]
    desc, data = split_terminated(rest[1:], enc)
    return Picture(mime_type=mime_type, description=decode(desc, enc), data=data,
                   picture_type=picture_type)


def encode_picture(picture: Picture, major: int, enc: TextEncoding) -> bytes:
    out = ByteWriter()
    out.u8(enc)
    if major == 2:
        out.write(_v22_from_mime(picture.mime_type))
    else:
        out.write(picture.mime_type.encode('latin-1', errors='replace') + b'\x00')
    out.u8(picture.picture_type & 0xFF)
    out.write(encode(picture.description, enc) + terminator(enc))
    out.write(picture.data)
    return out.getvalue()
