"""
OGG page/packet codec with Vorbis Comment support for OGG Vorbis and Opus.

Page layout (all integers little-endian)::

    "OggS" version(1) flags(1) granule(8) serial(4) sequence(4) crc(4)
    segment_count(1) lacing[segment_count] body

Packets are split into 255-byte segments; a lacing value below 255 ends a
packet, so a packet may continue across page boundaries.
"""

import logging
import zlib
from dataclasses import dataclass, field, replace
from typing import Iterator, List, Optional, Sequence, Tuple

from .binary import ByteReader, ByteWriter
from .exceptions import CorruptHeaderError, StructuralError, TruncatedDataError, UnknownFormatError
from .utils import Config
from . import vorbis

logger = logging.getLogger(__name__)

OGG_MAGIC = b'OggS'
PAGE_HEADER_SIZE = 27
CRC_OFFSET = 22
MAX_SEGMENTS = 255

FLAG_CONTINUED = 0x01
FLAG_FIRST = 0x02
FLAG_LAST = 0x04

VORBIS_ID = b'\x01vorbis'
VORBIS_COMMENT = b'\x03vorbis'
OPUS_ID = b'OpusHead'
OPUS_COMMENT = b'OpusTags'

CODEC_VORBIS = 'ogg'
CODEC_OPUS = 'opus'
HEADER_PACKETS = {CODEC_VORBIS: 3, CODEC_OPUS: 2}


# Reverses the bit order of a byte
_BITSWAP = bytes(int(f'{i:08b}'[::-1], 2) for i in range(256))


def ogg_crc(data: bytes) -> int:
    """
    CRC-32 as used by OGG: polynomial 0x04C11DB7, zero init, unreflected, no final xor.

    zlib computes the reflected form of the same polynomial, so the input
    bytes and the result are bit-reversed around it. A starting value of
    0xFFFFFFFF cancels zlib's initial inversion.
    """
    crc = ~zlib.crc32(bytes(data).translate(_BITSWAP), 0xFFFFFFFF) & 0xFFFFFFFF
    return int.from_bytes(crc.to_bytes(4, 'big').translate(_BITSWAP), 'little')


@dataclass(frozen=True)
class OggPage:
    flags: int
    granule: int
    serial: int
    sequence: int
    segments: Tuple[int, ...]
    body: bytes
    crc: int = 0
    offset: int = 0
    raw: bytes = field(default=b'', repr=False)

    @property
    def continued(self) -> bool:
        return bool(self.flags & FLAG_CONTINUED)

    @property
    def first(self) -> bool:
        return bool(self.flags & FLAG_FIRST)

    @property
    def last(self) -> bool:
        return bool(self.flags & FLAG_LAST)

    @property
    def size(self) -> int:
        return PAGE_HEADER_SIZE + len(self.segments) + len(self.body)

    def to_bytes(self) -> bytes:
        """Serialize with a freshly computed CRC."""
        out = ByteWriter()
        out.write(OGG_MAGIC)
        out.u8(0)
        out.u8(self.flags)
        out.i64le(self.granule)
        out.u32le(self.serial)
        out.u32le(self.sequence)
        slot = out.reserve(4)
        out.u8(len(self.segments))
        out.write(bytes(self.segments))
        out.write(self.body)
        out.patch_u32le(slot, ogg_crc(out.getvalue()))
        return out.getvalue()

    def renumbered(self, sequence: int) -> bytes:
        return replace(self, sequence=sequence).to_bytes()


def parse_page(data: bytes, offset: int = 0, verify_crc: Optional[bool] = None) -> OggPage:
    """
    Parse one page starting at offset.

    Raises:
        CorruptHeaderError: bad capture pattern, version or CRC
        TruncatedDataError: page runs past the end of data
    """
    if verify_crc is None:
        verify_crc = Config.VERIFY_OGG_CRC
    reader = ByteReader(data, offset)
    if reader.read(4) != OGG_MAGIC:
        raise CorruptHeaderError(f"Missing 'OggS' capture pattern at offset {offset}")
    version = reader.u8()
    if version != 0:
        raise CorruptHeaderError(f"Unsupported OGG stream structure version {version} at offset {offset}")
    flags = reader.u8()
    granule = reader.i64le()
    serial = reader.u32le()
    sequence = reader.u32le()
    crc = reader.u32le()
    segments = tuple(reader.read(reader.u8()))
    body = reader.read(sum(segments))
    raw = bytes(data[offset:reader.tell()])

    if verify_crc:
        computed = ogg_crc(raw[:CRC_OFFSET] + b'\x00\x00\x00\x00' + raw[CRC_OFFSET + 4:])
        if computed != crc:
            raise CorruptHeaderError(
                f"OGG page {sequence} at offset {offset}: CRC {crc:#010x} != computed {computed:#010x}"
            )

    return OggPage(flags=flags, granule=granule, serial=serial, sequence=sequence,
                   segments=segments, body=body, crc=crc, offset=offset, raw=raw)


def iter_pages(data: bytes) -> Iterator[OggPage]:
    """Yield consecutive pages from the start of data, stopping at bytes that do not start a page."""
    offset = 0
    while offset < len(data):
        if data[offset:offset + 4] != OGG_MAGIC:
            if not offset:
                raise CorruptHeaderError("Missing 'OggS' capture pattern at offset 0")
            logger.warning(f"{len(data) - offset} trailing bytes after the last OGG page are kept as-is")
            return
        page = parse_page(data, offset)
        yield page
        offset += page.size


def _end_of(pages: Sequence[OggPage]) -> int:
    return pages[-1].offset + pages[-1].size if pages else 0


def parse_pages(data: bytes) -> Tuple[List[OggPage], int]:
    """
    Parse consecutive pages from the start of data.

    Returns:
        (pages, end offset of the last page); bytes after that offset that do not
        start a page are left to the caller
    """
    pages = list(iter_pages(data))
    return pages, _end_of(pages)


def _leading_pages(data: bytes) -> List[OggPage]:
    """Pages from the start of data up to the one that completes the first stream's headers."""
    pages: List[OggPage] = []
    needed = None
    ended = 0
    for page in iter_pages(data):
        pages.append(page)
        if page.serial != pages[0].serial:
            continue
        if needed is None:
            needed = HEADER_PACKETS.get(identify(page.body), 1)
        ended += sum(1 for size in page.segments if size < 255)
        if ended >= needed:
            break
    return pages


def lacing_values(length: int) -> List[int]:
    """Segment sizes for a packet; a multiple of 255 ends with a zero-length segment."""
    return [255] * (length // 255) + [length % 255]


def paginate(packets: Sequence[bytes], serial: int, sequence: int, granule: int = 0) -> List[OggPage]:
    """
    Lay packets out on pages of at most 255 segments, starting at sequence.

    A page that starts inside a packet carries the continuation flag.
    """
    segments: List[Tuple[int, bytes]] = []
    for packet in packets:
        offset = 0
        for size in lacing_values(len(packet)):
            segments.append((size, packet[offset:offset + size]))
            offset += size

    pages = []
    continued = False
    for start in range(0, len(segments), MAX_SEGMENTS):
        chunk = segments[start:start + MAX_SEGMENTS]
        pages.append(OggPage(
            flags=FLAG_CONTINUED if continued else 0,
            granule=granule,
            serial=serial,
            sequence=sequence + len(pages),
            segments=tuple(size for size, _ in chunk),
            body=b''.join(part for _, part in chunk),
        ))
        continued = chunk[-1][0] == 255
    return pages


@dataclass(frozen=True)
class _HeaderPacket:
    data: bytes
    page_index: int
    ends_page: bool


def _read_header_packets(pages: Sequence[OggPage], count: int) -> List[_HeaderPacket]:
    """Reassemble the first count packets of a stream from its pages."""
    packets = []
    pending = b''
    for index, page in enumerate(pages):
        if page.continued and not pending:
            raise StructuralError(f"OGG page {page.sequence} continues a packet that never started")
        position = 0
        for seg_index, size in enumerate(page.segments):
            pending += page.body[position:position + size]
            position += size
            if size < 255:
                packets.append(_HeaderPacket(pending, index, seg_index == len(page.segments) - 1))
                pending = b''
                if len(packets) == count:
                    return packets
    raise TruncatedDataError(f"OGG stream ends before its {count} header packets are complete")


def identify(first_packet: bytes) -> Optional[str]:
    """Codec name from an identification packet, or None when unrecognized."""
    if first_packet.startswith(VORBIS_ID):
        return CODEC_VORBIS
    if first_packet.startswith(OPUS_ID):
        return CODEC_OPUS
    return None


def identify_stream(data: bytes) -> Optional[str]:
    """Codec of the stream that starts at the first page of data."""
    page = parse_page(data, 0)
    return identify(page.body)


@dataclass(frozen=True)
class OggContainer:
    """
    The first logical stream's header packets plus the parsed pages in file order.

    ``header_pages`` counts the pages of that stream holding header packets,
    including the identification page. A container parsed with
    ``headers_only`` stops after those pages and cannot be written.
    """
    codec: str
    serial: int
    pages: Tuple[OggPage, ...]
    header_packets: Tuple[bytes, ...]
    header_pages: int
    comment: vorbis.VorbisComment
    end_offset: int
    source: bytes = field(default=b'', repr=False)
    complete: bool = True

    @property
    def comment_magic(self) -> bytes:
        return VORBIS_COMMENT if self.codec == CODEC_VORBIS else OPUS_COMMENT

    @property
    def version(self) -> str:
        ident = self.header_packets[0]
        if self.codec == CODEC_VORBIS:
            return str(ByteReader(ident, 7).u32le())
        return str(ident[8])

    def with_comment(self, comment: vorbis.VorbisComment) -> 'OggContainer':
        return replace(self, comment=comment)


def parse(data: bytes, headers_only: bool = False) -> OggContainer:
    """
    Parse an OGG Vorbis or Opus file.

    With headers_only, pages after the last header page are neither parsed
    nor CRC-checked.

    Raises:
        CorruptHeaderError: bad page structure or CRC
        UnknownFormatError: first stream is neither Vorbis nor Opus
        StructuralError: header packets do not end on a page boundary
    """
    data = bytes(data)
    if headers_only:
        pages = _leading_pages(data)
        end_offset = _end_of(pages)
    else:
        pages, end_offset = parse_pages(data)
    serial = pages[0].serial
    stream = [p for p in pages if p.serial == serial]

    codec = identify(stream[0].body)
    if codec is None:
        raise UnknownFormatError("OGG stream is neither Vorbis nor Opus")
    count = HEADER_PACKETS[codec]

    packets = _read_header_packets(stream, count)
    ident, comment_packet = packets[0], packets[1]
    if ident.page_index != 0 or not ident.ends_page:
        raise StructuralError("Identification header must fill the first page on its own")
    if not packets[-1].ends_page:
        raise StructuralError("Header packets do not end on a page boundary")

    magic = VORBIS_COMMENT if codec == CODEC_VORBIS else OPUS_COMMENT
    if not comment_packet.data.startswith(magic):
        raise CorruptHeaderError(f"Second packet does not start with {magic!r}")

    comment = vorbis.parse(comment_packet.data[len(magic):])
    header_pages = packets[-1].page_index + 1
    logger.debug(f"Parsed {codec} stream {serial:#x}: {len(pages)} pages, {header_pages} header pages")
    return OggContainer(codec=codec, serial=serial, pages=tuple(pages),
                        header_packets=tuple(p.data for p in packets), header_pages=header_pages,
                        comment=comment, end_offset=end_offset, source=data, complete=not headers_only)


def write(container: OggContainer) -> bytes:
    """
    Rebuild the file with the container's comment.

    The identification page is copied verbatim, the comment and setup packets
    are repaginated from sequence 1, and later pages of the stream are copied
    as-is unless the header page count changed, in which case only their
    sequence numbers and CRCs are rewritten. Other streams are untouched.
    """
    if not container.complete:
        raise ValueError("Cannot write an OGG container parsed with headers_only")
    packet = container.comment_magic + vorbis.serialize(container.comment)
    new_header = paginate([packet] + list(container.header_packets[2:]), container.serial, 1)
    shift = len(new_header) - (container.header_pages - 1)

    out = bytearray()
    stream_index = 0
    for page in container.pages:
        if page.serial != container.serial:
            out += page.raw
            continue
        if stream_index == 0:
            out += page.raw
        elif stream_index == 1:
            for new_page in new_header:
                out += new_page.to_bytes()
        elif stream_index < container.header_pages:
            pass
        elif shift:
            out += page.renumbered(page.sequence + shift)
        else:
            out += page.raw
        stream_index += 1

    out += container.source[container.end_offset:]
    return bytes(out)
