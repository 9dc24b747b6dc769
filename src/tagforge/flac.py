"""
FLAC metadata-block chain codec.

    "fLaC" block* audio

Each block header is one byte (last-block flag in the high bit, 7-bit type)
and a 24-bit big-endian payload length. The audio frames start right after
the block that carries the last-block flag.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

from .binary import ByteReader, ByteWriter
from .encoding import TextEncoding, decode
from .exceptions import CorruptHeaderError, StructuralError
from .metadata import FRONT_COVER, Picture
from . import vorbis

logger = logging.getLogger(__name__)

FLAC_MAGIC = b'fLaC'
BLOCK_HEADER_SIZE = 4
MAX_BLOCK_SIZE = (1 << 24) - 1
LAST_BLOCK = 0x80


class BlockType(IntEnum):
    STREAMINFO = 0
    PADDING = 1
    APPLICATION = 2
    SEEKTABLE = 3
    VORBIS_COMMENT = 4
    CUESHEET = 5
    PICTURE = 6


@dataclass(frozen=True)
class MetadataBlock:
    """One metadata block; unknown types are carried as opaque payload."""
    block_type: int
    payload: bytes
    is_last: bool = False

    @property
    def name(self) -> str:
        try:
            return BlockType(self.block_type).name
        except ValueError:
            return f"UNKNOWN({self.block_type})"


@dataclass(frozen=True)
class FlacContainer:
    blocks: Tuple[MetadataBlock, ...]
    audio_offset: int
    source: bytes = field(default=b'', repr=False)

    def blocks_of(self, block_type: int) -> List[MetadataBlock]:
        return [b for b in self.blocks if b.block_type == block_type]

    def vorbis_comment(self) -> Optional[vorbis.VorbisComment]:
        found = self.blocks_of(BlockType.VORBIS_COMMENT)
        return vorbis.parse(found[0].payload) if found else None

    def pictures(self) -> List[Picture]:
        return [parse_picture(b.payload) for b in self.blocks_of(BlockType.PICTURE)]

    def with_blocks(self, blocks: Sequence[MetadataBlock]) -> 'FlacContainer':
        return replace(self, blocks=tuple(blocks))


def has_signature(data: bytes) -> bool:
    return data[:4] == FLAC_MAGIC


def parse(data: bytes) -> FlacContainer:
    """
    Walk the metadata chain.

    Raises:
        CorruptHeaderError: missing "fLaC" signature
        StructuralError: no block carries the last flag, or STREAMINFO is not first
        TruncatedDataError: a block runs past the end of the buffer
    """
    data = bytes(data)
    if not has_signature(data):
        raise CorruptHeaderError("Missing 'fLaC' signature")

    reader = ByteReader(data, 4)
    blocks = []
    while True:
        if reader.remaining < BLOCK_HEADER_SIZE:
            raise StructuralError(f"Metadata chain ended after {len(blocks)} blocks without a last-block flag")
        header = reader.u8()
        size = reader.u24be()
        block_type = header & 0x7F
        is_last = bool(header & LAST_BLOCK)

        if block_type == BlockType.STREAMINFO and blocks:
            raise StructuralError(f"STREAMINFO found at block {len(blocks)}; it must be first")

        blocks.append(MetadataBlock(block_type, reader.read(size), is_last))
        if is_last:
            break

    logger.debug(f"Parsed {len(blocks)} FLAC metadata blocks, audio at offset {reader.tell()}")
    return FlacContainer(blocks=tuple(blocks), audio_offset=reader.tell(), source=data)


def serialize_blocks(blocks: Sequence[MetadataBlock]) -> bytes:
    """
    Emit "fLaC" and the chain; only the final block gets the last flag and
    every length is recomputed.
    """
    if not blocks:
        raise StructuralError("A FLAC stream needs at least one metadata block")
    out = ByteWriter()
    out.write(FLAC_MAGIC)
    final = len(blocks) - 1
    for index, block in enumerate(blocks):
        if len(block.payload) > MAX_BLOCK_SIZE:
            raise StructuralError(f"{block.name} block of {len(block.payload)} bytes exceeds the 24-bit limit")
        if block.block_type == BlockType.STREAMINFO and index:
            raise StructuralError("STREAMINFO must be the first metadata block")
        out.u8((block.block_type & 0x7F) | (LAST_BLOCK if index == final else 0))
        slot = out.reserve(3)
        out.write(block.payload)
        out.patch_u24be(slot, len(block.payload))
    return out.getvalue()


def write(container: FlacContainer) -> bytes:
    """Serialize the chain and append the original audio bytes unchanged."""
    return serialize_blocks(container.blocks) + container.source[container.audio_offset:]


# ---------- Block list edits ----------
def _comment_insert_index(blocks: Sequence[MetadataBlock]) -> int:
    if blocks and blocks[0].block_type == BlockType.STREAMINFO:
        return 1
    return 0


def _picture_insert_index(blocks: Sequence[MetadataBlock]) -> int:
    for index in range(len(blocks) - 1, -1, -1):
        if blocks[index].block_type != BlockType.PADDING:
            return index + 1
    return 0


def set_vorbis_comment(blocks: Sequence[MetadataBlock], comment: vorbis.VorbisComment) -> List[MetadataBlock]:
    """Replace the first VORBIS_COMMENT block (dropping any others) or insert one after STREAMINFO."""
    new_block = MetadataBlock(BlockType.VORBIS_COMMENT, vorbis.serialize(comment))
    out = []
    placed = False
    for block in blocks:
        if block.block_type == BlockType.VORBIS_COMMENT:
            if not placed:
                out.append(new_block)
                placed = True
            continue
        out.append(block)
    if not placed:
        out.insert(_comment_insert_index(out), new_block)
    return out


def set_picture(blocks: Sequence[MetadataBlock], picture: Picture) -> List[MetadataBlock]:
    """
    Replace the canonical PICTURE block (first front cover, else first picture)
    or insert a new one after the last non-padding block.
    """
    out = list(blocks)
    new_block = MetadataBlock(BlockType.PICTURE, serialize_picture(picture))
    indexes = [i for i, b in enumerate(out) if b.block_type == BlockType.PICTURE]
    if indexes:
        target = indexes[0]
        for i in indexes:
            if parse_picture(out[i].payload).picture_type == FRONT_COVER:
                target = i
                break
        out[target] = new_block
    else:
        out.insert(_picture_insert_index(out), new_block)
    return out


def remove_pictures(blocks: Sequence[MetadataBlock]) -> List[MetadataBlock]:
    return [b for b in blocks if b.block_type != BlockType.PICTURE]


# ---------- PICTURE structure ----------
def parse_picture(data: bytes) -> Picture:
    """Decode a FLAC PICTURE structure (also used base64-encoded in Vorbis comments)."""
    reader = ByteReader(data)
    picture_type = reader.u32be()
    mime_type = reader.read(reader.u32be()).decode('ascii', errors='replace')
    description = decode(reader.read(reader.u32be()), TextEncoding.UTF_8)
    width = reader.u32be()
    height = reader.u32be()
    depth = reader.u32be()
    colors = reader.u32be()
    image = reader.read(reader.u32be())
    return Picture(mime_type=mime_type, width=width, height=height, depth=depth,
                   description=description, data=image, picture_type=picture_type, colors=colors)


def serialize_picture(picture: Picture) -> bytes:
    out = ByteWriter()
    mime = picture.mime_type.encode('ascii', errors='replace')
    description = picture.description.encode('utf-8')
    out.u32be(picture.picture_type)
    out.u32be(len(mime))
    out.write(mime)
    out.u32be(len(description))
    out.write(description)
    out.u32be(picture.width)
    out.u32be(picture.height)
    out.u32be(picture.depth)
    out.u32be(picture.colors)
    out.u32be(len(picture.data))
    out.write(picture.data)
    return out.getvalue()
