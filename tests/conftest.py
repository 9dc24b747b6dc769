"""
Pytest configuration and shared fixtures.

Builders here assemble tag bytes by hand (or through mutagen) so the tests
never depend on tagforge's own writers to produce their inputs.
"""

import base64
import struct

import pytest
from mutagen.ogg import OggPage

from tagforge.utils import Config

# ---------- Constants ----------

# A few bytes that look like an MPEG audio frame; never decoded
MPEG_AUDIO = b'\xff\xfb\x90\x00' + bytes(range(256)) * 2
FLAC_AUDIO = b'\xff\xf8\x69\x08' + b'\x5a' * 300

OGG_SERIAL = 0x1234ABCD

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00\x00\x00\rIHDR' + b'\x01' * 32
JPEG_BYTES = b'\xff\xd8\xff\xe0' + b'\x00\x10JFIF' + b'\x02' * 40


# ---------- ID3 ----------

def synchsafe(value: int) -> bytes:
    return bytes([(value >> 21) & 0x7F, (value >> 14) & 0x7F, (value >> 7) & 0x7F, value & 0x7F])


def text_payload(text: str, encoding: int = 0) -> bytes:
    codec = {0: 'latin-1', 1: 'utf-16', 2: 'utf-16-be', 3: 'utf-8'}[encoding]
    return bytes([encoding]) + text.encode(codec)


def id3_frame(frame_id: str, payload: bytes, major: int = 3, flags: int = 0) -> bytes:
    if major == 2:
        return frame_id.encode('ascii') + len(payload).to_bytes(3, 'big') + payload
    size = synchsafe(len(payload)) if major == 4 else struct.pack('>I', len(payload))
    return frame_id.encode('ascii') + size + struct.pack('>H', flags) + payload


def build_id3v2(frames, major: int = 3, flags: int = 0, padding: int = 0, audio: bytes = MPEG_AUDIO) -> bytes:
    """ID3v2 tag from pre-built frame bytes, followed by audio."""
    body = b''.join(frames) + b'\x00' * padding
    return b'ID3' + bytes([major, 0, flags]) + synchsafe(len(body)) + body + audio


def build_id3v1(title='', artist='', album='', year='', comment='', track=None, genre=255) -> bytes:
    def field(value, width):
        return value.encode('latin-1')[:width].ljust(width, b'\x00')

    block = b'TAG' + field(title, 30) + field(artist, 30) + field(album, 30) + field(year, 4)
    if track:
        block += field(comment, 28) + b'\x00' + bytes([track])
    else:
        block += field(comment, 30)
    return block + bytes([genre])


# ---------- FLAC ----------

def streaminfo() -> bytes:
    """34-byte STREAMINFO: 44.1 kHz, stereo, 16 bit, unknown length."""
    packed = (44100 << 44) | (1 << 41) | (15 << 36)
    return struct.pack('>HH', 4096, 4096) + b'\x00' * 6 + struct.pack('>Q', packed) + b'\x00' * 16


def vorbis_body(comments, vendor: str = 'reference libFLAC 1.3.2') -> bytes:
    vendor_bytes = vendor.encode('utf-8')
    out = struct.pack('<I', len(vendor_bytes)) + vendor_bytes + struct.pack('<I', len(comments))
    for entry in comments:
        raw = entry if isinstance(entry, bytes) else entry.encode('utf-8')
        out += struct.pack('<I', len(raw)) + raw
    return out


def flac_picture(data: bytes = PNG_BYTES, mime: str = 'image/png', picture_type: int = 3,
                 description: str = '', width: int = 1, height: int = 1, depth: int = 24) -> bytes:
    mime_bytes = mime.encode('ascii')
    desc = description.encode('utf-8')
    return (struct.pack('>II', picture_type, len(mime_bytes)) + mime_bytes
            + struct.pack('>I', len(desc)) + desc
            + struct.pack('>IIIII', width, height, depth, 0, len(data)) + data)


def build_flac(blocks, audio: bytes = FLAC_AUDIO) -> bytes:
    """FLAC stream from (type, payload) pairs; the last pair gets the last flag."""
    out = b'fLaC'
    for index, (block_type, payload) in enumerate(blocks):
        header = block_type | (0x80 if index == len(blocks) - 1 else 0)
        out += bytes([header]) + len(payload).to_bytes(3, 'big') + payload
    return out + audio


def parse_flac_headers(data: bytes):
    """(type, is_last, size) for every block, walking the chain independently."""
    headers = []
    offset = 4
    while True:
        header = data[offset]
        size = int.from_bytes(data[offset + 1:offset + 4], 'big')
        headers.append((header & 0x7F, bool(header & 0x80), size))
        offset += 4 + size
        if header & 0x80:
            return headers


# ---------- OGG ----------

def vorbis_ident() -> bytes:
    return (b'\x01vorbis' + struct.pack('<IBIiii', 0, 2, 44100, 0, 128000, 0) + b'\xb8\x01')


def opus_head() -> bytes:
    return b'OpusHead' + struct.pack('<BBHIhB', 1, 2, 312, 48000, 0, 0)


def ogg_page(packets, sequence: int, position: int = 0, first: bool = False, last: bool = False,
             continued: bool = False, complete: bool = True, serial: int = OGG_SERIAL) -> bytes:
    page = OggPage()
    page.serial = serial
    page.sequence = sequence
    page.position = position
    page.packets = list(packets)
    page.first = first
    page.last = last
    page.continued = continued
    page.complete = complete
    return page.write()


def audio_pages(start_sequence: int, count: int = 3, serial: int = OGG_SERIAL) -> bytes:
    out = b''
    for i in range(count):
        out += ogg_page([bytes([i + 1]) * 200, bytes([i + 7]) * 90], start_sequence + i,
                        position=(i + 1) * 1024, last=(i == count - 1), serial=serial)
    return out


def build_ogg_vorbis(comments=(), vendor: str = 'Xiph.Org libVorbis I 20200704', audio_count: int = 3,
                     setup: bytes = b'\x05vorbis' + b'\x42' * 120) -> bytes:
    comment_packet = b'\x03vorbis' + vorbis_body(list(comments), vendor) + b'\x01'
    return (ogg_page([vorbis_ident()], 0, first=True)
            + ogg_page([comment_packet, setup], 1)
            + audio_pages(2, audio_count))


def build_ogg_opus(comments=(), vendor: str = 'libopus 1.3', audio_count: int = 3, padding: bytes = b'') -> bytes:
    tags = b'OpusTags' + vorbis_body(list(comments), vendor) + padding
    return (ogg_page([opus_head()], 0, first=True)
            + ogg_page([tags], 1)
            + audio_pages(2, audio_count))


def split_pages(data: bytes):
    """(header_type, granule, serial, sequence, body_len) for each page, parsed independently."""
    pages = []
    offset = 0
    while offset < len(data):
        assert data[offset:offset + 4] == b'OggS'
        flags = data[offset + 5]
        granule, serial, sequence = struct.unpack('<qII', data[offset + 6:offset + 22])
        nseg = data[offset + 26]
        lacing = data[offset + 27:offset + 27 + nseg]
        body_len = sum(lacing)
        pages.append((flags, granule, serial, sequence, body_len))
        offset += 27 + nseg + body_len
    return pages


def metadata_block_picture(**kwargs) -> str:
    return base64.b64encode(flac_picture(**kwargs)).decode('ascii')


# ---------- Fixtures ----------

@pytest.fixture(autouse=True)
def restore_config():
    """Undo any Config changes a test makes."""
    saved = {name: getattr(Config, name) for name in (
        'MAX_FILE_SIZE', 'MAX_WORKERS', 'MIN_FILES_FOR_PARALLEL',
        'STRICT_ENCODING', 'STRICT_FRAME_SIZES', 'VERIFY_OGG_CRC', 'DEFAULT_VERBOSE',
    )}
    yield
    for name, value in saved.items():
        setattr(Config, name, value)


@pytest.fixture
def id3v23_bytes():
    return build_id3v2([
        id3_frame('TIT2', text_payload('Old')),
        id3_frame('TPE1', text_payload('Artist')),
        id3_frame('XYZF', b'\x00\x01opaque\xff\x00data'),
        id3_frame('TRCK', text_payload('3/12')),
    ], major=3)


@pytest.fixture
def mp3_file(tmp_path, id3v23_bytes):
    path = tmp_path / 'song.mp3'
    path.write_bytes(id3v23_bytes)
    return path


@pytest.fixture
def flac_bytes():
    return build_flac([
        (0, streaminfo()),
        (4, vorbis_body(['TITLE=Flac Title', 'ARTIST=Flac Artist', 'DATE=2019-04-01', 'TRACKNUMBER=4/10'])),
        (1, b'\x00' * 64),
    ])


@pytest.fixture
def flac_file(tmp_path, flac_bytes):
    path = tmp_path / 'song.flac'
    path.write_bytes(flac_bytes)
    return path


@pytest.fixture
def ogg_bytes():
    return build_ogg_vorbis(['TITLE=Ogg Title', 'ARTIST=Ogg Artist', 'GENRE=Ambient'])


@pytest.fixture
def ogg_file(tmp_path, ogg_bytes):
    path = tmp_path / 'song.ogg'
    path.write_bytes(ogg_bytes)
    return path


@pytest.fixture
def opus_bytes():
    return build_ogg_opus(['TITLE=Opus Title'])


@pytest.fixture
def id3v1_bytes():
    return MPEG_AUDIO + build_id3v1(title='V1 Title', artist='V1 Artist', year='1999', track=7, genre=17)


@pytest.fixture
def sample_files(tmp_path, id3v23_bytes, flac_bytes, ogg_bytes, opus_bytes, id3v1_bytes):
    """One file of every supported format."""
    files = {}
    for name, data in (('a.mp3', id3v23_bytes), ('b.flac', flac_bytes), ('c.ogg', ogg_bytes),
                       ('d.opus', opus_bytes), ('e.mp3', id3v1_bytes)):
        path = tmp_path / name
        path.write_bytes(data)
        files[name] = path
    return files
