"""
Bounds-checked byte cursor, back-patching writer, synchsafe integers and
ID3v2 unsynchronization.
"""

import struct
from typing import Union

from .exceptions import CorruptHeaderError, TruncatedDataError

BytesLike = Union[bytes, bytearray, memoryview]

SYNCHSAFE_LIMIT = 1 << 28


def encode_synchsafe(value: int, width: int = 4) -> bytes:
    """
    Encode an integer as a synchsafe big-endian integer (7 bits per byte).

    Args:
        value: Integer in [0, 2**(7*width))
        width: Number of output bytes

    Returns:
        Encoded bytes with the high bit of every byte cleared

    Examples:
        >>> encode_synchsafe(257)
        b'\\x00\\x00\\x02\\x01'
    """
    if value < 0 or value >= 1 << (7 * width):
        raise ValueError(f"Value {value} does not fit in a {width}-byte synchsafe integer")
    out = bytearray(width)
    for i in range(width - 1, -1, -1):
        out[i] = value & 0x7F
        value >>= 7
    return bytes(out)


def decode_synchsafe(data: BytesLike) -> int:
    """Decode a synchsafe big-endian integer; raises CorruptHeaderError on a set high bit."""
    value = 0
    for byte in bytes(data):
        if byte & 0x80:
            raise CorruptHeaderError(f"Byte 0x{byte:02X} is not valid in a synchsafe integer")
        value = (value << 7) | byte
    return value


def unsynchronize(data: BytesLike) -> bytes:
    """Insert a 0x00 after every 0xFF byte."""
    return bytes(data).replace(b'\xff', b'\xff\x00')


def resynchronize(data: BytesLike) -> bytes:
    """Collapse every 0xFF 0x00 pair back to 0xFF."""
    return bytes(data).replace(b'\xff\x00', b'\xff')


class ByteReader:
    """Cursor over an immutable byte buffer; every read is bounds-checked."""

    def __init__(self, data: BytesLike, offset: int = 0):
        self._data = bytes(data)
        self._pos = offset

    def __len__(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return max(0, len(self._data) - self._pos)

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int) -> None:
        if offset < 0 or offset > len(self._data):
            raise TruncatedDataError(f"Cannot seek to {offset} in a buffer of {len(self._data)} bytes")
        self._pos = offset

    def _need(self, count: int) -> None:
        if count < 0 or self._pos + count > len(self._data):
            raise TruncatedDataError(
                f"Need {count} bytes at offset {self._pos}, only {self.remaining} remain"
            )

    def read(self, count: int) -> bytes:
        self._need(count)
        chunk = self._data[self._pos:self._pos + count]
        self._pos += count
        return chunk

    def peek(self, count: int) -> bytes:
        self._need(count)
        return self._data[self._pos:self._pos + count]

    def skip(self, count: int) -> None:
        self._need(count)
        self._pos += count

    def rest(self) -> bytes:
        chunk = self._data[self._pos:]
        self._pos = len(self._data)
        return chunk

    def _unpack(self, fmt: str, size: int) -> int:
        return struct.unpack(fmt, self.read(size))[0]

    def u8(self) -> int:
        return self._unpack('B', 1)

    def u16be(self) -> int:
        return self._unpack('>H', 2)

    def u24be(self) -> int:
        return int.from_bytes(self.read(3), 'big')

    def u32be(self) -> int:
        return self._unpack('>I', 4)

    def u32le(self) -> int:
        return self._unpack('<I', 4)

    def u64le(self) -> int:
        return self._unpack('<Q', 8)

    def i64le(self) -> int:
        return self._unpack('<q', 8)

    def synchsafe32(self) -> int:
        return decode_synchsafe(self.read(4))


class ByteWriter:
    """
    Growable output buffer.

    Size fields whose value depends on content written later are handled in two
    passes: ``reserve()`` leaves a hole and returns its offset, and one of the
    ``patch_*`` methods fills it once the content length is known.
    """

    def __init__(self):
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def tell(self) -> int:
        return len(self._buf)

    def write(self, data: BytesLike) -> None:
        self._buf += data

    def u8(self, value: int) -> None:
        self._buf += struct.pack('B', value)

    def u16be(self, value: int) -> None:
        self._buf += struct.pack('>H', value)

    def u24be(self, value: int) -> None:
        self._buf += value.to_bytes(3, 'big')

    def u32be(self, value: int) -> None:
        self._buf += struct.pack('>I', value)

    def u32le(self, value: int) -> None:
        self._buf += struct.pack('<I', value)

    def u64le(self, value: int) -> None:
        self._buf += struct.pack('<Q', value)

    def i64le(self, value: int) -> None:
        self._buf += struct.pack('<q', value)

    def synchsafe32(self, value: int) -> None:
        self._buf += encode_synchsafe(value)

    def reserve(self, width: int) -> int:
        """Append width zero bytes and return their offset for a later patch."""
        slot = len(self._buf)
        self._buf += bytes(width)
        return slot

    def patch(self, slot: int, data: BytesLike) -> None:
        if slot < 0 or slot + len(data) > len(self._buf):
            raise ValueError(f"Patch of {len(data)} bytes at {slot} is outside the buffer")
        self._buf[slot:slot + len(data)] = data

    def patch_u24be(self, slot: int, value: int) -> None:
        self.patch(slot, value.to_bytes(3, 'big'))

    def patch_u32be(self, slot: int, value: int) -> None:
        self.patch(slot, struct.pack('>I', value))

    def patch_u32le(self, slot: int, value: int) -> None:
        self.patch(slot, struct.pack('<I', value))

    def patch_synchsafe32(self, slot: int, value: int) -> None:
        self.patch(slot, encode_synchsafe(value))

    def getvalue(self) -> bytes:
        return bytes(self._buf)
