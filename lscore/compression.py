import io
import logging
import zlib
from enum import IntEnum

import lz4.block
import lz4.frame

from .binutils import read_exact
from .errors import CorruptStream, InvalidCompressionFlags, LZ4DifferentSize

logger = logging.getLogger("LSCore.Compression")

METHOD_MASK = 0x0F
LEVEL_MASK = 0xF0
# Only method + level bits may be set
ALLOWED_BITS = 0x7F

LZ4_FRAME_MAGIC = b"\x04\x22\x4d\x18"

CHUNK_SIZE = 64 * 1024


class CompressionMethod(IntEnum):
    NONE = 0
    ZLIB = 1
    LZ4 = 2


class CompressionLevel(IntEnum):
    FAST = 0x10
    DEFAULT = 0x20
    MAX = 0x40


class CompressionFlags:
    """Method + level descriptor shared by package entries and documents.

    Bits 0-3 select the method, bits 4-6 the level. Anything above bit 6
    is reserved and makes the descriptor invalid.
    """

    __slots__ = ("value",)

    def __init__(self, value):
        self.value = value

    @classmethod
    def parse(cls, value, name=None):
        if value & ~ALLOWED_BITS or (value & METHOD_MASK) > max(CompressionMethod):
            logger.warning(f"Rejecting compression flags 0x{value:X} ({name or 'unnamed'})")
            raise InvalidCompressionFlags(value, name)
        return cls(value)

    @classmethod
    def build(cls, method, level=None):
        return cls(int(method) | (int(level) if level is not None else 0))

    @property
    def method(self):
        return CompressionMethod(self.value & METHOD_MASK)

    @property
    def level(self):
        bits = self.value & LEVEL_MASK
        try:
            return CompressionLevel(bits)
        except ValueError:
            return None

    @property
    def is_compressed(self):
        return self.method != CompressionMethod.NONE

    def __int__(self):
        return self.value

    def __eq__(self, other):
        if isinstance(other, CompressionFlags):
            return self.value == other.value
        if isinstance(other, int):
            return self.value == other
        return NotImplemented

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        level = self.level.name if self.level is not None else "-"
        return f"CompressionFlags({self.method.name}, {level})"


class BoundedReader(io.RawIOBase):
    """Read at most `limit` bytes from `source`, then report EOF."""

    def __init__(self, source, limit):
        self._source = source
        self.remaining = limit

    def readable(self):
        return True

    def readinto(self, buffer):
        if self.remaining <= 0:
            return 0
        size = min(len(buffer), self.remaining)
        data = self._source.read(size)
        n = len(data)
        buffer[:n] = data
        self.remaining -= n
        return n

    def discard(self):
        """Skip whatever is left of the window on the underlying source."""
        while self.remaining > 0:
            data = self._source.read(min(self.remaining, CHUNK_SIZE))
            if not data:
                break
            self.remaining -= len(data)


class ZlibReader(io.RawIOBase):
    """Streaming inflate over a zlib-wrapped deflate source."""

    def __init__(self, source, chunk_size=CHUNK_SIZE):
        self._source = source
        self._chunk_size = chunk_size
        self._decompressor = zlib.decompressobj()

    def readable(self):
        return True

    def readinto(self, buffer):
        size = len(buffer)
        if size == 0:
            return 0
        while not self._decompressor.eof:
            data = self._decompressor.unconsumed_tail
            if not data:
                data = self._source.read(self._chunk_size)
                if not data:
                    raise CorruptStream("Deflate stream ended before its end marker")
            try:
                out = self._decompressor.decompress(data, size)
            except zlib.error as e:
                raise CorruptStream(f"Deflate stream is corrupt: {e}") from e
            if out:
                buffer[:len(out)] = out
                return len(out)
        return 0


def lz4_block_content_size(data):
    """Walk the sequences of a raw LZ4 block and return how many bytes it
    decodes to, or None if the block is malformed. Nothing is decompressed."""
    pos, total, end = 0, 0, len(data)

    def read_length(base):
        nonlocal pos
        length = base
        if base == 15:
            while True:
                if pos >= end:
                    return None
                b = data[pos]
                pos += 1
                length += b
                if b != 255:
                    break
        return length

    while pos < end:
        token = data[pos]
        pos += 1
        literals = read_length(token >> 4)
        if literals is None:
            return None
        pos += literals
        total += literals
        if pos == end:
            return total
        if pos + 2 > end:
            return None
        pos += 2
        match = read_length(token & 0x0F)
        if match is None:
            return None
        total += match + 4
    return total


def decompress_lz4_block(data, uncompressed_size):
    if uncompressed_size == 0:
        actual = lz4_block_content_size(data)
        if actual == 0:
            return b""
        raise LZ4DifferentSize(0, actual if actual is not None else len(data))
    try:
        out = lz4.block.decompress(data, uncompressed_size=uncompressed_size)
    except lz4.block.LZ4BlockError as e:
        actual = lz4_block_content_size(data)
        if actual is not None and actual != uncompressed_size:
            logger.warning(f"LZ4 block holds {actual} bytes, header declared {uncompressed_size}")
            raise LZ4DifferentSize(uncompressed_size, actual) from e
        raise CorruptStream(f"LZ4 block could not be decompressed: {e}") from e
    if len(out) != uncompressed_size:
        raise LZ4DifferentSize(uncompressed_size, len(out))
    return out


def decompress_lz4_frame(data):
    """Decode one LZ4 frame held entirely in memory. A missing end mark is
    tolerated, the frame simply ends with the data."""
    try:
        return lz4.frame.LZ4FrameDecompressor().decompress(data)
    except RuntimeError as e:
        raise CorruptStream(f"LZ4 frame is corrupt: {e}") from e


def decompress_lz4_any(data, uncompressed_size):
    """File tables are normally LZ4 blocks. Some writers emit a frame instead,
    which is recognisable by its magic."""
    if data.startswith(LZ4_FRAME_MAGIC):
        out = decompress_lz4_frame(data)
        if len(out) != uncompressed_size:
            raise LZ4DifferentSize(uncompressed_size, len(out))
        return out
    return decompress_lz4_block(data, uncompressed_size)


def open_stream(source, compressed_size, uncompressed_size, method, chunked=False):
    """Wrap `source` in a reader that yields the decompressed bytes.

    NONE and LZ4 block mode consume exactly their bytes from the source.
    The deflate and LZ4 frame readers pull from it lazily and may read
    past the end of the compressed data.
    """
    method = CompressionMethod(method)
    if method == CompressionMethod.NONE:
        return io.BufferedReader(BoundedReader(source, uncompressed_size))
    if method == CompressionMethod.ZLIB:
        return io.BufferedReader(ZlibReader(source))
    if chunked:
        return lz4.frame.LZ4FrameFile(source, mode="rb")
    data = read_exact(source, compressed_size)
    return io.BytesIO(decompress_lz4_block(data, uncompressed_size))


def decompress(data, flags, uncompressed_size):
    """One-shot decompression of a complete in-memory payload."""
    flags = flags if isinstance(flags, CompressionFlags) else CompressionFlags.parse(flags)
    method = flags.method
    if method == CompressionMethod.NONE:
        return bytes(data)
    if method == CompressionMethod.ZLIB:
        try:
            return zlib.decompress(data)
        except zlib.error as e:
            raise CorruptStream(f"Deflate payload is corrupt: {e}") from e
    return decompress_lz4_block(data, uncompressed_size)
