import io
import zlib

import lz4.block
import lz4.frame
import pytest

from lscore.compression import (
    BoundedReader,
    CompressionFlags,
    CompressionLevel,
    CompressionMethod,
    decompress,
    decompress_lz4_any,
    decompress_lz4_block,
    lz4_block_content_size,
    open_stream,
)
from lscore.errors import CorruptStream, InvalidCompressionFlags, LZ4DifferentSize, SizeMismatch

PAYLOAD = b"Larian package payload " * 40


@pytest.mark.parametrize("value", [0x80, 0x03, 0x0F, 0x1FF])
def test_invalid_flags_rejected(value):
    with pytest.raises(InvalidCompressionFlags) as exc:
        CompressionFlags.parse(value, "Public/Game/meta.lsx")
    assert exc.value.flags == value
    assert exc.value.name == "Public/Game/meta.lsx"


def test_flags_method_and_level():
    flags = CompressionFlags.parse(0x42)
    assert flags.method == CompressionMethod.LZ4
    assert flags.level == CompressionLevel.MAX
    assert flags.is_compressed
    assert flags == 0x42
    assert CompressionFlags.build(CompressionMethod.ZLIB, CompressionLevel.DEFAULT) == 0x21


def test_flags_without_level():
    flags = CompressionFlags.parse(0x00)
    assert flags.level is None
    assert not flags.is_compressed


def test_lz4_block_off_by_one_reports_both_sizes():
    data = lz4.block.compress(PAYLOAD, store_size=False)
    with pytest.raises(LZ4DifferentSize) as exc:
        decompress_lz4_block(data, len(PAYLOAD) + 1)
    assert exc.value.expected == len(PAYLOAD) + 1
    assert exc.value.actual == len(PAYLOAD)

    with pytest.raises(LZ4DifferentSize) as exc:
        decompress_lz4_block(data, len(PAYLOAD) - 1)
    assert exc.value.actual == len(PAYLOAD)


def test_lz4_block_size_mismatch_is_a_size_mismatch():
    assert issubclass(LZ4DifferentSize, SizeMismatch)


def test_lz4_block_content_size():
    data = lz4.block.compress(PAYLOAD, store_size=False)
    assert lz4_block_content_size(data) == len(PAYLOAD)
    assert lz4_block_content_size(b"\xf0") is None


def test_lz4_block_empty():
    assert decompress_lz4_block(lz4.block.compress(b"", store_size=False), 0) == b""


def test_lz4_any_accepts_frames():
    frame = lz4.frame.compress(PAYLOAD)
    assert decompress_lz4_any(frame, len(PAYLOAD)) == PAYLOAD
    with pytest.raises(LZ4DifferentSize):
        decompress_lz4_any(frame, len(PAYLOAD) + 1)


def test_one_shot_decompress():
    assert decompress(zlib.compress(PAYLOAD), 0x21, len(PAYLOAD)) == PAYLOAD
    assert decompress(lz4.block.compress(PAYLOAD, store_size=False), 0x22, len(PAYLOAD)) == PAYLOAD
    assert decompress(PAYLOAD, 0x00, 0) == PAYLOAD


def test_corrupt_deflate():
    with pytest.raises(CorruptStream):
        decompress(b"not deflate at all", 0x21, 10)


def test_bounded_reader_stops_at_limit():
    source = io.BytesIO(b"0123456789")
    reader = BoundedReader(source, 4)
    assert reader.read() == b"0123"
    assert reader.read(1) == b""
    assert source.read() == b"456789"


def test_bounded_reader_discard():
    source = io.BytesIO(b"0123456789")
    reader = BoundedReader(source, 6)
    reader.read(2)
    reader.discard()
    assert reader.remaining == 0
    assert source.read() == b"6789"


def test_zlib_stream():
    stream = open_stream(io.BytesIO(zlib.compress(PAYLOAD)), 0, len(PAYLOAD), CompressionMethod.ZLIB)
    assert stream.read() == PAYLOAD


def test_zlib_stream_truncated():
    packed = zlib.compress(PAYLOAD)[:-6]
    stream = open_stream(io.BytesIO(packed), len(packed), len(PAYLOAD), CompressionMethod.ZLIB)
    with pytest.raises(CorruptStream):
        stream.read()


def test_lz4_frame_stream():
    stream = open_stream(io.BytesIO(lz4.frame.compress(PAYLOAD)), 0, len(PAYLOAD), CompressionMethod.LZ4,
                         chunked=True)
    assert stream.read() == PAYLOAD


def test_lz4_block_stream():
    packed = lz4.block.compress(PAYLOAD, store_size=False)
    source = io.BytesIO(packed + b"rest")
    stream = open_stream(source, len(packed), len(PAYLOAD), CompressionMethod.LZ4)
    assert stream.read() == PAYLOAD
    assert source.read() == b"rest"
