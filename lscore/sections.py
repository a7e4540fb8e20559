import logging

from .binutils import read_exact
from .compression import BoundedReader, CompressionFlags, CompressionMethod, open_stream
from .errors import CorruptStream, SizeMismatch, TruncatedRecordError
from .versions import DocumentVersion

logger = logging.getLogger("LSCore.Sections")


def _open_section(source, version, size_on_disk, uncompressed_size, flags, allow_chunked):
    if not isinstance(flags, CompressionFlags):
        flags = CompressionFlags.parse(flags)

    if size_on_disk == 0 and uncompressed_size != 0:
        # Stored raw
        stream = open_stream(source, uncompressed_size, uncompressed_size, CompressionMethod.NONE)
        return stream, None
    if size_on_disk == 0 and uncompressed_size == 0:
        return None, None

    chunked = version >= DocumentVersion.CHUNKED_COMPRESS and allow_chunked
    compressed_size = size_on_disk if flags.is_compressed else uncompressed_size
    window = None
    if flags.method == CompressionMethod.ZLIB or (flags.method == CompressionMethod.LZ4 and chunked):
        # Streaming decoders read ahead; keep them inside this section
        window = source = BoundedReader(source, compressed_size)
    return open_stream(source, compressed_size, uncompressed_size, flags.method, chunked), window


def open_section(source, version, size_on_disk, uncompressed_size, flags, allow_chunked):
    """Lazy counterpart of `materialize`. Returns a readable stream over the
    section's decompressed bytes, or None for an empty section."""
    stream, _ = _open_section(source, version, size_on_disk, uncompressed_size, flags, allow_chunked)
    return stream


def materialize(source, version, size_on_disk, uncompressed_size, flags, allow_chunked):
    """Read one document section fully into memory.

    Raw (size_on_disk == 0) and empty (both sizes 0) sections are handled
    here; everything else goes through the compression layer and is drained.
    The source is left at the end of the section.
    """
    if not isinstance(flags, CompressionFlags):
        flags = CompressionFlags.parse(flags)
    if size_on_disk == 0 and uncompressed_size == 0:
        return b""
    if size_on_disk == 0 or not flags.is_compressed:
        return read_exact(source, uncompressed_size)

    stream, window = _open_section(source, version, size_on_disk, uncompressed_size, flags, allow_chunked)
    try:
        data = stream.read()
    except (RuntimeError, EOFError) as e:
        # lz4.frame reports corrupt or truncated frames this way
        raise CorruptStream(f"Compressed section is corrupt: {e}") from e
    finally:
        stream.close()
    if window is not None:
        window.discard()
    if len(data) != uncompressed_size:
        logger.warning(f"Section decompressed to {len(data)} bytes, expected {uncompressed_size}")
        raise SizeMismatch(uncompressed_size, len(data))
    return data


def iter_records(stream, fmt, build=None):
    """Yield fixed-size records until the stream is exhausted.

    Running out of data exactly on a record boundary ends the iteration.
    A partial trailing record is a truncated read and raises. Errors from
    `build` propagate unchanged.
    """
    index = 0
    while True:
        offset = stream.tell()
        data = stream.read(fmt.size)
        if not data:
            return
        if len(data) != fmt.size:
            raise TruncatedRecordError(fmt.size, len(data), offset)
        values = fmt.unpack(data)
        yield build(index, *values) if build is not None else values
        index += 1
