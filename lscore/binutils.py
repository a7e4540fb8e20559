import struct

from .errors import ShortRead

NAME_SIZE = 256


def read_exact(stream, size):
    offset = stream.tell() if stream.seekable() else None
    data = stream.read(size)
    if len(data) != size:
        raise ShortRead(size, len(data), offset)
    return data


def read_struct(stream, fmt):
    return fmt.unpack(read_exact(stream, fmt.size))


U16 = struct.Struct("<H")
U32 = struct.Struct("<I")
I32 = struct.Struct("<i")


def read_u32(stream):
    return read_struct(stream, U32)[0]


def read_i32(stream):
    return read_struct(stream, I32)[0]


def read_u16(stream):
    return read_struct(stream, U16)[0]


def decode_name(raw):
    """Fixed 256-byte, NUL padded entry name."""
    end = raw.find(b"\x00")
    if end != -1:
        raw = raw[:end]
    return raw.decode("utf-8", "replace")
