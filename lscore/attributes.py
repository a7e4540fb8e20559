import io
import struct
import uuid
from dataclasses import dataclass
from enum import IntEnum

from .binutils import read_exact, read_i32, read_u16
from .errors import InvalidTypeId, InvalidValueLength
from .versions import DocumentVersion

TYPE_BITS = 6
TYPE_MASK = (1 << TYPE_BITS) - 1
MAX_LENGTH = (1 << (32 - TYPE_BITS)) - 1


class TypeId(IntEnum):
    NONE = 0
    UINT8 = 1
    INT16 = 2
    UINT16 = 3
    INT32 = 4
    UINT32 = 5
    FLOAT = 6
    DOUBLE = 7
    IVEC2 = 8
    IVEC3 = 9
    IVEC4 = 10
    FVEC2 = 11
    FVEC3 = 12
    FVEC4 = 13
    MAT2X2 = 14
    MAT3X3 = 15
    MAT3X4 = 16
    MAT4X3 = 17
    MAT4X4 = 18
    BOOL = 19
    STRING = 20
    PATH = 21
    FIXED_STRING = 22
    LS_STRING = 23
    UINT64 = 24
    SCRATCH_BUFFER = 25
    OLD_INT64 = 26
    INT8 = 27
    TRANSLATED_STRING = 28
    WSTRING = 29
    LS_WSTRING = 30
    GUID = 31
    INT64 = 32
    TRANSLATED_FS_STRING = 33

    @property
    def type_name(self):
        """Name used for this type in LSX files."""
        return _TYPE_NAMES[self]

    @classmethod
    def from_name(cls, name):
        try:
            return _TYPES_BY_NAME[name]
        except KeyError:
            pass
        if name.isdigit():
            return cls.from_id(int(name))
        raise InvalidTypeId(name)

    @classmethod
    def from_id(cls, type_id):
        try:
            return cls(type_id)
        except ValueError:
            raise InvalidTypeId(type_id) from None


_TYPE_NAMES = {
    TypeId.NONE: "None",
    TypeId.UINT8: "uint8",
    TypeId.INT16: "int16",
    TypeId.UINT16: "uint16",
    TypeId.INT32: "int32",
    TypeId.UINT32: "uint32",
    TypeId.FLOAT: "float",
    TypeId.DOUBLE: "double",
    TypeId.IVEC2: "ivec2",
    TypeId.IVEC3: "ivec3",
    TypeId.IVEC4: "ivec4",
    TypeId.FVEC2: "fvec2",
    TypeId.FVEC3: "fvec3",
    TypeId.FVEC4: "fvec4",
    TypeId.MAT2X2: "mat2x2",
    TypeId.MAT3X3: "mat3x3",
    TypeId.MAT3X4: "mat3x4",
    TypeId.MAT4X3: "mat4x3",
    TypeId.MAT4X4: "mat4x4",
    TypeId.BOOL: "bool",
    TypeId.STRING: "string",
    TypeId.PATH: "path",
    TypeId.FIXED_STRING: "FixedString",
    TypeId.LS_STRING: "LSString",
    TypeId.UINT64: "uint64",
    TypeId.SCRATCH_BUFFER: "ScratchBuffer",
    TypeId.OLD_INT64: "old_int64",
    TypeId.INT8: "int8",
    TypeId.TRANSLATED_STRING: "TranslatedString",
    TypeId.WSTRING: "WString",
    TypeId.LS_WSTRING: "LSWString",
    TypeId.GUID: "guid",
    TypeId.INT64: "int64",
    TypeId.TRANSLATED_FS_STRING: "TranslatedFSString",
}
_TYPES_BY_NAME = {v: k for k, v in _TYPE_NAMES.items()}


def pack_type_and_length(type_id, length):
    if not 0 <= type_id <= TYPE_MASK:
        raise ValueError(f"Type id out of range: {type_id}")
    if not 0 <= length <= MAX_LENGTH:
        raise ValueError(f"Attribute length out of range: {length}")
    return (length << TYPE_BITS) | int(type_id)


def unpack_type_and_length(value):
    """-> (type id, byte length). The type id is a TypeId when known."""
    type_id = value & TYPE_MASK
    length = value >> TYPE_BITS
    try:
        type_id = TypeId(type_id)
    except ValueError:
        pass
    return type_id, length


@dataclass(frozen=True)
class TranslatedString:
    handle: str
    version: int = 0
    value: str = None


@dataclass(frozen=True)
class TranslatedFSStringArgument:
    key: str
    string: "TranslatedFSString"
    value: str


@dataclass(frozen=True)
class TranslatedFSString:
    handle: str
    version: int = 0
    value: str = None
    arguments: tuple = ()


_SCALARS = {
    TypeId.UINT8: struct.Struct("<B"),
    TypeId.INT8: struct.Struct("<b"),
    TypeId.INT16: struct.Struct("<h"),
    TypeId.UINT16: struct.Struct("<H"),
    TypeId.INT32: struct.Struct("<i"),
    TypeId.UINT32: struct.Struct("<I"),
    TypeId.FLOAT: struct.Struct("<f"),
    TypeId.DOUBLE: struct.Struct("<d"),
    TypeId.UINT64: struct.Struct("<Q"),
    TypeId.OLD_INT64: struct.Struct("<q"),
    TypeId.INT64: struct.Struct("<q"),
}

_VECTORS = {
    TypeId.IVEC2: struct.Struct("<2i"),
    TypeId.IVEC3: struct.Struct("<3i"),
    TypeId.IVEC4: struct.Struct("<4i"),
    TypeId.FVEC2: struct.Struct("<2f"),
    TypeId.FVEC3: struct.Struct("<3f"),
    TypeId.FVEC4: struct.Struct("<4f"),
}

# type -> (rows, columns)
_MATRICES = {
    TypeId.MAT2X2: (2, 2),
    TypeId.MAT3X3: (3, 3),
    TypeId.MAT3X4: (3, 4),
    TypeId.MAT4X3: (4, 3),
    TypeId.MAT4X4: (4, 4),
}

_STRINGS = {
    TypeId.STRING,
    TypeId.PATH,
    TypeId.FIXED_STRING,
    TypeId.LS_STRING,
    TypeId.WSTRING,
    TypeId.LS_WSTRING,
}


def _check_length(type_id, expected, data):
    if len(data) != expected:
        raise InvalidValueLength(type_id.type_name, expected, len(data))


def _decode_string(raw):
    if raw.endswith(b"\x00"):
        raw = raw[:-1]
    return raw.decode("utf-8", "replace")


def _read_string(stream, length):
    # Length includes the NUL terminator
    if length <= 0:
        return ""
    return _decode_string(read_exact(stream, length))


def _read_translated_header(stream, version):
    if version >= DocumentVersion.BG3:
        return read_u16(stream), None
    value = _read_string(stream, read_i32(stream))
    return 0, value


def _read_translated_string(stream, version):
    string_version, value = _read_translated_header(stream, version)
    handle = _read_string(stream, read_i32(stream))
    return TranslatedString(handle, string_version, value)


def _read_translated_fs_string(stream, version):
    string_version, value = _read_translated_header(stream, version)
    handle = _read_string(stream, read_i32(stream))
    arguments = []
    for _ in range(read_i32(stream)):
        key = _read_string(stream, read_i32(stream))
        string = _read_translated_fs_string(stream, version)
        arg_value = _read_string(stream, read_i32(stream))
        arguments.append(TranslatedFSStringArgument(key, string, arg_value))
    return TranslatedFSString(handle, string_version, value, tuple(arguments))


def decode_value(type_id, data, version=DocumentVersion.BG3_ADDITIONAL_BLOB):
    """Turn the raw value bytes of one attribute into a Python value.

    Vectors come back as tuples, matrices as a tuple of rows, GUIDs as
    uuid.UUID, ScratchBuffer as bytes.
    """
    type_id = TypeId.from_id(type_id)
    data = bytes(data)

    if type_id == TypeId.NONE:
        return None
    if type_id in _SCALARS:
        fmt = _SCALARS[type_id]
        _check_length(type_id, fmt.size, data)
        return fmt.unpack(data)[0]
    if type_id in _VECTORS:
        fmt = _VECTORS[type_id]
        _check_length(type_id, fmt.size, data)
        return fmt.unpack(data)
    if type_id in _MATRICES:
        rows, columns = _MATRICES[type_id]
        _check_length(type_id, rows * columns * 4, data)
        flat = struct.unpack(f"<{rows * columns}f", data)
        return tuple(flat[r * columns:(r + 1) * columns] for r in range(rows))
    if type_id == TypeId.BOOL:
        _check_length(type_id, 1, data)
        return data[0] != 0
    if type_id in _STRINGS:
        return _decode_string(data)
    if type_id == TypeId.GUID:
        _check_length(type_id, 16, data)
        return uuid.UUID(bytes_le=data)
    if type_id == TypeId.SCRATCH_BUFFER:
        return data
    if type_id == TypeId.TRANSLATED_STRING:
        return _read_translated_string(io.BytesIO(data), version)
    return _read_translated_fs_string(io.BytesIO(data), version)
