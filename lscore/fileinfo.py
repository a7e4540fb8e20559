import os
import struct
import zlib
from dataclasses import dataclass, replace

from .binutils import decode_name
from .compression import CompressionFlags, CompressionLevel, CompressionMethod

# Offset written for files removed by a later-loaded package
DELETION_OFFSET = 0xDEADBEEFDEADBEEF

# name[256], offset, size_on_disk, uncompressed_size, archive_part
ENTRY7 = struct.Struct("<256sIIII")
# name[256], offset, size_on_disk, uncompressed_size, archive_part, flags, crc
ENTRY13 = struct.Struct("<256sIIIIII")
# name[256], offset u64, size_on_disk u64, uncompressed_size u64, archive_part, flags, crc, unknown
ENTRY15 = struct.Struct("<256sQQQIIII")
# name[256], offset low u32, offset high u16, archive_part u8, flags u8, size_on_disk, uncompressed_size
ENTRY18 = struct.Struct("<256sIHBBII")


class FileInfo:
    """Common surface of packaged and loose files: name, size, crc, is_deletion."""

    @property
    def is_deletion(self):
        return False


@dataclass(frozen=True)
class PackagedFileInfo(FileInfo):
    name: str
    offset_in_file: int
    size_on_disk: int
    uncompressed_size: int
    archive_part: int = 0
    flags: int = 0
    crc: int = 0
    solid: bool = False
    solid_offset: int = 0

    @property
    def compression(self):
        return CompressionFlags(self.flags)

    @property
    def size(self):
        if self.flags & 0x0F == CompressionMethod.NONE:
            return self.size_on_disk
        return self.uncompressed_size

    @property
    def is_deletion(self):
        return self.offset_in_file == DELETION_OFFSET

    @classmethod
    def from_entry7(cls, name, offset, size_on_disk, uncompressed_size, archive_part):
        # v7/v9 tables carry no flags: anything with an uncompressed size is zlib
        if uncompressed_size > 0:
            flags = CompressionFlags.build(CompressionMethod.ZLIB, CompressionLevel.DEFAULT).value
        else:
            flags = 0
        return cls(
            name=decode_name(name),
            offset_in_file=offset,
            size_on_disk=size_on_disk,
            uncompressed_size=uncompressed_size,
            archive_part=archive_part,
            flags=flags,
        )

    @classmethod
    def from_entry13(cls, name, offset, size_on_disk, uncompressed_size, archive_part, flags, crc):
        name = decode_name(name)
        CompressionFlags.parse(flags, name)
        return cls(
            name=name,
            offset_in_file=offset,
            size_on_disk=size_on_disk,
            uncompressed_size=uncompressed_size,
            archive_part=archive_part,
            flags=flags,
            crc=crc,
        )

    @classmethod
    def from_entry15(cls, name, offset, size_on_disk, uncompressed_size, archive_part, flags, crc, _unknown):
        return cls.from_entry13(name, offset, size_on_disk, uncompressed_size, archive_part, flags, crc)

    @classmethod
    def from_entry18(cls, name, offset_low, offset_high, archive_part, flags, size_on_disk, uncompressed_size):
        name = decode_name(name)
        CompressionFlags.parse(flags, name)
        return cls(
            name=name,
            offset_in_file=offset_low | (offset_high << 32),
            size_on_disk=size_on_disk,
            uncompressed_size=uncompressed_size,
            archive_part=archive_part,
            flags=flags,
        )

    def as_solid(self, solid_offset):
        return replace(self, solid=True, solid_offset=solid_offset)


@dataclass(frozen=True)
class FilesystemFileInfo(FileInfo):
    path: str
    name: str

    @property
    def size(self):
        return os.path.getsize(self.path)

    @property
    def crc(self):
        crc = 0
        with open(self.path, "rb") as f:
            for chunk in iter(lambda: f.read(64 * 1024), b""):
                crc = zlib.crc32(chunk, crc)
        return crc

    def read(self):
        with open(self.path, "rb") as f:
            return f.read()
