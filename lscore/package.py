import io
import logging
import os
import struct
from dataclasses import dataclass, field
from enum import IntFlag

from .binutils import read_exact, read_struct, read_u32
from .compression import decompress, decompress_lz4_any, decompress_lz4_frame
from .errors import (
    CorruptHeader,
    DecodeIOError,
    DeletedFileError,
    InvalidSolidArchiveCompression,
    LZ4DifferentSize,
    NotAPackage,
    SolidFileListNotContiguous,
    UnsupportedVersion,
)
from .fileinfo import ENTRY7, ENTRY13, ENTRY15, ENTRY18, PackagedFileInfo
from .versions import PackageVersion

logger = logging.getLogger("LSCore.Package")

PACKAGE_MAGIC = b"LSPK"

# version, data_offset, num_parts, file_list_size, little_endian, num_files
HEADER7 = struct.Struct("<IIIIBI")
# version, data_offset, file_list_size, num_parts, flags, priority, num_files
HEADER10 = struct.Struct("<IIIHBBI")
# version, file_list_offset, file_list_size, num_parts, flags, priority, md5
HEADER13 = struct.Struct("<IIIHBB16s")
# version, file_list_offset, file_list_size, flags, priority, md5
HEADER15 = struct.Struct("<IQIBB16s")
# HEADER15 + num_parts
HEADER16 = struct.Struct("<IQIBB16sH")
# header_size, magic; the last 8 bytes of a v13 package
TRAILER = struct.Struct("<i4s")

# Payload of a solid v13 package starts right after the 7-byte LZ4 frame header
SOLID_FIRST_OFFSET = 7


class PackageFlags(IntFlag):
    NONE = 0
    ALLOW_MEMORY_MAPPING = 0x02
    SOLID = 0x04
    PRELOAD = 0x08


@dataclass(frozen=True)
class PackageMetadata:
    flags: PackageFlags = PackageFlags.NONE
    # Higher priority packages load later and override earlier ones
    priority: int = 0


@dataclass(frozen=True)
class Package:
    version: PackageVersion
    path: str = None
    metadata: PackageMetadata = PackageMetadata()
    files: tuple = ()
    num_parts: int = 1
    solid_data: bytes = field(default=None, repr=False, compare=False)

    @property
    def flags(self):
        return self.metadata.flags

    @property
    def priority(self):
        return self.metadata.priority

    @property
    def is_solid(self):
        return bool(self.metadata.flags & PackageFlags.SOLID)

    def find(self, name):
        name = name.replace("\\", "/")
        return next((f for f in self.files if f.name == name), None)

    def part_path(self, part):
        if self.path is None:
            raise ValueError("Package was decoded without a path; pass the source explicitly")
        return make_part_filename(self.path, part)

    def read_file(self, info, source=None):
        """Return the decompressed contents of one entry.

        `source` is used for part 0 when given, otherwise the part file is
        opened from disk next to `path`.
        """
        if info.is_deletion:
            raise DeletedFileError(info.name)
        if info.solid:
            if self.solid_data is None:
                raise DecodeIOError(f"Solid data for '{info.name}' is not loaded")
            return self.solid_data[info.solid_offset:info.solid_offset + info.uncompressed_size]

        if source is not None and info.archive_part == 0:
            return _read_entry(source, info)
        try:
            with open(self.part_path(info.archive_part), "rb") as f:
                return _read_entry(f, info)
        except OSError as e:
            raise DecodeIOError(f"Cannot read '{info.name}' from part {info.archive_part}: {e}") from e


def _read_entry(source, info):
    source.seek(info.offset_in_file)
    data = read_exact(source, info.size_on_disk)
    return decompress(data, info.flags, info.uncompressed_size)


def make_part_filename(path, part):
    """Game.pak part 2 -> Game_2.pak in the same directory."""
    if part == 0:
        return path
    directory, file_name = os.path.split(path)
    stem, ext = os.path.splitext(file_name)
    return os.path.join(directory, f"{stem}_{part}{ext}")


def decode_package(source, path=None, metadata_only=False):
    """Sniff the package revision of `source` and decode it.

    With `metadata_only` only the header fields (version, flags, priority)
    are read and the returned package has no files.
    """
    try:
        return _sniff_and_decode(source, path, metadata_only)
    except OSError as e:
        raise DecodeIOError(f"I/O error while reading package {path or ''}: {e}") from e


def open_package(path, metadata_only=False):
    try:
        with open(path, "rb") as f:
            return decode_package(f, path, metadata_only)
    except OSError as e:
        raise DecodeIOError(f"Cannot open package {path}: {e}") from e


def _sniff_and_decode(source, path, metadata_only):
    size = source.seek(0, io.SEEK_END)

    # v13 keeps its header at the end of the file
    if size >= TRAILER.size:
        source.seek(size - TRAILER.size)
        header_size, magic = read_struct(source, TRAILER)
        if magic == PACKAGE_MAGIC:
            if header_size < TRAILER.size or header_size > size:
                raise CorruptHeader(f"Trailer header size {header_size} is out of range for a {size} byte file")
            source.seek(size - header_size)
            logger.debug(f"{path}: trailer header found, {header_size} bytes")
            return _read_v13(source, path, metadata_only)

    source.seek(0)
    head = source.read(8)
    if head[:4] == PACKAGE_MAGIC and len(head) == 8:
        version = struct.unpack("<I", head[4:])[0]
        reader = _MAGIC_READERS.get(version)
        if reader is None:
            logger.warning(f"{path}: unsupported LSPK version {version}")
            raise UnsupportedVersion(version)
        logger.debug(f"{path}: LSPK v{version}")
        source.seek(4)
        return reader(source, path, metadata_only)

    # D:OS 1 packages have no magic at all
    if len(head) >= 4:
        version = struct.unpack("<I", head[:4])[0]
        if version in (PackageVersion.V7, PackageVersion.V9):
            source.seek(0)
            return _read_v7(source, path, metadata_only)

    raise NotAPackage(path)


def _check_version(actual, expected):
    if actual != expected:
        raise UnsupportedVersion(actual)


def _read_entries(stream, count, fmt, build):
    return [build(*read_struct(stream, fmt)) for _ in range(count)]


def _read_v7(source, path, metadata_only):
    version, data_offset, num_parts, _list_size, _little_endian, num_files = read_struct(source, HEADER7)
    package_version = PackageVersion(version)
    if metadata_only:
        return Package(package_version, path, num_parts=num_parts)

    files = []
    for _ in range(num_files):
        name, offset, size_on_disk, uncompressed_size, archive_part = read_struct(source, ENTRY7)
        if archive_part == 0:
            offset += data_offset
        files.append(PackagedFileInfo.from_entry7(name, offset, size_on_disk, uncompressed_size, archive_part))
    logger.info(f"{path}: v{version}, {len(files)} files")
    return Package(package_version, path, files=tuple(files), num_parts=num_parts)


def _read_v10(source, path, metadata_only):
    version, data_offset, _list_size, num_parts, flags, priority, num_files = read_struct(source, HEADER10)
    _check_version(version, PackageVersion.V10)
    metadata = PackageMetadata(PackageFlags(flags), priority)
    if metadata_only:
        return Package(PackageVersion.V10, path, metadata, num_parts=num_parts)

    files = []
    for _ in range(num_files):
        name, offset, size_on_disk, uncompressed_size, archive_part, entry_flags, crc = read_struct(source, ENTRY13)
        if archive_part == 0:
            offset += data_offset
        # v10 does not store the compression level
        entry_flags = (entry_flags & 0x0F) | 0x20
        files.append(PackagedFileInfo.from_entry13(
            name, offset, size_on_disk, uncompressed_size, archive_part, entry_flags, crc))
    logger.info(f"{path}: v10, {len(files)} files, priority {priority}")
    return Package(PackageVersion.V10, path, metadata, tuple(files), num_parts)


def _decompress_file_list(compressed, num_files, fmt):
    table = decompress_lz4_any(compressed, fmt.size * num_files)
    return io.BytesIO(table)


def _read_v13(source, path, metadata_only):
    version, list_offset, list_size, num_parts, flags, priority, _md5 = read_struct(source, HEADER13)
    _check_version(version, PackageVersion.V13)
    metadata = PackageMetadata(PackageFlags(flags), priority)
    if metadata_only:
        return Package(PackageVersion.V13, path, metadata, num_parts=num_parts)

    source.seek(list_offset)
    num_files = read_u32(source)
    compressed = read_exact(source, max(list_size - 4, 0))
    table = _decompress_file_list(compressed, num_files, ENTRY13)
    files = _read_entries(table, num_files, ENTRY13, PackagedFileInfo.from_entry13)
    logger.info(f"{path}: v13, {num_files} files, priority {priority}")

    if metadata.flags & PackageFlags.SOLID and files:
        files, solid_data = _rebuild_solid(source, files)
        return Package(PackageVersion.V13, path, metadata, tuple(files), num_parts, solid_data)
    return Package(PackageVersion.V13, path, metadata, tuple(files), num_parts)


def _rebuild_solid(source, files):
    """Decompress the single LZ4 frame that holds every file of a solid
    package and point each entry at its slice of the result."""
    first_offset = min(f.offset_in_file for f in files)
    last_offset = max(f.offset_in_file + f.size_on_disk for f in files)
    total_size_on_disk = sum(f.size_on_disk for f in files)
    span = last_offset - first_offset

    if first_offset != SOLID_FIRST_OFFSET or span < total_size_on_disk:
        raise InvalidSolidArchiveCompression(first_offset, last_offset, total_size_on_disk)
    if span > total_size_on_disk:
        raise SolidFileListNotContiguous()

    source.seek(0)
    frame = read_exact(source, last_offset)
    solid_data = decompress_lz4_frame(frame)

    rebuilt = []
    offset = SOLID_FIRST_OFFSET
    solid_offset = 0
    for info in files:
        if info.offset_in_file != offset:
            raise SolidFileListNotContiguous(info.name, offset, info.offset_in_file)
        rebuilt.append(info.as_solid(solid_offset))
        offset += info.size_on_disk
        solid_offset += info.uncompressed_size

    if len(solid_data) != solid_offset:
        raise LZ4DifferentSize(solid_offset, len(solid_data))
    logger.debug(f"Solid frame: {last_offset} bytes on disk, {solid_offset} decompressed")
    return rebuilt, solid_data


def _read_compressed_file_list(source, fmt, build):
    num_files = read_u32(source)
    compressed_size = read_u32(source)
    compressed = read_exact(source, compressed_size)
    table = _decompress_file_list(compressed, num_files, fmt)
    return _read_entries(table, num_files, fmt, build)


def _read_v15_family(source, path, metadata_only, header_fmt, expected, entry_fmt, build):
    fields = read_struct(source, header_fmt)
    version, list_offset, _list_size, flags, priority = fields[:5]
    num_parts = fields[6] if len(fields) > 6 else 1
    _check_version(version, expected)
    metadata = PackageMetadata(PackageFlags(flags), priority)
    if metadata_only:
        return Package(expected, path, metadata, num_parts=num_parts)

    source.seek(list_offset)
    files = _read_compressed_file_list(source, entry_fmt, build)
    logger.info(f"{path}: v{version}, {len(files)} files, priority {priority}")
    return Package(expected, path, metadata, tuple(files), num_parts)


def _read_v15(source, path, metadata_only):
    return _read_v15_family(source, path, metadata_only, HEADER15, PackageVersion.V15,
                            ENTRY15, PackagedFileInfo.from_entry15)


def _read_v16(source, path, metadata_only):
    return _read_v15_family(source, path, metadata_only, HEADER16, PackageVersion.V16,
                            ENTRY15, PackagedFileInfo.from_entry15)


def _read_v18(source, path, metadata_only):
    return _read_v15_family(source, path, metadata_only, HEADER16, PackageVersion.V18,
                            ENTRY18, PackagedFileInfo.from_entry18)


_MAGIC_READERS = {
    PackageVersion.V10: _read_v10,
    PackageVersion.V15: _read_v15,
    PackageVersion.V16: _read_v16,
    PackageVersion.V18: _read_v18,
}
