"""Assemble synthetic LSPK packages and LSOF documents for the tests."""
import struct
import zlib

import lz4.block
import lz4.frame

ZLIB = 0x21
LZ4 = 0x22
NONE = 0x00

DELETION_OFFSET = 0xDEADBEEFDEADBEEF


def pad_name(name):
    raw = name.encode("utf-8")
    return raw + b"\x00" * (256 - len(raw))


def compress(data, flags):
    method = flags & 0x0F
    if method == 1:
        return zlib.compress(data)
    if method == 2:
        return lz4.block.compress(data, store_size=False)
    return data


class Entry:
    def __init__(self, name, content=b"", flags=NONE, part=0, deleted=False):
        self.name = name
        self.content = content
        self.flags = flags
        self.part = part
        self.deleted = deleted
        self.payload = b"" if deleted else compress(content, flags)

    @property
    def uncompressed_size(self):
        return len(self.content) if self.flags & 0x0F else 0


def _lay_out(entries, start):
    """-> (payload blob, [absolute offset per entry])"""
    blob = b""
    offsets = []
    for e in entries:
        if e.deleted:
            offsets.append(DELETION_OFFSET)
            continue
        offsets.append(start + len(blob))
        blob += e.payload
    return blob, offsets


# --- v7 / v9 ---

def build_v7(entries, version=7, num_parts=1):
    header_size = struct.calcsize("<IIIIBI")
    table_size = 272 * len(entries)
    data_offset = header_size + table_size
    blob, offsets = _lay_out(entries, 0)
    table = b"".join(
        struct.pack("<256sIIII", pad_name(e.name), off, len(e.payload), len(e.content) if e.flags else 0, e.part)
        for e, off in zip(entries, offsets))
    header = struct.pack("<IIIIBI", version, data_offset, num_parts, table_size, 1, len(entries))
    return header + table + blob


# --- v10 ---

def build_v10(entries, flags=0, priority=0, num_parts=1):
    header_size = 4 + struct.calcsize("<IIIHBBI")
    table_size = 280 * len(entries)
    data_offset = header_size + table_size
    blob, offsets = _lay_out(entries, 0)
    table = b"".join(
        struct.pack("<256sIIIIII", pad_name(e.name), off, len(e.payload), e.uncompressed_size, e.part, e.flags, 0)
        for e, off in zip(entries, offsets))
    header = b"LSPK" + struct.pack("<IIIHBBI", 10, data_offset, table_size, num_parts, flags, priority, len(entries))
    return header + table + blob


# --- v13 ---

def _entry13_table(entries, offsets):
    return b"".join(
        struct.pack("<256sIIIIII", pad_name(e.name), off & 0xFFFFFFFF, len(e.payload), e.uncompressed_size,
                    e.part, e.flags, 0)
        for e, off in zip(entries, offsets))


def _v13_tail(body, table, num_files, flags, priority, num_parts, table_extra=b""):
    compressed = lz4.block.compress(table + table_extra, store_size=False)
    list_offset = len(body)
    file_list = struct.pack("<I", num_files) + compressed
    header = struct.pack("<IIIHBB16s", 13, list_offset, len(file_list), num_parts, flags, priority, b"\x00" * 16)
    header_size = len(header) + 8
    return body + file_list + header + struct.pack("<i4s", header_size, b"LSPK")


def build_v13(entries, flags=0, priority=0, num_parts=1, table_extra=b""):
    blob, offsets = _lay_out(entries, 0)
    table = _entry13_table(entries, offsets)
    return _v13_tail(blob, table, len(entries), flags, priority, num_parts, table_extra)


def build_solid_v13(contents, priority=0, gap=False):
    """All contents in one LZ4 frame; the frame bytes after its 7-byte header
    are split between the entries so they tile the region exactly."""
    frame = lz4.frame.compress(b"".join(contents), store_size=False)
    body_size = len(frame) - 7
    n = len(contents)
    sizes = [body_size // n] * n
    sizes[-1] += body_size - sum(sizes)

    table = b""
    offset = 7
    for i, (content, size) in enumerate(zip(contents, sizes)):
        declared = size - 1 if gap and i == 0 else size
        table += struct.pack("<256sIIIIII", pad_name(f"file{i}.txt"), offset, declared, len(content), 0, LZ4, 0)
        offset += size
    return _v13_tail(frame, table, n, 0x04, priority, 1)


# --- v15 / v16 / v18 ---

def build_v15_family(entries, version=18, flags=0, priority=0, num_parts=1, table_extra=b""):
    if version == 15:
        header_fmt = "<IQIBB16s"
    else:
        header_fmt = "<IQIBB16sH"
    header_size = 4 + struct.calcsize(header_fmt)
    blob, offsets = _lay_out(entries, header_size)

    if version == 18:
        table = b"".join(
            struct.pack("<256sIHBBII", pad_name(e.name), off & 0xFFFFFFFF, (off >> 32) & 0xFFFF, e.part, e.flags,
                        len(e.payload), e.uncompressed_size)
            for e, off in zip(entries, offsets))
    else:
        table = b"".join(
            struct.pack("<256sQQQIIII", pad_name(e.name), off, len(e.payload), e.uncompressed_size, e.part,
                        e.flags, 0, 0)
            for e, off in zip(entries, offsets))
    compressed = lz4.block.compress(table + table_extra, store_size=False)
    list_offset = header_size + len(blob)
    file_list = struct.pack("<II", len(entries), len(compressed)) + compressed

    fields = [version, list_offset, len(file_list), flags, priority, b"\x00" * 16]
    if version != 15:
        fields.append(num_parts)
    return b"LSPK" + struct.pack(header_fmt, *fields) + blob + file_list


# --- LSOF documents ---

def name_table(buckets):
    out = struct.pack("<I", len(buckets))
    for chain in buckets:
        out += struct.pack("<H", len(chain))
        for name in chain:
            raw = name.encode("utf-8")
            out += struct.pack("<H", len(raw)) + raw
    return out


def name_ref(bucket, offset):
    return (bucket << 16) | offset


def type_and_length(type_id, length):
    return (length << 6) | type_id


def new_node(name, parent=-1, next_sibling=-1, first_attribute=-1):
    return struct.pack("<Iiii", name, parent, next_sibling, first_attribute)


def old_node(name, first_attribute=-1, parent=-1):
    return struct.pack("<Iii", name, first_attribute, parent)


def new_attribute(name, type_id, length, next_attribute=-1, offset=0):
    return struct.pack("<IIiI", name, type_and_length(type_id, length), next_attribute, offset)


def old_attribute(name, type_id, length, owner):
    return struct.pack("<IIi", name, type_and_length(type_id, length), owner)


def _section(data, flags, version, chunked):
    method = flags & 0x0F
    if method == 0 or not data:
        return b"", 0
    if method == 1:
        packed = zlib.compress(data)
    elif chunked and version >= 2:
        packed = lz4.frame.compress(data)
    else:
        packed = lz4.block.compress(data, store_size=False)
    return packed, len(packed)


def build_document(version=6, names=b"", nodes=b"", attributes=b"", values=b"", flags=NONE,
                   has_sibling_data=1, engine_version=0, reserved=b"\x00" * 8,
                   sizes=None):
    """`sizes` overrides the declared uncompressed sizes (names, nodes,
    attributes, values)."""
    sections = []
    for data, chunked in ((names, False), (nodes, True), (attributes, True), (values, True)):
        packed, size_on_disk = _section(data, flags, version, chunked)
        sections.append((data if size_on_disk == 0 else packed, size_on_disk, len(data)))
    if sizes is not None:
        sections = [(body, disk, size) for (body, disk, _), size in zip(sections, sizes)]

    out = b"LSOF" + struct.pack("<I", version)
    out += struct.pack("<q" if version >= 5 else "<i", engine_version)

    (s_body, s_disk, s_size), (n_body, n_disk, n_size), (a_body, a_disk, a_size), (v_body, v_disk, v_size) = sections
    if version >= 6:
        out += struct.pack("<II8sIIIIIIBBHI", s_size, s_disk, reserved, n_size, n_disk, a_size, a_disk,
                           v_size, v_disk, flags, 0, 0, has_sibling_data)
    else:
        out += struct.pack("<IIIIIIIIBBHI", s_size, s_disk, n_size, n_disk, a_size, a_disk,
                           v_size, v_disk, flags, 0, 0, has_sibling_data)
    return out + s_body + n_body + a_body + v_body
