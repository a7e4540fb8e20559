import io
import logging
import struct
from dataclasses import dataclass
from enum import Enum

from .attributes import TypeId, decode_value, unpack_type_and_length
from .binutils import read_exact, read_struct, read_u16, read_u32
from .compression import CompressionFlags
from .errors import ConsistencyError, DecodeIOError, InvalidMagic, UnsupportedVersion
from .sections import iter_records, materialize
from .versions import MAX_DOCUMENT_VERSION, DocumentVersion

logger = logging.getLogger("LSCore.Document")

DOCUMENT_MAGIC = b"LSOF"

ENGINE_VERSION32 = struct.Struct("<i")
ENGINE_VERSION64 = struct.Struct("<q")

# strings, nodes, attributes, values (uncompressed, on disk), flags, unknown2, unknown3, has_sibling_data
METADATA = struct.Struct("<IIIIIIIIBBHI")
# Same, with 8 reserved bytes after the string sizes
METADATA6 = struct.Struct("<II8sIIIIIIBBHI")

# name, first_attribute, parent
NODE_V2 = struct.Struct("<Iii")
# name, parent, next_sibling, first_attribute
NODE_V3 = struct.Struct("<Iiii")
# name, type_and_length, owner
ATTRIBUTE_V2 = struct.Struct("<IIi")
# name, type_and_length, next_attribute, offset
ATTRIBUTE_V3 = struct.Struct("<IIiI")


def _index(raw):
    """On-disk -1 sentinel -> None."""
    return None if raw < 0 else raw


def _name_ref(packed):
    # 16-bit MSB: bucket in the name hash table, 16-bit LSB: offset in its chain
    return packed >> 16, packed & 0xFFFF


class StructuralSchema(Enum):
    # Owner-pointer attributes, positional children
    OLD = "old"
    # Forward-linked attributes, explicit sibling links
    NEW = "new"


def select_schema(version, has_sibling_data):
    if version >= DocumentVersion.EXTENDED_NODES and has_sibling_data == 1:
        return StructuralSchema.NEW
    return StructuralSchema.OLD


@dataclass(frozen=True)
class DocumentMetadata:
    strings_uncompressed_size: int
    strings_size_on_disk: int
    nodes_uncompressed_size: int
    nodes_size_on_disk: int
    attributes_uncompressed_size: int
    attributes_size_on_disk: int
    values_uncompressed_size: int
    values_size_on_disk: int
    compression_flags: CompressionFlags
    unknown2: int = 0
    unknown3: int = 0
    has_sibling_data: int = 0
    # Only present from BG3_ADDITIONAL_BLOB on; meaning unknown, kept as-is
    reserved: bytes = None

    @classmethod
    def read(cls, stream, version):
        if version >= DocumentVersion.BG3_ADDITIONAL_BLOB:
            fields = read_struct(stream, METADATA6)
            reserved = fields[2]
            fields = fields[:2] + fields[3:]
        else:
            fields = read_struct(stream, METADATA)
            reserved = None
        (strings_unc, strings_disk, nodes_unc, nodes_disk, attrs_unc, attrs_disk,
         values_unc, values_disk, flags, unknown2, unknown3, has_sibling_data) = fields
        return cls(
            strings_unc, strings_disk,
            nodes_unc, nodes_disk,
            attrs_unc, attrs_disk,
            values_unc, values_disk,
            CompressionFlags.parse(flags, "document"),
            unknown2, unknown3, has_sibling_data,
            reserved,
        )

    def pack(self, version):
        head = (self.strings_uncompressed_size, self.strings_size_on_disk)
        tail = (
            self.nodes_uncompressed_size, self.nodes_size_on_disk,
            self.attributes_uncompressed_size, self.attributes_size_on_disk,
            self.values_uncompressed_size, self.values_size_on_disk,
            int(self.compression_flags), self.unknown2, self.unknown3, self.has_sibling_data,
        )
        if version >= DocumentVersion.BG3_ADDITIONAL_BLOB:
            return METADATA6.pack(*head, self.reserved or bytes(8), *tail)
        return METADATA.pack(*head, *tail)


@dataclass(frozen=True)
class DocumentHeader:
    version: DocumentVersion
    engine_version: int
    metadata: DocumentMetadata

    @property
    def schema(self):
        return select_schema(self.version, self.metadata.has_sibling_data)

    @property
    def engine_version_parts(self):
        """(major, minor, revision, build)"""
        v = self.engine_version
        if self.version >= DocumentVersion.BG3_EXTENDED_HEADER:
            return (v >> 55) & 0x7F, (v >> 47) & 0xFF, (v >> 31) & 0xFFFF, v & 0x7FFFFFFF
        return (v >> 28) & 0x0F, (v >> 24) & 0x0F, (v >> 16) & 0xFF, v & 0xFFFF


class NameTable:
    """Hash buckets of deduplicated names. Strings are kept as the raw bytes
    copied out of the document and decoded on lookup."""

    def __init__(self, buckets=()):
        self.buckets = tuple(buckets)

    @classmethod
    def parse(cls, data):
        if not data:
            return cls()
        stream = io.BytesIO(data)
        buckets = []
        for _ in range(read_u32(stream)):
            chain_length = read_u16(stream)
            buckets.append(tuple(read_exact(stream, read_u16(stream)) for _ in range(chain_length)))
        return cls(buckets)

    def resolve(self, bucket, offset):
        if bucket >= len(self.buckets):
            return None
        chain = self.buckets[bucket]
        if offset >= len(chain):
            return None
        return chain[offset].decode("utf-8", "replace")

    def __len__(self):
        return sum(len(chain) for chain in self.buckets)

    def __iter__(self):
        for chain in self.buckets:
            for raw in chain:
                yield raw.decode("utf-8", "replace")


@dataclass(frozen=True)
class OldSchemaNode:
    name_ref: int
    first_attribute_index: int = None
    parent_index: int = None

    @property
    def name_index(self):
        return _name_ref(self.name_ref)[0]

    @property
    def name_offset(self):
        return _name_ref(self.name_ref)[1]


@dataclass(frozen=True)
class NewSchemaNode:
    name_ref: int
    parent_index: int = None
    next_sibling_index: int = None
    first_attribute_index: int = None

    @property
    def name_index(self):
        return _name_ref(self.name_ref)[0]

    @property
    def name_offset(self):
        return _name_ref(self.name_ref)[1]


@dataclass(frozen=True)
class OldSchemaAttribute:
    name_ref: int
    type_and_length: int
    owner_index: int = None
    # Not stored on disk: running sum of the lengths before this attribute
    value_offset: int = 0

    @property
    def name_index(self):
        return _name_ref(self.name_ref)[0]

    @property
    def name_offset(self):
        return _name_ref(self.name_ref)[1]

    @property
    def type_id(self):
        return unpack_type_and_length(self.type_and_length)[0]

    @property
    def length(self):
        return unpack_type_and_length(self.type_and_length)[1]


@dataclass(frozen=True)
class NewSchemaAttribute:
    name_ref: int
    type_and_length: int
    next_attribute_index: int = None
    offset: int = 0

    @property
    def name_index(self):
        return _name_ref(self.name_ref)[0]

    @property
    def name_offset(self):
        return _name_ref(self.name_ref)[1]

    @property
    def type_id(self):
        return unpack_type_and_length(self.type_and_length)[0]

    @property
    def length(self):
        return unpack_type_and_length(self.type_and_length)[1]

    @property
    def value_offset(self):
        return self.offset


class NodeTable(tuple):
    """Node records in file order. A node's index is its position."""


class AttributeTable(tuple):
    """Attribute records in file order."""


def _parse_nodes(data, schema):
    stream = io.BytesIO(data)
    if schema is StructuralSchema.NEW:
        return NodeTable(iter_records(stream, NODE_V3, lambda _i, name, parent, sibling, first:
                                     NewSchemaNode(name, _index(parent), _index(sibling), _index(first))))
    return NodeTable(iter_records(stream, NODE_V2, lambda _i, name, first, parent:
                                 OldSchemaNode(name, _index(first), _index(parent))))


def _parse_attributes(data, schema):
    stream = io.BytesIO(data)
    if schema is StructuralSchema.NEW:
        return AttributeTable(iter_records(stream, ATTRIBUTE_V3, lambda _i, name, tl, next_attr, offset:
                                          NewSchemaAttribute(name, tl, _index(next_attr), offset)))

    attributes = []
    value_offset = 0
    for name, type_and_length, owner in iter_records(stream, ATTRIBUTE_V2):
        attributes.append(OldSchemaAttribute(name, type_and_length, _index(owner), value_offset))
        value_offset += type_and_length >> 6
    return AttributeTable(attributes)


def _owner_links(attributes):
    """For old-schema tables: index of the next attribute with the same owner."""
    links = [None] * len(attributes)
    last_by_owner = {}
    for index, attr in enumerate(attributes):
        previous = last_by_owner.get(attr.owner_index)
        if previous is not None:
            links[previous] = index
        last_by_owner[attr.owner_index] = index
    return tuple(links)


class StructuredDocument:
    """A decoded LSOF document: flat node and attribute arenas addressed by
    index, plus the name table and the raw value blob."""

    def __init__(self, header, names, nodes, attributes, values):
        self.header = header
        self.names = names
        self.nodes = nodes
        self.attributes = attributes
        self.values = values
        self.schema = header.schema

        children = [[] for _ in nodes]
        roots = []
        for index, node in enumerate(nodes):
            parent = node.parent_index
            if parent is None or parent >= len(nodes):
                roots.append(index)
            else:
                children[parent].append(index)
        self._children = children
        self._roots = tuple(roots)

        if self.schema is StructuralSchema.OLD:
            self._next_attribute = _owner_links(attributes)
        else:
            self._next_attribute = tuple(a.next_attribute_index for a in attributes)

    @property
    def version(self):
        return self.header.version

    def resolve_name(self, bucket, offset):
        return self.names.resolve(bucket, offset)

    def node_name(self, index):
        node = self.nodes[index]
        return self.resolve_name(node.name_index, node.name_offset)

    def attribute_name(self, index):
        attr = self.attributes[index]
        return self.resolve_name(attr.name_index, attr.name_offset)

    def roots(self):
        return self._roots

    def children(self, index):
        positional = self._children[index]
        if self.schema is StructuralSchema.OLD or not positional:
            return tuple(positional)

        result = []
        seen = set()
        current = positional[0]
        while current is not None and current < len(self.nodes) and current not in seen:
            # A sibling link must stay under the same parent
            if self.nodes[current].parent_index != index:
                logger.warning(f"Sibling link to node {current} leaves parent {index}; stopping")
                break
            seen.add(current)
            result.append(current)
            current = self.nodes[current].next_sibling_index
        return tuple(result)

    def attribute_indices(self, node_index):
        result = []
        seen = set()
        current = self.nodes[node_index].first_attribute_index
        while current is not None and current < len(self.attributes) and current not in seen:
            seen.add(current)
            result.append(current)
            current = self._next_attribute[current]
        return tuple(result)

    def attribute_value(self, index):
        attr = self.attributes[index]
        start = attr.value_offset
        data = self.values[start:start + attr.length]
        if len(data) != attr.length:
            raise DecodeIOError(
                f"Attribute {index} value [{start}, {start + attr.length}) is outside the "
                f"{len(self.values)} byte value blob")
        return decode_value(attr.type_id, data, self.version)

    def to_tree(self):
        """Nested dicts: {"id", "attributes": {name: {"type", "value"}}, "children"}.

        An attribute name used more than once on a node maps to a list of
        entries. Unresolvable names are keyed as "#<attribute index>".
        """
        visited = set()
        return [self._node_tree(index, visited) for index in self._roots]

    def _node_tree(self, index, visited):
        if index in visited:
            raise ConsistencyError(f"Node {index} appears twice in the document tree")
        visited.add(index)

        attrs = {}
        for a in self.attribute_indices(index):
            type_id = self.attributes[a].type_id
            type_name = type_id.type_name if isinstance(type_id, TypeId) else str(type_id)
            entry = {"type": type_name, "value": self.attribute_value(a)}
            name = self.attribute_name(a)
            if name is None:
                name = f"#{a}"
            if name in attrs:
                logger.warning(f"Node {index} repeats attribute '{name}'")
                previous = attrs[name]
                attrs[name] = (previous if isinstance(previous, list) else [previous]) + [entry]
            else:
                attrs[name] = entry
        return {
            "id": self.node_name(index),
            "attributes": attrs,
            "children": [self._node_tree(c, visited) for c in self.children(index)],
        }


def _read_header(stream):
    magic = read_exact(stream, 4)
    if magic != DOCUMENT_MAGIC:
        raise InvalidMagic(DOCUMENT_MAGIC, magic)
    raw_version = read_u32(stream)
    if not DocumentVersion.INITIAL <= raw_version <= MAX_DOCUMENT_VERSION:
        logger.warning(f"Unsupported LSOF version {raw_version}")
        raise UnsupportedVersion(raw_version, "document")
    version = DocumentVersion(raw_version)

    if version >= DocumentVersion.BG3_EXTENDED_HEADER:
        engine_version = read_struct(stream, ENGINE_VERSION64)[0]
    else:
        engine_version = read_struct(stream, ENGINE_VERSION32)[0]
    metadata = DocumentMetadata.read(stream, version)
    return DocumentHeader(version, engine_version, metadata)


def decode_document_header(data):
    """Magic, version and metadata only; no section is decompressed."""
    return _read_header(io.BytesIO(data))


def decode_document(data):
    stream = io.BytesIO(data)
    header = _read_header(stream)
    version, meta = header.version, header.metadata
    flags = meta.compression_flags
    schema = header.schema
    logger.debug(f"LSOF v{int(version)}, {schema.value} schema, {flags!r}")

    names = materialize(stream, version, meta.strings_size_on_disk, meta.strings_uncompressed_size,
                        flags, allow_chunked=False)
    nodes = materialize(stream, version, meta.nodes_size_on_disk, meta.nodes_uncompressed_size,
                        flags, allow_chunked=True)
    attributes = materialize(stream, version, meta.attributes_size_on_disk,
                             meta.attributes_uncompressed_size, flags, allow_chunked=True)
    values = materialize(stream, version, meta.values_size_on_disk, meta.values_uncompressed_size,
                         flags, allow_chunked=True)

    document = StructuredDocument(
        header,
        NameTable.parse(names),
        _parse_nodes(nodes, schema),
        _parse_attributes(attributes, schema),
        values,
    )
    logger.info(f"LSOF v{int(version)}: {len(document.nodes)} nodes, {len(document.attributes)} attributes")
    return document
