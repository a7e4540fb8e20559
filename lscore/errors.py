class LSCoreError(Exception):
    """Base class for everything the decoders raise."""


# --- Format errors: we don't understand this file ---

class FormatError(LSCoreError):
    pass


class NotAPackage(FormatError):
    def __init__(self, path=None):
        self.path = path
        where = f" ({path})" if path else ""
        super().__init__(f"Not an LSPK package{where}")


class UnsupportedVersion(FormatError):
    def __init__(self, version, kind="package"):
        self.version = version
        self.kind = kind
        super().__init__(f"Unsupported {kind} version: {version}")


class InvalidCompressionFlags(FormatError):
    def __init__(self, flags, name=None):
        self.flags = flags
        self.name = name
        where = f" on '{name}'" if name else ""
        super().__init__(f"Invalid compression flags 0x{flags:X}{where}")


class InvalidMagic(FormatError):
    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Bad magic: expected {expected!r}, found {actual!r}")


class InvalidTypeId(FormatError):
    def __init__(self, type_id):
        self.type_id = type_id
        super().__init__(f"Unknown attribute type id: {type_id}")


class InvalidValueLength(FormatError):
    def __init__(self, type_name, expected, actual):
        self.type_name = type_name
        self.expected = expected
        self.actual = actual
        super().__init__(f"{type_name} value must be {expected} bytes, got {actual}")


class CorruptHeader(FormatError):
    pass


# --- Consistency errors: the file contradicts itself ---

class ConsistencyError(LSCoreError):
    pass


class SizeMismatch(ConsistencyError):
    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} bytes of decompressed data, got {actual}")


class LZ4DifferentSize(SizeMismatch):
    pass


class CorruptStream(ConsistencyError):
    pass


class InvalidSolidArchiveCompression(ConsistencyError):
    def __init__(self, first_offset, last_offset, total_size_on_disk):
        self.first_offset = first_offset
        self.last_offset = last_offset
        self.total_size_on_disk = total_size_on_disk
        super().__init__(
            f"Solid archive region [{first_offset}, {last_offset}) does not match "
            f"the {total_size_on_disk} bytes declared by its entries"
        )


class SolidFileListNotContiguous(ConsistencyError):
    def __init__(self, name=None, expected_offset=None, actual_offset=None):
        self.name = name
        self.expected_offset = expected_offset
        self.actual_offset = actual_offset
        if name is None:
            msg = "Solid file list has gaps between entries"
        else:
            msg = f"Solid entry '{name}' starts at {actual_offset}, expected {expected_offset}"
        super().__init__(msg)


# --- I/O errors ---

class DecodeIOError(LSCoreError):
    pass


class ShortRead(DecodeIOError):
    def __init__(self, expected, actual, offset=None):
        self.expected = expected
        self.actual = actual
        self.offset = offset
        where = f" at offset {offset}" if offset is not None else ""
        super().__init__(f"Short read{where}: wanted {expected} bytes, got {actual}")


class TruncatedRecordError(ShortRead):
    pass


class DeletedFileError(LSCoreError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"'{name}' is a deletion marker and has no content")
