from enum import IntEnum


class PackageVersion(IntEnum):
    V7 = 7     # D:OS 1
    V9 = 9     # D:OS 1 EE
    V10 = 10   # D:OS 2
    V13 = 13   # D:OS 2 DE
    V15 = 15   # BG3 EA
    V16 = 16   # BG3 EA Patch4
    V18 = 18   # BG3 Release


class DocumentVersion(IntEnum):
    INITIAL = 1
    # Node, attribute and value sections may be LZ4 frame compressed
    CHUNKED_COMPRESS = 2
    # Sibling-linked node and attribute records
    EXTENDED_NODES = 3
    BG3 = 4
    # 64-bit engine version in the header
    BG3_EXTENDED_HEADER = 5
    # Extra 8 reserved bytes in the metadata block
    BG3_ADDITIONAL_BLOB = 6


MAX_DOCUMENT_VERSION = DocumentVersion.BG3_ADDITIONAL_BLOB


class Game(IntEnum):
    DIVINITY_ORIGINAL_SIN = 0
    DIVINITY_ORIGINAL_SIN_EE = 1
    DIVINITY_ORIGINAL_SIN_2 = 2
    DIVINITY_ORIGINAL_SIN_2_DE = 3
    BALDURS_GATE_3 = 4

    @property
    def is_fw3(self):
        return self not in (Game.DIVINITY_ORIGINAL_SIN, Game.DIVINITY_ORIGINAL_SIN_EE)

    @property
    def package_version(self):
        return _PACKAGE_VERSIONS[self]

    @property
    def document_version(self):
        return _DOCUMENT_VERSIONS[self]

    @classmethod
    def from_name(cls, name):
        """Accepts 'BaldursGate3', 'baldurs_gate_3', 'BALDURS_GATE_3'..."""
        key = name.replace("_", "").replace(" ", "").lower()
        for game in cls:
            if game.name.replace("_", "").lower() == key:
                return game
        raise ValueError(f"Unknown game: {name}")


_PACKAGE_VERSIONS = {
    Game.DIVINITY_ORIGINAL_SIN: PackageVersion.V7,
    Game.DIVINITY_ORIGINAL_SIN_EE: PackageVersion.V9,
    Game.DIVINITY_ORIGINAL_SIN_2: PackageVersion.V10,
    Game.DIVINITY_ORIGINAL_SIN_2_DE: PackageVersion.V13,
    Game.BALDURS_GATE_3: PackageVersion.V18,
}

_DOCUMENT_VERSIONS = {
    Game.DIVINITY_ORIGINAL_SIN: DocumentVersion.CHUNKED_COMPRESS,
    Game.DIVINITY_ORIGINAL_SIN_EE: DocumentVersion.CHUNKED_COMPRESS,
    Game.DIVINITY_ORIGINAL_SIN_2: DocumentVersion.EXTENDED_NODES,
    Game.DIVINITY_ORIGINAL_SIN_2_DE: DocumentVersion.EXTENDED_NODES,
    Game.BALDURS_GATE_3: DocumentVersion.BG3_ADDITIONAL_BLOB,
}
