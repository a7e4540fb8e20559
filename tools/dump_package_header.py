import struct
import sys

from lscore.errors import LSCoreError
from lscore.package import PACKAGE_MAGIC, decode_package

path = sys.argv[1] if len(sys.argv) > 1 else "Game.pak"
with open(path, 'rb') as f:
    header = f.read(64)
    print(f"Header hex: {header.hex()}")

    size = f.seek(0, 2)
    if size >= 8:
        f.seek(size - 8)
        trailer = f.read(8)
        header_size, magic = struct.unpack('<i4s', trailer)
        print(f"Trailer hex: {trailer.hex()} (header_size={header_size}, magic={magic!r})")

    if header[:4] == PACKAGE_MAGIC:
        print(f"Leading magic, version {struct.unpack('<I', header[4:8])[0]}")
    else:
        print(f"No leading magic, first u32 = {struct.unpack('<I', header[:4])[0]}")

    try:
        pkg = decode_package(f, path, metadata_only=True)
        print(f"Sniffed: v{int(pkg.version)} flags={pkg.flags!r} priority={pkg.priority} parts={pkg.num_parts}")
    except LSCoreError as e:
        print(f"Not decodable: {e}")
