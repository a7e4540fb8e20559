import argparse
import dataclasses
import fnmatch
import json
import logging
import os
import re
import sys
import uuid

from .document import decode_document, decode_document_header
from .errors import DeletedFileError, LSCoreError
from .package import decode_package, open_package
from .storage import StorageManager

logger = logging.getLogger("LSCore")

# Game_1.pak, Game_2.pak... are continuation parts, not packages of their own
PART_FILE_RE = re.compile(r"^(.*)_[0-9]+\.pak$", re.IGNORECASE)


def setup_logging(storage, level=None):
    level = level or storage.config.get("log_level", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(storage.config["log_file"]),
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )


def _json_default(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def cmd_info(args, storage):
    for path in args.paths:
        pkg = open_package(path, metadata_only=True)
        print(f"{path}: v{int(pkg.version)} flags={pkg.flags!r} priority={pkg.priority} parts={pkg.num_parts}")
    return 0


def cmd_list(args, storage):
    pkg = open_package(args.path)
    for info in pkg.files:
        if info.is_deletion:
            print(f"{info.name}  [deleted]")
        else:
            print(f"{info.name}  {info.size} bytes  {info.compression!r}")
    logger.info(f"{len(pkg.files)} entries")
    return 0


def _safe_target(out_dir, name):
    target = os.path.normpath(os.path.join(out_dir, name))
    if os.path.commonpath([os.path.abspath(out_dir), os.path.abspath(target)]) != os.path.abspath(out_dir):
        raise ValueError(f"Entry name escapes the output directory: {name}")
    return target


def cmd_extract(args, storage):
    out_dir = args.output or storage.extract_dir_for(args.path)
    extracted = 0
    with open(args.path, "rb") as source:
        pkg = decode_package(source, args.path)
        for info in pkg.files:
            if args.match and not fnmatch.fnmatch(info.name, args.match):
                continue
            try:
                data = pkg.read_file(info, source)
            except DeletedFileError:
                logger.debug(f"Skipping deleted entry {info.name}")
                continue
            target = _safe_target(out_dir, info.name)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as f:
                f.write(data)
            extracted += 1
    logger.info(f"Extracted {extracted} files to {out_dir}")
    return 0


def _collect_packages(paths):
    for path in paths:
        if os.path.isdir(path):
            for name in sorted(os.listdir(path)):
                if name.lower().endswith(".pak"):
                    yield os.path.join(path, name)
        else:
            yield path


def cmd_rank(args, storage):
    roots = args.paths
    if not roots:
        data_dir = storage.config.get("game_data_dir") or storage.try_auto_detect_game()
        if not data_dir:
            logger.error(f"No packages given and no {storage.game.name} data folder found; set game_data_dir")
            return 1
        roots = [data_dir]
    paths = list(_collect_packages(roots))
    ranked = []
    for path in paths:
        if PART_FILE_RE.match(os.path.basename(path)):
            continue
        try:
            pkg = open_package(path, metadata_only=True)
        except LSCoreError as e:
            logger.warning(f"Skipping {path}: {e}")
            continue
        ranked.append((pkg.priority, path))

    # Higher priority loads later and wins
    ranked.sort(key=lambda x: x[0])
    for priority, path in ranked:
        print(f"{priority:4d}  {path}")
    return 0


def cmd_lsf(args, storage):
    with open(args.path, "rb") as f:
        data = f.read()

    if args.header_only:
        header = decode_document_header(data)
        metadata = {f.name: getattr(header.metadata, f.name) for f in dataclasses.fields(header.metadata)}
        metadata["compression_flags"] = int(header.metadata.compression_flags)
        out = {
            "version": int(header.version),
            "engine_version": ".".join(str(p) for p in header.engine_version_parts),
            "schema": header.schema.value,
            "metadata": metadata,
        }
    else:
        out = decode_document(data).to_tree()

    text = json.dumps(out, indent=2, default=_json_default)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        print(text)
    return 0


def cmd_config(args, storage):
    updates = {}
    for item in args.settings:
        key, sep, value = item.partition("=")
        if not sep:
            logger.error(f"Expected KEY=VALUE, got '{item}'")
            return 2
        updates[key] = value
    if updates:
        storage.save_config(updates)
    for key, value in sorted(storage.config.items()):
        print(f"{key} = {value}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="lscore", description="Read Larian LSPK packages and LSF documents")
    parser.add_argument("--data-dir", help="Directory holding config.json and the log file")
    parser.add_argument("--log-level", help="Overrides log_level from the config")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="Show package header fields")
    p.add_argument("paths", nargs="+")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("list", help="List the file table of a package")
    p.add_argument("path")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("extract", help="Extract package contents")
    p.add_argument("path")
    p.add_argument("-o", "--output", help="Output directory (default: extract_dir/<package>)")
    p.add_argument("--match", help="Only extract entries matching this glob")
    p.set_defaults(func=cmd_extract)

    p = sub.add_parser("rank", help="Order packages by load priority")
    p.add_argument("paths", nargs="*",
                   help="Packages or directories (default: game_data_dir, else the detected game folder)")
    p.set_defaults(func=cmd_rank)

    p = sub.add_parser("lsf", help="Dump an LSF document as JSON")
    p.add_argument("path")
    p.add_argument("--header-only", action="store_true")
    p.add_argument("-o", "--output")
    p.set_defaults(func=cmd_lsf)

    p = sub.add_parser("config", help="Show or update configuration")
    p.add_argument("settings", nargs="*", metavar="KEY=VALUE")
    p.set_defaults(func=cmd_config)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    storage = StorageManager(args.data_dir)
    setup_logging(storage, args.log_level)

    try:
        return args.func(args, storage)
    except (LSCoreError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
