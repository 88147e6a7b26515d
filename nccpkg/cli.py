"""
nccpkg CLI — build and inspect package containers.

Commands:
  nccpkg inspect  - Show version, header, assembly and every entry of a package
  nccpkg list     - List every entry reference (kind, name, offset, size)
  nccpkg extract  - Extract component/resource payloads to a directory
  nccpkg pack     - Build a package from a source directory

Passwords for encrypted packages come from $NCCPKG_PASSWORD or an
interactive prompt, never from command-line arguments (visible in ps/proc).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

PASSWORD_ENV_VAR = "NCCPKG_PASSWORD"


def _get_password(confirm: bool = False) -> str:
    """Read the package password from the environment or a prompt."""
    import getpass

    env = os.environ.get(PASSWORD_ENV_VAR)
    if env:
        return env
    password = getpass.getpass("Password: ")
    if confirm and password != getpass.getpass("Confirm password: "):
        print("Error: Passwords do not match", file=sys.stderr)
        sys.exit(1)
    return password


def _open_reader(args: argparse.Namespace):
    from nccpkg._format.reader import PackageReader

    try:
        return PackageReader(
            args.path,
            strict=args.config["strict"],
            chunk_size=args.config["scan_chunk_size"],
        )
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _describe(reference) -> str:
    return f"{reference.kind:<15} {reference.name}  (offset {reference.offset}, {reference.size} bytes)"


def cmd_inspect(args: argparse.Namespace) -> None:
    """Show package structure and records."""
    from nccpkg import DEFAULT_COMPRESSION_LEVEL
    from nccpkg._format.errors import PackageError

    with _open_reader(args) as reader:
        try:
            header = reader.header
            assembly = reader.assembly
            references = reader.get_all_references()
            units = {
                ref.name: reader.read_execution_unit(ref)
                for ref in reader.execution_unit_references.values()
            }
        except (PackageError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        if args.json:
            data = {
                "path": str(reader.path),
                "start_offset": reader.start_offset,
                "package_version": reader.package_version,
                "header": _jsonable(header.to_dict()) if header else None,
                "assembly": assembly.to_dict() if assembly else None,
                "execution_units": {name: unit.to_dict() for name, unit in units.items()},
                "entries": [
                    {"kind": r.kind, "name": r.name, "offset": r.offset, "size": r.size}
                    for r in references
                ],
            }
            print(json.dumps(data, indent=2))
            return

        print(f"Package: {reader.path}")
        print(f"  format version: {reader.package_version}")
        print(f"  start offset:   {reader.start_offset}")
        if header:
            print(f"  build number:   {header.build_number or '-'}")
            print(f"  entry point:    {header.entry_point or '-'}")
            level = header.compression_level or DEFAULT_COMPRESSION_LEVEL
            print(f"  compressed:     {'yes (level %d)' % level if header.compressed else 'no'}")
            print(f"  encrypted:      {'yes' if header.encrypted else 'no'}")
        if assembly:
            print(f"  package:        {assembly.package}")
            print(f"  name:           {assembly.name}")
            print(f"  version:        {assembly.version}")
        print()
        for reference in references:
            print(f"  {_describe(reference)}")
            unit = units.get(reference.name) if reference.kind == "execution_unit" else None
            if unit is not None:
                print(f"      type={unit.type} mode={unit.mode} entry={unit.entry}")
                if unit.working_directory:
                    print(f"      working directory: {unit.working_directory}")
                if unit.required_files:
                    print(f"      required files: {', '.join(unit.required_files)}")


def _jsonable(value):
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def cmd_list(args: argparse.Namespace) -> None:
    """List every entry reference."""
    from nccpkg._format.errors import PackageError

    with _open_reader(args) as reader:
        try:
            references = reader.get_all_references()
        except PackageError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    if not references:
        print("Package has no entries.")
        return
    for reference in references:
        print(f"{reference.kind}\t{reference.name}\t{reference.offset}\t{reference.size}")


def cmd_extract(args: argparse.Namespace) -> None:
    """Extract payloads to a directory."""
    from nccpkg._format.errors import PackageError
    from nccpkg.package import extract_to_directory
    from nccpkg.payload import PayloadCodec

    output = Path(args.output or ".")
    with _open_reader(args) as reader:
        try:
            header = reader.header
            password = _get_password() if header is not None and header.encrypted else None
            codec = PayloadCodec.from_header(header, password)
            written = extract_to_directory(
                reader, output, codec, names=[args.name] if args.name else None,
            )
        except (PackageError, ValueError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    print(f"Extracted {len(written)} file(s) -> {output}")


def _parse_exec(value: str):
    from nccpkg.records import ExecutionUnit

    if ":" not in value:
        print(f"Error: --exec expects NAME:ENTRY, got {value!r}", file=sys.stderr)
        sys.exit(1)
    name, entry = value.split(":", 1)
    try:
        return ExecutionUnit(name=name, entry=entry)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_pack(args: argparse.Namespace) -> None:
    """Build a package from a source directory."""
    from nccpkg._format.errors import PackageError
    from nccpkg.package import Package
    from nccpkg.records import Assembly, Header

    config = args.config
    try:
        assembly = Assembly(name=args.name, package=args.package, version=args.version)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    units = [_parse_exec(value) for value in args.exec or []]
    header = Header(
        build_number=args.build_number,
        entry_point=units[0].name if units else None,
    )

    try:
        pkg = Package.from_directory(
            args.source, assembly,
            component_extensions=config["component_extensions"],
            header=header,
        )
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    for unit in units:
        pkg.add_execution_unit(unit)

    if args.no_compress:
        level = None
    elif args.level is not None:
        level = args.level
    else:
        level = config["compression_level"] if config["compression"] else None

    prefix = b""
    if args.stub:
        stub = Path(args.stub)
        if not stub.is_file():
            print(f"Error: Stub file not found: {stub}", file=sys.stderr)
            sys.exit(1)
        prefix = stub.read_bytes()

    password = _get_password(confirm=True) if args.encrypt else None

    try:
        size = pkg.write(
            args.output,
            overwrite=args.force or config["overwrite"],
            password=password,
            compression_level=level,
            prefix=prefix,
        )
    except (PackageError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Packed {args.source} -> {args.output} ({size} bytes)")
    print(f"  components:      {len(pkg.components)}")
    print(f"  resources:       {len(pkg.resources)}")
    print(f"  execution units: {len(pkg.execution_units)}")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="nccpkg",
        description="nccpkg — build, inspect and extract package containers.",
    )
    from nccpkg import __version__
    parser.add_argument("--version", action="version", version=f"nccpkg {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", help="Path to nccpkg.toml (or set NCCPKG_CONFIG)")
    sub = parser.add_subparsers(dest="command")

    # inspect
    p_inspect = sub.add_parser("inspect", help="Show package structure and records")
    p_inspect.add_argument("path", help="Path to package file")
    p_inspect.add_argument("--json", action="store_true", help="Print JSON instead of text")

    # list
    p_list = sub.add_parser("list", help="List every entry reference")
    p_list.add_argument("path", help="Path to package file")

    # extract
    p_extract = sub.add_parser("extract", help="Extract component/resource payloads")
    p_extract.add_argument("path", help="Path to package file")
    p_extract.add_argument("-o", "--output", help="Output directory (default: .)")
    p_extract.add_argument("--name", help="Extract only this entry")

    # pack
    p_pack = sub.add_parser("pack", help="Build a package from a source directory")
    p_pack.add_argument("source", help="Source directory")
    p_pack.add_argument("-o", "--output", required=True, help="Output package path")
    p_pack.add_argument("--name", required=True, help="Assembly name")
    p_pack.add_argument("--package", required=True, help="Package identifier (e.g. com.example.app)")
    p_pack.add_argument("--version", dest="version", required=True, help="Package version")
    p_pack.add_argument("--build-number", help="Build number recorded in the header")
    p_pack.add_argument("--exec", action="append", metavar="NAME:ENTRY", help="Add an execution unit")
    level_group = p_pack.add_mutually_exclusive_group()
    level_group.add_argument("--level", type=int, help="Compression level 1-9")
    level_group.add_argument("--no-compress", action="store_true", help="Store payloads uncompressed")
    p_pack.add_argument("--encrypt", action="store_true", help="Encrypt payloads (prompts for password)")
    p_pack.add_argument("--stub", help="File whose bytes are written before the package")
    p_pack.add_argument("-f", "--force", action="store_true", help="Overwrite an existing output file")

    args = parser.parse_args(argv)

    if not args.command:
        print("nccpkg — package container tool")
        print()
        print("Usage:")
        print("  nccpkg inspect app.ncc [--json]")
        print("  nccpkg list app.ncc")
        print("  nccpkg extract app.ncc -o out/ [--name src/main.php]")
        print("  nccpkg pack src/ -o app.ncc --name app --package com.example.app --version 1.0.0")
        print()
        print("Run 'nccpkg <command> --help' for details on any command.")
        sys.exit(0)

    _configure_logging(args.verbose)

    from nccpkg.config import load_config
    args.config = load_config(Path(args.config) if args.config else None)

    commands = {
        "inspect": cmd_inspect,
        "list": cmd_list,
        "extract": cmd_extract,
        "pack": cmd_pack,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
