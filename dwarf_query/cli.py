"""Command line entry point for dwarf-query.

Usage:
    dwarf-query show -m types.json [--type NAME | --search TEXT]
    dwarf-query symbolize -m types.json ADDRESS [ADDRESS ...]
    dwarf-query read -m types.json --image dump.bin --image-base 0x... --type NAME --address 0x...
    dwarf-query export -m types.json.xz -o flat.json
    dwarf-query serve -m types.json [--host HOST] [--port PORT]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config, setup_logging
from .core.memory import BufferMemory
from .errors import DwarfQueryError, MemoryAccessError, UnsupportedTypeError
from .export import RegistryExporter
from .session import AnalysisSession

logger = logging.getLogger(__name__)


def _address(text: str) -> int:
    """argparse type for decimal or 0x-prefixed addresses."""
    try:
        value = int(text, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid address: {text!r}")
    if value < 0:
        raise argparse.ArgumentTypeError(f"address must be non-negative: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('-m', '--metadata', action='append', required=True, type=Path,
                        help='Type metadata file (.json or .json.xz); may be repeated')
    common.add_argument('-c', '--config', type=Path, help='Config file path')
    common.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging and full struct dumps while loading')
    common.add_argument('--pointer-size', type=int, choices=(2, 4, 8),
                        help='Guest pointer width when the metadata does not declare one')

    p = argparse.ArgumentParser(prog='dwarf-query',
                                description='Inspect DWARF-derived type metadata and decode guest memory.')
    sub = p.add_subparsers(dest='command', required=True)

    show = sub.add_parser('show', parents=[common], help='Print type layouts')
    group = show.add_mutually_exclusive_group()
    group.add_argument('--type', dest='type_name', help='Only this type')
    group.add_argument('--search', help='Types whose name or member names contain TEXT')

    symbolize = sub.add_parser('symbolize', parents=[common], help='Resolve code addresses to functions')
    symbolize.add_argument('addresses', nargs='+', type=_address)

    read = sub.add_parser('read', parents=[common], help='Decode struct members from a memory image')
    read.add_argument('--image', required=True, type=Path, help='Raw memory dump')
    read.add_argument('--image-base', type=_address, default=0, help='Guest address of the first image byte')
    read.add_argument('--type', dest='type_name', required=True, help='Struct type at ADDRESS')
    read.add_argument('--address', required=True, type=_address, help='Guest address of the struct')
    read.add_argument('--member', action='append', dest='members', help='Only these members')

    export = sub.add_parser('export', parents=[common], help='Write the loaded types as a flat document')
    export.add_argument('-o', '--output', required=True, type=Path)

    serve = sub.add_parser('serve', parents=[common], help='Serve type lookups over HTTP')
    serve.add_argument('--host')
    serve.add_argument('--port', type=int)

    return p


def _open_session(args) -> AnalysisSession:
    config = load_config(args.config)
    if args.verbose:
        config.log_level = 'DEBUG'
        config.log_verbose = True
    if args.pointer_size:
        config.pointer_size = args.pointer_size
    setup_logging(config)

    session = AnalysisSession(config)
    for path in args.metadata:
        report = session.load_file(path)
        for record, reason in report.skipped:
            print(f"[WARN] skipped {record}: {reason}", file=sys.stderr)
    session.finish_loading()
    return session


def _cmd_show(session: AnalysisSession, args) -> int:
    registry = session.registry
    if args.type_name:
        struct_type = registry.lookup_type(args.type_name)
        if struct_type is None:
            print(f"Unknown type '{args.type_name}'", file=sys.stderr)
            return 1
        types = [struct_type]
    elif args.search:
        types = registry.search_types(args.search)
    else:
        types = [registry.struct_table[name] for name in registry.type_names()]

    for struct_type in types:
        print(struct_type)
    return 0


def _cmd_symbolize(session: AnalysisSession, args) -> int:
    status = 0
    for address in args.addresses:
        name = session.symbolicate(address)
        if name is None:
            print(f"0x{address:X}: ??")
            status = 1
        else:
            print(f"0x{address:X}: {name}")
    return status


def _cmd_read(session: AnalysisSession, args) -> int:
    struct_type = session.lookup_type(args.type_name)
    if struct_type is None:
        print(f"Unknown type '{args.type_name}'", file=sys.stderr)
        return 1

    memory = BufferMemory.from_file(args.image, args.image_base)
    members = struct_type.members
    if args.members:
        wanted = set(args.members)
        members = [m for m in members if m.name in wanted]
        missing = wanted - {m.name for m in members}
        if missing:
            print(f"Unknown members: {', '.join(sorted(missing))}", file=sys.stderr)
            return 1

    print(f"{struct_type.name} @ 0x{args.address:X}")
    failures = 0
    for member in members:
        address = args.address + member.offset_bytes
        try:
            value = session.reader.read_member(memory, address, member)
            print(f"  +0x{member.offset_bytes:04X} {member.name:<24} {value.kind.value:<14} {value}")
        except UnsupportedTypeError:
            print(f"  +0x{member.offset_bytes:04X} {member.name:<24} <{member.category.value}, not decoded>")
        except MemoryAccessError as e:
            failures += 1
            print(f"  +0x{member.offset_bytes:04X} {member.name:<24} <read failed: {e}>")
    return 1 if failures else 0


def _cmd_export(session: AnalysisSession, args) -> int:
    return 0 if RegistryExporter(session.registry).export(args.output) else 1


def _cmd_serve(session: AnalysisSession, args) -> int:
    import uvicorn

    from .server import create_app

    host = args.host or session.config.server_host
    port = args.port or session.config.server_port
    uvicorn.run(create_app(session), host=host, port=port)
    return 0


COMMANDS = {
    'show': _cmd_show,
    'symbolize': _cmd_symbolize,
    'read': _cmd_read,
    'export': _cmd_export,
    'serve': _cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    try:
        session = _open_session(args)
        return COMMANDS[args.command](session, args)
    except (DwarfQueryError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
