#!/usr/bin/env python3
"""
chatline CLI: talk on the line, keep the tape.

Every command has a short name and standard aliases:

    NAME            ALIASES         WHAT IT DOES
    ----            -------         ----------------------------------
    jack            chat, tui       Open the interactive chat console
    sweep           search, find    Search conversation titles
    dump            export          Export conversations to JSON
    flash           info, stats     Show config and store stats
    tone            banner          Print the banner
"""

import argparse
import json
import sys
from datetime import datetime

from chatline import __version__

BANNER = r"""
    ╔══════════════════════════════════════════════╗
    ║                                              ║
    ║    ┌─┐┬ ┬┌─┐┌┬┐┬  ┬┌┐┌┌─┐                    ║
    ║    │  ├─┤├─┤ │ │  ││││├┤                     ║
    ║    └─┘┴ ┴┴ ┴ ┴ ┴─┘┴┘└┘└─┘                    ║
    ║                                              ║
    ║    Talk on the line. Keep the tape.  v""" + __version__ + r"""  ║
    ║                                              ║
    ╚══════════════════════════════════════════════╝
"""


def _format_time(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _locked_out(e) -> int:
    print(f"  ✗  Another chatline instance holds the store: {e}")
    return 1


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_jack(args) -> int:
    """Open the interactive chat console."""
    from chatline.config import get_config
    from chatline.errors import ConfigurationError, LockTimeout
    from chatline.main import _setup_logging, open_session
    from chatline.tui.app import ChatlineApp

    cfg = get_config()
    _setup_logging(cfg, console=False)

    try:
        with open_session(cfg) as session:
            ChatlineApp(session).run()
    except ConfigurationError as e:
        print(f"  ✗  {e}")
        return 1
    except LockTimeout as e:
        return _locked_out(e)
    return 0


def cmd_sweep(args) -> int:
    """Search stored conversation titles."""
    from chatline.config import get_config
    from chatline.errors import LockTimeout
    from chatline.main import _setup_logging, open_store
    from chatline.search import TitleIndex

    cfg = get_config()
    _setup_logging(cfg)
    query = " ".join(args.query)

    try:
        with open_store(cfg) as store:
            records = store.load()
    except LockTimeout as e:
        return _locked_out(e)

    index = TitleIndex([r.title for r in records])
    hits = index.search(query)

    print(f"  🔍 Sweeping for: '{query}'")
    print("  " + "─" * 56)
    if not hits:
        print("  No signal found.")
        return 0

    for i, doc_id in enumerate(hits[: args.results], 1):
        record = records[doc_id]
        print(f"  [{i}] {record.title}")
        print(f"      {_format_time(record.time)} | {len(record.messages)} messages")
    return 0


def cmd_dump(args) -> int:
    """Export conversations to JSON."""
    from chatline.config import get_config, storage_path
    from chatline.errors import LockTimeout
    from chatline.main import _setup_logging, open_store

    cfg = get_config()
    _setup_logging(cfg)

    try:
        with open_store(cfg) as store:
            data = store.export_all_json()
    except LockTimeout as e:
        return _locked_out(e)

    indent = 2 if args.pretty else None
    with open(args.output, "w") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)

    print(f"  📼 Database: {storage_path(cfg)}")
    print(f"  📦 Dumped {len(data)} conversations to {args.output}")
    return 0


def cmd_flash(args) -> int:
    """Show config and store stats at a glance."""
    from chatline.config import config_path, get_config, storage_path
    from chatline.errors import LockTimeout
    from chatline.main import open_store

    cfg = get_config()
    b_cfg = cfg["backend"]

    print(BANNER)
    print("  Configuration")
    print(f"  ├─ Config:    {config_path()}")
    print(f"  ├─ Backend:   {b_cfg['url']}")
    print(f"  ├─ Model:     {b_cfg['model']}")
    print(f"  ├─ API key:   {'set' if b_cfg.get('api_key') else 'MISSING'}")
    print(f"  └─ Store:     {storage_path(cfg)}")

    try:
        with open_store(cfg) as store:
            stats = store.get_stats()
    except LockTimeout as e:
        return _locked_out(e)

    print()
    print("  Storage")
    print(f"  ├─ Conversations: {stats['conversations']}")
    print(f"  ├─ Messages:      {stats['messages']}")
    print(f"  └─ Newest:        {stats['newest'] or '-'}")
    return 0


def cmd_tone(args) -> int:
    """Print the banner."""
    print(BANNER)
    return 0


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name and aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatline",
        description="chatline: talk on the line, keep the tape.",
        epilog="Run 'chatline <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"chatline {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    _add_command(sub, ["jack", "chat", "tui"],
                 "Open the interactive chat console", cmd_jack)

    def setup_sweep(p):
        p.add_argument("query", nargs="+", help="Words to look for in titles")
        p.add_argument("--results", "-n", type=int, default=20, help="Maximum matches to show")

    _add_command(sub, ["sweep", "search", "find"],
                 "Search conversation titles", cmd_sweep, setup_sweep)

    def setup_dump(p):
        p.add_argument("--output", "-o", default="conversations_export.json", help="Output file")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    _add_command(sub, ["dump", "export"],
                 "Export conversations to JSON", cmd_dump, setup_dump)

    _add_command(sub, ["flash", "info", "stats"],
                 "Show config and store stats at a glance", cmd_flash)

    _add_command(sub, ["tone", "banner"], "Print the banner", cmd_tone)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_tone(args)
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
