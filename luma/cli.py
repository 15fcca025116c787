"""luma CLI: settings and chat history store.

Usage:
    luma serve                          Start the HTTP API
    luma settings --user-id u1          Show settings
    luma set theme_mode=Dark --user-id u1
    luma history --user-id u1           Show chat history
    luma clear-history --user-id u1     Remove chat history
    luma export --user-id u1 -o f.json  Export snapshot
    luma import f.json --user-id u1     Import snapshot (merge, or --replace)
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from luma.exceptions import LumaError


def _json_out(data: Any) -> None:
    """Print data as formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def _get_service(args: argparse.Namespace):
    """Lazy-load a SettingsService, honouring --db."""
    from luma.service import SettingsService

    if getattr(args, "db", None):
        return SettingsService.from_path(args.db)
    return SettingsService()


def _parse_assignment(text: str) -> tuple:
    """``key=value``; boolean fields read ``true``/``false``, the rest stay strings."""
    from luma.db.sqlite import BOOL_SETTINGS_COLUMNS

    if "=" not in text:
        raise ValueError(f"Expected key=value, got {text!r}")
    key, value = text.split("=", 1)
    key = key.strip()
    if key in BOOL_SETTINGS_COLUMNS:
        value = {"true": True, "false": False}.get(value.strip().lower(), value)
    return key, value


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def cmd_serve(args: argparse.Namespace) -> None:
    """Start the HTTP API with uvicorn."""
    import os
    import uvicorn

    if args.db:
        os.environ["LUMA_DB_PATH"] = args.db
    uvicorn.run("luma.api.app:app", host=args.host, port=args.port, reload=args.reload)


def cmd_settings(args: argparse.Namespace) -> None:
    service = _get_service(args)
    _json_out(service.get_settings(args.user_id))


def cmd_set(args: argparse.Namespace) -> None:
    """Apply key=value pairs as a partial settings update."""
    partial: Dict[str, Any] = dict(_parse_assignment(item) for item in args.assignments)
    service = _get_service(args)
    result = service.upsert_settings(args.user_id, partial)
    if args.json:
        _json_out(result)
    else:
        print(f"Updated {', '.join(sorted(partial))} for {args.user_id}.")


def cmd_history(args: argparse.Namespace) -> None:
    service = _get_service(args)
    entries = service.read_history(args.user_id)
    if args.json:
        _json_out(entries)
        return
    if not entries:
        print("No history.")
        return
    for entry in entries:
        print(f"[{entry['id']}] {entry['created_at']} {entry['role']}: {entry['message']}")


def cmd_clear_history(args: argparse.Namespace) -> None:
    service = _get_service(args)
    removed = service.clear_history(args.user_id)
    print(f"Removed {removed} history entries.")


def cmd_export(args: argparse.Namespace) -> None:
    """Export settings and history to JSON."""
    service = _get_service(args)
    data = service.export_data(args.user_id)
    if args.output:
        with open(args.output, "w") as f:
            json.dump(data, f, indent=2, default=str)
            f.write("\n")
        print(f"Exported {len(data['chat_history'])} messages to {args.output}")
    else:
        _json_out(data)


def cmd_import(args: argparse.Namespace) -> None:
    """Import a snapshot from JSON."""
    with open(args.file, "r") as f:
        data = json.load(f)
    service = _get_service(args)
    report = service.import_data(args.user_id, data, replace=args.replace)
    if args.json:
        _json_out(report)
    else:
        print(f"Imported {report['imported']} messages ({report['skipped']} skipped).")


COMMAND_MAP = {
    "serve": cmd_serve,
    "settings": cmd_settings,
    "set": cmd_set,
    "history": cmd_history,
    "clear-history": cmd_clear_history,
    "export": cmd_export,
    "import": cmd_import,
}


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    from luma import __version__
    from luma.configs.base import ServerConfig

    parser = argparse.ArgumentParser(
        prog="luma",
        description="luma: settings and chat history store",
    )
    parser.add_argument(
        "--version", action="version", version=f"luma {__version__}",
    )
    parser.add_argument("--db", default=None, help="Database path (default: LUMA_DB_PATH)")
    sub = parser.add_subparsers(dest="command")

    server = ServerConfig()
    p_serve = sub.add_parser("serve", help="Start the HTTP API")
    p_serve.add_argument("--host", default=server.host, help="Host to bind to")
    p_serve.add_argument("--port", type=int, default=server.port, help="Port to listen on")
    p_serve.add_argument("--reload", action="store_true", help="Enable auto-reload")

    p_settings = sub.add_parser("settings", help="Show settings")
    p_settings.add_argument("--user-id", required=True, help="User ID")

    p_set = sub.add_parser("set", help="Update settings fields")
    p_set.add_argument("assignments", nargs="+", help="key=value pairs")
    p_set.add_argument("--user-id", required=True, help="User ID")
    p_set.add_argument("--json", action="store_true", help="JSON output")

    p_history = sub.add_parser("history", help="Show chat history")
    p_history.add_argument("--user-id", required=True, help="User ID")
    p_history.add_argument("--json", action="store_true", help="JSON output")

    p_clear = sub.add_parser("clear-history", help="Remove chat history")
    p_clear.add_argument("--user-id", required=True, help="User ID")

    p_export = sub.add_parser("export", help="Export snapshot to JSON")
    p_export.add_argument("--user-id", required=True, help="User ID")
    p_export.add_argument("--output", "-o", help="Output file (default: stdout)")

    p_import = sub.add_parser("import", help="Import snapshot from JSON")
    p_import.add_argument("file", help="JSON file to import")
    p_import.add_argument("--user-id", required=True, help="User ID")
    p_import.add_argument("--replace", action="store_true", help="Clear history before importing")
    p_import.add_argument("--json", action="store_true", help="JSON output")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    handler = COMMAND_MAP[args.command]
    try:
        handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(1)
    except (LumaError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
