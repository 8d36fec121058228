"""
Command-line interface for reqprof: inspect emitted records, show config.
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

from models import RecordType
from utils import format_seconds, setup_logging


def _row(record: dict[str, Any]) -> list[str]:
    data_type = record.get("_data_type", "?")
    detail = ""
    if data_type == RecordType.PROFILER.value:
        req = record.get("request") or {}
        detail = f"{req.get('method', '')} {req.get('uri', '')}".strip()
        detail += f"  {format_seconds(record.get('execution_time'))}, {record.get('error_count', 0)} error(s)"
    elif data_type == RecordType.ERROR.value:
        detail = f"{record.get('file')}:{record.get('line')} x{record.get('count', 1)}  {record.get('message', '')}"
    elif data_type == RecordType.TRACE.value:
        detail = f"{len(record.get('trace') or {})} call edges"
    return [
        data_type,
        str(record.get("application", "")),
        str(record.get("transaction_id", ""))[:12],
        detail,
    ]


def cmd_show(args: argparse.Namespace) -> int:
    from persistence import load_records
    records = load_records(args.directory, args.type)
    if args.json:
        print(json.dumps(records, indent=2 if args.pretty else None))
        return 0
    console = Console()
    if not records:
        console.print(f"[dim]No records in {args.directory}[/dim]")
        return 1
    table = Table(title=f"Records in {args.directory}")
    table.add_column("Type", style="cyan")
    table.add_column("Application", style="green")
    table.add_column("Transaction")
    table.add_column("Detail", style="yellow")
    for record in records[-args.limit:]:
        table.add_row(*_row(record))
    console.print(table)
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    from config import get, load_config_file
    loaded = load_config_file(args.config)
    print("Config file loaded:", loaded)
    for key in [
        "collector.application_name",
        "collector.output_directory",
        "collector.trace_trigger_threshold",
        "collector.errors_capture_backtrace",
        "collector.backtrace_depth_limit",
        "collector.interceptors",
        "collector.sampler",
        "logging.level",
    ]:
        print(f"  {key}: {get(key)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reqprof", description="Per-request telemetry records")
    sub = parser.add_subparsers(dest="command", required=True)

    p_show = sub.add_parser("show", help="List records written to a directory")
    p_show.add_argument("directory", help="Output directory of the JSON writer")
    p_show.add_argument("--type", choices=[t.value for t in RecordType], default=None, help="Only this record type")
    p_show.add_argument("--limit", type=int, default=50, help="Show the newest N records")
    p_show.add_argument("--json", action="store_true", help="Output JSON")
    p_show.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    p_show.set_defaults(run=cmd_show)

    p_validate = sub.add_parser("validate-config", help="Validate and show config")
    p_validate.add_argument("--config", default=None, help="YAML config file")
    p_validate.set_defaults(run=cmd_validate_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    from config import get
    args = build_parser().parse_args(argv)
    setup_logging(get("logging.level", "WARNING"), get("logging.file"))
    return args.run(args)


if __name__ == "__main__":
    sys.exit(main())
