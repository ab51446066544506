"""Command line access to a sheet record store."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional, Sequence

from tabulate import tabulate

from envelope import Envelope
from record_filter import FilterOperator, RecordFilter
from sheet_store import SheetStore
from store_config import SheetStoreConfig, build_store, configure_logging


def _parse_json_object(raw: str) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Spreadsheet record store")
    parser.add_argument("--sheet", help="Worksheet name (defaults to GOOGLE_SHEET_WORKSHEET)")
    parser.add_argument("--header-row", type=int, help="Row holding the header (defaults to SHEET_HEADER_ROW)")
    parser.add_argument("--json", action="store_true", help="Print the raw envelope as JSON")
    commands = parser.add_subparsers(dest="command", required=True)

    read = commands.add_parser("read", help="List records")
    read.add_argument("--column", help="Column to filter on")
    read.add_argument("--value", help="Value to compare with")
    read.add_argument(
        "--operator",
        default=FilterOperator.EQUALS.value,
        help="One of: " + ", ".join(op.value for op in FilterOperator),
    )
    read.add_argument("--single", action="store_true", help="Return only the first match")
    read.add_argument("--include-inactive", action="store_true", help="Include deactivated records")

    commands.add_parser("headers", help="Show the header row")

    insert = commands.add_parser("insert", help="Append a record")
    insert.add_argument("data", type=_parse_json_object, help="Record as a JSON object")
    insert.add_argument("--user", help="Alias stored as registrado_por")
    insert.add_argument("--with-id", action="store_true", help="Assign the next numeric id")

    update = commands.add_parser("update", help="Update fields of a record")
    update.add_argument("col_name")
    update.add_argument("id")
    update.add_argument("values", type=_parse_json_object, help="Fields as a JSON object")

    for name, help_text in (("deactivate", "Mark a record inactive"), ("delete", "Clear a record's row")):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("col_name")
        sub.add_argument("id")

    commands.add_parser("last-id", help="Show the highest numeric id")

    find = commands.add_parser("find", help="Records where KEY equals VALUE")
    find.add_argument("key")
    find.add_argument("value")
    find.add_argument("--first", action="store_true", help="Return only the first match")

    commands.add_parser("describe", help="Show the configured range")
    return parser


async def run_command(store: SheetStore, args: argparse.Namespace, include_inactive_default: bool = False) -> Envelope:
    if args.command == "read":
        record_filter: Optional[RecordFilter] = None
        if args.column:
            record_filter = RecordFilter(
                column=args.column,
                value=args.value,
                operator=FilterOperator.parse(args.operator),
                multiple=not args.single,
            )
        return await store.read(record_filter, include_inactive=args.include_inactive or include_inactive_default)
    if args.command == "headers":
        return await store.headers()
    if args.command == "insert":
        user = {"alias": args.user} if args.user else None
        return await store.insert(args.data, user=user, include_id=args.with_id)
    if args.command == "update":
        return await store.update(args.col_name, args.id, args.values)
    if args.command == "deactivate":
        return await store.deactivate(args.col_name, args.id)
    if args.command == "delete":
        return await store.delete(args.col_name, args.id)
    if args.command == "last-id":
        return await store.last_id()
    if args.command == "find":
        if args.first:
            return await store.find_one(args.key, args.value)
        return await store.find_by_key(args.key, args.value)
    raise ValueError(f"Unknown command: {args.command}")


def render(envelope: Envelope, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(envelope.to_json_dict(), indent=2, ensure_ascii=False)
    if not envelope.success:
        error = envelope.error
        return f"Error [{error.type} {error.code}]: {error.message}"

    data = envelope.data
    if isinstance(data, list):
        if not data:
            return "(no records)"
        if all(isinstance(item, dict) for item in data):
            return tabulate(data, headers="keys", tablefmt="github")
    if isinstance(data, dict):
        return tabulate(
            [(key, json.dumps(value, ensure_ascii=False, default=str)) for key, value in data.items()],
            headers=["field", "value"],
            tablefmt="github",
        )
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = SheetStoreConfig.from_env()
    if args.sheet:
        config.sheet_name = args.sheet
    if args.header_row is not None:
        config.row_head = args.header_row
    configure_logging(config.log_level)

    try:
        store = build_store(config)
    except (ValueError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    if args.command == "describe":
        print(json.dumps(store.describe(), indent=2, ensure_ascii=False))
        return 0

    envelope = asyncio.run(run_command(store, args, config.include_inactive_default))
    print(render(envelope, args.json))
    return 0 if envelope.success else 1


if __name__ == "__main__":
    sys.exit(main())
