"""CLI entrypoint for inspecting windchimes totals."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from .api import ChimeAPI
from .models import ChimeConfig


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="windchimes", description="Windchimes view counter utility.")
    parser.add_argument("--store", type=Path, required=True, help="Path to the SQLite database.")

    sub = parser.add_subparsers(dest="command", required=True)

    total = sub.add_parser("total", help="Print the total for a resource and event.")
    total.add_argument("resource", help="Resource id, e.g. scratch/104.")
    total.add_argument("event", help="Event kind, e.g. view/index.")

    first = sub.add_parser("first-date", help="Print the first day a resource was counted.")
    first.add_argument("resource", help="Resource id.")
    first.add_argument("--event", default=None, help="Restrict to one event kind.")

    dump = sub.add_parser("dump", help="Dump cumulative totals as JSON.")
    dump.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.store.is_file():
        parser.error(f"store {args.store} does not exist")
    api = ChimeAPI(ChimeConfig(store_path=str(args.store)))

    try:
        if args.command == "total":
            print(api.get_total(args.resource, args.event))
            return 0
        if args.command == "first-date":
            print(api.get_first_date(args.resource, args.event))
            return 0
        if args.command == "dump":
            data = api.snapshot_json()
            if args.pretty:
                print(data)
            else:
                print(data.replace("\n", ""), file=sys.stdout)
            return 0
    finally:
        api.close()
    parser.error(f"Unsupported command {args.command}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
