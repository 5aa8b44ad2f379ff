#!/usr/bin/env python3
"""
csw_backfill.py: query a CSW catalogue over a historical date range in
fixed-interval windows (6 hours by default).

Each window's {"window", "records", "summary"} JSON is printed to stdout as
one line; progress goes to stderr.

Example:
  python scripts/csw_backfill.py --start-date 2026-01-01 --end-date 2026-02-01
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta

from modules.csw_harvest.lib.backfill import run_backfill
from modules.csw_harvest.lib.config import ConfigurationError
from modules.csw_harvest.lib.errors import HarvestError
from modules.csw_harvest.lib.fetcher import DEFAULT_CSW_ENDPOINT, DEFAULT_PAGE_SIZE
from modules.csw_harvest.lib.http_client import HttpClient
from modules.csw_harvest.lib.utils import format_iso, parse_iso


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Query CSW in fixed-interval windows over a historical date range",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--start-date", help="Start date (e.g. 2026-01-01)")
    parser.add_argument("--end-date", help="End date, exclusive (e.g. 2026-02-01)")
    parser.add_argument("--interval-hours", type=float, default=6.0, help="Window length in hours")
    parser.add_argument("--endpoint", default=DEFAULT_CSW_ENDPOINT, help="CSW endpoint URL")
    parser.add_argument("--max-records", type=int, default=DEFAULT_PAGE_SIZE, help="Records per page")
    parser.add_argument("--verbose", action="store_true", help="Debug logging to stderr")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, stream=sys.stderr)

    try:
        if not args.start_date or not args.end_date:
            raise ConfigurationError("--start-date and --end-date are required.")
        start, end = parse_iso(args.start_date), parse_iso(args.end_date)
        if start is None or end is None:
            raise ConfigurationError("--start-date/--end-date must be ISO 8601 dates.")
        if start >= end:
            raise ConfigurationError("--start-date must be before --end-date.")
        if args.interval_hours <= 0:
            raise ConfigurationError("--interval-hours must be > 0.")
        if args.max_records < 1:
            raise ConfigurationError("--max-records must be >= 1.")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        with HttpClient() as client:
            for window, result in run_backfill(
                args.endpoint,
                start,
                end,
                interval=timedelta(hours=args.interval_hours),
                page_size=args.max_records,
                client=client,
            ):
                print(f"=== {format_iso(window.start)} to {format_iso(window.end)} ===", file=sys.stderr)
                print(json.dumps({
                    "window": {"start": format_iso(window.start), "end": format_iso(window.end)},
                    "records": [r.to_dict() for r in result.records],
                    "summary": result.summary(),
                }, ensure_ascii=False), flush=True)
    except HarvestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
