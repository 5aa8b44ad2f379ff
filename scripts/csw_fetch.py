#!/usr/bin/env python3
"""
csw_fetch.py: one-shot fetch of CSW records modified since a date.

Walks every page of the window (or until --max-total) and prints
{"records": [...], "summary": {...}} as JSON. Progress goes to stderr.

Examples:
  python scripts/csw_fetch.py --start-date 2026-01-21T00:00:00Z
  python scripts/csw_fetch.py --start-date 2026-01-21T00:00:00Z --max-total 500 --outfile results.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from modules.csw_harvest.lib.aggregator import fetch_window
from modules.csw_harvest.lib.config import ConfigurationError
from modules.csw_harvest.lib.errors import HarvestError
from modules.csw_harvest.lib.fetcher import DEFAULT_CSW_ENDPOINT, DEFAULT_PAGE_SIZE, curl_command
from modules.csw_harvest.lib.http_client import HttpClient
from modules.csw_harvest.lib.models import PageResult, Window
from modules.csw_harvest.lib.utils import parse_iso


# ----------------------------------------------------------------------
def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fetch records from a CSW catalogue service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--start-date", help="ISO 8601 date, inclusive (required)")
    parser.add_argument("--end-date", help="ISO 8601 end date, exclusive")
    parser.add_argument("--endpoint", default=DEFAULT_CSW_ENDPOINT, help="CSW endpoint URL")
    parser.add_argument("--max-records", type=int, default=DEFAULT_PAGE_SIZE, help="Records per page")
    parser.add_argument("--max-total", type=int, default=None, help="Maximum total records (default: unlimited)")
    parser.add_argument("--outfile", type=Path, help="Write results to file instead of stdout")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log curl-equivalent requests and raw XML responses to stderr",
    )
    return parser.parse_args(argv)


def resolve_window(start_date: str | None, end_date: str | None) -> Window:
    if not start_date:
        raise ConfigurationError("--start-date is required.")
    start = parse_iso(start_date)
    if start is None:
        raise ConfigurationError(f"--start-date is not an ISO 8601 date: {start_date!r}")
    end = None
    if end_date:
        end = parse_iso(end_date)
        if end is None:
            raise ConfigurationError(f"--end-date is not an ISO 8601 date: {end_date!r}")
        if end <= start:
            raise ConfigurationError("--start-date must be before --end-date.")
    return Window(start=start, end=end)


def _stderr(msg: str = "") -> None:
    print(msg, file=sys.stderr)


# ----------------------------------------------------------------------
def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, stream=sys.stderr)

    try:
        window = resolve_window(args.start_date, args.end_date)
        if args.max_records < 1:
            raise ConfigurationError("--max-records must be >= 1.")
        if args.max_total is not None and args.max_total < 1:
            raise ConfigurationError("--max-total must be >= 1.")
    except ConfigurationError as e:
        _stderr(f"Error: {e}")
        return 1

    _stderr(f"Fetching CSW records {window.describe()}")
    _stderr(f"Endpoint: {args.endpoint}")
    _stderr(f"Max records per page: {args.max_records}")
    if args.max_total is not None:
        _stderr(f"Max total records: {args.max_total}")
    _stderr()

    def _on_page(page: PageResult, page_number: int) -> None:
        _stderr(f"Page {page_number}: fetched {len(page.records)} records ({page.total_matched} total matched)")

    hooks: dict[str, Any] = {}
    if args.verbose:
        hooks["on_request"] = lambda endpoint, body: _stderr(curl_command(endpoint, body))
        hooks["on_response"] = _stderr

    try:
        with HttpClient() as client:
            result = fetch_window(
                args.endpoint,
                window,
                args.max_records,
                max_records=args.max_total,
                on_page=_on_page,
                client=client,
                **hooks,
            )
    except HarvestError as e:
        _stderr(f"Error: {e}")
        return 1

    summary = result.summary()
    _stderr()
    _stderr(f"Done! Fetched {summary['totalFetched']} of {summary['totalMatched']} records.")

    output = json.dumps(
        {"records": [r.to_dict() for r in result.records], "summary": summary},
        indent=2,
        ensure_ascii=False,
    )
    if args.outfile:
        args.outfile.write_text(output, encoding="utf-8")
        _stderr(f"Results written to {args.outfile}")
    else:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
