"""
One harvest invocation.

  1. read the cursor (once)
  2. plan the window/offset from it
  3. fetch up to `max_pages` pages, handing each page's records to the sink
  4. write the advanced cursor (once, only if every page succeeded)

Any failure leaves the stored cursor untouched, so the next scheduled
invocation re-requests the same window and offset.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from . import logging_bridge
from .aggregator import FetchPage, fetch_window
from .config import Settings
from .cursor import advance, encode_cursor, plan, seed_cursor
from .fetcher import curl_command, fetch_page
from .http_client import HttpClient
from .models import InProgress, PageResult, Record
from .store import CursorStore, EnvCursorStore, SqliteCursorStore
from .utils import format_iso, utcnow

log = logging.getLogger(__name__)

RecordSink = Callable[[Sequence[Record]], None]


def make_store(settings: Settings) -> CursorStore:
    if settings.cursor_store == "env":
        return EnvCursorStore(settings.cursor_env)
    return SqliteCursorStore(settings.sqlite_path, settings.target)


def log_sink(records: Sequence[Record]) -> None:
    """Default sink: emit the page's records into the activity log."""
    logging_bridge.activity({
        "component": "csw_harvest.engine",
        "op": "records",
        "count": len(records),
        "records": [r.to_dict() for r in records],
    })


def run_once(
    settings: Settings,
    *,
    store: CursorStore | None = None,
    fetch: FetchPage | None = None,
    sink: RecordSink | None = None,
    sleep: Callable[[float], Any] = time.sleep,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Run one invocation and return a meta dict for the runner.

    Args:
        settings: validated configuration
        store: cursor port override (tests); defaults from settings.cursor_store
        fetch: page fetch override (tests); defaults to fetch_page over HTTP
        sink: receives each page's records; defaults to log_sink
        sleep: inter-page delay function
        now: clock override; settings.time_offset is subtracted from it
    """
    start_ns = time.perf_counter_ns()
    store = store or make_store(settings)
    sink = sink or log_sink
    clock = (now or utcnow()).replace(microsecond=0) - settings.time_offset

    cursor = store.read()
    seeded = cursor is None
    if cursor is None:
        cursor = seed_cursor(clock, settings.lookback)
    window, offset = plan(cursor, clock)

    logging_bridge.activity({
        "component": "csw_harvest.engine",
        "op": "resume" if isinstance(cursor, InProgress) else "new_window",
        "target": settings.target,
        "seeded": seeded,
        "window": {"start": format_iso(window.start), "end": format_iso(window.end) if window.end else None},
        "start_position": offset,
        "max_pages": settings.max_pages,
    })

    if settings.skip_network:
        logging_bridge.activity({
            "component": "csw_harvest.engine",
            "op": "skipped",
            "target": settings.target,
            "reason": "skip_network",
        })
        return {"message": "skip_network: nothing fetched", "target": settings.target, "pages": 0, "records": 0}

    client: HttpClient | None = None
    fetch_kwargs: dict[str, Any] = {}
    if fetch is None:
        client = HttpClient(timeout=settings.timeout)
        fetch = fetch_page
        fetch_kwargs["client"] = client
        if settings.verbose:
            fetch_kwargs["on_request"] = _log_request
            fetch_kwargs["on_response"] = _log_response

    def _on_page(page: PageResult, page_number: int) -> None:
        logging_bridge.activity({
            "component": "csw_harvest.engine",
            "op": "page",
            "target": settings.target,
            "page": page_number,
            "fetched": len(page.records),
            **page.pagination(),
        })
        sink(page.records)

    try:
        result = fetch_window(
            settings.endpoint,
            window,
            settings.page_size,
            start_offset=offset,
            max_records=settings.max_records,
            max_pages=settings.max_pages,
            on_page=_on_page,
            delay_seconds=settings.delay_seconds,
            sleep=sleep,
            fetch=fetch,
            **fetch_kwargs,
        )
    except Exception as e:
        logging_bridge.error({
            "component": "csw_harvest.engine",
            "op": "fetch_window",
            "target": settings.target,
            "start_position": offset,
            "error": repr(e),
            "status_code": getattr(e, "status_code", None),
        })
        raise
    finally:
        if client is not None:
            client.close()

    new_cursor = advance(window, result)
    store.write(new_cursor)

    total_us = int((time.perf_counter_ns() - start_ns) // 1000)
    if isinstance(new_cursor, InProgress):
        msg = f"Page limit reached. Cursor saved at position {new_cursor.resume_offset}"
    else:
        msg = f"Window complete. lastRun updated to {format_iso(new_cursor.last_completed_window_end)}"

    logging_bridge.activity({
        "component": "csw_harvest.engine",
        "op": "cursor_written",
        "target": settings.target,
        "cursor": encode_cursor(new_cursor),
        "total_us": total_us,
    })

    return {
        "message": msg,
        "target": settings.target,
        "window": window.describe(),
        "pages": result.pages_fetched,
        "records": len(result.records),
        "total_matched": result.total_matched,
        "cursor": encode_cursor(new_cursor),
        "total_us": total_us,
    }


def _log_request(endpoint: str, body: str) -> None:
    log.debug("%s", curl_command(endpoint, body))


def _log_response(body: str) -> None:
    log.debug("%s", body)
